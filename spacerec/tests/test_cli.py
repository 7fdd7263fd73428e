from pathlib import Path

from typer.testing import CliRunner

from spacerec import __version__
from spacerec.api.schemas import BroadcastState
from spacerec.cli import main as cli
from spacerec.errors import BroadcastError, RemuxError
from spacerec.ingestion.capture import CaptureStats
from spacerec.ingestion.session import SessionResult

runner = CliRunner()


def _result(**kwargs) -> SessionResult:
    values = dict(
        space_id="1OdKrBnaEPXKX",
        title="Morning show",
        owner_screen_name="host",
        stream_url="https://media.example.com/hls/abc/playlist.m3u8",
        segment_dir=Path("out/host-x"),
        stats=CaptureStats(discovered=3, downloaded=3),
        final_state=BroadcastState.ENDED,
    )
    values.update(kwargs)
    return SessionResult(**values)


def test_version():
    result = runner.invoke(cli.app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_check_reports_missing_ffmpeg(monkeypatch):
    def missing():
        raise RemuxError("ffmpeg not found on PATH")

    monkeypatch.setattr(cli, "check_ffmpeg", missing)
    result = runner.invoke(cli.app, ["check"])
    assert result.exit_code == 1


def test_capture_passes_options_through(monkeypatch, tmp_path):
    seen = {}

    async def fake_record(space_id, settings, *, stop_event=None):
        seen.update(space_id=space_id, settings=settings, stop_event=stop_event)
        return _result()

    monkeypatch.setattr(cli, "record_broadcast", fake_record)
    result = runner.invoke(
        cli.app,
        ["capture", "1OdKrBnaEPXKX", "--no-remux", "--workers", "5", "--output-dir", str(tmp_path)],
    )

    assert result.exit_code == 0, result.output
    assert "downloaded=3" in result.stdout
    assert seen["space_id"] == "1OdKrBnaEPXKX"
    assert seen["settings"].workers == 5
    assert seen["settings"].output_dir == tmp_path
    assert seen["settings"].remux is False
    assert seen["stop_event"] is not None


def test_capture_exit_code_when_capture_gave_up(monkeypatch):
    async def fake_record(space_id, settings, *, stop_event=None):
        return _result(self_halted=True, final_state=BroadcastState.RUNNING)

    monkeypatch.setattr(cli, "record_broadcast", fake_record)
    result = runner.invoke(cli.app, ["capture", "1OdKrBnaEPXKX", "--no-remux"])
    assert result.exit_code == 2


def test_capture_reports_errors(monkeypatch):
    async def fake_record(space_id, settings, *, stop_event=None):
        raise BroadcastError("space is not running (state=Ended)")

    monkeypatch.setattr(cli, "record_broadcast", fake_record)
    result = runner.invoke(cli.app, ["capture", "1OdKrBnaEPXKX", "--no-remux"])
    assert result.exit_code == 1


def test_capture_requires_ffmpeg_when_remuxing(monkeypatch):
    def missing():
        raise RemuxError("ffmpeg not found on PATH")

    called = []

    async def fake_record(space_id, settings, *, stop_event=None):
        called.append(space_id)
        return _result()

    monkeypatch.setattr(cli, "check_ffmpeg", missing)
    monkeypatch.setattr(cli, "record_broadcast", fake_record)
    result = runner.invoke(cli.app, ["capture", "1OdKrBnaEPXKX", "--remux"])
    assert result.exit_code == 1
    assert called == []
