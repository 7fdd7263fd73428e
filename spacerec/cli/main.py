from __future__ import annotations

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from prometheus_client import start_http_server

from spacerec import __version__
from spacerec.api.client import ApiClient
from spacerec.api.schemas import BroadcastState
from spacerec.config import CaptureSettings, load_settings
from spacerec.errors import RemuxError, SpaceRecError
from spacerec.ingestion.session import SessionResult, record_broadcast
from spacerec.media.ffmpeg import check_ffmpeg

app = typer.Typer(help="Spacerec CLI - record live audio broadcasts")

logger = logging.getLogger("spacerec")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def _start_metrics(port: int) -> None:
    if port <= 0:
        return
    try:
        start_http_server(port)
        logger.info(f"Metrics exporter started on :{port}")
    except Exception as e:
        logger.warning(f"Failed to start metrics exporter: {e}")


@app.command()
def version() -> None:
    """Show the installed version."""
    typer.echo(__version__)


@app.command("check")
def check() -> None:
    """Verify ffmpeg is installed (needed to join segments)."""
    try:
        check_ffmpeg()
    except RemuxError as e:
        typer.echo(f"NG: {e}", err=True)
        raise typer.Exit(1)
    typer.echo("OK: ffmpeg installed")


@app.command("info")
def info(
    space_id: str = typer.Argument(..., help="Broadcast (space) id"),
    json_out: bool = typer.Option(False, "--json", help="Emit JSON output"),
    config: Optional[Path] = typer.Option(None, help="YAML settings file"),
) -> None:
    """Resolve a broadcast and print its state, owner and stream URL."""
    settings = load_settings(config)
    _setup_logging(settings.log_level)

    async def _run() -> Dict[str, Any]:
        async with ApiClient(timeout=settings.http_timeout, user_agent=settings.user_agent) as client:
            await client.initialize()
            resp = await client.audio_space_by_id(space_id)
            meta = resp.metadata
            owner = resp.owner_user()
            out: Dict[str, Any] = {
                "id": meta.rest_id or space_id,
                "title": meta.title,
                "state": meta.broadcast_state.value,
                "owner": owner.twitter_screen_name if owner else None,
                "started_at": meta.started_at,
                "listeners": meta.total_live_listeners,
                "stream_url": None,
            }
            if meta.media_key and meta.broadcast_state == BroadcastState.RUNNING:
                try:
                    out["stream_url"] = await client.fetch_stream_location(meta.media_key)
                except SpaceRecError as e:
                    logger.warning(f"stream url unavailable: {e}")
            return out

    try:
        result = asyncio.run(_run())
    except SpaceRecError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    if json_out:
        typer.echo(json.dumps(result, default=str))
    else:
        typer.echo("\n".join(f"{k}: {v}" for k, v in result.items()))


@app.command("capture")
def capture(
    space_id: str = typer.Argument(..., help="Broadcast (space) id"),
    config: Optional[Path] = typer.Option(None, help="YAML settings file"),
    output_dir: Optional[Path] = typer.Option(None, help="Directory for segments and the final file"),
    workers: Optional[int] = typer.Option(None, help="Concurrent segment downloads"),
    poll_interval: Optional[float] = typer.Option(None, help="Playlist poll interval (seconds)"),
    state_interval: Optional[float] = typer.Option(None, help="Broadcast state check interval (seconds)"),
    max_poll_errors: Optional[int] = typer.Option(None, help="Consecutive poll failures before giving up"),
    metrics_port: Optional[int] = typer.Option(None, help="Prometheus metrics port (0 disables)"),
    remux: Optional[bool] = typer.Option(None, "--remux/--no-remux", help="Join segments with ffmpeg when done"),
) -> None:
    """Record a running broadcast until it ends (or Ctrl-C)."""
    settings = load_settings(
        config,
        output_dir=output_dir,
        workers=workers,
        poll_interval=poll_interval,
        state_interval=state_interval,
        max_poll_errors=max_poll_errors,
        metrics_port=metrics_port,
        remux=remux,
    )
    _setup_logging(settings.log_level)
    if settings.remux:
        try:
            check_ffmpeg()
        except RemuxError as e:
            typer.echo(f"{e} (use --no-remux to keep raw segments only)", err=True)
            raise typer.Exit(1)
    _start_metrics(settings.metrics_port)

    try:
        result = asyncio.run(_capture(space_id, settings))
    except SpaceRecError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)

    typer.echo(
        f"done | state={result.final_state.value} | downloaded={result.stats.downloaded} "
        f"| failed={result.stats.failed} | segments={result.segment_dir}"
    )
    if result.output_path:
        typer.echo(f"output: {result.output_path}")
    if result.self_halted:
        raise typer.Exit(2)


async def _capture(space_id: str, settings: CaptureSettings) -> SessionResult:
    # Graceful shutdown on SIGINT/SIGTERM
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            pass
    logger.info(f"Starting capture | space={space_id}")
    return await record_broadcast(space_id, settings, stop_event=stop_event)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
