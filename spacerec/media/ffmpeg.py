"""
ffmpeg adapter: joins captured segments into one audio file with tags.

Segments are ordered by the numbers embedded in their file names (sequence
/ timestamp), which is how the live playlist names them.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from spacerec.errors import RemuxError
from spacerec.media.metadata import Metadata

logger = logging.getLogger(__name__)

SEGMENT_SUFFIXES = {".aac", ".ts", ".m4s", ".mp4", ".m4a", ".mp3"}

_NUM_RE = re.compile(r"\d+")


def check_ffmpeg() -> None:
    if shutil.which("ffmpeg") is None:
        raise RemuxError("ffmpeg not found on PATH")
    result = subprocess.run(["ffmpeg", "-version"], capture_output=True, text=True, check=False)
    if result.returncode != 0:
        raise RemuxError(f"ffmpeg -version failed with exit code {result.returncode}")


def _order_key(p: Path) -> Tuple[Tuple[int, ...], str]:
    return tuple(int(n) for n in _NUM_RE.findall(p.stem)), p.name


def ordered_segments(segment_dir: Path) -> List[Path]:
    files = [p for p in Path(segment_dir).iterdir() if p.is_file() and p.suffix.lower() in SEGMENT_SUFFIXES]
    return sorted(files, key=_order_key)


def _concat_line(p: Path) -> str:
    quoted = str(p.resolve()).replace("'", "'\\''")
    return f"file '{quoted}'"


def write_concat_list(segments: Sequence[Path], list_path: Path) -> Path:
    list_path.write_text("\n".join(_concat_line(p) for p in segments) + "\n", encoding="utf-8")
    return list_path


def build_remux_command(list_path: Path, metadata_path: Optional[Path], dst: Path) -> List[str]:
    cmd: List[str] = [
        "ffmpeg", "-nostdin", "-loglevel", "error", "-y",
        "-f", "concat", "-safe", "0", "-i", str(list_path),
    ]
    if metadata_path is not None:
        cmd += ["-i", str(metadata_path), "-map_metadata", "1"]
    cmd += ["-map", "0:a", "-c", "copy", "-bsf:a", "aac_adtstoasc", str(dst)]
    return cmd


async def remux_segments(segment_dir: Path, dst: Path, metadata: Optional[Metadata] = None) -> Path:
    segment_dir = Path(segment_dir)
    segments = ordered_segments(segment_dir)
    if not segments:
        raise RemuxError(f"no segments to remux in {segment_dir}")

    list_path = write_concat_list(segments, segment_dir / "concat.txt")
    metadata_path: Optional[Path] = None
    if metadata is not None and len(metadata):
        metadata_path = segment_dir / "metadata.txt"
        metadata_path.write_text(metadata.render(), encoding="utf-8")

    cmd = build_remux_command(list_path, metadata_path, Path(dst))
    logger.info(f"remuxing {len(segments)} segments -> {dst}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise RemuxError("ffmpeg not found on PATH") from e
    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        detail = (stderr or b"").decode(errors="replace").strip()
        raise RemuxError(f"ffmpeg exited with {proc.returncode}: {detail}")
    return Path(dst)
