"""
Recording one broadcast end to end: resolve it through the API, capture the
live playlist while the broadcast is running, then join the segments.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from spacerec.api.client import ApiClient
from spacerec.api.schemas import AudioSpaceResponse, BroadcastState, User
from spacerec.config import CaptureSettings
from spacerec.errors import BroadcastError, SpaceRecError
from spacerec.ingestion.capture import CaptureEngine, CaptureStats
from spacerec.media.ffmpeg import remux_segments
from spacerec.media.metadata import Metadata

logger = logging.getLogger(__name__)

SPACE_URL = "https://twitter.com/i/spaces/{space_id}"

TERMINAL_STATES = (BroadcastState.ENDED, BroadcastState.UNAVAILABLE)


@dataclass
class SessionResult:
    space_id: str
    title: str
    owner_screen_name: str
    stream_url: str
    segment_dir: Path
    stats: CaptureStats
    final_state: BroadcastState
    self_halted: bool = False
    output_path: Optional[Path] = None


def output_basename(screen_name: str, started_at_ms: int, now: Optional[float] = None) -> str:
    started = datetime.fromtimestamp(started_at_ms / 1000)
    stamp = int(time.time() if now is None else now)
    return f"{screen_name}-{started.strftime('%Y%m%d-%H%M%S')}-{stamp}"


def build_metadata(space_id: str, resp: AudioSpaceResponse, owner: User) -> Metadata:
    started = datetime.fromtimestamp(resp.metadata.started_at / 1000)
    md = Metadata()
    md.add("title", resp.metadata.title)
    md.add("artist", owner.display_name)
    md.add("date", started.strftime("%Y"))
    md.add("comment", SPACE_URL.format(space_id=space_id))
    return md


async def resolve_broadcast(client: ApiClient, space_id: str) -> Tuple[AudioSpaceResponse, User, str]:
    resp = await client.audio_space_by_id(space_id)
    meta = resp.metadata
    if meta.broadcast_state != BroadcastState.RUNNING:
        raise BroadcastError(f"space is not running (state={meta.state or 'unknown'})")
    owner = resp.owner_user()
    if owner is None:
        raise BroadcastError("owner user not found")
    if not meta.media_key:
        raise BroadcastError("space has no media key")
    stream_url = await client.fetch_stream_location(meta.media_key)
    return resp, owner, stream_url


async def _wait_any(timeout: float, *events: Optional[asyncio.Event]) -> None:
    """Sleep ``timeout`` seconds or until one of ``events`` is set."""
    waiters = [asyncio.create_task(e.wait()) for e in events if e is not None]
    if not waiters:
        await asyncio.sleep(timeout)
        return
    try:
        await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for w in waiters:
            w.cancel()


async def watch_broadcast(
    client: ApiClient,
    space_id: str,
    engine: CaptureEngine,
    *,
    interval: float,
    stop_event: Optional[asyncio.Event] = None,
) -> BroadcastState:
    """Re-query the broadcast state until it ends, then halt the engine.

    Also returns early on ``stop_event`` or when the engine halted itself.
    State query failures are logged and retried on the next tick.
    """
    halt_event = asyncio.Event()
    halt_watch = asyncio.create_task(engine.wait_halt_requested())
    halt_watch.add_done_callback(lambda _t: halt_event.set())
    state = BroadcastState.RUNNING
    try:
        while True:
            await _wait_any(interval, stop_event, halt_event)
            if engine.halted:
                logger.info("capture halted on its own")
                break
            if stop_event is not None and stop_event.is_set():
                logger.info("stop requested")
                engine.halt()
                break
            try:
                state = await client.broadcast_state(space_id)
            except SpaceRecError as e:
                logger.warning(f"state query error: {e}")
                continue
            logger.debug(f"broadcast state: {state.value}")
            if state in TERMINAL_STATES:
                logger.info(f"broadcast {state.value}, stopping capture")
                engine.halt()
                break
    finally:
        halt_watch.cancel()
    return state


async def record_broadcast(
    space_id: str,
    settings: CaptureSettings,
    *,
    client: Optional[ApiClient] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> SessionResult:
    own_client = client is None
    if client is None:
        client = ApiClient(timeout=settings.http_timeout, user_agent=settings.user_agent)
    try:
        await client.initialize()
        resp, owner, stream_url = await resolve_broadcast(client, space_id)
        logger.info(f"stream url: {stream_url}")

        basename = output_basename(owner.twitter_screen_name, resp.metadata.started_at)
        segment_dir = Path(settings.output_dir) / basename
        engine = CaptureEngine.from_settings(stream_url, segment_dir, settings, http=client.http)
        engine.start()
        try:
            final_state = await watch_broadcast(
                client, space_id, engine, interval=settings.state_interval, stop_event=stop_event
            )
        finally:
            if not engine.halted:
                engine.halt()
            stats = await engine.wait()

        result = SessionResult(
            space_id=space_id,
            title=resp.metadata.title,
            owner_screen_name=owner.twitter_screen_name,
            stream_url=stream_url,
            segment_dir=segment_dir,
            stats=stats,
            final_state=final_state,
            self_halted=engine.self_halted,
        )
        if settings.remux and stats.downloaded:
            dst = Path(settings.output_dir) / f"{basename}.m4a"
            result.output_path = await remux_segments(segment_dir, dst, build_metadata(space_id, resp, owner))
        return result
    finally:
        if own_client:
            await client.aclose()
