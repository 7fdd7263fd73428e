"""
Spacerec live segment capture

- One poller task re-reads the live media playlist every poll interval
- Segments are scheduled once per session (sequence-id seen-set)
- N worker tasks download scheduled segments into the output directory
- halt() stops polling; workers drain the queue, then the engine stops
- Too many consecutive poll failures halt the engine on its own
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Hashable, List, Optional, Set
from urllib.parse import urljoin, urlsplit

import httpx

from spacerec import metrics
from spacerec.config import DEFAULT_USER_AGENT, CaptureSettings
from spacerec.errors import InvalidPlaylist, SegmentDownloadError, TransportError
from spacerec.ingestion.playlist import Playlist, PlaylistKind, decode_playlist

logger = logging.getLogger(__name__)

PlaylistDecoder = Callable[[str, Optional[str]], Playlist]


class EngineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class SeenSet:
    """Append-only set whose only mutation is an atomic insert-if-absent.

    The poller mutates it from the event loop; the lock keeps membership and
    size reads safe from other threads (e.g. a metrics or status thread).
    """

    def __init__(self) -> None:
        self._items: Set[Hashable] = set()
        self._lock = threading.Lock()

    def add(self, key: Hashable) -> bool:
        """Insert ``key``; True if it was not present before."""
        with self._lock:
            if key in self._items:
                return False
            self._items.add(key)
            return True

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass
class CaptureStats:
    discovered: int = 0
    downloaded: int = 0
    failed: int = 0
    consecutive_poll_errors: int = 0
    total_poll_errors: int = 0


def segment_filename(url: str) -> str:
    name = posixpath.basename(urlsplit(url).path)
    if not name:
        raise SegmentDownloadError(f"segment url has no file name: {url}")
    return name


class CaptureEngine:
    def __init__(
        self,
        playlist_url: str,
        output_dir: Path,
        *,
        http: Optional[httpx.AsyncClient] = None,
        workers: int = 3,
        max_poll_errors: int = 30,
        queue_size: int = 10,
        poll_interval: float = 2.0,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        decoder: PlaylistDecoder = decode_playlist,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.playlist_url = playlist_url
        self.output_dir = Path(output_dir)
        self.workers = workers
        self.max_poll_errors = max_poll_errors
        self.queue_size = queue_size
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.user_agent = user_agent
        self._decoder = decoder

        self._http = http
        self._owns_http = False

        self.state = EngineState.IDLE
        self.seen = SeenSet()
        self.stats = CaptureStats()
        self.self_halted = False

        self._queue: Optional[asyncio.Queue[Optional[str]]] = None
        self._halt: Optional[asyncio.Event] = None
        self._done: Optional[asyncio.Event] = None
        self._poller: Optional[asyncio.Task] = None
        self._worker_tasks: List[asyncio.Task] = []
        self._supervisor: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        playlist_url: str,
        output_dir: Path,
        settings: CaptureSettings,
        http: Optional[httpx.AsyncClient] = None,
    ) -> "CaptureEngine":
        return cls(
            playlist_url,
            output_dir,
            http=http,
            workers=settings.workers,
            max_poll_errors=settings.max_poll_errors,
            queue_size=settings.queue_size,
            poll_interval=settings.poll_interval,
            timeout=settings.http_timeout,
            user_agent=settings.user_agent,
        )

    # -------------------- Lifecycle --------------------

    def start(self, poll_interval: Optional[float] = None) -> None:
        """Spawn the poller and workers. Must run inside an event loop."""
        if self.state != EngineState.IDLE:
            raise RuntimeError("capture already started")
        if poll_interval is not None:
            self.poll_interval = poll_interval
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
            self._owns_http = True

        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._halt = asyncio.Event()
        self._done = asyncio.Event()
        self.state = EngineState.RUNNING
        metrics.CAPTURE_RUNNING.inc()

        self._poller = asyncio.create_task(self._poll_loop(), name="capture-poller")
        self._worker_tasks = [
            asyncio.create_task(self._worker(i), name=f"capture-worker-{i}")
            for i in range(self.workers)
        ]
        self._supervisor = asyncio.create_task(self._supervise(), name="capture-supervisor")
        logger.info(
            f"capture started | url={self.playlist_url} | dir={self.output_dir} | "
            f"workers={self.workers} | interval={self.poll_interval}s"
        )

    def halt(self) -> bool:
        """Stop scheduling new polls. Only the first call has an effect."""
        if self._halt is None:
            raise RuntimeError("capture not started")
        if self._halt.is_set():
            logger.debug("capture halt already requested")
            return False
        self._halt.set()
        if self.state == EngineState.RUNNING:
            self.state = EngineState.DRAINING
        logger.info("capture halt requested, draining")
        return True

    @property
    def halted(self) -> bool:
        return self._halt is not None and self._halt.is_set()

    @property
    def done(self) -> bool:
        return self._done is not None and self._done.is_set()

    async def wait_halt_requested(self) -> None:
        if self._halt is None:
            raise RuntimeError("capture not started")
        await self._halt.wait()

    async def wait(self) -> CaptureStats:
        if self._done is None:
            raise RuntimeError("capture not started")
        await self._done.wait()
        return self.stats

    async def _supervise(self) -> None:
        assert self._poller is not None
        results = await asyncio.gather(self._poller, *self._worker_tasks, return_exceptions=True)
        for r in results:
            if isinstance(r, BaseException) and not isinstance(r, asyncio.CancelledError):
                logger.error(f"capture task crashed: {r!r}")
        try:
            if self._owns_http and self._http is not None:
                await self._http.aclose()
        finally:
            self.state = EngineState.STOPPED
            metrics.CAPTURE_RUNNING.dec()
            assert self._done is not None
            self._done.set()
            logger.info(
                f"capture stopped | discovered={self.stats.discovered} | "
                f"downloaded={self.stats.downloaded} | failed={self.stats.failed}"
            )

    # -------------------- Poller --------------------

    async def _poll_loop(self) -> None:
        assert self._halt is not None and self._queue is not None
        try:
            while not self._halt.is_set():
                await self.poll_once()
                if self._halt.is_set():
                    break
                try:
                    await asyncio.wait_for(self._halt.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            # one end marker per worker; everything queued before it still drains
            for _ in range(self.workers):
                await self._queue.put(None)

    async def poll_once(self) -> List[str]:
        """Fetch the playlist once and enqueue unseen segments; returns their URLs."""
        assert self._queue is not None
        try:
            urls = await self.fetch_new_segments()
        except Exception as e:
            self._record_poll_error(e)
            return []
        self.stats.consecutive_poll_errors = 0
        for u in urls:
            await self._queue.put(u)
        return urls

    async def fetch_new_segments(self) -> List[str]:
        """Decode the live playlist and claim segments not seen before, in playlist order."""
        assert self._http is not None
        try:
            resp = await self._http.get(self.playlist_url)
        except httpx.HTTPError as e:
            raise TransportError(f"playlist download failed: {e}") from e
        if resp.status_code >= 400:
            raise TransportError(f"playlist download failed: HTTP {resp.status_code}")

        playlist = self._decoder(resp.text, self.playlist_url)
        if playlist.kind != PlaylistKind.MEDIA:
            raise InvalidPlaylist(f"invalid playlist: expected media, got {playlist.kind.value}")
        if playlist.ended:
            # the broadcast state watcher decides when to halt
            logger.debug("playlist carries #EXT-X-ENDLIST")

        urls: List[str] = []
        for seg in playlist.segments:
            if not self.seen.add(seg.sequence_id):
                continue
            urls.append(urljoin(self.playlist_url, seg.uri))
        if urls:
            self.stats.discovered += len(urls)
            metrics.SEGMENTS_DISCOVERED.inc(len(urls))
            logger.debug(f"scheduled {len(urls)} new segments")
        return urls

    def _record_poll_error(self, err: Exception) -> None:
        self.stats.consecutive_poll_errors += 1
        self.stats.total_poll_errors += 1
        metrics.POLL_ERRORS.inc()
        n = self.stats.consecutive_poll_errors
        logger.warning(f"playlist poll error ({n}/{self.max_poll_errors}): {err}")
        if n > self.max_poll_errors:
            logger.error(f"{n} consecutive playlist poll errors, halting capture")
            self.self_halted = True
            self.halt()

    # -------------------- Workers --------------------

    async def _worker(self, idx: int) -> None:
        assert self._queue is not None
        while True:
            url = await self._queue.get()
            try:
                if url is None:
                    return
                try:
                    await self.download_segment(url)
                except Exception as e:
                    self.stats.failed += 1
                    metrics.SEGMENT_FAILURES.inc()
                    logger.warning(f"segment download error ({url}): {e}")
            finally:
                self._queue.task_done()

    async def download_segment(self, url: str) -> Path:
        assert self._http is not None
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / segment_filename(url)
        t0 = time.perf_counter()
        try:
            async with self._http.stream("GET", url) as resp:
                if resp.status_code >= 400:
                    raise SegmentDownloadError(f"HTTP {resp.status_code}")
                with path.open("wb") as f:
                    async for chunk in resp.aiter_bytes():
                        f.write(chunk)
        except (httpx.HTTPError, OSError, SegmentDownloadError) as e:
            path.unlink(missing_ok=True)
            if isinstance(e, SegmentDownloadError):
                raise
            raise SegmentDownloadError(str(e)) from e
        self.stats.downloaded += 1
        metrics.SEGMENTS_DOWNLOADED.inc()
        metrics.SEGMENT_DOWNLOAD_SECONDS.observe(time.perf_counter() - t0)
        logger.debug(f"segment saved: {path.name}")
        return path
