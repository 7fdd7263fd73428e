from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Process-local metrics; exported by the CLI when a metrics port is set.
SEGMENTS_DISCOVERED = Counter(
    "spacerec_segments_discovered_total",
    "Segments scheduled for download",
)
SEGMENTS_DOWNLOADED = Counter(
    "spacerec_segments_downloaded_total",
    "Segments written to disk",
)
SEGMENT_FAILURES = Counter(
    "spacerec_segment_failures_total",
    "Segment downloads that failed",
)
POLL_ERRORS = Counter(
    "spacerec_poll_errors_total",
    "Playlist polls that failed",
)
GUEST_TOKEN_REFRESHES = Counter(
    "spacerec_guest_token_refreshes_total",
    "Guest token activations after the initial one",
)
CAPTURE_RUNNING = Gauge(
    "spacerec_capture_running",
    "Capture engines currently running",
)
SEGMENT_DOWNLOAD_SECONDS = Histogram(
    "spacerec_segment_download_seconds",
    "Time to download one segment",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)
