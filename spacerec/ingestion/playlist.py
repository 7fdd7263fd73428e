"""
HLS playlist decoding on top of the ``m3u8`` library.

Only what the capture engine needs: the playlist kind and, for media
playlists, ``(sequence_id, uri)`` pairs in playlist order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import m3u8

from spacerec.errors import DecodeError


class PlaylistKind(str, Enum):
    MEDIA = "media"
    MASTER = "master"


@dataclass(frozen=True)
class SegmentRef:
    sequence_id: int
    uri: str


@dataclass
class Playlist:
    kind: PlaylistKind
    segments: List[SegmentRef] = field(default_factory=list)
    ended: bool = False


def decode_playlist(content: str, base_uri: Optional[str] = None) -> Playlist:
    text = content.lstrip("\ufeff").strip()
    if not text.startswith("#EXTM3U"):
        raise DecodeError("not an HLS playlist (missing #EXTM3U)")
    try:
        parsed = m3u8.loads(text, uri=base_uri)
    except Exception as e:
        raise DecodeError(f"playlist parse failed: {e}") from e

    if parsed.is_variant:
        return Playlist(kind=PlaylistKind.MASTER)

    first_seq = parsed.media_sequence or 0
    segments = [
        SegmentRef(sequence_id=first_seq + i, uri=seg.uri)
        for i, seg in enumerate(parsed.segments)
        if seg is not None and seg.uri
    ]
    return Playlist(kind=PlaylistKind.MEDIA, segments=segments, ended=bool(parsed.is_endlist))
