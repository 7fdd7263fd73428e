"""
Balanced-brace scanning over JavaScript bundle text.

Pure string functions with no knowledge of HTTP or of what the objects mean,
so they can be exercised on synthetic sources.
"""

from __future__ import annotations

from typing import Iterator, Optional

_QUOTES = "\"'`"


def _is_escaped(src: str, i: int) -> bool:
    n = 0
    j = i - 1
    while j >= 0 and src[j] == "\\":
        n += 1
        j -= 1
    return n % 2 == 1


def find_enclosing_open(src: str, pos: int, open_ch: str = "{", close_ch: str = "}") -> Optional[int]:
    """Index of the ``open_ch`` that encloses ``pos``, walking backwards.

    Closed sibling objects between the opener and ``pos`` are skipped by
    depth counting; string literals are skipped whole. ``pos`` must lie
    outside any string.
    """
    depth = 0
    i = pos - 1
    while i >= 0:
        c = src[i]
        if c in _QUOTES and not _is_escaped(src, i):
            j = i - 1
            while j >= 0 and not (src[j] == c and not _is_escaped(src, j)):
                j -= 1
            if j < 0:
                return None
            i = j - 1
            continue
        if c == close_ch:
            depth += 1
        elif c == open_ch:
            if depth == 0:
                return i
            depth -= 1
        i -= 1
    return None


def find_matching_close(src: str, start: int, open_ch: str = "{", close_ch: str = "}") -> Optional[int]:
    """Index one past the delimiter closing ``src[start]``, or None if unbalanced.

    Delimiters inside string literals do not count.
    """
    depth = 0
    quote: Optional[str] = None
    i = start
    n = len(src)
    while i < n:
        c = src[i]
        if quote is not None:
            if c == "\\":
                i += 2
                continue
            if c == quote:
                quote = None
        elif c in _QUOTES:
            quote = c
        elif c == open_ch:
            depth += 1
        elif c == close_ch:
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return None


def iter_enclosing_objects(src: str, marker: str) -> Iterator[str]:
    """Yield the balanced ``{...}`` fragment around every occurrence of ``marker``."""
    pos = 0
    while True:
        idx = src.find(marker, pos)
        if idx == -1:
            return
        start = find_enclosing_open(src, idx)
        if start is None:
            pos = idx + len(marker)
            continue
        end = find_matching_close(src, start)
        if end is None:
            # unbalanced tail, nothing after this can close either
            return
        yield src[start:end]
        pos = max(end, idx + len(marker))
