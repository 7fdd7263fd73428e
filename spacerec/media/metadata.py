from __future__ import annotations

from typing import Iterator, List, Tuple

_ESCAPES = str.maketrans({
    "=": "\\=",
    ";": "\\;",
    "#": "\\#",
    "\\": "\\\\",
    "\n": "\\\n",
})


def escape(s: str) -> str:
    return s.translate(_ESCAPES)


class Metadata:
    """Ordered tags rendered in ffmpeg's FFMETADATA1 format."""

    def __init__(self) -> None:
        self._kvs: List[Tuple[str, str]] = []

    def add(self, key: str, value: str) -> None:
        self._kvs.append((key, value))

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._kvs)

    def __len__(self) -> int:
        return len(self._kvs)

    def render(self) -> str:
        lines = [";FFMETADATA1"]
        lines += [f"{escape(k)}={escape(v)}" for k, v in self._kvs]
        return "\n".join(lines) + "\n"

    __str__ = render
