"""
Exception hierarchy shared by the API client, the capture engine and the
broadcast session.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


BAD_GUEST_TOKEN_MESSAGE = "Bad guest token"


class SpaceRecError(Exception):
    pass


# -------------------- Initialization --------------------


class InitializationError(SpaceRecError):
    """Client could not be brought into a usable state."""


class BundleFetchError(InitializationError):
    pass


class BearerNotFound(InitializationError):
    pass


class OperationsNotFound(InitializationError):
    pass


class GuestTokenError(InitializationError):
    pass


# -------------------- Transport / query --------------------


class TransportError(SpaceRecError):
    pass


class DecodeError(SpaceRecError):
    pass


class OperationNotFound(SpaceRecError):
    def __init__(self, name: str):
        super().__init__(f"operation not found: {name}")
        self.name = name


class QueryError(SpaceRecError):
    """Server-reported failure of a GraphQL query.

    ``errors`` holds the structured entries from the response's ``errors``
    key (possibly empty), ``data`` whatever remained of the body after the
    errors were split off.
    """

    def __init__(
        self,
        errors: Optional[List[Any]] = None,
        status_code: int = 0,
        status: str = "",
        data: Optional[Dict[str, Any]] = None,
    ):
        self.errors = list(errors or [])
        self.status_code = status_code
        self.status = status
        self.data = data or {}
        super().__init__(self._describe())

    def _describe(self) -> str:
        if self.errors:
            return self.errors[0].message
        return self.status

    @property
    def is_bad_guest_token(self) -> bool:
        wanted = BAD_GUEST_TOKEN_MESSAGE.casefold()
        return any(e.message.casefold() == wanted for e in self.errors)


# -------------------- Capture --------------------


class CaptureError(SpaceRecError):
    pass


class InvalidPlaylist(CaptureError):
    pass


class SegmentDownloadError(CaptureError):
    pass


# -------------------- Session / media --------------------


class BroadcastError(SpaceRecError):
    pass


class RemuxError(SpaceRecError):
    pass
