"""
Bearer / guest token handling.

The bearer token identifies the web client and is scraped once from the main
bundle. The guest token identifies an anonymous session; the server may
revoke it at any time, so it is re-activated on demand through
``CredentialManager.refresh`` which lets only one activation run at a time.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from spacerec import metrics
from spacerec.errors import BearerNotFound, GuestTokenError

logger = logging.getLogger(__name__)

GUEST_ACTIVATE_URL = "https://api.twitter.com/1.1/guest/activate.json"

BEARER_RE = re.compile(r'"(A{10,}[a-zA-Z0-9%]{30,})"')


@dataclass
class Credentials:
    bearer_token: str = ""
    guest_token: str = ""

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.bearer_token}",
            "X-Guest-Token": self.guest_token,
        }


def derive_bearer_token(bundle_source: str) -> str:
    m = BEARER_RE.search(bundle_source)
    if m is None:
        raise BearerNotFound("bearer token not found")
    return m.group(1)


async def activate_guest_token(http: httpx.AsyncClient, bearer_token: str) -> str:
    try:
        resp = await http.post(GUEST_ACTIVATE_URL, headers={"Authorization": f"Bearer {bearer_token}"})
    except httpx.HTTPError as e:
        raise GuestTokenError(f"guest token activation failed: {e}") from e
    if resp.status_code // 100 != 2:
        raise GuestTokenError(f"guest token activation failed: HTTP {resp.status_code}")
    try:
        token = resp.json().get("guest_token")
    except (ValueError, AttributeError) as e:
        raise GuestTokenError(f"guest token response not decodable: {e}") from e
    if not token:
        raise GuestTokenError("guest token missing from activation response")
    return str(token)


class CredentialManager:
    def __init__(self, http: httpx.AsyncClient, credentials: Optional[Credentials] = None):
        self._http = http
        self.credentials = credentials or Credentials()
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    async def activate(self) -> str:
        """Unconditionally obtain a fresh guest token."""
        async with self._lock:
            return await self._activate()

    async def refresh(self, stale_token: str) -> str:
        """Replace ``stale_token`` unless another caller already did.

        Concurrent callers that saw the same rejected token wait on the lock
        and then reuse the token the first one obtained.
        """
        async with self._lock:
            if self.credentials.guest_token and self.credentials.guest_token != stale_token:
                logger.debug("guest token already refreshed by a concurrent query")
                return self.credentials.guest_token
            token = await self._activate()
            self.refresh_count += 1
            metrics.GUEST_TOKEN_REFRESHES.inc()
            logger.info("guest token refreshed")
            return token

    async def _activate(self) -> str:
        token = await activate_guest_token(self._http, self.credentials.bearer_token)
        self.credentials.guest_token = token
        return token
