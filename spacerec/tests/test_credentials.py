import asyncio

import httpx
import pytest

from conftest import BEARER, MAIN_JS
from spacerec.api.credentials import (
    CredentialManager,
    Credentials,
    activate_guest_token,
    derive_bearer_token,
)
from spacerec.errors import BearerNotFound, GuestTokenError


def test_derive_bearer_token_used_as_matched():
    assert derive_bearer_token(MAIN_JS) == BEARER
    assert "%3D" in derive_bearer_token(MAIN_JS)


def test_derive_bearer_token_not_found():
    with pytest.raises(BearerNotFound):
        derive_bearer_token('var a="AAAAshort";')


@pytest.mark.asyncio
async def test_activate_guest_token(platform, http):
    assert await activate_guest_token(http, BEARER) == "gt-1"
    assert platform.activations == 1


@pytest.mark.asyncio
async def test_activate_guest_token_http_error(platform, http):
    platform.fail_activation = True
    with pytest.raises(GuestTokenError):
        await activate_guest_token(http, BEARER)


@pytest.mark.asyncio
async def test_activate_guest_token_undecodable_body():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>")))
    with pytest.raises(GuestTokenError):
        await activate_guest_token(http, "token")


@pytest.mark.asyncio
async def test_activate_guest_token_missing_field():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"other": 1})))
    with pytest.raises(GuestTokenError):
        await activate_guest_token(http, "token")


@pytest.mark.asyncio
async def test_activate_guest_token_network_error():
    def boom(request):
        raise httpx.ConnectError("refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(boom))
    with pytest.raises(GuestTokenError):
        await activate_guest_token(http, "token")


@pytest.mark.asyncio
async def test_refresh_is_single_flight(platform, http):
    manager = CredentialManager(http, Credentials(bearer_token=BEARER))
    await manager.activate()
    stale = manager.credentials.guest_token
    assert stale == "gt-1"

    tokens = await asyncio.gather(*(manager.refresh(stale) for _ in range(5)))

    assert tokens == ["gt-2"] * 5
    assert platform.activations == 2
    assert manager.refresh_count == 1


@pytest.mark.asyncio
async def test_refresh_with_current_token_activates_again(platform, http):
    manager = CredentialManager(http, Credentials(bearer_token=BEARER))
    await manager.activate()
    await manager.refresh("gt-1")
    await manager.refresh("gt-2")
    assert manager.credentials.guest_token == "gt-3"
    assert manager.refresh_count == 2


def test_credentials_headers():
    creds = Credentials(bearer_token="b", guest_token="g")
    assert creds.headers() == {"Authorization": "Bearer b", "X-Guest-Token": "g"}
