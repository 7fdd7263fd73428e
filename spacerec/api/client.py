"""
Client for the platform's private GraphQL API.

Initialization scrapes the landing page for the client bundles, discovers the
operation catalog and bearer token from them and activates a guest token.
Queries carry both tokens; a "Bad guest token" rejection triggers one guest
token refresh and one re-issue of the same query.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar, Union
from urllib.parse import urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, ValidationError

from spacerec.api.credentials import CredentialManager, Credentials, derive_bearer_token
from spacerec.api.operations import OperationCatalog
from spacerec.api.schemas import (
    AudioSpaceResponse,
    BroadcastState,
    GraphQLErrorItem,
    LiveVideoStreamResponse,
)
from spacerec.config import DEFAULT_USER_AGENT
from spacerec.errors import (
    BundleFetchError,
    DecodeError,
    QueryError,
    SpaceRecError,
    TransportError,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

LANDING_URL = "https://twitter.com/"
GRAPHQL_URL = "https://api.twitter.com/graphql/{query_id}/{name}"
LIVE_STREAM_URL = "https://twitter.com/i/api/1.1/live_video_stream/status/{media_key}"

MAIN_JS_RE = re.compile(r'"(https://[^"]*?/main\.[a-z0-9]+\.js)"')
API_SUFFIX_RE = re.compile(r'api:"([a-z0-9]+)"')

AUDIO_SPACE_BY_ID = "AudioSpaceById"

AUDIO_SPACE_VARIABLES: Dict[str, Any] = {
    "isMetatagsQuery": False,
    "withSuperFollowsUserFields": True,
    "withDownvotePerspective": False,
    "withReactionsMetadata": False,
    "withReactionsPerspective": False,
    "withSuperFollowsTweetFields": True,
    "withReplays": True,
}

AUDIO_SPACE_FEATURES: Dict[str, bool] = {
    "spaces_2022_h2_clipping": True,
    "spaces_2022_h2_spaces_communities": True,
    "responsive_web_twitter_blue_verified_badge_is_enabled": True,
    "verified_phone_label_enabled": False,
    "view_counts_public_visibility_enabled": True,
    "longform_notetweets_consumption_enabled": False,
    "tweetypie_unmention_optimization_enabled": True,
    "responsive_web_uc_gql_enabled": True,
    "vibe_api_enabled": True,
    "responsive_web_edit_tweet_api_enabled": True,
    "graphql_is_translatable_rweb_tweet_is_translatable_enabled": True,
    "view_counts_everywhere_api_enabled": True,
    "standardized_nudges_misinfo": True,
    "tweet_with_visibility_results_prefer_gql_limited_actions_policy_enabled": False,
    "responsive_web_graphql_timeline_navigation_enabled": True,
    "interactive_text_enabled": True,
    "responsive_web_text_conversations_enabled": False,
    "responsive_web_enhance_cards_enabled": False,
    "responsive_web_graphql_exclude_directive_enabled": True,
    "responsive_web_graphql_skip_user_profile_image_extensions_enabled": False,
    "freedom_of_speech_not_reach_appeal_label_enabled": False,
}


# -------------------- Bundle discovery helpers --------------------


def find_main_bundle_url(index_html: str) -> str:
    m = MAIN_JS_RE.search(index_html)
    if m is None:
        raise BundleFetchError("main js url not found")
    return m.group(1)


def replace_url_file(url: str, filename: str) -> str:
    parts = urlsplit(url)
    path = parts.path[: parts.path.rfind("/") + 1] + filename
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def find_api_bundle_url(main_url: str, index_html: str) -> Optional[str]:
    m = API_SUFFIX_RE.search(index_html)
    if m is None:
        return None
    return replace_url_file(main_url, f"api.{m.group(1)}a.js")


# -------------------- Query encoding / decoding --------------------


def encode_query_params(params: Mapping[str, Any]) -> Dict[str, str]:
    """Each parameter becomes its own query-string field holding compact JSON."""
    return {
        name: json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        for name, value in params.items()
    }


def split_errors(doc: Dict[str, Any]) -> Tuple[List[GraphQLErrorItem], Dict[str, Any]]:
    """Separate the ``errors`` key from the rest of a GraphQL response body."""
    data = dict(doc)
    raw = data.pop("errors", None)
    if raw is None:
        return [], data
    if not isinstance(raw, list):
        raise DecodeError(f"unexpected errors payload: {raw!r}")
    try:
        errors = [GraphQLErrorItem.model_validate(e) for e in raw]
    except ValidationError as e:
        raise DecodeError(f"unexpected errors payload: {e}") from e
    return errors, data


def _status_line(resp: httpx.Response) -> str:
    return f"{resp.status_code} {resp.reason_phrase}".strip()


class ApiClient:
    """Owns the HTTP client, credentials and operation catalog for one session."""

    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        *,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
        )
        self.credentials = CredentialManager(self.http)
        self.catalog: Optional[OperationCatalog] = None

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    @property
    def initialized(self) -> bool:
        return self.catalog is not None and bool(self.credentials.credentials.guest_token)

    # -------------------- Initialization --------------------

    async def initialize(self) -> None:
        # nothing from a previous or failed attempt stays usable
        self.catalog = None
        self.credentials = CredentialManager(self.http)

        index = await self._fetch_text(LANDING_URL)
        main_url = find_main_bundle_url(index)
        logger.info(f"main js: {main_url}")
        bundle_urls = [main_url]
        api_url = find_api_bundle_url(main_url, index)
        if api_url:
            logger.info(f"api js: {api_url}")
            bundle_urls.append(api_url)

        sources = [await self._fetch_text(u) for u in bundle_urls]
        catalog = OperationCatalog.discover(sources)
        logger.info(f"discovered {len(catalog)} operations")

        manager = CredentialManager(self.http, Credentials(bearer_token=derive_bearer_token(sources[0])))
        await manager.activate()

        self.catalog = catalog
        self.credentials = manager

    async def _fetch_text(self, url: str) -> str:
        try:
            resp = await self.http.get(url)
        except httpx.HTTPError as e:
            raise BundleFetchError(f"fetch failed: {url}: {e}") from e
        if resp.status_code // 100 != 2:
            raise BundleFetchError(f"fetch failed: {url}: HTTP {resp.status_code}")
        return resp.text

    # -------------------- Queries --------------------

    async def query(
        self,
        name: str,
        params: Optional[Mapping[str, Any]] = None,
        model: Optional[Type[M]] = None,
    ) -> Union[Dict[str, Any], M]:
        """Run a named operation, refreshing the guest token once if it was rejected."""
        if self.catalog is None:
            raise SpaceRecError("client is not initialized")
        op = self.catalog.require(name)
        url = GRAPHQL_URL.format(query_id=op.query_id, name=op.name)
        encoded = encode_query_params(params or {})

        used_token = self.credentials.credentials.guest_token
        try:
            body = await self._execute(url, encoded)
        except QueryError as e:
            if not e.is_bad_guest_token:
                raise
            logger.info(f"{name}: guest token rejected, refreshing")
            await self.credentials.refresh(used_token)
            body = await self._execute(url, encoded)

        if model is None:
            return body
        try:
            return model.model_validate(body)
        except ValidationError as e:
            raise DecodeError(f"{name}: unexpected response shape: {e}") from e

    async def _execute(self, url: str, params: Mapping[str, str]) -> Dict[str, Any]:
        resp = await self._get(url, params)
        try:
            doc = resp.json()
        except ValueError:
            doc = None
        if not isinstance(doc, dict):
            if resp.status_code >= 400:
                raise QueryError([], resp.status_code, _status_line(resp))
            raise DecodeError(f"response is not a JSON object: {url}")

        errors, data = split_errors(doc)
        if resp.status_code == 200 and not errors:
            return data
        if errors or resp.status_code // 100 in (4, 5):
            raise QueryError(errors, resp.status_code, _status_line(resp), data)
        return data

    async def _get(self, url: str, params: Optional[Mapping[str, str]] = None) -> httpx.Response:
        try:
            return await self.http.get(url, params=params, headers=self.credentials.credentials.headers())
        except httpx.HTTPError as e:
            raise TransportError(f"GET {url} failed: {e}") from e

    async def fetch_stream_location(self, media_key: str) -> str:
        url = LIVE_STREAM_URL.format(media_key=media_key)
        params = {
            "client": "web",
            "use_syndication_guest_id": "false",
            "cookie_set_host": "twitter.com",
        }
        resp = await self._get(url, params)
        if resp.status_code >= 400:
            raise TransportError(f"GET {url} failed: HTTP {resp.status_code}")
        try:
            stream = LiveVideoStreamResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise DecodeError(f"stream response not decodable: {e}") from e
        if not stream.source.location:
            raise DecodeError(f"stream location missing for media key {media_key}")
        return stream.source.location

    # -------------------- Broadcast helpers --------------------

    async def audio_space_by_id(self, space_id: str) -> AudioSpaceResponse:
        params = {
            "variables": {"id": space_id, **AUDIO_SPACE_VARIABLES},
            "features": AUDIO_SPACE_FEATURES,
        }
        return await self.query(AUDIO_SPACE_BY_ID, params, model=AudioSpaceResponse)

    async def broadcast_state(self, space_id: str) -> BroadcastState:
        resp = await self.audio_space_by_id(space_id)
        return resp.metadata.broadcast_state
