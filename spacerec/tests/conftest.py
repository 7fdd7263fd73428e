import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

# Ensure repo root on path so 'spacerec' package resolves when tests run from anywhere
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

import httpx
import pytest


MAIN_JS_URL = "https://abs.twimg.com/responsive-web/client-web/main.abc123.js"
API_JS_URL = "https://abs.twimg.com/responsive-web/client-web/api.def456a.js"
BEARER = "AAAAAAAAAAAAAAAAAAAAANRILgAAAAAAnNwIzUejRCOuH5E6I8xnZz4puTs%3D1Zv7ttfk8LF81IUq16cHjhLTvJu4FA33AGWWjCpTnA"
PLAYLIST_URL = "https://media.example.com/hls/abc/playlist.m3u8"
SEGMENT_BASE = "https://media.example.com/hls/abc/"

INDEX_HTML = (
    f'<html><head><link rel="preload" href="{MAIN_JS_URL}" as="script">'
    '<script>window.__SCRIPTS__={api:"def456",bundle:"x"}</script></head></html>'
)
MAIN_JS = (
    f'var a="{BEARER}";'
    'n.exports={queryId:"qid-space",operationName:"AudioSpaceById",operationType:"query",'
    'metadata:{featureSwitches:["spaces_2022_h2_clipping"],fieldToggles:[]}};'
)
API_JS = 'e.exports={queryId:"qid-user",operationName:"UserByScreenName",operationType:"query"};'


def media_playlist(first_seq: int, names: List[str], ended: bool = False) -> str:
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        "#EXT-X-TARGETDURATION:3",
        f"#EXT-X-MEDIA-SEQUENCE:{first_seq}",
    ]
    for n in names:
        lines += ["#EXTINF:3.0,", n]
    if ended:
        lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


MASTER_PLAYLIST = "#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=128000,CODECS=\"mp4a.40.2\"\nlow/playlist.m3u8\n"


class FakePlatform:
    """In-memory stand-in for the landing page, bundles, API and HLS origin."""

    def __init__(self) -> None:
        self.index_html = INDEX_HTML
        self.main_js = MAIN_JS
        self.api_js = API_JS
        self.activations = 0
        self.fail_activation = False
        self.rejected_tokens: set = set()
        self.reject_all_tokens = False
        self.graphql_requests: List[httpx.Request] = []
        self.space_states: List[str] = ["Running"]
        self.stream_location = PLAYLIST_URL
        self.playlists: List[Optional[str]] = [media_playlist(0, [])]
        self.playlist_requests = 0
        self.segment_requests: Dict[str, int] = {}
        self.failing_segments: set = set()

    # -------------------- responses --------------------

    def audio_space_body(self) -> dict:
        state = self.space_states.pop(0) if len(self.space_states) > 1 else self.space_states[0]
        return {
            "data": {
                "audioSpace": {
                    "metadata": {
                        "rest_id": "1OdKrBnaEPXKX",
                        "state": state,
                        "title": "Morning show",
                        "media_key": "28_1700000000",
                        "started_at": 1700000000000,
                        "total_live_listeners": 12,
                        "creator_results": {"result": {"rest_id": "42"}},
                    },
                    "participants": {
                        "total": 2,
                        "admins": [
                            {"display_name": "Guest", "twitter_screen_name": "guest", "user_results": {"rest_id": "7"}},
                            {"display_name": "Host", "twitter_screen_name": "host", "user_results": {"rest_id": "42"}},
                        ],
                        "speakers": [],
                    },
                }
            }
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        path = request.url.path
        host = request.url.host

        if url == "https://twitter.com/":
            return httpx.Response(200, text=self.index_html)
        if url == MAIN_JS_URL:
            return httpx.Response(200, text=self.main_js)
        if url == API_JS_URL:
            return httpx.Response(200, text=self.api_js)

        if host == "api.twitter.com" and path == "/1.1/guest/activate.json":
            assert request.method == "POST"
            assert request.headers["Authorization"] == f"Bearer {BEARER}"
            if self.fail_activation:
                return httpx.Response(503, json={"errors": [{"message": "Over capacity"}]})
            self.activations += 1
            return httpx.Response(200, json={"guest_token": f"gt-{self.activations}"})

        if host == "api.twitter.com" and path.startswith("/graphql/"):
            self.graphql_requests.append(request)
            token = request.headers.get("X-Guest-Token", "")
            if self.reject_all_tokens or token in self.rejected_tokens:
                return httpx.Response(
                    403,
                    json={"errors": [{"message": "Bad guest token", "extensions": {"classification": "Unauthorized"}}]},
                )
            return httpx.Response(200, json=self.audio_space_body())

        if path.startswith("/i/api/1.1/live_video_stream/status/"):
            return httpx.Response(200, json={"source": {"location": self.stream_location, "status": "LIVE_PUBLIC"}})

        if url.split("?")[0] == PLAYLIST_URL:
            self.playlist_requests += 1
            body = self.playlists.pop(0) if len(self.playlists) > 1 else self.playlists[0]
            if body is None:
                return httpx.Response(500, text="origin error")
            return httpx.Response(200, text=body)

        if url.startswith(SEGMENT_BASE):
            name = url[len(SEGMENT_BASE):]
            self.segment_requests[name] = self.segment_requests.get(name, 0) + 1
            if name in self.failing_segments:
                return httpx.Response(404)
            return httpx.Response(200, content=f"audio:{name}".encode())

        return httpx.Response(404, text=f"unexpected request: {request.method} {url}")


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def http(platform: FakePlatform) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(platform.handler))


def graphql_params(request: httpx.Request) -> dict:
    return {k: json.loads(v) for k, v in request.url.params.items()}
