from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class GraphQLErrorItem(BaseModel):
    message: str = ""
    locations: List[Dict[str, Any]] = Field(default_factory=list)
    extensions: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}

    @property
    def classification(self) -> str:
        return str(self.extensions.get("classification", ""))


class BroadcastState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    ENDED = "ended"
    UNAVAILABLE = "unavailable"

    @classmethod
    def from_api(cls, state: Optional[str]) -> "BroadcastState":
        return _STATE_MAP.get(state or "", cls.UNAVAILABLE)


_STATE_MAP = {
    "Running": BroadcastState.RUNNING,
    "NotStarted": BroadcastState.PENDING,
    "PrePublished": BroadcastState.PENDING,
    "Ended": BroadcastState.ENDED,
    "TimedOut": BroadcastState.ENDED,
    "Canceled": BroadcastState.ENDED,
}


class UserResults(BaseModel):
    rest_id: str = ""


class User(BaseModel):
    periscope_user_id: str = ""
    start: int = 0
    twitter_screen_name: str = ""
    display_name: str = ""
    avatar_url: str = ""
    is_verified: bool = False
    user_results: UserResults = Field(default_factory=UserResults)


class CreatorResult(BaseModel):
    rest_id: str = ""


class CreatorResults(BaseModel):
    result: CreatorResult = Field(default_factory=CreatorResult)


class SpaceMetadata(BaseModel):
    rest_id: str = ""
    state: str = ""
    title: str = ""
    media_key: str = ""
    created_at: int = 0
    started_at: int = 0
    ended_at: Optional[Any] = None
    updated_at: int = 0
    is_space_available_for_replay: bool = False
    total_live_listeners: int = 0
    creator_results: CreatorResults = Field(default_factory=CreatorResults)

    @property
    def broadcast_state(self) -> BroadcastState:
        return BroadcastState.from_api(self.state)


class Participants(BaseModel):
    total: int = 0
    admins: List[User] = Field(default_factory=list)
    speakers: List[User] = Field(default_factory=list)


class AudioSpace(BaseModel):
    metadata: SpaceMetadata = Field(default_factory=SpaceMetadata)
    participants: Participants = Field(default_factory=Participants)


class AudioSpaceData(BaseModel):
    audio_space: AudioSpace = Field(default_factory=AudioSpace, alias="audioSpace")


class AudioSpaceResponse(BaseModel):
    data: AudioSpaceData = Field(default_factory=AudioSpaceData)

    @property
    def metadata(self) -> SpaceMetadata:
        return self.data.audio_space.metadata

    def owner_user(self) -> Optional[User]:
        owner_id = self.metadata.creator_results.result.rest_id
        for u in self.data.audio_space.participants.admins:
            if u.user_results.rest_id == owner_id:
                return u
        return None


class LiveVideoStreamSource(BaseModel):
    location: str = ""
    no_redirect_playback_url: str = Field(default="", alias="noRedirectPlaybackUrl")
    status: str = ""
    stream_type: str = Field(default="", alias="streamType")


class LiveVideoStreamResponse(BaseModel):
    source: LiveVideoStreamSource = Field(default_factory=LiveVideoStreamSource)
    session_id: str = Field(default="", alias="sessionId")
    share_url: str = Field(default="", alias="shareUrl")
