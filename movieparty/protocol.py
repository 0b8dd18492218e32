"""
WebSocket message protocol definitions.

Inbound frames are JSON objects tagged by ``type``. Each kind is a pydantic
model; ``parse_message`` validates a raw frame into exactly one of them.
Outbound events are plain dicts built by ``event()``.
"""
import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import MalformedMessageError, UnknownMessageError


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Join(_Inbound):
    type: Literal["join"] = "join"
    room_id: str = Field(..., alias="roomId", min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=64)
    is_host: bool = Field(default=False, alias="isHost")


class Signal(_Inbound):
    """Opaque negotiation payload, relayed verbatim"""

    type: Literal["signal"] = "signal"
    to: Optional[str] = None
    signal: Any = None


class MicStatus(_Inbound):
    type: Literal["mic-status"] = "mic-status"
    muted: bool


class MoviePlay(_Inbound):
    type: Literal["movie-play"] = "movie-play"
    current_time: Optional[float] = Field(default=None, alias="currentTime")


class MoviePause(_Inbound):
    type: Literal["movie-pause"] = "movie-pause"
    current_time: Optional[float] = Field(default=None, alias="currentTime")


class MovieSeek(_Inbound):
    type: Literal["movie-seek"] = "movie-seek"
    current_time: Optional[float] = Field(default=None, alias="currentTime")


class RequestVideoState(_Inbound):
    type: Literal["request-video-state"] = "request-video-state"


class StopMovieParty(_Inbound):
    type: Literal["stop-movie-party"] = "stop-movie-party"
    host: Optional[str] = None


class Emoji(_Inbound):
    type: Literal["emoji"] = "emoji"
    emoji: str = Field(..., min_length=1, max_length=32)


class MovieAudioState(_Inbound):
    type: Literal["movie-audio-state"] = "movie-audio-state"
    is_playing: bool = Field(..., alias="isPlaying")


ClientMessage = Annotated[
    Union[
        Join,
        Signal,
        MicStatus,
        MoviePlay,
        MoviePause,
        MovieSeek,
        RequestVideoState,
        StopMovieParty,
        Emoji,
        MovieAudioState,
    ],
    Field(discriminator="type"),
]

_adapter = TypeAdapter(ClientMessage)

MESSAGE_TYPES = frozenset(
    model.model_fields["type"].default
    for model in (
        Join, Signal, MicStatus, MoviePlay, MoviePause, MovieSeek,
        RequestVideoState, StopMovieParty, Emoji, MovieAudioState,
    )
)


def parse_message(raw: str):
    """Decode one text frame into its message model"""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"invalid json: {e}") from None

    if not isinstance(data, dict):
        raise MalformedMessageError("frame must be a JSON object")

    kind = data.get("type")
    if not isinstance(kind, str) or kind not in MESSAGE_TYPES:
        raise UnknownMessageError(kind)

    try:
        return _adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedMessageError(f"invalid {kind} message: {e.error_count()} error(s)") from None


def event(kind: str, **fields) -> dict:
    """Build an outbound event payload"""
    return {"type": kind, **fields}
