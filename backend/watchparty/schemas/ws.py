"""
WebSocket protocol

Every frame is an envelope ``{"type": ..., "payload": ...}``. Inbound frames
are decoded once, at the transport boundary, into one of a closed set of
message classes; outbound messages are built by the room service and only
serialized by the adapter.
"""

import json
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from watchparty.exceptions import WebSocketInvalidMessageException
from watchparty.models.room import CamelModel, PlaybackState, PlaybackUpdate
from watchparty.schemas.room import RoomDetailResponse


class WsIncomingMessageType(str, Enum):
    UPDATE_PLAYBACK = "UPDATE_PLAYBACK"
    SYNC_REQUEST = "SYNC_REQUEST"
    HEARTBEAT = "HEARTBEAT"


class WsOutgoingMessageType(str, Enum):
    USER_JOINED = "USER_JOINED"
    USER_LEFT = "USER_LEFT"
    HOST_CHANGED = "HOST_CHANGED"
    PLAYBACK_UPDATED = "PLAYBACK_UPDATED"
    SYNC_FULL_STATE = "SYNC_FULL_STATE"
    ERROR = "ERROR"


class DeliveryMode(str, Enum):
    SEND = "send"  # only the originating connection
    PUBLISH = "publish"  # every subscriber of the room


# ==================== Inbound ====================

class UpdatePlaybackMessage(BaseModel):
    type: Literal["UPDATE_PLAYBACK"]
    payload: PlaybackUpdate = Field(default_factory=PlaybackUpdate)


class SyncRequestMessage(BaseModel):
    type: Literal["SYNC_REQUEST"]
    payload: Optional[dict] = None


class HeartbeatMessage(BaseModel):
    type: Literal["HEARTBEAT"]
    payload: Optional[dict] = None


IncomingMessage = Annotated[
    Union[UpdatePlaybackMessage, SyncRequestMessage, HeartbeatMessage],
    Field(discriminator="type"),
]

_incoming_adapter = TypeAdapter(IncomingMessage)


def parse_incoming_message(raw: Union[str, bytes, dict]) -> IncomingMessage:
    """Decode a raw frame, raising WebSocketInvalidMessageException on anything unknown."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise WebSocketInvalidMessageException("frame is not valid JSON")
    if not isinstance(raw, dict):
        raise WebSocketInvalidMessageException("frame must be a JSON object")
    try:
        return _incoming_adapter.validate_python(raw)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise WebSocketInvalidMessageException(f"{location}: {first['msg']}" if location else first["msg"])


# ==================== Outbound ====================

class UserPresencePayload(CamelModel):
    user_id: str
    member_count: int


class HostChangedPayload(CamelModel):
    new_host_id: str


class ErrorPayload(CamelModel):
    message: str
    code: Optional[str] = None


class OutgoingMessage(BaseModel):
    type: WsOutgoingMessageType
    payload: BaseModel

    def to_wire(self) -> dict:
        return {
            "type": self.type.value,
            "payload": self.payload.model_dump(mode="json", by_alias=True),
        }


class UserJoinedMessage(OutgoingMessage):
    type: WsOutgoingMessageType = WsOutgoingMessageType.USER_JOINED
    payload: UserPresencePayload


class UserLeftMessage(OutgoingMessage):
    type: WsOutgoingMessageType = WsOutgoingMessageType.USER_LEFT
    payload: UserPresencePayload


class HostChangedMessage(OutgoingMessage):
    type: WsOutgoingMessageType = WsOutgoingMessageType.HOST_CHANGED
    payload: HostChangedPayload


class PlaybackUpdatedMessage(OutgoingMessage):
    type: WsOutgoingMessageType = WsOutgoingMessageType.PLAYBACK_UPDATED
    payload: PlaybackState


class SyncFullStateMessage(OutgoingMessage):
    type: WsOutgoingMessageType = WsOutgoingMessageType.SYNC_FULL_STATE
    payload: RoomDetailResponse


class ErrorMessage(OutgoingMessage):
    type: WsOutgoingMessageType = WsOutgoingMessageType.ERROR
    payload: ErrorPayload

    @classmethod
    def create(cls, message: str, code: Optional[str] = None) -> "ErrorMessage":
        return cls(payload=ErrorPayload(message=message, code=code))


class Delivery(BaseModel):
    """An outbound message together with who should receive it."""

    action: DeliveryMode
    message: OutgoingMessage
