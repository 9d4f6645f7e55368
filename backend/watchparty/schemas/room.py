from datetime import datetime
from typing import Optional
from pydantic import Field
from watchparty.models.room import CamelModel, PlaybackState, RoomMetadata


class RoomCreate(CamelModel):
    name: str = Field(..., min_length=3, max_length=100)
    media_url: str = ""
    media_type: str = ""
    is_playing: bool = False
    is_public: bool = True
    max_participants: int = Field(default=10, ge=2, le=50)


class RoomResponse(CamelModel):
    room_id: str
    name: str
    host_id: str
    is_public: bool
    max_participants: int
    created_at: datetime

    @classmethod
    def from_metadata(cls, room_id: str, metadata: RoomMetadata, **extra) -> "RoomResponse":
        return cls(room_id=room_id, **metadata.model_dump(), **extra)


class RoomListItem(RoomResponse):
    current_members: int = 0


class RoomDetailResponse(RoomResponse):
    """Full room snapshot, also the payload of SYNC_FULL_STATE."""

    members: list[str] = []
    playback_state: Optional[PlaybackState] = None
