from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Stored and sent over the wire with camelCase keys, accepts either form."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class RoomMetadata(CamelModel):
    name: str
    host_id: str
    is_public: bool = True
    max_participants: int = 10
    created_at: datetime = Field(default_factory=utcnow)


class PlaybackState(CamelModel):
    media_url: str = ""
    media_type: str = ""
    is_playing: bool = False
    current_time: float = 0.0
    playback_speed: float = 1.0
    last_updated_by: str
    last_updated: datetime = Field(default_factory=utcnow)


class PlaybackUpdate(CamelModel):
    """Partial playback change, fields left out keep their current value."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    media_url: Optional[str] = None
    media_type: Optional[str] = None
    is_playing: Optional[bool] = None
    current_time: Optional[float] = Field(default=None, ge=0)
    playback_speed: Optional[float] = Field(default=None, gt=0, le=16)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)
