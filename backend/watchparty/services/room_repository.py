"""
Room Repository

Translates room concepts into store keys. Reads report absence as None or an
empty value; deciding whether absence is an error is the service's job.
"""

from typing import List, Optional

from pydantic import ValidationError

from watchparty.config import settings
from watchparty.models.room import PlaybackState, RoomMetadata
from watchparty.services.store import RoomStore
from watchparty.utils.logging_config import get_logger

logger = get_logger(__name__)

# Key layout
ROOM_KEY_PREFIX = "room:"
ACTIVE_ROOMS_KEY = "active_rooms"


class RoomRepository:
    def __init__(self, store: RoomStore, ttl: int = None, key_prefix: str = None):
        self.store = store
        self.ttl = ttl or settings.ROOM_TTL_SECONDS
        self.key_prefix = settings.REDIS_KEY_PREFIX if key_prefix is None else key_prefix

    # ==================== Keys ====================

    def _room_key(self, room_id: str) -> str:
        return f"{self.key_prefix}{ROOM_KEY_PREFIX}{room_id}"

    def metadata_key(self, room_id: str) -> str:
        return f"{self._room_key(room_id)}:metadata"

    def members_key(self, room_id: str) -> str:
        return f"{self._room_key(room_id)}:members"

    def playback_key(self, room_id: str) -> str:
        return f"{self._room_key(room_id)}:playback"

    def connections_prefix(self, room_id: str) -> str:
        return f"{self._room_key(room_id)}:connections:"

    def connections_key(self, room_id: str, user_id: str) -> str:
        return f"{self.connections_prefix(room_id)}{user_id}"

    @property
    def active_rooms_key(self) -> str:
        return f"{self.key_prefix}{ACTIVE_ROOMS_KEY}"

    # ==================== TTL ====================

    async def refresh_room_ttl(self, room_id: str) -> None:
        """Renew metadata, membership and playback expiry together."""
        await self.store.expire_many(
            [self.metadata_key(room_id), self.members_key(room_id), self.playback_key(room_id)],
            self.ttl,
        )

    # ==================== Metadata ====================

    async def create_metadata(self, room_id: str, metadata: RoomMetadata) -> None:
        await self.store.set(self.metadata_key(room_id), metadata.to_json(), self.ttl)
        await self.store.sadd(self.active_rooms_key, room_id)

    async def get_metadata(self, room_id: str) -> Optional[RoomMetadata]:
        data = await self.store.get(self.metadata_key(room_id))
        if not data:
            # Expired or deleted, keep the index honest
            await self.store.srem(self.active_rooms_key, room_id)
            return None
        try:
            return RoomMetadata.model_validate_json(data)
        except ValidationError as e:
            logger.error("Corrupt room metadata", extra={"room_id": room_id, "error": str(e)})
            await self.store.srem(self.active_rooms_key, room_id)
            return None

    async def delete_metadata(self, room_id: str) -> None:
        await self.store.delete(self.metadata_key(room_id))
        await self.store.srem(self.active_rooms_key, room_id)

    async def update_host(self, room_id: str, new_host_id: str) -> bool:
        """Rewrite metadata with a new host. False when the metadata is gone."""
        metadata = await self.get_metadata(room_id)
        if metadata is None:
            return False
        metadata.host_id = new_host_id
        await self.create_metadata(room_id, metadata)
        return True

    # ==================== Membership ====================

    async def add_member(self, room_id: str, user_id: str) -> None:
        await self.store.rpush(self.members_key(room_id), user_id)
        await self.refresh_room_ttl(room_id)

    async def remove_member(self, room_id: str, user_id: str) -> None:
        await self.store.lrem(self.members_key(room_id), user_id)
        await self.refresh_room_ttl(room_id)

    async def get_members(self, room_id: str) -> List[str]:
        return await self.store.lrange(self.members_key(room_id))

    async def get_member_count(self, room_id: str) -> int:
        return await self.store.llen(self.members_key(room_id))

    async def is_member(self, room_id: str, user_id: str) -> bool:
        return user_id in await self.get_members(room_id)

    # ==================== Playback ====================

    async def create_playback_state(self, room_id: str, state: PlaybackState) -> None:
        await self.store.set(self.playback_key(room_id), state.to_json(), self.ttl)

    async def get_playback_state(self, room_id: str) -> Optional[PlaybackState]:
        data = await self.store.get(self.playback_key(room_id))
        if not data:
            return None
        try:
            return PlaybackState.model_validate_json(data)
        except ValidationError as e:
            logger.error("Corrupt playback state", extra={"room_id": room_id, "error": str(e)})
            return None

    async def update_playback_state(self, room_id: str, state: PlaybackState) -> None:
        await self.store.set(self.playback_key(room_id), state.to_json(), self.ttl)
        await self.refresh_room_ttl(room_id)

    async def delete_playback_state(self, room_id: str) -> None:
        await self.store.delete(self.playback_key(room_id))

    # ==================== Connections ====================

    async def add_connection(self, room_id: str, user_id: str, connection_id: str) -> None:
        key = self.connections_key(room_id, user_id)
        await self.store.sadd(key, connection_id)
        await self.store.expire(key, self.ttl)

    async def remove_connection(self, room_id: str, user_id: str, connection_id: str) -> None:
        key = self.connections_key(room_id, user_id)
        await self.store.srem(key, connection_id)
        # Do not leak empty sets
        if await self.store.scard(key) == 0:
            await self.store.delete(key)

    async def has_active_connections(self, room_id: str, user_id: str) -> bool:
        return await self.store.scard(self.connections_key(room_id, user_id)) > 0

    async def refresh_connection_ttl(self, room_id: str, user_id: str) -> bool:
        return await self.store.expire(self.connections_key(room_id, user_id), self.ttl)

    # ==================== Rooms ====================

    async def get_active_rooms(self) -> List[str]:
        return sorted(await self.store.smembers(self.active_rooms_key))

    async def delete_room(self, room_id: str) -> None:
        """Cascade delete every key that belongs to the room."""
        await self.delete_metadata(room_id)
        await self.store.delete(self.members_key(room_id))
        await self.delete_playback_state(room_id)

        connection_keys = await self.store.keys(self.connections_prefix(room_id))
        if connection_keys:
            await self.store.delete(*connection_keys)
