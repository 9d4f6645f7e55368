"""
Room Synchronization Engine

Business rules for rooms: create, join, leave, playback updates, host
migration and the per-connection lifecycle. All state lives behind the
repository; every operation is a plain read-modify-write sequence against the
store, so concurrent callers may interleave. Checks such as "room is full"
are advisory and readers tolerate keys vanishing at any point.
"""

import uuid
from dataclasses import dataclass
from typing import List, Optional

from watchparty.config import settings
from watchparty.exceptions import (
    AlreadyMemberException,
    HostUpdateFailedException,
    NotAMemberException,
    PlaybackStateNotFoundException,
    RoomFullException,
    RoomNotFoundException,
)
from watchparty.models.room import PlaybackState, PlaybackUpdate, RoomMetadata, utcnow
from watchparty.schemas.room import RoomDetailResponse, RoomListItem, RoomResponse
from watchparty.schemas.ws import (
    Delivery,
    DeliveryMode,
    HeartbeatMessage,
    HostChangedMessage,
    HostChangedPayload,
    IncomingMessage,
    OutgoingMessage,
    PlaybackUpdatedMessage,
    SyncFullStateMessage,
    SyncRequestMessage,
    UpdatePlaybackMessage,
    UserJoinedMessage,
    UserLeftMessage,
    UserPresencePayload,
)
from watchparty.services.room_repository import RoomRepository
from watchparty.utils.logging_config import room_logger


@dataclass
class LeaveResult:
    room_deleted: bool
    member_count: int


class RoomService:
    def __init__(self, repo: RoomRepository):
        self.repo = repo

    # ==================== Rooms ====================

    async def create_room(
        self,
        host_id: str,
        name: str,
        media_url: str = "",
        media_type: str = "",
        is_playing: bool = False,
        is_public: bool = True,
        max_participants: int = None,
    ) -> RoomResponse:
        room_id = str(uuid.uuid4())
        if max_participants is None:
            max_participants = settings.DEFAULT_MAX_PARTICIPANTS
        max_participants = max(settings.MIN_PARTICIPANTS, min(max_participants, settings.MAX_PARTICIPANTS))

        metadata = RoomMetadata(
            name=name,
            host_id=host_id,
            is_public=is_public,
            max_participants=max_participants,
        )
        await self.repo.create_metadata(room_id, metadata)
        await self.repo.add_member(room_id, host_id)

        initial_state = PlaybackState(
            media_url=media_url,
            media_type=media_type,
            is_playing=is_playing,
            current_time=0.0,
            playback_speed=1.0,
            last_updated_by=host_id,
        )
        await self.repo.create_playback_state(room_id, initial_state)

        room_logger.info(
            "Room created",
            extra={
                "room_id": room_id,
                "room_name": name,
                "host_id": host_id,
                "max_participants": max_participants
            }
        )
        return RoomResponse.from_metadata(room_id, metadata)

    async def get_room_details(self, room_id: str) -> RoomDetailResponse:
        metadata = await self.repo.get_metadata(room_id)
        if metadata is None:
            raise RoomNotFoundException(room_id)

        members = await self.repo.get_members(room_id)
        playback_state = await self.repo.get_playback_state(room_id)
        return RoomDetailResponse.from_metadata(
            room_id, metadata, members=members, playback_state=playback_state
        )

    async def list_active_rooms(self) -> List[RoomListItem]:
        """Every live room; ids whose metadata expired are pruned on the way."""
        rooms = []
        for room_id in await self.repo.get_active_rooms():
            metadata = await self.repo.get_metadata(room_id)
            if metadata is None:
                continue
            member_count = await self.repo.get_member_count(room_id)
            rooms.append(RoomListItem.from_metadata(room_id, metadata, current_members=member_count))
        return rooms

    async def get_playback_state(self, room_id: str) -> PlaybackState:
        state = await self.repo.get_playback_state(room_id)
        if state is None:
            raise PlaybackStateNotFoundException()
        return state

    # ==================== Membership ====================

    async def join_room(self, room_id: str, user_id: str) -> int:
        """Append user to the membership list and return the new member count."""
        metadata = await self.repo.get_metadata(room_id)
        if metadata is None:
            raise RoomNotFoundException(room_id)

        if await self.repo.is_member(room_id, user_id):
            room_logger.debug("User already in room", extra={"room_id": room_id, "user_id": user_id})
            raise AlreadyMemberException()

        current_members = await self.repo.get_member_count(room_id)
        if current_members >= metadata.max_participants:
            room_logger.warning(
                "Room is full",
                extra={
                    "room_id": room_id,
                    "user_id": user_id,
                    "max_participants": metadata.max_participants
                }
            )
            raise RoomFullException(metadata.max_participants)

        await self.repo.add_member(room_id, user_id)
        room_logger.info("User joined room", extra={"room_id": room_id, "user_id": user_id})
        return current_members + 1

    async def leave_room(self, room_id: str, user_id: str) -> LeaveResult:
        if not await self.repo.is_member(room_id, user_id):
            raise NotAMemberException()

        await self.repo.remove_member(room_id, user_id)

        remaining = await self.repo.get_member_count(room_id)
        if remaining == 0:
            await self.repo.delete_room(room_id)
            room_logger.info("Last member left, room deleted", extra={"room_id": room_id, "user_id": user_id})
            return LeaveResult(room_deleted=True, member_count=0)

        room_logger.info(
            "User left room",
            extra={"room_id": room_id, "user_id": user_id, "member_count": remaining}
        )
        return LeaveResult(room_deleted=False, member_count=remaining)

    async def migrate_host(self, room_id: str, departing_user_id: str) -> Optional[str]:
        """
        Hand the host role to the oldest remaining member if the departing user
        held it. Returns the new host id, or None when no migration was needed.
        """
        metadata = await self.repo.get_metadata(room_id)
        if metadata is None or metadata.host_id != departing_user_id:
            return None

        members = await self.repo.get_members(room_id)
        if not members:
            return None

        new_host_id = members[0]
        if not await self.repo.update_host(room_id, new_host_id):
            raise HostUpdateFailedException(room_id, new_host_id)

        room_logger.info(
            "Host migrated",
            extra={"room_id": room_id, "previous_host_id": departing_user_id, "new_host_id": new_host_id}
        )
        return new_host_id

    # ==================== Playback ====================

    async def update_playback(self, room_id: str, user_id: str, updates: PlaybackUpdate) -> PlaybackState:
        if not await self.repo.is_member(room_id, user_id):
            raise NotAMemberException()

        current = await self.repo.get_playback_state(room_id)
        if current is None:
            raise PlaybackStateNotFoundException()

        new_state = current.model_copy(
            update={**updates.changes(), "last_updated_by": user_id, "last_updated": utcnow()}
        )
        await self.repo.update_playback_state(room_id, new_state)
        return new_state

    # ==================== Connection lifecycle ====================

    async def handle_user_connection(self, room_id: str, user_id: str, connection_id: str) -> UserJoinedMessage:
        """
        Register a freshly opened connection. The first connection of a user
        makes them a member; extra tabs or devices only add to the connection set.

        Raises:
            RoomNotFoundException: room metadata is absent
            RoomFullException: user is new and the room is at capacity
        """
        if await self.repo.get_metadata(room_id) is None:
            raise RoomNotFoundException(room_id)

        joined_here = False
        if not await self.repo.is_member(room_id, user_id):
            await self.join_room(room_id, user_id)
            joined_here = True
        else:
            await self.repo.refresh_room_ttl(room_id)

        try:
            await self.repo.add_connection(room_id, user_id, connection_id)
        except Exception:
            # A member always has at least one registered connection
            if joined_here:
                await self._undo_join(room_id, user_id)
            raise

        member_count = await self.repo.get_member_count(room_id)

        room_logger.info(
            "Connection registered",
            extra={"room_id": room_id, "user_id": user_id, "connection_id": connection_id}
        )
        return UserJoinedMessage(payload=UserPresencePayload(user_id=user_id, member_count=member_count))

    async def _undo_join(self, room_id: str, user_id: str):
        try:
            await self.leave_room(room_id, user_id)
        except Exception as e:
            room_logger.error(
                "Failed to roll back membership",
                extra={"room_id": room_id, "user_id": user_id, "error": str(e), "error_type": type(e).__name__}
            )
        else:
            room_logger.info("Membership rolled back", extra={"room_id": room_id, "user_id": user_id})

    async def handle_user_message(self, room_id: str, user_id: str, message: IncomingMessage) -> Optional[Delivery]:
        if isinstance(message, UpdatePlaybackMessage):
            new_state = await self.update_playback(room_id, user_id, message.payload)
            return Delivery(
                action=DeliveryMode.PUBLISH,
                message=PlaybackUpdatedMessage(payload=new_state),
            )

        if isinstance(message, SyncRequestMessage):
            details = await self.get_room_details(room_id)
            return Delivery(
                action=DeliveryMode.SEND,
                message=SyncFullStateMessage(payload=details),
            )

        if isinstance(message, HeartbeatMessage):
            await self.repo.refresh_room_ttl(room_id)
            await self.repo.refresh_connection_ttl(room_id, user_id)
            return None

        raise TypeError(f"Unsupported message: {type(message).__name__}")

    async def handle_user_disconnection(self, room_id: str, user_id: str, connection_id: str) -> List[OutgoingMessage]:
        """
        Drop a closed connection. When it was the user's last one the user
        leaves the room, and if they were host the role moves to the oldest
        remaining member. Events come back in delivery order: USER_LEFT, then
        HOST_CHANGED.
        """
        await self.repo.remove_connection(room_id, user_id, connection_id)

        events: List[OutgoingMessage] = []
        if await self.repo.has_active_connections(room_id, user_id):
            return events

        result = await self.leave_room(room_id, user_id)
        events.append(UserLeftMessage(payload=UserPresencePayload(user_id=user_id, member_count=result.member_count)))

        if result.member_count > 0:
            try:
                new_host_id = await self.migrate_host(room_id, user_id)
            except HostUpdateFailedException as e:
                room_logger.warning("Host migration failed", extra={"room_id": room_id, **e.details})
                return events
            if new_host_id:
                events.append(HostChangedMessage(payload=HostChangedPayload(new_host_id=new_host_id)))

        return events
