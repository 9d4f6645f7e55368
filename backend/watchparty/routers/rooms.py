"""
Rooms Router

HTTP side of the room engine: list, create and inspect rooms. Joining and
leaving happen over the WebSocket connection only.
"""
from fastapi import APIRouter, status
from watchparty.config import settings
from watchparty.models.room import PlaybackState
from watchparty.routers.deps import CurrentUserId, RoomServiceDep
from watchparty.schemas.room import RoomCreate, RoomDetailResponse, RoomListItem, RoomResponse
from watchparty.utils.logging_config import room_logger

router = APIRouter(prefix=f"{settings.API_PREFIX}/rooms", tags=["Rooms"])


@router.get("", response_model=list[RoomListItem])
async def list_rooms(current_user_id: CurrentUserId, room_service: RoomServiceDep):
    """All active rooms with their current member count"""
    return await room_service.list_active_rooms()


@router.post("", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(room_data: RoomCreate, current_user_id: CurrentUserId, room_service: RoomServiceDep):
    """Create a room, the caller becomes host and first member"""
    room = await room_service.create_room(
        host_id=current_user_id,
        name=room_data.name,
        media_url=room_data.media_url,
        media_type=room_data.media_type,
        is_playing=room_data.is_playing,
        is_public=room_data.is_public,
        max_participants=room_data.max_participants,
    )

    room_logger.info(
        "Room creation request completed",
        extra={"room_id": room.room_id, "host_id": current_user_id}
    )
    return room


@router.get("/{room_id}", response_model=RoomDetailResponse)
async def get_room(room_id: str, current_user_id: CurrentUserId, room_service: RoomServiceDep):
    """Room metadata, members and playback state"""
    return await room_service.get_room_details(room_id)


@router.get("/{room_id}/playback", response_model=PlaybackState)
async def get_playback(room_id: str, current_user_id: CurrentUserId, room_service: RoomServiceDep):
    """Current playback state of a room"""
    return await room_service.get_playback_state(room_id)
