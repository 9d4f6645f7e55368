from watchparty.schemas.room import RoomCreate, RoomResponse, RoomListItem, RoomDetailResponse

__all__ = ["RoomCreate", "RoomResponse", "RoomListItem", "RoomDetailResponse"]
