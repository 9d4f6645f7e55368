from watchparty.models.room import CamelModel, RoomMetadata, PlaybackState, PlaybackUpdate

__all__ = ["CamelModel", "RoomMetadata", "PlaybackState", "PlaybackUpdate"]
