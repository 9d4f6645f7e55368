"""
Custom Exception Classes for the Watch Party backend

Every error the room engine can signal is an AppException subclass carrying
a stable ErrorCode, so HTTP handlers and the WebSocket adapter can render
them the same way.
"""

from typing import Any, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes used in every error response"""

    # Authentication (AUTH_xxx)
    INVALID_TOKEN = "AUTH_001"
    MISSING_TOKEN = "AUTH_003"

    # Room & membership (ROOM_xxx)
    ROOM_NOT_FOUND = "ROOM_001"
    ROOM_FULL = "ROOM_003"
    ALREADY_IN_ROOM = "ROOM_006"
    NOT_IN_ROOM = "ROOM_007"
    PLAYBACK_STATE_NOT_FOUND = "ROOM_010"
    HOST_UPDATE_FAILED = "ROOM_011"

    # WebSocket (WS_xxx)
    WS_INVALID_MESSAGE = "WS_002"
    WS_UNAUTHORIZED = "WS_003"

    # Validation (VAL_xxx)
    VALIDATION_ERROR = "VAL_001"

    # State store (STORE_xxx)
    STORE_UNAVAILABLE = "STORE_001"
    STORE_WRONG_TYPE = "STORE_002"

    # General (GEN_xxx)
    NOT_FOUND = "GEN_004"
    INTERNAL_SERVER_ERROR = "GEN_001"


class AppException(Exception):
    """
    Base exception class for all application errors.

    Attributes:
        message: Message shown to the client
        code: ErrorCode value
        status_code: HTTP status code
        details: Optional extra details
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Render the exception as an API error body"""
        result = {
            "error": self.code.value,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            result["details"] = self.details
        return result


# ==================== Authentication Exceptions ====================

class AuthenticationException(AppException):
    """Generic authentication failure"""

    def __init__(
        self,
        message: str = "Invalid or expired token",
        code: ErrorCode = ErrorCode.INVALID_TOKEN,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code, 401, details)


class MissingTokenException(AuthenticationException):
    """No token in header, cookie or query string"""

    def __init__(self, message: str = "Missing authentication token"):
        super().__init__(message, ErrorCode.MISSING_TOKEN)


# ==================== Room Exceptions ====================

class RoomException(AppException):
    """Generic room error"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.ROOM_NOT_FOUND,
        status_code: int = 404,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code, status_code, details)


class RoomNotFoundException(RoomException):
    """Room metadata is absent (never created, expired or deleted)"""

    def __init__(self, room_id: Optional[str] = None):
        super().__init__(
            "Room not found",
            ErrorCode.ROOM_NOT_FOUND,
            404,
            {"room_id": room_id} if room_id else None,
        )


class RoomFullException(RoomException):
    """Room already holds maxParticipants members"""

    def __init__(self, max_participants: Optional[int] = None):
        super().__init__(
            "Room is full",
            ErrorCode.ROOM_FULL,
            409,
            {"max_participants": max_participants} if max_participants is not None else None,
        )


class AlreadyMemberException(RoomException):
    """User is already in the membership list"""

    def __init__(self, message: str = "You are already in this room"):
        super().__init__(message, ErrorCode.ALREADY_IN_ROOM, 409)


class NotAMemberException(RoomException):
    """User is not in the membership list"""

    def __init__(self, message: str = "You are not in this room"):
        super().__init__(message, ErrorCode.NOT_IN_ROOM, 403)


class PlaybackStateNotFoundException(RoomException):
    """Playback state vanished, usually because the room is being torn down"""

    def __init__(self, message: str = "Playback state not found"):
        super().__init__(message, ErrorCode.PLAYBACK_STATE_NOT_FOUND, 404)


class HostUpdateFailedException(RoomException):
    """Metadata disappeared while the host was being migrated"""

    def __init__(self, room_id: Optional[str] = None, new_host_id: Optional[str] = None):
        details = {}
        if room_id:
            details["room_id"] = room_id
        if new_host_id:
            details["new_host_id"] = new_host_id
        super().__init__("Failed to update room host", ErrorCode.HOST_UPDATE_FAILED, 409, details)


# ==================== WebSocket Exceptions ====================

class WebSocketInvalidMessageException(AppException):
    """Inbound frame could not be decoded into a known message"""

    def __init__(self, reason: str = "Invalid message format"):
        super().__init__(
            f"Invalid message: {reason}",
            ErrorCode.WS_INVALID_MESSAGE,
            400,
            {"reason": reason},
        )


# ==================== Store Exceptions ====================

class StoreException(AppException):
    """Generic state store error"""

    def __init__(
        self,
        message: str = "State store error",
        code: ErrorCode = ErrorCode.STORE_UNAVAILABLE,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code, 503, details)


class StoreUnavailableException(StoreException):
    """The backing store could not be reached or timed out"""

    def __init__(self, operation: str, reason: str = "Unknown"):
        super().__init__(
            "State store unavailable",
            ErrorCode.STORE_UNAVAILABLE,
            {"operation": operation, "reason": reason},
        )


class StoreWrongTypeException(StoreException):
    """Operation against a key holding a different kind of value"""

    def __init__(self, key: str, expected: str):
        super().__init__(
            f"Key holds the wrong kind of value, expected {expected}",
            ErrorCode.STORE_WRONG_TYPE,
            {"key": key, "expected": expected},
        )
        self.status_code = 500
