import asyncio
import uuid
from typing import Dict, Optional, Union
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from watchparty.config import settings
from watchparty.error_handlers import WebSocketErrorHandler
from watchparty.exceptions import AppException, ErrorCode
from watchparty.routers.deps import AUTH_COOKIE_NAME, get_room_service
from watchparty.schemas.ws import Delivery, DeliveryMode, ErrorMessage, OutgoingMessage, parse_incoming_message
from watchparty.services.room_service import RoomService
from watchparty.utils.logging_config import websocket_logger
from watchparty.utils.security import user_id_from_token

router = APIRouter(tags=["WebSocket"])

# Close codes sent when a connection cannot be set up
CLOSE_UNAUTHORIZED = 4001
CLOSE_ROOM_FULL = 4003
CLOSE_ROOM_NOT_FOUND = 4004
CLOSE_INTERNAL_ERROR = 1011

_SETUP_CLOSE_CODES = {
    ErrorCode.ROOM_NOT_FOUND: CLOSE_ROOM_NOT_FOUND,
    ErrorCode.ROOM_FULL: CLOSE_ROOM_FULL,
}


class ConnectionManager:
    """Room broadcast channels of this process: room_id -> {connection_id -> WebSocket}"""

    def __init__(self):
        self.rooms: Dict[str, Dict[str, WebSocket]] = {}

    def subscribe(self, room_id: str, connection_id: str, websocket: WebSocket):
        self.rooms.setdefault(room_id, {})[connection_id] = websocket
        websocket_logger.debug(
            "Connection subscribed",
            extra={"room_id": room_id, "connection_id": connection_id, "subscribers": len(self.rooms[room_id])}
        )

    def unsubscribe(self, room_id: str, connection_id: str) -> bool:
        subscribers = self.rooms.get(room_id)
        if not subscribers or connection_id not in subscribers:
            return False
        del subscribers[connection_id]
        if not subscribers:
            del self.rooms[room_id]
        return True

    def subscriber_count(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, {}))

    async def send_personal(self, message: OutgoingMessage, websocket: WebSocket):
        await websocket.send_json(message.to_wire())

    async def publish(self, room_id: str, message: OutgoingMessage):
        """Send to every subscriber of the room, failed sends are logged and skipped"""
        subscribers = list(self.rooms.get(room_id, {}).items())
        if not subscribers:
            return

        payload = message.to_wire()
        results = await asyncio.gather(
            *(ws.send_json(payload) for _, ws in subscribers),
            return_exceptions=True,
        )

        failed = []
        for (connection_id, _), result in zip(subscribers, results):
            if isinstance(result, Exception):
                failed.append(connection_id)
                WebSocketErrorHandler.log_websocket_error(
                    error=result,
                    room_id=room_id,
                    message_type=message.type.value
                )

        if failed:
            websocket_logger.warning(
                "Failed to send message to some connections in room",
                extra={"room_id": room_id, "failed_connections": failed, "failed_count": len(failed)}
            )


manager = ConnectionManager()


class RoomSocketHandler:
    """
    Maps one physical connection's open, message and close events onto the
    room service and delivers whatever the service hands back.
    """

    def __init__(self, room_service: RoomService, connections: ConnectionManager):
        self.room_service = room_service
        self.connections = connections

    async def on_open(self, websocket: WebSocket, room_id: str, user_id: str, connection_id: str) -> bool:
        """Register the connection. On failure the client gets an ERROR frame and the socket is closed."""
        try:
            joined = await self.room_service.handle_user_connection(room_id, user_id, connection_id)
        except Exception as e:
            self.connections.unsubscribe(room_id, connection_id)
            close_code = CLOSE_INTERNAL_ERROR
            if isinstance(e, AppException):
                close_code = _SETUP_CLOSE_CODES.get(e.code, CLOSE_INTERNAL_ERROR)
                websocket_logger.info(
                    "Connection rejected",
                    extra={"room_id": room_id, "user_id": user_id, "reason": e.message}
                )
            else:
                websocket_logger.opt(exception=e).error(
                    "Connection setup failed",
                    extra={"room_id": room_id, "user_id": user_id}
                )
            error = WebSocketErrorHandler.error_message(e, "Failed to join room")
            await WebSocketErrorHandler.send_error_message(websocket, error)
            await WebSocketErrorHandler.close(websocket, close_code, error.payload.message)
            return False

        self.connections.subscribe(room_id, connection_id, websocket)
        await self.connections.publish(room_id, joined)
        websocket_logger.info(
            "User connected to room",
            extra={"room_id": room_id, "user_id": user_id, "connection_id": connection_id}
        )
        return True

    async def on_message(self, websocket: WebSocket, room_id: str, user_id: str, raw: Union[str, bytes]):
        """Handle one inbound frame. Errors are reported to the sender, the connection stays open."""
        message_type: Optional[str] = None
        try:
            message = parse_incoming_message(raw)
            message_type = message.type
            websocket_logger.debug(
                "WebSocket message received",
                extra={"room_id": room_id, "user_id": user_id, "msg_type": message_type}
            )
            delivery = await self.room_service.handle_user_message(room_id, user_id, message)
        except Exception as e:
            if isinstance(e, AppException):
                WebSocketErrorHandler.log_websocket_error(e, room_id, user_id, message_type)
            else:
                websocket_logger.opt(exception=e).error(
                    "Message handling failed",
                    extra={"room_id": room_id, "user_id": user_id, "msg_type": message_type}
                )
            await WebSocketErrorHandler.send_error_message(websocket, WebSocketErrorHandler.error_message(e))
            return

        if delivery is not None:
            await self.deliver(websocket, room_id, delivery)

    async def deliver(self, websocket: WebSocket, room_id: str, delivery: Delivery):
        if delivery.action == DeliveryMode.PUBLISH:
            await self.connections.publish(room_id, delivery.message)
        else:
            await self.connections.send_personal(delivery.message, websocket)

    async def on_close(self, room_id: str, user_id: str, connection_id: str):
        """Unregister the connection. Nobody is listening anymore, so errors are only logged."""
        self.connections.unsubscribe(room_id, connection_id)
        try:
            events = await self.room_service.handle_user_disconnection(room_id, user_id, connection_id)
            for event in events:
                await self.connections.publish(room_id, event)
        except Exception as e:
            websocket_logger.warning(
                "Error during disconnection",
                extra={
                    "room_id": room_id,
                    "user_id": user_id,
                    "connection_id": connection_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                }
            )
        finally:
            self.connections.unsubscribe(room_id, connection_id)

        websocket_logger.info(
            "User disconnected from room",
            extra={"room_id": room_id, "user_id": user_id, "connection_id": connection_id}
        )


def get_socket_handler() -> RoomSocketHandler:
    return RoomSocketHandler(get_room_service(), manager)


async def _receive_frame(websocket: WebSocket) -> Union[str, bytes]:
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))
    if message.get("text") is not None:
        return message["text"]
    return message.get("bytes") or b""


@router.websocket(f"{settings.API_PREFIX}/rooms/{{room_id}}/ws")
async def websocket_room(
    websocket: WebSocket,
    room_id: str,
    token: str = Query(None)
):
    """
    WebSocket endpoint for a watch party room.
    Handles: membership on connect/disconnect, playback updates, sync requests, heartbeats
    """
    await websocket.accept()

    user_id = user_id_from_token(token or websocket.cookies.get(AUTH_COOKIE_NAME))
    if not user_id:
        websocket_logger.warning("WebSocket connection rejected: invalid token", extra={"room_id": room_id})
        await WebSocketErrorHandler.send_error_message(
            websocket, ErrorMessage.create("Invalid token", ErrorCode.WS_UNAUTHORIZED.value)
        )
        await WebSocketErrorHandler.close(websocket, CLOSE_UNAUTHORIZED, "Unauthorized")
        return

    connection_id = str(uuid.uuid4())
    handler = get_socket_handler()

    if not await handler.on_open(websocket, room_id, user_id, connection_id):
        return

    try:
        while True:
            raw = await _receive_frame(websocket)
            await handler.on_message(websocket, room_id, user_id, raw)
    except WebSocketDisconnect:
        websocket_logger.info(
            "WebSocket disconnected",
            extra={"room_id": room_id, "user_id": user_id, "connection_id": connection_id}
        )
    except Exception as e:
        WebSocketErrorHandler.log_websocket_error(e, room_id, user_id)
    finally:
        await handler.on_close(room_id, user_id, connection_id)
