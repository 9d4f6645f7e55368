from watchparty.routers.rooms import router as rooms_router
from watchparty.routers.websocket import router as websocket_router

__all__ = ["rooms_router", "websocket_router"]
