from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from watchparty.config import settings
from watchparty.routers import rooms_router, websocket_router
from watchparty.utils.logging_config import setup_logging, fastapi_logger
from watchparty.error_handlers import register_exception_handlers
from watchparty.services.store import get_room_store, close_room_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    fastapi_logger.info(f"Starting {settings.APP_NAME}")
    store = get_room_store()
    health = await store.health_check()
    if health["connected"]:
        fastapi_logger.info("Room store connected", extra={"backend": health["backend"]})
    else:
        fastapi_logger.warning("Room store not reachable yet", extra={"backend": health["backend"]})
    yield
    # Shutdown
    fastapi_logger.info("Shutting down application")
    await close_room_store()
    fastapi_logger.info("Room store closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Synchronized watch party rooms",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global Exception Handlers
register_exception_handlers(app)

# API Routers
app.include_router(rooms_router)
app.include_router(websocket_router)


# Health Check
@app.get("/health")
async def health_check():
    store_health = await get_room_store().health_check()
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "store": store_health
    }


@app.get("/ready")
async def readiness_check():
    store_health = await get_room_store().health_check()
    return {
        "status": "ready" if store_health["connected"] else "not_ready",
        "store_connected": store_health["connected"]
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("watchparty.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
