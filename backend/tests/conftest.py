"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
from typing import Iterator

import pytest

os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("STATE_BACKEND", "memory")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient

from watchparty.exceptions import StoreUnavailableException
from watchparty.main import app
from watchparty.routers.websocket import manager
from watchparty.services.room_repository import RoomRepository
from watchparty.services.room_service import RoomService
from watchparty.services.store import MemoryRoomStore, set_room_store
from watchparty.utils.security import create_access_token


class ManualClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def store(clock) -> MemoryRoomStore:
    return MemoryRoomStore(clock=clock)


@pytest.fixture()
def repo(store) -> RoomRepository:
    return RoomRepository(store, ttl=60, key_prefix="")


@pytest.fixture()
def service(repo) -> RoomService:
    return RoomService(repo)


@pytest.fixture()
def connection_writes(store, monkeypatch) -> dict:
    """Switch that makes writes to connection sets fail as if the store dropped out."""

    state = {"failing": False}
    original_sadd = store.sadd

    async def sadd(key: str, *members: str) -> int:
        if state["failing"] and ":connections:" in key:
            raise StoreUnavailableException("sadd", "Connection reset by peer")
        return await original_sadd(key, *members)

    monkeypatch.setattr(store, "sadd", sadd)
    return state


@pytest.fixture()
def client(store) -> Iterator[TestClient]:
    """Yield a TestClient whose app runs on the in-memory store."""

    set_room_store(store)
    manager.rooms.clear()
    with TestClient(app) as test_client:
        yield test_client
    manager.rooms.clear()
    set_room_store(None)


@pytest.fixture()
def auth_headers():
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers
