"""
Room State Store

Key-value storage with per-key expiry that backs every piece of room state.
The engine only talks to the narrow RoomStore contract below, so the same
repository code runs against Redis in production and against the in-process
MemoryRoomStore in tests and single-node deployments.

Semantics follow Redis:
- empty lists and sets disappear as soon as their last element is removed
- operations on a missing key behave as on an empty value
- expired keys are indistinguishable from keys that never existed
"""

import re
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError

from watchparty.config import settings
from watchparty.exceptions import StoreUnavailableException, StoreWrongTypeException
from watchparty.utils.logging_config import store_logger


class RoomStore(ABC):
    """Storage contract consumed by the room repository."""

    backend_name = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool: ...

    @abstractmethod
    async def expire_many(self, keys: Iterable[str], ttl: int) -> None:
        """Renew the expiry of several keys as one atomic group."""

    @abstractmethod
    async def sadd(self, key: str, *members: str) -> int: ...

    @abstractmethod
    async def srem(self, key: str, *members: str) -> int: ...

    @abstractmethod
    async def smembers(self, key: str) -> Set[str]: ...

    @abstractmethod
    async def scard(self, key: str) -> int: ...

    @abstractmethod
    async def rpush(self, key: str, *values: str) -> int: ...

    @abstractmethod
    async def lrem(self, key: str, value: str) -> int:
        """Remove every occurrence of value from the list."""

    @abstractmethod
    async def lrange(self, key: str) -> List[str]: ...

    @abstractmethod
    async def llen(self, key: str) -> int: ...

    @abstractmethod
    async def keys(self, prefix: str) -> List[str]: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None

    async def health_check(self) -> Dict[str, Any]:
        connected = await self.ping()
        return {"backend": self.backend_name, "connected": connected}


# ==================== Redis backend ====================

_GLOB_SPECIALS = re.compile(r"([*?\[\]\\])")


class RedisRoomStore(RoomStore):
    """
    Redis backed store.

    Connection errors and timeouts surface as StoreUnavailableException so the
    caller can render them, nothing is retried here.
    """

    backend_name = "redis"

    def __init__(self, redis_url: str = None, socket_timeout: float = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.socket_timeout = socket_timeout or settings.REDIS_SOCKET_TIMEOUT
        self._redis: Optional[Redis] = None
        self._pool: Optional[ConnectionPool] = None

    async def get_redis(self) -> Redis:
        """Get or create the Redis connection."""
        if self._redis is None:
            self._pool = ConnectionPool.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                retry_on_timeout=False
            )
            self._redis = Redis(connection_pool=self._pool)
            store_logger.info("Redis room store pool created", extra={"redis_url": self.redis_url})
        return self._redis

    @asynccontextmanager
    async def _guard(self, operation: str):
        try:
            yield
        except (RedisError, OSError) as e:
            store_logger.warning(
                "Redis operation failed",
                extra={"operation": operation, "error": str(e), "error_type": type(e).__name__}
            )
            raise StoreUnavailableException(operation, str(e)) from e

    async def close(self):
        """Close Redis connections."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
        store_logger.info("Redis room store closed")

    async def get(self, key: str) -> Optional[str]:
        redis = await self.get_redis()
        async with self._guard("get"):
            return await redis.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        redis = await self.get_redis()
        async with self._guard("set"):
            await redis.set(key, value, ex=ttl)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        redis = await self.get_redis()
        async with self._guard("delete"):
            return await redis.delete(*keys)

    async def expire(self, key: str, ttl: int) -> bool:
        redis = await self.get_redis()
        async with self._guard("expire"):
            return bool(await redis.expire(key, ttl))

    async def expire_many(self, keys: Iterable[str], ttl: int) -> None:
        redis = await self.get_redis()
        async with self._guard("expire_many"):
            async with redis.pipeline(transaction=True) as pipe:
                for key in keys:
                    pipe.expire(key, ttl)
                await pipe.execute()

    async def sadd(self, key: str, *members: str) -> int:
        redis = await self.get_redis()
        async with self._guard("sadd"):
            return await redis.sadd(key, *members)

    async def srem(self, key: str, *members: str) -> int:
        redis = await self.get_redis()
        async with self._guard("srem"):
            return await redis.srem(key, *members)

    async def smembers(self, key: str) -> Set[str]:
        redis = await self.get_redis()
        async with self._guard("smembers"):
            return set(await redis.smembers(key))

    async def scard(self, key: str) -> int:
        redis = await self.get_redis()
        async with self._guard("scard"):
            return await redis.scard(key)

    async def rpush(self, key: str, *values: str) -> int:
        redis = await self.get_redis()
        async with self._guard("rpush"):
            return await redis.rpush(key, *values)

    async def lrem(self, key: str, value: str) -> int:
        redis = await self.get_redis()
        async with self._guard("lrem"):
            return await redis.lrem(key, 0, value)

    async def lrange(self, key: str) -> List[str]:
        redis = await self.get_redis()
        async with self._guard("lrange"):
            return await redis.lrange(key, 0, -1)

    async def llen(self, key: str) -> int:
        redis = await self.get_redis()
        async with self._guard("llen"):
            return await redis.llen(key)

    async def keys(self, prefix: str) -> List[str]:
        redis = await self.get_redis()
        pattern = _GLOB_SPECIALS.sub(r"\\\1", prefix) + "*"
        async with self._guard("keys"):
            return [key async for key in redis.scan_iter(match=pattern, count=100)]

    async def ping(self) -> bool:
        try:
            redis = await self.get_redis()
            return bool(await redis.ping())
        except (RedisError, OSError) as e:
            store_logger.warning("Redis ping failed", extra={"error": str(e)})
            return False

    async def health_check(self) -> Dict[str, Any]:
        connected = await self.ping()
        return {"backend": self.backend_name, "connected": connected, "redis_url": self.redis_url}


# ==================== In-memory backend ====================

@dataclass
class _Entry:
    value: Union[str, List[str], Set[str]]
    expires_at: Optional[float] = None


class MemoryRoomStore(RoomStore):
    """
    In-process store with lazy expiry.

    The clock is injectable so tests can move time forward and watch keys
    expire without sleeping.
    """

    backend_name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, _Entry] = {}

    def _entry(self, key: str) -> Optional[_Entry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _typed(self, key: str, kind: type) -> Optional[_Entry]:
        entry = self._entry(key)
        if entry is not None and not isinstance(entry.value, kind):
            raise StoreWrongTypeException(key, kind.__name__)
        return entry

    def _drop_if_empty(self, key: str, entry: _Entry) -> None:
        if not entry.value:
            del self._data[key]

    def _cleanup(self):
        """Remove every expired entry."""
        now = self._clock()
        expired_keys = [
            k for k, v in self._data.items()
            if v.expires_at is not None and v.expires_at <= now
        ]
        for k in expired_keys:
            del self._data[k]

    async def get(self, key: str) -> Optional[str]:
        entry = self._typed(key, str)
        return entry.value if entry else None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._data[key] = _Entry(value=value, expires_at=expires_at)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._entry(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    async def expire(self, key: str, ttl: int) -> bool:
        entry = self._entry(key)
        if entry is None:
            return False
        entry.expires_at = self._clock() + ttl
        return True

    async def expire_many(self, keys: Iterable[str], ttl: int) -> None:
        for key in keys:
            await self.expire(key, ttl)

    async def sadd(self, key: str, *members: str) -> int:
        entry = self._typed(key, set)
        if entry is None:
            entry = self._data[key] = _Entry(value=set())
        before = len(entry.value)
        entry.value.update(members)
        return len(entry.value) - before

    async def srem(self, key: str, *members: str) -> int:
        entry = self._typed(key, set)
        if entry is None:
            return 0
        before = len(entry.value)
        entry.value.difference_update(members)
        self._drop_if_empty(key, entry)
        return before - len(entry.value)

    async def smembers(self, key: str) -> Set[str]:
        entry = self._typed(key, set)
        return set(entry.value) if entry else set()

    async def scard(self, key: str) -> int:
        entry = self._typed(key, set)
        return len(entry.value) if entry else 0

    async def rpush(self, key: str, *values: str) -> int:
        entry = self._typed(key, list)
        if entry is None:
            entry = self._data[key] = _Entry(value=[])
        entry.value.extend(values)
        return len(entry.value)

    async def lrem(self, key: str, value: str) -> int:
        entry = self._typed(key, list)
        if entry is None:
            return 0
        kept = [item for item in entry.value if item != value]
        removed = len(entry.value) - len(kept)
        entry.value = kept
        self._drop_if_empty(key, entry)
        return removed

    async def lrange(self, key: str) -> List[str]:
        entry = self._typed(key, list)
        return list(entry.value) if entry else []

    async def llen(self, key: str) -> int:
        entry = self._typed(key, list)
        return len(entry.value) if entry else 0

    async def keys(self, prefix: str) -> List[str]:
        self._cleanup()
        return [key for key in self._data if key.startswith(prefix)]

    async def ping(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        self._cleanup()
        return {"backend": self.backend_name, "connected": True, "entries": len(self._data)}

    def ttl(self, key: str) -> Optional[float]:
        """Seconds left before key expires, None for a missing or persistent key."""
        entry = self._entry(key)
        if entry is None or entry.expires_at is None:
            return None
        return entry.expires_at - self._clock()


# Global singleton instance
_room_store: Optional[RoomStore] = None


def create_room_store(backend: str = None) -> RoomStore:
    backend = backend or settings.STATE_BACKEND
    if backend == "memory":
        return MemoryRoomStore()
    return RedisRoomStore()


def get_room_store() -> RoomStore:
    """Get the process-wide room store."""
    global _room_store
    if _room_store is None:
        _room_store = create_room_store()
        store_logger.info("Room store initialized", extra={"backend": _room_store.backend_name})
    return _room_store


def set_room_store(store: Optional[RoomStore]) -> None:
    """Replace the process-wide room store (used by tests)."""
    global _room_store
    _room_store = store


async def close_room_store():
    """Close the process-wide room store."""
    global _room_store
    if _room_store:
        await _room_store.close()
        _room_store = None
