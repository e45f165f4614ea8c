"""TTL cache service — fingerprint-keyed entries with lazy expiry and pluggable stores."""

import copy
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Protocol, TypeVar

import redis.asyncio as redis

from tourdesk.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


def fingerprint(payload: Any) -> str:
    """Stable sha256 over the canonical JSON form of ``payload``.

    Keys are sorted at every level so logically identical inputs hash the same.
    """
    canonical = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    payload: Any
    created_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.created_at < ttl


class CacheBackend(Protocol):
    # True when the store expires entries itself; writes then skip the size check
    native_expiry: bool

    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, key: str, entry: CacheEntry, ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def size(self) -> int: ...

    async def evict_stale(self, now: float, ttl: int) -> int: ...


class InMemoryBackend:
    """Process-local dict store."""

    native_expiry = False

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry, ttl: int) -> None:
        self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def size(self) -> int:
        return len(self._entries)

    async def evict_stale(self, now: float, ttl: int) -> int:
        stale = [k for k, e in self._entries.items() if not e.is_fresh(now, ttl)]
        for key in stale:
            del self._entries[key]
        return len(stale)


class RedisBackend:
    """Redis-backed store shared across processes.

    Entries carry their own timestamp and also a native Redis expiry, so the
    sweep has nothing to do. Redis failures read as cache misses.
    """

    native_expiry = True

    def __init__(self, namespace: str, url: str | None = None):
        self._namespace = namespace
        self._url = url or settings.redis_url
        self._redis: redis.Redis | None = None

    def _key(self, key: str) -> str:
        return f"tourdesk:{self._namespace}:{key}"

    async def _get_redis(self) -> redis.Redis | None:
        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self._url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis.ping()
            except Exception as e:
                logger.warning(f"Redis unavailable, {self._namespace} cache disabled: {e}")
                self._redis = None
                return None
        return self._redis

    async def get(self, key: str) -> CacheEntry | None:
        try:
            r = await self._get_redis()
            if r is None:
                return None
            raw = await r.get(self._key(key))
            if raw is None:
                return None
            data = json.loads(raw)
            return CacheEntry(payload=data["payload"], created_at=data["created_at"])
        except Exception as e:
            logger.warning(f"Redis get failed for {self._namespace}: {e}")
            return None

    async def set(self, key: str, entry: CacheEntry, ttl: int) -> None:
        try:
            r = await self._get_redis()
            if r is None:
                return
            raw = json.dumps({"payload": entry.payload, "created_at": entry.created_at}, default=str)
            await r.set(self._key(key), raw, ex=ttl)
        except Exception as e:
            logger.warning(f"Redis set failed for {self._namespace}: {e}")

    async def delete(self, key: str) -> None:
        try:
            r = await self._get_redis()
            if r is not None:
                await r.delete(self._key(key))
        except Exception as e:
            logger.warning(f"Redis delete failed for {self._namespace}: {e}")

    async def size(self) -> int:
        try:
            r = await self._get_redis()
            if r is None:
                return 0
            count = 0
            async for _ in r.scan_iter(match=self._key("*")):
                count += 1
            return count
        except Exception:
            return 0

    async def evict_stale(self, now: float, ttl: int) -> int:
        return 0

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None


def build_backend(namespace: str, kind: str | None = None) -> CacheBackend:
    kind = (kind or settings.cache_backend).lower()
    if kind == "redis":
        return RedisBackend(namespace)
    if kind != "memory":
        logger.warning(f"Unknown cache backend {kind!r}, using memory")
    return InMemoryBackend()


class TTLCache(Generic[T]):
    """Time-bounded cache with lazy expiry and opportunistic sweeping.

    Payloads go through ``encode`` on write and ``decode`` on read, so callers
    always get their own copy and can never mutate what is stored. Concurrent
    misses on the same key are not deduplicated; both callers recompute and the
    last write wins.
    """

    def __init__(
        self,
        name: str,
        ttl: int,
        *,
        backend: CacheBackend | None = None,
        max_entries: int | None = None,
        encode: Callable[[T], Any] = copy.deepcopy,
        decode: Callable[[Any], T] = copy.deepcopy,
        clock: Clock = time.time,
    ):
        self.name = name
        self.ttl = ttl
        self.max_entries = max_entries if max_entries is not None else settings.cache_max_entries
        self._backend = backend if backend is not None else build_backend(name)
        self._encode = encode
        self._decode = decode
        self._clock = clock

    @staticmethod
    def key_for(payload: Any) -> str:
        return fingerprint(payload)

    async def get(self, key: str) -> T | None:
        """Cached payload if present and fresh, else None."""
        entry = await self._backend.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock(), self.ttl):
            return None
        return self._decode(entry.payload)

    async def set(self, key: str, value: T) -> None:
        """Store unconditionally, stamped with the current time."""
        entry = CacheEntry(payload=self._encode(value), created_at=self._clock())
        await self._backend.set(key, entry, self.ttl)
        if self._backend.native_expiry:
            return
        if await self._backend.size() > self.max_entries:
            await self.sweep()

    async def delete(self, key: str) -> None:
        await self._backend.delete(key)

    async def sweep(self) -> int:
        """Drop every stale entry. Best effort, never raises."""
        try:
            removed = await self._backend.evict_stale(self._clock(), self.ttl)
        except Exception as e:
            logger.warning(f"Cache sweep failed for {self.name}: {e}")
            return 0
        if removed:
            logger.debug(f"Cache {self.name}: swept {removed} stale entries")
        return removed

    async def size(self) -> int:
        return await self._backend.size()
