"""
Read-through cache for profiles and system settings.

Two tiers: an in-process memory tier that is always present, and an optional
Redis tier shared by every instance. Invalidations are broadcast over a Redis
pub/sub channel (the backplane) so other instances drop their local copy.

Misses for the same key share a single factory call. When a stale value is
still retained (fail-safe window) a slow factory is only waited on for a
short soft timeout, and a failing factory falls back to the stale value.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional, TypeVar

import redis
from pydantic import TypeAdapter
from redis import exceptions as redis_exceptions

from biocard.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LANGUAGE_KEY = "@Default"
PUBLIC_SETTINGS_CACHE_KEY = "System:Settings:Public"

_MISSING = object()


def profile_cache_key(username: str, language: Optional[str] = None) -> str:
    lang = language.strip().lower() if language and language.strip() else DEFAULT_LANGUAGE_KEY
    return f"Profile:{username.strip().lower()}:{lang}"


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    fail_safe_until: float
    sliding: Optional[float]
    last_access: float

    def is_fresh(self, now: float) -> bool:
        if now >= self.expires_at:
            return False
        return self.sliding is None or now - self.last_access < self.sliding


class MemoryCacheTier:
    """Size-limited in-process tier. Every entry costs one unit."""

    def __init__(
        self,
        size_limit: int,
        compaction_percentage: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.size_limit = size_limit
        self.compaction_percentage = compaction_percentage
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.fail_safe_until:
                del self._entries[key]
                return None
            return entry

    def touch(self, key: str, now: float) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.last_access = now

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.size_limit:
                self._compact()
            self._entries[key] = entry

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _compact(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if now >= e.fail_safe_until]:
            del self._entries[key]
        if len(self._entries) < self.size_limit:
            return
        count = max(1, math.ceil(len(self._entries) * self.compaction_percentage))
        by_access = sorted(self._entries.items(), key=lambda item: item[1].last_access)
        for key, _ in by_access[:count]:
            del self._entries[key]
        logger.debug("Compacted memory cache, evicted %d entries", count)


class RedisCacheTier:
    """Distributed tier storing JSON payloads under a key prefix."""

    def __init__(self, client: redis.Redis, prefix: str = "biocard:"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw

    def set(self, key: str, payload: str, ttl_seconds: float) -> None:
        self.client.set(self._key(key), payload, px=max(1, int(ttl_seconds * 1000)))

    def remove(self, key: str) -> None:
        self.client.delete(self._key(key))


class RedisBackplane:
    """Broadcasts cache invalidations to the other instances."""

    def __init__(self, client: redis.Redis, channel: str):
        self.client = client
        self.channel = channel
        self.instance_id = uuid.uuid4().hex
        self._pubsub = None
        self._thread = None
        self._on_invalidate: Optional[Callable[[str], None]] = None

    def start(self, on_invalidate: Callable[[str], None]) -> None:
        self._on_invalidate = on_invalidate
        self._pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(**{self.channel: self._handle})
        self._thread = self._pubsub.run_in_thread(sleep_time=0.5, daemon=True)

    def publish(self, key: str) -> None:
        message = json.dumps({"source": self.instance_id, "key": key})
        self.client.publish(self.channel, message)

    def _handle(self, message: dict) -> None:
        try:
            payload = json.loads(message["data"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed backplane message: %r", message)
            return
        if payload.get("source") == self.instance_id or not payload.get("key"):
            return
        if self._on_invalidate:
            self._on_invalidate(payload["key"])

    def stop(self) -> None:
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None


class CacheLayer:
    """Multi-tier read-through cache with stampede protection and fail-safe."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        expiration: float = 30 * 60,
        sliding_expiration: Optional[float] = 5 * 60,
        size_limit: int = 1024,
        compaction_percentage: float = 0.2,
        fail_safe_max_duration: float = 2 * 60 * 60,
        fail_safe_throttle: float = 30,
        factory_soft_timeout: float = 0.5,
        max_workers: int = 8,
        distributed: Optional[RedisCacheTier] = None,
        backplane: Optional[RedisBackplane] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.enabled = enabled
        self.expiration = expiration
        # Sliding expiration only makes sense when this process is the only tier.
        self.sliding_expiration = None if distributed else sliding_expiration
        self.fail_safe_max_duration = fail_safe_max_duration
        self.fail_safe_throttle = fail_safe_throttle
        self.factory_soft_timeout = factory_soft_timeout
        self._clock = clock
        self._memory = MemoryCacheTier(size_limit, compaction_percentage, clock)
        self._distributed = distributed
        self._backplane = backplane
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="cache-factory"
        )
        self._lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}
        self._generations: Dict[str, int] = {}
        self._adapters: Dict[Any, TypeAdapter] = {}

        if self._backplane is not None:
            try:
                self._backplane.start(self._on_remote_invalidation)
            except redis_exceptions.RedisError:
                logger.warning(
                    "Cache backplane unavailable, invalidations stay local",
                    exc_info=True,
                )
                self._backplane = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheLayer":
        distributed = None
        backplane = None
        if settings.cache_enabled and settings.cache_use_redis and settings.redis_url:
            client = redis.Redis.from_url(
                settings.redis_url,
                socket_timeout=settings.redis_socket_timeout_ms / 1000,
                socket_connect_timeout=settings.redis_connect_timeout_ms / 1000,
            )
            distributed = RedisCacheTier(client, prefix=settings.cache_instance_name)
            backplane = RedisBackplane(client, settings.cache_backplane_channel)
        return cls(
            enabled=settings.cache_enabled,
            expiration=settings.cache_expiration_minutes * 60,
            sliding_expiration=settings.cache_sliding_expiration_minutes * 60,
            size_limit=settings.cache_size_limit,
            compaction_percentage=settings.cache_compaction_percentage,
            fail_safe_max_duration=settings.cache_fail_safe_max_duration_minutes * 60,
            fail_safe_throttle=settings.cache_fail_safe_throttle_seconds,
            factory_soft_timeout=settings.cache_factory_soft_timeout_ms / 1000,
            max_workers=settings.cache_factory_workers,
            distributed=distributed,
            backplane=backplane,
        )

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], T],
        value_type: Any = None,
    ) -> T:
        """
        Return the cached value for ``key`` or compute it with ``factory``.

        ``value_type`` enables the distributed tier for this key; it is used to
        serialise the value to JSON and back.
        """
        if not self.enabled:
            return factory()

        # Read before the entry so a removal in between is always noticed.
        with self._lock:
            generation = self._generations.get(key, 0)
        now = self._clock()
        entry = self._memory.get(key)
        if entry is not None and entry.is_fresh(now):
            self._memory.touch(key, now)
            return entry.value

        shared = self._read_distributed(key, value_type)
        if shared is not _MISSING:
            self._store_local(key, shared)
            return shared

        future = self._start_factory(key, factory, value_type)
        if entry is None:
            return future.result()

        try:
            return future.result(timeout=self.factory_soft_timeout)
        except FutureTimeoutError:
            logger.info("Factory for %s is slow, serving stale value", key)
            return entry.value
        except Exception as exc:
            return self._fail_safe(key, entry, exc, generation)

    def remove(self, key: str) -> None:
        """Invalidate ``key`` in every tier and on every instance."""
        if not self.enabled:
            return
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            self._inflight.pop(key, None)
            self._memory.remove(key)

        self._remove_distributed(key)
        if self._backplane is not None:
            try:
                self._backplane.publish(key)
            except redis_exceptions.RedisError:
                logger.warning("Backplane publish failed for %s", key, exc_info=True)

    def clear(self) -> None:
        with self._lock:
            for key in list(self._inflight):
                self._generations[key] = self._generations.get(key, 0) + 1
            self._inflight.clear()
            self._memory.clear()

    def close(self) -> None:
        if self._backplane is not None:
            self._backplane.stop()
        self._executor.shutdown(wait=False)

    def _on_remote_invalidation(self, key: str) -> None:
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            self._inflight.pop(key, None)
            self._memory.remove(key)
        logger.debug("Dropped %s after remote invalidation", key)

    def _adapter(self, value_type: Any) -> TypeAdapter:
        adapter = self._adapters.get(value_type)
        if adapter is None:
            adapter = self._adapters[value_type] = TypeAdapter(value_type)
        return adapter

    def _read_distributed(self, key: str, value_type: Any) -> Any:
        if self._distributed is None or value_type is None:
            return _MISSING
        try:
            payload = self._distributed.get(key)
            if payload is None:
                return _MISSING
            return self._adapter(value_type).validate_json(payload)
        except (redis_exceptions.RedisError, ValueError):
            logger.warning("Distributed cache read failed for %s", key, exc_info=True)
            return _MISSING

    def _write_distributed(self, key: str, value: Any, value_type: Any) -> None:
        if self._distributed is None or value_type is None:
            return
        try:
            payload = self._adapter(value_type).dump_json(value).decode("utf-8")
            self._distributed.set(key, payload, self.expiration)
        except (redis_exceptions.RedisError, ValueError):
            logger.warning("Distributed cache write failed for %s", key, exc_info=True)

    def _remove_distributed(self, key: str) -> None:
        if self._distributed is None:
            return
        try:
            self._distributed.remove(key)
        except redis_exceptions.RedisError:
            logger.warning("Distributed cache removal failed for %s", key, exc_info=True)

    def _store_local(self, key: str, value: Any) -> None:
        now = self._clock()
        expires_at = now + self.expiration
        self._memory.set(
            key,
            CacheEntry(
                value=value,
                expires_at=expires_at,
                fail_safe_until=max(expires_at, now + self.fail_safe_max_duration),
                sliding=self.sliding_expiration,
                last_access=now,
            ),
        )

    def _start_factory(
        self, key: str, factory: Callable[[], T], value_type: Any
    ) -> Future:
        with self._lock:
            future = self._inflight.get(key)
            if future is not None:
                return future
            generation = self._generations.get(key, 0)
            future = self._executor.submit(
                self._run_factory, key, factory, value_type, generation
            )
            self._inflight[key] = future
            return future

    def _run_factory(
        self, key: str, factory: Callable[[], T], value_type: Any, generation: int
    ) -> T:
        try:
            value = factory()
            # A removal since this factory started means the value may
            # predate the write that triggered it; hand it back but don't keep it.
            with self._lock:
                current = self._generations.get(key, 0) == generation
                if current:
                    self._store_local(key, value)
            if current:
                # Redis I/O stays outside the lock.
                self._write_distributed(key, value, value_type)
                with self._lock:
                    current = self._generations.get(key, 0) == generation
                if not current:
                    self._remove_distributed(key)
            return value
        finally:
            with self._lock:
                if self._generations.get(key, 0) == generation:
                    self._inflight.pop(key, None)

    def _fail_safe(
        self, key: str, entry: CacheEntry, exc: Exception, generation: int
    ) -> Any:
        logger.warning("Factory for %s failed (%s), serving stale value", key, exc)
        now = self._clock()
        with self._lock:
            if self._generations.get(key, 0) != generation:
                logger.info("%s was invalidated, stale value not kept", key)
                return entry.value
            self._memory.set(
                key,
                replace(entry, expires_at=now + self.fail_safe_throttle, last_access=now),
            )
        return entry.value
