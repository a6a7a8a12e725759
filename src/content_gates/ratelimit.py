"""Fixed-window request admission keyed by client identity.

Two interchangeable backends give the same admit/deny decision for the same
logical state:

- :class:`UpstashBackend`: Upstash Redis over its REST pipeline endpoint,
  used for the whole process lifetime when credentials are configured.
- :class:`MemoryBackend`: a bounded in-process map used otherwise.

The backend is chosen once, in :meth:`RateLimiter.from_settings`.
"""

from __future__ import annotations

import logging
import math
import random
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx

from content_gates.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_WINDOW_S = 60.0
DEFAULT_MAX_ENTRIES = 500


@dataclass(frozen=True)
class RateLimitInfo:
    remaining: int
    # epoch seconds
    reset_at: float


class RateLimitBackend(ABC):
    name: str = "abstract"

    def __init__(self, limit: int, window_s: float, clock: Callable[[], float]) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_s <= 0:
            raise ValueError("window_s must be positive")
        self.limit = limit
        self.window_s = window_s
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    @abstractmethod
    def hit(self, key: str) -> Tuple[bool, RateLimitInfo]:
        """Count one attempt for *key* and say whether it is admitted."""
        ...

    @abstractmethod
    def peek(self, key: str) -> RateLimitInfo:
        """Report the window state for *key* without counting an attempt."""
        ...

    def close(self) -> None:
        pass


# ── In-process fallback ──────────────────────────────────────────────────────

@dataclass
class _Window:
    count: int
    reset_at: float


class MemoryBackend(RateLimitBackend):
    """Bounded map of key -> window.

    Keys hash onto a fixed set of lock stripes, so unrelated clients rarely
    contend and one key is never admitted twice past the limit.  Eviction runs
    on a random fraction of calls: expired windows go first, then the oldest
    windows until the map is back under ``max_entries``.
    """

    name = "memory"

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_s: float = DEFAULT_WINDOW_S,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
        eviction_probability: float = 0.1,
        rng: Callable[[], float] = random.random,
        stripes: int = 64,
    ) -> None:
        super().__init__(limit, window_s, clock)
        self.max_entries = max_entries
        self.eviction_probability = eviction_probability
        self._rng = rng
        # insertion order == window start order; a new window re-inserts its key
        self._entries: Dict[str, _Window] = {}
        self._stripes = [threading.Lock() for _ in range(stripes)]
        self._evict_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _lock_for(self, key: str) -> threading.Lock:
        return self._stripes[hash(key) % len(self._stripes)]

    def hit(self, key: str) -> Tuple[bool, RateLimitInfo]:
        if self._rng() < self.eviction_probability:
            self.evict()

        now = self._clock()
        with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None or entry.reset_at <= now:
                self._entries.pop(key, None)
                entry = _Window(count=1, reset_at=now + self.window_s)
                self._entries[key] = entry
                return True, RateLimitInfo(self.limit - 1, entry.reset_at)
            if entry.count >= self.limit:
                return False, RateLimitInfo(0, entry.reset_at)
            entry.count += 1
            return True, RateLimitInfo(self.limit - entry.count, entry.reset_at)

    def peek(self, key: str) -> RateLimitInfo:
        now = self._clock()
        with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None or entry.reset_at <= now:
                return RateLimitInfo(self.limit, now + self.window_s)
            return RateLimitInfo(max(0, self.limit - entry.count), entry.reset_at)

    def evict(self) -> None:
        # one evictor at a time; others skip rather than queue
        if not self._evict_lock.acquire(blocking=False):
            return
        try:
            now = self._clock()
            for key, entry in self._entries.copy().items():
                if entry.reset_at > now:
                    continue
                with self._lock_for(key):
                    current = self._entries.get(key)
                    if current is not None and current.reset_at <= now:
                        del self._entries[key]

            overflow = len(self._entries) - self.max_entries
            if overflow > 0:
                for key in list(self._entries.copy())[:overflow]:
                    with self._lock_for(key):
                        self._entries.pop(key, None)
        finally:
            self._evict_lock.release()


# ── Upstash Redis (REST) ─────────────────────────────────────────────────────

class RateLimitStoreError(RuntimeError):
    """The distributed store answered with an error or an unexpected shape."""


class UpstashBackend(RateLimitBackend):
    """Fixed window on Upstash Redis: ``INCR`` + ``PEXPIRE NX`` + ``PTTL``.

    If the store cannot be reached the attempt is admitted and a warning is
    logged; the backend never falls back to process memory.
    """

    name = "upstash"

    def __init__(
        self,
        url: str,
        token: str,
        limit: int = DEFAULT_LIMIT,
        window_s: float = DEFAULT_WINDOW_S,
        client: Optional[httpx.Client] = None,
        timeout_s: float = 2.0,
        prefix: str = "content-gates:rl:",
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(limit, window_s, clock)
        self._url = url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}
        # a client passed in belongs to the caller and is left open
        self._owns_client = client is None
        self._client = client or httpx.Client()
        self.timeout_s = timeout_s
        self.prefix = prefix

    def _pipeline(self, commands: List[List[str]]) -> List[Any]:
        response = self._client.post(
            f"{self._url}/pipeline",
            json=commands,
            headers=self._headers,
            timeout=self.timeout_s,
        )
        response.raise_for_status()
        replies = response.json()
        if not isinstance(replies, list) or len(replies) != len(commands):
            raise RateLimitStoreError(f"unexpected pipeline reply: {replies!r}")
        errors = [r["error"] for r in replies if isinstance(r, dict) and "error" in r]
        if errors:
            raise RateLimitStoreError("; ".join(str(e) for e in errors))
        return [r.get("result") for r in replies]

    def _window_ms(self) -> int:
        return int(self.window_s * 1000)

    def _reset_at(self, now: float, ttl_ms: Any) -> float:
        ttl = int(ttl_ms) if ttl_ms is not None and int(ttl_ms) > 0 else self._window_ms()
        return now + ttl / 1000

    def hit(self, key: str) -> Tuple[bool, RateLimitInfo]:
        redis_key = self.prefix + key
        now = self._clock()
        try:
            count, _, ttl_ms = self._pipeline(
                [
                    ["INCR", redis_key],
                    ["PEXPIRE", redis_key, str(self._window_ms()), "NX"],
                    ["PTTL", redis_key],
                ]
            )
            count = int(count)
        except (httpx.HTTPError, RateLimitStoreError, ValueError, TypeError) as exc:
            logger.warning("rate limit store unavailable, admitting %s: %s", key, exc)
            return True, RateLimitInfo(self.limit, now + self.window_s)

        reset_at = self._reset_at(now, ttl_ms)
        if count > self.limit:
            return False, RateLimitInfo(0, reset_at)
        return True, RateLimitInfo(self.limit - count, reset_at)

    def peek(self, key: str) -> RateLimitInfo:
        redis_key = self.prefix + key
        now = self._clock()
        try:
            count, ttl_ms = self._pipeline([["GET", redis_key], ["PTTL", redis_key]])
            count = int(count or 0)
        except (httpx.HTTPError, RateLimitStoreError, ValueError, TypeError) as exc:
            logger.warning("rate limit store unavailable for %s: %s", key, exc)
            return RateLimitInfo(self.limit, now + self.window_s)
        if count == 0:
            return RateLimitInfo(self.limit, now + self.window_s)
        return RateLimitInfo(max(0, self.limit - count), self._reset_at(now, ttl_ms))

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


# ── Facade ───────────────────────────────────────────────────────────────────

class RateLimiter:
    def __init__(self, backend: RateLimitBackend) -> None:
        self.backend = backend

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.time,
    ) -> "RateLimiter":
        if settings.has_upstash:
            backend: RateLimitBackend = UpstashBackend(
                url=settings.upstash_redis_rest_url,
                token=settings.upstash_redis_rest_token,
                limit=settings.rate_limit_max,
                window_s=settings.rate_limit_window_s,
                client=client,
                clock=clock,
            )
        else:
            backend = MemoryBackend(
                limit=settings.rate_limit_max,
                window_s=settings.rate_limit_window_s,
                max_entries=settings.rate_limit_max_entries,
                clock=clock,
            )
        logger.info("rate limiting with %s backend (%d per %ss)", backend.name, backend.limit, backend.window_s)
        return cls(backend)

    def admit(self, key: str) -> bool:
        allowed, _ = self.backend.hit(key)
        return allowed

    def check(self, key: str) -> Tuple[bool, RateLimitInfo]:
        """Like :meth:`admit`, also returning the window state for headers."""
        return self.backend.hit(key)

    def info(self, key: str) -> RateLimitInfo:
        return self.backend.peek(key)

    def seconds_until_reset(self, info: RateLimitInfo) -> int:
        """Whole seconds until the window for *info* resets, at least 1."""
        return max(1, math.ceil(info.reset_at - self.backend.now()))

    def retry_after(self, key: str) -> int:
        return self.seconds_until_reset(self.backend.peek(key))

    def close(self) -> None:
        self.backend.close()


def client_key(headers: Mapping[str, str], client_host: Optional[str] = None) -> str:
    """Best-effort client identity; not a security boundary."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    if client_host:
        return client_host
    return "unknown"
