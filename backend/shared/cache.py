"""In-process TTL cache for read-mostly rows (channels).

Backed by cachetools.TTLCache. A second, unbounded-by-time store keeps the
last value seen for every key so that a channel lookup can still be answered
while PostgreSQL is unreachable.
"""

import asyncio
import functools
import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, TypeVar

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Distinguishes "not cached" from a cached None
MISSING = object()

F = TypeVar("F", bound=Callable[..., Any])


class AsyncTTLCache:
    """TTL cache plus a bounded last-known-good store."""

    def __init__(self, maxsize: int = 128, ttl: float = 60.0):
        self._maxsize = maxsize
        self._fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._last_good: OrderedDict[str, Any] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: str) -> Any:
        """Return the fresh value or ``MISSING``."""
        return self._fresh.get(key, MISSING)

    def get_stale(self, key: str) -> Any:
        """Return the last value ever stored for *key* or ``MISSING``."""
        value = self._last_good.get(key, MISSING)
        if value is not MISSING:
            self._last_good.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._fresh[key] = value
        self._last_good[key] = value
        self._last_good.move_to_end(key)
        while len(self._last_good) > self._maxsize:
            self._last_good.popitem(last=False)

    def invalidate(self, key: str) -> None:
        """Drop the fresh entry; the last-known-good value survives."""
        self._fresh.pop(key, None)


def cached(
    cache: AsyncTTLCache,
    key_func: Callable[..., str],
    *,
    retry: int = 3,
    retry_delay: float = 1.0,
):
    """Cache an async repository read.

    On a miss the wrapped coroutine is awaited up to *retry* times. When every
    attempt fails, the last-known-good value is returned if there is one;
    otherwise the final exception propagates.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = key_func(*args, **kwargs)

            value = cache.get(key)
            if value is not MISSING:
                return value

            async with cache.lock_for(key):
                value = cache.get(key)
                if value is not MISSING:
                    return value

                last_exc: Exception | None = None
                for attempt in range(1, retry + 1):
                    try:
                        value = await func(*args, **kwargs)
                    except asyncio.CancelledError:
                        raise
                    except Exception as exc:
                        last_exc = exc
                        if attempt < retry:
                            logger.warning(
                                "Read %s failed (%d/%d): %s",
                                key,
                                attempt,
                                retry,
                                type(exc).__name__,
                            )
                            await asyncio.sleep(retry_delay * attempt)
                        continue
                    cache.set(key, value)
                    return value

                stale = cache.get_stale(key)
                if stale is not MISSING:
                    logger.warning("Serving stale value for %s (%s)", key, type(last_exc).__name__)
                    return stale
                raise last_exc  # type: ignore[misc]

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper  # type: ignore[return-value]

    return decorator
