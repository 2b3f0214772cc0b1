"""Sliding-window rate limiting for auth endpoints, kept in process memory."""

import logging
import time
from dataclasses import dataclass, field

from fastapi import Request, status

from wishfund.core.audit import audit_rate_limit_exceeded
from wishfund.core.config import settings
from wishfund.core.errors import AppError


logger = logging.getLogger("wishfund.rate_limit")

MAX_ENTRIES = 10000
CLEANUP_INTERVAL = 100


@dataclass
class RateLimitEntry:
    timestamps: list[float] = field(default_factory=list)
    last_access: float = field(default_factory=time.monotonic)


class InMemoryRateLimiter:
    """Per-key sliding window with periodic eviction of idle keys."""

    def __init__(self, max_entries: int = MAX_ENTRIES):
        self._entries: dict[str, RateLimitEntry] = {}
        self._request_count = 0
        self._max_entries = max_entries

    def _evict(self, idle_seconds: float) -> None:
        now = time.monotonic()
        stale = [
            key
            for key, entry in self._entries.items()
            if now - entry.last_access > idle_seconds
        ]
        for key in stale:
            del self._entries[key]

        overflow = len(self._entries) - self._max_entries
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda kv: kv[1].last_access)
            for key, _ in oldest[: overflow + 100]:
                del self._entries[key]
            logger.warning("Rate limit table over capacity, evicted %d keys", overflow + 100)

    def hit(self, key: str, max_requests: int, window_seconds: int) -> int:
        """Record a request; return 0 when allowed or the retry-after seconds."""
        now = time.monotonic()
        entry = self._entries.setdefault(key, RateLimitEntry())
        entry.last_access = now
        cutoff = now - window_seconds
        entry.timestamps = [ts for ts in entry.timestamps if ts > cutoff]

        if len(entry.timestamps) >= max_requests:
            retry_after = int(entry.timestamps[0] + window_seconds - now) + 1
            return max(1, retry_after)

        entry.timestamps.append(now)
        self._request_count += 1
        if self._request_count % CLEANUP_INTERVAL == 0:
            self._evict(window_seconds * 2)
        return 0

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


limiter = InMemoryRateLimiter()


def get_client_identifier(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    if request.client:
        return f"ip:{request.client.host}"
    return f"ua:{request.headers.get('User-Agent', '')}"


def check_rate_limit(
    request: Request,
    max_requests: int | None = None,
    window_seconds: int | None = None,
    key_suffix: str = "",
) -> None:
    """Raise 429 when the caller exceeded the window for this path."""
    if not settings.rate_limit_enabled:
        return

    client_id = get_client_identifier(request)
    path = request.url.path
    retry_after = limiter.hit(
        f"{client_id}:{path}:{key_suffix.lower()}",
        max_requests or settings.rate_limit_requests,
        window_seconds or settings.rate_limit_window_seconds,
    )
    if retry_after:
        logger.warning(
            "Rate limit exceeded for %s on %s, retry_after=%ds",
            client_id,
            path,
            retry_after,
        )
        audit_rate_limit_exceeded(request, path, retry_after)
        raise AppError(
            f"Rate limit exceeded. Try again in {retry_after} seconds.",
            status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(retry_after)},
        )
