"""Fixed-window request counting for public endpoints.

Counters live in process memory, so with several server instances the limit
applies per instance. ``RateLimiter`` only talks to its store through
``get``/``set``/``sweep``; a shared store can be dropped in without touching
the allow/deny decision.
"""

import logging
import math
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Request, Response

from tutor.config import settings
from tutor.errors import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float  # epoch seconds


@dataclass(frozen=True)
class RateLimitPolicy:
    window_seconds: float
    max_requests: int
    key_func: Callable[[Any], str]
    message: str = "You have exceeded the rate limit. Please try again later."


@dataclass
class RateLimitResult:
    allowed: bool
    headers: dict[str, str]
    retry_after: int | None = None


class InMemoryRateLimitStore:
    def __init__(self) -> None:
        self._entries: dict[str, RateLimitEntry] = {}

    def get(self, key: str) -> RateLimitEntry | None:
        return self._entries.get(key)

    def set(self, key: str, entry: RateLimitEntry) -> None:
        self._entries[key] = entry

    def sweep(self, now: float) -> int:
        """Evict every entry whose window has passed. Returns the number removed."""
        expired = [k for k, e in self._entries.items() if e.reset_at < now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RateLimiter:
    def __init__(
        self,
        policy: RateLimitPolicy,
        store: InMemoryRateLimitStore | None = None,
        *,
        cleanup_probability: float | None = None,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy
        self.store = store or InMemoryRateLimitStore()
        self.cleanup_probability = (
            settings.rate_limit_cleanup_probability
            if cleanup_probability is None
            else cleanup_probability
        )
        self._clock = clock
        self._rng = rng

    def check(self, body: Any) -> RateLimitResult:
        """Count one request for the key derived from *body* and decide."""
        policy = self.policy
        key = policy.key_func(body)
        now = self._clock()

        if self._rng() < self.cleanup_probability:
            self.store.sweep(now)

        entry = self.store.get(key)
        if entry is None or entry.reset_at < now:
            entry = RateLimitEntry(count=1, reset_at=now + policy.window_seconds)
            self.store.set(key, entry)
            return RateLimitResult(
                allowed=True,
                headers=self._headers(policy.max_requests - 1, entry.reset_at),
            )

        if entry.count >= policy.max_requests:
            retry_after = math.ceil(entry.reset_at - now)
            headers = self._headers(0, entry.reset_at)
            headers["Retry-After"] = str(retry_after)
            return RateLimitResult(allowed=False, headers=headers, retry_after=retry_after)

        remaining = policy.max_requests - entry.count
        entry.count += 1
        self.store.set(key, entry)
        return RateLimitResult(
            allowed=True, headers=self._headers(remaining - 1, entry.reset_at)
        )

    def _headers(self, remaining: int, reset_at: float) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.policy.max_requests),
            "X-RateLimit-Remaining": str(max(0, remaining)),
            "X-RateLimit-Reset": str(math.ceil(reset_at)),
        }


def transcript_key(body: Any) -> str:
    course_code = body.get("courseCode") if isinstance(body, dict) else None
    if isinstance(course_code, str):
        return f"transcript:{course_code}"
    return "transcript:unknown"


transcript_upload_limiter = RateLimiter(
    RateLimitPolicy(
        window_seconds=settings.rate_limit_window_seconds,
        max_requests=settings.rate_limit_max_requests,
        key_func=transcript_key,
        message="Too many transcript uploads. Please wait before uploading again.",
    )
)


async def enforce_transcript_rate_limit(request: Request, response: Response) -> None:
    """FastAPI dependency gating the transcript upload endpoint.

    An unreadable body is let through (the limiter fails open); the schema
    layer rejects it right after.
    """
    try:
        body = await request.json()
    except ValueError as e:
        logger.warning(f"Rate limit skipped, request body not parseable: {e}")
        return

    result = transcript_upload_limiter.check(body)
    if not result.allowed:
        logger.warning(
            f"Rate limit exceeded for {transcript_key(body)} "
            f"(retry after {result.retry_after}s)"
        )
        raise RateLimitedError(
            transcript_upload_limiter.policy.message,
            retry_after=result.retry_after or 0,
            headers=result.headers,
        )
    for name, value in result.headers.items():
        response.headers[name] = value
