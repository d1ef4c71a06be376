import pytest

from tutor.services.rate_limit import (
    InMemoryRateLimitStore,
    RateLimitEntry,
    RateLimiter,
    RateLimitPolicy,
    transcript_key,
)


class Clock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def limiter(clock):
    policy = RateLimitPolicy(window_seconds=15 * 60, max_requests=10, key_func=transcript_key)
    return RateLimiter(policy, clock=clock, rng=lambda: 1.0)


BODY = {"courseCode": "ABC1234"}


def test_transcript_key():
    assert transcript_key({"courseCode": "ABC1234"}) == "transcript:ABC1234"
    assert transcript_key({"courseCode": 42}) == "transcript:unknown"
    assert transcript_key({}) == "transcript:unknown"
    assert transcript_key(["not", "a", "dict"]) == "transcript:unknown"


def test_first_request_allowed_with_headers(limiter, clock):
    result = limiter.check(BODY)
    assert result.allowed
    assert result.headers["X-RateLimit-Limit"] == "10"
    assert result.headers["X-RateLimit-Remaining"] == "9"
    assert result.headers["X-RateLimit-Reset"] == str(int(clock.now + 900))


def test_eleventh_request_in_window_denied(limiter, clock):
    for i in range(10):
        result = limiter.check(BODY)
        assert result.allowed
        assert result.headers["X-RateLimit-Remaining"] == str(9 - i)
        clock.now += 10

    denied = limiter.check(BODY)
    assert not denied.allowed
    # 100 s have passed since the window opened.
    assert denied.retry_after == 800
    assert denied.headers["Retry-After"] == "800"
    assert denied.headers["X-RateLimit-Remaining"] == "0"


def test_denial_does_not_count(limiter):
    for _ in range(12):
        limiter.check(BODY)
    assert limiter.store.get("transcript:ABC1234").count == 10


def test_window_reset_allows_again(limiter, clock):
    for _ in range(10):
        limiter.check(BODY)
    assert not limiter.check(BODY).allowed

    clock.now += 15 * 60 + 1
    result = limiter.check(BODY)
    assert result.allowed
    assert result.headers["X-RateLimit-Remaining"] == "9"


def test_keys_are_independent(limiter):
    for _ in range(10):
        limiter.check(BODY)
    assert limiter.check({"courseCode": "XYZ9876"}).allowed
    assert not limiter.check(BODY).allowed


def test_missing_course_code_shares_unknown_bucket(limiter):
    for _ in range(10):
        assert limiter.check({}).allowed
    assert not limiter.check({"courseCode": None}).allowed


def test_probabilistic_sweep_evicts_expired_entries(clock):
    store = InMemoryRateLimitStore()
    store.set("old", RateLimitEntry(count=3, reset_at=clock.now - 1))
    store.set("live", RateLimitEntry(count=3, reset_at=clock.now + 60))
    policy = RateLimitPolicy(window_seconds=60, max_requests=5, key_func=lambda body: "new")
    limiter = RateLimiter(policy, store, cleanup_probability=0.5, clock=clock, rng=lambda: 0.1)

    limiter.check({})

    assert store.get("old") is None
    assert store.get("live") is not None
    assert len(store) == 2


def test_no_sweep_when_roll_misses(clock):
    store = InMemoryRateLimitStore()
    store.set("old", RateLimitEntry(count=3, reset_at=clock.now - 1))
    policy = RateLimitPolicy(window_seconds=60, max_requests=5, key_func=lambda body: "new")
    limiter = RateLimiter(policy, store, cleanup_probability=0.01, clock=clock, rng=lambda: 0.5)

    limiter.check({})

    assert store.get("old") is not None
