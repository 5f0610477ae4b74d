import pytest

from rate_limits import DEFAULT_RATE_LIMITS, RateGuard, RateLimit, SlidingWindowLimiter
from scout_errors import RateLimited


class Ticker:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_default_ceilings():
    assert DEFAULT_RATE_LIMITS["general"] == RateLimit(900, 100, DEFAULT_RATE_LIMITS["general"].message)
    assert (DEFAULT_RATE_LIMITS["login"].window_seconds, DEFAULT_RATE_LIMITS["login"].max_requests) == (900, 5)
    assert (DEFAULT_RATE_LIMITS["register"].window_seconds, DEFAULT_RATE_LIMITS["register"].max_requests) == (86400, 3)
    assert (DEFAULT_RATE_LIMITS["upload"].window_seconds, DEFAULT_RATE_LIMITS["upload"].max_requests) == (3600, 10)


def test_sixth_login_in_window_is_rejected():
    ticker = Ticker()
    limiter = SlidingWindowLimiter(DEFAULT_RATE_LIMITS["login"], clock=ticker)

    for _ in range(5):
        limiter.hit("10.0.0.1")
        ticker.now += 60
    with pytest.raises(RateLimited) as excinfo:
        limiter.hit("10.0.0.1")

    # first hit was 300s ago in a 900s window
    assert excinfo.value.retry_after == 600


def test_clients_are_counted_separately():
    limiter = SlidingWindowLimiter(RateLimit(60, 1, "slow down"), clock=Ticker())

    limiter.hit("10.0.0.1")
    limiter.hit("10.0.0.2")
    with pytest.raises(RateLimited):
        limiter.hit("10.0.0.1")


def test_window_slides():
    ticker = Ticker()
    limiter = SlidingWindowLimiter(RateLimit(60, 2, "slow down"), clock=ticker)

    limiter.hit("c")
    ticker.now += 30
    limiter.hit("c")
    ticker.now += 31
    # the first hit has left the window, the second has not
    assert limiter.hit("c") == 0
    with pytest.raises(RateLimited) as excinfo:
        limiter.hit("c")
    assert excinfo.value.retry_after == 29


def test_rejected_requests_are_not_counted():
    ticker = Ticker()
    limiter = SlidingWindowLimiter(RateLimit(60, 1, "slow down"), clock=ticker)

    limiter.hit("c")
    for _ in range(5):
        with pytest.raises(RateLimited):
            limiter.hit("c")
    ticker.now += 60
    limiter.hit("c")


def test_retry_after_is_at_least_one_second():
    ticker = Ticker()
    limiter = SlidingWindowLimiter(RateLimit(10, 1, "slow down"), clock=ticker)
    limiter.hit("c")
    ticker.now += 9.9

    with pytest.raises(RateLimited) as excinfo:
        limiter.hit("c")
    assert excinfo.value.retry_after == 1


def test_guard_route_classes_are_independent():
    guard = RateGuard(clock=Ticker())

    for _ in range(5):
        guard.check("login", "c")
    with pytest.raises(RateLimited):
        guard.check("login", "c")
    guard.check("general", "c")
    guard.check("upload", "c")


def test_disabled_guard_never_limits():
    guard = RateGuard(enabled=False, clock=Ticker())
    for _ in range(50):
        guard.check("register", "c")


def test_prune_forgets_idle_clients():
    ticker = Ticker()
    limiter = SlidingWindowLimiter(RateLimit(60, 5, "slow down"), clock=ticker)
    limiter.hit("a")
    ticker.now += 61
    limiter.hit("b")

    limiter.prune()

    assert set(limiter._hits) == {"b"}
