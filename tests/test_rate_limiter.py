"""Tests for the rate limiting policy."""

from ingestion.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_first_request_waits_full_delay():
    clock = FakeClock()
    limiter = RateLimiter(delay_seconds=1.0, sleep=clock.sleep, clock=clock)

    limiter.wait()

    assert clock.sleeps == [1.0]


def test_wait_only_sleeps_remaining_delay():
    clock = FakeClock()
    limiter = RateLimiter(delay_seconds=1.0, sleep=clock.sleep, clock=clock)
    limiter.wait()

    clock.now += 0.25
    limiter.wait()

    assert clock.sleeps[-1] == 0.75


def test_no_sleep_when_delay_already_passed():
    clock = FakeClock()
    limiter = RateLimiter(delay_seconds=1.0, sleep=clock.sleep, clock=clock)
    limiter.wait()

    clock.now += 5
    limiter.wait()

    assert clock.sleeps == [1.0]


def test_cooldown_consumes_retry_budget():
    clock = FakeClock()
    limiter = RateLimiter(cooldown_seconds=60, max_retries=1, sleep=clock.sleep, clock=clock)

    assert limiter.can_retry
    limiter.cooldown()
    assert clock.sleeps == [60]
    assert not limiter.can_retry

    limiter.reset()
    assert limiter.can_retry


def test_from_config():
    limiter = RateLimiter.from_config({"delay_seconds": 2, "cooldown_seconds": 30, "max_retries": 0})

    assert limiter.delay_seconds == 2
    assert limiter.cooldown_seconds == 30
    assert not limiter.can_retry
