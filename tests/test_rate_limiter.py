"""Tests for the GitLab API call gate."""
import pytest

from rate_limiter import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_first_call_does_not_wait():
    clock = FakeClock()
    limiter = RateLimiter(10, clock=clock, sleep=clock.sleep)
    limiter()
    assert clock.sleeps == []


def test_calls_are_spaced():
    clock = FakeClock()
    limiter = RateLimiter(4, clock=clock, sleep=clock.sleep)
    for _ in range(3):
        limiter()
    assert clock.sleeps == [pytest.approx(0.25), pytest.approx(0.25)]


def test_no_wait_after_idle_period():
    clock = FakeClock()
    limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)
    limiter()
    clock.now += 5
    limiter()
    assert clock.sleeps == []


@pytest.mark.parametrize('rate', [0, -1])
def test_rejects_non_positive_rate(rate):
    with pytest.raises(ValueError):
        RateLimiter(rate)
