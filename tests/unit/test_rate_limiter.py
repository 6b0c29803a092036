"""Unit tests for the inbound rate limiter."""

import asyncio

import pytest

from chatkeeper.gateway.rate_limiter import STALE_WINDOWS, InboundRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance_ms(self, ms):
        self.now += ms / 1000


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return InboundRateLimiter(cooldown_ms=3000, clock=clock)


class TestShouldReject:
    def test_cooldown_example(self, limiter, clock):
        """t=0 accepted, t=1000 rejected, t=3100 accepted."""
        assert limiter.should_reject("alice") is False
        clock.advance_ms(1000)
        assert limiter.should_reject("alice") is True
        clock.advance_ms(2100)
        assert limiter.should_reject("alice") is False

    def test_rejection_does_not_extend_window(self, limiter, clock):
        limiter.should_reject("alice")
        for _ in range(5):
            clock.advance_ms(500)
            limiter.should_reject("alice")
        clock.advance_ms(500)  # 3000 ms after the accepted message
        assert limiter.should_reject("alice") is False

    def test_senders_independent(self, limiter, clock):
        assert limiter.should_reject("alice") is False
        assert limiter.should_reject("bob") is False
        clock.advance_ms(10)
        assert limiter.should_reject("alice") is True
        assert limiter.should_reject("bob") is True

    def test_zero_cooldown_never_rejects(self, clock):
        limiter = InboundRateLimiter(cooldown_ms=0, clock=clock)
        assert limiter.should_reject("alice") is False
        assert limiter.should_reject("alice") is False


class TestSweep:
    def test_sweep_drops_stale_entries(self, limiter, clock):
        limiter.should_reject("old")
        clock.advance_ms(3000 * STALE_WINDOWS + 1)
        limiter.should_reject("fresh")

        removed = limiter.sweep()

        assert removed == 1
        assert len(limiter) == 1

    def test_sweep_keeps_recent_entries(self, limiter, clock):
        limiter.should_reject("alice")
        clock.advance_ms(3000)
        assert limiter.sweep() == 0
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_background_sweep_runs(self, clock):
        limiter = InboundRateLimiter(cooldown_ms=1, sweep_interval_seconds=0.01, clock=clock)
        limiter.should_reject("alice")
        clock.advance_ms(1000)

        await limiter.start()
        await asyncio.sleep(0.05)
        await limiter.stop()

        assert len(limiter) == 0


def test_cooldown_hot_update(limiter, clock):
    limiter.on_config_updated("rate_limit.cooldown_ms", 100)
    limiter.should_reject("alice")
    clock.advance_ms(150)
    assert limiter.should_reject("alice") is False
