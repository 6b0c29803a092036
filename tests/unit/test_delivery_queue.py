"""Unit tests for the outbound delivery queue."""

import asyncio

import pytest

from chatkeeper.errors import DeliveryTimeoutError, SessionNotReadyError
from chatkeeper.gateway.delivery_queue import OutboundDeliveryQueue


class FakeTarget:
    """Reply target that records deliveries with their loop timestamps."""

    def __init__(self, log, delay=0.0, fail_with=None):
        self.log = log
        self.delay = delay
        self.fail_with = fail_with

    async def reply(self, content, **options):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.log.append((content, options, asyncio.get_running_loop().time()))
        return f"sent:{content}"


@pytest.fixture
def queue():
    q = OutboundDeliveryQueue(spacing_seconds=0, delivery_timeout_seconds=1.0)
    q.resume()
    return q


class TestEnqueue:
    def test_starts_suspended(self):
        q = OutboundDeliveryQueue()
        assert q.accepting is False

    @pytest.mark.asyncio
    async def test_suspended_queue_refuses(self):
        q = OutboundDeliveryQueue()
        with pytest.raises(SessionNotReadyError) as exc_info:
            q.enqueue(FakeTarget([]), "hi")
        assert exc_info.value.code == "session_not_ready"
        assert q.pending == 0

    @pytest.mark.asyncio
    async def test_future_resolves_with_reply_result(self, queue):
        log = []
        result = await queue.enqueue(FakeTarget(log), "hello", quoted=True)

        assert result == "sent:hello"
        assert log[0][:2] == ("hello", {"quoted": True})

    @pytest.mark.asyncio
    async def test_fifo_order(self, queue):
        log = []
        target = FakeTarget(log)
        futures = [queue.enqueue(target, f"m{i}") for i in range(5)]

        await asyncio.gather(*futures)

        assert [entry[0] for entry in log] == ["m0", "m1", "m2", "m3", "m4"]


class TestDrain:
    @pytest.mark.asyncio
    async def test_timeout_rejects_item_and_queue_continues(self, queue):
        log = []
        slow = queue.enqueue(FakeTarget(log, delay=1.0), "slow", timeout_seconds=0.05)
        fast = queue.enqueue(FakeTarget(log), "fast")

        with pytest.raises(DeliveryTimeoutError):
            await slow
        assert await fast == "sent:fast"
        assert [entry[0] for entry in log] == ["fast"]

    @pytest.mark.asyncio
    async def test_zero_timeout_is_honoured(self, queue):
        """An explicit zero deadline is not replaced by the queue default."""
        slow = queue.enqueue(FakeTarget([], delay=0.2), "slow", timeout_seconds=0)

        with pytest.raises(DeliveryTimeoutError) as exc_info:
            await slow
        assert exc_info.value.details == {"timeout_seconds": 0}

    @pytest.mark.asyncio
    async def test_close_rejects_in_flight_and_queued_items(self, queue):
        log = []
        target = FakeTarget(log, delay=1.0)
        futures = [queue.enqueue(target, f"m{i}") for i in range(3)]
        await asyncio.sleep(0.01)

        await queue.close()

        for future in futures:
            with pytest.raises(SessionNotReadyError):
                await future
        assert log == []
        assert queue.pending == 0
        assert queue.accepting is False

    @pytest.mark.asyncio
    async def test_close_when_idle(self, queue):
        await queue.enqueue(FakeTarget([]), "done")

        await queue.close()

        assert queue.accepting is False

    @pytest.mark.asyncio
    async def test_failed_reply_propagates_to_its_future_only(self, queue):
        log = []
        broken = queue.enqueue(FakeTarget(log, fail_with=RuntimeError("gone")), "a")
        ok = queue.enqueue(FakeTarget(log), "b")

        with pytest.raises(RuntimeError, match="gone"):
            await broken
        assert await ok == "sent:b"

    @pytest.mark.asyncio
    async def test_spacing_between_deliveries(self):
        q = OutboundDeliveryQueue(spacing_seconds=0.05)
        q.resume()
        log = []
        target = FakeTarget(log)

        await asyncio.gather(q.enqueue(target, "a"), q.enqueue(target, "b"))

        gap = log[1][2] - log[0][2]
        assert gap >= 0.045

    @pytest.mark.asyncio
    async def test_suspend_lets_queued_items_drain(self, queue):
        log = []
        future = queue.enqueue(FakeTarget(log), "queued")
        queue.suspend()

        await future
        await queue.join()

        assert [entry[0] for entry in log] == ["queued"]
        with pytest.raises(SessionNotReadyError):
            queue.enqueue(FakeTarget(log), "late")

    @pytest.mark.asyncio
    async def test_new_drain_after_idle(self, queue):
        log = []
        await queue.enqueue(FakeTarget(log), "first")
        await queue.join()

        await queue.enqueue(FakeTarget(log), "second")

        assert [entry[0] for entry in log] == ["first", "second"]


def test_config_hot_update():
    q = OutboundDeliveryQueue()
    q.on_config_updated("queue.spacing_seconds", 0.5)
    q.on_config_updated("queue.delivery_timeout_seconds", 12)
    assert q.spacing_seconds == 0.5
    assert q.delivery_timeout_seconds == 12.0
