"""Unit tests for webhook forwarding."""

import json

import aiohttp
import pytest

from chatkeeper.gateway.webhook import SECRET_HEADER, WebhookDispatcher


class FakeResponse:
    def __init__(self, status):
        self.status = status

    async def read(self):
        return b""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Minimal ClientSession stand-in; fails the first N posts."""

    def __init__(self, failures=0, status=200):
        self.failures = failures
        self.status = status
        self.calls = []
        self.closed = False

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if len(self.calls) <= self.failures:
            raise aiohttp.ClientConnectionError("connection refused")
        return FakeResponse(self.status)

    async def close(self):
        self.closed = True


def make_dispatcher(session, **kwargs):
    kwargs.setdefault("retry_delay_seconds", 0)
    return WebhookDispatcher("http://hooks.local/in", session=session, **kwargs)


class TestDispatch:
    def test_disabled_without_url(self):
        dispatcher = WebhookDispatcher("")
        assert dispatcher.enabled is False
        assert dispatcher.dispatch({"event": "message"}) is None

    @pytest.mark.asyncio
    async def test_posts_json_with_secret_header(self):
        session = FakeSession()
        dispatcher = make_dispatcher(session, secret="s3cret", timeout_seconds=7)

        delivered = await dispatcher.dispatch({"event": "message", "message": {"body": "hi"}})

        assert delivered is True
        call = session.calls[0]
        assert call["url"] == "http://hooks.local/in"
        assert call["headers"][SECRET_HEADER] == "s3cret"
        assert call["headers"]["Content-Type"] == "application/json"
        assert json.loads(call["data"])["message"]["body"] == "hi"
        assert call["timeout"].total == 7

    @pytest.mark.asyncio
    async def test_no_secret_header_when_unset(self):
        session = FakeSession()
        dispatcher = make_dispatcher(session)

        await dispatcher.dispatch({"event": "message"})

        assert SECRET_HEADER not in session.calls[0]["headers"]

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        session = FakeSession(failures=2)
        dispatcher = make_dispatcher(session, max_attempts=3)

        assert await dispatcher.dispatch({"event": "message"}) is True
        assert len(session.calls) == 3

    @pytest.mark.asyncio
    async def test_dropped_after_max_attempts(self):
        session = FakeSession(failures=10)
        dispatcher = make_dispatcher(session, max_attempts=3)

        assert await dispatcher.dispatch({"event": "message"}) is False
        assert len(session.calls) == 3

    @pytest.mark.asyncio
    async def test_error_status_counts_as_delivered(self):
        session = FakeSession(status=500)
        dispatcher = make_dispatcher(session)

        assert await dispatcher.dispatch({"event": "message"}) is True
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_tasks_tracked_until_done(self):
        dispatcher = make_dispatcher(FakeSession())

        task = dispatcher.dispatch({"event": "message"})
        assert dispatcher.in_flight == 1
        await task

        assert dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_close_leaves_injected_session_open():
    session = FakeSession()
    dispatcher = make_dispatcher(session)

    await dispatcher.close()

    assert session.closed is False
