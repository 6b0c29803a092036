"""Integration tests: config -> service wiring -> collaborator events -> replies."""

import asyncio
import json
import time

import pytest
import structlog

from chatkeeper.config.manager import ConfigManager
from chatkeeper.observability import logging as log_config
from chatkeeper.runtime.events import Authenticated, InboundMessage, LifecycleState, Ready
from chatkeeper.service import ChatKeeperService


class FakeHandle:
    def __init__(self):
        self.replies = []

    async def reply(self, content, **options):
        self.replies.append(content)


@pytest.fixture
def config(tmp_path):
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        f"""
[session]
name = "svc"
data_path = "{(tmp_path / 'session').as_posix()}"

[store]
path = "{(tmp_path / 'store' / 'snapshots.db').as_posix()}"

[lifecycle]
restart_delay_disconnect_seconds = 0.0
restart_delay_fault_seconds = 0.0

[queue]
spacing_seconds = 0.0

[gateway]
allowed_chats = []
"""
    )
    manager = ConfigManager(config_file=config_file, env_file=tmp_path / "missing.env")
    manager.load_static_config()
    manager.load_dynamic_config_defaults()
    return manager


@pytest.fixture
async def restore_loop_handler():
    loop = asyncio.get_running_loop()
    previous = loop.get_exception_handler()
    yield
    loop.set_exception_handler(previous)


@pytest.mark.asyncio
async def test_message_round_trip(config, make_factory, wait_until, restore_loop_handler):
    """An inbound message reaches the handler and its reply goes out through the queue."""
    handle = FakeHandle()
    message = InboundMessage("m1", "alice@c.us", "ping", time.time(), handle=handle)
    factory = make_factory([Authenticated(), Ready(), message])

    async def handler(msg):
        return f"echo:{msg.body}"

    service = ChatKeeperService.from_config(config, factory, handler)
    try:
        await service.run()
        await wait_until(lambda: handle.replies == ["echo:ping"])

        report = service.health()
        assert report.state == "ready"
        assert report.healthy is True
        assert service.store_path.exists()
    finally:
        await service.shutdown()

    assert service.controller.state is LifecycleState.DISCONNECTED
    assert factory.created[0].destroyed is True


@pytest.mark.asyncio
async def test_rate_limited_second_message_gets_no_reply(
    config, make_factory, wait_until, restore_loop_handler
):
    handle = FakeHandle()
    now = time.time()
    first = InboundMessage("m1", "alice@c.us", "one", now, handle=handle)
    second = InboundMessage("m2", "alice@c.us", "two", now, handle=handle)
    factory = make_factory([Authenticated(), Ready(), first, second])

    async def handler(msg):
        return msg.body

    service = ChatKeeperService.from_config(config, factory, handler)
    try:
        await service.run()
        await wait_until(lambda: handle.replies == ["one"])
        await asyncio.sleep(0.05)
        assert handle.replies == ["one"]
    finally:
        await service.shutdown()


@pytest.mark.asyncio
async def test_dynamic_config_reaches_components(config, make_factory, restore_loop_handler):
    service = ChatKeeperService.from_config(config, make_factory([]))

    await config.update_dynamic_config("rate_limit.cooldown_ms", 50)
    await config.update_dynamic_config("queue.spacing_seconds", 0.25)

    assert service.rate_limiter.cooldown_ms == 50
    assert service.delivery_queue.spacing_seconds == 0.25
    await service.shutdown()


@pytest.mark.asyncio
async def test_process_fault_before_ready_restarts(
    config, make_factory, wait_until, restore_loop_handler
):
    factory = make_factory([], [Authenticated(), Ready()])
    service = ChatKeeperService.from_config(config, factory)
    try:
        await service.run()
        loop = asyncio.get_running_loop()

        loop.call_exception_handler({"message": "boom", "exception": RuntimeError("boom")})

        await wait_until(lambda: service.controller.is_ready)
        assert service.controller.restart_count == 1
    finally:
        await service.shutdown()


@pytest.mark.asyncio
async def test_logging_configured_from_config(
    config, make_factory, wait_until, capsys, restore_loop_handler
):
    """The service applies logging.level and logging.json before anything else logs."""
    config.config_file.write_text(
        config.config_file.read_text() + '\n[logging]\nlevel = "ERROR"\njson = true\n'
    )
    config.load_static_config()
    config.load_dynamic_config_defaults()
    capsys.readouterr()

    factory = make_factory([Authenticated(), Ready()])
    service = ChatKeeperService.from_config(config, factory)
    try:
        await service.run()
        await wait_until(lambda: service.controller.is_ready)
        structlog.get_logger("test").error("service_error_event", code="x")

        out = capsys.readouterr().out
        assert "service_configured" not in out
        assert "lifecycle_transition" not in out
        lines = [line for line in out.splitlines() if line.strip()]
        record = json.loads(lines[-1])
        assert record["event"] == "service_error_event"
        assert record["level"] == "error"
    finally:
        await service.shutdown()
        log_config.configure_logging()


class StalledHandle:
    """Handle whose reply never completes until cancelled."""

    def __init__(self):
        self.started = False
        self.cancelled = False

    async def reply(self, content, **options):
        self.started = True
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight_delivery(
    config, make_factory, wait_until, restore_loop_handler
):
    handle = StalledHandle()
    message = InboundMessage("m1", "alice@c.us", "ping", time.time(), handle=handle)
    factory = make_factory([Authenticated(), Ready(), message])

    async def handler(msg):
        return "pong"

    service = ChatKeeperService.from_config(config, factory, handler)
    await service.run()
    await wait_until(lambda: handle.started)

    await service.shutdown()

    assert handle.cancelled is True
    assert service.delivery_queue.pending == 0
    assert service.delivery_queue.accepting is False
