"""Unit tests for the single-slot watchdog."""

import asyncio

import pytest

from chatkeeper.runtime.watchdog import Watchdog


@pytest.mark.asyncio
async def test_expiry_calls_back_with_label():
    fired = []
    watchdog = Watchdog()

    watchdog.arm("starting", 0.01, fired.append)
    await asyncio.sleep(0.05)

    assert fired == ["starting"]
    assert watchdog.armed is None


@pytest.mark.asyncio
async def test_arm_replaces_previous():
    fired = []
    watchdog = Watchdog()

    watchdog.arm("starting", 0.01, fired.append)
    watchdog.arm("authenticating", 0.03, fired.append)
    assert watchdog.armed == "authenticating"
    await asyncio.sleep(0.06)

    assert fired == ["authenticating"]


@pytest.mark.asyncio
async def test_disarm_prevents_expiry():
    fired = []
    watchdog = Watchdog()

    watchdog.arm("starting", 0.01, fired.append)
    watchdog.disarm()
    await asyncio.sleep(0.03)

    assert fired == []
    assert watchdog.armed is None


@pytest.mark.asyncio
async def test_callback_may_rearm():
    fired = []
    watchdog = Watchdog()

    def on_expire(label):
        fired.append(label)
        if len(fired) == 1:
            watchdog.arm("second", 0.01, on_expire)

    watchdog.arm("first", 0.01, on_expire)
    await asyncio.sleep(0.08)

    assert fired == ["first", "second"]
