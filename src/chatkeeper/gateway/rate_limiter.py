"""Per-sender inbound cooldown gate with a periodic sweep."""

from __future__ import annotations

import asyncio
import time
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)

# Entries idle for this many cooldown windows are dropped by the sweep.
STALE_WINDOWS = 10


class InboundRateLimiter:
    """Reject messages from a sender seen less than one cooldown window ago."""

    def __init__(
        self,
        cooldown_ms: int = 3000,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_ms = cooldown_ms
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._last_seen: dict[str, float] = {}
        self._sweep_task: asyncio.Task | None = None

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def should_reject(self, sender_id: str) -> bool:
        """Return True while sender_id is inside its cooldown window.

        A rejection does not refresh the entry; an acceptance records now.
        """
        now = self._now_ms()
        last = self._last_seen.get(sender_id)
        if last is not None and now - last < self.cooldown_ms:
            return True
        self._last_seen[sender_id] = now
        return False

    def sweep(self) -> int:
        """Drop entries older than several cooldown windows. Returns count removed."""
        cutoff = self._now_ms() - self.cooldown_ms * STALE_WINDOWS
        stale = [sender for sender, ts in self._last_seen.items() if ts < cutoff]
        for sender in stale:
            del self._last_seen[sender]
        if stale:
            logger.debug("rate_limit_swept", removed=len(stale), remaining=len(self._last_seen))
        return len(stale)

    def __len__(self) -> int:
        return len(self._last_seen)

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._sweep_task and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="rate-limit-sweep")
        logger.info(
            "rate_limiter_started",
            cooldown_ms=self.cooldown_ms,
            sweep_interval_seconds=self.sweep_interval_seconds,
        )

    async def stop(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
        logger.info("rate_limiter_stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()

    def on_config_updated(self, key: str, value) -> None:
        """Config subscriber: apply a hot-updated cooldown."""
        if key == "rate_limit.cooldown_ms":
            self.cooldown_ms = int(value)
            logger.info("rate_limit_cooldown_updated", cooldown_ms=self.cooldown_ms)
