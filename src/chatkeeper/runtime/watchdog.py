"""Single-slot watchdog timer."""

from __future__ import annotations

import asyncio
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


class Watchdog:
    """Holds at most one armed deadline.

    Arming replaces whatever was armed before. On expiry the slot is cleared
    before the callback runs, so the callback may re-arm or disarm freely.
    """

    def __init__(self):
        self._task: asyncio.Task | None = None
        self._label: str | None = None

    @property
    def armed(self) -> str | None:
        """Label of the armed deadline, or None."""
        return self._label

    def arm(self, label: str, timeout_seconds: float, on_expire: Callable[[str], None]) -> None:
        self.disarm()
        self._label = label
        self._task = asyncio.create_task(
            self._run(label, timeout_seconds, on_expire), name=f"watchdog-{label}"
        )
        logger.debug("watchdog_armed", label=label, timeout_seconds=timeout_seconds)

    def disarm(self) -> None:
        if self._task is not None:
            self._task.cancel()
            logger.debug("watchdog_disarmed", label=self._label)
        self._task = None
        self._label = None

    async def _run(self, label: str, timeout_seconds: float, on_expire: Callable[[str], None]) -> None:
        await asyncio.sleep(timeout_seconds)
        self._task = None
        self._label = None
        logger.warning("watchdog_expired", label=label, timeout_seconds=timeout_seconds)
        on_expire(label)
