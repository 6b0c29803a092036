"""Serialized outbound reply delivery with spacing and per-item deadlines."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from ..errors import DeliveryTimeoutError, SessionNotReadyError

logger = structlog.get_logger(__name__)


class ReplyTarget(Protocol):
    """Anything the collaborator lets us reply to (a message handle)."""

    async def reply(self, content: Any, **options: Any) -> Any: ...


@dataclass
class QueueItem:
    target: ReplyTarget
    content: Any
    options: dict[str, Any] = field(default_factory=dict)
    timeout_seconds: float = 30.0
    future: asyncio.Future | None = None


class OutboundDeliveryQueue:
    """FIFO reply queue drained by at most one worker task.

    Each delivery is bounded by its own deadline. When more items are
    waiting, the worker sleeps ``spacing_seconds`` before the next one so
    outbound throughput stays bounded whatever the producer rate.
    """

    def __init__(
        self,
        spacing_seconds: float = 2.0,
        delivery_timeout_seconds: float = 30.0,
    ):
        self.spacing_seconds = spacing_seconds
        self.delivery_timeout_seconds = delivery_timeout_seconds
        self._items: deque[QueueItem] = deque()
        self._draining = False
        self._accepting = False
        self._drain_task: asyncio.Task | None = None
        self._current: QueueItem | None = None

    @property
    def pending(self) -> int:
        return len(self._items)

    @property
    def accepting(self) -> bool:
        return self._accepting

    def resume(self) -> None:
        """Accept new work (session READY)."""
        if not self._accepting:
            self._accepting = True
            logger.info("delivery_queue_resumed", pending=self.pending)

    def suspend(self) -> None:
        """Refuse new work. Items already queued still drain."""
        if self._accepting:
            self._accepting = False
            logger.info("delivery_queue_suspended", pending=self.pending)

    def enqueue(
        self,
        target: ReplyTarget,
        content: Any,
        timeout_seconds: float | None = None,
        **options: Any,
    ) -> asyncio.Future:
        """
        Queue a reply and return its completion future immediately.

        Raises:
            SessionNotReadyError: Queue is suspended
        """
        if not self._accepting:
            raise SessionNotReadyError(
                message="Outbound delivery refused: session not ready",
                retryable=True,
            )
        item = QueueItem(
            target=target,
            content=content,
            options=options,
            timeout_seconds=(
                timeout_seconds if timeout_seconds is not None
                else self.delivery_timeout_seconds
            ),
            future=asyncio.get_running_loop().create_future(),
        )
        self._items.append(item)
        if not self._draining:
            self._draining = True
            self._drain_task = asyncio.create_task(self._drain(), name="delivery-queue-drain")
        return item.future

    async def _drain(self) -> None:
        logger.debug("delivery_queue_drain_started", pending=self.pending)
        try:
            while self._items:
                self._current = self._items.popleft()
                await self._deliver(self._current)
                self._current = None
                if self._items and self.spacing_seconds > 0:
                    await asyncio.sleep(self.spacing_seconds)
        finally:
            self._draining = False
            logger.debug("delivery_queue_drain_finished")

    async def _deliver(self, item: QueueItem) -> None:
        future = item.future
        try:
            result = await asyncio.wait_for(
                item.target.reply(item.content, **item.options),
                timeout=item.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("delivery_timed_out", timeout_seconds=item.timeout_seconds)
            if not future.done():
                future.set_exception(
                    DeliveryTimeoutError(
                        message=f"Reply timed out after {item.timeout_seconds}s",
                        details={"timeout_seconds": item.timeout_seconds},
                        retryable=True,
                    )
                )
        except Exception as exc:
            logger.error("delivery_failed", error=str(exc))
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)

    async def join(self) -> None:
        """Wait until the current drain pass finishes."""
        if self._drain_task is not None:
            await asyncio.shield(self._drain_task)

    async def close(self) -> None:
        """Stop the worker and reject every undelivered item."""
        self.suspend()
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None

        abandoned = list(self._items)
        if self._current is not None:
            abandoned.insert(0, self._current)
            self._current = None
        self._items.clear()
        for item in abandoned:
            if not item.future.done():
                item.future.set_exception(
                    SessionNotReadyError(
                        message="Outbound delivery abandoned: queue closed",
                        retryable=True,
                    )
                )
        logger.info("delivery_queue_closed", abandoned=len(abandoned))

    def on_config_updated(self, key: str, value) -> None:
        """Config subscriber: apply hot-updated spacing and deadline."""
        if key == "queue.spacing_seconds":
            self.spacing_seconds = float(value)
        elif key == "queue.delivery_timeout_seconds":
            self.delivery_timeout_seconds = float(value)
