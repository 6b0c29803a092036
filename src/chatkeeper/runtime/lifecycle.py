"""Lifecycle controller: startup supervision and the session state machine.

The controller owns exactly one collaborator and one store connection per
startup attempt. Collaborator callbacks arrive as events and go through
``handle_event``; every terminal condition (disconnect, auth failure, fault,
watchdog expiry) funnels into the same teardown + delayed restart path.

State transitions:
    STARTING -> AWAITING_SCAN     linking payload ready (no usable snapshot)
    STARTING -> AUTHENTICATING    authenticated from a restored snapshot
    AWAITING_SCAN -> AUTHENTICATING
    AUTHENTICATING -> READY
    any -> DISCONNECTED           restart scheduled; next attempt re-enters STARTING
"""

from __future__ import annotations

import asyncio
import functools
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

import structlog

from ..gateway.delivery_queue import OutboundDeliveryQueue
from ..snapshots.store import SnapshotStore
from .collaborator import Collaborator, CollaboratorFactory
from .events import (
    Authenticated,
    AuthFailure,
    Disconnected,
    Fault,
    InboundMessage,
    LifecycleEvent,
    LifecycleState,
    LinkingPayloadReady,
    Reaction,
    Ready,
    SnapshotSaved,
)
from .watchdog import Watchdog

logger = structlog.get_logger(__name__)

WATCHDOG_STARTING = "starting"
WATCHDOG_AUTHENTICATING = "authenticating"


@dataclass
class RestartDelays:
    """Seconds to wait before the next attempt, by cause."""

    auth_failure: float = 5.0
    watchdog: float = 5.0
    disconnect: float = 10.0
    fault: float = 10.0
    startup: float = 15.0


class LifecycleController:
    """Supervise the collaborator and drive the session state machine."""

    def __init__(
        self,
        session_id: str,
        collaborator_factory: CollaboratorFactory,
        store_factory: Callable[[], SnapshotStore],
        delivery_queue: OutboundDeliveryQueue | None = None,
        message_sink: Callable[[LifecycleEvent], Awaitable[Any] | None] | None = None,
        startup_timeout_seconds: float = 300.0,
        auth_timeout_seconds: float = 180.0,
        backup_interval_seconds: int = 300,
        restart_delays: RestartDelays | None = None,
        local_cache_dirs: list[Path] | None = None,
        teardown_timeout_seconds: float = 30.0,
    ):
        self.session_id = session_id
        self.collaborator_factory = collaborator_factory
        self.store_factory = store_factory
        self.delivery_queue = delivery_queue
        self.message_sink = message_sink
        self.startup_timeout_seconds = startup_timeout_seconds
        self.auth_timeout_seconds = auth_timeout_seconds
        self.backup_interval_seconds = backup_interval_seconds
        self.restart_delays = restart_delays or RestartDelays()
        self.local_cache_dirs = local_cache_dirs or []
        self.teardown_timeout_seconds = teardown_timeout_seconds

        self.state = LifecycleState.STARTING
        self.watchdog = Watchdog()
        self.linking_payload: str | None = None
        self.attempt = 0
        self.restart_count = 0

        self._starting = False
        self._stopped = False
        self._restart_pending = False
        self._had_valid_snapshot = False
        self._collaborator: Collaborator | None = None
        self._store: SnapshotStore | None = None
        self._last_snapshot_at: float | None = None
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self.state is LifecycleState.READY

    @property
    def collaborator(self) -> Collaborator | None:
        return self._collaborator

    @property
    def store(self) -> SnapshotStore | None:
        return self._store

    @property
    def last_snapshot_at(self) -> float | None:
        """Epoch seconds of the most recent successful snapshot, if any."""
        candidates = [self._last_snapshot_at]
        if self._store is not None:
            candidates.append(self._store.last_saved_at)
        known = [ts for ts in candidates if ts is not None]
        return max(known) if known else None

    async def start(self) -> None:
        """Run one startup attempt.

        Overlapping calls are no-ops, including calls made while a scheduled
        restart is waiting out its delay; that restart owns the next attempt.
        """
        if self._starting:
            logger.warning("start_already_running", attempt=self.attempt)
            return
        if self._restart_pending:
            logger.warning("start_deferred_to_pending_restart", attempt=self.attempt)
            return
        self._starting = True
        self._stopped = False
        self.attempt += 1
        attempt = self.attempt

        self.linking_payload = None
        self._set_state(LifecycleState.STARTING)
        self.watchdog.arm(WATCHDOG_STARTING, self.startup_timeout_seconds, self._on_watchdog_expired)

        try:
            self._clear_local_cache()
            store = self.store_factory()
            self._store = store
            self._had_valid_snapshot = await self._check_boot_snapshot(store)

            self._collaborator = self.collaborator_factory(
                self.session_id,
                store,
                self.backup_interval_seconds,
                functools.partial(self._emit, attempt),
            )
            logger.info(
                "collaborator_initializing",
                attempt=attempt,
                session_id=self.session_id,
                restore_expected=self._had_valid_snapshot,
            )
            await self._collaborator.initialize()
            logger.info("collaborator_initialized", attempt=attempt, state=self.state.value)
        except Exception as exc:
            if attempt != self.attempt or self._restart_pending or self._stopped:
                logger.warning("startup_error_after_teardown", attempt=attempt, error=str(exc))
                return
            logger.error("startup_failed", attempt=attempt, error=str(exc), exc_info=True)
            self._schedule_restart(self.restart_delays.startup, reason="startup_fault")

    async def stop(self) -> None:
        """Tear down without scheduling another attempt."""
        self._stopped = True
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._restart_pending = False
        self._set_state(LifecycleState.DISCONNECTED)
        if self.delivery_queue is not None:
            self.delivery_queue.suspend()
        await self._teardown()
        logger.info("lifecycle_stopped", attempt=self.attempt)

    def handle_event(self, event: LifecycleEvent) -> None:
        """Apply one collaborator event to the state machine."""
        if isinstance(event, LinkingPayloadReady):
            self._on_linking_payload(event)
        elif isinstance(event, Authenticated):
            self._on_authenticated()
        elif isinstance(event, Ready):
            self._on_ready()
        elif isinstance(event, AuthFailure):
            logger.error("auth_failed", message=event.message)
            self._fail(self.restart_delays.auth_failure, reason="auth_failure")
        elif isinstance(event, Disconnected):
            logger.warning("collaborator_disconnected", reason=event.reason)
            self._fail(self.restart_delays.disconnect, reason="disconnected")
        elif isinstance(event, Fault):
            logger.error("collaborator_fault", error=str(event.error))
            self._fail(self.restart_delays.fault, reason="fault")
        elif isinstance(event, SnapshotSaved):
            self._last_snapshot_at = time.time()
            logger.info("session_backed_up", session_id=self.session_id)
        elif isinstance(event, (InboundMessage, Reaction)):
            self._forward(event)
        else:
            logger.warning("unknown_event_ignored", event_type=type(event).__name__)

    def handle_process_fault(self, exc: BaseException) -> bool:
        """Restart on an unclassified process fault unless the session is READY.

        Returns True if a restart was requested.
        """
        if self.is_ready:
            logger.warning("process_fault_ignored_while_ready", error=str(exc))
            return False
        self._fail(self.restart_delays.fault, reason="process_fault")
        return True

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _emit(self, attempt: int, event: LifecycleEvent) -> None:
        if attempt != self.attempt:
            logger.debug(
                "stale_event_dropped",
                attempt=attempt,
                current_attempt=self.attempt,
                event_type=type(event).__name__,
            )
            return
        self.handle_event(event)

    def _on_linking_payload(self, event: LinkingPayloadReady) -> None:
        if self.state not in (LifecycleState.STARTING, LifecycleState.AWAITING_SCAN):
            logger.warning("linking_payload_ignored", state=self.state.value)
            return
        if self.state is LifecycleState.STARTING:
            self.watchdog.disarm()
            if self._had_valid_snapshot:
                logger.warning("snapshot_restore_failed_rescan_required", session_id=self.session_id)
        self.linking_payload = event.payload
        self._set_state(LifecycleState.AWAITING_SCAN)
        logger.info("linking_payload_ready", session_id=self.session_id)

    def _on_authenticated(self) -> None:
        if self.state not in (LifecycleState.STARTING, LifecycleState.AWAITING_SCAN):
            logger.debug("authenticated_ignored", state=self.state.value)
            return
        if self.state is LifecycleState.STARTING:
            self.watchdog.disarm()
        self.linking_payload = None
        self._set_state(LifecycleState.AUTHENTICATING)
        self.watchdog.arm(
            WATCHDOG_AUTHENTICATING, self.auth_timeout_seconds, self._on_watchdog_expired
        )

    def _on_ready(self) -> None:
        if self.state is LifecycleState.READY:
            logger.info("session_refreshed_still_ready", session_id=self.session_id)
            return
        if self.state is LifecycleState.DISCONNECTED:
            logger.warning("ready_ignored_while_disconnected")
            return
        if self.state is not LifecycleState.AUTHENTICATING:
            logger.warning("ready_without_authentication", state=self.state.value)
        self.watchdog.disarm()
        self.linking_payload = None
        self._set_state(LifecycleState.READY)
        if self.delivery_queue is not None:
            self.delivery_queue.resume()
        logger.info(
            "session_ready",
            session_id=self.session_id,
            attempt=self.attempt,
            restored=self._had_valid_snapshot,
        )

    def _on_watchdog_expired(self, label: str) -> None:
        logger.error(
            "watchdog_forcing_restart",
            label=label,
            state=self.state.value,
            attempt=self.attempt,
        )
        self._fail(self.restart_delays.watchdog, reason=f"watchdog_{label}")

    def _forward(self, event: InboundMessage | Reaction) -> None:
        if self.message_sink is None:
            return
        result = self.message_sink(event)
        if asyncio.iscoroutine(result):
            self._track(asyncio.create_task(result, name="message-sink"))

    # ------------------------------------------------------------------
    # Restart machinery
    # ------------------------------------------------------------------

    def _fail(self, delay: float, reason: str) -> None:
        self.linking_payload = None
        self._schedule_restart(delay, reason)

    def _schedule_restart(self, delay: float, reason: str) -> None:
        if self._stopped:
            return
        if self._restart_pending:
            logger.debug("restart_already_pending", reason=reason)
            return
        self._restart_pending = True
        self._set_state(LifecycleState.DISCONNECTED)
        if self.delivery_queue is not None:
            self.delivery_queue.suspend()
        self.watchdog.disarm()
        logger.warning("restart_scheduled", reason=reason, delay_seconds=delay, attempt=self.attempt)
        self._track(asyncio.create_task(self._restart(delay), name="lifecycle-restart"))

    async def _restart(self, delay: float) -> None:
        await self._teardown()
        await asyncio.sleep(delay)
        self._restart_pending = False
        if self._stopped:
            return
        self.restart_count += 1
        await self.start()

    async def _teardown(self) -> None:
        self.watchdog.disarm()
        self._starting = False

        collaborator, self._collaborator = self._collaborator, None
        if collaborator is not None:
            try:
                await asyncio.wait_for(collaborator.destroy(), timeout=self.teardown_timeout_seconds)
            except Exception as exc:
                logger.debug("collaborator_destroy_failed", error=str(exc))

        store, self._store = self._store, None
        if store is not None:
            if store.last_saved_at is not None:
                self._last_snapshot_at = max(self._last_snapshot_at or 0.0, store.last_saved_at)
            try:
                await store.db_manager.close()
            except Exception as exc:
                logger.debug("store_close_failed", error=str(exc))

    async def _check_boot_snapshot(self, store: SnapshotStore) -> bool:
        if not await store.exists(self.session_id):
            logger.info("no_stored_session_link_required", session_id=self.session_id)
            return False
        if await store.has_valid_slot(self.session_id):
            logger.info("stored_session_found", session_id=self.session_id)
            return True
        logger.warning("stored_session_corrupt_deleting", session_id=self.session_id)
        await store.delete(self.session_id)
        return False

    def _clear_local_cache(self) -> None:
        for directory in self.local_cache_dirs:
            if directory.exists():
                shutil.rmtree(directory, ignore_errors=True)
                logger.info("local_cache_cleared", path=str(directory))

    def _set_state(self, new_state: LifecycleState) -> None:
        if new_state is self.state:
            return
        old_state, self.state = self.state, new_state
        logger.info("lifecycle_transition", from_state=old_state.value, to_state=new_state.value)

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("lifecycle_task_failed", task=task.get_name(), error=str(exc))
