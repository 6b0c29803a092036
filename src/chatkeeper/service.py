"""Composition root: wires config into the session keeper's components."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

import structlog

from .config.manager import ConfigManager
from .gateway.delivery_queue import OutboundDeliveryQueue
from .gateway.message_router import MessageHandler, MessageRouter
from .gateway.rate_limiter import InboundRateLimiter
from .gateway.webhook import WebhookDispatcher
from .observability import logging as log_config
from .observability.health import HealthReport, collect_health
from .persistence.db import DatabaseManager
from .persistence.migrate import apply_migrations
from .runtime.collaborator import CollaboratorFactory
from .runtime.fault_guard import install_fault_guard
from .runtime.lifecycle import LifecycleController, RestartDelays
from .snapshots.store import SnapshotStore

logger = structlog.get_logger(__name__)


class ChatKeeperService:
    """Owns every long-lived component for one process."""

    def __init__(
        self,
        controller: LifecycleController,
        router: MessageRouter,
        rate_limiter: InboundRateLimiter,
        delivery_queue: OutboundDeliveryQueue,
        webhook: WebhookDispatcher,
        store_path: Path,
    ):
        self.controller = controller
        self.router = router
        self.rate_limiter = rate_limiter
        self.delivery_queue = delivery_queue
        self.webhook = webhook
        self.store_path = store_path
        self.started_at = time.time()

    @classmethod
    def from_config(
        cls,
        config: ConfigManager,
        collaborator_factory: CollaboratorFactory,
        message_handler: MessageHandler | None = None,
    ) -> "ChatKeeperService":
        log_config.configure_logging(
            level=config.get("logging.level"), json=config.get("logging.json")
        )
        session_id = config.get("session.name")
        data_path = Path(config.get("session.data_path"))
        store_path = Path(config.get("store.path"))
        min_size = config.get("snapshot.min_size_bytes")
        max_backups = config.get("snapshot.max_backups")

        rate_limiter = InboundRateLimiter(
            cooldown_ms=config.get("rate_limit.cooldown_ms"),
            sweep_interval_seconds=config.get("rate_limit.sweep_interval_seconds"),
        )
        delivery_queue = OutboundDeliveryQueue(
            spacing_seconds=config.get("queue.spacing_seconds"),
            delivery_timeout_seconds=config.get("queue.delivery_timeout_seconds"),
        )
        webhook = WebhookDispatcher(
            url=config.get("webhook.url"),
            secret=config.get("webhook.secret"),
            timeout_seconds=config.get("webhook.timeout_seconds"),
            max_attempts=config.get("webhook.max_attempts"),
            retry_delay_seconds=config.get("webhook.retry_delay_seconds"),
        )
        router = MessageRouter(
            handler=message_handler,
            rate_limiter=rate_limiter,
            delivery_queue=delivery_queue,
            webhook=webhook,
            allowed_chats=config.get("gateway.allowed_chats"),
            max_media_bytes=config.get("webhook.max_media_bytes"),
        )

        def store_factory() -> SnapshotStore:
            return SnapshotStore(
                DatabaseManager(store_path),
                min_size_bytes=min_size,
                max_backups=max_backups,
            )

        controller = LifecycleController(
            session_id=session_id,
            collaborator_factory=collaborator_factory,
            store_factory=store_factory,
            delivery_queue=delivery_queue,
            message_sink=router,
            startup_timeout_seconds=config.get("lifecycle.startup_timeout_seconds"),
            auth_timeout_seconds=config.get("lifecycle.auth_timeout_seconds"),
            backup_interval_seconds=config.get("snapshot.backup_interval_seconds"),
            restart_delays=RestartDelays(
                auth_failure=config.get("lifecycle.restart_delay_auth_failure_seconds"),
                watchdog=config.get("lifecycle.restart_delay_watchdog_seconds"),
                disconnect=config.get("lifecycle.restart_delay_disconnect_seconds"),
                fault=config.get("lifecycle.restart_delay_fault_seconds"),
                startup=config.get("lifecycle.restart_delay_startup_seconds"),
            ),
            local_cache_dirs=[
                data_path / f"RemoteAuth-{session_id}",
                data_path / f"wwebjs_temp_session_{session_id}",
            ],
        )

        config.subscribe(rate_limiter.on_config_updated)
        config.subscribe(delivery_queue.on_config_updated)
        config.subscribe(log_config.on_config_updated)

        logger.info(
            "service_configured",
            session_id=session_id,
            store_path=str(store_path),
            webhook_enabled=webhook.enabled,
            allowed_chat_count=len(router.allowed_chats),
        )
        return cls(controller, router, rate_limiter, delivery_queue, webhook, store_path)

    async def run(self) -> None:
        """Prepare the store schema, then start supervising the collaborator."""
        await asyncio.to_thread(apply_migrations, self.store_path)
        install_fault_guard(self.controller)
        await self.rate_limiter.start()
        await self.controller.start()

    async def shutdown(self) -> None:
        await self.controller.stop()
        await self.delivery_queue.close()
        await self.rate_limiter.stop()
        await self.webhook.close()
        logger.info("service_stopped")

    def health(self) -> HealthReport:
        return collect_health(self.controller, self.started_at)
