"""
Message Router - per-message pipeline between the collaborator and the app.

Applies the chat allow-list and the inbound rate limiter, hands accepted
messages to the external handler, queues its reply, and forwards every
non-empty message, enriched with sender details, to the webhook.
"""

from __future__ import annotations

import math
import time
from typing import Any, Awaitable, Callable

import structlog

from ..errors import SessionNotReadyError
from ..runtime.events import InboundMessage, MediaAttachment, Reaction
from .delivery_queue import OutboundDeliveryQueue
from .rate_limiter import InboundRateLimiter
from .webhook import WebhookDispatcher

logger = structlog.get_logger(__name__)

BROADCAST_SENDER = "status@broadcast"
GROUP_SUFFIX = "@g.us"
MAX_MEDIA_WEBHOOK_BYTES = 5 * 1024 * 1024

MessageHandler = Callable[[InboundMessage], Awaitable[str | None]]


class MessageRouter:
    """Routes inbound collaborator messages to the application handler."""

    def __init__(
        self,
        handler: MessageHandler | None,
        rate_limiter: InboundRateLimiter,
        delivery_queue: OutboundDeliveryQueue,
        webhook: WebhookDispatcher | None = None,
        allowed_chats: list[str] | None = None,
        max_media_bytes: int = MAX_MEDIA_WEBHOOK_BYTES,
    ):
        """
        Initialize MessageRouter.

        Args:
            handler: Async callable returning reply text (or None for no reply)
            rate_limiter: Per-sender cooldown gate
            delivery_queue: Outbound reply queue
            webhook: Optional webhook dispatcher for event forwarding
            allowed_chats: Chats to serve; empty means all
            max_media_bytes: Largest decoded attachment inlined in webhook payloads
        """
        self.handler = handler
        self.rate_limiter = rate_limiter
        self.delivery_queue = delivery_queue
        self.webhook = webhook
        self.allowed_chats = set(allowed_chats or [])
        self.max_media_bytes = max_media_bytes

    async def __call__(self, event: InboundMessage | Reaction) -> None:
        if isinstance(event, Reaction):
            self.route_reaction(event)
        else:
            await self.route(event)

    async def route(self, message: InboundMessage) -> bool:
        """
        Process one inbound message.

        Returns:
            True if the handler ran, False if the message was filtered out
        """
        if message.sender_id == BROADCAST_SENDER:
            return False
        if self.allowed_chats and message.chat not in self.allowed_chats:
            logger.debug("message_from_unlisted_chat", chat_id=message.chat)
            return False

        handled = False
        if self.rate_limiter.should_reject(message.sender_id):
            logger.info("message_rate_limited", sender_id=message.sender_id)
        elif self.handler is not None:
            handled = True
            await self._handle(message)

        await self._forward_message(message)
        return handled

    def route_reaction(self, reaction: Reaction) -> None:
        if self.webhook is None:
            return
        self.webhook.dispatch({
            "event": "reaction",
            "timestamp": int(time.time() * 1000),
            "reaction": {
                "id": reaction.reaction_id,
                "from": reaction.sender_id,
                "emoji": reaction.emoji,
                "messageId": reaction.message_id,
            },
        })

    async def _handle(self, message: InboundMessage) -> None:
        logger.info(
            "message_received",
            sender_id=message.sender_id,
            message_length=len(message.body),
        )
        try:
            reply = await self.handler(message)
        except Exception as exc:
            logger.error("message_handler_failed", sender_id=message.sender_id, error=str(exc))
            reply = f"An error occurred: {exc}"
        if reply:
            self._queue_reply(message, reply)

    def _queue_reply(self, message: InboundMessage, content: Any) -> None:
        if message.handle is None:
            logger.warning("reply_without_handle", message_id=message.message_id)
            return
        try:
            future = self.delivery_queue.enqueue(message.handle, content)
        except SessionNotReadyError:
            logger.warning("reply_dropped_session_not_ready", message_id=message.message_id)
            return
        future.add_done_callback(self._log_reply_outcome)

    @staticmethod
    def _log_reply_outcome(future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("reply_delivery_failed", error=str(exc))

    async def _forward_message(self, message: InboundMessage) -> None:
        if self.webhook is None:
            return
        if not message.body and not message.has_media:
            return

        contact = await self._lookup(message, "get_contact")
        chat = await self._lookup(message, "get_chat")
        payload: dict[str, Any] = {
            "event": "message",
            "timestamp": int(time.time() * 1000),
            "message": {
                "id": message.message_id,
                "from": message.sender_id,
                "to": message.recipient_id,
                "chat": message.chat,
                "body": message.body or "",
                "type": message.message_type,
                "hasMedia": message.has_media,
                "isGroup": message.sender_id.endswith(GROUP_SUFFIX),
                "isForwarded": message.is_forwarded,
                "timestamp": int(message.timestamp),
            },
            "contact": (
                {"name": contact.name, "number": contact.number} if contact else None
            ),
            "chat": (
                {"id": chat.chat_id, "name": chat.name, "isGroup": chat.is_group}
                if chat
                else None
            ),
        }

        if message.has_media:
            media = await self._lookup(message, "download_media")
            if media is not None:
                self._attach_media(payload["message"], media)

        self.webhook.dispatch(payload)

    def _attach_media(self, body: dict[str, Any], media: MediaAttachment) -> None:
        # Decoded size of the base64 payload
        size = math.ceil(len(media.data) * 0.75)
        if size <= self.max_media_bytes:
            body["media"] = {
                "mimetype": media.mimetype,
                "filename": media.filename or "",
                "data": media.data,
            }
            return
        logger.warning("webhook_media_too_large", size=size, limit=self.max_media_bytes)
        body["mediaTooLarge"] = True
        body["mediaSize"] = size

    @staticmethod
    async def _lookup(message: InboundMessage, name: str) -> Any:
        lookup = getattr(message.handle, name, None)
        if not callable(lookup):
            return None
        try:
            return await lookup()
        except Exception as exc:
            logger.warning(
                "message_lookup_failed",
                lookup=name,
                message_id=message.message_id,
                error=str(exc),
            )
            return None
