"""
Gateway module.

Per-message traffic between the collaborator and the outside world:
inbound rate limiting and routing, serialized outbound replies, and
webhook forwarding.
"""

from .delivery_queue import OutboundDeliveryQueue
from .message_router import MessageRouter
from .rate_limiter import InboundRateLimiter
from .webhook import WebhookDispatcher

__all__ = ["OutboundDeliveryQueue", "MessageRouter", "InboundRateLimiter", "WebhookDispatcher"]
