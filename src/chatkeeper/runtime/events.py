"""Lifecycle events emitted by the collaborator.

Each collaborator callback maps onto exactly one of these frozen dataclasses;
the lifecycle controller dispatches on the type in a single function, so the
state machine can be driven by synthetic events in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class LifecycleState(str, Enum):
    STARTING = "starting"
    AWAITING_SCAN = "awaiting_scan"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class LinkingPayloadReady:
    """A fresh linking payload (QR-equivalent) is waiting for a human."""

    payload: str


@dataclass(frozen=True)
class Authenticated:
    pass


@dataclass(frozen=True)
class AuthFailure:
    message: str = ""


@dataclass(frozen=True)
class Ready:
    pass


@dataclass(frozen=True)
class Disconnected:
    reason: str = ""


@dataclass(frozen=True)
class Fault:
    """Collaborator-reported failure that ends the current attempt."""

    error: BaseException


@dataclass(frozen=True)
class SnapshotSaved:
    """The collaborator finished persisting its session to the store."""


@dataclass(frozen=True)
class InboundMessage:
    message_id: str
    sender_id: str
    body: str
    timestamp: float
    handle: Any = field(default=None, compare=False)
    chat_id: str | None = None
    has_media: bool = False
    recipient_id: str = ""
    message_type: str = "chat"
    is_forwarded: bool = False

    @property
    def chat(self) -> str:
        return self.chat_id or self.sender_id


@dataclass(frozen=True)
class Contact:
    name: str = ""
    number: str = ""


@dataclass(frozen=True)
class ChatInfo:
    chat_id: str
    name: str = ""
    is_group: bool = False


@dataclass(frozen=True)
class MediaAttachment:
    """Downloaded message media; ``data`` is base64 encoded."""

    mimetype: str
    data: str
    filename: str = ""


@dataclass(frozen=True)
class Reaction:
    reaction_id: str
    sender_id: str
    emoji: str
    message_id: str


LifecycleEvent = Union[
    LinkingPayloadReady,
    Authenticated,
    AuthFailure,
    Ready,
    Disconnected,
    Fault,
    SnapshotSaved,
    InboundMessage,
    Reaction,
]
