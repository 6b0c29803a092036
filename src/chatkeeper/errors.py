"""Structured error taxonomy shared by every chatkeeper layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar


@dataclass
class ChatKeeperError(Exception):
    """Structured error with a stable machine-readable code."""

    code: ClassVar[str] = "chatkeeper_error"

    message: str
    details: dict[str, Any] | None = None
    retryable: bool = False

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details or {},
            "retryable": self.retryable,
        }


class CorruptSnapshotError(ChatKeeperError):
    """Snapshot blob is below the minimum size and must never be stored."""

    code = "corrupt_input"


class SnapshotIOError(ChatKeeperError):
    """Local filesystem problem scoped to one save or restore attempt."""

    code = "snapshot_io"


class NoValidSnapshotError(ChatKeeperError):
    """Every stored slot failed; the session must be linked again."""

    code = "no_valid_snapshot"


class DeliveryTimeoutError(ChatKeeperError):
    """A deadline-bound operation overran its budget."""

    code = "delivery_timeout"


class SessionNotReadyError(ChatKeeperError):
    """Outbound work was requested while the session is not READY."""

    code = "session_not_ready"


class TeardownKind(str, Enum):
    """Known-benign races raised while a connection is being torn down."""

    CONTEXT_DESTROYED = "context_destroyed"
    TARGET_CLOSED = "target_closed"
    SESSION_CLOSED = "session_closed"
    PROTOCOL_ERROR = "protocol_error"
    CLIENT_CLOSED = "client_closed"
    STORE_SESSION_ENDED = "store_session_ended"
    STORE_POOL_CLOSED = "store_pool_closed"
    STORE_TOPOLOGY_CLOSED = "store_topology_closed"


@dataclass
class TeardownRaceError(ChatKeeperError):
    """Raised by collaborator adapters when a call races a teardown."""

    code = "teardown_race"

    kind: TeardownKind = TeardownKind.TARGET_CLOSED


class LocalCleanupError(ChatKeeperError):
    """Permission failure while unlinking local session files."""

    code = "local_cleanup"


class ProcessFault(ChatKeeperError):
    """Unclassified exception caught at the process boundary."""

    code = "fault"
