"""Contracts between the lifecycle controller and the browser-automation client."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Protocol

from .events import ChatInfo, Contact, LifecycleEvent, MediaAttachment


class SnapshotProvider(Protocol):
    """Remote snapshot operations the collaborator calls to persist its session."""

    async def exists(self, session_id: str) -> bool: ...

    async def save(self, session_id: str, blob_path: str | Path): ...

    async def restore(self, session_id: str, destination_path: str | Path): ...

    async def delete(self, session_id: str) -> int: ...


class Collaborator(Protocol):
    """Live connection to the messaging platform.

    ``initialize`` begins connecting and returns once the first event has
    been emitted or startup failed. ``destroy`` must tolerate an already
    broken connection.
    """

    async def initialize(self) -> None: ...

    async def destroy(self) -> None: ...


class MessageHandle(Protocol):
    """Per-message handle carried on ``InboundMessage.handle``.

    Only ``reply`` is required. The lookups are optional; the router skips
    any the handle does not provide and treats a failing lookup as missing.
    """

    async def reply(self, content: Any, **options: Any) -> Any: ...

    async def get_contact(self) -> Contact | None: ...

    async def get_chat(self) -> ChatInfo | None: ...

    async def download_media(self) -> MediaAttachment | None: ...


EventSink = Callable[[LifecycleEvent], None]

# factory(session_id, provider, backup_interval_seconds, emit) -> Collaborator
CollaboratorFactory = Callable[[str, SnapshotProvider, int, EventSink], Collaborator]
