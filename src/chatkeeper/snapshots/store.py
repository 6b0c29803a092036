"""Slot-based session snapshot store with bounded retention and fallback restore.

Every save uploads a new slot named ``{session_id}.{upload_ts}`` instead of
overwriting in place, so a crash mid-upload leaves at worst one undersized
slot that restore skips. Restore walks slots newest-first and returns the
first one whose stored and downloaded sizes both clear the threshold.
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import structlog

from ..errors import (
    CorruptSnapshotError,
    LocalCleanupError,
    NoValidSnapshotError,
    SnapshotIOError,
)
from ..persistence.db import DatabaseManager

logger = structlog.get_logger(__name__)

DEFAULT_MIN_SIZE_BYTES = 1000
DEFAULT_MAX_BACKUPS = 1


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SnapshotSlot:
    """One retained snapshot instance."""

    session_id: str
    filename: str
    size_bytes: int
    upload_ts: int  # epoch milliseconds, strictly increasing per session

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.upload_ts / 1000, tz=timezone.utc)


def _write_blob(path: Path, data: bytes) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path.stat().st_size


class SnapshotStore:
    """Remote snapshot repository for collaborator session state.

    Exposes the provider contract the collaborator consumes
    (exists/save/restore/delete) plus the boot-time helpers the lifecycle
    controller uses to decide whether a restore is worth attempting.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        min_size_bytes: int = DEFAULT_MIN_SIZE_BYTES,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        clock: Callable[[], int] = _epoch_ms,
    ):
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")
        self.db_manager = db_manager
        self.min_size_bytes = min_size_bytes
        self.max_backups = max_backups
        self._clock = clock
        self._save_locks: dict[str, asyncio.Lock] = {}
        self.last_saved_at: float | None = None

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._save_locks.get(session_id)
        if lock is None:
            lock = self._save_locks[session_id] = asyncio.Lock()
        return lock

    async def exists(self, session_id: str) -> bool:
        """Return True if at least one slot is stored, valid or not."""
        db = await self.db_manager.get_connection()
        prefix = f"{session_id}."
        cursor = await db.execute(
            """
            SELECT 1 FROM snapshot_slots
            WHERE bucket = ? AND substr(filename, 1, ?) = ?
            LIMIT 1
            """,
            (session_id, len(prefix), prefix),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row is not None

    async def has_valid_slot(self, session_id: str) -> bool:
        """Return True if any stored slot's recorded size clears the threshold."""
        db = await self.db_manager.get_connection()
        cursor = await db.execute(
            "SELECT 1 FROM snapshot_slots WHERE bucket = ? AND length >= ? LIMIT 1",
            (session_id, self.min_size_bytes),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row is not None

    async def list_slots(self, session_id: str) -> list[SnapshotSlot]:
        """List slots for a session, newest first."""
        db = await self.db_manager.get_connection()
        cursor = await db.execute(
            """
            SELECT filename, length, upload_ts FROM snapshot_slots
            WHERE bucket = ?
            ORDER BY upload_ts DESC, id DESC
            """,
            (session_id,),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [
            SnapshotSlot(
                session_id=session_id,
                filename=row[0],
                size_bytes=row[1],
                upload_ts=row[2],
            )
            for row in rows
        ]

    async def save(self, session_id: str, blob_path: str | Path) -> SnapshotSlot:
        """
        Upload a local snapshot blob as a new slot and prune old slots.

        Args:
            session_id: Session identifier (bucket name)
            blob_path: Local path of the blob produced by the collaborator

        Returns:
            The slot that was written

        Raises:
            SnapshotIOError: Local blob is missing or unreadable
            CorruptSnapshotError: Local blob is below the size threshold
        """
        path = Path(blob_path)
        async with self._lock_for(session_id):
            try:
                data = await asyncio.to_thread(path.read_bytes)
            except FileNotFoundError as exc:
                raise SnapshotIOError(
                    message=f"Snapshot blob not found: {path}",
                    details={"session_id": session_id, "path": str(path)},
                    retryable=True,
                ) from exc
            except OSError as exc:
                raise SnapshotIOError(
                    message=f"Snapshot blob unreadable: {exc}",
                    details={"session_id": session_id, "path": str(path)},
                    retryable=True,
                ) from exc

            size = len(data)
            if size < self.min_size_bytes:
                logger.warning(
                    "snapshot_rejected_undersized",
                    session_id=session_id,
                    size_bytes=size,
                    min_size_bytes=self.min_size_bytes,
                )
                raise CorruptSnapshotError(
                    message=f"Snapshot blob too small ({size} bytes)",
                    details={
                        "session_id": session_id,
                        "size_bytes": size,
                        "min_size_bytes": self.min_size_bytes,
                    },
                )

            db = await self.db_manager.get_connection()
            upload_ts = await self._next_upload_ts(session_id)
            slot = SnapshotSlot(
                session_id=session_id,
                filename=f"{session_id}.{upload_ts}",
                size_bytes=size,
                upload_ts=upload_ts,
            )
            await db.execute(
                """
                INSERT INTO snapshot_slots (bucket, filename, length, upload_ts, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                (session_id, slot.filename, size, upload_ts, data),
            )
            await db.commit()

            pruned = await self._prune(session_id)
            self.last_saved_at = time.time()
            self._remove_local_blob(path)

        logger.info(
            "snapshot_saved",
            session_id=session_id,
            slot=slot.filename,
            size_kb=round(size / 1024, 1),
            pruned_count=pruned,
        )
        return slot

    async def restore(self, session_id: str, destination_path: str | Path) -> SnapshotSlot:
        """
        Download the newest usable slot into destination_path.

        Raises:
            NoValidSnapshotError: No slot stored, or every slot failed
        """
        destination = Path(destination_path)
        slots = await self.list_slots(session_id)
        if not slots:
            raise NoValidSnapshotError(
                message="No snapshot slots stored",
                details={"session_id": session_id},
            )

        for index, slot in enumerate(slots, start=1):
            if slot.size_bytes < self.min_size_bytes:
                logger.warning(
                    "snapshot_slot_undersized",
                    session_id=session_id,
                    slot=slot.filename,
                    slot_index=index,
                    size_bytes=slot.size_bytes,
                )
                continue

            try:
                data = await self._download(slot.filename)
                downloaded = await asyncio.to_thread(_write_blob, destination, data)
            except (sqlite3.Error, OSError) as exc:
                logger.warning(
                    "snapshot_slot_download_failed",
                    session_id=session_id,
                    slot=slot.filename,
                    slot_index=index,
                    error=str(exc),
                )
                continue

            if downloaded < self.min_size_bytes:
                logger.warning(
                    "snapshot_slot_empty",
                    session_id=session_id,
                    slot=slot.filename,
                    slot_index=index,
                    downloaded_bytes=downloaded,
                )
                self._remove_local_blob(destination)
                continue

            logger.info(
                "snapshot_restored",
                session_id=session_id,
                slot=slot.filename,
                slot_index=index,
                size_kb=round(downloaded / 1024, 1),
            )
            return slot

        raise NoValidSnapshotError(
            message="All snapshot slots failed",
            details={"session_id": session_id, "slot_count": len(slots)},
        )

    async def delete(self, session_id: str) -> int:
        """Remove every slot for a session. Returns the number removed."""
        db = await self.db_manager.get_connection()
        cursor = await db.execute(
            "DELETE FROM snapshot_slots WHERE bucket = ?",
            (session_id,),
        )
        deleted = cursor.rowcount
        await cursor.close()
        await db.commit()
        logger.info("snapshot_slots_deleted", session_id=session_id, deleted_count=deleted)
        return deleted

    async def _next_upload_ts(self, session_id: str) -> int:
        db = await self.db_manager.get_connection()
        cursor = await db.execute(
            "SELECT MAX(upload_ts) FROM snapshot_slots WHERE bucket = ?",
            (session_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        now = self._clock()
        if row is not None and row[0] is not None and row[0] >= now:
            return row[0] + 1
        return now

    async def _prune(self, session_id: str) -> int:
        db = await self.db_manager.get_connection()
        cursor = await db.execute(
            """
            DELETE FROM snapshot_slots WHERE id IN (
                SELECT id FROM snapshot_slots
                WHERE bucket = ?
                ORDER BY upload_ts DESC, id DESC
                LIMIT -1 OFFSET ?
            )
            """,
            (session_id, self.max_backups),
        )
        pruned = cursor.rowcount
        await cursor.close()
        await db.commit()
        return pruned

    async def _download(self, filename: str) -> bytes:
        db = await self.db_manager.get_connection()
        cursor = await db.execute(
            "SELECT data FROM snapshot_slots WHERE filename = ?",
            (filename,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return bytes(row[0]) if row is not None else b""

    @staticmethod
    def _remove_local_blob(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except PermissionError as exc:
            # The fault guard classifies this as silent; the slot is already stored.
            error = LocalCleanupError(
                message=f"Cannot remove local snapshot file: {exc}",
                details={"path": str(path)},
            )
            asyncio.get_running_loop().call_exception_handler(
                {"message": "snapshot_local_cleanup_denied", "exception": error}
            )
        except OSError as exc:
            logger.warning("snapshot_local_cleanup_failed", path=str(path), error=str(exc))
