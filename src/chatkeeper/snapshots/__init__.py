from .store import SnapshotSlot, SnapshotStore

__all__ = ["SnapshotSlot", "SnapshotStore"]
