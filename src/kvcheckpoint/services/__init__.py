"""Services package for checkpoint persistence."""

from .checkpoint_service import CheckpointStore, CheckpointIterator
from .sync_store import SyncCheckpointStore

__all__ = [
    "CheckpointStore",
    "CheckpointIterator",
    "SyncCheckpointStore",
]
