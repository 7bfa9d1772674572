"""Storage components composed by the checkpoint store."""

from .key_codec import KeyCodec, DecodedKey
from .ordering_index import (
    OrderingIndex,
    ListOrderingIndex,
    CasOrderingIndex,
    build_ordering_index,
)
from .pending_writes import PendingWritesBuffer
from .record_store import CheckpointRecordStore

__all__ = [
    "KeyCodec",
    "DecodedKey",
    "OrderingIndex",
    "ListOrderingIndex",
    "CasOrderingIndex",
    "build_ordering_index",
    "PendingWritesBuffer",
    "CheckpointRecordStore",
]
