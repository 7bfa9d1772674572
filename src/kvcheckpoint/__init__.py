"""Thread-scoped checkpoint store over capability-declared key-value backends."""

from .backends import InMemoryBackend, KeyValueBackend, RedisBackend
from .config import StoreConfig
from .errors import (
    BackendUnavailable,
    CapabilityUnsupported,
    CheckpointNotFound,
    CheckpointStoreError,
    CursorNotFound,
    DeadlineExceeded,
    DeleteUnsupported,
    InvalidMetadata,
    KeyDecodeError,
    KeyTooLongAfterHashing,
    LatestLookupUnsupported,
    ListUnsupported,
    PartialDeleteFailure,
    WriteContention,
    WriteFailed,
)
from .models import (
    BackendCapabilityProfile,
    CheckpointRecord,
    CheckpointRef,
    CheckpointTuple,
    InconsistencyEvent,
    PendingWriteEntry,
    StoreCapabilities,
    ThreadNamespace,
    WriteGuarantee,
)
from .services import CheckpointStore, SyncCheckpointStore

__version__ = "0.1.0"

__all__ = [
    "InMemoryBackend",
    "KeyValueBackend",
    "RedisBackend",
    "StoreConfig",
    "BackendUnavailable",
    "CapabilityUnsupported",
    "CheckpointNotFound",
    "CheckpointStoreError",
    "CursorNotFound",
    "DeadlineExceeded",
    "DeleteUnsupported",
    "InvalidMetadata",
    "KeyDecodeError",
    "KeyTooLongAfterHashing",
    "LatestLookupUnsupported",
    "ListUnsupported",
    "PartialDeleteFailure",
    "WriteContention",
    "WriteFailed",
    "BackendCapabilityProfile",
    "CheckpointRecord",
    "CheckpointRef",
    "CheckpointTuple",
    "InconsistencyEvent",
    "PendingWriteEntry",
    "StoreCapabilities",
    "ThreadNamespace",
    "WriteGuarantee",
    "CheckpointStore",
    "SyncCheckpointStore",
]
