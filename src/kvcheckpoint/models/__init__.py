"""Models package for the checkpoint store."""

from .checkpoint_models import (
    ThreadNamespace,
    CheckpointRef,
    CheckpointRecord,
    PendingWriteEntry,
    CheckpointTuple,
    InconsistencyEvent,
)
from .capability_models import (
    BackendCapabilityProfile,
    WriteGuarantee,
    StoreCapabilities,
)

__all__ = [
    # Checkpoint models
    "ThreadNamespace",
    "CheckpointRef",
    "CheckpointRecord",
    "PendingWriteEntry",
    "CheckpointTuple",
    "InconsistencyEvent",
    # Capability models
    "BackendCapabilityProfile",
    "WriteGuarantee",
    "StoreCapabilities",
]
