"""Checkpoint data models for state persistence."""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class ThreadNamespace(BaseModel):
    """An independent checkpoint timeline: one (thread, namespace) pair."""

    model_config = ConfigDict(frozen=True)

    thread_id: str = Field(min_length=1, description="Thread identifier")
    namespace: str = Field(default="", description="Checkpoint namespace")


class CheckpointRef(BaseModel):
    """Reference to a stored checkpoint, returned by put."""

    model_config = ConfigDict(frozen=True)

    thread_id: str
    namespace: str
    checkpoint_id: str


class CheckpointRecord(BaseModel):
    """Immutable checkpoint payload with metadata and parent reference."""

    model_config = ConfigDict(frozen=True)

    thread_id: str
    namespace: str = ""
    checkpoint_id: str = Field(min_length=1)
    payload: bytes
    payload_type: str = Field(
        default="bytes", description="Serializer tag of the payload"
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)
    parent_checkpoint_id: Optional[str] = None
    created_at_logical: int = 0

    @property
    def thread_namespace(self) -> ThreadNamespace:
        return ThreadNamespace(thread_id=self.thread_id, namespace=self.namespace)


class PendingWriteEntry(BaseModel):
    """Intermediate side-effect write attached to a checkpoint."""

    model_config = ConfigDict(frozen=True)

    channel: str
    value: bytes
    value_type: str = "bytes"
    task_id: str
    task_path: str = ""


class CheckpointTuple(BaseModel):
    """A checkpoint record together with its pending writes."""

    record: CheckpointRecord
    pending_writes: List[PendingWriteEntry] = Field(default_factory=list)

    @property
    def checkpoint_id(self) -> str:
        return self.record.checkpoint_id


class InconsistencyEvent(BaseModel):
    """Report handed to the observability hook when storage drifts apart."""

    operation: str
    thread_id: str
    namespace: str
    checkpoint_id: Optional[str] = None
    keys: List[str] = Field(default_factory=list)
    detail: str
