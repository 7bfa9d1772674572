"""Immutable checkpoint record persistence."""

import base64
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from langgraph.checkpoint.serde.jsonplus import JsonPlusSerializer

from .key_codec import KeyCodec
from ..backends.base import KeyValueBackend, SetOp
from ..errors import InvalidMetadata
from ..models.checkpoint_models import CheckpointRecord, ThreadNamespace
from ..tools.retry import RetryManager

logger = logging.getLogger(__name__)

_metadata_serde = JsonPlusSerializer()


def encode_metadata(metadata: Dict[str, Any]) -> Dict[str, str]:
    """
    Serialize metadata with its value types (bytes, datetimes, sets, ...).

    msgpack has no tuple type, so tuples would read back as lists. Anything
    that does not read back equal is rejected instead of silently changed.

    Raises:
        InvalidMetadata: If the metadata cannot be stored unchanged
    """
    try:
        type_, blob = _metadata_serde.dumps_typed(metadata)
        restored = _metadata_serde.loads_typed((type_, blob))
    except Exception as e:
        raise InvalidMetadata(f"Metadata is not serializable: {e}") from e
    if restored != metadata:
        raise InvalidMetadata(
            "Metadata would not read back unchanged (tuples and other values "
            f"msgpack cannot represent are not supported): {metadata!r}"
        )
    return {"type": type_, "data": base64.b64encode(blob).decode("ascii")}


def decode_metadata(document: Dict[str, str]) -> Dict[str, Any]:
    return _metadata_serde.loads_typed(
        (document["type"], base64.b64decode(document["data"]))
    )


class CheckpointRecordStore:
    """
    Record store keyed by (thread, namespace, checkpoint id).

    Records are JSON documents with a base64 payload so that they survive
    text-oriented backends. Metadata is msgpack-encoded by LangGraph's
    JsonPlusSerializer and embedded the same way.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        codec: KeyCodec,
        read_retry: Optional[RetryManager] = None,
        ttl: Optional[int] = None,
    ):
        self.backend = backend
        self.codec = codec
        self.read_retry = read_retry or RetryManager(max_retries=1)
        self.ttl = ttl

    def record_key(self, tns: ThreadNamespace, checkpoint_id: str) -> str:
        return self.codec.encode_record_key(tns.thread_id, tns.namespace, checkpoint_id)

    @staticmethod
    def encode(record: CheckpointRecord) -> bytes:
        """
        Raises:
            InvalidMetadata: If the metadata cannot be stored unchanged
        """
        document = record.model_dump(mode="json", exclude={"payload", "metadata"})
        document["payload"] = base64.b64encode(record.payload).decode("ascii")
        document["metadata"] = encode_metadata(record.metadata)
        return json.dumps(document, ensure_ascii=False).encode("utf-8")

    @staticmethod
    def decode(raw: bytes) -> CheckpointRecord:
        document = json.loads(raw)
        document["payload"] = base64.b64decode(document["payload"])
        document["metadata"] = decode_metadata(document["metadata"])
        return CheckpointRecord(**document)

    def write_op(self, record: CheckpointRecord) -> SetOp:
        """Transaction step that writes the record."""
        return SetOp(
            key=self.record_key(record.thread_namespace, record.checkpoint_id),
            value=self.encode(record),
            ttl=self.ttl,
        )

    async def write(self, record: CheckpointRecord) -> str:
        """
        Persist a record.

        Returns:
            The record key
        """
        op = self.write_op(record)
        await self.backend.set(op.key, op.value, ttl=op.ttl)
        logger.debug(f"Wrote checkpoint record {op.key}")
        return op.key

    async def read(
        self, tns: ThreadNamespace, checkpoint_id: str
    ) -> Optional[CheckpointRecord]:
        raw = await self.read_retry.execute_with_retry(
            self.backend.get, self.record_key(tns, checkpoint_id)
        )
        return self.decode(raw) if raw is not None else None

    async def read_many(
        self, tns: ThreadNamespace, checkpoint_ids: Sequence[str]
    ) -> List[Optional[CheckpointRecord]]:
        """Batch read aligned with ``checkpoint_ids`` (None where absent)."""
        keys = [self.record_key(tns, cid) for cid in checkpoint_ids]
        raws = await self.read_retry.execute_with_retry(self.backend.get_many, keys)
        return [self.decode(raw) if raw is not None else None for raw in raws]

    async def delete(self, tns: ThreadNamespace, checkpoint_id: str) -> bool:
        return await self.backend.delete(self.record_key(tns, checkpoint_id))
