"""Append-only buffer of pending writes per checkpoint."""

import base64
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from .key_codec import KeyCodec
from ..backends.base import KeyValueBackend
from ..models.capability_models import WriteGuarantee
from ..models.checkpoint_models import PendingWriteEntry, ThreadNamespace
from ..tools.retry import RetryManager, compare_and_swap_loop

logger = logging.getLogger(__name__)


def _entry_to_dict(entry: PendingWriteEntry) -> Dict[str, Any]:
    data = entry.model_dump(exclude={"value"})
    data["value"] = base64.b64encode(entry.value).decode("ascii")
    return data


def _entry_from_dict(data: Dict[str, Any]) -> PendingWriteEntry:
    data = dict(data)
    data["value"] = base64.b64decode(data["value"])
    return PendingWriteEntry(**data)


class PendingWritesBuffer:
    """
    Pending-writes buffer with a capability-dependent append discipline.

    - ATOMIC: one multi-value list push per append (ordered-list backends)
    - OPTIMISTIC: read-modify-write guarded by bounded compare-and-swap
    - ADVISORY: unguarded read-modify-write; concurrent appends can drop
      entries, and the guarantee says so

    CRITICAL: The mode is fixed at construction; reads must match writes
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        codec: KeyCodec,
        read_retry: Optional[RetryManager] = None,
        cas_retry: Optional[RetryManager] = None,
        ttl: Optional[int] = None,
    ):
        """
        Initialize pending-writes buffer.

        Args:
            backend: Backend holding the buffers
            codec: Key codec
            read_retry: Retry policy for idempotent reads
            cas_retry: Attempt budget and backoff for compare-and-swap appends
            ttl: Expiry applied on every append
        """
        self.backend = backend
        self.codec = codec
        self.read_retry = read_retry or RetryManager(max_retries=1)
        self.cas_retry = cas_retry or RetryManager(max_retries=8, backoff_base=0.005)
        self.ttl = ttl

        profile = backend.capabilities
        if profile.supports_ordered_list:
            self.guarantee = WriteGuarantee.ATOMIC
        elif profile.supports_cas:
            self.guarantee = WriteGuarantee.OPTIMISTIC
        else:
            self.guarantee = WriteGuarantee.ADVISORY
            logger.warning(
                "Pending writes are advisory-only on this backend: concurrent "
                "appends to one checkpoint may drop entries"
            )

    def writes_key(self, tns: ThreadNamespace, checkpoint_id: str) -> str:
        return self.codec.encode_writes_key(tns.thread_id, tns.namespace, checkpoint_id)

    async def append_writes(
        self,
        tns: ThreadNamespace,
        checkpoint_id: str,
        entries: Sequence[PendingWriteEntry],
    ) -> None:
        """
        Append entries to a checkpoint's buffer.

        Raises:
            WriteContention: If optimistic appends lose every attempt
        """
        if not entries:
            return
        key = self.writes_key(tns, checkpoint_id)

        if self.guarantee is WriteGuarantee.ATOMIC:
            encoded = [json.dumps(_entry_to_dict(e)).encode("utf-8") for e in entries]
            # Newest at the head; reads reverse to get append order.
            await self.backend.list_prepend(key, *encoded, ttl=self.ttl)
            return

        def extend(current: Optional[bytes]) -> bytes:
            existing = json.loads(current) if current else []
            existing.extend(_entry_to_dict(e) for e in entries)
            return json.dumps(existing).encode("utf-8")

        if self.guarantee is WriteGuarantee.OPTIMISTIC:
            await compare_and_swap_loop(
                self.backend, key, extend, self.cas_retry, ttl=self.ttl
            )
        else:
            current = await self.backend.get(key)
            await self.backend.set(key, extend(current), ttl=self.ttl)

        logger.debug(f"Appended {len(entries)} writes to {key}")

    async def read_writes(
        self, tns: ThreadNamespace, checkpoint_id: str
    ) -> List[PendingWriteEntry]:
        """Entries of a checkpoint's buffer in append order."""
        key = self.writes_key(tns, checkpoint_id)
        if self.guarantee is WriteGuarantee.ATOMIC:
            raw_items = await self.read_retry.execute_with_retry(
                self.backend.list_range, key, 0, -1
            )
            return [_entry_from_dict(json.loads(raw)) for raw in reversed(raw_items)]

        raw = await self.read_retry.execute_with_retry(self.backend.get, key)
        if not raw:
            return []
        return [_entry_from_dict(data) for data in json.loads(raw)]

    async def expire(self, tns: ThreadNamespace, checkpoint_id: str, ttl: int) -> bool:
        """Give a superseded checkpoint's buffer a finite lifetime."""
        return await self.backend.touch(self.writes_key(tns, checkpoint_id), ttl)

    async def delete(self, tns: ThreadNamespace, checkpoint_id: str) -> bool:
        return await self.backend.delete(self.writes_key(tns, checkpoint_id))
