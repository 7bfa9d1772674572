"""Checkpoint store orchestrating records, ordering and pending writes."""

import logging
import time
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Union,
)

from ..backends.base import KeyValueBackend
from ..config.store_config import StoreConfig
from ..core.key_codec import KeyCodec
from ..core.ordering_index import OrderingIndex, build_ordering_index
from ..core.pending_writes import PendingWritesBuffer
from ..core.record_store import CheckpointRecordStore
from ..errors import (
    CapabilityUnsupported,
    CheckpointNotFound,
    CursorNotFound,
    DeadlineExceeded,
    DeleteUnsupported,
    InvalidMetadata,
    LatestLookupUnsupported,
    ListUnsupported,
    PartialDeleteFailure,
    WriteContention,
    WriteFailed,
)
from ..models.capability_models import StoreCapabilities
from ..models.checkpoint_models import (
    CheckpointRecord,
    CheckpointRef,
    CheckpointTuple,
    InconsistencyEvent,
    PendingWriteEntry,
    ThreadNamespace,
)
from ..tools.retry import RetryManager
from ..utils.deadline import Deadline

logger = logging.getLogger(__name__)

MetadataFilter = Union[Mapping[str, Any], Callable[[Dict[str, Any]], bool]]
InconsistencyHook = Callable[[InconsistencyEvent], None]


def _metadata_predicate(
    filter: Optional[MetadataFilter],
) -> Callable[[Dict[str, Any]], bool]:
    if filter is None:
        return lambda metadata: True
    if callable(filter):
        return filter
    expected = dict(filter)
    return lambda metadata: all(
        key in metadata and metadata[key] == value for key, value in expected.items()
    )


class CheckpointIterator:
    """
    Lazy newest-to-oldest sequence of checkpoint tuples.

    The id range is fixed when the iterator is created; records are fetched
    in batches as the caller advances. Not restartable.
    """

    def __init__(
        self,
        store: "CheckpointStore",
        tns: ThreadNamespace,
        checkpoint_ids: Sequence[str],
        predicate: Callable[[Dict[str, Any]], bool],
        deadline: Deadline,
    ):
        self._store = store
        self._tns = tns
        self._pending_ids = list(checkpoint_ids)
        self._predicate = predicate
        self._deadline = deadline
        self._buffer: List[CheckpointTuple] = []
        self._seen: Set[str] = set()

    def __aiter__(self) -> "CheckpointIterator":
        return self

    async def __anext__(self) -> CheckpointTuple:
        while not self._buffer:
            if not self._pending_ids:
                raise StopAsyncIteration
            await self._fetch_batch()
        return self._buffer.pop(0)

    async def _fetch_batch(self) -> None:
        size = self._store.config.list_batch_size
        batch = self._pending_ids[:size]
        self._pending_ids = self._pending_ids[size:]

        records = await self._deadline.run(
            self._store.records.read_many(self._tns, batch)
        )
        for checkpoint_id, record in zip(batch, records):
            if checkpoint_id in self._seen:
                continue
            self._seen.add(checkpoint_id)
            if record is None:
                logger.debug(
                    f"Skipping indexed checkpoint {checkpoint_id} whose record expired"
                )
                continue
            if not self._predicate(record.metadata):
                continue
            writes = await self._deadline.run(
                self._store.writes.read_writes(self._tns, checkpoint_id)
            )
            self._buffer.append(CheckpointTuple(record=record, pending_writes=writes))

    async def collect(self) -> List[CheckpointTuple]:
        """Drain the remaining tuples into a list."""
        return [item async for item in self]


class CheckpointStore:
    """
    Thread-scoped, versioned checkpoint store over a key-value backend.

    PATTERN: Facade over record store, ordering index and pending writes
    CRITICAL: Operations the backends cannot serve exactly fail fast with
              an error naming the missing capability
    GOTCHA: Without multi-key atomicity a put is two writes; a record whose
            index append failed is an orphan reclaimed only by TTL
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        config: Optional[StoreConfig] = None,
        index_backend: Optional[KeyValueBackend] = None,
        on_inconsistency: Optional[InconsistencyHook] = None,
    ):
        """
        Initialize checkpoint store.

        Args:
            backend: Backend for records and pending writes
            config: Store configuration
            index_backend: Separate backend for the ordering index (default: backend)
            on_inconsistency: Observability hook for orphaned or unregistered data
        """
        self.config = config or StoreConfig()
        self.backend = backend
        self.index_backend = index_backend or backend
        self.on_inconsistency = on_inconsistency

        self.codec = KeyCodec(
            prefix=self.config.key_prefix,
            max_key_length=min(
                self.config.max_key_length,
                backend.max_key_length,
                self.index_backend.max_key_length,
            ),
        )
        self.read_retry = RetryManager(
            max_retries=self.config.read_retries,
            backoff_base=self.config.read_backoff_base,
        )
        self.cas_retry = RetryManager(
            max_retries=self.config.cas_max_attempts,
            backoff_base=self.config.cas_backoff_base,
            max_delay=self.config.cas_max_delay,
        )
        self.write_retry = (
            RetryManager(
                max_retries=self.config.read_retries,
                backoff_base=self.config.read_backoff_base,
            )
            if self.config.retry_writes
            else RetryManager(max_retries=1)
        )

        ttl = self.config.record_ttl
        self.records = CheckpointRecordStore(
            backend, self.codec, read_retry=self.read_retry, ttl=ttl
        )
        self.writes = PendingWritesBuffer(
            backend,
            self.codec,
            read_retry=self.read_retry,
            cas_retry=self.cas_retry,
            ttl=ttl,
        )
        self.index: Optional[OrderingIndex] = build_ordering_index(
            self.index_backend,
            self.codec,
            read_retry=self.read_retry,
            cas_retry=self.cas_retry,
            ttl=ttl,
            emulate_with_cas=self.config.emulate_ordering,
        )

        self._atomic_put = (
            self.index is not None
            and self.index.kind == "list"
            and self.index_backend is backend
            and backend.capabilities.supports_multi_key_atomicity
        )
        if self.index is not None and not self._atomic_put and ttl is None:
            logger.warning(
                "Puts are not atomic and no record TTL is configured; "
                "orphaned records will never be reclaimed"
            )

        logger.info(
            f"Checkpoint store ready (ordering={self.index.kind if self.index else None}, "
            f"atomic_put={self._atomic_put}, pending_writes={self.writes.guarantee.value})"
        )

    def _deadline(self, operation: str, timeout: Optional[float]) -> Deadline:
        return Deadline(
            operation, timeout if timeout is not None else self.config.default_timeout
        )

    def _report(self, event: InconsistencyEvent) -> None:
        """Surface an inconsistency through the log and the hook."""
        logger.error(
            f"Inconsistency during {event.operation} on "
            f"{event.thread_id}/{event.namespace}: {event.detail} (keys={event.keys})"
        )
        if self.on_inconsistency is not None:
            try:
                self.on_inconsistency(event)
            except Exception:
                logger.exception("Inconsistency hook raised")

    # ------------------------------------------------------------------ #
    # Capability query
    # ------------------------------------------------------------------ #

    def capabilities(self) -> StoreCapabilities:
        """
        Report which operations this store can serve and how.

        Returns:
            Store capabilities for configuration-time backend selection
        """
        ordered = self.index is not None
        return StoreCapabilities(
            record_backend=self.backend.capabilities,
            index_backend=(
                self.index_backend.capabilities
                if self.index_backend is not self.backend
                else None
            ),
            ordering=self.index.kind if self.index else None,
            latest_lookup=ordered,
            list=ordered,
            delete_thread=ordered or self.backend.capabilities.supports_key_enumeration,
            atomic_put=self._atomic_put,
            pending_writes=self.writes.guarantee,
            persistent=self.backend.capabilities.persistent
            and self.index_backend.capabilities.persistent,
        )

    def require(self, *operations: str) -> None:
        """
        Fail at configuration time if any operation would be unsupported.

        Args:
            operations: Any of get_latest, list, delete_thread, atomic_put, persistent

        Raises:
            CapabilityUnsupported: The matching subclass for the first gap found
        """
        caps = self.capabilities()
        checks = {
            "get_latest": (caps.latest_lookup, LatestLookupUnsupported),
            "list": (caps.list, ListUnsupported),
            "delete_thread": (caps.delete_thread, DeleteUnsupported),
            "atomic_put": (
                caps.atomic_put,
                lambda: CapabilityUnsupported(
                    "supports_multi_key_atomicity", operation="put (atomic)"
                ),
            ),
            "persistent": (
                caps.persistent,
                lambda: CapabilityUnsupported("persistent", operation="durable storage"),
            ),
        }
        for operation in operations:
            if operation not in checks:
                raise ValueError(f"Unknown operation: {operation}")
            supported, error = checks[operation]
            if not supported:
                raise error()

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def put(
        self,
        tns: ThreadNamespace,
        checkpoint_id: str,
        payload: bytes,
        metadata: Optional[Dict[str, Any]] = None,
        parent_checkpoint_id: Optional[str] = None,
        payload_type: str = "bytes",
        created_at_logical: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> CheckpointRef:
        """
        Write a checkpoint and append it to the ordering index.

        Args:
            tns: Thread namespace
            checkpoint_id: Caller-assigned, unique within the namespace
            payload: Checkpoint bytes
            metadata: Metadata used by list filters
            parent_checkpoint_id: Checkpoint this one supersedes
            payload_type: Serializer tag stored with the payload
            created_at_logical: Logical creation time (default: wall-clock ns)
            timeout: Deadline in seconds

        Returns:
            Reference to the new checkpoint

        Raises:
            WriteFailed: If the record could not be written
            InvalidMetadata: If the metadata would not read back unchanged
            DeadlineExceeded: If the deadline expired
        """
        deadline = self._deadline("put", timeout)
        record = CheckpointRecord(
            thread_id=tns.thread_id,
            namespace=tns.namespace,
            checkpoint_id=checkpoint_id,
            payload=payload,
            payload_type=payload_type,
            metadata=metadata or {},
            parent_checkpoint_id=parent_checkpoint_id,
            created_at_logical=(
                created_at_logical if created_at_logical is not None else time.time_ns()
            ),
        )
        try:
            record_op = self.records.write_op(record)
        except InvalidMetadata as e:
            logger.error(f"Rejected metadata of checkpoint {checkpoint_id}: {e}")
            raise

        length: Optional[int] = None
        if self._atomic_put:
            ops = [record_op, self.index.prepend_op(tns, checkpoint_id)]
            try:
                results = await deadline.run(
                    self.write_retry.execute_with_retry(self.backend.transaction, ops)
                )
            except DeadlineExceeded:
                raise
            except Exception as e:
                logger.error(f"Failed to write checkpoint {checkpoint_id}: {e}")
                raise WriteFailed(f"Transaction for {record_op.key} failed: {e}") from e
            length = results[1]
        else:
            try:
                await deadline.run(
                    self.write_retry.execute_with_retry(self.records.write, record)
                )
            except DeadlineExceeded:
                raise
            except Exception as e:
                logger.error(f"Failed to write checkpoint {checkpoint_id}: {e}")
                raise WriteFailed(f"Writing {record_op.key} failed: {e}") from e

            if self.index is not None:
                try:
                    length = await deadline.run(self.index.prepend(tns, checkpoint_id))
                except Exception as e:
                    self._report(
                        InconsistencyEvent(
                            operation="put",
                            thread_id=tns.thread_id,
                            namespace=tns.namespace,
                            checkpoint_id=checkpoint_id,
                            keys=[record_op.key],
                            detail=f"record written but not indexed (orphan): {e}",
                        )
                    )
                    if isinstance(e, DeadlineExceeded):
                        raise

        if length == 1:
            await self._register_namespace(tns, deadline)
        elif length is not None:
            await self._register_namespace(tns, deadline, refresh=True)

        if parent_checkpoint_id and self.config.superseded_writes_ttl:
            try:
                await deadline.run(
                    self.writes.expire(
                        tns, parent_checkpoint_id, self.config.superseded_writes_ttl
                    )
                )
            except DeadlineExceeded:
                raise
            except Exception as e:
                logger.warning(
                    f"Could not expire pending writes of superseded checkpoint "
                    f"{parent_checkpoint_id}: {e}"
                )

        logger.info(
            f"Saved checkpoint {checkpoint_id} for {tns.thread_id}/{tns.namespace}"
        )
        return CheckpointRef(
            thread_id=tns.thread_id,
            namespace=tns.namespace,
            checkpoint_id=checkpoint_id,
        )

    async def _register_namespace(
        self, tns: ThreadNamespace, deadline: Deadline, refresh: bool = False
    ) -> None:
        if refresh:
            step = self.index.refresh_namespace(tns.thread_id, tns.namespace)
        else:
            step = self.index.register_namespace(tns.thread_id, tns.namespace)
        try:
            await deadline.run(step)
        except Exception as e:
            self._report(
                InconsistencyEvent(
                    operation="put",
                    thread_id=tns.thread_id,
                    namespace=tns.namespace,
                    keys=[self.codec.encode_registry_key(tns.thread_id)],
                    detail=f"namespace not registered; delete_thread may miss it: {e}",
                )
            )
            if isinstance(e, DeadlineExceeded):
                raise

    async def put_writes(
        self,
        tns: ThreadNamespace,
        checkpoint_id: str,
        writes: Sequence[PendingWriteEntry],
        timeout: Optional[float] = None,
    ) -> None:
        """
        Append pending writes to a checkpoint.

        Raises:
            WriteContention: If optimistic appends were exhausted
            WriteFailed: If the backend rejected the append
            DeadlineExceeded: If the deadline expired
        """
        deadline = self._deadline("put_writes", timeout)
        try:
            await deadline.run(self.writes.append_writes(tns, checkpoint_id, writes))
        except (WriteContention, DeadlineExceeded):
            raise
        except Exception as e:
            logger.error(f"Failed to append writes to {checkpoint_id}: {e}")
            raise WriteFailed(f"Appending writes to {checkpoint_id} failed: {e}") from e

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def get_tuple(
        self,
        tns: ThreadNamespace,
        checkpoint_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CheckpointTuple:
        """
        Fetch one checkpoint with its pending writes.

        Args:
            tns: Thread namespace
            checkpoint_id: Specific checkpoint, or None for the latest
            timeout: Deadline in seconds

        Raises:
            CheckpointNotFound: If the checkpoint (or any checkpoint) is absent
            LatestLookupUnsupported: If latest was asked of an unordered backend
        """
        deadline = self._deadline("get_tuple", timeout)
        if checkpoint_id is None:
            if self.index is None:
                raise LatestLookupUnsupported()
            checkpoint_id = await deadline.run(self.index.latest(tns))
            if checkpoint_id is None:
                raise CheckpointNotFound(tns.thread_id, tns.namespace, None)

        record = await deadline.run(self.records.read(tns, checkpoint_id))
        if record is None:
            raise CheckpointNotFound(tns.thread_id, tns.namespace, checkpoint_id)
        writes = await deadline.run(self.writes.read_writes(tns, checkpoint_id))
        logger.debug(f"Loaded checkpoint {checkpoint_id} for {tns.thread_id}")
        return CheckpointTuple(record=record, pending_writes=writes)

    async def get_writes(
        self,
        tns: ThreadNamespace,
        checkpoint_id: str,
        timeout: Optional[float] = None,
    ) -> List[PendingWriteEntry]:
        deadline = self._deadline("get_writes", timeout)
        return await deadline.run(self.writes.read_writes(tns, checkpoint_id))

    async def list(
        self,
        tns: ThreadNamespace,
        filter: Optional[MetadataFilter] = None,
        before: Optional[str] = None,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> CheckpointIterator:
        """
        List checkpoints newest to oldest.

        Capability and cursor are checked before this returns; records are
        fetched lazily while iterating.

        Args:
            tns: Thread namespace
            filter: Metadata predicate, or a mapping matched by equality
            before: Cursor; only checkpoints older than it are listed
            limit: Number of index entries to read (applied before filtering)
            timeout: Deadline in seconds, covering the whole iteration

        Returns:
            Async iterator of checkpoint tuples

        Raises:
            ListUnsupported: If the backend cannot order checkpoints
            CursorNotFound: If ``before`` is no longer indexed
        """
        deadline = self._deadline("list", timeout)
        if self.index is None:
            raise ListUnsupported()

        predicate = _metadata_predicate(filter)
        if limit is not None and limit <= 0:
            return CheckpointIterator(self, tns, [], predicate, deadline)

        if before is not None:
            checkpoint_ids = await deadline.run(self.index.ids_before(tns, before, limit))
            if checkpoint_ids is None:
                raise CursorNotFound(before)
        else:
            end = limit - 1 if limit is not None else -1
            checkpoint_ids = await deadline.run(self.index.range_newest_first(tns, 0, end))
        logger.debug(
            f"Listing {len(checkpoint_ids)} checkpoints for "
            f"{tns.thread_id}/{tns.namespace} before {before}"
        )
        return CheckpointIterator(self, tns, checkpoint_ids, predicate, deadline)

    # ------------------------------------------------------------------ #
    # Deletion
    # ------------------------------------------------------------------ #

    async def delete_thread(self, thread_id: str, timeout: Optional[float] = None) -> None:
        """
        Delete every checkpoint, pending write and index of a thread.

        Uses the ordering index to enumerate checkpoint ids per namespace and,
        when the backend can enumerate keys, sweeps whatever is left under the
        thread's key prefixes.

        Raises:
            DeleteUnsupported: If the backends can neither order nor enumerate
            PartialDeleteFailure: If some keys could not be deleted
            DeadlineExceeded: If the deadline expired
        """
        deadline = self._deadline("delete_thread", timeout)
        can_enumerate = self.backend.capabilities.supports_key_enumeration
        if self.index is None and not can_enumerate:
            raise DeleteUnsupported()

        remaining: Set[str] = set()
        deleted = 0

        if self.index is not None:
            namespaces = await deadline.run(self.index.namespaces(thread_id))
            for namespace in namespaces:
                tns = ThreadNamespace(thread_id=thread_id, namespace=namespace)
                checkpoint_ids = await deadline.run(self.index.all_ids(tns))
                keys = []
                for checkpoint_id in checkpoint_ids:
                    keys.append(self.records.record_key(tns, checkpoint_id))
                    keys.append(self.writes.writes_key(tns, checkpoint_id))
                failed = await self._delete_keys(self.backend, keys, deadline)
                deleted += len(keys) - len(failed)
                if failed:
                    # Keep the index so a retry can still find the leftovers.
                    remaining.update(failed)
                    continue
                index_failed = await self._delete_keys(
                    self.index_backend, [self.index.index_key(tns)], deadline
                )
                remaining.update(index_failed)

            registry_key = self.codec.encode_registry_key(thread_id)
            if not remaining:
                remaining.update(
                    await self._delete_keys(self.index_backend, [registry_key], deadline)
                )

        if can_enumerate:
            deleted += await self._sweep(self.backend, thread_id, remaining, deadline)
        if (
            self.index_backend is not self.backend
            and self.index_backend.capabilities.supports_key_enumeration
        ):
            deleted += await self._sweep(self.index_backend, thread_id, remaining, deadline)

        if remaining:
            logger.error(
                f"Thread {thread_id} delete left {len(remaining)} keys behind"
            )
            raise PartialDeleteFailure(thread_id, sorted(remaining))
        logger.info(f"Deleted thread {thread_id} ({deleted} keys)")

    async def _sweep(
        self,
        backend: KeyValueBackend,
        thread_id: str,
        remaining: Set[str],
        deadline: Deadline,
    ) -> int:
        keys: Set[str] = {self.codec.encode_registry_key(thread_id)}
        for prefix in self.codec.thread_scan_prefixes(thread_id):
            found = await deadline.run(
                self.read_retry.execute_with_retry(backend.scan_by_prefix, prefix)
            )
            keys.update(found)
        ordered = sorted(keys)
        failed = await self._delete_keys(backend, ordered, deadline)
        remaining.difference_update(k for k in ordered if k not in failed)
        remaining.update(failed)
        return len(ordered) - len(failed)

    async def _delete_keys(
        self, backend: KeyValueBackend, keys: Sequence[str], deadline: Deadline
    ) -> List[str]:
        """Delete keys one by one; return the keys that could not be deleted."""
        failed = []
        for key in keys:
            try:
                await deadline.run(backend.delete(key))
            except DeadlineExceeded:
                raise
            except Exception as e:
                logger.error(f"Failed to delete {key}: {e}")
                failed.append(key)
        return failed

    async def close(self) -> None:
        """Close backend connections."""
        await self.backend.close()
        if self.index_backend is not self.backend:
            await self.index_backend.close()

    async def __aenter__(self) -> "CheckpointStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
