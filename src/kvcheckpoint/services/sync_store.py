"""Blocking facade over the async checkpoint store."""

import asyncio
import logging
import threading
from typing import Any, Awaitable, Dict, Iterator, List, Optional, Sequence, TypeVar

from .checkpoint_service import CheckpointIterator, CheckpointStore, MetadataFilter
from ..models.capability_models import StoreCapabilities
from ..models.checkpoint_models import (
    CheckpointRef,
    CheckpointTuple,
    PendingWriteEntry,
    ThreadNamespace,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXHAUSTED = object()


async def _next_or_exhausted(iterator: CheckpointIterator) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _EXHAUSTED


class SyncCheckpointStore:
    """
    Thread-per-call surface with the same semantics as CheckpointStore.

    PATTERN: One private event loop thread per store; callers block on
             asyncio.run_coroutine_threadsafe futures
    CRITICAL: The wrapped store and its backend must only be used through
              this facade once it owns them (their connections bind to its loop)
    GOTCHA: Safe to call from any number of threads, but not from inside the
            facade's own loop
    """

    def __init__(self, store: CheckpointStore):
        """
        Initialize sync facade.

        Args:
            store: Async store to drive
        """
        self.store = store
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name="kvcheckpoint-loop",
            daemon=True,
        )
        self._thread.start()
        self._closed = False

    def _run(self, coro: Awaitable[T]) -> T:
        if self._closed:
            close = getattr(coro, "close", None)
            if close is not None:
                close()
            raise RuntimeError("SyncCheckpointStore is closed")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def capabilities(self) -> StoreCapabilities:
        return self.store.capabilities()

    def require(self, *operations: str) -> None:
        self.store.require(*operations)

    def put(
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
        return self._run(
            self.store.put(
                tns,
                checkpoint_id,
                payload,
                metadata=metadata,
                parent_checkpoint_id=parent_checkpoint_id,
                payload_type=payload_type,
                created_at_logical=created_at_logical,
                timeout=timeout,
            )
        )

    def put_writes(
        self,
        tns: ThreadNamespace,
        checkpoint_id: str,
        writes: Sequence[PendingWriteEntry],
        timeout: Optional[float] = None,
    ) -> None:
        self._run(self.store.put_writes(tns, checkpoint_id, writes, timeout=timeout))

    def get_tuple(
        self,
        tns: ThreadNamespace,
        checkpoint_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CheckpointTuple:
        return self._run(self.store.get_tuple(tns, checkpoint_id, timeout=timeout))

    def get_writes(
        self,
        tns: ThreadNamespace,
        checkpoint_id: str,
        timeout: Optional[float] = None,
    ) -> List[PendingWriteEntry]:
        return self._run(self.store.get_writes(tns, checkpoint_id, timeout=timeout))

    def list(
        self,
        tns: ThreadNamespace,
        filter: Optional[MetadataFilter] = None,
        before: Optional[str] = None,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Iterator[CheckpointTuple]:
        """
        List checkpoints newest to oldest.

        Unsupported capability and missing cursor raise here, before the
        first item is requested.
        """
        iterator = self._run(
            self.store.list(tns, filter=filter, before=before, limit=limit, timeout=timeout)
        )
        return self._drain(iterator)

    def _drain(self, iterator: CheckpointIterator) -> Iterator[CheckpointTuple]:
        while True:
            item = self._run(_next_or_exhausted(iterator))
            if item is _EXHAUSTED:
                return
            yield item

    def delete_thread(self, thread_id: str, timeout: Optional[float] = None) -> None:
        self._run(self.store.delete_thread(thread_id, timeout=timeout))

    def close(self) -> None:
        """Close the store and stop the loop thread."""
        if self._closed:
            return
        try:
            self._run(self.store.close())
        finally:
            self._closed = True
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
            self._loop.close()
            logger.debug("Sync checkpoint store loop stopped")

    def __enter__(self) -> "SyncCheckpointStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
