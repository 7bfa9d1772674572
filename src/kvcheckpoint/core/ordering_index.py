"""Newest-first ordering index of checkpoint ids per thread namespace."""

import json
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from .key_codec import KeyCodec
from ..backends.base import KeyValueBackend, ListPrependOp
from ..models.checkpoint_models import ThreadNamespace
from ..tools.retry import RetryManager, compare_and_swap_loop

logger = logging.getLogger(__name__)


def _lrange_slice(items: List[str], start: int, end: int) -> List[str]:
    """Slice with LRANGE semantics: inclusive end, negative ranks from the tail."""
    size = len(items)
    if start < 0:
        start = max(size + start, 0)
    if end < 0:
        end = size + end
    if start > end or start >= size:
        return []
    return items[start : end + 1]


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class OrderingIndex(ABC):
    """
    Canonical newest-first sequence of checkpoint ids for a thread namespace.

    Rank 0 is always the most recently inserted surviving entry. The index
    also keeps, per thread, the list of namespaces that hold checkpoints so
    that a thread can be deleted without key enumeration.
    """

    kind: str = "abstract"

    def __init__(
        self,
        backend: KeyValueBackend,
        codec: KeyCodec,
        read_retry: Optional[RetryManager] = None,
        ttl: Optional[int] = None,
        page_size: int = 100,
    ):
        """
        Initialize ordering index.

        Args:
            backend: Backend that holds the index (may differ from the records')
            codec: Key codec
            read_retry: Retry policy for idempotent reads
            ttl: Expiry applied on every write
            page_size: Ids read per round-trip while scanning for a cursor
        """
        self.backend = backend
        self.codec = codec
        self.read_retry = read_retry or RetryManager(max_retries=1)
        self.ttl = ttl
        self.page_size = page_size

    def index_key(self, tns: ThreadNamespace) -> str:
        return self.codec.encode_index_key(tns.thread_id, tns.namespace)

    @abstractmethod
    async def prepend(self, tns: ThreadNamespace, checkpoint_id: str) -> int:
        """
        Insert a checkpoint id at rank 0.

        Returns:
            Number of entries after the insert
        """
        pass

    @abstractmethod
    async def range_newest_first(
        self, tns: ThreadNamespace, start: int, end_inclusive: int
    ) -> List[str]:
        """Ids from rank ``start`` to ``end_inclusive`` (-1 = oldest)."""
        pass

    @abstractmethod
    async def remove_all(self, tns: ThreadNamespace) -> bool:
        pass

    @abstractmethod
    async def register_namespace(self, thread_id: str, namespace: str) -> None:
        pass

    @abstractmethod
    async def namespaces(self, thread_id: str) -> List[str]:
        pass

    async def refresh_namespace(self, thread_id: str, namespace: str) -> None:
        """
        Keep the namespace registry alive as long as the index it points at.

        Index writes renew the index key's TTL on every prepend; the registry
        is only written when a namespace first appears, so it is renewed here.
        Re-registers when the registry expired or lost this namespace.
        """
        if not self.ttl:
            return
        if namespace in await self.namespaces(thread_id):
            if await self.backend.touch(self.codec.encode_registry_key(thread_id), self.ttl):
                return
        await self.register_namespace(thread_id, namespace)

    async def drop_registry(self, thread_id: str) -> bool:
        return await self.backend.delete(self.codec.encode_registry_key(thread_id))

    def prepend_op(self, tns: ThreadNamespace, checkpoint_id: str) -> Optional[ListPrependOp]:
        """Transaction step equivalent to prepend, when the index can join one."""
        return None

    async def latest(self, tns: ThreadNamespace) -> Optional[str]:
        ids = await self.range_newest_first(tns, 0, 0)
        return ids[0] if ids else None

    async def all_ids(self, tns: ThreadNamespace) -> List[str]:
        return await self.range_newest_first(tns, 0, -1)

    async def length(self, tns: ThreadNamespace) -> int:
        return len(await self.all_ids(tns))

    async def index_of(self, tns: ThreadNamespace, checkpoint_id: str) -> Optional[int]:
        """
        Rank of a checkpoint id, scanning newest-first one page at a time.

        Cursors normally point at recently seen checkpoints, so the scan
        usually stops in the first page.

        Returns:
            Rank, or None if the id is not indexed
        """
        start = 0
        while True:
            page = await self.range_newest_first(tns, start, start + self.page_size - 1)
            if checkpoint_id in page:
                return start + page.index(checkpoint_id)
            if len(page) < self.page_size:
                return None
            start += self.page_size

    async def ids_before(
        self, tns: ThreadNamespace, checkpoint_id: str, limit: Optional[int] = None
    ) -> Optional[List[str]]:
        """
        Ids older than a cursor, newest first.

        The cursor is located inside the same read that supplies the ids
        after it. Concurrent prepends only push entries to higher ranks, so
        when a read falls short it is repeated with a wider window rather
        than stitched to a second read.

        Args:
            tns: Thread namespace
            checkpoint_id: Cursor
            limit: Maximum number of ids (None = all older ids)

        Returns:
            Older ids, or None if the cursor is not indexed
        """
        if limit is None:
            ids = await self.all_ids(tns)
            if checkpoint_id not in ids:
                return None
            return ids[ids.index(checkpoint_id) + 1 :]

        start = 0
        window = self.page_size + limit
        while True:
            page = await self.range_newest_first(tns, start, start + window - 1)
            if checkpoint_id not in page:
                if len(page) < window:
                    return None
                # The cursor can only have moved further back.
                start += window
                continue

            rank = page.index(checkpoint_id)
            older = page[rank + 1 : rank + 1 + limit]
            if len(older) == limit or len(page) < window:
                return older
            window = rank + 1 + limit


class ListOrderingIndex(OrderingIndex):
    """Ordering index on native list primitives (LPUSH/LRANGE)."""

    kind = "list"

    async def prepend(self, tns: ThreadNamespace, checkpoint_id: str) -> int:
        return await self.backend.list_prepend(
            self.index_key(tns), checkpoint_id.encode("utf-8"), ttl=self.ttl
        )

    def prepend_op(self, tns: ThreadNamespace, checkpoint_id: str) -> Optional[ListPrependOp]:
        return ListPrependOp(
            key=self.index_key(tns),
            values=(checkpoint_id.encode("utf-8"),),
            ttl=self.ttl,
        )

    async def range_newest_first(
        self, tns: ThreadNamespace, start: int, end_inclusive: int
    ) -> List[str]:
        raw = await self.read_retry.execute_with_retry(
            self.backend.list_range, self.index_key(tns), start, end_inclusive
        )
        return [item.decode("utf-8") for item in raw]

    async def remove_all(self, tns: ThreadNamespace) -> bool:
        return await self.backend.list_remove_all(self.index_key(tns))

    async def register_namespace(self, thread_id: str, namespace: str) -> None:
        await self.backend.list_prepend(
            self.codec.encode_registry_key(thread_id),
            namespace.encode("utf-8"),
            ttl=self.ttl,
        )

    async def namespaces(self, thread_id: str) -> List[str]:
        raw = await self.read_retry.execute_with_retry(
            self.backend.list_range, self.codec.encode_registry_key(thread_id), 0, -1
        )
        return _dedupe([item.decode("utf-8") for item in raw])


class CasOrderingIndex(OrderingIndex):
    """
    Ordering index emulated on a plain key-value store.

    The whole newest-first id array lives in one value and is rewritten with
    a bounded compare-and-swap loop, so concurrent prepends are never lost.

    GOTCHA: Cannot join a multi-key transaction; puts become sequential
    """

    kind = "cas"

    def __init__(
        self,
        backend: KeyValueBackend,
        codec: KeyCodec,
        read_retry: Optional[RetryManager] = None,
        ttl: Optional[int] = None,
        page_size: int = 100,
        cas_retry: Optional[RetryManager] = None,
    ):
        super().__init__(backend, codec, read_retry, ttl, page_size)
        self.cas_retry = cas_retry or RetryManager(max_retries=8, backoff_base=0.005)

    async def _load(self, key: str) -> List[str]:
        raw = await self.read_retry.execute_with_retry(self.backend.get, key)
        return json.loads(raw) if raw else []

    async def prepend(self, tns: ThreadNamespace, checkpoint_id: str) -> int:
        def insert(current: Optional[bytes]) -> bytes:
            ids = json.loads(current) if current else []
            ids.insert(0, checkpoint_id)
            return json.dumps(ids).encode("utf-8")

        stored = await compare_and_swap_loop(
            self.backend, self.index_key(tns), insert, self.cas_retry, ttl=self.ttl
        )
        return len(json.loads(stored))

    async def range_newest_first(
        self, tns: ThreadNamespace, start: int, end_inclusive: int
    ) -> List[str]:
        return _lrange_slice(await self._load(self.index_key(tns)), start, end_inclusive)

    async def index_of(self, tns: ThreadNamespace, checkpoint_id: str) -> Optional[int]:
        # The whole array arrives in one read; no paging needed.
        ids = await self._load(self.index_key(tns))
        return ids.index(checkpoint_id) if checkpoint_id in ids else None

    async def ids_before(
        self, tns: ThreadNamespace, checkpoint_id: str, limit: Optional[int] = None
    ) -> Optional[List[str]]:
        ids = await self._load(self.index_key(tns))
        if checkpoint_id not in ids:
            return None
        older = ids[ids.index(checkpoint_id) + 1 :]
        return older[:limit] if limit is not None else older

    async def remove_all(self, tns: ThreadNamespace) -> bool:
        return await self.backend.delete(self.index_key(tns))

    async def register_namespace(self, thread_id: str, namespace: str) -> None:
        def add(current: Optional[bytes]) -> bytes:
            names = json.loads(current) if current else []
            if namespace not in names:
                names.append(namespace)
            return json.dumps(names).encode("utf-8")

        await compare_and_swap_loop(
            self.backend,
            self.codec.encode_registry_key(thread_id),
            add,
            self.cas_retry,
            ttl=self.ttl,
        )

    async def namespaces(self, thread_id: str) -> List[str]:
        return await self._load(self.codec.encode_registry_key(thread_id))


def build_ordering_index(
    backend: KeyValueBackend,
    codec: KeyCodec,
    read_retry: Optional[RetryManager] = None,
    cas_retry: Optional[RetryManager] = None,
    ttl: Optional[int] = None,
    emulate_with_cas: bool = False,
) -> Optional[OrderingIndex]:
    """
    Pick the ordering index a backend can support.

    Args:
        emulate_with_cas: Allow a CAS-maintained index on backends without
            native lists (otherwise ordering is unavailable there)

    Returns:
        ListOrderingIndex for native lists, CasOrderingIndex for CAS-only
        backends when emulation is allowed, or None when ordering is unavailable
    """
    profile = backend.capabilities
    if profile.supports_ordered_list:
        return ListOrderingIndex(backend, codec, read_retry=read_retry, ttl=ttl)
    if profile.supports_cas and emulate_with_cas:
        logger.info("Backend lacks ordered lists; emulating the ordering index with CAS")
        return CasOrderingIndex(
            backend, codec, read_retry=read_retry, ttl=ttl, cas_retry=cas_retry
        )
    logger.warning(
        "Backend has no ordered lists (and CAS emulation is off); ordering is unavailable"
    )
    return None
