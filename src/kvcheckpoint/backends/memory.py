"""Process-local key-value backend with a configurable capability profile."""

import asyncio
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .base import BackendOp, DeleteOp, KeyValueBackend, ListPrependOp, SetOp
from ..errors import CapabilityUnsupported
from ..models.capability_models import BackendCapabilityProfile

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Union[bytes, List[bytes]]
    version: int
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class InMemoryBackend(KeyValueBackend):
    """
    In-memory backend for tests and single-process use.

    Every call yields to the event loop once before touching state, so
    concurrent callers interleave the way they would over a network. Each
    primitive is applied atomically under a lock.

    The profile decides which optional primitives are exposed, which makes
    this backend usable as a stand-in for either a Redis-style or a
    Memcached-style store.
    """

    def __init__(
        self,
        capabilities: Optional[BackendCapabilityProfile] = None,
        max_key_length: int = 250,
    ):
        """
        Initialize in-memory backend.

        Args:
            capabilities: Primitives to expose (default: full profile, volatile)
            max_key_length: Maximum accepted key length
        """
        self.capabilities = capabilities or BackendCapabilityProfile.full(
            persistent=False
        )
        self.max_key_length = max_key_length
        self._data: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._versions = itertools.count(1)

    def _require(self, capability: str) -> None:
        if not getattr(self.capabilities, capability):
            raise CapabilityUnsupported(capability)

    def _check_key(self, key: str) -> None:
        if len(key) > self.max_key_length:
            raise ValueError(
                f"Key length {len(key)} exceeds limit {self.max_key_length}"
            )

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._data.get(key)
        if entry is not None and entry.is_expired(time.monotonic()):
            del self._data[key]
            return None
        return entry

    @staticmethod
    def _expiry(ttl: Optional[int]) -> Optional[float]:
        return time.monotonic() + ttl if ttl else None

    def _store(self, key: str, value: Union[bytes, List[bytes]], ttl: Optional[int]):
        self._data[key] = _Entry(
            value=value, version=next(self._versions), expires_at=self._expiry(ttl)
        )

    def _prepend(self, key: str, values: Sequence[bytes], ttl: Optional[int]) -> int:
        entry = self._live(key)
        if entry is None:
            items: List[bytes] = []
        elif isinstance(entry.value, list):
            items = list(entry.value)
        else:
            raise TypeError(f"Key {key} does not hold a list")
        for value in values:
            items.insert(0, bytes(value))
        expires_at = self._expiry(ttl) if ttl else (entry.expires_at if entry else None)
        self._data[key] = _Entry(
            value=items, version=next(self._versions), expires_at=expires_at
        )
        return len(items)

    async def get(self, key: str) -> Optional[bytes]:
        await asyncio.sleep(0)
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            if isinstance(entry.value, list):
                raise TypeError(f"Key {key} holds a list")
            return entry.value

    async def get_many(self, keys: Sequence[str]) -> List[Optional[bytes]]:
        await asyncio.sleep(0)
        with self._lock:
            results: List[Optional[bytes]] = []
            for key in keys:
                entry = self._live(key)
                if entry is None or isinstance(entry.value, list):
                    results.append(None)
                else:
                    results.append(entry.value)
            return results

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        await asyncio.sleep(0)
        self._check_key(key)
        with self._lock:
            self._store(key, bytes(value), ttl)

    async def delete(self, key: str) -> bool:
        await asyncio.sleep(0)
        with self._lock:
            existed = self._live(key) is not None
            self._data.pop(key, None)
            return existed

    async def touch(self, key: str, ttl: int) -> bool:
        await asyncio.sleep(0)
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            entry.expires_at = self._expiry(ttl)
            return True

    async def list_prepend(
        self, key: str, *values: bytes, ttl: Optional[int] = None
    ) -> int:
        await asyncio.sleep(0)
        self._require("supports_ordered_list")
        self._check_key(key)
        with self._lock:
            return self._prepend(key, values, ttl)

    async def list_range(self, key: str, start: int, end: int) -> List[bytes]:
        await asyncio.sleep(0)
        self._require("supports_ordered_list")
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return []
            if not isinstance(entry.value, list):
                raise TypeError(f"Key {key} does not hold a list")
            items = list(entry.value)
            size = len(items)
            if start < 0:
                start = max(size + start, 0)
            if end < 0:
                end = size + end
            if start > end or start >= size:
                return []
            return list(items[start : end + 1])

    async def list_remove_all(self, key: str) -> bool:
        await asyncio.sleep(0)
        self._require("supports_ordered_list")
        with self._lock:
            existed = self._live(key) is not None
            self._data.pop(key, None)
            return existed

    async def scan_by_prefix(self, prefix: str) -> List[str]:
        await asyncio.sleep(0)
        self._require("supports_key_enumeration")
        with self._lock:
            return sorted(
                key
                for key in list(self._data)
                if key.startswith(prefix) and self._live(key) is not None
            )

    async def transaction(self, ops: Sequence[BackendOp]) -> List[Any]:
        await asyncio.sleep(0)
        self._require("supports_multi_key_atomicity")
        for op in ops:
            if isinstance(op, ListPrependOp):
                self._require("supports_ordered_list")
            if not isinstance(op, DeleteOp):
                self._check_key(op.key)
        with self._lock:
            snapshot = dict(self._data)
            results: List[Any] = []
            try:
                for op in ops:
                    if isinstance(op, SetOp):
                        self._store(op.key, bytes(op.value), op.ttl)
                        results.append(None)
                    elif isinstance(op, DeleteOp):
                        results.append(self._data.pop(op.key, None) is not None)
                    elif isinstance(op, ListPrependOp):
                        results.append(self._prepend(op.key, op.values, op.ttl))
                    else:
                        raise TypeError(f"Unknown transaction op: {op!r}")
            except Exception:
                self._data = snapshot
                raise
            return results

    async def gets(self, key: str) -> Tuple[Optional[bytes], Any]:
        await asyncio.sleep(0)
        self._require("supports_cas")
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None, None
            if isinstance(entry.value, list):
                raise TypeError(f"Key {key} holds a list")
            return entry.value, entry.version

    async def compare_and_swap(
        self, key: str, token: Any, value: bytes, ttl: Optional[int] = None
    ) -> bool:
        await asyncio.sleep(0)
        self._require("supports_cas")
        self._check_key(key)
        with self._lock:
            entry = self._live(key)
            current = entry.version if entry is not None else None
            if current != token:
                logger.debug(f"CAS conflict on {key}")
                return False
            self._store(key, bytes(value), ttl)
            return True

    def keys(self) -> List[str]:
        """Live keys, for diagnostics and tests."""
        with self._lock:
            return sorted(key for key in list(self._data) if self._live(key))
