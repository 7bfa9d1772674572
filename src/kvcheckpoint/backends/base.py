"""Abstract base class for key-value backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

from ..errors import CapabilityUnsupported
from ..models.capability_models import BackendCapabilityProfile


@dataclass(frozen=True)
class SetOp:
    """Transaction step: store a value."""

    key: str
    value: bytes
    ttl: Optional[int] = None


@dataclass(frozen=True)
class DeleteOp:
    """Transaction step: remove a key."""

    key: str


@dataclass(frozen=True)
class ListPrependOp:
    """Transaction step: push values onto the head of a list."""

    key: str
    values: Tuple[bytes, ...]
    ttl: Optional[int] = None


BackendOp = Union[SetOp, DeleteOp, ListPrependOp]


class KeyValueBackend(ABC):
    """
    Key-value backend protocol consumed by the checkpoint store.

    The required primitives are get/set/delete/touch. Everything else is
    optional and must be declared in ``capabilities``; the default
    implementations raise CapabilityUnsupported naming the capability.
    """

    capabilities: BackendCapabilityProfile = BackendCapabilityProfile()
    max_key_length: int = 250

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """
        Read a value.

        Args:
            key: Physical key

        Returns:
            Stored bytes, or None if absent or expired
        """
        pass

    async def get_many(self, keys: Sequence[str]) -> List[Optional[bytes]]:
        """
        Read several values in one call.

        Args:
            keys: Physical keys

        Returns:
            Values aligned with ``keys`` (None where absent)
        """
        return [await self.get(key) for key in keys]

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        """
        Store a value, replacing any previous one.

        Args:
            key: Physical key
            value: Bytes to store
            ttl: Optional expiry in seconds
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed
        """
        pass

    @abstractmethod
    async def touch(self, key: str, ttl: int) -> bool:
        """
        Reset the expiry of an existing key.

        Returns:
            True if the key existed
        """
        pass

    async def list_prepend(
        self, key: str, *values: bytes, ttl: Optional[int] = None
    ) -> int:
        """
        Atomically push values onto the head of a list.

        The last value given ends up at rank 0.

        Returns:
            List length after the push
        """
        raise CapabilityUnsupported("supports_ordered_list")

    async def list_range(self, key: str, start: int, end: int) -> List[bytes]:
        """
        Read list elements from rank ``start`` to ``end`` inclusive.

        Negative ranks count from the tail, as in Redis LRANGE.
        """
        raise CapabilityUnsupported("supports_ordered_list")

    async def list_remove_all(self, key: str) -> bool:
        """Drop a list entirely."""
        raise CapabilityUnsupported("supports_ordered_list")

    async def scan_by_prefix(self, prefix: str) -> List[str]:
        """Enumerate every live key starting with ``prefix``."""
        raise CapabilityUnsupported("supports_key_enumeration")

    async def transaction(self, ops: Sequence[BackendOp]) -> List[Any]:
        """
        Apply several operations all-or-nothing.

        Returns:
            One result per operation (None for sets, bool for deletes,
            new length for list prepends)
        """
        raise CapabilityUnsupported("supports_multi_key_atomicity")

    async def gets(self, key: str) -> Tuple[Optional[bytes], Any]:
        """
        Read a value together with a compare-and-swap token.

        Returns:
            (value, token); the token of an absent key is still usable and
            only matches while the key stays absent
        """
        raise CapabilityUnsupported("supports_cas")

    async def compare_and_swap(
        self, key: str, token: Any, value: bytes, ttl: Optional[int] = None
    ) -> bool:
        """
        Store ``value`` only if the key is unchanged since ``gets``.

        Returns:
            True if the swap happened
        """
        raise CapabilityUnsupported("supports_cas")

    async def close(self) -> None:
        """Release connections."""
        pass
