"""Backend capability descriptors and the store-level capability report."""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from enum import Enum


class BackendCapabilityProfile(BaseModel):
    """
    Static declaration of the primitives a key-value backend provides.

    Fixed per backend instance at construction and never mutated.
    """

    model_config = ConfigDict(frozen=True)

    supports_ordered_list: bool = False
    supports_key_enumeration: bool = False
    supports_multi_key_atomicity: bool = False
    supports_cas: bool = False
    persistent: bool = False

    @classmethod
    def full(cls, persistent: bool = True) -> "BackendCapabilityProfile":
        """Profile of a data-structure store such as Redis or Valkey."""
        return cls(
            supports_ordered_list=True,
            supports_key_enumeration=True,
            supports_multi_key_atomicity=True,
            supports_cas=True,
            persistent=persistent,
        )

    @classmethod
    def plain_kv(cls) -> "BackendCapabilityProfile":
        """Profile of a volatile get/set/cas store such as Memcached."""
        return cls(supports_cas=True)

    def missing(self, *capabilities: str) -> List[str]:
        """Return the subset of capability names this profile lacks."""
        return [name for name in capabilities if not getattr(self, name)]


class WriteGuarantee(str, Enum):
    """Consistency of concurrent appends to one pending-writes buffer."""

    ATOMIC = "atomic"
    OPTIMISTIC = "optimistic"
    ADVISORY = "advisory"


class StoreCapabilities(BaseModel):
    """Capability query result served to the workflow framework."""

    record_backend: BackendCapabilityProfile
    index_backend: Optional[BackendCapabilityProfile] = None
    ordering: Optional[str] = Field(
        default=None, description="Ordering index kind: 'list', 'cas' or None"
    )
    latest_lookup: bool
    list: bool
    delete_thread: bool
    atomic_put: bool
    pending_writes: WriteGuarantee
    persistent: bool

    def unsupported_operations(self) -> List[str]:
        """Names of operations that would fail with an unsupported error."""
        gated = {
            "get_latest": self.latest_lookup,
            "list": self.list,
            "delete_thread": self.delete_thread,
        }
        return [name for name, supported in gated.items() if not supported]
