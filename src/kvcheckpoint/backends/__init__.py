"""Key-value backends the checkpoint store can run on."""

from .base import KeyValueBackend, BackendOp, SetOp, DeleteOp, ListPrependOp
from .memory import InMemoryBackend
from .redis_backend import RedisBackend

__all__ = [
    "KeyValueBackend",
    "BackendOp",
    "SetOp",
    "DeleteOp",
    "ListPrependOp",
    "InMemoryBackend",
    "RedisBackend",
]
