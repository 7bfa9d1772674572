"""Error taxonomy for the checkpoint store."""

from typing import List, Optional


class CheckpointStoreError(Exception):
    """Base class for checkpoint store failures."""

    pass


class CheckpointNotFound(CheckpointStoreError):
    """Raised when a requested checkpoint is absent."""

    def __init__(self, thread_id: str, namespace: str, checkpoint_id: Optional[str]):
        self.thread_id = thread_id
        self.namespace = namespace
        self.checkpoint_id = checkpoint_id
        target = checkpoint_id if checkpoint_id is not None else "<latest>"
        super().__init__(
            f"Checkpoint {target} not found for thread '{thread_id}' "
            f"namespace '{namespace}'"
        )


class CursorNotFound(CheckpointStoreError):
    """Raised when a `before` cursor no longer exists in the ordering index."""

    def __init__(self, checkpoint_id: str):
        self.checkpoint_id = checkpoint_id
        super().__init__(
            f"Pagination cursor {checkpoint_id} is not in the ordering index "
            "(deleted or expired)"
        )


class CapabilityUnsupported(CheckpointStoreError):
    """Raised when the bound backend lacks a primitive an operation needs."""

    def __init__(self, capability: str, operation: Optional[str] = None):
        self.capability = capability
        self.operation = operation
        if operation:
            message = f"{operation} requires backend capability '{capability}'"
        else:
            message = f"Backend does not support '{capability}'"
        super().__init__(message)


class LatestLookupUnsupported(CapabilityUnsupported):
    """Raised by get-latest on a backend without ordering."""

    def __init__(self, capability: str = "supports_ordered_list"):
        super().__init__(capability, operation="get_tuple (latest)")


class ListUnsupported(CapabilityUnsupported):
    """Raised by list on a backend without ordering."""

    def __init__(self, capability: str = "supports_ordered_list"):
        super().__init__(capability, operation="list")


class DeleteUnsupported(CapabilityUnsupported):
    """
    Raised by delete_thread when the backend can neither order nor enumerate.

    Data on such a backend is only reclaimed passively by TTL expiry, which
    is not a delete.
    """

    def __init__(
        self, capability: str = "supports_ordered_list or supports_key_enumeration"
    ):
        super().__init__(capability, operation="delete_thread")


class KeyTooLongAfterHashing(CheckpointStoreError):
    """Raised when even the digest form of a key exceeds the backend limit."""

    def __init__(self, key: str, limit: int):
        self.key = key
        self.limit = limit
        super().__init__(
            f"Key of length {len(key)} exceeds backend limit {limit} after hashing"
        )


class KeyDecodeError(CheckpointStoreError, ValueError):
    """Raised when a physical key cannot be mapped back to its logical parts."""

    pass


class InvalidMetadata(CheckpointStoreError, ValueError):
    """Raised when checkpoint metadata would not read back equal to what was given."""

    pass


class WriteFailed(CheckpointStoreError):
    """Raised when a checkpoint record could not be written."""

    pass


class WriteContention(CheckpointStoreError):
    """Raised when an optimistic update loses every compare-and-swap attempt."""

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(
            f"Gave up updating {key} after {attempts} contended attempts"
        )


class PartialDeleteFailure(CheckpointStoreError):
    """Raised when a thread delete left some keys behind."""

    def __init__(self, thread_id: str, remaining_keys: List[str]):
        self.thread_id = thread_id
        self.remaining_keys = list(remaining_keys)
        super().__init__(
            f"Deleting thread '{thread_id}' left {len(self.remaining_keys)} "
            f"keys behind: {', '.join(self.remaining_keys[:10])}"
            + (" ..." if len(self.remaining_keys) > 10 else "")
        )


class DeadlineExceeded(CheckpointStoreError):
    """Raised when an operation outlives its caller-supplied deadline."""

    def __init__(self, operation: str, timeout: Optional[float]):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} exceeded its deadline of {timeout}s")


class BackendUnavailable(CheckpointStoreError):
    """Transient backend failure (network, connection, server busy)."""

    pass
