"""Deterministic physical key layout for checkpoint storage."""

import hashlib
import logging
from typing import List, NamedTuple, Optional
from urllib.parse import quote, unquote

from ..errors import KeyDecodeError, KeyTooLongAfterHashing

logger = logging.getLogger(__name__)

RECORD = "record"
INDEX = "index"
WRITES = "writes"
REGISTRY = "registry"

_ARITY = {RECORD: 3, WRITES: 3, INDEX: 2, REGISTRY: 1}
_HASH_MARK = "#"
_SNIPPET_LENGTH = 12
_THREAD_DIGEST_LENGTH = 16


class DecodedKey(NamedTuple):
    """Logical parts recovered from a natural-form key."""

    kind: str
    thread_id: str
    namespace: Optional[str] = None
    checkpoint_id: Optional[str] = None


def _q(part: str) -> str:
    return quote(part, safe="")


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class KeyCodec:
    """
    Key codec for records, ordering indexes, pending writes and registries.

    Natural form: ``{prefix}:{kind}:{thread}:{namespace}[:{checkpoint_id}]``
    with every component percent-encoded, so ``:`` only ever separates
    components and decoding is exact.

    When the natural form is longer than ``max_key_length`` the variable part
    is replaced by a SHA-256 digest:
    ``{prefix}:{kind}:#{thread digest}:{readable snippet}:{digest}``.
    The thread digest stays in a fixed position so every key of a thread can
    still be found by prefix scanning.
    """

    def __init__(self, prefix: str = "ckpt", max_key_length: int = 250):
        """
        Initialize key codec.

        Args:
            prefix: Leading namespace for every key
            max_key_length: Backend key length limit
        """
        if not prefix or ":" in prefix:
            raise ValueError(f"Key prefix must be non-empty and colon-free: {prefix!r}")
        self.prefix = prefix
        self.max_key_length = max_key_length

    def encode_record_key(
        self, thread_id: str, namespace: str, checkpoint_id: str
    ) -> str:
        return self._encode(RECORD, thread_id, namespace, checkpoint_id)

    def encode_index_key(self, thread_id: str, namespace: str) -> str:
        return self._encode(INDEX, thread_id, namespace)

    def encode_writes_key(
        self, thread_id: str, namespace: str, checkpoint_id: str
    ) -> str:
        return self._encode(WRITES, thread_id, namespace, checkpoint_id)

    def encode_registry_key(self, thread_id: str) -> str:
        """Key of the per-thread list of namespaces that hold checkpoints."""
        return self._encode(REGISTRY, thread_id)

    def _encode(self, kind: str, thread_id: str, *parts: str) -> str:
        natural = ":".join([self.prefix, kind, _q(thread_id), *(_q(p) for p in parts)])
        if len(natural) <= self.max_key_length:
            return natural

        hashed = ":".join(
            [
                self.prefix,
                kind,
                _HASH_MARK + _digest(thread_id)[:_THREAD_DIGEST_LENGTH],
                _q(thread_id)[:_SNIPPET_LENGTH],
                _digest(natural),
            ]
        )
        if len(hashed) > self.max_key_length:
            raise KeyTooLongAfterHashing(hashed, self.max_key_length)
        logger.debug(f"Hashed {kind} key of length {len(natural)} for {thread_id[:32]}")
        return hashed

    def decode_key(self, key: str) -> DecodedKey:
        """
        Recover the logical parts of a natural-form key.

        Raises:
            KeyDecodeError: For hashed keys, foreign keys or non-canonical encodings
        """
        parts = key.split(":")
        if len(parts) < 3 or parts[0] != self.prefix or parts[1] not in _ARITY:
            raise KeyDecodeError(f"Not a checkpoint key: {key!r}")
        kind, fields = parts[1], parts[2:]
        if fields[0].startswith(_HASH_MARK):
            raise KeyDecodeError(f"Hashed key is not reversible: {key!r}")
        if len(fields) != _ARITY[kind]:
            raise KeyDecodeError(
                f"{kind} key needs {_ARITY[kind]} components, got {len(fields)}: {key!r}"
            )
        decoded = [unquote(f) for f in fields]
        if any(_q(d) != f for d, f in zip(decoded, fields)):
            raise KeyDecodeError(f"Non-canonical key encoding: {key!r}")
        return DecodedKey(kind, *decoded)

    def thread_scan_prefixes(self, thread_id: str) -> List[str]:
        """Prefixes covering every natural and hashed key of a thread."""
        thread_digest = _HASH_MARK + _digest(thread_id)[:_THREAD_DIGEST_LENGTH]
        prefixes = []
        for kind in (RECORD, WRITES, INDEX):
            prefixes.append(f"{self.prefix}:{kind}:{_q(thread_id)}:")
            prefixes.append(f"{self.prefix}:{kind}:{thread_digest}:")
        prefixes.append(f"{self.prefix}:{REGISTRY}:{thread_digest}:")
        return prefixes
