"""Unit tests for the checkpoint key codec."""

import pytest

from kvcheckpoint.core.key_codec import INDEX, RECORD, REGISTRY, WRITES, KeyCodec
from kvcheckpoint.errors import KeyDecodeError, KeyTooLongAfterHashing


@pytest.fixture
def codec():
    """Create codec with default prefix and memcached-sized limit."""
    return KeyCodec(prefix="ckpt", max_key_length=250)


class TestNaturalKeys:
    """Tests for keys that fit the length limit."""

    def test_record_key_layout(self, codec):
        """Test natural record key layout."""
        key = codec.encode_record_key("thread-1", "main", "ckpt-1")
        assert key == "ckpt:record:thread-1:main:ckpt-1"

    def test_empty_namespace(self, codec):
        """Test the root namespace encodes as an empty component."""
        assert codec.encode_index_key("thread-1", "") == "ckpt:index:thread-1:"
        decoded = codec.decode_key("ckpt:index:thread-1:")
        assert decoded.kind == INDEX
        assert decoded.thread_id == "thread-1"
        assert decoded.namespace == ""

    @pytest.mark.parametrize(
        "thread_id,namespace,checkpoint_id",
        [
            ("a:b", "c", "d"),
            ("user/42 chat", "parent:child|x", "1ef4-%20-id"),
            ("ünïcødé", "名前空間", "ckpt"),
            ("%3A", "::", "%"),
        ],
    )
    def test_decode_recovers_components(self, codec, thread_id, namespace, checkpoint_id):
        """Test decoding is exact for separator and escape characters."""
        for kind, encode in (
            (RECORD, codec.encode_record_key),
            (WRITES, codec.encode_writes_key),
        ):
            decoded = codec.decode_key(encode(thread_id, namespace, checkpoint_id))
            assert decoded.kind == kind
            assert decoded.thread_id == thread_id
            assert decoded.namespace == namespace
            assert decoded.checkpoint_id == checkpoint_id

    def test_separator_in_component_does_not_collide(self, codec):
        """Test distinct logical tuples never share a key."""
        first = codec.encode_record_key("a:b", "c", "d")
        second = codec.encode_record_key("a", "b:c", "d")
        assert first != second

    def test_kinds_do_not_collide(self, codec):
        """Test records and writes of one checkpoint use different keys."""
        assert codec.encode_record_key("t", "n", "c") != codec.encode_writes_key(
            "t", "n", "c"
        )

    def test_registry_key(self, codec):
        """Test registry key decodes to its thread."""
        key = codec.encode_registry_key("thread-1")
        decoded = codec.decode_key(key)
        assert decoded.kind == REGISTRY
        assert decoded.thread_id == "thread-1"
        assert decoded.namespace is None


class TestHashedKeys:
    """Tests for keys longer than the backend limit."""

    def test_long_key_is_hashed_within_limit(self, codec):
        """Test long keys are replaced by a bounded digest form."""
        key = codec.encode_record_key("t" * 300, "main", "ckpt-1")
        assert len(key) <= 250
        assert key.startswith("ckpt:record:#")

    def test_hashing_is_deterministic(self, codec):
        """Test the same logical key always hashes the same way."""
        first = codec.encode_record_key("t" * 300, "main", "ckpt-1")
        second = KeyCodec(prefix="ckpt", max_key_length=250).encode_record_key(
            "t" * 300, "main", "ckpt-1"
        )
        assert first == second

    def test_hashed_keys_stay_distinct(self, codec):
        """Test different long keys hash differently."""
        first = codec.encode_record_key("t" * 300, "main", "ckpt-1")
        second = codec.encode_record_key("t" * 300, "main", "ckpt-2")
        assert first != second

    def test_hashed_key_not_decodable(self, codec):
        """Test hashed keys are rejected by the decoder."""
        key = codec.encode_record_key("t" * 300, "main", "ckpt-1")
        with pytest.raises(KeyDecodeError):
            codec.decode_key(key)

    def test_too_long_after_hashing(self):
        """Test a limit below the digest form raises."""
        codec = KeyCodec(prefix="ckpt", max_key_length=100)
        with pytest.raises(KeyTooLongAfterHashing) as exc_info:
            codec.encode_record_key("t" * 200, "main", "ckpt-1")
        assert exc_info.value.limit == 100


class TestDecodeErrors:
    """Tests for keys that are not checkpoint keys."""

    @pytest.mark.parametrize(
        "key",
        [
            "other:record:t:n:c",
            "ckpt:unknown:t:n:c",
            "ckpt:record:t:n",
            "ckpt:index:t:n:c",
            "ckpt",
        ],
    )
    def test_foreign_or_malformed(self, codec, key):
        """Test foreign and malformed keys raise."""
        with pytest.raises(KeyDecodeError):
            codec.decode_key(key)

    def test_non_canonical_escape(self, codec):
        """Test lowercase escapes are not accepted as canonical."""
        with pytest.raises(KeyDecodeError):
            codec.decode_key("ckpt:record:a%3ab:n:c")

    def test_decode_error_is_value_error(self, codec):
        """Test decode errors can be caught as ValueError."""
        with pytest.raises(ValueError):
            codec.decode_key("nope")


class TestScanPrefixes:
    """Tests for thread-wide prefix scanning."""

    def test_prefixes_cover_natural_and_hashed_keys(self, codec):
        """Test every key kind of a thread is covered."""
        prefixes = codec.thread_scan_prefixes("thread-1")
        keys = [
            codec.encode_record_key("thread-1", "main", "c1"),
            codec.encode_writes_key("thread-1", "", "c1"),
            codec.encode_index_key("thread-1", "main"),
            codec.encode_record_key("thread-1", "n" * 300, "c1"),
            codec.encode_index_key("thread-1", "n" * 300),
        ]
        for key in keys:
            assert any(key.startswith(p) for p in prefixes), key

    def test_prefixes_do_not_cover_other_threads(self, codec):
        """Test a thread's prefixes exclude threads it prefixes textually."""
        prefixes = codec.thread_scan_prefixes("thread-1")
        other = codec.encode_record_key("thread-10", "main", "c1")
        assert not any(other.startswith(p) for p in prefixes)


class TestCodecConfig:
    """Tests for codec construction."""

    @pytest.mark.parametrize("prefix", ["", "a:b"])
    def test_invalid_prefix(self, prefix):
        """Test prefixes that would break decoding are rejected."""
        with pytest.raises(ValueError):
            KeyCodec(prefix=prefix)
