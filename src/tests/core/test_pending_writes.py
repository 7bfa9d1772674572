"""Unit tests for the pending writes buffer."""

import asyncio

import pytest

from kvcheckpoint.backends.memory import InMemoryBackend
from kvcheckpoint.core.key_codec import KeyCodec
from kvcheckpoint.core.pending_writes import PendingWritesBuffer
from kvcheckpoint.errors import WriteContention
from kvcheckpoint.models.capability_models import (
    BackendCapabilityProfile,
    WriteGuarantee,
)
from kvcheckpoint.models.checkpoint_models import PendingWriteEntry, ThreadNamespace
from kvcheckpoint.tools.retry import RetryManager


class LosingCasBackend(InMemoryBackend):
    """Backend whose compare-and-swap never wins."""

    async def compare_and_swap(self, key, token, value, ttl=None):
        await asyncio.sleep(0)
        return False


PROFILES = {
    WriteGuarantee.ATOMIC: BackendCapabilityProfile.full(persistent=False),
    WriteGuarantee.OPTIMISTIC: BackendCapabilityProfile.plain_kv(),
    WriteGuarantee.ADVISORY: BackendCapabilityProfile(),
}


def make_buffer(guarantee: WriteGuarantee) -> PendingWritesBuffer:
    return PendingWritesBuffer(
        InMemoryBackend(capabilities=PROFILES[guarantee]),
        KeyCodec(),
        cas_retry=RetryManager(max_retries=50, backoff_base=0.001, max_delay=0.01),
    )


def entry(channel: str, value: bytes = b"v", task_id: str = "task-1") -> PendingWriteEntry:
    return PendingWriteEntry(channel=channel, value=value, task_id=task_id)


@pytest.fixture
def tns():
    return ThreadNamespace(thread_id="thread-1", namespace="")


@pytest.mark.parametrize("guarantee", list(WriteGuarantee))
def test_guarantee_follows_profile(guarantee):
    """Test the append discipline is chosen from the backend profile."""
    assert make_buffer(guarantee).guarantee is guarantee


@pytest.mark.asyncio
@pytest.mark.parametrize("guarantee", list(WriteGuarantee))
class TestPendingWritesBuffer:
    """Behaviour every append discipline provides to a single writer."""

    async def test_append_order_preserved(self, guarantee, tns):
        """Test entries read back in append order across appends."""
        buffer = make_buffer(guarantee)
        await buffer.append_writes(tns, "c1", [entry("a"), entry("b")])
        await buffer.append_writes(tns, "c1", [entry("c")])

        writes = await buffer.read_writes(tns, "c1")
        assert [w.channel for w in writes] == ["a", "b", "c"]

    async def test_binary_values_round_trip(self, guarantee, tns):
        """Test values are stored byte for byte."""
        buffer = make_buffer(guarantee)
        value = bytes(range(256))
        write = PendingWriteEntry(
            channel="x", value=value, value_type="msgpack", task_id="t", task_path="~root"
        )
        await buffer.append_writes(tns, "c1", [write])

        (stored,) = await buffer.read_writes(tns, "c1")
        assert stored.value == value
        assert stored.value_type == "msgpack"
        assert stored.task_path == "~root"

    async def test_empty_append_is_noop(self, guarantee, tns):
        buffer = make_buffer(guarantee)
        await buffer.append_writes(tns, "c1", [])
        assert await buffer.read_writes(tns, "c1") == []
        assert buffer.backend.keys() == []

    async def test_buffers_are_per_checkpoint(self, guarantee, tns):
        buffer = make_buffer(guarantee)
        await buffer.append_writes(tns, "c1", [entry("a")])
        await buffer.append_writes(tns, "c2", [entry("b")])

        assert [w.channel for w in await buffer.read_writes(tns, "c1")] == ["a"]
        assert [w.channel for w in await buffer.read_writes(tns, "c2")] == ["b"]

    async def test_delete(self, guarantee, tns):
        buffer = make_buffer(guarantee)
        await buffer.append_writes(tns, "c1", [entry("a")])

        assert await buffer.delete(tns, "c1") is True
        assert await buffer.read_writes(tns, "c1") == []

    async def test_expire_sets_ttl(self, guarantee, tns):
        """Test superseded buffers get a finite lifetime."""
        buffer = make_buffer(guarantee)
        await buffer.append_writes(tns, "c1", [entry("a")])

        assert await buffer.expire(tns, "c1", 30) is True
        assert buffer.backend._data[buffer.writes_key(tns, "c1")].expires_at is not None
        assert await buffer.expire(tns, "missing", 30) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("guarantee", [WriteGuarantee.ATOMIC, WriteGuarantee.OPTIMISTIC])
async def test_concurrent_appends_not_lost(guarantee, tns):
    """Test guarded disciplines keep every entry under concurrency."""
    buffer = make_buffer(guarantee)
    await asyncio.gather(
        *(
            buffer.append_writes(tns, "c1", [entry(f"ch{i}", task_id=f"task-{i}")])
            for i in range(20)
        )
    )

    writes = await buffer.read_writes(tns, "c1")
    assert sorted(w.channel for w in writes) == sorted(f"ch{i}" for i in range(20))


@pytest.mark.asyncio
async def test_optimistic_append_contention(tns):
    """Test exhausted compare-and-swap appends raise WriteContention."""
    buffer = PendingWritesBuffer(
        LosingCasBackend(capabilities=BackendCapabilityProfile.plain_kv()),
        KeyCodec(),
        cas_retry=RetryManager(max_retries=2, backoff_base=0.0),
    )

    with pytest.raises(WriteContention):
        await buffer.append_writes(tns, "c1", [entry("a")])
