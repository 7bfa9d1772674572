"""Unit tests for the in-memory backend."""

import pytest

from kvcheckpoint.backends.base import DeleteOp, ListPrependOp, SetOp
from kvcheckpoint.backends.memory import InMemoryBackend
from kvcheckpoint.errors import CapabilityUnsupported
from kvcheckpoint.models.capability_models import BackendCapabilityProfile


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def plain_backend():
    """Backend exposing only get/set/delete and CAS."""
    return InMemoryBackend(capabilities=BackendCapabilityProfile.plain_kv())


def expire_now(backend: InMemoryBackend, key: str) -> None:
    backend._data[key].expires_at = 0.0


@pytest.mark.asyncio
class TestInMemoryBackend:
    """Test suite for InMemoryBackend."""

    async def test_default_profile(self, backend):
        assert backend.capabilities.supports_ordered_list
        assert backend.capabilities.supports_multi_key_atomicity
        assert not backend.capabilities.persistent

    async def test_get_set_delete(self, backend):
        await backend.set("k", b"v")
        assert await backend.get("k") == b"v"
        assert await backend.delete("k") is True
        assert await backend.delete("k") is False
        assert await backend.get("k") is None

    async def test_get_many(self, backend):
        await backend.set("a", b"1")
        await backend.set("c", b"3")
        assert await backend.get_many(["a", "b", "c"]) == [b"1", None, b"3"]

    async def test_expired_keys_vanish(self, backend):
        await backend.set("k", b"v", ttl=60)
        expire_now(backend, "k")
        assert await backend.get("k") is None
        assert backend.keys() == []

    async def test_touch(self, backend):
        await backend.set("k", b"v")
        assert await backend.touch("k", 60) is True
        assert backend._data["k"].expires_at is not None
        assert await backend.touch("missing", 60) is False

    async def test_key_length_limit(self):
        backend = InMemoryBackend(max_key_length=5)
        with pytest.raises(ValueError):
            await backend.set("toolong", b"v")

    async def test_list_prepend_and_range(self, backend):
        """Test LPUSH/LRANGE semantics."""
        assert await backend.list_prepend("l", b"a") == 1
        assert await backend.list_prepend("l", b"b", b"c") == 3

        assert await backend.list_range("l", 0, -1) == [b"c", b"b", b"a"]
        assert await backend.list_range("l", 0, 0) == [b"c"]
        assert await backend.list_range("l", -2, -1) == [b"b", b"a"]
        assert await backend.list_range("l", 5, 10) == []
        assert await backend.list_range("missing", 0, -1) == []

    async def test_list_remove_all(self, backend):
        await backend.list_prepend("l", b"a")
        assert await backend.list_remove_all("l") is True
        assert await backend.list_range("l", 0, -1) == []

    async def test_scan_by_prefix(self, backend):
        await backend.set("ckpt:record:t1:a", b"1")
        await backend.set("ckpt:record:t1:b", b"2")
        await backend.set("ckpt:record:t2:a", b"3")

        assert await backend.scan_by_prefix("ckpt:record:t1:") == [
            "ckpt:record:t1:a",
            "ckpt:record:t1:b",
        ]

    async def test_transaction_applies_all(self, backend):
        await backend.set("old", b"x")
        results = await backend.transaction(
            [
                SetOp(key="rec", value=b"r"),
                ListPrependOp(key="idx", values=(b"c1",)),
                DeleteOp(key="old"),
            ]
        )

        assert results == [None, 1, True]
        assert await backend.get("rec") == b"r"
        assert await backend.list_range("idx", 0, -1) == [b"c1"]
        assert await backend.get("old") is None

    async def test_transaction_rolls_back(self, backend):
        """Test a failing step leaves no partial effects."""
        await backend.list_prepend("idx", b"c0")
        await backend.set("scalar", b"x")

        with pytest.raises(TypeError):
            await backend.transaction(
                [
                    SetOp(key="rec", value=b"r"),
                    ListPrependOp(key="idx", values=(b"c1",)),
                    ListPrependOp(key="scalar", values=(b"boom",)),
                ]
            )

        assert await backend.get("rec") is None
        assert await backend.list_range("idx", 0, -1) == [b"c0"]

    async def test_compare_and_swap(self, backend):
        """Test CAS succeeds only on an unchanged token."""
        value, token = await backend.gets("k")
        assert value is None and token is None
        assert await backend.compare_and_swap("k", token, b"1") is True

        value, token = await backend.gets("k")
        await backend.set("k", b"other")
        assert await backend.compare_and_swap("k", token, b"2") is False
        assert await backend.get("k") == b"other"

    async def test_cas_create_conflict(self, backend):
        """Test create-if-absent loses when the key appeared meanwhile."""
        await backend.set("k", b"x")
        assert await backend.compare_and_swap("k", None, b"y") is False


@pytest.mark.asyncio
class TestCapabilityGating:
    """Primitives outside the profile raise CapabilityUnsupported."""

    async def test_list_primitives(self, plain_backend):
        with pytest.raises(CapabilityUnsupported) as exc_info:
            await plain_backend.list_prepend("l", b"a")
        assert exc_info.value.capability == "supports_ordered_list"

        with pytest.raises(CapabilityUnsupported):
            await plain_backend.list_range("l", 0, -1)

    async def test_enumeration(self, plain_backend):
        with pytest.raises(CapabilityUnsupported) as exc_info:
            await plain_backend.scan_by_prefix("ckpt:")
        assert exc_info.value.capability == "supports_key_enumeration"

    async def test_transaction(self, plain_backend):
        with pytest.raises(CapabilityUnsupported) as exc_info:
            await plain_backend.transaction([SetOp(key="k", value=b"v")])
        assert exc_info.value.capability == "supports_multi_key_atomicity"

    async def test_cas(self):
        backend = InMemoryBackend(capabilities=BackendCapabilityProfile())
        with pytest.raises(CapabilityUnsupported) as exc_info:
            await backend.gets("k")
        assert exc_info.value.capability == "supports_cas"
