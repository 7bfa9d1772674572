"""Tests for the blocking checkpoint store facade."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from kvcheckpoint.backends.memory import InMemoryBackend
from kvcheckpoint.config.store_config import StoreConfig
from kvcheckpoint.errors import CheckpointNotFound, CursorNotFound, ListUnsupported
from kvcheckpoint.models.capability_models import BackendCapabilityProfile
from kvcheckpoint.models.checkpoint_models import PendingWriteEntry, ThreadNamespace
from kvcheckpoint.services.checkpoint_service import CheckpointStore
from kvcheckpoint.services.sync_store import SyncCheckpointStore


def make_sync_store(profile=None) -> SyncCheckpointStore:
    config = StoreConfig(
        cas_max_attempts=50,
        cas_backoff_base=0.001,
        cas_max_delay=0.01,
        default_timeout=None,
        record_ttl=None,
    )
    return SyncCheckpointStore(CheckpointStore(InMemoryBackend(capabilities=profile), config))


@pytest.fixture
def sync_store():
    store = make_sync_store()
    yield store
    store.close()


@pytest.fixture
def tns():
    return ThreadNamespace(thread_id="thread-1", namespace="")


class TestSyncCheckpointStore:
    """Test suite for SyncCheckpointStore."""

    def test_put_get_list(self, sync_store, tns):
        for checkpoint_id in ("c1", "c2", "c3"):
            sync_store.put(tns, checkpoint_id, b"p")

        assert sync_store.get_tuple(tns).checkpoint_id == "c3"
        assert [item.checkpoint_id for item in sync_store.list(tns)] == ["c3", "c2", "c1"]
        assert [item.checkpoint_id for item in sync_store.list(tns, before="c2")] == ["c1"]

    def test_list_is_lazy_generator(self, sync_store, tns):
        for checkpoint_id in ("c1", "c2"):
            sync_store.put(tns, checkpoint_id, b"p")

        items = sync_store.list(tns)
        assert next(items).checkpoint_id == "c2"
        assert next(items).checkpoint_id == "c1"
        with pytest.raises(StopIteration):
            next(items)

    def test_list_errors_raise_at_call(self, sync_store, tns):
        """Test cursor errors surface before iteration starts."""
        sync_store.put(tns, "c1", b"p")
        with pytest.raises(CursorNotFound):
            sync_store.list(tns, before="missing")

    def test_unsupported_list(self, tns):
        store = make_sync_store(BackendCapabilityProfile())
        try:
            with pytest.raises(ListUnsupported):
                store.list(tns)
            assert store.capabilities().list is False
        finally:
            store.close()

    def test_writes_and_delete(self, sync_store, tns):
        sync_store.put(tns, "c1", b"p")
        entry = PendingWriteEntry(channel="x", value=b"1", task_id="t")
        sync_store.put_writes(tns, "c1", [entry])

        assert sync_store.get_writes(tns, "c1") == [entry]
        sync_store.delete_thread("thread-1")
        with pytest.raises(CheckpointNotFound):
            sync_store.get_tuple(tns)

    def test_concurrent_callers(self, sync_store, tns):
        """Test many threads putting at once lose nothing."""
        ids = [f"c{i}" for i in range(32)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda cid: sync_store.put(tns, cid, b"p"), ids))

        listed = [item.checkpoint_id for item in sync_store.list(tns)]
        assert sorted(listed) == sorted(ids)

    def test_require(self, sync_store):
        sync_store.require("get_latest", "list", "delete_thread")

    def test_close(self, tns):
        store = make_sync_store()
        store.close()
        store.close()

        with pytest.raises(RuntimeError):
            store.put(tns, "c1", b"p")

    def test_context_manager(self, tns):
        with make_sync_store() as store:
            store.put(tns, "c1", b"p")
        assert store._closed
