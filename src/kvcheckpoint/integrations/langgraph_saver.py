"""LangGraph checkpointer backed by the key-value checkpoint store."""

import logging
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Sequence, Tuple

from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import (
    BaseCheckpointSaver,
    ChannelVersions,
    Checkpoint,
    CheckpointMetadata,
    CheckpointTuple as LangGraphCheckpointTuple,
    get_checkpoint_id,
)

from ..errors import CheckpointNotFound
from ..models.checkpoint_models import (
    CheckpointTuple,
    PendingWriteEntry,
    ThreadNamespace,
)
from ..services.checkpoint_service import CheckpointStore
from ..services.sync_store import SyncCheckpointStore

logger = logging.getLogger(__name__)


class KeyValueSaver(BaseCheckpointSaver):
    """
    LangGraph checkpointer on top of CheckpointStore.

    CRITICAL: Pass this to compile(), not invoke()
    GOTCHA: Sync methods run the store on a private loop thread; use either
            the sync or the async methods for a Redis-backed store, not both
    """

    def __init__(self, store: CheckpointStore, *, serde: Any = None):
        """
        Initialize saver.

        Args:
            store: Checkpoint store to persist into
            serde: LangGraph serializer (default: the base saver's)
        """
        super().__init__(serde=serde)
        self.store = store
        self._sync_store: Optional[SyncCheckpointStore] = None

    @property
    def sync_store(self) -> SyncCheckpointStore:
        if self._sync_store is None:
            self._sync_store = SyncCheckpointStore(self.store)
        return self._sync_store

    @staticmethod
    def _thread_namespace(config: RunnableConfig) -> ThreadNamespace:
        configurable = config["configurable"]
        return ThreadNamespace(
            thread_id=str(configurable["thread_id"]),
            namespace=configurable.get("checkpoint_ns", ""),
        )

    def _put_args(
        self,
        config: RunnableConfig,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
    ) -> Dict[str, Any]:
        type_, blob = self.serde.dumps_typed(checkpoint)
        return {
            "tns": self._thread_namespace(config),
            "checkpoint_id": checkpoint["id"],
            "payload": blob,
            "metadata": dict(metadata),
            "parent_checkpoint_id": config["configurable"].get("checkpoint_id"),
            "payload_type": type_,
        }

    def _write_entries(
        self,
        writes: Sequence[Tuple[str, Any]],
        task_id: str,
        task_path: str,
    ) -> List[PendingWriteEntry]:
        entries = []
        for channel, value in writes:
            type_, blob = self.serde.dumps_typed(value)
            entries.append(
                PendingWriteEntry(
                    channel=channel,
                    value=blob,
                    value_type=type_,
                    task_id=task_id,
                    task_path=task_path,
                )
            )
        return entries

    def _to_langgraph(self, item: CheckpointTuple) -> LangGraphCheckpointTuple:
        record = item.record
        config: RunnableConfig = {
            "configurable": {
                "thread_id": record.thread_id,
                "checkpoint_ns": record.namespace,
                "checkpoint_id": record.checkpoint_id,
            }
        }
        parent_config: Optional[RunnableConfig] = None
        if record.parent_checkpoint_id:
            parent_config = {
                "configurable": {
                    "thread_id": record.thread_id,
                    "checkpoint_ns": record.namespace,
                    "checkpoint_id": record.parent_checkpoint_id,
                }
            }
        return LangGraphCheckpointTuple(
            config=config,
            checkpoint=self.serde.loads_typed((record.payload_type, record.payload)),
            metadata=record.metadata,
            parent_config=parent_config,
            pending_writes=[
                (w.task_id, w.channel, self.serde.loads_typed((w.value_type, w.value)))
                for w in item.pending_writes
            ],
        )

    @staticmethod
    def _require_config(config: Optional[RunnableConfig]) -> RunnableConfig:
        if not config:
            raise ValueError("Listing checkpoints requires a thread_id in the config")
        return config

    # Sync surface

    def get_tuple(self, config: RunnableConfig) -> Optional[LangGraphCheckpointTuple]:
        try:
            item = self.sync_store.get_tuple(
                self._thread_namespace(config), get_checkpoint_id(config)
            )
        except CheckpointNotFound:
            return None
        return self._to_langgraph(item)

    def list(
        self,
        config: Optional[RunnableConfig],
        *,
        filter: Optional[Dict[str, Any]] = None,
        before: Optional[RunnableConfig] = None,
        limit: Optional[int] = None,
    ) -> Iterator[LangGraphCheckpointTuple]:
        config = self._require_config(config)
        items = self.sync_store.list(
            self._thread_namespace(config),
            filter=filter,
            before=get_checkpoint_id(before) if before else None,
            limit=limit,
        )
        for item in items:
            yield self._to_langgraph(item)

    def put(
        self,
        config: RunnableConfig,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        ref = self.sync_store.put(**self._put_args(config, checkpoint, metadata))
        return {
            "configurable": {
                "thread_id": ref.thread_id,
                "checkpoint_ns": ref.namespace,
                "checkpoint_id": ref.checkpoint_id,
            }
        }

    def put_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[Tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        self.sync_store.put_writes(
            self._thread_namespace(config),
            config["configurable"]["checkpoint_id"],
            self._write_entries(writes, task_id, task_path),
        )

    def delete_thread(self, thread_id: str) -> None:
        self.sync_store.delete_thread(str(thread_id))

    # Async surface

    async def aget_tuple(
        self, config: RunnableConfig
    ) -> Optional[LangGraphCheckpointTuple]:
        try:
            item = await self.store.get_tuple(
                self._thread_namespace(config), get_checkpoint_id(config)
            )
        except CheckpointNotFound:
            return None
        return self._to_langgraph(item)

    async def alist(
        self,
        config: Optional[RunnableConfig],
        *,
        filter: Optional[Dict[str, Any]] = None,
        before: Optional[RunnableConfig] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[LangGraphCheckpointTuple]:
        config = self._require_config(config)
        iterator = await self.store.list(
            self._thread_namespace(config),
            filter=filter,
            before=get_checkpoint_id(before) if before else None,
            limit=limit,
        )
        async for item in iterator:
            yield self._to_langgraph(item)

    async def aput(
        self,
        config: RunnableConfig,
        checkpoint: Checkpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        ref = await self.store.put(**self._put_args(config, checkpoint, metadata))
        return {
            "configurable": {
                "thread_id": ref.thread_id,
                "checkpoint_ns": ref.namespace,
                "checkpoint_id": ref.checkpoint_id,
            }
        }

    async def aput_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[Tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        await self.store.put_writes(
            self._thread_namespace(config),
            config["configurable"]["checkpoint_id"],
            self._write_entries(writes, task_id, task_path),
        )

    async def adelete_thread(self, thread_id: str) -> None:
        await self.store.delete_thread(str(thread_id))

    def close(self) -> None:
        """Stop the sync loop thread (closing the store) if it was started."""
        if self._sync_store is not None:
            self._sync_store.close()
            self._sync_store = None
