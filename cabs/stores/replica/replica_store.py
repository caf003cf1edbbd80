import asyncio
import logging
import threading
from contextlib import AsyncExitStack, aclosing
from datetime import datetime
from pydantic import Field
from cabs.object_model import *
from cabs.refs import enforce_ref
from cabs.errors import ReplicaFailedError, NotAnchorStoreError
from cabs.blob_store import AnchorStore, BlobStore, anchor_view, has_anchors
from cabs.listing import iter_refs, iter_anchors, iter_listing
from cabs.fanout import gather_fail_fast, first_success, merge_sorted, wait_or_event
from cabs.timestamps import normalize_time
from cabs.registry import register, parse_config, from_config, StoreConfig

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_LEN = 10

class ReplicaStore(AnchorStore):
    """Replicates writes to a set of synchronous stores and, through bounded queues, to a set
    of asynchronous stores.

    A put returns after every synchronous store has the blob. Reads are raced against the
    synchronous stores. The first error of an asynchronous store puts the replica into a
    failed state: every later operation raises ReplicaFailedError. There is no recovery,
    create a new replica instead.

    Must be created inside a running event loop, since the workers start right away.
    """
    sync_stores:list[BlobStore]
    async_stores:list[BlobStore]

    # the failure is read and written from different tasks (and possibly threads)
    _error_lock:threading.Lock
    _error:BaseException|None
    _failed:asyncio.Event
    _queues:list[asyncio.Queue]
    _workers:list[asyncio.Task]
    _supervisor:asyncio.Task|None

    def __init__(self, sync_stores:list[BlobStore], async_stores:list[BlobStore]|None=None, queue_len:int=DEFAULT_QUEUE_LEN):
        super().__init__()
        if not sync_stores:
            raise ValueError("a replica needs at least one synchronous store")
        if queue_len < 1:
            raise ValueError(f"queue_len must be at least 1, not {queue_len}")
        self.sync_stores = list(sync_stores)
        self.async_stores = list(async_stores or [])
        self._error_lock = threading.Lock()
        self._error = None
        self._failed = asyncio.Event()
        self._queues = [asyncio.Queue(queue_len) for _ in self.async_stores]
        self._workers = [asyncio.create_task(self._work(index, store, queue))
                         for index, (store, queue) in enumerate(zip(self.async_stores, self._queues))]
        self._supervisor = asyncio.create_task(self._supervise()) if self._workers else None
        if self._workers:
            logger.info(f"started {len(self._workers)} replica worker(s)")

    #=========================================================
    # Failure state
    #=========================================================
    @property
    def error(self) -> BaseException|None:
        with self._error_lock:
            return self._error

    def _set_error(self, error:BaseException) -> bool:
        with self._error_lock:
            if self._error is not None:
                return False
            self._error = error
        self._failed.set()
        return True

    def _check(self) -> None:
        error = self.error
        if error is not None:
            raise ReplicaFailedError.wrap("replica has failed", error) from error

    async def _work(self, index:int, store:BlobStore, queue:asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            try:
                if isinstance(item, Anchor):
                    await anchor_view(store).put_anchor(item.name, item.ref, item.at)
                else:
                    await store.put(item)
            finally:
                queue.task_done()

    async def _supervise(self) -> None:
        # returns on the first worker error, workers only stop early by failing
        done, pending = await asyncio.wait(self._workers, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            if task.cancelled() or task.exception() is None:
                continue
            error = task.exception()
            if self._set_error(error):
                logger.error("asynchronous replica store failed, the replica is now unusable", exc_info=error)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def _enqueue(self, item:Blob|Anchor, queues:list[asyncio.Queue]) -> None:
        for queue in queues:
            if not queue.full():
                queue.put_nowait(item)
                continue
            # blocks until there is space, unless the replica fails while waiting
            completed, _ = await wait_or_event(queue.put(item), self._failed)
            if not completed:
                self._check()

    async def flush(self) -> None:
        """Waits until the asynchronous stores have written everything enqueued so far."""
        self._check()
        for queue in self._queues:
            await wait_or_event(queue.join(), self._failed)
        self._check()

    #=========================================================
    # Blobs
    #=========================================================
    async def get(self, ref:Ref) -> Blob:
        self._check()
        ref = enforce_ref(ref)
        return await first_success([store.get(ref) for store in self.sync_stores])

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        self._check()
        blob = bytes(blob)
        results = await gather_fail_fast([store.put(blob) for store in self.sync_stores])
        # the members may disagree on 'added', the first one is reported
        ref, added = results[0]
        await self._enqueue(blob, self._queues)
        return ref, added

    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        self._check()
        start = enforce_ref(start)
        async with AsyncExitStack() as stack:
            iterators = [await stack.enter_async_context(aclosing(iter_refs(store, start)))
                         for store in self.sync_stores]
            async for ref, _ in merge_sorted(iterators):
                self._check()
                await callback(ref)

    #=========================================================
    # Anchors, available when every synchronous store has them
    #=========================================================
    def has_anchor_history(self) -> bool:
        return all(has_anchors(store) for store in self.sync_stores)

    def _sync_views(self) -> list[AnchorStore]:
        if not self.has_anchor_history():
            raise NotAnchorStoreError("not every synchronous store of the replica stores anchors")
        return [anchor_view(store) for store in self.sync_stores]

    async def get_anchor(self, name:str, at:datetime) -> Ref:
        self._check()
        return await first_success([view.get_anchor(name, at) for view in self._sync_views()])

    async def put_anchor(self, name:str, ref:Ref, at:datetime) -> None:
        self._check()
        anchor = Anchor(name, normalize_time(at), enforce_ref(ref))
        await gather_fail_fast([view.put_anchor(anchor.name, anchor.ref, anchor.at) for view in self._sync_views()])
        # asynchronous stores without anchors only receive the blobs
        queues = [queue for store, queue in zip(self.async_stores, self._queues) if has_anchors(store)]
        await self._enqueue(anchor, queues)

    async def list_anchors(self, start:str, callback:AnchorCallback) -> None:
        self._check()
        views = self._sync_views()
        async with AsyncExitStack() as stack:
            iterators = [await stack.enter_async_context(aclosing(iter_anchors(view, start)))
                         for view in views]
            async for anchor, _ in merge_sorted(iterators, key=lambda anchor: (anchor.name, anchor.at)):
                self._check()
                await callback(anchor)

    async def list_anchor_history(self, name:str, callback:TimeRefCallback) -> None:
        self._check()
        views = self._sync_views()
        async with AsyncExitStack() as stack:
            iterators = []
            for view in views:
                listing = lambda on_item, view=view: view.list_anchor_history(name, on_item)
                iterators.append(await stack.enter_async_context(aclosing(iter_listing(listing))))
            async for time_ref, _ in merge_sorted(iterators, key=lambda time_ref: time_ref.at):
                self._check()
                await callback(time_ref)

    async def close(self) -> None:
        tasks = list(self._workers)
        if self._supervisor is not None:
            tasks.append(self._supervisor)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._workers:
            logger.info(f"stopped {len(self._workers)} replica worker(s)")
        for store in self.sync_stores + self.async_stores:
            await store.close()

class ReplicaStoreConfig(StoreConfig):
    sync:list[dict] = Field(min_length=1)
    async_:list[dict] = Field(default_factory=list, alias="async")
    queuelen:int = Field(default=DEFAULT_QUEUE_LEN, ge=1)

@register("replica")
async def create_replica_store(conf:dict) -> ReplicaStore:
    config = parse_config(ReplicaStoreConfig, conf)
    sync_stores:list[BlobStore] = []
    async_stores:list[BlobStore] = []
    try:
        for nested in config.sync:
            sync_stores.append(await from_config(nested))
        for nested in config.async_:
            async_stores.append(await from_config(nested))
    except BaseException:
        for store in sync_stores + async_stores:
            await store.close()
        raise
    return ReplicaStore(sync_stores, async_stores, config.queuelen)
