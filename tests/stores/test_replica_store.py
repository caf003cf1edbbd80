import asyncio
import pytest
from cabs import *
from cabs.stores.memory import MemoryBlobStore
from cabs.stores.lmdb import LmdbBlobStore, SharedEnvironment
from cabs.stores.replica import ReplicaStore
import helpers_store as helpers

class FailingStore(MemoryBlobStore):
    """A store whose puts fail."""
    def __init__(self, error:Exception|None=None):
        super().__init__()
        self.error = error or FatalError("disk on fire")

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        raise self.error

class SlowStore(MemoryBlobStore):
    def __init__(self, delay:float):
        super().__init__()
        self.delay = delay
        self.cancelled = 0

    async def get(self, ref:Ref) -> Blob:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return await super().get(ref)

async def test_replica_contract():
    replica = ReplicaStore([MemoryBlobStore(), MemoryBlobStore()])
    await helpers.check_blobs(replica)
    await helpers.check_list_refs(replica)
    await helpers.check_anchors(replica)
    await replica.close()

async def test_replica_fan_in():
    m1 = MemoryBlobStore()
    m2 = MemoryBlobStore()
    await m1.put(b"foo")
    await m2.put(b"bar")
    replica = ReplicaStore([m1, m2], [])
    await replica.put(b"baz")

    foo, bar, baz = get_ref(b"foo"), get_ref(b"bar"), get_ref(b"baz")
    assert await collect_refs(replica) == sorted([foo, bar, baz])
    assert await collect_refs(m1) == sorted([foo, baz])
    assert await collect_refs(m2) == sorted([bar, baz])

    # a blob present on one member only can still be read
    assert await replica.get(foo) == b"foo"
    assert await replica.get(bar) == b"bar"
    await replica.close()

async def test_replica_async_stores_receive_blobs():
    sync_store = MemoryBlobStore()
    async_store = MemoryBlobStore()
    replica = ReplicaStore([sync_store], [async_store], queue_len=2)
    blobs = helpers.random_blobs(10)
    for blob in blobs:
        await replica.put(blob)
    ref, _ = await replica.put(b"anchored")
    await replica.put_anchor("name", ref, helpers.T1)
    await replica.flush()
    assert await collect_refs(async_store) == await collect_refs(sync_store)
    assert await async_store.get_anchor("name", helpers.T1) == ref
    await replica.close()

async def test_replica_async_map_store(tmp_path):
    async_store = LmdbBlobStore(SharedEnvironment(str(tmp_path)))
    replica = ReplicaStore([MemoryBlobStore()], [async_store])
    ref, _ = await replica.put(b"x")
    await replica.put_anchor("name", ref, helpers.T1)
    await replica.flush()
    assert await anchor_view(async_store).get_anchor("name", helpers.T2) == ref
    await replica.close()

async def test_replica_sticky_error():
    replica = ReplicaStore([MemoryBlobStore()], [FailingStore()], queue_len=1)
    ref, _ = await replica.put(b"first")
    # the worker fails in the background
    for _ in range(100):
        if replica.error is not None:
            break
        await asyncio.sleep(0.01)
    assert replica.error is not None

    with pytest.raises(ReplicaFailedError) as exc_info:
        await replica.get(ref)
    assert error_is(exc_info.value, ErrorKind.FATAL)
    with pytest.raises(ReplicaFailedError):
        await replica.put(b"second")
    with pytest.raises(ReplicaFailedError):
        await collect_refs(replica)
    with pytest.raises(ReplicaFailedError):
        await replica.get_anchor("name", helpers.T1)
    await replica.close()

async def test_replica_put_blocked_on_full_queue_fails():
    replica = ReplicaStore([MemoryBlobStore()], [FailingStore()], queue_len=1)
    # keep putting until the failure surfaces, a blocked enqueue must not hang
    async def put_until_failed():
        with pytest.raises(ReplicaFailedError):
            for i in range(1000):
                await replica.put(f"blob {i}".encode())
    await asyncio.wait_for(put_until_failed(), 5)
    await replica.close()

async def test_replica_sync_failure_fails_put():
    healthy = MemoryBlobStore()
    replica = ReplicaStore([healthy, FailingStore(TransientError("try later"))])
    with pytest.raises(TransientError):
        await replica.put(b"x")
    # a failed synchronous put does not poison the replica
    assert replica.error is None
    assert await collect_refs(replica) == await collect_refs(healthy)
    await replica.close()

async def test_replica_get_races():
    fast = MemoryBlobStore()
    slow = SlowStore(10)
    replica = ReplicaStore([slow, fast])
    ref, _ = await replica.put(b"raced")
    blob = await asyncio.wait_for(replica.get(ref), 2)
    assert blob == b"raced"
    assert slow.cancelled == 1
    await replica.close()

async def test_replica_get_not_found():
    replica = ReplicaStore([MemoryBlobStore(), MemoryBlobStore()])
    with pytest.raises(NotFoundError):
        await replica.get(get_ref(b"missing"))
    await replica.close()

async def test_replica_without_anchor_stores():
    class BlobsOnly(BlobStore):
        def __init__(self):
            self.nested = MemoryBlobStore()
        async def get(self, ref):
            return await self.nested.get(ref)
        async def put(self, blob):
            return await self.nested.put(blob)
        async def list_refs(self, start, callback):
            await self.nested.list_refs(start, callback)

    replica = ReplicaStore([MemoryBlobStore(), BlobsOnly()])
    assert not replica.has_anchor_history()
    with pytest.raises(NotAnchorStoreError):
        anchor_view(replica)
    with pytest.raises(NotAnchorStoreError):
        await replica.get_anchor("name", helpers.T1)
    await replica.close()

async def test_replica_needs_sync_store():
    with pytest.raises(ValueError):
        ReplicaStore([])
