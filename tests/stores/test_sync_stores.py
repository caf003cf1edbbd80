import pytest
from cabs import *
from cabs.stores.memory import MemoryBlobStore
from cabs.stores.file import FileBlobStore
from cabs.stores.lmdb import LmdbBlobStore, SharedEnvironment
from cabs.stores.bucket import BucketBlobStore, MemoryBucket
import helpers_store as helpers

WORDS = [b"abc", b"def", b"ghi", b"jkl", b"mno", b"pqr", b"stu"]

async def test_sync_seven_stores():
    stores = []
    for i in range(len(WORDS)):
        store = MemoryBlobStore()
        for j, word in enumerate(WORDS):
            if i != j:
                await store.put(word)
        stores.append(store)
    await sync_stores(stores)
    expected = sorted(get_ref(word) for word in WORDS)
    for store in stores:
        assert await collect_refs(store) == expected

async def test_sync_mixed_stores(tmp_path):
    stores = [
        MemoryBlobStore(),
        FileBlobStore(str(tmp_path / "file")),
        LmdbBlobStore(SharedEnvironment(str(tmp_path / "lmdb"))),
        BucketBlobStore(MemoryBucket()),
    ]
    expected = []
    for index, store in enumerate(stores):
        for blob in helpers.random_blobs(5):
            ref, _ = await store.put(blob)
            expected.append(ref)
        await anchor_view(store).put_anchor(f"anchor-{index}", ref, helpers.T1)
    await sync_stores(stores)
    for store in stores:
        # the lmdb store also holds the nodes of its anchor map
        assert set(expected) <= set(await collect_refs(store))
        anchors = await collect_anchors(anchor_view(store))
        assert [a.name for a in anchors] == [f"anchor-{i}" for i in range(len(stores))]
    await stores[2].close()

async def test_sync_keeps_existing_anchor_entries():
    s1 = MemoryBlobStore()
    s2 = MemoryBlobStore()
    r1, _ = await s1.put(b"one")
    r2, _ = await s2.put(b"two")
    await s1.put_anchor("name", r1, helpers.T1)
    await s2.put_anchor("name", r2, helpers.T1)
    await s2.put_anchor("name", r2, helpers.T2)
    await sync_stores([s1, s2])
    assert await s1.get_anchor("name", helpers.T1) == r1
    assert await s2.get_anchor("name", helpers.T1) == r2
    assert await s1.get_anchor("name", helpers.T2) == r2

async def test_sync_failure_aborts():
    class BrokenGet(MemoryBlobStore):
        async def get(self, ref:Ref) -> Blob:
            raise FatalError("unreadable")
    s1 = BrokenGet()
    s2 = MemoryBlobStore()
    await s1.put(b"only here")
    with pytest.raises(StoreError) as exc_info:
        await sync_stores([s1, s2])
    assert error_is(exc_info.value, ErrorKind.FATAL)
    assert await collect_refs(s2) == []

async def test_sync_single_store_is_a_no_op():
    store = MemoryBlobStore()
    await store.put(b"x")
    await sync_stores([store])
    assert len(await collect_refs(store)) == 1
