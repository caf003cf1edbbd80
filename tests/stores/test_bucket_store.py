import pytest
from datetime import timedelta
from cabs import *
from cabs.timestamps import encode_anchor_key
from cabs.stores.bucket import BucketBlobStore, MemoryBucket
import helpers_store as helpers

async def test_bucket_blobs():
    await helpers.check_blobs(BucketBlobStore(MemoryBucket()))

async def test_bucket_list_refs():
    await helpers.check_list_refs(BucketBlobStore(MemoryBucket()))

async def test_bucket_anchors():
    await helpers.check_anchors(BucketBlobStore(MemoryBucket()))

async def test_bucket_keys():
    bucket = MemoryBucket()
    store = BucketBlobStore(bucket)
    ref, _ = await store.put(b"hello")
    assert await bucket.get("b:" + ref.hex()) == b"hello"
    await store.put_anchor("a", ref, helpers.T1)
    assert await bucket.get(encode_anchor_key("a", helpers.T1)) == ref

async def test_bucket_anchor_names_with_common_prefix():
    store = BucketBlobStore(MemoryBucket())
    ref, _ = await store.put(b"x")
    # the hex of "a" is a prefix of the hex of "ab"
    await store.put_anchor("ab", ref, helpers.T1)
    await store.put_anchor("a", ref, helpers.T2)
    await store.put_anchor("a\x00", ref, helpers.T1)
    listed = await collect_anchors(store)
    assert [a.name for a in listed] == ["a", "a\x00", "ab"]
    assert await store.get_anchor("ab", helpers.T2) == ref
    try:
        await store.get_anchor("a", helpers.T1)
        assert False, "expected NotFoundError"
    except NotFoundError:
        pass

class CountingBucket(MemoryBucket):
    def __init__(self):
        super().__init__()
        self.reads = 0

    async def get(self, key:str) -> bytes:
        self.reads += 1
        return await super().get(key)

async def test_bucket_get_anchor_reads_only_the_resolved_entry():
    bucket = CountingBucket()
    store = BucketBlobStore(bucket)
    refs = []
    for i in range(50):
        ref, _ = await store.put(f"version {i}".encode())
        await store.put_anchor("a", ref, helpers.T1 + timedelta(seconds=i))
        refs.append(ref)
    bucket.reads = 0
    assert await store.get_anchor("a", helpers.T1 + timedelta(seconds=20, milliseconds=500)) == refs[20]
    assert bucket.reads == 1
    assert await store.get_anchor("a", helpers.T2) == refs[49]
    assert bucket.reads == 2
    with pytest.raises(NotFoundError):
        await store.get_anchor("a", helpers.T1 - timedelta(microseconds=1))
    assert bucket.reads == 2
