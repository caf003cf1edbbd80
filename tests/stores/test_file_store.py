import os
from cabs import *
from cabs.stores.file import FileBlobStore
import helpers_store as helpers

async def test_file_blobs(tmp_path):
    await helpers.check_blobs(FileBlobStore(str(tmp_path)))

async def test_file_list_refs(tmp_path):
    await helpers.check_list_refs(FileBlobStore(str(tmp_path)))

async def test_file_anchors(tmp_path):
    await helpers.check_anchors(FileBlobStore(str(tmp_path)))

async def test_file_layout(tmp_path):
    store = FileBlobStore(str(tmp_path))
    ref, _ = await store.put(b"hello")
    ref_str = ref.hex()
    path = os.path.join(str(tmp_path), "blobs", ref_str[:2], ref_str[:4], ref_str)
    with open(path, "rb") as f:
        assert f.read() == b"hello"

async def test_file_reopen(tmp_path):
    store = FileBlobStore(str(tmp_path))
    ref, _ = await store.put(b"persisted")
    await store.put_anchor("name", ref, helpers.T1)

    store_2 = FileBlobStore(str(tmp_path))
    assert await store_2.get(ref) == b"persisted"
    assert await store_2.get_anchor("name", helpers.T2) == ref
    _, added = await store_2.put(b"persisted")
    assert not added

async def test_file_list_refs_skips_unexpected_names(tmp_path):
    store = FileBlobStore(str(tmp_path))
    ref, _ = await store.put(b"hello")
    ref_str = ref.hex()
    os.makedirs(os.path.join(str(tmp_path), "blobs", "zz"))
    with open(os.path.join(str(tmp_path), "blobs", ref_str[:2], ref_str[:4], "README"), "w") as f:
        f.write("not a blob")
    assert await collect_refs(store) == [ref]

async def test_file_anchor_names(tmp_path):
    store = FileBlobStore(str(tmp_path))
    ref, _ = await store.put(b"x")
    names = ["", ".", "..", "a/b", "ünïcode", "a"]
    for name in names:
        await store.put_anchor(name, ref, helpers.T1)
    for name in names:
        assert await store.get_anchor(name, helpers.T1) == ref
    listed = await collect_anchors(store)
    # the empty name sorts first and is never greater than the start
    assert [a.name for a in listed] == sorted(names)[1:]
