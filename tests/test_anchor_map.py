import os
from datetime import datetime, timedelta, timezone
import pytest
from cabs import *
from cabs.anchor_map import (Outcome, MapNode, bytes_to_node, node_to_bytes, history_to_bytes, bytes_to_history,
                             put_anchor_in_map, get_anchor_from_map)
from cabs.stores.memory import MemoryBlobStore

T1 = datetime(1977, 8, 5, 16, 0, tzinfo=timezone.utc)

async def test_map_set_and_lookup():
    store = MemoryBlobStore()
    pmap = PersistentMap(store, max_node=4)
    pairs = {os.urandom(8): os.urandom(16) for _ in range(100)}
    for key, payload in pairs.items():
        _, outcome = await pmap.set(key, payload)
        assert outcome == Outcome.ADDED
    assert len(pmap) == 100
    assert pmap.root.is_internal
    for key, payload in pairs.items():
        assert await pmap.lookup(key) == payload
    assert await pmap.lookup(b"absent") is None

    key = next(iter(pairs))
    ref_before = pmap.ref()
    ref, outcome = await pmap.set(key, pairs[key])
    assert outcome == Outcome.NONE
    assert ref == ref_before
    _, outcome = await pmap.set(key, b"changed")
    assert outcome == Outcome.UPDATED
    assert await pmap.lookup(key) == b"changed"
    assert len(pmap) == 100

async def test_map_shape_depends_on_contents_only():
    pairs = [(os.urandom(8), os.urandom(4)) for _ in range(50)]
    pmap_1 = PersistentMap(MemoryBlobStore(), max_node=3)
    pmap_2 = PersistentMap(MemoryBlobStore(), max_node=3)
    for key, payload in pairs:
        ref_1, _ = await pmap_1.set(key, payload)
    for key, payload in reversed(pairs):
        ref_2, _ = await pmap_2.set(key, payload)
    assert ref_1 == ref_2

async def test_map_load_and_each():
    store = MemoryBlobStore()
    pmap = PersistentMap(store, max_node=2)
    pairs = {f"key{i}".encode(): f"value{i}".encode() for i in range(20)}
    for key, payload in pairs.items():
        ref, _ = await pmap.set(key, payload)
    loaded = await PersistentMap.load(store, ref, max_node=2)
    seen = {}
    async def on_pair(key:bytes, payload:bytes):
        seen[key] = payload
    await loaded.each(on_pair)
    assert seen == pairs

    empty = await PersistentMap.load(store, ZERO_REF)
    assert len(empty) == 0

def test_node_serialization():
    node = bytes_to_node(node_to_bytes(MapNode()))
    assert node.size == 0
    assert not node.is_internal
    with pytest.raises(StoreError):
        bytes_to_node(b"blob 3\x00abc")

def test_history_serialization():
    history = [TimeRef(T1, get_ref(b"a")), TimeRef(T1 + timedelta(microseconds=7), get_ref(b"b"))]
    assert bytes_to_history(history_to_bytes(history)) == history
    with pytest.raises(StoreError):
        bytes_to_history(b"\x00" * 10)

async def test_put_anchor_in_map():
    store = MemoryBlobStore()
    r1, r2 = get_ref(b"1"), get_ref(b"2")
    map_ref = await put_anchor_in_map(store, ZERO_REF, "name", r1, T1)
    map_ref = await put_anchor_in_map(store, map_ref, "name", r2, T1 + timedelta(hours=1))
    assert await get_anchor_from_map(store, map_ref, "name", T1 + timedelta(minutes=30)) == r1
    assert await get_anchor_from_map(store, map_ref, "name", T1 + timedelta(hours=2)) == r2
    # same instant again leaves the map as it is
    assert await put_anchor_in_map(store, map_ref, "name", r2, T1) == map_ref
    with pytest.raises(NotFoundError):
        await get_anchor_from_map(store, map_ref, "other", T1)

class RegisterStore(MemoryBlobStore, AnchorMapStore):
    """A map-root store on top of the memory store, for testing the map view."""
    def __init__(self, conflicts:int=0):
        super().__init__()
        self.root:Ref|None = None
        self.conflicts = conflicts

    def has_anchor_history(self) -> bool:
        return False

    async def anchor_map_ref(self) -> Ref:
        if self.root is None:
            raise NoAnchorMapError()
        return self.root

    async def update_anchor_map(self, update:UpdateFunc) -> None:
        old = self.root
        new = await update(old if old is not None else ZERO_REF)
        if self.conflicts > 0:
            self.conflicts -= 1
            raise UpdateConflictError()
        if self.root != old:
            raise UpdateConflictError()
        self.root = new

async def test_map_anchor_view_retries_conflicts():
    store = RegisterStore(conflicts=3)
    view = anchor_view(store)
    assert isinstance(view, MapAnchorView)
    ref, _ = await store.put(b"x")
    await view.put_anchor("name", ref, T1)
    assert await view.get_anchor("name", T1) == ref
    assert store.conflicts == 0

async def test_map_anchor_view_gives_up_after_timeout():
    store = RegisterStore(conflicts=1_000_000)
    async def update(map_ref:Ref) -> Ref:
        return map_ref
    with pytest.raises(TimeoutError):
        await update_anchor_map_with_retry(store, update, timeout=0.1)

async def test_map_anchor_view_without_map():
    view = anchor_view(RegisterStore())
    with pytest.raises(NotFoundError):
        await view.get_anchor("name", T1)
    assert await collect_anchors(view) == []
