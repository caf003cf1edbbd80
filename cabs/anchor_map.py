from __future__ import annotations
import asyncio
import bisect
import hashlib
import logging
import random
import struct
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable
from cabs.object_model import *
from cabs.refs import get_ref, is_zero_ref, enforce_ref
from cabs.errors import NotFoundError, NoAnchorMapError, UpdateConflictError, StoreError
from cabs.blob_store import BlobStore, AnchorStore, AnchorMapStore
from cabs.history import find_anchor, insert_time_ref
from cabs.timestamps import normalize_time, time_to_nanos, nanos_to_time, NANOS_PER_SECOND

logger = logging.getLogger(__name__)

# A persistent map stored as blobs, and the anchor map built on top of it.
#
# The map is a binary tree. A node holds a list of members sorted by the sha256 of their key,
# until it grows beyond max_node members; then it is split into a left and a right child.
# A node at depth D sends members with a 0 in bit D of the key hash to the left, and the rest to the right.
# The shape of the tree only depends on its contents, not on the order of the updates,
# so equal maps have equal root refs.
#
# In the anchor map, keys are anchor names (utf-8) and payloads are the serialized,
# time ordered history of the anchor.

DEFAULT_MAX_NODE = 128

_STR_ENCODING = 'ascii'
_U32 = struct.Struct('>I')
_SUBNODE = struct.Struct('>32sI')
_TIME_REF = struct.Struct('>qI32s')

class Outcome(Enum):
    NONE = 0
    ADDED = 1
    UPDATED = 2

@dataclass(frozen=True)
class SubNode:
    ref:Ref
    size:int

@dataclass(frozen=True)
class MapNode:
    depth:int = 0
    size:int = 0
    left:SubNode|None = None
    right:SubNode|None = None
    # (key hash, key, payload), sorted by key hash
    members:tuple[tuple[bytes, bytes, bytes], ...] = field(default_factory=tuple)

    @property
    def is_internal(self) -> bool:
        return self.left is not None

#=========================================================
# Node serialization
#=========================================================
def node_to_bytes(node:MapNode) -> bytes:
    result = bytearray()
    result += _U32.pack(node.depth)
    result += _U32.pack(node.size)
    if node.is_internal:
        result += b'\x01'
        result += _SUBNODE.pack(enforce_ref(node.left.ref), node.left.size)
        result += _SUBNODE.pack(enforce_ref(node.right.ref), node.right.size)
    else:
        result += b'\x00'
        result += _U32.pack(len(node.members))
        for _key_hash, key, payload in node.members:
            result += _U32.pack(len(key))
            result += key
            result += _U32.pack(len(payload))
            result += payload
    header = f"mapnode {len(result)}\x00".encode(_STR_ENCODING)
    return bytes(header + result)

def bytes_to_node(data:bytes) -> MapNode:
    header, body = data.split(b'\x00', 1)
    object_type, length_str = header.decode(_STR_ENCODING).split(' ')
    if object_type != 'mapnode':
        raise StoreError(f"Expected a map node but got '{object_type}'")
    if len(body) != int(length_str):
        raise StoreError(f"Expected map node body of {length_str} bytes but got {len(body)}")
    depth, = _U32.unpack_from(body, 0)
    size, = _U32.unpack_from(body, 4)
    offset = 9
    if body[8] == 1:
        left_ref, left_size = _SUBNODE.unpack_from(body, offset)
        right_ref, right_size = _SUBNODE.unpack_from(body, offset + _SUBNODE.size)
        return MapNode(depth, size, SubNode(left_ref, left_size), SubNode(right_ref, right_size))
    count, = _U32.unpack_from(body, offset)
    offset += 4
    members = []
    for _ in range(count):
        key_len, = _U32.unpack_from(body, offset)
        offset += 4
        key = body[offset:offset+key_len]
        offset += key_len
        payload_len, = _U32.unpack_from(body, offset)
        offset += 4
        payload = body[offset:offset+payload_len]
        offset += payload_len
        members.append((_hash_key(key), key, payload))
    return MapNode(depth, size, members=tuple(members))

def _hash_key(key:bytes) -> bytes:
    return hashlib.sha256(key).digest()

def _nth_bit(key_hash:bytes, n:int) -> bool:
    return (key_hash[n // 8] >> (7 - n % 8)) & 1 == 1

#=========================================================
# Persistent map
#=========================================================
class PersistentMap:
    """An immutable map from byte keys to byte payloads, stored as a tree of blobs.
    Updates store the changed nodes and return the ref of the new root."""

    def __init__(self, store:BlobStore, root:MapNode|None=None, max_node:int=DEFAULT_MAX_NODE):
        if max_node < 1:
            raise ValueError("max_node must be 1 or greater.")
        self._store = store
        self._root = root if root is not None else MapNode()
        self._max_node = max_node

    @classmethod
    async def load(cls, store:BlobStore, ref:Ref, max_node:int=DEFAULT_MAX_NODE) -> PersistentMap:
        if is_zero_ref(ref):
            return cls(store, None, max_node)
        return cls(store, bytes_to_node(await store.get(ref)), max_node)

    @property
    def root(self) -> MapNode:
        return self._root

    def __len__(self) -> int:
        return self._root.size

    def ref(self) -> Ref:
        return get_ref(node_to_bytes(self._root))

    async def save(self) -> Ref:
        return await self._store_node(self._root)

    async def lookup(self, key:bytes) -> bytes|None:
        key_hash = _hash_key(key)
        node = self._root
        while node.is_internal:
            sub = node.right if _nth_bit(key_hash, node.depth) else node.left
            node = await self._load_node(sub.ref)
        index = _search(node.members, key_hash)
        if index < len(node.members) and node.members[index][0] == key_hash:
            return node.members[index][2]
        return None

    async def set(self, key:bytes, payload:bytes) -> tuple[Ref, Outcome]:
        new_root, outcome = await self._set(self._root, _hash_key(key), bytes(key), bytes(payload))
        if outcome == Outcome.NONE:
            return self.ref(), outcome
        self._root = new_root
        return await self._store_node(new_root), outcome

    async def each(self, callback:Callable[[bytes, bytes], Awaitable[None]]) -> None:
        """Calls the callback for every key and payload, in key hash order."""
        await self._each(self._root, callback)

    async def _each(self, node:MapNode, callback:Callable[[bytes, bytes], Awaitable[None]]) -> None:
        if node.is_internal:
            await self._each(await self._load_node(node.left.ref), callback)
            await self._each(await self._load_node(node.right.ref), callback)
            return
        for _key_hash, key, payload in node.members:
            await callback(key, payload)

    async def _set(self, node:MapNode, key_hash:bytes, key:bytes, payload:bytes) -> tuple[MapNode, Outcome]:
        if node.is_internal:
            go_right = _nth_bit(key_hash, node.depth)
            sub = node.right if go_right else node.left
            child, outcome = await self._set(await self._load_node(sub.ref), key_hash, key, payload)
            if outcome == Outcome.NONE:
                return node, outcome
            added = 1 if outcome == Outcome.ADDED else 0
            new_sub = SubNode(await self._store_node(child), sub.size + added)
            if go_right:
                return replace(node, right=new_sub, size=node.size + added), outcome
            return replace(node, left=new_sub, size=node.size + added), outcome

        members = list(node.members)
        index = _search(members, key_hash)
        if index < len(members) and members[index][0] == key_hash:
            if members[index][2] == payload:
                return node, Outcome.NONE
            members[index] = (key_hash, key, payload)
            return replace(node, members=tuple(members)), Outcome.UPDATED
        members.insert(index, (key_hash, key, payload))
        return await self._build(members, node.depth), Outcome.ADDED

    async def _build(self, members:list[tuple[bytes, bytes, bytes]], depth:int) -> MapNode:
        if len(members) <= self._max_node:
            return MapNode(depth, len(members), members=tuple(members))
        left = [m for m in members if not _nth_bit(m[0], depth)]
        right = [m for m in members if _nth_bit(m[0], depth)]
        left_ref = await self._store_node(await self._build(left, depth + 1))
        right_ref = await self._store_node(await self._build(right, depth + 1))
        return MapNode(depth, len(members), SubNode(left_ref, len(left)), SubNode(right_ref, len(right)))

    async def _load_node(self, ref:Ref) -> MapNode:
        return bytes_to_node(await self._store.get(ref))

    async def _store_node(self, node:MapNode) -> Ref:
        ref, _ = await self._store.put(node_to_bytes(node))
        return ref

def _search(members, key_hash:bytes) -> int:
    return bisect.bisect_left(members, key_hash, key=lambda m: m[0])

#=========================================================
# Anchor histories inside the map
#=========================================================
def history_to_bytes(history:list[TimeRef]) -> bytes:
    result = bytearray()
    for time_ref in history:
        seconds, nanos = divmod(time_to_nanos(time_ref.at), NANOS_PER_SECOND)
        result += _TIME_REF.pack(seconds, nanos, enforce_ref(time_ref.ref))
    return bytes(result)

def bytes_to_history(data:bytes) -> list[TimeRef]:
    if len(data) % _TIME_REF.size != 0:
        raise StoreError(f"Anchor history of {len(data)} bytes is not a multiple of {_TIME_REF.size}")
    history = []
    for seconds, nanos, ref in _TIME_REF.iter_unpack(data):
        history.append(TimeRef(nanos_to_time(seconds * NANOS_PER_SECOND + nanos), ref))
    return history

async def load_anchor_history(store:BlobStore, map_ref:Ref, name:str) -> list[TimeRef]:
    anchor_map = await PersistentMap.load(store, map_ref)
    payload = await anchor_map.lookup(name.encode('utf-8'))
    if payload is None:
        return []
    return bytes_to_history(payload)

async def get_anchor_from_map(store:BlobStore, map_ref:Ref, name:str, at:datetime) -> Ref:
    history = await load_anchor_history(store, map_ref, name)
    if len(history) == 0:
        raise NotFoundError(f"anchor '{name}' not found")
    return find_anchor(history, at)

async def put_anchor_in_map(store:BlobStore, map_ref:Ref, name:str, ref:Ref, at:datetime) -> Ref:
    """Adds (at, ref) to the history of 'name' and returns the ref of the updated map.
    If the history already has an entry at that instant, the map is returned unchanged."""
    anchor_map = await PersistentMap.load(store, map_ref)
    key = name.encode('utf-8')
    payload = await anchor_map.lookup(key)
    history = bytes_to_history(payload) if payload is not None else []
    if not insert_time_ref(history, TimeRef(normalize_time(at), enforce_ref(ref))):
        return map_ref
    new_ref, _ = await anchor_map.set(key, history_to_bytes(history))
    return new_ref

async def each_anchor_in_map(store:BlobStore, map_ref:Ref, callback:AnchorCallback) -> None:
    """Calls the callback for every anchor entry in the map, grouped by name in no particular name order."""
    anchor_map = await PersistentMap.load(store, map_ref)
    async def on_pair(key:bytes, payload:bytes):
        name = key.decode('utf-8')
        for time_ref in bytes_to_history(payload):
            await callback(Anchor(name, time_ref.at, time_ref.ref))
    await anchor_map.each(on_pair)

_INITIAL_BACKOFF = 0.005
_MAX_BACKOFF = 1.0

async def update_anchor_map_with_retry(store:AnchorMapStore, update:UpdateFunc, timeout:float|None=None) -> None:
    """Runs update_anchor_map until it does not conflict, backing off exponentially between attempts.
    Gives up with TimeoutError after 'timeout' seconds (or when the calling task is cancelled)."""
    async with asyncio.timeout(timeout):
        delay = _INITIAL_BACKOFF
        while True:
            try:
                await store.update_anchor_map(update)
                return
            except UpdateConflictError:
                logger.warning(f"Anchor map update conflict, retrying in {delay:.3f}s")
                await asyncio.sleep(random.uniform(delay / 2, delay))
                delay = min(delay * 2, _MAX_BACKOFF)

class MapAnchorView(AnchorStore):
    """Presents the anchor map of a map-root store as per-name histories."""

    def __init__(self, store:AnchorMapStore):
        super().__init__()
        self._store = store

    async def get(self, ref:Ref) -> Blob:
        return await self._store.get(ref)

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        return await self._store.put(blob)

    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        await self._store.list_refs(start, callback)

    async def get_anchor(self, name:str, at:datetime) -> Ref:
        try:
            map_ref = await self._store.anchor_map_ref()
        except NoAnchorMapError:
            raise NotFoundError(f"anchor '{name}' not found") from None
        return await get_anchor_from_map(self._store, map_ref, name, at)

    async def put_anchor(self, name:str, ref:Ref, at:datetime) -> None:
        async def update(map_ref:Ref) -> Ref:
            return await put_anchor_in_map(self._store, map_ref, name, ref, at)
        await update_anchor_map_with_retry(self._store, update)

    async def list_anchors(self, start:str, callback:AnchorCallback) -> None:
        try:
            map_ref = await self._store.anchor_map_ref()
        except NoAnchorMapError:
            return
        # the map is ordered by key hash, so gather the names first
        histories:dict[str, list[TimeRef]] = {}
        async def on_anchor(anchor:Anchor):
            if anchor.name > start:
                histories.setdefault(anchor.name, []).append(TimeRef(anchor.at, anchor.ref))
        await each_anchor_in_map(self._store, map_ref, on_anchor)
        for name in sorted(histories):
            for time_ref in histories[name]:
                await callback(Anchor(name, time_ref.at, time_ref.ref))

    async def list_anchor_history(self, name:str, callback:TimeRefCallback) -> None:
        try:
            map_ref = await self._store.anchor_map_ref()
        except NoAnchorMapError:
            return
        for time_ref in await load_anchor_history(self._store, map_ref, name):
            await callback(time_ref)
