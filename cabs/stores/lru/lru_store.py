from collections import OrderedDict
from datetime import datetime
from pydantic import Field
from cabs.object_model import *
from cabs.refs import enforce_ref
from cabs.errors import NotAnchorStoreError
from cabs.blob_store import BlobStore, AnchorStore, AnchorMapStore, anchor_view, has_anchors
from cabs.registry import register, parse_config, from_config, StoreConfig

class LruBlobStore(AnchorStore, AnchorMapStore):
    """Keeps the most recently used blobs of a nested store in memory.

    Anchor operations are passed through to the nested store, in whichever shape it offers them."""
    # no locking needed, the dict operations between awaits are atomic
    _cache:OrderedDict[Ref, Blob]

    def __init__(self, nested:BlobStore, size:int):
        super().__init__()
        if size < 1:
            raise ValueError(f"size must be at least 1, not {size}")
        self.nested = nested
        self.size = size
        self._cache = OrderedDict()

    def _remember(self, ref:Ref, blob:Blob) -> None:
        self._cache[ref] = blob
        self._cache.move_to_end(ref)
        while len(self._cache) > self.size:
            self._cache.popitem(last=False)

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, ref:Ref) -> bool:
        return ref in self._cache

    async def get(self, ref:Ref) -> Blob:
        ref = enforce_ref(ref)
        blob = self._cache.get(ref)
        if blob is not None:
            self._cache.move_to_end(ref)
            return blob
        blob = await self.nested.get(ref)
        self._remember(ref, blob)
        return blob

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        blob = bytes(blob)
        ref, added = await self.nested.put(blob)
        self._remember(ref, blob)
        return ref, added

    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        await self.nested.list_refs(start, callback)

    def has_anchor_history(self) -> bool:
        return has_anchors(self.nested)

    def has_anchor_map(self) -> bool:
        return self.nested.has_anchor_map()

    async def get_anchor(self, name:str, at:datetime) -> Ref:
        return await anchor_view(self.nested).get_anchor(name, at)

    async def put_anchor(self, name:str, ref:Ref, at:datetime) -> None:
        await anchor_view(self.nested).put_anchor(name, ref, at)

    async def list_anchors(self, start:str, callback:AnchorCallback) -> None:
        await anchor_view(self.nested).list_anchors(start, callback)

    async def list_anchor_history(self, name:str, callback:TimeRefCallback) -> None:
        await anchor_view(self.nested).list_anchor_history(name, callback)

    def _map_store(self) -> AnchorMapStore:
        if not (self.nested.has_anchor_map() and isinstance(self.nested, AnchorMapStore)):
            raise NotAnchorStoreError(f"{type(self.nested).__name__} has no anchor map")
        return self.nested

    async def anchor_map_ref(self) -> Ref:
        return await self._map_store().anchor_map_ref()

    async def update_anchor_map(self, update:UpdateFunc) -> None:
        await self._map_store().update_anchor_map(update)

    async def close(self) -> None:
        self._cache.clear()
        await self.nested.close()

class LruStoreConfig(StoreConfig):
    size:int = Field(ge=1)
    nested:dict

@register("lru")
async def create_lru_store(conf:dict) -> LruBlobStore:
    config = parse_config(LruStoreConfig, conf)
    return LruBlobStore(await from_config(config.nested), config.size)
