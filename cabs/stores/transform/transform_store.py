import asyncio
import logging
from datetime import datetime, timedelta
from typing import Literal
from cabs.object_model import *
from cabs.refs import get_ref, enforce_ref, is_ref
from cabs.errors import NotFoundError, FatalError, ConfigError
from cabs.blob_store import BlobStore, AnchorStore, anchor_view
from cabs.anchor_map import PersistentMap
from cabs.timestamps import utc_now
from cabs.registry import register, parse_config, from_config, StoreConfig
from .transformers import Transformer, create_transformer

logger = logging.getLogger(__name__)

class TransformBlobStore(BlobStore):
    """Stores transformed (usually compressed) blobs in a nested anchor store.

    Callers see the refs of the original blobs. A persistent map in the nested store tracks
    which stored blob belongs to which original ref, and the root of that map is anchored
    under 'anchor_name' after every change. When a transformed blob would be larger than
    the original, the original is stored as is and both refs are the same.
    """
    # guards the map, held across the nested store calls that read or update it
    _lock:asyncio.Lock
    _refs_map:PersistentMap|None
    # time of the newest anchor entry of the map, new entries must be later
    _last_anchored:datetime|None

    def __init__(self, nested:BlobStore, transformer:Transformer, anchor_name:str):
        super().__init__()
        self.nested = nested
        # raises NotAnchorStoreError if the nested store cannot anchor the map
        self._anchors:AnchorStore = anchor_view(nested)
        self.transformer = transformer
        self.anchor_name = anchor_name
        self._lock = asyncio.Lock()
        self._refs_map = None
        self._last_anchored = None

    async def _load_refs_map(self) -> PersistentMap:
        # must be called with the lock held
        if self._refs_map is None:
            # the newest entry, not the one at the current time, the clock may have gone back
            latest:TimeRef|None = None
            async def on_entry(time_ref:TimeRef):
                nonlocal latest
                latest = time_ref
            await self._anchors.list_anchor_history(self.anchor_name, on_entry)
            if latest is None:
                self._refs_map = PersistentMap(self.nested)
            else:
                self._refs_map = await PersistentMap.load(self.nested, latest.ref)
                self._last_anchored = latest.at
        return self._refs_map

    def _next_anchor_time(self) -> datetime:
        # an entry at the same instant as an earlier one would be ignored
        at = utc_now()
        if self._last_anchored is not None and at <= self._last_anchored:
            at = self._last_anchored + timedelta(microseconds=1)
        self._last_anchored = at
        return at

    async def _storage_ref(self, ref:Ref) -> Ref|None:
        async with self._lock:
            refs_map = await self._load_refs_map()
            storage_ref = await refs_map.lookup(ref)
        if storage_ref is not None and not is_ref(storage_ref):
            raise FatalError(f"ref map entry of {ref.hex()} is not a ref")
        return storage_ref

    async def get(self, ref:Ref) -> Blob:
        ref = enforce_ref(ref)
        storage_ref = await self._storage_ref(ref)
        if storage_ref is None:
            raise NotFoundError(f"blob {ref.hex()} not found")
        blob = await self.nested.get(storage_ref)
        if storage_ref == ref:
            return blob
        try:
            return self.transformer.decode(blob)
        except Exception as e:
            raise FatalError.wrap(f"cannot {self.transformer.name}-decode blob {ref.hex()}", e) from e

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        blob = bytes(blob)
        ref = get_ref(blob)
        encoded = self.transformer.encode(blob)
        if len(encoded) > len(blob):
            encoded = blob
        storage_ref, _ = await self.nested.put(encoded)
        async with self._lock:
            refs_map = await self._load_refs_map()
            if await refs_map.lookup(ref) is not None:
                return ref, False
            map_ref, _ = await refs_map.set(ref, storage_ref)
            await self._anchors.put_anchor(self.anchor_name, map_ref, self._next_anchor_time())
        logger.debug(f"stored blob {ref.hex()} as {storage_ref.hex()} ({len(blob)} -> {len(encoded)} bytes)")
        return ref, True

    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        start = enforce_ref(start)
        refs = []
        async def on_pair(key:bytes, _payload:bytes):
            if key > start:
                refs.append(key)
        async with self._lock:
            refs_map = await self._load_refs_map()
            await refs_map.each(on_pair)
        # the map is ordered by key hash
        refs.sort()
        for ref in refs:
            await callback(ref)

    async def close(self) -> None:
        await self.nested.close()

class TransformStoreConfig(StoreConfig):
    nested:dict
    anchor:str
    transformer:Literal["flate", "lzma"]
    level:int = -1

@register("transform")
async def create_transform_store(conf:dict) -> TransformBlobStore:
    config = parse_config(TransformStoreConfig, conf)
    nested = await from_config(config.nested)
    try:
        return TransformBlobStore(nested, create_transformer(config.transformer, config.level), config.anchor)
    except Exception as e:
        await nested.close()
        raise ConfigError(f"cannot create transform store: {e}") from e
