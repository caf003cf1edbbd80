import logging
import lmdb
from cabs.object_model import *
from cabs.refs import get_ref, enforce_ref, is_ref, ZERO_REF
from cabs.errors import NotFoundError, NoAnchorMapError, UpdateConflictError, FatalError
from cabs.blob_store import AnchorMapStore
from cabs.registry import register, parse_config, StoreConfig
from .shared_env import SharedEnvironment, DEFAULT_MAP_SIZE

logger = logging.getLogger(__name__)

_ANCHOR_MAP_KEY = b'anchor_map_ref'
# refs read per read transaction while listing, the callbacks run outside of any transaction
_LIST_BATCH_SIZE = 256

class LmdbBlobStore(AnchorMapStore):
    """Keeps blobs in an LMDB database and the anchors in a persistent map whose root ref
    is stored in a single compare-and-set slot."""

    def __init__(self, shared_env:SharedEnvironment):
        super().__init__()
        if(not isinstance(shared_env, SharedEnvironment)):
            raise TypeError(f"shared_env must be of type SharedEnvironment, not '{type(shared_env)}'.")
        self._shared_env = shared_env

    async def get(self, ref:Ref) -> Blob:
        ref = enforce_ref(ref)
        try:
            with self._shared_env.begin_blobs_txn(write=False) as txn:
                blob = txn.get(ref, default=None)
        except lmdb.Error as e:
            raise FatalError.wrap(f"reading blob {ref.hex()}", e) from e
        if blob is None:
            raise NotFoundError(f"blob {ref.hex()} not found")
        return blob

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        blob = bytes(blob)
        ref = get_ref(blob)
        def write() -> bool:
            with self._shared_env.begin_blobs_txn() as txn:
                return txn.put(ref, blob, overwrite=False)
        try:
            added = self._shared_env.write_with_resize(write)
        except lmdb.Error as e:
            raise FatalError.wrap(f"writing blob {ref.hex()}", e) from e
        if added:
            logger.debug(f"stored blob {ref.hex()} ({len(blob)} bytes)")
        return ref, added

    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        position = enforce_ref(start)
        while True:
            batch = self._read_batch(position)
            for ref in batch:
                await callback(ref)
            if len(batch) < _LIST_BATCH_SIZE:
                return
            position = batch[-1]

    def _read_batch(self, after:Ref) -> list[Ref]:
        batch = []
        with self._shared_env.begin_blobs_txn(write=False) as txn:
            cursor = txn.cursor()
            if not cursor.set_range(after):
                return batch
            for key in cursor.iternext(keys=True, values=False):
                if key == after:
                    continue
                batch.append(bytes(key))
                if len(batch) >= _LIST_BATCH_SIZE:
                    break
        return batch

    def _read_anchor_map_ref(self) -> Ref|None:
        with self._shared_env.begin_meta_txn(write=False) as txn:
            value = txn.get(_ANCHOR_MAP_KEY, default=None)
        return bytes(value) if value is not None else None

    async def anchor_map_ref(self) -> Ref:
        ref = self._read_anchor_map_ref()
        if ref is None:
            raise NoAnchorMapError()
        return ref

    async def update_anchor_map(self, update:UpdateFunc) -> None:
        old_ref = self._read_anchor_map_ref()
        # the update function stores blobs, so no write transaction can be open while it runs
        new_ref = await update(old_ref if old_ref is not None else ZERO_REF)
        if not is_ref(new_ref):
            raise TypeError(f"update must return a ref, not '{type(new_ref)}'")
        def write():
            with self._shared_env.begin_meta_txn() as txn:
                current = txn.get(_ANCHOR_MAP_KEY, default=None)
                current = bytes(current) if current is not None else None
                if current != old_ref:
                    raise UpdateConflictError("anchor map was changed by someone else")
                txn.put(_ANCHOR_MAP_KEY, bytes(new_ref), overwrite=True)
        try:
            self._shared_env.write_with_resize(write)
        except lmdb.Error as e:
            raise FatalError.wrap("updating anchor map ref", e) from e

    async def close(self) -> None:
        self._shared_env.close()

class LmdbStoreConfig(StoreConfig):
    path:str
    writemap:bool = False
    map_size:int = DEFAULT_MAP_SIZE

@register("lmdb")
async def create_lmdb_store(conf:dict) -> LmdbBlobStore:
    config = parse_config(LmdbStoreConfig, conf)
    try:
        shared_env = SharedEnvironment(config.path, writemap=config.writemap, map_size=config.map_size)
    except lmdb.Error as e:
        raise FatalError.wrap(f"cannot open lmdb store at '{config.path}'", e) from e
    return LmdbBlobStore(shared_env)
