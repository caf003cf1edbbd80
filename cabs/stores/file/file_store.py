import os
import bisect
import logging
import uuid
import zlib
from datetime import datetime
import aiofiles
from async_lru import alru_cache
from cabs.object_model import *
from cabs.refs import get_ref, enforce_ref, is_ref_str, to_ref
from cabs.errors import NotFoundError, FatalError, StoreError
from cabs.blob_store import AnchorStore
from cabs.history import find_anchor_descending
from cabs.timestamps import time_to_inv_str, inv_str_to_time
from cabs.registry import register, parse_config, StoreConfig

logger = logging.getLogger(__name__)

# Layout on disk:
#   <root>/blobs/<h[:2]>/<h[:4]>/<h>                      the blob with hex ref h
#   <root>/anchors/<a[:2]>/<a>/n<hex name>/<inverted time>  a file holding the hex ref
# where a is the adler32 checksum of the anchor name. The inverted time makes the
# lexical order of an anchor directory the descending time order.

_HEX_CHARS = frozenset("0123456789abcdef")

def _is_hex(name:str, length:int) -> bool:
    return len(name) == length and all(c in _HEX_CHARS for c in name)

class FileBlobStore(AnchorStore):

    def __init__(self, root:str):
        super().__init__()
        self.root = root
        self.blobs_path = os.path.join(root, 'blobs')
        self.anchors_path = os.path.join(root, 'anchors')
        #ensure that the paths exists
        os.makedirs(self.blobs_path, exist_ok=True)
        os.makedirs(self.anchors_path, exist_ok=True)
        # a cache per store, so that it stays with the event loop of the store
        self._cached_read = alru_cache(maxsize=1024)(self._read_blob)

    def _blob_path(self, ref:Ref) -> str:
        ref_str = ref.hex()
        return os.path.join(self.blobs_path, ref_str[:2], ref_str[:4], ref_str)

    def _anchor_dir(self, name:str) -> str:
        checksum = f"{zlib.adler32(name.encode('utf-8')):08x}"
        return os.path.join(self.anchors_path, checksum[:2], checksum, "n" + name.encode('utf-8').hex())

    async def get(self, ref:Ref) -> Blob:
        return await self._cached_read(enforce_ref(ref))

    async def _read_blob(self, ref:Ref) -> Blob:
        path = self._blob_path(ref)
        try:
            async with aiofiles.open(path, 'rb') as f:
                return await f.read()
        except FileNotFoundError as e:
            raise NotFoundError(f"blob {ref.hex()} not found") from e
        except OSError as e:
            raise FatalError.wrap(f"reading blob {ref.hex()}", e) from e

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        blob = bytes(blob)
        ref = get_ref(blob)
        path = self._blob_path(ref)
        # checking outside of any lock is fine, the final link is what decides who added the blob
        if os.path.exists(path):
            return ref, False
        try:
            added = await self._create_exclusive(path, blob)
        except OSError as e:
            raise FatalError.wrap(f"writing blob {ref.hex()}", e) from e
        if added:
            logger.debug(f"stored blob {ref.hex()} ({len(blob)} bytes)")
        return ref, added

    async def _create_exclusive(self, path:str, data:bytes) -> bool:
        """Writes 'data' to a temp file next to 'path' and then links it into place, so readers
        never see a partial file. Returns False if 'path' already existed."""
        dir_path = os.path.dirname(path)
        os.makedirs(dir_path, exist_ok=True)
        temp_path = os.path.join(dir_path, f".tmp-{uuid.uuid4().hex}")
        async with aiofiles.open(temp_path, 'wb') as f:
            await f.write(data)
        try:
            os.link(temp_path, path)
            return True
        except FileExistsError:
            return False
        finally:
            os.remove(temp_path)

    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        start_str = enforce_ref(start).hex()
        try:
            top_names = self._sorted_hex_names(self.blobs_path, 2)
        except FileNotFoundError:
            return
        for top in top_names[bisect.bisect_left(top_names, start_str[:2]):]:
            top_path = os.path.join(self.blobs_path, top)
            mid_names = self._sorted_hex_names(top_path, 4)
            for mid in mid_names[bisect.bisect_left(mid_names, start_str[:4]):]:
                mid_path = os.path.join(top_path, mid)
                ref_names = self._sorted_hex_names(mid_path, 64)
                for ref_str in ref_names[bisect.bisect_right(ref_names, start_str):]:
                    await callback(to_ref(ref_str))

    def _sorted_hex_names(self, dir_path:str, length:int) -> list[str]:
        names = []
        for name in os.listdir(dir_path):
            if name.startswith(".tmp-"):
                continue
            if not _is_hex(name, length):
                logger.warning(f"skipping unexpected entry '{name}' in {dir_path}")
                continue
            names.append(name)
        names.sort()
        return names

    async def get_anchor(self, name:str, at:datetime) -> Ref:
        # directory order is descending time order
        return find_anchor_descending(self._read_history_descending(name), at)

    def _read_history_descending(self, name:str):
        anchor_dir = self._anchor_dir(name)
        try:
            entries = sorted(os.listdir(anchor_dir))
        except FileNotFoundError as e:
            raise NotFoundError(f"anchor '{name}' not found") from e
        for entry in entries:
            if entry.startswith(".tmp-"):
                continue
            try:
                at = inv_str_to_time(entry)
            except ValueError:
                logger.warning(f"skipping unexpected entry '{entry}' in {anchor_dir}")
                continue
            yield TimeRef(at, self._read_anchor_file(os.path.join(anchor_dir, entry)))

    def _read_anchor_file(self, path:str) -> Ref:
        with open(path, 'r') as f:
            ref_str = f.read().strip()
        if not is_ref_str(ref_str.lower()):
            raise FatalError(f"anchor file {path} does not hold a ref")
        return to_ref(ref_str)

    async def put_anchor(self, name:str, ref:Ref, at:datetime) -> None:
        path = os.path.join(self._anchor_dir(name), time_to_inv_str(at))
        try:
            # an existing file means the instant is taken, which is silently ignored
            await self._create_exclusive(path, enforce_ref(ref).hex().encode('ascii'))
        except OSError as e:
            raise FatalError.wrap(f"writing anchor '{name}'", e) from e

    def _anchor_names(self) -> list[str]:
        names = []
        for top in os.listdir(self.anchors_path):
            top_path = os.path.join(self.anchors_path, top)
            for checksum in os.listdir(top_path):
                for entry in os.listdir(os.path.join(top_path, checksum)):
                    if not entry.startswith("n"):
                        continue
                    try:
                        names.append(bytes.fromhex(entry[1:]).decode('utf-8'))
                    except ValueError:
                        logger.warning(f"skipping unexpected anchor directory '{entry}'")
        names.sort()
        return names

    async def list_anchors(self, start:str, callback:AnchorCallback) -> None:
        for name in self._anchor_names():
            if name <= start:
                continue
            try:
                history = list(self._read_history_descending(name))
            except NotFoundError:
                continue
            for time_ref in reversed(history):
                await callback(Anchor(name, time_ref.at, time_ref.ref))

    async def list_anchor_history(self, name:str, callback:TimeRefCallback) -> None:
        try:
            history = list(self._read_history_descending(name))
        except NotFoundError:
            return
        for time_ref in reversed(history):
            await callback(time_ref)

class FileStoreConfig(StoreConfig):
    root:str

@register("file")
async def create_file_store(conf:dict) -> FileBlobStore:
    config = parse_config(FileStoreConfig, conf)
    try:
        return FileBlobStore(config.root)
    except OSError as e:
        raise StoreError.wrap(f"cannot create file store at '{config.root}'", e) from e
