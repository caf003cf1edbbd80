import logging
from datetime import datetime
from cabs.object_model import *
from cabs.refs import get_ref, enforce_ref
from cabs.errors import NotFoundError, FatalError
from cabs.blob_store import AnchorStore
from cabs.listing import each_hex_prefix
from cabs.timestamps import (normalize_time, blob_key, ref_from_blob_key, anchor_prefix, encode_anchor_key,
    decode_anchor_key, BLOB_KEY_PREFIX, ANCHOR_KEY_PREFIX)
from cabs.registry import register, parse_config, StoreConfig
from .object_bucket import ObjectBucket, MemoryBucket

logger = logging.getLogger(__name__)

class BucketBlobStore(AnchorStore):
    """A store on top of an object bucket that can only list keys by prefix.

    Blobs live under b:<hex ref>, anchor entries under a:<hex name>:<inverted time>.
    Ranged ref listing is built from prefix listings, see `hex_prefixes`."""

    def __init__(self, bucket:ObjectBucket):
        super().__init__()
        self.bucket = bucket

    async def get(self, ref:Ref) -> Blob:
        ref = enforce_ref(ref)
        try:
            return await self.bucket.get(blob_key(ref))
        except NotFoundError as e:
            raise NotFoundError(f"blob {ref.hex()} not found") from e

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        blob = bytes(blob)
        ref = get_ref(blob)
        added = await self.bucket.put_if_absent(blob_key(ref), blob)
        return ref, added

    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        async def on_key(key:str):
            await callback(ref_from_blob_key(key))
        async def on_prefix(prefix:str):
            await self.bucket.list_keys(BLOB_KEY_PREFIX + prefix, on_key)
        await each_hex_prefix(enforce_ref(start).hex(), on_prefix)

    async def _anchor_keys_descending(self, name:str) -> list[tuple[datetime, str]]:
        # keys of one name list newest first
        entries = []
        async def on_key(key:str):
            _, at = decode_anchor_key(key)
            entries.append((at, key))
        await self.bucket.list_keys(anchor_prefix(name), on_key)
        return entries

    async def _read_history_descending(self, name:str) -> list[TimeRef]:
        return [TimeRef(at, await self._read_anchor_ref(key)) for at, key in await self._anchor_keys_descending(name)]

    async def _read_anchor_ref(self, key:str) -> Ref:
        data = await self.bucket.get(key)
        try:
            return enforce_ref(data)
        except ValueError as e:
            raise FatalError.wrap(f"object '{key}' does not hold a ref", e) from e

    async def get_anchor(self, name:str, at:datetime) -> Ref:
        at = normalize_time(at)
        # the times are in the keys, only the object of the resolved entry is read
        for entry_at, key in await self._anchor_keys_descending(name):
            if entry_at <= at:
                return await self._read_anchor_ref(key)
        raise NotFoundError(f"anchor '{name}' has no entry at or before {at.isoformat()}")

    async def put_anchor(self, name:str, ref:Ref, at:datetime) -> None:
        # put_if_absent leaves an existing entry at the same instant in place
        await self.bucket.put_if_absent(encode_anchor_key(name, at), enforce_ref(ref))

    async def list_anchors(self, start:str, callback:AnchorCallback) -> None:
        # hex encoded names do not sort like names, because of the ':' separator
        # (compare "a" with "a\x00"), so the entries are collected and sorted first
        entries = []
        async def on_key(key:str):
            try:
                name, at = decode_anchor_key(key)
            except ValueError:
                logger.warning(f"skipping unexpected key '{key}'")
                return
            if name > start:
                entries.append((name, at, key))
        await self.bucket.list_keys(ANCHOR_KEY_PREFIX, on_key)
        entries.sort(key=lambda entry: (entry[0], entry[1]))
        for name, at, key in entries:
            await callback(Anchor(name, at, await self._read_anchor_ref(key)))

    async def list_anchor_history(self, name:str, callback:TimeRefCallback) -> None:
        for time_ref in reversed(await self._read_history_descending(name)):
            await callback(time_ref)

@register("bucket")
async def create_bucket_store(conf:dict) -> BucketBlobStore:
    parse_config(StoreConfig, conf)
    return BucketBlobStore(MemoryBucket())
