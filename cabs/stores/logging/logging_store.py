import logging
from datetime import datetime
from cabs.object_model import *
from cabs.errors import NotAnchorStoreError
from cabs.blob_store import BlobStore, AnchorStore, AnchorMapStore, anchor_view, has_anchors
from cabs.registry import register, parse_config, from_config, StoreConfig

logger = logging.getLogger(__name__)

class LoggingBlobStore(AnchorStore, AnchorMapStore):
    """Passes every operation to a nested store and logs it together with its outcome."""

    def __init__(self, nested:BlobStore):
        super().__init__()
        self.nested = nested

    async def get(self, ref:Ref) -> Blob:
        try:
            blob = await self.nested.get(ref)
        except Exception as e:
            logger.info(f"ERROR in get {ref.hex()}: {e}")
            raise
        logger.info(f"get {ref.hex()} ({len(blob)} bytes)")
        return blob

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        try:
            ref, added = await self.nested.put(blob)
        except Exception as e:
            logger.info(f"ERROR in put: {e}")
            raise
        logger.info(f"put {ref.hex()}, added={added}")
        return ref, added

    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        logger.info(f"list_refs, start={start.hex()}")
        async def on_ref(ref:Ref):
            try:
                await callback(ref)
            except Exception as e:
                logger.info(f"  ERROR in list_refs at {ref.hex()}: {e!r}")
                raise
            logger.info(f"  list_refs: {ref.hex()}")
        await self.nested.list_refs(start, on_ref)

    def has_anchor_history(self) -> bool:
        return has_anchors(self.nested)

    def has_anchor_map(self) -> bool:
        return self.nested.has_anchor_map()

    async def get_anchor(self, name:str, at:datetime) -> Ref:
        try:
            ref = await anchor_view(self.nested).get_anchor(name, at)
        except Exception as e:
            logger.info(f"ERROR in get_anchor({name}, {at.isoformat()}): {e}")
            raise
        logger.info(f"get_anchor({name}, {at.isoformat()}): {ref.hex()}")
        return ref

    async def put_anchor(self, name:str, ref:Ref, at:datetime) -> None:
        try:
            await anchor_view(self.nested).put_anchor(name, ref, at)
        except Exception as e:
            logger.info(f"ERROR in put_anchor({name}, {ref.hex()}, {at.isoformat()}): {e}")
            raise
        logger.info(f"put_anchor({name}, {ref.hex()}, {at.isoformat()})")

    async def list_anchors(self, start:str, callback:AnchorCallback) -> None:
        logger.info(f"list_anchors, start={start!r}")
        async def on_anchor(anchor:Anchor):
            try:
                await callback(anchor)
            except Exception as e:
                logger.info(f"  ERROR in list_anchors at ({anchor.name}, {anchor.at.isoformat()}, {anchor.ref.hex()}): {e!r}")
                raise
            logger.info(f"  list_anchors: ({anchor.name}, {anchor.at.isoformat()}, {anchor.ref.hex()})")
        await anchor_view(self.nested).list_anchors(start, on_anchor)

    async def list_anchor_history(self, name:str, callback:TimeRefCallback) -> None:
        logger.info(f"list_anchor_history({name})")
        await anchor_view(self.nested).list_anchor_history(name, callback)

    def _map_store(self) -> AnchorMapStore:
        if not (self.nested.has_anchor_map() and isinstance(self.nested, AnchorMapStore)):
            raise NotAnchorStoreError(f"{type(self.nested).__name__} has no anchor map")
        return self.nested

    async def anchor_map_ref(self) -> Ref:
        try:
            ref = await self._map_store().anchor_map_ref()
        except Exception as e:
            logger.info(f"ERROR in anchor_map_ref: {e}")
            raise
        logger.info(f"anchor_map_ref: {ref.hex()}")
        return ref

    async def update_anchor_map(self, update:UpdateFunc) -> None:
        try:
            await self._map_store().update_anchor_map(update)
        except Exception as e:
            logger.info(f"ERROR in update_anchor_map: {e}")
            raise
        logger.info("update_anchor_map")

    async def close(self) -> None:
        logger.info("close")
        await self.nested.close()

class LoggingStoreConfig(StoreConfig):
    nested:dict

@register("logging")
async def create_logging_store(conf:dict) -> LoggingBlobStore:
    config = parse_config(LoggingStoreConfig, conf)
    return LoggingBlobStore(await from_config(config.nested))
