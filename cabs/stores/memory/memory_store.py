import bisect
from datetime import datetime
from cabs.object_model import *
from cabs.refs import get_ref, enforce_ref
from cabs.errors import NotFoundError
from cabs.blob_store import AnchorStore
from cabs.history import find_anchor, insert_time_ref
from cabs.timestamps import normalize_time
from cabs.registry import register

class MemoryBlobStore(AnchorStore):
    """A range-capable store that keeps everything in memory."""
    # no locking needed here, the dict and list operations used between awaits are atomic
    _blobs:dict[Ref, Blob]
    _sorted_refs:list[Ref]
    _anchors:dict[str, list[TimeRef]]

    def __init__(self):
        super().__init__()
        self._blobs = {}
        self._sorted_refs = []
        self._anchors = {}

    async def get(self, ref:Ref) -> Blob:
        blob = self._blobs.get(bytes(ref))
        if blob is None:
            raise NotFoundError(f"blob {ref.hex()} not found")
        return blob

    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        blob = bytes(blob)
        ref = get_ref(blob)
        if ref in self._blobs:
            return ref, False
        self._blobs[ref] = blob
        bisect.insort(self._sorted_refs, ref)
        return ref, True

    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        start = enforce_ref(start)
        # snapshot, so that puts from inside the callback do not disturb the iteration
        refs = self._sorted_refs[bisect.bisect_right(self._sorted_refs, start):]
        for ref in refs:
            await callback(ref)

    async def get_anchor(self, name:str, at:datetime) -> Ref:
        history = self._anchors.get(name)
        if not history:
            raise NotFoundError(f"anchor '{name}' not found")
        return find_anchor(history, at)

    async def put_anchor(self, name:str, ref:Ref, at:datetime) -> None:
        history = self._anchors.setdefault(name, [])
        insert_time_ref(history, TimeRef(normalize_time(at), enforce_ref(ref)))

    async def list_anchors(self, start:str, callback:AnchorCallback) -> None:
        names = sorted(name for name in self._anchors if name > start)
        for name in names:
            for time_ref in list(self._anchors[name]):
                await callback(Anchor(name, time_ref.at, time_ref.ref))

    async def list_anchor_history(self, name:str, callback:TimeRefCallback) -> None:
        for time_ref in list(self._anchors.get(name, [])):
            await callback(time_ref)

@register("mem")
async def create_memory_store(conf:dict) -> MemoryBlobStore:
    return MemoryBlobStore()
