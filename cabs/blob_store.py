from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime
from cabs.object_model import *
from cabs.errors import NotAnchorStoreError
from cabs.listing import StopListing

class BlobStore(ABC):
    """Interface for storing and loading blobs by their ref (the sha256 of the blob)."""

    @abstractmethod
    async def get(self, ref:Ref) -> Blob:
        """Returns the blob with the given ref or raises NotFoundError."""
        pass

    @abstractmethod
    async def put(self, blob:Blob) -> tuple[Ref, bool]:
        """Stores the blob if it is absent. Returns its ref and whether this call added it."""
        pass

    @abstractmethod
    async def list_refs(self, start:Ref, callback:RefCallback) -> None:
        """Calls the callback for every stored ref strictly greater than 'start', in ref order.
        Pass ZERO_REF to enumerate everything. An exception raised by the callback ends the
        enumeration and propagates unchanged."""
        pass

    def has_anchor_history(self) -> bool:
        return False

    def has_anchor_map(self) -> bool:
        return False

    async def close(self) -> None:
        pass

class AnchorStore(BlobStore, ABC):
    """A blob store that also keeps a timestamped history of refs per anchor name."""

    @abstractmethod
    async def get_anchor(self, name:str, at:datetime) -> Ref:
        """Returns the ref with the greatest timestamp not later than 'at', or raises NotFoundError."""
        pass

    @abstractmethod
    async def put_anchor(self, name:str, ref:Ref, at:datetime) -> None:
        """Records (name, at, ref). A second entry for the same name and instant is silently ignored."""
        pass

    @abstractmethod
    async def list_anchors(self, start:str, callback:AnchorCallback) -> None:
        """Calls the callback for every entry whose name is strictly greater than 'start',
        ordered by name, then by time ascending."""
        pass

    async def list_anchor_history(self, name:str, callback:TimeRefCallback) -> None:
        """Calls the callback for every entry of one name, in ascending time order."""
        # generic fallback, stores with an index per name override this
        async def on_anchor(anchor:Anchor):
            if anchor.name > name:
                raise StopListing()
            if anchor.name == name:
                await callback(TimeRef(anchor.at, anchor.ref))
        try:
            await self.list_anchors(_predecessor(name), on_anchor)
        except StopListing:
            pass

    def has_anchor_history(self) -> bool:
        return True

class AnchorMapStore(BlobStore, ABC):
    """A blob store that keeps all anchors in one persistent map, whose root ref lives in a
    one-slot register that is updated with compare-and-set."""

    @abstractmethod
    async def anchor_map_ref(self) -> Ref:
        """Returns the root ref of the anchor map or raises NoAnchorMapError."""
        pass

    @abstractmethod
    async def update_anchor_map(self, update:UpdateFunc) -> None:
        """Calls 'update' with the current root (the zero ref if there is none) and installs the
        returned root if the register still holds the old one, otherwise raises UpdateConflictError."""
        pass

    def has_anchor_map(self) -> bool:
        return True

def anchor_view(store:BlobStore) -> AnchorStore:
    """Returns a history-per-name view of any store that has an anchor capability."""
    if store.has_anchor_history() and isinstance(store, AnchorStore):
        return store
    if store.has_anchor_map() and isinstance(store, AnchorMapStore):
        from cabs.anchor_map import MapAnchorView
        return MapAnchorView(store)
    raise NotAnchorStoreError(f"{type(store).__name__} does not store anchors")

def has_anchors(store:BlobStore) -> bool:
    return store.has_anchor_history() or store.has_anchor_map()

def _predecessor(name:str) -> str:
    # a start value that sorts before 'name' but after nearly everything else before it
    if name == "":
        return ""
    last = name[-1]
    if ord(last) == 0:
        return name[:-1]
    return name[:-1] + chr(ord(last) - 1) + chr(0x10FFFF)
