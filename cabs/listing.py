from __future__ import annotations
import asyncio
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Iterator
from cabs.object_model import *
from cabs.refs import ZERO_REF

if TYPE_CHECKING:
    from cabs.blob_store import AnchorStore, BlobStore

# Helpers for ordered enumeration.
# Stores enumerate with callbacks. The adapters below turn such an enumeration into an
# async iterator, which is what the merge algorithms (replica, sync) consume.

_HEX_DIGITS = "0123456789abcdef"

class StopListing(Exception):
    """Raise from an enumeration callback to end the enumeration early."""
    pass

def hex_prefixes(start:str, inclusive:bool=False) -> Iterator[str]:
    """Yields, in lexical order, the prefixes that together cover every hex string greater than 'start'.

    For 'e67a' that is e67b..e67f, then e68..e6f, then e7..ef, and finally f.
    With inclusive=True the prefixes also cover the strings that start with 'start' itself."""
    prefix = start.lower()
    while len(prefix) > 0:
        first = _HEX_DIGITS.index(prefix[-1])
        # only the deepest level may include the start digit itself
        if not inclusive or len(prefix) < len(start):
            first += 1
        prefix = prefix[:-1]
        for digit in range(first, 16):
            yield prefix + _HEX_DIGITS[digit]

async def each_hex_prefix(start:str, callback:Callable[[str], Awaitable[None]], inclusive:bool=False) -> None:
    for prefix in hex_prefixes(start, inclusive):
        await callback(prefix)

class _Failure:
    def __init__(self, error:BaseException):
        self.error = error

_END = object()

async def iter_listing(listing:Callable[[Callable[[Any], Awaitable[None]]], Awaitable[None]], maxsize:int=1) -> AsyncIterator[Any]:
    """Runs a callback-style enumeration in its own task and yields the items it produces.
    Close the iterator (e.g. with contextlib.aclosing) to stop the enumeration early."""
    queue:asyncio.Queue = asyncio.Queue(maxsize)

    async def produce():
        try:
            await listing(queue.put)
        except Exception as e:
            await queue.put(_Failure(e))
            return
        await queue.put(_END)

    task = asyncio.create_task(produce())
    try:
        while True:
            item = await queue.get()
            if item is _END:
                break
            if isinstance(item, _Failure):
                raise item.error
            yield item
    finally:
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)

def iter_refs(store:BlobStore, start:Ref=ZERO_REF, maxsize:int=1) -> AsyncIterator[Ref]:
    return iter_listing(lambda callback: store.list_refs(start, callback), maxsize)

def iter_anchors(store:AnchorStore, start:str="", maxsize:int=1) -> AsyncIterator[Anchor]:
    return iter_listing(lambda callback: store.list_anchors(start, callback), maxsize)

async def collect_refs(store:BlobStore, start:Ref=ZERO_REF) -> list[Ref]:
    refs = []
    async def on_ref(ref:Ref):
        refs.append(ref)
    await store.list_refs(start, on_ref)
    return refs

async def collect_anchors(store:AnchorStore, start:str="") -> list[Anchor]:
    anchors = []
    async def on_anchor(anchor:Anchor):
        anchors.append(anchor)
    await store.list_anchors(start, on_anchor)
    return anchors
