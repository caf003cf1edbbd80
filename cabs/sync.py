import logging
from contextlib import AsyncExitStack, aclosing
from typing import Sequence
from cabs.object_model import *
from cabs.errors import StoreError
from cabs.blob_store import BlobStore, anchor_view, has_anchors
from cabs.listing import iter_refs, iter_anchors
from cabs.fanout import merge_sorted

logger = logging.getLogger(__name__)

async def sync_stores(stores:Sequence[BlobStore]) -> None:
    """Brings the stores to the same set of refs, and then the anchor-capable ones among them
    to the same anchor entries.

    All stores are enumerated in parallel. Each round looks at the least ref that any store has
    not moved past: the stores whose current ref it is are the havers, the others the needers.
    The blob is read from the first haver and put into every needer. An error aborts the whole
    synchronization, what was copied until then stays copied."""
    if len(stores) < 2:
        return
    copied = 0
    async with AsyncExitStack() as stack:
        iterators = [await stack.enter_async_context(aclosing(iter_refs(store))) for store in stores]
        async for ref, havers in merge_sorted(iterators):
            if len(havers) == len(stores):
                continue
            try:
                blob = await stores[havers[0]].get(ref)
            except Exception as e:
                raise StoreError.wrap(f"getting blob for {ref.hex()}", e) from e
            for index in range(len(stores)):
                if index in havers:
                    continue
                try:
                    await stores[index].put(blob)
                except Exception as e:
                    raise StoreError.wrap(f"storing blob for {ref.hex()}", e) from e
                copied += 1
            logger.debug(f"synced blob {ref.hex()} to {len(stores) - len(havers)} store(s)")
    logger.info(f"synced {len(stores)} stores, copied {copied} blob(s)")
    await sync_anchors([store for store in stores if has_anchors(store)])

async def sync_anchors(stores:Sequence[BlobStore]) -> None:
    """Copies every anchor entry of every store into the stores that lack an entry for that
    name and instant. Entries that differ only in their ref are left as they are."""
    if len(stores) < 2:
        return
    views = [anchor_view(store) for store in stores]
    copied = 0
    async with AsyncExitStack() as stack:
        iterators = [await stack.enter_async_context(aclosing(iter_anchors(view))) for view in views]
        async for anchor, havers in merge_sorted(iterators, key=lambda anchor: (anchor.name, anchor.at)):
            for index, view in enumerate(views):
                if index in havers:
                    continue
                try:
                    await view.put_anchor(anchor.name, anchor.ref, anchor.at)
                except Exception as e:
                    raise StoreError.wrap(f"storing anchor '{anchor.name}' at {anchor.at.isoformat()}", e) from e
                copied += 1
    logger.info(f"synced anchors of {len(stores)} stores, copied {copied} entries")
