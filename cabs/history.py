import bisect
from datetime import datetime
from typing import AsyncIterable, Iterable, Sequence
from cabs.object_model import *
from cabs.errors import NotFoundError
from cabs.timestamps import normalize_time

# The history resolution algorithm: given the history of one anchor name,
# find the ref with the greatest timestamp that is not later than the requested instant.
# An entry at exactly the requested instant wins over the ones before it.

def find_anchor(history:Sequence[TimeRef], at:datetime) -> Ref:
    """Resolves 'at' against a history sorted in ascending time order."""
    at = normalize_time(at)
    # index of the first entry strictly later than 'at'
    index = bisect.bisect_right(history, at, key=lambda time_ref: time_ref.at)
    if index == 0:
        raise NotFoundError(f"no anchor entry at or before {at.isoformat()}")
    return history[index-1].ref

def find_anchor_descending(history:Iterable[TimeRef], at:datetime) -> Ref:
    """Resolves 'at' against a history in descending time order, taking the first entry not later than 'at'."""
    at = normalize_time(at)
    for time_ref in history:
        if time_ref.at <= at:
            return time_ref.ref
    raise NotFoundError(f"no anchor entry at or before {at.isoformat()}")

async def find_anchor_scanning(history:AsyncIterable[TimeRef], at:datetime) -> Ref:
    """Resolves 'at' against an ascending scan, stopping at the first entry later than 'at'."""
    at = normalize_time(at)
    best = None
    async for time_ref in history:
        if time_ref.at > at:
            break
        best = time_ref.ref
    if best is None:
        raise NotFoundError(f"no anchor entry at or before {at.isoformat()}")
    return best

def insert_time_ref(history:list[TimeRef], time_ref:TimeRef) -> bool:
    """Inserts into an ascending history. Returns False, and leaves the history alone, if the instant is already taken."""
    at = normalize_time(time_ref.at)
    index = bisect.bisect_left(history, at, key=lambda tr: tr.at)
    if index < len(history) and history[index].at == at:
        return False
    history.insert(index, TimeRef(at, time_ref.ref))
    return True
