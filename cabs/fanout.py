import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Coroutine, Sequence, TypeVar
from cabs.errors import NotFoundError, error_is, ErrorKind

# Helpers to run one operation against several stores at once.

T = TypeVar("T")

async def _cancel_all(tasks:Sequence[asyncio.Task]) -> None:
    for task in tasks:
        if not task.done():
            task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

async def gather_fail_fast(coros:Sequence[Coroutine[Any, Any, T]]) -> list[T]:
    """Runs all coroutines in parallel and returns their results in order.
    The first error cancels the remaining coroutines and is raised unchanged."""
    tasks = [asyncio.create_task(coro) for coro in coros]
    try:
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
            for task in tasks:
                if task in done and not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        return [task.result() for task in tasks]
    finally:
        await _cancel_all(tasks)

async def first_success(coros:Sequence[Coroutine[Any, Any, T]]) -> T:
    """Runs all coroutines in parallel and returns the first result, cancelling the rest.
    If all of them fail, raises NotFoundError when every failure was a not-found,
    otherwise the first other error (in coroutine order)."""
    tasks = [asyncio.create_task(coro) for coro in coros]
    try:
        pending = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in tasks:
                if task in done and not task.cancelled() and task.exception() is None:
                    return task.result()
    finally:
        await _cancel_all(tasks)
    errors = [task.exception() for task in tasks if not task.cancelled()]
    for error in errors:
        if not error_is(error, ErrorKind.NOT_FOUND):
            raise error
    if errors:
        raise errors[0]
    raise NotFoundError("no store to ask")

_EXHAUSTED = object()

async def merge_sorted(iterators:Sequence[AsyncIterator[T]], key:Callable[[T], Any]=lambda item: item) -> AsyncIterator[tuple[T, list[int]]]:
    """K-way merge of ascending streams.

    Yields every distinct key once, in ascending order, together with the indices of the
    streams whose current head has that key. Those streams are advanced before the next round."""
    heads = [await anext(iterator, _EXHAUSTED) for iterator in iterators]
    while True:
        live = [index for index, head in enumerate(heads) if head is not _EXHAUSTED]
        if not live:
            return
        least = min(key(heads[index]) for index in live)
        holders = [index for index in live if key(heads[index]) == least]
        yield heads[holders[0]], holders
        for index in holders:
            heads[index] = await anext(iterators[index], _EXHAUSTED)

async def wait_or_event(awaitable:Awaitable[T], event:asyncio.Event) -> tuple[bool, T|None]:
    """Awaits 'awaitable' unless 'event' is set first. Returns (completed, result)."""
    task = asyncio.ensure_future(awaitable)
    event_task = asyncio.create_task(event.wait())
    try:
        await asyncio.wait([task, event_task], return_when=asyncio.FIRST_COMPLETED)
        if task.done():
            return True, task.result()
        return False, None
    finally:
        await _cancel_all([task, event_task])
