import bisect
from abc import ABC, abstractmethod
from typing import Awaitable, Callable
from cabs.errors import NotFoundError

KeyCallback = Callable[[str], Awaitable[None]]

class ObjectBucket(ABC):
    """A flat key/value object service that can list keys by prefix in lexical order.

    Cloud buckets plug into the bucket store by implementing this interface."""

    @abstractmethod
    async def get(self, key:str) -> bytes:
        """Returns the object or raises NotFoundError."""
        pass

    @abstractmethod
    async def put_if_absent(self, key:str, data:bytes) -> bool:
        """Creates the object unless it exists. Returns whether it was created."""
        pass

    @abstractmethod
    async def list_keys(self, prefix:str, callback:KeyCallback) -> None:
        """Calls the callback for every key that starts with 'prefix', in lexical order."""
        pass

class MemoryBucket(ObjectBucket):
    _objects:dict[str, bytes]
    _keys:list[str]

    def __init__(self):
        self._objects = {}
        self._keys = []

    async def get(self, key:str) -> bytes:
        data = self._objects.get(key)
        if data is None:
            raise NotFoundError(f"object '{key}' not found")
        return data

    async def put_if_absent(self, key:str, data:bytes) -> bool:
        if key in self._objects:
            return False
        self._objects[key] = bytes(data)
        bisect.insort(self._keys, key)
        return True

    async def list_keys(self, prefix:str, callback:KeyCallback) -> None:
        index = bisect.bisect_left(self._keys, prefix)
        keys = []
        while index < len(self._keys) and self._keys[index].startswith(prefix):
            keys.append(self._keys[index])
            index += 1
        for key in keys:
            await callback(key)
