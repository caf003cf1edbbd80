from . memory_store import MemoryBlobStore
__all__ = ['MemoryBlobStore']
