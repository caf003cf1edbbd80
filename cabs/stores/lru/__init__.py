from . lru_store import LruBlobStore
__all__ = ['LruBlobStore']
