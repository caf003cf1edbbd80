from . file_store import FileBlobStore
__all__ = ['FileBlobStore']
