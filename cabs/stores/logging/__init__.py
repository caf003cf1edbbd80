from . logging_store import LoggingBlobStore
__all__ = ['LoggingBlobStore']
