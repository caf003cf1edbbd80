from . shared_env import SharedEnvironment
from . lmdb_store import LmdbBlobStore
__all__ = ['SharedEnvironment', 'LmdbBlobStore']
