# importing the store packages registers their types
from . memory import MemoryBlobStore
from . file import FileBlobStore
from . lmdb import LmdbBlobStore, SharedEnvironment
from . bucket import BucketBlobStore, ObjectBucket, MemoryBucket
from . replica import ReplicaStore
from . lru import LruBlobStore
from . transform import TransformBlobStore, Transformer, FlateTransformer, LzmaTransformer
from . logging import LoggingBlobStore
