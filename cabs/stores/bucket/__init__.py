from . object_bucket import ObjectBucket, MemoryBucket
from . bucket_store import BucketBlobStore
__all__ = ['ObjectBucket', 'MemoryBucket', 'BucketBlobStore']
