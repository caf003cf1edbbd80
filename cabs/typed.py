from cabs.object_model import *
from cabs.refs import enforce_ref
from cabs.errors import WrongTypeError
from cabs.blob_store import BlobStore

# A typed blob is a regular blob that starts with the 32 byte ref of its type,
# usually the ref of a blob that describes the type.

_TYPE_REF_LEN = 32

async def put_typed(store:BlobStore, type_ref:Ref, data:bytes) -> tuple[Ref, bool]:
    return await store.put(enforce_ref(type_ref) + bytes(data))

def split_typed(blob:Blob) -> tuple[Ref, bytes]:
    if len(blob) < _TYPE_REF_LEN:
        raise WrongTypeError(f"blob of {len(blob)} bytes is too short to carry a type")
    return bytes(blob[:_TYPE_REF_LEN]), bytes(blob[_TYPE_REF_LEN:])

async def get_typed(store:BlobStore, ref:Ref, expected_type:Ref|None=None) -> tuple[Ref, bytes]:
    """Returns the type ref and the data of a typed blob.
    Raises WrongTypeError if 'expected_type' is given and the blob has another type."""
    type_ref, data = split_typed(await store.get(ref))
    if expected_type is not None and type_ref != enforce_ref(expected_type):
        raise WrongTypeError(f"blob {ref.hex()} has type {type_ref.hex()}, expected {expected_type.hex()}")
    return type_ref, data
