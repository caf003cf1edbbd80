import hashlib
import string
from cabs.object_model import *

_REF_LEN = 32
_REF_STR_LEN = 64

ZERO_REF:Ref = bytes(_REF_LEN)

class InvalidRefError(ValueError):
    pass

def get_ref(data:bytes | bytearray) -> Ref:
    return hashlib.sha256(data).digest()

def is_ref(ref:Ref) -> bool:
    return (isinstance(ref, bytes) or isinstance(ref, bytearray)) and len(ref) == _REF_LEN

def is_ref_str(ref_str:str) -> bool:
    return isinstance(ref_str, str) and len(ref_str) == _REF_STR_LEN and all(c in string.hexdigits for c in ref_str)

def is_zero_ref(ref:Ref) -> bool:
    return ref == ZERO_REF

def to_ref_str(ref:Ref) -> str:
    #bytes.hex() is always lowercase, which keeps hex order equal to byte order
    return ref.hex()

def to_ref(ref_str:str) -> Ref:
    if not isinstance(ref_str, str):
        raise InvalidRefError(f"Expected a hex string but got {type(ref_str)}")
    if len(ref_str) != _REF_STR_LEN:
        raise InvalidRefError(f"Expected {_REF_STR_LEN} hex characters but got {len(ref_str)}")
    if not all(c in string.hexdigits for c in ref_str):
        raise InvalidRefError(f"'{ref_str}' is not a hex string")
    return bytes.fromhex(ref_str)

def ref_less(ref:Ref, other:Ref) -> bool:
    return bytes(ref) < bytes(other)

def enforce_ref(ref:Ref) -> Ref:
    if not (isinstance(ref, bytes) or isinstance(ref, bytearray)):
        raise TypeError(f"Expected ref of type bytes but got {type(ref)}")
    if len(ref) != _REF_LEN:
        raise InvalidRefError(f"Expected ref of {_REF_LEN} bytes but got {len(ref)}")
    return bytes(ref)
