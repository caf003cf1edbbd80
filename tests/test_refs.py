import pytest
from cabs import *

def test_get_ref_of_empty_blob():
    assert to_ref_str(get_ref(b"")) == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

def test_ref_str_round_trip():
    ref = get_ref(b"hello")
    ref_str = to_ref_str(ref)
    assert len(ref_str) == 64
    assert ref_str == ref_str.lower()
    assert is_ref_str(ref_str)
    assert to_ref(ref_str) == ref
    assert to_ref(ref_str.upper()) == ref

def test_to_ref_rejects_bad_input():
    with pytest.raises(InvalidRefError):
        to_ref("abc")
    with pytest.raises(InvalidRefError):
        to_ref("g" * 64)
    with pytest.raises(InvalidRefError):
        to_ref("0" * 65)
    # InvalidRefError is a ValueError
    with pytest.raises(ValueError):
        to_ref("")

def test_zero_ref():
    assert len(ZERO_REF) == 32
    assert is_zero_ref(ZERO_REF)
    assert not is_zero_ref(get_ref(b""))
    assert ref_less(ZERO_REF, get_ref(b""))

def test_ref_order_is_hex_order():
    refs = [get_ref(str(i).encode()) for i in range(100)]
    assert sorted(refs) == sorted(refs, key=to_ref_str)

def test_enforce_ref():
    assert enforce_ref(bytearray(32)) == ZERO_REF
    with pytest.raises(InvalidRefError):
        enforce_ref(b"short")
    with pytest.raises(TypeError):
        enforce_ref("0" * 32)
