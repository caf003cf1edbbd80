import re
from datetime import datetime, timedelta, timezone
from cabs.object_model import *
from cabs.refs import to_ref, to_ref_str

# Instants, their nanosecond encoding, and the key scheme used by object-store backends.
#
# Instants are timezone-aware datetimes. Naive datetimes are treated as UTC.
# The key of an anchor entry in an object store is:
#   a:<hex of utf-8 name>:<MAX_TIME_NANOS - nanos(at), zero padded to INV_TIME_DIGITS digits>
# so a lexical listing of one anchor's keys returns the newest entry first.
# The key of a blob is:
#   b:<hex of ref>

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
NANOS_PER_SECOND = 1_000_000_000

# 219250468-12-31T23:59:59.999999999Z in nanoseconds since the unix epoch.
# It is the largest instant of the 64 bit time representation used by existing data,
# so every implementation must use this exact value to keep keys portable.
# It lies beyond datetime.max, which is why it is kept as an int.
_MAX_TIME_UNIX_SECONDS = (1 << 63) - 1 - (1969*365 + 1969//4 - 1969//100 + 1969//400) * 24*60*60
MAX_TIME_NANOS = _MAX_TIME_UNIX_SECONDS * NANOS_PER_SECOND + 999_999_999

BLOB_KEY_PREFIX = "b:"
ANCHOR_KEY_PREFIX = "a:"

# MAX_TIME_NANOS has 28 digits, and so has MAX_TIME_NANOS - nanos(at) for every instant a datetime
# can hold. Keys written with a narrower padding (such as %020d) of smaller numbers are still
# decoded, but they do not sort against these keys.
INV_TIME_DIGITS = 28

_ANCHOR_KEY_RE = re.compile(r'^a:([0-9a-f]*):(\d{20,})$')

def normalize_time(at:datetime) -> datetime:
    if not isinstance(at, datetime):
        raise TypeError(f"Expected a datetime but got {type(at)}")
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    return at

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def time_to_nanos(at:datetime) -> int:
    delta = normalize_time(at) - EPOCH
    return (delta.days * 86400 + delta.seconds) * NANOS_PER_SECOND + delta.microseconds * 1000

def nanos_to_time(nanos:int) -> datetime:
    # datetime resolves microseconds, anything below is dropped
    return EPOCH + timedelta(microseconds=nanos // 1000)

def time_to_inv_nanos(at:datetime) -> int:
    return MAX_TIME_NANOS - time_to_nanos(at)

def inv_nanos_to_time(inv_nanos:int) -> datetime:
    return nanos_to_time(MAX_TIME_NANOS - inv_nanos)

def inv_nanos_to_str(inv_nanos:int) -> str:
    return f"{inv_nanos:0{INV_TIME_DIGITS}d}"

def time_to_inv_str(at:datetime) -> str:
    return inv_nanos_to_str(time_to_inv_nanos(at))

def inv_str_to_time(inv_str:str) -> datetime:
    if not inv_str.isdigit():
        raise ValueError(f"'{inv_str}' is not an inverted timestamp")
    return inv_nanos_to_time(int(inv_str))

def blob_key(ref:Ref) -> str:
    return BLOB_KEY_PREFIX + to_ref_str(ref)

def ref_from_blob_key(key:str) -> Ref:
    if not key.startswith(BLOB_KEY_PREFIX):
        raise ValueError(f"'{key}' is not a blob key")
    return to_ref(key[len(BLOB_KEY_PREFIX):])

def anchor_prefix(name:str) -> str:
    return f"{ANCHOR_KEY_PREFIX}{name.encode('utf-8').hex()}:"

def encode_anchor_key(name:str, at:datetime) -> str:
    return anchor_prefix(name) + time_to_inv_str(at)

def decode_anchor_key(key:str) -> tuple[str, datetime]:
    """Returns the name and time of an anchor key.

    Keys written by other implementations can carry nanoseconds below a microsecond. Those are
    dropped, so encoding the result again gives a different key for such entries. Anchor sync
    between such a store and another one can therefore hold the same entry under two keys."""
    match = _ANCHOR_KEY_RE.match(key)
    if match is None:
        raise ValueError(f"'{key}' is not an anchor key")
    name = bytes.fromhex(match.group(1)).decode('utf-8')
    return name, inv_nanos_to_time(int(match.group(2)))

#=========================================================
# Parsing of user supplied times (used by the CLI)
#=========================================================
_FRACTION_RE = re.compile(r'(\.\d{6})\d+')

_LAYOUTS = [
    "%a %b %d %H:%M:%S %Y",     # ANSI C
    "%a %b %d %H:%M:%S UTC %Y", # unix date, only UTC is understood
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
]

def parse_time(value:str) -> datetime:
    value = value.strip()
    # RFC 3339, with up to nanosecond fractions (truncated to microseconds)
    rfc3339 = _FRACTION_RE.sub(r'\1', value)
    if rfc3339.endswith('Z') or rfc3339.endswith('z'):
        rfc3339 = rfc3339[:-1] + '+00:00'
    try:
        return normalize_time(datetime.fromisoformat(rfc3339))
    except ValueError:
        pass
    for layout in _LAYOUTS:
        try:
            return normalize_time(datetime.strptime(value, layout))
        except ValueError:
            continue
    raise ValueError(f"could not parse time '{value}'")

def format_time(at:datetime) -> str:
    return normalize_time(at).isoformat()
