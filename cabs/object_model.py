from datetime import datetime
from typing import Awaitable, Callable, NamedTuple

# Type aliases and structures that define the data model of the blob store.

Ref = bytes #32 bytes, sha256 of the blob
Blob = bytes #arbitrary byte sequence, immutable once stored

# a point in the history of an anchor: at instant 'at', the anchor designated 'ref'
TimeRef = NamedTuple("TimeRef",
    [('at', datetime),
     ('ref', Ref)])

# a named, timestamped designation of a ref
Anchor = NamedTuple("Anchor",
    [('name', str),
     ('at', datetime),
     ('ref', Ref)])

# callbacks used by the enumeration functions, raising inside a callback stops the enumeration
RefCallback = Callable[[Ref], Awaitable[None]]
AnchorCallback = Callable[[Anchor], Awaitable[None]]
TimeRefCallback = Callable[[TimeRef], Awaitable[None]]

# callback for the map-root anchor shape: receives the current anchor map ref (or the zero ref) and returns the new one
UpdateFunc = Callable[[Ref], Awaitable[Ref]]
