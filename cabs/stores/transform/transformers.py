import lzma
import zlib
from abc import ABC, abstractmethod

class Transformer(ABC):
    """Transforms blobs on their way into a store (encode) and back out (decode)."""

    name:str

    @abstractmethod
    def encode(self, data:bytes) -> bytes:
        pass

    @abstractmethod
    def decode(self, data:bytes) -> bytes:
        pass

class FlateTransformer(Transformer):
    """Raw DEFLATE (RFC 1951), without the zlib header and checksum."""
    name = "flate"

    def __init__(self, level:int=-1):
        if level < -1 or level > 9:
            level = -1
        self.level = level

    def encode(self, data:bytes) -> bytes:
        compressor = zlib.compressobj(self.level, zlib.DEFLATED, -zlib.MAX_WBITS)
        return compressor.compress(data) + compressor.flush()

    def decode(self, data:bytes) -> bytes:
        decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
        return decompressor.decompress(data) + decompressor.flush()

class LzmaTransformer(Transformer):
    name = "lzma"

    def __init__(self, level:int=-1):
        # lzma calls the level a preset, -1 picks the default
        self.preset = level if 0 <= level <= 9 else None

    def encode(self, data:bytes) -> bytes:
        return lzma.compress(data, preset=self.preset)

    def decode(self, data:bytes) -> bytes:
        return lzma.decompress(data)

_TRANSFORMERS = {
    FlateTransformer.name: FlateTransformer,
    LzmaTransformer.name: LzmaTransformer,
}

def create_transformer(name:str, level:int=-1) -> Transformer:
    transformer_type = _TRANSFORMERS.get(name)
    if transformer_type is None:
        raise ValueError(f"unknown transformer '{name}', known transformers are {sorted(_TRANSFORMERS)}")
    return transformer_type(level)
