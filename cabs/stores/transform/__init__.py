from . transformers import Transformer, FlateTransformer, LzmaTransformer, create_transformer
from . transform_store import TransformBlobStore
__all__ = ['Transformer', 'FlateTransformer', 'LzmaTransformer', 'create_transformer', 'TransformBlobStore']
