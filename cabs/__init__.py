from . object_model import *
from . refs import (ZERO_REF, InvalidRefError, get_ref, is_ref, is_ref_str, is_zero_ref, to_ref_str, to_ref,
                    ref_less, enforce_ref)
from . errors import (ErrorKind, StoreError, NotFoundError, UpdateConflictError, NoAnchorMapError, NotAnchorStoreError,
                      WrongTypeError, TransientError, FatalError, ReplicaFailedError, ConfigError, error_is, error_chain)
from . blob_store import BlobStore, AnchorStore, AnchorMapStore, anchor_view, has_anchors
from . listing import StopListing, hex_prefixes, iter_refs, iter_anchors, collect_refs, collect_anchors
from . history import find_anchor
from . anchor_map import PersistentMap, MapAnchorView, update_anchor_map_with_retry
from . typed import put_typed, get_typed
from . sync import sync_stores, sync_anchors
from . registry import register, create, from_config, from_config_file, load_config_file
