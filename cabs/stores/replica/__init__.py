from . replica_store import ReplicaStore
__all__ = ['ReplicaStore']
