from enum import Enum

class ErrorKind(Enum):
    NOT_FOUND = "not found"
    CONFLICT = "update conflict"
    NO_ANCHOR_MAP = "no anchor map"
    NOT_ANCHOR_STORE = "not anchor store"
    WRONG_TYPE = "wrong type"
    TRANSIENT = "transient"
    FATAL = "fatal"

class StoreError(Exception):
    """Base class of all errors raised by blob stores.

    Drivers classify their native errors once, by raising (or wrapping into) one of the
    subclasses below. Consumers probe the kind with `is_kind` or, for whole exception chains,
    with `error_is`.
    """
    kind:ErrorKind = ErrorKind.FATAL

    def __init__(self, message:str|None=None, kind:ErrorKind|None=None):
        super().__init__(message if message is not None else self.__class__.kind.value)
        if kind is not None:
            self.kind = kind

    def is_kind(self, kind:ErrorKind) -> bool:
        return self.kind == kind

    @classmethod
    def wrap(cls, message:str, cause:BaseException) -> "StoreError":
        """Creates an error that inherits the kind of 'cause'. Raise it with 'from cause'."""
        kind = cause.kind if isinstance(cause, StoreError) else ErrorKind.FATAL
        return cls(f"{message}: {cause}", kind)

class NotFoundError(StoreError):
    kind = ErrorKind.NOT_FOUND

class UpdateConflictError(StoreError):
    kind = ErrorKind.CONFLICT

class NoAnchorMapError(StoreError):
    kind = ErrorKind.NO_ANCHOR_MAP

class NotAnchorStoreError(StoreError):
    kind = ErrorKind.NOT_ANCHOR_STORE

class WrongTypeError(StoreError):
    kind = ErrorKind.WRONG_TYPE

class TransientError(StoreError):
    kind = ErrorKind.TRANSIENT

class FatalError(StoreError):
    kind = ErrorKind.FATAL

class ReplicaFailedError(StoreError):
    pass

class ConfigError(Exception):
    pass

def error_is(err:BaseException|None, kind:ErrorKind) -> bool:
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(err, StoreError) and err.kind == kind:
            return True
        err = err.__cause__ if err.__cause__ is not None else err.__context__
    return False

def error_chain(err:BaseException) -> list[str]:
    """The messages of an exception and all its causes, outermost first."""
    chain = []
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        chain.append(f"{type(err).__name__}: {err}")
        err = err.__cause__ if err.__cause__ is not None else err.__context__
    return chain
