from __future__ import annotations
import json
import logging
import os
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Type, TypeVar
import tomlkit
from pydantic import BaseModel, ConfigDict, ValidationError
from cabs.errors import ConfigError

if TYPE_CHECKING:
    from cabs.blob_store import BlobStore

# Store types register a factory under a name. A configuration is a dict with a "type" key
# plus the options of that type. Composite types (replica, lru, transform, logging) hold
# nested configurations and build their nested stores through `from_config`.

logger = logging.getLogger(__name__)

Factory = Callable[[dict], Awaitable["BlobStore"]]
ModelT = TypeVar("ModelT", bound=BaseModel)

_factories:dict[str, Factory] = {}

class StoreConfig(BaseModel):
    """Base for the option models of the store types. Unknown keys are allowed, since the
    type name and composite-specific keys travel in the same object."""
    model_config = ConfigDict(extra='allow', populate_by_name=True)

def register(name:str, factory:Factory|None=None):
    """Registers a factory under a type name. Usable as a decorator."""
    def decorator(f:Factory) -> Factory:
        if name in _factories and _factories[name] is not f:
            logger.warning(f"store type '{name}' is registered twice, the later factory wins")
        _factories[name] = f
        return f
    if factory is not None:
        return decorator(factory)
    return decorator

def registered_types() -> list[str]:
    return sorted(_factories.keys())

def parse_config(model:Type[ModelT], conf:dict) -> ModelT:
    """Validates the options of one store type."""
    try:
        return model.model_validate(conf)
    except ValidationError as e:
        type_name = conf.get("type", "?") if isinstance(conf, dict) else "?"
        raise ConfigError(f"invalid configuration for store type '{type_name}': {e}") from e

async def create(type_name:str, conf:dict) -> BlobStore:
    # importing the stores package registers the built-in types
    import cabs.stores
    factory = _factories.get(type_name)
    if factory is None:
        raise ConfigError(f"unknown store type '{type_name}', known types are {registered_types()}")
    return await factory(conf)

async def from_config(conf:Any) -> BlobStore:
    if not isinstance(conf, dict):
        raise ConfigError(f"a store configuration must be an object, got {type(conf).__name__}")
    type_name = conf.get("type")
    if not isinstance(type_name, str) or not type_name:
        raise ConfigError("a store configuration needs a 'type'")
    return await create(type_name, conf)

def load_config_file(path:str) -> dict:
    """Reads a configuration document, TOML if the file ends in .toml, otherwise JSON."""
    try:
        with open(path, 'r') as f:
            text = f.read()
    except OSError as e:
        raise ConfigError(f"cannot read config file '{path}': {e}") from e
    try:
        if os.path.splitext(path)[1].lower() == ".toml":
            conf = tomlkit.loads(text).unwrap()
        else:
            conf = json.loads(text)
    except (ValueError, tomlkit.exceptions.TOMLKitError) as e:
        raise ConfigError(f"cannot parse config file '{path}': {e}") from e
    if not isinstance(conf, dict):
        raise ConfigError(f"config file '{path}' does not hold an object")
    return conf

async def from_config_file(path:str) -> BlobStore:
    return await from_config(load_config_file(path))
