import json
import pytest
from cabs import *
from cabs.registry import registered_types
from cabs.stores import (MemoryBlobStore, FileBlobStore, LmdbBlobStore, BucketBlobStore, ReplicaStore,
                         LruBlobStore, TransformBlobStore, LoggingBlobStore, FlateTransformer, LzmaTransformer)

async def test_builtin_types_are_registered():
    await create("mem", {"type": "mem"})
    assert {"mem", "file", "lmdb", "bucket", "replica", "lru", "transform", "logging"} <= set(registered_types())

async def test_create_simple_stores(tmp_path):
    assert isinstance(await from_config({"type": "mem"}), MemoryBlobStore)
    assert isinstance(await from_config({"type": "bucket"}), BucketBlobStore)
    assert isinstance(await from_config({"type": "file", "root": str(tmp_path / "f")}), FileBlobStore)
    store = await from_config({"type": "lmdb", "path": str(tmp_path / "l"), "map_size": 1024*1024})
    assert isinstance(store, LmdbBlobStore)
    await store.close()

async def test_create_composite_stores():
    replica = await from_config({
        "type": "replica",
        "sync": [{"type": "mem"}, {"type": "bucket"}],
        "async": [{"type": "mem"}],
        "queuelen": 3,
    })
    assert isinstance(replica, ReplicaStore)
    assert len(replica.sync_stores) == 2
    assert len(replica.async_stores) == 1
    await replica.close()

    lru = await from_config({"type": "lru", "size": 10, "nested": {"type": "logging", "nested": {"type": "mem"}}})
    assert isinstance(lru, LruBlobStore)
    assert isinstance(lru.nested, LoggingBlobStore)

    transform = await from_config({"type": "transform", "nested": {"type": "mem"}, "anchor": "refs", "transformer": "lzma"})
    assert isinstance(transform, TransformBlobStore)
    assert isinstance(transform.transformer, LzmaTransformer)
    transform = await from_config({"type": "transform", "nested": {"type": "mem"}, "anchor": "refs", "transformer": "flate", "level": 9})
    assert isinstance(transform.transformer, FlateTransformer)
    assert transform.transformer.level == 9

async def test_config_errors():
    with pytest.raises(ConfigError):
        await from_config({"type": "nonexistent"})
    with pytest.raises(ConfigError):
        await from_config({"root": "/tmp"})
    with pytest.raises(ConfigError):
        await from_config(["not", "an", "object"])
    with pytest.raises(ConfigError):
        await from_config({"type": "file"})
    with pytest.raises(ConfigError):
        await from_config({"type": "replica", "sync": []})
    with pytest.raises(ConfigError):
        await from_config({"type": "lru", "size": 0, "nested": {"type": "mem"}})
    with pytest.raises(ConfigError):
        await from_config({"type": "transform", "nested": {"type": "mem"}, "anchor": "a", "transformer": "lzw"})

async def test_register_custom_type():
    class CustomStore(MemoryBlobStore):
        pass
    @register("test-custom")
    async def create_custom(conf:dict):
        return CustomStore()
    assert isinstance(await from_config({"type": "test-custom"}), CustomStore)

async def test_config_files(tmp_path):
    json_path = tmp_path / "store.json"
    json_path.write_text(json.dumps({"type": "lru", "size": 5, "nested": {"type": "mem"}}))
    assert isinstance(await from_config_file(str(json_path)), LruBlobStore)

    toml_path = tmp_path / "store.toml"
    toml_path.write_text('type = "replica"\n\n[[sync]]\ntype = "mem"\n\n[[sync]]\ntype = "bucket"\n')
    assert load_config_file(str(toml_path)) == {"type": "replica", "sync": [{"type": "mem"}, {"type": "bucket"}]}
    replica = await from_config_file(str(toml_path))
    assert isinstance(replica, ReplicaStore)
    await replica.close()

    with pytest.raises(ConfigError):
        load_config_file(str(tmp_path / "missing.json"))
    bad_path = tmp_path / "bad.json"
    bad_path.write_text("{not json")
    with pytest.raises(ConfigError):
        load_config_file(str(bad_path))
