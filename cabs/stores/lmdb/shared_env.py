import logging
import os
from typing import Callable, TypeVar
import lmdb

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAP_SIZE = 1024*1024*10 # 10 MB

class SharedEnvironment:
    def __init__(self, store_path:str, writemap:bool=False, map_size:int=DEFAULT_MAP_SIZE):
        self.store_path = store_path
        os.makedirs(self.store_path, exist_ok=True)
        self.env = lmdb.Environment(
            store_path,
            max_dbs=2,
            # writemap=True makes lmdb a lot faster, but the DB file becomes as big as the map size
            # on some file systems and it comes with fewer safety guarantees.
            # See: https://lmdb.readthedocs.io/en/release/#writemap-mode
            writemap=writemap,
            metasync=False,
            # if writemap is False, this is ignored
            map_async=True,
            # is ignored if the map is bigger already
            map_size=map_size,
            )
        self._blobs_db = self.env.open_db('blobs'.encode('utf-8'))
        self._meta_db = self.env.open_db('meta'.encode('utf-8'))

    def get_env(self) -> lmdb.Environment:
        return self.env

    def begin_blobs_txn(self, write=True, buffers=False) -> lmdb.Transaction:
        return self.env.begin(db=self._blobs_db, write=write, buffers=buffers)

    def begin_meta_txn(self, write=True, buffers=False) -> lmdb.Transaction:
        return self.env.begin(db=self._meta_db, write=write, buffers=buffers)

    def write_with_resize(self, write:Callable[[], T]) -> T:
        """Runs a function that opens and commits a write transaction, growing the map once if it is full."""
        try:
            return write()
        except lmdb.MapFullError:
            logger.warning("LMDB map is full, resizing")
            self._resize()
            #try again
            return write()

    def _resize(self) -> int:
        current_size = self.env.info()['map_size']
        if current_size > 1024*1024*1024*10: # 10 GB
            multiplier = 1.2
        elif current_size > 1024*1024*1024: # 1 GB
            multiplier = 1.5
        else: # under 1 GB
            multiplier = 3.0
        # must be rounded to the next int, lmdb does not accept fractional sizes
        new_size = round(current_size * multiplier)
        logger.info(f"Resizing LMDB map from {current_size/1024/1024} MB to {new_size/1024/1024} MB")
        self.env.set_mapsize(new_size)
        return new_size

    def close(self) -> None:
        self.env.close()
