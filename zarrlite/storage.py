"""This module contains storage classes for use with zarrlite arrays.

Any object implementing the :class:`MutableMapping` interface with string keys
and bytes values can hold an array; plain mappings are wrapped in
:class:`KVStore`. On top of the mapping interface every store offers the chunk
level operations used by arrays: :meth:`BaseStore.get_chunk`,
:meth:`BaseStore.put_chunk` and :meth:`BaseStore.get_attributes`.

Chunk keys join the chunk coordinates with ``'.'``, listing dimensions in the
reverse of zarrlite's internal order, e.g. chunk ``(1, 2)`` of a 2-D array is
stored under ``'2.1'``.

"""
import inspect
import logging
import os
import shutil
import threading
import time
import uuid
from collections import defaultdict
from collections.abc import MutableMapping
from contextlib import contextmanager
from typing import Any, Dict, Optional, Sequence

from numcodecs.compat import ensure_bytes, ensure_contiguous_ndarray

from zarrlite.errors import AlreadyExistsError, FSPathExistNotDir
from zarrlite.meta import ArrayDescriptor, Metadata2
from zarrlite.util import retry_call

logger = logging.getLogger(__name__)

array_meta_key = '.zarray'
attrs_key = '.zattrs'


def chunk_key(chunk_coords: Sequence[int], separator: str = '.') -> str:
    """Storage key for the chunk at the given 0-based coordinates."""
    return separator.join(map(str, reversed(tuple(chunk_coords))))


class BaseStore(MutableMapping):
    """Abstract base class for store implementations.

    Subclasses provide the mapping methods; the chunk and attribute accessors
    used by arrays are built on top of them.

    """

    _metadata_class = Metadata2

    @property
    def name(self) -> str:
        """Identifier of the stored array."""
        return ''

    def get_chunk(self, chunk_coords: Sequence[int]) -> Optional[bytes]:
        """Return the raw data of a chunk, or None if it was never written."""
        return self.get(chunk_key(chunk_coords))

    def put_chunk(self, chunk_coords: Sequence[int], data) -> None:
        self[chunk_key(chunk_coords)] = data

    def get_attributes(self) -> Dict[str, Any]:
        """User attributes stored alongside the array, empty if none."""
        return self._metadata_class.decode_attributes(self.get(attrs_key))

    def is_empty(self) -> bool:
        """True if nothing occupies the location an array would be created in."""
        return len(self) == 0


def ensure_store(store: Any) -> BaseStore:
    """Return `store` as a BaseStore, wrapping a plain mapping in a KVStore."""
    if isinstance(store, BaseStore):
        return store
    if isinstance(store, MutableMapping):
        return KVStore(store)
    raise TypeError('expected a store or a MutableMapping, got {!r}'.format(store))


class KVStore(BaseStore):
    """Store over any mutable mapping, e.g. a ``dict``. Values are coerced to
    bytes on the way in.

    Parameters
    ----------
    mapping : MutableMapping
        The wrapped mapping; it is used in place, not copied.
    name : str, optional
        Identifier of the array held in the store.

    """

    def __init__(self, mapping, name='data'):
        self.mapping = mapping
        self._name = name

    @property
    def name(self):
        return self._name

    def __getitem__(self, key):
        return self.mapping[key]

    def __setitem__(self, key, value):
        self.mapping[key] = ensure_bytes(value)

    def __delitem__(self, key):
        del self.mapping[key]

    def __contains__(self, key):
        return key in self.mapping

    def __iter__(self):
        return iter(list(self.mapping))

    def __len__(self):
        return len(self.mapping)

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.mapping == other.mapping

    def __repr__(self):
        return f"<{type(self).__name__} {self._name!r}: {len(self.mapping)} key(s)>"


class MemoryStore(KVStore):
    """In-memory store backed by a ``dict``. Writes and deletes are serialized
    by a lock, so several threads may write disjoint chunks at once.

    Parameters
    ----------
    name : str, optional
        Identifier of the array held in the store.
    root : dict, optional
        Existing dictionary to use for storage.

    """

    def __init__(self, name='data', root=None):
        super().__init__({} if root is None else root, name=name)
        self._write_lock = threading.Lock()

    def __reduce__(self):
        return type(self), (self._name, self.mapping)

    def __setitem__(self, key, value):
        value = ensure_bytes(value)
        with self._write_lock:
            self.mapping[key] = value

    def __delitem__(self, key):
        with self._write_lock:
            del self.mapping[key]

    def clear(self):
        with self._write_lock:
            self.mapping.clear()

    def getsize(self) -> int:
        """Total number of bytes held."""
        return sum(map(len, self.mapping.values()))


class DirectoryStore(BaseStore):
    """Store keeping one file per key in a single directory: ``.zarray``,
    ``.zattrs`` and one file per chunk. The directory is created on the first
    write.

    Parameters
    ----------
    path : str or PathLike
        Location of the directory holding the array.

    Notes
    -----
    A write goes to a ``<key>.<random>.partial`` file in the same directory that
    is then renamed over the key's file, so readers never see half a chunk.
    Partial files are not listed as keys. Safe to write in multiple threads or
    processes.

    """

    def __init__(self, path):
        path = os.path.abspath(os.fspath(path))
        if os.path.exists(path) and not os.path.isdir(path):
            raise FSPathExistNotDir(path)
        self.path = path

    @property
    def name(self):
        return os.path.basename(self.path)

    def _file(self, key: str) -> str:
        # keys are flat: no separators, no relative components
        if not key or key in ('.', '..') or os.sep in key or (os.altsep and os.altsep in key):
            raise KeyError(key)
        return os.path.join(self.path, key)

    def __getitem__(self, key):
        try:
            with open(self._file(key), 'rb') as f:
                return f.read()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise KeyError(key) from e

    def __setitem__(self, key, value):
        data = ensure_contiguous_ndarray(value)
        target = self._file(key)
        os.makedirs(self.path, exist_ok=True)
        partial = '{}.{}.partial'.format(target, uuid.uuid4().hex)
        try:
            with open(partial, 'wb') as f:
                f.write(data)
            retry_call(os.replace, partial, target, exceptions=(PermissionError,))
        finally:
            if os.path.exists(partial):
                os.remove(partial)

    def __delitem__(self, key):
        try:
            os.remove(self._file(key))
        except FileNotFoundError as e:
            raise KeyError(key) from e

    def __contains__(self, key):
        try:
            return os.path.isfile(self._file(key))
        except KeyError:
            return False

    def __iter__(self):
        if not os.path.isdir(self.path):
            return
        for entry in sorted(os.listdir(self.path)):
            if not entry.endswith('.partial') and os.path.isfile(os.path.join(self.path, entry)):
                yield entry

    def __len__(self):
        return sum(1 for _ in self)

    def is_empty(self) -> bool:
        # any entry counts, including subdirectories and stray files
        return not (os.path.isdir(self.path) and os.listdir(self.path))

    def exists(self) -> bool:
        return os.path.isdir(self.path)

    def getsize(self) -> int:
        """Total size in bytes of the files holding keys."""
        return sum(os.path.getsize(os.path.join(self.path, k)) for k in self)

    def clear(self):
        """Remove the directory and everything in it."""
        if os.path.isdir(self.path):
            shutil.rmtree(self.path)

    def __eq__(self, other):
        return isinstance(other, DirectoryStore) and self.path == other.path

    def __repr__(self):
        return f"<{type(self).__name__} {self.path!r}>"


class LoggingStore(BaseStore):
    """Store wrapper that logs and counts every access to the wrapped store.

    Parameters
    ----------
    store : BaseStore
        The store to wrap.
    log_level : str, optional
        Level of the emitted log records.
    log_handler : logging.Handler, optional
        Handler attached to the store's logger when it has none.

    """

    def __init__(self, store, log_level: str = "DEBUG",
                 log_handler: Optional[logging.Handler] = None):
        self._store = ensure_store(store)
        self.counter = defaultdict(int)
        self.log_level = log_level
        self.logger = logging.getLogger(f"zarrlite.storage.LoggingStore({self._store.name})")
        self.logger.setLevel(log_level)
        if log_handler is not None:
            self.logger.addHandler(log_handler)

    @contextmanager
    def log(self, detail=''):
        method = inspect.stack()[2].function
        op = f"{type(self._store).__name__}.{method}"
        self.logger.log(logging.getLevelName(self.log_level), "Calling %s %s", op, detail)
        start_time = time.time()
        try:
            self.counter[method] += 1
            yield
        finally:
            end_time = time.time()
            self.logger.log(logging.getLevelName(self.log_level),
                            "Finished %s in %.4f seconds", op, end_time - start_time)

    @property
    def name(self):
        return self._store.name

    def get_chunk(self, chunk_coords):
        with self.log(chunk_key(chunk_coords)):
            return self._store.get_chunk(chunk_coords)

    def put_chunk(self, chunk_coords, data):
        with self.log(chunk_key(chunk_coords)):
            self._store.put_chunk(chunk_coords, data)

    def get_attributes(self):
        with self.log():
            return self._store.get_attributes()

    def __getitem__(self, key):
        with self.log(key):
            return self._store[key]

    def __setitem__(self, key, value):
        with self.log(key):
            self._store[key] = value

    def __delitem__(self, key):
        with self.log(key):
            del self._store[key]

    def __contains__(self, key):
        with self.log(key):
            return key in self._store

    def __iter__(self):
        with self.log():
            return iter(list(self._store))

    def __len__(self):
        with self.log():
            return len(self._store)

    def is_empty(self):
        with self.log():
            return self._store.is_empty()

    def clear(self):
        with self.log():
            self._store.clear()

    def __str__(self) -> str:
        return f"logging-{self._store!s}"

    def __repr__(self) -> str:
        return f"LoggingStore({self._store!r})"


def normalize_store_arg(store: Any, name: Optional[str] = None) -> BaseStore:
    """Turn a path, mapping or None into a store; None gives a new MemoryStore."""
    if store is None:
        return MemoryStore(name=name or 'data')
    if isinstance(store, (str, os.PathLike)):
        path = os.fspath(store)
        if name:
            path = os.path.join(path, name)
        return DirectoryStore(path)
    if isinstance(store, BaseStore):
        return store
    return KVStore(store, name=name or 'data')


def contains_array(store: BaseStore) -> bool:
    """Return True if the store contains array metadata."""
    return array_meta_key in store


def init_array(store: BaseStore, descriptor: ArrayDescriptor, overwrite: bool = False):
    """Initialize a store with the metadata of `descriptor`. Note that this is a
    low-level function that does not write any chunks.

    Raises
    ------
    AlreadyExistsError
        If the store is not empty and `overwrite` is False. For a directory any
        entry counts, not only files holding keys.

    """
    if not store.is_empty():
        if not overwrite:
            raise AlreadyExistsError(getattr(store, 'path', store.name))
        logger.debug('clearing existing contents of store %r', store.name)
        store.clear()

    store[array_meta_key] = store._metadata_class.encode_array_metadata(descriptor)
    store[attrs_key] = store._metadata_class.encode_attributes(descriptor.attributes)
    logger.debug('initialized array %r with shape %r and chunks %r',
                 store.name, descriptor.shape, descriptor.chunks)
