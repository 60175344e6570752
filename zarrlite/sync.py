"""Opt-in per-chunk mutual exclusion.

Arrays take no locks by default: concurrent writers to the same chunk race,
and interleaved read-modify-write of a boundary chunk can lose updates. An
array given a synchronizer holds the lock for a chunk's storage key for the
whole read-modify-write of that chunk.
"""
import contextlib
import os
import threading
from typing import ContextManager, Dict, Optional, Protocol

import fasteners


class Synchronizer(Protocol):
    """Anything that maps a storage key to a lock usable in a ``with`` block."""

    def __getitem__(self, key: str) -> ContextManager:
        ...


def lock_for(synchronizer: Optional[Synchronizer], key: str) -> ContextManager:
    """The lock guarding `key`, or a no-op context when there is no synchronizer."""
    if synchronizer is None:
        return contextlib.nullcontext()
    return synchronizer[key]


class ThreadSynchronizer:
    """One ``threading.Lock`` per key, shared by the threads of one process.

    Locks are created on first use. A pickled copy starts without locks, so it
    only coordinates with the process it is unpickled in.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def __getitem__(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def __reduce__(self):
        return type(self), ()


class ProcessSynchronizer:
    """File locks from `fasteners <https://fasteners.readthedocs.io>`_, one
    ``<key>.lock`` file per storage key.

    Parameters
    ----------
    path : str or PathLike
        Directory for the lock files, visible to every process. Use a
        directory other than the one holding the array.

    """

    def __init__(self, path):
        self.path = os.fspath(path)

    def lock_path(self, key: str) -> str:
        return os.path.join(self.path, key + '.lock')

    def __getitem__(self, key):
        return fasteners.InterProcessLock(self.lock_path(key))

    def __repr__(self):
        return f"{type(self).__name__}({self.path!r})"
