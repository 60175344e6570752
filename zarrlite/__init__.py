# flake8: noqa
from zarrlite.core import Array
from zarrlite.creation import array, create, full, open_array, zeros
from zarrlite.errors import (AlreadyExistsError, ArrayNotFoundError, CorruptChunk,
                             DecodeError, MetadataError, OutOfBoundsSelection,
                             ReadOnlyError, ShapeMismatch, UnknownDType,
                             UnsupportedFormatVersion)
from zarrlite.indexing import DimRange
from zarrlite.meta import ArrayDescriptor
from zarrlite.storage import DirectoryStore, KVStore, LoggingStore, MemoryStore
from zarrlite.sync import ProcessSynchronizer, ThreadSynchronizer
from zarrlite.version import version as __version__
