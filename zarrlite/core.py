import logging
import re
from typing import Any

import numpy as np

from zarrlite.attrs import Attributes
from zarrlite.codecs import ChunkCodec
from zarrlite.errors import ArrayNotFoundError, ReadOnlyError, ShapeMismatch
from zarrlite.indexing import (
    BlockIndexer,
    BlockRange,
    DimRange,
    check_selection_bounds,
    iter_block_range,
    normalize_selection,
)
from zarrlite.meta import ArrayDescriptor, decode_descriptor
from zarrlite.storage import array_meta_key, attrs_key, chunk_key, ensure_store
from zarrlite.sync import lock_for
from zarrlite.util import product

__all__ = ["Array"]

logger = logging.getLogger(__name__)


class Array:
    """Instantiate an array from an initialized store.

    Parameters
    ----------
    store : MutableMapping
        Array store, already initialized.
    read_only : bool, optional
        True if array should be protected against modification.
    synchronizer : object, optional
        Array synchronizer. If given, every chunk is locked for the duration of
        its read-modify-write.
    cache_attrs : bool, optional
        If True (default), user attributes will be cached for attribute read
        operations. If False, user attributes are reloaded from the store prior
        to all attribute read operations.

    Notes
    -----
    Chunk data are held in memory in Fortran order over the internal shape,
    which is byte-for-byte the C order layout of the reversed shape recorded
    in ``.zarray``.

    """

    def __init__(
        self,
        store: Any,
        read_only=False,
        synchronizer=None,
        cache_attrs=True,
    ):
        # N.B., expect at this point store is fully initialized with all
        # configuration metadata fully specified and normalized

        store = ensure_store(store)
        self._store = store
        self._synchronizer = synchronizer

        # initialize metadata
        self._load_metadata(read_only)

        # initialize attributes
        self._attrs = Attributes(
            store,
            read_only=read_only,
            synchronizer=synchronizer,
            cache=cache_attrs,
            on_change=self._attributes_changed,
        )

    def _load_metadata(self, read_only):
        """(Re)load metadata from store."""
        try:
            meta_bytes = self._store[array_meta_key]
        except KeyError as e:
            raise ArrayNotFoundError(self._store.name) from e
        self._descriptor = decode_descriptor(
            meta_bytes, self._store.get(attrs_key), writable=not read_only
        )

        # cache frequently used values
        d = self._descriptor
        self._shape = d.shape
        self._chunks = d.chunks
        self._dtype = d.dtype.dtype
        self._fill_value = d.effective_fill_value
        self._codec = ChunkCodec.from_config(d.compressor)

    def _attributes_changed(self, attributes):
        # keep the descriptor in step with .zattrs
        self._descriptor = self._descriptor.evolve(attributes=attributes)

    @property
    def store(self):
        """A MutableMapping providing the underlying storage for the array."""
        return self._store

    @property
    def descriptor(self) -> ArrayDescriptor:
        """The immutable description of this array."""
        return self._descriptor

    @property
    def name(self):
        """Array name, taken from the store."""
        return self._store.name

    @property
    def read_only(self):
        """A boolean, True if modification operations are not permitted."""
        return not self._descriptor.writable

    @property
    def shape(self):
        """A tuple of integers describing the length of each dimension of
        the array."""
        return self._shape

    @property
    def chunks(self):
        """A tuple of integers describing the length of each dimension of a
        chunk of the array."""
        return self._chunks

    @property
    def dtype(self):
        """The NumPy data type."""
        return self._dtype

    @property
    def element_type(self):
        return self._descriptor.dtype

    @property
    def compressor(self):
        """Primary compression codec, or None."""
        return self._codec.compressor

    @property
    def fill_value(self):
        """A value used for uninitialized portions of the array."""
        return self._descriptor.fill_value

    @property
    def order(self):
        """Memory layout recorded in the array metadata."""
        return self._descriptor.order

    @property
    def synchronizer(self):
        """Object used to synchronize write access to the array."""
        return self._synchronizer

    @property
    def attrs(self):
        """A MutableMapping containing user-defined attributes. Note that
        attribute values must be JSON serializable."""
        return self._attrs

    @property
    def ndim(self):
        """Number of dimensions."""
        return len(self._shape)

    @property
    def size(self):
        """The total number of elements in the array."""
        return product(self._shape)

    @property
    def itemsize(self):
        """The size in bytes of each item in the array."""
        return self._dtype.itemsize

    @property
    def nbytes(self):
        """The total number of bytes that would be required to store the
        array without compression."""
        return self.size * self.itemsize

    @property
    def nbytes_stored(self):
        """The total number of stored bytes of data for the array. This
        includes storage required for configuration metadata and user
        attributes."""
        return sum(len(self._store[k]) for k in self._store)

    @property
    def cdata_shape(self):
        """A tuple of integers describing the number of chunks along each
        dimension of the array."""
        return self._descriptor.cdata_shape

    @property
    def nchunks(self):
        """Total number of chunks."""
        return self._descriptor.nchunks

    @property
    def nchunks_initialized(self):
        """The number of chunks that have been initialized with some data."""
        prog = re.compile(r"^\d+" + r"\.\d+" * (self.ndim - 1) + "$")
        return sum(1 for k in self._store if prog.match(k))

    def __eq__(self, other):
        return isinstance(other, Array) and self._store == other._store

    def __array__(self, *args, **kwargs):
        a = self[...]
        if args or kwargs:
            a = np.asarray(a, *args, **kwargs)
        return a

    def __len__(self):
        return self._shape[0]

    def __getstate__(self):
        return (self._store, self.read_only, self._synchronizer, self._attrs.cache)

    def __setstate__(self, state):
        self.__init__(*state)

    def __getitem__(self, selection):
        """Retrieve data for an item or region of the array.

        Parameters
        ----------
        selection : tuple
            An integer index, contiguous slice or range, or tuple of those,
            specifying the requested item or region for each dimension of the
            array. ``...`` and ``:`` select whole dimensions.

        Returns
        -------
        out : ndarray or scalar
            A NumPy array containing the data for the requested region, without
            the dimensions that were indexed by an integer. If every dimension
            was indexed by an integer, a NumPy scalar.

        Examples
        --------
        Setup a 2-dimensional array::

            >>> import zarrlite
            >>> import numpy as np
            >>> z = zarrlite.array(np.arange(100).reshape(10, 10), chunks=(4, 4))

        Retrieve an item::

            >>> z[2, 2]
            np.int64(22)

        Retrieve a region via slicing::

            >>> z[1:3, 1:3]
            array([[11, 12],
                   [21, 22]])
            >>> z[1, :4]
            array([10, 11, 12, 13])

        Notes
        -----
        Only contiguous selections are supported; slices with a step other than
        1 raise IndexError.

        """
        selection, drop_axes = normalize_selection(selection, self._shape)
        out = self.get_selection(selection)
        if drop_axes:
            out = out.reshape(tuple(n for i, n in enumerate(out.shape)
                                    if i not in drop_axes))
        if out.shape:
            return out
        else:
            return out[()]

    def __setitem__(self, selection, value):
        """Modify data for an item or region of the array.

        Parameters
        ----------
        selection : tuple
            An integer index, contiguous slice or range, or tuple of those.
        value : scalar or array-like
            Value to be stored into the array. Array-like values must hold as
            many items as the selection.

        Examples
        --------
        Setup a 2-dimensional array::

            >>> import zarrlite
            >>> import numpy as np
            >>> z = zarrlite.zeros((5, 5), chunks=(2, 2), dtype='<i4')

        Set all array elements to the same scalar value::

            >>> z[...] = 42

        Set a portion of the array::

            >>> z[0, :] = np.arange(5)
            >>> z[:, 0] = np.arange(5)
            >>> z[...]
            array([[ 0,  1,  2,  3,  4],
                   [ 1, 42, 42, 42, 42],
                   [ 2, 42, 42, 42, 42],
                   [ 3, 42, 42, 42, 42],
                   [ 4, 42, 42, 42, 42]], dtype=int32)

        """
        selection, _ = normalize_selection(selection, self._shape)
        self.set_selection(selection, value)

    def get_selection(self, selection, out=None):
        """Read a selection given as one inclusive ``DimRange`` per dimension.

        The result keeps every dimension, with length ``hi - lo + 1``.
        """
        # We iterate over all chunks which overlap the selection and thus contain data
        # that needs to be extracted. Each chunk is decoded in turn into one scratch
        # buffer and the necessary data copied into the output array.
        selection = tuple(DimRange(*s) for s in selection)
        check_selection_bounds(selection, self._shape)
        indexer = BlockIndexer(selection, self._chunks)

        # setup output array
        if out is None:
            out = np.empty(indexer.shape, dtype=self._dtype)
        elif out.shape != indexer.shape:
            raise ShapeMismatch('out has shape {!r}, expected {!r}'
                                .format(out.shape, indexer.shape))

        buffer = self._new_chunk_buffer()
        chunk = buffer.reshape(self._chunks, order="F")

        logger.debug("reading %d chunk(s) of %r for selection %r",
                     indexer.nchunks, self.name, selection)
        for chunk_coords, chunk_selection, out_selection, _ in indexer:
            self._load_chunk(chunk_coords, buffer)
            out[out_selection] = chunk[chunk_selection]

        return out

    def set_selection(self, selection, value):
        """Write `value` to a selection given as one inclusive ``DimRange`` per dimension."""
        # guard conditions
        if self.read_only:
            raise ReadOnlyError()

        selection = tuple(DimRange(*s) for s in selection)
        check_selection_bounds(selection, self._shape)
        indexer = BlockIndexer(selection, self._chunks)
        value, value_is_scalar = self._prepare_value(value, indexer.shape)

        buffer = self._new_chunk_buffer()

        logger.debug("writing %d chunk(s) of %r for selection %r",
                     indexer.nchunks, self.name, selection)
        for chunk_coords, chunk_selection, out_selection, is_total in indexer:
            chunk_value = value if value_is_scalar else value[out_selection]
            self._chunk_setitem(chunk_coords, chunk_selection, chunk_value, is_total, buffer)

    def _prepare_value(self, value, sel_shape):
        try:
            value = np.asarray(value, dtype=self._dtype)
        except (TypeError, ValueError) as e:
            raise ShapeMismatch('value {!r} cannot be stored as {}'
                                .format(value, self._descriptor.dtype.tag)) from e
        if value.ndim == 0:
            return value[()], True
        if value.shape != sel_shape:
            if value.size != product(sel_shape):
                raise ShapeMismatch('value with shape {!r} does not match selection '
                                    'with shape {!r}'.format(value.shape, sel_shape))
            value = value.reshape(sel_shape)
        return value, False

    def _new_chunk_buffer(self):
        return np.empty(self._descriptor.chunk_size, dtype=self._dtype)

    def _load_chunk(self, chunk_coords, buffer):
        """Fill the flat `buffer` with the decoded contents of a chunk."""
        cdata = self._store.get_chunk(chunk_coords)
        if cdata is None:
            # chunk not initialized
            buffer.fill(self._fill_value)
        else:
            self._codec.decode_into(cdata, buffer, key=chunk_key(chunk_coords))
        return buffer

    def _chunk_setitem(self, chunk_coords, chunk_selection, value, is_total, buffer):
        """Replace part or whole of a chunk.

        Parameters
        ----------
        chunk_coords : tuple of ints
            Indices of the chunk.
        chunk_selection : tuple of slices
            Location of region within the chunk.
        value : scalar or ndarray
            Value to set.
        is_total : bool
            True if `chunk_selection` covers the whole chunk.
        buffer : ndarray
            Flat scratch buffer of one chunk.

        """
        with lock_for(self._synchronizer, chunk_key(chunk_coords)):
            self._chunk_setitem_nosync(chunk_coords, chunk_selection, value, is_total, buffer)

    def _chunk_setitem_nosync(self, chunk_coords, chunk_selection, value, is_total, buffer):
        chunk = buffer.reshape(self._chunks, order="F")
        if is_total:
            # optimization: we are completely replacing the chunk, so no need
            # to access the existing chunk data
            chunk[...] = value
        else:
            # partially replace the contents of this chunk
            self._load_chunk(chunk_coords, buffer)
            chunk[chunk_selection] = value

        self._store.put_chunk(chunk_coords, self._codec.encode(buffer))

    def _initialize_chunks(self):
        """Write every chunk of the grid filled with the fill value."""
        if self.read_only:
            raise ReadOnlyError()
        buffer = self._new_chunk_buffer()
        buffer.fill(self._fill_value)
        cdata = self._codec.encode(buffer)
        block_range = BlockRange((0,) * self.ndim, tuple(n - 1 for n in self.cdata_shape))
        logger.debug("materializing %d chunk(s) of %r", self.nchunks, self.name)
        for chunk_coords in iter_block_range(block_range):
            self._store.put_chunk(chunk_coords, cdata)

    def __repr__(self):
        t = type(self)
        r = f"<{t.__module__}.{t.__name__}"
        if self.name:
            r += f" {self.name!r}"
        r += f" {str(self.shape)}"
        r += f" {self._descriptor.dtype.tag}"
        if self.read_only:
            r += " read-only"
        r += ">"
        return r

    @property
    def info(self):
        """Report some diagnostic information about the array."""
        return "\n".join(f"{k:<20}: {v}" for k, v in self.info_items())

    def info_items(self):
        items = [
            ("Type", f"{type(self).__module__}.{type(self).__name__}"),
            ("Name", self.name),
            ("Data type", self._descriptor.dtype.tag),
            ("Shape", str(self.shape)),
            ("Chunk shape", str(self.chunks)),
            ("Order", self.order),
            ("Read-only", str(self.read_only)),
            ("Compressor", repr(self.compressor)),
            ("Store type", f"{type(self._store).__module__}.{type(self._store).__name__}"),
            ("No. bytes", str(self.nbytes)),
            ("No. bytes stored", str(self.nbytes_stored)),
            ("Chunks initialized", f"{self.nchunks_initialized}/{self.nchunks}"),
        ]
        return items
