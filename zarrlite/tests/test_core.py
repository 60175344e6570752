import atexit
import json
import logging
import pickle
import shutil
import tempfile

import hypothesis.strategies as st
import numpy as np
import pytest
from hypothesis import given, settings
from numcodecs import Blosc, Zlib
from numpy.testing import assert_array_equal

from zarrlite.core import Array
from zarrlite.creation import array, create, full, zeros
from zarrlite.errors import (CorruptChunk, DecodeError, OutOfBoundsSelection, ReadOnlyError,
                             ShapeMismatch)
from zarrlite.indexing import DimRange
from zarrlite.storage import DirectoryStore, KVStore, MemoryStore
from zarrlite.tests.util import CountingDict


def _test_data(dtype, shape):
    size = int(np.prod(shape))
    dtype = np.dtype(dtype)
    if dtype.kind == 'U':
        data = np.array(['x{}'.format(i % 97) for i in range(size)], dtype=dtype)
    elif dtype.kind == 'f':
        data = np.linspace(-1000, 1000, size, dtype=dtype)
    else:
        data = (np.arange(size) % 100).astype(dtype)
    return data.reshape(shape)


class TestArray:

    def create_store(self):
        return KVStore(dict())

    def create_array(self, read_only=False, **kwargs):
        store = self.create_store()
        z = create(store=store, **kwargs)
        if read_only:
            return Array(store, read_only=True)
        return z

    def test_array_init(self):
        z = self.create_array(shape=100, chunks=10, dtype='<i4')
        assert isinstance(z, Array)
        assert (100,) == z.shape
        assert (10,) == z.chunks
        assert (10,) == z.cdata_shape
        assert 10 == z.nchunks
        assert 1 == z.ndim
        assert 100 == z.size
        assert 100 == len(z)
        assert 4 == z.itemsize
        assert 400 == z.nbytes
        assert np.dtype('<i4') == z.dtype
        assert '<i4' == z.element_type.tag
        assert not z.read_only

        z = self.create_array(shape=(20, 35), chunks=(10, 7), dtype='<f4')
        assert (20, 35) == z.shape
        assert (10, 7) == z.chunks
        assert (2, 5) == z.cdata_shape
        assert 10 == z.nchunks

    @pytest.mark.parametrize('dtype', ['|i1', '<i2', '<i4', '<i8', '|u1', '<u2', '<u4',
                                       '<u8', '<f4', '<f8', '<U1', '<U6'])
    def test_round_trip(self, dtype):
        shape = (17, 9)
        z = self.create_array(shape=shape, chunks=(5, 4), dtype=dtype)
        data = _test_data(dtype, shape)
        z[...] = data
        result = z[...]
        assert np.dtype(dtype) == result.dtype
        assert_array_equal(data, result)

        # every chunk was written
        assert z.nchunks == z.nchunks_initialized

        # contiguous regions spanning chunk boundaries
        assert_array_equal(data[3:12, 2:7], z[3:12, 2:7])
        assert_array_equal(data[16, :], z[16, :])
        assert_array_equal(data[:, 0], z[:, 0])

    def test_fill_value_eager(self):
        z = self.create_array(shape=(10, 10), chunks=(3, 4), dtype='<i4', fill_value=-9,
                              materialize_chunks=True)
        assert z.nchunks == z.nchunks_initialized
        assert_array_equal(np.full((10, 10), -9, dtype='<i4'), z[...])

    def test_fill_value_sparse(self):
        z = self.create_array(shape=(10, 10), chunks=(3, 4), dtype='<i4', fill_value=-9,
                              materialize_chunks=False)
        assert 0 == z.nchunks_initialized
        assert_array_equal(np.full((10, 10), -9, dtype='<i4'), z[...])

        # writing one item creates one chunk, filled around the item
        z[4, 5] = 1
        assert 1 == z.nchunks_initialized
        expect = np.full((10, 10), -9, dtype='<i4')
        expect[4, 5] = 1
        assert_array_equal(expect, z[...])

    def test_default_fill_values(self):
        z = self.create_array(shape=5, chunks=2, dtype='<f8')
        assert z.fill_value is None
        assert_array_equal(np.zeros(5), z[...])

        z = self.create_array(shape=5, chunks=2, dtype='<U4', materialize_chunks=False)
        assert_array_equal(np.array([''] * 5, dtype='<U4'), z[...])

        z = self.create_array(shape=5, chunks=2, dtype='<U4', fill_value='none')
        assert 'none' == z.fill_value
        assert_array_equal(np.array(['none'] * 5, dtype='<U4'), z[...])

    def test_block_write_example(self):
        z = self.create_array(shape=(4, 4), chunks=(2, 2), dtype='<i4', fill_value=0)
        z[1:3, 1:3] = 7

        expect = np.zeros((4, 4), dtype='<i4')
        expect[1:3, 1:3] = 7
        result = z[...]
        assert_array_equal(expect, result)
        assert 4 == np.count_nonzero(result == 7)

        # all four chunks were touched
        assert 4 == z.nchunks_initialized

    def test_nan_fill_example(self):
        z = self.create_array(shape=10, chunks=3, dtype='<f8', fill_value=np.nan)
        assert 4 == z.nchunks
        assert 4 == z.nchunks_initialized
        result = z[...]
        assert (10,) == result.shape
        assert np.all(np.isnan(result))

    def test_partial_write_preserves_neighbours(self):
        shape = (11, 13)
        z = self.create_array(shape=shape, chunks=(4, 5), dtype='<i8')
        expect = _test_data('<i8', shape)
        z[...] = expect

        for sel, value in [
            ((slice(1, 3), slice(2, 9)), -1),
            ((slice(5, 11), 12), -2),
            ((7, slice(None)), -3),
            ((slice(3, 5), slice(4, 6)), -4),
        ]:
            z[sel] = value
            expect[sel] = value
            assert_array_equal(expect, z[...])

    def test_setitem_array_values(self):
        z = self.create_array(shape=(5, 5), chunks=(2, 2), dtype='<i4', fill_value=0)

        z[0, :] = np.arange(5)
        z[:, 0] = np.arange(5)
        assert_array_equal(np.arange(5), z[0, :])
        assert_array_equal(np.arange(5), z[:, 0])
        assert 0 == z[1, 1]

        # values with the same number of items as the selection are reshaped
        z[1:3, 1:3] = np.arange(4)
        assert_array_equal(np.array([[0, 1], [2, 3]]), z[1:3, 1:3])

        # values are converted to the array's element type
        z[4, 4] = 3.7
        assert 3 == z[4, 4]

    def test_setitem_shape_mismatch(self):
        z = self.create_array(shape=(5, 5), chunks=(2, 2), dtype='<i4')
        with pytest.raises(ShapeMismatch):
            z[0:3, 0] = np.arange(4)
        with pytest.raises(ShapeMismatch):
            z[0:2, 0:2] = np.ones((2, 1))
        with pytest.raises(ShapeMismatch):
            z[0, 0] = 'foo'

    def test_scalar_access(self):
        z = self.create_array(shape=(10, 10), chunks=(4, 4), dtype='<i8')
        z[...] = np.arange(100).reshape(10, 10)

        v = z[2, 2]
        assert 22 == v
        assert np.ndim(v) == 0
        assert isinstance(v, np.integer)
        assert 99 == z[-1, -1]
        assert 90 == z[-1, 0]

        # integer indices drop dimensions
        assert (10,) == z[2].shape
        assert (10,) == z[:, 3].shape
        assert (2,) == z[3, 4:6].shape
        assert (1, 2) == z[3:4, 4:6].shape

    def test_selection_forms(self):
        data = np.arange(60).reshape(6, 10)
        z = self.create_array(shape=(6, 10), chunks=(4, 3), dtype='<i8')
        z[...] = data

        assert_array_equal(data, z[:])
        assert_array_equal(data, z[:, :])
        assert_array_equal(data[2:5], z[range(2, 5)])
        assert_array_equal(data[..., 3:7], z[..., 3:7])
        assert_array_equal(data[-2:, :-3], z[-2:, :-3])
        assert_array_equal(data[1:2, 3:4], z[DimRange(1, 1), DimRange(3, 3)])
        assert_array_equal(data, np.asarray(z))

    def test_get_set_selection(self):
        z = self.create_array(shape=(6, 10), chunks=(4, 3), dtype='<i4', fill_value=0)
        z.set_selection((DimRange(1, 4), DimRange(2, 8)), 5)

        # integer ranges keep their dimensions
        out = z.get_selection((DimRange(1, 1), DimRange(2, 8)))
        assert (1, 7) == out.shape
        assert_array_equal(np.full((1, 7), 5), out)

        out = np.empty((4, 7), dtype='<i4')
        result = z.get_selection([(1, 4), (2, 8)], out=out)
        assert result is out
        assert_array_equal(np.full((4, 7), 5), out)

        with pytest.raises(ShapeMismatch):
            z.get_selection((DimRange(1, 4), DimRange(2, 8)), out=np.empty((2, 2)))

    def test_out_of_bounds(self):
        z = self.create_array(shape=(10, 10), chunks=(4, 4), dtype='<i4')
        with pytest.raises(OutOfBoundsSelection):
            z[10, 0]
        with pytest.raises(OutOfBoundsSelection):
            z[0, -11]
        with pytest.raises(OutOfBoundsSelection):
            z[5:11, :]
        with pytest.raises(OutOfBoundsSelection):
            z[0, 0:11] = 1
        with pytest.raises(OutOfBoundsSelection):
            z.get_selection((DimRange(0, 9), DimRange(0, 10)))
        with pytest.raises(OutOfBoundsSelection):
            z.set_selection((DimRange(-1, 3), DimRange(0, 1)), 1)

        # out of bounds selections are index errors
        with pytest.raises(IndexError):
            z[10, 0]

    def test_unsupported_selections(self):
        z = self.create_array(shape=(10, 10), chunks=(4, 4), dtype='<i4')
        with pytest.raises(IndexError):
            z[::2]
        with pytest.raises(IndexError):
            z[0, 0, 0]
        with pytest.raises(IndexError):
            z[[1, 2]]
        with pytest.raises(IndexError):
            z[3:3]

    def test_read_only(self):
        z = self.create_array(shape=(10,), chunks=(4,), dtype='<i4', read_only=True)
        assert z.read_only
        assert 'read-only' in repr(z)
        assert_array_equal(np.zeros(10, dtype='<i4'), z[...])

        with pytest.raises(ReadOnlyError):
            z[0] = 1
        with pytest.raises(PermissionError):
            z[...] = 1
        with pytest.raises(PermissionError):
            z.set_selection((DimRange(0, 3),), 1)
        with pytest.raises(PermissionError):
            z.attrs['foo'] = 'bar'

    def test_attrs(self):
        z = self.create_array(shape=10, chunks=5, attrs={'units': 'm'})
        assert {'units': 'm'} == z.attrs.asdict()
        assert {'units': 'm'} == dict(z.descriptor.attributes)
        z.attrs['scale'] = 2
        assert {'units': 'm', 'scale': 2} == z.store.get_attributes()

        # the descriptor follows attribute writes
        assert {'units': 'm', 'scale': 2} == dict(z.descriptor.attributes)
        del z.attrs['units']
        assert {'scale': 2} == dict(z.descriptor.attributes)
        z.attrs.put({'a': 1})
        assert {'a': 1} == dict(z.descriptor.attributes)
        assert z.descriptor.writable
        assert (10,) == z.descriptor.shape

        # and picks up changes made by other writers on refresh
        z.store['.zattrs'] = json.dumps({'b': 2}).encode('ascii')
        z.attrs.refresh()
        assert {'b': 2} == dict(z.descriptor.attributes)

    def test_chunk_key_layout(self):
        z = self.create_array(shape=(4, 9), chunks=(2, 3), dtype='<i4',
                              materialize_chunks=True)
        chunk_keys = {k for k in z.store if not k.startswith('.')}
        assert {'0.0', '1.0', '2.0', '0.1', '1.1', '2.1'} == chunk_keys

        meta = json.loads(str(z.store['.zarray'], 'ascii'))
        assert [9, 4] == meta['shape']
        assert [3, 2] == meta['chunks']

    def test_chunk_byte_layout(self):
        z = self.create_array(shape=(4, 3), chunks=(2, 3), dtype='<i4', compressor=None,
                              materialize_chunks=False)
        data = np.arange(12, dtype='<i4').reshape(4, 3)
        z[...] = data

        # a reader of the reversed shape in C order sees the transpose
        assert data[2:4].tobytes(order='F') == bytes(z.store['0.1'])
        chunk = np.frombuffer(bytes(z.store['0.0']), dtype='<i4').reshape(3, 2)
        assert_array_equal(data[0:2].T, chunk)

    def test_total_chunk_write_skips_read(self):
        store = CountingDict()
        z = create((6, 6), chunks=(3, 3), dtype='<i4', compressor=None, store=store,
                   materialize_chunks=False)

        z[0:3, 0:3] = 1
        assert 0 == store.counter['__getitem__', '0.0']
        assert 1 == store.counter['__setitem__', '0.0']

        z[0, 3] = 2
        assert 1 == store.counter['__getitem__', '1.0']
        assert 1 == store.counter['__setitem__', '1.0']

        assert 1 == z[0, 0]
        assert 2 == z[0, 3]

    def test_compressors(self):
        for compressor in [None, Zlib(level=1), {'id': 'zlib', 'level': 5},
                           Blosc(cname='zstd', clevel=3, shuffle=Blosc.BITSHUFFLE)]:
            z = self.create_array(shape=(30, 20), chunks=(7, 6), dtype='<f8',
                                  compressor=compressor)
            data = _test_data('<f8', (30, 20))
            z[...] = data
            assert_array_equal(data, z[...])

        z = self.create_array(shape=10, chunks=5, compressor=None)
        assert z.compressor is None
        z = self.create_array(shape=10, chunks=5)
        assert 'blosc' == z.compressor.codec_id

    def test_corrupt_chunk(self):
        z = self.create_array(shape=10, chunks=5, dtype='<i4', compressor=None)
        z.store['0'] = b'\x00\x00\x00'
        with pytest.raises(CorruptChunk):
            z[...]
        with pytest.raises(CorruptChunk):
            z[2] = 1
        assert_array_equal(np.zeros(5), z[5:])

        # a total overwrite does not need the stored chunk
        z[0:5] = 3
        assert_array_equal(np.full(5, 3), z[0:5])

    def test_decode_error(self):
        z = self.create_array(shape=10, chunks=5, dtype='<i4',
                              compressor={'id': 'zlib', 'level': 1})
        z.store['1'] = b'not zlib data'
        with pytest.raises(DecodeError):
            z[7]
        assert 0 == z[4]

    def test_nbytes_stored(self):
        z = self.create_array(shape=1000, chunks=100, dtype='<i4', compressor=None,
                              materialize_chunks=False)
        meta_size = sum(len(z.store[k]) for k in ('.zarray', '.zattrs'))
        assert meta_size == z.nbytes_stored
        z[0:250] = 42
        assert meta_size + 3 * 400 == z.nbytes_stored

    def test_repr_info(self):
        z = self.create_array(shape=(10, 10), chunks=(5, 5), dtype='<f4')
        assert "<zarrlite.core.Array {!r} (10, 10) <f4>".format(z.name) == repr(z)
        info = z.info
        assert 'zarrlite.core.Array' in info
        assert '(5, 5)' in info
        assert '4/4' in info
        assert 'No. bytes           : 400\n' in info
        assert 'No. bytes stored' in info

    def test_pickle(self):
        z = self.create_array(shape=(10, 10), chunks=(3, 3), dtype='<i4',
                              attrs={'foo': 'bar'})
        z[2:5, 2:5] = 9
        z2 = pickle.loads(pickle.dumps(z))
        assert z.shape == z2.shape
        assert z.chunks == z2.chunks
        assert z.read_only == z2.read_only
        assert_array_equal(z[...], z2[...])
        assert {'foo': 'bar'} == z2.attrs.asdict()

    def test_logging(self, caplog):
        z = self.create_array(shape=(4, 4), chunks=(2, 2), dtype='<i4')
        with caplog.at_level(logging.DEBUG, logger='zarrlite.core'):
            z[1:3, 1:3] = 7
            z[0, 0]
        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith('writing 4 chunk(s)') for m in messages)
        assert any(m.startswith('reading 1 chunk(s)') for m in messages)


class TestArrayWithMemoryStore(TestArray):

    def create_store(self):
        return MemoryStore()


class TestArrayWithDirectoryStore(TestArray):

    def create_store(self):
        path = tempfile.mkdtemp()
        atexit.register(shutil.rmtree, path)
        return DirectoryStore(path)


class TestArrayWithLazyChunks(TestArray):

    def create_array(self, read_only=False, **kwargs):
        kwargs.setdefault('materialize_chunks', False)
        return super().create_array(read_only=read_only, **kwargs)

    def test_nan_fill_example(self):
        z = self.create_array(shape=10, chunks=3, dtype='<f8', fill_value=np.nan)
        assert 4 == z.nchunks
        assert 0 == z.nchunks_initialized
        assert np.all(np.isnan(z[...]))

    def test_repr_info(self):
        z = self.create_array(shape=(10, 10), chunks=(5, 5), dtype='<f4')
        assert "<zarrlite.core.Array {!r} (10, 10) <f4>".format(z.name) == repr(z)
        assert '0/4' in z.info


def test_array_function():
    data = np.arange(100).reshape(10, 10)
    z = array(data, chunks=(4, 4))
    assert np.dtype('<i8') == z.dtype
    assert_array_equal(data, z[...])
    assert z.nchunks == z.nchunks_initialized

    z = array(data, chunks=(4, 4), dtype='<i2')
    assert np.dtype('<i2') == z.dtype
    assert_array_equal(data, z[...])


def test_full_and_zeros():
    z = full((5, 5), fill_value=42, chunks=(2, 2))
    assert np.dtype('<f8') == z.dtype
    assert_array_equal(np.full((5, 5), 42.0), z[...])

    z = zeros(7, chunks=3, dtype='<u2')
    assert 0 == z.fill_value
    assert_array_equal(np.zeros(7, dtype='<u2'), z[...])


@st.composite
def shapes_and_writes(draw):
    ndim = draw(st.integers(1, 3))
    shape = tuple(draw(st.integers(1, 12)) for _ in range(ndim))
    chunks = tuple(draw(st.integers(1, s)) for s in shape)
    writes = []
    for i in range(draw(st.integers(1, 4))):
        selection = []
        for s in shape:
            lo = draw(st.integers(0, s - 1))
            hi = draw(st.integers(lo, s - 1))
            selection.append(slice(lo, hi + 1))
        writes.append(tuple(selection))
    return shape, chunks, writes


@given(shapes_and_writes(), st.booleans())
@settings(max_examples=100, deadline=None)
def test_writes_match_numpy(args, materialize_chunks):
    shape, chunks, writes = args
    z = zeros(shape, chunks=chunks, dtype='<i4', compressor=None,
              materialize_chunks=materialize_chunks)
    expect = np.zeros(shape, dtype='<i4')

    for i, selection in enumerate(writes, start=1):
        value = np.arange(expect[selection].size).reshape(expect[selection].shape) + 100 * i
        z[selection] = value
        expect[selection] = value

        # the written region and everything around it
        assert_array_equal(expect[selection], z[selection])
        assert_array_equal(expect, z[...])
