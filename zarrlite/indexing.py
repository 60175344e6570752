"""Translation of selections into per-chunk work.

A selection is a tuple of inclusive, 0-based ``DimRange(lo, hi)`` items, one
per dimension. For a selection, :func:`compute_block_range` finds the
rectangle of chunks it touches and :func:`compute_chunk_ranges` tells, for one
of those chunks, which part of the chunk maps onto which part of the output
buffer. Over all chunks of the block range the output ranges cover the output
buffer exactly once.

Nothing in this module performs I/O.
"""
import collections
import itertools
import numbers
from typing import Iterator, Sequence, Tuple

from zarrlite.errors import OutOfBoundsSelection, err_too_many_indices


DimRange = collections.namedtuple('DimRange', ('lo', 'hi'))
"""An inclusive range of indices along one dimension."""

BlockRange = collections.namedtuple('BlockRange', ('first', 'last'))
"""Inclusive per-dimension bounds of the chunk coordinates touched by a selection."""

ChunkProjection = collections.namedtuple(
    'ChunkProjection',
    ('chunk_coords', 'chunk_selection', 'out_selection', 'is_total')
)
"""A mapping of items from chunk to output array. Can be used to extract items from the
chunk array for loading into an output array. Can also be used to extract items from a
value array for setting/updating in a chunk array.

Parameters
----------
chunk_coords
    Indices of chunk.
chunk_selection
    Selection of items from chunk array.
out_selection
    Selection of items in target (output) array.
is_total
    True if the selection covers the whole chunk.

"""


def is_integer(x):
    return isinstance(x, numbers.Integral) and not isinstance(x, bool)


def ensure_tuple(v):
    if not isinstance(v, tuple):
        v = (v,)
    return v


def normalize_integer_selection(dim_sel, dim_len, dim=0):

    # normalize type to int
    dim_sel = int(dim_sel)

    # handle wraparound
    if dim_sel < 0:
        dim_sel = dim_len + dim_sel

    # handle out of bounds
    if dim_sel >= dim_len or dim_sel < 0:
        raise OutOfBoundsSelection(dim_sel, dim_sel, dim, dim_len)

    return dim_sel


def normalize_range_selection(dim_sel, dim_len, dim=0):
    """Convert a slice or ``range`` with unit step into a DimRange."""

    if dim_sel.step not in (None, 1):
        raise IndexError('only contiguous ranges (step 1) are supported, got step {!r}'
                         .format(dim_sel.step))

    start = 0 if dim_sel.start is None else int(dim_sel.start)
    stop = dim_len if dim_sel.stop is None else int(dim_sel.stop)

    # handle wraparound
    if start < 0:
        start += dim_len
    if stop < 0:
        stop += dim_len

    if start < 0 or stop > dim_len:
        raise OutOfBoundsSelection(start, stop - 1, dim, dim_len)
    if stop <= start:
        raise IndexError('empty selection [{}, {}) for dimension {}'.format(start, stop, dim))

    return DimRange(start, stop - 1)


def replace_ellipsis(selection, shape):

    selection = ensure_tuple(selection)

    # count number of ellipsis present
    n_ellipsis = sum(1 for i in selection if i is Ellipsis)

    if n_ellipsis > 1:
        # more than 1 is an error
        raise IndexError("an index can only have a single ellipsis ('...')")

    elif n_ellipsis == 1:
        # locate the ellipsis, count how many items to left and right
        n_items_l = selection.index(Ellipsis)  # items to left of ellipsis
        n_items_r = len(selection) - (n_items_l + 1)  # items to right of ellipsis
        n_items = len(selection) - 1  # all non-ellipsis items

        if n_items >= len(shape):
            # ellipsis does nothing, just remove it
            selection = tuple(i for i in selection if i is not Ellipsis)

        else:
            # replace ellipsis with as many slices are needed for number of dims
            new_item = selection[:n_items_l] + ((slice(None),) * (len(shape) - n_items))
            if n_items_r:
                new_item += selection[-n_items_r:]
            selection = new_item

    # fill out selection if not completely specified
    if len(selection) < len(shape):
        selection += (slice(None),) * (len(shape) - len(selection))

    # check selection not too long
    if len(selection) > len(shape):
        err_too_many_indices(selection, shape)

    return selection


def normalize_selection(selection, shape) -> Tuple[Tuple[DimRange, ...], Tuple[int, ...]]:
    """Normalize user index expressions into a selection.

    Integers select a single index, slices and ``range`` objects with unit step
    select a contiguous range, and ``slice(None)`` or ``...`` select a whole
    dimension.

    Returns
    -------
    selection : tuple of DimRange
    drop_axes : tuple of int
        Dimensions indexed by an integer, to be dropped from the result.

    """
    if isinstance(selection, DimRange):
        selection = (selection,)
    selection = replace_ellipsis(selection, shape)

    ranges = []
    drop_axes = []
    for dim, (dim_sel, dim_len) in enumerate(zip(selection, shape)):
        if is_integer(dim_sel):
            ix = normalize_integer_selection(dim_sel, dim_len, dim)
            ranges.append(DimRange(ix, ix))
            drop_axes.append(dim)
        elif isinstance(dim_sel, DimRange):
            ranges.append(DimRange(int(dim_sel.lo), int(dim_sel.hi)))
        elif isinstance(dim_sel, (slice, range)):
            ranges.append(normalize_range_selection(dim_sel, dim_len, dim))
        else:
            raise IndexError('unsupported selection item; expected integer, slice or '
                             'range, got {!r}'.format(type(dim_sel)))

    return tuple(ranges), tuple(drop_axes)


def check_selection_bounds(selection: Sequence[DimRange], shape: Sequence[int]):
    """Raise OutOfBoundsSelection unless every range lies within the array."""
    if len(selection) != len(shape):
        err_too_many_indices(selection, shape)
    for dim, ((lo, hi), dim_len) in enumerate(zip(selection, shape)):
        if lo < 0 or hi >= dim_len or hi < lo:
            raise OutOfBoundsSelection(lo, hi, dim, dim_len)


def selection_shape(selection: Sequence[DimRange]) -> Tuple[int, ...]:
    return tuple(hi - lo + 1 for lo, hi in selection)


def compute_block_range(selection: Sequence[DimRange], chunks: Sequence[int]) -> BlockRange:
    """Chunk coordinates of the first and last chunk touched along each dimension."""
    first = tuple(lo // c for (lo, _), c in zip(selection, chunks))
    last = tuple(hi // c for (_, hi), c in zip(selection, chunks))
    return BlockRange(first, last)


def iter_block_range(block_range: BlockRange) -> Iterator[Tuple[int, ...]]:
    """Iterate chunk coordinates in lexicographic order, last dimension fastest."""
    return itertools.product(*(range(f, l + 1) for f, l in zip(*block_range)))


def compute_chunk_ranges(selection, chunk_coords, block_range, chunks):
    """Return one ``(chunk_slice, out_slice)`` pair per dimension.

    `chunk_slice` selects items within the chunk and `out_slice` the matching
    items of the output buffer, which spans the whole selection.
    """
    ranges = []
    for (lo, hi), ix, first, last, c in zip(selection, chunk_coords,
                                             block_range.first, block_range.last, chunks):
        start = lo % c if ix == first else 0
        stop = hi % c + 1 if ix == last else c
        out_start = 0 if ix == first else (ix - first) * c - lo % c
        ranges.append((slice(start, stop), slice(out_start, out_start + stop - start)))
    return tuple(ranges)


class BlockIndexer(object):
    """Iterates the chunks touched by a selection.

    Parameters
    ----------
    selection : sequence of DimRange
        Selection, already checked against the array shape.
    chunks : tuple of ints
        Chunk shape.

    """

    def __init__(self, selection, chunks):
        self.selection = tuple(DimRange(*s) for s in selection)
        self.chunks = tuple(chunks)
        self.shape = selection_shape(self.selection)
        self.block_range = compute_block_range(self.selection, self.chunks)

    @property
    def nchunks(self):
        n = 1
        for f, l in zip(*self.block_range):
            n *= l - f + 1
        return n

    def __iter__(self):
        for chunk_coords in iter_block_range(self.block_range):
            ranges = compute_chunk_ranges(self.selection, chunk_coords,
                                          self.block_range, self.chunks)
            chunk_selection = tuple(r[0] for r in ranges)
            out_selection = tuple(r[1] for r in ranges)
            is_total = all(s.start == 0 and s.stop == c
                           for s, c in zip(chunk_selection, self.chunks))
            yield ChunkProjection(chunk_coords, chunk_selection, out_selection, is_total)
