"""Default settings used when creating arrays."""

try:
    # noinspection PyUnresolvedReferences
    from numcodecs import Blosc

    default_compressor = Blosc(cname='lz4', clevel=5, shuffle=Blosc.SHUFFLE)
except ImportError:  # pragma: no cover
    from numcodecs import Zlib

    default_compressor = Zlib(level=1)

default_dtype = '<f8'

# memory layout recorded in metadata for new arrays
default_order = 'C'

# write every chunk of the grid at creation time
materialize_chunks = True
