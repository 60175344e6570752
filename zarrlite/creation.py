import logging
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
from numcodecs.abc import Codec

from zarrlite import defaults
from zarrlite.codecs import get_codec
from zarrlite.core import Array
from zarrlite.dtypes import normalize_dtype
from zarrlite.errors import ArrayNotFoundError
from zarrlite.meta import ArrayDescriptor
from zarrlite.storage import contains_array, init_array, normalize_store_arg
from zarrlite.sync import Synchronizer
from zarrlite.util import normalize_chunks, normalize_shape

logger = logging.getLogger(__name__)


def normalize_compressor(compressor) -> Optional[Dict[str, Any]]:
    """Return the configuration of the compressor given by users."""
    if compressor == "default":
        compressor = defaults.default_compressor
    elif compressor is None or compressor == "none":
        return None
    if not isinstance(compressor, Codec):
        compressor = get_codec(compressor)
    return compressor.get_config()


def create(
    shape: Union[int, Tuple[int, ...]],
    chunks: Union[int, Tuple[int, ...], None] = None,
    dtype=None,
    compressor="default",
    fill_value=None,
    order: Optional[str] = None,
    store=None,
    name: Optional[str] = None,
    attrs: Optional[Dict[str, Any]] = None,
    overwrite: bool = False,
    synchronizer: Optional[Synchronizer] = None,
    materialize_chunks: Optional[bool] = None,
):
    """Create an array.

    Parameters
    ----------
    shape : int or tuple of ints
        Array shape.
    chunks : int or tuple of ints, optional
        Chunk shape. If not provided, the whole array is a single chunk.
    dtype : string or dtype, optional
        Element type, e.g. ``'<f8'``, ``'<i4'`` or ``'<U10'``.
    compressor : Codec or dict, optional
        Primary compressor, or its configuration, e.g. ``{'id': 'zlib'}``.
        None for no compression.
    fill_value : object
        Default value to use for uninitialized portions of the array.
    order : {'C', 'F'}, optional
        Memory layout recorded in the metadata.
    store : MutableMapping or string
        Store or path to directory in file system. If not provided, the array
        is held in a new MemoryStore.
    name : string, optional
        Array name. For a path `store` the array directory is created under
        that path with this name.
    attrs : dict, optional
        Initial user attributes.
    overwrite : bool, optional
        If True, delete all pre-existing data in `store` before creating the
        array.
    synchronizer : object, optional
        Array synchronizer.
    materialize_chunks : bool, optional
        If True, every chunk is written with the fill value at creation time.
        If False, chunks are only written when data is stored to them.
        Defaults to ``zarrlite.defaults.materialize_chunks``.

    Returns
    -------
    z : zarrlite.core.Array

    Raises
    ------
    ShapeMismatch
        If `chunks` and `shape` differ in their number of dimensions.
    AlreadyExistsError
        If `store` is not empty and `overwrite` is False.

    Examples
    --------
    Create an array with default settings::

        >>> import zarrlite
        >>> z = zarrlite.create((10000, 10000), chunks=(1000, 1000))
        >>> z
        <zarrlite.core.Array 'data' (10000, 10000) <f8>

    """
    shape = normalize_shape(shape)
    chunks = normalize_chunks(chunks, shape)
    descriptor = ArrayDescriptor(
        shape=shape,
        chunks=chunks,
        dtype=normalize_dtype(dtype if dtype is not None else defaults.default_dtype),
        fill_value=fill_value,
        order=order or defaults.default_order,
        compressor=normalize_compressor(compressor),
        attributes=attrs or {},
        writable=True,
    )
    if materialize_chunks is None:
        materialize_chunks = defaults.materialize_chunks

    # initialize array metadata
    store = normalize_store_arg(store, name=name)
    init_array(store, descriptor, overwrite=overwrite)

    # instantiate array
    z = Array(store, synchronizer=synchronizer)
    if materialize_chunks:
        z._initialize_chunks()

    logger.debug("created %r", z)
    return z


def zeros(shape, **kwargs):
    """Create an array, with zero being used as the default value for
    uninitialized portions of the array.

    For parameter definitions see :func:`zarrlite.creation.create`.

    """
    return create(shape=shape, fill_value=0, **kwargs)


def full(shape, fill_value, **kwargs):
    """Create an array, with `fill_value` being used as the default value for
    uninitialized portions of the array.

    For parameter definitions see :func:`zarrlite.creation.create`.

    Examples
    --------
    >>> import zarrlite
    >>> z = zarrlite.full((10, 10), chunks=(5, 5), fill_value=42)
    >>> z[:2, :2]
    array([[42., 42.],
           [42., 42.]])

    """
    return create(shape=shape, fill_value=fill_value, **kwargs)


def array(data, **kwargs):
    """Create an array filled with `data`.

    The `data` argument should be a NumPy array or array-like object. For
    other parameter definitions see :func:`zarrlite.creation.create`.

    """
    data = np.asanyarray(data)
    kwargs.setdefault("dtype", data.dtype)
    # every chunk is about to be written
    kwargs.setdefault("materialize_chunks", False)

    z = create(shape=data.shape, **kwargs)
    z[...] = data
    return z


def open_array(store, mode: str = "r", name: Optional[str] = None,
               synchronizer: Optional[Synchronizer] = None, cache_attrs: bool = True):
    """Open an existing array.

    Parameters
    ----------
    store : MutableMapping or string
        Store or path to the array directory in file system.
    mode : {'r', 'r+'}, optional
        Persistence mode: 'r' means read only, 'r+' means read/write.
    name : string, optional
        Name of the array directory under a path `store`.
    synchronizer : object, optional
        Array synchronizer.
    cache_attrs : bool, optional
        If True (default), user attributes will be cached.

    Returns
    -------
    z : zarrlite.core.Array

    Raises
    ------
    ArrayNotFoundError
        If there is no array metadata in `store`.
    UnsupportedFormatVersion
        If the metadata is not Zarr format version 2.
    UnknownDType
        If the metadata names an unsupported element type.

    """
    if mode not in ("r", "r+"):
        raise ValueError("mode must be 'r' or 'r+', found: %r" % mode)
    if store is None:
        raise ArrayNotFoundError(name)

    store = normalize_store_arg(store, name=name)
    if not contains_array(store):
        raise ArrayNotFoundError(getattr(store, "path", store.name))

    return Array(store, read_only=(mode == "r"), synchronizer=synchronizer,
                 cache_attrs=cache_attrs)
