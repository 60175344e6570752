"""Array descriptors and their Zarr v2 metadata encoding.

Dimensions are held in internal order throughout zarrlite. The ``shape`` and
``chunks`` entries of ``.zarray`` list dimensions in reverse, so the reversal
is applied here, when metadata is encoded or decoded, and nowhere else.
"""
import dataclasses
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Dict, Mapping as MappingType, Optional, Tuple, Union

from zarrlite.dtypes import ElementType, decode_dtype, normalize_dtype
from zarrlite.errors import MetadataError, ShapeMismatch, UnsupportedFormatVersion
from zarrlite.util import ceildiv, json_dumps, json_loads, normalize_order, product

ZARR_FORMAT = 2


@dataclasses.dataclass(frozen=True)
class ArrayDescriptor:
    """Immutable description of one array.

    Parameters
    ----------
    shape : tuple of ints
        Array shape, in internal dimension order.
    chunks : tuple of ints
        Chunk shape, in internal dimension order.
    dtype : ElementType
        Element type of the array.
    fill_value : scalar, optional
        Value for positions never written. If None, the element type's
        default (zero or the empty string) is used.
    order : {'C', 'F'}
        Memory order recorded in metadata. Chunk buffers always use one
        layout regardless of this flag.
    compressor : dict, optional
        Compressor configuration, e.g. ``{'id': 'zlib', 'level': 1}``.
    attributes : mapping
        User attributes.
    writable : bool
        Whether the array may be modified.

    """

    shape: Tuple[int, ...]
    chunks: Tuple[int, ...]
    dtype: ElementType
    fill_value: Any = None
    order: str = 'C'
    compressor: Optional[Dict[str, Any]] = None
    attributes: MappingType[str, Any] = dataclasses.field(default_factory=dict)
    writable: bool = False

    def __post_init__(self):
        shape = tuple(int(s) for s in self.shape)
        chunks = tuple(int(c) for c in self.chunks)
        if len(shape) == 0:
            raise ShapeMismatch('arrays must have at least one dimension')
        if len(shape) != len(chunks):
            raise ShapeMismatch('shape {!r} and chunks {!r} differ in number of '
                                'dimensions'.format(shape, chunks))
        if any(s < 1 for s in shape) or any(c < 1 for c in chunks):
            raise ValueError('all dimensions must be positive; shape {!r}, chunks {!r}'
                             .format(shape, chunks))
        dtype = normalize_dtype(self.dtype)
        object.__setattr__(self, 'shape', shape)
        object.__setattr__(self, 'chunks', chunks)
        object.__setattr__(self, 'dtype', dtype)
        object.__setattr__(self, 'fill_value', dtype.normalize_fill_value(self.fill_value))
        object.__setattr__(self, 'order', normalize_order(self.order))
        if self.compressor is not None:
            object.__setattr__(self, 'compressor', dict(self.compressor))
        object.__setattr__(self, 'attributes', MappingProxyType(dict(self.attributes)))
        object.__setattr__(self, 'writable', bool(self.writable))

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def size(self) -> int:
        return product(self.shape)

    @property
    def chunk_size(self) -> int:
        """Number of elements in one chunk."""
        return product(self.chunks)

    @property
    def cdata_shape(self) -> Tuple[int, ...]:
        """Number of chunks along each dimension."""
        return tuple(ceildiv(s, c) for s, c in zip(self.shape, self.chunks))

    @property
    def nchunks(self) -> int:
        return product(self.cdata_shape)

    @property
    def effective_fill_value(self):
        if self.fill_value is None:
            return self.dtype.default_fill_value()
        return self.fill_value

    def __hash__(self):
        # compressor and attributes are dicts, leave them out
        return hash((self.shape, self.chunks, self.dtype, self.order, self.writable))

    def evolve(self, **kwargs) -> 'ArrayDescriptor':
        return dataclasses.replace(self, **kwargs)


class Metadata2:
    ZARR_FORMAT = ZARR_FORMAT

    @classmethod
    def parse_metadata(cls, s: Union[MappingType, bytes, str]) -> MappingType[str, Any]:
        # allow stores to hand back already-parsed metadata
        if isinstance(s, Mapping):
            return s
        try:
            return json_loads(s)
        except ValueError as e:
            raise MetadataError('metadata is not valid JSON') from e

    @classmethod
    def decode_array_metadata(cls, s: Union[MappingType, bytes, str]) -> Dict[str, Any]:
        meta = cls.parse_metadata(s)

        # check metadata format
        zarr_format = meta.get('zarr_format', None)
        if zarr_format != cls.ZARR_FORMAT:
            raise UnsupportedFormatVersion(zarr_format)

        # unknown dtype tags raise UnknownDType
        dtype = decode_dtype(meta.get('dtype'))

        # extract array metadata fields
        try:
            if meta.get('filters'):
                raise MetadataError('filters are not supported: {!r}'.format(meta['filters']))
            meta = dict(
                zarr_format=meta['zarr_format'],
                shape=tuple(reversed(meta['shape'])),
                chunks=tuple(reversed(meta['chunks'])),
                dtype=dtype,
                compressor=meta['compressor'],
                fill_value=dtype.decode_fill_value(meta['fill_value']),
                order=normalize_order(meta['order']),
                filters=None,
            )
        except MetadataError:
            raise
        except Exception as e:
            raise MetadataError('error decoding metadata') from e
        else:
            return meta

    @classmethod
    def encode_array_metadata(cls, descriptor: ArrayDescriptor) -> bytes:
        dtype = descriptor.dtype
        meta = dict(
            zarr_format=cls.ZARR_FORMAT,
            shape=list(reversed(descriptor.shape)),
            chunks=list(reversed(descriptor.chunks)),
            dtype=dtype.tag,
            compressor=descriptor.compressor,
            fill_value=dtype.encode_fill_value(descriptor.fill_value),
            order=descriptor.order,
            filters=None,
        )
        return json_dumps(meta)

    @classmethod
    def decode_attributes(cls, s) -> Dict[str, Any]:
        if s is None:
            return dict()
        attrs = cls.parse_metadata(s)
        if not isinstance(attrs, Mapping):
            raise MetadataError('attributes must be a JSON object')
        return dict(attrs)

    @classmethod
    def encode_attributes(cls, attrs: MappingType[str, Any]) -> bytes:
        return json_dumps(dict(attrs))


def decode_descriptor(meta_bytes, attrs_bytes=None, writable=False) -> ArrayDescriptor:
    """Build an ArrayDescriptor from the raw ``.zarray`` and ``.zattrs`` values."""
    meta = Metadata2.decode_array_metadata(meta_bytes)
    try:
        return ArrayDescriptor(
            shape=meta['shape'],
            chunks=meta['chunks'],
            dtype=meta['dtype'],
            fill_value=meta['fill_value'],
            order=meta['order'],
            compressor=meta['compressor'],
            attributes=Metadata2.decode_attributes(attrs_bytes),
            writable=writable,
        )
    except (ShapeMismatch, ValueError) as e:
        raise MetadataError('invalid array metadata') from e


encode_array_metadata = Metadata2.encode_array_metadata
decode_array_metadata = Metadata2.decode_array_metadata
