"""Element types supported by zarrlite arrays.

Each element type is a variant with a fixed in-memory layout given by a
NumPy dtype. Variants are looked up by their Zarr v2 ``dtype`` tag, e.g.
``"<f8"`` or ``"<U12"``. Adding a numeric kind means registering a new
variant in ``numeric_types``.
"""
import re
from typing import Any, Dict

import numpy as np

from zarrlite.errors import UnknownDType


class ElementType:
    """Base class for element type variants."""

    kind = None

    def __init__(self, tag: str):
        self.tag = tag
        self.dtype = np.dtype(tag)

    @property
    def itemsize(self) -> int:
        return self.dtype.itemsize

    def default_fill_value(self):
        """Value used for never-written positions when no fill value is set."""
        return np.zeros((), dtype=self.dtype)[()]

    def normalize_fill_value(self, fill_value):
        if fill_value is None:
            return None
        try:
            return np.array(fill_value, dtype=self.dtype)[()]
        except (TypeError, ValueError) as e:
            # re-raise with our own error message to be helpful
            raise ValueError('fill_value {!r} is not valid for dtype {}; nested '
                             'exception: {}'.format(fill_value, self.tag, e)) from e

    def encode_fill_value(self, v) -> Any:
        raise NotImplementedError

    def decode_fill_value(self, v):
        raise NotImplementedError

    def __eq__(self, other):
        return isinstance(other, ElementType) and self.tag == other.tag

    def __hash__(self):
        return hash(self.tag)

    def __repr__(self):
        return '{}({!r})'.format(type(self).__name__, self.tag)


class IntegerType(ElementType):
    kind = 'i'

    def encode_fill_value(self, v):
        if v is None:
            return None
        return int(v)

    def decode_fill_value(self, v):
        if v is None:
            return None
        return np.array(v, dtype=self.dtype)[()]


class FloatType(ElementType):
    kind = 'f'

    def encode_fill_value(self, v):
        if v is None:
            return None
        if np.isnan(v):
            return 'NaN'
        elif np.isposinf(v):
            return 'Infinity'
        elif np.isneginf(v):
            return '-Infinity'
        else:
            return float(v)

    def decode_fill_value(self, v):
        if v is None:
            return None
        if v == 'NaN':
            return self.dtype.type(np.nan)
        elif v == 'Infinity':
            return self.dtype.type(np.inf)
        elif v == '-Infinity':
            return self.dtype.type(-np.inf)
        else:
            return np.array(v, dtype=self.dtype)[()]


class FixedLengthUTF8(ElementType):
    """Fixed-length unicode strings of at most ``length`` characters."""

    kind = 'U'

    def __init__(self, tag: str):
        super().__init__(tag)
        self.length = self.dtype.itemsize // 4

    def default_fill_value(self):
        return self.dtype.type('')

    def normalize_fill_value(self, fill_value):
        if fill_value is None:
            return None
        # special case unicode, only accept str so bytes are not silently decoded
        if not isinstance(fill_value, str):
            raise ValueError('fill_value {!r} is not valid for dtype {}; must be a '
                             'unicode string'.format(fill_value, self.tag))
        if len(fill_value) > self.length:
            raise ValueError('fill_value {!r} is longer than the {} characters of dtype {}'
                             .format(fill_value, self.length, self.tag))
        return self.dtype.type(fill_value)

    def encode_fill_value(self, v):
        if v is None:
            return None
        return str(v)

    def decode_fill_value(self, v):
        if v is None:
            return None
        # be lenient, some writers store 0 as the fill value of string arrays
        if not isinstance(v, str):
            v = '' if v == 0 else str(v)
        return self.dtype.type(v)


numeric_types: Dict[str, type] = {
    '|i1': IntegerType,
    '<i2': IntegerType,
    '<i4': IntegerType,
    '<i8': IntegerType,
    '|u1': IntegerType,
    '<u2': IntegerType,
    '<u4': IntegerType,
    '<u8': IntegerType,
    '<f4': FloatType,
    '<f8': FloatType,
}

_utf8_tag = re.compile(r'^<U(\d+)$')


def decode_dtype(tag: str) -> ElementType:
    """Look up the element type for a Zarr v2 dtype tag."""
    if not isinstance(tag, str):
        raise UnknownDType(tag)
    if tag in numeric_types:
        return numeric_types[tag](tag)
    m = _utf8_tag.match(tag)
    if m and int(m.group(1)) > 0:
        return FixedLengthUTF8(tag)
    raise UnknownDType(tag)


def normalize_dtype(dtype) -> ElementType:
    """Convenience function to normalize the `dtype` argument given by users.

    Accepts an ``ElementType``, a dtype tag, a NumPy dtype or anything NumPy
    can turn into one (e.g. ``float``, ``'i4'``, ``'U10'``).
    """
    if isinstance(dtype, ElementType):
        return dtype
    if dtype is None:
        return decode_dtype('<f8')
    if isinstance(dtype, str):
        if dtype in numeric_types or _utf8_tag.match(dtype):
            return decode_dtype(dtype)
    try:
        dt = np.dtype(dtype)
    except TypeError as e:
        raise UnknownDType(dtype) from e
    if dt.kind == 'U':
        if dt.itemsize == 0:
            raise UnknownDType(dtype)
        return decode_dtype('<U{}'.format(dt.itemsize // 4))
    # encode as little-endian tag, the only byte order zarrlite writes
    return decode_dtype(dt.newbyteorder('<').str)
