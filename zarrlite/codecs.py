"""Compressor lookup and the chunk codec used by arrays.

Compressors are resolved by their ``id`` through the numcodecs registry, so
any codec registered with :func:`numcodecs.registry.register_codec` can be
named in array metadata.
"""
from typing import Any, Dict, Optional

import numcodecs
import numpy as np
from numcodecs.abc import Codec
from numcodecs.compat import ensure_bytes, ensure_contiguous_ndarray
from numcodecs.registry import codec_registry

from zarrlite.errors import BadCompressorError, CorruptChunk, DecodeError


def get_codec(config: Optional[Dict[str, Any]]) -> Optional[Codec]:
    """Instantiate the compressor described by `config`, or None for no compression."""
    if config is None:
        return None
    if isinstance(config, Codec):
        return config
    if not isinstance(config, dict) or 'id' not in config:
        raise BadCompressorError(config)
    try:
        # numcodecs also loads codecs registered via entry points here
        return numcodecs.get_codec(dict(config))
    except (ValueError, KeyError, TypeError) as e:
        raise BadCompressorError(config) from e


def available_codecs():
    """Identifiers of the compressors that can be named in array metadata."""
    return sorted(codec_registry)


class ChunkCodec(object):
    """Encodes chunk buffers to bytes and decodes them back in place.

    Parameters
    ----------
    compressor : Codec, optional
        The numcodecs codec used for compression. If None, chunks are stored
        as their raw bytes.

    """

    def __init__(self, compressor: Optional[Codec] = None):
        self.compressor = compressor

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]]) -> 'ChunkCodec':
        return cls(get_codec(config))

    def get_config(self) -> Optional[Dict[str, Any]]:
        if self.compressor is None:
            return None
        return self.compressor.get_config()

    @property
    def codec_id(self) -> Optional[str]:
        return None if self.compressor is None else self.compressor.codec_id

    def encode(self, buffer: np.ndarray) -> bytes:
        if self.compressor is None:
            return ensure_bytes(buffer)
        return ensure_bytes(self.compressor.encode(buffer))

    def decode_into(self, cdata, out: np.ndarray, key: Optional[str] = None) -> np.ndarray:
        """Decode `cdata` into the flat, contiguous array `out`."""
        try:
            if self.compressor is None:
                chunk = cdata
            else:
                chunk = self.compressor.decode(cdata)
            chunk = ensure_contiguous_ndarray(chunk)
        except Exception as e:
            raise DecodeError(key) from e

        if chunk.nbytes != out.nbytes:
            raise CorruptChunk(key, chunk.nbytes, out.nbytes)
        np.copyto(out.view('u1'), chunk.reshape(-1).view('u1'))
        return out

    def __eq__(self, other):
        return isinstance(other, ChunkCodec) and self.compressor == other.compressor

    def __repr__(self):
        return 'ChunkCodec({!r})'.format(self.compressor)
