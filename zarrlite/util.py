import json
import logging
import math
import numbers
import time
from typing import Any, Callable, Dict, Tuple, Type

from numcodecs.compat import ensure_text

from zarrlite.errors import ShapeMismatch

logger = logging.getLogger(__name__)


def json_dumps(o: Any) -> bytes:
    """Encode metadata the way ``.zarray`` and ``.zattrs`` are written: sorted
    keys, 4-space indent, ASCII only."""
    return json.dumps(o, indent=4, sort_keys=True, ensure_ascii=True,
                      separators=(',', ': ')).encode('ascii')


def json_loads(s) -> Dict[str, Any]:
    return json.loads(ensure_text(s, 'utf-8'))


def _as_int_tuple(value) -> tuple:
    if isinstance(value, numbers.Integral):
        return (int(value),)
    return tuple(value)


def normalize_shape(shape) -> Tuple[int, ...]:
    """Shape tuple of positive lengths from an int or a sequence of ints."""
    if shape is None:
        raise TypeError('shape is None')
    shape = tuple(int(n) for n in _as_int_tuple(shape))
    if not shape:
        raise ValueError('arrays must have at least one dimension')
    if min(shape) < 1:
        raise ValueError('all dimensions must be positive, found {!r}'.format(shape))
    return shape


def normalize_chunks(chunks: Any, shape: Tuple[int, ...]) -> Tuple[int, ...]:
    """Chunk shape for an array of the (normalized) `shape`.

    ``None`` gives a single chunk covering the array. Within a sequence,
    ``None`` or ``-1`` spans the whole dimension.
    """
    if chunks is None or chunks is False:
        return shape
    chunks = _as_int_tuple(chunks)
    if len(chunks) != len(shape):
        raise ShapeMismatch('chunks {!r} must have the same number of dimensions as '
                            'shape {!r}'.format(chunks, shape))
    result = []
    for c, n in zip(chunks, shape):
        c = n if c is None or c == -1 else int(c)
        if c < 1:
            raise ValueError('all chunk dimensions must be positive, found {!r}'
                             .format(chunks))
        result.append(c)
    return tuple(result)


def normalize_order(order: str) -> str:
    normalized = str(order).upper()
    if normalized not in ('C', 'F'):
        raise ValueError("order must be 'C' or 'F', found {!r}".format(order))
    return normalized


def ceildiv(a: int, b: int) -> int:
    return -(-a // b)


def product(t: Tuple[int, ...]) -> int:
    return math.prod(t)


def retry_call(fn: Callable, *args,
               exceptions: Tuple[Type[BaseException], ...] = (),
               retries: int = 10,
               wait: float = 0.1) -> Any:
    """Return ``fn(*args)``, calling it up to `retries` times while it raises one of
    `exceptions`, sleeping `wait` seconds between attempts. The last failure
    propagates."""
    for attempt in range(retries, 0, -1):
        try:
            return fn(*args)
        except exceptions:
            if attempt == 1:
                raise
            logger.debug('%r failed, %d attempt(s) left', fn, attempt - 1)
        time.sleep(wait)
