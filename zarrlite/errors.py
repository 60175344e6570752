class MetadataError(Exception):
    pass


class _BaseZarrError(ValueError):
    _msg = ""

    def __init__(self, *args):
        super().__init__(self._msg.format(*args))


class _BaseZarrIndexError(IndexError):
    _msg = ""

    def __init__(self, *args):
        super().__init__(self._msg.format(*args))


class OutOfBoundsSelection(_BaseZarrIndexError):
    _msg = "selection [{0}, {1}] out of bounds for dimension {2} with length {3}"


class ShapeMismatch(_BaseZarrError):
    _msg = "shape mismatch: {0}"


class CorruptChunk(_BaseZarrError):
    _msg = "chunk {0!r} decoded to {1} bytes; expected {2}"


class DecodeError(_BaseZarrError):
    _msg = "failed to decode chunk {0!r}"


class AlreadyExistsError(_BaseZarrError):
    _msg = "path {0!r} already exists and is not empty"


class ArrayNotFoundError(_BaseZarrError):
    _msg = "array not found at path {0!r}"


class BadCompressorError(_BaseZarrError):
    _msg = "bad compressor; expected a codec configuration, found {0!r}"


class FSPathExistNotDir(_BaseZarrError):
    _msg = "path exists but is not a directory: {0!r}"


class UnsupportedFormatVersion(MetadataError):
    def __init__(self, version):
        super().__init__(f"unsupported zarr format: {version!r}; expected 2")


class UnknownDType(MetadataError):
    def __init__(self, tag):
        super().__init__(f"unknown dtype: {tag!r}")


class ReadOnlyError(PermissionError):
    def __init__(self):
        super().__init__("object is read-only")


def err_too_many_indices(selection, shape):
    raise IndexError(f"too many indices for array; expected {len(shape)}, got {len(selection)}")
