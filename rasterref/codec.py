"""Record codec for storing raster references in table columns

A reference is stored as a two-field record:

    source     binary, not null   encoded RasterSource (see source.encode_source)
    subextent  struct, nullable   xmin/ymin/xmax/ymax as float64, null for the
                                  whole source extent

The same record has a compact binary form for passing single references
around outside of Arrow:

    <uint32 source length> <source bytes> <uint8 has subextent> [<4 x float64>]

Nothing here reads pixels, a decoded reference starts unrealized.
"""
from __future__ import annotations

import struct
import typing

import pyarrow

from .errors import DecodeError
from .geometry import Extent
from .ref import RasterRef
from .source import decode_source, encode_source

EXTENT_FIELDS = ("xmin", "ymin", "xmax", "ymax")

EXTENT_TYPE = pyarrow.struct([(name, pyarrow.float64()) for name in EXTENT_FIELDS])

RECORD_TYPE = pyarrow.struct(
    [
        pyarrow.field("source", pyarrow.binary(), nullable=False),
        pyarrow.field("subextent", EXTENT_TYPE, nullable=True),
    ]
)

_LENGTH = struct.Struct("<I")
_FLAG = struct.Struct("<B")
_EXTENT = struct.Struct("<4d")


def encode_extent(extent: Extent | None) -> dict | None:
    if extent is None:
        return None
    return dict(zip(EXTENT_FIELDS, extent.as_tuple()))


def decode_extent(value: typing.Mapping | None) -> Extent | None:
    if value is None:
        return None
    try:
        return Extent(*(float(value[name]) for name in EXTENT_FIELDS))
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Invalid extent record {value!r}: {e}") from e


def _reference(source, subextent: Extent | None) -> RasterRef:
    try:
        return RasterRef(source, subextent)
    except ValueError as e:
        raise DecodeError(f"Invalid reference record: {e}") from e


def encode(ref: RasterRef) -> dict:
    """Encode a reference as a row value for RECORD_TYPE"""
    return {"source": encode_source(ref.source), "subextent": encode_extent(ref.subextent)}


def decode(record: typing.Mapping) -> RasterRef:
    """Decode a RECORD_TYPE row value, raising DecodeError if malformed"""
    if not isinstance(record, typing.Mapping):
        raise DecodeError(f"Expected a record mapping, got {type(record).__name__}")
    if record.get("source") is None:
        raise DecodeError("Record has no source")
    source = decode_source(record["source"])
    return _reference(source, decode_extent(record.get("subextent")))


def encode_array(refs: typing.Iterable[RasterRef]) -> pyarrow.StructArray:
    return pyarrow.array([encode(ref) for ref in refs], type=RECORD_TYPE)


def decode_array(array: pyarrow.Array | pyarrow.ChunkedArray) -> list[RasterRef]:
    if not isinstance(array.type, pyarrow.StructType):
        raise DecodeError(f"Expected a struct column, got {array.type}")
    return [decode(record) for record in array.to_pylist()]


def to_bytes(ref: RasterRef) -> bytes:
    """Encode a reference as one binary record"""
    source = encode_source(ref.source)
    parts = [_LENGTH.pack(len(source)), source]
    if ref.subextent is None:
        parts.append(_FLAG.pack(0))
    else:
        parts.extend([_FLAG.pack(1), _EXTENT.pack(*ref.subextent.as_tuple())])
    return b"".join(parts)


def from_bytes(data: bytes) -> RasterRef:
    """Decode a binary record from to_bytes, raising DecodeError if malformed"""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodeError(f"Expected record bytes, got {type(data).__name__}")
    data = bytes(data)
    if len(data) < _LENGTH.size:
        raise DecodeError(f"Record too short ({len(data)} bytes)")

    (source_len,) = _LENGTH.unpack_from(data)
    offset = _LENGTH.size + source_len
    if len(data) < offset + _FLAG.size:
        raise DecodeError(f"Record truncated, expected {source_len} source bytes and a flag")
    source = decode_source(data[_LENGTH.size : offset])

    (has_subextent,) = _FLAG.unpack_from(data, offset)
    offset += _FLAG.size
    if has_subextent == 0:
        subextent = None
    elif has_subextent == 1:
        if len(data) < offset + _EXTENT.size:
            raise DecodeError("Record truncated in sub-extent")
        try:
            subextent = Extent(*_EXTENT.unpack_from(data, offset))
        except ValueError as e:
            raise DecodeError(f"Invalid sub-extent: {e}") from e
        offset += _EXTENT.size
    else:
        raise DecodeError(f"Invalid sub-extent flag {has_subextent}")

    if offset != len(data):
        raise DecodeError(f"{len(data) - offset} trailing bytes after record")
    return _reference(source, subextent)
