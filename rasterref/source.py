"""Raster sources: metadata plus windowed reads, and their binary encoding

A RasterSource is the collaborator a RasterRef reads through. Sources are
registered under a type tag so that an encoded source can be decoded again
without knowing its class up front:

>>> source = ArrayRasterSource(numpy.zeros((4, 4), "uint8"), Extent(0, 0, 4, 4), "EPSG:3857")
>>> decode_source(encode_source(source)) == source
True
"""
from __future__ import annotations

import abc
import gzip
import json
import logging
import struct
import typing
import zlib

import numpy

from .errors import DecodeError, ReadError
from .geometry import Extent, RasterExtent, TileLayout, block_extents
from .tiles import CellType, Tile

logger = logging.getLogger(__name__)

# Header length prefix of an encoded source
HEADER_PREFIX = struct.Struct("<I")

SOURCE_TYPES: dict[str, type[RasterSource]] = {}


def register_source(tag: str):
    """Class decorator adding a RasterSource subclass to the codec registry"""

    def wrap(cls: type[RasterSource]) -> type[RasterSource]:
        if tag in SOURCE_TYPES and SOURCE_TYPES[tag] is not cls:
            raise ValueError(f"Source type tag {tag!r} already registered to {SOURCE_TYPES[tag]}")
        SOURCE_TYPES[tag] = cls
        cls.type_tag = tag
        return cls

    return wrap


class RasterSource(abc.ABC):
    """Metadata and windowed reads for one logical raster

    Geometry never changes over the lifetime of a source, and a source may be
    shared by any number of references reading from it concurrently.
    """

    type_tag: typing.ClassVar[str]

    @property
    @abc.abstractmethod
    def crs(self) -> str:
        """CRS as "EPSG:<code>" or WKT"""

    @property
    @abc.abstractmethod
    def extent(self) -> Extent: ...

    @property
    @abc.abstractmethod
    def cell_type(self) -> CellType: ...

    @property
    @abc.abstractmethod
    def band_count(self) -> int: ...

    @property
    @abc.abstractmethod
    def cols(self) -> int: ...

    @property
    @abc.abstractmethod
    def rows(self) -> int: ...

    @property
    def native_layout(self) -> TileLayout | None:
        """Internal block layout of the underlying file, if it has one"""
        return None

    @property
    def raster_extent(self) -> RasterExtent:
        return RasterExtent(self.extent, self.cols, self.rows)

    @property
    def native_tiling(self) -> list[Extent]:
        """Extents of the internal blocks, empty without a native layout"""
        layout = self.native_layout
        if layout is None:
            return []
        return block_extents(self.raster_extent, layout)

    @abc.abstractmethod
    def read(self, extent: Extent) -> Tile:
        """Read one band of pixels covering the grid window of an extent

        Pixels outside of the source take the cell type's no-data value.
        Raises ReadError on failure.
        """

    @abc.abstractmethod
    def _encode(self) -> tuple[dict, bytes]:
        """Return a JSON-able header and an opaque payload"""

    @classmethod
    @abc.abstractmethod
    def _decode(cls, header: dict, payload: bytes) -> RasterSource: ...


def encode_source(source: RasterSource) -> bytes:
    """Encode a registered source, no I/O happens here"""
    tag = getattr(source, "type_tag", None)
    if SOURCE_TYPES.get(tag) is not type(source):
        raise TypeError(f"{type(source).__name__} is not a registered raster source type")
    header, payload = source._encode()
    header_bytes = json.dumps({"type": tag, **header}).encode("utf8")
    return HEADER_PREFIX.pack(len(header_bytes)) + header_bytes + payload


def decode_source(data: bytes) -> RasterSource:
    """Decode a source encoded by encode_source, raising DecodeError if malformed"""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise DecodeError(f"Expected encoded source bytes, got {type(data).__name__}")
    data = bytes(data)
    if len(data) < HEADER_PREFIX.size:
        raise DecodeError(f"Encoded source too short ({len(data)} bytes)")
    (header_len,) = HEADER_PREFIX.unpack_from(data)
    header_end = HEADER_PREFIX.size + header_len
    if len(data) < header_end:
        raise DecodeError(f"Encoded source truncated, expected {header_len} header bytes")

    try:
        header = json.loads(data[HEADER_PREFIX.size : header_end].decode("utf8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Invalid source header: {e}") from e
    if not isinstance(header, dict):
        raise DecodeError("Source header is not an object")

    tag = header.pop("type", None)
    if not isinstance(tag, str) or tag not in SOURCE_TYPES:
        raise DecodeError(f"Unknown raster source type {tag!r}")

    try:
        return SOURCE_TYPES[tag]._decode(header, data[header_end:])
    except DecodeError:
        raise
    except (KeyError, TypeError, ValueError, OSError, EOFError, zlib.error) as e:
        raise DecodeError(f"Invalid {tag} source: {e}") from e


def read_window(
    raster_extent: RasterExtent,
    extent: Extent,
    cell_type: CellType,
    read_pixels: typing.Callable[[int, int, int, int], numpy.ndarray],
) -> Tile:
    """Assemble a tile for the grid window of an extent

    Only the part of the window inside the raster is handed to read_pixels as
    (xoff, yoff, xsize, ysize), the rest stays filled with no-data.
    """
    window = raster_extent.grid_bounds_for(extent)
    out = numpy.full((window.height, window.width), cell_type.fill_value, dtype=cell_type.dtype)

    inside = window.intersection(raster_extent.grid_bounds)
    if inside is not None:
        pixels = read_pixels(inside.col_min, inside.row_min, inside.width, inside.height)
        if pixels.shape != (inside.height, inside.width):
            raise ReadError(
                f"Read returned shape {pixels.shape}, expected {(inside.height, inside.width)}",
                extent,
            )
        y0, x0 = inside.row_min - window.row_min, inside.col_min - window.col_min
        out[y0 : y0 + inside.height, x0 : x0 + inside.width] = pixels

    return Tile(out, cell_type)


@register_source("array")
class ArrayRasterSource(RasterSource):
    """In-memory raster over a numpy array

    Takes a (rows, cols) array for one band or (bands, rows, cols) for several.
    An optional block_size of (tile_cols, tile_rows) declares a native layout.
    """

    def __init__(
        self,
        array: numpy.ndarray,
        extent: Extent,
        crs: str,
        cell_type: CellType | None = None,
        block_size: tuple[int, int] | None = None,
    ):
        if array.ndim == 2:
            array = array[numpy.newaxis]
        if array.ndim != 3 or 0 in array.shape:
            raise ValueError(f"Expected a non-empty 2-D or 3-D array, got shape {array.shape}")
        if cell_type is None:
            cell_type = CellType.from_dtype(array.dtype)
        array = numpy.ascontiguousarray(array, dtype=cell_type.dtype)
        array = array.view()
        array.setflags(write=False)

        self._array = array
        self._extent = extent
        self._crs = crs
        self._cell_type = cell_type
        self._layout = None if block_size is None else TileLayout.for_grid(
            array.shape[2], array.shape[1], *block_size
        )

    def __repr__(self):
        return (
            f"ArrayRasterSource(bands={self.band_count}, cols={self.cols}, "
            f"rows={self.rows}, extent={self._extent}, crs={self._crs!r})"
        )

    def _key(self):
        return type(self), self._extent, self._crs, self._cell_type, self._layout, self._array.shape

    def __eq__(self, other):
        if not isinstance(other, ArrayRasterSource):
            return NotImplemented
        return self._key() == other._key() and numpy.array_equal(
            self._array, other._array, equal_nan=self._cell_type.is_floating_point
        )

    def __hash__(self):
        return hash(self._key())

    @property
    def crs(self) -> str:
        return self._crs

    @property
    def extent(self) -> Extent:
        return self._extent

    @property
    def cell_type(self) -> CellType:
        return self._cell_type

    @property
    def band_count(self) -> int:
        return self._array.shape[0]

    @property
    def cols(self) -> int:
        return self._array.shape[2]

    @property
    def rows(self) -> int:
        return self._array.shape[1]

    @property
    def native_layout(self) -> TileLayout | None:
        return self._layout

    def read(self, extent: Extent) -> Tile:
        if self.band_count != 1:
            raise ReadError(f"Cannot read {self.band_count} bands as one tile", extent)

        def read_pixels(xoff, yoff, xsize, ysize):
            return self._array[0, yoff : yoff + ysize, xoff : xoff + xsize]

        return read_window(self.raster_extent, extent, self._cell_type, read_pixels)

    def _encode(self) -> tuple[dict, bytes]:
        header = {
            "crs": self._crs,
            "extent": list(self._extent.as_tuple()),
            "cell_type": self._cell_type.name,
            "nodata": self._cell_type.nodata,
            "shape": list(self._array.shape),
            "block_size": None
            if self._layout is None
            else [self._layout.tile_cols, self._layout.tile_rows],
        }
        data = self._array.astype(self._cell_type.dtype.newbyteorder("<")).tobytes()
        return header, gzip.compress(data)

    @classmethod
    def _decode(cls, header: dict, payload: bytes) -> ArrayRasterSource:
        if not isinstance(header["crs"], str):
            raise DecodeError(f"Invalid crs {header['crs']!r}")
        cell_type = CellType(header["cell_type"], header["nodata"])
        shape = tuple(header["shape"])
        data = gzip.decompress(payload)
        array = numpy.frombuffer(data, dtype=cell_type.dtype.newbyteorder("<")).reshape(shape)
        block_size = header["block_size"]
        return cls(
            array.astype(cell_type.dtype),
            Extent(*header["extent"]),
            header["crs"],
            cell_type,
            None if block_size is None else tuple(block_size),
        )
