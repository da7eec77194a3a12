"""Pixel buffers and their projected views

A Tile is one band of pixels. ProjectedTile adds the extent and CRS the
pixels belong to; the eager ProjectedRasterTile holds a buffer, while
RasterRefTile only knows its geometry up front and asks its RasterRef for
pixels the first time they are needed.
"""
from __future__ import annotations

import abc
import dataclasses
import math
import numbers
import typing

import numpy

from .geometry import Extent

if typing.TYPE_CHECKING:
    from .ref import RasterRef

CELL_TYPE_NAMES = (
    "int8",
    "uint8",
    "int16",
    "uint16",
    "int32",
    "uint32",
    "int64",
    "uint64",
    "float32",
    "float64",
)


@dataclasses.dataclass(frozen=True)
class CellType:
    """Numeric encoding of every pixel in a raster, with optional no-data value"""

    name: str
    nodata: int | float | None = None

    def __post_init__(self):
        if self.name not in CELL_TYPE_NAMES:
            raise ValueError(f"Unsupported cell type {self.name!r}")
        if self.nodata is not None and (
            isinstance(self.nodata, bool) or not isinstance(self.nodata, numbers.Real)
        ):
            raise ValueError(f"Invalid no-data value {self.nodata!r}")

    def __eq__(self, other):
        if not isinstance(other, CellType) or other.name != self.name:
            return False
        if self.nodata is None or other.nodata is None:
            return self.nodata is None and other.nodata is None
        # NaN no-data is the usual float convention and has to equal itself
        if math.isnan(self.nodata) and math.isnan(other.nodata):
            return True
        return self.nodata == other.nodata

    def __hash__(self):
        nodata = "nan" if self.nodata is not None and math.isnan(self.nodata) else self.nodata
        return hash((self.name, nodata))

    @property
    def dtype(self) -> numpy.dtype:
        return numpy.dtype(self.name)

    @property
    def is_floating_point(self) -> bool:
        return self.dtype.kind == "f"

    @property
    def fill_value(self) -> int | float:
        """Value for pixels with no data, falls back to zero without a no-data value"""
        if self.nodata is not None:
            return self.nodata
        return math.nan if self.is_floating_point else 0

    def with_no_data(self, nodata: int | float | None) -> CellType:
        return CellType(self.name, nodata)

    @staticmethod
    def from_dtype(dtype, nodata: int | float | None = None) -> CellType:
        return CellType(numpy.dtype(dtype).name, nodata)


class Tile:
    """Single band of pixels with its cell type"""

    def __init__(self, array: numpy.ndarray, cell_type: CellType | None = None):
        if array.ndim != 2:
            raise ValueError(f"Expected a single band 2-D array, got shape {array.shape}")
        if cell_type is None:
            cell_type = CellType.from_dtype(array.dtype)
        elif array.dtype != cell_type.dtype:
            array = array.astype(cell_type.dtype)
        # Realized buffers are cached and shared between callers
        array = array.view()
        array.setflags(write=False)
        self.array = array
        self.cell_type = cell_type

    def __repr__(self):
        return f"Tile(cols={self.cols}, rows={self.rows}, cell_type={self.cell_type})"

    def __eq__(self, other):
        if not isinstance(other, Tile):
            return NotImplemented
        return self.cell_type == other.cell_type and numpy.array_equal(
            self.array, other.array, equal_nan=self.cell_type.is_floating_point
        )

    __hash__ = None

    @property
    def cols(self) -> int:
        return self.array.shape[1]

    @property
    def rows(self) -> int:
        return self.array.shape[0]

    @property
    def dimensions(self) -> tuple[int, int]:
        return self.cols, self.rows

    def convert(self, cell_type: CellType) -> Tile:
        """Return a copy of this tile in another cell type, no-data pixels follow along"""
        array = self.array.astype(cell_type.dtype)
        if self.cell_type.nodata is not None and cell_type.nodata is not None:
            if self.cell_type.is_floating_point and math.isnan(self.cell_type.nodata):
                mask = numpy.isnan(self.array)
            else:
                mask = self.array == self.cell_type.nodata
            array[mask] = cell_type.nodata
        return Tile(array, cell_type)

    def to_bytes(self) -> bytes:
        """Raw little-endian pixel bytes in row-major order"""
        return self.array.astype(self.cell_type.dtype.newbyteorder("<")).tobytes()


class ProjectedTile(abc.ABC):
    """Pixels known to cover an extent in a CRS"""

    extent: Extent
    crs: str

    @property
    @abc.abstractmethod
    def tile(self) -> Tile:
        """Pixel buffer, may be read on first access"""

    @property
    def cell_type(self) -> CellType:
        return self.tile.cell_type

    @property
    def cols(self) -> int:
        return self.tile.cols

    @property
    def rows(self) -> int:
        return self.tile.rows

    @property
    def array(self) -> numpy.ndarray:
        return self.tile.array

    def convert(self, cell_type: CellType) -> ProjectedRasterTile:
        return ProjectedRasterTile(self.tile.convert(cell_type), self.extent, self.crs)


class ProjectedRasterTile(ProjectedTile):
    """Realized pixels with the extent and CRS they cover"""

    def __init__(self, tile: Tile, extent: Extent, crs: str):
        self._tile = tile
        self.extent = extent
        self.crs = crs

    def __repr__(self):
        return f"ProjectedRasterTile({self._tile!r}, extent={self.extent}, crs={self.crs!r})"

    def __eq__(self, other):
        if not isinstance(other, ProjectedRasterTile):
            return NotImplemented
        return (self.extent, self.crs, self._tile) == (other.extent, other.crs, other._tile)

    __hash__ = None

    @property
    def tile(self) -> Tile:
        return self._tile


class RasterRefTile(ProjectedTile):
    """Projected tile whose pixels come from a RasterRef on demand

    Extent, CRS, cell type and dimensions come straight from the reference so
    nothing is read until the pixels themselves are asked for.
    """

    def __init__(self, ref: RasterRef):
        self.ref = ref
        self.extent = ref.extent
        self.crs = ref.crs

    def __repr__(self):
        return f"RasterRefTile({self.ref!r})"

    @property
    def tile(self) -> Tile:
        return self.ref.realized_tile()

    @property
    def cell_type(self) -> CellType:
        return self.ref.cell_type

    @property
    def cols(self) -> int:
        return self.ref.cols

    @property
    def rows(self) -> int:
        return self.ref.rows

    def convert(self, cell_type: CellType) -> ProjectedRasterTile:
        return ProjectedRasterTile(
            self.ref.realized_tile().convert(cell_type), self.extent, self.crs
        )
