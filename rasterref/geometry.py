"""Extents, pixel grids and tile layouts

Pure arithmetic only, nothing in here touches pixels or files.

>>> grid = RasterExtent(Extent(0, 0, 100, 100), 10, 10)
>>> grid.grid_bounds_for(Extent(25, 0, 75, 100))
GridBounds(col_min=2, row_min=0, col_max=7, row_max=9)
"""
from __future__ import annotations

import dataclasses
import math
import typing

# Tolerance in cell units when deciding if an edge falls on a cell boundary
EPSILON = 1e-7


@dataclasses.dataclass(frozen=True)
class Extent:
    """Axis-aligned bounding rectangle in some CRS"""

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def __post_init__(self):
        if not all(math.isfinite(v) for v in self.as_tuple()):
            raise ValueError(f"Non-finite extent {self.as_tuple()}")
        if self.xmin > self.xmax or self.ymin > self.ymax:
            raise ValueError(f"Invalid extent {self.as_tuple()}")

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.xmin + self.xmax) / 2, (self.ymin + self.ymax) / 2

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def as_tuple(self) -> tuple[float, float, float, float]:
        return self.xmin, self.ymin, self.xmax, self.ymax

    def intersects(self, other: Extent) -> bool:
        """True only for an overlap with positive area, touching edges don't count"""
        return (
            self.xmin < other.xmax
            and other.xmin < self.xmax
            and self.ymin < other.ymax
            and other.ymin < self.ymax
        )

    def intersection(self, other: Extent) -> Extent | None:
        if not self.intersects(other):
            return None
        return Extent(
            max(self.xmin, other.xmin),
            max(self.ymin, other.ymin),
            min(self.xmax, other.xmax),
            min(self.ymax, other.ymax),
        )

    def contains(self, other: Extent) -> bool:
        return (
            self.xmin <= other.xmin
            and self.ymin <= other.ymin
            and other.xmax <= self.xmax
            and other.ymax <= self.ymax
        )


@dataclasses.dataclass(frozen=True)
class GridBounds:
    """Inclusive window of pixel columns and rows"""

    col_min: int
    row_min: int
    col_max: int
    row_max: int

    @property
    def width(self) -> int:
        return self.col_max - self.col_min + 1

    @property
    def height(self) -> int:
        return self.row_max - self.row_min + 1

    @property
    def size(self) -> int:
        return max(0, self.width) * max(0, self.height)

    def intersection(self, other: GridBounds) -> GridBounds | None:
        col_min, row_min = max(self.col_min, other.col_min), max(self.row_min, other.row_min)
        col_max, row_max = min(self.col_max, other.col_max), min(self.row_max, other.row_max)
        if col_min > col_max or row_min > row_max:
            return None
        return GridBounds(col_min, row_min, col_max, row_max)


def _floor_with_tolerance(value: float) -> float:
    rounded = round(value)
    if abs(value - rounded) < EPSILON:
        return float(rounded)
    return float(math.floor(value))


@dataclasses.dataclass(frozen=True)
class RasterExtent:
    """Pixel grid of cols x rows cells laid over an extent, origin at the upper left"""

    extent: Extent
    cols: int
    rows: int

    def __post_init__(self):
        if self.cols <= 0 or self.rows <= 0:
            raise ValueError(f"Grid needs positive dimensions, got {self.cols}x{self.rows}")

    @property
    def cell_width(self) -> float:
        return self.extent.width / self.cols

    @property
    def cell_height(self) -> float:
        return self.extent.height / self.rows

    @property
    def grid_bounds(self) -> GridBounds:
        return GridBounds(0, 0, self.cols - 1, self.rows - 1)

    def map_x_to_grid_double(self, x: float) -> float:
        return (x - self.extent.xmin) / self.cell_width

    def map_y_to_grid_double(self, y: float) -> float:
        return (self.extent.ymax - y) / self.cell_height

    def map_to_grid(self, x: float, y: float) -> tuple[int, int]:
        """Return (col, row) of the cell containing a map coordinate"""
        col = _floor_with_tolerance(self.map_x_to_grid_double(x))
        row = _floor_with_tolerance(self.map_y_to_grid_double(y))
        return int(col), int(row)

    def grid_to_map(self, col: int, row: int) -> tuple[float, float]:
        """Return the map coordinate of a cell centre"""
        x = self.extent.xmin + (col + 0.5) * self.cell_width
        y = self.extent.ymax - (row + 0.5) * self.cell_height
        return x, y

    def grid_bounds_for(self, extent: Extent, clamp: bool = False) -> GridBounds:
        """Map an extent onto this grid

        West and north edges take the cell they fall in. East and south edges
        only take the cell they fall in when they cut through it, an edge lying
        on a cell boundary stays exclusive.

        Without clamp the window may reach beyond the grid.
        """
        col_min, row_min = self.map_to_grid(extent.xmin, extent.ymax)

        col_max_double = self.map_x_to_grid_double(extent.xmax)
        if abs(col_max_double - _floor_with_tolerance(col_max_double)) < EPSILON:
            col_max = int(round(col_max_double)) - 1
        else:
            col_max = int(math.floor(col_max_double))

        row_max_double = self.map_y_to_grid_double(extent.ymin)
        if abs(row_max_double - _floor_with_tolerance(row_max_double)) < EPSILON:
            row_max = int(round(row_max_double)) - 1
        else:
            row_max = int(math.floor(row_max_double))

        # Degenerate extents still cover the cell they sit in
        col_max, row_max = max(col_min, col_max), max(row_min, row_max)

        if clamp:
            return GridBounds(
                min(max(col_min, 0), self.cols - 1),
                min(max(row_min, 0), self.rows - 1),
                min(max(col_max, 0), self.cols - 1),
                min(max(row_max, 0), self.rows - 1),
            )
        return GridBounds(col_min, row_min, col_max, row_max)

    def extent_for_grid_bounds(self, bounds: GridBounds) -> Extent:
        """Return the extent covered by a window of whole cells"""
        return Extent(
            self.extent.xmin + bounds.col_min * self.cell_width,
            self.extent.ymax - (bounds.row_max + 1) * self.cell_height,
            self.extent.xmin + (bounds.col_max + 1) * self.cell_width,
            self.extent.ymax - bounds.row_min * self.cell_height,
        )


@dataclasses.dataclass(frozen=True)
class TileLayout:
    """Grid of layout_cols x layout_rows tiles, each tile_cols x tile_rows pixels"""

    layout_cols: int
    layout_rows: int
    tile_cols: int
    tile_rows: int

    @staticmethod
    def for_grid(cols: int, rows: int, tile_cols: int, tile_rows: int) -> TileLayout:
        """Smallest layout of tile_cols x tile_rows blocks covering a cols x rows grid"""
        if tile_cols <= 0 or tile_rows <= 0:
            raise ValueError(f"Invalid block size {tile_cols}x{tile_rows}")
        return TileLayout(
            -(-cols // tile_cols),
            -(-rows // tile_rows),
            tile_cols,
            tile_rows,
        )

    @property
    def total_cols(self) -> int:
        return self.layout_cols * self.tile_cols

    @property
    def total_rows(self) -> int:
        return self.layout_rows * self.tile_rows


@dataclasses.dataclass(frozen=True)
class LayoutDefinition:
    """Tile layout placed over an extent, with one key per tile"""

    extent: Extent
    tile_layout: TileLayout

    @property
    def tile_width(self) -> float:
        return self.extent.width / self.tile_layout.layout_cols

    @property
    def tile_height(self) -> float:
        return self.extent.height / self.tile_layout.layout_rows

    def key_extent(self, col: int, row: int) -> Extent:
        """Return the extent of the tile at layout key (col, row)"""
        xmin = self.extent.xmin + col * self.tile_width
        ymax = self.extent.ymax - row * self.tile_height
        return Extent(xmin, ymax - self.tile_height, xmin + self.tile_width, ymax)

    def keys(self) -> typing.Iterator[tuple[int, int]]:
        for row in range(self.tile_layout.layout_rows):
            for col in range(self.tile_layout.layout_cols):
                yield col, row

    def tile_extents(self) -> list[Extent]:
        return [self.key_extent(col, row) for col, row in self.keys()]


def block_extents(raster_extent: RasterExtent, tile_layout: TileLayout) -> list[Extent]:
    """Extents of a raster's internal blocks, row-major, clipped to the raster

    Blocks are anchored at the upper left pixel, the last column and row of
    blocks may hang over the raster edge and get cut back to it.
    """
    extents = []
    for block_row in range(tile_layout.layout_rows):
        for block_col in range(tile_layout.layout_cols):
            bounds = GridBounds(
                block_col * tile_layout.tile_cols,
                block_row * tile_layout.tile_rows,
                min((block_col + 1) * tile_layout.tile_cols, raster_extent.cols) - 1,
                min((block_row + 1) * tile_layout.tile_rows, raster_extent.rows) - 1,
            )
            if bounds.size > 0:
                extents.append(raster_extent.extent_for_grid_bounds(bounds))
    return extents
