"""Delayed-read raster references

A RasterRef addresses one band of a RasterSource, optionally narrowed to a
sub-extent. Creating, comparing, splitting and encoding references never
reads pixels; the read happens on the first call to tile() and its result is
kept for the lifetime of the instance.

Concurrent first access on one instance is serialized by a per-instance lock:
one thread reads, the others wait for its result. A failed read leaves the
reference unrealized and raises to the caller.
"""
from __future__ import annotations

import dataclasses
import logging
import threading

from .errors import PreconditionError, ReadError
from .geometry import Extent, GridBounds, LayoutDefinition, TileLayout
from .source import RasterSource
from .tiles import CellType, ProjectedRasterTile, RasterRefTile, Tile

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class RasterRef:
    """A (source, optional sub-extent) pair that reads its pixels at most once"""

    source: RasterSource
    subextent: Extent | None = None

    _lock: threading.Lock = dataclasses.field(
        init=False, repr=False, compare=False, default_factory=threading.Lock
    )
    _cell: list = dataclasses.field(init=False, repr=False, compare=False, default_factory=list)

    def __post_init__(self):
        if self.subextent is not None and self.subextent.is_empty():
            raise ValueError(f"Sub-extent must not be empty, got {self.subextent}")

    def __reduce__(self):
        # Pickle the address only, a copy starts unrealized with its own lock
        return RasterRef, (self.source, self.subextent)

    def __copy__(self):
        return RasterRef(self.source, self.subextent)

    def __deepcopy__(self, memo):
        return RasterRef(self.source, self.subextent)

    @property
    def crs(self) -> str:
        return self.source.crs

    @property
    def extent(self) -> Extent:
        if self.subextent is None:
            return self.source.extent
        return self.subextent

    @property
    def projected_extent(self) -> tuple[Extent, str]:
        return self.extent, self.crs

    @property
    def grid_bounds(self) -> GridBounds:
        return self.source.raster_extent.grid_bounds_for(self.extent)

    @property
    def cols(self) -> int:
        return self.grid_bounds.width

    @property
    def rows(self) -> int:
        return self.grid_bounds.height

    @property
    def cell_type(self) -> CellType:
        return self.source.cell_type

    @property
    def is_realized(self) -> bool:
        return bool(self._cell)

    def with_subextent(self, extent: Extent | None) -> RasterRef:
        """New reference to the same source over another extent"""
        return RasterRef(self.source, extent)

    def tile(self) -> ProjectedRasterTile:
        """Materialize pixels and package them with this reference's geometry"""
        return ProjectedRasterTile(self.realized_tile(), self.extent, self.crs)

    def lazy_tile(self) -> RasterRefTile:
        """Projected tile that only reads once its pixels are accessed"""
        return RasterRefTile(self)

    def realized_tile(self) -> Tile:
        """Pixels for this reference, read from the source on first call only"""
        if self._cell:
            return self._cell[0]

        with self._lock:
            if not self._cell:
                self._cell.append(self._read())
            return self._cell[0]

    def _read(self) -> Tile:
        if self.source.band_count != 1:
            raise PreconditionError(
                f"Expected a single band source, {self.source} has {self.source.band_count} bands"
            )

        extent = self.extent
        logger.debug("Fetching %s from %s", extent, self.source)

        try:
            tile = self.source.read(extent)
        except ReadError:
            raise
        except Exception as e:
            raise ReadError(f"Failed to read {extent} from {self.source}: {e}", extent) from e

        if not isinstance(tile, Tile):
            raise ReadError(f"{self.source} returned {type(tile).__name__}, not a Tile", extent)
        if tile.dimensions != (self.cols, self.rows):
            raise ReadError(
                f"{self.source} returned {tile.cols}x{tile.rows} pixels "
                f"for a {self.cols}x{self.rows} window",
                extent,
            )
        if tile.cell_type.name != self.cell_type.name:
            raise ReadError(
                f"{self.source} returned {tile.cell_type.name} pixels, expected {self.cell_type.name}",
                extent,
            )
        return tile

    def split_to_native(self) -> list[RasterRef]:
        """Split into references over the source's internal blocks

        Keeps every native block overlapping this extent with positive area
        and returns one reference per block, covering the whole block rather
        than the overlap. Sources without native tiling yield [self].
        """
        tiling = self.source.native_tiling
        if not tiling:
            return [self]

        extent = self.extent
        refs = [RasterRef(self.source, block) for block in tiling if block.intersects(extent)]
        logger.debug("Split %s into %s native blocks of %s", extent, len(refs), len(tiling))
        return refs


def default_layout(ref: RasterRef) -> LayoutDefinition:
    """Layout over a reference's extent, from the native layout or as one tile"""
    tile_layout = ref.source.native_layout or TileLayout(1, 1, ref.cols, ref.rows)
    return LayoutDefinition(ref.extent, tile_layout)
