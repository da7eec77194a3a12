"""Lazy, windowed references to geospatial rasters

Raster references address one band of a raster source, optionally narrowed to
a sub-extent, and only read pixels when they are first needed. They can be
split along the source's internal blocks and stored as rows of Arrow/Parquet
tables.
"""
import logging

from .errors import DecodeError, PreconditionError, RasterRefError, ReadError
from .geometry import Extent, GridBounds, LayoutDefinition, RasterExtent, TileLayout
from .ref import RasterRef, default_layout
from .source import (
    ArrayRasterSource,
    RasterSource,
    decode_source,
    encode_source,
    register_source,
)
from .gdal_source import GDALRasterSource
from .tiles import CellType, ProjectedRasterTile, ProjectedTile, RasterRefTile, Tile


def setup_logging(verbose: bool):
    """Configure logging based on verbosity."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
        )


__all__ = [
    "ArrayRasterSource",
    "CellType",
    "DecodeError",
    "Extent",
    "GDALRasterSource",
    "GridBounds",
    "LayoutDefinition",
    "PreconditionError",
    "ProjectedRasterTile",
    "ProjectedTile",
    "RasterExtent",
    "RasterRef",
    "RasterRefError",
    "RasterRefTile",
    "RasterSource",
    "ReadError",
    "Tile",
    "TileLayout",
    "decode_source",
    "default_layout",
    "encode_source",
    "register_source",
    "setup_logging",
]
