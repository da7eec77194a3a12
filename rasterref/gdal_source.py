"""Raster source backed by any GDAL-readable file

Required packages:
    - GDAL <https://pypi.org/project/GDAL/>

Metadata is read once by GDALRasterSource.open() and carried in the encoded
source, so decoding one on another machine needs no file access until pixels
are read.
"""
from __future__ import annotations

import logging

from .errors import DecodeError, ReadError
from .geometry import Extent, TileLayout
from .source import RasterSource, read_window, register_source
from .tiles import CellType, Tile

logger = logging.getLogger(__name__)


def _import_gdal():
    # Import osgeo lazily so the rest of the package works without GDAL
    import osgeo.gdal

    osgeo.gdal.UseExceptions()
    return osgeo.gdal


def _gdal_cell_types(gdal) -> dict[int, str]:
    """Map GDAL data types to cell type names"""
    return {
        gdal.GDT_Byte: "uint8",
        gdal.GDT_Float32: "float32",
        gdal.GDT_Float64: "float64",
        gdal.GDT_Int16: "int16",
        gdal.GDT_Int32: "int32",
        gdal.GDT_Int64: "int64",
        gdal.GDT_Int8: "int8",
        gdal.GDT_UInt16: "uint16",
        gdal.GDT_UInt32: "uint32",
        gdal.GDT_UInt64: "uint64",
    }


def _crs_string(ds: "osgeo.gdal.Dataset") -> str:  # noqa: F821 (osgeo types imported lazily)
    """Prefer an "EPSG:<code>" string, fall back to WKT"""
    sref = ds.GetSpatialRef()
    if sref is None:
        return ""
    authority, code = sref.GetAuthorityName(None), sref.GetAuthorityCode(None)
    if authority and code and authority.upper() == "EPSG":
        return f"EPSG:{code}"
    return sref.ExportToWkt()


@register_source("gdal")
class GDALRasterSource(RasterSource):
    """One GDAL dataset, or one band of it when band is set

    With band=None the source exposes all bands of the dataset and can't be
    materialized as a single tile, the caller is expected to open one source
    per band instead.
    """

    def __init__(
        self,
        uri: str,
        band: int | None,
        crs: str,
        geotransform: tuple[float, float, float, float, float, float],
        cols: int,
        rows: int,
        cell_type: CellType,
        band_count: int,
        block_size: tuple[int, int] | None = None,
    ):
        xoff, xres, xskew, yoff, yskew, yres = geotransform
        if xskew != 0 or yskew != 0:
            raise ValueError(f"Rotated rasters are not supported: {uri}")
        if xres <= 0 or yres >= 0:
            raise ValueError(f"Only north-up rasters are supported: {uri}")

        self.uri = uri
        self.band = band
        self.geotransform = tuple(geotransform)
        self.block_size = None if block_size is None else tuple(block_size)
        self._crs = crs
        self._cols = cols
        self._rows = rows
        self._cell_type = cell_type
        self._band_count = band_count
        self._extent = Extent(xoff, yoff + rows * yres, xoff + cols * xres, yoff)

    @classmethod
    def open(cls, uri: str, band: int | None = None) -> GDALRasterSource:
        """Read metadata from a dataset, band is 1-based as in GDAL"""
        gdal = _import_gdal()
        ds = gdal.Open(uri, gdal.GA_ReadOnly)
        try:
            if band is not None and not 1 <= band <= ds.RasterCount:
                raise ValueError(f"{uri} has no band {band}, band count is {ds.RasterCount}")
            gdal_band = ds.GetRasterBand(band or 1)
            nodata = gdal_band.GetNoDataValue()
            cell_type = CellType(_gdal_cell_types(gdal)[gdal_band.DataType], nodata)
            source = cls(
                uri,
                band,
                _crs_string(ds),
                ds.GetGeoTransform(),
                ds.RasterXSize,
                ds.RasterYSize,
                cell_type,
                1 if band is not None else ds.RasterCount,
                tuple(gdal_band.GetBlockSize()),
            )
        finally:
            ds = None

        logger.info("Opened %s", source)
        return source

    def __repr__(self):
        return f"GDALRasterSource({self.uri!r}, band={self.band})"

    def _key(self):
        return (
            self.uri,
            self.band,
            self._crs,
            self.geotransform,
            self._cols,
            self._rows,
            self._cell_type,
            self._band_count,
            self.block_size,
        )

    def __eq__(self, other):
        if not isinstance(other, GDALRasterSource):
            return NotImplemented
        return self._key() == other._key()

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
        return self._band_count

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def native_layout(self) -> TileLayout | None:
        if self.block_size is None:
            return None
        return TileLayout.for_grid(self._cols, self._rows, *self.block_size)

    def read(self, extent: Extent) -> Tile:
        if self._band_count != 1:
            raise ReadError(f"Cannot read {self._band_count} bands of {self.uri} as one tile", extent)

        gdal = _import_gdal()

        # A fresh dataset handle per read keeps concurrent readers independent
        try:
            ds = gdal.Open(self.uri, gdal.GA_ReadOnly)
        except RuntimeError as e:
            raise ReadError(f"Failed to open {self.uri}: {e}", extent) from e

        try:
            gdal_band = ds.GetRasterBand(self.band or 1)

            def read_pixels(xoff, yoff, xsize, ysize):
                logger.debug("Reading %s window %s", self.uri, (xoff, yoff, xsize, ysize))
                return gdal_band.ReadAsArray(xoff, yoff, xsize, ysize)

            return read_window(self.raster_extent, extent, self._cell_type, read_pixels)
        except RuntimeError as e:
            raise ReadError(f"Failed to read {extent} from {self.uri}: {e}", extent) from e
        finally:
            ds = None

    def _encode(self) -> tuple[dict, bytes]:
        header = {
            "uri": self.uri,
            "band": self.band,
            "crs": self._crs,
            "geotransform": list(self.geotransform),
            "cols": self._cols,
            "rows": self._rows,
            "cell_type": self._cell_type.name,
            "nodata": self._cell_type.nodata,
            "band_count": self._band_count,
            "block_size": None if self.block_size is None else list(self.block_size),
        }
        return header, b""

    @classmethod
    def _decode(cls, header: dict, payload: bytes) -> GDALRasterSource:
        for key in ("uri", "crs"):
            if not isinstance(header[key], str):
                raise DecodeError(f"Invalid {key} {header[key]!r}")
        block_size = header["block_size"]
        return cls(
            header["uri"],
            header["band"],
            header["crs"],
            tuple(header["geotransform"]),
            header["cols"],
            header["rows"],
            CellType(header["cell_type"], header["nodata"]),
            header["band_count"],
            None if block_size is None else tuple(block_size),
        )
