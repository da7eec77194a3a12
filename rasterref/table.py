"""Tables of raster references

Each row holds one encoded reference in a "ref" column, optionally with a
QUADBIN "block" key for spatial partitioning and, when realized eagerly, the
gzip compressed pixels in a "tile" column.

Required packages:
    - mercantile <https://pypi.org/project/mercantile/>
    - pyarrow <https://pypi.org/project/pyarrow/>
    - quadbin <https://pypi.org/project/quadbin/>
"""
from __future__ import annotations

import gzip
import logging
import typing

import mercantile
import pyarrow
import pyarrow.parquet
import quadbin

from . import codec
from .config import ReferenceTableConfig
from .ref import RasterRef

logger = logging.getLogger(__name__)

WGS84_CRS = {"EPSG:4326", "OGC:CRS84"}
WEB_MERCATOR_CRS = {"EPSG:3857", "EPSG:900913"}


def spatial_index(ref: RasterRef, resolution: int) -> int:
    """QUADBIN cell containing the centre of a reference's extent"""
    x, y = ref.extent.center
    crs = ref.crs.upper()
    if crs in WGS84_CRS:
        lng, lat = x, y
    elif crs in WEB_MERCATOR_CRS:
        lng, lat = mercantile.lnglat(x, y)
    else:
        raise ValueError(f"Can't compute a spatial index in CRS {ref.crs!r}")

    tile = mercantile.tile(lng, lat, resolution, truncate=True)
    return quadbin.tile_to_cell((tile.x, tile.y, tile.z))


def create_schema(config: ReferenceTableConfig) -> pyarrow.lib.Schema:
    """Create table schema for a ReferenceTableConfig instance"""
    fields = [("ref", codec.RECORD_TYPE)]
    if config.index_resolution is not None:
        fields.insert(0, ("block", pyarrow.uint64()))
    if config.realize:
        fields.extend(
            [("cols", pyarrow.int32()), ("rows", pyarrow.int32()), ("tile", pyarrow.binary())]
        )
    return pyarrow.schema(fields)


def iter_rows(
    refs: typing.Iterable[RasterRef], config: ReferenceTableConfig
) -> typing.Generator[dict, None, None]:
    """Yield one row dictionary per reference, or per native block when splitting"""
    for ref in refs:
        parts = ref.split_to_native() if config.split_to_native else [ref]
        for part in parts:
            row = {"ref": codec.encode(part)}
            if config.index_resolution is not None:
                row["block"] = spatial_index(part, config.index_resolution)
            if config.realize:
                tile = part.realized_tile()
                row.update(cols=tile.cols, rows=tile.rows, tile=gzip.compress(tile.to_bytes()))
            yield row


def rows_to_table(rows: list[dict], schema: pyarrow.lib.Schema) -> pyarrow.Table:
    rows_dict = {key: [row[key] for row in rows] for key in schema.names}
    return pyarrow.Table.from_pydict(rows_dict, schema=schema)


def build_table(
    refs: typing.Iterable[RasterRef], config: ReferenceTableConfig | None = None
) -> pyarrow.Table:
    """Build an in-memory table of references"""
    config = config or ReferenceTableConfig()
    return rows_to_table(list(iter_rows(refs, config)), create_schema(config))


def flush_rows_to_file(
    writer: pyarrow.parquet.ParquetWriter, schema: pyarrow.lib.Schema, rows: list[dict]
):
    """Write a list of rows then destructively clear it in-place"""
    if not rows:
        return

    writer.write_table(rows_to_table(rows, schema), row_group_size=len(rows))
    rows.clear()


def write_table(
    refs: typing.Iterable[RasterRef],
    destination: str,
    config: ReferenceTableConfig | None = None,
) -> int:
    """Write references to a Parquet file, returning the number of rows written"""
    config = config or ReferenceTableConfig()
    schema = create_schema(config)
    rows, row_count = [], 0

    with pyarrow.parquet.ParquetWriter(destination, schema) as writer:
        for row in iter_rows(refs, config):
            rows.append(row)
            row_count += 1
            if len(rows) >= config.row_group_size:
                flush_rows_to_file(writer, schema, rows)
        flush_rows_to_file(writer, schema, rows)

    logger.info("Wrote %s rows to %s", row_count, destination)
    return row_count


def read_refs(source: str | pyarrow.Table) -> list[RasterRef]:
    """Decode the "ref" column of a Parquet file or table, nothing is materialized"""
    if isinstance(source, pyarrow.Table):
        table = source
    else:
        table = pyarrow.parquet.read_table(source, columns=["ref"])
    if "ref" not in table.column_names:
        raise ValueError("Missing required column: 'ref'")
    return codec.decode_array(table.column("ref"))
