#!/usr/bin/env python3
"""Tests for building, writing and reading tables of references."""

import gzip

import numpy
import pyarrow.parquet as pq
import pytest
import quadbin

from rasterref import ArrayRasterSource, Extent, RasterRef, codec
from rasterref.config import ReferenceTableConfig
from rasterref.table import build_table, read_refs, spatial_index, write_table


@pytest.fixture
def wgs84_source():
    """Source over (-10, -10, 10, 10) in degrees with four 5x5 native blocks."""
    return ArrayRasterSource(
        numpy.arange(100, dtype="int16").reshape(10, 10),
        Extent(-10, -10, 10, 10),
        "EPSG:4326",
        block_size=(5, 5),
    )


class TestConfig:
    """Tests for ReferenceTableConfig validation."""

    def test_defaults(self):
        config = ReferenceTableConfig()
        assert not config.split_to_native
        assert config.index_resolution is None
        assert not config.realize
        assert config.row_group_size == 1000

    @pytest.mark.parametrize("resolution", [-1, 27])
    def test_invalid_resolution(self, resolution):
        with pytest.raises(ValueError):
            ReferenceTableConfig(index_resolution=resolution)

    def test_invalid_row_group_size(self):
        with pytest.raises(ValueError):
            ReferenceTableConfig(row_group_size=0)


class TestSpatialIndex:
    """Tests for QUADBIN keys of reference extents."""

    def test_wgs84(self, wgs84_source):
        cell = spatial_index(RasterRef(wgs84_source), 4)
        assert quadbin.cell_to_tile(cell) == (8, 8, 4)

    def test_web_mercator(self, source):
        # Centre of (0, 0, 100, 100) metres is a hair north-east of null island
        cell = spatial_index(RasterRef(source), 4)
        assert quadbin.cell_to_tile(cell) == (8, 7, 4)

    def test_unsupported_crs(self, pixels):
        source = ArrayRasterSource(pixels, Extent(0, 0, 100, 100), "EPSG:32719")
        with pytest.raises(ValueError):
            spatial_index(RasterRef(source), 4)


class TestBuildTable:
    """Tests for in-memory tables."""

    def test_default_columns(self, wgs84_source):
        table = build_table([RasterRef(wgs84_source)])
        assert table.column_names == ["ref"]
        assert table.schema.field("ref").type == codec.RECORD_TYPE
        assert read_refs(table) == [RasterRef(wgs84_source)]

    def test_split_to_native(self, wgs84_source):
        ref = RasterRef(wgs84_source, Extent(-2, -2, 2, 2))
        table = build_table([ref], ReferenceTableConfig(split_to_native=True))
        assert table.num_rows == 4
        assert [r.extent for r in read_refs(table)] == wgs84_source.native_tiling

    def test_index_column(self, wgs84_source):
        config = ReferenceTableConfig(split_to_native=True, index_resolution=10)
        table = build_table([RasterRef(wgs84_source)], config)
        assert table.column_names == ["block", "ref"]
        blocks = table.column("block").to_pylist()
        assert len(set(blocks)) == 4
        assert all(quadbin.get_resolution(b) == 10 for b in blocks)

    def test_realize(self, wgs84_source):
        ref = RasterRef(wgs84_source, Extent(-10, 0, 0, 10))
        table = build_table([ref], ReferenceTableConfig(realize=True))
        row = table.to_pylist()[0]
        assert (row["cols"], row["rows"]) == (5, 5)
        pixels = numpy.frombuffer(gzip.decompress(row["tile"]), dtype="<i2").reshape(5, 5)
        numpy.testing.assert_array_equal(pixels, wgs84_source.read(ref.extent).array)

    def test_lazy_by_default(self, source):
        build_table([RasterRef(source)], ReferenceTableConfig(split_to_native=True))
        assert source.reads == 0


class TestParquet:
    """Tests for writing and reading Parquet files."""

    def test_round_trip(self, temp_dir, source):
        refs = [RasterRef(source), RasterRef(source, Extent(25, 0, 75, 100))]
        output = temp_dir / "refs.parquet"

        assert write_table(refs, str(output)) == 2
        assert output.exists()

        decoded = read_refs(str(output))
        assert decoded == refs
        assert not any(r.is_realized for r in decoded)
        assert source.reads == 0

    def test_row_groups(self, temp_dir, source):
        refs = [RasterRef(source, Extent(0, 0, 10 * (i + 1), 100)) for i in range(5)]
        output = temp_dir / "refs.parquet"

        write_table(refs, str(output), ReferenceTableConfig(row_group_size=2))
        assert pq.ParquetFile(output).num_row_groups == 3
        assert read_refs(str(output)) == refs

    def test_missing_ref_column(self, wgs84_source):
        table = build_table([RasterRef(wgs84_source)]).rename_columns(["other"])
        with pytest.raises(ValueError):
            read_refs(table)
