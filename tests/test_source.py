#!/usr/bin/env python3
"""Tests for raster sources and their encoding."""

import json
import struct

import numpy
import pytest

from rasterref import ArrayRasterSource, CellType, DecodeError, Extent, ReadError, Tile, TileLayout
from rasterref.source import RasterSource, decode_source, encode_source


class TestArrayRasterSource:
    """Tests for the in-memory source."""

    def test_metadata(self, source):
        assert source.crs == "EPSG:3857"
        assert source.extent == Extent(0, 0, 100, 100)
        assert source.cell_type == CellType("uint16", 65535)
        assert source.band_count == 1
        assert (source.cols, source.rows) == (10, 10)
        assert source.native_layout == TileLayout(2, 1, 5, 10)

    def test_native_tiling(self, source, untiled_source):
        assert source.native_tiling == [Extent(0, 0, 50, 100), Extent(50, 0, 100, 100)]
        assert untiled_source.native_layout is None
        assert untiled_source.native_tiling == []

    def test_read_window(self, source, pixels):
        tile = source.read(Extent(20, 0, 80, 100))
        assert tile.dimensions == (6, 10)
        numpy.testing.assert_array_equal(tile.array, pixels[:, 2:8])

    def test_read_outside_coverage_is_nodata(self, source, pixels):
        """Test pixels outside the source come back as no-data."""
        tile = source.read(Extent(-20, 0, 20, 100))
        assert tile.dimensions == (4, 10)
        assert (tile.array[:, :2] == 65535).all()
        numpy.testing.assert_array_equal(tile.array[:, 2:], pixels[:, :2])

    def test_read_entirely_outside(self, source):
        tile = source.read(Extent(200, 200, 220, 220))
        assert tile.dimensions == (2, 2)
        assert (tile.array == 65535).all()

    def test_read_float_fill_defaults_to_nan(self):
        source = ArrayRasterSource(numpy.ones((4, 4), "float32"), Extent(0, 0, 4, 4), "EPSG:4326")
        tile = source.read(Extent(-1, 0, 1, 4))
        assert numpy.isnan(tile.array[:, 0]).all()
        assert (tile.array[:, 1] == 1).all()

    def test_read_multiband_fails(self, multiband_source):
        with pytest.raises(ReadError):
            multiband_source.read(multiband_source.extent)

    def test_invalid_array(self):
        with pytest.raises(ValueError):
            ArrayRasterSource(numpy.zeros(10), Extent(0, 0, 1, 1), "EPSG:4326")

    def test_buffer_is_read_only(self, source):
        tile = source.read(source.extent)
        with pytest.raises(ValueError):
            tile.array[0, 0] = 1

    def test_value_equality(self, pixels):
        a = ArrayRasterSource(pixels, Extent(0, 0, 100, 100), "EPSG:3857")
        b = ArrayRasterSource(pixels.copy(), Extent(0, 0, 100, 100), "EPSG:3857")
        c = ArrayRasterSource(pixels + 1, Extent(0, 0, 100, 100), "EPSG:3857")
        assert a == b
        assert hash(a) == hash(b)
        assert a != c


class TestSourceCodec:
    """Tests for encode_source and decode_source."""

    def test_round_trip(self, source):
        decoded = decode_source(encode_source(source))
        assert decoded == source
        assert decoded.native_tiling == source.native_tiling
        assert decoded.reads == 0

    def test_round_trip_nan_nodata(self):
        source = ArrayRasterSource(
            numpy.zeros((3, 3), "float64"), Extent(0, 0, 3, 3), "EPSG:4326", CellType("float64", float("nan"))
        )
        assert decode_source(encode_source(source)) == source

    def test_unregistered_type(self, source):
        class Unregistered(ArrayRasterSource):
            type_tag = "array"

        with pytest.raises(TypeError):
            encode_source(Unregistered(numpy.zeros((2, 2)), Extent(0, 0, 2, 2), "EPSG:4326"))

    def test_abstract_source(self):
        with pytest.raises(TypeError):
            RasterSource()

    @pytest.mark.parametrize("data", [b"", b"\x01\x00", b"\xff\x00\x00\x00{}"])
    def test_truncated(self, data):
        with pytest.raises(DecodeError):
            decode_source(data)

    def test_invalid_header(self):
        with pytest.raises(DecodeError):
            decode_source(struct.pack("<I", 3) + b"{{{")

    def test_unknown_tag(self):
        header = json.dumps({"type": "nope"}).encode()
        with pytest.raises(DecodeError):
            decode_source(struct.pack("<I", len(header)) + header)

    def test_corrupt_payload(self, source):
        data = encode_source(source)
        with pytest.raises(DecodeError):
            decode_source(data[:-10])

    def test_missing_header_field(self):
        header = json.dumps({"type": "array", "crs": "EPSG:4326"}).encode()
        with pytest.raises(DecodeError):
            decode_source(struct.pack("<I", len(header)) + header)

    def test_corrupt_compressed_body(self, source):
        """Test damaged deflate data inside an intact gzip frame is rejected."""
        data = bytearray(encode_source(source))
        for i in range(len(data) - 20, len(data) - 14):
            data[i] ^= 0xFF
        with pytest.raises(DecodeError):
            decode_source(bytes(data))

    @pytest.mark.parametrize("data", ["not bytes", None, 42])
    def test_not_bytes(self, data):
        with pytest.raises(DecodeError):
            decode_source(data)

    @pytest.mark.parametrize("tag", [[], {}, 1, None])
    def test_non_string_tag(self, tag):
        header = json.dumps({"type": tag}).encode()
        with pytest.raises(DecodeError):
            decode_source(struct.pack("<I", len(header)) + header)

    @pytest.mark.parametrize(
        "field,value",
        [("nodata", "abc"), ("nodata", True), ("crs", 3857), ("extent", [0, 0, "nan", 10])],
    )
    def test_invalid_header_value(self, field, value):
        source = ArrayRasterSource(numpy.zeros((2, 2), "uint8"), Extent(0, 0, 2, 2), "EPSG:4326")
        data = encode_source(source)
        (header_len,) = struct.unpack_from("<I", data)
        header = json.loads(data[4 : 4 + header_len])
        header[field] = value
        header_bytes = json.dumps(header).encode()
        with pytest.raises(DecodeError):
            decode_source(struct.pack("<I", len(header_bytes)) + header_bytes + data[4 + header_len :])


class TestCallerArrays:
    """Tests that wrapping an array leaves the caller's array writable."""

    def test_tile(self, pixels):
        tile = Tile(pixels, CellType("uint16"))
        pixels[0, 0] = 1
        assert pixels.flags.writeable
        assert not tile.array.flags.writeable

    def test_array_source(self, pixels):
        source = ArrayRasterSource(pixels, Extent(0, 0, 100, 100), "EPSG:3857")
        pixels[0, 0] = 1
        assert pixels.flags.writeable
        with pytest.raises(ValueError):
            source.read(source.extent).array[0, 0] = 2
