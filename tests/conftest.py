#!/usr/bin/env python3
"""Pytest configuration and shared fixtures."""

import tempfile
import threading
import time
from pathlib import Path

import numpy
import pytest

from rasterref import ArrayRasterSource, CellType, Extent
from rasterref.source import register_source


@register_source("test-counting")
class CountingSource(ArrayRasterSource):
    """Array source that counts its reads, optionally taking a while for each"""

    delay = 0.0

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.reads = 0
        self._reads_lock = threading.Lock()

    def read(self, extent):
        with self._reads_lock:
            self.reads += 1
        if self.delay:
            time.sleep(self.delay)
        return super().read(extent)


@pytest.fixture
def temp_dir():
    """Create temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def pixels():
    """10x10 grid of distinct uint16 values."""
    return numpy.arange(100, dtype="uint16").reshape(10, 10)


@pytest.fixture
def source(pixels):
    """Source over (0, 0, 100, 100) in 10 unit cells, with two 5x10 native blocks."""
    return CountingSource(
        pixels,
        Extent(0, 0, 100, 100),
        "EPSG:3857",
        CellType("uint16", 65535),
        block_size=(5, 10),
    )


@pytest.fixture
def untiled_source(pixels):
    """Same pixels as source but without a native layout."""
    return CountingSource(pixels, Extent(0, 0, 100, 100), "EPSG:3857")


@pytest.fixture
def multiband_source(pixels):
    """Two band source."""
    return CountingSource(numpy.stack([pixels, pixels]), Extent(0, 0, 100, 100), "EPSG:3857")
