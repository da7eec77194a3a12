#!/usr/bin/env python3
"""Write a Parquet table of lazy references to the native blocks of a raster

Usage:
    write_reference_table.py <raster_filename> <parquet_destination>

Required packages:
    - GDAL <https://pypi.org/project/GDAL/>
    - rasterref

One reference is written per (band, native block) pair. Nothing is read from
the raster beyond its metadata unless --realize is given.
"""
import argparse
import logging

import rasterref
from rasterref.config import ReferenceTableConfig
from rasterref.table import write_table

parser = argparse.ArgumentParser()
parser.add_argument("raster_filename")
parser.add_argument("parquet_destination")
parser.add_argument(
    "-v", "--verbose", action="store_true", help="Enable verbose output"
)
parser.add_argument(
    "--band",
    help="1-based band number to include, may be repeated, default=all bands",
    action="append",
    type=int,
)
parser.add_argument(
    "--index-resolution",
    help="QUADBIN resolution of the block column, only for EPSG:4326 or EPSG:3857 rasters",
    type=int,
)
parser.add_argument(
    "--realize", action="store_true", help="Read pixels now and store them in the table"
)

if __name__ == "__main__":
    args = parser.parse_args()
    rasterref.setup_logging(args.verbose)

    bands = args.band
    if not bands:
        band_count = rasterref.GDALRasterSource.open(args.raster_filename).band_count
        bands = list(range(1, 1 + band_count))

    refs = [
        rasterref.RasterRef(rasterref.GDALRasterSource.open(args.raster_filename, band))
        for band in bands
    ]
    config = ReferenceTableConfig(
        split_to_native=True,
        index_resolution=args.index_resolution,
        realize=args.realize,
    )
    row_count = write_table(refs, args.parquet_destination, config)
    logging.info("Wrote %s references for %s bands", row_count, len(bands))
