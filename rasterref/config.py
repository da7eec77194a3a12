"""Options for writing tables of raster references"""
from __future__ import annotations

from dataclasses import dataclass

# Highest QUADBIN resolution
MAX_INDEX_RESOLUTION = 26


@dataclass
class ReferenceTableConfig:
    """Configuration for building a table of references."""

    # Fan each reference out into one row per native block
    split_to_native: bool = False

    # QUADBIN resolution of the "block" index column, None for no index
    index_resolution: int | None = None

    # Read pixels now and store them in a "tile" column
    realize: bool = False

    # Rows per Parquet row group
    row_group_size: int = 1000

    def __post_init__(self):
        if self.index_resolution is not None and not (
            0 <= self.index_resolution <= MAX_INDEX_RESOLUTION
        ):
            raise ValueError(
                f"index_resolution must be between 0 and {MAX_INDEX_RESOLUTION}, "
                f"got {self.index_resolution}"
            )
        if self.row_group_size <= 0:
            raise ValueError(f"row_group_size must be positive, got {self.row_group_size}")
