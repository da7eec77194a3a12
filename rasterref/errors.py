"""Errors raised by raster references and their collaborators"""


class RasterRefError(Exception):
    """Base exception for raster reference errors."""


class PreconditionError(RasterRefError):
    """A reference was materialized against a source it cannot represent."""


class ReadError(RasterRefError):
    """A source failed to produce pixels for a requested window."""

    def __init__(self, message: str, extent=None):
        super().__init__(message)
        self.extent = extent


class DecodeError(RasterRefError):
    """A serialized source or record could not be decoded."""
