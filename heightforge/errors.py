"""Error kinds raised by the terrain engine."""

from __future__ import annotations


class TerrainError(ValueError):
    """Base class for caller-side terrain engine failures."""


class InvalidDimensions(TerrainError):
    """Grid dimensions are non-positive or do not match."""


class OutOfBounds(TerrainError, IndexError):
    """Cell coordinates fall outside the grid."""


class InvalidValue(TerrainError):
    """An elevation or grid attribute is not a finite number."""


class InvalidConfig(TerrainError):
    """A configuration or operation parameter is outside its documented range."""


class DegenerateGrid(TerrainError):
    """The grid carries no elevation variance, so drainage cannot be established."""
