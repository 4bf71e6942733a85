"""Procedural heightmap generation, refinement, hydrology and erosion."""

from .config import DEFAULT_CELL_SIZE, DEFAULT_HEIGHT, DEFAULT_WIDTH, GeneratorConfig
from .grid import HeightGrid

__all__ = ["DEFAULT_WIDTH", "DEFAULT_HEIGHT", "DEFAULT_CELL_SIZE", "GeneratorConfig", "HeightGrid"]
