"""Height-band terrain classes for masks and colour previews."""

from __future__ import annotations

import numpy as np
from matplotlib.colors import ListedColormap

from heightforge.errors import InvalidConfig, InvalidDimensions
from heightforge.grid import HeightGrid
from heightforge.hydrology import FlowField

CLASS_ID_DEEP_WATER = 0
CLASS_ID_SHALLOW_WATER = 1
CLASS_ID_LAKE = 2
CLASS_ID_RIVER = 3
CLASS_ID_LOWLAND = 4
CLASS_ID_HIGHLAND = 5
CLASS_ID_ROCK = 6
CLASS_ID_SNOW = 7

CLASS_NAMES = (
    "deep_water",
    "shallow_water",
    "lake",
    "river",
    "lowland",
    "highland",
    "rock",
    "snow",
)

# Upper bounds on normalized height for the land bands.
LOWLAND_MAX = 0.5
HIGHLAND_MAX = 0.65
ROCK_MAX = 0.85
DEEP_WATER_FRACTION = 0.6


def normalized_height(grid: HeightGrid) -> np.ndarray:
    """Elevations mapped onto [0, 1] by the grid's realized range."""

    e = grid.elevations
    lo = float(e.min())
    span = float(e.max()) - lo
    if span <= 0.0:
        return np.zeros(grid.shape, dtype=np.float64)
    return (e - lo) / span


def classify_terrain(
    grid: HeightGrid,
    flow_field: FlowField | None = None,
    *,
    sea_level: float = 0.4,
) -> np.ndarray:
    """Classify each cell into a terrain class ID (uint8).

    `sea_level` is relative to the normalized height range. Lakes and rivers
    from `flow_field` take precedence over land bands but not over sea.
    """

    if not 0.0 <= sea_level <= 1.0:
        raise InvalidConfig(f"sea_level must be in [0, 1], got {sea_level!r}")
    if flow_field is not None and flow_field.shape != grid.shape:
        raise InvalidDimensions(
            f"flow field is {flow_field.width}x{flow_field.height}, grid is {grid.width}x{grid.height}"
        )

    h = normalized_height(grid)
    if flow_field is not None:
        lake = flow_field.lake_mask
        river = flow_field.river_mask
    else:
        lake = np.zeros(grid.shape, dtype=bool)
        river = lake

    conditions = [
        h < sea_level * DEEP_WATER_FRACTION,
        h < sea_level,
        lake,
        river,
        h < LOWLAND_MAX,
        h < HIGHLAND_MAX,
        h < ROCK_MAX,
    ]
    choices = [
        CLASS_ID_DEEP_WATER,
        CLASS_ID_SHALLOW_WATER,
        CLASS_ID_LAKE,
        CLASS_ID_RIVER,
        CLASS_ID_LOWLAND,
        CLASS_ID_HIGHLAND,
        CLASS_ID_ROCK,
    ]
    return np.select(conditions, choices, default=CLASS_ID_SNOW).astype(np.uint8)


def class_fractions(class_mask: np.ndarray) -> dict[str, float]:
    counts = np.bincount(class_mask.reshape(-1), minlength=len(CLASS_NAMES))
    total = max(int(class_mask.size), 1)
    return {name: float(counts[i]) / total for i, name in enumerate(CLASS_NAMES)}


def terrain_colormap_rgb(class_mask: np.ndarray) -> np.ndarray:
    """Map terrain class IDs to a discrete RGB palette via ListedColormap."""

    palette = [
        "#000064",  # 0 deep water
        "#40a4df",  # 1 shallow water
        "#2e6fbf",  # 2 lake
        "#4f8fe0",  # 3 river
        "#228b22",  # 4 lowland
        "#a0522d",  # 5 highland
        "#8b8989",  # 6 rock
        "#fffafa",  # 7 snow
    ]
    cmap = ListedColormap(palette, name="terrain_classes")
    idx = np.clip(class_mask.astype(np.int32), 0, len(palette) - 1)
    rgba = cmap(idx)
    return np.round(rgba[..., :3] * 255.0).astype(np.uint8)
