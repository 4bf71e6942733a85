"""Derived raster products from height grids and flow fields."""

from __future__ import annotations

import numpy as np

from heightforge.grid import HeightGrid


def hillshade(
    grid: HeightGrid,
    *,
    azimuth_deg: float = 315.0,
    altitude_deg: float = 45.0,
    z_factor: float = 1.0,
) -> np.ndarray:
    """Compute an 8-bit grayscale hillshade from a height grid."""

    if z_factor <= 0:
        raise ValueError("z_factor must be positive")

    dz_dy, dz_dx = np.gradient(grid.elevations, grid.cell_size, grid.cell_size)
    dz_dx = dz_dx * float(z_factor)
    dz_dy = dz_dy * float(z_factor)

    slope = np.pi / 2.0 - np.arctan(np.hypot(dz_dx, dz_dy))
    aspect = np.arctan2(-dz_dx, dz_dy)

    azimuth = np.deg2rad(azimuth_deg)
    altitude = np.deg2rad(altitude_deg)

    shaded = (
        np.sin(altitude) * np.sin(slope)
        + np.cos(altitude) * np.cos(slope) * np.cos(azimuth - aspect)
    )
    shaded = np.clip(shaded, 0.0, 1.0)
    return np.round(shaded * 255.0).astype(np.uint8)


def height_preview_u16(values: np.ndarray, *, robust_percentiles: tuple[float, float] = (1.0, 99.0)) -> np.ndarray:
    """Map float height values to 16-bit preview grayscale."""

    lo, hi = np.percentile(values, robust_percentiles)
    scale = max(hi - lo, 1e-6)
    norm = np.clip((values - lo) / scale, 0.0, 1.0)
    return np.round(norm * 65535.0).astype(np.uint16)


def float_preview_u8(values: np.ndarray, *, robust_percentiles: tuple[float, float] = (1.0, 99.0)) -> np.ndarray:
    """Map float values to 8-bit preview grayscale."""

    lo, hi = np.percentile(values, robust_percentiles)
    scale = max(hi - lo, 1e-6)
    norm = np.clip((values - lo) / scale, 0.0, 1.0)
    return np.round(norm * 255.0).astype(np.uint8)


def mask_u8(mask: np.ndarray) -> np.ndarray:
    """Encode a boolean mask to an 8-bit preview image."""

    return np.where(mask, 255, 0).astype(np.uint8)


def flow_dir_u8(flow_dir: np.ndarray) -> np.ndarray:
    """Encode D8 direction indices as grayscale classes; sinks are black."""

    lut = np.array([0, 32, 64, 96, 128, 160, 192, 224, 255], dtype=np.uint8)
    return lut[np.clip(flow_dir.astype(np.int16) + 1, 0, 8)]


def flow_accum_u8(flow_accum: np.ndarray) -> np.ndarray:
    """Log-scaled accumulation preview so channels stand out over hillslopes."""

    return float_preview_u8(np.log1p(flow_accum), robust_percentiles=(0.0, 99.5))


def basin_id_u8(basin_id_map: np.ndarray) -> np.ndarray:
    out = np.zeros(basin_id_map.shape, dtype=np.uint8)
    ids = basin_id_map.astype(np.int64)
    valid = ids > 0
    # Hash-like remap so neighbouring basins get distinct shades.
    out[valid] = (((ids[valid] * 73 + 29) % 251) + 4).astype(np.uint8)
    return out
