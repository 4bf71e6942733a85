"""User-directed refinement operations on an existing height grid.

Every operation validates its parameters, computes the new elevations into a
separate buffer and commits them in one step, so a rejected call leaves the
grid untouched. Dimensions never change.

`clamp` and `terrace` are idempotent. `smooth` is not: each application keeps
removing high-frequency detail, which is the expected behaviour of repeated
blurring.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import logging
import math
import numbers
from typing import Any

import numpy as np
from matplotlib.path import Path
from scipy.ndimage import gaussian_filter

from heightforge.errors import InvalidConfig, InvalidDimensions
from heightforge.grid import HeightGrid
from heightforge.noise import rescale_to_range

logger = logging.getLogger(__name__)

RegionPredicate = Callable[[HeightGrid, np.ndarray, np.ndarray], np.ndarray]

SMOOTH_KERNELS = ("box", "gaussian")


def box_blur(field: np.ndarray, radius: int, *, passes: int = 1) -> np.ndarray:
    """Approximate Gaussian blur using repeated separable box passes."""

    if radius <= 0:
        return field.astype(np.float64, copy=True)

    result = field.astype(np.float64, copy=True)
    for _ in range(max(1, passes)):
        result = _box_blur_axis(result, radius, axis=1)
        result = _box_blur_axis(result, radius, axis=0)
    return result


def _box_blur_axis(field: np.ndarray, radius: int, *, axis: int) -> np.ndarray:
    kernel = 2 * radius + 1
    if axis == 0:
        padded = np.pad(field, ((radius, radius), (0, 0)), mode="edge")
        csum = np.cumsum(padded, axis=0)
        csum = np.pad(csum, ((1, 0), (0, 0)), mode="constant", constant_values=0.0)
        return (csum[kernel:, :] - csum[:-kernel, :]) / float(kernel)

    padded = np.pad(field, ((0, 0), (radius, radius)), mode="edge")
    csum = np.cumsum(padded, axis=1)
    csum = np.pad(csum, ((0, 0), (1, 0)), mode="constant", constant_values=0.0)
    return (csum[:, kernel:] - csum[:, :-kernel]) / float(kernel)


def smooth(
    grid: HeightGrid,
    radius: int,
    strength: float = 1.0,
    *,
    kernel: str = "box",
    passes: int = 1,
) -> HeightGrid:
    """Blend each cell toward its neighbourhood average within `radius` cells.

    `strength` 0.0 leaves the grid unchanged, 1.0 replaces it with the smoothed
    field.
    """

    if not isinstance(radius, numbers.Integral) or radius < 0:
        raise InvalidConfig(f"radius must be a non-negative integer, got {radius!r}")
    _check_unit(strength, "strength")
    if kernel not in SMOOTH_KERNELS:
        raise InvalidConfig(f"kernel must be one of {SMOOTH_KERNELS}, got {kernel!r}")
    if not isinstance(passes, numbers.Integral) or passes < 1:
        raise InvalidConfig(f"passes must be a positive integer, got {passes!r}")

    original = grid.elevations
    if radius == 0 or strength == 0.0:
        return grid

    if kernel == "gaussian":
        smoothed = original.astype(np.float64, copy=True)
        for _ in range(passes):
            smoothed = gaussian_filter(smoothed, sigma=radius / 2.0, mode="nearest", truncate=2.0)
    else:
        smoothed = box_blur(original, int(radius), passes=int(passes))

    grid.commit(original + (smoothed - original) * strength)
    return grid


def clamp(grid: HeightGrid, minimum: float, maximum: float) -> HeightGrid:
    """Hard elevation bounds."""

    _check_finite(minimum, "minimum")
    _check_finite(maximum, "maximum")
    if minimum > maximum:
        raise InvalidConfig(f"minimum {minimum} exceeds maximum {maximum}")
    grid.commit(np.clip(grid.elevations, minimum, maximum))
    return grid


def terrace(grid: HeightGrid, step_height: float) -> HeightGrid:
    """Quantize elevations to the nearest multiple of `step_height`."""

    _check_finite(step_height, "step_height")
    if step_height <= 0.0:
        raise InvalidConfig(f"step_height must be positive, got {step_height!r}")
    grid.commit(np.round(grid.elevations / step_height) * step_height)
    return grid


def remap(grid: HeightGrid, offset: float = 0.0, coeff: float = 1.0, exponent: float = 1.0) -> HeightGrid:
    """Apply `((h + offset) * coeff) ** exponent` to every cell."""

    for value, name in ((offset, "offset"), (coeff, "coeff"), (exponent, "exponent")):
        _check_finite(value, name)
    values = (grid.elevations + offset) * coeff
    with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
        values = np.power(values, exponent)
    if not np.isfinite(values).all():
        raise InvalidConfig("remap produced non-finite elevations; check offset and exponent")
    grid.commit(values)
    return grid


def apply_curve(grid: HeightGrid, points: Sequence[tuple[float, float]]) -> HeightGrid:
    """Map elevations through a piecewise-linear curve of `(input, output)` points."""

    if len(points) < 2:
        raise InvalidConfig("a height curve needs at least two points")
    xs = np.array([float(p[0]) for p in points], dtype=np.float64)
    ys = np.array([float(p[1]) for p in points], dtype=np.float64)
    if not (np.isfinite(xs).all() and np.isfinite(ys).all()):
        raise InvalidConfig("curve points must be finite")
    if np.any(np.diff(xs) <= 0.0):
        raise InvalidConfig("curve inputs must be strictly increasing")
    grid.commit(np.interp(grid.elevations, xs, ys))
    return grid


def normalize(grid: HeightGrid, lo: float = 0.0, hi: float = 1.0) -> HeightGrid:
    """Rescale the realized elevation range onto `[lo, hi]`."""

    _check_finite(lo, "lo")
    _check_finite(hi, "hi")
    if lo >= hi:
        raise InvalidConfig(f"lo must be below hi, got [{lo}, {hi}]")
    grid.commit(rescale_to_range(grid.elevations, lo, hi))
    return grid


def blend(grid: HeightGrid, other: HeightGrid, strength: float) -> HeightGrid:
    """Linear mix toward `other`; `strength` 1.0 copies `other`."""

    _check_unit(strength, "strength")
    if not grid.same_shape(other):
        raise InvalidDimensions(f"cannot blend {other.width}x{other.height} into {grid.width}x{grid.height}")
    base = grid.elevations
    grid.commit(base + (other.elevations - base) * strength)
    return grid


def circle_region(center_x: float, center_y: float, radius: float) -> RegionPredicate:
    """Cells whose world position lies within `radius` of the centre."""

    _check_finite(radius, "radius")
    if radius < 0.0:
        raise InvalidConfig("radius must be non-negative")

    def predicate(grid: HeightGrid, world_x: np.ndarray, world_y: np.ndarray) -> np.ndarray:
        return np.hypot(world_x - center_x, world_y - center_y) <= radius

    return predicate


def rect_region(x0: float, y0: float, x1: float, y1: float) -> RegionPredicate:
    lo_x, hi_x = sorted((x0, x1))
    lo_y, hi_y = sorted((y0, y1))

    def predicate(grid: HeightGrid, world_x: np.ndarray, world_y: np.ndarray) -> np.ndarray:
        return (world_x >= lo_x) & (world_x <= hi_x) & (world_y >= lo_y) & (world_y <= hi_y)

    return predicate


def polygon_region(vertices: Sequence[tuple[float, float]]) -> RegionPredicate:
    """Cells whose world position falls inside a closed polygon."""

    if len(vertices) < 3:
        raise InvalidConfig("a polygon region needs at least three vertices")
    path = Path(np.asarray(vertices, dtype=np.float64))

    def predicate(grid: HeightGrid, world_x: np.ndarray, world_y: np.ndarray) -> np.ndarray:
        points = np.column_stack((world_x.ravel(), world_y.ravel()))
        return path.contains_points(points).reshape(world_x.shape)

    return predicate


def elevation_band(lo: float, hi: float) -> RegionPredicate:
    """Points whose interpolated elevation lies in `[lo, hi]`.

    Heights are sampled at the given world positions, so the band also works
    for off-grid points such as brush previews.
    """

    if lo > hi:
        raise InvalidConfig(f"band lower bound {lo} exceeds upper bound {hi}")

    def predicate(grid: HeightGrid, world_x: np.ndarray, world_y: np.ndarray) -> np.ndarray:
        e = np.asarray(grid.sample_bilinear(world_x, world_y))
        return (e >= lo) & (e <= hi)

    return predicate


def mask_region(
    grid: HeightGrid,
    predicate: RegionPredicate,
    operation: str | Callable[..., HeightGrid],
    **params: Any,
) -> HeightGrid:
    """Run `operation` but keep its result only where `predicate` holds."""

    if not callable(predicate):
        raise InvalidConfig("predicate must be callable")
    op = _resolve(operation)
    if op is mask_region:
        raise InvalidConfig("mask_region cannot be nested")

    world_x, world_y = grid.world_coordinates()
    mask = np.asarray(predicate(grid, world_x, world_y), dtype=bool)
    if mask.shape != grid.shape:
        raise InvalidDimensions(f"region mask has shape {mask.shape}, expected {grid.shape}")

    scratch = op(grid.copy(), **params)
    grid.commit(np.where(mask, scratch.elevations, grid.elevations))
    logger.debug(f"Masked {_name_of(operation)} touched {int(mask.sum())} of {grid.size} cells")
    return grid


OPERATIONS: dict[str, Callable[..., HeightGrid]] = {
    "smooth": smooth,
    "clamp": clamp,
    "terrace": terrace,
    "remap": remap,
    "curve": apply_curve,
    "normalize": normalize,
    "blend": blend,
    "mask_region": mask_region,
}


def apply_operation(grid: HeightGrid, name: str, **params: Any) -> HeightGrid:
    """Refinement entry point: run the named operation with keyword parameters."""

    op = _resolve(name)
    logger.info(f"Refine: {name} {sorted(params)}")
    try:
        return op(grid, **params)
    except TypeError as exc:
        raise InvalidConfig(f"bad parameters for {name!r}: {exc}") from exc


def _resolve(operation: str | Callable[..., HeightGrid]) -> Callable[..., HeightGrid]:
    if callable(operation):
        return operation
    try:
        return OPERATIONS[operation]
    except KeyError:
        raise InvalidConfig(f"unknown refinement operation {operation!r}; known: {sorted(OPERATIONS)}") from None


def _name_of(operation: str | Callable[..., HeightGrid]) -> str:
    return operation if isinstance(operation, str) else getattr(operation, "__name__", repr(operation))


def _check_finite(value: float, name: str) -> None:
    if not isinstance(value, numbers.Real) or not math.isfinite(value):
        raise InvalidConfig(f"{name} must be a finite number, got {value!r}")


def _check_unit(value: float, name: str) -> None:
    _check_finite(value, name)
    if not 0.0 <= value <= 1.0:
        raise InvalidConfig(f"{name} must be in [0, 1], got {value!r}")
