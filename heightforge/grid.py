"""Height grid: elevation samples plus grid metadata."""

from __future__ import annotations

from dataclasses import dataclass
import math
import numbers

import numpy as np

from heightforge.errors import InvalidDimensions, InvalidValue, OutOfBounds


@dataclass(frozen=True)
class GridStats:
    minimum: float
    maximum: float
    mean: float
    variance: float


class HeightGrid:
    """Row-major 2D elevation raster.

    Elevations live in a `(height, width)` float64 array, so `elevations[y, x]`
    is cell `(x, y)` and `flat[y * width + x]` is the same sample. Dimensions
    are fixed at creation. Full-grid passes build a new buffer and hand it to
    `commit`, which validates it before swapping it in; readers never observe a
    half-written pass.
    """

    __slots__ = ("_width", "_height", "_cell_size", "_origin", "_elevations")

    def __init__(
        self,
        width: int,
        height: int,
        cell_size: float,
        origin: tuple[float, float],
        elevations: np.ndarray,
    ) -> None:
        self._width = width
        self._height = height
        self._cell_size = cell_size
        self._origin = origin
        self._elevations = elevations

    @classmethod
    def create(
        cls,
        width: int,
        height: int,
        cell_size: float = 1.0,
        origin: tuple[float, float] = (0.0, 0.0),
        *,
        fill: float = 0.0,
    ) -> "HeightGrid":
        """Allocate a grid filled with a constant elevation."""

        _check_dims(width, height)
        cell_size, origin = _check_metadata(cell_size, origin)
        if not _is_finite_number(fill):
            raise InvalidValue(f"fill value must be finite, got {fill!r}")
        values = np.full((int(height), int(width)), float(fill), dtype=np.float64)
        return cls(int(width), int(height), cell_size, origin, values)

    @classmethod
    def from_array(
        cls,
        values: np.ndarray,
        cell_size: float = 1.0,
        origin: tuple[float, float] = (0.0, 0.0),
    ) -> "HeightGrid":
        """Wrap a copy of a 2D array as a grid."""

        array = np.asarray(values, dtype=np.float64)
        if array.ndim != 2:
            raise InvalidDimensions(f"elevations must be 2D, got shape {array.shape}")
        height, width = array.shape
        _check_dims(width, height)
        cell_size, origin = _check_metadata(cell_size, origin)
        if not np.isfinite(array).all():
            raise InvalidValue("elevations contain non-finite values")
        return cls(width, height, cell_size, origin, array.copy())

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def shape(self) -> tuple[int, int]:
        return (self._height, self._width)

    @property
    def size(self) -> int:
        return self._width * self._height

    @property
    def cell_size(self) -> float:
        return self._cell_size

    @property
    def origin(self) -> tuple[float, float]:
        return self._origin

    @property
    def elevations(self) -> np.ndarray:
        """Read-only view of the elevation raster."""

        view = self._elevations.view()
        view.flags.writeable = False
        return view

    @property
    def flat(self) -> np.ndarray:
        """Read-only row-major sequence of length `width * height`."""

        return self.elevations.reshape(-1)

    def get(self, x: int, y: int) -> float:
        self._check_cell(x, y)
        return float(self._elevations[y, x])

    def set(self, x: int, y: int, value: float) -> None:
        self._check_cell(x, y)
        if not _is_finite_number(value):
            raise InvalidValue(f"elevation must be finite, got {value!r}")
        self._elevations[y, x] = float(value)

    def commit(self, values: np.ndarray) -> None:
        """Replace every elevation at once after validating the new buffer."""

        array = np.asarray(values, dtype=np.float64)
        if array.shape != self.shape:
            raise InvalidDimensions(f"expected shape {self.shape}, got {array.shape}")
        if not np.isfinite(array).all():
            raise InvalidValue("elevations contain non-finite values")
        self._elevations = array.copy()

    def copy(self) -> "HeightGrid":
        return HeightGrid(
            self._width,
            self._height,
            self._cell_size,
            self._origin,
            self._elevations.copy(),
        )

    def same_shape(self, other: "HeightGrid") -> bool:
        return self.shape == other.shape

    def world_coordinates(self) -> tuple[np.ndarray, np.ndarray]:
        """World-space x and y of every sample, each shaped like the grid."""

        ox, oy = self._origin
        xs = ox + np.arange(self._width, dtype=np.float64) * self._cell_size
        ys = oy + np.arange(self._height, dtype=np.float64) * self._cell_size
        return np.meshgrid(xs, ys)

    def sample_bilinear(self, world_x, world_y):
        """Interpolate elevation at world-space points.

        Points outside the grid are clamped to its edge instead of failing.
        Accepts scalars or arrays of matching shape.
        """

        ox, oy = self._origin
        gx = (np.asarray(world_x, dtype=np.float64) - ox) / self._cell_size
        gy = (np.asarray(world_y, dtype=np.float64) - oy) / self._cell_size
        if not (np.isfinite(gx).all() and np.isfinite(gy).all()):
            raise InvalidValue("sample coordinates must be finite")

        gx = np.clip(gx, 0.0, self._width - 1)
        gy = np.clip(gy, 0.0, self._height - 1)
        x0 = np.minimum(np.floor(gx).astype(np.int64), max(self._width - 2, 0))
        y0 = np.minimum(np.floor(gy).astype(np.int64), max(self._height - 2, 0))
        x1 = np.minimum(x0 + 1, self._width - 1)
        y1 = np.minimum(y0 + 1, self._height - 1)
        tx = gx - x0
        ty = gy - y0

        e = self._elevations
        top = e[y0, x0] * (1.0 - tx) + e[y0, x1] * tx
        bottom = e[y1, x0] * (1.0 - tx) + e[y1, x1] * tx
        result = top * (1.0 - ty) + bottom * ty
        if np.ndim(result) == 0:
            return float(result)
        return result

    def stats(self) -> GridStats:
        e = self._elevations
        return GridStats(
            minimum=float(e.min()),
            maximum=float(e.max()),
            mean=float(e.mean()),
            variance=float(e.var()),
        )

    def to_rows(self) -> list[list[float]]:
        """Plain nested lists, one per row, for exporters."""

        return self._elevations.tolist()

    def _check_cell(self, x: int, y: int) -> None:
        for coord in (x, y):
            if isinstance(coord, bool) or not isinstance(coord, numbers.Integral):
                raise OutOfBounds(f"cell coordinates must be integers, got ({x!r}, {y!r})")
        if not (0 <= x < self._width and 0 <= y < self._height):
            raise OutOfBounds(f"cell ({x}, {y}) outside {self._width}x{self._height} grid")

    def __repr__(self) -> str:
        return (
            f"HeightGrid(width={self._width}, height={self._height}, "
            f"cell_size={self._cell_size}, origin={self._origin})"
        )


def _is_finite_number(value: object) -> bool:
    return isinstance(value, numbers.Real) and math.isfinite(float(value))


def _check_dims(width: int, height: int) -> None:
    if not (isinstance(width, numbers.Integral) and isinstance(height, numbers.Integral)):
        raise InvalidDimensions(f"width and height must be integers, got {width!r}x{height!r}")
    if width <= 0 or height <= 0:
        raise InvalidDimensions(f"width and height must be positive, got {width}x{height}")


def _check_metadata(cell_size: float, origin: tuple[float, float]) -> tuple[float, tuple[float, float]]:
    if not _is_finite_number(cell_size) or cell_size <= 0:
        raise InvalidValue(f"cell_size must be positive and finite, got {cell_size!r}")
    try:
        ox, oy = origin
    except (TypeError, ValueError) as exc:
        raise InvalidValue(f"origin must be an (x, y) pair, got {origin!r}") from exc
    if not (_is_finite_number(ox) and _is_finite_number(oy)):
        raise InvalidValue(f"origin must be finite, got {origin!r}")
    return float(cell_size), (float(ox), float(oy))
