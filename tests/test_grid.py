from __future__ import annotations

import numpy as np
import pytest

from heightforge.errors import InvalidDimensions, InvalidValue, OutOfBounds, TerrainError
from heightforge.grid import HeightGrid


def _ramp(width: int = 4, height: int = 3, **kwargs) -> HeightGrid:
    ys, xs = np.mgrid[0:height, 0:width]
    return HeightGrid.from_array((xs + 10 * ys).astype(np.float64), **kwargs)


@pytest.mark.parametrize("width,height", [(0, 4), (4, 0), (-1, 3), (2.5, 3)])
def test_create_rejects_bad_dimensions(width, height) -> None:
    with pytest.raises(InvalidDimensions):
        HeightGrid.create(width, height)


def test_create_rejects_bad_metadata() -> None:
    with pytest.raises(InvalidValue):
        HeightGrid.create(4, 4, cell_size=0.0)
    with pytest.raises(InvalidValue):
        HeightGrid.create(4, 4, fill=float("nan"))
    with pytest.raises(InvalidValue):
        HeightGrid.create(4, 4, origin=(0.0, float("inf")))


def test_get_set_and_bounds() -> None:
    grid = HeightGrid.create(3, 2, fill=1.5)
    assert grid.shape == (2, 3)
    assert grid.size == 6
    assert grid.get(2, 1) == 1.5

    grid.set(2, 1, 4.0)
    assert grid.get(2, 1) == 4.0
    assert grid.flat[1 * 3 + 2] == 4.0

    with pytest.raises(OutOfBounds):
        grid.get(3, 0)
    with pytest.raises(IndexError):
        grid.set(0, -1, 1.0)
    with pytest.raises(InvalidValue):
        grid.set(0, 0, float("inf"))


def test_errors_share_base_class() -> None:
    assert issubclass(OutOfBounds, TerrainError)
    assert issubclass(TerrainError, ValueError)


def test_from_array_rejects_non_finite_and_non_2d() -> None:
    with pytest.raises(InvalidValue):
        HeightGrid.from_array(np.array([[0.0, np.nan]]))
    with pytest.raises(InvalidDimensions):
        HeightGrid.from_array(np.zeros(5))


def test_commit_validates_before_swapping() -> None:
    grid = _ramp()
    before = grid.elevations.copy()

    with pytest.raises(InvalidDimensions):
        grid.commit(np.zeros((2, 2)))
    bad = before.copy()
    bad[0, 0] = np.nan
    with pytest.raises(InvalidValue):
        grid.commit(bad)
    assert np.array_equal(grid.elevations, before)

    grid.commit(before + 1.0)
    assert grid.get(0, 0) == 1.0


def test_elevations_view_is_read_only() -> None:
    grid = _ramp()
    with pytest.raises(ValueError):
        grid.elevations[0, 0] = 99.0


def test_copy_is_independent() -> None:
    grid = _ramp()
    clone = grid.copy()
    clone.set(0, 0, -5.0)
    assert grid.get(0, 0) == 0.0
    assert clone.same_shape(grid)


def test_sample_bilinear_interpolates_and_clamps() -> None:
    grid = _ramp()
    assert grid.sample_bilinear(1.5, 1.25) == pytest.approx(1.5 + 12.5)
    assert grid.sample_bilinear(-5.0, 0.0) == 0.0
    assert grid.sample_bilinear(100.0, 100.0) == grid.get(3, 2)

    xs = np.array([0.0, 3.0])
    ys = np.array([2.0, 0.5])
    assert np.allclose(grid.sample_bilinear(xs, ys), [20.0, 8.0])


def test_sample_bilinear_uses_world_coordinates() -> None:
    grid = _ramp(cell_size=2.0, origin=(10.0, 20.0))
    assert grid.sample_bilinear(13.0, 20.0) == pytest.approx(1.5)

    wx, wy = grid.world_coordinates()
    assert wx[0, 0] == 10.0 and wx[0, 3] == 16.0
    assert wy[2, 0] == 24.0


def test_stats() -> None:
    stats = _ramp().stats()
    assert stats.minimum == 0.0
    assert stats.maximum == 23.0
    assert stats.mean == pytest.approx(11.5)


@pytest.mark.parametrize("x,y", [(1.5, 0), (0, 0.5), (True, 0), ("1", 0)])
def test_non_integer_cell_coordinates_rejected(x, y) -> None:
    grid = HeightGrid.create(3, 3)
    with pytest.raises(OutOfBounds):
        grid.get(x, y)
    with pytest.raises(OutOfBounds):
        grid.set(x, y, 1.0)
    assert grid.get(np.int64(1), np.int32(2)) == 0.0
