from __future__ import annotations

import numpy as np
import pytest

from heightforge.config import NoiseConfig
from heightforge.errors import InvalidConfig, InvalidDimensions
from heightforge.grid import HeightGrid
from heightforge.noise import generate
from heightforge.refine import (
    apply_curve,
    apply_operation,
    blend,
    circle_region,
    clamp,
    elevation_band,
    mask_region,
    normalize,
    polygon_region,
    rect_region,
    remap,
    smooth,
    terrace,
)


def _noise_grid() -> HeightGrid:
    return generate((40, 32), NoiseConfig(seed=9, octaves=5, frequency=0.06))


def test_clamp_is_idempotent() -> None:
    grid = _noise_grid()
    once = clamp(grid, 0.2, 0.7).elevations.copy()
    twice = clamp(grid, 0.2, 0.7).elevations
    assert np.array_equal(once, twice)
    assert float(once.min()) >= 0.2 and float(once.max()) <= 0.7


def test_terrace_is_idempotent() -> None:
    grid = _noise_grid()
    once = terrace(grid, 0.1).elevations.copy()
    twice = terrace(grid, 0.1).elevations
    assert np.array_equal(once, twice)
    assert len(np.unique(once)) <= 11


def test_smooth_strength_zero_is_noop_and_repeat_keeps_changing() -> None:
    grid = _noise_grid()
    before = grid.elevations.copy()
    smooth(grid, 2, 0.0)
    assert np.array_equal(grid.elevations, before)
    smooth(grid, 0, 1.0)
    assert np.array_equal(grid.elevations, before)

    first = smooth(grid, 2, 1.0).elevations.copy()
    second = smooth(grid, 2, 1.0).elevations
    assert float(np.var(first)) < float(np.var(before))
    assert not np.array_equal(first, second)


def test_gaussian_smoothing_reduces_variance() -> None:
    grid = _noise_grid()
    before = float(np.var(grid.elevations))
    smooth(grid, 4, 1.0, kernel="gaussian")
    assert float(np.var(grid.elevations)) < before


@pytest.mark.parametrize(
    "name,params",
    [
        ("smooth", {"radius": -1}),
        ("smooth", {"radius": 2, "strength": 1.5}),
        ("smooth", {"radius": 2, "kernel": "median"}),
        ("clamp", {"minimum": 1.0, "maximum": 0.0}),
        ("terrace", {"step_height": 0.0}),
        ("curve", {"points": [(0.0, 0.0)]}),
        ("curve", {"points": [(0.5, 0.0), (0.5, 1.0)]}),
        ("normalize", {"lo": 1.0, "hi": 1.0}),
        ("remap", {"offset": -10.0, "exponent": 0.5}),
        ("clamp", {"low": 0.0}),
        ("erode", {}),
    ],
)
def test_rejected_operations_leave_grid_untouched(name, params) -> None:
    grid = _noise_grid()
    before = grid.elevations.copy()
    with pytest.raises(InvalidConfig):
        apply_operation(grid, name, **params)
    assert np.array_equal(grid.elevations, before)


def test_mask_region_leaves_outside_cells_untouched() -> None:
    grid = _noise_grid()
    before = grid.elevations.copy()
    region = circle_region(20.0, 16.0, 6.0)

    mask_region(grid, region, "clamp", minimum=0.0, maximum=0.0)

    wx, wy = grid.world_coordinates()
    inside = np.hypot(wx - 20.0, wy - 16.0) <= 6.0
    after = grid.elevations
    assert np.array_equal(after[~inside], before[~inside])
    assert np.all(after[inside] == 0.0)


def test_mask_region_with_polygon_and_rect() -> None:
    grid = HeightGrid.create(10, 10, fill=1.0)
    mask_region(grid, rect_region(0.0, 0.0, 4.0, 4.0), "remap", offset=1.0)
    assert grid.get(2, 2) == 2.0
    assert grid.get(5, 5) == 1.0

    triangle = polygon_region([(5.5, 5.5), (9.5, 5.5), (9.5, 9.5)])
    mask_region(grid, triangle, "clamp", minimum=0.0, maximum=0.5)
    assert grid.get(9, 6) == 0.5
    assert grid.get(6, 9) == 1.0


def test_elevation_band_targets_height_range() -> None:
    grid = HeightGrid.from_array(np.array([[0.0, 0.5, 1.0]]))
    mask_region(grid, elevation_band(0.4, 0.6), "clamp", minimum=0.0, maximum=0.1)
    assert grid.to_rows() == [[0.0, 0.1, 1.0]]


def test_mask_region_cannot_nest() -> None:
    grid = HeightGrid.create(4, 4)
    with pytest.raises(InvalidConfig):
        mask_region(grid, rect_region(0, 0, 1, 1), "mask_region")


def test_curve_normalize_remap_blend() -> None:
    grid = HeightGrid.from_array(np.array([[0.0, 0.25, 0.5, 1.0]]))
    apply_curve(grid, [(0.0, 0.0), (0.5, 0.1), (1.0, 1.0)])
    assert np.allclose(grid.elevations, [[0.0, 0.05, 0.1, 1.0]])

    normalize(grid, -1.0, 1.0)
    assert float(grid.elevations.min()) == -1.0
    assert float(grid.elevations.max()) == 1.0

    remap(grid, offset=1.0, coeff=0.5, exponent=2.0)
    assert np.allclose(grid.elevations, [[0.0, 0.0025, 0.01, 1.0]])

    other = HeightGrid.create(4, 1, fill=3.0)
    blend(grid, other, 1.0)
    assert np.all(grid.elevations == 3.0)
    with pytest.raises(InvalidDimensions):
        blend(grid, HeightGrid.create(2, 2), 0.5)


def test_elevation_band_samples_between_cells() -> None:
    grid = HeightGrid.from_array(np.array([[0.0, 1.0], [0.0, 1.0]]))
    band = elevation_band(0.4, 0.6)
    inside = band(grid, np.array([0.5, 0.0, 1.0]), np.array([0.5, 0.0, 1.0]))
    assert inside.tolist() == [True, False, False]
