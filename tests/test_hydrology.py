from __future__ import annotations

import hashlib

import numpy as np
import pytest

from heightforge.config import HydrologyConfig, NoiseConfig
from heightforge.errors import DegenerateGrid, InvalidConfig
from heightforge.grid import HeightGrid
from heightforge.hydrology import SINK, solve, trace_downstream, validate_flow_field
from heightforge.noise import generate


def _hash(arr: np.ndarray) -> str:
    return hashlib.sha256(arr.tobytes()).hexdigest()


def _noise_grid() -> HeightGrid:
    return generate((56, 40), NoiseConfig(seed=21, octaves=5, frequency=0.05))


def _notched_bowl() -> HeightGrid:
    # 7x7 plateau at 5 with a 3x3 pit at 1 and a spillway at 3 on the top edge.
    values = np.full((7, 7), 5.0)
    values[2:5, 2:5] = 1.0
    values[0:2, 3] = 3.0
    return HeightGrid.from_array(values)


def test_flat_grid_is_degenerate() -> None:
    with pytest.raises(DegenerateGrid):
        solve(HeightGrid.create(4, 4, fill=2.0))


def test_elevated_corner_drains_deterministically() -> None:
    values = np.zeros((4, 4))
    values[0, 0] = 1.0
    grid = HeightGrid.from_array(values)

    a = solve(grid)
    b = solve(grid)
    assert np.array_equal(a.flow_dir, b.flow_dir)
    assert np.array_equal(a.flow_accum, b.flow_accum)

    # Equal drops south and east: the fixed neighbour order picks south.
    assert a.downstream(0, 0) == (0, 1)
    # The corner and the interior cell flooded from (0, 1) both feed it.
    assert a.flow_accum[1, 0] == 3.0
    for y in range(4):
        for x in range(4):
            path = trace_downstream(a, x, y)
            ex, ey = path[-1]
            assert ex in (0, 3) or ey in (0, 3)
    validate_flow_field(a)


def test_tilted_plane_drains_to_low_corner() -> None:
    ys, xs = np.mgrid[0:4, 0:4]
    flow = solve(HeightGrid.from_array((xs + ys).astype(np.float64)))

    assert flow.flow_accum[0, 0] == 16.0
    assert int(np.count_nonzero(flow.flow_dir == SINK)) == 1
    assert flow.flow_dir[0, 0] == SINK
    # Diagonal drop 2 / sqrt(2) beats the cardinal drop of 1.
    assert flow.downstream(1, 1) == (0, 0)


def test_drainage_completeness_and_monotonicity() -> None:
    flow = solve(_noise_grid())
    validate_flow_field(flow)

    h, w = flow.shape
    sinks = np.argwhere(flow.flow_dir == SINK)
    for y, x in sinks:
        assert y in (0, h - 1) or x in (0, w - 1)

    dest = flow.downstream_index()
    src = np.flatnonzero(dest >= 0)
    accum = flow.flow_accum.reshape(-1)
    assert float(accum.min()) >= 1.0
    assert np.all(accum[dest[src]] >= accum[src] + 1.0)

    for x, y in [(0, 0), (10, 7), (28, 20), (55, 39)]:
        assert len(trace_downstream(flow, x, y)) <= w * h


def test_total_accumulation_reaches_sinks() -> None:
    flow = solve(_noise_grid())
    sink_total = float(flow.flow_accum[flow.flow_dir == SINK].sum())
    assert sink_total == float(flow.shape[0] * flow.shape[1])


def test_filled_surface_never_below_input() -> None:
    grid = _noise_grid()
    flow = solve(grid)
    assert np.all(flow.filled >= grid.elevations)
    assert flow.metrics.filled_cell_count == int(np.count_nonzero(flow.filled > grid.elevations))


def test_pit_becomes_lake_basin() -> None:
    grid = _notched_bowl()
    flow = solve(grid, HydrologyConfig(lake_min_area=2.0, river_min_area=1.5))

    assert len(flow.basins) == 1
    basin = flow.basins[0]
    assert basin.spill_elevation == 3.0
    assert basin.member_cells.size == 9
    assert basin.max_depth == 2.0
    assert basin.volume == pytest.approx(18.0)
    assert basin.is_lake
    assert int(basin.outlet_cell) in {2 * 7 + 2, 2 * 7 + 3, 2 * 7 + 4}
    assert basin.accumulated_area >= 2.0

    assert int(flow.lake_mask.sum()) == 9
    assert not np.any(flow.lake_mask & flow.river_mask)
    assert np.all(flow.basin_id_map[2:5, 2:5] == basin.basin_id)

    path = trace_downstream(flow, 3, 3)
    assert path[-1] == (3, 0)
    assert (3, 1) in path


def test_lake_threshold_controls_classification() -> None:
    flow = solve(_notched_bowl(), HydrologyConfig(lake_min_area=1000.0, river_min_area=2.0))
    assert not flow.basins[0].is_lake
    assert int(flow.lake_mask.sum()) == 0
    assert flow.river_mask[1, 3]


def test_contributing_area_scales_with_cell_size() -> None:
    values = _noise_grid().elevations
    flow = solve(HeightGrid.from_array(values, cell_size=10.0))
    assert np.allclose(flow.contributing_area, flow.flow_accum * 100.0)


def test_hydrology_is_deterministic() -> None:
    grid = _noise_grid()
    a = solve(grid)
    b = solve(grid)
    assert _hash(a.flow_dir) == _hash(b.flow_dir)
    assert _hash(a.flow_accum) == _hash(b.flow_accum)
    assert np.array_equal(a.river_mask, b.river_mask)
    assert np.array_equal(a.lake_mask, b.lake_mask)


@pytest.mark.parametrize(
    "config",
    [
        HydrologyConfig(lake_min_area=10.0, river_min_area=10.0),
        HydrologyConfig(lake_min_area=0.5, river_min_area=0.25),
        HydrologyConfig(min_lake_depth=-1.0),
        HydrologyConfig(min_lake_volume=-0.1),
    ],
)
def test_invalid_hydrology_config(config) -> None:
    with pytest.raises(InvalidConfig):
        solve(_notched_bowl(), config)


def test_shallow_channel_pit_is_not_a_lake_by_default() -> None:
    ys, _ = np.mgrid[0:9, 0:9]
    values = ys.astype(np.float64)
    values[6, 4] = 4.99
    grid = HeightGrid.from_array(values)

    flow = solve(grid, HydrologyConfig(lake_min_area=2.0, river_min_area=1.5))
    assert len(flow.basins) == 1
    pit = flow.basins[0]
    assert pit.volume == pytest.approx(0.01)
    assert pit.accumulated_area >= 2.0
    assert not pit.is_lake
    assert not flow.lake_mask.any()

    keep_all = solve(grid, HydrologyConfig(lake_min_area=2.0, river_min_area=1.5, min_lake_volume=0.0))
    assert keep_all.basins[0].is_lake
    assert keep_all.lake_mask[6, 4]
