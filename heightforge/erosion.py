"""Hydraulic erosion and sediment transport.

Two models share the `erode` contract. The particle model traces independent
water droplets over the surface; the grid model runs a shallow-water scheme
with per-cell water and sediment fields. Both charge every removal against a
per-cell budget so that no cell drops more than `max_erosion_per_step` in a
single iteration, and both commit the grid only after an iteration completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
import numbers
import threading

import numpy as np

from heightforge.config import MAX_EROSION_ITERATIONS, ErosionConfig
from heightforge.errors import InvalidConfig, InvalidDimensions
from heightforge.grid import HeightGrid
from heightforge.hydrology import _DIRECTIONS_8, _STEP_LENGTH, FlowField, _shift_float
from heightforge.rng import RngStream

logger = logging.getLogger(__name__)


@dataclass
class ErosionState:
    """Per-call working state. Discarded when `erode` returns."""

    sediment: np.ndarray
    water: np.ndarray
    removed: np.ndarray
    iteration: int = 0
    total_eroded: float = 0.0
    total_deposited: float = 0.0

    @classmethod
    def empty(cls, shape: tuple[int, int]) -> "ErosionState":
        return cls(
            sediment=np.zeros(shape, dtype=np.float64),
            water=np.zeros(shape, dtype=np.float64),
            removed=np.zeros(shape, dtype=np.float64),
        )

    def begin_iteration(self) -> None:
        self.removed.fill(0.0)


@dataclass(frozen=True)
class ErosionDiagnostics:
    model: str
    iterations_requested: int
    iterations_run: int
    aborted: bool
    mean_elevation_change: float
    total_eroded: float
    total_deposited: float
    max_step_decrease: float
    variance_history: tuple[float, ...] = field(default_factory=tuple)
    sediment_total: float = 0.0
    sediment_max: float = 0.0
    water_total: float = 0.0
    water_max: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "model": self.model,
            "iterations_requested": self.iterations_requested,
            "iterations_run": self.iterations_run,
            "aborted": self.aborted,
            "mean_elevation_change": self.mean_elevation_change,
            "total_eroded": self.total_eroded,
            "total_deposited": self.total_deposited,
            "max_step_decrease": self.max_step_decrease,
            "variance_history": list(self.variance_history),
            "sediment_total": self.sediment_total,
            "sediment_max": self.sediment_max,
            "water_total": self.water_total,
            "water_max": self.water_max,
        }


def erode(
    grid: HeightGrid,
    flow_field: FlowField,
    config: ErosionConfig,
    iterations: int,
    *,
    rng: RngStream | int | None = None,
    cancel: threading.Event | None = None,
) -> tuple[HeightGrid, ErosionDiagnostics]:
    """Run `iterations` erosion passes on a copy of `grid`.

    The input grid is never modified. `iterations == 0` returns an unchanged
    copy. When `cancel` is set the run stops before the next iteration and the
    returned grid holds the last completed one.
    """

    config.validate()
    if isinstance(iterations, bool) or not isinstance(iterations, numbers.Integral):
        raise InvalidConfig(f"iterations must be an integer, got {iterations!r}")
    if iterations < 0 or iterations > MAX_EROSION_ITERATIONS:
        raise InvalidConfig(f"iterations must be in [0, {MAX_EROSION_ITERATIONS}], got {iterations}")
    if flow_field.shape != grid.shape:
        raise InvalidDimensions(
            f"flow field is {flow_field.width}x{flow_field.height}, grid is {grid.width}x{grid.height}"
        )

    stream = RngStream.coerce(config.seed if rng is None else rng)
    result = grid.copy()
    original = grid.elevations
    state = ErosionState.empty(grid.shape)
    hints = _FlowHints(flow_field)

    if config.model == "particle":
        step = _particle_iteration
    else:
        step = _grid_iteration

    logger.info(f"Eroding {grid.width}x{grid.height} grid: model={config.model}, iterations={iterations}")
    variance_history: list[float] = []
    max_step_decrease = 0.0
    aborted = False
    for i in range(iterations):
        if cancel is not None and cancel.is_set():
            aborted = True
            logger.info(f"Erosion cancelled after {i} of {iterations} iterations")
            break
        before = result.elevations
        working = before.copy()
        state.begin_iteration()
        step(working, state, hints, config, stream.fork(f"iteration-{i}"))
        result.commit(working)
        state.iteration = i + 1

        decrease = float(np.max(before - working))
        max_step_decrease = max(max_step_decrease, decrease)
        variance_history.append(float(np.var(working)))
        logger.debug(
            f"Iteration {i + 1}: variance={variance_history[-1]:.6f}, "
            f"max decrease={decrease:.6f}, eroded={state.total_eroded:.4f}"
        )

    diagnostics = ErosionDiagnostics(
        model=config.model,
        iterations_requested=iterations,
        iterations_run=state.iteration,
        aborted=aborted,
        mean_elevation_change=float(np.mean(np.abs(result.elevations - original))),
        total_eroded=state.total_eroded,
        total_deposited=state.total_deposited,
        max_step_decrease=max_step_decrease,
        variance_history=tuple(variance_history),
        sediment_total=float(np.sum(state.sediment)),
        sediment_max=float(np.max(state.sediment)),
        water_total=float(np.sum(state.water)),
        water_max=float(np.max(state.water)),
    )
    return result, diagnostics


def _particle_iteration(
    heights: np.ndarray,
    state: ErosionState,
    hints: "_FlowHints",
    config: ErosionConfig,
    rng: RngStream,
) -> None:
    h, w = heights.shape
    if h < 2 or w < 2:
        return
    starts = rng.generator().uniform(0.0, 1.0, size=(config.droplets_per_iteration, 2))
    starts[:, 0] *= w - 1
    starts[:, 1] *= h - 1
    for sx, sy in starts:
        _run_droplet(heights, state, hints.x, hints.y, float(sx), float(sy), config)


def _run_droplet(
    heights: np.ndarray,
    state: ErosionState,
    hint_x: np.ndarray,
    hint_y: np.ndarray,
    px: float,
    py: float,
    config: ErosionConfig,
) -> None:
    """Trace one droplet downhill, eroding and depositing along its path."""

    h, w = heights.shape
    dir_x = 0.0
    dir_y = 0.0
    speed = config.initial_speed
    water = config.initial_water
    sediment = 0.0
    weight = config.flow_hint_weight
    left_grid = False

    for _ in range(config.max_steps):
        cx = min(int(px), w - 2)
        cy = min(int(py), h - 2)
        fx = px - cx
        fy = py - cy
        height, grad_x, grad_y = _height_and_gradient(heights, cx, cy, fx, fy)

        dir_x = dir_x * config.inertia - grad_x * (1.0 - config.inertia)
        dir_y = dir_y * config.inertia - grad_y * (1.0 - config.inertia)
        length = math.hypot(dir_x, dir_y)
        if length > 0.0:
            dir_x /= length
            dir_y /= length
        if weight > 0.0:
            nx_cell = min(int(px + 0.5), w - 1)
            ny_cell = min(int(py + 0.5), h - 1)
            dir_x = dir_x * (1.0 - weight) + float(hint_x[ny_cell, nx_cell]) * weight
            dir_y = dir_y * (1.0 - weight) + float(hint_y[ny_cell, nx_cell]) * weight
            length = math.hypot(dir_x, dir_y)
            if length > 0.0:
                dir_x /= length
                dir_y /= length
        if length == 0.0:
            break

        next_x = px + dir_x
        next_y = py + dir_y
        if not (0.0 <= next_x <= w - 1 and 0.0 <= next_y <= h - 1):
            left_grid = True
            break

        nx0 = min(int(next_x), w - 2)
        ny0 = min(int(next_y), h - 2)
        new_height, _, _ = _height_and_gradient(heights, nx0, ny0, next_x - nx0, next_y - ny0)
        dh = new_height - height
        capacity = max(-dh, config.min_slope) * speed * water * config.capacity

        if sediment > capacity or dh > 0.0:
            if dh > 0.0:
                amount = min(dh, sediment)
            else:
                amount = (sediment - capacity) * config.deposition_rate
            sediment -= amount
            _deposit(heights, cx, cy, fx, fy, amount)
            state.total_deposited += amount
        else:
            amount = min((capacity - sediment) * config.erosion_rate, -dh)
            taken = _take(heights, state.removed, cx, cy, fx, fy, amount, config.max_erosion_per_step)
            sediment += taken
            state.total_eroded += taken

        speed = math.sqrt(max(speed * speed - dh * config.gravity, 0.0))
        water *= 1.0 - config.evaporation_rate
        px = next_x
        py = next_y
        if speed < config.min_speed:
            break

    if left_grid:
        # Load carried off the edge stays suspended.
        end_x = min(int(px + 0.5), w - 1)
        end_y = min(int(py + 0.5), h - 1)
        state.sediment[end_y, end_x] += sediment
    elif sediment > 0.0:
        cx = min(int(px), w - 2)
        cy = min(int(py), h - 2)
        _deposit(heights, cx, cy, px - cx, py - cy, sediment)
        state.total_deposited += sediment


def _height_and_gradient(heights: np.ndarray, cx: int, cy: int, fx: float, fy: float) -> tuple[float, float, float]:
    h00 = float(heights[cy, cx])
    h10 = float(heights[cy, cx + 1])
    h01 = float(heights[cy + 1, cx])
    h11 = float(heights[cy + 1, cx + 1])
    grad_x = (h10 - h00) * (1.0 - fy) + (h11 - h01) * fy
    grad_y = (h01 - h00) * (1.0 - fx) + (h11 - h10) * fx
    height = h00 * (1.0 - fx) * (1.0 - fy) + h10 * fx * (1.0 - fy) + h01 * (1.0 - fx) * fy + h11 * fx * fy
    return height, grad_x, grad_y


def _corner_weights(fx: float, fy: float) -> tuple[tuple[int, int, float], ...]:
    return (
        (0, 0, (1.0 - fx) * (1.0 - fy)),
        (1, 0, fx * (1.0 - fy)),
        (0, 1, (1.0 - fx) * fy),
        (1, 1, fx * fy),
    )


def _deposit(heights: np.ndarray, cx: int, cy: int, fx: float, fy: float, amount: float) -> None:
    for ox, oy, wgt in _corner_weights(fx, fy):
        heights[cy + oy, cx + ox] += amount * wgt


def _take(
    heights: np.ndarray,
    removed: np.ndarray,
    cx: int,
    cy: int,
    fx: float,
    fy: float,
    amount: float,
    budget: float,
) -> float:
    """Remove up to `amount` split over the four corners, within each corner's budget."""

    taken = 0.0
    for ox, oy, wgt in _corner_weights(fx, fy):
        y = cy + oy
        x = cx + ox
        share = min(amount * wgt, max(budget - float(removed[y, x]), 0.0))
        if share <= 0.0:
            continue
        heights[y, x] -= share
        removed[y, x] += share
        taken += share
    return taken


def _grid_iteration(
    heights: np.ndarray,
    state: ErosionState,
    hints: "_FlowHints",
    config: ErosionConfig,
    rng: RngStream,
) -> None:
    """One shallow-water step: rain, outflow, erode or deposit, advect, evaporate."""

    water = state.water
    sediment = state.sediment
    water += config.rain_rate
    surface = heights + water

    head = []
    bed_drop = np.zeros(heights.shape, dtype=np.float64)
    for idx, (dy, dx) in enumerate(_DIRECTIONS_8):
        neighbour_surface = _shift_float(surface, dy, dx, fill=np.nan)
        neighbour_bed = _shift_float(heights, dy, dx, fill=np.nan)
        off_grid = np.isnan(neighbour_surface)
        # Water spills off the edge over the cell's own bed.
        neighbour_surface = np.where(off_grid, heights, neighbour_surface)
        neighbour_bed = np.where(off_grid, heights, neighbour_bed)
        diff = np.maximum(surface - neighbour_surface, 0.0) / _STEP_LENGTH[idx]
        if config.flow_hint_weight > 0.0:
            diff = np.where(hints.direction == idx, diff * (1.0 + config.flow_hint_weight), diff)
        head.append(diff)
        bed_drop = np.maximum(bed_drop, (heights - neighbour_bed) / _STEP_LENGTH[idx])

    total_head = np.sum(head, axis=0)
    max_head = np.max(head, axis=0)
    outflow = config.flow_rate * np.minimum(water, max_head)
    moving = total_head > 0.0
    safe_total = np.where(moving, total_head, 1.0)
    safe_water = np.where(water > 0.0, water, 1.0)

    incoming_water = np.zeros(heights.shape, dtype=np.float64)
    incoming_sediment = np.zeros(heights.shape, dtype=np.float64)
    leaving_sediment = np.where(water > 0.0, sediment * outflow / safe_water, 0.0)
    for idx, (dy, dx) in enumerate(_DIRECTIONS_8):
        share = np.where(moving, head[idx] / safe_total, 0.0)
        incoming_water += _shift_float(outflow * share, -dy, -dx, fill=0.0)
        incoming_sediment += _shift_float(leaving_sediment * share, -dy, -dx, fill=0.0)

    water[...] = water - outflow + incoming_water
    sediment[...] = sediment - leaving_sediment + incoming_sediment
    np.maximum(water, 0.0, out=water)
    np.maximum(sediment, 0.0, out=sediment)

    capacity = config.capacity * np.maximum(bed_drop, config.min_slope) * outflow
    under = sediment < capacity
    erode_amount = np.where(under, (capacity - sediment) * config.erosion_rate, 0.0)
    erode_amount = np.minimum(erode_amount, np.maximum(bed_drop, 0.0))
    erode_amount = np.minimum(erode_amount, np.maximum(config.max_erosion_per_step - state.removed, 0.0))
    deposit_amount = np.where(under, 0.0, (sediment - capacity) * config.deposition_rate)

    heights -= erode_amount
    heights += deposit_amount
    state.removed += erode_amount
    sediment += erode_amount - deposit_amount
    state.total_eroded += float(np.sum(erode_amount))
    state.total_deposited += float(np.sum(deposit_amount))

    water *= 1.0 - config.evaporation_rate


class _FlowHints:
    """D8 routing of the pre-erosion surface, as indices and unit vectors."""

    __slots__ = ("direction", "x", "y")

    def __init__(self, flow_field: FlowField) -> None:
        self.direction = flow_field.flow_dir
        self.x, self.y = flow_field.direction_vectors()
