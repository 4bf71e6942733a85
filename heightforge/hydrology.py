"""Drainage structure: depression filling, D8 flow routing, basins and rivers."""

from __future__ import annotations

from dataclasses import dataclass
import heapq
import logging

import numpy as np
from scipy.ndimage import label

from heightforge.config import HydrologyConfig
from heightforge.errors import DegenerateGrid, OutOfBounds
from heightforge.grid import HeightGrid

logger = logging.getLogger(__name__)

SINK = -1

# (dy, dx) in tie-break priority order: N, S, E, W, then NE, NW, SE, SW.
_DIRECTIONS_8 = [
    (-1, 0),
    (1, 0),
    (0, 1),
    (0, -1),
    (-1, 1),
    (-1, -1),
    (1, 1),
    (1, -1),
]
_SQRT2 = float(np.sqrt(2.0))
_STEP_LENGTH = np.array([1.0, 1.0, 1.0, 1.0, _SQRT2, _SQRT2, _SQRT2, _SQRT2], dtype=np.float64)
_DIR_DY = np.array([d[0] for d in _DIRECTIONS_8], dtype=np.int64)
_DIR_DX = np.array([d[1] for d in _DIRECTIONS_8], dtype=np.int64)

_DIR_LOOKUP = np.full((3, 3), SINK, dtype=np.int8)
for _idx, (_dy, _dx) in enumerate(_DIRECTIONS_8):
    _DIR_LOOKUP[_dy + 1, _dx + 1] = _idx


@dataclass(frozen=True)
class BasinRecord:
    """A filled depression: cells raised to a common spill elevation."""

    basin_id: int
    spill_elevation: float
    member_cells: np.ndarray
    outlet_cell: int
    accumulated_area: float
    max_depth: float
    volume: float
    is_lake: bool


@dataclass(frozen=True)
class HydrologyMetrics:
    sink_count: int
    basin_count: int
    lake_count: int
    lake_cell_count: int
    river_cell_count: int
    filled_cell_count: int
    max_flow_accum: float
    mean_flow_accum: float


@dataclass(frozen=True)
class FlowField:
    """Drainage structure of one grid state.

    `flow_dir` holds an index into the D8 neighbour table or `SINK`.
    `flow_accum` counts contributing cells including the cell itself.
    Never updated incrementally: re-run `solve` after the grid changes.
    """

    width: int
    height: int
    cell_size: float
    flow_dir: np.ndarray
    flow_accum: np.ndarray
    filled: np.ndarray
    basins: tuple[BasinRecord, ...]
    basin_id_map: np.ndarray
    lake_mask: np.ndarray
    river_mask: np.ndarray
    metrics: HydrologyMetrics

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    @property
    def contributing_area(self) -> np.ndarray:
        """Upstream area in world units squared."""

        return self.flow_accum * (self.cell_size * self.cell_size)

    @property
    def lakes(self) -> tuple[BasinRecord, ...]:
        return tuple(b for b in self.basins if b.is_lake)

    @property
    def sink_mask(self) -> np.ndarray:
        return self.flow_dir == SINK

    def downstream_index(self) -> np.ndarray:
        """Flat index of each cell's receiver, `-1` at sinks."""

        return _flow_dest_from_dir(self.flow_dir)

    def downstream(self, x: int, y: int) -> tuple[int, int] | None:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise OutOfBounds(f"cell ({x}, {y}) outside {self.width}x{self.height} grid")
        d = int(self.flow_dir[y, x])
        if d == SINK:
            return None
        dy, dx = _DIRECTIONS_8[d]
        return (x + dx, y + dy)

    def direction_vectors(self) -> tuple[np.ndarray, np.ndarray]:
        """Unit (dx, dy) of each cell's flow direction, zero at sinks."""

        valid = self.flow_dir >= 0
        d = np.where(valid, self.flow_dir, 0).astype(np.int64)
        vx = np.where(valid, _DIR_DX[d] / _STEP_LENGTH[d], 0.0)
        vy = np.where(valid, _DIR_DY[d] / _STEP_LENGTH[d], 0.0)
        return vx, vy


def solve(grid: HeightGrid, config: HydrologyConfig | None = None) -> FlowField:
    """Compute flow directions, accumulation, basins, lakes and rivers."""

    cfg = config or HydrologyConfig()
    cfg.validate()

    elev = grid.elevations
    if float(np.ptp(elev)) == 0.0:
        raise DegenerateGrid(
            f"{grid.width}x{grid.height} grid is flat at {float(elev.flat[0])}; perturb it before routing"
        )

    logger.info(f"Routing drainage over {grid.width}x{grid.height} grid")
    filled, parent, order = priority_flood(elev)
    flow_dir = compute_flow_d8(filled, parent)
    flow_accum = accumulate_flow(flow_dir, order)

    basins, basin_id_map = _delineate_basins(elev, filled, flow_dir, flow_accum, grid.cell_size, cfg)

    lake_mask = np.zeros(grid.shape, dtype=bool)
    lake_flat = lake_mask.reshape(-1)
    for basin in basins:
        if basin.is_lake:
            lake_flat[basin.member_cells] = True
    river_mask = (flow_accum >= cfg.river_min_area) & ~lake_mask

    metrics = HydrologyMetrics(
        sink_count=int(np.count_nonzero(flow_dir == SINK)),
        basin_count=len(basins),
        lake_count=sum(1 for b in basins if b.is_lake),
        lake_cell_count=int(np.count_nonzero(lake_mask)),
        river_cell_count=int(np.count_nonzero(river_mask)),
        filled_cell_count=int(np.count_nonzero(filled > elev)),
        max_flow_accum=float(np.max(flow_accum)),
        mean_flow_accum=float(np.mean(flow_accum)),
    )
    logger.info(
        f"Drainage: {metrics.basin_count} basins ({metrics.lake_count} lakes), "
        f"{metrics.river_cell_count} river cells, max accumulation {metrics.max_flow_accum:.0f}"
    )

    return FlowField(
        width=grid.width,
        height=grid.height,
        cell_size=grid.cell_size,
        flow_dir=flow_dir,
        flow_accum=flow_accum,
        filled=filled,
        basins=tuple(basins),
        basin_id_map=basin_id_map,
        lake_mask=lake_mask,
        river_mask=river_mask,
        metrics=metrics,
    )


def priority_flood(height: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Priority-flood depression filling seeded from the grid boundary.

    Cells are processed in increasing elevation order (ties by flat index);
    each enclosed minimum is raised to the level at which the flood reaches
    it, i.e. its spill elevation. Returns the filled surface, the flat index
    of the cell each cell was flooded from (`-1` for boundary seeds) and the
    processing order. Reversing the order visits every cell before the cell it
    drains into.
    """

    h, w = height.shape
    size = h * w
    filled = height.astype(np.float64, copy=True)
    flat = filled.reshape(-1)
    visited = np.zeros(size, dtype=bool)
    parent = np.full(size, -1, dtype=np.int64)
    order = np.empty(size, dtype=np.int64)

    edge = np.zeros((h, w), dtype=bool)
    edge[0, :] = True
    edge[-1, :] = True
    edge[:, 0] = True
    edge[:, -1] = True
    seed_idx = np.flatnonzero(edge.reshape(-1))
    visited[seed_idx] = True
    heap: list[tuple[float, int]] = [(float(flat[i]), int(i)) for i in seed_idx]
    heapq.heapify(heap)

    count = 0
    while heap:
        level, idx = heapq.heappop(heap)
        order[count] = idx
        count += 1
        y, x = divmod(idx, w)
        for dy, dx in _DIRECTIONS_8:
            ny = y + dy
            nx = x + dx
            if ny < 0 or ny >= h or nx < 0 or nx >= w:
                continue
            nidx = ny * w + nx
            if visited[nidx]:
                continue
            visited[nidx] = True
            parent[nidx] = idx
            if flat[nidx] < level:
                flat[nidx] = level
            heapq.heappush(heap, (float(flat[nidx]), nidx))

    return filled, parent, order


def compute_flow_d8(filled: np.ndarray, parent: np.ndarray) -> np.ndarray:
    """Steepest-descent direction per cell on the filled surface.

    Drop is divided by step length; ties keep the earlier neighbour in the
    priority order. Cells without a strictly lower neighbour (flats and lake
    surfaces) follow their flood parent, which is never higher. Boundary seeds
    with no lower neighbour remain sinks.
    """

    h, w = filled.shape
    best_slope = np.zeros((h, w), dtype=np.float64)
    flow_dir = np.full((h, w), SINK, dtype=np.int8)

    for idx, (dy, dx) in enumerate(_DIRECTIONS_8):
        neighbour = _shift_float(filled, dy, dx, fill=np.inf)
        slope = (filled - neighbour) / _STEP_LENGTH[idx]
        better = slope > best_slope
        best_slope[better] = slope[better]
        flow_dir[better] = idx

    flat_dir = flow_dir.reshape(-1)
    pending = np.flatnonzero((flat_dir == SINK) & (parent >= 0))
    if pending.size:
        cy, cx = np.divmod(pending, w)
        py, px = np.divmod(parent[pending], w)
        flat_dir[pending] = _DIR_LOOKUP[py - cy + 1, px - cx + 1]
    return flow_dir


def accumulate_flow(flow_dir: np.ndarray, order: np.ndarray) -> np.ndarray:
    """Upstream cell count, visiting cells upstream-first (reverse flood order)."""

    dest = _flow_dest_from_dir(flow_dir)
    accum = np.ones(dest.size, dtype=np.float64)
    for src in order[::-1]:
        dst = dest[src]
        if dst >= 0:
            accum[dst] += accum[src]
    return accum.reshape(flow_dir.shape)


def trace_downstream(flow: FlowField, x: int, y: int) -> list[tuple[int, int]]:
    """Cells visited from `(x, y)` to its sink, inclusive."""

    path = [(x, y)]
    limit = flow.width * flow.height
    nxt = flow.downstream(x, y)
    while nxt is not None:
        path.append(nxt)
        if len(path) > limit:
            raise RuntimeError(f"flow path from ({x}, {y}) does not terminate")
        nxt = flow.downstream(*nxt)
    return path


def validate_flow_field(flow: FlowField) -> None:
    """Check the drainage invariants, raising ValueError on the first violation."""

    accum = flow.flow_accum
    if not np.isfinite(accum).all():
        raise ValueError("flow_accum contains non-finite values")
    if float(np.min(accum)) < 1.0:
        raise ValueError(f"flow_accum below self-contribution: {float(np.min(accum)):.3f}")

    dest = flow.downstream_index()
    src = np.flatnonzero(dest >= 0)
    filled = flow.filled.reshape(-1)
    if np.any(filled[dest[src]] > filled[src]):
        raise ValueError("flow direction points uphill on the filled surface")
    accum_flat = accum.reshape(-1)
    if np.any(accum_flat[dest[src]] < accum_flat[src]):
        raise ValueError("accumulation decreases downstream")

    # Pointer doubling: after ceil(log2(n)) + 1 squarings every terminating
    # path has reached its sink.
    jump = np.where(dest >= 0, dest, np.arange(dest.size))
    for _ in range(int(np.ceil(np.log2(max(dest.size, 2)))) + 1):
        jump = jump[jump]
    if np.any(dest[jump] >= 0):
        raise ValueError("flow directions contain a cycle")


def _delineate_basins(
    elev: np.ndarray,
    filled: np.ndarray,
    flow_dir: np.ndarray,
    flow_accum: np.ndarray,
    cell_size: float,
    cfg: HydrologyConfig,
) -> tuple[list[BasinRecord], np.ndarray]:
    raised = filled > elev
    labels, count = label(raised, structure=np.ones((3, 3), dtype=bool))
    basin_id_map = labels.astype(np.int32)
    if count == 0:
        return [], basin_id_map

    labels_flat = labels.reshape(-1)
    filled_flat = filled.reshape(-1)
    depth_flat = (filled - elev).reshape(-1)
    accum_flat = flow_accum.reshape(-1)
    dest = _flow_dest_from_dir(flow_dir)
    cell_area = cell_size * cell_size

    basins: list[BasinRecord] = []
    for basin_id, members in _group_by_label(labels_flat):
        downstream = dest[members]
        leaving = members[(downstream < 0) | (labels_flat[np.maximum(downstream, 0)] != basin_id)]
        if leaving.size == 0:
            leaving = members
        outlet = int(leaving[np.argmax(accum_flat[leaving])])
        area = float(accum_flat[outlet])
        max_depth = float(np.max(depth_flat[members]))
        volume = float(np.sum(depth_flat[members])) * cell_area
        is_lake = (
            area >= cfg.lake_min_area and max_depth >= cfg.min_lake_depth and volume >= cfg.min_lake_volume
        )
        basins.append(
            BasinRecord(
                basin_id=basin_id,
                spill_elevation=float(np.max(filled_flat[members])),
                member_cells=members,
                outlet_cell=outlet,
                accumulated_area=area,
                max_depth=max_depth,
                volume=volume,
                is_lake=is_lake,
            )
        )
    return basins, basin_id_map


def _group_by_label(labels_flat: np.ndarray) -> list[tuple[int, np.ndarray]]:
    idx = np.flatnonzero(labels_flat)
    ordered = idx[np.argsort(labels_flat[idx], kind="stable")]
    keys = labels_flat[ordered]
    cuts = np.flatnonzero(np.diff(keys)) + 1
    return [(int(labels_flat[group[0]]), group) for group in np.split(ordered, cuts)]


def _flow_dest_from_dir(flow_dir: np.ndarray) -> np.ndarray:
    h, w = flow_dir.shape
    flat_dir = flow_dir.reshape(-1).astype(np.int64)
    dest = np.full(h * w, -1, dtype=np.int64)
    valid = flat_dir >= 0
    cells = np.flatnonzero(valid)
    cy, cx = np.divmod(cells, w)
    d = flat_dir[cells]
    dest[cells] = (cy + _DIR_DY[d]) * w + (cx + _DIR_DX[d])
    return dest


def _shift_float(field: np.ndarray, dy: int, dx: int, *, fill: float) -> np.ndarray:
    """Value of the neighbour at offset `(dy, dx)` for every cell, `fill` off-grid."""

    out = np.full(field.shape, fill, dtype=np.float64)
    h, w = field.shape
    src_y0 = max(0, -dy)
    src_y1 = min(h, h - dy)
    src_x0 = max(0, -dx)
    src_x1 = min(w, w - dx)
    if src_y0 >= src_y1 or src_x0 >= src_x1:
        return out
    out[src_y0:src_y1, src_x0:src_x1] = field[src_y0 + dy : src_y1 + dy, src_x0 + dx : src_x1 + dx]
    return out
