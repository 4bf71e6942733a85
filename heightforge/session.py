"""Editing session: grid revisions with linear undo/redo."""

from __future__ import annotations

import logging
import threading
from typing import Any

from heightforge.config import ErosionConfig, HydrologyConfig, NoiseConfig
from heightforge.erosion import ErosionDiagnostics, erode
from heightforge.errors import InvalidConfig
from heightforge.grid import HeightGrid
from heightforge.hydrology import FlowField, solve
from heightforge.noise import generate
from heightforge.refine import RegionPredicate, apply_operation, mask_region
from heightforge.rng import RngStream

logger = logging.getLogger(__name__)


class TerrainSession:
    """Owns every revision of one terrain being edited.

    Revisions are stored privately and never handed out, so each one stays
    exactly as committed; `current` returns a copy. An edit made after an undo
    discards the redo tail. Flow fields are cached per revision because they
    are always recomputed from scratch.
    """

    def __init__(
        self,
        grid: HeightGrid,
        *,
        hydrology: HydrologyConfig | None = None,
        max_revisions: int | None = None,
    ) -> None:
        if max_revisions is not None and max_revisions < 1:
            raise InvalidConfig(f"max_revisions must be >= 1, got {max_revisions!r}")
        self._revisions: list[HeightGrid] = [grid.copy()]
        self._labels: list[str] = ["initial"]
        self._cursor = 0
        self._max_revisions = max_revisions
        self._hydrology = hydrology or HydrologyConfig()
        self._flow_cache: dict[int, FlowField] = {}

    @classmethod
    def from_noise(
        cls,
        width: int,
        height: int,
        config: NoiseConfig,
        *,
        cell_size: float = 1.0,
        origin: tuple[float, float] = (0.0, 0.0),
        **kwargs: Any,
    ) -> "TerrainSession":
        grid = generate((width, height), config, cell_size=cell_size, origin=origin)
        session = cls(grid, **kwargs)
        session._labels[0] = f"generate seed={config.seed}"
        return session

    @property
    def current(self) -> HeightGrid:
        return self._revisions[self._cursor].copy()

    @property
    def revision(self) -> int:
        return self._cursor

    @property
    def revision_count(self) -> int:
        return len(self._revisions)

    @property
    def history(self) -> list[str]:
        return list(self._labels)

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._revisions) - 1

    def revision_at(self, index: int) -> HeightGrid:
        if not 0 <= index < len(self._revisions):
            raise IndexError(f"revision {index} out of range [0, {len(self._revisions)})")
        return self._revisions[index].copy()

    def undo(self) -> bool:
        if not self.can_undo:
            return False
        self._cursor -= 1
        logger.debug(f"Undo to revision {self._cursor} ({self._labels[self._cursor]})")
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            return False
        self._cursor += 1
        logger.debug(f"Redo to revision {self._cursor} ({self._labels[self._cursor]})")
        return True

    def refine(self, name: str, **params: Any) -> HeightGrid:
        """Apply a named refinement to a copy of the current revision and commit it."""

        work = self.current
        apply_operation(work, name, **params)
        self._push(work, f"refine {name}")
        return work.copy()

    def refine_region(self, predicate: RegionPredicate, name: str, **params: Any) -> HeightGrid:
        work = self.current
        mask_region(work, predicate, name, **params)
        self._push(work, f"refine {name} (masked)")
        return work.copy()

    def regenerate(self, config: NoiseConfig, *, overlay_strength: float = 1.0) -> HeightGrid:
        """Re-roll noise, blending over the current revision when `overlay_strength < 1`."""

        base = self._revisions[self._cursor]
        grid = generate(
            (base.width, base.height),
            config,
            cell_size=base.cell_size,
            origin=base.origin,
            previous=base,
            overlay_strength=overlay_strength,
        )
        self._push(grid, f"generate seed={config.seed}")
        return grid.copy()

    def flow(self) -> FlowField:
        cached = self._flow_cache.get(self._cursor)
        if cached is None:
            cached = solve(self._revisions[self._cursor], self._hydrology)
            self._flow_cache[self._cursor] = cached
        return cached

    def erode(
        self,
        config: ErosionConfig,
        iterations: int,
        *,
        rng: RngStream | int | None = None,
        cancel: threading.Event | None = None,
    ) -> ErosionDiagnostics:
        """Erode the current revision; a run that completes no iteration adds no revision."""

        grid, diagnostics = erode(
            self._revisions[self._cursor],
            self.flow(),
            config,
            iterations,
            rng=rng,
            cancel=cancel,
        )
        if diagnostics.iterations_run > 0:
            self._push(grid, f"erode {config.model} x{diagnostics.iterations_run}")
        return diagnostics

    def _push(self, grid: HeightGrid, label: str) -> None:
        del self._revisions[self._cursor + 1 :]
        del self._labels[self._cursor + 1 :]
        for index in [k for k in self._flow_cache if k > self._cursor]:
            del self._flow_cache[index]

        self._revisions.append(grid.copy())
        self._labels.append(label)
        self._cursor += 1

        if self._max_revisions is not None and len(self._revisions) > self._max_revisions:
            drop = len(self._revisions) - self._max_revisions
            del self._revisions[:drop]
            del self._labels[:drop]
            self._cursor -= drop
            self._flow_cache = {k - drop: v for k, v in self._flow_cache.items() if k >= drop}
        logger.info(f"Revision {self._cursor}: {label}")
