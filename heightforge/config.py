"""Configuration models for terrain generation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import math
import numbers
from typing import Any

from heightforge.errors import InvalidConfig


DEFAULT_WIDTH = 512
DEFAULT_HEIGHT = 512
DEFAULT_CELL_SIZE = 1.0

MIN_OCTAVES = 1
MAX_OCTAVES = 16
MAX_EROSION_ITERATIONS = 10_000

EROSION_MODELS = ("particle", "grid")


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise InvalidConfig(message)


def _finite(value: float) -> bool:
    return isinstance(value, numbers.Real) and math.isfinite(value)


def _integer(value: int) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


@dataclass(frozen=True)
class WarpConfig:
    """Domain warp applied to sample coordinates before the main fBm pass."""

    strength: float = 40.0
    frequency: float = 0.003
    octaves: int = 3

    def validate(self) -> None:
        _require(_finite(self.strength) and self.strength > 0.0, "warp strength must be positive")
        _require(_finite(self.frequency) and self.frequency > 0.0, "warp frequency must be positive")
        _require(
            _integer(self.octaves) and MIN_OCTAVES <= self.octaves <= MAX_OCTAVES,
            f"warp octaves must be in [{MIN_OCTAVES}, {MAX_OCTAVES}]",
        )


@dataclass(frozen=True)
class IslandConfig:
    """Edge falloff that pushes the map border down to produce an island."""

    border: float = 0.1
    curve: float = 2.0

    def validate(self) -> None:
        _require(_finite(self.border) and 0.01 <= self.border <= 0.5, "island border must be in [0.01, 0.5]")
        _require(_finite(self.curve) and 1.0 <= self.curve <= 10.0, "island curve must be in [1, 10]")


@dataclass(frozen=True)
class NoiseConfig:
    """Multi-octave noise synthesis parameters.

    `frequency` is expressed in cycles per world unit, so the same config keeps
    its feature size when `cell_size` changes. `amplitude` scales the octave sum
    around mid level before shaping; values above 1 saturate into plateaus.
    """

    seed: int = 12345
    octaves: int = 6
    frequency: float = 0.0025
    persistence: float = 0.5
    lacunarity: float = 2.0
    amplitude: float = 1.0
    min_elev: float = 0.0
    max_elev: float = 1.0
    ridge_power: float = 1.0
    warp: WarpConfig | None = None
    island: IslandConfig | None = None

    def validate(self) -> None:
        _require(_integer(self.seed), "seed must be an integer")
        _require(
            _integer(self.octaves) and MIN_OCTAVES <= self.octaves <= MAX_OCTAVES,
            f"octaves must be in [{MIN_OCTAVES}, {MAX_OCTAVES}], got {self.octaves!r}",
        )
        _require(_finite(self.frequency) and self.frequency > 0.0, f"frequency must be positive, got {self.frequency!r}")
        _require(
            _finite(self.persistence) and 0.0 < self.persistence <= 1.0,
            f"persistence must be in (0, 1], got {self.persistence!r}",
        )
        _require(_finite(self.lacunarity) and self.lacunarity >= 1.0, f"lacunarity must be >= 1, got {self.lacunarity!r}")
        _require(
            _finite(self.amplitude) and self.amplitude > 0.0,
            f"amplitude must be positive, got {self.amplitude!r}",
        )
        _require(_finite(self.min_elev) and _finite(self.max_elev), "elevation range must be finite")
        _require(self.min_elev < self.max_elev, "min_elev must be below max_elev")
        _require(_finite(self.ridge_power) and 0.1 <= self.ridge_power <= 8.0, "ridge_power must be in [0.1, 8]")
        if self.warp is not None:
            self.warp.validate()
        if self.island is not None:
            self.island.validate()


@dataclass(frozen=True)
class HydrologyConfig:
    """Thresholds for classifying basins and channels.

    Areas are in cells of accumulated upstream flow. Rivers use a lower
    threshold than lakes.

    A basin also needs `min_lake_volume` of stored water (depth times cell
    area) before it counts as a lake, which keeps single-cell pits on a
    channel out of the lake mask.
    """

    lake_min_area: float = 64.0
    river_min_area: float = 24.0
    min_lake_depth: float = 0.0
    min_lake_volume: float = 0.05

    def validate(self) -> None:
        _require(_finite(self.lake_min_area) and self.lake_min_area >= 1.0, "lake_min_area must be >= 1")
        _require(_finite(self.river_min_area) and self.river_min_area >= 1.0, "river_min_area must be >= 1")
        _require(
            self.river_min_area < self.lake_min_area,
            "river_min_area must be lower than lake_min_area",
        )
        _require(_finite(self.min_lake_depth) and self.min_lake_depth >= 0.0, "min_lake_depth must be >= 0")
        _require(_finite(self.min_lake_volume) and self.min_lake_volume >= 0.0, "min_lake_volume must be >= 0")


@dataclass(frozen=True)
class ErosionConfig:
    """Physical parameters shared by the particle and grid erosion models."""

    model: str = "particle"
    seed: int = 777
    max_erosion_per_step: float = 0.02
    erosion_rate: float = 0.3
    deposition_rate: float = 0.3
    evaporation_rate: float = 0.02
    capacity: float = 4.0
    min_slope: float = 0.01
    flow_hint_weight: float = 0.25
    # particle model
    droplets_per_iteration: int = 2000
    max_steps: int = 64
    inertia: float = 0.05
    gravity: float = 4.0
    initial_water: float = 1.0
    initial_speed: float = 1.0
    min_speed: float = 0.01
    # grid model
    rain_rate: float = 0.01
    flow_rate: float = 0.5

    def validate(self) -> None:
        _require(self.model in EROSION_MODELS, f"model must be one of {EROSION_MODELS}, got {self.model!r}")
        _require(_integer(self.seed), "seed must be an integer")
        _require(
            _finite(self.max_erosion_per_step) and self.max_erosion_per_step > 0.0,
            "max_erosion_per_step must be positive",
        )
        for name in ("erosion_rate", "deposition_rate"):
            value = getattr(self, name)
            _require(_finite(value) and 0.0 < value <= 1.0, f"{name} must be in (0, 1], got {value!r}")
        _require(
            _finite(self.evaporation_rate) and 0.0 <= self.evaporation_rate < 1.0,
            f"evaporation_rate must be in [0, 1), got {self.evaporation_rate!r}",
        )
        _require(_finite(self.capacity) and self.capacity > 0.0, "capacity must be positive")
        _require(_finite(self.min_slope) and self.min_slope >= 0.0, "min_slope must be >= 0")
        _require(
            _finite(self.flow_hint_weight) and 0.0 <= self.flow_hint_weight <= 1.0,
            "flow_hint_weight must be in [0, 1]",
        )
        _require(
            _integer(self.droplets_per_iteration) and self.droplets_per_iteration > 0,
            "droplets_per_iteration must be a positive integer",
        )
        _require(_integer(self.max_steps) and self.max_steps > 0, "max_steps must be a positive integer")
        _require(_finite(self.inertia) and 0.0 <= self.inertia < 1.0, "inertia must be in [0, 1)")
        _require(_finite(self.gravity) and self.gravity > 0.0, "gravity must be positive")
        _require(_finite(self.initial_water) and self.initial_water > 0.0, "initial_water must be positive")
        _require(_finite(self.initial_speed) and self.initial_speed >= 0.0, "initial_speed must be >= 0")
        _require(_finite(self.min_speed) and self.min_speed >= 0.0, "min_speed must be >= 0")
        _require(_finite(self.rain_rate) and self.rain_rate > 0.0, "rain_rate must be positive")
        _require(_finite(self.flow_rate) and 0.0 < self.flow_rate <= 1.0, "flow_rate must be in (0, 1]")


@dataclass(frozen=True)
class RefineStep:
    """One named refinement operation applied by the pipeline."""

    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RenderConfig:
    """Derived raster rendering configuration."""

    hillshade_azimuth_deg: float = 315.0
    hillshade_altitude_deg: float = 45.0
    hillshade_z_factor: float = 4.0
    sea_level: float = 0.4


@dataclass(frozen=True)
class GeneratorConfig:
    """Primary pipeline configuration."""

    noise: NoiseConfig = field(default_factory=NoiseConfig)
    refine: tuple[RefineStep, ...] = ()
    hydrology: HydrologyConfig = field(default_factory=HydrologyConfig)
    erosion: ErosionConfig = field(default_factory=ErosionConfig)
    erosion_iterations: int = 4
    render: RenderConfig = field(default_factory=RenderConfig)

    def validate(self) -> None:
        self.noise.validate()
        self.hydrology.validate()
        self.erosion.validate()
        _require(
            _integer(self.erosion_iterations) and 0 <= self.erosion_iterations <= MAX_EROSION_ITERATIONS,
            f"erosion_iterations must be in [0, {MAX_EROSION_ITERATIONS}]",
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
