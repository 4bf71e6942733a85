"""Multi-octave noise heightmap synthesis."""

from __future__ import annotations

import logging

import numpy as np

from heightforge.config import IslandConfig, NoiseConfig, WarpConfig
from heightforge.errors import InvalidConfig, InvalidDimensions
from heightforge.grid import HeightGrid
from heightforge.rng import RngStream

logger = logging.getLogger(__name__)

_GRADIENTS = np.array(
    [
        [1.0, 1.0],
        [-1.0, 1.0],
        [1.0, -1.0],
        [-1.0, -1.0],
        [1.0, 0.0],
        [-1.0, 0.0],
        [0.0, 1.0],
        [0.0, -1.0],
    ],
    dtype=np.float64,
)
_OCTAVE_OFFSET_RANGE = 256.0


def _fade(t: np.ndarray) -> np.ndarray:
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


def _grad_dot(hashed: np.ndarray, dx: np.ndarray, dy: np.ndarray) -> np.ndarray:
    g = _GRADIENTS[hashed & 7]
    return g[..., 0] * dx + g[..., 1] * dy


def perlin_2d(perm: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Gradient noise in roughly [-1, 1] at arbitrary float coordinates."""

    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    x0 = np.floor(x)
    y0 = np.floor(y)
    xf = x - x0
    yf = y - y0
    xi = x0.astype(np.int64) & 255
    yi = y0.astype(np.int64) & 255

    u = _fade(xf)
    v = _fade(yf)

    aa = perm[perm[xi] + yi]
    ab = perm[perm[xi] + yi + 1]
    ba = perm[perm[xi + 1] + yi]
    bb = perm[perm[xi + 1] + yi + 1]

    n00 = _grad_dot(aa, xf, yf)
    n10 = _grad_dot(ba, xf - 1.0, yf)
    n01 = _grad_dot(ab, xf, yf - 1.0)
    n11 = _grad_dot(bb, xf - 1.0, yf - 1.0)

    top = n00 + u * (n10 - n00)
    bottom = n01 + u * (n11 - n01)
    return top + v * (bottom - top)


def fbm(
    x: np.ndarray,
    y: np.ndarray,
    rng: RngStream,
    *,
    octaves: int,
    frequency: float,
    persistence: float = 0.5,
    lacunarity: float = 2.0,
) -> np.ndarray:
    """Fractal Brownian motion of Perlin noise, normalized by total amplitude.

    Each octave samples at `frequency *= lacunarity` and weight
    `amplitude *= persistence`, shifted by a seeded offset so octaves do not
    share lattice points at the origin.
    """

    perm = rng.permutation_table()
    offsets = rng.fork("octave-offsets").generator().uniform(
        -_OCTAVE_OFFSET_RANGE, _OCTAVE_OFFSET_RANGE, size=(octaves, 2)
    )

    field = np.zeros(np.shape(x), dtype=np.float64)
    amplitude = 1.0
    total_amplitude = 0.0
    freq = float(frequency)
    for octave in range(octaves):
        ox, oy = offsets[octave]
        field += amplitude * perlin_2d(perm, x * freq + ox, y * freq + oy)
        total_amplitude += amplitude
        amplitude *= persistence
        freq *= lacunarity

    if total_amplitude == 0:
        return field
    return field / total_amplitude


def warp_coordinates(
    x: np.ndarray,
    y: np.ndarray,
    rng: RngStream,
    warp: WarpConfig,
) -> tuple[np.ndarray, np.ndarray]:
    """Offset sample coordinates by two secondary fBm fields."""

    warp_x = fbm(x, y, rng.fork("warp-x"), octaves=warp.octaves, frequency=warp.frequency)
    warp_y = fbm(x, y, rng.fork("warp-y"), octaves=warp.octaves, frequency=warp.frequency)
    return x + warp_x * warp.strength, y + warp_y * warp.strength


def island_falloff(width: int, height: int, island: IslandConfig) -> np.ndarray:
    """Multiplier in [0, 1] that fades the field out within `border` of each edge."""

    xf = np.arange(width, dtype=np.float64) / width
    yf = np.arange(height, dtype=np.float64) / height
    border = island.border

    edge_x = np.zeros(width, dtype=np.float64)
    low = xf < border
    high = xf > 1.0 - border
    edge_x[low] = 1.0 - xf[low] / border
    edge_x[high] = (xf[high] - (1.0 - border)) / border

    edge_y = np.zeros(height, dtype=np.float64)
    low = yf < border
    high = yf > 1.0 - border
    edge_y[low] = 1.0 - yf[low] / border
    edge_y[high] = (yf[high] - (1.0 - border)) / border

    edge = edge_y[:, None] + edge_x[None, :]
    return np.clip(1.0 - np.power(edge, island.curve), 0.0, 1.0)


def rescale_to_range(raw: np.ndarray, min_elev: float, max_elev: float) -> np.ndarray:
    """Linearly map the realized min/max of `raw` onto `[min_elev, max_elev]`.

    Both bounds are hit exactly whenever `raw` holds two distinct values; a
    constant field maps to `min_elev`.
    """

    lo = float(raw.min())
    hi = float(raw.max())
    if hi <= lo:
        return np.full(raw.shape, float(min_elev), dtype=np.float64)

    t = (raw - lo) / (hi - lo)
    out = np.clip(min_elev + t * (max_elev - min_elev), min_elev, max_elev)
    out[raw == lo] = min_elev
    out[raw == hi] = max_elev
    return out


def generate(
    grid_dims: tuple[int, int],
    config: NoiseConfig,
    *,
    cell_size: float = 1.0,
    origin: tuple[float, float] = (0.0, 0.0),
    previous: HeightGrid | None = None,
    overlay_strength: float = 1.0,
) -> HeightGrid:
    """Synthesize a heightmap of `grid_dims = (width, height)` from `config`.

    Identical dims, config and seed always produce bit-identical elevations.
    With `previous` and `overlay_strength < 1` the new field is blended over the
    previous grid, which lets an editor re-roll noise while keeping part of the
    existing terrain; the result is clamped back into the configured range.
    """

    config.validate()
    if not 0.0 <= overlay_strength <= 1.0:
        raise InvalidConfig(f"overlay_strength must be in [0, 1], got {overlay_strength!r}")
    width, height = grid_dims
    grid = HeightGrid.create(width, height, cell_size, origin, fill=config.min_elev)
    if previous is not None and previous.shape != grid.shape:
        raise InvalidDimensions(f"previous grid is {previous.width}x{previous.height}, expected {width}x{height}")

    logger.info(f"Synthesizing {width}x{height} heightmap (seed={config.seed}, octaves={config.octaves})")
    rng = RngStream(config.seed)
    wx, wy = grid.world_coordinates()
    if config.warp is not None:
        wx, wy = warp_coordinates(wx, wy, rng.fork("warp"), config.warp)

    raw = fbm(
        wx,
        wy,
        rng.fork("height"),
        octaves=config.octaves,
        frequency=config.frequency,
        persistence=config.persistence,
        lacunarity=config.lacunarity,
    )
    shaped = np.clip(0.5 + 0.5 * config.amplitude * raw, 0.0, 1.0)
    if config.ridge_power != 1.0:
        shaped = np.power(shaped + 0.5, config.ridge_power) - 0.5
    if config.island is not None:
        shaped = shaped * island_falloff(width, height, config.island)

    out = rescale_to_range(shaped, config.min_elev, config.max_elev)
    if previous is not None and overlay_strength < 1.0:
        blended = out * overlay_strength + previous.elevations * (1.0 - overlay_strength)
        out = np.clip(blended, config.min_elev, config.max_elev)

    grid.commit(out)
    logger.debug(f"Raw noise range [{float(raw.min()):.4f}, {float(raw.max()):.4f}]")
    return grid
