"""
Cave Builder - Noise Generation Utilities
Provides deterministic, seedable noise for procedural cave generation.

All noise kernels operate on numpy arrays. NoiseEngine exposes a scalar API
that wraps the same kernels and memoizes results, and an array API used for
bulk field sampling. Both return identical values for identical inputs.
"""

import math
import numbers
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np

# =============================================================================
# CONSTANTS
# =============================================================================

SQRT3 = math.sqrt(3.0)

F2 = 0.5 * (SQRT3 - 1.0)
G2 = (3.0 - SQRT3) / 6.0
F3 = 1.0 / 3.0
G3 = 1.0 / 6.0
F4 = (math.sqrt(5.0) - 1.0) / 4.0
G4 = (5.0 - math.sqrt(5.0)) / 20.0

GRAD2 = np.array([
    [1, 1], [-1, 1], [1, -1], [-1, -1],
    [1, 0], [-1, 0], [0, 1], [0, -1],
], dtype=np.float64)

GRAD3 = np.array([
    [1, 1, 0], [-1, 1, 0], [1, -1, 0], [-1, -1, 0],
    [1, 0, 1], [-1, 0, 1], [1, 0, -1], [-1, 0, -1],
    [0, 1, 1], [0, -1, 1], [0, 1, -1], [0, -1, -1],
], dtype=np.float64)

GRAD4 = np.array([
    [0, 1, 1, 1], [0, 1, 1, -1], [0, 1, -1, 1], [0, 1, -1, -1],
    [0, -1, 1, 1], [0, -1, 1, -1], [0, -1, -1, 1], [0, -1, -1, -1],
    [1, 0, 1, 1], [1, 0, 1, -1], [1, 0, -1, 1], [1, 0, -1, -1],
    [-1, 0, 1, 1], [-1, 0, 1, -1], [-1, 0, -1, 1], [-1, 0, -1, -1],
    [1, 1, 0, 1], [1, 1, 0, -1], [1, -1, 0, 1], [1, -1, 0, -1],
    [-1, 1, 0, 1], [-1, 1, 0, -1], [-1, -1, 0, 1], [-1, -1, 0, -1],
    [1, 1, 1, 0], [1, 1, -1, 0], [1, -1, 1, 0], [1, -1, -1, 0],
    [-1, 1, 1, 0], [-1, 1, -1, 0], [-1, -1, 1, 0], [-1, -1, -1, 0],
], dtype=np.float64)

WORLEY_MODES = ("F1", "F2", "F2-F1")

MAX_OCTAVES = 20
MAX_HEIGHTMAP_SIZE = 1024

SEED_MASK = 0xFFFFFFFFFFFFFFFF

# Offsets used to decorrelate the three warp channels
_WARP_Q_OFFSETS = ((0.0, 0.0, 0.0), (5.2, 1.3, 8.7), (3.7, 9.1, 2.8))
_WARP_R_OFFSETS = ((0.0, 0.0, 0.0), (1.7, 9.2, 2.3), (8.3, 2.8, 9.7))


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass
class CacheConfig:
    """Memoization settings for a NoiseEngine."""

    enabled: bool = True
    """Whether scalar results are memoized"""

    max_size: int = 10000
    """Maximum number of cached values (at least 100)"""

    cleanup_threshold: float = 0.8
    """Minimum fill fraction of max_size before random eviction runs (0.5-1.0)"""

    full_precision: bool = True
    """Use exact coordinates in keys; otherwise bucket to 1/1000 units"""

    def __post_init__(self):
        self.max_size = max(100, int(self.max_size))
        self.cleanup_threshold = min(1.0, max(0.5, float(self.cleanup_threshold)))


@dataclass
class NoiseSettings:
    """Fractal noise settings used by get_fbm and heightmaps."""
    octaves: int = 6
    lacunarity: float = 2.0
    persistence: float = 0.5
    scale: float = 1.0
    offset: Tuple[float, float, float] = (0.0, 0.0, 0.0)


@dataclass
class WarpSettings:
    """Fractal settings for one side of a domain warp."""
    octaves: int = 4
    lacunarity: float = 2.0
    persistence: float = 0.5
    scale: float = 1.0
    strength: float = 0.1


def clamp_fbm_params(octaves: float, lacunarity: float, persistence: float) -> Tuple[int, float, float]:
    """Clamp fractal parameters into their valid ranges."""
    return (
        int(max(1, min(MAX_OCTAVES, math.floor(octaves)))),
        max(0.1, float(lacunarity)),
        max(0.0, min(1.0, float(persistence))),
    )


def normalize(value: float, new_min: float, new_max: float, old_min: float = -1.0, old_max: float = 1.0) -> float:
    """Linearly remap a value from [old_min, old_max] to [new_min, new_max]."""
    return new_min + (value - old_min) / (old_max - old_min) * (new_max - new_min)


# =============================================================================
# ARRAY KERNELS
# =============================================================================

def _hash(perm: np.ndarray, values: np.ndarray) -> np.ndarray:
    return perm[np.bitwise_and(values, 255)]


def _simplex(
    perm: np.ndarray,
    coords: Sequence[np.ndarray],
    skew: float,
    unskew: float,
    grads: np.ndarray,
    radius_sq: float,
    scale: float,
) -> np.ndarray:
    """
    N-dimensional simplex noise.

    The simplex containing each point is found by ranking the offsets from
    the skewed cell origin; corner n adds one unit along the n highest
    ranked axes.
    """
    points = np.stack(coords, axis=-1)
    dims = points.shape[-1]

    s = points.sum(axis=-1, keepdims=True) * skew
    cell = np.floor(points + s)
    t = cell.sum(axis=-1, keepdims=True) * unskew
    origin = points - (cell - t)
    base = cell.astype(np.int64)

    order = np.argsort(-origin, axis=-1, kind="stable")
    axes = np.arange(dims)
    offset = np.zeros_like(base)
    total = np.zeros(points.shape[:-1], dtype=np.float64)

    for corner in range(dims + 1):
        if corner > 0:
            offset = offset + (order[..., corner - 1:corner] == axes)

        position = origin - offset + corner * unskew
        corner_cell = base + offset

        h = _hash(perm, corner_cell[..., -1])
        for axis in range(dims - 2, -1, -1):
            h = _hash(perm, corner_cell[..., axis] + h)

        grad = grads[h % len(grads)]
        falloff = radius_sq - np.sum(position * position, axis=-1)
        dot = np.sum(grad * position, axis=-1)
        total += np.where(falloff > 0.0, falloff ** 4 * dot, 0.0)

    return np.clip(scale * total, -1.0, 1.0)


def simplex2_kernel(perm, x, y):
    return _simplex(perm, (x, y), F2, G2, GRAD2, 0.5, 70.0)


def simplex3_kernel(perm, x, y, z):
    return _simplex(perm, (x, y, z), F3, G3, GRAD3, 0.6, 32.0)


def simplex4_kernel(perm, x, y, z, w):
    return _simplex(perm, (x, y, z, w), F4, G4, GRAD4, 0.6, 27.0)


def _fade(t):
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


def _lerp(a, b, t):
    return a + t * (b - a)


def perlin3_kernel(perm, x, y, z):
    """Classic gradient noise with quintic fade."""
    xi, yi, zi = np.floor(x), np.floor(y), np.floor(z)
    xf, yf, zf = x - xi, y - yi, z - zi
    X, Y, Z = xi.astype(np.int64), yi.astype(np.int64), zi.astype(np.int64)
    u, v, w = _fade(xf), _fade(yf), _fade(zf)

    h1 = _hash(perm, X)
    h2 = _hash(perm, X + 1)
    rows = {
        (0, 0): _hash(perm, h1 + Y),
        (0, 1): _hash(perm, h1 + Y + 1),
        (1, 0): _hash(perm, h2 + Y),
        (1, 1): _hash(perm, h2 + Y + 1),
    }

    def corner(dx, dy, dz):
        grad = GRAD3[_hash(perm, rows[(dx, dy)] + Z + dz) % 12]
        return grad[..., 0] * (xf - dx) + grad[..., 1] * (yf - dy) + grad[..., 2] * (zf - dz)

    near = _lerp(
        _lerp(corner(0, 0, 0), corner(1, 0, 0), u),
        _lerp(corner(0, 1, 0), corner(1, 1, 0), u),
        v,
    )
    far = _lerp(
        _lerp(corner(0, 0, 1), corner(1, 0, 1), u),
        _lerp(corner(0, 1, 1), corner(1, 1, 1), u),
        v,
    )
    return np.clip(_lerp(near, far, w), -1.0, 1.0)


def worley3_kernel(perm, x, y, z, jitter: float, mode: str):
    """Cellular noise over the 27 neighbouring cells, normalized to [-1, 1]."""
    xi, yi, zi = np.floor(x), np.floor(y), np.floor(z)
    f1 = np.full(x.shape, np.inf)
    f2 = np.full(x.shape, np.inf)

    for dx in (-1, 0, 1):
        for dy in (-1, 0, 1):
            for dz in (-1, 0, 1):
                cx, cy, cz = xi + dx, yi + dy, zi + dz
                ph = _hash(perm, cx.astype(np.int64) + _hash(
                    perm, cy.astype(np.int64) + _hash(perm, cz.astype(np.int64))))

                px = cx + (ph % 1000) / 1000.0 * jitter
                py = cy + ((ph * 7) % 1000) / 1000.0 * jitter
                pz = cz + ((ph * 13) % 1000) / 1000.0 * jitter
                dist = np.sqrt((x - px) ** 2 + (y - py) ** 2 + (z - pz) ** 2)

                closer = dist < f1
                f2 = np.where(closer, f1, np.minimum(f2, dist))
                f1 = np.where(closer, dist, f1)

    if mode == "F1":
        value = f1
    elif mode == "F2":
        value = f2
    else:
        value = f2 - f1

    return np.clip(normalize(value, -1.0, 1.0, 0.0, SQRT3), -1.0, 1.0)


def fbm_kernel(perm, x, y, z, octaves: int, lacunarity: float, persistence: float, absolute: bool = False):
    """Fractal sum of simplex octaves divided by the total amplitude."""
    value = np.zeros(x.shape, dtype=np.float64)
    amplitude = 1.0
    frequency = 1.0
    max_value = 0.0

    for _ in range(octaves):
        n = simplex3_kernel(perm, x * frequency, y * frequency, z * frequency)
        if absolute:
            n = np.abs(n)
        value += n * amplitude
        max_value += amplitude
        amplitude *= persistence
        frequency *= lacunarity

    return value / max_value


def domain_warp_kernel(perm, x, y, z, warp: WarpSettings, source: WarpSettings):
    """Two-pass fBm displacement followed by a source fBm lookup."""
    w_octaves, w_lacunarity, w_persistence = clamp_fbm_params(warp.octaves, warp.lacunarity, warp.persistence)
    s_octaves, s_lacunarity, s_persistence = clamp_fbm_params(source.octaves, source.lacunarity, source.persistence)
    w_scale = max(0.001, warp.scale)
    s_scale = max(0.001, source.scale)
    strength = warp.strength if warp.strength is not None else 0.1

    def warp_fbm(px, py, pz):
        return fbm_kernel(perm, px * w_scale, py * w_scale, pz * w_scale, w_octaves, w_lacunarity, w_persistence)

    q = [warp_fbm(x + ox, y + oy, z + oz) for ox, oy, oz in _WARP_Q_OFFSETS]
    r = [
        warp_fbm(x + 4.0 * q[0] + ox, y + 4.0 * q[1] + oy, z + 4.0 * q[2] + oz)
        for ox, oy, oz in _WARP_R_OFFSETS
    ]

    wx = x + strength * r[0]
    wy = y + strength * r[1]
    wz = z + strength * r[2]
    return fbm_kernel(perm, wx * s_scale, wy * s_scale, wz * s_scale, s_octaves, s_lacunarity, s_persistence)


# =============================================================================
# CACHE
# =============================================================================

class NoiseCache:
    """
    Bounded memo table for scalar noise results.

    When the table is full (and at or above the cleanup threshold), random
    entries are evicted in one batch until half of max_size remains. Eviction draws from the generator passed
    in, so it never touches the noise permutation.
    """

    def __init__(self, config: Optional[CacheConfig] = None, rng: Optional[np.random.Generator] = None):
        self.config = config or CacheConfig()
        self._rng = rng or np.random.default_rng()
        self._entries: Dict[tuple, float] = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
        }

    def make_key(self, family: str, coords: Sequence[float], params: Tuple[Any, ...] = ()) -> tuple:
        if self.config.full_precision:
            coord_key = tuple(float(c) for c in coords)
        else:
            coord_key = tuple(math.floor(c * 1000) for c in coords)
        return (family,) + coord_key + tuple(params)

    def get(self, key: tuple) -> Optional[float]:
        if not self.config.enabled:
            return None
        value = self._entries.get(key)
        if value is None:
            self._stats["misses"] += 1
        else:
            self._stats["hits"] += 1
        return value

    def set(self, key: tuple, value: float) -> None:
        if not self.config.enabled:
            return
        size = len(self._entries)
        if size >= self.config.max_size and size >= self.config.max_size * self.config.cleanup_threshold:
            self._evict()
        self._entries[key] = value

    def _evict(self) -> None:
        keep = self.config.max_size // 2
        excess = len(self._entries) - keep
        if excess <= 0:
            return
        keys = list(self._entries)
        for index in self._rng.choice(len(keys), size=excess, replace=False):
            del self._entries[keys[index]]
        self._stats["evictions"] += excess

    def clear(self) -> None:
        self._entries.clear()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        total = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "size": len(self._entries),
            "max_size": self.config.max_size,
            "hit_rate": self._stats["hits"] / total if total > 0 else 0.0,
        }


# =============================================================================
# NOISE ENGINE
# =============================================================================

def seeded_rng(seed: int) -> np.random.Generator:
    """Generator for any integer seed; negative and oversized seeds wrap to 64 bits."""
    return np.random.default_rng(int(seed) & SEED_MASK)


def _check_coordinates(*values) -> None:
    for value in values:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise TypeError(f"Noise coordinates must be real numbers, got {type(value).__name__}")


def _as_arrays(*values) -> Tuple[np.ndarray, ...]:
    arrays = []
    for value in values:
        array = np.asarray(value)
        if array.dtype == np.bool_ or not np.issubdtype(array.dtype, np.number):
            raise TypeError(f"Noise coordinates must be numeric arrays, got dtype {array.dtype}")
        arrays.append(np.atleast_1d(array.astype(np.float64)))
    return tuple(np.broadcast_arrays(*arrays))


def _check_worley(jitter: float, mode: str) -> None:
    if not 0.0 <= jitter <= 2.0:
        raise ValueError(f"Worley jitter must be between 0 and 2, got {jitter}")
    if mode not in WORLEY_MODES:
        raise ValueError(f"Worley mode must be one of {WORLEY_MODES}, got {mode!r}")


class NoiseEngine:
    """
    Deterministic noise generator for a single seed.

    Every family is a pure function of (seed, coordinate, parameters).
    The engine owns its permutation table and its memo cache; nothing is
    shared between instances.
    """

    def __init__(self, seed: int = 0, cache_config: Optional[CacheConfig] = None):
        """
        Initialize noise engine.

        Args:
            seed: Random seed for deterministic generation
            cache_config: Memoization settings (defaults to CacheConfig())
        """
        self._cache_config = cache_config or CacheConfig()
        self._calls: Counter = Counter()
        self.set_seed(seed)

    def set_seed(self, seed: int) -> None:
        """Rebuild the permutation table for a new seed and drop cached values."""
        self.seed = int(seed)
        rng = seeded_rng(self.seed)
        perm = np.arange(256, dtype=np.int64)
        rng.shuffle(perm)
        self._perm = perm
        self._cache = NoiseCache(self._cache_config, seeded_rng(self.seed + 1))

    # -------------------------------------------------------------------------
    # Cache / statistics
    # -------------------------------------------------------------------------

    def _cached(self, family: str, coords: Tuple[float, ...], params: Tuple[Any, ...], compute: Callable[[], float]) -> float:
        self._calls[family] += 1
        key = self._cache.make_key(family, coords, params)
        value = self._cache.get(key)
        if value is None:
            value = compute()
            self._cache.set(key, value)
        return value

    def set_cache_config(self, config: CacheConfig) -> None:
        """Replace cache settings; clears the cache when it is disabled."""
        self._cache_config = config
        self._cache.config = config
        if not config.enabled:
            self._cache.clear()

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        return self._cache.get_stats()

    def get_performance_stats(self) -> Dict[str, Any]:
        return {
            "total_executions": sum(self._calls.values()),
            "executions_by_family": dict(self._calls),
            "cache": self._cache.get_stats(),
        }

    # -------------------------------------------------------------------------
    # Core families (scalar)
    # -------------------------------------------------------------------------

    def simplex2(self, x: float, y: float) -> float:
        _check_coordinates(x, y)
        return self._cached("simplex2", (x, y), (), lambda: float(simplex2_kernel(self._perm, *_as_arrays(x, y))[0]))

    def simplex3(self, x: float, y: float, z: float) -> float:
        _check_coordinates(x, y, z)
        return self._cached("simplex3", (x, y, z), (), lambda: float(simplex3_kernel(self._perm, *_as_arrays(x, y, z))[0]))

    def simplex4(self, x: float, y: float, z: float, w: float) -> float:
        _check_coordinates(x, y, z, w)
        return self._cached(
            "simplex4", (x, y, z, w), (),
            lambda: float(simplex4_kernel(self._perm, *_as_arrays(x, y, z, w))[0]),
        )

    def perlin3(self, x: float, y: float, z: float) -> float:
        _check_coordinates(x, y, z)
        return self._cached("perlin3", (x, y, z), (), lambda: float(perlin3_kernel(self._perm, *_as_arrays(x, y, z))[0]))

    def worley3(self, x: float, y: float, z: float, jitter: float = 1.0, mode: str = "F1") -> float:
        """
        Cellular noise.

        Args:
            x, y, z: Sample coordinate
            jitter: Feature point displacement within a cell (0-2)
            mode: "F1", "F2" or "F2-F1"

        Raises:
            ValueError: If jitter or mode is out of range
        """
        _check_coordinates(x, y, z)
        _check_worley(jitter, mode)
        return self._cached(
            "worley3", (x, y, z), (float(jitter), mode),
            lambda: float(worley3_kernel(self._perm, *_as_arrays(x, y, z), jitter, mode)[0]),
        )

    def fbm(self, x: float, y: float, z: float, octaves: int = 6, lacunarity: float = 2.0, persistence: float = 0.5) -> float:
        _check_coordinates(x, y, z)
        params = clamp_fbm_params(octaves, lacunarity, persistence)
        return self._cached(
            "fbm", (x, y, z), params,
            lambda: float(fbm_kernel(self._perm, *_as_arrays(x, y, z), *params)[0]),
        )

    def get_fbm(self, x: float, y: float, z: float, settings: Optional[NoiseSettings] = None) -> float:
        """fBm after applying the offset and scale of the settings."""
        s = settings or NoiseSettings()
        scale = max(0.001, s.scale)
        ox, oy, oz = s.offset
        return self.fbm((x + ox) * scale, (y + oy) * scale, (z + oz) * scale, s.octaves, s.lacunarity, s.persistence)

    def domain_warp(self, x: float, y: float, z: float, warp: WarpSettings, source: WarpSettings) -> float:
        _check_coordinates(x, y, z)
        params = (
            warp.octaves, warp.lacunarity, warp.persistence, warp.scale, warp.strength,
            source.octaves, source.lacunarity, source.persistence, source.scale,
        )
        return self._cached(
            "warp", (x, y, z), params,
            lambda: float(domain_warp_kernel(self._perm, *_as_arrays(x, y, z), warp, source)[0]),
        )

    # -------------------------------------------------------------------------
    # Derived families (scalar)
    # -------------------------------------------------------------------------

    def ridge3(self, x: float, y: float, z: float) -> float:
        return 1.0 - abs(self.simplex3(x, y, z))

    def turbulence3(self, x: float, y: float, z: float, octaves: int = 4, lacunarity: float = 2.0, persistence: float = 0.5) -> float:
        _check_coordinates(x, y, z)
        params = clamp_fbm_params(octaves, lacunarity, persistence)
        return self._cached(
            "turbulence3", (x, y, z), params,
            lambda: float(fbm_kernel(self._perm, *_as_arrays(x, y, z), *params, absolute=True)[0]),
        )

    def billow(self, x: float, y: float, z: float, octaves: int = 4, lacunarity: float = 2.0, persistence: float = 0.5) -> float:
        return abs(self.fbm(x, y, z, octaves, lacunarity, persistence))

    def curl3(self, x: float, y: float, z: float, epsilon: float = 0.01) -> Tuple[float, float, float]:
        """Curl of the simplex field by central differences."""
        _check_coordinates(x, y, z)
        if epsilon <= 0:
            raise ValueError("Curl epsilon must be positive")

        d_y = (self.simplex3(x, y + epsilon, z) - self.simplex3(x, y - epsilon, z)) / (2 * epsilon)
        d_z = (self.simplex3(x, y, z + epsilon) - self.simplex3(x, y, z - epsilon)) / (2 * epsilon)
        d_x = (self.simplex3(x + epsilon, y, z) - self.simplex3(x - epsilon, y, z)) / (2 * epsilon)
        return (d_y - d_z, d_z - d_x, d_x - d_y)

    def animated(self, x: float, y: float, z: float, t: float, time_scale: float = 1.0) -> float:
        return self.simplex4(x, y, z, t * time_scale)

    # -------------------------------------------------------------------------
    # Geological composites (scalar)
    # -------------------------------------------------------------------------

    def geological_noise(self, x: float, y: float, z: float, layer: Any) -> float:
        """Rock-structure noise shaped by a layer's hardness, joints and porosity."""
        base = self.simplex3(x * 0.02, y * 0.01, z * 0.02) * (1 - layer.hardness)
        joints = self.worley3(x * 0.05, y * 0.05, z * 0.05, 0.6, "F2-F1") * layer.joint_density
        strata = self.simplex3(x * 0.01, y * 0.1, z * 0.01) * 0.3
        pores = self.ridge3(x * 0.08, y * 0.08, z * 0.08) * layer.porosity

        combined = base * 0.4 + joints * 0.3 + strata * 0.2 + pores * 0.1
        return max(-1.0, min(1.0, combined))

    def formation_noise(self, x: float, y: float, z: float, formation_type: str) -> float:
        """Shape noise characteristic of a formation type."""
        if formation_type == "chamber":
            return 1.0 - self.worley3(x * 0.03, y * 0.03, z * 0.03, 0.8, "F1")
        if formation_type == "tunnel":
            direction = self.simplex3(x * 0.01, y * 0.005, z * 0.01)
            return self.ridge3(x * 0.04, y * 0.02, z * 0.04) * (0.7 + direction * 0.3)
        if formation_type == "vertical_shaft":
            radial = math.sqrt((x % 50) ** 2 + (z % 50) ** 2)
            cylindrical = max(0.0, 1 - radial / 8)
            return self.simplex3(x * 0.05, y * 0.02, z * 0.05) * cylindrical
        if formation_type == "squeeze_passage":
            return self.turbulence3(x * 0.08, y * 0.08, z * 0.08, 4, 2.0, 0.5) * 0.6
        return self.simplex3(x * 0.03, y * 0.02, z * 0.03)

    def erosion_pattern(self, x: float, y: float, z: float, velocity: Tuple[float, float, float], hardness: float) -> float:
        """Flow-aligned erosion intensity; zero for still water."""
        speed = math.sqrt(sum(v * v for v in velocity))
        if speed == 0:
            return 0.0

        fx, fy, fz = (v / speed for v in velocity)
        flow = self.simplex3((x + fx * 10) * 0.05, (y + fy * 10) * 0.05, (z + fz * 10) * 0.05)
        turbulence = self.turbulence3(x * 0.1, y * 0.1, z * 0.1, 3, 2.0, 0.6)
        chemical = self.worley3(x * 0.02, y * 0.02, z * 0.02, 0.5, "F1")

        return (flow * 0.6 + turbulence * 0.3 + chemical * 0.1) * speed * (1 - hardness)

    def speleothem_pattern(self, x: float, y: float, z: float, humidity: float, age: float) -> float:
        drip = self.ridge3(x * 0.1, y * 0.05, z * 0.1)
        growth = self.simplex3(x * 0.2, y * 0.3, z * 0.2)
        surface = self.billow(x * 0.06, y * 0.06, z * 0.06, 4, 2.0, 0.5)
        pattern = drip * 0.5 + growth * 0.3 + surface * 0.2
        return pattern * humidity * (age * 0.5 + 0.5)

    # -------------------------------------------------------------------------
    # Array API
    # -------------------------------------------------------------------------

    def simplex2_array(self, x, y) -> np.ndarray:
        self._calls["simplex2_array"] += 1
        return simplex2_kernel(self._perm, *_as_arrays(x, y))

    def simplex3_array(self, x, y, z) -> np.ndarray:
        self._calls["simplex3_array"] += 1
        return simplex3_kernel(self._perm, *_as_arrays(x, y, z))

    def simplex4_array(self, x, y, z, w) -> np.ndarray:
        self._calls["simplex4_array"] += 1
        return simplex4_kernel(self._perm, *_as_arrays(x, y, z, w))

    def perlin3_array(self, x, y, z) -> np.ndarray:
        self._calls["perlin3_array"] += 1
        return perlin3_kernel(self._perm, *_as_arrays(x, y, z))

    def worley3_array(self, x, y, z, jitter: float = 1.0, mode: str = "F1") -> np.ndarray:
        _check_worley(jitter, mode)
        self._calls["worley3_array"] += 1
        return worley3_kernel(self._perm, *_as_arrays(x, y, z), jitter, mode)

    def fbm_array(self, x, y, z, octaves: int = 6, lacunarity: float = 2.0, persistence: float = 0.5) -> np.ndarray:
        self._calls["fbm_array"] += 1
        return fbm_kernel(self._perm, *_as_arrays(x, y, z), *clamp_fbm_params(octaves, lacunarity, persistence))

    def generate_heightmap(self, width: int, height: int, settings: Optional[NoiseSettings] = None) -> np.ndarray:
        """
        2D fBm heightmap sampled on the y=0 plane.

        Args:
            width: Number of samples along x (1-1024)
            height: Number of samples along z (1-1024)
            settings: Fractal settings; scale is the sample spacing

        Returns:
            Array of shape (height, width) with values in [-1, 1]
        """
        if width <= 0 or height <= 0:
            raise ValueError("Heightmap dimensions must be positive")
        if width > MAX_HEIGHTMAP_SIZE or height > MAX_HEIGHTMAP_SIZE:
            raise ValueError(f"Heightmap dimensions too large (max {MAX_HEIGHTMAP_SIZE}x{MAX_HEIGHTMAP_SIZE})")

        s = settings or NoiseSettings(scale=0.01)
        scale = max(0.001, s.scale)
        zs, xs = np.meshgrid(np.arange(1, height + 1) * scale, np.arange(1, width + 1) * scale, indexing="ij")
        return self.fbm_array(xs, np.zeros_like(xs), zs, s.octaves, s.lacunarity, s.persistence)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    @staticmethod
    def assess_quality(values: Sequence[float], target: str = "normal") -> float:
        """
        Score how well a sample of noise values matches a target distribution.

        Returns:
            Score in [0, 1]; 0 for an empty sample
        """
        samples = np.asarray(values, dtype=np.float64)
        if samples.size == 0:
            return 0.0

        spread = samples.max() - samples.min()
        if target == "normal":
            mean_penalty = abs(samples.mean()) * 0.5
            range_penalty = max(0.0, 1.8 - spread) * 0.3
            return float(max(0.0, 1 - mean_penalty - range_penalty))
        if target == "uniform":
            if spread == 0:
                return 0.0
            return float(max(0.0, 1 - samples.std() / (spread / 2)))
        return 1.0

    def benchmark(self, iterations: int = 1000) -> Dict[str, float]:
        """Time the core scalar families; returns milliseconds per family."""
        rng = seeded_rng(self.seed)
        samples = rng.random((iterations, 4)) * 100
        families = {
            "simplex2": lambda p: self.simplex2(p[0], p[1]),
            "simplex3": lambda p: self.simplex3(p[0], p[1], p[2]),
            "simplex4": lambda p: self.simplex4(p[0], p[1], p[2], p[3]),
            "perlin3": lambda p: self.perlin3(p[0], p[1], p[2]),
            "worley3_F1": lambda p: self.worley3(p[0], p[1], p[2], 1.0, "F1"),
            "fbm": lambda p: self.fbm(p[0], p[1], p[2], 6, 2.0, 0.5),
        }

        results = {}
        for name, func in families.items():
            start = time.perf_counter()
            for row in samples:
                func([float(v) for v in row])
            results[name] = (time.perf_counter() - start) * 1000
        return results
