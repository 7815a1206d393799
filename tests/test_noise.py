"""
Noise Engine Tests
Determinism, bounds, cache behaviour and argument checking.

Run with: python -m pytest tests/test_noise.py -v
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cave_builder.utils.noise import (
    CacheConfig,
    NoiseCache,
    NoiseEngine,
    NoiseSettings,
    WarpSettings,
    clamp_fbm_params,
    normalize,
    seeded_rng,
)


@pytest.fixture
def engine():
    """Seeded noise engine"""
    return NoiseEngine(seed=1234)


@pytest.fixture
def coords():
    """Random sample coordinates spanning negative and positive space"""
    rng = np.random.default_rng(7)
    return rng.uniform(-200, 200, size=(2000, 4))


class TestDeterminism:
    """Same seed and coordinate always give the same value"""

    def test_same_seed_same_values(self):
        """Test two engines with one seed agree on every family"""
        a = NoiseEngine(seed=99)
        b = NoiseEngine(seed=99)
        for x, y, z in [(0.5, 1.5, -2.25), (10.1, -3.3, 7.7), (-50.0, 0.0, 12.5)]:
            assert a.simplex3(x, y, z) == b.simplex3(x, y, z)
            assert a.perlin3(x, y, z) == b.perlin3(x, y, z)
            assert a.worley3(x, y, z, 0.8, "F2") == b.worley3(x, y, z, 0.8, "F2")
            assert a.fbm(x, y, z) == b.fbm(x, y, z)

    def test_different_seeds_differ(self):
        """Test that a different seed changes the field"""
        xs = np.linspace(0.1, 30.0, 50)
        a = NoiseEngine(seed=1).simplex3_array(xs, xs * 0.5, xs * 0.25)
        b = NoiseEngine(seed=2).simplex3_array(xs, xs * 0.5, xs * 0.25)
        assert not np.allclose(a, b)

    def test_scalar_matches_array(self, engine, coords):
        """Test the scalar API returns the array kernel values"""
        sample = coords[:25]
        arr = engine.simplex3_array(sample[:, 0], sample[:, 1], sample[:, 2])
        for i, (x, y, z, _) in enumerate(sample):
            assert engine.simplex3(x, y, z) == pytest.approx(arr[i], abs=1e-12)

        worley = engine.worley3_array(sample[:, 0], sample[:, 1], sample[:, 2], 0.8, "F1")
        for i, (x, y, z, _) in enumerate(sample):
            assert engine.worley3(x, y, z, 0.8, "F1") == pytest.approx(worley[i], abs=1e-12)

    def test_set_seed_resets_field(self, engine):
        """Test re-seeding reproduces a fresh engine"""
        before = engine.simplex2(3.3, 4.4)
        engine.set_seed(5)
        engine.set_seed(1234)
        assert engine.simplex2(3.3, 4.4) == before


class TestSeedRange:
    """Any integer is a usable seed"""

    @pytest.mark.parametrize("seed", [0, -7, 2**63, 2**70])
    def test_boundary_seeds_deterministic(self, seed):
        """Test zero, negative and oversized seeds build reproducible engines"""
        a = NoiseEngine(seed=seed)
        b = NoiseEngine(seed=seed)
        value = a.simplex3(1.0, 2.0, 3.0)
        assert value == b.simplex3(1.0, 2.0, 3.0)
        assert -1.0 <= value <= 1.0
        assert a.fbm(4.5, -2.0, 7.25) == b.fbm(4.5, -2.0, 7.25)

    def test_negative_seed_distinct_from_positive(self):
        """Test a negative seed does not alias its absolute value"""
        xs = np.linspace(0.1, 30.0, 50)
        negative = NoiseEngine(seed=-7).simplex3_array(xs, xs * 0.5, xs * 0.25)
        positive = NoiseEngine(seed=7).simplex3_array(xs, xs * 0.5, xs * 0.25)
        assert not np.allclose(negative, positive)

    def test_seed_wraps_to_64_bits(self):
        """Test seeds congruent modulo 2**64 share a permutation"""
        assert np.array_equal(seeded_rng(-1).permutation(16), seeded_rng(2**64 - 1).permutation(16))


class TestBounds:
    """All families stay within [-1, 1]"""

    def test_simplex_bounds(self, engine, coords):
        """Test simplex 2D/3D/4D outputs"""
        x, y, z, w = coords.T * 0.05
        for values in (
            engine.simplex2_array(x, y),
            engine.simplex3_array(x, y, z),
            engine.simplex4_array(x, y, z, w),
        ):
            assert values.min() >= -1.0
            assert values.max() <= 1.0

    def test_perlin_bounds(self, engine, coords):
        """Test perlin outputs"""
        x, y, z, _ = coords.T * 0.05
        values = engine.perlin3_array(x, y, z)
        assert values.min() >= -1.0
        assert values.max() <= 1.0

    @pytest.mark.parametrize("mode", ["F1", "F2", "F2-F1"])
    def test_worley_bounds(self, engine, coords, mode):
        """Test worley outputs for every mode"""
        x, y, z, _ = coords.T * 0.1
        values = engine.worley3_array(x, y, z, 1.0, mode)
        assert values.min() >= -1.0
        assert values.max() <= 1.0

    def test_fbm_and_derived_bounds(self, engine):
        """Test fbm, ridge, turbulence and billow"""
        for x in np.linspace(-20, 20, 40):
            assert -1.0 <= engine.fbm(x, x * 0.3, -x) <= 1.0
            assert 0.0 <= engine.ridge3(x, 1.0, 2.0) <= 1.0
            assert 0.0 <= engine.turbulence3(x, 1.0, 2.0) <= 1.0
            assert 0.0 <= engine.billow(x, 1.0, 2.0) <= 1.0

    def test_domain_warp_bounds(self, engine):
        """Test domain warped fbm"""
        warp = WarpSettings()
        source = WarpSettings(octaves=5)
        for x in np.linspace(-5, 5, 20):
            assert -1.0 <= engine.domain_warp(x, 0.5, x * 2, warp, source) <= 1.0


class TestCache:
    """Memoization never changes results"""

    def test_cache_transparency(self, coords):
        """Test cached and uncached engines agree"""
        cached = NoiseEngine(seed=3)
        uncached = NoiseEngine(seed=3, cache_config=CacheConfig(enabled=False))
        for x, y, z, _ in coords[:200]:
            assert cached.simplex3(x, y, z) == uncached.simplex3(x, y, z)
            assert cached.worley3(x, y, z) == uncached.worley3(x, y, z)
        assert uncached.get_cache_stats()["size"] == 0

    def test_cache_hits(self, engine):
        """Test repeated queries hit the cache"""
        engine.simplex3(1.0, 2.0, 3.0)
        engine.simplex3(1.0, 2.0, 3.0)
        stats = engine.get_cache_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    def test_cache_eviction_bounds_size(self):
        """Test the cache evicts down to half capacity"""
        engine = NoiseEngine(seed=11, cache_config=CacheConfig(max_size=100, cleanup_threshold=0.5))
        for i in range(500):
            engine.simplex2(i * 0.37, i * 0.11)
        stats = engine.get_cache_stats()
        assert stats["size"] <= 100
        assert stats["evictions"] > 0

    def test_eviction_runs_once_when_full(self):
        """Test a full cache evicts to half capacity in one batch"""
        cache = NoiseCache(CacheConfig(max_size=100, cleanup_threshold=0.5), np.random.default_rng(0))
        for i in range(100):
            cache.set(("simplex2", float(i)), 0.0)
        assert len(cache) == 100
        assert cache.get_stats()["evictions"] == 0

        cache.set(("simplex2", 100.0), 0.0)
        assert len(cache) == 51
        assert cache.get_stats()["evictions"] == 50

        for i in range(101, 150):
            cache.set(("simplex2", float(i)), 0.0)
        assert len(cache) == 100
        assert cache.get_stats()["evictions"] == 50

    def test_config_clamping(self):
        """Test cache configuration bounds"""
        config = CacheConfig(max_size=5, cleanup_threshold=0.1)
        assert config.max_size == 100
        assert config.cleanup_threshold == 0.5

    def test_quantized_keys(self):
        """Test reduced precision keys bucket nearby coordinates"""
        cache = NoiseCache(CacheConfig(full_precision=False))
        assert cache.make_key("simplex3", (0.0001, 1.0, 2.0)) == cache.make_key("simplex3", (0.0002, 1.0, 2.0))

        exact = NoiseCache(CacheConfig(full_precision=True))
        assert exact.make_key("simplex3", (0.0001, 1.0, 2.0)) != exact.make_key("simplex3", (0.0002, 1.0, 2.0))

    def test_clear_cache(self, engine):
        """Test clearing drops entries and statistics"""
        engine.simplex2(1.0, 1.0)
        engine.clear_cache()
        assert engine.get_cache_stats()["size"] == 0
        assert engine.get_cache_stats()["misses"] == 0


class TestPreconditions:
    """Invalid arguments fail fast"""

    def test_non_numeric_coordinates(self, engine):
        """Test non-real coordinates raise TypeError"""
        with pytest.raises(TypeError):
            engine.simplex3("a", 1.0, 2.0)
        with pytest.raises(TypeError):
            engine.simplex2(None, 1.0)
        with pytest.raises(TypeError):
            engine.simplex3_array(np.array(["x"]), 0.0, 0.0)

    def test_worley_jitter_range(self, engine):
        """Test jitter outside [0, 2] raises ValueError"""
        with pytest.raises(ValueError):
            engine.worley3(0.0, 0.0, 0.0, jitter=2.5)
        with pytest.raises(ValueError):
            engine.worley3(0.0, 0.0, 0.0, jitter=-0.1)

    def test_worley_mode(self, engine):
        """Test unknown cellular mode raises ValueError"""
        with pytest.raises(ValueError):
            engine.worley3(0.0, 0.0, 0.0, mode="F3")

    def test_curl_epsilon(self, engine):
        """Test non-positive curl epsilon raises ValueError"""
        with pytest.raises(ValueError):
            engine.curl3(1.0, 2.0, 3.0, epsilon=0.0)

    def test_heightmap_dimensions(self, engine):
        """Test heightmap size limits"""
        with pytest.raises(ValueError):
            engine.generate_heightmap(0, 10)
        with pytest.raises(ValueError):
            engine.generate_heightmap(10, 2000)


class TestHelpers:
    """Composite noise and helper functions"""

    def test_heightmap_shape(self, engine):
        """Test heightmap is indexed (row=z, col=x)"""
        heightmap = engine.generate_heightmap(5, 3, NoiseSettings(scale=0.05))
        assert heightmap.shape == (3, 5)
        assert np.all(np.abs(heightmap) <= 1.0)

    def test_normalize(self):
        """Test linear remapping"""
        assert normalize(0.0, 0.0, 10.0) == 5.0
        assert normalize(-1.0, 2.0, 4.0) == 2.0

    def test_clamp_fbm_params(self):
        """Test fractal parameter clamping"""
        assert clamp_fbm_params(50, 0.0, 2.0) == (20, 0.1, 1.0)
        assert clamp_fbm_params(0, 2.0, -1.0) == (1, 2.0, 0.0)

    def test_erosion_pattern_still_water(self, engine):
        """Test zero velocity produces no erosion"""
        assert engine.erosion_pattern(1.0, 2.0, 3.0, (0.0, 0.0, 0.0), 0.5) == 0.0

    def test_curl_returns_vector(self, engine):
        """Test curl noise yields three finite components"""
        curl = engine.curl3(1.5, 2.5, 3.5)
        assert len(curl) == 3
        assert all(np.isfinite(c) for c in curl)

    def test_animated_uses_time_axis(self, engine):
        """Test animated noise varies with time"""
        values = {engine.animated(1.0, 2.0, 3.0, t) for t in (0.0, 0.7, 1.9)}
        assert len(values) > 1

    def test_assess_quality(self):
        """Test distribution scoring is bounded"""
        assert NoiseEngine.assess_quality([]) == 0.0
        score = NoiseEngine.assess_quality(np.linspace(-1, 1, 100))
        assert 0.0 <= score <= 1.0

    def test_performance_stats(self, engine):
        """Test per-family call counting"""
        engine.simplex3(0.1, 0.2, 0.3)
        engine.simplex3_array([0.1], [0.2], [0.3])
        stats = engine.get_performance_stats()
        assert stats["executions_by_family"]["simplex3"] == 1
        assert stats["executions_by_family"]["simplex3_array"] == 1
