"""
Density Field Tests
Depth probability, thresholding, geology lookup and region sampling.

Run with: python -m pytest tests/test_density.py -v
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cave_builder.config import CaveGenerationParams, GeologySettings, Material, RockType, create_custom_config
from cave_builder.models.cave import Region
from cave_builder.generation.stage_02_geology import (
    build_layers,
    create_layer,
    layer_for_depth,
    layer_properties,
    select_rock_type,
    simulate_erosion,
)
from cave_builder.generation.stage_04_density import (
    DensityFieldSynthesizer,
    classify_material,
    depth_probability,
    threshold_density,
)
from cave_builder.utils.noise import NoiseEngine


@pytest.fixture
def params():
    """Default parameters with a fixed seed"""
    return CaveGenerationParams(seed=42)


@pytest.fixture
def small_region():
    """Compact region around the optimal cave depth"""
    return Region(min_corner=(0.0, -60.0, 0.0), max_corner=(20.0, -40.0, 20.0))


@pytest.fixture
def synthesizer(params):
    """Density synthesizer over a seeded engine"""
    return DensityFieldSynthesizer(NoiseEngine(params.seed), params)


class TestDepthProbability:
    """Depth probability curve"""

    def test_peak_at_optimal_depth(self):
        """Test probability is 1 at the optimal depth"""
        assert depth_probability(-50.0) == pytest.approx(1.0)

    def test_near_surface_suppressed(self):
        """Test the top 10 units are cut to 10%"""
        bell = np.exp(-((-5.0 + 50.0) ** 2) / (2 * 40.0 ** 2))
        assert depth_probability(-5.0) == pytest.approx(bell * 0.1)

    def test_deep_fade(self):
        """Test probability vanishes below 200 units"""
        assert depth_probability(-200.0) == 0.0
        assert depth_probability(-250.0) == 0.0
        assert 0.0 < depth_probability(-160.0) < depth_probability(-140.0)

    def test_array_input(self):
        """Test vectorized evaluation matches scalar calls"""
        ys = np.array([-5.0, -50.0, -120.0, -180.0])
        values = depth_probability(ys)
        assert values.shape == (4,)
        for y, value in zip(ys, values):
            assert depth_probability(float(y)) == pytest.approx(value)


class TestThreshold:
    """Raw field to density mapping"""

    def test_below_threshold_is_solid(self):
        """Test raw values at or below the threshold map to 0"""
        assert threshold_density(0.0, 0.0) == 0.0
        assert threshold_density(-0.4, 0.0) == 0.0

    def test_linear_above_threshold(self):
        """Test density rises twice as fast as the raw value"""
        assert threshold_density(0.2, 0.0) == pytest.approx(0.4)
        assert threshold_density(0.35, 0.1) == pytest.approx(0.5)

    def test_capped_at_one(self):
        """Test density never exceeds 1"""
        assert threshold_density(5.0, 0.0) == 1.0

    def test_material_classes(self):
        """Test material bands"""
        assert classify_material(0.8) == Material.AIR.value
        assert classify_material(0.3) == Material.LOOSE_ROCK.value
        assert classify_material(0.05) == Material.SOLID_ROCK.value
        assert classify_material(0.5) == Material.LOOSE_ROCK.value


class TestGeology:
    """Layer construction and lookup"""

    def test_rock_type_selection(self):
        """Test bedrock follows hardness then stratification"""
        assert select_rock_type(GeologySettings(rock_hardness=0.8)) == RockType.GRANITE
        assert select_rock_type(GeologySettings(rock_hardness=0.6)) == RockType.SANDSTONE
        assert select_rock_type(GeologySettings(rock_hardness=0.4, stratification=0.8)) == RockType.SHALE
        assert select_rock_type(GeologySettings(rock_hardness=0.4, stratification=0.5)) == RockType.LIMESTONE

    def test_weathered_surface(self):
        """Test the top layer is weathered rock"""
        layer = create_layer(0.0, GeologySettings())
        assert layer.composition == RockType.WEATHERED_SURFACE.value
        assert layer.hardness == 0.1

    def test_deeper_is_harder(self):
        """Test hardness increases and porosity decreases with depth"""
        geology = GeologySettings()
        shallow = create_layer(20.0, geology)
        deep = create_layer(90.0, geology)
        assert deep.hardness > shallow.hardness
        assert deep.porosity < shallow.porosity

    def test_layer_spacing(self):
        """Test one layer every 10 units down to the region floor"""
        layers = build_layers(-60.0, GeologySettings())
        assert [layer.depth for layer in layers] == [0.0, 10.0, 20.0, 30.0, 40.0, 50.0, 60.0]

    def test_vectorized_lookup_matches_scalar(self):
        """Test array lookup picks the same layer as the scalar lookup"""
        layers = build_layers(-100.0, GeologySettings())
        depths = np.array([0.0, 4.9, 10.0, 35.5, 99.0, 150.0])
        hardness, porosity = layer_properties(layers, depths)
        for depth, h, p in zip(depths, hardness, porosity):
            layer = layer_for_depth(layers, float(depth))
            assert layer.hardness == h
            assert layer.porosity == p

    def test_empty_layers_fallback(self):
        """Test lookups without layers fall back to neutral rock"""
        assert layer_for_depth([], 30.0).composition == "unknown"
        hardness, porosity = layer_properties([], np.array([1.0, 2.0]))
        assert list(hardness) == [0.5, 0.5]
        assert list(porosity) == [0.3, 0.3]


class TestErosion:
    """Point erosion model"""

    def test_still_water(self):
        """Test slow flow causes no erosion"""
        layer = create_layer(40.0, GeologySettings())
        result = simulate_erosion(0.5, (0.05, 0.0, 0.0), layer, GeologySettings())
        assert result.erosion_amount == 0.0
        assert result.eroded_density == 0.5
        assert result.erosion_type == "none"

    def test_fast_flow_erodes(self):
        """Test fast flow opens the rock and carries sediment"""
        layer = create_layer(40.0, GeologySettings())
        result = simulate_erosion(0.5, (3.0, -4.0, 0.0), layer, GeologySettings())
        assert result.erosion_amount > 0.0
        assert result.eroded_density > 0.5
        assert result.sediment_load == pytest.approx(result.erosion_amount * 0.1)
        assert result.flow_direction == pytest.approx((0.6, -0.8, 0.0))


class TestSynthesizer:
    """Density field sampling"""

    def test_generate_point_deterministic(self, synthesizer, params):
        """Test the same coordinate yields the same point"""
        layer = create_layer(50.0, params.geology)
        a = synthesizer.generate_point((12.0, -50.0, 8.0), layer)
        b = synthesizer.generate_point((12.0, -50.0, 8.0), layer)
        assert a == b

    def test_generate_point_fields(self, synthesizer, params):
        """Test derived point properties are consistent with density"""
        layer = create_layer(50.0, params.geology)
        for x in range(0, 60, 6):
            point = synthesizer.generate_point((float(x), -50.0, 3.0), layer)
            assert 0.0 <= point.density <= 1.0
            assert point.material == classify_material(point.density)
            assert point.stability == pytest.approx(max(0.0, 1 - point.density * (1 - layer.hardness)))
            assert point.temperature == pytest.approx(15.0 + 50.0 * 0.02)
            assert point.gas_content == point.density
            if point.density <= 0.3:
                assert point.water_flow == 0.0

    def test_lattice_inclusive(self, synthesizer, small_region):
        """Test lattice covers min to max inclusive at the sampling step"""
        xs, ys, zs = synthesizer.lattice(small_region)
        assert len(xs) == 11
        assert xs[0] == 0.0
        assert xs[-1] == 20.0
        assert ys[0] == -60.0

    def test_sample_region_keeps_open_points(self, synthesizer, params, small_region):
        """Test sampled points all have positive density"""
        layers = build_layers(small_region.min_corner[1], params.geology)
        points = synthesizer.sample_region(small_region, layers)
        assert all(p.density > 0 for p in points)

    def test_sample_region_matches_scalar(self, synthesizer, params, small_region):
        """Test bulk sampling and single-point evaluation agree"""
        layers = build_layers(small_region.min_corner[1], params.geology)
        points = synthesizer.sample_region(small_region, layers)
        for point in points[:20]:
            x, y, z = point.position
            single = synthesizer.generate_point(point.position, layer_for_depth(layers, abs(y)))
            assert single.density == pytest.approx(point.density, abs=1e-9)
            assert single.material == point.material

    def test_threshold_monotonicity(self, params, small_region):
        """Test raising the threshold never adds open points"""
        layers = build_layers(small_region.min_corner[1], params.geology)
        counts = []
        for threshold in (-0.1, 0.0, 0.05, 0.1):
            config = create_custom_config(params, {"density_threshold": threshold})
            synthesizer = DensityFieldSynthesizer(NoiseEngine(config.seed), config)
            counts.append(len(synthesizer.sample_region(small_region, layers)))
        assert counts == sorted(counts, reverse=True)
