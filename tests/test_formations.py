"""
Formation Analysis Tests
Clustering, classification, linking and enhancement of formations.

Run with: python -m pytest tests/test_formations.py -v
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cave_builder.config import CaveGenerationParams, FormationType, create_custom_config
from cave_builder.models.cave import CavePoint, Formation
from cave_builder.generation.stage_04_density import classify_material
from cave_builder.generation.stage_05_formations import FormationExtractor, formation_statistics
from cave_builder.utils.spatial import PointIndex


def make_point(position, density=0.8, water_flow=0.0, gas_content=None, stability=0.9):
    """Build a CavePoint with sensible defaults"""
    return CavePoint(
        position=tuple(float(c) for c in position),
        density=density,
        material=classify_material(density),
        stability=stability,
        erosion_level=0.0,
        water_flow=water_flow,
        age=1.0,
        temperature=16.0,
        humidity=0.8,
        gas_content=density if gas_content is None else gas_content,
    )


def cube(origin, size=4, spacing=2.0, **kwargs):
    """Points on a size^3 lattice starting at origin"""
    ox, oy, oz = origin
    return [
        make_point((ox + i * spacing, oy + j * spacing, oz + k * spacing), **kwargs)
        for i in range(size)
        for j in range(size)
        for k in range(size)
    ]


@pytest.fixture
def params():
    """Default parameters with a fixed seed"""
    return CaveGenerationParams(seed=7)


@pytest.fixture
def extractor(params):
    """Formation extractor with default neighbourhood"""
    return FormationExtractor(params)


class TestExtraction:
    """Greedy clustering of dense points"""

    def test_empty_input(self, extractor):
        """Test no points gives no formations"""
        assert extractor.extract([]) == []

    def test_single_cluster(self, extractor):
        """Test a compact cluster becomes one formation"""
        points = cube((0.0, -60.0, 0.0))
        formations = extractor.extract(points)

        assert len(formations) == 1
        formation = formations[0]
        assert formation.formation_id == 0
        assert len(formation.point_indices) == 64
        assert formation.center == pytest.approx((3.0, -57.0, 3.0))
        assert formation.radius == pytest.approx(3.0)
        assert formation.avg_density == pytest.approx(0.8)
        assert formation.type == FormationType.SUB_CHAMBER.value

    def test_clusters_do_not_overlap(self, extractor):
        """Test every point belongs to at most one formation"""
        points = cube((0.0, -60.0, 0.0)) + cube((100.0, -60.0, 0.0)) + cube((10.0, -60.0, 0.0))
        formations = extractor.extract(points)

        claimed = [i for f in formations for i in f.point_indices]
        assert len(claimed) == len(set(claimed))
        assert len(formations) >= 2

    def test_sparse_seed_rejected(self, extractor):
        """Test seeds with fewer than 5 neighbours form nothing"""
        points = [make_point((i * 2.0, -50.0, 0.0)) for i in range(4)]
        assert extractor.extract(points) == []

    def test_low_density_points_do_not_seed(self, extractor):
        """Test clusters without points denser than 0.3 are ignored"""
        points = cube((0.0, -60.0, 0.0), density=0.2)
        assert extractor.extract(points) == []

    def test_densest_point_seeds_first(self, extractor):
        """Test the densest point seeds the first formation"""
        points = cube((0.0, -60.0, 0.0), density=0.5)
        points[10] = make_point(points[10].position, density=0.95)
        formations = extractor.extract(points)
        assert 10 in formations[0].point_indices

    def test_special_features(self, extractor):
        """Test wet and gassy clusters are tagged"""
        points = cube((0.0, -60.0, 0.0), water_flow=0.5, gas_content=0.9)
        formation = extractor.extract(points)[0]
        assert "underground_stream" in formation.features
        assert "gas_pocket" in formation.features

    def test_statistics(self, extractor):
        """Test formation statistics summary"""
        formations = extractor.extract(cube((0.0, -60.0, 0.0)))
        stats = formation_statistics(formations)
        assert stats["total"] == 1
        assert stats["type_distribution"] == {"sub_chamber": 1}
        assert formation_statistics([])["total"] == 0


class TestClassification:
    """Shape-based formation typing"""

    def test_vertical_shaft(self, extractor):
        """Test tall narrow formations are shafts"""
        assert extractor.classify(radius=2.0, height=12.0, length=4.0, avg_density=0.5) == FormationType.VERTICAL_SHAFT

    def test_squeeze_passage(self, extractor):
        """Test thin long formations are squeezes"""
        assert extractor.classify(radius=1.5, height=2.0, length=9.0, avg_density=0.5) == FormationType.SQUEEZE_PASSAGE

    def test_chamber(self, extractor):
        """Test large dense formations are chambers"""
        assert extractor.classify(radius=10.0, height=8.0, length=20.0, avg_density=0.8) == FormationType.CHAMBER

    def test_chamber_at_minimum_size(self, extractor):
        """Test radius equal to the chamber minimum still counts"""
        assert extractor.classify(radius=8.0, height=8.0, length=16.0, avg_density=0.8) == FormationType.CHAMBER

    def test_sub_chamber(self, extractor):
        """Test small formations are sub-chambers"""
        assert extractor.classify(radius=5.0, height=4.0, length=10.0, avg_density=0.8) == FormationType.SUB_CHAMBER

    def test_tunnel(self, extractor):
        """Test large but less dense formations are tunnels"""
        assert extractor.classify(radius=10.0, height=4.0, length=20.0, avg_density=0.5) == FormationType.TUNNEL


class TestLinking:
    """Linking formations through open rock"""

    def test_connected_through_open_rock(self, extractor):
        """Test formations joined by dense points are linked"""
        points = [make_point((x, -50.0, 0.0)) for x in range(0, 21)]
        index = PointIndex(points)
        first = Formation(formation_id=0, type=FormationType.TUNNEL, center=(0.0, -50.0, 0.0), radius=5.0, height=4.0)
        second = Formation(formation_id=1, type=FormationType.TUNNEL, center=(20.0, -50.0, 0.0), radius=5.0, height=4.0)

        links = extractor.connect([first, second], index)
        assert links == 1
        assert first.connections == [1]
        assert second.connections == [0]

    def test_blocked_by_solid_rock(self, extractor):
        """Test a solid gap prevents linking"""
        points = [make_point((x, -50.0, 0.0), density=0.8 if x < 5 or x > 15 else 0.05) for x in range(0, 21)]
        index = PointIndex(points)
        first = Formation(formation_id=0, type=FormationType.TUNNEL, center=(0.0, -50.0, 0.0), radius=5.0, height=4.0)
        second = Formation(formation_id=1, type=FormationType.TUNNEL, center=(20.0, -50.0, 0.0), radius=5.0, height=4.0)

        assert extractor.connect([first, second], index) == 0
        assert first.connections == []

    def test_too_far_apart(self, extractor):
        """Test formations beyond radius sum plus margin are not linked"""
        points = [make_point((x, -50.0, 0.0)) for x in range(0, 61)]
        index = PointIndex(points)
        first = Formation(formation_id=0, type=FormationType.TUNNEL, center=(0.0, -50.0, 0.0), radius=5.0, height=4.0)
        second = Formation(formation_id=1, type=FormationType.TUNNEL, center=(60.0, -50.0, 0.0), radius=5.0, height=4.0)

        assert extractor.connect([first, second], index) == 0

    def test_coincident_centers_link(self, extractor):
        """Test a zero-length path is viable"""
        index = PointIndex([make_point((0.0, 0.0, 0.0), density=0.0)])
        assert extractor.path_viable((1.0, -50.0, 1.0), (1.5, -50.0, 1.0), index)


class TestEnhancement:
    """Quality adjustments and reordering"""

    def test_reorders_and_remaps(self, extractor):
        """Test formations sort by size x stability and links follow the new ids"""
        small = Formation(formation_id=0, type=FormationType.SUB_CHAMBER, center=(0.0, -50.0, 0.0),
                          radius=2.0, height=2.0, stability=0.9, connections=[1])
        large = Formation(formation_id=1, type=FormationType.TUNNEL, center=(10.0, -50.0, 0.0),
                          radius=9.0, height=4.0, stability=0.9, connections=[0, 2])
        medium = Formation(formation_id=2, type=FormationType.TUNNEL, center=(30.0, -50.0, 0.0),
                           radius=5.0, height=4.0, stability=0.9, connections=[1])

        ordered = extractor.enhance([small, large, medium])

        assert [f.formation_id for f in ordered] == [0, 1, 2]
        assert ordered[0] is large
        assert ordered[1] is medium
        assert ordered[2] is small
        assert large.connections == [1, 2]
        assert medium.connections == [0]
        assert small.connections == [0]

    def test_smooth_walls_tag(self, extractor):
        """Test smooth walls are tagged once"""
        formation = Formation(formation_id=0, type=FormationType.TUNNEL, center=(0.0, -50.0, 0.0), radius=4.0, height=3.0)
        extractor.enhance([formation])
        extractor.enhance([formation])
        assert formation.features.count("smooth_walls") == 1

    def test_large_chamber_weakened(self, params):
        """Test large chambers lose stability under high geological accuracy"""
        extractor = FormationExtractor(create_custom_config(params, {"quality": {"geological_accuracy": 0.9}}))
        chamber = Formation(formation_id=0, type=FormationType.CHAMBER, center=(0.0, -50.0, 0.0),
                            radius=25.0, height=10.0, stability=1.0)
        extractor.enhance([chamber])
        assert chamber.stability == pytest.approx(0.8)
