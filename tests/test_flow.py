"""
Water Flow Tests
Sources, sinks, descent-biased routing, hotspots, pools and erosion.

Run with: python -m pytest tests/test_flow.py -v
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cave_builder.config import CaveGenerationParams, ConnectionType, FormationType, GeologySettings
from cave_builder.models.cave import CaveConnection, Formation, distance
from cave_builder.generation.stage_02_geology import build_layers
from cave_builder.generation.stage_07_network import NetworkBuilder
from cave_builder.generation.stage_08_flow import FlowAnalyzer


@pytest.fixture
def params():
    """Default parameters with a fixed seed"""
    return CaveGenerationParams(seed=5)


@pytest.fixture
def builder(params):
    """Network builder used to create nodes"""
    return NetworkBuilder(params)


@pytest.fixture
def analyzer(params):
    """Flow analyzer over default geological layers"""
    return FlowAnalyzer(params, build_layers(-100.0, GeologySettings()))


def make_nodes(builder, positions, radius=5.0):
    nodes = []
    for i, position in enumerate(positions):
        formation = Formation(
            formation_id=i,
            type=FormationType.TUNNEL,
            center=position,
            radius=radius,
            height=4.0,
            avg_density=0.6,
        )
        nodes.append(builder.create_node(i + 1, formation))
    return nodes


def connect(source, target, width=3.0):
    source.connections.append(CaveConnection(
        source_node_id=source.id,
        target_node_id=target.id,
        connection_type=ConnectionType.TUNNEL,
        distance=distance(source.position, target.position),
        difficulty=0.2,
        width=width,
        height=2.0,
    ))


def both_ways(a, b, width=3.0):
    connect(a, b, width)
    connect(b, a, width)


class TestSourcesAndSinks:
    """Endpoint selection"""

    def test_sources_are_high_water_nodes(self, builder):
        """Test only water nodes above the source elevation are sources"""
        nodes = make_nodes(builder, [(0.0, -30.0, 0.0), (10.0, -50.0, 0.0), (20.0, -70.0, 0.0)])
        network = NetworkBuilder.create_network("network_1", nodes)
        assert [n.id for n in FlowAnalyzer.sources(network)] == ["node_1"]

    def test_sinks_near_lowest_point(self, builder):
        """Test sinks are nodes within 5 units of the lowest elevation"""
        nodes = make_nodes(builder, [(0.0, -30.0, 0.0), (10.0, -66.0, 0.0), (20.0, -70.0, 0.0)])
        network = NetworkBuilder.create_network("network_1", nodes)
        assert [n.id for n in FlowAnalyzer.sinks(network)] == ["node_2", "node_3"]


class TestRouting:
    """Descent-biased shortest paths"""

    def test_descending_chain(self, builder, analyzer):
        """Test water runs down a chain of passages"""
        a, b, c = make_nodes(builder, [(0.0, -30.0, 0.0), (10.0, -50.0, 0.0), (20.0, -70.0, 0.0)])
        both_ways(a, b)
        both_ways(b, c)
        network = NetworkBuilder.create_network("network_1", [a, b, c])

        analysis = analyzer.analyze([network])

        assert len(analysis.flow_paths) == 1
        path = analysis.flow_paths[0]
        assert path.nodes == ["node_1", "node_2", "node_3"]
        assert path.source_node == "node_1"
        assert path.sink_node == "node_3"
        assert path.total_drop == pytest.approx(40.0)
        length = 2 * distance((0.0, -30.0, 0.0), (10.0, -50.0, 0.0))
        assert path.average_gradient == pytest.approx(40.0 / length)
        assert path.flow_rate == pytest.approx(40.0 / length * 10.0)
        assert analysis.total_flow_rate == pytest.approx(path.flow_rate)
        assert analysis.sediment_transport == pytest.approx(path.flow_rate * 0.1)

    def test_prefers_descent(self, builder):
        """Test a longer descending detour beats a flat shortcut"""
        source, flat, low, sink = make_nodes(
            builder,
            [(0.0, -30.0, 0.0), (10.0, -30.0, 0.0), (5.0, -60.0, 0.0), (6.0, -62.0, 0.0)],
        )
        connect(source, flat)
        connect(flat, sink)
        connect(source, low)
        connect(low, sink)
        network = NetworkBuilder.create_network("network_1", [source, flat, low, sink])

        nodes = FlowAnalyzer.find_path(source, sink, network)
        assert [n.id for n in nodes] == ["node_1", "node_3", "node_4"]

    def test_unreachable_sink_skipped(self, builder, analyzer):
        """Test source and sink without a route produce no path"""
        a, b = make_nodes(builder, [(0.0, -30.0, 0.0), (10.0, -70.0, 0.0)])
        network = NetworkBuilder.create_network("network_1", [a, b])
        assert FlowAnalyzer.find_path(a, b, network) is None
        assert analyzer.analyze([network]).flow_paths == []

    def test_source_equal_to_sink(self, builder):
        """Test a node routing to itself produces no path"""
        (a,) = make_nodes(builder, [(0.0, -30.0, 0.0)])
        network = NetworkBuilder.create_network("network_1", [a])
        assert FlowAnalyzer.find_path(a, a, network) is None

    def test_empty_networks(self, analyzer):
        """Test no networks yields an empty analysis"""
        analysis = analyzer.analyze([])
        assert analysis.flow_paths == []
        assert analysis.total_flow_rate == 0.0


class TestErosionFeatures:
    """Hotspots, pools and erosion along paths"""

    def test_hotspots_in_narrow_fast_passages(self, builder, analyzer):
        """Test narrow passages under fast flow become hotspots"""
        a, b, c = make_nodes(builder, [(0.0, -30.0, 0.0), (5.0, -50.0, 0.0), (10.0, -70.0, 0.0)])
        both_ways(a, b, width=1.0)
        both_ways(b, c)
        network = NetworkBuilder.create_network("network_1", [a, b, c])

        path = analyzer.analyze([network]).flow_paths[0]
        assert path.erosion_hotspots == [pytest.approx((2.5, -40.0, 0.0))]

    def test_sediment_pool_where_descent_flattens(self, builder, analyzer):
        """Test wide nodes after a steep drop collect sediment"""
        a, b, c = make_nodes(builder, [(0.0, -25.0, 0.0), (10.0, -50.0, 0.0), (30.0, -56.0, 0.0)])
        both_ways(a, b)
        both_ways(b, c)
        network = NetworkBuilder.create_network("network_1", [a, b, c])

        path = analyzer.analyze([network]).flow_paths[0]
        assert path.nodes == ["node_1", "node_2", "node_3"]
        assert path.sediment_pools == [(10.0, -50.0, 0.0)]

    def test_erosion_per_segment(self, builder, analyzer):
        """Test one erosion result per path segment"""
        a, b, c = make_nodes(builder, [(0.0, -30.0, 0.0), (10.0, -50.0, 0.0), (20.0, -70.0, 0.0)])
        both_ways(a, b)
        both_ways(b, c)
        network = NetworkBuilder.create_network("network_1", [a, b, c])

        analysis = analyzer.analyze([network])
        assert len(analysis.erosion) == 2
        for result in analysis.erosion:
            assert result.original_density == pytest.approx(0.6)
            assert result.eroded_density >= result.original_density
