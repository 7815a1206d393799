"""
Cave Builder - Stage 8: Water Flow Analysis
Routes water from high, wet nodes to the lowest nodes of each network.

Path search is Dijkstra with edge cost distance - 2 * elevation drop, so
descending passages are strongly preferred. Pairs without a route are
skipped.
"""

import heapq
import logging
from typing import Dict, List, Optional, Sequence

from cave_builder.config import WATER_SOURCE_ELEVATION, CaveGenerationParams
from cave_builder.models.cave import (
    CaveConnection,
    CaveNetwork,
    CaveNode,
    ErosionResult,
    FlowAnalysis,
    FlowPath,
    GeologicalLayer,
    distance,
)
from cave_builder.models.state import CaveState
from cave_builder.generation.stage_02_geology import layer_for_depth, simulate_erosion
from cave_builder.utils.spatial import midpoint, subtract, unit

logger = logging.getLogger(__name__)

SINK_TOLERANCE = 5.0
DESCENT_BIAS = 2.0
FLOW_RATE_FACTOR = 10.0
SEDIMENT_FACTOR = 0.1

HOTSPOT_WIDTH = 2.0
HOTSPOT_FLOW = 0.5
POOL_RADIUS = 4.0
POOL_SLOWDOWN = 2.0


class FlowAnalyzer:
    """Flow paths, erosion hotspots and sediment pools for a set of networks"""

    def __init__(self, params: CaveGenerationParams, layers: Sequence[GeologicalLayer] = ()):
        self.params = params
        self.layers = list(layers)

    @staticmethod
    def sources(network: CaveNetwork) -> List[CaveNode]:
        """Water-bearing nodes above the source elevation."""
        nodes = [network.get_node(node_id) for node_id in network.water_sources]
        return [node for node in nodes if node is not None and node.position[1] > WATER_SOURCE_ELEVATION]

    @staticmethod
    def sinks(network: CaveNetwork) -> List[CaveNode]:
        """Nodes within 5 units of the network's lowest elevation."""
        if not network.nodes:
            return []
        lowest = min(node.position[1] for node in network.nodes)
        return [node for node in network.nodes if node.position[1] <= lowest + SINK_TOLERANCE]

    @staticmethod
    def find_path(source: CaveNode, sink: CaveNode, network: CaveNetwork) -> Optional[List[CaveNode]]:
        """
        Descent-biased shortest path from source to sink.

        Returns:
            Node sequence from source to sink, or None if unreachable or
            source and sink coincide
        """
        costs: Dict[str, float] = {source.id: 0.0}
        previous: Dict[str, str] = {}
        closed = set()
        heap = [(0.0, 0, source.id)]
        counter = 1

        while heap:
            cost, _, node_id = heapq.heappop(heap)
            if node_id in closed:
                continue
            if node_id == sink.id:
                break
            closed.add(node_id)

            current = network.get_node(node_id)
            for connection in current.connections:
                neighbor = network.get_node(connection.target_node_id)
                if neighbor is None or neighbor.id in closed:
                    continue

                drop = current.position[1] - neighbor.position[1]
                candidate = cost + connection.distance - drop * DESCENT_BIAS
                if candidate < costs.get(neighbor.id, float("inf")):
                    costs[neighbor.id] = candidate
                    previous[neighbor.id] = node_id
                    heapq.heappush(heap, (candidate, counter, neighbor.id))
                    counter += 1

        if sink.id not in costs:
            return None

        path_ids = [sink.id]
        while path_ids[-1] in previous:
            path_ids.append(previous[path_ids[-1]])
        path_ids.reverse()

        if len(path_ids) < 2:
            return None
        return [network.get_node(node_id) for node_id in path_ids]

    @staticmethod
    def connection_between(source: CaveNode, target: CaveNode) -> Optional[CaveConnection]:
        for connection in source.connections:
            if connection.target_node_id == target.id:
                return connection
        return None

    def build_flow_path(self, nodes: List[CaveNode]) -> FlowPath:
        source, sink = nodes[0], nodes[-1]
        total_drop = source.position[1] - sink.position[1]
        path_length = sum(distance(a.position, b.position) for a, b in zip(nodes, nodes[1:]))
        gradient = total_drop / path_length if path_length > 0 else 0.0

        path = FlowPath(
            id=f"flow_{source.id}_to_{sink.id}",
            source_node=source.id,
            sink_node=sink.id,
            nodes=[node.id for node in nodes],
            flow_rate=max(0.0, gradient * FLOW_RATE_FACTOR),
            total_drop=total_drop,
            average_gradient=gradient,
        )
        path.erosion_hotspots = self.erosion_hotspots(nodes, path.flow_rate)
        path.sediment_pools = self.sediment_pools(nodes)
        return path

    def erosion_hotspots(self, nodes: List[CaveNode], flow_rate: float):
        """Midpoints of narrow passages carrying fast flow."""
        hotspots = []
        if flow_rate <= HOTSPOT_FLOW:
            return hotspots

        for current, following in zip(nodes, nodes[1:]):
            connection = self.connection_between(current, following)
            if connection is not None and connection.width < HOTSPOT_WIDTH:
                hotspots.append(midpoint(current.position, following.position))
        return hotspots

    @staticmethod
    def sediment_pools(nodes: List[CaveNode]):
        """Wide nodes where the descent flattens out."""
        pools = []
        for before, current, after in zip(nodes, nodes[1:], nodes[2:]):
            if current.formation is None or current.formation.radius <= POOL_RADIUS:
                continue
            drop_in = before.position[1] - current.position[1]
            drop_out = current.position[1] - after.position[1]
            if drop_in > drop_out + POOL_SLOWDOWN:
                pools.append(current.position)
        return pools

    def erode_path(self, nodes: List[CaveNode], flow_rate: float) -> List[ErosionResult]:
        """Erosion at each node along the path, driven by the outgoing flow."""
        results = []
        for current, following in zip(nodes, nodes[1:]):
            direction = unit(subtract(following.position, current.position))
            velocity = (direction[0] * flow_rate, direction[1] * flow_rate, direction[2] * flow_rate)
            density = current.formation.avg_density if current.formation is not None else 0.0
            layer = layer_for_depth(self.layers, current.depth)
            results.append(simulate_erosion(density, velocity, layer, self.params.geology))
        return results

    def analyze_network(self, network: CaveNetwork, analysis: FlowAnalysis) -> None:
        sinks = self.sinks(network)
        for source in self.sources(network):
            for sink in sinks:
                nodes = self.find_path(source, sink, network)
                if nodes is None:
                    continue

                path = self.build_flow_path(nodes)
                analysis.flow_paths.append(path)
                analysis.erosion_hotspots.extend(path.erosion_hotspots)
                analysis.sediment_pools.extend(path.sediment_pools)
                analysis.erosion.extend(self.erode_path(nodes, path.flow_rate))

    def analyze(self, networks: Sequence[CaveNetwork], state: Optional[CaveState] = None) -> FlowAnalysis:
        """
        Flow analysis across all networks.

        Args:
            networks: Scored cave networks
            state: Optional generation state for progress and time budget

        Returns:
            FlowAnalysis with paths and totals
        """
        analysis = FlowAnalysis()
        for i, network in enumerate(networks):
            if state is not None:
                if state.budget_exhausted():
                    break
                state.checkpoint(i / len(networks), network.id)
            self.analyze_network(network, analysis)

        analysis.total_flow_rate = sum(path.flow_rate for path in analysis.flow_paths)
        analysis.sediment_transport = analysis.total_flow_rate * SEDIMENT_FACTOR
        return analysis


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Compute water flow through the networks.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    layers = state.geology.layers if state.geology is not None else []
    analyzer = FlowAnalyzer(params, layers)
    state.flow_analysis = analyzer.analyze(state.networks, state)

    state.stage_data["flow_analysis"] = {
        "flow_paths": len(state.flow_analysis.flow_paths),
        "total_flow_rate": state.flow_analysis.total_flow_rate,
        "erosion_hotspots": len(state.flow_analysis.erosion_hotspots),
        "sediment_pools": len(state.flow_analysis.sediment_pools),
    }
    logger.info(f"Found {len(state.flow_analysis.flow_paths)} flow paths")
