"""
Cave Builder - Stage 7: Network Building
Turns formations into graph nodes, links them through viable passages,
splits the graph into connected networks and scores each network.

SCORES (all 0-1):
- accessibility: how much of the network the best entrance reaches
- connectivity: edge density, route redundancy and passage quality
- exploration: size, depth, node variety and feature density
- safety: node stability, passage safety, air quality and exits
"""

import logging
import math
from collections import deque
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np
from scipy.spatial import cKDTree

from cave_builder.config import (
    FORMATION_DENSITY,
    INTERPOLATION_RADIUS,
    NETWORK_LINK_DISTANCE,
    PATH_SAMPLE_SPACING,
    PATH_VIABILITY_RATIO,
    SURFACE_DEPTH,
    CaveGenerationParams,
    ConnectionType,
    FormationType,
    NodeType,
)
from cave_builder.models.cave import (
    CaveConnection,
    CaveNetwork,
    CaveNode,
    Formation,
    NetworkAnalysis,
    distance,
)
from cave_builder.models.state import CaveState
from cave_builder.utils.spatial import PointIndex, sample_segment

logger = logging.getLogger(__name__)

MAX_REDUNDANCY_HOPS = 3
SUGGESTION_DISTANCE = 30.0
BOTTLENECK_WIDTH = 1.5
BOTTLENECK_DIFFICULTY = 0.7
WET_DENSITY = 0.6


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class PathProfile:
    """Density samples along a straight line between two nodes"""

    def __init__(self, densities: np.ndarray, positions: np.ndarray):
        self.densities = densities
        self.positions = positions

        open_mask = densities >= FORMATION_DENSITY
        self.open_count = int(open_mask.sum())
        self.obstructions = [f"blocked_at_{i}" for i in np.flatnonzero(~open_mask)]
        self.mean_density = float(densities.mean()) if len(densities) else 1.0

        self.width = 3.0
        self.height = 3.0
        self.water_flow = 0.0
        self.air_flow = 0.0
        if len(densities) and self.open_count > 0:
            viable = densities[open_mask]
            self.width = float(viable.mean() * 4.0)
            self.height = float(viable.mean() * 3.0)
            wet = (viable > WET_DENSITY) & (positions[open_mask, 1] < SURFACE_DEPTH)
            self.water_flow = float(wet.sum() * 0.1 / self.open_count)
            self.air_flow = min(self.width, self.height) / 4.0
        elif len(densities):
            self.width = 0.0
            self.height = 0.0

    @property
    def viable(self) -> bool:
        if len(self.densities) == 0:
            return True
        return self.open_count / len(self.densities) >= PATH_VIABILITY_RATIO


class NetworkBuilder:
    """
    Builds and scores cave networks from formations.

    Redundancy scoring walks bounded paths between every chamber and
    entrance; the number of pairs inspected per network is capped.
    """

    def __init__(self, params: CaveGenerationParams, max_redundancy_pairs: int = 200):
        self.params = params
        self.max_redundancy_pairs = max_redundancy_pairs

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def node_type(self, formation: Formation) -> NodeType:
        if (formation.type == FormationType.CHAMBER
                and formation.radius > self.params.structure.main_chamber_min_size):
            return NodeType.CHAMBER
        if formation.center[1] > SURFACE_DEPTH and formation.radius > 3:
            return NodeType.ENTRANCE
        if len(formation.connections) < 2:
            return NodeType.DEADEND
        return NodeType.JUNCTION

    def create_node(self, index: int, formation: Formation) -> CaveNode:
        """Node for the formation at 1-based position index."""
        size_score = min(1.0, formation.radius / 10.0)
        type_score = 1.0 if formation.type == FormationType.CHAMBER else 0.6
        accessibility = size_score * 0.4 + type_score * 0.3 + formation.stability * 0.3

        air_quality = (min(1.0, formation.radius / 5.0) + min(1.0, len(formation.connections) / 3.0)) / 2.0

        return CaveNode(
            id=f"node_{index}",
            position=formation.center,
            formation=formation,
            node_type=self.node_type(formation),
            depth=abs(formation.center[1]),
            accessibility=accessibility,
            water_access=formation.center[1] < SURFACE_DEPTH and formation.radius > 3,
            air_quality=air_quality,
            structural_stability=formation.stability,
            features=list(formation.features),
        )

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def path_profile(self, start, end, index: Optional[PointIndex]) -> PathProfile:
        """Interpolated densities every 2 units from start to end inclusive."""
        steps = math.floor(distance(start, end) / PATH_SAMPLE_SPACING)
        if steps < 1:
            return PathProfile(np.empty(0), np.empty((0, 3)))

        samples = sample_segment(start, end, steps)
        if index is None:
            densities = np.zeros(len(samples))
        else:
            densities = index.interpolated_density(samples, INTERPOLATION_RADIUS, 3)
        return PathProfile(densities, samples)

    def evaluate_connection(self, source: CaveNode, target: CaveNode, index: Optional[PointIndex]) -> Optional[CaveConnection]:
        """
        Directed connection from source to target, or None if not viable.

        Args:
            source: Origin node
            target: Destination node
            index: Point index used to interpolate density along the path

        Returns:
            CaveConnection or None
        """
        gap = distance(source.position, target.position)
        if gap > NETWORK_LINK_DISTANCE:
            return None

        profile = self.path_profile(source.position, target.position, index)
        if not profile.viable:
            return None

        dx = source.position[0] - target.position[0]
        dz = source.position[2] - target.position[2]
        vertical = abs(source.position[1] - target.position[1])
        horizontal = math.sqrt(dx * dx + dz * dz)

        if vertical > horizontal:
            connection_type = ConnectionType.SHAFT
        elif profile.width < 2:
            connection_type = ConnectionType.SQUEEZE
        else:
            connection_type = ConnectionType.TUNNEL

        obstructions = len(profile.obstructions)
        narrowness = max(0.0, 1 - profile.width / 3.0)
        difficulty = min(1.0, narrowness * 0.4 + obstructions * 0.1 * 0.3 + (1 - profile.mean_density) * 0.3)

        return CaveConnection(
            source_node_id=source.id,
            target_node_id=target.id,
            connection_type=connection_type,
            distance=gap,
            difficulty=_clamp01(difficulty),
            width=profile.width,
            height=profile.height,
            water_flow=profile.water_flow,
            air_flow=profile.air_flow,
            obstructions=profile.obstructions,
            stability=_clamp01(profile.width / 5.0 - obstructions * 0.05),
        )

    def connect_nodes(self, nodes: Sequence[CaveNode], index: Optional[PointIndex], state: Optional[CaveState] = None) -> int:
        """Evaluate every ordered pair within link distance. Returns the edge count."""
        if len(nodes) < 2:
            return 0

        tree = cKDTree(np.array([node.position for node in nodes]))
        edges = 0
        for i, node in enumerate(nodes):
            if state is not None:
                if state.budget_exhausted():
                    break
                state.checkpoint(i / len(nodes), node.id)

            for j in sorted(tree.query_ball_point(node.position, NETWORK_LINK_DISTANCE)):
                if j == i:
                    continue
                connection = self.evaluate_connection(node, nodes[j], index)
                if connection is not None:
                    node.connections.append(connection)
                    edges += 1
        return edges

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @staticmethod
    def find_components(nodes: Sequence[CaveNode]) -> List[List[CaveNode]]:
        """Connected components over the undirected edge relation, in node order."""
        by_id = {node.id: node for node in nodes}
        neighbors: Dict[str, Set[str]] = {node.id: set() for node in nodes}
        for node in nodes:
            for connection in node.connections:
                if connection.target_node_id in by_id:
                    neighbors[node.id].add(connection.target_node_id)
                    neighbors[connection.target_node_id].add(node.id)

        visited: Set[str] = set()
        components = []
        for node in nodes:
            if node.id in visited:
                continue

            component = []
            queue = deque([node.id])
            visited.add(node.id)
            while queue:
                current = queue.popleft()
                component.append(by_id[current])
                for next_id in sorted(neighbors[current]):
                    if next_id not in visited:
                        visited.add(next_id)
                        queue.append(next_id)
            components.append(component)
        return components

    @staticmethod
    def create_network(network_id: str, nodes: List[CaveNode]) -> CaveNetwork:
        network = CaveNetwork(id=network_id, nodes=nodes)

        deepest: Optional[CaveNode] = None
        for node in nodes:
            if node.node_type == NodeType.ENTRANCE:
                network.entrances.append(node.id)
                network.exits.append(node.id)
            elif node.node_type == NodeType.CHAMBER:
                network.main_chambers.append(node.id)

            if node.water_access:
                network.water_sources.append(node.id)

            if deepest is None or node.depth > deepest.depth:
                deepest = node

            network.connections.extend(node.connections)
            if node.formation is not None:
                network.total_volume += math.pi * node.formation.radius ** 2 * node.formation.height

        if deepest is not None:
            network.deepest_point = deepest.id
        return network

    # -------------------------------------------------------------------------
    # Scores
    # -------------------------------------------------------------------------

    @staticmethod
    def reachable(start: CaveNode, network: CaveNetwork) -> List[str]:
        """Node ids reachable from start following directed connections."""
        visited = {start.id}
        order = []
        queue = deque([start])
        while queue:
            current = queue.popleft()
            order.append(current.id)
            for connection in current.connections:
                target = network.get_node(connection.target_node_id)
                if target is not None and target.id not in visited:
                    visited.add(target.id)
                    queue.append(target)
        return order

    @staticmethod
    def entrance_quality(entrances: Sequence[CaveNode]) -> float:
        if not entrances:
            return 0.0

        total = 0.0
        for entrance in entrances:
            size = min(1.0, entrance.radius / 5.0) if entrance.formation is not None else 0.5
            total += (size + entrance.structural_stability + entrance.accessibility) / 3.0
        return total / len(entrances)

    def accessibility_score(self, network: CaveNetwork) -> float:
        entrances = [network.get_node(node_id) for node_id in network.entrances]
        if not entrances:
            return 0.0

        best = max(len(self.reachable(entrance, network)) for entrance in entrances)
        reach = best / len(network.nodes)
        return _clamp01(reach * 0.7 + self.entrance_quality(entrances) * 0.3)

    @staticmethod
    def count_paths(start: CaveNode, goal: CaveNode, network: CaveNetwork, max_hops: int = MAX_REDUNDANCY_HOPS) -> int:
        """Simple paths from start to goal of at most max_hops edges."""
        count = 0
        queue = deque([(start, 0, frozenset([start.id]))])
        while queue:
            node, hops, seen = queue.popleft()
            if node.id == goal.id:
                count += 1
                continue
            if hops >= max_hops:
                continue
            for connection in node.connections:
                target = network.get_node(connection.target_node_id)
                if target is not None and target.id not in seen:
                    queue.append((target, hops + 1, seen | {target.id}))
        return count

    def redundancy_score(self, network: CaveNetwork) -> float:
        """Share of extra routes between chambers and entrances (capped pair count)."""
        pairs: List[Tuple[str, str]] = [
            (chamber, entrance)
            for chamber in network.main_chambers
            for entrance in network.entrances
        ][:self.max_redundancy_pairs]
        if not pairs:
            return 0.0

        extra = 0
        for chamber_id, entrance_id in pairs:
            paths = self.count_paths(network.get_node(chamber_id), network.get_node(entrance_id), network)
            if paths > 1:
                extra += paths - 1
        return _clamp01(extra / len(pairs))

    @staticmethod
    def connection_quality(network: CaveNetwork) -> float:
        if not network.connections:
            return 0.0

        total = 0.0
        for connection in network.connections:
            total += (min(1.0, connection.width / 3.0) + connection.stability + (1 - connection.difficulty)) / 3.0
        return total / len(network.connections)

    def connectivity_score(self, network: CaveNetwork) -> float:
        count = len(network.nodes)
        if count <= 1:
            return 1.0

        pairs = {
            tuple(sorted((c.source_node_id, c.target_node_id)))
            for c in network.connections
        }
        density = len(pairs) / (count * (count - 1) / 2.0)
        score = density * 0.5 + self.redundancy_score(network) * 0.3 + self.connection_quality(network) * 0.2
        return _clamp01(score)

    @staticmethod
    def node_variety(network: CaveNetwork) -> float:
        counts: Dict[str, int] = {}
        for node in network.nodes:
            counts[node.node_type] = counts.get(node.node_type, 0) + 1
        if not counts:
            return 0.0

        per_type = sum(min(1.0, c / 3.0) for c in counts.values()) / len(counts)
        diversity = min(1.0, len(counts) / 4.0)
        return (per_type + diversity) / 2.0

    @staticmethod
    def feature_density(network: CaveNetwork) -> float:
        if not network.nodes:
            return 0.0
        unique = sum(len(set(node.features)) for node in network.nodes)
        return min(1.0, unique / (len(network.nodes) * 2.0))

    def exploration_score(self, network: CaveNetwork) -> float:
        deepest = network.get_node(network.deepest_point) if network.deepest_point else None
        max_depth = deepest.depth if deepest is not None else 0.0

        score = min(1.0, len(network.nodes) / 20.0) * 0.3
        score += min(1.0, max_depth / 100.0) * 0.2
        score += self.node_variety(network) * 0.3
        score += self.feature_density(network) * 0.2
        return _clamp01(score)

    def safety_score(self, network: CaveNetwork) -> float:
        nodes = network.nodes
        stability = float(np.mean([n.structural_stability for n in nodes])) if nodes else 0.0
        air = float(np.mean([n.air_quality for n in nodes])) if nodes else 0.0

        if network.connections:
            passage = float(np.mean([c.stability * (1 - c.difficulty) for c in network.connections]))
        else:
            passage = 1.0

        exits = min(1.0, len(network.exits) / 2.0)
        return _clamp01(stability * 0.4 + passage * 0.3 + air * 0.2 + exits * 0.1)

    def score(self, network: CaveNetwork) -> None:
        network.accessibility_score = self.accessibility_score(network)
        network.connectivity_score = self.connectivity_score(network)
        network.exploration_score = self.exploration_score(network)
        network.safety_score = self.safety_score(network)

    # -------------------------------------------------------------------------
    # Build / optimize / analyze
    # -------------------------------------------------------------------------

    def build(
        self,
        formations: Sequence[Formation],
        index: Optional[PointIndex],
        state: Optional[CaveState] = None,
    ) -> List[CaveNetwork]:
        """
        Build scored networks from formations.

        Args:
            formations: Extracted formations
            index: Point index for path density interpolation
            state: Optional generation state for progress and time budget

        Returns:
            One CaveNetwork per connected component
        """
        nodes = [self.create_node(i + 1, formation) for i, formation in enumerate(formations)]
        edges = self.connect_nodes(nodes, index, state)

        networks = []
        for k, component in enumerate(self.find_components(nodes)):
            network = self.create_network(f"network_{k + 1}", component)
            self.score(network)
            self.optimize(network)
            networks.append(network)
            logger.debug(
                f"{network.id}: {len(network.nodes)} nodes, "
                f"accessibility {network.accessibility_score:.2f}, connectivity {network.connectivity_score:.2f}"
            )

        logger.debug(f"Linked {len(nodes)} nodes with {edges} directed connections")
        return networks

    def optimize(self, network: CaveNetwork) -> None:
        """
        Tag nodes with connection suggestions and bottlenecks.

        Running it more than once adds nothing new.
        """
        for node in network.nodes:
            if node.node_type == NodeType.CHAMBER and len(node.connections) < 2:
                nearby = [
                    other for other in network.nodes
                    if other.id != node.id and distance(other.position, node.position) <= SUGGESTION_DISTANCE
                ]
                nearby.sort(key=lambda other: distance(other.position, node.position))
                for other in nearby:
                    tag = f"suggested_connection_to_{other.id}"
                    if len(other.connections) > 1 and tag not in node.features:
                        node.features.append(tag)

            for connection in node.connections:
                if connection.width < BOTTLENECK_WIDTH or connection.difficulty > BOTTLENECK_DIFFICULTY:
                    tag = f"bottleneck_{connection.connection_type}"
                    if tag not in node.features:
                        node.features.append(tag)

    def analyze(self, networks: Sequence[CaveNetwork]) -> NetworkAnalysis:
        """Totals, averages and recommendations across all networks."""
        analysis = NetworkAnalysis(total_networks=len(networks))
        if not networks:
            analysis.recommendations.append("Increase cave formation density for more interesting networks")
            return analysis

        sizes = [len(n.nodes) for n in networks]
        analysis.largest_network = max(sizes)
        analysis.average_network_size = float(np.mean(sizes))
        analysis.connectivity_index = float(np.mean([n.connectivity_score for n in networks]))
        analysis.accessibility_index = float(np.mean([n.accessibility_score for n in networks]))
        analysis.redundancy_index = float(np.mean([self.redundancy_score(n) for n in networks]))

        analysis.quality_metrics = {
            "average_network_size": analysis.average_network_size,
            "connectivity_index": analysis.connectivity_index,
            "accessibility_index": analysis.accessibility_index,
            "redundancy_index": analysis.redundancy_index,
            "total_volume": float(sum(n.total_volume for n in networks)),
            "exploration_potential": float(np.mean([n.exploration_score for n in networks])),
        }

        if analysis.connectivity_index < 0.5:
            analysis.recommendations.append("Consider adding more connections between cave formations")
        if analysis.accessibility_index < 0.3:
            analysis.recommendations.append("Add more surface entrances to improve accessibility")
        if analysis.redundancy_index < 0.2:
            analysis.recommendations.append("Create alternative paths for safety and exploration")
        if analysis.average_network_size < 5:
            analysis.recommendations.append("Increase cave formation density for more interesting networks")

        return analysis


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Build and score the cave networks.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    builder = NetworkBuilder(params, state.settings.max_redundancy_pairs)
    state.networks = builder.build(state.formations, state.point_index, state)
    state.network_analysis = builder.analyze(state.networks)

    state.stage_data["network_building"] = {
        "networks": len(state.networks),
        "nodes": len(state.all_nodes),
        "connections": sum(len(n.connections) for n in state.networks),
        "largest_network": state.network_analysis.largest_network,
    }
    logger.info(
        f"Built {len(state.networks)} networks "
        f"(largest {state.network_analysis.largest_network} nodes)"
    )
