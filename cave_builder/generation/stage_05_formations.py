"""
Cave Builder - Stage 5: Formation Analysis
Clusters dense cave points into typed formations and links formations
that are joined by open rock.

APPROACH:
1. Seeds are points denser than 0.3, visited densest first
2. Each unclaimed seed gathers unclaimed points within 15 units
3. Clusters of at least 5 points become formations and claim their members
4. Formations whose straight connecting line stays open are linked
"""

import logging
import math
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from cave_builder.config import (
    FORMATION_DENSITY,
    FORMATION_LINK_MARGIN,
    FORMATION_NEIGHBORHOOD,
    MIN_FORMATION_POINTS,
    PATH_SAMPLE_SPACING,
    CaveGenerationParams,
    FormationType,
)
from cave_builder.models.cave import CavePoint, Formation, Vector3, distance
from cave_builder.models.state import CaveState
from cave_builder.utils.spatial import PointIndex, sample_segment

logger = logging.getLogger(__name__)

MIN_FORMATION_RADIUS = 0.5
STREAM_FLOW = 0.3
STREAM_FRACTION = 0.3
GAS_CONTENT = 0.7
GAS_FRACTION = 0.5
BATCH_SIZE = 250


class FormationExtractor:
    """
    Greedy density-ordered clustering of CavePoints.

    Claims are tracked per extractor call, so every source point belongs to
    at most one formation.
    """

    def __init__(
        self,
        params: CaveGenerationParams,
        radius: float = FORMATION_NEIGHBORHOOD,
        min_points: int = MIN_FORMATION_POINTS,
    ):
        self.params = params
        self.radius = radius
        self.min_points = min_points

    def extract(
        self,
        points: Sequence[CavePoint],
        index: Optional[PointIndex] = None,
        state: Optional[CaveState] = None,
    ) -> List[Formation]:
        """
        Extract formations from sampled points.

        Args:
            points: Sampled cave points
            index: Prebuilt index over the same points
            state: Optional generation state for progress and time budget

        Returns:
            Formations in extraction order (ids 0..n-1)
        """
        if not points:
            return []

        index = index if index is not None else PointIndex(points)
        densities = index.densities
        claimed = np.zeros(len(points), dtype=bool)

        seeds = np.flatnonzero(densities > FORMATION_DENSITY)
        seeds = seeds[np.argsort(-densities[seeds], kind="stable")]

        formations: List[Formation] = []
        for n, seed in enumerate(seeds):
            if claimed[seed]:
                continue

            if state is not None and n % BATCH_SIZE == 0:
                if state.budget_exhausted():
                    break
                state.checkpoint(n / len(seeds), f"{len(formations)} formations")

            members = index.query_radius(points[seed].position, self.radius)
            members = members[~claimed[members]]
            if len(members) < self.min_points:
                continue

            formations.append(self._build_formation(len(formations), points, index, members))
            claimed[members] = True

        logger.debug(f"Extracted {len(formations)} formations from {len(seeds)} seeds")
        return formations

    def _build_formation(self, formation_id: int, points: Sequence[CavePoint], index: PointIndex, members: np.ndarray) -> Formation:
        positions = index.positions[members]
        center = positions.mean(axis=0)
        width, height, depth = positions.max(axis=0) - positions.min(axis=0)

        radius = max(MIN_FORMATION_RADIUS, max(width, depth) / 2.0)
        extent = max(width, depth)
        avg_density = float(index.densities[members].mean())

        orientation = (1.0, 0.0, 0.0)
        if depth > width:
            orientation = (0.0, 0.0, 1.0)
        if height > extent:
            orientation = (0.0, 1.0, 0.0)

        member_points = [points[i] for i in members]
        stability = float(np.mean([p.stability for p in member_points]))

        return Formation(
            formation_id=formation_id,
            type=self.classify(radius, float(height), float(extent), avg_density),
            center=(float(center[0]), float(center[1]), float(center[2])),
            radius=float(radius),
            height=float(height),
            width=float(width),
            depth=float(depth),
            length=float(extent),
            orientation=orientation,
            stability=stability,
            avg_density=avg_density,
            features=self.special_features(member_points),
            point_indices=[int(i) for i in members],
        )

    def classify(self, radius: float, height: float, length: float, avg_density: float) -> FormationType:
        """Formation type by shape, checked in priority order."""
        min_chamber = self.params.structure.main_chamber_min_size

        if height / radius > 2 and height > 10:
            return FormationType.VERTICAL_SHAFT
        if radius < 2 and length > 8:
            return FormationType.SQUEEZE_PASSAGE
        if radius >= min_chamber and avg_density > 0.7:
            return FormationType.CHAMBER
        if radius < min_chamber:
            return FormationType.SUB_CHAMBER
        return FormationType.TUNNEL

    @staticmethod
    def special_features(members: Sequence[CavePoint]) -> List[str]:
        features = []
        if not members:
            return features

        wet = sum(1 for p in members if p.water_flow > STREAM_FLOW)
        if wet / len(members) > STREAM_FRACTION:
            features.append("underground_stream")

        gassy = sum(1 for p in members if p.gas_content > GAS_CONTENT)
        if gassy / len(members) > GAS_FRACTION:
            features.append("gas_pocket")

        return features

    def path_viable(self, start: Vector3, end: Vector3, index: PointIndex) -> bool:
        """True if every sample every 2 units along the line hits open rock."""
        steps = math.floor(distance(start, end) / PATH_SAMPLE_SPACING)
        if steps < 1:
            return True
        samples = sample_segment(start, end, steps, include_start=False)
        return bool(np.all(index.nearest_density(samples) >= FORMATION_DENSITY))

    def connect(self, formations: Sequence[Formation], index: PointIndex) -> int:
        """
        Link formation pairs that are close and joined by open rock.

        Returns:
            Number of links created
        """
        links = 0
        for i, first in enumerate(formations):
            for second in formations[i + 1:]:
                gap = distance(first.center, second.center)
                if gap > first.radius + second.radius + FORMATION_LINK_MARGIN:
                    continue
                if not self.path_viable(first.center, second.center, index):
                    continue

                first.connections.append(second.formation_id)
                second.connections.append(first.formation_id)
                links += 1
        return links

    def enhance(self, formations: Sequence[Formation]) -> List[Formation]:
        """
        Apply quality adjustments and order formations by size * stability.

        Formation ids are renumbered to the new order and connections are
        remapped accordingly.
        """
        quality = self.params.quality
        for formation in formations:
            if (quality.geological_accuracy > 0.7
                    and formation.type == FormationType.CHAMBER
                    and formation.radius > 20):
                formation.stability *= 0.8
            if quality.wall_smoothness > 0.5 and "smooth_walls" not in formation.features:
                formation.features.append("smooth_walls")

        ordered = sorted(formations, key=lambda f: f.radius * f.stability, reverse=True)
        remap = {f.formation_id: new_id for new_id, f in enumerate(ordered)}
        for formation in ordered:
            formation.formation_id = remap[formation.formation_id]
            formation.connections = sorted(remap[c] for c in formation.connections)
        return ordered


def formation_statistics(formations: Sequence[Formation]) -> Dict[str, Any]:
    """Count, mean radius, mean stability and type distribution."""
    if not formations:
        return {"total": 0, "average_radius": 0.0, "average_stability": 0.0, "type_distribution": {}}

    return {
        "total": len(formations),
        "average_radius": float(np.mean([f.radius for f in formations])),
        "average_stability": float(np.mean([f.stability for f in formations])),
        "type_distribution": dict(Counter(FormationType(f.type).value for f in formations)),
    }


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Extract, link and enhance formations.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    extractor = FormationExtractor(params)
    index = state.point_index if state.point_index is not None else PointIndex(state.points)

    formations = extractor.extract(state.points, index, state)
    links = extractor.connect(formations, index)
    state.formations = extractor.enhance(formations)

    stats = formation_statistics(state.formations)
    stats["links"] = links
    state.stage_data["formation_analysis"] = stats
    logger.info(f"Identified {len(state.formations)} formations with {links} links")
