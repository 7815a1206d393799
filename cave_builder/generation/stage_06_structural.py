"""
Cave Builder - Stage 6: Structural Validation
Estimates ceiling thickness, span safety and collapse risk per formation.

Findings are advisory: they produce warnings and support proposals but
never stop generation.
"""

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from cave_builder.config import SOLID_ROCK_DENSITY, CaveGenerationParams, FormationType
from cave_builder.models.cave import Formation, FormationStructure, StructuralAnalysis, Vector3
from cave_builder.models.state import CaveState
from cave_builder.utils.spatial import PointIndex

logger = logging.getLogger(__name__)

DEFAULT_CEILING_THICKNESS = 20.0
MIN_CEILING_THICKNESS = 1.0
CEILING_SEARCH_FACTOR = 1.2
CEILING_CLEARANCE = 2.0

SAFE_SPAN = 8.0
PILLAR_SPACING = 6.0
PILLAR_RING = 0.6
THICKNESS_RATIO = 0.3

COLLAPSE_SAFETY = 0.3
STRESS_SAFETY = 0.5


def perimeter_points(center: Vector3, radius: float, y: float) -> List[Vector3]:
    """One point per unit of radius, evenly spaced on a horizontal ring."""
    count = int(math.floor(radius))
    points = []
    for i in range(count):
        angle = 2 * math.pi * i / count
        points.append((center[0] + math.cos(angle) * radius, y, center[2] + math.sin(angle) * radius))
    return points


def pillar_locations(formation: Formation) -> List[Vector3]:
    """Ring of support pillars at 60% radius, one per 6 units of radius."""
    count = int(math.floor(formation.radius / PILLAR_SPACING))
    ring = formation.radius * PILLAR_RING
    cx, cy, cz = formation.center

    pillars = []
    for i in range(1, count + 1):
        angle = 2 * math.pi * i / count
        pillars.append((cx + math.cos(angle) * ring, cy, cz + math.sin(angle) * ring))
    return pillars


class StructuralAnalyzer:
    """Per-formation collapse heuristics and their aggregate"""

    def __init__(self, params: CaveGenerationParams):
        self.params = params

    def ceiling_thickness(self, formation: Formation, index: Optional[PointIndex]) -> float:
        """
        Vertical gap from the formation center to the nearest solid point above.

        Falls back to 20 units when no solid point is found nearby.
        """
        thickness = DEFAULT_CEILING_THICKNESS
        if index is None or len(index) == 0:
            return thickness

        center_y = formation.center[1]
        nearby = index.query_radius(formation.center, formation.radius * CEILING_SEARCH_FACTOR)
        if len(nearby) == 0:
            return thickness

        heights = index.positions[nearby, 1] - center_y
        solid = (heights > CEILING_CLEARANCE) & (index.densities[nearby] < SOLID_ROCK_DENSITY)
        if np.any(solid):
            thickness = min(thickness, float(heights[solid].min()))
        return max(MIN_CEILING_THICKNESS, thickness)

    def analyze_formation(
        self,
        formation: Formation,
        index: Optional[PointIndex] = None,
        ceiling_thickness: Optional[float] = None,
    ) -> FormationStructure:
        """
        Safety findings for one formation.

        Args:
            formation: Formation to analyze
            index: Point index used to locate the ceiling
            ceiling_thickness: Known thickness, skips the ceiling search

        Returns:
            FormationStructure with critical and support points
        """
        if ceiling_thickness is None:
            ceiling_thickness = self.ceiling_thickness(formation, index)

        critical: List[Vector3] = []
        support: List[Vector3] = []
        stress: List[Vector3] = []

        span_safety = min(1.0, SAFE_SPAN / formation.radius)
        if formation.type == FormationType.CHAMBER and span_safety < 0.5:
            critical.append(formation.center)
            if self.params.geology.support_structures:
                support.extend(pillar_locations(formation))

        thickness_safety = min(1.0, ceiling_thickness / (THICKNESS_RATIO * formation.radius))
        ceiling_y = formation.center[1] + formation.height / 2.0
        if thickness_safety < 1.0:
            critical.extend(perimeter_points(formation.center, formation.radius, ceiling_y))

        safety = (thickness_safety + span_safety + formation.stability) / 3.0
        if safety < STRESS_SAFETY:
            stress.append((formation.center[0], ceiling_y, formation.center[2]))

        return FormationStructure(
            formation_id=formation.formation_id,
            safety_factor=safety,
            span_safety=span_safety,
            thickness_safety=thickness_safety,
            ceiling_thickness=ceiling_thickness,
            critical_points=critical,
            support_points=support,
            stress_points=stress,
        )

    def apply_collapse(self, formation: Formation, result: FormationStructure) -> bool:
        """Retype an unsafe chamber as collapsed. Returns True if retyped."""
        if not self.params.geology.collapse_simulation:
            return False
        if formation.type != FormationType.CHAMBER or result.safety_factor >= COLLAPSE_SAFETY:
            return False

        formation.type = FormationType.COLLAPSE_CHAMBER.value
        if "collapsed_ceiling" not in formation.features:
            formation.features.append("collapsed_ceiling")
        return True

    def analyze(
        self,
        formations: Sequence[Formation],
        index: Optional[PointIndex],
        state: Optional[CaveState] = None,
    ) -> StructuralAnalysis:
        """
        Analyze every formation and aggregate the results.

        Aggregate safety and ceiling thickness are arithmetic means; with no
        formations they default to 1.0 and 5.0.
        """
        analysis = StructuralAnalysis()
        if not formations:
            return analysis

        collapsed = 0
        for i, formation in enumerate(formations):
            if state is not None:
                if state.budget_exhausted():
                    break
                state.checkpoint(i / len(formations), f"formation {formation.formation_id}")

            result = self.analyze_formation(formation, index)
            if self.apply_collapse(formation, result):
                collapsed += 1

            analysis.formation_results.append(result)
            analysis.critical_points.extend(result.critical_points)
            analysis.support_points.extend(result.support_points)
            analysis.stress_points.extend(result.stress_points)

        results = analysis.formation_results
        if results:
            analysis.safety_factor = float(np.mean([r.safety_factor for r in results]))
            analysis.ceiling_thickness = float(np.mean([r.ceiling_thickness for r in results]))

        if analysis.safety_factor < COLLAPSE_SAFETY:
            analysis.warnings.append("Low structural safety factor - collapse risk detected")
        if len(analysis.critical_points) > len(formations) * 0.3:
            analysis.warnings.append("High number of critical structural points")
        if analysis.ceiling_thickness < 3.0:
            analysis.warnings.append("Thin ceiling detected - consider reinforcement")

        if collapsed:
            logger.debug(f"{collapsed} chambers marked as collapsed")
        return analysis


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Run structural validation unless disabled in the quality settings.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    if not params.quality.structural_validation:
        state.stage_data["structural_validation"] = {"skipped": True}
        logger.info("Structural validation disabled")
        return

    analyzer = StructuralAnalyzer(params)
    analysis = analyzer.analyze(state.formations, state.point_index, state)
    state.structural_analysis = analysis

    for warning in analysis.warnings:
        state.warn(warning)

    state.stage_data["structural_validation"] = {
        "safety_factor": analysis.safety_factor,
        "ceiling_thickness": analysis.ceiling_thickness,
        "critical_points": len(analysis.critical_points),
        "support_points": len(analysis.support_points),
    }
    logger.info(f"Structural safety factor {analysis.safety_factor:.2f} over {len(state.formations)} formations")
