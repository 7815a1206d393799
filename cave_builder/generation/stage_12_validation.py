"""
Cave Builder - Stage 12: Final Validation
Checks network connectivity and computes the final quality metrics.
"""

import logging
from typing import Sequence

import numpy as np

from cave_builder.config import CaveGenerationParams
from cave_builder.models.cave import CaveNetwork, QualityMetrics
from cave_builder.models.state import CaveState
from cave_builder.generation.stage_07_network import NetworkBuilder

logger = logging.getLogger(__name__)

SKIPPED_STRUCTURAL_SCORE = 0.8
MIN_REACHABILITY = 0.9

QUALITY_WEIGHTS = {
    "geological": 0.25,
    "connectivity": 0.20,
    "structural": 0.20,
    "visual": 0.15,
    "exploration": 0.10,
    "accessibility": 0.10,
}


def connectivity_issues(networks: Sequence[CaveNetwork]) -> int:
    """Entrances that reach < 90% of their network, plus nodes without connections."""
    issues = 0
    for network in networks:
        for entrance_id in network.entrances:
            entrance = network.get_node(entrance_id)
            reached = NetworkBuilder.reachable(entrance, network)
            if len(reached) / len(network.nodes) < MIN_REACHABILITY:
                issues += 1
        issues += sum(1 for node in network.nodes if not node.connections)
    return issues


def compute_quality_metrics(state: CaveState, params: CaveGenerationParams) -> QualityMetrics:
    """Weighted 0-1 quality scores with recommendations."""
    metrics = QualityMetrics()
    quality = params.quality

    if state.network_analysis is not None:
        metrics.connectivity = state.network_analysis.connectivity_index
        metrics.accessibility = state.network_analysis.accessibility_index
    if state.networks:
        metrics.exploration = float(np.mean([n.exploration_score for n in state.networks]))

    if state.structural_analysis is not None:
        metrics.structural = max(0.0, min(1.0, state.structural_analysis.safety_factor))
    else:
        metrics.structural = SKIPPED_STRUCTURAL_SCORE

    metrics.geological = quality.geological_accuracy
    metrics.visual = (quality.wall_smoothness + quality.detail_level + (1.0 if quality.ambient_occlusion else 0.5)) / 3.0

    metrics.overall = sum(getattr(metrics, name) * weight for name, weight in QUALITY_WEIGHTS.items())

    metrics.details = {
        "formation_count": len(state.formations),
        "network_count": len(state.networks),
        "entrance_count": len(state.entrances),
        "feature_count": len(state.features),
    }

    if metrics.connectivity < 0.6:
        metrics.recommendations.append("Increase passage connectivity for better exploration")
    if metrics.structural < 0.7:
        metrics.recommendations.append("Consider strengthening structural supports in large chambers")
    if metrics.accessibility < 0.5:
        metrics.recommendations.append("Add more surface entrances for better accessibility")
    if metrics.exploration < 0.6:
        metrics.recommendations.append("Increase cave network complexity and variety")

    return metrics


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Validate connectivity and record quality metrics.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    issues = 0
    if params.quality.connectivity_validation:
        issues = connectivity_issues(state.networks)
        if issues > 0:
            state.warn(f"Found {issues} connectivity issues")

    state.quality_metrics = compute_quality_metrics(state, params)
    state.stage_data["final_validation"] = {
        "validated": True,
        "connectivity_issues": issues,
        "overall": state.quality_metrics.overall,
    }
    logger.info(f"Final quality score {state.quality_metrics.overall * 100:.1f}%")
