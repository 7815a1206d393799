"""
Cave Builder - Stage 11: Quality Optimization
Refines networks and smooths the density field when quality is preferred
over speed.
"""

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

import numpy as np

from cave_builder.config import CaveGenerationParams
from cave_builder.models.cave import CavePoint
from cave_builder.models.state import CaveState
from cave_builder.generation.stage_04_density import classify_material
from cave_builder.generation.stage_07_network import NetworkBuilder
from cave_builder.utils.spatial import PointIndex

logger = logging.getLogger(__name__)

SMOOTHING_RADIUS = 4.0
SMOOTHING_KEEP = 0.7


def smooth_points(points: Sequence[CavePoint], passes: int, index: Optional[PointIndex] = None) -> List[CavePoint]:
    """
    Blend each density with the mean of its neighbours closer than 4 units.

    Each pass computes new densities from the previous pass only. Returns
    new CavePoints with updated density and material; positions are kept.
    """
    if not points or passes <= 0:
        return list(points)

    index = index if index is not None else PointIndex(points)
    rows, cols = index.neighbor_pairs(SMOOTHING_RADIUS)
    counts = np.bincount(rows, minlength=len(points)).astype(np.float64)

    density = index.densities.copy()
    for _ in range(passes):
        sums = np.bincount(rows, weights=density[cols], minlength=len(points))
        density = density * SMOOTHING_KEEP + (sums / counts) * (1 - SMOOTHING_KEEP)

    return [
        replace(point, density=float(density[i]), material=classify_material(density[i]))
        for i, point in enumerate(points)
    ]


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Optimize networks and smooth densities.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    if not params.quality.quality_over_performance:
        state.stage_data["quality_optimization"] = {"optimized": False, "skipped": True}
        logger.info("Skipping quality optimization (performance mode)")
        return

    builder = NetworkBuilder(params, state.settings.max_redundancy_pairs)
    for network in state.networks:
        builder.optimize(network)
    state.checkpoint(0.5, "networks")

    passes = params.quality.smoothing_passes
    if passes > 0 and state.points:
        state.set_points(smooth_points(state.points, passes, state.point_index))

    state.stage_data["quality_optimization"] = {"optimized": True, "smoothing_passes": passes}
    logger.info(f"Quality optimization complete ({passes} smoothing passes)")
