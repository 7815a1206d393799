"""
Cave Builder - Stage 3: Noise Generation
Samples each noise layer of the density field on a coarse lattice so the
run records what the field will look like before full sampling.
"""

import logging
from typing import Callable, Dict

import numpy as np

from cave_builder.config import CaveGenerationParams
from cave_builder.models.cave import Region
from cave_builder.models.state import CaveState, NoisePattern
from cave_builder.utils.noise import NoiseEngine

logger = logging.getLogger(__name__)

# Coarse lattice spacing relative to the sampling resolution
PATTERN_SPACING_FACTOR = 4.0


def coarse_lattice(region: Region, spacing: float):
    """Flattened x, y, z arrays of a lattice covering the region."""
    axes = [
        np.arange(low, high + 1e-9, spacing)
        for low, high in zip(region.min_corner, region.max_corner)
    ]
    xs, ys, zs = np.meshgrid(*axes, indexing="ij")
    return xs.ravel(), ys.ravel(), zs.ravel()


def pattern_functions(noise: NoiseEngine, params: CaveGenerationParams) -> Dict[str, Callable]:
    """Array samplers for the named noise patterns."""
    main = 1.0 / (params.structure.passage_width * 10.0)
    vertical = main * 0.3

    return {
        "primary_structure": lambda x, y, z: noise.simplex3_array(x * main, y * vertical, z * main),
        "secondary_chambers": lambda x, y, z: noise.worley3_array(
            x * main * 0.5, y * vertical * 0.5, z * main * 0.5, 0.8, "F1"),
        "geological_influence": lambda x, y, z: noise.simplex3_array(x * main * 0.1, y * main * 2.0, z * main * 0.1),
        "vertical_features": lambda x, y, z: noise.simplex3_array(x * main * 0.3, y * main, z * main * 0.3),
        "surface_integration": lambda x, y, z: noise.fbm_array(x * 0.01, np.zeros_like(y), z * 0.01, 6, 2.0, 0.5),
    }


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Pre-compute and summarize the noise patterns.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    spacing = params.quality.sampling_resolution * PATTERN_SPACING_FACTOR
    xs, ys, zs = coarse_lattice(state.region, spacing)
    patterns = pattern_functions(state.noise, params)

    for i, (name, sampler) in enumerate(patterns.items()):
        if state.budget_exhausted():
            break

        values = sampler(xs, ys, zs)
        state.noise_patterns[name] = NoisePattern(
            name=name,
            resolution=spacing,
            samples=int(values.size),
            min_value=float(values.min()),
            max_value=float(values.max()),
            mean_value=float(values.mean()),
            quality=NoiseEngine.assess_quality(values),
        )
        logger.debug(f"Pattern {name}: mean {values.mean():.3f} over {values.size} samples")
        state.checkpoint((i + 1) / len(patterns), name)

    state.stage_data["noise_generation"] = {
        "patterns": len(state.noise_patterns),
        "samples_per_pattern": int(xs.size),
    }
    logger.info(f"Generated {len(state.noise_patterns)} noise patterns")
