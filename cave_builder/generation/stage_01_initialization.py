"""
Cave Builder - Stage 1: Initialization
Checks the sampling region and the parameter set before any heavy work.
"""

import logging
from typing import List, Optional, Tuple

from cave_builder.config import CaveGenerationParams, get_quality_score
from cave_builder.models.cave import Region
from cave_builder.models.state import CaveState

logger = logging.getLogger(__name__)

MIN_REGION_SIZE = (50.0, 20.0, 50.0)
MAX_REGION_SIZE = (2000.0, 500.0, 2000.0)


def validate_region(region: Region) -> Tuple[bool, List[str], Optional[str]]:
    """
    Check a sampling region.

    Returns:
        Tuple of (is_valid, warnings, error_message)
    """
    warnings = []
    size = region.size

    if any(s < minimum for s, minimum in zip(size, MIN_REGION_SIZE)):
        return False, warnings, "Region too small for meaningful cave generation (minimum 50x20x50)"

    if any(s > maximum for s, maximum in zip(size, MAX_REGION_SIZE)):
        warnings.append("Large region may take significant time to generate")

    if region.center[1] > 0:
        warnings.append("Region center is above ground level - caves may not generate properly")

    return True, warnings, None


def check_parameters(params: CaveGenerationParams) -> List[str]:
    """Warnings for parameter combinations that are valid but questionable."""
    warnings = []

    if params.quality.sampling_resolution > 4:
        warnings.append("High sampling resolution may impact performance")

    if params.structure.main_chamber_frequency > 0.3:
        warnings.append("High chamber frequency may create unrealistic cave density")

    if params.geology.collapse_simulation and params.geology.rock_hardness < 0.3:
        warnings.append("Soft rock with collapse simulation may create many unstable areas")

    return warnings


def estimate_generation_time(region: Region, params: CaveGenerationParams) -> float:
    """Rough wall-clock estimate in seconds."""
    estimate = region.volume / 100000.0

    if params.quality.sampling_resolution < 2:
        estimate *= 2.0
    if params.quality.geological_accuracy > 0.8:
        estimate *= 1.5
    if params.quality.structural_validation:
        estimate *= 1.3

    return estimate


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Validate inputs and record the configuration quality.

    Raises:
        ValueError: If the region cannot hold a cave system
    """
    is_valid, region_warnings, error = validate_region(state.region)
    if not is_valid:
        raise ValueError(error)

    for warning in region_warnings + check_parameters(params):
        state.warn(warning)

    quality = get_quality_score(params)
    state.stage_data["initialization"] = {
        "config_quality": quality,
        "region_volume": state.region.volume,
        "estimated_time_s": estimate_generation_time(state.region, params),
    }
    logger.info(f"Initialized generation for seed {params.seed} (config quality {quality:.1f}/100)")
