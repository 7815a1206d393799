"""
Cave Builder - Generation Pipeline
Main orchestrator for procedural cave generation.
Executes all generation stages in sequence.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from cave_builder.config import (
    GENERATION_STAGES,
    STAGE_WEIGHTS,
    CaveGenerationParams,
    get_preset,
)
from cave_builder.models.cave import GenerationResult, PerformanceStats, Region
from cave_builder.models.state import CaveState
from cave_builder.settings import Settings
from cave_builder.generation import (
    stage_01_initialization,
    stage_02_geology,
    stage_03_noise,
    stage_04_density,
    stage_05_formations,
    stage_06_structural,
    stage_07_network,
    stage_08_flow,
    stage_09_surface,
    stage_10_features,
    stage_11_optimization,
    stage_12_validation,
)
from cave_builder.generation.stage_01_initialization import estimate_generation_time, validate_region

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str, str], None]

# Stages whose output later stages cannot do without
REQUIRED_STAGES = {
    "initialization",
    "geological_setup",
    "cave_point_generation",
    "formation_analysis",
    "network_building",
}

STAGE_MODULES = {
    "initialization": stage_01_initialization,
    "geological_setup": stage_02_geology,
    "noise_generation": stage_03_noise,
    "cave_point_generation": stage_04_density,
    "formation_analysis": stage_05_formations,
    "structural_validation": stage_06_structural,
    "network_building": stage_07_network,
    "flow_analysis": stage_08_flow,
    "surface_integration": stage_09_surface,
    "feature_generation": stage_10_features,
    "quality_optimization": stage_11_optimization,
    "final_validation": stage_12_validation,
}


class GenerationPipeline:
    """
    Main pipeline for executing all cave generation stages.
    Manages state, progress tracking, time budgets and stage orchestration.
    """

    def __init__(
        self,
        params: CaveGenerationParams,
        region: Region,
        progress_callback: Optional[ProgressCallback] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize generation pipeline.

        Args:
            params: Cave generation parameters
            region: Sampling region
            progress_callback: Optional callback (fraction, stage_name, detail)
            settings: Runtime settings (defaults to get_settings())
        """
        self.params = params
        self.region = region
        self.progress_callback = progress_callback
        self.settings = settings

        # Stage registry - populated with stage modules
        self.stage_registry: Dict[str, Any] = {}
        self._total_weight = sum(STAGE_WEIGHTS.values())
        self._reset()
        self._has_run = False

    def _reset(self) -> None:
        """Fresh state, timings and progress for a new run."""
        self.state = CaveState(self.params, self.region, self.settings)
        self.stage_timings: Dict[str, float] = {}
        self.skipped_stages: List[str] = []
        self._accumulated_weight = 0.0

    def register_stage(self, stage_name: str, stage_module):
        """Register a generation stage module"""
        self.stage_registry[stage_name] = stage_module

    def _report(self, fraction: float, stage_name: str, detail: str = "") -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(fraction, stage_name, detail)
        except Exception as e:
            logger.warning(f"Progress callback failed during {stage_name}: {e}")

    def _stage_reporter(self, stage_name: str) -> Callable[[float, str], None]:
        weight = STAGE_WEIGHTS.get(stage_name, 0.0)

        def report(stage_fraction: float, detail: str) -> None:
            overall = (self._accumulated_weight + stage_fraction * weight) / self._total_weight
            self._report(overall, stage_name, detail)

        return report

    def generate(self) -> GenerationResult:
        """
        Execute complete cave generation pipeline.

        Returns:
            GenerationResult; success is False only when a required stage failed
        """
        if self._has_run:
            self._reset()
        self._has_run = True

        start_time = time.perf_counter()
        logger.info(f"Starting cave generation (seed {self.params.seed}, region size {self.region.size})")

        for stage_name in GENERATION_STAGES:
            if stage_name not in self.stage_registry:
                logger.warning(f"Stage '{stage_name}' not registered, skipping")
                continue

            stage_start = time.perf_counter()
            self.state.begin_stage(stage_name, self._stage_reporter(stage_name))
            self._report(self._accumulated_weight / self._total_weight, stage_name, "started")
            logger.info(f"[{self._accumulated_weight / self._total_weight * 100:5.1f}%] Executing {stage_name}...")

            try:
                self.stage_registry[stage_name].execute(self.state, self.params)
            except Exception as e:
                self.stage_timings[stage_name] = time.perf_counter() - stage_start
                if stage_name in REQUIRED_STAGES:
                    logger.error(f"Generation failed in {stage_name}: {e}")
                    return self._build_result(False, start_time, error=f"Stage '{stage_name}' failed: {e}")

                self.state.warn(f"Stage '{stage_name}' skipped: {e}")
                self.skipped_stages.append(stage_name)
            else:
                self.stage_timings[stage_name] = time.perf_counter() - stage_start

            if self.state.timed_out:
                self.state.warn(f"Stage '{stage_name}' exceeded its time budget; results are partial")

            logger.info(f"        Completed {stage_name} in {self.stage_timings[stage_name]:.2f}s")

            self._accumulated_weight += STAGE_WEIGHTS.get(stage_name, 0.0)
            self._report(self._accumulated_weight / self._total_weight, stage_name, "complete")

        result = self._build_result(True, start_time)
        logger.info(f"Cave generation complete in {result.performance.total_time:.2f}s")
        return result

    def _build_result(self, success: bool, start_time: float, error: Optional[str] = None) -> GenerationResult:
        state = self.state
        performance = PerformanceStats(
            stage_timings=dict(self.stage_timings),
            total_time=time.perf_counter() - start_time,
            cache_hit_rate=state.noise.get_cache_stats()["hit_rate"],
            points_generated=len(state.points),
            formations_found=len(state.formations),
            networks_built=len(state.networks),
        )

        return GenerationResult(
            success=success,
            seed=self.params.seed,
            points=state.points,
            formations=state.formations,
            structural_analysis=state.structural_analysis,
            networks=state.networks,
            network_analysis=state.network_analysis,
            flow_analysis=state.flow_analysis,
            entrances=state.entrances,
            features=state.features,
            quality_metrics=state.quality_metrics,
            performance=performance,
            error=error,
            warnings=list(state.warnings),
            skipped_stages=list(self.skipped_stages),
            stage_data=dict(state.stage_data),
        )


def create_pipeline(
    params: CaveGenerationParams,
    region: Region,
    progress_callback: Optional[ProgressCallback] = None,
    settings: Optional[Settings] = None,
) -> GenerationPipeline:
    """Create a pipeline with every generation stage registered."""
    pipeline = GenerationPipeline(params, region, progress_callback, settings)
    for stage_name, stage_module in STAGE_MODULES.items():
        pipeline.register_stage(stage_name, stage_module)
    return pipeline


def generate_caves(
    region: Region,
    params: Optional[CaveGenerationParams] = None,
    progress_callback: Optional[ProgressCallback] = None,
    settings: Optional[Settings] = None,
) -> GenerationResult:
    """
    Generate a cave system for a region.

    Args:
        region: Sampling region
        params: Generation parameters (defaults to CaveGenerationParams())
        progress_callback: Optional callback (fraction, stage_name, detail)
        settings: Runtime settings

    Returns:
        GenerationResult
    """
    params = params or CaveGenerationParams()
    return create_pipeline(params, region, progress_callback, settings).generate()


def generate_realistic(region: Region, seed: Optional[int] = None, progress_callback: Optional[ProgressCallback] = None) -> GenerationResult:
    return generate_caves(region, get_preset("realistic", seed), progress_callback)


def generate_cinematic(region: Region, seed: Optional[int] = None, progress_callback: Optional[ProgressCallback] = None) -> GenerationResult:
    return generate_caves(region, get_preset("cinematic", seed), progress_callback)


def generate_geological_survey(region: Region, seed: Optional[int] = None, progress_callback: Optional[ProgressCallback] = None) -> GenerationResult:
    return generate_caves(region, get_preset("geological_survey", seed), progress_callback)


__all__ = [
    "GenerationPipeline",
    "REQUIRED_STAGES",
    "create_pipeline",
    "generate_caves",
    "generate_realistic",
    "generate_cinematic",
    "generate_geological_survey",
    "validate_region",
    "estimate_generation_time",
]
