"""
Cave Builder - Generation State
Holds the typed output of every pipeline stage for one run.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import numpy as np
from pydantic import BaseModel, Field

from cave_builder.config import CaveGenerationParams
from cave_builder.models.cave import (
    CaveFeature,
    CaveNetwork,
    CavePoint,
    FlowAnalysis,
    Formation,
    GeologicalLayer,
    NetworkAnalysis,
    QualityMetrics,
    Region,
    StructuralAnalysis,
    SurfaceEntrance,
)
from cave_builder.settings import Settings, get_settings
from cave_builder.utils.noise import CacheConfig, NoiseEngine, seeded_rng
from cave_builder.utils.spatial import PointIndex

logger = logging.getLogger(__name__)


class GeologicalSetup(BaseModel):
    """Output of the geological setup stage"""
    layers: List[GeologicalLayer] = Field(default_factory=list)
    rock_type: str
    surface_level: float
    max_depth: float
    avg_rock_hardness: float


class NoisePattern(BaseModel):
    """Summary of one pre-computed noise pattern"""
    name: str
    resolution: float
    samples: int
    min_value: float
    max_value: float
    mean_value: float
    quality: float


class CaveState:
    """
    Mutable container passed through the generation stages.

    Each stage writes to its own fields, so downstream stages read a
    statically known shape. The seeded random stream is owned here and must
    be consumed in stage order.
    """

    def __init__(
        self,
        params: CaveGenerationParams,
        region: Region,
        settings: Optional[Settings] = None,
    ):
        self.params = params
        self.region = region
        self.settings = settings or get_settings()

        self.noise = NoiseEngine(
            params.seed,
            CacheConfig(
                enabled=self.settings.noise_cache_enabled,
                max_size=self.settings.noise_cache_max_size,
                cleanup_threshold=self.settings.noise_cache_cleanup_threshold,
            ),
        )
        self.rng = seeded_rng(params.seed)

        # Stage outputs
        self.geology: Optional[GeologicalSetup] = None
        self.noise_patterns: Dict[str, NoisePattern] = {}
        self.points: List[CavePoint] = []
        self.point_index: Optional[PointIndex] = None
        self.formations: List[Formation] = []
        self.structural_analysis: Optional[StructuralAnalysis] = None
        self.networks: List[CaveNetwork] = []
        self.network_analysis: Optional[NetworkAnalysis] = None
        self.flow_analysis: Optional[FlowAnalysis] = None
        self.heightmap: Optional[np.ndarray] = None
        self.entrances: List[SurfaceEntrance] = []
        self.entrance_quality: float = 0.0
        self.features: List[CaveFeature] = []
        self.quality_metrics: Optional[QualityMetrics] = None
        self.stage_data: Dict[str, Dict[str, Any]] = {}

        self.warnings: List[str] = []

        # Budget / progress bookkeeping
        self.current_stage: Optional[str] = None
        self.timed_out: bool = False
        self._stage_started: float = time.perf_counter()
        self._reporter: Optional[Callable[[float, str], None]] = None

    def begin_stage(self, name: str, reporter: Optional[Callable[[float, str], None]] = None) -> None:
        self.current_stage = name
        self.timed_out = False
        self._stage_started = time.perf_counter()
        self._reporter = reporter

    def stage_elapsed(self) -> float:
        return time.perf_counter() - self._stage_started

    def budget_exhausted(self) -> bool:
        """True once the current stage has used up its time budget."""
        budget = self.settings.stage_time_budget_s
        if budget is not None and self.stage_elapsed() > budget:
            self.timed_out = True
        return self.timed_out

    def checkpoint(self, fraction: float, detail: str = "") -> None:
        """Report progress within the current stage (0-1)."""
        if self._reporter is not None:
            self._reporter(min(1.0, max(0.0, fraction)), detail)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def set_points(self, points: List[CavePoint]) -> None:
        self.points = points
        self.point_index = PointIndex(points)

    @property
    def all_nodes(self):
        return [node for network in self.networks for node in network.nodes]
