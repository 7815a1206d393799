"""
Cave Builder - Cave Data Models
Data structures for sampled points, formations, networks and results.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

from cave_builder.config import (
    ConnectionType,
    ErosionType,
    FeatureType,
    FormationType,
    Material,
    NodeType,
)

Vector3 = Tuple[float, float, float]


# =============================================================================
# REGION
# =============================================================================

class Region(BaseModel):
    """Axis-aligned sampling box."""
    min_corner: Vector3
    max_corner: Vector3

    @model_validator(mode="after")
    def check_corners(self) -> "Region":
        for low, high in zip(self.min_corner, self.max_corner):
            if high < low:
                raise ValueError("max_corner must not be below min_corner on any axis")
        return self

    @classmethod
    def from_center(cls, center: Vector3, size: Vector3) -> "Region":
        half = [s / 2.0 for s in size]
        return cls(
            min_corner=(center[0] - half[0], center[1] - half[1], center[2] - half[2]),
            max_corner=(center[0] + half[0], center[1] + half[1], center[2] + half[2]),
        )

    @property
    def size(self) -> Vector3:
        return (
            self.max_corner[0] - self.min_corner[0],
            self.max_corner[1] - self.min_corner[1],
            self.max_corner[2] - self.min_corner[2],
        )

    @property
    def center(self) -> Vector3:
        return (
            (self.min_corner[0] + self.max_corner[0]) / 2.0,
            (self.min_corner[1] + self.max_corner[1]) / 2.0,
            (self.min_corner[2] + self.max_corner[2]) / 2.0,
        )

    @property
    def volume(self) -> float:
        sx, sy, sz = self.size
        return sx * sy * sz


# =============================================================================
# GEOLOGY
# =============================================================================

class GeologicalLayer(BaseModel):
    """Rock properties of one depth band"""
    depth: float
    hardness: float = Field(ge=0.0, le=1.0)
    porosity: float = Field(ge=0.0, le=1.0)
    solubility: float = Field(ge=0.0, le=1.0)
    joint_density: float = Field(ge=0.0)
    composition: str


class ErosionResult(BaseModel):
    """Outcome of eroding a single point"""
    original_density: float
    eroded_density: float
    erosion_amount: float
    erosion_type: ErosionType
    flow_direction: Vector3
    sediment_load: float

    class Config:
        use_enum_values = True


# =============================================================================
# SAMPLED POINTS
# =============================================================================

@dataclass(frozen=True)
class CavePoint:
    """
    A single sample of the density field.

    Points are immutable; smoothing produces new instances.
    """
    position: Vector3
    density: float
    material: str
    stability: float
    erosion_level: float
    water_flow: float
    age: float
    temperature: float
    humidity: float
    gas_content: float

    @property
    def is_air(self) -> bool:
        return self.material == Material.AIR.value


# =============================================================================
# FORMATIONS
# =============================================================================

class Formation(BaseModel):
    """
    A classified cave feature extracted from a cluster of points.
    Connections hold the ids of linked formations.
    """
    formation_id: int
    type: FormationType
    center: Vector3
    radius: float = Field(gt=0.0)
    height: float
    width: float = 0.0
    depth: float = 0.0
    length: float = 0.0
    orientation: Vector3 = (1.0, 0.0, 0.0)
    stability: float = 1.0
    avg_density: float = 0.0
    connections: List[int] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    point_indices: List[int] = Field(default_factory=list)

    class Config:
        use_enum_values = True


class FormationStructure(BaseModel):
    """Structural findings for a single formation"""
    formation_id: int
    safety_factor: float
    span_safety: float
    thickness_safety: float
    ceiling_thickness: float
    critical_points: List[Vector3] = Field(default_factory=list)
    support_points: List[Vector3] = Field(default_factory=list)
    stress_points: List[Vector3] = Field(default_factory=list)


class StructuralAnalysis(BaseModel):
    """Aggregated structural safety across all formations"""
    safety_factor: float = 1.0
    ceiling_thickness: float = 5.0
    critical_points: List[Vector3] = Field(default_factory=list)
    support_points: List[Vector3] = Field(default_factory=list)
    stress_points: List[Vector3] = Field(default_factory=list)
    formation_results: List[FormationStructure] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# =============================================================================
# NETWORKS
# =============================================================================

class CaveConnection(BaseModel):
    """Directed passage between two nodes"""
    source_node_id: str
    target_node_id: str
    connection_type: ConnectionType
    distance: float
    difficulty: float
    width: float
    height: float
    water_flow: float = 0.0
    air_flow: float = 0.0
    obstructions: List[str] = Field(default_factory=list)
    stability: float = 1.0

    class Config:
        use_enum_values = True


class CaveNode(BaseModel):
    """Graph node wrapping a formation"""
    id: str
    position: Vector3
    formation: Optional[Formation] = None
    node_type: NodeType
    connections: List[CaveConnection] = Field(default_factory=list)
    depth: float
    accessibility: float = 0.0
    water_access: bool = False
    air_quality: float = 0.0
    structural_stability: float = 1.0
    features: List[str] = Field(default_factory=list)

    class Config:
        use_enum_values = True

    @property
    def radius(self) -> float:
        return self.formation.radius if self.formation is not None else 0.0


class CaveNetwork(BaseModel):
    """One connected component of the cave graph"""
    id: str
    nodes: List[CaveNode] = Field(default_factory=list)
    connections: List[CaveConnection] = Field(default_factory=list)
    entrances: List[str] = Field(default_factory=list)
    exits: List[str] = Field(default_factory=list)
    main_chambers: List[str] = Field(default_factory=list)
    water_sources: List[str] = Field(default_factory=list)
    deepest_point: Optional[str] = None
    total_volume: float = 0.0

    accessibility_score: float = 0.0
    connectivity_score: float = 0.0
    exploration_score: float = 0.0
    safety_score: float = 0.0

    def get_node(self, node_id: str) -> Optional[CaveNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]


class NetworkAnalysis(BaseModel):
    """Summary statistics over all networks"""
    total_networks: int = 0
    largest_network: int = 0
    average_network_size: float = 0.0
    connectivity_index: float = 0.0
    accessibility_index: float = 0.0
    redundancy_index: float = 0.0
    quality_metrics: Dict[str, float] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)


# =============================================================================
# WATER FLOW
# =============================================================================

class FlowPath(BaseModel):
    """Steepest-descent route from a water source to a low point"""
    id: str
    source_node: str
    sink_node: str
    nodes: List[str]
    flow_rate: float
    total_drop: float
    average_gradient: float
    erosion_hotspots: List[Vector3] = Field(default_factory=list)
    sediment_pools: List[Vector3] = Field(default_factory=list)


class FlowAnalysis(BaseModel):
    """All flow paths of a run plus totals"""
    flow_paths: List[FlowPath] = Field(default_factory=list)
    erosion_hotspots: List[Vector3] = Field(default_factory=list)
    sediment_pools: List[Vector3] = Field(default_factory=list)
    erosion: List[ErosionResult] = Field(default_factory=list)
    total_flow_rate: float = 0.0
    sediment_transport: float = 0.0


# =============================================================================
# SURFACE AND FEATURES
# =============================================================================

class SurfaceEntrance(BaseModel):
    """Point where a network opens to the surface"""
    position: Vector3
    size: float
    entrance_type: str
    node_id: str
    network_id: str
    surface_height: float


class CaveFeature(BaseModel):
    """Decoration placed in a formation"""
    feature_type: FeatureType
    position: Vector3
    formation_id: int
    length: float = 0.0
    thickness: float = 0.0
    extent: float = 0.0
    age: float = 0.0
    material: str = "calcite"

    class Config:
        use_enum_values = True


# =============================================================================
# RESULTS
# =============================================================================

class QualityMetrics(BaseModel):
    """Normalized quality scores of a generated cave system (all 0-1)"""
    geological: float = 0.0
    connectivity: float = 0.0
    accessibility: float = 0.0
    exploration: float = 0.0
    structural: float = 0.0
    visual: float = 0.0
    overall: float = 0.0
    recommendations: List[str] = Field(default_factory=list)
    details: Dict[str, int] = Field(default_factory=dict)


class PerformanceStats(BaseModel):
    """Timing and size counters of one run"""
    stage_timings: Dict[str, float] = Field(default_factory=dict)
    total_time: float = 0.0
    cache_hit_rate: float = 0.0
    points_generated: int = 0
    formations_found: int = 0
    networks_built: int = 0


class GenerationResult(BaseModel):
    """
    Everything a caller receives from one pipeline run.
    Partial artifacts are kept when generation fails.
    """
    success: bool
    seed: int
    points: List[CavePoint] = Field(default_factory=list)
    formations: List[Formation] = Field(default_factory=list)
    structural_analysis: Optional[StructuralAnalysis] = None
    networks: List[CaveNetwork] = Field(default_factory=list)
    network_analysis: Optional[NetworkAnalysis] = None
    flow_analysis: Optional[FlowAnalysis] = None
    entrances: List[SurfaceEntrance] = Field(default_factory=list)
    features: List[CaveFeature] = Field(default_factory=list)
    quality_metrics: Optional[QualityMetrics] = None
    performance: PerformanceStats = Field(default_factory=PerformanceStats)
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    skipped_stages: List[str] = Field(default_factory=list)
    stage_data: Dict[str, Any] = Field(default_factory=dict)


def distance(a: Vector3, b: Vector3) -> float:
    """Euclidean distance between two positions."""
    return math.sqrt((a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2)
