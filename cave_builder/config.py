"""
Cave Builder - Configuration and Constants
Contains the generation parameter models, presets and global constants
for procedural cave generation.
"""

import copy
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np
from pydantic import BaseModel, Field, model_validator

# =============================================================================
# DENSITY / CLASSIFICATION THRESHOLDS
# =============================================================================

FORMATION_DENSITY = 0.3          # Minimum density for a formation seed / open passage
AIR_DENSITY = 0.5                # Above this a point is open air
LOOSE_ROCK_DENSITY = 0.1         # Above this a point is loose rock
SOLID_ROCK_DENSITY = 0.1         # Below this a point counts as solid ceiling

FORMATION_NEIGHBORHOOD = 15.0    # Radius used to gather formation members
MIN_FORMATION_POINTS = 5
FORMATION_LINK_MARGIN = 10.0     # Extra distance allowed between formation edges

NETWORK_LINK_DISTANCE = 50.0     # Maximum node distance considered for a connection
PATH_SAMPLE_SPACING = 2.0
INTERPOLATION_RADIUS = 5.0
PATH_VIABILITY_RATIO = 0.7

SURFACE_DEPTH = -20.0            # Nodes above this are near the surface
WATER_SOURCE_ELEVATION = -50.0   # Flow sources must lie above this

# =============================================================================
# GENERATION STAGES
# =============================================================================

GENERATION_STAGES = [
    "initialization",
    "geological_setup",
    "noise_generation",
    "cave_point_generation",
    "formation_analysis",
    "structural_validation",
    "network_building",
    "flow_analysis",
    "surface_integration",
    "feature_generation",
    "quality_optimization",
    "final_validation",
]

STAGE_WEIGHTS = {
    "initialization": 0.05,
    "geological_setup": 0.05,
    "noise_generation": 0.15,
    "cave_point_generation": 0.25,
    "formation_analysis": 0.15,
    "structural_validation": 0.10,
    "network_building": 0.10,
    "flow_analysis": 0.05,
    "surface_integration": 0.05,
    "feature_generation": 0.05,
    "quality_optimization": 0.03,
    "final_validation": 0.02,
}

# =============================================================================
# ENUMERATIONS
# =============================================================================

class FormationType(str, Enum):
    """Classified cave formation shapes"""
    CHAMBER = "chamber"
    TUNNEL = "tunnel"
    VERTICAL_SHAFT = "vertical_shaft"
    SQUEEZE_PASSAGE = "squeeze_passage"
    SUB_CHAMBER = "sub_chamber"
    COLLAPSE_CHAMBER = "collapse_chamber"


class Material(str, Enum):
    """Material occupying a sampled point"""
    AIR = "air"
    LOOSE_ROCK = "loose_rock"
    SOLID_ROCK = "solid_rock"


class NodeType(str, Enum):
    """Role of a node within a cave network"""
    CHAMBER = "chamber"
    ENTRANCE = "entrance"
    JUNCTION = "junction"
    DEADEND = "deadend"


class ConnectionType(str, Enum):
    """Passage kinds between two nodes"""
    TUNNEL = "tunnel"
    SHAFT = "shaft"
    SQUEEZE = "squeeze"
    BRIDGE = "bridge"


class RockType(str, Enum):
    """Bedrock compositions"""
    LIMESTONE = "limestone"
    SANDSTONE = "sandstone"
    GRANITE = "granite"
    MARBLE = "marble"
    SHALE = "shale"
    WEATHERED_SURFACE = "weathered_surface"


class ErosionType(str, Enum):
    """Dominant erosion process"""
    NONE = "none"
    WATER = "water"
    CHEMICAL = "chemical"
    MECHANICAL = "mechanical"


class FeatureType(str, Enum):
    """Decorative features placed inside formations"""
    STALACTITE = "stalactite"
    STALAGMITE = "stalagmite"
    FLOWSTONE = "flowstone"
    UNDERGROUND_STREAM = "underground_stream"
    MINERAL_DEPOSIT = "mineral_deposit"


# Bedrock physical properties (hardness, solubility, porosity all 0-1)
ROCK_PROPERTIES = {
    RockType.LIMESTONE: {"hardness": 0.3, "solubility": 0.8, "porosity": 0.4},
    RockType.SANDSTONE: {"hardness": 0.5, "solubility": 0.2, "porosity": 0.6},
    RockType.GRANITE: {"hardness": 0.9, "solubility": 0.1, "porosity": 0.1},
    RockType.MARBLE: {"hardness": 0.4, "solubility": 0.7, "porosity": 0.2},
    RockType.SHALE: {"hardness": 0.2, "solubility": 0.4, "porosity": 0.8},
}

# =============================================================================
# GENERATION PARAMETERS
# =============================================================================

class StructureSettings(BaseModel):
    """Shape and layout of chambers and passages"""
    main_chamber_frequency: float = Field(0.15, ge=0.0, le=1.0)
    main_chamber_min_size: float = Field(8.0, ge=1.0, le=100.0)
    main_chamber_max_size: float = Field(25.0, ge=5.0, le=200.0)
    main_chamber_height: float = Field(1.2, ge=0.5, le=5.0, description="Height multiplier")

    passage_width: float = Field(3.0, ge=0.5, le=20.0)
    passage_width_variation: float = Field(0.4, ge=0.0, le=1.0)
    passage_curvature: float = Field(0.3, ge=0.0, le=1.0)
    passage_smoothing: float = Field(0.7, ge=0.0, le=1.0)

    branching_probability: float = Field(0.25, ge=0.0, le=1.0)
    branching_angle: float = Field(45.0, ge=0.0, le=90.0)
    max_branch_depth: int = Field(4, ge=1, le=10)
    dead_end_probability: float = Field(0.3, ge=0.0, le=1.0)

    sub_chamber_frequency: float = Field(0.1, ge=0.0, le=1.0)
    sub_chamber_size: float = Field(4.0, ge=1.0, le=50.0)
    hidden_room_probability: float = Field(0.05, ge=0.0, le=1.0)

    vertical_shaft_frequency: float = Field(0.08, ge=0.0, le=1.0)
    shaft_min_height: float = Field(10.0, ge=2.0, le=100.0)
    shaft_max_height: float = Field(30.0, ge=5.0, le=200.0)
    chimney_probability: float = Field(0.2, ge=0.0, le=1.0)

    squeeze_passage_frequency: float = Field(0.12, ge=0.0, le=1.0)
    squeeze_width: float = Field(1.5, ge=0.5, le=5.0)
    squeeze_length: float = Field(8.0, ge=2.0, le=50.0)

    slope_tunnel_frequency: float = Field(0.2, ge=0.0, le=1.0)
    max_slope: float = Field(30.0, ge=0.0, le=60.0, description="Degrees")
    ledge_frequency: float = Field(0.15, ge=0.0, le=1.0)
    natural_ramp_probability: float = Field(0.25, ge=0.0, le=1.0)


class GeologySettings(BaseModel):
    """Rock properties, erosion and speleothem growth"""
    rock_hardness: float = Field(0.6, ge=0.0, le=1.0)
    stratification: float = Field(0.7, ge=0.0, le=1.0)
    fault_lines: float = Field(0.3, ge=0.0, le=1.0)
    joint_sets: float = Field(0.5, ge=0.0, le=1.0)

    water_erosion_strength: float = Field(0.8, ge=0.0, le=1.0)
    chemical_erosion: float = Field(0.6, ge=0.0, le=1.0)
    mechanical_erosion: float = Field(0.4, ge=0.0, le=1.0)
    erosion_timescale: float = Field(0.7, ge=0.0, le=1.0)

    collapse_simulation: bool = True
    support_structures: bool = True
    ceiling_stability: float = Field(0.7, ge=0.0, le=1.0)

    stalactite_frequency: float = Field(0.3, ge=0.0, le=1.0)
    stalagmite_frequency: float = Field(0.25, ge=0.0, le=1.0)
    flowstone_formation: float = Field(0.2, ge=0.0, le=1.0)
    crystallization: float = Field(0.1, ge=0.0, le=1.0)


class SurfaceSettings(BaseModel):
    """How the cave system meets the surface"""
    entrance_frequency: float = Field(0.02, ge=0.0, le=1.0)
    entrance_size: float = Field(0.5, ge=0.1, le=2.0)
    entrance_blending: float = Field(0.8, ge=0.0, le=1.0)
    natural_entrance_only: bool = True
    surface_influence: float = Field(0.6, ge=0.0, le=1.0)
    drainage_patterns: bool = True
    topographic_control: float = Field(0.7, ge=0.0, le=1.0)
    vegetation_hiding: bool = True
    weathering_effects: bool = True
    seasonal_changes: float = Field(0.1, ge=0.0, le=1.0)


class QualitySettings(BaseModel):
    """Sampling density, smoothing and validation toggles"""
    sampling_resolution: float = Field(2.0, ge=0.1, le=10.0, description="Units between samples")
    noise_octaves: int = Field(8, ge=1, le=20)
    smoothing_passes: int = Field(3, ge=0, le=10)
    detail_level: float = Field(0.8, ge=0.0, le=1.0)

    geological_accuracy: float = Field(0.9, ge=0.0, le=1.0)
    physical_constraints: bool = True
    connectivity_validation: bool = True
    structural_validation: bool = True

    wall_smoothness: float = Field(0.6, ge=0.0, le=1.0)
    ceiling_variation: float = Field(0.7, ge=0.0, le=1.0)
    floor_roughness: float = Field(0.4, ge=0.0, le=1.0)
    ambient_occlusion: bool = True

    quality_over_performance: bool = True
    progressive_detail: bool = False
    adaptive_resolution: bool = True


class DebugSettings(BaseModel):
    """Diagnostic toggles consumed by external tooling"""
    visualize_noise: bool = False
    show_cave_points: bool = False
    show_formations: bool = False
    show_connections: bool = False
    show_flow_paths: bool = False
    show_structural: bool = False
    show_entrances: bool = False
    color_by_density: bool = False
    color_by_type: bool = False
    show_stats: bool = False
    log_generation: bool = False
    log_performance: bool = False
    export_meshes: bool = False
    quality_metrics: bool = True
    profile_stages: bool = False


def _random_seed() -> int:
    return int(np.random.default_rng().integers(1, 1_000_001))


class CaveGenerationParams(BaseModel):
    """
    User-configurable cave generation parameters.
    All generation is deterministic given the same seed.
    """
    seed: int = Field(default_factory=_random_seed, description="Random seed for deterministic generation")

    max_depth: float = Field(200.0, ge=10.0, le=1000.0)
    min_depth: float = Field(10.0, ge=1.0, le=500.0)
    water_level: float = Field(-50.0, ge=-1000.0, le=0.0)
    temperature_gradient: float = Field(25.0, ge=0.0, le=100.0)

    density_threshold: float = Field(0.0, ge=-1.0, le=1.0, description="Raw field value below which space is solid")
    optimal_depth: float = Field(-50.0, ge=-1000.0, le=0.0, description="Elevation where caves are most likely")
    depth_spread: float = Field(40.0, gt=0.0, le=1000.0, description="Width of the depth probability bell")

    structure: StructureSettings = Field(default_factory=StructureSettings)
    geology: GeologySettings = Field(default_factory=GeologySettings)
    surface: SurfaceSettings = Field(default_factory=SurfaceSettings)
    quality: QualitySettings = Field(default_factory=QualitySettings)
    debug: DebugSettings = Field(default_factory=DebugSettings)

    @model_validator(mode="after")
    def check_ranges(self) -> "CaveGenerationParams":
        if self.max_depth <= self.min_depth:
            raise ValueError("max_depth must be greater than min_depth")
        if self.structure.main_chamber_max_size <= self.structure.main_chamber_min_size:
            raise ValueError("main_chamber_max_size must be greater than main_chamber_min_size")
        if self.structure.shaft_max_height <= self.structure.shaft_min_height:
            raise ValueError("shaft_max_height must be greater than shaft_min_height")
        return self


# =============================================================================
# PRESETS
# =============================================================================

# REALISTIC uses the model defaults
REALISTIC: Dict[str, Any] = {}

CINEMATIC: Dict[str, Any] = {
    "structure": {
        "main_chamber_frequency": 0.25,
        "main_chamber_min_size": 15.0,
        "main_chamber_max_size": 50.0,
        "main_chamber_height": 1.8,
        "passage_width": 5.0,
        "passage_width_variation": 0.6,
        "passage_curvature": 0.5,
        "passage_smoothing": 0.9,
        "branching_probability": 0.35,
        "branching_angle": 60.0,
        "max_branch_depth": 6,
        "dead_end_probability": 0.2,
        "sub_chamber_frequency": 0.15,
        "sub_chamber_size": 8.0,
        "hidden_room_probability": 0.15,
        "vertical_shaft_frequency": 0.15,
        "shaft_min_height": 15.0,
        "shaft_max_height": 60.0,
        "chimney_probability": 0.3,
        "squeeze_passage_frequency": 0.08,
        "squeeze_width": 2.0,
        "squeeze_length": 5.0,
        "slope_tunnel_frequency": 0.3,
        "max_slope": 25.0,
        "ledge_frequency": 0.25,
        "natural_ramp_probability": 0.4,
    },
    "geology": {
        "rock_hardness": 0.4,
        "stratification": 0.5,
        "fault_lines": 0.4,
        "joint_sets": 0.6,
        "water_erosion_strength": 0.9,
        "chemical_erosion": 0.7,
        "mechanical_erosion": 0.3,
        "erosion_timescale": 0.9,
        "collapse_simulation": False,
        "support_structures": True,
        "ceiling_stability": 0.9,
        "stalactite_frequency": 0.5,
        "stalagmite_frequency": 0.4,
        "flowstone_formation": 0.4,
        "crystallization": 0.3,
    },
    "surface": {
        "entrance_frequency": 0.04,
        "entrance_size": 0.8,
        "entrance_blending": 0.9,
        "natural_entrance_only": False,
        "surface_influence": 0.4,
        "drainage_patterns": False,
        "topographic_control": 0.5,
        "vegetation_hiding": False,
        "weathering_effects": False,
        "seasonal_changes": 0.0,
    },
    "quality": {
        "sampling_resolution": 1.5,
        "noise_octaves": 10,
        "smoothing_passes": 5,
        "detail_level": 1.0,
        "geological_accuracy": 0.6,
        "physical_constraints": False,
        "connectivity_validation": True,
        "structural_validation": False,
        "wall_smoothness": 0.9,
        "ceiling_variation": 0.8,
        "floor_roughness": 0.2,
        "ambient_occlusion": True,
        "quality_over_performance": True,
        "progressive_detail": True,
        "adaptive_resolution": True,
    },
    "debug": {"export_meshes": True},
}

GEOLOGICAL_SURVEY: Dict[str, Any] = {
    "structure": {
        "main_chamber_frequency": 0.12,
        "main_chamber_min_size": 5.0,
        "main_chamber_max_size": 30.0,
        "main_chamber_height": 1.1,
        "passage_width": 2.5,
        "passage_width_variation": 0.3,
        "passage_curvature": 0.2,
        "passage_smoothing": 0.5,
        "branching_probability": 0.2,
        "branching_angle": 30.0,
        "max_branch_depth": 3,
        "dead_end_probability": 0.4,
        "sub_chamber_frequency": 0.08,
        "sub_chamber_size": 3.0,
        "hidden_room_probability": 0.03,
        "vertical_shaft_frequency": 0.05,
        "shaft_min_height": 8.0,
        "shaft_max_height": 25.0,
        "chimney_probability": 0.15,
        "squeeze_passage_frequency": 0.15,
        "squeeze_width": 1.2,
        "squeeze_length": 12.0,
        "slope_tunnel_frequency": 0.15,
        "max_slope": 20.0,
        "ledge_frequency": 0.1,
        "natural_ramp_probability": 0.15,
    },
    "geology": {
        "rock_hardness": 0.8,
        "stratification": 0.9,
        "fault_lines": 0.4,
        "joint_sets": 0.7,
        "water_erosion_strength": 0.7,
        "chemical_erosion": 0.8,
        "mechanical_erosion": 0.5,
        "erosion_timescale": 0.5,
        "collapse_simulation": True,
        "support_structures": True,
        "ceiling_stability": 0.6,
        "stalactite_frequency": 0.2,
        "stalagmite_frequency": 0.18,
        "flowstone_formation": 0.15,
        "crystallization": 0.05,
    },
    "surface": {
        "entrance_frequency": 0.015,
        "entrance_size": 0.3,
        "entrance_blending": 0.7,
        "natural_entrance_only": True,
        "surface_influence": 0.8,
        "drainage_patterns": True,
        "topographic_control": 0.9,
        "vegetation_hiding": True,
        "weathering_effects": True,
        "seasonal_changes": 0.2,
    },
    "quality": {
        "sampling_resolution": 1.0,
        "noise_octaves": 12,
        "smoothing_passes": 2,
        "detail_level": 1.0,
        "geological_accuracy": 1.0,
        "physical_constraints": True,
        "connectivity_validation": True,
        "structural_validation": True,
        "wall_smoothness": 0.4,
        "ceiling_variation": 0.6,
        "floor_roughness": 0.6,
        "ambient_occlusion": True,
        "quality_over_performance": True,
        "progressive_detail": False,
        "adaptive_resolution": True,
    },
    "debug": {name: True for name in DebugSettings.model_fields},
}

PRESETS: Dict[str, Dict[str, Any]] = {
    "REALISTIC": REALISTIC,
    "CINEMATIC": CINEMATIC,
    "GEOLOGICAL_SURVEY": GEOLOGICAL_SURVEY,
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge overrides into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def get_preset(name: str, seed: Optional[int] = None) -> CaveGenerationParams:
    """
    Build parameters from a named preset.

    Args:
        name: Preset name (case insensitive): realistic, cinematic, geological_survey
        seed: Optional seed; a random one is drawn when omitted

    Returns:
        Validated CaveGenerationParams

    Raises:
        ValueError: If the preset does not exist
    """
    key = name.upper()
    if key not in PRESETS:
        raise ValueError(f"Unknown preset '{name}'. Available: {', '.join(PRESETS)}")

    data = copy.deepcopy(PRESETS[key])
    if seed is not None:
        data["seed"] = seed
    return CaveGenerationParams(**data)


def create_custom_config(
    base: Optional[CaveGenerationParams] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> CaveGenerationParams:
    """
    Deep-merge overrides onto a base configuration and re-validate.

    Raises:
        pydantic.ValidationError: If the merged values are out of range
    """
    base = base or CaveGenerationParams()
    merged = _deep_merge(base.model_dump(), overrides or {})
    return CaveGenerationParams(**merged)


def get_quality_score(params: CaveGenerationParams) -> float:
    """
    Rate how quality-oriented a configuration is.

    Returns:
        Score in the 0-100 range
    """
    quality = params.quality
    factors = [
        (quality.geological_accuracy, 0.25),
        (quality.detail_level, 0.20),
        (1.0 if quality.sampling_resolution >= 2.0 else quality.sampling_resolution / 2.0, 0.15),
        (1.0 if quality.noise_octaves >= 8 else quality.noise_octaves / 8.0, 0.10),
        (quality.wall_smoothness, 0.10),
        (params.geology.erosion_timescale, 0.10),
        (params.structure.passage_smoothing, 0.05),
        (params.surface.entrance_blending, 0.05),
    ]

    score = sum(value * weight for value, weight in factors)
    total_weight = sum(weight for _, weight in factors)
    return (score / total_weight) * 100.0


def describe_config(params: CaveGenerationParams) -> str:
    """Human readable summary of the main parameters."""
    lines = [
        f"Seed: {params.seed}",
        f"Quality Score: {get_quality_score(params):.1f}/100",
        f"Chamber Frequency: {params.structure.main_chamber_frequency * 100:.0f}%",
        f"Passage Width: {params.structure.passage_width:.1f} units",
        f"Rock Hardness: {params.geology.rock_hardness * 100:.0f}%",
        f"Sampling Resolution: {params.quality.sampling_resolution:.1f} units",
        f"Geological Accuracy: {params.quality.geological_accuracy * 100:.0f}%",
        f"Structural Validation: {'Enabled' if params.quality.structural_validation else 'Disabled'}",
    ]
    return "\n".join(lines)
