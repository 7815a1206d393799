"""
Cave Builder - Stage 2: Geological Setup
Builds the stack of rock layers that shape the density field, and models
how flowing water erodes them.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from cave_builder.config import (
    ROCK_PROPERTIES,
    CaveGenerationParams,
    ErosionType,
    GeologySettings,
    RockType,
)
from cave_builder.models.cave import ErosionResult, GeologicalLayer, Vector3
from cave_builder.models.state import CaveState, GeologicalSetup
from cave_builder.utils.spatial import length, unit

logger = logging.getLogger(__name__)

WEATHERED_DEPTH = 5.0
LAYER_SPACING = 10.0

# Erosion rates per unit time
WATER_EROSION_RATE = 0.001
CHEMICAL_EROSION_RATE = 0.0005
MECHANICAL_EROSION_RATE = 0.0002
MINIMUM_FLOW_VELOCITY = 0.1
SEDIMENT_CAPACITY_FACTOR = 0.1

FALLBACK_LAYER = GeologicalLayer(
    depth=0.0, hardness=0.5, porosity=0.3, solubility=0.2, joint_density=0.4, composition="unknown"
)


def select_rock_type(geology: GeologySettings) -> RockType:
    """Dominant bedrock for a geology configuration."""
    if geology.rock_hardness > 0.7:
        return RockType.GRANITE
    if geology.rock_hardness > 0.5:
        return RockType.SANDSTONE
    if geology.stratification > 0.7:
        return RockType.SHALE
    return RockType.LIMESTONE


def create_layer(depth: float, geology: GeologySettings) -> GeologicalLayer:
    """
    Rock properties at a depth below the surface.

    Deeper rock is harder, less porous and less soluble; the top few units
    are weathered regardless of bedrock.
    """
    if depth <= WEATHERED_DEPTH:
        return GeologicalLayer(
            depth=depth,
            hardness=0.1,
            porosity=0.9,
            solubility=0.3,
            joint_density=0.8,
            composition=RockType.WEATHERED_SURFACE.value,
        )

    rock = select_rock_type(geology)
    props = ROCK_PROPERTIES[rock]
    depth_factor = min(depth / 100.0, 1.0)

    return GeologicalLayer(
        depth=depth,
        hardness=min(1.0, props["hardness"] + depth_factor * 0.2),
        porosity=props["porosity"] * (1 - depth_factor * 0.3),
        solubility=props["solubility"] * (1 - depth_factor * 0.1),
        joint_density=geology.joint_sets * (1 + depth_factor * 0.2),
        composition=rock.value,
    )


def build_layers(min_y: float, geology: GeologySettings) -> List[GeologicalLayer]:
    """One layer every 10 units from the surface down to |min_y|."""
    depths = np.arange(0.0, abs(min_y) + 1e-9, LAYER_SPACING)
    return [create_layer(float(d), geology) for d in depths]


def layer_for_depth(layers: Sequence[GeologicalLayer], depth: float) -> GeologicalLayer:
    """The deepest layer starting at or above the given depth."""
    if not layers:
        return FALLBACK_LAYER

    chosen = layers[0]
    for layer in layers:
        if depth >= layer.depth:
            chosen = layer
    return chosen


def layer_properties(layers: Sequence[GeologicalLayer], depths: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorized layer lookup.

    Returns:
        Tuple of (hardness, porosity) arrays matching depths
    """
    depths = np.asarray(depths, dtype=np.float64)
    if not layers:
        return (np.full(depths.shape, FALLBACK_LAYER.hardness),
                np.full(depths.shape, FALLBACK_LAYER.porosity))

    starts = np.array([layer.depth for layer in layers])
    idx = np.clip(np.searchsorted(starts, depths, side="right") - 1, 0, len(layers) - 1)
    hardness = np.array([layer.hardness for layer in layers])[idx]
    porosity = np.array([layer.porosity for layer in layers])[idx]
    return hardness, porosity


def simulate_erosion(
    density: float,
    velocity: Vector3,
    layer: GeologicalLayer,
    geology: GeologySettings,
    dt: float = 1.0,
) -> ErosionResult:
    """
    Erode one point of the field by flowing water.

    Water abrasion scales with speed and softness, dissolution with
    solubility, and mechanical abrasion only kicks in above 0.5 speed on
    jointed rock.
    """
    speed = length(velocity)
    if speed < MINIMUM_FLOW_VELOCITY:
        return ErosionResult(
            original_density=density,
            eroded_density=density,
            erosion_amount=0.0,
            erosion_type=ErosionType.NONE,
            flow_direction=velocity,
            sediment_load=0.0,
        )

    amount = 0.0
    erosion_type = ErosionType.NONE
    water = chemical = mechanical = 0.0

    if geology.water_erosion_strength > 0:
        water = WATER_EROSION_RATE * speed * geology.water_erosion_strength * (1 - layer.hardness) * dt
        amount += water
        erosion_type = ErosionType.WATER

    if geology.chemical_erosion > 0 and layer.solubility > 0.1:
        chemical = CHEMICAL_EROSION_RATE * layer.solubility * geology.chemical_erosion * min(speed, 1.0) * dt
        amount += chemical
        if amount > water:
            erosion_type = ErosionType.CHEMICAL

    if geology.mechanical_erosion > 0 and speed > 0.5:
        mechanical = MECHANICAL_EROSION_RATE * (speed - 0.5) * geology.mechanical_erosion * layer.joint_density * dt
        amount += mechanical
        if amount > water and mechanical > chemical:
            erosion_type = ErosionType.MECHANICAL

    return ErosionResult(
        original_density=density,
        eroded_density=min(1.0, density + amount),
        erosion_amount=amount,
        erosion_type=erosion_type,
        flow_direction=unit(velocity),
        sediment_load=amount * SEDIMENT_CAPACITY_FACTOR,
    )


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Create the geological layers for the sampling region.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    min_y = state.region.min_corner[1]
    layers = build_layers(min_y, params.geology)

    state.geology = GeologicalSetup(
        layers=layers,
        rock_type=select_rock_type(params.geology).value,
        surface_level=state.region.max_corner[1],
        max_depth=abs(min_y),
        avg_rock_hardness=float(np.mean([layer.hardness for layer in layers])),
    )
    state.stage_data["geological_setup"] = {
        "layers": len(layers),
        "rock_type": state.geology.rock_type,
        "avg_rock_hardness": state.geology.avg_rock_hardness,
    }
    logger.info(f"Created {len(layers)} geological layers ({state.geology.rock_type})")
