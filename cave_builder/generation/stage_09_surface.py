"""
Cave Builder - Stage 9: Surface Integration
Generates a surface heightmap over the region and opens entrances where
shallow nodes come close to it.
"""

import logging
import math
from typing import List, Sequence

import numpy as np

from cave_builder.config import CaveGenerationParams
from cave_builder.models.cave import CaveNetwork, Region, SurfaceEntrance
from cave_builder.models.state import CaveState
from cave_builder.utils.noise import MAX_HEIGHTMAP_SIZE, NoiseEngine, NoiseSettings

logger = logging.getLogger(__name__)

HEIGHTMAP_CELL = 4.0
HEIGHTMAP_SCALE = 0.01
SURFACE_AMPLITUDE = 30.0

ENTRANCE_MAX_DEPTH = -30.0
ENTRANCE_MIN_RADIUS = 2.0
ENTRANCE_MAX_GAP = 15.0
ENTRANCE_MAX_SIZE = 8.0
LARGE_ENTRANCE_RADIUS = 6.0


def build_heightmap(noise: NoiseEngine, region: Region) -> np.ndarray:
    """Six-octave fBm heightmap with one cell per 4 units of x and z."""
    width = min(MAX_HEIGHTMAP_SIZE, max(1, math.ceil(region.size[0] / HEIGHTMAP_CELL)))
    height = min(MAX_HEIGHTMAP_SIZE, max(1, math.ceil(region.size[2] / HEIGHTMAP_CELL)))
    settings = NoiseSettings(octaves=6, lacunarity=2.0, persistence=0.5, scale=HEIGHTMAP_SCALE)
    return noise.generate_heightmap(width, height, settings)


def surface_height(heightmap: np.ndarray, region: Region, x: float, z: float) -> float:
    """Surface elevation above a horizontal position, in world units."""
    rows, cols = heightmap.shape
    span_x = region.size[0] or 1.0
    span_z = region.size[2] or 1.0

    col = int(math.floor((x - region.min_corner[0]) / span_x * cols))
    row = int(math.floor((z - region.min_corner[2]) / span_z * rows))
    col = max(0, min(cols - 1, col))
    row = max(0, min(rows - 1, row))
    return float(heightmap[row, col]) * SURFACE_AMPLITUDE


def find_entrances(network: CaveNetwork, heightmap: np.ndarray, region: Region) -> List[SurfaceEntrance]:
    """Entrances for shallow, wide enough nodes within 15 units of the surface."""
    entrances = []
    for node in network.nodes:
        if node.formation is None:
            continue
        x, y, z = node.position
        if y <= ENTRANCE_MAX_DEPTH or node.formation.radius <= ENTRANCE_MIN_RADIUS:
            continue

        surface = surface_height(heightmap, region, x, z)
        if abs(y - surface) >= ENTRANCE_MAX_GAP:
            continue

        radius = node.formation.radius
        entrances.append(SurfaceEntrance(
            position=(x, surface, z),
            size=min(radius, ENTRANCE_MAX_SIZE),
            entrance_type="large" if radius > LARGE_ENTRANCE_RADIUS else "tunnel",
            node_id=node.id,
            network_id=network.id,
            surface_height=surface,
        ))
    return entrances


def entrance_quality(entrances: Sequence[SurfaceEntrance]) -> float:
    """Blend of entrance count and size diversity (0-1)."""
    if not entrances:
        return 0.0

    sizes = np.array([e.size for e in entrances])
    diversity = min(1.0, float(sizes.var()) / 10.0)
    return min(1.0, len(entrances) / 5.0) * 0.7 + diversity * 0.3


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Build the surface heightmap and place entrances.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    state.heightmap = build_heightmap(state.noise, state.region)
    state.checkpoint(0.5, "heightmap")

    entrances: List[SurfaceEntrance] = []
    for network in state.networks:
        entrances.extend(find_entrances(network, state.heightmap, state.region))

    state.entrances = entrances
    state.entrance_quality = entrance_quality(entrances)
    state.stage_data["surface_integration"] = {
        "entrances": len(entrances),
        "heightmap_shape": list(state.heightmap.shape),
        "integration_quality": state.entrance_quality,
    }
    logger.info(f"Placed {len(entrances)} surface entrances")
