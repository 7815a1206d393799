"""
Cave Builder - Stage 4: Cave Point Generation
Synthesizes the density field from layered noise and geology and samples
it over the region.

LAYERS (weights):
- 0.50 primary simplex, vertically compressed to favour horizontal caves
- 0.30 inverted Worley F1 for chamber-like voids
- 0.15 vertical shaft noise
- 0.05 stratification noise
- 0.05 high-frequency detail

The sum is scaled by (1 - hardness) * porosity and by a depth probability
curve, then thresholded into a density in [0, 1].
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from cave_builder.config import (
    AIR_DENSITY,
    FORMATION_DENSITY,
    LOOSE_ROCK_DENSITY,
    CaveGenerationParams,
    Material,
)
from cave_builder.models.cave import CavePoint, GeologicalLayer, Region, Vector3
from cave_builder.models.state import CaveState
from cave_builder.generation.stage_02_geology import layer_properties
from cave_builder.utils.noise import NoiseEngine

logger = logging.getLogger(__name__)

BASE_TEMPERATURE = 15.0
TEMPERATURE_PER_UNIT = 0.02


def depth_probability(y, optimal_depth: float = -50.0, spread: float = 40.0):
    """
    Likelihood of cave formation at an elevation.

    A Gaussian bell around optimal_depth, cut to 10% in the top 10 units and
    fading to zero between 150 and 200 units down.
    """
    y_arr = np.asarray(y, dtype=np.float64)
    probability = np.exp(-((y_arr - optimal_depth) ** 2) / (2 * spread ** 2))
    probability = np.where(y_arr > -10, probability * 0.1, probability)
    probability = np.where(
        y_arr < -150,
        probability * np.maximum(0.0, 0.5 - (-150 - y_arr) / 100.0),
        probability,
    )
    if probability.ndim == 0:
        return float(probability)
    return probability


def threshold_density(raw, threshold: float):
    """Map a raw field value to density: 0 at or below threshold, rising 2x above it."""
    raw_arr = np.asarray(raw, dtype=np.float64)
    density = np.where(raw_arr > threshold, np.minimum(1.0, (raw_arr - threshold) * 2.0), 0.0)
    if density.ndim == 0:
        return float(density)
    return density


def classify_material(density: float) -> str:
    if density > AIR_DENSITY:
        return Material.AIR.value
    if density > LOOSE_ROCK_DENSITY:
        return Material.LOOSE_ROCK.value
    return Material.SOLID_ROCK.value


def combine_layers(primary, worley, stratification, shaft, detail):
    """Weighted sum of the five noise layers."""
    return primary * 0.5 + (1.0 - worley) * 0.3 + shaft * 0.15 + stratification * 0.05 + detail * 0.05


class DensityFieldSynthesizer:
    """
    Maps coordinates and geological layers to CavePoints.

    The scalar path (generate_point) uses the engine's memoized scalar
    noise; sample_region evaluates the same formula on arrays.
    """

    def __init__(self, noise: NoiseEngine, params: CaveGenerationParams):
        self.noise = noise
        self.params = params
        self.main_scale = 1.0 / (params.structure.passage_width * 10.0)
        self.detail_scale = self.main_scale * 5.0
        self.vertical_scale = self.main_scale * 0.3

    # -------------------------------------------------------------------------
    # Scalar path
    # -------------------------------------------------------------------------

    def raw_value(self, x: float, y: float, z: float, hardness: float, porosity: float) -> float:
        m = self.main_scale
        v = self.vertical_scale
        d = self.detail_scale
        stratification = self.params.geology.stratification
        shaft_frequency = self.params.structure.vertical_shaft_frequency

        primary = self.noise.simplex3(x * m, y * v, z * m)
        worley = self.noise.worley3(x * m * 0.5, y * v * 0.5, z * m * 0.5, 0.8, "F1")
        strata = 0.0
        if stratification > 0:
            strata = self.noise.simplex3(x * m * 0.1, y * m * 2.0, z * m * 0.1) * stratification
        shaft = 0.0
        if shaft_frequency > 0:
            shaft = self.noise.simplex3(x * m * 0.3, y * m, z * m * 0.3) * shaft_frequency
        detail = self.noise.simplex3(x * d, y * d, z * d) * 0.1 * self.params.quality.detail_level

        combined = combine_layers(primary, worley, strata, shaft, detail)
        combined *= (1 - hardness) * porosity
        return combined * depth_probability(y, self.params.optimal_depth, self.params.depth_spread)

    def generate_point(self, position: Vector3, layer: GeologicalLayer) -> CavePoint:
        """
        Evaluate the field at one coordinate.

        Args:
            position: Sample coordinate
            layer: Geological layer containing the coordinate

        Returns:
            CavePoint with density and derived properties
        """
        x, y, z = position
        raw = self.raw_value(x, y, z, layer.hardness, layer.porosity)
        density = threshold_density(raw, self.params.density_threshold)

        return CavePoint(
            position=(float(x), float(y), float(z)),
            density=density,
            material=classify_material(density),
            stability=max(0.0, 1 - density * (1 - layer.hardness)),
            erosion_level=0.0,
            water_flow=density * 0.5 if density > FORMATION_DENSITY else 0.0,
            age=1.0,
            temperature=BASE_TEMPERATURE + abs(y) * TEMPERATURE_PER_UNIT,
            humidity=0.8 if density > 0 else 0.1,
            gas_content=density,
        )

    # -------------------------------------------------------------------------
    # Array path
    # -------------------------------------------------------------------------

    def raw_values(self, x: np.ndarray, y: np.ndarray, z: np.ndarray, hardness: np.ndarray, porosity: np.ndarray) -> np.ndarray:
        m = self.main_scale
        v = self.vertical_scale
        d = self.detail_scale
        stratification = self.params.geology.stratification
        shaft_frequency = self.params.structure.vertical_shaft_frequency

        primary = self.noise.simplex3_array(x * m, y * v, z * m)
        worley = self.noise.worley3_array(x * m * 0.5, y * v * 0.5, z * m * 0.5, 0.8, "F1")
        strata = np.zeros_like(primary)
        if stratification > 0:
            strata = self.noise.simplex3_array(x * m * 0.1, y * m * 2.0, z * m * 0.1) * stratification
        shaft = np.zeros_like(primary)
        if shaft_frequency > 0:
            shaft = self.noise.simplex3_array(x * m * 0.3, y * m, z * m * 0.3) * shaft_frequency
        detail = self.noise.simplex3_array(x * d, y * d, z * d) * 0.1 * self.params.quality.detail_level

        combined = combine_layers(primary, worley, strata, shaft, detail)
        combined = combined * ((1 - hardness) * porosity)
        return combined * depth_probability(y, self.params.optimal_depth, self.params.depth_spread)

    def lattice(self, region: Region) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Sample coordinates per axis, min to max inclusive."""
        step = self.params.quality.sampling_resolution
        axes = []
        for low, high in zip(region.min_corner, region.max_corner):
            count = int(np.floor((high - low) / step + 1e-9))
            axes.append(low + np.arange(count + 1) * step)
        return axes[0], axes[1], axes[2]

    def sample_region(
        self,
        region: Region,
        layers: Sequence[GeologicalLayer],
        state: Optional[CaveState] = None,
    ) -> List[CavePoint]:
        """
        Sample the field over a region, one horizontal slice at a time.

        Args:
            region: Sampling box
            layers: Geological layers ordered by depth
            state: Optional generation state for progress and time budget

        Returns:
            CavePoints with density > 0
        """
        xs, ys, zs = self.lattice(region)
        gx, gz = np.meshgrid(xs, zs, indexing="ij")
        gx = gx.ravel()
        gz = gz.ravel()
        threshold = self.params.density_threshold

        points: List[CavePoint] = []
        for i, y in enumerate(ys):
            if state is not None and state.budget_exhausted():
                break

            gy = np.full(gx.shape, y)
            hardness, porosity = layer_properties(layers, np.abs(gy))
            raw = self.raw_values(gx, gy, gz, hardness, porosity)
            density = threshold_density(raw, threshold)

            keep = np.flatnonzero(density > 0)
            points.extend(self._build_points(gx[keep], gy[keep], gz[keep], density[keep], hardness[keep]))

            if state is not None:
                state.checkpoint((i + 1) / len(ys), f"slice y={y:.1f}")

        logger.debug(f"Sampled {len(xs) * len(ys) * len(zs)} coordinates, kept {len(points)}")
        return points

    @staticmethod
    def _build_points(x, y, z, density, hardness) -> List[CavePoint]:
        stability = np.maximum(0.0, 1 - density * (1 - hardness))
        water_flow = np.where(density > FORMATION_DENSITY, density * 0.5, 0.0)
        temperature = BASE_TEMPERATURE + np.abs(y) * TEMPERATURE_PER_UNIT

        return [
            CavePoint(
                position=(float(x[i]), float(y[i]), float(z[i])),
                density=float(density[i]),
                material=classify_material(density[i]),
                stability=float(stability[i]),
                erosion_level=0.0,
                water_flow=float(water_flow[i]),
                age=1.0,
                temperature=float(temperature[i]),
                humidity=0.8,
                gas_content=float(density[i]),
            )
            for i in range(len(density))
        ]


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Sample the density field over the region.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    if state.geology is None:
        raise ValueError("Geological layers are required before sampling the density field")

    synthesizer = DensityFieldSynthesizer(state.noise, params)
    points = synthesizer.sample_region(state.region, state.geology.layers, state)
    state.set_points(points)

    air = sum(1 for p in points if p.is_air)
    state.stage_data["cave_point_generation"] = {
        "points": len(points),
        "air_points": air,
        "formation_seeds": sum(1 for p in points if p.density > FORMATION_DENSITY),
    }
    logger.info(f"Generated {len(points)} cave points ({air} open air)")
