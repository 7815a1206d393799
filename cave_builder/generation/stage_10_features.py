"""
Cave Builder - Stage 10: Feature Generation
Places speleothems, flowstone, streams and mineral deposits.

All random draws come from the run's seeded stream and are made in a
fixed order (formations in order, chamber decorations before the
stream and mineral passes), so features are reproducible per seed.
"""

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from cave_builder.config import CaveGenerationParams, FeatureType, FormationType
from cave_builder.models.cave import CaveFeature, Formation
from cave_builder.models.state import CaveState
from cave_builder.utils.noise import NoiseEngine
from cave_builder.utils.spatial import PointIndex

logger = logging.getLogger(__name__)

CEILING_OFFSET = 0.4
FLOOR_OFFSET = 0.8
STALAGMITE_CHANCE = 0.6
CAVE_HUMIDITY = 0.8

FLOWSTONE_MIN_FLOW = 0.4
STREAM_DEPTH = -20.0
STREAM_CHANCE = 0.3
MINERAL_DEPTH = -50.0


class FeatureGenerator:
    """Decorates formations using a shared random stream"""

    def __init__(self, params: CaveGenerationParams, rng: np.random.Generator, noise: Optional[NoiseEngine] = None):
        self.params = params
        self.rng = rng
        self.noise = noise

    def growth(self, position, age: float) -> float:
        """Length multiplier from the speleothem noise pattern (>= 1)."""
        if self.noise is None:
            return 1.0
        pattern = self.noise.speleothem_pattern(position[0], position[1], position[2], CAVE_HUMIDITY, age)
        return 1.0 + 0.5 * max(0.0, pattern)

    def chamber_speleothems(self, formation: Formation) -> List[CaveFeature]:
        """Stalactites on a ring near the ceiling, some with a stalagmite below."""
        features = []
        count = int(math.floor(formation.radius * self.params.geology.stalactite_frequency * 0.5))
        cx, cy, cz = formation.center

        for i in range(1, count + 1):
            angle = 2 * math.pi * i / count
            reach = formation.radius * (0.3 + self.rng.random() * 0.4)
            position = (
                cx + math.cos(angle) * reach,
                cy + formation.height * CEILING_OFFSET,
                cz + math.sin(angle) * reach,
            )
            length = 1 + self.rng.random() * 4
            thickness = 0.2 + self.rng.random() * 0.5
            age = self.rng.random()
            length *= self.growth(position, age)

            features.append(CaveFeature(
                feature_type=FeatureType.STALACTITE,
                position=position,
                formation_id=formation.formation_id,
                length=length,
                thickness=thickness,
                age=age,
            ))

            if self.rng.random() > STALAGMITE_CHANCE:
                features.append(CaveFeature(
                    feature_type=FeatureType.STALAGMITE,
                    position=(position[0], position[1] - formation.height * FLOOR_OFFSET, position[2]),
                    formation_id=formation.formation_id,
                    length=length * (0.5 + self.rng.random() * 0.5),
                    thickness=thickness * 1.2,
                    age=age,
                ))
        return features

    def flowstone(self, formation: Formation, index: Optional[PointIndex]) -> List[CaveFeature]:
        """Flowstone on wet points inside a tunnel."""
        features = []
        if index is None:
            return features

        chance = self.params.geology.flowstone_formation
        for i in index.query_radius(formation.center, formation.radius):
            point = index.points[i]
            if point.water_flow <= FLOWSTONE_MIN_FLOW:
                continue
            if self.rng.random() < chance:
                features.append(CaveFeature(
                    feature_type=FeatureType.FLOWSTONE,
                    position=point.position,
                    formation_id=formation.formation_id,
                    extent=point.water_flow * 3,
                    age=self.rng.random(),
                ))
        return features

    def streams(self, formations: Sequence[Formation]) -> List[CaveFeature]:
        features = []
        for formation in formations:
            if formation.type != FormationType.TUNNEL or formation.center[1] >= STREAM_DEPTH:
                continue
            if self.rng.random() < STREAM_CHANCE:
                features.append(CaveFeature(
                    feature_type=FeatureType.UNDERGROUND_STREAM,
                    position=formation.center,
                    formation_id=formation.formation_id,
                    extent=formation.radius * 0.2,
                    material="water",
                ))
        return features

    def mineral_deposits(self, formations: Sequence[Formation]) -> List[CaveFeature]:
        features = []
        chance = self.params.geology.crystallization
        for formation in formations:
            if formation.type != FormationType.CHAMBER or formation.center[1] >= MINERAL_DEPTH:
                continue
            if self.rng.random() < chance:
                features.append(CaveFeature(
                    feature_type=FeatureType.MINERAL_DEPOSIT,
                    position=formation.center,
                    formation_id=formation.formation_id,
                    extent=formation.radius * 0.3,
                    material="crystal",
                ))
        return features

    def generate(self, formations: Sequence[Formation], index: Optional[PointIndex]) -> List[CaveFeature]:
        """
        All features for a set of formations.

        Args:
            formations: Formations after structural validation
            index: Point index used to find wet points in tunnels

        Returns:
            Features in generation order
        """
        features: List[CaveFeature] = []
        for formation in formations:
            if formation.type == FormationType.CHAMBER:
                features.extend(self.chamber_speleothems(formation))
            if formation.type == FormationType.TUNNEL:
                features.extend(self.flowstone(formation, index))

        features.extend(self.streams(formations))
        features.extend(self.mineral_deposits(formations))
        return features


def execute(state: CaveState, params: CaveGenerationParams):
    """
    Generate cave features.

    Args:
        state: Generation state to update
        params: Generation parameters
    """
    generator = FeatureGenerator(params, state.rng, state.noise)
    state.features = generator.generate(state.formations, state.point_index)

    counts = {}
    for feature in state.features:
        counts[feature.feature_type] = counts.get(feature.feature_type, 0) + 1
    state.stage_data["feature_generation"] = {"total_features": len(state.features), "by_type": counts}
    logger.info(f"Generated {len(state.features)} cave features")
