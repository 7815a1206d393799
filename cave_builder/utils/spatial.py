"""
Cave Builder - Spatial Utilities
Nearest-neighbour queries over sampled cave points and small vector helpers.
"""

import math
from typing import Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from cave_builder.models.cave import CavePoint, Vector3


def subtract(a: Vector3, b: Vector3) -> Vector3:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def length(v: Vector3) -> float:
    return math.sqrt(v[0] * v[0] + v[1] * v[1] + v[2] * v[2])


def unit(v: Vector3) -> Vector3:
    """Unit vector, or the zero vector for zero length input."""
    magnitude = length(v)
    if magnitude == 0:
        return (0.0, 0.0, 0.0)
    return (v[0] / magnitude, v[1] / magnitude, v[2] / magnitude)


def midpoint(a: Vector3, b: Vector3) -> Vector3:
    return ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0, (a[2] + b[2]) / 2.0)


def sample_segment(start: Vector3, end: Vector3, steps: int, include_start: bool = True) -> np.ndarray:
    """
    Evenly spaced positions along a segment.

    Args:
        start: Segment start
        end: Segment end
        steps: Number of intervals; the end point is always included
        include_start: Whether the start point is part of the samples

    Returns:
        Array of shape (n, 3)
    """
    first = 0 if include_start else 1
    t = np.arange(first, steps + 1, dtype=np.float64) / steps
    a = np.asarray(start, dtype=np.float64)
    b = np.asarray(end, dtype=np.float64)
    return a + np.outer(t, b - a)


class PointIndex:
    """
    KD-tree over CavePoint positions.

    Densities are kept in a parallel array so path sampling can be done with
    array lookups instead of per-point attribute access.
    """

    def __init__(self, points: Sequence[CavePoint]):
        self.points = list(points)
        if self.points:
            self.positions = np.array([p.position for p in self.points], dtype=np.float64)
            self.densities = np.array([p.density for p in self.points], dtype=np.float64)
            self.tree = cKDTree(self.positions)
        else:
            self.positions = np.empty((0, 3), dtype=np.float64)
            self.densities = np.empty(0, dtype=np.float64)
            self.tree = None

    def __len__(self) -> int:
        return len(self.points)

    def query_radius(self, center: Vector3, radius: float) -> np.ndarray:
        """Indices of points within radius (inclusive), ascending."""
        if self.tree is None:
            return np.empty(0, dtype=np.int64)
        return np.array(sorted(self.tree.query_ball_point(center, radius)), dtype=np.int64)

    def nearest_density(self, positions: np.ndarray) -> np.ndarray:
        """Density of the single nearest point for each position (0 when empty)."""
        positions = np.atleast_2d(positions)
        if self.tree is None:
            return np.zeros(len(positions))
        _, idx = self.tree.query(positions, k=1)
        return self.densities[idx]

    def interpolated_density(self, positions: np.ndarray, radius: float = 5.0, k: int = 3) -> np.ndarray:
        """
        Inverse-distance weighted density of up to k nearest points.

        A position with no point within radius gets 0. A position whose
        nearest point is closer than 1 unit, or is the only one in range,
        takes that point's density.
        """
        positions = np.atleast_2d(positions)
        if self.tree is None:
            return np.zeros(len(positions))

        k = min(k, len(self.points))
        dist, idx = self.tree.query(positions, k=k, distance_upper_bound=np.nextafter(radius, np.inf))
        if k == 1:
            dist = dist[:, None]
            idx = idx[:, None]

        found = np.isfinite(dist)
        densities = self.densities[np.where(found, idx, 0)]
        weights = np.where(found, 1.0 / (np.where(found, dist, 0.0) + 0.1), 0.0)
        weight_sum = weights.sum(axis=1)
        weighted = (weights * densities).sum(axis=1) / np.where(weight_sum > 0, weight_sum, 1.0)

        count = found.sum(axis=1)
        nearest = np.where(found[:, 0], densities[:, 0], 0.0)
        use_nearest = (count == 1) | (found[:, 0] & (dist[:, 0] < 1.0))
        return np.where(count == 0, 0.0, np.where(use_nearest, nearest, weighted))

    def neighbor_pairs(self, radius: float) -> Tuple[np.ndarray, np.ndarray]:
        """
        All (i, j) index pairs closer than radius, including i == j.

        Returns:
            Tuple of (rows, cols) arrays
        """
        if self.tree is None:
            empty = np.empty(0, dtype=np.int64)
            return empty, empty

        neighbors = self.tree.query_ball_point(self.positions, np.nextafter(radius, 0.0))
        counts = np.fromiter((len(n) for n in neighbors), dtype=np.int64, count=len(neighbors))
        rows = np.repeat(np.arange(len(neighbors), dtype=np.int64), counts)
        cols = np.fromiter((j for n in neighbors for j in n), dtype=np.int64, count=int(counts.sum()))
        return rows, cols
