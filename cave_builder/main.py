#!/usr/bin/env python3
"""
Cave Generation Engine - Demo Script

Demonstrates the complete cave generation pipeline.
"""
import logging
import sys
from collections import Counter
from typing import Optional

from cave_builder.config import describe_config, get_preset
from cave_builder.generation.pipeline import create_pipeline, estimate_generation_time, validate_region
from cave_builder.models.cave import GenerationResult, Region
from cave_builder.settings import get_settings

logger = logging.getLogger(__name__)


def progress_callback(fraction: float, stage: str, detail: str):
    """Progress callback for monitoring generation"""
    if detail in ("started", "complete"):
        print(f"  Progress: {fraction * 100:5.1f}% - {stage} {detail}")


def print_cave_statistics(result: GenerationResult):
    """Print interesting statistics about the generated cave system"""
    print("\n" + "=" * 60)
    print(" CAVE GENERATION COMPLETE" if result.success else " CAVE GENERATION FAILED")
    print("=" * 60)

    print(f"\nSeed: {result.seed}")
    if result.error:
        print(f"Error: {result.error}")

    air = sum(1 for p in result.points if p.is_air)
    print(f"\nDensity field:")
    print(f"  Stored points: {len(result.points):,}")
    print(f"  Open air:      {air:,}")

    if result.formations:
        types = Counter(f.type for f in result.formations)
        print(f"\nFormations: {len(result.formations)}")
        for formation_type, count in types.most_common():
            print(f"  {formation_type:18s} {count}")

    if result.networks:
        largest = max(result.networks, key=lambda n: len(n.nodes))
        print(f"\nNetworks: {len(result.networks)}")
        print(f"  Largest: {largest.id} ({len(largest.nodes)} nodes, {len(largest.connections)} connections)")
        print(f"  Accessibility: {largest.accessibility_score:.2f}")
        print(f"  Connectivity:  {largest.connectivity_score:.2f}")
        print(f"  Exploration:   {largest.exploration_score:.2f}")
        print(f"  Safety:        {largest.safety_score:.2f}")

    if result.flow_analysis is not None:
        print(f"\nHydrology:")
        print(f"  Flow paths: {len(result.flow_analysis.flow_paths)}")
        print(f"  Total flow rate: {result.flow_analysis.total_flow_rate:.2f}")

    print(f"\nSurface entrances: {len(result.entrances)}")
    print(f"Features: {len(result.features)}")

    if result.quality_metrics is not None:
        print(f"\nOverall quality: {result.quality_metrics.overall * 100:.1f}%")
        for recommendation in result.quality_metrics.recommendations:
            print(f"  - {recommendation}")

    if result.warnings:
        print(f"\nWarnings:")
        for warning in result.warnings:
            print(f"  ! {warning}")

    print("\nStage Timings:")
    total = result.performance.total_time or 1.0
    for stage_name, duration in result.performance.stage_timings.items():
        print(f"  {stage_name:24s} {duration:8.2f}s ({duration / total * 100:5.1f}%)")

    print("\n" + "=" * 60)


def generate_cave_system(
    seed: int = 42,
    preset: str = "realistic",
    center=(0.0, -40.0, 0.0),
    size=(100.0, 50.0, 100.0),
) -> Optional[GenerationResult]:
    """
    Generate a cave system and print a summary.

    Args:
        seed: Random seed for generation
        preset: Preset name (realistic, cinematic, geological_survey)
        center: Region center
        size: Region size along x, y, z
    """
    print("=" * 60)
    print(" CAVE GENERATION ENGINE")
    print("=" * 60)

    params = get_preset(preset, seed)
    region = Region.from_center(center, size)

    valid, warnings, error = validate_region(region)
    if not valid:
        print(f"\nInvalid region: {error}")
        return None
    for warning in warnings:
        print(f"  ! {warning}")

    print(f"\nParameters ({preset}):")
    for line in describe_config(params).splitlines():
        print(f"  {line}")
    print(f"  Estimated time: {estimate_generation_time(region, params):.1f}s")

    pipeline = create_pipeline(params, region, progress_callback)
    result = pipeline.generate()
    print_cave_statistics(result)
    return result


if __name__ == "__main__":
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    seed = int(sys.argv[1]) if len(sys.argv) > 1 else 42
    preset = sys.argv[2] if len(sys.argv) > 2 else "realistic"
    generate_cave_system(seed=seed, preset=preset)
