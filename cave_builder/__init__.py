"""
Cave Builder
Deterministic procedural generation of 3D cave systems.
"""

__version__ = "0.1.0"
