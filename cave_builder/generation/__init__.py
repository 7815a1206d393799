"""
Cave Builder - Generation Package
Contains all generation stages and the main pipeline.
"""

# Import these lazily to avoid circular imports
__all__ = [
    "GenerationPipeline",
    "create_pipeline",
    "generate_caves",
]
