"""
Cave Builder - Utilities
Noise generation and spatial helpers.
"""
