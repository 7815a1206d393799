"""
Cave Builder - Data Models
"""
