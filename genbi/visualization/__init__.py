"""
Visualization module initialization.
"""

from .recommender import VisualizationRecommender

__all__ = ["VisualizationRecommender"]
