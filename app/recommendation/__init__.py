"""
Recommendation module: prediction snapshots, suggestion actions and evaluation.
"""

from .routes import create_recommendation_routes
from .factory import create_recommendation_module

__all__ = ['create_recommendation_routes', 'create_recommendation_module']
