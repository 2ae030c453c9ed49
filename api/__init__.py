"""
API MODULE

REST surface over the market data client and the detector.
"""

from .routes import setup_routes, routes

__all__ = [
    'setup_routes',
    'routes',
]
