"""
Clinic Roster API Routers Package.

- v1: assignment runs, schedule lifecycle, leave quota and fairness endpoints
"""

from .v1 import router as v1_router

__all__ = ['v1_router']
