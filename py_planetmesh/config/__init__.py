"""
Configuration for spherical mesh generation.
"""

from .settings import MeshSettings, get_settings

__all__ = ['MeshSettings', 'get_settings']
