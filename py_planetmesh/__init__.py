"""
py_planetmesh: spherical Delaunay meshes and their Voronoi duals for
procedural planet generation.
"""

from .config import MeshSettings, get_settings
from .core import (
    EdgeKey,
    MeshLayer,
    MeshState,
    TopologyStore,
    VoronoiCellAssembler,
    load_primal_mesh,
    triangulate_constrained,
    triangulate_unconstrained,
)
from .pipeline import build_planet_mesh
from .utils import configure_logging

__version__ = "0.1.0"

__all__ = ['MeshSettings', 'get_settings', 'EdgeKey', 'MeshLayer', 'MeshState',
           'TopologyStore', 'VoronoiCellAssembler', 'load_primal_mesh',
           'triangulate_constrained', 'triangulate_unconstrained',
           'build_planet_mesh', 'configure_logging']
