"""
Core mesh generation functionality.
"""

from .entities import (CellDraft, Edge, EdgeKey, EdgeType, HalfEdge, MeshLayer, MeshState,
                       Point, Triangle, VoronoiCell, NO_NEIGHBOR)
from .topology import TopologyStore, TopologyReport
from .spherical_delaunay import SphericalDelaunayTriangulator, triangulate_unconstrained
from .constrained_delaunay import ConstrainedDelaunayTriangulator, triangulate_constrained
from .strategy import TriangulationStrategy, select_strategy, run_strategy
from .voronoi_cells import VoronoiCellAssembler, GenerationProgress
from .primal_mesh import load_primal_mesh

__all__ = ['CellDraft', 'Edge', 'EdgeKey', 'EdgeType', 'HalfEdge', 'MeshLayer', 'MeshState',
           'Point', 'Triangle', 'VoronoiCell', 'NO_NEIGHBOR',
           'TopologyStore', 'TopologyReport',
           'SphericalDelaunayTriangulator', 'triangulate_unconstrained',
           'ConstrainedDelaunayTriangulator', 'triangulate_constrained',
           'TriangulationStrategy', 'select_strategy', 'run_strategy',
           'VoronoiCellAssembler', 'GenerationProgress', 'load_primal_mesh']
