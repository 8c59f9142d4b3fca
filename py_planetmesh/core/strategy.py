"""Triangulation strategy selection for projected Voronoi cell boundaries."""

from enum import Enum
from typing import List, Optional

from ..config import MeshSettings, get_settings
from .constrained_delaunay import triangulate_constrained
from .entities import Triangle
from .spherical_delaunay import triangulate_unconstrained


class TriangulationStrategy(Enum):
    """How a cell polygon is triangulated."""

    FAN = "fan"
    INCREMENTAL = "incremental"
    CONSTRAINED = "constrained"


def select_strategy(n_points: int, convex: bool,
                    settings: Optional[MeshSettings] = None) -> TriangulationStrategy:
    """
    Pick a strategy from the polygon size and shape.

    Non-convex polygons need their boundary enforced; convex ones are
    fanned when small and built incrementally otherwise.
    """
    settings = settings or get_settings()
    if not convex:
        return TriangulationStrategy.CONSTRAINED
    if n_points <= settings.fan_max_points:
        return TriangulationStrategy.FAN
    return TriangulationStrategy.INCREMENTAL


def run_strategy(strategy: TriangulationStrategy, points_2d, points_3d=None,
                 settings: Optional[MeshSettings] = None) -> List[Triangle]:
    """
    Triangulate with the given strategy.

    Returns:
        Triangles indexing the rows of points_2d
    """
    if strategy is TriangulationStrategy.CONSTRAINED:
        return triangulate_constrained(points_2d, settings=settings)
    if strategy in (TriangulationStrategy.FAN, TriangulationStrategy.INCREMENTAL):
        return triangulate_unconstrained(points_2d, points_3d, settings=settings)
    raise ValueError(f"Unknown triangulation strategy: {strategy}")
