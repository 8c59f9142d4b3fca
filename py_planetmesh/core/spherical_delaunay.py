"""
Unconstrained Delaunay triangulation of a small projected point set.

Used for Voronoi cells whose projected boundary is convex: small sets are
fanned from one vertex, larger ones are built by incremental hull
insertion. Both are followed by Lawson flip sweeps until every interior
edge is locally Delaunay.

Triangles live in a local arena; flipping kills the two old triangles and
appends two new ones, so triangle ids are never reused within one run.
"""

from collections import defaultdict
from typing import Dict, List, Optional, Set

import numpy as np
import structlog

from ..config import MeshSettings, get_settings
from .entities import NO_NEIGHBOR, EdgeKey, Triangle
from .predicates import (
    angular_order,
    in_circumcircle,
    orientation,
    triangle_area_3d,
)

logger = structlog.get_logger()


class SphericalDelaunayTriangulator:
    """Fan / incremental Delaunay triangulator over a local triangle arena."""

    def __init__(self, settings: Optional[MeshSettings] = None):
        self.settings = settings or get_settings()
        self.tolerance = self.settings.tolerance
        self._reset(np.empty((0, 2)), None)

    def _reset(self, points_2d: np.ndarray, points_3d: Optional[np.ndarray]) -> None:
        self.points_2d = points_2d
        self.points_3d = points_3d
        self.triangles: List[Triangle] = []
        self.edge_map: Dict[EdgeKey, Set[int]] = defaultdict(set)

    def triangulate(self, points_2d, points_3d=None) -> List[Triangle]:
        """
        Triangulate a projected point set.

        Args:
            points_2d: (n, 2) projected coordinates
            points_3d: Optional (n, 3) original positions used to reject
                triangles that are degenerate on the sphere

        Returns:
            Live triangles indexing the input arrays, counter-clockwise in
            2D, with neighbours filled and hull edges flagged in
            ``constrained``. Empty when the input cannot be triangulated.
        """
        pts2 = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
        pts3 = None
        if points_3d is not None:
            pts3 = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
            if len(pts3) != len(pts2):
                logger.error("Projected and spherical point counts differ",
                             points_2d=len(pts2), points_3d=len(pts3))
                return []

        n = len(pts2)
        if n < 3:
            logger.warning("Too few points to triangulate", points=n)
            return []

        self._reset(pts2, pts3)

        if n == 3:
            if self._create(0, 1, 2) is None:
                logger.warning("Three input points are degenerate", points=n)
                return []
        elif n <= self.settings.fan_max_points:
            self._triangulate_fan()
            if self.settings.legalize_fan:
                self._legalize()
        else:
            if not self._triangulate_incremental():
                return []
            self._legalize()

        result = self._collect()
        if not result:
            logger.warning("Triangulation produced no triangles", points=n)
        return result

    # ------------------------------------------------------------------
    # Arena
    # ------------------------------------------------------------------

    def _is_degenerate(self, i: int, j: int, k: int) -> bool:
        p = self.points_2d
        if abs(orientation(p[i], p[j], p[k])) <= self.tolerance:
            return True
        if self.points_3d is not None:
            q = self.points_3d
            return triangle_area_3d(q[i], q[j], q[k]) <= self.tolerance
        return False

    def _create(self, i: int, j: int, k: int) -> Optional[int]:
        """Append a counter-clockwise triangle, or return None if it is degenerate."""
        if len({i, j, k}) < 3 or self._is_degenerate(i, j, k):
            return None
        p = self.points_2d
        if orientation(p[i], p[j], p[k]) < 0.0:
            j, k = k, j
        tid = len(self.triangles)
        tri = Triangle(index=tid, vertices=[i, j, k])
        self.triangles.append(tri)
        for key in tri.edge_keys():
            self.edge_map[key].add(tid)
        return tid

    def _kill(self, tid: int) -> None:
        tri = self.triangles[tid]
        tri.alive = False
        for key in tri.edge_keys():
            self.edge_map[key].discard(tid)
            if not self.edge_map[key]:
                del self.edge_map[key]

    def _alive(self) -> List[int]:
        return [t.index for t in self.triangles if t.alive]

    def _across(self, tid: int, key: EdgeKey) -> int:
        for other in self.edge_map.get(key, ()):
            if other != tid:
                return other
        return NO_NEIGHBOR

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _triangulate_fan(self) -> None:
        order = angular_order(self.points_2d)
        pivot = order[0]
        for a, b in zip(order[1:-1], order[2:]):
            if self._create(pivot, a, b) is None:
                logger.debug("Skipping degenerate fan triangle", vertices=(pivot, a, b))

    def _find_seed(self, order: List[int]) -> Optional[List[int]]:
        p = self.points_2d
        first = order[0]
        second = next((i for i in order[1:]
                       if np.max(np.abs(p[i] - p[first])) > self.tolerance), None)
        if second is None:
            return None
        for third in order[1:]:
            if third != second and not self._is_degenerate(first, second, third):
                return [first, second, third]
        return None

    def _hull_edges(self):
        """Directed hull edges a -> b, interior on the left."""
        for key, owners in self.edge_map.items():
            if len(owners) != 1:
                continue
            tri = self.triangles[next(iter(owners))]
            yield tri.edge(tri.local_edge(key.a, key.b))

    def _triangulate_incremental(self) -> bool:
        order = angular_order(self.points_2d)
        seed = self._find_seed(order)
        if seed is None:
            logger.warning("All points are collinear or coincident", points=len(order))
            return False
        self._create(*seed)

        p = self.points_2d
        for pid in order:
            if pid in seed:
                continue
            visible = [(a, b) for a, b in self._hull_edges()
                       if orientation(p[a], p[b], p[pid]) < -self.tolerance]
            if not visible:
                logger.warning("Point sees no hull edge, dropping it", point=pid)
                continue
            for a, b in visible:
                if self._create(b, a, pid) is None:
                    logger.warning("Degenerate triangle against hull edge",
                                   point=pid, edge=(a, b))
        return True

    # ------------------------------------------------------------------
    # Legalization
    # ------------------------------------------------------------------

    def _try_flip(self, tid: int, e: int) -> bool:
        tri = self.triangles[tid]
        a, b = tri.edge(e)
        c = tri.opposite_vertex(e)
        nid = self._across(tid, EdgeKey.of(a, b))
        if nid == NO_NEIGHBOR:
            return False
        other = self.triangles[nid]
        d = other.opposite_vertex(other.local_edge(a, b))

        p = self.points_2d
        if not in_circumcircle(p[a], p[b], p[c], p[d], self.settings.incircle_epsilon):
            return False
        # The quad a, d, b, c must be strictly convex for the new diagonal c-d
        if orientation(p[a], p[d], p[c]) <= self.tolerance:
            return False
        if orientation(p[d], p[b], p[c]) <= self.tolerance:
            return False
        if self._is_degenerate(a, d, c) or self._is_degenerate(d, b, c):
            return False

        self._kill(tid)
        self._kill(nid)
        self._create(a, d, c)
        self._create(d, b, c)
        return True

    def _flip_sweep(self) -> int:
        flips = 0
        for tid in self._alive():
            if not self.triangles[tid].alive:
                continue
            for e in range(3):
                if self._try_flip(tid, e):
                    flips += 1
                    break
        return flips

    def _legalize(self) -> None:
        """Sweep until no edge flips, bounded by triangle count times the iteration factor."""
        max_sweeps = max(1, len(self._alive()) * self.settings.flip_iteration_factor)
        for _ in range(max_sweeps):
            if self._flip_sweep() == 0:
                return
        logger.warning("Flip sweep limit reached, keeping current triangulation",
                       sweeps=max_sweeps, triangles=len(self._alive()))

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _collect(self) -> List[Triangle]:
        alive = self._alive()
        renumber = {tid: i for i, tid in enumerate(alive)}
        result = []
        for tid in alive:
            tri = self.triangles[tid]
            out = Triangle(index=renumber[tid], vertices=list(tri.vertices))
            for e, key in enumerate(tri.edge_keys()):
                other = self._across(tid, key)
                if other == NO_NEIGHBOR:
                    out.constrained[e] = True
                else:
                    out.neighbors[e] = renumber[other]
            result.append(out)
        return result


def triangulate_unconstrained(points_2d, points_3d=None,
                              settings: Optional[MeshSettings] = None) -> List[Triangle]:
    """Delaunay-triangulate a projected point set; see SphericalDelaunayTriangulator."""
    return SphericalDelaunayTriangulator(settings).triangulate(points_2d, points_3d)
