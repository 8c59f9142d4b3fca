"""
Constrained Delaunay triangulation of a simple polygon.

Steps:
1. Enclose the input in a large super-triangle.
2. Insert every point with Bowyer-Watson cavity re-triangulation,
   legalizing the new triangles with a stack-based flip sweep.
3. Recover each boundary edge by flipping the edges that cross it.
4. Purge triangles touching the super-triangle.
5. Flood-fill from a seed inside the polygon across unconstrained edges;
   everything not reached lies outside the polygon and is discarded.

Flips update triangles in place; neighbour links are kept symmetric so the
flood fill and the final remapping can follow them directly.
"""

from collections import deque
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from ..config import MeshSettings, get_settings
from .entities import NO_NEIGHBOR, EdgeKey, Triangle
from .predicates import (
    in_circumcircle,
    orientation,
    point_in_polygon,
    point_in_triangle,
    polygon_area,
    polygon_centroid,
    segments_intersect_properly,
)

logger = structlog.get_logger()


class ConstrainedDelaunayTriangulator:
    """Triangulates a polygon, with optional interior points, keeping its boundary edges."""

    def __init__(self, boundary, interior_points=None, settings: Optional[MeshSettings] = None):
        """
        Initialize the triangulator.

        Args:
            boundary: (n, 2) polygon vertices in order, either winding
            interior_points: Optional (m, 2) points strictly inside the polygon
            settings: Mesh settings; the process-wide settings when omitted
        """
        self.settings = settings or get_settings()
        self.tolerance = self.settings.tolerance
        self.boundary = np.asarray(boundary, dtype=np.float64).reshape(-1, 2)
        if interior_points is None:
            self.interior = np.empty((0, 2))
        else:
            self.interior = np.asarray(interior_points, dtype=np.float64).reshape(-1, 2)

        self.points: List[np.ndarray] = []
        self.caller_index: List[int] = []
        self.boundary_local: List[int] = []
        self.inserted: List[bool] = []
        self.triangles: List[Triangle] = []
        self.super_vertices: Tuple[int, int, int] = (-1, -1, -1)

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def triangulate(self) -> List[Triangle]:
        """
        Run the full pipeline.

        Returns:
            Triangles inside the polygon, vertices indexing the caller's
            order (boundary first, then interior points), counter-clockwise,
            boundary edges flagged in ``constrained``. Empty when the
            polygon is degenerate.
        """
        if not self._prepare():
            return []

        self._build_super_triangle()
        for local in range(len(self.points) - 3):
            self._insert_point(local)

        n = len(self.boundary_local)
        for i in range(n):
            self._recover_constraint(self.boundary_local[i], self.boundary_local[(i + 1) % n])
        self._legalize([(t.index, e) for t in self._alive() for e in range(3)])

        self._purge_super_triangle()
        inside = self._flood_fill()
        if not inside:
            logger.warning("No triangle found inside the polygon",
                           boundary=len(self.boundary_local))
            return []
        return self._collect(inside)

    # ------------------------------------------------------------------
    # Input preparation
    # ------------------------------------------------------------------

    def _same(self, p, q) -> bool:
        return bool(np.max(np.abs(np.asarray(p) - np.asarray(q))) <= self.tolerance)

    def _prepare(self) -> bool:
        kept: List[int] = []
        for i, p in enumerate(self.boundary):
            if kept and self._same(self.boundary[kept[-1]], p):
                logger.warning("Dropping consecutive duplicate boundary point", index=i)
                continue
            kept.append(i)
        if len(kept) > 1 and self._same(self.boundary[kept[0]], self.boundary[kept[-1]]):
            logger.warning("Dropping closing duplicate boundary point", index=kept[-1])
            kept.pop()

        if len(kept) < 3:
            logger.warning("Polygon needs at least three distinct points", points=len(kept))
            return False

        area = polygon_area([self.boundary[i] for i in kept])
        if abs(area) <= self.tolerance:
            logger.warning("Polygon has zero area", points=len(kept))
            return False
        if area < 0.0:
            kept.reverse()

        for i in kept:
            self.boundary_local.append(len(self.points))
            self.points.append(self.boundary[i])
            self.caller_index.append(i)
        offset = len(self.boundary)
        for j, p in enumerate(self.interior):
            self.points.append(p)
            self.caller_index.append(offset + j)
        self.inserted = [False] * len(self.points)
        return True

    def _build_super_triangle(self) -> None:
        pts = np.asarray(self.points)
        lo = pts.min(axis=0)
        hi = pts.max(axis=0)
        center = (lo + hi) / 2.0
        delta = max(float(np.max(hi - lo)), self.tolerance) * self.settings.super_triangle_scale

        first = len(self.points)
        self.points.extend([
            np.array([center[0] - 2.0 * delta, center[1] - delta]),
            np.array([center[0] + 2.0 * delta, center[1] - delta]),
            np.array([center[0], center[1] + 2.0 * delta]),
        ])
        self.inserted.extend([True, True, True])
        self.super_vertices = (first, first + 1, first + 2)
        self.triangles.append(Triangle(index=0, vertices=list(self.super_vertices)))

    # ------------------------------------------------------------------
    # Triangle bookkeeping
    # ------------------------------------------------------------------

    def _alive(self) -> List[Triangle]:
        return [t for t in self.triangles if t.alive]

    def _new_triangle(self, vertices: List[int]) -> Triangle:
        tri = Triangle(index=len(self.triangles), vertices=vertices)
        self.triangles.append(tri)
        return tri

    def _relink(self, tid: int, p: int, q: int, new_tid: int) -> None:
        """Point the neighbour slot of tid across edge pq at new_tid."""
        if tid == NO_NEIGHBOR:
            return
        tri = self.triangles[tid]
        e = tri.local_edge(p, q)
        if e < 0:
            logger.error("Neighbour does not share the expected edge",
                         triangle=tid, edge=(p, q))
            return
        tri.neighbors[e] = new_tid

    def _locate(self, p: np.ndarray) -> Optional[int]:
        P = self.points
        for tri in self._alive():
            a, b, c = tri.vertices
            if point_in_triangle(p, P[a], P[b], P[c]):
                return tri.index
        return None

    # ------------------------------------------------------------------
    # Bowyer-Watson insertion
    # ------------------------------------------------------------------

    def _insert_point(self, local: int) -> None:
        P = self.points
        p = P[local]
        for other, done in enumerate(self.inserted):
            if done and other not in self.super_vertices and self._same(P[other], p):
                logger.warning("Skipping duplicate point", point=self.caller_index[local],
                               duplicate_of=self.caller_index[other])
                return

        start = self._locate(p)
        if start is None:
            logger.warning("Point lies outside the super-triangle, skipping",
                           point=self.caller_index[local])
            return

        # Grow the cavity of triangles whose circumcircle contains p
        bad = {start}
        queue = deque([start])
        while queue:
            tri = self.triangles[queue.popleft()]
            for nid in tri.neighbors:
                if nid == NO_NEIGHBOR or nid in bad:
                    continue
                a, b, c = self.triangles[nid].vertices
                if in_circumcircle(P[a], P[b], P[c], p, self.settings.incircle_epsilon):
                    bad.add(nid)
                    queue.append(nid)

        # Cavity boundary: edges whose neighbour is outside the cavity
        horizon = []
        for tid in sorted(bad):
            tri = self.triangles[tid]
            for e in range(3):
                if tri.neighbors[e] not in bad:
                    horizon.append((tri.edge(e), tri.neighbors[e], tri.constrained[e]))

        for tid in bad:
            self.triangles[tid].alive = False

        open_edges: Dict[EdgeKey, Tuple[int, int]] = {}
        created = []
        for (a, b), outside, constrained in horizon:
            tri = self._new_triangle([a, b, local])
            tri.neighbors[0] = outside
            tri.constrained[0] = constrained
            self._relink(outside, a, b, tri.index)
            for e, (u, v) in ((1, (b, local)), (2, (local, a))):
                key = EdgeKey.of(u, v)
                if key in open_edges:
                    other_tid, other_e = open_edges.pop(key)
                    tri.neighbors[e] = other_tid
                    self.triangles[other_tid].neighbors[other_e] = tri.index
                else:
                    open_edges[key] = (tri.index, e)
            created.append(tri.index)

        if open_edges:
            logger.error("Cavity re-triangulation left unmatched edges",
                         point=self.caller_index[local], edges=len(open_edges))

        self.inserted[local] = True
        self._legalize([(tid, 0) for tid in created])

    # ------------------------------------------------------------------
    # Flips and legalization
    # ------------------------------------------------------------------

    def _flip(self, tid: int, e: int) -> bool:
        """
        Flip edge e of triangle tid with its neighbour.

        With t = (b, c, a) across edge b-c from n = (c, b, d), the result is
        t = (a, b, d) and n = (a, d, c). Nothing changes unless both new
        triangles are strictly counter-clockwise.
        """
        t = self.triangles[tid]
        nid = t.neighbors[e]
        if nid == NO_NEIGHBOR or t.constrained[e]:
            return False
        n = self.triangles[nid]

        b, c = t.edge(e)
        a = t.opposite_vertex(e)
        ne = n.local_edge(b, c)
        if ne < 0:
            logger.error("Neighbour links are not symmetric", triangle=tid, neighbor=nid)
            return False
        d = n.opposite_vertex(ne)

        P = self.points
        if orientation(P[a], P[b], P[d]) <= 0.0 or orientation(P[a], P[d], P[c]) <= 0.0:
            return False

        t_ab, t_ca = t.neighbors[(e + 2) % 3], t.neighbors[(e + 1) % 3]
        n_bd, n_dc = n.neighbors[(ne + 1) % 3], n.neighbors[(ne + 2) % 3]
        c_ab, c_ca = t.constrained[(e + 2) % 3], t.constrained[(e + 1) % 3]
        c_bd, c_dc = n.constrained[(ne + 1) % 3], n.constrained[(ne + 2) % 3]

        t.vertices = [a, b, d]
        t.neighbors = [t_ab, n_bd, nid]
        t.constrained = [c_ab, c_bd, False]
        n.vertices = [a, d, c]
        n.neighbors = [tid, n_dc, t_ca]
        n.constrained = [False, c_dc, c_ca]

        self._relink(n_bd, b, d, tid)
        self._relink(t_ca, c, a, nid)
        return True

    def _legalize(self, stack: List[Tuple[int, int]],
                  forbid: Optional[Tuple[int, int]] = None) -> None:
        """
        Flip non-Delaunay edges until none remain on the stack.

        Args:
            stack: (triangle, local edge) pairs to check
            forbid: Constraint segment no flip may cross
        """
        P = self.points
        limit = self.settings.legalize_safety_limit
        checks = 0
        while stack:
            checks += 1
            if checks > limit:
                logger.warning("Legalization safety limit reached", limit=limit,
                               pending=len(stack))
                return
            tid, e = stack.pop()
            t = self.triangles[tid]
            if not t.alive or t.constrained[e] or t.neighbors[e] == NO_NEIGHBOR:
                continue
            nid = t.neighbors[e]
            n = self.triangles[nid]
            b, c = t.edge(e)
            a = t.opposite_vertex(e)
            ne = n.local_edge(b, c)
            if ne < 0:
                continue
            d = n.opposite_vertex(ne)
            if not in_circumcircle(P[a], P[b], P[c], P[d], self.settings.incircle_epsilon):
                continue
            if forbid is not None and a not in forbid and d not in forbid:
                if segments_intersect_properly(P[a], P[d], P[forbid[0]], P[forbid[1]]):
                    continue
            if self._flip(tid, e):
                stack.extend(((tid, 0), (tid, 1), (nid, 1), (nid, 2)))

    # ------------------------------------------------------------------
    # Constraint recovery
    # ------------------------------------------------------------------

    def _mark_constraint(self, u: int, v: int) -> bool:
        found = False
        for tri in self._alive():
            e = tri.local_edge(u, v)
            if e >= 0:
                tri.constrained[e] = True
                found = True
        return found

    def _find_edge(self, p: int, q: int) -> Optional[Tuple[int, int]]:
        for tri in self._alive():
            e = tri.local_edge(p, q)
            if e >= 0:
                return tri.index, e
        return None

    def _crossing_edges(self, u: int, v: int) -> List[EdgeKey]:
        P = self.points
        crossing = set()
        for tri in self._alive():
            for e in range(3):
                p, q = tri.edge(e)
                if tri.constrained[e] or p in (u, v) or q in (u, v):
                    continue
                if segments_intersect_properly(P[u], P[v], P[p], P[q]):
                    crossing.add(EdgeKey.of(p, q))
        return sorted(crossing)

    def _recover_constraint(self, u: int, v: int) -> bool:
        """
        Make uv an edge of the triangulation and mark it constrained.

        Crossing edges are queued and flipped in turn; a flip whose new
        diagonal still crosses uv sends that diagonal to the back of the
        queue, and a non-convex quad is retried later.
        """
        edge = (self.caller_index[u], self.caller_index[v])
        if not (self.inserted[u] and self.inserted[v]):
            logger.warning("Constraint endpoint was not inserted", edge=edge)
            return False
        if self._mark_constraint(u, v):
            return True

        P = self.points
        queue = deque(self._crossing_edges(u, v))
        if not queue:
            logger.warning("Constraint edge missing with nothing crossing it", edge=edge)
            return False

        attempts = 0
        while queue:
            attempts += 1
            if attempts > self.settings.constraint_recovery_limit:
                logger.warning("Constraint recovery limit reached", edge=edge,
                               limit=self.settings.constraint_recovery_limit,
                               crossing=len(queue))
                return False

            key = queue.popleft()
            found = self._find_edge(key.a, key.b)
            if found is None:
                continue
            tid, e = found
            nid = self.triangles[tid].neighbors[e]
            if not self._flip(tid, e):
                queue.append(key)
                continue

            # After the flip the new diagonal is edge 2 of tid
            a, d = self.triangles[tid].vertices[0], self.triangles[tid].vertices[2]
            if a not in (u, v) and d not in (u, v) and \
                    segments_intersect_properly(P[u], P[v], P[a], P[d]):
                queue.append(EdgeKey.of(a, d))
            else:
                self._legalize([(tid, 0), (tid, 1), (nid, 1), (nid, 2)], forbid=(u, v))

        if self._mark_constraint(u, v):
            return True
        logger.warning("Constraint edge could not be recovered", edge=edge)
        return False

    # ------------------------------------------------------------------
    # Purge and interior classification
    # ------------------------------------------------------------------

    def _purge_super_triangle(self) -> None:
        supers = set(self.super_vertices)
        for tri in self._alive():
            if supers.intersection(tri.vertices):
                tri.alive = False
        for tri in self._alive():
            tri.neighbors = [nid if nid != NO_NEIGHBOR and self.triangles[nid].alive
                             else NO_NEIGHBOR for nid in tri.neighbors]

    def _find_seed(self, polygon: Sequence) -> Optional[int]:
        P = self.points
        centroid = polygon_centroid(polygon)
        if point_in_polygon(centroid, polygon, self.tolerance):
            for tri in self._alive():
                a, b, c = tri.vertices
                if point_in_triangle(centroid, P[a], P[b], P[c]):
                    return tri.index

        # Concave polygon whose centroid falls outside
        for tri in self._alive():
            a, b, c = tri.vertices
            center = (P[a] + P[b] + P[c]) / 3.0
            if point_in_polygon(center, polygon, self.tolerance):
                return tri.index
        return None

    def _flood_fill(self) -> List[int]:
        polygon = [self.points[i] for i in self.boundary_local if self.inserted[i]]
        seed = self._find_seed(polygon)
        if seed is None:
            return []

        visited = {seed}
        queue = deque([seed])
        while queue:
            tri = self.triangles[queue.popleft()]
            for e in range(3):
                nid = tri.neighbors[e]
                if tri.constrained[e] or nid == NO_NEIGHBOR or nid in visited:
                    continue
                visited.add(nid)
                queue.append(nid)
        return sorted(visited)

    def _collect(self, inside: List[int]) -> List[Triangle]:
        renumber = {tid: i for i, tid in enumerate(inside)}
        result = []
        for tid in inside:
            tri = self.triangles[tid]
            result.append(Triangle(
                index=renumber[tid],
                vertices=[self.caller_index[v] for v in tri.vertices],
                neighbors=[renumber.get(nid, NO_NEIGHBOR) for nid in tri.neighbors],
                constrained=list(tri.constrained),
            ))
        return result


def triangulate_constrained(boundary_points, interior_points=None,
                            settings: Optional[MeshSettings] = None) -> List[Triangle]:
    """Constrained Delaunay triangulation of a polygon; see ConstrainedDelaunayTriangulator."""
    return ConstrainedDelaunayTriangulator(boundary_points, interior_points, settings).triangulate()
