"""
Topology store for the spherical mesh and its Voronoi dual.

The store is the canonical repository of points, edges (as twinned
half-edge pairs), triangles and Voronoi cells, plus the adjacency indices
every other component queries:

- point -> incident edges / triangles / cells
- edge key -> (triangle, local edge) entries, for O(1) neighbour discovery
- edge key -> bordering cells

Everything lives in flat lists addressed by integer index. Mutations are
serialized by a single re-entrant lock so concurrent cell assembly tasks
can publish into the same store.
"""

import itertools
import math
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

import numpy as np
import structlog

from ..config import MeshSettings, get_settings
from .entities import (
    NO_NEIGHBOR,
    CellDraft,
    Edge,
    EdgeKey,
    HalfEdge,
    MeshLayer,
    MeshState,
    Point,
    Triangle,
    VoronoiCell,
)
from .predicates import spherical_orientation

logger = structlog.get_logger()


@dataclass
class TopologyReport:
    """Summary produced by TopologyStore.validate()."""

    stage: str
    points: int
    edges: int
    base_triangles: int
    dual_triangles: int
    cells: int
    twin_asymmetries: int
    overfull_edges: int
    cell_edge_defects: int
    open_cell_edges: int
    closed: bool = False

    @property
    def ok(self) -> bool:
        # Every cell edge of a complete dual mesh borders two cells
        open_defects = self.open_cell_edges if self.closed else 0
        return (self.twin_asymmetries == 0 and self.overfull_edges == 0
                and self.cell_edge_defects == 0 and open_defects == 0)


class TopologyStore:
    """Arena-backed mesh topology with adjacency indices."""

    def __init__(self, settings: Optional[MeshSettings] = None, name: str = "mesh"):
        """
        Initialize an empty store.

        Args:
            settings: Mesh settings; the process-wide settings when omitted
            name: Label used in log records and timings
        """
        self.settings = settings or get_settings()
        self.name = name
        self.state = MeshState.UNGENERATED
        self._tolerance = self.settings.tolerance
        self._lock = threading.RLock()
        self._clear()

    def _clear(self) -> None:
        # Points, with a quantized spatial index for deduplication
        self._points: List[Point] = []
        self._buckets: Dict[Tuple[int, int, int], List[int]] = defaultdict(list)

        # Edges and their twinned half-edges
        self._edges: List[Edge] = []
        self._half_edges: List[HalfEdge] = []
        self._edge_ids: Dict[EdgeKey, int] = {}
        self._outgoing: Dict[int, Dict[int, int]] = defaultdict(dict)
        self._point_edges: Dict[int, List[int]] = defaultdict(list)

        # Triangles
        self._triangles: List[Triangle] = []
        self._edge_triangles: Dict[EdgeKey, List[Tuple[int, int]]] = defaultdict(list)
        self._point_triangles: Dict[int, Set[int]] = defaultdict(set)

        # Voronoi cells
        self._cells: List[VoronoiCell] = []
        self._cell_by_site: Dict[int, int] = {}
        self._edge_cells: Dict[EdgeKey, List[int]] = defaultdict(list)
        self._point_cells: Dict[int, Set[int]] = defaultdict(set)

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    def _bucket_key(self, position: np.ndarray) -> Tuple[int, int, int]:
        return tuple(int(math.floor(c / self._tolerance)) for c in position)

    @staticmethod
    def _as_position(position) -> np.ndarray:
        pos = np.asarray(position, dtype=np.float64).reshape(-1)
        if pos.shape == (2,):
            pos = np.append(pos, 0.0)
        if pos.shape != (3,):
            raise ValueError(f"Point position must have 2 or 3 components, got {pos.shape}")
        if not np.all(np.isfinite(pos)):
            raise ValueError(f"Point position must be finite, got {pos}")
        return pos

    def _find_point(self, pos: np.ndarray) -> Optional[int]:
        kx, ky, kz = self._bucket_key(pos)
        # A point within tolerance is at most one bucket away on each axis
        for dx, dy, dz in itertools.product((-1, 0, 1), repeat=3):
            for pid in self._buckets.get((kx + dx, ky + dy, kz + dz), ()):
                if np.all(np.abs(self._points[pid].position - pos) <= self._tolerance):
                    return pid
        return None

    def find_point(self, position) -> Optional[int]:
        """Return the id of a stored point within tolerance of position, if any."""
        pos = self._as_position(position)
        with self._lock:
            return self._find_point(pos)

    def register_point(self, position) -> int:
        """
        Return the id of the point at position, creating it if needed.

        Positions within tolerance of an existing point resolve to that
        point, so registering the same position twice is idempotent.
        """
        pos = self._as_position(position)
        with self._lock:
            existing = self._find_point(pos)
            if existing is not None:
                return existing
            pid = len(self._points)
            self._points.append(Point(index=pid, position=pos))
            self._buckets[self._bucket_key(pos)].append(pid)
            return pid

    def point(self, pid: int) -> Point:
        return self._points[pid]

    def position(self, pid: int) -> np.ndarray:
        return self._points[pid].position

    def positions(self, ids: Iterable[int]) -> np.ndarray:
        return np.array([self._points[pid].position for pid in ids], dtype=np.float64).reshape(-1, 3)

    @property
    def points(self) -> List[Point]:
        with self._lock:
            return list(self._points)

    @property
    def n_points(self) -> int:
        return len(self._points)

    def require_point(self, pid: int) -> None:
        """Raise KeyError for an unknown point id."""
        if not 0 <= pid < len(self._points):
            raise KeyError(f"Unknown point id {pid}")

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def register_edge(self, a: int, b: int) -> int:
        """
        Return the id of the undirected edge ab, creating its half-edge pair once.

        Raises:
            ValueError: If a == b
            KeyError: If either point is unknown
        """
        if a == b:
            raise ValueError(f"Edge endpoints must differ, got {a} twice")
        key = EdgeKey.of(a, b)
        with self._lock:
            eid = self._edge_ids.get(key)
            if eid is not None:
                return eid
            self.require_point(a)
            self.require_point(b)

            forward = HalfEdge(index=len(self._half_edges), origin=key.a, key=key)
            backward = HalfEdge(index=forward.index + 1, origin=key.b, key=key)
            forward.twin = backward.index
            backward.twin = forward.index
            self._half_edges.extend((forward, backward))

            eid = len(self._edges)
            self._edges.append(Edge(index=eid, key=key, half_edges=(forward.index, backward.index)))
            self._edge_ids[key] = eid
            self._outgoing[key.a][key.b] = forward.index
            self._outgoing[key.b][key.a] = backward.index
            self._point_edges[key.a].append(eid)
            self._point_edges[key.b].append(eid)
            return eid

    def edge(self, eid: int) -> Edge:
        return self._edges[eid]

    def edge_id(self, key: EdgeKey) -> Optional[int]:
        return self._edge_ids.get(EdgeKey.of(*key))

    def edge_between(self, a: int, b: int) -> Optional[Edge]:
        eid = self._edge_ids.get(EdgeKey.of(a, b))
        return None if eid is None else self._edges[eid]

    def half_edge(self, hid: int) -> HalfEdge:
        return self._half_edges[hid]

    def half_edge_between(self, origin: int, destination: int) -> Optional[HalfEdge]:
        hid = self._outgoing.get(origin, {}).get(destination)
        return None if hid is None else self._half_edges[hid]

    @property
    def edges(self) -> List[Edge]:
        with self._lock:
            return list(self._edges)

    @property
    def half_edges(self) -> List[HalfEdge]:
        with self._lock:
            return list(self._half_edges)

    # ------------------------------------------------------------------
    # Triangles
    # ------------------------------------------------------------------

    def add_triangle(self, a: int, b: int, c: int, layer: MeshLayer = MeshLayer.BASE) -> int:
        """
        Register a triangle, wound counter-clockwise seen from outside the sphere.

        The winding is decided here once and never changes afterwards.
        Edges are created as needed and neighbouring triangles are linked
        through the edge-key index.

        Returns:
            The new triangle id
        """
        if len({a, b, c}) < 3:
            raise ValueError(f"Triangle requires three distinct points, got {(a, b, c)}")
        with self._lock:
            for pid in (a, b, c):
                self.require_point(pid)
            if spherical_orientation(self.position(a), self.position(b), self.position(c)) < 0.0:
                b, c = c, b
            return self._insert_triangle([a, b, c], layer)

    def _insert_triangle(self, vertices: List[int], layer: MeshLayer) -> int:
        tid = len(self._triangles)
        tri = Triangle(index=tid, vertices=vertices, layer=layer)
        self._triangles.append(tri)

        for e in range(3):
            u, v = tri.edge(e)
            self.register_edge(u, v)
            key = EdgeKey.of(u, v)
            entries = self._edge_triangles[key]
            if len(entries) == 1:
                other_tid, other_e = entries[0]
                tri.neighbors[e] = other_tid
                self._triangles[other_tid].neighbors[other_e] = tid
            elif len(entries) >= 2:
                logger.error("Non-manifold edge", mesh=self.name, edge=key,
                             triangles=[t for t, _ in entries] + [tid])
            entries.append((tid, e))

            half = self._half_edges[self._outgoing[u][v]]
            if half.face is not None:
                logger.warning("Half-edge already bounds a face, inconsistent winding",
                               mesh=self.name, origin=u, destination=v,
                               face=half.face, triangle=tid)
            else:
                half.face = tid
            self._point_triangles[u].add(tid)

        return tid

    def kill_triangle(self, tid: int) -> None:
        """Mark a triangle dead and unlink it from every index."""
        with self._lock:
            tri = self._triangles[tid]
            if not tri.alive:
                return
            tri.alive = False
            for e in range(3):
                u, v = tri.edge(e)
                key = EdgeKey.of(u, v)
                entries = self._edge_triangles.get(key, [])
                if (tid, e) in entries:
                    entries.remove((tid, e))
                neighbor = tri.neighbors[e]
                if neighbor != NO_NEIGHBOR:
                    other = self._triangles[neighbor]
                    other.neighbors = [NO_NEIGHBOR if n == tid else n for n in other.neighbors]
                    tri.neighbors[e] = NO_NEIGHBOR
                half = self._half_edges[self._outgoing[u][v]]
                if half.face == tid:
                    half.face = None
                self._point_triangles[u].discard(tid)

    def triangle(self, tid: int) -> Triangle:
        return self._triangles[tid]

    def triangles(self, layer: Optional[MeshLayer] = None) -> List[Triangle]:
        """All live triangles, optionally restricted to one layer."""
        with self._lock:
            return [t for t in self._triangles
                    if t.alive and (layer is None or t.layer == layer)]

    def triangles_on_edge(self, key: EdgeKey) -> List[Triangle]:
        with self._lock:
            entries = self._edge_triangles.get(EdgeKey.of(*key), [])
            return [self._triangles[tid] for tid, _ in entries]

    # ------------------------------------------------------------------
    # Adjacency queries
    # ------------------------------------------------------------------

    def edges_at(self, pid: int) -> List[Edge]:
        """All edges touching a point."""
        with self._lock:
            return [self._edges[eid] for eid in self._point_edges.get(pid, [])]

    def triangles_at(self, pid: int, layer: Optional[MeshLayer] = None) -> List[Triangle]:
        """All live triangles touching a point, in creation order."""
        with self._lock:
            tids = sorted(self._point_triangles.get(pid, ()))
            return [self._triangles[tid] for tid in tids
                    if layer is None or self._triangles[tid].layer == layer]

    def cells_bordering(self, edge: Union[int, EdgeKey]) -> List[VoronoiCell]:
        """
        Cells whose boundary contains the edge.

        Args:
            edge: Edge id or EdgeKey
        """
        with self._lock:
            if isinstance(edge, tuple):
                key = EdgeKey.of(*edge)
            else:
                key = self._edges[edge].key
            return [self._cells[cid] for cid in self._edge_cells.get(key, [])]

    def cells_at(self, pid: int) -> List[VoronoiCell]:
        with self._lock:
            return [self._cells[cid] for cid in sorted(self._point_cells.get(pid, ()))]

    def cell(self, cid: int) -> VoronoiCell:
        return self._cells[cid]

    def cell_for_site(self, site: int) -> Optional[VoronoiCell]:
        cid = self._cell_by_site.get(site)
        return None if cid is None else self._cells[cid]

    @property
    def cells(self) -> List[VoronoiCell]:
        with self._lock:
            return list(self._cells)

    def cell_neighbors(self, cid: int) -> List[int]:
        """Ids of cells sharing a boundary edge with cell cid."""
        with self._lock:
            neighbors = set()
            for key in self._cells[cid].edges:
                neighbors.update(self._edge_cells.get(key, []))
            neighbors.discard(cid)
            return sorted(neighbors)

    def sites(self) -> List[int]:
        """Points carrying at least one live base triangle."""
        with self._lock:
            return sorted(
                pid for pid, tids in self._point_triangles.items()
                if any(self._triangles[t].layer == MeshLayer.BASE for t in tids)
            )

    # ------------------------------------------------------------------
    # Voronoi cells
    # ------------------------------------------------------------------

    def publish_cell(self, draft: CellDraft) -> Optional[int]:
        """
        Register a finished cell in a single serialized step.

        The cell's points, edges and dual triangles are added, then the
        cell itself and the edge -> cells and point -> cells maps. A draft
        whose boundary points collapse onto each other is rejected before
        anything is registered.

        Returns:
            The cell id, or None if the draft was rejected
        """
        positions = np.asarray(draft.positions, dtype=np.float64)
        with self._lock:
            existing = self._cell_by_site.get(draft.site)
            if existing is not None:
                logger.warning("Site already has a cell", mesh=self.name,
                               site=draft.site, cell=existing)
                return existing

            resolved = [self._find_point(self._as_position(p)) for p in positions]
            known = [pid for pid in resolved if pid is not None]
            collapsed = len(set(known)) != len(known) or any(
                np.all(np.abs(positions[i] - positions[j]) <= self._tolerance)
                for i in range(len(positions)) for j in range(i + 1, len(positions))
            )
            if len(positions) < 3 or collapsed:
                logger.warning("Cell boundary collapses onto shared points, discarding cell",
                               mesh=self.name, site=draft.site, points=len(positions))
                return None

            boundary = [self.register_point(p) for p in positions]
            n = len(boundary)
            tri_ids = [
                self.add_triangle(boundary[i], boundary[j], boundary[k], layer=MeshLayer.DUAL)
                for i, j, k in draft.triangles
            ]
            boundary_keys = [EdgeKey.of(boundary[i], boundary[(i + 1) % n]) for i in range(n)]
            for key in boundary_keys:
                self.register_edge(key.a, key.b)
            boundary_set = set(boundary_keys)
            interior = sorted({key for tid in tri_ids for key in self._triangles[tid].edge_keys()}
                              - boundary_set)

            cid = len(self._cells)
            cell = VoronoiCell(index=cid, site=draft.site, boundary=boundary,
                               edges=boundary_keys, triangles=tri_ids, interior_edges=interior)
            cell.generate_bounding_box(self.positions(boundary))
            self._cells.append(cell)
            self._cell_by_site[draft.site] = cid

            for key in boundary_keys:
                owners = self._edge_cells[key]
                if len(owners) >= 2:
                    logger.error("Edge already bordered by two cells", mesh=self.name,
                                 edge=key, cells=owners + [cid])
                owners.append(cid)
            for pid in boundary:
                self._point_cells[pid].add(cid)

            return cid

    # ------------------------------------------------------------------
    # Phases and validation
    # ------------------------------------------------------------------

    def advance_state(self) -> MeshState:
        with self._lock:
            if self.state < MeshState.DUAL_MESH:
                self.state = MeshState(self.state + 1)
            return self.state

    def reset_phase(self, target: MeshState) -> None:
        """
        Roll the store back to an earlier phase.

        Resetting to BASE_MESH discards every cell and dual triangle;
        points and edges persist.
        """
        logger.info("Resetting mesh phase", mesh=self.name, target=target.name)
        with self._lock:
            if target == MeshState.UNGENERATED:
                self._clear()
                self.state = MeshState.UNGENERATED
                return
            if target == MeshState.BASE_MESH:
                for tri in self._triangles:
                    if tri.alive and tri.layer == MeshLayer.DUAL:
                        self.kill_triangle(tri.index)
                self._cells.clear()
                self._cell_by_site.clear()
                self._edge_cells.clear()
                self._point_cells.clear()
            self.state = min(self.state, target) if target != MeshState.DUAL_MESH else self.state

    def validate(self, stage: str) -> TopologyReport:
        """
        Check the store's invariants and log what is wrong.

        Never raises: defects are reported in the returned summary and
        logged as errors.
        """
        with self._lock:
            twin_asymmetries = 0
            for half in self._half_edges:
                twin = self._half_edges[half.twin]
                if twin.twin != half.index or twin.origin == half.origin:
                    twin_asymmetries += 1

            overfull = sum(1 for entries in self._edge_triangles.values() if len(entries) > 2)
            cell_edge_defects = sum(1 for owners in self._edge_cells.values()
                                    if len(owners) not in (1, 2))
            open_cell_edges = sum(1 for owners in self._edge_cells.values() if len(owners) == 1)

            base_edge_counts = defaultdict(int)
            for tri in self._triangles:
                if tri.alive and tri.layer == MeshLayer.BASE:
                    for key in tri.edge_keys():
                        base_edge_counts[key] += 1
            closed = (self.state == MeshState.DUAL_MESH and bool(self._cells)
                      and bool(base_edge_counts)
                      and all(count == 2 for count in base_edge_counts.values())
                      and all(site in self._cell_by_site for site in self.sites()))

            live = [t for t in self._triangles if t.alive]
            report = TopologyReport(
                stage=stage,
                points=len(self._points),
                edges=len(self._edges),
                base_triangles=sum(1 for t in live if t.layer == MeshLayer.BASE),
                dual_triangles=sum(1 for t in live if t.layer == MeshLayer.DUAL),
                cells=len(self._cells),
                twin_asymmetries=twin_asymmetries,
                overfull_edges=overfull,
                cell_edge_defects=cell_edge_defects,
                open_cell_edges=open_cell_edges,
                closed=closed,
            )

        logger.info("Topology validated", mesh=self.name, stage=stage,
                    points=report.points, edges=report.edges,
                    base_triangles=report.base_triangles,
                    dual_triangles=report.dual_triangles, cells=report.cells,
                    open_cell_edges=report.open_cell_edges)
        if twin_asymmetries:
            logger.error("Half-edge twin asymmetry", mesh=self.name, stage=stage,
                         count=twin_asymmetries)
        if overfull:
            logger.error("Edges with more than two triangles", mesh=self.name, stage=stage,
                         count=overfull)
        if cell_edge_defects:
            logger.error("Edges with unexpected bordering cell count", mesh=self.name,
                         stage=stage, count=cell_edge_defects)
        if report.closed and report.open_cell_edges:
            logger.error("Cell edges without a neighbouring cell on a closed mesh",
                         mesh=self.name, stage=stage, count=report.open_cell_edges)
        return report
