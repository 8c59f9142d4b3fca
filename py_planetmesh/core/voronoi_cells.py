"""
Voronoi cell assembly on top of the primal spherical mesh.

For every site the circumcenters of its incident base triangles form the
cell boundary. They are projected onto the site's tangent plane, cleaned
of duplicates and collinear runs, ordered by angle and triangulated with
whichever strategy fits the polygon. Drafts are computed independently (in
worker threads when enabled) and published into the shared store one at a
time.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np
import structlog

from ..config import MeshSettings, get_settings
from .entities import CellDraft, MeshLayer, MeshState
from .predicates import angular_order, is_convex_polygon, orientation
from .strategy import run_strategy, select_strategy
from .topology import TopologyStore

logger = structlog.get_logger()


def circumcenter(a, b, c) -> Optional[np.ndarray]:
    """
    Circumcenter of a 3D triangle, in the triangle's plane.

    Returns:
        The circumcenter, or None if the triangle is degenerate
    """
    a = np.asarray(a, dtype=np.float64)
    ab = np.asarray(b, dtype=np.float64) - a
    ac = np.asarray(c, dtype=np.float64) - a
    n = np.cross(ab, ac)
    denom = 2.0 * np.dot(n, n)
    if denom <= 1e-24:
        return None
    offset = (np.dot(ac, ac) * np.cross(n, ab) + np.dot(ab, ab) * np.cross(ac, n)) / denom
    return a + offset


def tangent_basis(normal):
    """
    Orthonormal (u, v) spanning the plane perpendicular to normal.

    (u, v, normal) is right-handed, so counter-clockwise in (u, v) is
    counter-clockwise seen from the tip of the normal.
    """
    n = np.asarray(normal, dtype=np.float64)
    length = np.linalg.norm(n)
    if length == 0.0:
        raise ValueError("Tangent basis needs a non-zero normal")
    n = n / length

    if abs(n[0]) > 1e-12 or abs(n[1]) > 1e-12:
        u = np.array([-n[1], n[0], 0.0])
    else:
        u = np.array([n[2], 0.0, -n[0]])
    u /= np.linalg.norm(u)
    v = np.cross(n, u)
    return u, v / np.linalg.norm(v)


def project_to_plane(points, origin, u, v) -> np.ndarray:
    """Project 3D points to (u, v) coordinates relative to origin."""
    rel = np.asarray(points, dtype=np.float64).reshape(-1, 3) - np.asarray(origin, dtype=np.float64)
    return np.column_stack((rel @ u, rel @ v))


def remove_near_duplicates(points, tolerance: float) -> List[int]:
    """Indices of points to keep, dropping any within tolerance of an earlier one."""
    pts = np.asarray(points, dtype=np.float64)
    kept: List[int] = []
    for i, p in enumerate(pts):
        if all(np.max(np.abs(pts[j] - p)) > tolerance for j in kept):
            kept.append(i)
    return kept


def remove_collinear(polygon, tolerance: float) -> List[int]:
    """
    Indices of polygon vertices to keep, dropping vertices on a straight run.

    Repeats until every remaining vertex turns, or fewer than three remain.
    """
    kept = list(range(len(polygon)))
    changed = True
    while changed and len(kept) > 3:
        changed = False
        for pos in range(len(kept)):
            prev_i = kept[pos - 1]
            cur_i = kept[pos]
            next_i = kept[(pos + 1) % len(kept)]
            if abs(orientation(polygon[prev_i], polygon[cur_i], polygon[next_i])) <= tolerance:
                del kept[pos]
                changed = True
                break
    return kept


@dataclass
class GenerationProgress:
    """Counters for a cell assembly run."""

    total: int = 0
    current: int = 0
    failed: int = 0

    @property
    def built(self) -> int:
        return self.current - self.failed


class VoronoiCellAssembler:
    """Builds Voronoi cells for the sites of a primal mesh."""

    def __init__(self, store: TopologyStore, settings: Optional[MeshSettings] = None):
        self.store = store
        self.settings = settings or store.settings or get_settings()
        self.tolerance = self.settings.tolerance
        self.progress = GenerationProgress()

    def compute_cell(self, site: int) -> Optional[CellDraft]:
        """
        Compute the cell around site without touching the store.

        Any degeneracy discards the whole cell.

        Returns:
            A draft ready for publication, or None
        """
        self.store.require_point(site)
        triangles = self.store.triangles_at(site, layer=MeshLayer.BASE)
        if len(triangles) < 3:
            logger.warning("Site has too few incident triangles", site=site,
                           triangles=len(triangles))
            return None

        centers = []
        for tri in triangles:
            center = circumcenter(*self.store.positions(tri.vertices))
            if center is None:
                logger.warning("Degenerate incident triangle", site=site, triangle=tri.index)
                return None
            centers.append(center)
        centers = np.asarray(centers)

        site_pos = self.store.position(site)
        u, v = tangent_basis(site_pos)
        projected = project_to_plane(centers, site_pos, u, v)

        keep = remove_near_duplicates(projected, self.tolerance)
        centers, projected = centers[keep], projected[keep]

        order = angular_order(projected, center=(0.0, 0.0))
        centers, projected = centers[order], projected[order]

        # Neighbouring cells share these vertices, so the boundary keeps all of
        # them; only the triangulation skips the ones on a straight run.
        corners = remove_collinear(projected, self.tolerance)
        if len(corners) < 3:
            logger.warning("Cell boundary collapsed", site=site, points=len(corners))
            return None

        convex = is_convex_polygon(projected[corners], self.tolerance)
        strategy = select_strategy(len(corners), convex, self.settings)
        local = run_strategy(strategy, projected[corners], centers[corners], self.settings)
        if not local:
            logger.warning("Cell triangulation failed", site=site, strategy=strategy.value,
                           points=len(corners))
            return None

        logger.debug("Cell computed", site=site, points=len(projected),
                     corners=len(corners), triangles=len(local), strategy=strategy.value)
        return CellDraft(
            site=site,
            positions=centers,
            triangles=[tuple(corners[v] for v in t.vertices) for t in local],
            strategy=strategy.value,
        )

    def _compute_isolated(self, site: int) -> Optional[CellDraft]:
        try:
            return self.compute_cell(site)
        except (ValueError, KeyError, ArithmeticError) as e:
            logger.error("Cell computation failed", site=site, error=str(e))
            return None

    def build_voronoi_cell(self, site: int) -> Optional[int]:
        """Compute and publish the cell around site; None if it failed."""
        draft = self.compute_cell(site)
        if draft is None:
            return None
        return self.store.publish_cell(draft)

    def build_all(self, site_ids: Optional[Iterable[int]] = None,
                  parallel: Optional[bool] = None,
                  max_workers: Optional[int] = None) -> List[int]:
        """
        Build cells for many sites.

        Drafts are computed concurrently when enabled, then published in
        site order so cell ids are deterministic.

        Args:
            site_ids: Sites to build; every site of the primal mesh when omitted
            parallel: Override settings.parallel_cells
            max_workers: Override settings.max_workers

        Returns:
            Ids of the published cells
        """
        sites = list(site_ids) if site_ids is not None else self.store.sites()
        parallel = self.settings.parallel_cells if parallel is None else parallel
        workers = max_workers or self.settings.max_workers
        self.progress = GenerationProgress(total=len(sites))

        logger.info("Building Voronoi cells", mesh=self.store.name, sites=len(sites),
                    parallel=parallel, workers=workers if parallel else 1)

        if parallel and len(sites) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                drafts = list(executor.map(self._compute_isolated, sites))
        else:
            drafts = [self._compute_isolated(site) for site in sites]

        cell_ids = []
        for draft in drafts:
            self.progress.current += 1
            cid = None if draft is None else self.store.publish_cell(draft)
            if cid is None:
                self.progress.failed += 1
                continue
            cell_ids.append(cid)

        if self.store.state == MeshState.BASE_MESH:
            self.store.advance_state()
        else:
            logger.warning("Cells built outside the base mesh phase", mesh=self.store.name,
                           state=self.store.state.name)

        logger.info("Voronoi cells built", mesh=self.store.name, built=self.progress.built,
                    failed=self.progress.failed, total=self.progress.total)
        return cell_ids
