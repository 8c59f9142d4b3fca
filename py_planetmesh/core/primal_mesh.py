"""Ingestion of the primal spherical triangle mesh produced upstream."""

from typing import List

import numpy as np
import structlog
from scipy.spatial import ConvexHull

from .entities import MeshLayer, MeshState
from .topology import TopologyStore

logger = structlog.get_logger()


def load_primal_mesh(store: TopologyStore, positions, faces=None) -> List[int]:
    """
    Register upstream vertices and faces as the base mesh of a store.

    For points on a sphere the convex hull is the spherical Delaunay
    triangulation, so the hull facets are used when no faces are given.

    Args:
        store: Store in the UNGENERATED phase
        positions: (n, 3) vertex positions on the sphere
        faces: Optional (m, 3) vertex index triples

    Returns:
        Point ids in the order of positions

    Raises:
        ValueError: If the positions or faces have the wrong shape
    """
    positions = np.asarray(positions, dtype=np.float64)
    if positions.ndim != 2 or positions.shape[1] != 3:
        raise ValueError(f"positions must have shape (n, 3), got {positions.shape}")
    if store.state != MeshState.UNGENERATED:
        logger.warning("Loading a primal mesh into a generated store", mesh=store.name,
                       state=store.state.name)

    if faces is None:
        if len(positions) < 4:
            raise ValueError("At least four points are needed to build a spherical hull")
        faces = ConvexHull(positions).simplices
    faces = np.asarray(faces, dtype=np.int64)
    if faces.ndim != 2 or faces.shape[1] != 3:
        raise ValueError(f"faces must have shape (m, 3), got {faces.shape}")

    point_ids = [store.register_point(p) for p in positions]
    if len(set(point_ids)) != len(point_ids):
        logger.warning("Duplicate primal vertices merged", mesh=store.name,
                       vertices=len(point_ids), unique=len(set(point_ids)))

    skipped = 0
    for a, b, c in faces:
        ids = (point_ids[a], point_ids[b], point_ids[c])
        if len(set(ids)) < 3:
            skipped += 1
            continue
        store.add_triangle(*ids, layer=MeshLayer.BASE)
    if skipped:
        logger.warning("Skipped collapsed primal faces", mesh=store.name, faces=skipped)

    store.advance_state()
    logger.info("Primal mesh loaded", mesh=store.name, points=store.n_points,
                triangles=len(faces) - skipped)

    if store.settings.validate_topology:
        store.validate("base_mesh")
    return point_ids
