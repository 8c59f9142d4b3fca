"""
End-to-end mesh generation: primal mesh -> Voronoi cells -> validation.
"""

from typing import Optional

import structlog

from .config import MeshSettings, get_settings
from .core.primal_mesh import load_primal_mesh
from .core.topology import TopologyStore
from .core.voronoi_cells import VoronoiCellAssembler
from .utils.timing import FunctionTimer, timer as default_timer

logger = structlog.get_logger()


def build_planet_mesh(positions, faces=None, settings: Optional[MeshSettings] = None,
                      name: str = "planet", timer: Optional[FunctionTimer] = None) -> TopologyStore:
    """
    Build the primal mesh and its Voronoi cells for one body.

    Args:
        positions: (n, 3) vertex positions on the sphere
        faces: Optional (m, 3) primal faces; the spherical hull when omitted
        settings: Mesh settings; the process-wide settings when omitted
        name: Store name used in logs and timings
        timer: Timer receiving stage runtimes; the shared timer when omitted

    Returns:
        The populated store, in the DUAL_MESH phase
    """
    settings = settings or get_settings()
    timer = timer or default_timer
    store = TopologyStore(settings, name=name)

    logger.info("Generating planet mesh", mesh=name, vertices=len(positions))

    with timer.timed(name, "load_primal_mesh"):
        load_primal_mesh(store, positions, faces)

    with timer.timed(name, "build_voronoi_cells"):
        VoronoiCellAssembler(store, settings).build_all()

    if settings.validate_topology:
        with timer.timed(name, "validate"):
            report = store.validate("dual_mesh")
        if not report.ok:
            logger.error("Generated mesh has topology defects", mesh=name,
                         twin_asymmetries=report.twin_asymmetries,
                         overfull_edges=report.overfull_edges,
                         cell_edge_defects=report.cell_edge_defects)

    logger.info("Planet mesh generated", mesh=name, points=store.n_points,
                cells=len(store.cells), state=store.state.name)
    return store
