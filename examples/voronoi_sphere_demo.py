#!/usr/bin/env python3
"""
Demonstration of spherical Voronoi cell generation.

This script walks through the main stages:
1. Spreading sites over a sphere
2. Loading the primal (Delaunay) mesh
3. Assembling Voronoi cells
4. Querying the dual graph
5. Triangulating a concave polygon directly

Log level and format come from the PLANETMESH_LOG_LEVEL and
PLANETMESH_LOG_FORMAT environment variables.
"""

import numpy as np

from py_planetmesh import (
    MeshLayer,
    TopologyStore,
    VoronoiCellAssembler,
    get_settings,
    configure_logging,
    load_primal_mesh,
    triangulate_constrained,
)
from py_planetmesh.utils import timer


def fibonacci_sphere(n, radius=1.0):
    i = np.arange(n, dtype=np.float64) + 0.5
    phi = np.arccos(1.0 - 2.0 * i / n)
    theta = np.pi * (1.0 + 5.0 ** 0.5) * i
    points = np.column_stack((np.cos(theta) * np.sin(phi),
                              np.sin(theta) * np.sin(phi),
                              np.cos(phi)))
    return points * radius


def main():
    settings = get_settings()
    configure_logging(settings=settings)

    print("=== Spherical Voronoi Demo ===\n")

    # 1. Sites
    print("1. Spreading sites on the unit sphere...")
    sites = fibonacci_sphere(500)
    print(f"   - {len(sites)} sites")

    # 2. Primal mesh
    print("\n2. Loading the primal mesh (spherical hull)...")
    store = TopologyStore(settings, name="demo")
    with timer.timed("demo", "load_primal_mesh"):
        load_primal_mesh(store, sites)
    print(f"   - Points: {store.n_points}")
    print(f"   - Edges: {len(store.edges)}")
    print(f"   - Base triangles: {len(store.triangles(MeshLayer.BASE))}")

    # 3. Voronoi cells
    print("\n3. Assembling Voronoi cells...")
    assembler = VoronoiCellAssembler(store, settings)
    with timer.timed("demo", "build_voronoi_cells"):
        cell_ids = assembler.build_all()
    sizes = [len(store.cell(cid).boundary) for cid in cell_ids]
    print(f"   - Cells built: {len(cell_ids)} (failed: {assembler.progress.failed})")
    print(f"   - Boundary sizes: {dict(zip(*np.unique(sizes, return_counts=True)))}")
    print(f"   - Mesh state: {store.state.name}")

    # 4. Dual graph queries
    print("\n4. Querying the dual graph...")
    cell = store.cell(cell_ids[0])
    print(f"   - Cell {cell.index} around site {cell.site}")
    print(f"     neighbours: {store.cell_neighbors(cell.index)}")
    print(f"     centre: {np.round(cell.center, 4)}")
    edge = cell.edges[0]
    print(f"   - Edge {tuple(edge)} borders cells "
          f"{[c.index for c in store.cells_bordering(edge)]}")
    report = store.validate("demo")
    print(f"   - Topology ok: {report.ok} (open cell edges: {report.open_cell_edges})")

    # 5. Direct constrained triangulation
    print("\n5. Triangulating an L-shaped polygon...")
    l_shape = [(0, 0), (2, 0), (2, 1), (1, 1), (1, 2), (0, 2)]
    triangles = triangulate_constrained(l_shape, settings=settings)
    for tri in triangles:
        print(f"   - {tri.vertices} constrained={tri.constrained}")

    print("\nStage runtimes:")
    for stage, seconds in sorted(timer.get_all_runtimes().items()):
        print(f"   - {stage}: {seconds:.3f}s")

    print("\n=== Demo Complete ===")


if __name__ == "__main__":
    main()
