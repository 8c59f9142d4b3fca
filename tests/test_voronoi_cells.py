"""Tests for Voronoi cell assembly."""

import numpy as np
import pytest

from py_planetmesh.core.entities import CellDraft, MeshLayer, MeshState
from py_planetmesh.core.predicates import is_convex_polygon, segments_intersect_properly
from py_planetmesh.core.primal_mesh import load_primal_mesh
from py_planetmesh.core.topology import TopologyStore
from py_planetmesh.core.voronoi_cells import (
    GenerationProgress,
    VoronoiCellAssembler,
    circumcenter,
    project_to_plane,
    remove_collinear,
    remove_near_duplicates,
    tangent_basis,
)


@pytest.fixture
def icosahedron_store(settings, icosahedron):
    store = TopologyStore(settings, name="icosahedron")
    load_primal_mesh(store, icosahedron)
    return store


def is_simple_polygon(points):
    n = len(points)
    for i in range(n):
        for j in range(i + 1, n):
            if abs(i - j) in (1, n - 1):
                continue
            if segments_intersect_properly(points[i], points[(i + 1) % n],
                                           points[j], points[(j + 1) % n]):
                return False
    return True


class TestHelpers:
    """Test the geometric helpers."""

    def test_circumcenter_equidistant(self):
        a, b, c = np.array([1.0, 0, 0]), np.array([0, 1.0, 0]), np.array([0, 0, 1.0])
        center = circumcenter(a, b, c)
        distances = [np.linalg.norm(center - p) for p in (a, b, c)]
        np.testing.assert_allclose(distances, distances[0])
        np.testing.assert_allclose(center, [1 / 3, 1 / 3, 1 / 3])

    def test_circumcenter_degenerate(self):
        assert circumcenter((0, 0, 0), (1, 1, 1), (2, 2, 2)) is None

    @pytest.mark.parametrize("normal", [(0, 0, 1), (1, 0, 0), (0, 1, 0), (1, 2, 3), (0, 0, -2)])
    def test_tangent_basis_orthonormal(self, normal):
        u, v = tangent_basis(normal)
        n = np.asarray(normal, dtype=float) / np.linalg.norm(normal)
        assert np.dot(u, v) == pytest.approx(0.0, abs=1e-12)
        assert np.dot(u, n) == pytest.approx(0.0, abs=1e-12)
        assert np.dot(v, n) == pytest.approx(0.0, abs=1e-12)
        assert np.linalg.norm(u) == pytest.approx(1.0)
        np.testing.assert_allclose(np.cross(u, v), n, atol=1e-12)

    def test_tangent_basis_zero_normal(self):
        with pytest.raises(ValueError):
            tangent_basis((0, 0, 0))

    def test_project_to_plane(self):
        u, v = np.array([1.0, 0, 0]), np.array([0, 1.0, 0])
        projected = project_to_plane([(1, 2, 5), (3, 4, 5)], (1, 1, 5), u, v)
        np.testing.assert_allclose(projected, [[0, 1], [2, 3]])

    def test_remove_near_duplicates(self):
        points = [(0, 0), (1, 0), (1e-8, 0), (0, 1)]
        assert remove_near_duplicates(points, 1e-6) == [0, 1, 3]

    def test_remove_collinear(self):
        square_with_midpoint = [(0, 0), (1, 0), (2, 0), (2, 2), (0, 2)]
        assert remove_collinear(square_with_midpoint, 1e-6) == [0, 2, 3, 4]

    def test_progress(self):
        progress = GenerationProgress(total=3, current=3, failed=1)
        assert progress.built == 2


class TestSingleCell:
    """Test building one cell."""

    def test_icosahedron_site_is_pentagon(self, icosahedron_store):
        """A site of the icosahedron has a five-point cell."""
        assembler = VoronoiCellAssembler(icosahedron_store)
        draft = assembler.compute_cell(0)
        assert len(draft.positions) == 5
        assert len(draft.triangles) == 3
        assert draft.strategy == "fan"

        cid = assembler.build_voronoi_cell(0)
        cell = icosahedron_store.cell(cid)
        assert cell.site == 0
        assert len(cell.boundary) == 5
        assert len(cell.edges) == 5
        assert len(cell.interior_edges) == 2
        assert icosahedron_store.state == MeshState.BASE_MESH

    def test_cell_boundary_is_simple_and_convex(self, icosahedron_store):
        assembler = VoronoiCellAssembler(icosahedron_store)
        cell = icosahedron_store.cell(assembler.build_voronoi_cell(3))
        site = icosahedron_store.position(cell.site)
        u, v = tangent_basis(site)
        polygon = project_to_plane(icosahedron_store.positions(cell.boundary), site, u, v)
        assert is_simple_polygon(polygon)
        assert is_convex_polygon(polygon)

    def test_compute_cell_does_not_mutate(self, icosahedron_store):
        points = icosahedron_store.n_points
        VoronoiCellAssembler(icosahedron_store).compute_cell(0)
        assert icosahedron_store.n_points == points
        assert icosahedron_store.triangles(MeshLayer.DUAL) == []

    def test_site_without_triangles(self, settings):
        store = TopologyStore(settings)
        site = store.register_point((0, 0, 1))
        assert VoronoiCellAssembler(store).build_voronoi_cell(site) is None

    def test_unknown_site(self, icosahedron_store):
        with pytest.raises(KeyError):
            VoronoiCellAssembler(icosahedron_store).compute_cell(99)


class TestAllCells:
    """Test assembling the full dual mesh."""

    def test_icosahedron_dual(self, icosahedron_store):
        cell_ids = VoronoiCellAssembler(icosahedron_store).build_all()
        store = icosahedron_store

        assert len(cell_ids) == 12
        assert store.state == MeshState.DUAL_MESH
        assert store.n_points == 12 + 20
        for cid in cell_ids:
            assert len(store.cell_neighbors(cid)) == 5
            for key in store.cell(cid).edges:
                assert len(store.cells_bordering(key)) == 2

        report = store.validate("test")
        assert report.ok
        assert report.closed
        assert report.open_cell_edges == 0
        assert report.dual_triangles == 36

    def test_dual_is_closed_surface(self, icosahedron_store):
        """The dual layer alone satisfies V - E + F == 2."""
        VoronoiCellAssembler(icosahedron_store).build_all()
        dual = icosahedron_store.triangles(MeshLayer.DUAL)
        vertices = {v for t in dual for v in t.vertices}
        edges = {key for t in dual for key in t.edge_keys()}
        assert len(vertices) - len(edges) + len(dual) == 2

    def test_half_edge_twins(self, icosahedron_store):
        VoronoiCellAssembler(icosahedron_store).build_all()
        for half in icosahedron_store.half_edges:
            twin = icosahedron_store.half_edge(half.twin)
            assert twin.twin == half.index
            assert twin.origin == half.destination

    def test_parallel_matches_sequential(self, settings, fibonacci_sphere):
        sequential = TopologyStore(settings)
        load_primal_mesh(sequential, fibonacci_sphere)
        VoronoiCellAssembler(sequential).build_all(parallel=False)

        parallel = TopologyStore(settings)
        load_primal_mesh(parallel, fibonacci_sphere)
        VoronoiCellAssembler(parallel).build_all(parallel=True, max_workers=4)

        assert len(parallel.cells) == len(sequential.cells) == len(fibonacci_sphere)
        for left, right in zip(sequential.cells, parallel.cells):
            assert left.site == right.site
            assert left.boundary == right.boundary
        report = parallel.validate("test")
        assert report.ok
        assert report.open_cell_edges == 0

    def test_subset_of_sites(self, icosahedron_store):
        assembler = VoronoiCellAssembler(icosahedron_store)
        cell_ids = assembler.build_all(site_ids=[0, 1, 2])
        assert len(cell_ids) == 3
        assert assembler.progress.total == 3
        assert assembler.progress.failed == 0

    def test_partial_dual_is_not_closed(self, icosahedron_store):
        """Open edges around a subset of cells are expected, not defects."""
        VoronoiCellAssembler(icosahedron_store).build_all(site_ids=[0, 1, 2])
        report = icosahedron_store.validate("partial")
        assert not report.closed
        assert report.open_cell_edges > 0
        assert report.ok

    def test_open_edge_on_closed_dual_is_defect(self, icosahedron_store):
        """A cell missing a boundary vertex leaves three unshared edges."""
        assembler = VoronoiCellAssembler(icosahedron_store)
        draft = assembler.compute_cell(0)
        truncated = CellDraft(site=0, positions=draft.positions[:4],
                              triangles=[(0, 1, 2), (0, 2, 3)])
        icosahedron_store.publish_cell(truncated)
        assembler.build_all(site_ids=range(1, 12))

        report = icosahedron_store.validate("truncated")
        assert report.closed
        assert report.open_cell_edges == 3
        assert not report.ok


class TestUnevenSphere:
    """Test cell assembly on randomly spaced sites."""

    def test_every_cell_edge_is_shared(self, settings, random_sphere):
        store = TopologyStore(settings)
        load_primal_mesh(store, random_sphere)
        assembler = VoronoiCellAssembler(store)
        cell_ids = assembler.build_all()
        report = store.validate("random")

        assert len(cell_ids) == len(random_sphere)
        assert assembler.progress.failed == 0
        assert report.closed
        assert report.open_cell_edges == 0
        assert report.ok

    def test_boundary_keeps_nearly_straight_vertices(self, settings, random_sphere):
        """Every incident circumcenter stays on the boundary, triangulated or not."""
        store = TopologyStore(settings)
        load_primal_mesh(store, random_sphere)
        assembler = VoronoiCellAssembler(store)
        for site in store.sites():
            draft = assembler.compute_cell(site)
            incident = store.triangles_at(site, layer=MeshLayer.BASE)
            assert len(draft.positions) == len(incident)
            for tri in draft.triangles:
                assert all(0 <= v < len(draft.positions) for v in tri)


class TestFailureIsolation:
    """Test that an exception in one cell does not abort assembly."""

    @pytest.fixture
    def origin_store(self, settings):
        """Site 0 sits at the origin, where no tangent plane exists."""
        store = TopologyStore(settings)
        apex = store.register_point((0.0, 0.0, 0.0))
        rim = [store.register_point(p) for p in [(1, 0, 1), (0, 1, 1), (-1, 0, 1), (0, -1, 1)]]
        for i in range(4):
            store.add_triangle(apex, rim[i], rim[(i + 1) % 4])
        return store

    def test_compute_cell_raises(self, origin_store):
        with pytest.raises(ValueError):
            VoronoiCellAssembler(origin_store).compute_cell(0)

    @pytest.mark.parametrize("parallel", [False, True])
    def test_failed_site_is_counted(self, origin_store, parallel):
        assembler = VoronoiCellAssembler(origin_store)
        cell_ids = assembler.build_all(site_ids=[0, 1], parallel=parallel, max_workers=2)
        assert cell_ids == []
        assert assembler.progress.total == 2
        assert assembler.progress.failed == 2
