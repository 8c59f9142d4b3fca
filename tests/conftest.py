"""Shared fixtures for the mesh test suite."""

import numpy as np
import pytest

from py_planetmesh.config import MeshSettings


@pytest.fixture
def settings():
    """Deterministic settings: sequential cell assembly, validation on."""
    return MeshSettings(parallel_cells=False, validate_topology=True)


@pytest.fixture
def icosahedron():
    """Unit icosahedron vertices; every vertex has five incident faces."""
    phi = (1.0 + 5.0 ** 0.5) / 2.0
    vertices = []
    for s1 in (-1.0, 1.0):
        for s2 in (-1.0, 1.0):
            vertices.append((0.0, s1, s2 * phi))
            vertices.append((s1, s2 * phi, 0.0))
            vertices.append((s2 * phi, 0.0, s1))
    vertices = np.array(vertices)
    return vertices / np.linalg.norm(vertices, axis=1)[:, None]


@pytest.fixture
def fibonacci_sphere():
    """200 well-spread points on the unit sphere."""
    n = 200
    i = np.arange(n, dtype=np.float64) + 0.5
    phi = np.arccos(1.0 - 2.0 * i / n)
    theta = np.pi * (1.0 + 5.0 ** 0.5) * i
    return np.column_stack((np.cos(theta) * np.sin(phi),
                            np.sin(theta) * np.sin(phi),
                            np.cos(phi)))


@pytest.fixture
def l_shape():
    """Counter-clockwise L-shaped polygon of area 3."""
    return np.array([(0.0, 0.0), (2.0, 0.0), (2.0, 1.0), (1.0, 1.0), (1.0, 2.0), (0.0, 2.0)])


@pytest.fixture
def u_shape():
    """U-shaped polygon of area 7 whose area centroid lies outside it."""
    return np.array([(0.0, 0.0), (3.0, 0.0), (3.0, 3.0), (2.0, 3.0),
                     (2.0, 1.0), (1.0, 1.0), (1.0, 3.0), (0.0, 3.0)])


@pytest.fixture
def star_polygon():
    """Eight-pointed star with thin spikes; several boundary edges are not Delaunay."""
    points = []
    for k in range(16):
        angle = np.pi * k / 8.0
        radius = 1.0 if k % 2 == 0 else 0.3
        points.append((radius * np.cos(angle), radius * np.sin(angle)))
    return np.array(points)


@pytest.fixture(params=[7, 23])
def random_sphere(request):
    """1000 normally-distributed points on the unit sphere, unevenly spaced."""
    rng = np.random.default_rng(request.param)
    points = rng.normal(size=(1000, 3))
    return points / np.linalg.norm(points, axis=1)[:, None]
