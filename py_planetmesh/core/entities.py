"""
Mesh entities shared by the topology store and the triangulators.

All cross references (twin half-edges, neighbouring triangles, cell
boundaries) are integer indices into flat, append-only stores. Removing a
triangle only clears its ``alive`` flag.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, NamedTuple, Optional, Tuple

import numpy as np

NO_NEIGHBOR = -1


class EdgeType(IntEnum):
    """Edge classification written by downstream tectonics passes."""

    UNDETERMINED = 0
    TRANSFORM = 1
    DIVERGENT = 2
    CONVERGENT = 3


class MeshLayer(IntEnum):
    """Primal (base) triangles versus Voronoi cell (dual) triangles."""

    BASE = 0
    DUAL = 1


class MeshState(IntEnum):
    """Generation phase of a topology store."""

    UNGENERATED = 0
    BASE_MESH = 1
    DUAL_MESH = 2


class EdgeKey(NamedTuple):
    """Canonical undirected edge identity, smaller point index first."""

    a: int
    b: int

    @classmethod
    def of(cls, p: int, q: int) -> "EdgeKey":
        return cls(p, q) if p <= q else cls(q, p)

    def other(self, p: int) -> int:
        """Return the endpoint that is not p."""
        if p == self.a:
            return self.b
        if p == self.b:
            return self.a
        raise ValueError(f"Point {p} is not an endpoint of {self}")


@dataclass
class Point:
    """A mesh vertex with annotation fields carried for downstream passes."""

    index: int
    position: np.ndarray
    height: float = 0.0
    stress: float = 0.0

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float64)


@dataclass
class HalfEdge:
    """One directed traversal of an edge; ``face`` is the triangle on its left."""

    index: int
    origin: int
    key: EdgeKey
    twin: int = NO_NEIGHBOR
    face: Optional[int] = None

    @property
    def destination(self) -> int:
        return self.key.other(self.origin)


@dataclass
class Edge:
    """An undirected edge owning exactly two twinned half-edges."""

    index: int
    key: EdgeKey
    half_edges: Tuple[int, int]
    edge_type: EdgeType = EdgeType.UNDETERMINED
    stress_magnitude: float = 0.0


@dataclass
class Triangle:
    """
    A triangle in either a local triangulation arena or the topology store.

    Edge ``e`` runs from ``vertices[e]`` to ``vertices[(e + 1) % 3]``;
    ``neighbors[e]`` and ``constrained[e]`` describe that edge.
    """

    index: int
    vertices: List[int]
    neighbors: List[int] = field(default_factory=lambda: [NO_NEIGHBOR] * 3)
    constrained: List[bool] = field(default_factory=lambda: [False] * 3)
    alive: bool = True
    layer: MeshLayer = MeshLayer.BASE

    def edge(self, e: int) -> Tuple[int, int]:
        return self.vertices[e], self.vertices[(e + 1) % 3]

    def edge_keys(self) -> List[EdgeKey]:
        return [EdgeKey.of(*self.edge(e)) for e in range(3)]

    def local_edge(self, p: int, q: int) -> int:
        """Index of the edge joining p and q in either direction, -1 if absent."""
        for e in range(3):
            u, v = self.edge(e)
            if (u == p and v == q) or (u == q and v == p):
                return e
        return -1

    def opposite_vertex(self, e: int) -> int:
        return self.vertices[(e + 2) % 3]


@dataclass
class VoronoiCell:
    """The dual polygon around one site."""

    index: int
    site: int
    boundary: List[int]
    edges: List[EdgeKey]
    triangles: List[int]
    interior_edges: List[EdgeKey] = field(default_factory=list)
    bounding_box: Optional[Tuple[np.ndarray, np.ndarray]] = None
    center: Optional[np.ndarray] = None

    # Annotations written by tectonics and biome passes
    continent_index: int = -1
    height: float = 0.0
    stress: float = 0.0
    is_border_tile: bool = False

    def generate_bounding_box(self, positions: np.ndarray, padding: float = 1.1) -> None:
        """
        Compute center and a padded axis-aligned bounding box.

        Args:
            positions: (n, 3) positions of the boundary points, in order
            padding: Box growth factor around the center
        """
        positions = np.asarray(positions, dtype=np.float64)
        self.center = positions.mean(axis=0)
        half_size = (positions.max(axis=0) - positions.min(axis=0)) * padding / 2.0
        self.bounding_box = (self.center - half_size, self.center + half_size)


@dataclass
class CellDraft:
    """
    A finished but unpublished Voronoi cell.

    Built privately by one assembly task; ``triangles`` index into
    ``positions``, which holds the boundary points in polygon order.
    Boundary points on a straight run belong to no triangle.
    """

    site: int
    positions: np.ndarray
    triangles: List[Tuple[int, int, int]]
    strategy: str = ""
