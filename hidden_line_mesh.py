"""
Mesh and wireframe geometry, feature-edge extraction, and file loading.

Pipeline stage
--------------
This module converts host buffers (or a JSON / STL file) into an immutable
`Mesh` of facets plus an optional explicit `Wireframe`, and extracts the
candidate 3-D edges that the rest of the pipeline projects and tests.

Input / output
--------------
Input is a flat position buffer and a matching vertex-normal buffer (stride
3), with an optional triangle index buffer. Output of edge extraction is a
list of `LineSegment3` in view space: boundary edges, silhouette edges, and
crease edges, or every unique edge when forced.

Key parameters
--------------
`EdgeConfig.crease_angle_deg` is the dihedral angle above which a shared edge
is drawn as a crease. `EDGE_KEY_DECIMALS` is the rounding used to decide that
two triangles share an edge, which lets flat-shaded meshes with duplicated
per-face vertices still report adjacency.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import trimesh

from hidden_line_errors import MalformedMeshError
from hidden_line_lines import LineSegment3

if TYPE_CHECKING:
    from hidden_line_scene import Scene


logger = logging.getLogger(__name__)

EPS = 1e-12
# Vertex positions are rounded to this many decimals when matching edges
# between triangles.
EDGE_KEY_DECIMALS = 5
DEFAULT_CREASE_ANGLE_DEG = 30.0
# Faces seen within this dot product of edge-on do not face the camera.
FACING_EPSILON = 1e-9


@dataclass
class EdgeConfig:
    """
    Feature-edge classification parameters.

    Parameters
    ----------
    crease_angle_deg : float
        Shared edges whose adjacent face normals differ by more than this
        angle are creases.
    include_hidden_creases : bool
        If True, creases between two faces turned away from the camera are
        emitted too (and normally come out obscured). If False, a crease is
        only emitted when at least one adjacent face faces the camera.
    """

    crease_angle_deg: float = DEFAULT_CREASE_ANGLE_DEG
    include_hidden_creases: bool = False


@dataclass(frozen=True, eq=False)
class Facet:
    """One triangle, used as an occlusion target."""

    points: np.ndarray

    def centroid(self) -> np.ndarray:
        return self.points.mean(axis=0)


@dataclass(frozen=True, eq=False)
class EdgeCandidate:
    """
    Unique geometric mesh edge with its adjacent triangles.

    Parameters
    ----------
    edge : LineSegment3
        Edge in view space, oriented as in the first triangle that uses it.
    adjacent_faces : tuple[int, ...]
        Indices of the triangles sharing the edge, in mesh order.
    adjacent_triangle_a_normal : np.ndarray
        Unit normal of the first adjacent triangle.
    adjacent_triangle_b_normal : np.ndarray | None
        Unit normal of the second adjacent triangle, None on a boundary.
    """

    edge: LineSegment3
    adjacent_faces: tuple[int, ...]
    adjacent_triangle_a_normal: np.ndarray
    adjacent_triangle_b_normal: np.ndarray | None = None

    @property
    def is_boundary(self) -> bool:
        return len(self.adjacent_faces) == 1

    def dihedral_angle_deg(self) -> float:
        """Angle between the two adjacent face normals, 0 on a boundary."""

        if self.adjacent_triangle_b_normal is None:
            return 0.0
        dot = float(np.dot(self.adjacent_triangle_a_normal, self.adjacent_triangle_b_normal))
        return math.degrees(math.acos(max(-1.0, min(1.0, dot))))


def _as_float_buffer(values, name: str) -> np.ndarray:
    try:
        buffer = np.asarray(values, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise MalformedMeshError(name, f"cannot be read as floats ({exc})") from exc
    if not np.all(np.isfinite(buffer)):
        raise MalformedMeshError(name, "contains non-finite values")
    return buffer


def _as_index_buffer(values, name: str, vertex_count: int, group: int) -> np.ndarray:
    try:
        raw = np.asarray(values).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise MalformedMeshError(name, f"cannot be read as integers ({exc})") from exc
    if raw.size and not np.issubdtype(raw.dtype, np.integer):
        as_float = raw.astype(np.float64)
        if not np.all(np.isfinite(as_float)) or not np.all(as_float == np.round(as_float)):
            raise MalformedMeshError(name, "contains non-integer values")
    indices = raw.astype(np.int64)
    if indices.size % group != 0:
        raise MalformedMeshError(name, f"length {indices.size} is not a multiple of {group}")
    bad = np.flatnonzero((indices < 0) | (indices >= vertex_count))
    if bad.size:
        first = int(bad[0])
        raise MalformedMeshError(
            name,
            f"index {int(indices[first])} at position {first} is out of range "
            f"for {vertex_count} vertices",
        )
    return indices.reshape(-1, group)


def _read_only(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


class Mesh:
    """
    Immutable triangle mesh.

    Parameters
    ----------
    positions : array-like
        Flat vertex positions, stride 3, in view space.
    normals : array-like
        Flat vertex normals, same length as `positions`.
    indices : array-like | None, optional
        Flat triangle indices. None implies sequential triangles.

    Raises
    ------
    MalformedMeshError
        For buffer lengths that do not match the stride, out-of-range or
        non-integer indices, non-finite values, or triangles with a
        zero-length edge.
    """

    def __init__(self, positions, normals, indices=None):
        pos = _as_float_buffer(positions, "positions")
        nrm = _as_float_buffer(normals, "normals")
        if pos.size % 3 != 0:
            raise MalformedMeshError("positions", f"length {pos.size} is not a multiple of 3")
        if nrm.size != pos.size:
            raise MalformedMeshError(
                "normals",
                f"length {nrm.size} does not match positions length {pos.size}",
            )

        vertices = pos.reshape(-1, 3)
        vertex_normals = nrm.reshape(-1, 3)
        vertex_count = vertices.shape[0]

        if indices is None:
            if vertex_count % 3 != 0:
                raise MalformedMeshError(
                    "positions",
                    f"{vertex_count} vertices cannot form whole triangles without indices",
                )
            triangles = np.arange(vertex_count, dtype=np.int64).reshape(-1, 3)
        else:
            triangles = _as_index_buffer(indices, "indices", vertex_count, 3)

        facet_points = vertices[triangles]
        for a, b in ((0, 1), (1, 2), (2, 0)):
            collapsed = np.flatnonzero(np.all(facet_points[:, a] == facet_points[:, b], axis=1))
            if collapsed.size:
                raise MalformedMeshError(
                    "indices" if indices is not None else "positions",
                    f"triangle {int(collapsed[0])} has a zero-length edge",
                )

        self.vertices = _read_only(vertices)
        self.vertex_normals = _read_only(vertex_normals)
        self.indices = _read_only(triangles)
        self.facet_points = _read_only(facet_points)
        self.face_normals = _read_only(self._compute_face_normals())
        self._facets: tuple[Facet, ...] | None = None
        self._edge_candidates: list[EdgeCandidate] | None = None

    def __len__(self) -> int:
        return int(self.indices.shape[0])

    def __repr__(self) -> str:
        return f"Mesh(vertices={self.vertices.shape[0]}, facets={len(self)})"

    @property
    def facets(self) -> tuple[Facet, ...]:
        if self._facets is None:
            self._facets = tuple(Facet(points) for points in self.facet_points)
        return self._facets

    def _compute_face_normals(self) -> np.ndarray:
        """
        Per-triangle unit normals.

        Notes
        -----
        The normal is the geometric cross product of the triangle edges. The
        supplied vertex normals only pick its orientation: it is flipped when
        it points against their sum, so smoothed shared-vertex normals never
        tilt a face. Collinear triangles end up with a zero normal and never
        count as camera-facing.
        """

        if self.indices.shape[0] == 0:
            return np.zeros((0, 3), dtype=np.float64)

        tri = self.facet_points
        cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        cross_len = np.linalg.norm(cross, axis=1)
        normals = np.zeros_like(cross)
        valid = cross_len > EPS
        normals[valid] = cross[valid] / cross_len[valid, None]

        summed = self.vertex_normals[self.indices].sum(axis=1)
        flip = np.einsum("ij,ij->i", normals, summed) < 0.0
        normals[flip] *= -1.0
        return normals

    def find_edge_candidates(self) -> list[EdgeCandidate]:
        """
        Collect every unique geometric edge once, with its adjacent faces.

        Returns
        -------
        list[EdgeCandidate]
            Edges in first-use order.

        Notes
        -----
        Vertices are matched by rounded position, so two triangles that share
        an edge through duplicated vertices are still adjacent. Edges used by
        more than two triangles are emitted once and classified by their
        first two faces.
        """

        if self._edge_candidates is not None:
            return self._edge_candidates

        if self.vertices.shape[0] == 0:
            self._edge_candidates = []
            return self._edge_candidates

        # `+ 0.0` folds -0.0 into 0.0 before matching.
        keys = np.round(self.vertices, EDGE_KEY_DECIMALS) + 0.0
        _, vertex_ids = np.unique(keys, axis=0, return_inverse=True)
        vertex_ids = np.asarray(vertex_ids).reshape(-1)

        edge_vertices: dict[tuple[int, int], tuple[int, int]] = {}
        edge_faces: dict[tuple[int, int], list[int]] = {}
        for face_idx, tri in enumerate(self.indices):
            i0, i1, i2 = int(tri[0]), int(tri[1]), int(tri[2])
            for a, b in ((i0, i1), (i1, i2), (i2, i0)):
                ka = int(vertex_ids[a])
                kb = int(vertex_ids[b])
                if ka == kb:
                    continue
                key = (ka, kb) if ka < kb else (kb, ka)
                faces = edge_faces.get(key)
                if faces is None:
                    edge_vertices[key] = (a, b)
                    edge_faces[key] = [face_idx]
                elif face_idx not in faces:
                    faces.append(face_idx)

        non_manifold = 0
        candidates: list[EdgeCandidate] = []
        for key, (a, b) in edge_vertices.items():
            faces = edge_faces[key]
            if len(faces) > 2:
                non_manifold += 1
            candidates.append(
                EdgeCandidate(
                    edge=LineSegment3(self.vertices[a], self.vertices[b]),
                    adjacent_faces=tuple(faces),
                    adjacent_triangle_a_normal=self.face_normals[faces[0]],
                    adjacent_triangle_b_normal=self.face_normals[faces[1]] if len(faces) > 1 else None,
                )
            )

        if non_manifold:
            logger.warning("Mesh has %d non-manifold edges shared by more than two faces", non_manifold)
        self._edge_candidates = candidates
        return candidates

    def front_facing(self, scene: Scene) -> np.ndarray:
        """
        Boolean mask of triangles facing the camera.

        A triangle faces the camera when its normal has a negative dot product
        with the viewing direction through its centroid. Faces seen edge-on
        (within `FACING_EPSILON`) do not.
        """

        if self.indices.shape[0] == 0:
            return np.zeros((0,), dtype=bool)
        centroids = self.facet_points.mean(axis=1)
        directions = scene.view_directions(centroids)
        dots = np.einsum("ij,ij->i", self.face_normals, directions)
        return dots < -FACING_EPSILON

    def find_edge_lines(
        self,
        scene: Scene,
        force_all: bool = False,
        edge_config: EdgeConfig | None = None,
    ) -> list[LineSegment3]:
        """
        Select the edges worth drawing for the current camera.

        Parameters
        ----------
        scene : Scene
            Camera used for the silhouette test.
        force_all : bool, optional
            If True, every unique triangle edge is returned unclassified.
        edge_config : EdgeConfig | None, optional
            Crease threshold and hidden-crease policy.

        Returns
        -------
        list[LineSegment3]
            Boundary edges, silhouette edges (exactly one adjacent face toward
            the camera) and crease edges, in first-use order.
        """

        candidates = self.find_edge_candidates()
        if force_all:
            return [candidate.edge for candidate in candidates]

        config = edge_config or EdgeConfig()
        facing = self.front_facing(scene)

        lines: list[LineSegment3] = []
        boundary = silhouette = crease = 0
        for candidate in candidates:
            if candidate.is_boundary:
                boundary += 1
                lines.append(candidate.edge)
                continue
            a_facing = bool(facing[candidate.adjacent_faces[0]])
            b_facing = bool(facing[candidate.adjacent_faces[1]])
            if a_facing != b_facing:
                silhouette += 1
                lines.append(candidate.edge)
                continue
            if candidate.dihedral_angle_deg() > config.crease_angle_deg and (
                a_facing or config.include_hidden_creases
            ):
                crease += 1
                lines.append(candidate.edge)

        logger.debug(
            "Edge extraction: %d candidates -> %d boundary, %d silhouette, %d crease",
            len(candidates),
            boundary,
            silhouette,
            crease,
        )
        return lines


class Wireframe:
    """
    Immutable explicit edge list drawn in addition to mesh edges.

    Parameters
    ----------
    positions : array-like
        Flat vertex positions with the given stride.
    indices : array-like | None, optional
        Line-list indices (pairs). None implies consecutive vertex pairs.
    stride : int, optional
        3 for view-space vertices, 2 for screen-space annotation vertices.

    Notes
    -----
    Screen-space vertices are lifted onto the viewer-side plane with
    `Scene.unproject_points`, so they project back to the same pixels and
    no facet can lie between them and the viewer.
    """

    def __init__(self, positions, indices=None, stride: int = 3):
        if stride not in (2, 3):
            raise MalformedMeshError("stride", f"must be 2 or 3, got {stride}")
        pos = _as_float_buffer(positions, "positions")
        if pos.size % stride != 0:
            raise MalformedMeshError("positions", f"length {pos.size} is not a multiple of {stride}")
        points = pos.reshape(-1, stride)

        if indices is None:
            if points.shape[0] % 2 != 0:
                raise MalformedMeshError(
                    "positions",
                    f"{points.shape[0]} vertices cannot form whole lines without indices",
                )
            line_indices = np.arange(points.shape[0], dtype=np.int64).reshape(-1, 2)
        else:
            line_indices = _as_index_buffer(indices, "indices", points.shape[0], 2)

        self.stride = stride
        self.points = _read_only(points)
        self.line_indices = _read_only(line_indices)

    def __len__(self) -> int:
        return int(self.line_indices.shape[0])

    def edges(self, scene: Scene | None = None) -> list[LineSegment3]:
        if self.stride == 2:
            if scene is None:
                raise ValueError("Screen-space wireframes need a scene to be placed in view space.")
            points = scene.unproject_points(self.points)
        else:
            points = self.points
        return [LineSegment3(points[a], points[b]) for a, b in self.line_indices]


def load_json_mesh(json_path: Path) -> tuple[Mesh, Wireframe | None]:
    """
    Read a mesh (and optional edge mesh) from the JSON exchange format.

    Parameters
    ----------
    json_path : Path
        File containing `{"mesh": {"positions", "normals", "indices"?},
        "edgesMesh"?: {"positions", "indices"?}}`.

    Returns
    -------
    tuple[Mesh, Wireframe | None]
        The mesh, plus the wireframe when `edgesMesh` is present.
    """

    json_path = Path(json_path)
    if not json_path.exists():
        raise FileNotFoundError(f"Mesh file not found: {json_path}")

    payload = json.loads(json_path.read_text(encoding="utf-8"))
    mesh_data = payload.get("mesh") if isinstance(payload, dict) else None
    if not isinstance(mesh_data, dict):
        raise MalformedMeshError("mesh", f"missing mesh object in {json_path}")
    for key in ("positions", "normals"):
        if key not in mesh_data:
            raise MalformedMeshError(key, f"missing from mesh object in {json_path}")

    mesh = Mesh(
        positions=mesh_data["positions"],
        normals=mesh_data["normals"],
        indices=mesh_data.get("indices"),
    )

    wireframe = None
    edges_data = payload.get("edgesMesh")
    if edges_data is not None:
        if not isinstance(edges_data, dict) or "positions" not in edges_data:
            raise MalformedMeshError("edgesMesh", f"missing positions in {json_path}")
        wireframe = Wireframe(
            positions=edges_data["positions"],
            indices=edges_data.get("indices"),
        )

    logger.debug(
        "Loaded %s: %d facets, %d wireframe edges",
        json_path.name,
        len(mesh),
        len(wireframe) if wireframe is not None else 0,
    )
    return mesh, wireframe


def load_stl_mesh(stl_path: Path) -> tuple[Mesh, None]:
    """
    Load and sanitize a triangular mesh from an STL file.

    Parameters
    ----------
    stl_path : Path
        Path to the mesh file.

    Returns
    -------
    tuple[Mesh, None]
        Flat-shaded mesh with per-face normals copied to each triangle
        vertex; STL files carry no explicit wireframe.

    Notes
    -----
    Degenerate faces, duplicate faces, unreferenced vertices and non-finite
    values are removed before conversion, so the strict `Mesh` checks only
    reject files that are broken beyond cleanup.
    """

    stl_path = Path(stl_path)
    if not stl_path.exists():
        raise FileNotFoundError(f"STL file not found: {stl_path}")

    loaded = trimesh.load(stl_path, force="mesh")
    if isinstance(loaded, trimesh.Scene):
        if not loaded.geometry:
            raise ValueError(f"No geometry found in {stl_path}")
        loaded = trimesh.util.concatenate(tuple(loaded.geometry.values()))
    if not isinstance(loaded, trimesh.Trimesh):
        raise TypeError("Input file does not contain a valid triangular mesh.")

    tm = loaded.copy()
    tm.update_faces(tm.nondegenerate_faces())
    tm.update_faces(tm.unique_faces())
    tm.remove_unreferenced_vertices()
    tm.remove_infinite_values()
    if tm.faces.shape[0] == 0:
        raise ValueError("Mesh has zero faces after cleanup.")

    faces = np.asarray(tm.faces, dtype=np.int64)
    vertices = np.asarray(tm.vertices, dtype=np.float64)
    face_normals = np.asarray(tm.face_normals, dtype=np.float64)

    positions = vertices[faces].reshape(-1)
    normals = np.repeat(face_normals, 3, axis=0).reshape(-1)
    mesh = Mesh(positions=positions, normals=normals)
    logger.debug("Loaded %s: %d facets", stl_path.name, len(mesh))
    return mesh, None


def load_mesh_file(path: Path) -> tuple[Mesh, Wireframe | None]:
    """Dispatch on file suffix: `.json` or `.stl`."""

    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".json":
        return load_json_mesh(path)
    if suffix == ".stl":
        return load_stl_mesh(path)
    raise ValueError(f"Unsupported mesh file extension: {path.suffix or '(none)'}")


def cube_mesh(size: float = 1.0, center=(0.0, 0.0, 0.0)) -> Mesh:
    """
    Axis-aligned cube made of 12 outward-facing triangles.

    Used by the command-line tools when no file is given and by tests.
    """

    h = size / 2.0
    c = np.asarray(center, dtype=np.float64)
    corners = np.asarray(
        [
            (-h, -h, -h),
            (h, -h, -h),
            (h, h, -h),
            (-h, h, -h),
            (-h, -h, h),
            (h, -h, h),
            (h, h, h),
            (-h, h, h),
        ],
        dtype=np.float64,
    ) + c
    quads = (
        ((4, 5, 6, 7), (0.0, 0.0, 1.0)),
        ((1, 0, 3, 2), (0.0, 0.0, -1.0)),
        ((5, 1, 2, 6), (1.0, 0.0, 0.0)),
        ((0, 4, 7, 3), (-1.0, 0.0, 0.0)),
        ((7, 6, 2, 3), (0.0, 1.0, 0.0)),
        ((0, 1, 5, 4), (0.0, -1.0, 0.0)),
    )
    positions: list[float] = []
    normals: list[float] = []
    indices: list[int] = []
    for quad, normal in quads:
        base = len(positions) // 3
        for corner in quad:
            positions.extend(corners[corner])
            normals.extend(normal)
        indices.extend((base, base + 1, base + 2, base, base + 2, base + 3))
    return Mesh(positions=positions, normals=normals, indices=indices)
