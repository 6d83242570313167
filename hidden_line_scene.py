"""
Camera state, projection, and occlusion rays.

Pipeline stage
--------------
`Scene` maps view-space points into screen pixels and back, using the
combined `projection @ view @ world` transform. `Ray` is the finite occlusion
ray cast by the visibility resolver against mesh facets.

Coordinate conventions
----------------------
Matrices act on column vectors and are stored row-major as `(4, 4)` numpy
arrays; host buffers arrive column-major (length 16) and are converted by
`Scene.from_column_major`. Normalized device coordinates follow the OpenGL
convention: `z = -1` is the plane nearest the viewer. Screen `x` grows to the
right and screen `y` grows downward.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from hidden_line_errors import SceneConfigurationError
from hidden_line_lines import LineSegment2, LineSegment3, ProjectedLine

if TYPE_CHECKING:
    from hidden_line_mesh import Facet, Mesh


logger = logging.getLogger(__name__)

EPS = 1e-12
# Rays whose determinant magnitude falls below this are treated as parallel
# to the facet plane.
DETERMINANT_EPSILON = 1e-7
# Hits closer than this to the ray origin belong to the edge's own facets.
OCCLUSION_TOLERANCE = 0.01


def _as_matrix(data, name: str) -> np.ndarray:
    matrix = np.array(data, dtype=np.float64)
    if matrix.shape != (4, 4):
        raise SceneConfigurationError(f"{name} must be a 4x4 matrix, got shape {matrix.shape}.")
    if not np.all(np.isfinite(matrix)):
        raise SceneConfigurationError(f"{name} contains non-finite values.")
    matrix.flags.writeable = False
    return matrix


def _column_major(data: Sequence[float], name: str) -> np.ndarray:
    flat = np.asarray(data, dtype=np.float64).reshape(-1)
    if flat.shape[0] != 16:
        raise SceneConfigurationError(f"{name} must hold 16 values, got {flat.shape[0]}.")
    return flat.reshape(4, 4).T


def transform_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Apply a homogeneous transform with perspective divide.

    Parameters
    ----------
    matrix : np.ndarray
        Transform of shape `(4, 4)`.
    points : np.ndarray
        Point array of shape `(N, 3)`.

    Returns
    -------
    np.ndarray
        Transformed points of shape `(N, 3)`. Rows with `w == 0` are returned
        without division.
    """

    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    homo = np.hstack((pts, np.ones((pts.shape[0], 1), dtype=np.float64)))
    transformed = (matrix @ homo.T).T
    w = transformed[:, 3:4]
    w_safe = np.where(w == 0.0, 1.0, w)
    return transformed[:, 0:3] / w_safe


def look_at_matrix(
    eye: Sequence[float],
    target: Sequence[float],
    up: Sequence[float] = (0.0, 0.0, 1.0),
) -> np.ndarray:
    """
    Right-handed view matrix looking from `eye` toward `target`.

    The basis uses `u` right, `v` up and `n` pointing from the target back
    toward the eye, so geometry in front of the camera has negative view `z`.
    """

    eye_v = np.asarray(eye, dtype=np.float64)
    target_v = np.asarray(target, dtype=np.float64)
    up_v = np.asarray(up, dtype=np.float64)

    n = eye_v - target_v
    n_norm = float(np.linalg.norm(n))
    if n_norm < EPS:
        raise SceneConfigurationError("Camera eye and target coincide.")
    n = n / n_norm
    u = np.cross(up_v, n)
    u_norm = float(np.linalg.norm(u))
    if u_norm < EPS:
        raise SceneConfigurationError("Up vector is collinear with camera direction.")
    u = u / u_norm
    v = np.cross(n, u)

    out = np.eye(4, dtype=np.float64)
    out[0, 0:3] = u
    out[1, 0:3] = v
    out[2, 0:3] = n
    out[0, 3] = -float(np.dot(u, eye_v))
    out[1, 3] = -float(np.dot(v, eye_v))
    out[2, 3] = -float(np.dot(n, eye_v))
    return out


def orthographic_matrix(half_width: float, half_height: float, near: float, far: float) -> np.ndarray:
    """OpenGL orthographic projection for a symmetric view volume."""

    if half_width <= 0 or half_height <= 0 or far <= near:
        raise SceneConfigurationError("Orthographic view volume is empty.")
    out = np.eye(4, dtype=np.float64)
    out[0, 0] = 1.0 / half_width
    out[1, 1] = 1.0 / half_height
    out[2, 2] = -2.0 / (far - near)
    out[2, 3] = -(far + near) / (far - near)
    return out


def perspective_matrix(fov_deg: float, aspect: float, near: float, far: float) -> np.ndarray:
    """OpenGL perspective projection with a vertical field of view."""

    if not 0.0 < fov_deg < 180.0 or aspect <= 0 or near <= 0 or far <= near:
        raise SceneConfigurationError("Perspective parameters are out of range.")
    f = 1.0 / math.tan(math.radians(fov_deg) / 2.0)
    out = np.zeros((4, 4), dtype=np.float64)
    out[0, 0] = f / aspect
    out[1, 1] = f
    out[2, 2] = (far + near) / (near - far)
    out[2, 3] = (2.0 * far * near) / (near - far)
    out[3, 2] = -1.0
    return out


def rotation_z_matrix(angle: float) -> np.ndarray:
    c = math.cos(angle)
    s = math.sin(angle)
    out = np.eye(4, dtype=np.float64)
    out[0, 0] = c
    out[0, 1] = -s
    out[1, 0] = s
    out[1, 1] = c
    return out


class Scene:
    """
    Camera and canvas state for one frame.

    Parameters
    ----------
    width, height : float
        Canvas size in pixels. Both must be positive.
    view_matrix, projection_matrix, mesh_world_matrix : array-like
        `(4, 4)` transforms. Reassigning any of them between frames is
        supported and revalidates the combined transform.

    Raises
    ------
    SceneConfigurationError
        For a zero-area canvas, a malformed matrix, or a singular combined
        transform.
    """

    def __init__(
        self,
        width: float,
        height: float,
        view_matrix,
        projection_matrix,
        mesh_world_matrix,
    ):
        if not (math.isfinite(width) and math.isfinite(height)) or width <= 0 or height <= 0:
            raise SceneConfigurationError(f"Canvas must have positive area, got {width}x{height}.")
        self.width = float(width)
        self.height = float(height)
        self._set_matrices(
            _as_matrix(view_matrix, "view_matrix"),
            _as_matrix(projection_matrix, "projection_matrix"),
            _as_matrix(mesh_world_matrix, "mesh_world_matrix"),
        )

    @classmethod
    def from_column_major(
        cls,
        width: int,
        height: int,
        view: Sequence[float],
        projection: Sequence[float],
        mesh_world: Sequence[float],
    ) -> Scene:
        """Build a scene from host-supplied column-major length-16 buffers."""

        return cls(
            float(width),
            float(height),
            _column_major(view, "view_matrix"),
            _column_major(projection, "projection_matrix"),
            _column_major(mesh_world, "mesh_world_matrix"),
        )

    @classmethod
    def default(cls) -> Scene:
        """
        Fixed orthographic reference camera used by the command-line tools.

        The world matrix maps a Z-up mesh into the Y-up camera frame.
        """

        view_matrix = [
            [0.79758435, 0.0, 0.6032074, 0.0],
            [0.2850845, 0.88126934, -0.37694982, 0.0],
            [-0.5315882, 0.47261438, 0.70288664, -594.28314],
            [0.0, 0.0, 0.0, 1.0],
        ]
        projection_matrix = [
            [0.021944271, 0.0, 0.0, 0.0],
            [0.0, 0.029259028, 0.0, 0.0],
            [0.0, 0.0, -0.0001, 0.0],
            [0.0, 0.0, 0.0, 1.0],
        ]
        mesh_world_matrix = [
            [1.0, 0.0, 0.0, 0.0],
            [0.0, 0.0, 1.0, 0.0],
            [0.0, -1.0, 0.0, 0.0],
            [0.0, 0.0, 0.0, 1.0],
        ]
        return cls(800.0, 600.0, view_matrix, projection_matrix, mesh_world_matrix)

    def copy(self) -> Scene:
        return Scene(
            self.width,
            self.height,
            self._view_matrix,
            self._projection_matrix,
            self._mesh_world_matrix,
        )

    @property
    def view_matrix(self) -> np.ndarray:
        return self._view_matrix

    @view_matrix.setter
    def view_matrix(self, value) -> None:
        self._set_matrices(_as_matrix(value, "view_matrix"), self._projection_matrix, self._mesh_world_matrix)

    @property
    def projection_matrix(self) -> np.ndarray:
        return self._projection_matrix

    @projection_matrix.setter
    def projection_matrix(self, value) -> None:
        self._set_matrices(self._view_matrix, _as_matrix(value, "projection_matrix"), self._mesh_world_matrix)

    @property
    def mesh_world_matrix(self) -> np.ndarray:
        return self._mesh_world_matrix

    @mesh_world_matrix.setter
    def mesh_world_matrix(self, value) -> None:
        self._set_matrices(self._view_matrix, self._projection_matrix, _as_matrix(value, "mesh_world_matrix"))

    def _set_matrices(self, view: np.ndarray, projection: np.ndarray, mesh_world: np.ndarray) -> None:
        """Install new matrices only if their combined transform is invertible."""

        combined = projection @ view @ mesh_world
        try:
            inverse = np.linalg.inv(combined)
        except np.linalg.LinAlgError as exc:
            raise SceneConfigurationError("Combined scene transform is singular.") from exc
        if not np.all(np.isfinite(inverse)):
            raise SceneConfigurationError("Combined scene transform is singular.")
        self._view_matrix = view
        self._projection_matrix = projection
        self._mesh_world_matrix = mesh_world
        self._combined = combined
        self._inverse = inverse

    def transformation_matrix(self) -> np.ndarray:
        return self._combined

    def inverse_transformation_matrix(self) -> np.ndarray:
        return self._inverse

    def camera_forward_vector(self) -> np.ndarray:
        """Third row of the view matrix, the camera `z` axis in world space."""

        return np.array(self._view_matrix[2, 0:3], dtype=np.float64)

    def _ndc_to_screen(self, ndc: np.ndarray) -> np.ndarray:
        screen = np.empty((ndc.shape[0], 2), dtype=np.float64)
        screen[:, 0] = (ndc[:, 0] + 1.0) / 2.0 * self.width
        screen[:, 1] = (ndc[:, 1] - 1.0) / 2.0 * -self.height
        return screen

    def _screen_to_ndc(self, screen: np.ndarray, depth: float) -> np.ndarray:
        ndc = np.empty((screen.shape[0], 3), dtype=np.float64)
        ndc[:, 0] = (screen[:, 0] / self.width) * 2.0 - 1.0
        ndc[:, 1] = -((screen[:, 1] / self.height) * 2.0 - 1.0)
        ndc[:, 2] = depth
        return ndc

    def project_points(self, points: np.ndarray) -> np.ndarray:
        """Project view-space points `(N, 3)` to screen pixels `(N, 2)`."""

        ndc = transform_points(self._combined, points)
        return self._ndc_to_screen(ndc)

    def project_point(self, point: Sequence[float]) -> np.ndarray:
        return self.project_points(np.asarray(point, dtype=np.float64).reshape(1, 3))[0]

    def unproject_points(self, points: np.ndarray) -> np.ndarray:
        """
        Map screen pixels `(N, 2)` back to view space on the `z = -1` plane.

        Depth is not recovered: the result lies on the same camera ray as any
        point that projects to the same pixel, at the plane nearest the
        viewer.
        """

        screen = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        return transform_points(self._inverse, self._screen_to_ndc(screen, -1.0))

    def unproject_point(self, point: Sequence[float]) -> np.ndarray:
        return self.unproject_points(np.asarray(point, dtype=np.float64).reshape(1, 2))[0]

    def view_directions(self, points: np.ndarray) -> np.ndarray:
        """
        Unit eye-to-scene directions through each view-space point.

        Parameters
        ----------
        points : np.ndarray
            View-space points of shape `(N, 3)`.

        Returns
        -------
        np.ndarray
            Directions of shape `(N, 3)` pointing away from the viewer.

        Notes
        -----
        The direction is taken between the unprojections of the point's pixel
        at `z = -1` and `z = +1`, which is exact for both orthographic and
        perspective projections.
        """

        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if pts.shape[0] == 0:
            return np.zeros((0, 3), dtype=np.float64)
        ndc = transform_points(self._combined, pts)
        near = ndc.copy()
        near[:, 2] = -1.0
        far = ndc.copy()
        far[:, 2] = 1.0
        direction = transform_points(self._inverse, far) - transform_points(self._inverse, near)
        norms = np.linalg.norm(direction, axis=1, keepdims=True)
        return direction / np.clip(norms, EPS, None)

    def project_line(self, line: LineSegment3) -> LineSegment2:
        screen = self.project_points(np.vstack((line.start, line.end)))
        return LineSegment2(screen[0], screen[1])

    def project_lines(self, lines: Sequence[LineSegment3]) -> list[ProjectedLine]:
        """Project every segment, pairing each with its view-space source."""

        if not lines:
            return []
        points = np.empty((2 * len(lines), 3), dtype=np.float64)
        for index, line in enumerate(lines):
            points[2 * index] = line.start
            points[2 * index + 1] = line.end
        screen = self.project_points(points)
        return [
            ProjectedLine(
                screen_space=LineSegment2(screen[2 * index], screen[2 * index + 1]),
                view_space=line,
            )
            for index, line in enumerate(lines)
        ]

    def __str__(self) -> str:
        with np.printoptions(precision=6, suppress=True):
            return (
                "Scene:\n"
                f"width: {self.width}\n"
                f"height: {self.height}\n"
                f"view_matrix:\n{self._view_matrix}\n"
                f"projection_matrix:\n{self._projection_matrix}\n"
                f"mesh_world_matrix:\n{self._mesh_world_matrix}\n"
                f"camera_forward_vector: {self.camera_forward_vector()}"
            )


@dataclass
class Ray:
    """
    Finite occlusion ray.

    Parameters
    ----------
    origin : np.ndarray
        Ray start in view space.
    direction : np.ndarray
        Unit direction, or zeros for a zero-length ray.
    length : float
        Distance from `origin` to the ray target; hits beyond it are ignored.

    Notes
    -----
    Rays are built fresh for every visibility test and are not shared.
    """

    origin: np.ndarray
    direction: np.ndarray
    length: float

    @classmethod
    def between(cls, origin: Sequence[float], target: Sequence[float]) -> Ray:
        origin_v = np.asarray(origin, dtype=np.float64)
        delta = np.asarray(target, dtype=np.float64) - origin_v
        length = float(np.linalg.norm(delta))
        direction = delta / length if length > 0.0 else np.zeros(3, dtype=np.float64)
        return cls(origin=origin_v, direction=direction, length=length)

    def intersect_facets(
        self,
        facet_points: np.ndarray,
        determinant_epsilon: float = DETERMINANT_EPSILON,
    ) -> np.ndarray:
        """
        Vectorized Moller-Trumbore test against a batch of triangles.

        Parameters
        ----------
        facet_points : np.ndarray
            Triangle vertices of shape `(M, 3, 3)`.
        determinant_epsilon : float, optional
            Determinant magnitude below which the ray counts as parallel.

        Returns
        -------
        np.ndarray
            Hit distance along the ray per facet, shape `(M,)`, with NaN for
            facets that are missed, parallel, out of reach, or hit beyond
            `length`.

        Notes
        -----
        Facets whose three vertices are all farther from the origin than
        `length` are rejected before the intersection test.
        """

        pts = np.asarray(facet_points, dtype=np.float64).reshape(-1, 3, 3)
        if pts.shape[0] == 0:
            return np.zeros((0,), dtype=np.float64)

        origin = self.origin
        direction = self.direction
        length_squared = self.length * self.length

        offsets = pts - origin
        reachable = np.any(np.einsum("mkj,mkj->mk", offsets, offsets) <= length_squared, axis=1)

        v0 = pts[:, 0]
        edge_1 = pts[:, 1] - v0
        edge_2 = pts[:, 2] - v0

        pvec = np.cross(direction, edge_2)
        det = np.einsum("ij,ij->i", edge_1, pvec)
        valid = reachable & ~((det > -determinant_epsilon) & (det < determinant_epsilon))

        inv_det = np.zeros_like(det)
        np.divide(1.0, det, out=inv_det, where=valid)

        tvec = origin - v0
        bv = np.einsum("ij,ij->i", tvec, pvec) * inv_det
        valid &= (bv >= 0.0) & (bv <= 1.0)

        qvec = np.cross(tvec, edge_1)
        bw = (qvec @ direction) * inv_det
        valid &= (bw >= 0.0) & (bv + bw <= 1.0)

        distance = np.einsum("ij,ij->i", edge_2, qvec) * inv_det
        valid &= distance <= self.length

        return np.where(valid, distance, np.nan)

    def intersect_facet(
        self,
        facet: Facet,
        determinant_epsilon: float = DETERMINANT_EPSILON,
    ) -> float | None:
        """Hit distance against one facet, or None."""

        distance = self.intersect_facets(facet.points.reshape(1, 3, 3), determinant_epsilon)[0]
        if np.isnan(distance):
            return None
        return float(distance)

    def intersects_mesh(
        self,
        mesh: Mesh,
        min_distance: float = OCCLUSION_TOLERANCE,
        determinant_epsilon: float = DETERMINANT_EPSILON,
    ) -> bool:
        """True when any facet is hit farther than `min_distance` along the ray."""

        distances = self.intersect_facets(mesh.facet_points, determinant_epsilon)
        with np.errstate(invalid="ignore"):
            return bool(np.any(distances > min_distance))
