# tests/conftest.py

import numpy as np
import pytest

from hidden_line_mesh import Mesh, cube_mesh
from hidden_line_scene import Scene, look_at_matrix, orthographic_matrix


@pytest.fixture
def unit_cube():
    return cube_mesh(1.0)


@pytest.fixture
def face_on_scene():
    """
    100x100 orthographic camera at z=+5 looking down -z, y up.

    Maps world (x, y) in [-1, 1] to screen (50 + 50x, 50 - 50y).
    """
    return Scene(
        100,
        100,
        look_at_matrix((0.0, 0.0, 5.0), (0.0, 0.0, 0.0), (0.0, 1.0, 0.0)),
        orthographic_matrix(1.0, 1.0, 0.1, 10.0),
        np.eye(4),
    )


@pytest.fixture
def front_square():
    """Two-triangle square at z=1 spanning [-0.5, 0.5] in x and y, facing +z."""
    positions = [
        -0.5, -0.5, 1.0,
        0.5, -0.5, 1.0,
        0.5, 0.5, 1.0,
        -0.5, 0.5, 1.0,
    ]
    normals = [0.0, 0.0, 1.0] * 4
    return Mesh(positions, normals, indices=[0, 1, 2, 0, 2, 3])


@pytest.fixture
def smooth_cube():
    """Indexed unit cube with 8 shared corners and smoothed corner normals."""
    corners = np.asarray(
        [[(-0.5, 0.5)[i & 1], (-0.5, 0.5)[(i >> 1) & 1], (-0.5, 0.5)[(i >> 2) & 1]] for i in range(8)]
    )
    normals = corners / np.linalg.norm(corners, axis=1, keepdims=True)
    quads = [(0, 1, 3, 2), (4, 5, 7, 6), (0, 1, 5, 4), (2, 3, 7, 6), (0, 2, 6, 4), (1, 3, 7, 5)]
    indices = []
    for a, b, c, d in quads:
        indices.extend((a, b, c, a, c, d))
    return Mesh(corners.ravel(), normals.ravel(), indices=indices)
