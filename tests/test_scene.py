import numpy as np
import pytest

from hidden_line_errors import SceneConfigurationError
from hidden_line_lines import LineSegment3
from hidden_line_mesh import Facet
from hidden_line_scene import (
    Ray,
    Scene,
    look_at_matrix,
    orthographic_matrix,
    perspective_matrix,
    rotation_z_matrix,
)


def test_project_point_face_on(face_on_scene):
    np.testing.assert_allclose(face_on_scene.project_point((0.5, 0.5, 0.5)), (75.0, 25.0))
    np.testing.assert_allclose(face_on_scene.project_point((-1.0, -1.0, 0.0)), (0.0, 100.0))


def test_unproject_round_trips_to_same_pixel(face_on_scene):
    point = face_on_scene.unproject_point((30.0, 40.0))
    np.testing.assert_allclose(face_on_scene.project_point(point), (30.0, 40.0), atol=1e-9)


def test_unproject_lies_on_viewer_side_plane(face_on_scene):
    # ndc z = -1 is the near plane at view distance 0.1, world z = 4.9.
    point = face_on_scene.unproject_point((50.0, 50.0))
    np.testing.assert_allclose(point, (0.0, 0.0, 4.9), atol=1e-9)


def test_perspective_round_trip_and_view_direction():
    scene = Scene(
        200,
        100,
        look_at_matrix((0.0, 0.0, 10.0), (0.0, 0.0, 0.0), (0.0, 1.0, 0.0)),
        perspective_matrix(60.0, 2.0, 0.5, 100.0),
        np.eye(4),
    )
    world = np.asarray([[1.0, 0.5, 2.0]])
    screen = scene.project_points(world)
    back = scene.project_points(scene.unproject_points(screen))
    np.testing.assert_allclose(back, screen, atol=1e-6)

    direction = scene.view_directions(world)[0]
    expected = world[0] - np.asarray([0.0, 0.0, 10.0])
    np.testing.assert_allclose(direction, expected / np.linalg.norm(expected), atol=1e-9)


def test_view_directions_face_on_point_down_minus_z(face_on_scene):
    directions = face_on_scene.view_directions(np.asarray([[0.0, 0.0, 0.0], [0.7, -0.3, 1.0]]))
    np.testing.assert_allclose(directions, [[0, 0, -1], [0, 0, -1]], atol=1e-12)


def test_project_lines_pairs_view_and_screen(face_on_scene):
    lines = [LineSegment3((0, 0, 0), (0.5, 0, 0)), LineSegment3((0, 0.5, 0), (0, 0, 0))]
    projected = face_on_scene.project_lines(lines)
    assert len(projected) == 2
    assert projected[1].view_space is lines[1]
    np.testing.assert_allclose(projected[0].screen_space.end, (75.0, 50.0))
    np.testing.assert_allclose(projected[1].screen_space.start, (50.0, 25.0))
    assert face_on_scene.project_lines([]) == []


def test_zero_area_canvas_is_rejected():
    with pytest.raises(SceneConfigurationError):
        Scene(0, 100, np.eye(4), np.eye(4), np.eye(4))
    with pytest.raises(SceneConfigurationError):
        Scene(100, -1, np.eye(4), np.eye(4), np.eye(4))


def test_singular_transform_is_rejected():
    with pytest.raises(SceneConfigurationError):
        Scene(100, 100, np.eye(4), np.zeros((4, 4)), np.eye(4))


def test_reassigning_matrix_recomputes_and_validates(face_on_scene):
    before = face_on_scene.project_point((0.5, 0.0, 0.0))
    face_on_scene.mesh_world_matrix = rotation_z_matrix(np.pi / 2.0)
    after = face_on_scene.project_point((0.5, 0.0, 0.0))
    np.testing.assert_allclose(before, (75.0, 50.0))
    np.testing.assert_allclose(after, (50.0, 25.0), atol=1e-9)

    with pytest.raises(SceneConfigurationError):
        face_on_scene.view_matrix = np.zeros((4, 4))


def test_matrices_are_read_only(face_on_scene):
    with pytest.raises(ValueError):
        face_on_scene.view_matrix[0, 0] = 2.0


def test_from_column_major_transposes():
    translate = [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 1, 2, 3, 1]
    identity = [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1]
    scene = Scene.from_column_major(10, 10, translate, identity, identity)
    np.testing.assert_allclose(scene.view_matrix[0:3, 3], (1, 2, 3))

    with pytest.raises(SceneConfigurationError):
        Scene.from_column_major(10, 10, translate[:15], identity, identity)


def test_default_scene_is_valid():
    scene = Scene.default()
    assert (scene.width, scene.height) == (800.0, 600.0)
    np.testing.assert_allclose(scene.project_point((0.0, 0.0, 0.0)), (400.0, 300.0), atol=1e-6)
    np.testing.assert_allclose(np.linalg.norm(scene.camera_forward_vector()), 1.0, atol=1e-6)
    assert "view_matrix" in str(scene)


def test_copy_is_independent(face_on_scene):
    clone = face_on_scene.copy()
    clone.mesh_world_matrix = rotation_z_matrix(1.0)
    np.testing.assert_allclose(face_on_scene.mesh_world_matrix, np.eye(4))


def test_camera_builders_reject_bad_input():
    with pytest.raises(SceneConfigurationError):
        look_at_matrix((0, 0, 0), (0, 0, 0))
    with pytest.raises(SceneConfigurationError):
        look_at_matrix((0, 0, 5), (0, 0, 0), (0, 0, 1))
    with pytest.raises(SceneConfigurationError):
        orthographic_matrix(0.0, 1.0, 0.1, 10.0)
    with pytest.raises(SceneConfigurationError):
        perspective_matrix(180.0, 1.0, 0.1, 10.0)


TRIANGLE = Facet(np.asarray([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]))


def test_ray_hits_triangle_within_length():
    ray = Ray(origin=np.asarray([0.2, 0.2, -1.0]), direction=np.asarray([0.0, 0.0, 1.0]), length=5.0)
    assert ray.intersect_facet(TRIANGLE) == pytest.approx(1.0)


def test_ray_too_short_misses():
    ray = Ray(origin=np.asarray([0.2, 0.2, -1.0]), direction=np.asarray([0.0, 0.0, 1.0]), length=0.5)
    assert ray.intersect_facet(TRIANGLE) is None


def test_ray_parallel_to_triangle_misses():
    ray = Ray(origin=np.asarray([-1.0, 0.2, 0.0]), direction=np.asarray([1.0, 0.0, 0.0]), length=5.0)
    assert ray.intersect_facet(TRIANGLE) is None


def test_ray_outside_triangle_misses():
    ray = Ray(origin=np.asarray([0.8, 0.8, -1.0]), direction=np.asarray([0.0, 0.0, 1.0]), length=5.0)
    assert ray.intersect_facet(TRIANGLE) is None


def test_ray_between_normalizes_direction():
    ray = Ray.between((0, 0, 0), (0, 3, 4))
    assert ray.length == pytest.approx(5.0)
    np.testing.assert_allclose(ray.direction, (0, 0.6, 0.8))

    zero = Ray.between((1, 1, 1), (1, 1, 1))
    assert zero.length == 0.0
    np.testing.assert_allclose(zero.direction, (0, 0, 0))


def test_intersect_facets_batch_marks_misses_nan():
    facets = np.stack(
        [
            TRIANGLE.points,
            TRIANGLE.points + np.asarray([0.0, 0.0, 2.0]),
            TRIANGLE.points + np.asarray([5.0, 0.0, 0.0]),
        ]
    )
    ray = Ray(origin=np.asarray([0.2, 0.2, -1.0]), direction=np.asarray([0.0, 0.0, 1.0]), length=10.0)
    distances = ray.intersect_facets(facets)
    np.testing.assert_allclose(distances[:2], (1.0, 3.0))
    assert np.isnan(distances[2])


def test_intersects_mesh_ignores_hits_at_origin(front_square):
    on_surface = Ray.between((0.0, 0.0, 1.0), (0.0, 0.0, 4.9))
    assert not on_surface.intersects_mesh(front_square)

    behind = Ray.between((0.0, 0.0, 0.0), (0.0, 0.0, 4.9))
    assert behind.intersects_mesh(front_square)


def test_ray_aimed_at_centroid_reports_distance():
    centroid = TRIANGLE.centroid()
    origin = centroid + np.asarray([0.0, 0.0, 2.0])
    ray = Ray.between(origin, centroid - np.asarray([0.0, 0.0, 1.0]))
    assert ray.intersect_facet(TRIANGLE) == pytest.approx(2.0)

    away = Ray.between(origin, origin + np.asarray([0.0, 0.0, 3.0]))
    assert away.intersect_facet(TRIANGLE) is None


def test_unproject_of_projection_lies_on_same_camera_ray():
    scene = Scene(
        120,
        80,
        look_at_matrix((3.0, -4.0, 6.0), (0.0, 0.0, 0.0), (0.0, 0.0, 1.0)),
        perspective_matrix(45.0, 1.5, 0.5, 50.0),
        np.eye(4),
    )
    point = np.asarray([0.4, -0.2, 0.7])
    lifted = scene.unproject_point(scene.project_point(point))
    assert not np.allclose(lifted, point)
    eye = np.asarray([3.0, -4.0, 6.0])
    to_point = (point - eye) / np.linalg.norm(point - eye)
    to_lifted = (lifted - eye) / np.linalg.norm(lifted - eye)
    np.testing.assert_allclose(to_lifted, to_point, atol=1e-9)
