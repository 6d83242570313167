import io

import numpy as np
from PIL import Image

from hidden_line_lines import LineSegment2, LineSegmentCategorized, LineVisibility
from hidden_line_terminal import (
    BrailleCanvas,
    animate,
    draw_terminal,
    render_animation_frames,
    write_gif,
)


def test_braille_canvas_dot_positions():
    canvas = BrailleCanvas(2, 4)
    canvas.set_pixel(0, 0)
    assert canvas.frame() == "⠁"
    canvas.set_pixel(1, 3)
    assert canvas.frame() == "⢁"
    assert canvas.get_pixel(1, 3)
    assert not canvas.get_pixel(1, 2)


def test_braille_canvas_ignores_out_of_bounds():
    canvas = BrailleCanvas(4, 4)
    canvas.set_pixel(-1, 0)
    canvas.set_pixel(4, 0)
    canvas.set_pixel(0, 4)
    assert canvas.frame() == ""


def test_braille_line_covers_endpoints():
    canvas = BrailleCanvas(4, 4)
    canvas.line(0, 0, 3, 0)
    assert canvas.frame() == "⠉⠉"
    canvas = BrailleCanvas(4, 8)
    canvas.line(0, 0, 3, 7)
    assert canvas.get_pixel(0, 0)
    assert canvas.get_pixel(3, 7)


def test_draw_terminal_skips_obscured_segments(face_on_scene):
    visible = LineSegmentCategorized(LineSegment2((0, 0), (100, 0)), LineVisibility.VISIBLE)
    obscured = LineSegmentCategorized(LineSegment2((0, 99), (100, 99)), LineVisibility.OBSCURED)
    drawing = draw_terminal([visible, obscured], face_on_scene, output_width=20, output_height=20)
    rows = drawing.split("\n")
    assert len(rows) == 5
    assert rows[0].strip()
    assert not any(row.strip() for row in rows[1:])


def test_render_animation_frames_rotates_copy(unit_cube, face_on_scene):
    seen = []
    frames = render_animation_frames(
        unit_cube, None, face_on_scene, count=4, on_frame=lambda i, segs, t: seen.append(i)
    )
    assert len(frames) == 4
    assert seen == [0, 1, 2, 3]
    assert all(len(frame) == 4 for frame in frames)
    np.testing.assert_allclose(face_on_scene.mesh_world_matrix, np.eye(4))


def test_animate_replays_frames(unit_cube, face_on_scene):
    stream = io.StringIO()
    drawings = animate(
        unit_cube,
        None,
        face_on_scene,
        count=2,
        output_width=20,
        output_height=20,
        frame_delay=0.0,
        loops=1,
        stream=stream,
    )
    assert len(drawings) == 2
    output = stream.getvalue()
    assert "Rendered 2 of 2 angles" in output
    assert output.endswith("\x1b[?25h")


def test_write_gif(tmp_path, unit_cube, face_on_scene):
    frames = render_animation_frames(unit_cube, None, face_on_scene, count=3)
    path = tmp_path / "spin.gif"
    write_gif(path, frames, face_on_scene, width=64)
    with Image.open(path) as image:
        assert image.size == (64, 64)
        assert image.n_frames == 3
