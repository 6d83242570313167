"""
Terminal and GIF previews of the hidden-line drawing.

The terminal view packs a 2x4 block of dots into each Unicode braille
character, so a terminal `w` columns wide offers roughly `2 * w` pixels of
horizontal resolution. Only visible segments are drawn there. The GIF export
renders the same frames with Pillow, obscured segments included in grey.
"""

from __future__ import annotations

import logging
import math
import shutil
import sys
import time
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TextIO

from PIL import Image, ImageDraw

from hidden_line_lines import LineSegmentCategorized, LineVisibility
from hidden_line_mesh import Mesh, Wireframe
from hidden_line_scene import Scene, rotation_z_matrix
from hidden_line_svg import SvgConfig, scale_screen_space_lines


logger = logging.getLogger(__name__)

TERMINAL_MARGIN = 5
DEFAULT_FRAME_COUNT = 50
FALLBACK_TERMINAL_COLUMNS = 100


class BrailleCanvas:
    """
    Monochrome dot canvas rendered as braille characters.

    Dot layout inside one character cell::

        0 3
        1 4
        2 5
        6 7
    """

    # Unicode braille bit for each (row, column) dot of a cell.
    DOT_BITS = (
        (0x01, 0x08),
        (0x02, 0x10),
        (0x04, 0x20),
        (0x40, 0x80),
    )

    def __init__(self, width: int, height: int):
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas must have positive size, got {width}x{height}.")
        self.width = int(width)
        self.height = int(height)
        self.columns = (self.width + 1) // 2
        self.rows = (self.height + 3) // 4
        self.cells = [[0] * self.columns for _ in range(self.rows)]

    def set_pixel(self, x: int, y: int) -> None:
        if x < 0 or x >= self.width or y < 0 or y >= self.height:
            return
        self.cells[y >> 2][x >> 1] |= self.DOT_BITS[y & 3][x & 1]

    def get_pixel(self, x: int, y: int) -> bool:
        if x < 0 or x >= self.width or y < 0 or y >= self.height:
            return False
        return bool(self.cells[y >> 2][x >> 1] & self.DOT_BITS[y & 3][x & 1])

    def line(self, x1: int, y1: int, x2: int, y2: int) -> None:
        """DDA line between two pixel positions, endpoints included."""

        dx = x2 - x1
        dy = y2 - y1
        step = max(abs(dx), abs(dy))
        if step == 0:
            self.set_pixel(x1, y1)
            return

        x_inc = dx / step
        y_inc = dy / step
        cx, cy = float(x1), float(y1)
        for _ in range(step + 1):
            self.set_pixel(int(round(cx)), int(round(cy)))
            cx += x_inc
            cy += y_inc

    def frame(self) -> str:
        rows = []
        for row in self.cells:
            text = "".join(chr(0x2800 + mask) if mask else " " for mask in row)
            rows.append(text.rstrip())
        return "\n".join(rows)


def terminal_canvas_width() -> int:
    columns = shutil.get_terminal_size((FALLBACK_TERMINAL_COLUMNS, 24)).columns
    return columns * 2 - 1


def terminal_svg_config(
    scene: Scene,
    output_width: int | None = None,
    output_height: int | None = None,
) -> SvgConfig:
    """
    Canvas mapping used for terminal output.

    The width defaults to the terminal's dot width and the height keeps the
    scene's aspect ratio. Segments are mapped from the scene canvas without
    fitting them to their bounds.
    """

    width = output_width if output_width is not None else terminal_canvas_width()
    height = output_height if output_height is not None else int(scene.height / scene.width * width)
    return SvgConfig.create(
        scene.width,
        scene.height,
        width=width,
        height=height,
        margin=TERMINAL_MARGIN,
        fit_lines=False,
    )


def draw_terminal(
    segments: Sequence[LineSegmentCategorized],
    scene: Scene,
    output_width: int | None = None,
    output_height: int | None = None,
) -> str:
    """Render the visible segments as a block of braille text."""

    config = terminal_svg_config(scene, output_width, output_height)
    canvas = BrailleCanvas(max(1, int(config.width)), max(1, int(config.height)))
    for seg in scale_screen_space_lines(segments, config):
        if seg.visibility is not LineVisibility.VISIBLE:
            continue
        start = seg.line_segment.start
        end = seg.line_segment.end
        canvas.line(int(start[0]), int(start[1]), int(end[0]), int(end[1]))
    return canvas.frame()


def render_animation_frames(
    mesh: Mesh,
    wireframe: Wireframe | None,
    scene: Scene,
    count: int = DEFAULT_FRAME_COUNT,
    pipeline_config=None,
    on_frame=None,
) -> list[list[LineSegmentCategorized]]:
    """
    Categorized segments for `count` views spinning one full turn about +Z.

    Parameters
    ----------
    mesh, wireframe : Mesh, Wireframe | None
        Geometry to render.
    scene : Scene
        Starting camera; it is copied, not modified.
    count : int, optional
        Number of frames; each adds a rotation of `2 * pi / count`.
    pipeline_config : PipelineConfig | None, optional
        Forwarded to the pipeline.
    on_frame : callable | None, optional
        Called as `on_frame(index, segments, elapsed_seconds)` after each
        frame.

    Returns
    -------
    list[list[LineSegmentCategorized]]
        One segment list per frame.
    """

    from hidden_line_pipeline import find_categorized_line_segments

    if count <= 0:
        raise ValueError("count must be > 0")

    rotation = rotation_z_matrix(2.0 * math.pi / count)
    frame_scene = scene.copy()
    frames: list[list[LineSegmentCategorized]] = []
    for index in range(count):
        frame_scene.mesh_world_matrix = frame_scene.mesh_world_matrix @ rotation
        started = time.perf_counter()
        segments = find_categorized_line_segments(mesh, wireframe, frame_scene, pipeline_config)
        elapsed = time.perf_counter() - started
        frames.append(segments)
        if on_frame is not None:
            on_frame(index, segments, elapsed)
    return frames


class _LiveRegion:
    """Redraws a block of text in place with ANSI cursor control."""

    def __init__(self, stream: TextIO):
        self.stream = stream
        self.lines = 0
        self.stream.write("\x1b[?25l")

    def render(self, text: str) -> None:
        if self.lines:
            self.stream.write(f"\x1b[{self.lines}F\x1b[J")
        self.stream.write(text + "\n")
        self.stream.flush()
        self.lines = text.count("\n") + 1

    def done(self) -> None:
        self.stream.write("\x1b[?25h")
        self.stream.flush()


def animate(
    mesh: Mesh,
    wireframe: Wireframe | None,
    scene: Scene,
    count: int = DEFAULT_FRAME_COUNT,
    output_width: int | None = None,
    output_height: int | None = None,
    pipeline_config=None,
    frame_delay: float = 0.2,
    loops: int | None = None,
    stream: TextIO | None = None,
) -> list[str]:
    """
    Render a spinning view in the terminal.

    Frames are computed first, with progress shown in place, then replayed
    until interrupted with Ctrl-C (or `loops` times when given).

    Returns
    -------
    list[str]
        The rendered terminal drawings.
    """

    out = stream or sys.stdout
    region = _LiveRegion(out)
    drawings: list[str] = []

    def show_progress(index: int, segments: list[LineSegmentCategorized], elapsed: float) -> None:
        drawing = draw_terminal(segments, scene, output_width, output_height)
        drawings.append(drawing)
        region.render(f"Rendered {index + 1} of {count} angles ({elapsed * 1000.0:.1f} ms)\n\n{drawing}")

    try:
        render_animation_frames(mesh, wireframe, scene, count, pipeline_config, show_progress)
        played = 0
        while loops is None or played < loops:
            for drawing in drawings:
                region.render(drawing)
                time.sleep(frame_delay)
            played += 1
    except KeyboardInterrupt:
        logger.debug("Animation interrupted after %d frames", len(drawings))
    finally:
        region.done()
    return drawings


def render_frame_image(
    segments: Iterable[LineSegmentCategorized],
    config: SvgConfig,
    background: str = "white",
) -> Image.Image:
    """Rasterize one frame of categorized segments into an RGB image."""

    image = Image.new("RGB", (max(1, int(config.width)), max(1, int(config.height))), background)
    draw = ImageDraw.Draw(image)
    scaled = scale_screen_space_lines(list(segments), config)
    layers = (
        (LineVisibility.OBSCURED, config.obscured),
        (LineVisibility.VISIBLE, config.visible),
    )
    for visibility, style in layers:
        if style is None:
            continue
        width = max(1, int(round(style.stroke_width)))
        for seg in scaled:
            if seg.visibility is not visibility:
                continue
            start = seg.line_segment.start
            end = seg.line_segment.end
            draw.line(
                [(float(start[0]), float(start[1])), (float(end[0]), float(end[1]))],
                fill=style.stroke,
                width=width,
            )
    return image


def write_gif(
    gif_path: Path,
    frames: Sequence[Sequence[LineSegmentCategorized]],
    scene: Scene,
    width: int | None = None,
    height: int | None = None,
    duration_ms: int = 80,
) -> None:
    """
    Save animation frames as a looping GIF.

    Every frame is mapped through the same unfitted canvas so the model does
    not jump between frames.
    """

    if not frames:
        raise ValueError("No frames to write.")

    out_width = int(width if width is not None else scene.width)
    out_height = int(height if height is not None else scene.height * out_width / scene.width)
    config = SvgConfig.create(
        scene.width,
        scene.height,
        width=out_width,
        height=out_height,
        visible_stroke_width=2,
        obscured_stroke_width=1,
        fit_lines=False,
    )
    images = [render_frame_image(frame, config) for frame in frames]

    gif_path = Path(gif_path)
    gif_path.parent.mkdir(parents=True, exist_ok=True)
    images[0].save(
        gif_path,
        save_all=True,
        append_images=images[1:],
        duration=duration_ms,
        loop=0,
    )
    logger.debug("Wrote %d frames to %s", len(images), gif_path)
