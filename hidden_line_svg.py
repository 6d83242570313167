"""
SVG export of categorized screen-space segments.

Segments are scaled uniformly into the output canvas (fitted to the line
bounds or to the source canvas), then written as at most two `<path>`
elements: obscured first so that visible strokes paint on top.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from hidden_line_lines import (
    LineSegment2,
    LineSegmentCategorized,
    LineVisibility,
    relative_eq,
)


logger = logging.getLogger(__name__)

DEFAULT_FIT_MARGIN = 100


@dataclass
class SvgLineConfig:
    stroke_width: float
    stroke: str


@dataclass
class SvgConfig:
    """
    Output canvas and stroke styling.

    Parameters
    ----------
    source_canvas_width, source_canvas_height : float
        Size of the scene canvas the segments were projected into.
    width, height : float
        Output `viewBox` size.
    margin : float
        Total margin removed from the output canvas before fitting.
    visible : SvgLineConfig
        Stroke for visible segments.
    obscured : SvgLineConfig | None
        Stroke for obscured segments, or None to omit them.
    fit_lines : bool
        Fit to the segment bounds instead of the source canvas.
    """

    source_canvas_width: float
    source_canvas_height: float
    width: float
    height: float
    margin: float = DEFAULT_FIT_MARGIN
    visible: SvgLineConfig = field(default_factory=lambda: SvgLineConfig(4, "black"))
    obscured: SvgLineConfig | None = field(default_factory=lambda: SvgLineConfig(2, "grey"))
    fit_lines: bool = True

    @classmethod
    def create(
        cls,
        source_canvas_width: float,
        source_canvas_height: float,
        width: float | None = None,
        height: float | None = None,
        margin: float | None = None,
        visible_stroke_width: float | None = None,
        visible_stroke: str | None = None,
        hide_obscured: bool | None = None,
        obscured_stroke_width: float | None = None,
        obscured_stroke: str | None = None,
        fit_lines: bool | None = None,
    ) -> SvgConfig:
        """
        Build a config where every unset option takes its default.

        The margin only applies when fitting; with `fit_lines=False` it is
        forced to zero so the source canvas maps onto the output one to one.
        """

        fit = True if fit_lines is None else fit_lines
        obscured = None
        if not hide_obscured:
            obscured = SvgLineConfig(
                stroke_width=2 if obscured_stroke_width is None else obscured_stroke_width,
                stroke=obscured_stroke or "grey",
            )
        return cls(
            source_canvas_width=source_canvas_width,
            source_canvas_height=source_canvas_height,
            width=source_canvas_width if width is None else width,
            height=source_canvas_height if height is None else height,
            margin=(DEFAULT_FIT_MARGIN if margin is None else margin) if fit else 0,
            visible=SvgLineConfig(
                stroke_width=4 if visible_stroke_width is None else visible_stroke_width,
                stroke=visible_stroke or "black",
            ),
            obscured=obscured,
            fit_lines=fit,
        )


def _bounds(segments: Sequence[LineSegmentCategorized], config: SvgConfig) -> tuple[np.ndarray, np.ndarray]:
    if config.fit_lines and segments:
        points = np.vstack(
            [np.vstack((seg.line_segment.start, seg.line_segment.end)) for seg in segments]
        )
        return points.min(axis=0), points.max(axis=0)
    return (
        np.zeros(2, dtype=np.float64),
        np.asarray([config.source_canvas_width, config.source_canvas_height], dtype=np.float64),
    )


def scale_screen_space_lines(
    segments: Sequence[LineSegmentCategorized],
    config: SvgConfig,
) -> list[LineSegmentCategorized]:
    """
    Map segments into the output canvas with a uniform scale.

    Parameters
    ----------
    segments : Sequence[LineSegmentCategorized]
        Screen-space segments.
    config : SvgConfig
        Output canvas, margin, and fitting mode.

    Returns
    -------
    list[LineSegmentCategorized]
        Scaled copies, in input order, centered in the canvas.

    Notes
    -----
    The scale is the smaller of the two axis ratios, so the aspect ratio is
    preserved. An axis with zero extent does not constrain the scale; when
    both extents are zero the scale is 1.
    """

    min_bound, max_bound = _bounds(segments, config)
    margin = np.asarray([config.margin, config.margin], dtype=np.float64)
    canvas = np.asarray([config.width, config.height], dtype=np.float64) - margin

    viewport = max_bound - min_bound
    half_viewport = viewport * 0.5 + min_bound
    half_canvas = canvas * 0.5 + margin * 0.5

    ratios = [canvas[axis] / viewport[axis] for axis in range(2) if viewport[axis] > 0.0]
    scale = min(ratios) if ratios else 1.0

    return [
        LineSegmentCategorized(
            line_segment=LineSegment2(
                (seg.line_segment.start - half_viewport) * scale + half_canvas,
                (seg.line_segment.end - half_viewport) * scale + half_canvas,
            ),
            visibility=seg.visibility,
        )
        for seg in segments
    ]


def _format_number(value: float) -> str:
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def create_path_element(segments: Sequence[LineSegmentCategorized], line_config: SvgLineConfig) -> str:
    """
    One `<path>` for a run of segments.

    A segment that starts where the previous one ended continues the current
    subpath with `L`; any other segment opens a new subpath with `M`.
    """

    commands: list[str] = []
    current: np.ndarray | None = None
    for seg in segments:
        start = seg.line_segment.start
        end = seg.line_segment.end
        if current is not None and relative_eq(current, start):
            commands.append("L")
        else:
            commands.append(f"M {_format_number(start[0])} {_format_number(start[1])}")
        commands.append(f"{_format_number(end[0])} {_format_number(end[1])}")
        current = end

    return (
        f'<path d="{" ".join(commands)}" stroke="{line_config.stroke}" fill="none" '
        f'stroke-width="{_format_number(line_config.stroke_width)}" '
        'stroke-linecap="round" stroke-linejoin="round" />'
    )


def line_segments_to_svg(segments: Sequence[LineSegmentCategorized], config: SvgConfig) -> str:
    visible = [seg for seg in segments if seg.visibility is LineVisibility.VISIBLE]
    obscured = [seg for seg in segments if seg.visibility is not LineVisibility.VISIBLE]

    rows = [
        f'<svg viewBox="0 0 {_format_number(config.width)} {_format_number(config.height)}" '
        'xmlns="http://www.w3.org/2000/svg">',
        create_path_element(obscured, config.obscured) if config.obscured is not None else "",
        create_path_element(visible, config.visible),
        "</svg>",
    ]
    return "\n".join(rows)


def screen_space_lines_to_fitted_svg(
    segments: Sequence[LineSegmentCategorized],
    config: SvgConfig,
) -> str:
    """Scale segments into the output canvas and render the SVG document."""

    return line_segments_to_svg(scale_screen_space_lines(segments, config), config)


def write_svg(svg_path: Path, segments: Sequence[LineSegmentCategorized], config: SvgConfig) -> None:
    """
    Export categorized segments as an SVG file.

    Parameters
    ----------
    svg_path : Path
        Destination file path; parent directories are created.
    segments : Sequence[LineSegmentCategorized]
        Screen-space segments from the pipeline.
    config : SvgConfig
        Output canvas and styling.
    """

    svg_path = Path(svg_path)
    svg_path.parent.mkdir(parents=True, exist_ok=True)
    svg_path.write_text(screen_space_lines_to_fitted_svg(segments, config), encoding="utf-8")
    logger.debug("Wrote %d segments to %s", len(segments), svg_path)
