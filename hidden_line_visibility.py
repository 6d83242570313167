"""
Per-sub-segment visibility by ray casting.

Each split sub-segment is tested at its midpoint: the matching point on the
parent's view-space segment is the ray origin, and the unprojection of the
screen midpoint onto the plane nearest the viewer is the ray target. Any
facet hit strictly between the two (past a small tolerance that skips the
edge's own facets) marks the sub-segment obscured.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from hidden_line_lines import (
    LineSegment2,
    LineSegmentCategorized,
    LineVisibility,
    ProjectedLine,
    ProjectedSplitLine,
    segment_distance,
)
from hidden_line_mesh import Mesh
from hidden_line_scene import DETERMINANT_EPSILON, OCCLUSION_TOLERANCE, Ray, Scene


logger = logging.getLogger(__name__)


@dataclass
class VisibilityConfig:
    """
    Ray-casting tolerances.

    Parameters
    ----------
    determinant_epsilon : float
        Rays closer to parallel with a facet than this are treated as misses.
    occlusion_tolerance : float
        Minimum hit distance that counts as occlusion, in view-space units.
    """

    determinant_epsilon: float = DETERMINANT_EPSILON
    occlusion_tolerance: float = OCCLUSION_TOLERANCE


def _midpoint_scale(line_segment: LineSegment2, parent: LineSegment2) -> float | None:
    parent_length = segment_distance(parent.start, parent.end)
    if parent_length == 0.0:
        return None
    start_scale = segment_distance(parent.start, line_segment.start) / parent_length
    end_scale = segment_distance(parent.start, line_segment.end) / parent_length
    return start_scale + (end_scale - start_scale) / 2.0


def get_visibility(
    line_segment: LineSegment2,
    projected_line: ProjectedLine,
    scene: Scene,
    mesh: Mesh,
    config: VisibilityConfig | None = None,
) -> LineVisibility:
    """
    Classify one sub-segment of `projected_line`.

    Parameters
    ----------
    line_segment : LineSegment2
        Sub-segment produced by splitting `projected_line.screen_space`.
    projected_line : ProjectedLine
        Parent line; its view-space segment supplies the 3-D ray origin.
    scene : Scene
        Camera used to unproject the ray target.
    mesh : Mesh
        Occluding facets.
    config : VisibilityConfig | None, optional
        Ray tolerances.

    Returns
    -------
    LineVisibility
        OBSCURED when a facet lies between the sub-segment midpoint and the
        viewer, otherwise VISIBLE.

    Notes
    -----
    The midpoint parameter is measured by distance from the parent's screen
    start, so it does not depend on the sub-segment's own orientation. The
    same parameter is used on the view-space segment, which assumes the
    projection is close to affine along a single edge. A parent that projects
    to a single pixel is reported VISIBLE.
    """

    cfg = config or VisibilityConfig()
    scale = _midpoint_scale(line_segment, projected_line.screen_space)
    if scale is None:
        return LineVisibility.VISIBLE

    screen = projected_line.screen_space
    view = projected_line.view_space
    test_screen_space = screen.start + (screen.end - screen.start) * scale
    test_view_space = view.start + (view.end - view.start) * scale

    ray_target = scene.unproject_point(test_screen_space)
    ray = Ray.between(test_view_space, ray_target)
    if ray.intersects_mesh(mesh, cfg.occlusion_tolerance, cfg.determinant_epsilon):
        return LineVisibility.OBSCURED
    return LineVisibility.VISIBLE


def partition_visibility(
    mesh: Mesh,
    scene: Scene,
    split_lines: Sequence[ProjectedSplitLine],
    config: VisibilityConfig | None = None,
) -> list[LineSegmentCategorized]:
    """Categorize every sub-segment, preserving split order."""

    cfg = config or VisibilityConfig()
    categorized: list[LineSegmentCategorized] = []
    for split_line in split_lines:
        for segment in split_line.split_screen_space_lines:
            visibility = get_visibility(segment, split_line.projected_line, scene, mesh, cfg)
            categorized.append(LineSegmentCategorized(line_segment=segment, visibility=visibility))

    obscured = sum(1 for item in categorized if item.visibility is LineVisibility.OBSCURED)
    logger.debug("Visibility: %d segments, %d obscured", len(categorized), obscured)
    return categorized


def count_by_visibility(segments: Sequence[LineSegmentCategorized]) -> dict[LineVisibility, int]:
    counts = {visibility: 0 for visibility in LineVisibility}
    for segment in segments:
        counts[segment.visibility] += 1
    return counts

