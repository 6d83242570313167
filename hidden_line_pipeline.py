#!/usr/bin/env python3
"""
Hidden-line drawing pipeline.

Pipeline stage
--------------
This module chains the stages into one call: feature-edge extraction from the
mesh, optional explicit wireframe edges, projection to screen space,
deduplication, splitting at screen-space crossings, and per-sub-segment
visibility. It also provides the `mesh-to-svg` command-line entry point.

Input / output
--------------
Input is a `Mesh`, an optional `Wireframe` and a `Scene`. Output is a flat
list of `LineSegmentCategorized`, each a screen-space segment tagged VISIBLE
or OBSCURED, ready for the SVG or terminal formatters.

Key parameters
--------------
`PipelineConfig.force_all_edges` bypasses silhouette and crease
classification. `PipelineConfig.dedupe` can disable deduplication for
inputs already known to be unique. Tolerances live in the nested
`EdgeConfig` and `VisibilityConfig`.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path

import numpy as np

from hidden_line_lines import (
    LineSegmentCategorized,
    LineVisibility,
    dedupe_lines_faster,
    split_lines_by_intersection,
)
from hidden_line_mesh import DEFAULT_CREASE_ANGLE_DEG, EdgeConfig, Mesh, Wireframe, load_mesh_file
from hidden_line_scene import (
    Scene,
    look_at_matrix,
    orthographic_matrix,
    perspective_matrix,
)
from hidden_line_svg import SvgConfig, screen_space_lines_to_fitted_svg, write_svg
from hidden_line_visibility import VisibilityConfig, count_by_visibility, partition_visibility


logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """
    Pipeline options.

    Parameters
    ----------
    force_all_edges : bool
        Emit every unique mesh edge instead of classified feature edges.
    edge : EdgeConfig
        Crease threshold and hidden-crease policy.
    visibility : VisibilityConfig
        Ray-casting tolerances.
    dedupe : bool
        Remove coincident screen-space lines before splitting.
    """

    force_all_edges: bool = False
    edge: EdgeConfig = field(default_factory=EdgeConfig)
    visibility: VisibilityConfig = field(default_factory=VisibilityConfig)
    dedupe: bool = True


@dataclass
class PipelineStats:
    """Per-stage counts and wall-clock timings (seconds) for one run."""

    mesh_edges: int = 0
    wireframe_edges: int = 0
    projected_lines: int = 0
    deduped_lines: int = 0
    split_segments: int = 0
    visible_segments: int = 0
    obscured_segments: int = 0
    timings: dict[str, float] = field(default_factory=dict)

    def total_seconds(self) -> float:
        return sum(self.timings.values())

    def to_dict(self) -> dict:
        data = asdict(self)
        data["total_seconds"] = self.total_seconds()
        return data


def find_categorized_line_segments_with_stats(
    mesh: Mesh,
    wireframe: Wireframe | None,
    scene: Scene,
    config: PipelineConfig | None = None,
) -> tuple[list[LineSegmentCategorized], PipelineStats]:
    """
    Run the full pipeline and report per-stage counts and timings.

    Parameters
    ----------
    mesh : Mesh
        Occluding geometry and source of feature edges.
    wireframe : Wireframe | None
        Extra edges drawn in addition to the mesh's own.
    scene : Scene
        Camera for this frame. It is read, never modified.
    config : PipelineConfig | None, optional
        Pipeline options.

    Returns
    -------
    tuple[list[LineSegmentCategorized], PipelineStats]
        Categorized segments in split order, and the run statistics.
    """

    cfg = config or PipelineConfig()
    stats = PipelineStats()

    started = time.perf_counter()
    edges = mesh.find_edge_lines(scene, force_all=cfg.force_all_edges, edge_config=cfg.edge)
    stats.mesh_edges = len(edges)
    if wireframe is not None:
        extra = wireframe.edges(scene)
        stats.wireframe_edges = len(extra)
        edges = edges + extra
    stats.timings["edges"] = time.perf_counter() - started

    started = time.perf_counter()
    projected = scene.project_lines(edges)
    stats.projected_lines = len(projected)
    stats.timings["project"] = time.perf_counter() - started

    started = time.perf_counter()
    deduped = dedupe_lines_faster(projected) if cfg.dedupe else list(projected)
    stats.deduped_lines = len(deduped)
    stats.timings["dedupe"] = time.perf_counter() - started

    started = time.perf_counter()
    split_lines = split_lines_by_intersection(deduped)
    stats.split_segments = sum(len(s.split_screen_space_lines) for s in split_lines)
    stats.timings["split"] = time.perf_counter() - started

    started = time.perf_counter()
    segments = partition_visibility(mesh, scene, split_lines, cfg.visibility)
    counts = count_by_visibility(segments)
    stats.visible_segments = counts[LineVisibility.VISIBLE]
    stats.obscured_segments = counts[LineVisibility.OBSCURED]
    stats.timings["visibility"] = time.perf_counter() - started

    logger.debug(
        "Pipeline: %d edges -> %d lines -> %d segments (%d visible, %d obscured) in %.3f s",
        stats.projected_lines,
        stats.deduped_lines,
        stats.split_segments,
        stats.visible_segments,
        stats.obscured_segments,
        stats.total_seconds(),
    )
    return segments, stats


def find_categorized_line_segments(
    mesh: Mesh,
    wireframe: Wireframe | None,
    scene: Scene,
    config: PipelineConfig | None = None,
) -> list[LineSegmentCategorized]:
    """Screen-space segments of the mesh's drawable edges, tagged by visibility."""

    segments, _ = find_categorized_line_segments_with_stats(mesh, wireframe, scene, config)
    return segments


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Define and parse the command-line interface.

    Notes
    -----
    Without `--eye` the fixed reference camera is used. The `term` subcommand
    draws to the terminal instead of writing SVG.
    """

    parser = argparse.ArgumentParser(
        prog="mesh-to-svg",
        description="Convert a mesh to an SVG line drawing with hidden lines removed",
    )
    parser.add_argument("-f", "--file", type=Path, required=True, help="Input mesh (.json or .stl)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-stage debug output")

    svg_group = parser.add_argument_group("svg output")
    svg_group.add_argument("--svg", type=Path, default=None, help="Output SVG path (default: stdout)")
    svg_group.add_argument("--svg-width", type=float, default=None, help="SVG width (default: canvas width)")
    svg_group.add_argument("--svg-height", type=float, default=None, help="SVG height (default: canvas height)")
    svg_group.add_argument("--margin", type=float, default=None, help="Fit margin (default: 100)")
    svg_group.add_argument("--visible-stroke", type=str, default=None, help="Visible stroke colour")
    svg_group.add_argument("--visible-stroke-width", type=float, default=None, help="Visible stroke width")
    svg_group.add_argument("--obscured-stroke", type=str, default=None, help="Obscured stroke colour")
    svg_group.add_argument("--obscured-stroke-width", type=float, default=None, help="Obscured stroke width")
    svg_group.add_argument("--hide-obscured", action="store_true", help="Omit obscured segments")
    svg_group.add_argument("--no-fit", action="store_true", help="Map the source canvas instead of fitting lines")

    edge_group = parser.add_argument_group("edges")
    edge_group.add_argument("--force-all-edges", action="store_true", help="Draw every mesh edge")
    edge_group.add_argument(
        "--crease-angle",
        type=float,
        default=DEFAULT_CREASE_ANGLE_DEG,
        help="Dihedral angle in degrees above which shared edges are creases",
    )
    edge_group.add_argument(
        "--hidden-creases",
        action="store_true",
        help="Also draw creases between faces turned away from the camera",
    )

    camera_group = parser.add_argument_group("camera")
    camera_group.add_argument("--eye", nargs=3, type=float, default=None, metavar=("EX", "EY", "EZ"))
    camera_group.add_argument(
        "--target", nargs=3, type=float, default=(0.0, 0.0, 0.0), metavar=("TX", "TY", "TZ")
    )
    camera_group.add_argument(
        "--up", nargs=3, type=float, default=(0.0, 0.0, 1.0), metavar=("UX", "UY", "UZ")
    )
    projection = camera_group.add_mutually_exclusive_group()
    projection.add_argument("--ortho-size", type=float, default=None, help="Orthographic half height")
    projection.add_argument("--fov", type=float, default=None, help="Perspective vertical field of view")
    camera_group.add_argument("--near", type=float, default=0.1, help="Near clip distance")
    camera_group.add_argument("--far", type=float, default=1000.0, help="Far clip distance")
    camera_group.add_argument("--canvas-width", type=float, default=None, help="Scene canvas width")
    camera_group.add_argument("--canvas-height", type=float, default=None, help="Scene canvas height")

    subparsers = parser.add_subparsers(dest="command")
    term = subparsers.add_parser("term", help="Draw to the terminal")
    term.add_argument("-w", "--output-width", type=int, default=None, help="Dots across (default: terminal)")
    term.add_argument("--output-height", type=int, default=None, help="Dots down (default: keep aspect)")
    term.add_argument("--animate", action="store_true", help="Spin the model about +Z")
    term.add_argument("--frames", type=int, default=50, help="Frames per turn")
    term.add_argument("--gif", type=Path, default=None, help="Also save the turn as a GIF")
    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    """Validate the numeric ranges of CLI parameters."""

    for name in ("svg_width", "svg_height", "canvas_width", "canvas_height"):
        value = getattr(args, name)
        if value is not None and value <= 0:
            raise ValueError(f"--{name.replace('_', '-')} must be > 0")
    if args.margin is not None and args.margin < 0:
        raise ValueError("--margin must be >= 0")
    for name in ("visible_stroke_width", "obscured_stroke_width"):
        value = getattr(args, name)
        if value is not None and value <= 0:
            raise ValueError(f"--{name.replace('_', '-')} must be > 0")
    if not 0.0 <= args.crease_angle <= 180.0:
        raise ValueError("--crease-angle must be in [0, 180]")
    if args.ortho_size is not None and args.ortho_size <= 0:
        raise ValueError("--ortho-size must be > 0")
    if args.fov is not None and not 0.0 < args.fov < 180.0:
        raise ValueError("--fov must be in (0, 180)")
    if args.far <= args.near:
        raise ValueError("--far must be greater than --near")
    if args.fov is not None and args.near <= 0:
        raise ValueError("--near must be > 0 with --fov")
    if args.eye is None and (args.ortho_size is not None or args.fov is not None):
        raise ValueError("--ortho-size and --fov require --eye")
    if args.command == "term":
        if args.output_width is not None and args.output_width <= 0:
            raise ValueError("--output-width must be > 0")
        if args.output_height is not None and args.output_height <= 0:
            raise ValueError("--output-height must be > 0")
        if args.frames <= 0:
            raise ValueError("--frames must be > 0")


def build_scene(args: argparse.Namespace) -> Scene:
    """
    Camera from CLI flags.

    Without `--eye` this is the reference scene, optionally resized. With
    `--eye` the camera looks at `--target` using an orthographic projection
    (half height `--ortho-size`, default 1) or a perspective one (`--fov`).
    """

    if args.eye is None:
        scene = Scene.default()
        if args.canvas_width is None and args.canvas_height is None:
            return scene
        return Scene(
            args.canvas_width or scene.width,
            args.canvas_height or scene.height,
            scene.view_matrix,
            scene.projection_matrix,
            scene.mesh_world_matrix,
        )

    width = args.canvas_width or 800.0
    height = args.canvas_height or 600.0
    aspect = width / height
    view = look_at_matrix(args.eye, args.target, args.up)
    if args.fov is not None:
        projection_mtx = perspective_matrix(args.fov, aspect, args.near, args.far)
    else:
        half_height = args.ortho_size or 1.0
        projection_mtx = orthographic_matrix(half_height * aspect, half_height, args.near, args.far)
    return Scene(width, height, view, projection_mtx, np.eye(4))


def build_pipeline_config(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        force_all_edges=args.force_all_edges,
        edge=EdgeConfig(crease_angle_deg=args.crease_angle, include_hidden_creases=args.hidden_creases),
    )


def build_svg_config(args: argparse.Namespace, scene: Scene) -> SvgConfig:
    return SvgConfig.create(
        scene.width,
        scene.height,
        width=args.svg_width,
        height=args.svg_height,
        margin=args.margin,
        visible_stroke_width=args.visible_stroke_width,
        visible_stroke=args.visible_stroke,
        hide_obscured=args.hide_obscured,
        obscured_stroke_width=args.obscured_stroke_width,
        obscured_stroke=args.obscured_stroke,
        fit_lines=not args.no_fit,
    )


def run_terminal(args: argparse.Namespace, mesh: Mesh, wireframe: Wireframe | None, scene: Scene) -> int:
    from hidden_line_terminal import animate, draw_terminal, render_animation_frames, write_gif

    config = build_pipeline_config(args)
    if args.gif is not None:
        frames = render_animation_frames(mesh, wireframe, scene, args.frames, config)
        write_gif(args.gif, frames, scene)
        print(f"[OK] GIF saved: {args.gif}", file=sys.stderr)
    if args.animate:
        animate(
            mesh,
            wireframe,
            scene,
            count=args.frames,
            output_width=args.output_width,
            output_height=args.output_height,
            pipeline_config=config,
        )
        return 0

    segments = find_categorized_line_segments(mesh, wireframe, scene, config)
    print(draw_terminal(segments, scene, args.output_width, args.output_height))
    return 0


def run(args: argparse.Namespace) -> int:
    """
    Execute the pipeline for one command-line invocation.

    Returns
    -------
    int
        Process exit code (`0` on success).
    """

    validate_args(args)
    mesh, wireframe = load_mesh_file(args.file)
    scene = build_scene(args)
    logger.debug("%s", scene)

    if args.command == "term":
        return run_terminal(args, mesh, wireframe, scene)

    segments, stats = find_categorized_line_segments_with_stats(
        mesh, wireframe, scene, build_pipeline_config(args)
    )
    svg_config = build_svg_config(args, scene)

    status = sys.stdout if args.svg is not None else sys.stderr
    print(f"[OK] Mesh loaded: {args.file} ({len(mesh)} facets)", file=status)
    print(f"[OK] Edges: {stats.projected_lines} projected, {stats.deduped_lines} unique", file=status)
    print(
        f"[OK] Segments: {stats.visible_segments} visible, {stats.obscured_segments} obscured",
        file=status,
    )
    if args.svg is not None:
        write_svg(args.svg, segments, svg_config)
        print(f"[OK] SVG saved: {args.svg}")
    else:
        print(screen_space_lines_to_fitted_svg(segments, svg_config))
    return 0


def main(argv: list[str] | None = None) -> int:
    """
    Command-line entry point.

    Exceptions are converted into exit code 1 after an `[ERROR]` line on
    stderr.
    """

    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return run(args)
    except Exception as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
