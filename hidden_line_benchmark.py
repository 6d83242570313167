#!/usr/bin/env python3
"""
Timing benchmark for the hidden-line pipeline.

Runs the full pipeline several times per mesh on the reference camera,
keeps per-stage timings, and writes a JSON and a markdown report so runs on
different machines or revisions can be compared side by side.
"""

from __future__ import annotations

import argparse
import json
import logging
import statistics
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

from hidden_line_mesh import Mesh, Wireframe, cube_mesh, load_mesh_file
from hidden_line_pipeline import (
    PipelineConfig,
    PipelineStats,
    find_categorized_line_segments_with_stats,
)
from hidden_line_scene import Scene


logger = logging.getLogger(__name__)

STAGES = ("edges", "project", "dedupe", "split", "visibility")
BUILTIN_CUBE = "builtin:cube"


@dataclass
class CaseSummary:
    model: str
    facets: int
    repeat: int
    projected_lines: int
    deduped_lines: int
    split_segments: int
    visible_segments: int
    obscured_segments: int
    edges_ms: float
    project_ms: float
    dedupe_ms: float
    split_ms: float
    visibility_ms: float
    total_ms: float
    total_ms_min: float


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mesh-to-svg-benchmark",
        description="Time the hidden-line pipeline on one or more meshes.",
    )
    parser.add_argument(
        "--models",
        nargs="*",
        type=Path,
        default=None,
        help="Mesh files (.json or .stl). If omitted, a built-in cube is used.",
    )
    parser.add_argument(
        "--out-dir",
        type=Path,
        default=Path("out") / "benchmark",
        help="Output directory for the reports.",
    )
    parser.add_argument("--repeat", type=int, default=5, help="Pipeline runs per mesh")
    parser.add_argument("--force-all-edges", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def resolve_models(args_models: list[Path] | None) -> list[Path]:
    if not args_models:
        return []
    resolved = [p.resolve() for p in args_models]
    missing = [p for p in resolved if not p.exists()]
    if missing:
        raise FileNotFoundError(f"Missing mesh files: {', '.join(str(m) for m in missing)}")
    return resolved


def summarize_runs(model: str, mesh: Mesh, runs: list[PipelineStats]) -> CaseSummary:
    """Median per-stage timings over all runs, counts from the first run."""

    first = runs[0]
    medians = {
        stage: statistics.median(run.timings.get(stage, 0.0) for run in runs) * 1000.0
        for stage in STAGES
    }
    totals = [run.total_seconds() * 1000.0 for run in runs]
    return CaseSummary(
        model=model,
        facets=len(mesh),
        repeat=len(runs),
        projected_lines=first.projected_lines,
        deduped_lines=first.deduped_lines,
        split_segments=first.split_segments,
        visible_segments=first.visible_segments,
        obscured_segments=first.obscured_segments,
        edges_ms=medians["edges"],
        project_ms=medians["project"],
        dedupe_ms=medians["dedupe"],
        split_ms=medians["split"],
        visibility_ms=medians["visibility"],
        total_ms=statistics.median(totals),
        total_ms_min=min(totals),
    )


def benchmark_mesh(
    model: str,
    mesh: Mesh,
    wireframe: Wireframe | None,
    scene: Scene,
    repeat: int,
    config: PipelineConfig | None = None,
) -> CaseSummary:
    if repeat <= 0:
        raise ValueError("--repeat must be > 0")
    runs = []
    for _ in range(repeat):
        _, stats = find_categorized_line_segments_with_stats(mesh, wireframe, scene, config)
        runs.append(stats)
    return summarize_runs(model, mesh, runs)


def write_markdown_report(report_path: Path, cases: list[CaseSummary], config: dict) -> None:
    lines: list[str] = []
    lines.append("# Hidden-Line Benchmark Report")
    lines.append("")
    lines.append(f"- Generated: {datetime.now().isoformat(timespec='seconds')}")
    lines.append("- Timings are medians over all runs, in milliseconds.")
    lines.append("")
    lines.append("## Configuration")
    lines.append("")
    for k, v in config.items():
        lines.append(f"- `{k}`: `{v}`")
    lines.append("")
    lines.append("## Cases")
    lines.append("")
    lines.append("| Model | Facets | Lines | Unique | Segments | Visible | Obscured | Edges | Project | Dedupe | Split | Visibility | Total | Best |")
    lines.append("|---|---:|---:|---:|---:|---:|---:|---:|---:|---:|---:|---:|---:|---:|")
    for c in cases:
        lines.append(
            f"| `{c.model}` | {c.facets} | {c.projected_lines} | {c.deduped_lines} | {c.split_segments} | "
            f"{c.visible_segments} | {c.obscured_segments} | {c.edges_ms:.2f} | {c.project_ms:.2f} | "
            f"{c.dedupe_ms:.2f} | {c.split_ms:.2f} | {c.visibility_ms:.2f} | {c.total_ms:.2f} | {c.total_ms_min:.2f} |"
        )
    lines.append("")
    report_path.write_text("\n".join(lines), encoding="utf-8")


def run(args: argparse.Namespace) -> int:
    if args.repeat <= 0:
        raise ValueError("--repeat must be > 0")

    models = resolve_models(args.models)
    out_dir = args.out_dir.resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    scene = Scene.default()
    config = PipelineConfig(force_all_edges=args.force_all_edges)

    cases: list[CaseSummary] = []
    if not models:
        # The reference camera frames roughly 90 by 70 units.
        cases.append(benchmark_mesh(BUILTIN_CUBE, cube_mesh(40.0), None, scene, args.repeat, config))
    for path in models:
        mesh, wireframe = load_mesh_file(path)
        logger.debug("Benchmarking %s (%d facets)", path.name, len(mesh))
        cases.append(benchmark_mesh(path.name, mesh, wireframe, scene, args.repeat, config))

    report_md = out_dir / "benchmark_report.md"
    report_json = out_dir / "benchmark_report.json"
    report_config = {
        "repeat": args.repeat,
        "force_all_edges": args.force_all_edges,
        "canvas": f"{scene.width:g}x{scene.height:g}",
    }

    write_markdown_report(report_md, cases, report_config)
    report_json.write_text(
        json.dumps(
            {
                "generated_at": datetime.now().isoformat(timespec="seconds"),
                "config": report_config,
                "cases": [asdict(c) for c in cases],
            },
            indent=2,
        ),
        encoding="utf-8",
    )

    print(f"[OK] Benchmark reports saved in: {out_dir}")
    print(f"[OK] Markdown report: {report_md.name}")
    print(f"[OK] JSON report: {report_json.name}")
    for c in cases:
        print(
            f" - {c.model} | facets={c.facets:6d} | segments={c.split_segments:6d} | "
            f"obscured={c.obscured_segments:6d} | total={c.total_ms:9.2f} ms"
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return run(args)


if __name__ == "__main__":
    raise SystemExit(main())
