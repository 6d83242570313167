"""
Screen-space line algebra for hidden-line removal.

Pipeline stage
--------------
This module sits between projection and visibility resolution. It owns the
line-segment value types shared by every stage, the planar segment/segment
intersection test, coincident-edge deduplication, and the splitting of each
projected edge at every crossing with another edge.

Input / output
--------------
Input is a list of `ProjectedLine` records (screen-space segment paired with
the view-space segment it was projected from). Output is a list of
`ProjectedSplitLine` records whose sub-segments never cross another line in
screen space, so each sub-segment has a single visibility state.

Coordinate conventions
----------------------
Screen space is measured in pixels with `x` to the right and `y` downward.
View space is the mesh coordinate frame that the scene transform is applied
to. Geometry is stored as `float64` numpy arrays; point comparisons use the
relative tolerance in `relative_eq`.
"""

from __future__ import annotations

import enum
import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np


logger = logging.getLogger(__name__)

# Single-precision machine epsilon, used as both the absolute and relative
# tolerance of point comparisons.
FLOAT_EPSILON = float(np.finfo(np.float32).eps)
# Width of the `start.x` band scanned by the windowed deduplication.
DEDUPE_WINDOW_EPSILON = 0.001


class LineVisibility(enum.Enum):
    VISIBLE = 0
    OBSCURED = 1


def as_point(values: Iterable[float], dimensions: int) -> np.ndarray:
    """Coerce coordinates to a `float64` point of the given dimension."""

    point = np.asarray(values, dtype=np.float64).reshape(-1)
    if point.shape[0] != dimensions:
        raise ValueError(f"Expected a {dimensions}-D point, got shape {point.shape}.")
    return point


@dataclass(frozen=True, eq=False)
class LineSegment2:
    """Ordered screen-space segment in pixels."""

    start: np.ndarray
    end: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_point(self.start, 2))
        object.__setattr__(self, "end", as_point(self.end, 2))

    def length(self) -> float:
        return float(np.linalg.norm(self.end - self.start))

    def reversed(self) -> LineSegment2:
        return LineSegment2(self.end, self.start)

    def midpoint(self) -> np.ndarray:
        return (self.start + self.end) / 2.0

    def __repr__(self) -> str:
        return (
            f"LineSegment2(({self.start[0]:.3f}, {self.start[1]:.3f}) -> "
            f"({self.end[0]:.3f}, {self.end[1]:.3f}))"
        )


@dataclass(frozen=True, eq=False)
class LineSegment3:
    """Ordered view-space segment in mesh units."""

    start: np.ndarray
    end: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_point(self.start, 3))
        object.__setattr__(self, "end", as_point(self.end, 3))

    def length(self) -> float:
        return float(np.linalg.norm(self.end - self.start))

    def reversed(self) -> LineSegment3:
        return LineSegment3(self.end, self.start)


@dataclass(frozen=True, eq=False)
class ProjectedLine:
    """
    Screen-space segment paired with the view-space segment it came from.

    Parameters
    ----------
    screen_space : LineSegment2
        Projection of `view_space` under the scene transform at projection
        time.
    view_space : LineSegment3
        Source segment, used later to rebuild 3-D ray origins.

    Notes
    -----
    Endpoint order is shared: `screen_space.start` is the projection of
    `view_space.start`. `reversed` swaps both segments together.
    """

    screen_space: LineSegment2
    view_space: LineSegment3

    def reversed(self) -> ProjectedLine:
        return ProjectedLine(self.screen_space.reversed(), self.view_space.reversed())


@dataclass(frozen=True, eq=False)
class ProjectedSplitLine:
    projected_line: ProjectedLine
    split_screen_space_lines: list[LineSegment2]


@dataclass(frozen=True, eq=False)
class LineSegmentCategorized:
    line_segment: LineSegment2
    visibility: LineVisibility


def _close(a: float, b: float, epsilon: float, max_relative: float) -> bool:
    diff = abs(a - b)
    if diff <= epsilon:
        return True
    return diff <= max(abs(a), abs(b)) * max_relative


def relative_eq(
    a: Sequence[float] | np.ndarray,
    b: Sequence[float] | np.ndarray,
    epsilon: float = FLOAT_EPSILON,
    max_relative: float = FLOAT_EPSILON,
) -> bool:
    """
    Component-wise approximate equality of two points.

    Parameters
    ----------
    a, b : array-like
        Points of equal dimension.
    epsilon : float, optional
        Absolute tolerance, used for values near zero.
    max_relative : float, optional
        Tolerance relative to the larger magnitude of each component pair.

    Returns
    -------
    bool
        True when every component pair is within either tolerance.
    """

    return all(
        _close(float(x), float(y), epsilon, max_relative) for x, y in zip(a, b)
    )


def _relative_eq_rows(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Vectorized `relative_eq` over the last axis."""

    diff = np.abs(a - b)
    largest = np.maximum(np.abs(a), np.abs(b))
    return np.all((diff <= FLOAT_EPSILON) | (diff <= largest * FLOAT_EPSILON), axis=-1)


def _intersect_against(
    start: np.ndarray,
    end: np.ndarray,
    other_starts: np.ndarray,
    other_ends: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Intersect one segment against a batch of segments.

    Parameters
    ----------
    start, end : np.ndarray
        Endpoints of the reference segment, shape `(2,)`.
    other_starts, other_ends : np.ndarray
        Endpoints of the batch, shape `(N, 2)`.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        Boolean hit mask of shape `(N,)` and intersection points of shape
        `(N, 2)`; rows where the mask is False hold undefined values.

    Notes
    -----
    Segments sharing an endpoint with the reference are never reported.
    Parallel segments produce a zero denominator; the resulting non-finite
    parameters fail the range test and count as no intersection.
    """

    shared = (
        _relative_eq_rows(start, other_starts)
        | _relative_eq_rows(start, other_ends)
        | _relative_eq_rows(end, other_starts)
        | _relative_eq_rows(end, other_ends)
    )

    s1x = end[0] - start[0]
    s1y = end[1] - start[1]
    s2x = other_ends[:, 0] - other_starts[:, 0]
    s2y = other_ends[:, 1] - other_starts[:, 1]
    dx = start[0] - other_starts[:, 0]
    dy = start[1] - other_starts[:, 1]

    denom = -s2x * s1y + s1x * s2y
    with np.errstate(divide="ignore", invalid="ignore"):
        s = (-s1y * dx + s1x * dy) / denom
        t = (s2x * dy - s2y * dx) / denom
        points = np.empty((other_starts.shape[0], 2), dtype=np.float64)
        points[:, 0] = start[0] + t * s1x
        points[:, 1] = start[1] + t * s1y

    hits = (~shared) & (denom != 0.0) & (s >= 0.0) & (s <= 1.0) & (t >= 0.0) & (t <= 1.0)
    return hits, points


def find_intersection(a: LineSegment2, b: LineSegment2) -> np.ndarray | None:
    """
    Return the crossing point of two screen-space segments, if any.

    Parameters
    ----------
    a, b : LineSegment2
        Segments to test.

    Returns
    -------
    np.ndarray | None
        Intersection point `(x, y)` lying on `a` when both segment parameters
        are inside the closed unit interval, otherwise None. Segments sharing
        an endpoint (within `relative_eq`) never intersect.
    """

    hits, points = _intersect_against(
        a.start,
        a.end,
        b.start.reshape(1, 2),
        b.end.reshape(1, 2),
    )
    if not bool(hits[0]):
        return None
    return points[0]


def same_segment(a: LineSegment2, b: LineSegment2) -> bool:
    """True when `a` and `b` coincide in either endpoint order."""

    if relative_eq(a.start, b.start) and relative_eq(a.end, b.end):
        return True
    return relative_eq(a.start, b.end) and relative_eq(a.end, b.start)


def dedupe_lines(lines: Sequence[ProjectedLine]) -> list[ProjectedLine]:
    """
    Brute-force O(n^2) removal of coincident screen-space lines.

    A line is dropped when any later line covers the same two endpoints in
    either order, so the last occurrence of each duplicate group survives.
    This is the reference result `dedupe_lines_faster` must agree with.
    """

    deduped: list[ProjectedLine] = []
    for index, line in enumerate(lines):
        duplicate = any(
            same_segment(line.screen_space, compare.screen_space)
            for compare in lines[index + 1:]
        )
        if not duplicate:
            deduped.append(line)
    return deduped


def canonical_line(line: ProjectedLine) -> ProjectedLine:
    """Orient a line so its screen-space start has the smaller `(x, y)`."""

    start = line.screen_space.start
    end = line.screen_space.end
    if (start[0], start[1]) > (end[0], end[1]):
        return line.reversed()
    return line


def dedupe_lines_faster(
    lines: Sequence[ProjectedLine],
    window_epsilon: float = DEDUPE_WINDOW_EPSILON,
) -> list[ProjectedLine]:
    """
    Remove coincident screen-space lines with a sorted sliding window.

    Parameters
    ----------
    lines : Sequence[ProjectedLine]
        Projected lines, possibly containing the same edge twice (for example
        once from each adjacent triangle, in opposite directions).
    window_epsilon : float, optional
        Minimum width of the `start.x` band that is compared pairwise. The
        band widens with `|start.x|` to cover the relative point tolerance.

    Returns
    -------
    list[ProjectedLine]
        Unique lines in canonical orientation, ordered by ascending
        `start.x`. The surviving set matches `dedupe_lines`.

    Notes
    -----
    Lines are first oriented by `canonical_line` and stable-sorted by
    `start.x`, so duplicates land inside the same narrow window. Inside the
    window both endpoint orders are compared, which keeps near-vertical
    duplicates whose canonical orientation differs by rounding.
    """

    ordered = sorted(
        (canonical_line(line) for line in lines),
        key=lambda line: float(line.screen_space.start[0]),
    )

    unique: list[ProjectedLine] = []
    lookup_end = 0
    count = len(ordered)
    for curr_index in range(count):
        current = ordered[curr_index].screen_space
        start_x = float(current.start[0])
        # Canonical starts of two matching lines differ by up to twice the
        # relative tolerance of `same_segment`, which outgrows the window
        # at large coordinates.
        band_limit = start_x + max(window_epsilon, 4.0 * abs(start_x) * FLOAT_EPSILON)
        while lookup_end < count and float(ordered[lookup_end].screen_space.start[0]) < band_limit:
            lookup_end += 1

        match_found = False
        for comp_index in range(curr_index + 1, lookup_end):
            if same_segment(current, ordered[comp_index].screen_space):
                match_found = True
                break
        if not match_found:
            unique.append(ordered[curr_index])

    if len(unique) != count:
        logger.debug("Deduplication removed %d of %d lines", count - len(unique), count)
    return unique


class IntersectionCache:
    """
    Symmetric cache of pairwise screen-space intersections.

    Each unordered pair `(i, j)` is tested exactly once. Row `i` is computed
    against every `j > i` in one vectorized call the first time line `i` is
    queried; pairs with `j < i` were already filled by row `j`.

    Parameters
    ----------
    lines : Sequence[ProjectedLine]
        Lines indexed by position.
    """

    def __init__(self, lines: Sequence[ProjectedLine]):
        count = len(lines)
        self._starts = np.zeros((count, 2), dtype=np.float64)
        self._ends = np.zeros((count, 2), dtype=np.float64)
        for index, line in enumerate(lines):
            self._starts[index] = line.screen_space.start
            self._ends[index] = line.screen_space.end
        self._count = count
        self._pairs: dict[tuple[int, int], np.ndarray] = {}
        self._partners: list[list[int]] = [[] for _ in range(count)]
        self._rows_done = 0
        self.tests_run = 0

    def __len__(self) -> int:
        return self._count

    def _fill_through(self, row: int) -> None:
        while self._rows_done <= row:
            i = self._rows_done
            self._rows_done += 1
            if i + 1 >= self._count:
                continue
            hits, points = _intersect_against(
                self._starts[i],
                self._ends[i],
                self._starts[i + 1:],
                self._ends[i + 1:],
            )
            self.tests_run += self._count - i - 1
            for offset in np.flatnonzero(hits):
                j = i + 1 + int(offset)
                self._pairs[(i, j)] = points[offset].copy()
                self._partners[i].append(j)
                self._partners[j].append(i)

    def get(self, i: int, j: int) -> np.ndarray | None:
        """Intersection of lines `i` and `j`, in either argument order."""

        if i == j:
            return None
        key = (i, j) if i < j else (j, i)
        self._fill_through(key[0])
        return self._pairs.get(key)

    def points_for(self, i: int) -> list[np.ndarray]:
        """All intersection points on line `i`, ordered by partner index."""

        self._fill_through(i)
        # Partners below `i` were filled by earlier rows, so sort once.
        partners = sorted(self._partners[i])
        return [self._pairs[(i, j) if i < j else (j, i)] for j in partners]


def _distinct_points(points: list[np.ndarray]) -> list[np.ndarray]:
    distinct: list[np.ndarray] = []
    for point in points:
        if not any(relative_eq(point, kept) for kept in distinct):
            distinct.append(point)
    return distinct


def split_line(line: LineSegment2, split_points: list[np.ndarray]) -> list[LineSegment2]:
    """
    Cut one segment at the given points.

    Points are ordered by squared distance from `line.start` with a stable
    sort, then joined as `start -> p0 -> ... -> pk -> end`.
    """

    if not split_points:
        return [line]

    origin = line.start
    ordered = sorted(
        split_points,
        key=lambda p: float((p[0] - origin[0]) ** 2 + (p[1] - origin[1]) ** 2),
    )
    vertices = [line.start, *ordered, line.end]
    return [LineSegment2(vertices[k], vertices[k + 1]) for k in range(len(vertices) - 1)]


def split_lines_by_intersection(lines: Sequence[ProjectedLine]) -> list[ProjectedSplitLine]:
    """
    Split every projected line at its crossings with every other line.

    Parameters
    ----------
    lines : Sequence[ProjectedLine]
        Projected (ideally deduplicated) lines.

    Returns
    -------
    list[ProjectedSplitLine]
        One record per input line, in input order. A line with `k` distinct
        intersection points yields `k + 1` sub-segments; a line with none
        yields itself.

    Notes
    -----
    Pair tests go through `IntersectionCache`, so each unordered pair is
    evaluated once and reused for the mirrored index.
    """

    cache = IntersectionCache(lines)
    split_lines: list[ProjectedSplitLine] = []
    for index, projected_line in enumerate(lines):
        points = _distinct_points(cache.points_for(index))
        segments = split_line(projected_line.screen_space, points)
        if not segments:
            raise AssertionError(f"Line {index} produced no sub-segments.")
        split_lines.append(
            ProjectedSplitLine(
                projected_line=projected_line,
                split_screen_space_lines=segments,
            )
        )

    logger.debug(
        "Split %d lines into %d sub-segments (%d pair tests)",
        len(lines),
        sum(len(s.split_screen_space_lines) for s in split_lines),
        cache.tests_run,
    )
    return split_lines


def segment_distance(a: np.ndarray, b: np.ndarray) -> float:
    return math.hypot(float(b[0] - a[0]), float(b[1] - a[1]))
