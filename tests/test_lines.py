import warnings

import numpy as np
import pytest

from hidden_line_lines import (
    IntersectionCache,
    LineSegment2,
    LineSegment3,
    ProjectedLine,
    canonical_line,
    dedupe_lines,
    dedupe_lines_faster,
    find_intersection,
    relative_eq,
    split_line,
    split_lines_by_intersection,
)


def _projected(x0, y0, x1, y1):
    return ProjectedLine(
        screen_space=LineSegment2((x0, y0), (x1, y1)),
        view_space=LineSegment3((x0, y0, 0.0), (x1, y1, 0.0)),
    )


def _key(line):
    s = line.screen_space
    return tuple(np.round(np.concatenate((s.start, s.end)), 6))


def _unordered_key(line):
    s = line.screen_space
    a = tuple(np.round(s.start, 6))
    b = tuple(np.round(s.end, 6))
    return (a, b) if a <= b else (b, a)


def test_relative_eq_tolerates_float_noise():
    assert relative_eq((1.0, 2.0), (1.0 + 1e-9, 2.0))
    assert relative_eq((0.0, 0.0), (1e-8, -1e-8))
    assert not relative_eq((1.0, 2.0), (1.001, 2.0))


def test_find_intersection_crossing_diagonals():
    a = LineSegment2((0, 0), (10, 10))
    b = LineSegment2((0, 10), (10, 0))
    point = find_intersection(a, b)
    assert point is not None
    np.testing.assert_allclose(point, (5.0, 5.0))


def test_find_intersection_t_junction_touches_interior():
    a = LineSegment2((0, 0), (10, 0))
    b = LineSegment2((5, 0), (5, 5))
    np.testing.assert_allclose(find_intersection(a, b), (5.0, 0.0))


def test_find_intersection_shared_endpoint_is_none():
    a = LineSegment2((0, 0), (10, 0))
    b = LineSegment2((10, 0), (10, 10))
    assert find_intersection(a, b) is None
    assert find_intersection(b, a) is None


def test_find_intersection_parallel_and_disjoint_are_none():
    assert find_intersection(LineSegment2((0, 0), (10, 0)), LineSegment2((0, 1), (10, 1))) is None
    assert find_intersection(LineSegment2((0, 0), (1, 1)), LineSegment2((5, 0), (6, -1))) is None


def test_find_intersection_collinear_overlap_is_none():
    a = LineSegment2((0, 0), (10, 0))
    b = LineSegment2((2, 0), (8, 0))
    assert find_intersection(a, b) is None


def test_dedupe_lines_drops_reversed_duplicate():
    lines = [_projected(0, 0, 10, 0), _projected(10, 0, 0, 0), _projected(0, 0, 0, 10)]
    deduped = dedupe_lines(lines)
    assert len(deduped) == 2
    # The later occurrence survives.
    assert deduped[0] is lines[1]


def test_dedupe_faster_matches_brute_force():
    lines = [
        _projected(0, 0, 10, 0),
        _projected(10, 0, 0, 0),
        _projected(3, 3, 3, 9),
        _projected(3, 9, 3, 3),
        _projected(3, 3, 3, 9),
        _projected(1, 1, 2, 5),
        _projected(7, 2, 1, 8),
    ]
    slow = {_unordered_key(line) for line in dedupe_lines(lines)}
    fast = dedupe_lines_faster(lines)
    assert len(fast) == len(slow) == 4
    assert {_unordered_key(line) for line in fast} == slow


def _coarse_key(line):
    s = line.screen_space
    a = tuple(np.round(s.start, 1))
    b = tuple(np.round(s.end, 1))
    return (a, b) if a <= b else (b, a)


def test_dedupe_faster_matches_brute_force_at_large_coordinates():
    # 0.002 is inside the relative point tolerance at x = 20000.
    lines = [_projected(20000, 0, 20010, 5), _projected(20010, 5, 20000.002, 0)]
    assert len(dedupe_lines(lines)) == 1
    assert len(dedupe_lines_faster(lines)) == 1


def test_dedupe_faster_matches_brute_force_on_random_lines():
    rng = np.random.default_rng(7)
    starts = rng.integers(0, 800, size=(60, 2)).astype(float)
    starts[30:, 0] += 20000.0
    ends = starts + rng.integers(1, 50, size=(60, 2))

    lines = []
    for index, (start, end) in enumerate(zip(starts, ends)):
        lines.append(_projected(*start, *end))
        if index % 3 == 0:
            lines.append(_projected(*end, *start))
        if index >= 30 and index % 5 == 0:
            lines.append(_projected(end[0], end[1], start[0] + 0.002, start[1]))
    order = rng.permutation(len(lines))
    lines = [lines[i] for i in order]

    slow = sorted(_coarse_key(line) for line in dedupe_lines(lines))
    fast = sorted(_coarse_key(line) for line in dedupe_lines_faster(lines))
    assert len(slow) == 60
    assert fast == slow


def test_dedupe_faster_keeps_screen_and_view_endpoints_paired():
    line = ProjectedLine(
        screen_space=LineSegment2((10, 0), (0, 0)),
        view_space=LineSegment3((1, 0, 0), (0, 0, 0)),
    )
    (kept,) = dedupe_lines_faster([line])
    np.testing.assert_allclose(kept.screen_space.start, (0, 0))
    np.testing.assert_allclose(kept.view_space.start, (0, 0, 0))
    np.testing.assert_allclose(kept.view_space.end, (1, 0, 0))


def test_canonical_line_orders_vertical_lines_by_y():
    line = canonical_line(_projected(3, 9, 3, 3))
    np.testing.assert_allclose(line.screen_space.start, (3, 3))


def test_dedupe_faster_sorts_by_start_x():
    lines = [_projected(9, 0, 9, 5), _projected(1, 0, 2, 5), _projected(5, 5, 4, 0)]
    xs = [float(line.screen_space.start[0]) for line in dedupe_lines_faster(lines)]
    assert xs == sorted(xs)


def test_split_lines_x_shape_gives_four_segments():
    lines = [_projected(0, 0, 10, 10), _projected(0, 10, 10, 0)]
    split = split_lines_by_intersection(lines)
    assert [len(s.split_screen_space_lines) for s in split] == [2, 2]
    first = split[0].split_screen_space_lines
    np.testing.assert_allclose(first[0].start, (0, 0))
    np.testing.assert_allclose(first[0].end, (5, 5))
    np.testing.assert_allclose(first[1].start, (5, 5))
    np.testing.assert_allclose(first[1].end, (10, 10))


def test_split_line_orders_points_from_start_and_preserves_length():
    lines = [
        _projected(0, 0, 10, 0),
        _projected(7, -1, 7, 1),
        _projected(2, -1, 2, 1),
    ]
    split = split_lines_by_intersection(lines)
    pieces = split[0].split_screen_space_lines
    assert len(pieces) == 3
    np.testing.assert_allclose([p.start[0] for p in pieces], [0, 2, 7])
    np.testing.assert_allclose([p.end[0] for p in pieces], [2, 7, 10])
    assert sum(p.length() for p in pieces) == pytest.approx(lines[0].screen_space.length())


def test_split_without_intersections_returns_line_itself():
    lines = [_projected(0, 0, 10, 0), _projected(0, 5, 10, 5)]
    split = split_lines_by_intersection(lines)
    for record, line in zip(split, lines):
        assert len(record.split_screen_space_lines) == 1
        assert _key(ProjectedLine(record.split_screen_space_lines[0], line.view_space)) == _key(line)


def test_split_merges_coincident_intersection_points():
    # Two crossing lines meet the horizontal line at the same point.
    lines = [
        _projected(0, 0, 10, 0),
        _projected(4, -1, 6, 1),
        _projected(6, -1, 4, 1),
    ]
    split = split_lines_by_intersection(lines)
    assert len(split[0].split_screen_space_lines) == 2


def test_split_line_with_no_points():
    line = LineSegment2((0, 0), (1, 1))
    assert split_line(line, []) == [line]


def test_intersection_cache_is_symmetric_and_tests_each_pair_once():
    lines = [_projected(0, 0, 10, 10), _projected(0, 10, 10, 0), _projected(0, 5, 10, 5)]
    cache = IntersectionCache(lines)
    np.testing.assert_allclose(cache.get(0, 1), cache.get(1, 0))
    for index in range(len(lines)):
        cache.points_for(index)
    assert cache.tests_run == 3
    assert cache.get(2, 2) is None


def test_parallel_and_collinear_lines_raise_no_numpy_warnings():
    lines = [_projected(0, 0, 10, 0), _projected(0, 5, 10, 5), _projected(2, 0, 8, 0)]
    with warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        assert find_intersection(lines[0].screen_space, lines[1].screen_space) is None
        assert find_intersection(lines[0].screen_space, lines[2].screen_space) is None
        split = split_lines_by_intersection(lines)
    assert [len(s.split_screen_space_lines) for s in split] == [1, 1, 1]
