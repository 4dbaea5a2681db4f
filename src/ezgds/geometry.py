from __future__ import annotations

import math
from typing import Sequence

Point2D = tuple[float, float]

_PARALLEL_TOL = 1.0e-10
_DOWN = (0.0, -1.0)


def _ray_segment_params(
    origin: Point2D,
    direction: Point2D,
    start: Point2D,
    end: Point2D,
) -> tuple[float, float] | None:
    # origin + s * direction == start + t * (end - start), solved for (s, t)
    ex = end[0] - start[0]
    ey = end[1] - start[1]
    dx, dy = direction
    det = ex * dy - dx * ey
    if abs(det) <= _PARALLEL_TOL * (ex * ex + ey * ey):
        return None
    rx = start[0] - origin[0]
    ry = start[1] - origin[1]
    s = (ex * ry - ey * rx) / det
    t = (dx * ry - dy * rx) / det
    return s, t


def intersect_ray_with_segment(
    origin: Point2D,
    direction: Point2D,
    start: Point2D,
    end: Point2D,
) -> Point2D | None:
    params = _ray_segment_params(origin, direction, start, end)
    if params is None:
        return None
    s, t = params
    if s <= 0.0 or t < 0.0 or t > 1.0:
        return None
    return (origin[0] + s * direction[0], origin[1] + s * direction[1])


def intersect_line_with_segment(
    origin: Point2D,
    direction: Point2D,
    start: Point2D,
    end: Point2D,
) -> Point2D | None:
    params = _ray_segment_params(origin, direction, start, end)
    if params is None:
        return None
    s, t = params
    if t < 0.0 or t > 1.0:
        return None
    return (origin[0] + s * direction[0], origin[1] + s * direction[1])


def point_in_polygon(vertices: Sequence[Point2D], x: float, y: float) -> bool:
    """Ray-casting parity test with a ray pointing straight down from (x, y).

    The ring is implicitly closed; an edge counts when the crossing lies in
    [0, 1) along the edge and strictly below the point.
    """
    count = len(vertices)
    if count < 3:
        return False
    origin = (float(x), float(y))
    crossings = 0
    for index in range(count):
        start = vertices[index]
        end = vertices[(index + 1) % count]
        params = _ray_segment_params(origin, _DOWN, start, end)
        if params is None:
            continue
        s, t = params
        if s > 0.0 and 0.0 <= t < 1.0:
            crossings += 1
    return crossings % 2 == 1


def segment_normal(start: Point2D, end: Point2D) -> Point2D:
    dx = end[0] - start[0]
    dy = end[1] - start[1]
    norm = math.hypot(dx, dy)
    if norm == 0.0:
        norm = 1.0
    return (dy / norm, -dx / norm)


def path_segment_quads(points: Sequence[Point2D], width: float) -> list[list[Point2D]]:
    """Offset every segment of a polyline by half the width on both sides.

    Each segment becomes its own rectangle; joins between segments are not
    mitred.
    """
    half = 0.5 * width
    quads: list[list[Point2D]] = []
    for start, end in zip(points, points[1:]):
        nx, ny = segment_normal(start, end)
        quads.append(
            [
                (start[0] - half * nx, start[1] - half * ny),
                (end[0] - half * nx, end[1] - half * ny),
                (end[0] + half * nx, end[1] + half * ny),
                (start[0] + half * nx, start[1] + half * ny),
            ]
        )
    return quads
