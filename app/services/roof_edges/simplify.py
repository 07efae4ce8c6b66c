from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np

Pixel = Tuple[float, float]


def point_segment_distance(p: Sequence[float], a: Sequence[float], b: Sequence[float]) -> float:
    """Distance from p to the segment a-b (to the nearer endpoint past either end)."""
    px, py = float(p[0]), float(p[1])
    ax, ay = float(a[0]), float(a[1])
    bx, by = float(b[0]), float(b[1])
    dx, dy = bx - ax, by - ay
    len_sq = dx * dx + dy * dy
    if len_sq == 0.0:
        return float(np.hypot(px - ax, py - ay))
    t = ((px - ax) * dx + (py - ay) * dy) / len_sq
    t = min(1.0, max(0.0, t))
    return float(np.hypot(px - (ax + t * dx), py - (ay + t * dy)))


def douglas_peucker(points: Sequence[Pixel], tolerance: float) -> List[Pixel]:
    """Douglas-Peucker polyline simplification.

    The result is always a subsequence of ``points`` that keeps the first and
    last point. Sequences shorter than 3 points are returned unchanged.
    """
    pts = [tuple(p) for p in points]
    if len(pts) < 3:
        return list(pts)

    keep = np.zeros(len(pts), dtype=bool)
    keep[0] = keep[-1] = True
    # Explicit stack instead of recursion so long contours don't hit the recursion limit
    stack = [(0, len(pts) - 1)]
    while stack:
        lo, hi = stack.pop()
        if hi - lo < 2:
            continue
        max_dist = -1.0
        max_idx = lo
        for i in range(lo + 1, hi):
            d = point_segment_distance(pts[i], pts[lo], pts[hi])
            if d > max_dist:
                max_dist = d
                max_idx = i
        if max_dist > tolerance:
            keep[max_idx] = True
            stack.append((lo, max_idx))
            stack.append((max_idx, hi))
    return [pts[i] for i in np.flatnonzero(keep)]


def simplify_ring(points: Sequence[Pixel], tolerance: float) -> List[Pixel]:
    """Douglas-Peucker over a closed ring.

    The ring is split at the vertex farthest from the start and each half is
    simplified as a polyline, so the closing segment is treated like any other
    edge. The result is open (first point not repeated). The start vertex is
    dropped too when it lies within tolerance of its neighbours' chord.
    """
    pts = [tuple(p) for p in points]
    if len(pts) > 1 and pts[0] == pts[-1]:
        pts = pts[:-1]
    if len(pts) < 4:
        return list(pts)

    x0, y0 = pts[0]
    far = max(range(1, len(pts)), key=lambda i: (pts[i][0] - x0) ** 2 + (pts[i][1] - y0) ** 2)
    first = douglas_peucker(pts[: far + 1], tolerance)
    second = douglas_peucker(pts[far:] + [pts[0]], tolerance)
    ring = first[:-1] + second[:-1]
    if len(ring) > 4 and point_segment_distance(ring[0], ring[-1], ring[1]) <= tolerance:
        ring = ring[1:]
    return ring


__all__ = ["douglas_peucker", "point_segment_distance", "simplify_ring"]
