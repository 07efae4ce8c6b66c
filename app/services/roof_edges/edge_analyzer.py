from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from app.services.geo_utils import centroid, edge_lengths_ft, geodesic_length_ft, midpoint

from .config import GeometricHeuristics
from .types import (
    Edge,
    EdgeType,
    GeometricPrediction,
    GeoPoint,
    InvalidPerimeterError,
    closed_pairs,
)

logger = logging.getLogger(__name__)


def validate_perimeter(perimeter: Optional[Sequence[GeoPoint]]) -> List[GeoPoint]:
    if not perimeter or len(perimeter) < 3:
        raise InvalidPerimeterError("Valid perimeter polygon is required (minimum 3 points)")
    return list(perimeter)


def classify_roof_type(perimeter: Sequence[GeoPoint], gable_aspect_ratio: float = 1.5) -> str:
    """Roof family from vertex count and, for quadrilaterals, edge-length ratio."""
    n = len(perimeter)
    if n == 4:
        lengths = edge_lengths_ft(perimeter)
        shortest = min(lengths)
        if shortest <= 0:
            # Degenerate quad (repeated vertex); treat as elongated
            return "gable"
        return "gable" if max(lengths) / shortest > gable_aspect_ratio else "hip"
    if 5 <= n <= 8:
        return "hip"
    if n > 8:
        return "complex"
    return "flat"


class GeometricEdgeAnalyzer:
    """
    Deterministic edge labelling from a perimeter polygon alone.

    The confidences are fixed heuristics (see GeometricHeuristics), meant to be
    refined by the vision validation step rather than trusted on their own.
    """

    def __init__(self, heuristics: Optional[GeometricHeuristics] = None) -> None:
        self.h = heuristics or GeometricHeuristics()

    def _perimeter_edges(self, perimeter: List[GeoPoint], roof_type: str) -> List[Edge]:
        lengths = edge_lengths_ft(perimeter)
        avg = sum(lengths) / len(lengths)
        edges: List[Edge] = []
        for (start, end), length in zip(closed_pairs(perimeter), lengths):
            if roof_type == "gable":
                edge_type = EdgeType.EAVE if length > avg else EdgeType.RAKE
                conf = self.h.gable_perimeter_conf
            elif roof_type == "hip":
                edge_type, conf = EdgeType.EAVE, self.h.hip_perimeter_conf
            else:
                edge_type, conf = EdgeType.EAVE, self.h.other_perimeter_conf
            edges.append(Edge(start=start, end=end, edge_type=edge_type,
                              length_ft=round(length, 1), confidence=conf))
        return edges

    def _ridge(self, perimeter_edges: List[Edge], center: GeoPoint) -> Edge:
        # Ridge joins the midpoint of the shortest rake and of the side opposite it
        rakes = [i for i, e in enumerate(perimeter_edges) if e.edge_type == EdgeType.RAKE]
        if len(perimeter_edges) == 4 and rakes:
            short = min(rakes, key=lambda i: perimeter_edges[i].length_ft)
            a, b = perimeter_edges[short], perimeter_edges[(short + 2) % 4]
            start = midpoint(a.start, a.end)
            end = midpoint(b.start, b.end)
        else:
            longest = max(perimeter_edges, key=lambda e: e.length_ft)
            half_lon = (longest.end.lon - longest.start.lon) / 2.0
            half_lat = (longest.end.lat - longest.start.lat) / 2.0
            start = GeoPoint(center.lon - half_lon, center.lat - half_lat)
            end = GeoPoint(center.lon + half_lon, center.lat + half_lat)
        return Edge(start=start, end=end, edge_type=EdgeType.RIDGE,
                    length_ft=round(geodesic_length_ft(start, end), 1), confidence=self.h.ridge_conf)

    def _hips(self, perimeter: List[GeoPoint], center: GeoPoint) -> List[Edge]:
        return [
            Edge(start=center, end=corner, edge_type=EdgeType.HIP,
                 length_ft=round(geodesic_length_ft(center, corner), 1), confidence=self.h.hip_line_conf)
            for corner in perimeter
        ]

    def analyze(self, perimeter: Sequence[GeoPoint]) -> GeometricPrediction:
        points = validate_perimeter(perimeter)
        roof_type = classify_roof_type(points, self.h.gable_aspect_ratio)
        edges = self._perimeter_edges(points, roof_type)
        center = centroid(points)
        if roof_type == "gable":
            edges.append(self._ridge(edges, center))
        elif roof_type == "hip":
            edges.extend(self._hips(points, center))
        for i, edge in enumerate(edges):
            edge.edge_id = f"g{i}"
        conf = self.h.roof_conf.get(roof_type, self.h.default_roof_conf)
        logger.info(f"Geometric analysis: {roof_type} roof, {len(edges)} edges (confidence {conf})")
        return GeometricPrediction(edges=edges, roof_type=roof_type, geometric_confidence=conf)


__all__ = ["GeometricEdgeAnalyzer", "classify_roof_type", "validate_perimeter"]
