import math

import pytest

from app.services.geo_utils import centroid, midpoint
from app.services.roof_edges.edge_analyzer import GeometricEdgeAnalyzer, classify_roof_type
from app.services.roof_edges.types import EdgeType, GeoPoint, InvalidPerimeterError


def _ring(n, radius_deg=0.0002, lat=40.0, lon=-75.0):
    return [
        GeoPoint(lon + radius_deg * math.cos(2 * math.pi * i / n), lat + radius_deg * math.sin(2 * math.pi * i / n))
        for i in range(n)
    ]


def test_classify_roof_type_by_vertex_count(long_rectangle, near_square):
    assert classify_roof_type(long_rectangle) == "gable"
    assert classify_roof_type(near_square) == "hip"
    assert classify_roof_type(_ring(3)) == "flat"
    assert classify_roof_type(_ring(5)) == "hip"
    assert classify_roof_type(_ring(8)) == "hip"
    assert classify_roof_type(_ring(9)) == "complex"


def test_near_square_is_hip_with_four_eaves_and_four_hips(near_square):
    pred = GeometricEdgeAnalyzer().analyze(near_square)
    assert pred.roof_type == "hip"
    assert pred.geometric_confidence == 0.8
    types = [e.edge_type for e in pred.edges]
    assert types.count(EdgeType.EAVE) == 4
    assert types.count(EdgeType.HIP) == 4
    assert all(e.confidence == 0.8 for e in pred.edges if e.edge_type == EdgeType.EAVE)
    assert all(e.confidence == 0.65 for e in pred.edges if e.edge_type == EdgeType.HIP)
    # Every hip starts at the vertex centroid and ends at a corner
    center = centroid(near_square)
    hips = [e for e in pred.edges if e.edge_type == EdgeType.HIP]
    assert all(h.start == center for h in hips)
    assert {h.end for h in hips} == set(near_square)


def test_long_rectangle_is_gable_with_centered_ridge(long_rectangle):
    pred = GeometricEdgeAnalyzer().analyze(long_rectangle)
    assert pred.roof_type == "gable"
    assert pred.geometric_confidence == 0.75
    perimeter = pred.edges[:4]
    assert [e.edge_type for e in perimeter] == [EdgeType.EAVE, EdgeType.RAKE, EdgeType.EAVE, EdgeType.RAKE]
    ridges = [e for e in pred.edges if e.edge_type == EdgeType.RIDGE]
    assert len(ridges) == 1
    ridge = ridges[0]
    assert ridge.confidence == 0.6
    assert ridge.length_ft == pytest.approx(328.1, abs=0.5)
    mid = midpoint(ridge.start, ridge.end)
    center = centroid(long_rectangle)
    assert mid.lon == pytest.approx(center.lon, abs=1e-9)
    assert mid.lat == pytest.approx(center.lat, abs=1e-9)


def test_gable_with_three_rakes_still_centers_ridge():
    # Trapezoid: one long eave, three shorter sides all below the average length
    s, lon, lat = 0.0001, -75.0, 40.0
    quad = [GeoPoint(lon, lat), GeoPoint(lon + 3 * s, lat), GeoPoint(lon + 2 * s, lat + s), GeoPoint(lon + s, lat + s)]
    pred = GeometricEdgeAnalyzer().analyze(quad)
    assert pred.roof_type == "gable"
    assert [e.edge_type for e in pred.edges[:4]].count(EdgeType.RAKE) == 3
    ridge = pred.edges[4]
    assert ridge.edge_type == EdgeType.RIDGE
    mid = midpoint(ridge.start, ridge.end)
    center = centroid(quad)
    assert mid.lon == pytest.approx(center.lon, abs=1e-9)
    assert mid.lat == pytest.approx(center.lat, abs=1e-9)

def test_triangle_is_flat_with_eaves_only():
    pred = GeometricEdgeAnalyzer().analyze(_ring(3))
    assert pred.roof_type == "flat"
    assert pred.geometric_confidence == 0.6
    assert [e.edge_type for e in pred.edges] == [EdgeType.EAVE] * 3
    assert all(e.confidence == 0.7 for e in pred.edges)


def test_edges_have_stable_ids_and_rounded_lengths(near_square):
    pred = GeometricEdgeAnalyzer().analyze(near_square)
    assert [e.edge_id for e in pred.edges] == [f"g{i}" for i in range(len(pred.edges))]
    assert all(round(e.length_ft, 1) == e.length_ft for e in pred.edges)
    assert all(0.0 <= e.confidence <= 1.0 for e in pred.edges)


@pytest.mark.parametrize("points", [[], [GeoPoint(0, 0)], [GeoPoint(0, 0), GeoPoint(1, 1)]])
def test_short_perimeter_rejected(points):
    with pytest.raises(InvalidPerimeterError):
        GeometricEdgeAnalyzer().analyze(points)
    # Callers may treat it as a plain ValueError
    with pytest.raises(ValueError):
        GeometricEdgeAnalyzer().analyze(points)


@pytest.mark.parametrize("raw", [[None, None], [1.0, None], {"x": "east", "y": 2.0}, {"lon": None, "lat": 1.0}])
def test_point_with_non_numeric_coordinates_rejected(raw):
    with pytest.raises(ValueError):
        GeoPoint.parse(raw)
