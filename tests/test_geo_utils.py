import pytest

from app.services.geo_utils import (
    bbox_around,
    centroid,
    edge_lengths_ft,
    geodesic_length_ft,
    haversine_m,
    perimeter_from_bbox,
    perimeter_length_from_bbox,
)
from app.services.roof_edges.types import GeoBBox, GeoPoint


def test_geodesic_length_is_symmetric_and_zero_for_same_point():
    a = GeoPoint(-75.0, 40.0)
    b = GeoPoint(-74.998, 40.0015)
    assert geodesic_length_ft(a, b) == pytest.approx(geodesic_length_ft(b, a))
    assert geodesic_length_ft(a, a) == 0.0


def test_one_degree_of_latitude():
    d = haversine_m(GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0))
    assert d == pytest.approx(111_195.0, rel=1e-4)
    assert geodesic_length_ft(GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0)) == pytest.approx(d * 3.28084)


def test_rectangle_edge_lengths(long_rectangle):
    lengths = edge_lengths_ft(long_rectangle)
    assert len(lengths) == 4  # includes closing edge
    assert lengths[0] == pytest.approx(100 * 3.28084, rel=1e-3)
    assert lengths[1] == pytest.approx(60 * 3.28084, rel=1e-3)


def test_perimeter_length_from_bbox():
    box = bbox_around(40.0, -75.0, 50.0)  # 100m square
    assert perimeter_length_from_bbox(box) == pytest.approx(4 * 100 * 3.28084, rel=1e-3)


def test_perimeter_length_of_100_by_60_box(long_rectangle):
    box = GeoBBox(north=long_rectangle[2].lat, south=long_rectangle[0].lat,
                  east=long_rectangle[1].lon, west=long_rectangle[0].lon)
    assert perimeter_length_from_bbox(box) == pytest.approx(2 * (328.084 + 196.85), rel=1e-3)


def test_perimeter_from_bbox_corners():
    box = GeoBBox(north=2.0, south=1.0, east=4.0, west=3.0)
    ring = perimeter_from_bbox(box)
    assert ring == [GeoPoint(3.0, 2.0), GeoPoint(4.0, 2.0), GeoPoint(4.0, 1.0), GeoPoint(3.0, 1.0)]
    assert all(box.contains(p) for p in ring)


def test_centroid_is_vertex_mean():
    c = centroid([GeoPoint(0, 0), GeoPoint(2, 0), GeoPoint(2, 2), GeoPoint(0, 2)])
    assert c == GeoPoint(1.0, 1.0)
    with pytest.raises(ValueError):
        centroid([])
