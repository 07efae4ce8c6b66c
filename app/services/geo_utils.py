import math
from typing import List, Sequence

from app.services.roof_edges.types import GeoBBox, GeoPoint, closed_pairs

EARTH_RADIUS_M = 6_371_000.0
FEET_PER_METER = 3.28084


def meters_to_feet(meters: float) -> float:
    return meters * FEET_PER_METER


def haversine_m(p1: GeoPoint, p2: GeoPoint) -> float:
    """Great-circle distance in meters between two lon/lat points."""
    phi1 = math.radians(p1.lat)
    phi2 = math.radians(p2.lat)
    dphi = math.radians(p2.lat - p1.lat)
    dlmb = math.radians(p2.lon - p1.lon)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    # Clamp guards tiny negative values from rounding
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def geodesic_length_ft(p1: GeoPoint, p2: GeoPoint) -> float:
    return meters_to_feet(haversine_m(p1, p2))


def edge_lengths_ft(perimeter: Sequence[GeoPoint]) -> List[float]:
    """Lengths of every perimeter edge, including the closing edge."""
    return [geodesic_length_ft(a, b) for a, b in closed_pairs(perimeter)]


def centroid(points: Sequence[GeoPoint]) -> GeoPoint:
    """Vertex centroid (mean of vertices), not the area centroid."""
    n = len(points)
    if n == 0:
        raise ValueError("centroid of empty point set")
    return GeoPoint(sum(p.lon for p in points) / n, sum(p.lat for p in points) / n)


def midpoint(p1: GeoPoint, p2: GeoPoint) -> GeoPoint:
    return GeoPoint((p1.lon + p2.lon) / 2.0, (p1.lat + p2.lat) / 2.0)


def perimeter_length_from_bbox(bbox: GeoBBox) -> float:
    """Approximate perimeter (feet) of the bounding rectangle.

    Uses a local equirectangular projection at the box's average latitude, so
    it is only meaningful for roughly rectangular footprints.
    """
    avg_lat = math.radians((bbox.north + bbox.south) / 2.0)
    height_m = abs(math.radians(bbox.north - bbox.south) * EARTH_RADIUS_M)
    width_m = abs(math.radians(bbox.east - bbox.west) * EARTH_RADIUS_M * math.cos(avg_lat))
    return meters_to_feet(2.0 * (width_m + height_m))


def perimeter_from_bbox(bbox: GeoBBox) -> List[GeoPoint]:
    """Clockwise 4-corner ring (open) of a bounding box, starting north-west."""
    return [
        GeoPoint(bbox.west, bbox.north),
        GeoPoint(bbox.east, bbox.north),
        GeoPoint(bbox.east, bbox.south),
        GeoPoint(bbox.west, bbox.south),
    ]


def bbox_around(lat: float, lon: float, half_size_m: float) -> GeoBBox:
    """Square box of side 2*half_size_m centered on lat/lon (equirectangular)."""
    m_per_deg = math.radians(1.0) * EARTH_RADIUS_M
    dlat = half_size_m / m_per_deg
    dlon = half_size_m / (m_per_deg * max(1e-6, math.cos(math.radians(lat))))
    return GeoBBox(north=lat + dlat, south=lat - dlat, east=lon + dlon, west=lon - dlon)
