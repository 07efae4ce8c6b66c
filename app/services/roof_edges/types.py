from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class RoofEdgeError(Exception):
    """Base error for the roof edge pipeline."""


class InvalidPerimeterError(RoofEdgeError, ValueError):
    """Perimeter polygon is missing or has fewer than 3 points."""


class RasterDecodeError(RoofEdgeError):
    """Mask raster bytes could not be decoded into a grid."""


class InferenceError(RoofEdgeError):
    """Vision inference call failed or returned an unusable result."""


class AnalysisError(RoofEdgeError):
    """Unclassified failure while running an analysis."""


@dataclass(frozen=True)
class GeoPoint:
    lon: float
    lat: float

    def as_list(self) -> List[float]:
        return [float(self.lon), float(self.lat)]

    @classmethod
    def parse(cls, value: Any) -> "GeoPoint":
        """Accept [lon, lat], {x, y}, {lon, lat} or {longitude, latitude}."""
        if isinstance(value, GeoPoint):
            return value
        try:
            if isinstance(value, dict):
                if "x" in value and "y" in value:
                    return cls(float(value["x"]), float(value["y"]))
                if "lon" in value and "lat" in value:
                    return cls(float(value["lon"]), float(value["lat"]))
                if "longitude" in value and "latitude" in value:
                    return cls(float(value["longitude"]), float(value["latitude"]))
            elif isinstance(value, (list, tuple)) and len(value) == 2:
                return cls(float(value[0]), float(value[1]))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Point coordinates must be numbers: {value!r}") from e
        raise ValueError(f"Unrecognized point: {value!r}")


@dataclass(frozen=True)
class GeoBBox:
    """Geographic bounding box of a raster (degrees)."""
    north: float
    south: float
    east: float
    west: float

    @classmethod
    def from_corners(cls, sw: GeoPoint, ne: GeoPoint) -> "GeoBBox":
        return cls(north=ne.lat, south=sw.lat, east=ne.lon, west=sw.lon)

    def contains(self, p: GeoPoint, eps: float = 1e-12) -> bool:
        return (self.south - eps <= p.lat <= self.north + eps
                and self.west - eps <= p.lon <= self.east + eps)

    def as_dict(self) -> Dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


class EdgeType(str, Enum):
    EAVE = "EAVE"
    RAKE = "RAKE"
    RIDGE = "RIDGE"
    VALLEY = "VALLEY"
    HIP = "HIP"
    WALL = "WALL"


PERIMETER_EDGE_TYPES = frozenset({EdgeType.EAVE, EdgeType.RAKE})
INTERNAL_EDGE_TYPES = frozenset({EdgeType.RIDGE, EdgeType.HIP, EdgeType.VALLEY})


class AnalysisMethod(str, Enum):
    GEOMETRIC_ONLY = "geometric-only"
    HYBRID = "hybrid-geometric-ai"


class AnalysisStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    AI_VALIDATING = "AI_VALIDATING"
    COMPLETE = "COMPLETE"
    DEGRADED_COMPLETE = "DEGRADED_COMPLETE"
    ERROR = "ERROR"


_TRANSITIONS = {
    AnalysisStatus.PENDING: {AnalysisStatus.PROCESSING, AnalysisStatus.ERROR},
    AnalysisStatus.PROCESSING: {AnalysisStatus.AI_VALIDATING, AnalysisStatus.DEGRADED_COMPLETE, AnalysisStatus.ERROR},
    AnalysisStatus.AI_VALIDATING: {AnalysisStatus.COMPLETE, AnalysisStatus.DEGRADED_COMPLETE, AnalysisStatus.ERROR},
    AnalysisStatus.COMPLETE: set(),
    AnalysisStatus.DEGRADED_COMPLETE: set(),
    AnalysisStatus.ERROR: set(),
}


@dataclass
class ConfidenceBreakdown:
    ai: float
    geometric: float
    training: float

    def to_dict(self) -> Dict[str, Any]:
        return {"ai": self.ai, "geometric": self.geometric, "training": self.training,
                "method": "hybrid-multi-source"}


@dataclass
class Edge:
    start: GeoPoint
    end: GeoPoint
    edge_type: EdgeType
    length_ft: float
    confidence: float
    edge_id: Optional[str] = None
    source_id: Optional[str] = None  # id of the geometric edge this one refines
    breakdown: Optional[ConfidenceBreakdown] = None
    adjustment_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.edge_id,
            "start": self.start.as_list(),
            "end": self.end.as_list(),
            "edgeType": self.edge_type.value,
            "length": self.length_ft,
            "confidence": self.confidence,
        }
        if self.source_id is not None:
            out["sourceId"] = self.source_id
        if self.breakdown is not None:
            out["confidenceBreakdown"] = self.breakdown.to_dict()
        if self.adjustment_reason:
            out["adjustmentReason"] = self.adjustment_reason
        return out


@dataclass
class GeometricPrediction:
    edges: List[Edge]
    roof_type: str
    geometric_confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "edges": [e.to_dict() for e in self.edges],
            "roofType": self.roof_type,
            "geometricConfidence": self.geometric_confidence,
        }


@dataclass
class RoofSegmentStat:
    """Building-insight roof segment (consumed, never produced here)."""
    pitch_degrees: float
    azimuth_degrees: float
    area_m2: float
    center: GeoPoint
    bbox: GeoBBox
    height_at_center_m: float = 0.0


@dataclass(frozen=True)
class TrainingSample:
    edge_type: str
    length_ft: float
    notes: str = ""


@dataclass(frozen=True)
class SuccessSample:
    edge_type: str


@dataclass(frozen=True)
class CorrectionSample:
    roof_type: Optional[str] = None
    adjustment_summary: Optional[Dict[str, float]] = None
    correction_notes: Optional[str] = None


@dataclass
class AnalysisRequest:
    """One analysis request; any combination of perimeter, mask and imagery."""
    latitude: float
    longitude: float
    perimeter: Optional[List[GeoPoint]] = None
    mask_ref: Optional[str] = None
    mask_bbox: Optional[GeoBBox] = None
    aerial_image: Optional[str] = None
    internal_edges_only: bool = False
    job_id: Optional[str] = None
    roof_segments: List[RoofSegmentStat] = field(default_factory=list)


@dataclass
class AnalysisResult:
    roof_type: str
    overall_confidence: float
    edges: List[Edge]
    method: AnalysisMethod
    raw_geometric_prediction: Optional[GeometricPrediction]
    raw_ai_validation: Optional[Dict[str, Any]] = None
    analysis_notes: str = ""
    analysis_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: AnalysisStatus = AnalysisStatus.PENDING
    error_message: Optional[str] = None

    def advance(self, new_status: AnalysisStatus) -> None:
        if new_status not in _TRANSITIONS[self.status]:
            raise ValueError(f"Illegal status transition {self.status.value} -> {new_status.value}")
        self.status = new_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.analysis_id,
            "roofType": self.roof_type,
            "overallConfidence": self.overall_confidence,
            "edges": [e.to_dict() for e in self.edges],
            "analysisNotes": self.analysis_notes,
            "method": self.method.value,
            "status": self.status.value,
            "errorMessage": self.error_message,
            "rawGeometricPrediction": self.raw_geometric_prediction.to_dict() if self.raw_geometric_prediction else None,
            "rawAiValidation": self.raw_ai_validation,
        }


def to_points(raw: Sequence[Any]) -> List[GeoPoint]:
    return [GeoPoint.parse(p) for p in raw]


def closed_pairs(points: Sequence[GeoPoint]) -> List[Tuple[GeoPoint, GeoPoint]]:
    """Consecutive vertex pairs including the closing edge back to the first point."""
    n = len(points)
    return [(points[i], points[(i + 1) % n]) for i in range(n)]
