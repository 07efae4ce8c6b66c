"""
Roof edge extraction and hybrid (geometric + vision) edge classification.

Only the lightweight data model and config are re-exported here; import the
processing modules (mask_processor, edge_analyzer, orchestrator, pipeline)
directly.
"""

from .config import EdgeLengthDefaults, FusionWeights, GeometricHeuristics, TrainingConfidenceBands
from .types import (
    AnalysisError,
    AnalysisMethod,
    AnalysisRequest,
    AnalysisResult,
    AnalysisStatus,
    Edge,
    EdgeType,
    GeoBBox,
    GeoPoint,
    InferenceError,
    InvalidPerimeterError,
    RasterDecodeError,
    RoofEdgeError,
)

__all__ = [
    "AnalysisError",
    "AnalysisMethod",
    "AnalysisRequest",
    "AnalysisResult",
    "AnalysisStatus",
    "Edge",
    "EdgeLengthDefaults",
    "EdgeType",
    "FusionWeights",
    "GeoBBox",
    "GeoPoint",
    "GeometricHeuristics",
    "InferenceError",
    "InvalidPerimeterError",
    "RasterDecodeError",
    "RoofEdgeError",
    "TrainingConfidenceBands",
]
