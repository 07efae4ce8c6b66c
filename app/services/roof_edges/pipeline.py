from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import List, Optional, Tuple

from app.services.geo_utils import perimeter_from_bbox

from .edge_analyzer import GeometricEdgeAnalyzer
from .mask_processor import RasterMaskProcessor, largest_polygon
from .orchestrator import AnalysisContext, HybridValidationOrchestrator, geometric_result, load_context
from .repository import AnalysisRepository, StaticTrainingDataSource, TrainingDataSource
from .types import (
    AnalysisError,
    AnalysisMethod,
    AnalysisRequest,
    AnalysisResult,
    AnalysisStatus,
    GeoPoint,
    InvalidPerimeterError,
)

logger = logging.getLogger(__name__)


class RoofAnalysisPipeline:
    """
    Roof edge analysis for one request:
      - mask raster -> polygons (optional)
      - perimeter (supplied, largest mask polygon, or roof segment box)
      - geometric edge classification
      - history fan-out + vision validation (degrades to geometric-only)
      - append-only persistence (failures logged, never fatal)

    Requests are independent; the pipeline holds no per-request state.
    """

    def __init__(self,
                 mask_processor: Optional[RasterMaskProcessor] = None,
                 analyzer: Optional[GeometricEdgeAnalyzer] = None,
                 orchestrator: Optional[HybridValidationOrchestrator] = None,
                 training_source: Optional[TrainingDataSource] = None,
                 repository: Optional[AnalysisRepository] = None) -> None:
        self.mask_processor = mask_processor or RasterMaskProcessor()
        self.analyzer = analyzer or GeometricEdgeAnalyzer()
        self.orchestrator = orchestrator
        self.training_source = training_source or StaticTrainingDataSource()
        self.repository = repository

    def resolve_perimeter(self, request: AnalysisRequest) -> Tuple[List[GeoPoint], bool, List[List[GeoPoint]]]:
        """Return (perimeter, perimeter_from_mask, mask_polygons)."""
        polygons: List[List[GeoPoint]] = []
        if request.mask_ref and request.mask_bbox is not None:
            polygons = self.mask_processor.process(request.mask_ref, request.mask_bbox)
        if request.perimeter:
            if len(request.perimeter) < 3:
                raise InvalidPerimeterError("Valid perimeter polygon is required (minimum 3 points)")
            return list(request.perimeter), False, polygons
        traced = largest_polygon(polygons)
        if traced is not None:
            return traced, True, polygons
        if request.roof_segments:
            # Coarse fallback: bounding box of the largest building-insight segment
            seg = max(request.roof_segments, key=lambda s: s.area_m2)
            return perimeter_from_bbox(seg.bbox), False, polygons
        raise InvalidPerimeterError("No perimeter polygon supplied and none could be derived from the mask")

    def _persist(self, request: AnalysisRequest, result: AnalysisResult) -> None:
        if self.repository is None:
            return
        try:
            self.repository.append(request.job_id, result)
        except Exception as e:
            logger.warning(f"Failed to save analysis {result.analysis_id}: {type(e).__name__}: {e}",
                           extra={"job_id": request.job_id})

    def run(self, request: AnalysisRequest) -> AnalysisResult:
        if request.perimeter is not None and len(request.perimeter) < 3:
            raise InvalidPerimeterError("Valid perimeter polygon is required (minimum 3 points)")

        started = time.perf_counter()
        tracking = AnalysisResult(roof_type="unknown", overall_confidence=0.0, edges=[],
                                  method=AnalysisMethod.GEOMETRIC_ONLY, raw_geometric_prediction=None)
        try:
            tracking.advance(AnalysisStatus.PROCESSING)
            perimeter, from_mask, polygons = self.resolve_perimeter(request)
            if from_mask and not request.internal_edges_only:
                logger.info("Perimeter traced from mask; restricting AI to internal edges")
                request = replace(request, internal_edges_only=True)
            prediction = self.analyzer.analyze(perimeter)

            if self.orchestrator is None:
                result = geometric_result(prediction, "AI validation disabled, using geometric analysis only")
                tracking.advance(AnalysisStatus.DEGRADED_COMPLETE)
            else:
                tracking.advance(AnalysisStatus.AI_VALIDATING)
                context: AnalysisContext = load_context(self.training_source)
                result = self.orchestrator.validate(request, prediction, context)
                tracking.advance(result.status)
            result.analysis_id = tracking.analysis_id
            if polygons:
                result.analysis_notes = (result.analysis_notes + f" ({len(polygons)} mask segments)").strip()
        except InvalidPerimeterError:
            raise
        except Exception as e:
            tracking.advance(AnalysisStatus.ERROR)
            tracking.error_message = f"{type(e).__name__}: {e}"
            logger.exception(f"Roof analysis {tracking.analysis_id} failed", extra={"job_id": request.job_id})
            self._persist(request, tracking)
            raise AnalysisError(tracking.error_message) from e

        duration_ms = round((time.perf_counter() - started) * 1000.0, 1)
        logger.info(f"Roof analysis {result.analysis_id} {result.status.value} via {result.method.value}",
                    extra={"job_id": request.job_id, "duration_ms": duration_ms})
        self._persist(request, result)
        return result


__all__ = ["RoofAnalysisPipeline"]
