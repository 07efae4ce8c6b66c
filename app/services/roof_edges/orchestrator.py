from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, TypeVar

from .fusion import ConfidenceFusionEngine
from .inference_client import VisionInferenceClient
from .prompts import InternalOnlyStrategy, PromptContext, build_prompt, strategy_for
from .repository import TrainingDataSource
from .training_stats import (
    TrainingStatisticsAggregator,
    summarize_correction_patterns,
    summarize_success_patterns,
)
from .types import (
    PERIMETER_EDGE_TYPES,
    AnalysisMethod,
    AnalysisRequest,
    AnalysisResult,
    AnalysisStatus,
    CorrectionSample,
    Edge,
    GeometricPrediction,
    SuccessSample,
    TrainingSample,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AnalysisContext:
    training: List[TrainingSample] = field(default_factory=list)
    successes: List[SuccessSample] = field(default_factory=list)
    corrections: List[CorrectionSample] = field(default_factory=list)


def _safe_read(name: str, read: Callable[[], List[T]]) -> List[T]:
    try:
        return list(read())
    except Exception as e:
        logger.warning(f"Context read '{name}' failed, continuing without it: {type(e).__name__}: {e}")
        return []


def load_context(source: TrainingDataSource) -> AnalysisContext:
    """Fan out the independent history reads and join before inference."""
    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="roof-context") as pool:
        training = pool.submit(_safe_read, "training", source.training_samples)
        successes = pool.submit(_safe_read, "successes", source.success_samples)
        corrections = pool.submit(_safe_read, "corrections", source.correction_samples)
        return AnalysisContext(training=training.result(), successes=successes.result(),
                               corrections=corrections.result())


def geometric_result(prediction: GeometricPrediction, note: str) -> AnalysisResult:
    """Degraded result carrying the geometric prediction untouched."""
    result = AnalysisResult(
        roof_type=prediction.roof_type,
        overall_confidence=prediction.geometric_confidence,
        edges=list(prediction.edges),
        method=AnalysisMethod.GEOMETRIC_ONLY,
        raw_geometric_prediction=prediction,
        raw_ai_validation=None,
        analysis_notes=note,
        status=AnalysisStatus.AI_VALIDATING,
    )
    result.advance(AnalysisStatus.DEGRADED_COMPLETE)
    return result


class HybridValidationOrchestrator:
    """
    Refine geometric predictions with the vision collaborator.

    ``validate`` never raises: any failure talking to the collaborator yields
    the geometric prediction tagged ``geometric-only``.
    """

    def __init__(self,
                 client: Optional[VisionInferenceClient],
                 fusion: Optional[ConfidenceFusionEngine] = None,
                 aggregator: Optional[TrainingStatisticsAggregator] = None) -> None:
        self.client = client
        self.aggregator = aggregator or TrainingStatisticsAggregator()
        self.fusion = fusion or ConfidenceFusionEngine(aggregator=self.aggregator)

    def _images(self, request: AnalysisRequest) -> Tuple[List[str], bool]:
        """Aerial image first, then the inlined mask overlay when it can be fetched."""
        images: List[str] = []
        has_mask = False
        if request.aerial_image:
            if request.aerial_image.startswith(("data:", "http://", "https://")):
                images.append(request.aerial_image)
            else:
                images.append(self.client.inline_image(request.aerial_image))
        if request.mask_ref:
            try:
                images.append(self.client.inline_image(request.mask_ref))
                has_mask = True
            except Exception as e:
                logger.warning(f"Mask overlay unavailable, sending without it: {type(e).__name__}: {e}")
        return images, has_mask

    def validate(self,
                 request: AnalysisRequest,
                 prediction: GeometricPrediction,
                 context: Optional[AnalysisContext] = None) -> AnalysisResult:
        context = context or AnalysisContext()
        if self.client is None:
            return geometric_result(prediction, "AI validation disabled, using geometric analysis only")

        strategy = strategy_for(request.internal_edges_only)
        try:
            images, has_mask = self._images(request)
            prompt_ctx = PromptContext(
                prediction=prediction,
                stats=self.aggregator.summarize(context.training),
                success_patterns=summarize_success_patterns(context.successes),
                corrections=summarize_correction_patterns(context.corrections),
                latitude=request.latitude,
                longitude=request.longitude,
                mask_bounds=request.mask_bbox,
                has_aerial=bool(request.aerial_image),
                has_mask=has_mask,
            )
            ai = self.client.analyze(build_prompt(strategy, prompt_ctx), images, strategy)
        except Exception as e:
            logger.warning(f"AI validation unavailable ({strategy.name}), degrading: {type(e).__name__}: {e}",
                           extra={"job_id": request.job_id})
            return geometric_result(prediction, "AI validation unavailable, using geometric analysis only")

        ai_edges = [e for e in ai.edges if e.edge_type in strategy.allowed_edge_types]
        if len(ai_edges) != len(ai.edges):
            logger.info(f"Ignoring {len(ai.edges) - len(ai_edges)} edges outside the {strategy.name} edge types")
        kept_perimeter: List[Edge] = []
        if isinstance(strategy, InternalOnlyStrategy):
            kept_perimeter = [e for e in prediction.edges if e.edge_type in PERIMETER_EDGE_TYPES]

        fused = self.fusion.fuse(prediction.edges, ai_edges, context.training)
        logger.info(f"AI validation complete ({strategy.name}): {len(fused)} refined edges",
                    extra={"job_id": request.job_id})
        result = AnalysisResult(
            roof_type=ai.roof_type,
            overall_confidence=ai.overall_confidence,
            edges=kept_perimeter + fused,
            method=AnalysisMethod.HYBRID,
            raw_geometric_prediction=prediction,
            raw_ai_validation=ai.raw,
            analysis_notes=ai.analysis_notes,
            status=AnalysisStatus.AI_VALIDATING,
        )
        result.advance(AnalysisStatus.COMPLETE)
        return result


__all__ = ["AnalysisContext", "HybridValidationOrchestrator", "geometric_result", "load_context"]
