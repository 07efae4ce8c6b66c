from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from .config import FusionWeights
from .training_stats import TrainingStatisticsAggregator
from .types import ConfidenceBreakdown, Edge, TrainingSample

logger = logging.getLogger(__name__)


def _unit(x: float) -> float:
    return min(1.0, max(0.0, float(x)))


class ConfidenceFusionEngine:
    """
    Combine AI, geometric and historical confidence into one score per edge.

    Geometric counterparts are matched by stable id (``Edge.source_id`` on the
    AI edge pointing at ``Edge.edge_id`` of a geometric edge), never by list
    position. An AI edge without a counterpart scores 0 on the geometric term.
    """

    def __init__(self,
                 weights: Optional[FusionWeights] = None,
                 aggregator: Optional[TrainingStatisticsAggregator] = None) -> None:
        self.weights = weights or FusionWeights()
        self.aggregator = aggregator or TrainingStatisticsAggregator()

    def combine(self, ai: float, geometric: float, training: float) -> float:
        w = self.weights
        return _unit(w.ai * _unit(ai) + w.geometric * _unit(geometric) + w.training * _unit(training))

    def fuse(self,
             geometric_edges: Sequence[Edge],
             ai_edges: Sequence[Edge],
             samples: Sequence[TrainingSample]) -> List[Edge]:
        by_id: Dict[str, Edge] = {e.edge_id: e for e in geometric_edges if e.edge_id}
        fused: List[Edge] = []
        matched = 0
        for i, ai_edge in enumerate(ai_edges):
            counterpart = by_id.get(ai_edge.source_id) if ai_edge.source_id else None
            if counterpart is not None:
                matched += 1
            breakdown = ConfidenceBreakdown(
                ai=_unit(ai_edge.confidence),
                geometric=_unit(counterpart.confidence) if counterpart is not None else 0.0,
                training=self.aggregator.training_confidence(ai_edge, samples),
            )
            final = self.combine(breakdown.ai, breakdown.geometric, breakdown.training)
            fused.append(Edge(
                start=ai_edge.start,
                end=ai_edge.end,
                edge_type=ai_edge.edge_type,
                length_ft=ai_edge.length_ft,
                confidence=round(final, 2),
                edge_id=ai_edge.edge_id or f"e{i}",
                source_id=ai_edge.source_id,
                breakdown=breakdown,
                adjustment_reason=ai_edge.adjustment_reason,
            ))
        logger.debug(f"Fused {len(fused)} edges, {matched} with a geometric counterpart")
        return fused


__all__ = ["ConfidenceFusionEngine"]
