from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from .config import EdgeLengthDefaults, TrainingConfidenceBands
from .types import CorrectionSample, Edge, EdgeType, SuccessSample, TrainingSample


class RoofTypeHintExtractor(Protocol):
    """Derives 'commonly observed roof types' from historical samples."""

    def extract(self, samples: Iterable[TrainingSample]) -> List[str]:
        ...


class KeywordRoofTypeExtractor:
    """
    Regex scrape of free-text notes for roof-type keywords.

    Stand-in until samples carry a structured roof category; first keyword per
    note wins, results keep first-seen order.
    """

    PATTERN = re.compile(r"(hip|gable|flat|shed|gambrel|mansard|complex)", re.IGNORECASE)

    def __init__(self, limit: int = 3) -> None:
        self.limit = limit

    def extract(self, samples: Iterable[TrainingSample]) -> List[str]:
        seen: List[str] = []
        for s in samples:
            if not s.notes:
                continue
            m = self.PATTERN.search(s.notes)
            if m:
                kind = m.group(1).lower()
                if kind not in seen:
                    seen.append(kind)
        return seen[: self.limit]


@dataclass
class TrainingStats:
    total_samples: int
    avg_eave: float
    avg_rake: float
    avg_ridge: float
    avg_hip: float
    common_roof_types: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSamples": self.total_samples,
            "avgEave": self.avg_eave,
            "avgRake": self.avg_rake,
            "avgRidge": self.avg_ridge,
            "avgHip": self.avg_hip,
            "commonRoofTypes": list(self.common_roof_types),
        }


def _matches_type(sample: TrainingSample, edge_type: EdgeType) -> bool:
    # Historical rows use loose labels such as "eave_front" or "Ridge"
    return edge_type.value in (sample.edge_type or "").upper()


class TrainingStatisticsAggregator:
    def __init__(self,
                 defaults: Optional[EdgeLengthDefaults] = None,
                 hint_extractor: Optional[RoofTypeHintExtractor] = None,
                 bands: Optional[TrainingConfidenceBands] = None) -> None:
        self.defaults = defaults or EdgeLengthDefaults()
        self.hint_extractor = hint_extractor or KeywordRoofTypeExtractor()
        self.bands = bands or TrainingConfidenceBands()

    def mean_length(self, samples: Sequence[TrainingSample], edge_type: EdgeType) -> float:
        """Rounded mean of positive lengths for a type, or the prior default."""
        lengths = [s.length_ft for s in samples if s.length_ft > 0 and _matches_type(s, edge_type)]
        if not lengths:
            return self.defaults.for_type(edge_type)
        return float(round(sum(lengths) / len(lengths)))

    def summarize(self, samples: Sequence[TrainingSample]) -> TrainingStats:
        return TrainingStats(
            total_samples=len(samples),
            avg_eave=self.mean_length(samples, EdgeType.EAVE),
            avg_rake=self.mean_length(samples, EdgeType.RAKE),
            avg_ridge=self.mean_length(samples, EdgeType.RIDGE),
            avg_hip=self.mean_length(samples, EdgeType.HIP),
            common_roof_types=self.hint_extractor.extract(samples),
        )

    def training_confidence(self, edge: Edge, samples: Sequence[TrainingSample]) -> float:
        """How well an edge's length matches history for its type."""
        similar = [s for s in samples if _matches_type(s, edge.edge_type)]
        if not similar:
            return self.bands.no_history
        avg = sum(s.length_ft for s in similar) / len(similar)
        deviation = abs(edge.length_ft - avg) / avg if avg > 0 else 1.0
        return self.bands.score(deviation)


def summarize_success_patterns(rows: Sequence[SuccessSample]) -> Dict[str, Any]:
    if not rows:
        return {"successRate": 0, "keyPatterns": ["No successful predictions yet"]}
    counts: Dict[str, int] = {}
    for r in rows:
        key = r.edge_type or "UNKNOWN"
        counts[key] = counts.get(key, 0) + 1
    patterns = [f"{t} edges: {c} successful predictions" for t, c in counts.items()]
    return {"successRate": min(95, 60 + 2 * len(rows)), "keyPatterns": patterns[:5]}


def summarize_correction_patterns(rows: Sequence[CorrectionSample]) -> Dict[str, Any]:
    if not rows:
        return {"totalCorrections": 0, "avgLatShift": 0.0, "avgLngShift": 0.0,
                "commonIssue": "No correction data yet"}
    lat_shift = lng_shift = 0.0
    n = 0
    for r in rows:
        if r.adjustment_summary:
            lat_shift += float(r.adjustment_summary.get("avg_lat_shift", 0.0) or 0.0)
            lng_shift += float(r.adjustment_summary.get("avg_lng_shift", 0.0) or 0.0)
            n += 1
    return {
        "totalCorrections": len(rows),
        "avgLatShift": round(lat_shift / n, 8) if n else 0.0,
        "avgLngShift": round(lng_shift / n, 8) if n else 0.0,
        "commonIssue": rows[0].correction_notes or "Vertices need adjustment to fit actual roof boundaries",
    }


__all__ = [
    "RoofTypeHintExtractor",
    "KeywordRoofTypeExtractor",
    "TrainingStats",
    "TrainingStatisticsAggregator",
    "summarize_success_patterns",
    "summarize_correction_patterns",
]
