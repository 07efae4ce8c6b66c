from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .types import AnalysisResult, CorrectionSample, SuccessSample, TrainingSample

logger = logging.getLogger(__name__)


class AnalysisRepository(Protocol):
    def append(self, job_id: Optional[str], result: AnalysisResult) -> None:
        ...


def analysis_record(job_id: Optional[str], result: AnalysisResult) -> Dict[str, Any]:
    return {
        "jobId": job_id,
        "analysisId": result.analysis_id,
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "method": result.method.value,
        "status": result.status.value,
        "roofType": result.roof_type,
        "confidence": result.overall_confidence,
        "fusedEdges": [e.to_dict() for e in result.edges],
        "rawGeometricPrediction": result.raw_geometric_prediction.to_dict() if result.raw_geometric_prediction else None,
        "rawAiValidation": result.raw_ai_validation,
        "errorMessage": result.error_message,
    }


class JsonlAnalysisRepository:
    """
    Append-only store: one JSON line per analysis in ``<dir>/analyses.jsonl``.

    Env variables:
      - ANALYSIS_DIR (default: ./analyses)
    """

    def __init__(self, analysis_dir: Optional[str] = None) -> None:
        self.analysis_dir = Path(analysis_dir or os.getenv("ANALYSIS_DIR", "./analyses")).resolve()
        self.path = self.analysis_dir / "analyses.jsonl"
        self._lock = threading.Lock()

    def append(self, job_id: Optional[str], result: AnalysisResult) -> None:
        line = json.dumps(analysis_record(job_id, result))
        self.analysis_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")


class InMemoryAnalysisRepository:
    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []

    def append(self, job_id: Optional[str], result: AnalysisResult) -> None:
        self.records.append(analysis_record(job_id, result))


class TrainingDataSource(Protocol):
    def training_samples(self) -> List[TrainingSample]:
        ...

    def success_samples(self) -> List[SuccessSample]:
        ...

    def correction_samples(self) -> List[CorrectionSample]:
        ...


class StaticTrainingDataSource:
    def __init__(self,
                 training: Sequence[TrainingSample] = (),
                 successes: Sequence[SuccessSample] = (),
                 corrections: Sequence[CorrectionSample] = ()) -> None:
        self._training = list(training)
        self._successes = list(successes)
        self._corrections = list(corrections)

    def training_samples(self) -> List[TrainingSample]:
        return list(self._training)

    def success_samples(self) -> List[SuccessSample]:
        return list(self._successes)

    def correction_samples(self) -> List[CorrectionSample]:
        return list(self._corrections)


class JsonTrainingDataSource:
    """
    Read historical rows from a JSON file shaped like
    ``{"edges": [...], "successes": [...], "corrections": [...]}``.

    Rows are expected most-recent-first; at most ``limit`` are returned.
    A missing path yields empty lists.
    """

    def __init__(self, path: Optional[str], limit: int = 200) -> None:
        self.path = Path(path) if path else None
        self.limit = limit

    def _section(self, key: str) -> List[Dict[str, Any]]:
        if self.path is None or not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        rows = data.get(key, []) if isinstance(data, dict) else []
        return [r for r in rows if isinstance(r, dict)][: self.limit]

    def training_samples(self) -> List[TrainingSample]:
        return [
            TrainingSample(edge_type=str(r.get("edge_type") or ""),
                           length_ft=float(r.get("length_ft") or 0.0),
                           notes=str(r.get("notes") or ""))
            for r in self._section("edges")
        ]

    def success_samples(self) -> List[SuccessSample]:
        return [SuccessSample(edge_type=str(r.get("edge_type") or "UNKNOWN")) for r in self._section("successes")]

    def correction_samples(self) -> List[CorrectionSample]:
        return [
            CorrectionSample(roof_type=r.get("roof_type"),
                             adjustment_summary=r.get("adjustment_summary"),
                             correction_notes=r.get("correction_notes"))
            for r in self._section("corrections")
        ]


__all__ = [
    "AnalysisRepository",
    "JsonlAnalysisRepository",
    "InMemoryAnalysisRepository",
    "TrainingDataSource",
    "StaticTrainingDataSource",
    "JsonTrainingDataSource",
    "analysis_record",
]
