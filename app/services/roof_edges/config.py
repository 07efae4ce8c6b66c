from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict

from .types import EdgeType


@dataclass(frozen=True)
class FusionWeights:
    """Weights of the three confidence sources. Must be non-negative and sum to 1."""
    ai: float = 0.5
    geometric: float = 0.3
    training: float = 0.2

    def __post_init__(self) -> None:
        if min(self.ai, self.geometric, self.training) < 0:
            raise ValueError("Fusion weights must be non-negative")
        if not math.isclose(self.ai + self.geometric + self.training, 1.0, abs_tol=1e-9):
            raise ValueError("Fusion weights must sum to 1.0")


@dataclass(frozen=True)
class EdgeLengthDefaults:
    """Prior mean edge lengths (feet) used when no history exists for a type."""
    eave: float = 40.0
    rake: float = 30.0
    ridge: float = 35.0
    hip: float = 28.0

    def for_type(self, edge_type: EdgeType) -> float:
        return {
            EdgeType.EAVE: self.eave,
            EdgeType.RAKE: self.rake,
            EdgeType.RIDGE: self.ridge,
            EdgeType.HIP: self.hip,
        }.get(edge_type, 0.0)


@dataclass(frozen=True)
class TrainingConfidenceBands:
    """Length-deviation bands (fraction of the historical mean) -> confidence."""
    bands: Dict[float, float] = field(default_factory=lambda: {0.2: 0.9, 0.4: 0.7, 0.6: 0.5})
    beyond: float = 0.3
    no_history: float = 0.5

    def score(self, deviation: float) -> float:
        for limit in sorted(self.bands):
            if deviation < limit:
                return self.bands[limit]
        return self.beyond


@dataclass(frozen=True)
class GeometricHeuristics:
    """Fixed confidences of the geometric classifier."""
    gable_aspect_ratio: float = 1.5
    gable_perimeter_conf: float = 0.75
    hip_perimeter_conf: float = 0.8
    other_perimeter_conf: float = 0.7
    ridge_conf: float = 0.6
    hip_line_conf: float = 0.65
    roof_conf: Dict[str, float] = field(default_factory=lambda: {"hip": 0.8, "gable": 0.75})
    default_roof_conf: float = 0.6


DEFAULT_FUSION_WEIGHTS = FusionWeights()
DEFAULT_LENGTH_DEFAULTS = EdgeLengthDefaults()
