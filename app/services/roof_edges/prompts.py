from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from .training_stats import TrainingStats
from .types import EdgeType, GeoBBox, GeometricPrediction, INTERNAL_EDGE_TYPES

TOOL_NAME = "validate_and_refine_edges"

ROOF_TYPES = ["gable", "hip", "flat", "gambrel", "mansard", "shed", "complex"]

_COMPLEX_STRUCTURES = """COMPLEX STRUCTURES TO IDENTIFY:
- DORMERS: gabled (own ridge, rakes and eave), hipped (hips on the sides, ridge on top), shed (single sloped plane)
- CORNICE RETURNS: small hipped or shed sections at gable ends
- MANSARD ROOFS: ridges at the transition between the steep and flat sections
- MULTIPLE ROOF SECTIONS: valleys and ridges where attached structures meet
- TURRETS/TOWERS: radial hips around circular or polygonal structures"""


@dataclass
class PromptContext:
    """Everything the vision model is told besides the mode instructions."""
    prediction: GeometricPrediction
    stats: TrainingStats
    success_patterns: Dict[str, Any] = field(default_factory=dict)
    corrections: Dict[str, Any] = field(default_factory=dict)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    mask_bounds: Optional[GeoBBox] = None
    has_aerial: bool = False
    has_mask: bool = False


class PromptStrategy:
    """Base for the two detection modes. Pick one with ``strategy_for``."""
    name: str = ""
    allowed_edge_types: FrozenSet[EdgeType] = frozenset(EdgeType)

    def instructions(self, ctx: PromptContext) -> str:
        raise NotImplementedError

    def system_message(self) -> str:
        return "You are a roof measurement expert. Validate and refine geometric roof edge predictions using aerial imagery."

    def tool_schema(self) -> Dict[str, Any]:
        edge_types = sorted(t.value for t in self.allowed_edge_types)
        return {
            "type": "function",
            "function": {
                "name": TOOL_NAME,
                "description": "Return the validated and refined roof edges",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "edges": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "start": {"type": "array", "items": {"type": "number"}, "minItems": 2, "maxItems": 2,
                                              "description": "[longitude, latitude] of start point"},
                                    "end": {"type": "array", "items": {"type": "number"}, "minItems": 2, "maxItems": 2,
                                            "description": "[longitude, latitude] of end point"},
                                    "edgeType": {"type": "string", "enum": edge_types},
                                    "length": {"type": "number", "description": "Length in feet"},
                                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                                    "sourceId": {"type": "string",
                                                 "description": "id of the geometric prediction this edge validates, if any"},
                                    "adjustmentReason": {"type": "string"},
                                },
                                "required": ["start", "end", "edgeType", "length", "confidence"],
                            },
                        },
                        "roofType": {"type": "string", "enum": ROOF_TYPES},
                        "overallConfidence": {"type": "number", "minimum": 0, "maximum": 1},
                        "analysisNotes": {"type": "string"},
                    },
                    "required": ["edges", "roofType", "overallConfidence"],
                },
            },
        }


class InternalOnlyStrategy(PromptStrategy):
    """Perimeter already traced from the mask: ask only for RIDGE/HIP/VALLEY."""
    name = "internal-only"
    allowed_edge_types = INTERNAL_EDGE_TYPES

    def instructions(self, ctx: PromptContext) -> str:
        return f"""You are a roof structure detection AI. The roof PERIMETER has already been traced from the mask.

{_images_block(ctx, mask_note="roof boundary (already traced - IGNORE perimeter)")}

YOUR TASK: Detect ONLY INTERNAL roof structure edges that define FACETS (0-20 edges):
- RIDGE: peak lines running along the top of the roof
- HIP: diagonal lines from corners up to the ridge (external corners)
- VALLEY: internal corners where two roof slopes meet

{_COMPLEX_STRUCTURES}

CRITICAL RULES:
1. DO NOT return perimeter edges (EAVE/RAKE) - they are already traced
2. ONLY return RIDGE, HIP and VALLEY edges
3. Detect ALL internal structure lines, including small ones from dormers
4. All edges must lie INSIDE the mask boundary
5. Return 0 edges only if truly no internal structure is visible
6. Complex properties may have 10-20+ internal edges"""


class FullDetectionStrategy(PromptStrategy):
    """No trusted perimeter: ask for the complete edge set."""
    name = "full"

    def instructions(self, ctx: PromptContext) -> str:
        return f"""You are a roof edge detection AI. Detect ALL roof edges including complex structures.

{_images_block(ctx, mask_note="mask overlay showing the EXACT roof boundary")}

CRITICAL RULES:
1. ALL edges MUST be INSIDE or ON the mask boundary; the mask is the ground truth
2. DO NOT draw edges outside the roof area
3. Detect ALL structural edges including small features (dormers, returns)

TASK - Detect ALL roof edges (4-30+ depending on complexity):
PERIMETER EDGES:
- EAVE: bottom horizontal edges where the roof meets the walls
- RAKE: sloped side edges at gable ends
INTERNAL STRUCTURE EDGES:
- RIDGE: peak lines at the top
- HIP: external diagonal corners
- VALLEY: internal diagonal corners where two slopes meet

{_COMPLEX_STRUCTURES}"""


_STRATEGIES = {True: InternalOnlyStrategy(), False: FullDetectionStrategy()}


def strategy_for(internal_edges_only: bool) -> PromptStrategy:
    return _STRATEGIES[bool(internal_edges_only)]


def _images_block(ctx: PromptContext, mask_note: str) -> str:
    lines: List[str] = []
    idx = 1
    if ctx.has_aerial:
        lines.append(f"IMAGE {idx}: Aerial satellite view of the property")
        idx += 1
    if ctx.has_mask:
        lines.append(f"IMAGE {idx}: {mask_note}")
    if not lines:
        lines.append("No imagery attached; rely on the geometric predictions and training context.")
    return "\n".join(lines)


def _context_block(ctx: PromptContext) -> str:
    pred = ctx.prediction
    edge_lines = []
    for i, e in enumerate(pred.edges, start=1):
        edge_lines.append(
            f"{i}. [{e.edge_id}] {e.edge_type.value}\n"
            f"   Start: [{e.start.lon:.6f}, {e.start.lat:.6f}]\n"
            f"   End: [{e.end.lon:.6f}, {e.end.lat:.6f}]\n"
            f"   Length: {e.length_ft}ft\n"
            f"   Geometric Confidence: {e.confidence * 100:.0f}%"
        )
    s = ctx.stats
    parts = [
        "GEOMETRIC ANALYSIS RESULTS:",
        f"Roof Type Detected: {pred.roof_type.upper()}",
        f"Geometric Confidence: {pred.geometric_confidence * 100:.0f}%",
        f"Edges Detected: {len(pred.edges)}",
        "",
        "GEOMETRIC PREDICTIONS TO VALIDATE:",
        "\n".join(edge_lines) if edge_lines else "(none)",
        "",
        f"TRAINING DATA CONTEXT ({s.total_samples} examples):",
        f"- Average EAVE: {s.avg_eave:g}ft",
        f"- Average RAKE: {s.avg_rake:g}ft",
        f"- Average RIDGE: {s.avg_ridge:g}ft",
        f"- Average HIP: {s.avg_hip:g}ft",
        f"- Common roof types: {', '.join(s.common_roof_types) or 'unknown'}",
    ]
    if ctx.success_patterns.get("keyPatterns"):
        parts.append(f"- Past success rate: {ctx.success_patterns.get('successRate', 0)}%")
        parts.extend(f"- {p}" for p in ctx.success_patterns["keyPatterns"])
    if ctx.corrections.get("totalCorrections"):
        parts.append(
            f"- Human corrections: {ctx.corrections['totalCorrections']} "
            f"(avg shift lat {ctx.corrections['avgLatShift']}, lng {ctx.corrections['avgLngShift']}); "
            f"common issue: {ctx.corrections['commonIssue']}"
        )
    if ctx.latitude is not None and ctx.longitude is not None:
        parts += ["", f"LOCATION: {ctx.latitude}, {ctx.longitude}"]
    if ctx.mask_bounds is not None:
        b = ctx.mask_bounds
        parts.append(f"ROOF BOUNDS: N:{b.north} S:{b.south} E:{b.east} W:{b.west}")
    return "\n".join(parts)


def build_prompt(strategy: PromptStrategy, ctx: PromptContext) -> str:
    return f"""{strategy.instructions(ctx)}

{_context_block(ctx)}

VALIDATION RULES:
- When an edge validates or refines a geometric prediction, set sourceId to that prediction's [id]
- Leave sourceId empty for edges you add
- Edge lengths usually fall within 30% of the training averages
- All coordinates are [longitude, latitude] and must stay within the roof bounds
- Confidence > 0.8 means high certainty, < 0.5 means uncertain

Return the validated edges by calling {TOOL_NAME}."""


__all__ = [
    "PromptContext",
    "PromptStrategy",
    "InternalOnlyStrategy",
    "FullDetectionStrategy",
    "strategy_for",
    "build_prompt",
    "TOOL_NAME",
]
