from __future__ import annotations

import base64
import json
import logging
import mimetypes
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, Field, ValidationError

from .prompts import TOOL_NAME, PromptStrategy
from .types import Edge, EdgeType, GeoPoint, InferenceError

logger = logging.getLogger(__name__)

MAX_IMAGES = 2


class AiEdgePayload(BaseModel):
    start: List[float] = Field(..., min_length=2, max_length=2)
    end: List[float] = Field(..., min_length=2, max_length=2)
    edgeType: EdgeType
    length: float = Field(..., ge=0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    sourceId: Optional[str] = None
    adjustmentReason: Optional[str] = None


class AiValidationPayload(BaseModel):
    edges: List[AiEdgePayload]
    roofType: str
    overallConfidence: float = Field(..., ge=0.0, le=1.0)
    analysisNotes: Optional[str] = None


# Older tool schemas used these names; accept them when the model echoes them
_LEGACY_KEYS = {"validatedEdges": "edges", "roofTypeConfirmed": "roofType", "confidenceScore": "overallConfidence"}


def _normalize(args: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(args)
    for old, new in _LEGACY_KEYS.items():
        if old in out and new not in out:
            out[new] = out.pop(old)
    edges = []
    for e in out.get("edges") or []:
        if isinstance(e, dict) and "confidence" not in e and "aiConfidence" in e:
            e = {**e, "confidence": e["aiConfidence"]}
        edges.append(e)
    out["edges"] = edges
    return out


@dataclass
class AiValidation:
    edges: List[Edge]
    roof_type: str
    overall_confidence: float
    analysis_notes: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


def parse_tool_arguments(arguments: Any) -> AiValidation:
    """Validate the forced tool call's arguments into typed edges."""
    try:
        args = json.loads(arguments) if isinstance(arguments, (str, bytes)) else arguments
        if not isinstance(args, dict):
            raise InferenceError("tool arguments are not an object")
        payload = AiValidationPayload.model_validate(_normalize(args))
    except (ValueError, ValidationError) as e:
        raise InferenceError(f"malformed inference result: {e}") from e
    edges = [
        Edge(
            start=GeoPoint(p.start[0], p.start[1]),
            end=GeoPoint(p.end[0], p.end[1]),
            edge_type=p.edgeType,
            length_ft=float(p.length),
            confidence=float(p.confidence),
            edge_id=f"a{i}",
            source_id=p.sourceId or None,
            adjustment_reason=p.adjustmentReason,
        )
        for i, p in enumerate(payload.edges)
    ]
    return AiValidation(edges=edges, roof_type=payload.roofType, overall_confidence=payload.overallConfidence,
                        analysis_notes=payload.analysisNotes or "", raw=payload.model_dump())


def to_data_url(content: bytes, content_type: Optional[str] = None) -> str:
    ctype = content_type or "image/png"
    return f"data:{ctype};base64,{base64.b64encode(content).decode()}"


class VisionInferenceClient:
    """
    Single-round-trip client for an OpenAI-compatible multimodal chat endpoint.

    The request forces a tool call whose JSON-schema parameters describe the
    edge set; anything other than a well-formed call raises InferenceError.
    No retries: callers degrade instead.
    """

    def __init__(self,
                 gateway_url: str,
                 api_key: str,
                 model: str,
                 timeout_s: float = 60.0,
                 image_fetch_timeout_s: float = 15.0,
                 session: Optional[requests.Session] = None) -> None:
        self.gateway_url = gateway_url
        self.api_key = api_key
        self.model = model
        self.timeout_s = timeout_s
        self.image_fetch_timeout_s = image_fetch_timeout_s
        self.session = session or requests.Session()

    def inline_image(self, ref: str) -> str:
        """Fetch an image reference and return it as a base64 data URL."""
        if ref.startswith("data:"):
            return ref
        if ref.startswith(("http://", "https://")):
            r = self.session.get(ref, timeout=self.image_fetch_timeout_s)
            r.raise_for_status()
            ctype = r.headers.get("Content-Type", "").split(";")[0] or None
            return to_data_url(r.content, ctype)
        with open(ref, "rb") as fh:
            return to_data_url(fh.read(), mimetypes.guess_type(ref)[0])

    def build_request(self, prompt: str, images: List[str], strategy: PromptStrategy) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for url in images[:MAX_IMAGES]:
            content.append({"type": "image_url", "image_url": {"url": url}})
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": strategy.system_message()},
                {"role": "user", "content": content},
            ],
            "tools": [strategy.tool_schema()],
            "tool_choice": {"type": "function", "function": {"name": TOOL_NAME}},
        }

    def analyze(self, prompt: str, images: List[str], strategy: PromptStrategy) -> AiValidation:
        if not self.api_key:
            raise InferenceError("AI_API_KEY not configured")
        body = self.build_request(prompt, images, strategy)
        started = time.perf_counter()
        try:
            resp = self.session.post(
                self.gateway_url,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise InferenceError(f"inference request failed: {type(e).__name__}: {e}") from e
        duration_ms = round((time.perf_counter() - started) * 1000.0, 1)
        if not resp.ok:
            raise InferenceError(f"inference gateway returned {resp.status_code}: {resp.text[:200]}")
        logger.info(f"Inference responded in {duration_ms}ms ({len(images[:MAX_IMAGES])} images)",
                    extra={"duration_ms": duration_ms})
        try:
            data = resp.json()
            tool_call = data["choices"][0]["message"]["tool_calls"][0]
            arguments = tool_call["function"]["arguments"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise InferenceError("no tool call in inference response") from e
        return parse_tool_arguments(arguments)


__all__ = [
    "AiEdgePayload",
    "AiValidationPayload",
    "AiValidation",
    "VisionInferenceClient",
    "parse_tool_arguments",
    "to_data_url",
]
