import json

import pytest
import requests

from app.services.roof_edges.inference_client import VisionInferenceClient, parse_tool_arguments
from app.services.roof_edges.prompts import TOOL_NAME, strategy_for
from app.services.roof_edges.types import EdgeType, InferenceError

GOOD_ARGS = {
    "edges": [
        {"start": [-75.0, 40.0], "end": [-74.9988, 40.0], "edgeType": "EAVE", "length": 328.1,
         "confidence": 0.92, "sourceId": "g0"},
        {"start": [-75.0, 40.0003], "end": [-74.9988, 40.0003], "edgeType": "RIDGE", "length": 328.0,
         "confidence": 0.81, "adjustmentReason": "shifted to visible ridge line"},
    ],
    "roofType": "gable",
    "overallConfidence": 0.87,
    "analysisNotes": "Clear gable",
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or json.dumps(payload)

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _tool_response(args):
    return {"choices": [{"message": {"tool_calls": [
        {"type": "function", "function": {"name": TOOL_NAME, "arguments": json.dumps(args)}}
    ]}}]}


def _client(monkeypatch, response=None, exc=None, api_key="test-key"):
    session = requests.Session()
    sent = {}

    def _post(url, json=None, headers=None, timeout=None):
        sent.update(url=url, json=json, headers=headers, timeout=timeout)
        if exc is not None:
            raise exc
        return response

    monkeypatch.setattr(session, "post", _post)
    client = VisionInferenceClient("https://gateway.test/v1/chat/completions", api_key, "vision-model",
                                   timeout_s=12.0, session=session)
    return client, sent


def test_parse_tool_arguments_assigns_ids():
    ai = parse_tool_arguments(json.dumps(GOOD_ARGS))
    assert ai.roof_type == "gable"
    assert ai.overall_confidence == 0.87
    assert [e.edge_id for e in ai.edges] == ["a0", "a1"]
    assert ai.edges[0].source_id == "g0"
    assert ai.edges[1].source_id is None
    assert ai.edges[1].edge_type == EdgeType.RIDGE
    assert ai.edges[1].adjustment_reason == "shifted to visible ridge line"


def test_parse_accepts_legacy_field_names():
    legacy = {
        "validatedEdges": [{"start": [0, 0], "end": [1, 1], "edgeType": "HIP", "length": 20, "aiConfidence": 0.7}],
        "roofTypeConfirmed": "hip",
        "confidenceScore": 0.75,
    }
    ai = parse_tool_arguments(legacy)
    assert ai.roof_type == "hip"
    assert ai.edges[0].confidence == 0.7


@pytest.mark.parametrize("bad", [
    "not json",
    "[]",
    {"edges": [], "roofType": "hip"},  # missing overallConfidence
    {**GOOD_ARGS, "edges": [{**GOOD_ARGS["edges"][0], "confidence": 1.5}]},
    {**GOOD_ARGS, "edges": [{**GOOD_ARGS["edges"][0], "edgeType": "GUTTER"}]},
])
def test_parse_rejects_malformed_results(bad):
    with pytest.raises(InferenceError):
        parse_tool_arguments(bad)


def test_analyze_success_sends_forced_tool_call(monkeypatch):
    client, sent = _client(monkeypatch, FakeResponse(200, _tool_response(GOOD_ARGS)))
    images = ["data:image/png;base64,AAA", "data:image/png;base64,BBB", "data:image/png;base64,CCC"]
    ai = client.analyze("prompt text", images, strategy_for(False))
    assert len(ai.edges) == 2
    body = sent["json"]
    assert sent["timeout"] == 12.0
    assert sent["headers"]["Authorization"] == "Bearer test-key"
    assert body["model"] == "vision-model"
    assert body["tool_choice"] == {"type": "function", "function": {"name": TOOL_NAME}}
    content = body["messages"][1]["content"]
    assert content[0] == {"type": "text", "text": "prompt text"}
    assert len([c for c in content if c["type"] == "image_url"]) == 2  # capped


@pytest.mark.parametrize("response", [
    FakeResponse(429, None, text="rate limited"),
    FakeResponse(500, None, text="boom"),
    FakeResponse(200, {"choices": [{"message": {"content": "I think it's a hip roof"}}]}),
    FakeResponse(200, None, text="<html>"),
])
def test_analyze_failures_raise_inference_error(monkeypatch, response):
    client, _ = _client(monkeypatch, response)
    with pytest.raises(InferenceError):
        client.analyze("p", [], strategy_for(True))


def test_analyze_timeout_raises_inference_error(monkeypatch):
    client, _ = _client(monkeypatch, exc=requests.Timeout("read timed out"))
    with pytest.raises(InferenceError):
        client.analyze("p", [], strategy_for(True))


def test_analyze_without_api_key(monkeypatch):
    client, sent = _client(monkeypatch, FakeResponse(200, _tool_response(GOOD_ARGS)), api_key="")
    with pytest.raises(InferenceError):
        client.analyze("p", [], strategy_for(False))
    assert sent == {}


def test_inline_image_passes_data_urls_and_reads_files(tmp_path):
    client = VisionInferenceClient("https://gateway.test", "k", "m")
    assert client.inline_image("data:image/png;base64,AAA") == "data:image/png;base64,AAA"
    path = tmp_path / "mask.png"
    path.write_bytes(b"\x89PNG")
    assert client.inline_image(str(path)) == "data:image/png;base64,iVBORw=="
