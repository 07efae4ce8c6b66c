import requests

from app.services.roof_edges.edge_analyzer import GeometricEdgeAnalyzer
from app.services.roof_edges.inference_client import AiValidation
from app.services.roof_edges.orchestrator import AnalysisContext, HybridValidationOrchestrator, load_context
from app.services.roof_edges.prompts import FullDetectionStrategy, InternalOnlyStrategy
from app.services.roof_edges.repository import StaticTrainingDataSource
from app.services.roof_edges.types import (
    AnalysisMethod,
    AnalysisRequest,
    AnalysisStatus,
    EdgeType,
    TrainingSample,
)

from conftest import FailingClient, ScriptedClient, ai_edge


def _request(perimeter, **kw):
    return AnalysisRequest(latitude=40.0, longitude=-75.0, perimeter=perimeter, **kw)


def test_inference_failure_degrades_to_geometric_only(long_rectangle):
    prediction = GeometricEdgeAnalyzer().analyze(long_rectangle)
    client = FailingClient()
    result = HybridValidationOrchestrator(client).validate(_request(long_rectangle), prediction)
    assert client.calls == 1
    assert result.method == AnalysisMethod.GEOMETRIC_ONLY
    assert result.status == AnalysisStatus.DEGRADED_COMPLETE
    assert result.edges == prediction.edges
    assert result.roof_type == "gable"
    assert result.overall_confidence == prediction.geometric_confidence
    assert result.raw_ai_validation is None


def test_unexpected_client_error_also_degrades(near_square):
    prediction = GeometricEdgeAnalyzer().analyze(near_square)
    client = FailingClient(error=requests.ConnectionError("reset by peer"))
    result = HybridValidationOrchestrator(client).validate(_request(near_square), prediction)
    assert result.method == AnalysisMethod.GEOMETRIC_ONLY
    assert len(result.edges) == 8


def test_no_client_means_geometric_only(near_square):
    prediction = GeometricEdgeAnalyzer().analyze(near_square)
    result = HybridValidationOrchestrator(None).validate(_request(near_square), prediction)
    assert result.method == AnalysisMethod.GEOMETRIC_ONLY
    assert result.edges == prediction.edges


def test_successful_validation_fuses_ai_edges(long_rectangle, ridge_validation):
    prediction = GeometricEdgeAnalyzer().analyze(long_rectangle)
    client = ScriptedClient(ridge_validation)
    context = AnalysisContext(training=[TrainingSample("EAVE", 330.0)])
    result = HybridValidationOrchestrator(client).validate(
        _request(long_rectangle, aerial_image="https://imagery.test/tile.png"), prediction, context)
    assert isinstance(client.strategies[0], FullDetectionStrategy)
    assert client.images[0] == ["https://imagery.test/tile.png"]
    assert result.method == AnalysisMethod.HYBRID
    assert result.status == AnalysisStatus.COMPLETE
    assert result.roof_type == "gable"
    assert result.overall_confidence == 0.88
    assert [e.edge_type for e in result.edges] == [EdgeType.EAVE, EdgeType.RIDGE]
    eave, ridge = result.edges
    assert eave.breakdown.geometric == 0.75  # g0 is a gable eave
    assert eave.breakdown.training == 0.9
    assert ridge.breakdown.geometric == 0.6  # g4 is the ridge
    assert all(0.0 <= e.confidence <= 1.0 for e in result.edges)
    assert result.raw_geometric_prediction is prediction


def test_internal_only_keeps_geometric_perimeter(long_rectangle, ridge_validation):
    prediction = GeometricEdgeAnalyzer().analyze(long_rectangle)
    client = ScriptedClient(ridge_validation)
    result = HybridValidationOrchestrator(client).validate(
        _request(long_rectangle, internal_edges_only=True), prediction)
    assert isinstance(client.strategies[0], InternalOnlyStrategy)
    perimeter = [e for e in result.edges if e.edge_type in (EdgeType.EAVE, EdgeType.RAKE)]
    assert perimeter == prediction.edges[:4]
    internal = [e for e in result.edges if e.edge_type not in (EdgeType.EAVE, EdgeType.RAKE)]
    assert [e.edge_type for e in internal] == [EdgeType.RIDGE]
    assert internal[0].breakdown is not None


def test_internal_only_drops_edge_types_outside_the_mode(long_rectangle):
    prediction = GeometricEdgeAnalyzer().analyze(long_rectangle)
    validation = AiValidation(
        edges=[
            ai_edge(EdgeType.WALL, 0.9, edge_id="a0"),
            ai_edge(EdgeType.RIDGE, 0.85, source_id="g4", edge_id="a1"),
        ],
        roof_type="gable",
        overall_confidence=0.8,
    )
    result = HybridValidationOrchestrator(ScriptedClient(validation)).validate(
        _request(long_rectangle, internal_edges_only=True), prediction)
    assert result.edges[:4] == prediction.edges[:4]
    assert [e.edge_type for e in result.edges[4:]] == [EdgeType.RIDGE]
    assert EdgeType.WALL not in [e.edge_type for e in result.edges]


def test_unavailable_mask_overlay_is_skipped(long_rectangle, ridge_validation):
    class NoMaskClient(ScriptedClient):
        def inline_image(self, ref):
            raise requests.ConnectionError("mask host down")

    prediction = GeometricEdgeAnalyzer().analyze(long_rectangle)
    client = NoMaskClient(ridge_validation)
    result = HybridValidationOrchestrator(client).validate(
        _request(long_rectangle, mask_ref="https://masks.test/m.tif"), prediction)
    assert result.method == AnalysisMethod.HYBRID
    assert client.images[0] == []
    assert "No imagery attached" in client.prompts[0]


def test_load_context_tolerates_failed_reads():
    class HalfBrokenSource(StaticTrainingDataSource):
        def success_samples(self):
            raise OSError("table unavailable")

    ctx = load_context(HalfBrokenSource(training=[TrainingSample("EAVE", 40.0)]))
    assert ctx.training == [TrainingSample("EAVE", 40.0)]
    assert ctx.successes == []
    assert ctx.corrections == []
