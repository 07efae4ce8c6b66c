import base64
import io
import math

import numpy as np
import pytest
from PIL import Image

from app.services.roof_edges.inference_client import AiValidation
from app.services.roof_edges.types import Edge, EdgeType, GeoBBox, GeoPoint, InferenceError

M_PER_DEG_LAT = math.radians(1.0) * 6_371_000.0


def rectangle(lat: float, lon: float, width_m: float, height_m: float):
    """Open 4-corner ring (SW, SE, NE, NW) of a width x height meter rectangle."""
    dlat = height_m / M_PER_DEG_LAT
    dlon = width_m / (M_PER_DEG_LAT * math.cos(math.radians(lat)))
    return [
        GeoPoint(lon, lat),
        GeoPoint(lon + dlon, lat),
        GeoPoint(lon + dlon, lat + dlat),
        GeoPoint(lon, lat + dlat),
    ]


def png_data_url(grid: np.ndarray) -> str:
    img = Image.fromarray((grid > 0).astype(np.uint8) * 255)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


@pytest.fixture
def long_rectangle():
    # 100m x 60m: aspect 1.67 -> gable
    return rectangle(40.0, -75.0, 100.0, 60.0)


@pytest.fixture
def near_square():
    # 20m x 19m: aspect 1.05 -> hip
    return rectangle(40.0, -75.0, 20.0, 19.0)


@pytest.fixture
def mask_bbox():
    return GeoBBox(north=40.001, south=40.0, east=-74.999, west=-75.0)


@pytest.fixture
def two_blob_grid():
    """100x100 grid: two blobs above the size threshold and one 10-pixel blob."""
    grid = np.zeros((100, 100), dtype=np.uint8)
    grid[10:30, 10:30] = 1   # 400 px
    grid[60:70, 60:70] = 1   # 100 px
    grid[90:92, 5:10] = 1    # 10 px, discarded
    return grid


@pytest.fixture
def two_blob_data_url(two_blob_grid):
    return png_data_url(two_blob_grid)


class FailingClient:
    """Inference collaborator that always fails."""

    def __init__(self, error=None):
        self.error = error or InferenceError("gateway returned 503")
        self.calls = 0

    def inline_image(self, ref):
        return ref

    def analyze(self, prompt, images, strategy):
        self.calls += 1
        raise self.error


class ScriptedClient:
    """Inference collaborator returning a fixed AiValidation and recording calls."""

    def __init__(self, validation: AiValidation):
        self.validation = validation
        self.prompts = []
        self.strategies = []
        self.images = []

    def inline_image(self, ref):
        return ref

    def analyze(self, prompt, images, strategy):
        self.prompts.append(prompt)
        self.strategies.append(strategy)
        self.images.append(list(images))
        return self.validation


def ai_edge(edge_type, confidence, source_id=None, length_ft=30.0, edge_id="a0"):
    return Edge(start=GeoPoint(-75.0, 40.0), end=GeoPoint(-74.9999, 40.0001), edge_type=edge_type,
                length_ft=length_ft, confidence=confidence, edge_id=edge_id, source_id=source_id)


@pytest.fixture
def ridge_validation():
    return AiValidation(
        edges=[
            ai_edge(EdgeType.EAVE, 0.9, source_id="g0", length_ft=328.0, edge_id="a0"),
            ai_edge(EdgeType.RIDGE, 0.85, source_id="g4", length_ft=320.0, edge_id="a1"),
        ],
        roof_type="gable",
        overall_confidence=0.88,
        analysis_notes="Ridge confirmed",
        raw={"roofType": "gable"},
    )
