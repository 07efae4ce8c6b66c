from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, List, Optional
import logging
import os

from app.logging_config import setup_logging
from app.middleware.request_id import add_request_id_middleware
from app.settings import Settings, get_settings
from app.services.roof_edges.edge_analyzer import GeometricEdgeAnalyzer
from app.services.roof_edges.inference_client import VisionInferenceClient
from app.services.roof_edges.mask_processor import RasterMaskProcessor
from app.services.roof_edges.orchestrator import HybridValidationOrchestrator
from app.services.roof_edges.pipeline import RoofAnalysisPipeline
from app.services.roof_edges.repository import JsonlAnalysisRepository, JsonTrainingDataSource
from app.services.roof_edges.types import (
    AnalysisError,
    AnalysisMethod,
    AnalysisRequest,
    GeoBBox,
    GeoPoint,
    InvalidPerimeterError,
    RoofSegmentStat,
    to_points,
)

SETTINGS = get_settings()
setup_logging(SETTINGS.log_level, json_output=SETTINGS.log_json)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Roof Edge Analysis Service",
    description="Roof geometry extraction and hybrid geometric + vision edge classification",
    version="1.0.0"
)

# Register request ID middleware
add_request_id_middleware(app, log_requests=SETTINGS.enable_request_id_logging)

# CORS middleware (configurable via CORS_ALLOW_ORIGINS)
# Accept comma-separated list of origins, e.g.:
#   CORS_ALLOW_ORIGINS=http://localhost:8081,http://127.0.0.1:8081
cors_env = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
if cors_env:
    allow_origins = [o.strip() for o in cors_env.split(",") if o.strip()]
else:
    allow_origins = [
        "http://localhost:3000",
        "http://localhost:8081",
        "http://127.0.0.1:8081",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],  # includes OPTIONS
    allow_headers=["*"],
)


def build_pipeline(settings: Settings) -> RoofAnalysisPipeline:
    mask_processor = RasterMaskProcessor(
        min_component_px=settings.mask_min_component_px,
        simplify_tolerance_px=settings.mask_simplify_tolerance_px,
        contour_ordering=settings.mask_contour_ordering,
        fetch_timeout_s=settings.raster_fetch_timeout_s,
    )
    orchestrator = None
    if settings.ai_enable:
        if not settings.ai_api_key:
            logger.warning("AI_API_KEY not set; analyses will degrade to geometric-only")
        client = VisionInferenceClient(
            gateway_url=settings.ai_gateway_url,
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            timeout_s=settings.ai_timeout_s,
            image_fetch_timeout_s=settings.raster_fetch_timeout_s,
        )
        orchestrator = HybridValidationOrchestrator(client)
    return RoofAnalysisPipeline(
        mask_processor=mask_processor,
        analyzer=GeometricEdgeAnalyzer(),
        orchestrator=orchestrator,
        training_source=JsonTrainingDataSource(settings.training_data_path or None),
        repository=JsonlAnalysisRepository(settings.analysis_dir),
    )


pipeline = build_pipeline(SETTINGS)


def error_response(status_code: int, error: str, details: Any = None) -> JSONResponse:
    body = {"error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")} for err in exc.errors()]
    return error_response(400, "Invalid request", jsonable_encoder(details))


REMOTE_REF_PREFIXES = ("data:", "http://", "https://")


def _remote_ref(value: Optional[str]) -> Optional[str]:
    # Raster and image refs from callers must never resolve to server-local files
    if value is not None and not value.startswith(REMOTE_REF_PREFIXES):
        raise ValueError("must be a data: URL or an http(s) URL")
    return value


# === Request models (camelCase on the wire) ===
class LatLng(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class BoundingBoxModel(BaseModel):
    north: float = Field(..., ge=-90, le=90)
    south: float = Field(..., ge=-90, le=90)
    east: float = Field(..., ge=-180, le=180)
    west: float = Field(..., ge=-180, le=180)

    def to_bbox(self) -> GeoBBox:
        if self.north <= self.south or self.east <= self.west:
            raise ValueError("maskBoundingBox must satisfy north > south and east > west")
        return GeoBBox(north=self.north, south=self.south, east=self.east, west=self.west)


class SegmentBoxModel(BaseModel):
    sw: LatLng
    ne: LatLng


class RoofSegmentModel(BaseModel):
    """Building-insight roof segment (Google Solar style field names)."""
    model_config = ConfigDict(populate_by_name=True)

    pitch_degrees: float = Field(0.0, alias="pitchDegrees")
    azimuth_degrees: float = Field(0.0, alias="azimuthDegrees")
    area_m2: float = Field(0.0, ge=0, alias="areaMeters2")
    center: LatLng
    bounding_box: SegmentBoxModel = Field(..., alias="boundingBox")
    plane_height_at_center_m: float = Field(0.0, alias="planeHeightAtCenterMeters")

    def to_stat(self) -> RoofSegmentStat:
        sw = GeoPoint(self.bounding_box.sw.longitude, self.bounding_box.sw.latitude)
        ne = GeoPoint(self.bounding_box.ne.longitude, self.bounding_box.ne.latitude)
        return RoofSegmentStat(
            pitch_degrees=self.pitch_degrees,
            azimuth_degrees=self.azimuth_degrees,
            area_m2=self.area_m2,
            center=GeoPoint(self.center.longitude, self.center.latitude),
            bbox=GeoBBox.from_corners(sw, ne),
            height_at_center_m=self.plane_height_at_center_m,
        )


class RoofAnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    perimeter_polygon: Optional[List[Any]] = Field(None, alias="perimeterPolygon",
                                                   description="[[lon, lat], ...] or [{x, y}, ...]")
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    mask_raster_ref: Optional[str] = Field(None, alias="maskRasterRef")
    mask_bounding_box: Optional[BoundingBoxModel] = Field(None, alias="maskBoundingBox")
    aerial_image: Optional[str] = Field(None, alias="aerialImage")
    internal_edges_only: bool = Field(False, alias="internalEdgesOnly")
    job_id: Optional[str] = Field(None, alias="jobId")
    roof_segments: List[RoofSegmentModel] = Field(default_factory=list, alias="roofSegments")

    @field_validator("mask_raster_ref", "aerial_image")
    @classmethod
    def refs_are_remote(cls, value: Optional[str]) -> Optional[str]:
        return _remote_ref(value)

    def to_request(self) -> AnalysisRequest:
        return AnalysisRequest(
            latitude=self.latitude,
            longitude=self.longitude,
            perimeter=to_points(self.perimeter_polygon) if self.perimeter_polygon is not None else None,
            mask_ref=self.mask_raster_ref,
            mask_bbox=self.mask_bounding_box.to_bbox() if self.mask_bounding_box else None,
            aerial_image=self.aerial_image,
            internal_edges_only=self.internal_edges_only,
            job_id=self.job_id,
            roof_segments=[s.to_stat() for s in self.roof_segments],
        )


class GeometryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    perimeter_polygon: List[Any] = Field(..., alias="perimeterPolygon")


class MaskPolygonsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mask_raster_ref: str = Field(..., min_length=1, alias="maskRasterRef")
    mask_bounding_box: BoundingBoxModel = Field(..., alias="maskBoundingBox")

    @field_validator("mask_raster_ref")
    @classmethod
    def ref_is_remote(cls, value: str) -> str:
        return _remote_ref(value)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "roof-edges"}


@app.post("/roof/analyze")
def analyze_roof(req: RoofAnalyzeRequest):
    """
    Full hybrid analysis: mask polygons (optional) -> geometric edges ->
    vision validation -> confidence fusion.

    Returns a labelled result on every completed path; inference failures
    degrade to ``method: "geometric-only"`` instead of erroring.
    """
    try:
        request = req.to_request()
        result = pipeline.run(request)
    except InvalidPerimeterError as e:
        return error_response(400, str(e))
    except ValueError as e:
        return error_response(400, "Invalid request", str(e))
    except AnalysisError as e:
        return error_response(500, "Roof analysis failed", str(e))
    return {
        "success": True,
        "edges": [e.to_dict() for e in result.edges],
        "roofType": result.roof_type,
        "confidence": result.overall_confidence,
        "method": result.method.value,
        "analysis": result.to_dict(),
    }


@app.post("/roof/geometry")
def roof_geometry(req: GeometryRequest):
    """Geometric edge classification only (no inference, nothing persisted)."""
    try:
        prediction = pipeline.analyzer.analyze(to_points(req.perimeter_polygon))
    except InvalidPerimeterError as e:
        return error_response(400, str(e))
    except ValueError as e:
        return error_response(400, "Invalid request", str(e))
    return {
        "success": True,
        "edges": [e.to_dict() for e in prediction.edges],
        "roofType": prediction.roof_type,
        "confidence": prediction.geometric_confidence,
        "method": AnalysisMethod.GEOMETRIC_ONLY.value,
    }


@app.post("/roof/mask-polygons")
def mask_polygons(req: MaskPolygonsRequest):
    """Vectorize a roof mask raster into lon/lat polygons."""
    try:
        bbox = req.mask_bounding_box.to_bbox()
    except ValueError as e:
        return error_response(400, "Invalid request", str(e))
    polygons = pipeline.mask_processor.process(req.mask_raster_ref, bbox)
    return {
        "success": True,
        "count": len(polygons),
        "polygons": [[p.as_list() for p in poly] for poly in polygons],
    }


@app.get("/")
async def root():
    """Root endpoint with service information"""
    return {
        "service": "Roof Edge Analysis Service",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "analyze": "/roof/analyze",
            "geometry": "/roof/geometry",
            "mask_polygons": "/roof/mask-polygons",
            "docs": "/docs"
        }
    }
