from __future__ import annotations

import base64
import io
import logging
from typing import List, Optional

import cv2
import numpy as np
import requests
from PIL import Image

from .simplify import simplify_ring
from .types import GeoBBox, GeoPoint, RasterDecodeError

logger = logging.getLogger(__name__)

try:
    from rasterio.io import MemoryFile  # type: ignore
    _HAS_RASTERIO = True
except Exception:
    _HAS_RASTERIO = False

_TIFF_MAGIC = (b"II*\x00", b"MM\x00*", b"II+\x00", b"MM\x00+")

CONTOUR_ORDERINGS = ("trace", "polar")


def pixel_to_geo(x: float, y: float, width: int, height: int, bbox: GeoBBox) -> GeoPoint:
    """Map a pixel coordinate to lon/lat; row 0 is the north edge."""
    lon = bbox.west + (x / width) * (bbox.east - bbox.west)
    lat = bbox.north - (y / height) * (bbox.north - bbox.south)
    return GeoPoint(float(lon), float(lat))


class RasterMaskProcessor:
    """
    Turn a georeferenced roof mask raster into geographic polygons.

    Steps: decode the first band to a binary grid (value > 0 is roof), split it
    into 4-connected components, drop components under ``min_component_px``,
    take each component's boundary pixels, order them into a ring, simplify
    with Douglas-Peucker and map to lon/lat against the bounding box.

    Contour ordering:
      - "trace": OpenCV border following over the component mask. Handles
        concave footprints (L/U shaped roofs).
      - "polar": legacy ordering by polar angle around the component centroid.
        Misorders concave / non-star-convex shapes; kept for comparison with
        previously stored results.
    """

    def __init__(self,
                 min_component_px: int = 50,
                 simplify_tolerance_px: float = 2.0,
                 contour_ordering: str = "trace",
                 fetch_timeout_s: float = 15.0) -> None:
        if contour_ordering not in CONTOUR_ORDERINGS:
            raise ValueError(f"contour_ordering must be one of {CONTOUR_ORDERINGS}")
        self.min_component_px = int(min_component_px)
        self.simplify_tolerance_px = float(simplify_tolerance_px)
        self.contour_ordering = contour_ordering
        self.fetch_timeout_s = float(fetch_timeout_s)

    # --- I/O ---
    def fetch(self, mask_ref: str) -> bytes:
        """Fetch raster bytes from an http(s) URL, a data: URL or a local path."""
        if mask_ref.startswith("data:"):
            _, _, payload = mask_ref.partition(",")
            return base64.b64decode(payload)
        if mask_ref.startswith(("http://", "https://")):
            r = requests.get(mask_ref, timeout=self.fetch_timeout_s)
            r.raise_for_status()
            return r.content
        with open(mask_ref, "rb") as fh:
            return fh.read()

    def decode(self, raster_bytes: bytes) -> np.ndarray:
        """Decode the first band of a raster into a uint8 grid of 0/1."""
        if not raster_bytes:
            raise RasterDecodeError("empty raster")
        band: Optional[np.ndarray] = None
        if _HAS_RASTERIO and raster_bytes[:4] in _TIFF_MAGIC:
            try:
                with MemoryFile(raster_bytes) as mem:
                    with mem.open() as src:
                        band = src.read(1)
            except Exception as e:
                logger.debug(f"rasterio decode failed, trying Pillow: {e}")
                band = None
        if band is None:
            try:
                img = Image.open(io.BytesIO(raster_bytes))
                arr = np.array(img)
            except Exception as e:
                raise RasterDecodeError(f"unreadable raster: {e}") from e
            band = arr[:, :, 0] if arr.ndim == 3 else arr
        if band.ndim != 2 or band.size == 0:
            raise RasterDecodeError(f"unexpected raster shape {band.shape}")
        return (band > 0).astype(np.uint8)

    # --- segmentation ---
    def find_components(self, grid: np.ndarray) -> List[np.ndarray]:
        """4-connected components as (N, 2) arrays of (x, y); small ones dropped."""
        num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(grid.astype(np.uint8), connectivity=4)
        components: List[np.ndarray] = []
        for i in range(1, num_labels):
            if stats[i, cv2.CC_STAT_AREA] < self.min_component_px:
                continue
            ys, xs = np.nonzero(labels == i)
            components.append(np.column_stack([xs, ys]))
        return components

    @staticmethod
    def boundary_pixels(component: np.ndarray, grid: np.ndarray) -> np.ndarray:
        """Pixels of the component on the grid edge or next to a 0-valued 4-neighbour."""
        h, w = grid.shape
        padded = np.pad(grid, 1, mode="constant", constant_values=0)
        xs, ys = component[:, 0], component[:, 1]
        px, py = xs + 1, ys + 1
        interior = (
            (padded[py - 1, px] > 0) & (padded[py + 1, px] > 0)
            & (padded[py, px - 1] > 0) & (padded[py, px + 1] > 0)
        )
        on_grid_edge = (xs == 0) | (ys == 0) | (xs == w - 1) | (ys == h - 1)
        return component[~interior | on_grid_edge]

    @staticmethod
    def order_polar(points: np.ndarray) -> np.ndarray:
        if len(points) == 0:
            return points
        cx, cy = points.mean(axis=0)
        angles = np.arctan2(points[:, 1] - cy, points[:, 0] - cx)
        return points[np.argsort(angles, kind="stable")]

    @staticmethod
    def trace_boundary(component: np.ndarray, shape: tuple) -> np.ndarray:
        """Outer boundary of one component in traversal order (border following)."""
        canvas = np.zeros(shape, dtype=np.uint8)
        canvas[component[:, 1], component[:, 0]] = 255
        contours, _ = cv2.findContours(canvas, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
        if not contours:
            return np.zeros((0, 2), dtype=np.int64)
        largest = max(contours, key=len)
        return largest.reshape(-1, 2)

    def extract_contour(self, component: np.ndarray, grid: np.ndarray) -> np.ndarray:
        if self.contour_ordering == "polar":
            return self.order_polar(self.boundary_pixels(component, grid))
        return self.trace_boundary(component, grid.shape)

    # --- polygons ---
    def extract_polygons(self, grid: np.ndarray, bbox: GeoBBox) -> List[List[GeoPoint]]:
        h, w = grid.shape
        polygons: List[List[GeoPoint]] = []
        for component in self.find_components(grid):
            contour = self.extract_contour(component, grid)
            if len(contour) < 4:
                continue
            simplified = simplify_ring([(float(x), float(y)) for x, y in contour], self.simplify_tolerance_px)
            geo = [pixel_to_geo(x, y, w, h, bbox) for x, y in simplified]
            if len(geo) >= 4:
                polygons.append(geo)
        logger.info(f"Extracted {len(polygons)} polygons from {w}x{h} mask")
        return polygons

    def process(self, mask_ref: str, bbox: GeoBBox) -> List[List[GeoPoint]]:
        """Fetch, decode and vectorize a mask. Never raises; failures yield []."""
        try:
            raster_bytes = self.fetch(mask_ref)
            grid = self.decode(raster_bytes)
        except Exception as e:
            logger.warning(f"Mask raster unavailable, skipping mask step: {type(e).__name__}: {e}")
            return []
        return self.extract_polygons(grid, bbox)


def largest_polygon(polygons: List[List[GeoPoint]]) -> Optional[List[GeoPoint]]:
    """Polygon with the largest planar (degree-space) shoelace area."""
    if not polygons:
        return None

    def area(poly: List[GeoPoint]) -> float:
        s = 0.0
        for i, p in enumerate(poly):
            q = poly[(i + 1) % len(poly)]
            s += p.lon * q.lat - q.lon * p.lat
        return abs(s) / 2.0

    return max(polygons, key=area)


__all__ = ["RasterMaskProcessor", "pixel_to_geo", "largest_polygon", "CONTOUR_ORDERINGS"]
