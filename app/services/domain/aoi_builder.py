"""
Domain service: Area of Interest construction from site circles.

Each site becomes a geodesic circle; the circles are merged into a single
AOI through an ordered chain of strategies, falling back to the raw circle
collection when every topology operation fails.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Sequence
import logging

import numpy as np
from shapely.geometry import GeometryCollection, MultiPolygon
from shapely.geometry.base import BaseGeometry

from app.config import settings
from app.domain.models import AreaOfInterest, BoundingBox, SiteRecord, UnionKind
from app.utils.geodesy import box_around, geodesic_circle, geodesic_distance_km
from app.utils.spatial_helpers import (
    RECOVERABLE_ERRORS,
    Strategy,
    first_successful,
    geometry_signature,
    require_polygonal,
)

logger = logging.getLogger(__name__)

KM_PER_DEGREE = 111.0


@dataclass
class AOIConfig:
    """Configuration for AOI construction."""

    circle_steps: int = 64
    """Vertices per site circle"""

    union_buffer_km: float = 0.0001
    """Positive buffer that heals shared-edge precision errors after merging"""

    simplify_tolerance: float = 0.0001
    """Simplification tolerance (degrees) for the merged geometry"""

    covering_margin_km: float = 1.0
    """Margin added to the maximum covering radius"""

    @classmethod
    def from_settings(cls) -> "AOIConfig":
        return cls(
            circle_steps=settings.circle_steps,
            union_buffer_km=settings.union_buffer_km,
            simplify_tolerance=settings.union_simplify_tolerance,
            covering_margin_km=settings.covering_margin_km,
        )


class AOIBuilder:
    """
    Domain service turning sites into an AreaOfInterest.

    Resolution is pure: the same sites always give the same AOI and no
    state is kept between calls.
    """

    def __init__(self, config: Optional[AOIConfig] = None):
        self.config = config or AOIConfig.from_settings()

    def resolve_aoi(self, sites: Sequence[SiteRecord]) -> Optional[AreaOfInterest]:
        """
        Build the AOI for a sequence of sites.

        Args:
            sites: Validated site records

        Returns:
            AreaOfInterest, or None when there are no sites
        """
        if not sites:
            return None

        centroid = self.centroid(sites)
        circles = tuple(
            geodesic_circle(s.lat, s.lon, s.radius_km, steps=self.config.circle_steps)
            for s in sites
        )
        union_geometry, union_kind, strategy = self.build_union(circles)

        aoi = AreaOfInterest(
            centroid=centroid,
            circles=circles,
            union_geometry=union_geometry,
            union_kind=union_kind,
            max_covering_radius_km=self.max_covering_radius_km(centroid, sites),
            union_strategy=strategy,
        )
        logger.info(
            f"Resolved AOI for {len(sites)} sites via '{strategy}' "
            f"(covering radius {aoi.max_covering_radius_km:.2f} km)"
        )
        return aoi

    @staticmethod
    def centroid(sites: Sequence[SiteRecord]) -> tuple[float, float]:
        """Mean of the raw site coordinates as (lat, lon)."""
        coords = np.array([(s.lat, s.lon) for s in sites], dtype=float)
        lat, lon = coords.mean(axis=0)
        return float(lat), float(lon)

    def max_covering_radius_km(
        self,
        centroid: tuple[float, float],
        sites: Sequence[SiteRecord],
    ) -> float:
        """Radius from the centroid that covers every circle, plus the margin."""
        reach = max(
            geodesic_distance_km(centroid, (s.lat, s.lon)) + s.radius_km
            for s in sites
        )
        return reach + self.config.covering_margin_km

    def union_strategies(self, circles: Sequence[BaseGeometry]) -> list[Strategy]:
        """Ordered fallback chain used to merge the circles."""
        return [
            Strategy("single-circle", lambda: self._single_circle(circles)),
            Strategy("buffered-merge", lambda: self._buffered_merge(circles)),
            Strategy("pairwise-union", lambda: self._pairwise_union(circles)),
        ]

    def build_union(
        self,
        circles: Sequence[BaseGeometry],
        strategies: Optional[Callable[[Sequence[BaseGeometry]], list[Strategy]]] = None,
    ) -> tuple[BaseGeometry, UnionKind, str]:
        """
        Merge circles into one geometry.

        Args:
            circles: Circle polygons, in site order
            strategies: Optional factory replacing the default chain

        Returns:
            (geometry, kind, name of the strategy used)
        """
        chain = (strategies or self.union_strategies)(circles)
        result = first_successful(chain)
        if result is not None:
            return result.value, UnionKind.POLYGON, result.name

        logger.warning(f"All union strategies failed, keeping {len(circles)} raw circles")
        return GeometryCollection(list(circles)), UnionKind.CIRCLE_COLLECTION, "circle-collection"

    def _single_circle(self, circles: Sequence[BaseGeometry]) -> Optional[BaseGeometry]:
        return circles[0] if len(circles) == 1 else None

    def _buffered_merge(self, circles: Sequence[BaseGeometry]) -> BaseGeometry:
        combined = MultiPolygon(list(circles))
        buffer_degrees = self.config.union_buffer_km / KM_PER_DEGREE
        merged = combined.buffer(buffer_degrees)
        simplified = merged.simplify(self.config.simplify_tolerance, preserve_topology=True)
        return require_polygonal(simplified)

    def _pairwise_union(self, circles: Sequence[BaseGeometry]) -> BaseGeometry:
        accumulator = circles[0]
        for index, circle in enumerate(circles[1:], start=1):
            try:
                accumulator = require_polygonal(accumulator.union(circle))
            except RECOVERABLE_ERRORS as e:
                logger.debug(f"Skipping circle {index} in pairwise union: {e}")
        return require_polygonal(accumulator)


# ============================================================
# AOI descriptors used by the geodata query
# ============================================================

CIRCLE_COLLECTION_TAG = "CircleCollection"


def aoi_signature(aoi: Optional[AreaOfInterest], precision: int = 6) -> str:
    """
    Structural signature of the AOI union (type, feature count, rounded bbox).
    """
    if aoi is None:
        return "union-none"
    type_tag = CIRCLE_COLLECTION_TAG if aoi.is_circle_collection else None
    return geometry_signature(aoi.union_geometry, type_tag=type_tag, precision=precision)


def aoi_bounding_box(aoi: AreaOfInterest) -> BoundingBox:
    """
    Tight bounding box of the union; a box of the covering radius around
    the centroid when the union has no usable bounds.
    """
    geometry = aoi.union_geometry
    if geometry is not None and not geometry.is_empty:
        bounds = geometry.bounds
        if all(np.isfinite(bounds)):
            return BoundingBox.from_bounds(bounds)

    lat, lon = aoi.centroid
    logger.warning("AOI union has no bounds, using covering radius box")
    return BoundingBox.from_bounds(box_around(lat, lon, aoi.max_covering_radius_km))
