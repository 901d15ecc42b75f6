"""
Domain service: clipping land parcels to the AOI and allocating production.

This module provides:
- Category filtering of fetched parcels
- Clipping against a polygon AOI or a raw collection of circles, each with
  a centroid-containment fallback
- True geodesic area of the kept geometry
- Proportional allocation of a total production quantity by area
"""
import math
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from app.domain.models import AreaOfInterest, GeodataFeature, ParcelFeature
from app.utils.geodesy import geodesic_area_m2
from app.utils.spatial_helpers import (
    RECOVERABLE_ERRORS,
    Strategy,
    covers_point,
    first_successful,
    polygonal_part,
    require_polygonal,
)

logger = logging.getLogger(__name__)


@dataclass
class AllocationConfig:
    """Configuration for clipping and allocation."""

    category_tag: str = "landuse"
    """Tag holding the parcel category"""

    min_area_m2: float = 0.0
    """Parcels with an area at or below this are dropped"""


@dataclass
class ClipOutcome:
    """Geometry kept for one parcel and how it was obtained."""
    geometry: BaseGeometry
    strategy: str


class ParcelAllocator:
    """
    Domain service for clipping parcels and allocating production.

    The output replaces any previous result wholesale; no parcel identity
    is kept between calls.
    """

    def __init__(self, config: Optional[AllocationConfig] = None):
        self.config = config or AllocationConfig()

    def clip_and_allocate(
        self,
        parcels: Iterable[GeodataFeature],
        aoi: AreaOfInterest,
        enabled_categories: Iterable[str],
        total_production: float,
    ) -> list[ParcelFeature]:
        """
        Clip parcels to the AOI and distribute the production by area.

        Args:
            parcels: Features fetched for the AOI bounding box
            aoi: Area of interest (polygon or circle collection)
            enabled_categories: Categories to keep
            total_production: Quantity to distribute

        Returns:
            Kept parcels with area and allocated quantity
        """
        enabled = set(enabled_categories)
        kept: list[tuple[GeodataFeature, str, BaseGeometry, float]] = []
        rejected_category = 0
        rejected_clip = 0
        rejected_area = 0

        for parcel in parcels:
            category = parcel.tags.get(self.config.category_tag)
            if not category or category not in enabled:
                rejected_category += 1
                continue

            outcome = self.clip(parcel.geometry, aoi)
            if outcome is None:
                rejected_clip += 1
                continue

            geometry = polygonal_part(outcome.geometry)
            area = geodesic_area_m2(geometry) if geometry is not None else 0.0
            if geometry is None or area <= self.config.min_area_m2:
                rejected_area += 1
                continue

            kept.append((parcel, category, geometry, area))

        logger.debug(
            f"Clip rejections: category={rejected_category}, "
            f"outside={rejected_clip}, area={rejected_area}"
        )

        areas = [area for _, _, _, area in kept]
        allocations = allocate_by_area(areas, total_production)

        features = [
            ParcelFeature(
                geometry=geometry,
                landuse=category,
                area_m2=area,
                allocated_quantity=allocation,
                osm_id=parcel.osm_id,
            )
            for (parcel, category, geometry, area), allocation in zip(kept, allocations)
        ]
        logger.info(
            f"Kept {len(features)} parcels, total area {math.fsum(areas) / 1e6:.3f} km², "
            f"allocated {math.fsum(allocations):.2f}"
        )
        return features

    def clip(self, geometry: BaseGeometry, aoi: AreaOfInterest) -> Optional[ClipOutcome]:
        """
        Clip one parcel geometry to the AOI.

        Returns:
            ClipOutcome, or None when the parcel lies outside the AOI
        """
        if aoi.is_circle_collection:
            strategies = self.circle_collection_strategies(geometry, aoi.circles)
        else:
            strategies = self.polygon_strategies(geometry, aoi.union_geometry)

        result = first_successful(strategies)
        if result is None:
            return None
        return ClipOutcome(geometry=result.value, strategy=result.name)

    def polygon_strategies(self, geometry: BaseGeometry, region: BaseGeometry) -> list[Strategy]:
        return [
            Strategy("exact-intersection", lambda: _intersection(geometry, region)),
            Strategy("centroid-containment", lambda: _whole_if_centroid_in(geometry, [region])),
        ]

    def circle_collection_strategies(
        self,
        geometry: BaseGeometry,
        circles: Sequence[BaseGeometry],
    ) -> list[Strategy]:
        return [
            Strategy("piecewise-union", lambda: _piecewise_union(geometry, circles)),
            Strategy("centroid-in-any-circle", lambda: _whole_if_centroid_in(geometry, circles)),
        ]


def _intersection(geometry: BaseGeometry, region: BaseGeometry) -> Optional[BaseGeometry]:
    intersection = geometry.intersection(region)
    return None if intersection.is_empty else intersection


def _piecewise_union(geometry: BaseGeometry, circles: Sequence[BaseGeometry]) -> Optional[BaseGeometry]:
    pieces = []
    for index, circle in enumerate(circles):
        try:
            piece = geometry.intersection(circle)
        except RECOVERABLE_ERRORS as e:
            logger.debug(f"Intersection with circle {index} failed: {e}")
            continue
        if not piece.is_empty:
            pieces.append(piece)

    if not pieces:
        return None
    if len(pieces) == 1:
        return pieces[0]
    return require_polygonal(unary_union(pieces))


def _whole_if_centroid_in(
    geometry: BaseGeometry,
    regions: Sequence[BaseGeometry],
) -> Optional[BaseGeometry]:
    centroid = geometry.centroid
    if centroid.is_empty:
        return None
    if any(covers_point(region, centroid) for region in regions):
        return geometry
    return None


def allocate_by_area(areas: Sequence[float], total: float) -> list[float]:
    """
    Split ``total`` proportionally to ``areas``.

    Every share is 0 when the areas sum to 0 or the total is not finite.

    Args:
        areas: Non-negative areas
        total: Quantity to distribute

    Returns:
        Allocations in the same order as ``areas``
    """
    area_sum = math.fsum(areas)
    if area_sum <= 0 or not math.isfinite(total):
        return [0.0 for _ in areas]
    return [total * area / area_sum for area in areas]
