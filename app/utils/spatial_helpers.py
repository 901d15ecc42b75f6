"""
Spatial helper functions.

Provides utilities for:
- Ordered fallback strategies for fragile topology operations
- Polygonal filtering of operation results
- Cheap structural signatures of geometries
"""
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence
import logging

from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon
from shapely.geometry.base import BaseGeometry

logger = logging.getLogger(__name__)

POLYGONAL_TYPES = ("Polygon", "MultiPolygon")


class GeometryOperationError(Exception):
    """A topology operation produced no usable result."""
    pass


# Errors a strategy may raise that mean "try the next one"
RECOVERABLE_ERRORS = (GeometryOperationError, GEOSException, ValueError, TypeError)


@dataclass
class Strategy:
    """A named step of a fallback chain."""
    name: str
    run: Callable[[], Any]


@dataclass
class StrategyResult:
    """Outcome of the first strategy that succeeded."""
    name: str
    value: Any


def first_successful(strategies: Sequence[Strategy]) -> Optional[StrategyResult]:
    """
    Run strategies in order and return the first success.

    A strategy fails by raising one of ``RECOVERABLE_ERRORS`` or by
    returning ``None``.

    Args:
        strategies: Ordered strategies

    Returns:
        StrategyResult of the first success, or None if all failed
    """
    for strategy in strategies:
        try:
            value = strategy.run()
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Strategy '{strategy.name}' failed: {e}")
            continue
        if value is None:
            logger.debug(f"Strategy '{strategy.name}' produced no result")
            continue
        return StrategyResult(name=strategy.name, value=value)
    return None


def polygonal_part(geometry: Optional[BaseGeometry]) -> Optional[BaseGeometry]:
    """
    Keep only the area part of a geometry.

    Mixed collections (e.g. an intersection touching along an edge) are
    reduced to their polygons.

    Args:
        geometry: Any shapely geometry

    Returns:
        Polygon or MultiPolygon, or None when nothing polygonal remains
    """
    if geometry is None or geometry.is_empty:
        return None
    if geometry.geom_type in POLYGONAL_TYPES:
        return geometry
    if geometry.geom_type == "GeometryCollection":
        polygons = []
        for part in geometry.geoms:
            if part.geom_type == "Polygon" and not part.is_empty:
                polygons.append(part)
            elif part.geom_type == "MultiPolygon":
                polygons.extend(p for p in part.geoms if not p.is_empty)
        if len(polygons) == 1:
            return polygons[0]
        if polygons:
            return MultiPolygon(polygons)
    return None


def require_polygonal(geometry: Optional[BaseGeometry]) -> BaseGeometry:
    """
    Like ``polygonal_part`` but raise when the result is unusable.
    """
    result = polygonal_part(geometry)
    if result is None:
        raise GeometryOperationError("result is not a non-empty polygon")
    if not result.is_valid:
        raise GeometryOperationError("result is not a valid polygon")
    return result


def feature_count(geometry: BaseGeometry) -> int:
    """Number of parts of a collection, 1 for anything else."""
    if geometry.geom_type == "GeometryCollection":
        return len(geometry.geoms)
    return 1


def geometry_signature(
    geometry: Optional[BaseGeometry],
    type_tag: Optional[str] = None,
    precision: int = 6,
) -> str:
    """
    Cheap structural descriptor: type, part count and rounded bounding box.

    Args:
        geometry: Geometry to describe
        type_tag: Override for the type part of the signature
        precision: Decimal places for the bounding box

    Returns:
        Signature string such as ``t:Polygon|n:1|b:7.1|45.0|7.2|45.1``
    """
    if geometry is None or geometry.is_empty:
        return "union-none"
    bounds = "|".join(f"{value:.{precision}f}" for value in geometry.bounds)
    tag = type_tag or geometry.geom_type
    return f"t:{tag}|n:{feature_count(geometry)}|b:{bounds}"


def covers_point(region: BaseGeometry, point: BaseGeometry) -> bool:
    """Point-in-polygon test that also accepts boundary points."""
    if region.geom_type in POLYGONAL_TYPES:
        return region.covers(point)
    return any(part.covers(point) for part in getattr(region, "geoms", []))
