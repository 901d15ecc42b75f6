"""
Conversion of the Overpass JSON element graph into geometries.

Supports both response shapes:
- ``out body geom``: ways/relation members carry an inline ``geometry`` list
- ``out body; >; out skel``: ways reference node ids resolved from node elements
"""
from typing import Any, Optional
import logging

from shapely.geometry import LineString, Point, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import linemerge, polygonize, unary_union

from app.domain.models import GeodataFeature

logger = logging.getLogger(__name__)

Coordinates = list[tuple[float, float]]


def _inline_coordinates(element: dict[str, Any]) -> Coordinates:
    return [
        (float(p["lon"]), float(p["lat"]))
        for p in element.get("geometry") or []
        if p and "lat" in p and "lon" in p
    ]


def _way_coordinates(element: dict[str, Any], nodes: dict[int, tuple[float, float]]) -> Coordinates:
    coords = _inline_coordinates(element)
    if coords:
        return coords
    return [nodes[node_id] for node_id in element.get("nodes", []) if node_id in nodes]


def _is_closed(coords: Coordinates) -> bool:
    return len(coords) >= 4 and coords[0] == coords[-1]


def way_to_geometry(coords: Coordinates) -> Optional[BaseGeometry]:
    """Closed ring -> Polygon, open path -> LineString."""
    if _is_closed(coords):
        polygon = Polygon(coords)
        return polygon if not polygon.is_empty else None
    if len(coords) >= 2:
        return LineString(coords)
    return None


def _rings_to_polygons(lines: list[LineString]) -> list[Polygon]:
    if not lines:
        return []
    merged = linemerge(lines)
    parts = list(getattr(merged, "geoms", [merged]))
    return [p for p in polygonize(parts) if not p.is_empty]


def relation_to_geometry(
    element: dict[str, Any],
    ways: dict[int, Coordinates],
) -> Optional[BaseGeometry]:
    """
    Assemble a multipolygon relation from its outer and inner members.
    """
    outers: list[LineString] = []
    inners: list[LineString] = []
    for member in element.get("members", []):
        if member.get("type") != "way":
            continue
        coords = _inline_coordinates(member) or ways.get(member.get("ref"), [])
        if len(coords) < 2:
            continue
        target = inners if member.get("role") == "inner" else outers
        target.append(LineString(coords))

    outer_polygons = _rings_to_polygons(outers)
    if not outer_polygons:
        return None

    shape = unary_union(outer_polygons)
    holes = _rings_to_polygons(inners)
    if holes:
        shape = shape.difference(unary_union(holes))
    if shape.is_empty:
        return None
    if shape.geom_type in ("Polygon", "MultiPolygon"):
        return shape
    return None


def parse_overpass_json(payload: dict[str, Any]) -> tuple[GeodataFeature, ...]:
    """
    Convert an Overpass response into geodata features.

    node -> Point, way -> Polygon (closed) or LineString (open),
    multipolygon relation -> Polygon/MultiPolygon. Untagged nodes are
    skipped because they only carry way vertices.

    Args:
        payload: Decoded Overpass JSON

    Returns:
        Tuple of GeodataFeature in response order
    """
    raw_elements = payload.get("elements") if isinstance(payload, dict) else None
    if not isinstance(raw_elements, list):
        raw_elements = []
    # Elements without an id cannot be referenced or reported
    elements = [
        e for e in raw_elements
        if isinstance(e, dict) and e.get("id") is not None
    ]

    nodes: dict[int, tuple[float, float]] = {}
    for element in elements:
        if element.get("type") == "node" and "lat" in element and "lon" in element:
            nodes[element["id"]] = (float(element["lon"]), float(element["lat"]))

    ways: dict[int, Coordinates] = {}
    for element in elements:
        if element.get("type") == "way":
            ways[element["id"]] = _way_coordinates(element, nodes)

    features: list[GeodataFeature] = []
    skipped = 0
    for element in elements:
        element_type = element.get("type")
        tags = element.get("tags") or {}
        geometry: Optional[BaseGeometry] = None

        if element_type == "node":
            if not tags or element["id"] not in nodes:
                continue
            geometry = Point(nodes[element["id"]])
        elif element_type == "way":
            geometry = way_to_geometry(ways.get(element["id"], []))
        elif element_type == "relation" and tags.get("type") == "multipolygon":
            geometry = relation_to_geometry(element, ways)

        if geometry is None:
            skipped += 1
            continue
        features.append(GeodataFeature(
            osm_type=element_type,
            osm_id=element["id"],
            geometry=geometry,
            tags=dict(tags),
        ))

    dropped = len(raw_elements) - len(elements)
    logger.debug(f"Parsed {len(features)} features from {len(elements)} elements ({skipped} skipped)")
    if dropped:
        logger.debug(f"Ignored {dropped} malformed elements without an id")
    return tuple(features)
