"""
Geodesic helpers on the WGS84 ellipsoid.

All geometries are in (longitude, latitude) order, as shapely and GeoJSON expect.
"""
import math
from typing import Tuple

from pyproj import Geod
from shapely.geometry import Polygon
from shapely.geometry.polygon import orient
from shapely.geometry.base import BaseGeometry

WGS84 = Geod(ellps="WGS84")


def geodesic_circle(
    lat: float,
    lon: float,
    radius_km: float,
    steps: int = 64,
) -> Polygon:
    """
    Approximate a geodesic circle with a polygon.

    Args:
        lat: Center latitude in degrees
        lon: Center longitude in degrees
        radius_km: Circle radius in kilometres
        steps: Number of vertices (the ring is closed by shapely)

    Returns:
        Polygon with ``steps`` vertices at ``radius_km`` from the center
    """
    if radius_km <= 0:
        raise ValueError("Circle radius must be positive")
    if steps < 3:
        raise ValueError("A circle needs at least 3 vertices")

    azimuths = [i * 360.0 / steps for i in range(steps)]
    distance_m = radius_km * 1000.0
    lons, lats, _ = WGS84.fwd(
        [lon] * steps,
        [lat] * steps,
        azimuths,
        [distance_m] * steps,
    )
    return Polygon(zip(lons, lats))


def geodesic_distance_km(
    point1: Tuple[float, float],
    point2: Tuple[float, float],
) -> float:
    """
    Geodesic distance between two (lat, lon) points in kilometres.
    """
    lat1, lon1 = point1
    lat2, lon2 = point2
    _, _, distance_m = WGS84.inv(lon1, lat1, lon2, lat2)
    return distance_m / 1000.0


def geodesic_area_m2(geometry: BaseGeometry) -> float:
    """
    True geodesic area of a (multi)polygon in square metres.

    Every part is oriented counter-clockwise first so that parts of a
    multipolygon never cancel each other out.
    """
    if geometry is None or geometry.is_empty:
        return 0.0
    if geometry.geom_type == "MultiPolygon":
        return sum(geodesic_area_m2(part) for part in geometry.geoms)
    if geometry.geom_type != "Polygon":
        return 0.0
    area, _ = WGS84.geometry_area_perimeter(orient(geometry, sign=1.0))
    return abs(area)


def box_around(lat: float, lon: float, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Rough (min_lon, min_lat, max_lon, max_lat) box of ``radius_km`` around a point.

    Uses ~111 km per degree; only meant as a fallback query extent.
    """
    d_lat = radius_km / 111.0
    cos_lat = math.cos(math.radians(lat))
    d_lon = radius_km / (111.0 * cos_lat) if cos_lat > 1e-9 else 180.0
    return (
        max(lon - d_lon, -180.0),
        max(lat - d_lat, -90.0),
        min(lon + d_lon, 180.0),
        min(lat + d_lat, 90.0),
    )
