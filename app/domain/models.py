"""
Domain models for sites, areas of interest and land parcels.

These models represent the core domain entities and should be independent
of any infrastructure concerns (API clients, HTTP layer, etc.).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from shapely.geometry.base import BaseGeometry


class SiteRecord(BaseModel):
    """A treatment-plant site parsed from one input row."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    radius_km: float = Field(gt=0, description="Influence radius in km")
    name: str = ""
    production_label: Optional[str] = Field(
        default=None,
        description="Header text the production value was read from"
    )
    production_value: Optional[float] = Field(
        default=None,
        description="Population equivalent (p.e.) of the site"
    )


class PublicBuildingRecord(BaseModel):
    """A public building or public space parsed from one input row."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    name: str = "Public Building"
    capacity_value: Optional[float] = Field(
        default=None,
        description="Yearly presence / capacity"
    )


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in decimal degrees."""
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_bounds(cls, bounds: tuple[float, float, float, float]) -> "BoundingBox":
        """Build from shapely ``(minx, miny, maxx, maxy)`` bounds."""
        min_lon, min_lat, max_lon, max_lat = bounds
        return cls(south=min_lat, west=min_lon, north=max_lat, east=max_lon)

    def rounded(self, precision: int = 6) -> str:
        return ",".join(
            f"{value:.{precision}f}"
            for value in (self.west, self.south, self.east, self.north)
        )

    def to_overpass(self) -> str:
        """Overpass ordering: south, west, north, east."""
        return f"{self.south},{self.west},{self.north},{self.east}"


class UnionKind(str, Enum):
    """Shape of an AOI union."""
    POLYGON = "polygon"
    CIRCLE_COLLECTION = "circle_collection"


@dataclass(frozen=True)
class AreaOfInterest:
    """Resolved geometry around a set of sites."""
    centroid: tuple[float, float]
    circles: tuple[BaseGeometry, ...]
    union_geometry: BaseGeometry
    union_kind: UnionKind
    max_covering_radius_km: float
    union_strategy: str = ""

    @property
    def is_circle_collection(self) -> bool:
        return self.union_kind is UnionKind.CIRCLE_COLLECTION


@dataclass(frozen=True)
class GeodataFeature:
    """A feature converted from the Overpass element graph."""
    osm_type: str
    osm_id: int
    geometry: BaseGeometry
    tags: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ParcelFeature:
    """A clipped land parcel with its share of the production."""
    geometry: BaseGeometry
    landuse: str
    area_m2: float
    allocated_quantity: float = 0.0
    osm_id: Optional[int] = None
