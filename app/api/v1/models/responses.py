"""
API response models using Pydantic.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from shapely.geometry import mapping

from app.domain.models import AreaOfInterest, ParcelFeature, SiteRecord
from app.services.application.allocation_service import CycleResult
from app.services.domain.land_use_summary import LandUseSummary


class SiteResponse(BaseModel):
    """Single normalized site."""
    name: str
    latitude: float = Field(description="Latitude in degrees", examples=[45.07])
    longitude: float = Field(description="Longitude in degrees", examples=[7.69])
    radius_km: float = Field(description="Influence radius in km")
    production_label: Optional[str] = Field(
        default=None,
        description="Header the production value was read from"
    )
    production_value: Optional[float] = Field(
        default=None,
        description="Population equivalent (p.e.)"
    )
    production_l: float = Field(description="Estimated fertilizer production in litres per year")

    @classmethod
    def from_site(cls, site: SiteRecord, production_l: float) -> "SiteResponse":
        return cls(
            name=site.name,
            latitude=site.lat,
            longitude=site.lon,
            radius_km=site.radius_km,
            production_label=site.production_label,
            production_value=site.production_value,
            production_l=production_l,
        )


class SitesResponse(BaseModel):
    """Response model for the site ingestion endpoint."""
    site_count: int = Field(description="Number of valid sites")
    total_production_l: float = Field(description="Production of every site in litres per year")
    sites: List[SiteResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "site_count": 1,
                "total_production_l": 70000.0,
                "sites": [
                    {
                        "name": "Torino Nord",
                        "latitude": 45.07,
                        "longitude": 7.69,
                        "radius_km": 2.0,
                        "production_label": "Capacity (p.e.)",
                        "production_value": 2000.0,
                        "production_l": 70000.0,
                    }
                ],
            }
        }


class AOIResponse(BaseModel):
    """Resolved area of interest."""
    centroid_latitude: float
    centroid_longitude: float
    union_kind: str
    union_strategy: str
    signature: str
    max_covering_radius_km: float
    union: Dict[str, Any] = Field(description="GeoJSON geometry of the union")
    circles: List[Dict[str, Any]] = Field(description="GeoJSON geometry of each site circle")

    @classmethod
    def from_aoi(cls, aoi: AreaOfInterest, signature: str) -> "AOIResponse":
        return cls(
            centroid_latitude=aoi.centroid[0],
            centroid_longitude=aoi.centroid[1],
            union_kind=aoi.union_kind.value,
            union_strategy=aoi.union_strategy,
            signature=signature,
            max_covering_radius_km=aoi.max_covering_radius_km,
            union=mapping(aoi.union_geometry),
            circles=[mapping(circle) for circle in aoi.circles],
        )


class ParcelProperties(BaseModel):
    landuse: str
    area_m2: float
    allocated_l: float
    osm_id: Optional[int] = None


class ParcelGeoJSON(BaseModel):
    """GeoJSON feature of one clipped parcel."""
    type: str = "Feature"
    geometry: Dict[str, Any]
    properties: ParcelProperties

    @classmethod
    def from_parcel(cls, parcel: ParcelFeature) -> "ParcelGeoJSON":
        return cls(
            geometry=mapping(parcel.geometry),
            properties=ParcelProperties(
                landuse=parcel.landuse,
                area_m2=parcel.area_m2,
                allocated_l=parcel.allocated_quantity,
                osm_id=parcel.osm_id,
            ),
        )


class CategoryShareResponse(BaseModel):
    landuse: str
    area_km2: float
    percent: float


class SummaryResponse(BaseModel):
    """Land-use summary of the kept parcels."""
    total_area_km2: float
    requirement_kg: float
    production_kg: float
    coverage_percent: float = Field(description="Production as a percentage of the requirement")
    farmland_area_ha: float
    wheat_standard_requirement_kg: float
    wheat_organic_requirement_kg: float
    categories: List[CategoryShareResponse]

    @classmethod
    def from_summary(cls, summary: LandUseSummary) -> "SummaryResponse":
        return cls(
            total_area_km2=summary.total_area_km2,
            requirement_kg=summary.requirement_kg,
            production_kg=summary.production_kg,
            coverage_percent=summary.coverage_percent,
            farmland_area_ha=summary.farmland_area_ha,
            wheat_standard_requirement_kg=summary.wheat_standard_requirement_kg,
            wheat_organic_requirement_kg=summary.wheat_organic_requirement_kg,
            categories=[
                CategoryShareResponse(landuse=c.landuse, area_km2=c.area_km2, percent=c.percent)
                for c in summary.categories
            ],
        )


class AllocationResponse(BaseModel):
    """Response model for the allocation endpoint."""
    aoi: Optional[AOIResponse] = None
    parcel_count: int
    parcels: List[ParcelGeoJSON]
    total_production_l: float
    total_allocated_l: float
    summary: SummaryResponse
    error: Optional[str] = Field(
        default=None,
        description="Advisory message when the geodata service was unavailable"
    )

    @classmethod
    def from_result(cls, result: CycleResult) -> "AllocationResponse":
        return cls(
            aoi=AOIResponse.from_aoi(result.aoi, result.aoi_signature) if result.aoi else None,
            parcel_count=len(result.parcels),
            parcels=[ParcelGeoJSON.from_parcel(p) for p in result.parcels],
            total_production_l=result.total_production,
            total_allocated_l=result.total_allocated,
            summary=SummaryResponse.from_summary(result.summary),
            error=result.error,
        )
