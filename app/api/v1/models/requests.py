"""
API request models using Pydantic.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from app.services.application.allocation_service import AOISource


class TabularInput(BaseModel):
    """Rows given either as JSON objects or as raw delimited text."""
    rows: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        description="One object per spreadsheet row, keyed by header"
    )
    csv_text: Optional[str] = Field(
        default=None,
        description="Delimited text with a header row (comma, semicolon or tab)"
    )

    @model_validator(mode="after")
    def require_one_source(self) -> "TabularInput":
        if self.rows is None and self.csv_text is None:
            raise ValueError("Either 'rows' or 'csv_text' must be provided")
        return self


class SitesRequest(BaseModel):
    """Request body for site ingestion."""
    sites: TabularInput
    default_radius_km: Optional[float] = Field(
        default=None,
        gt=0,
        description="Radius for rows without one (service default when omitted)"
    )
    radius_override_km: Optional[float] = Field(
        default=None,
        gt=0,
        description="Single radius applied to every site"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "sites": {
                    "rows": [
                        {
                            "W.T.P. Name": "Torino Nord",
                            "Latitude of W.T.P.": "45,07",
                            "Longitude of W.T.P.": "7,69",
                            "Plant Influence Radius (km)": "2 km",
                            "Capacity (p.e.)": "2000",
                        }
                    ]
                },
            }
        }


class AllocationRequestBody(SitesRequest):
    """Request body for a full allocation cycle."""
    public_buildings: Optional[TabularInput] = None
    aoi_source: AOISource = Field(
        default=AOISource.SITES,
        description="Build the AOI from the sites or from the public buildings"
    )
    categories: Optional[List[str]] = Field(
        default=None,
        description="Enabled landuse categories (all configured ones when omitted)"
    )

    @model_validator(mode="after")
    def require_public_buildings(self) -> "AllocationRequestBody":
        if self.aoi_source == AOISource.PUBLIC_BUILDINGS and self.public_buildings is None:
            raise ValueError("'public_buildings' is required when aoi_source is 'public_buildings'")
        return self
