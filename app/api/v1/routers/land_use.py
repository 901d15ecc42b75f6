"""
API router for land-use allocation endpoints.
"""
import logging

from fastapi import APIRouter, HTTPException, Request

from app.api.dependencies import AllocationServiceDep, ProductionModelDep
from app.api.limiter import RATE_LIMIT, limiter
from app.api.v1.models.requests import AllocationRequestBody, SitesRequest, TabularInput
from app.api.v1.models.responses import AllocationResponse, SiteResponse, SitesResponse
from app.config import settings
from app.infrastructure.tabular_reader import read_delimited_text
from app.services.application.allocation_service import AllocationRequest
from app.services.domain.site_ingestion import (
    NoValidRowsError,
    apply_radius_override,
    ingest_public_buildings,
    ingest_sites,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/land-use",
    tags=["land-use"],
)


def _rows(tabular: TabularInput) -> list[dict]:
    if tabular.rows is not None:
        return tabular.rows
    return read_delimited_text(tabular.csv_text or "")


def _default_radius(body: SitesRequest) -> float:
    return body.default_radius_km or settings.default_site_radius_km


@router.post(
    "/sites",
    response_model=SitesResponse,
    summary="Normalize site records",
    description="""
    Parse heterogeneous site rows (JSON objects or delimited text) into
    normalized sites.

    Headers are matched loosely: latitude/longitude by name, by substring,
    as X/Y by range or from a combined "(lat, lon)" column. Numbers may use
    decimal commas, thousands separators and unit suffixes. Rows without a
    usable position or radius are dropped.
    """,
    responses={
        200: {"description": "Sites parsed successfully"},
        422: {"description": "No valid rows found"},
        429: {"description": "Rate limit exceeded"},
    }
)
@limiter.limit(RATE_LIMIT)
async def normalize_sites(
    request: Request,
    body: SitesRequest,
    production_model: ProductionModelDep,
) -> SitesResponse:
    """
    Normalize site rows.

    Args:
        request: Incoming request (used by the rate limiter)
        body: Site rows and radius options
        production_model: Production model (injected dependency)

    Returns:
        SitesResponse with the valid sites

    Raises:
        HTTPException: 422 if no row yields a site
    """
    try:
        sites = ingest_sites(_rows(body.sites), default_radius_km=_default_radius(body))
    except NoValidRowsError as e:
        raise HTTPException(status_code=422, detail=str(e))

    sites = apply_radius_override(sites, body.radius_override_km)
    return SitesResponse(
        site_count=len(sites),
        total_production_l=production_model.total_production(sites),
        sites=[
            SiteResponse.from_site(site, production_model.site_production(site))
            for site in sites
        ],
    )


@router.post(
    "/allocation",
    response_model=AllocationResponse,
    summary="Allocate production across land-use parcels",
    description="""
    Run one allocation cycle.

    This endpoint:
    1. Normalizes the sites (and public buildings when given)
    2. Builds geodesic circles around the AOI source and merges them
    3. Fetches land-use parcels for the AOI bounding box from Overpass
    4. Clips the parcels to the AOI and computes their geodesic area
    5. Splits the site production across parcels in proportion to area

    When every Overpass mirror fails the response is still 200, with no
    parcels and an advisory `error` message.
    """,
    responses={
        200: {
            "description": "Allocation computed (possibly with an advisory error)",
            "content": {
                "application/json": {
                    "example": {
                        "parcel_count": 1,
                        "total_production_l": 70000.0,
                        "total_allocated_l": 70000.0,
                        "error": None,
                    }
                }
            }
        },
        422: {"description": "No valid rows found"},
        429: {"description": "Rate limit exceeded"},
    }
)
@limiter.limit(RATE_LIMIT)
async def allocate(
    request: Request,
    body: AllocationRequestBody,
    service: AllocationServiceDep,
) -> AllocationResponse:
    """
    Allocate site production across land-use parcels around the sites.

    Args:
        request: Incoming request (used by the rate limiter)
        body: Sites, optional public buildings and options
        service: Allocation service (injected dependency)

    Returns:
        AllocationResponse with AOI, parcels, totals and summary

    Raises:
        HTTPException: 422 if no row yields a site or building
    """
    try:
        sites = ingest_sites(_rows(body.sites), default_radius_km=_default_radius(body))
        buildings = (
            ingest_public_buildings(_rows(body.public_buildings))
            if body.public_buildings is not None
            else []
        )
    except NoValidRowsError as e:
        raise HTTPException(status_code=422, detail=str(e))

    cycle_request = AllocationRequest(
        sites=tuple(sites),
        categories=tuple(body.categories if body.categories is not None else settings.landuse_categories),
        public_buildings=tuple(buildings),
        aoi_source=body.aoi_source,
        radius_override_km=body.radius_override_km,
    )
    # Delegate to service layer (no business logic here)
    result = await service.run_cycle(cycle_request)
    if result.error:
        logger.warning(f"Allocation returned without parcels: {result.error}")
    return AllocationResponse.from_result(result)
