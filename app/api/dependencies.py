"""
Dependency injection for FastAPI.
"""
from typing import Annotated
from fastapi import Depends

from app.infrastructure.overpass_client import (
    OverpassClient,
    get_overpass_client,
)
from app.services.domain.aoi_builder import AOIBuilder
from app.services.domain.parcel_allocator import ParcelAllocator
from app.services.domain.production import ProductionModel
from app.services.application.allocation_service import AllocationService


def get_aoi_builder() -> AOIBuilder:
    """
    Dependency factory for AOIBuilder.

    Returns:
        AOIBuilder configured from settings
    """
    return AOIBuilder()


def get_parcel_allocator() -> ParcelAllocator:
    return ParcelAllocator()


def get_production_model() -> ProductionModel:
    return ProductionModel.from_settings()


def get_allocation_service(
    client: Annotated[OverpassClient, Depends(get_overpass_client)],
    aoi_builder: Annotated[AOIBuilder, Depends(get_aoi_builder)],
    allocator: Annotated[ParcelAllocator, Depends(get_parcel_allocator)],
    production_model: Annotated[ProductionModel, Depends(get_production_model)],
) -> AllocationService:
    """
    Dependency factory for AllocationService.

    Args:
        client: Overpass client (injected, process-wide cache)
        aoi_builder: AOI builder (injected)
        allocator: Parcel allocator (injected)
        production_model: Production model (injected)

    Returns:
        AllocationService instance
    """
    return AllocationService(
        client=client,
        aoi_builder=aoi_builder,
        allocator=allocator,
        production_model=production_model,
    )


# Type aliases for cleaner route signatures
AllocationServiceDep = Annotated[AllocationService, Depends(get_allocation_service)]
ProductionModelDep = Annotated[ProductionModel, Depends(get_production_model)]
