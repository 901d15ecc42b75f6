"""
Application service: Orchestration of one land-use allocation cycle.
"""
import asyncio
import inspect
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from app.config import settings
from app.domain.models import AreaOfInterest, ParcelFeature, PublicBuildingRecord, SiteRecord
from app.infrastructure.overpass_client import (
    CancellationToken,
    FetchCancelledError,
    GeodataUnavailableError,
    OverpassClient,
)
from app.services.domain.aoi_builder import AOIBuilder, aoi_bounding_box, aoi_signature
from app.services.domain.land_use_summary import LandUseSummary, SummaryConfig, summarize
from app.services.domain.parcel_allocator import ParcelAllocator
from app.services.domain.production import ProductionModel
from app.services.domain.site_ingestion import apply_radius_override

logger = logging.getLogger(__name__)

GEODATA_UNAVAILABLE_MESSAGE = "Geodata service unavailable, try again later."


class AOISource(str, Enum):
    """Which records the AOI is built from."""
    SITES = "sites"
    PUBLIC_BUILDINGS = "public_buildings"


@dataclass(frozen=True)
class AllocationRequest:
    """Inputs of one cycle."""
    sites: tuple[SiteRecord, ...]
    categories: tuple[str, ...]
    public_buildings: tuple[PublicBuildingRecord, ...] = ()
    aoi_source: AOISource = AOISource.SITES
    radius_override_km: Optional[float] = None


@dataclass
class CycleResult:
    """Outcome of one cycle; replaces any earlier result wholesale."""
    aoi: Optional[AreaOfInterest]
    parcels: list[ParcelFeature]
    total_production: float
    summary: LandUseSummary
    aoi_signature: str = "union-none"
    error: Optional[str] = None
    categories: list[str] = field(default_factory=list)

    @property
    def total_allocated(self) -> float:
        return sum(p.allocated_quantity for p in self.parcels)


class AllocationService:
    """
    Application service for land-use allocation.

    Coordinates AOI resolution, geodata fetching, clipping and the summary;
    holds no business rules of its own.
    """

    def __init__(
        self,
        client: OverpassClient,
        aoi_builder: AOIBuilder,
        allocator: ParcelAllocator,
        production_model: ProductionModel,
        summary_config: Optional[SummaryConfig] = None,
    ):
        """
        Initialize the service with dependencies.

        Args:
            client: Overpass client (owns the geodata cache)
            aoi_builder: AOI construction service
            allocator: Clip and allocate engine
            production_model: Production estimate from site p.e.
            summary_config: Requirement rates for the summary
        """
        self.client = client
        self.aoi_builder = aoi_builder
        self.allocator = allocator
        self.production_model = production_model
        self.summary_config = summary_config or SummaryConfig.from_settings()
        self._last_aoi_key: Optional[tuple[SiteRecord, ...]] = None
        self._last_aoi: Optional[AreaOfInterest] = None

    def resolve_aoi(self, sites: Sequence[SiteRecord]) -> Optional[AreaOfInterest]:
        """Resolve the AOI, reusing the previous one when the sites are unchanged."""
        key = tuple(sites)
        if key != self._last_aoi_key:
            self._last_aoi = self.aoi_builder.resolve_aoi(key)
            self._last_aoi_key = key
        return self._last_aoi

    def aoi_sites(self, request: AllocationRequest, sites: Sequence[SiteRecord]) -> list[SiteRecord]:
        if request.aoi_source == AOISource.PUBLIC_BUILDINGS:
            return [
                SiteRecord(
                    lat=b.lat,
                    lon=b.lon,
                    radius_km=settings.public_building_radius_km,
                    name=b.name,
                )
                for b in request.public_buildings
            ]
        return list(sites)

    async def run_cycle(
        self,
        request: AllocationRequest,
        token: Optional[CancellationToken] = None,
    ) -> CycleResult:
        """
        Run one resolution cycle.

        This method orchestrates:
        1. Applying the radius override to the sites
        2. Resolving the AOI and its bounding box
        3. Fetching land-use parcels for the box
        4. Clipping parcels and allocating the production
        5. Summarizing the result

        Args:
            request: Cycle inputs
            token: Cancellation token shared with the scheduler

        Returns:
            CycleResult; ``error`` is set and parcels are empty when the
            geodata service could not be reached

        Raises:
            FetchCancelledError: If the token fired during the cycle
        """
        token = token or CancellationToken()
        categories = list(dict.fromkeys(request.categories))
        sites = apply_radius_override(request.sites, request.radius_override_km)
        total_production = self.production_model.total_production(sites)

        aoi = self.resolve_aoi(self.aoi_sites(request, sites))
        signature = aoi_signature(aoi)

        def result(parcels: list[ParcelFeature], error: Optional[str] = None) -> CycleResult:
            return CycleResult(
                aoi=aoi,
                parcels=parcels,
                total_production=total_production,
                summary=summarize(parcels, categories, total_production, self.summary_config),
                aoi_signature=signature,
                error=error,
                categories=categories,
            )

        if aoi is None or not categories:
            logger.info("Nothing to resolve (no AOI or no enabled categories)")
            return result([])

        bbox = aoi_bounding_box(aoi)
        try:
            features = await self.client.resolve(bbox, categories, signature, token)
        except GeodataUnavailableError as e:
            logger.error(f"Geodata unavailable after {e.attempts} attempts: {e.message}")
            return result([], error=GEODATA_UNAVAILABLE_MESSAGE)

        token.raise_if_cancelled()
        parcels = self.allocator.clip_and_allocate(features, aoi, categories, total_production)
        return result(parcels)


class DebouncedAllocator:
    """
    Schedules cycles behind a quiet window, keeping only the latest one.

    Scheduling a new cycle cancels the pending timer and the token of the
    in-flight fetch together; a cancelled cycle never publishes.
    """

    def __init__(
        self,
        service: AllocationService,
        on_result: Callable[[CycleResult], Any],
        quiet_window: Optional[float] = None,
        jitter: Optional[float] = None,
        sleep=asyncio.sleep,
    ):
        self.service = service
        self.on_result = on_result
        self.quiet_window = settings.debounce_seconds if quiet_window is None else quiet_window
        self.jitter = settings.debounce_jitter_seconds if jitter is None else jitter
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None
        self._generation = 0

    @property
    def loading(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, request: AllocationRequest) -> asyncio.Task:
        """Replace any pending cycle with one for ``request``."""
        self.cancel()
        self._generation += 1
        self._token = CancellationToken()
        self._task = asyncio.create_task(self._run(request, self._token, self._generation))
        return self._task

    def cancel(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_idle(self) -> Optional[CycleResult]:
        """Wait for the latest scheduled cycle; None if it was cancelled."""
        task = self._task
        if task is None:
            return None
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def _run(
        self,
        request: AllocationRequest,
        token: CancellationToken,
        generation: int,
    ) -> Optional[CycleResult]:
        delay = self.quiet_window + random.uniform(0, self.jitter)
        try:
            await token.run(self._sleep(delay))
            result = await self.service.run_cycle(request, token)
        except FetchCancelledError:
            logger.debug(f"Cycle {generation} cancelled")
            return None

        if token.cancelled or generation != self._generation:
            logger.debug(f"Dropping stale result of cycle {generation}")
            return None

        published = self.on_result(result)
        if inspect.isawaitable(published):
            await published
        return result
