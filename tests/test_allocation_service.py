"""
Unit tests for the allocation orchestrator.

Tests cover:
- A full cycle with a mocked geodata client
- Advisory error on geodata exhaustion
- AOI memoization, radius override and public-building AOI
- Debounced scheduling with cancellation of stale cycles
"""
import asyncio
import math

import httpx
import pytest
import respx
from unittest.mock import AsyncMock, patch

from app.domain.models import PublicBuildingRecord
from app.infrastructure.overpass_client import (
    CancellationToken,
    FetchCancelledError,
    GeodataCache,
    GeodataUnavailableError,
    OverpassClient,
)
from app.services.application.allocation_service import (
    GEODATA_UNAVAILABLE_MESSAGE,
    AllocationRequest,
    AllocationService,
    AOISource,
    DebouncedAllocator,
)
from app.services.domain.aoi_builder import AOIBuilder, AOIConfig
from app.services.domain.parcel_allocator import ParcelAllocator
from app.services.domain.production import ProductionModel

# 1000 p.e. * 500 L * 7%
EXPECTED_PRODUCTION = 35000.0


@pytest.fixture
def mock_client(sample_parcels):
    client = AsyncMock(spec=OverpassClient)
    client.resolve.return_value = tuple(sample_parcels)
    return client


@pytest.fixture
def service(mock_client) -> AllocationService:
    return AllocationService(
        client=mock_client,
        aoi_builder=AOIBuilder(AOIConfig()),
        allocator=ParcelAllocator(),
        production_model=ProductionModel(),
    )


@pytest.fixture
def request_for(equator_site):
    def _make(**overrides) -> AllocationRequest:
        values = dict(sites=(equator_site,), categories=("farmland",))
        values.update(overrides)
        return AllocationRequest(**values)
    return _make


# ============================================================
# Cycle Tests
# ============================================================

class TestRunCycle:
    """Tests for AllocationService.run_cycle."""

    @pytest.mark.asyncio
    async def test_full_cycle(self, service, mock_client, request_for):
        result = await service.run_cycle(request_for())

        assert result.error is None
        assert result.total_production == pytest.approx(EXPECTED_PRODUCTION)
        assert len(result.parcels) == 2
        assert result.total_allocated == pytest.approx(EXPECTED_PRODUCTION)
        assert result.parcels[1].allocated_quantity == pytest.approx(
            3 * result.parcels[0].allocated_quantity, rel=1e-6
        )
        assert result.aoi_signature.startswith("t:Polygon|n:1|")

        bbox, tags, signature, token = mock_client.resolve.await_args.args
        assert tags == ["farmland"]
        assert signature == result.aoi_signature
        assert isinstance(token, CancellationToken)
        assert bbox.south < 0.0045 < bbox.north

    @pytest.mark.asyncio
    async def test_summary_included(self, service, request_for):
        result = await service.run_cycle(request_for())

        assert result.summary.production_kg == pytest.approx(EXPECTED_PRODUCTION)
        assert result.summary.categories[0].landuse == "farmland"
        assert result.summary.categories[0].percent == 100.0

    @pytest.mark.asyncio
    async def test_geodata_unavailable_gives_advisory_error(self, service, mock_client, request_for):
        mock_client.resolve.side_effect = GeodataUnavailableError("down", attempts=5)

        result = await service.run_cycle(request_for())

        assert result.error == GEODATA_UNAVAILABLE_MESSAGE
        assert result.parcels == []
        assert result.total_production == pytest.approx(EXPECTED_PRODUCTION)
        assert result.aoi is not None

    @pytest.mark.asyncio
    @respx.mock
    async def test_wrong_shaped_geodata_gives_advisory_error(self, request_for, fake_sleep):
        respx.get(url__startswith="https://").mock(return_value=httpx.Response(200, json=[]))
        client = OverpassClient(cache=GeodataCache(), sleep=fake_sleep)
        service = AllocationService(
            client=client,
            aoi_builder=AOIBuilder(AOIConfig()),
            allocator=ParcelAllocator(),
            production_model=ProductionModel(),
        )

        result = await service.run_cycle(request_for())

        assert result.error == GEODATA_UNAVAILABLE_MESSAGE
        assert result.parcels == []
        await client.close()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, service, mock_client, request_for):
        mock_client.resolve.side_effect = FetchCancelledError("fetch cancelled")

        with pytest.raises(FetchCancelledError):
            await service.run_cycle(request_for())

    @pytest.mark.asyncio
    async def test_no_categories_skips_fetch(self, service, mock_client, request_for):
        result = await service.run_cycle(request_for(categories=()))

        mock_client.resolve.assert_not_called()
        assert result.parcels == []
        assert result.aoi is not None

    @pytest.mark.asyncio
    async def test_aoi_memoized_by_sites(self, service, request_for):
        with patch.object(
            service.aoi_builder,
            "resolve_aoi",
            wraps=service.aoi_builder.resolve_aoi,
        ) as resolve_aoi:
            first = await service.run_cycle(request_for())
            second = await service.run_cycle(request_for(categories=("farmland", "orchard")))

        assert resolve_aoi.call_count == 1
        assert first.aoi is second.aoi

    @pytest.mark.asyncio
    async def test_radius_override(self, service, request_for):
        result = await service.run_cycle(request_for(radius_override_km=7.0))

        assert result.aoi.max_covering_radius_km == pytest.approx(8.0)

    @pytest.mark.asyncio
    async def test_public_building_aoi(self, service, request_for):
        building = PublicBuildingRecord(lat=0.0045, lon=0.0185, name="Town Hall")

        result = await service.run_cycle(request_for(
            public_buildings=(building,),
            aoi_source=AOISource.PUBLIC_BUILDINGS,
        ))

        assert result.aoi.centroid == pytest.approx((0.0045, 0.0185))
        # Fixed 2 km radius plus the 1 km margin
        assert result.aoi.max_covering_radius_km == pytest.approx(3.0)
        # Production still comes from the sites
        assert result.total_production == pytest.approx(EXPECTED_PRODUCTION)


# ============================================================
# Debounce Tests
# ============================================================

class TestDebouncedAllocator:
    """Tests for debounced, cancellable scheduling."""

    @pytest.mark.asyncio
    async def test_only_latest_result_published(self, service, mock_client, request_for):
        published = []
        debouncer = DebouncedAllocator(service, published.append, quiet_window=0.01, jitter=0.0)

        debouncer.schedule(request_for(categories=("orchard",)))
        debouncer.schedule(request_for(categories=("farmland",)))
        result = await debouncer.wait_idle()

        assert published == [result]
        assert mock_client.resolve.await_count == 1
        assert mock_client.resolve.await_args.args[1] == ["farmland"]

    @pytest.mark.asyncio
    async def test_reschedule_cancels_in_flight_fetch(self, service, mock_client, request_for, sample_parcels):
        published = []
        tokens = []
        slow_started = asyncio.Event()

        async def resolve(bbox, tags, signature, token):
            tokens.append(token)
            if "orchard" in tags:
                slow_started.set()
                await token.run(asyncio.sleep(10))
            return tuple(sample_parcels)

        mock_client.resolve.side_effect = resolve
        debouncer = DebouncedAllocator(service, published.append, quiet_window=0.0, jitter=0.0)

        debouncer.schedule(request_for(categories=("orchard", "farmland")))
        await asyncio.wait_for(slow_started.wait(), timeout=1.0)
        assert debouncer.loading

        debouncer.schedule(request_for(categories=("farmland",)))
        result = await debouncer.wait_idle()

        assert tokens[0].cancelled
        assert not tokens[1].cancelled
        assert published == [result]
        assert math.isclose(result.total_allocated, EXPECTED_PRODUCTION)
        assert not debouncer.loading

    @pytest.mark.asyncio
    async def test_cancel_publishes_nothing(self, service, request_for):
        published = []
        debouncer = DebouncedAllocator(service, published.append, quiet_window=0.05, jitter=0.0)

        debouncer.schedule(request_for())
        debouncer.cancel()

        assert await debouncer.wait_idle() is None
        assert published == []

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self, service, request_for):
        published = []

        async def on_result(result):
            published.append(result)

        debouncer = DebouncedAllocator(service, on_result, quiet_window=0.0, jitter=0.0)
        debouncer.schedule(request_for())
        await debouncer.wait_idle()

        assert len(published) == 1

    @pytest.mark.asyncio
    async def test_wait_idle_without_schedule(self, service):
        debouncer = DebouncedAllocator(service, lambda result: None)

        assert await debouncer.wait_idle() is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
