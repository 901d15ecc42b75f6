"""
Shared pytest fixtures for all tests.

This module provides common fixtures including:
- Sample site rows and records
- Sample parcels and Overpass payloads
- A recording sleep for retry/backoff tests
- FastAPI test client
"""
import pytest
from shapely.geometry import Polygon, box
from fastapi.testclient import TestClient

from app.main import app
from app.api.limiter import limiter
from app.domain.models import GeodataFeature, SiteRecord


# ============================================================
# Sample Data Fixtures
# ============================================================

@pytest.fixture
def sample_site_rows() -> list[dict]:
    """Rows as they come out of an Italian treatment-plant spreadsheet."""
    return [
        {
            "W.T.P. Name": "Torino Nord",
            "Latitude of W.T.P.": "45,07",
            "Longitude of W.T.P.": "7,69",
            "Plant Influence Radius (km)": "2 km",
            "Capacity (p.e.)": "2000",
        },
        {
            "W.T.P. Name": "Settimo",
            "Latitude of W.T.P.": "45.14",
            "Longitude of W.T.P.": "7.77",
            "Plant Influence Radius (km)": "3",
            "Potenz. (A.E.)": "1.500",
        },
        {
            # No coordinates: dropped
            "W.T.P. Name": "Unknown",
            "Plant Influence Radius (km)": "3",
        },
    ]


@pytest.fixture
def single_site() -> SiteRecord:
    return SiteRecord(lat=45.07, lon=7.69, radius_km=2.0, name="Torino Nord")


@pytest.fixture
def equator_site() -> SiteRecord:
    """Site whose 10 km circle contains the sample parcels."""
    return SiteRecord(lat=0.0045, lon=0.02, radius_km=10.0, name="Equator", production_value=1000.0)


@pytest.fixture
def sample_parcels() -> list[GeodataFeature]:
    """
    Two farmland parcels in the same latitude band near the equator.

    The second one is three times as wide, so its geodesic area is exactly
    three times the first one's.
    """
    return [
        GeodataFeature(
            osm_type="way",
            osm_id=1,
            geometry=box(0.000, 0.0, 0.009, 0.009),
            tags={"landuse": "farmland"},
        ),
        GeodataFeature(
            osm_type="way",
            osm_id=2,
            geometry=box(0.010, 0.0, 0.037, 0.009),
            tags={"landuse": "farmland"},
        ),
    ]


@pytest.fixture
def bow_tie():
    """
    Factory for a self-intersecting polygon anchored at (lon, lat).

    The two lobes differ in size, so the centroid is well defined.
    """
    def _bow_tie(lon: float, lat: float, size: float) -> Polygon:
        return Polygon([
            (lon, lat),
            (lon + 3 * size, lat + 2 * size),
            (lon + 3 * size, lat),
            (lon, lat + size),
        ])
    return _bow_tie


@pytest.fixture
def overpass_payload() -> dict:
    """Overpass ``out body geom`` response with one closed farmland way."""
    return {
        "version": 0.6,
        "elements": [
            {
                "type": "way",
                "id": 101,
                "tags": {"landuse": "farmland"},
                "geometry": [
                    {"lat": 45.060, "lon": 7.680},
                    {"lat": 45.060, "lon": 7.700},
                    {"lat": 45.080, "lon": 7.700},
                    {"lat": 45.080, "lon": 7.680},
                    {"lat": 45.060, "lon": 7.680},
                ],
            },
        ],
    }


# ============================================================
# Timing Fixtures
# ============================================================

@pytest.fixture
def recorded_sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(recorded_sleeps):
    """Sleep replacement that records the delay and returns immediately."""
    async def _sleep(seconds: float) -> None:
        recorded_sleeps.append(seconds)
    return _sleep


# ============================================================
# FastAPI Test Client Fixtures
# ============================================================

@pytest.fixture
def test_client() -> TestClient:
    """Create a synchronous test client for FastAPI."""
    limiter.reset()
    return TestClient(app)
