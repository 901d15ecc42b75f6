"""
Unit tests for AOI construction.

Tests cover:
- Geodesic circles and areas
- Centroid and covering radius
- Union strategies and the circle-collection fallback
- AOI signature and bounding box
"""
import math

import pytest
from shapely.geometry import Point

from app.domain.models import SiteRecord, UnionKind
from app.services.domain.aoi_builder import (
    AOIBuilder,
    AOIConfig,
    aoi_bounding_box,
    aoi_signature,
)
from app.utils.geodesy import (
    geodesic_area_m2,
    geodesic_circle,
    geodesic_distance_km,
)
from app.utils.spatial_helpers import GeometryOperationError, Strategy

# Mean Earth radius (IUGG)
EARTH_RADIUS_M = 6_371_008.8


def spherical_cap_area_m2(radius_km: float) -> float:
    """Analytic area of a circle of geodesic radius ``radius_km`` on the sphere."""
    angle = (radius_km * 1000.0) / EARTH_RADIUS_M
    return 2 * math.pi * EARTH_RADIUS_M ** 2 * (1 - math.cos(angle))


@pytest.fixture
def builder() -> AOIBuilder:
    return AOIBuilder(AOIConfig())


@pytest.fixture
def two_sites() -> list[SiteRecord]:
    return [
        SiteRecord(lat=45.07, lon=7.69, radius_km=2.0, name="A"),
        SiteRecord(lat=45.09, lon=7.72, radius_km=3.0, name="B"),
    ]


# ============================================================
# Geodesy Tests
# ============================================================

class TestGeodesy:
    """Tests for geodesic helpers."""

    @pytest.mark.parametrize("lat, radius_km", [(0.0, 1.0), (45.07, 2.0), (60.0, 10.0)])
    def test_circle_area_close_to_analytic(self, lat, radius_km):
        """A 64-vertex circle is within 1% of the analytic geodesic circle area."""
        circle = geodesic_circle(lat, 7.69, radius_km, steps=64)

        assert geodesic_area_m2(circle) == pytest.approx(spherical_cap_area_m2(radius_km), rel=0.01)

    def test_circle_vertex_count(self):
        circle = geodesic_circle(45.0, 7.0, 2.0, steps=64)

        # Closed ring repeats the first vertex
        assert len(circle.exterior.coords) == 65

    def test_circle_vertices_at_radius(self):
        circle = geodesic_circle(45.0, 7.0, 2.0)

        for lon, lat in circle.exterior.coords:
            assert geodesic_distance_km((45.0, 7.0), (lat, lon)) == pytest.approx(2.0, rel=1e-6)

    def test_non_positive_radius_rejected(self):
        with pytest.raises(ValueError):
            geodesic_circle(45.0, 7.0, 0.0)

    def test_area_ignores_orientation(self):
        circle = geodesic_circle(45.0, 7.0, 1.0)
        reversed_circle = type(circle)(list(circle.exterior.coords)[::-1])

        assert geodesic_area_m2(reversed_circle) == pytest.approx(geodesic_area_m2(circle))


# ============================================================
# AOI Resolution Tests
# ============================================================

class TestResolveAOI:
    """Tests for AOIBuilder.resolve_aoi."""

    def test_no_sites(self, builder):
        assert builder.resolve_aoi([]) is None

    def test_single_site(self, builder, single_site):
        aoi = builder.resolve_aoi([single_site])

        assert aoi.centroid == pytest.approx((45.07, 7.69))
        assert aoi.union_kind == UnionKind.POLYGON
        assert aoi.union_strategy == "single-circle"
        assert aoi.union_geometry.equals(aoi.circles[0])
        assert aoi.max_covering_radius_km == pytest.approx(3.0)

    def test_centroid_is_mean(self, builder, two_sites):
        assert builder.centroid(two_sites) == pytest.approx((45.08, 7.705))

    def test_union_covers_every_center(self, builder, two_sites):
        aoi = builder.resolve_aoi(two_sites)

        assert aoi.union_kind == UnionKind.POLYGON
        assert aoi.union_strategy == "buffered-merge"
        assert len(aoi.circles) == 2
        for site in two_sites:
            assert aoi.union_geometry.covers(Point(site.lon, site.lat))

    def test_covering_radius_reaches_every_circle(self, builder, two_sites):
        aoi = builder.resolve_aoi(two_sites)

        for site in two_sites:
            reach = geodesic_distance_km(aoi.centroid, (site.lat, site.lon)) + site.radius_km
            assert aoi.max_covering_radius_km >= reach + 1.0 - 1e-9

    def test_resolution_is_pure(self, builder, two_sites):
        first = builder.resolve_aoi(two_sites)
        second = builder.resolve_aoi(two_sites)

        assert first.union_geometry.equals(second.union_geometry)
        assert aoi_signature(first) == aoi_signature(second)


# ============================================================
# Union Fallback Tests
# ============================================================

class TestUnionFallbacks:
    """Tests for the union strategy chain."""

    def test_all_strategies_fail_gives_circle_collection(self, builder, two_sites):
        circles = [geodesic_circle(s.lat, s.lon, s.radius_km) for s in two_sites]

        def failing(_circles):
            def boom():
                raise GeometryOperationError("forced")
            return [Strategy("always-fails", boom), Strategy("no-result", lambda: None)]

        geometry, kind, name = builder.build_union(circles, strategies=failing)

        assert kind == UnionKind.CIRCLE_COLLECTION
        assert name == "circle-collection"
        assert geometry.geom_type == "GeometryCollection"
        assert len(geometry.geoms) == 2

    def test_pairwise_union(self, builder, two_sites):
        circles = [geodesic_circle(s.lat, s.lon, s.radius_km) for s in two_sites]

        geometry, kind, name = builder.build_union(
            circles,
            strategies=lambda c: [Strategy("pairwise-union", lambda: builder._pairwise_union(c))],
        )

        assert kind == UnionKind.POLYGON
        assert name == "pairwise-union"
        for site in two_sites:
            assert geometry.covers(Point(site.lon, site.lat))

    def test_pairwise_union_skips_invalid_circle(self, builder, two_sites, bow_tie):
        """A circle whose union raises is skipped and the accumulator is kept."""
        circles = [geodesic_circle(s.lat, s.lon, s.radius_km) for s in two_sites]
        invalid = bow_tie(7.69, 45.07, 0.01)
        assert not invalid.is_valid

        geometry = builder._pairwise_union([circles[0], invalid, circles[1]])

        assert geometry.is_valid
        assert geometry.equals(circles[0].union(circles[1]))


# ============================================================
# AOI Descriptor Tests
# ============================================================

class TestAOIDescriptors:
    """Tests for the signature and bounding box."""

    def test_signature_of_none(self):
        assert aoi_signature(None) == "union-none"

    def test_signature_format(self, builder, single_site):
        aoi = builder.resolve_aoi([single_site])

        signature = aoi_signature(aoi)

        assert signature.startswith("t:Polygon|n:1|b:")
        assert len(signature.split("|b:")[1].split("|")) == 4

    def test_circle_collection_signature(self, builder, two_sites):
        aoi = builder.resolve_aoi(two_sites)
        collection = builder.build_union(aoi.circles, strategies=lambda c: [])[0]
        aoi = type(aoi)(
            centroid=aoi.centroid,
            circles=aoi.circles,
            union_geometry=collection,
            union_kind=UnionKind.CIRCLE_COLLECTION,
            max_covering_radius_km=aoi.max_covering_radius_km,
        )

        assert aoi_signature(aoi).startswith("t:CircleCollection|n:2|")

    def test_bounding_box_contains_union(self, builder, two_sites):
        aoi = builder.resolve_aoi(two_sites)

        bbox = aoi_bounding_box(aoi)
        min_lon, min_lat, max_lon, max_lat = aoi.union_geometry.bounds

        assert (bbox.west, bbox.south, bbox.east, bbox.north) == pytest.approx(
            (min_lon, min_lat, max_lon, max_lat)
        )
        assert bbox.to_overpass().count(",") == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
