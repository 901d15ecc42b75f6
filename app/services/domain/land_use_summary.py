"""
Domain service: land-use summary of an allocation result.

Aggregates the kept parcels into per-category shares and compares the
production estimate against the fertilizer requirement of the area.
"""
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from app.config import settings
from app.domain.models import ParcelFeature

M2_PER_HA = 10_000.0
M2_PER_KM2 = 1_000_000.0
FARMLAND = "farmland"


@dataclass
class SummaryConfig:
    """Requirement rates used by the summary."""

    required_kg_per_ha: float = 160.0
    density_kg_per_l: float = 1.0
    wheat_standard_kg_per_ha: float = 160.0
    wheat_organic_kg_per_ha: float = 120.0

    @classmethod
    def from_settings(cls) -> "SummaryConfig":
        return cls(
            required_kg_per_ha=settings.required_kg_per_ha,
            density_kg_per_l=settings.density_kg_per_l,
            wheat_standard_kg_per_ha=settings.wheat_standard_kg_per_ha,
            wheat_organic_kg_per_ha=settings.wheat_organic_kg_per_ha,
        )


@dataclass
class CategoryShare:
    landuse: str
    area_km2: float
    percent: float


@dataclass
class LandUseSummary:
    total_area_km2: float
    requirement_kg: float
    production_kg: float
    coverage_percent: float
    farmland_area_ha: float
    wheat_standard_requirement_kg: float
    wheat_organic_requirement_kg: float
    categories: list[CategoryShare] = field(default_factory=list)


def summarize(
    parcels: Sequence[ParcelFeature],
    categories: Iterable[str],
    total_production_l: float,
    config: Optional[SummaryConfig] = None,
) -> LandUseSummary:
    """
    Summarize parcels by land-use category.

    Args:
        parcels: Kept parcels of the current cycle
        categories: Categories to report, in display order
        total_production_l: Production estimate in litres
        config: Requirement rates (defaults from settings)

    Returns:
        LandUseSummary
    """
    config = config or SummaryConfig.from_settings()

    total_area_m2 = math.fsum(p.area_m2 for p in parcels)
    requirement_kg = total_area_m2 / M2_PER_HA * config.required_kg_per_ha
    production_kg = (total_production_l or 0.0) * config.density_kg_per_l
    coverage = production_kg / requirement_kg * 100 if requirement_kg > 0 else 0.0

    shares = []
    for category in categories:
        area_m2 = math.fsum(p.area_m2 for p in parcels if p.landuse == category)
        percent = area_m2 / total_area_m2 * 100 if total_area_m2 > 0 else 0.0
        shares.append(CategoryShare(
            landuse=category,
            area_km2=area_m2 / M2_PER_KM2,
            percent=round(percent, 2),
        ))

    # Wheat scenarios only apply to farmland
    farmland_ha = math.fsum(p.area_m2 for p in parcels if p.landuse == FARMLAND) / M2_PER_HA

    return LandUseSummary(
        total_area_km2=total_area_m2 / M2_PER_KM2,
        requirement_kg=requirement_kg,
        production_kg=production_kg,
        coverage_percent=round(coverage, 2),
        farmland_area_ha=farmland_ha,
        wheat_standard_requirement_kg=farmland_ha * config.wheat_standard_kg_per_ha,
        wheat_organic_requirement_kg=farmland_ha * config.wheat_organic_kg_per_ha,
        categories=shares,
    )
