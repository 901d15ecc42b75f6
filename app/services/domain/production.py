"""
Domain service: production estimate derived from site population equivalents.
"""
from dataclasses import dataclass
from typing import Optional, Sequence

from app.config import settings
from app.domain.models import SiteRecord


@dataclass
class ProductionModel:
    """Converts population equivalents into litres of fertilizer per year."""

    liters_per_pe_per_year: float = 500.0
    """Urine volume per population equivalent per year"""

    production_ratio: float = 7 / 100
    """Litres of fertilizer per litre of urine"""

    @classmethod
    def from_settings(cls) -> "ProductionModel":
        return cls(
            liters_per_pe_per_year=settings.liters_per_pe_per_year,
            production_ratio=settings.production_ratio,
        )

    def production_for(self, population_equivalent: Optional[float]) -> float:
        return (population_equivalent or 0.0) * self.liters_per_pe_per_year * self.production_ratio

    def site_production(self, site: SiteRecord) -> float:
        return self.production_for(site.production_value)

    def total_production(self, sites: Sequence[SiteRecord]) -> float:
        """Sum of the production of every site; sites without p.e. count as 0."""
        total_pe = sum(site.production_value or 0.0 for site in sites)
        return self.production_for(total_pe)
