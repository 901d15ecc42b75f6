"""
Application configuration using Pydantic settings.
"""
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Overpass (geodata) Configuration
    overpass_endpoints: list[str] = Field(
        default=[
            "https://overpass-api.de/api/interpreter",
            "https://overpass.kumi.systems/api/interpreter",
            "https://z.overpass-api.de/api/interpreter",
        ],
        description="Functionally equivalent Overpass endpoints, tried round-robin"
    )
    overpass_query_timeout: int = Field(
        default=30,
        description="Server-side timeout (seconds) embedded in the Overpass query"
    )
    http_timeout: float = Field(
        default=60.0,
        description="Client-side HTTP timeout in seconds"
    )
    cache_precision: int = Field(
        default=6,
        description="Decimal places used when rounding bounding boxes for cache keys"
    )

    # Retry Configuration
    max_retry_attempts: int = Field(
        default=5,
        description="Maximum number of attempts for a geodata fetch"
    )
    retry_base_delay: float = Field(
        default=2.0,
        description="Base delay in seconds, doubled on each failed attempt"
    )
    retry_max_delay: float = Field(
        default=12.0,
        description="Upper bound in seconds for the exponential part of the backoff"
    )
    retry_jitter: float = Field(
        default=0.5,
        description="Maximum uniform random jitter in seconds added to each backoff"
    )

    # Land use
    landuse_categories: list[str] = Field(
        default=[
            "farmland",
            "plantation",
            "orchard",
            "vineyard",
            "greenhouse_horticulture",
        ],
        description="landuse tag values queried and allocated to"
    )

    # AOI construction
    circle_steps: int = Field(
        default=64,
        description="Number of vertices of each site circle"
    )
    union_buffer_km: float = Field(
        default=0.0001,
        description="Positive buffer applied after merging circles (heals shared edges)"
    )
    union_simplify_tolerance: float = Field(
        default=0.0001,
        description="Simplification tolerance in degrees for the merged AOI"
    )
    covering_margin_km: float = Field(
        default=1.0,
        description="Margin added to the maximum covering radius"
    )
    default_site_radius_km: float = Field(
        default=10.0,
        description="Radius used for sites whose row carries no radius"
    )
    public_building_radius_km: float = Field(
        default=2.0,
        description="Fixed radius around public buildings when they form the AOI"
    )

    # Debounce
    debounce_seconds: float = Field(
        default=0.65,
        description="Quiet window before a scheduled recomputation fires"
    )
    debounce_jitter_seconds: float = Field(
        default=0.2,
        description="Maximum random jitter added to the quiet window"
    )

    # Production model
    liters_per_pe_per_year: float = Field(
        default=500.0,
        description="Urine volume in litres per population equivalent per year"
    )
    production_ratio: float = Field(
        default=7 / 100,
        description="Litres of fertilizer produced per litre of urine"
    )

    # Requirement model
    required_kg_per_ha: float = Field(
        default=160.0,
        description="Fertilizer requirement per hectare across all land uses"
    )
    density_kg_per_l: float = Field(
        default=1.0,
        description="Fertilizer density used to convert litres to kilograms"
    )
    wheat_standard_kg_per_ha: float = Field(
        default=160.0,
        description="Standard wheat requirement per hectare of farmland"
    )
    wheat_organic_kg_per_ha: float = Field(
        default=120.0,
        description="Organic wheat requirement per hectare of farmland"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins (use specific origins in production)"
    )

    # Rate Limiting
    rate_limit_requests: int = Field(
        default=30,
        description="Maximum requests per minute per client"
    )

    # Application Settings
    app_name: str = Field(
        default="Land Use Allocation Service",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
