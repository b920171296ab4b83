"""Configuration management for the lane-posting engine.

Loads and validates environment variables using Pydantic Settings.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Environment variables are loaded from .env file or system environment.
    All fields are validated at application startup.
    """

    # Google Cloud BigQuery Configuration
    google_application_credentials: str | None = Field(
        default=None,
        description="Path to Google Cloud service account JSON key file (optional if using ADC)"
    )
    bigquery_project_id: str = Field(
        default="",
        description="GCP project ID containing the city catalog dataset"
    )
    bigquery_dataset: str = Field(
        default="freight_reference",
        description="BigQuery dataset holding the cities table"
    )
    bigquery_cities_table: str = Field(
        default="cities",
        description="Table with geocoded cities and market-area codes"
    )

    # City Index Configuration
    city_index_backend: Literal["bigquery", "memory"] = Field(
        default="memory",
        description="Where the city catalog lives: BigQuery table or an in-memory CSV load"
    )
    city_catalog_path: str = Field(
        default="data/cities.csv",
        description="CSV catalog loaded by the in-memory backend"
    )
    fuzzy_match_cutoff: float = Field(
        default=85.0,
        description="Minimum rapidfuzz score (0-100) for a fuzzy city-name match"
    )

    # Serper Discovery Configuration
    serper_api_key: str = Field(
        default="",
        description="API key for Serper.dev"
    )
    use_mock_api: bool = Field(
        default=True,
        description="Use mock discovery provider (True) or real Serper API (False)"
    )
    serper_timeout_seconds: float = Field(
        default=15.0,
        description="HTTP timeout for Serper API calls"
    )
    discovery_category: str = Field(
        default="city",
        description="Category filter sent as the discovery query text"
    )
    discovery_max_results: int = Field(
        default=20,
        description="Maximum places requested per discovery call"
    )
    area_resolution_max_miles: float = Field(
        default=100.0,
        description="Discovered cities farther than this from any known market area are dropped"
    )

    # Tie-break Configuration
    tiebreak_mode: Literal["deterministic", "delegated"] = Field(
        default="deterministic",
        description="Near-tie resolution: local rule only, or external judge with local fallback"
    )
    tiebreak_api_url: str = Field(
        default="https://api.openai.com/v1/chat/completions",
        description="OpenAI-compatible chat completions endpoint for delegated tie-breaks"
    )
    tiebreak_api_key: str = Field(
        default="",
        description="API key for the tie-break judge"
    )
    tiebreak_model: str = Field(
        default="gpt-4o-mini",
        description="Model name sent to the tie-break judge"
    )
    tiebreak_timeout_seconds: float = Field(
        default=5.0,
        description="HTTP timeout for tie-break calls"
    )
    tiebreak_epsilon: float = Field(
        default=0.03,
        description="Scores closer than this are treated as a near-tie"
    )
    tiebreak_cache_ttl_seconds: int = Field(
        default=86400,
        description="How long a delegated verdict is reused"
    )

    # Radius Search Configuration
    search_start_radius_miles: float = Field(
        default=75.0,
        description="Initial search radius around each anchor"
    )
    search_radius_step_miles: float = Field(
        default=25.0,
        description="Fixed radius increment per expansion"
    )
    search_radius_multiplier: float | None = Field(
        default=None,
        description="If set, expand multiplicatively instead of by the fixed step"
    )
    search_radius_ceiling_miles: float = Field(
        default=150.0,
        description="Hard upper bound for radius expansion"
    )
    search_target_areas: int = Field(
        default=6,
        description="Distinct market areas wanted per side before expansion stops"
    )
    search_max_attempts: int = Field(
        default=8,
        description="Retry budget for radius expansion"
    )
    max_candidates_per_side: int = Field(
        default=60,
        description="Cap on ranked candidates kept per side for pairing"
    )

    # Pairing Configuration
    min_pairs: int = Field(
        default=6,
        description="Minimum accepted pairs per lane"
    )
    relax_policy: Literal["nearest", "least_recently_used"] = Field(
        default="nearest",
        description="Which duplicate-area candidate relaxed fill prefers"
    )
    allow_partial_lanes: bool = Field(
        default=True,
        description="Emit rows for lanes that fall short of min_pairs (reported as partial)"
    )

    # Row Configuration
    equipment_weight_limits: dict[str, int] = Field(
        default={"V": 44000, "R": 43500, "F": 48000, "FD": 48000, "SD": 45000},
        description="Legal maximum payload (lbs) per equipment code"
    )
    default_max_weight_lbs: int = Field(
        default=48000,
        description="Legal maximum for equipment codes not listed in equipment_weight_limits"
    )
    contact_methods: list[str] = Field(
        default=["email", "primary phone"],
        description="One posting row is emitted per contact method per pair"
    )

    # CSV Configuration
    csv_max_rows_per_file: int = Field(
        default=499,
        description="Maximum data rows per CSV part"
    )
    output_dir: str = Field(
        default="exports",
        description="Directory for generated CSV parts"
    )

    # Processor Configuration
    processor_max_workers: int = Field(
        default=8,
        description="Maximum concurrent lane workers (Prefect ThreadPoolTaskRunner)"
    )

    # Cost Management
    cost_per_credit: float = Field(
        default=0.001,
        description="Cost per discovery API credit in USD"
    )
    discovery_budget_usd: float = Field(
        default=5.0,
        description="Discovery spend allowed per export run"
    )
    budget_soft_threshold_pct: int = Field(
        default=80,
        description="Warn when the run budget reaches this percentage"
    )
    budget_hard_threshold_pct: int = Field(
        default=100,
        description="Skip discovery calls when the run budget reaches this percentage"
    )
    max_concurrent_discovery_calls: int = Field(
        default=2,
        description="Discovery calls allowed in flight across all lane workers"
    )
    discovery_slot_timeout_seconds: float = Field(
        default=30.0,
        description="How long a lane waits for a discovery slot before giving up"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance - loaded once at import time
settings = Settings()
