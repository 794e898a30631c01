# courier_dispatch/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Storage
    # "postgres" - asyncpg repositories (production)
    # "memory"   - in-process repositories (local development, tests)
    storage_backend: Literal["postgres", "memory"] = "postgres"

    # Database
    expected_schema_version: str = "002_pickup_points.sql"  # Update on deploy when new migrations are added
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 20
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000

    # Security
    admin_token: str | None = None
    allowed_origins: list[str] = ["*"]

    # Routing provider (external distance/duration)
    # "google" - Google Distance Matrix API
    # "none"   - always use the local haversine fallback
    routing_provider: Literal["google", "none"] = "google"
    google_maps_api_key: str | None = None
    routing_base_url: str = "https://maps.googleapis.com/maps/api/distancematrix/json"
    routing_timeout_seconds: float = 5.0  # Bounded: matching never waits longer than this per call
    fallback_speed_kmh: float = 50.0      # Average speed for haversine duration estimates
    default_travel_mode: Literal["driving", "walking", "bicycling"] = "driving"

    # Matching
    match_default_max_distance_km: float = 10.0  # Used when a profile has no usable radius
    match_max_candidates: int = 20
    match_tie_break: Literal["insertion", "fee_desc"] = "insertion"
    match_requires_online: bool = False
    match_require_dropoff_in_radius: bool = False
    match_minutes_per_km: float = 5.0  # Rough courier estimate shown next to each candidate

    # Lifecycle
    transition_timeout_seconds: float = 10.0

    # Downstream collaborators
    earnings_webhook_url: str | None = None       # Earnings/payout service; audit log when unset
    notification_webhook_url: str | None = None   # Buyer/seller/courier notifications; audit log when unset
    webhook_timeout_seconds: float = 5.0

    # Availability schedule
    schedule_timezone: str = "Europe/Amsterdam"
    schedule_warning_lang: Literal["en", "nl"] = "en"

    # Feature Flags
    enable_request_logging: bool = True
    enable_metrics: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def routing_enabled(self) -> bool:
        """Check if the external routing provider is configured"""
        return self.routing_provider == "google" and bool(self.google_maps_api_key)

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("admin_token", self.admin_token),
        ]

        if self.storage_backend == "postgres":
            required_fields.append(("database_url", self.database_url))

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.storage_backend == "memory":
        warnings.append("prod: storage_backend=memory (state is lost on restart, no cross-process locking).")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.routing_provider == "google" and not s.google_maps_api_key:
        warnings.append("routing_provider=google but google_maps_api_key is missing (haversine fallback only).")

    if s.routing_timeout_seconds > s.transition_timeout_seconds:
        warnings.append("routing_timeout_seconds exceeds transition_timeout_seconds.")

    if not s.earnings_webhook_url:
        warnings.append("earnings_webhook_url is not set (deliveries are recorded in the audit log only).")

    if s.match_default_max_distance_km <= 0:
        warnings.append("match_default_max_distance_km <= 0: couriers without a radius will never match.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
