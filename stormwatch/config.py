"""
Configuration management for STORMWATCH.
Loads environment variables and provides typed configuration.

Read once at startup. Missing credentials never raise here; they degrade
the system status instead.
"""
import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ========================================================================
    # Application Configuration
    # ========================================================================
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    debug: bool = False

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    # ========================================================================
    # Refresh Scheduler
    # ========================================================================
    refresh_interval_minutes: float = Field(30.0, gt=0)
    fetch_attempts: int = 2
    fetch_backoff_seconds: float = 1.0
    http_timeout_seconds: float = 20.0

    # ========================================================================
    # NHC track geodata
    # ========================================================================
    nhc_arcgis_url: str = (
        "https://idpgis.ncep.noaa.gov/arcgis/rest/services/"
        "NWS_Forecasts_Guidance_Warnings/NHC_Atl_trop_cyclones/MapServer"
    )
    nhc_mirror_url: str = (
        "https://www.nhc.noaa.gov/gis/rest/services/nhc_at_public_layers/hurricanes/MapServer"
    )
    nhc_active_kml_url: str = "https://www.nhc.noaa.gov/gis/kml/nhc_active.kml"

    # ========================================================================
    # GFS gridded weather (NOAA open data bucket)
    # ========================================================================
    gfs_bucket_url: str = "https://noaa-gfs-bdp-pds.s3.amazonaws.com"
    titiler_url: str = "http://localhost:8001"

    # ========================================================================
    # CMEMS ocean fields (register at https://marine.copernicus.eu)
    # ========================================================================
    cmems_base_url: str = "https://nrt.cmems-du.eu/thredds/dodsC"
    cmems_username: Optional[str] = None
    cmems_password: Optional[str] = None

    @property
    def has_cmems_credentials(self) -> bool:
        return bool(self.cmems_username) and bool(self.cmems_password)

    # ========================================================================
    # Forecast oracle (OpenAI-compatible chat completions)
    # ========================================================================
    oracle_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ORACLE_API_KEY", "OPENAI_API_KEY"),
    )
    oracle_base_url: str = "https://api.openai.com/v1"
    oracle_model: str = "gpt-4o"
    oracle_timeout_seconds: float = 60.0
    oracle_temperature: float = 0.3

    @property
    def has_oracle_credentials(self) -> bool:
        return bool(self.oracle_api_key)

    # ========================================================================
    # Snapshot store
    # ========================================================================
    # None keeps everything in process memory
    database_url: Optional[str] = None
    db_echo: bool = False

    # ========================================================================
    # Status
    # ========================================================================
    staleness_hours: float = 6.0

    # ========================================================================
    # API Configuration
    # ========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    scheduler_enabled: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ========================================================================
    # Rate Limiting
    # ========================================================================
    rate_limit_enabled: bool = True
    rate_limit_forecasts_per_minute: int = 10
    rate_limit_refresh_per_minute: int = 6
    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    def configure_logging(self):
        """Configure root logging from settings."""
        level = getattr(logging, self.log_level.upper(), logging.INFO)
        logging.basicConfig(level=level, format=self.log_format)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()
