"""
Configuration management for the GeoResolver reference-data pipeline.

Uses pydantic-settings for type-safe configuration with environment variable support.
"""

from pathlib import Path
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    user: str = "geo_resolver"
    password: str = ""  # Required: Set POSTGRES_PASSWORD in .env
    host: str = "localhost"
    port: int = 5432
    db: str = "geo_resolver"

    @property
    def url(self) -> str:
        """Construct database URL."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


class PipelineSettings(BaseSettings):
    """Data pipeline settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directories
    data_raw_dir: Path = Field(default=Path("./data/raw"))
    cache_dir: Path = Field(default=Path("./cache"))

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # HTTP settings
    http_timeout: int = 300  # seconds, archives are large
    http_max_retries: int = 3
    http_retry_delay: float = 1.0  # seconds
    download_workers: int = 4

    # Processing settings
    skip_log_sample: int = 10  # rejected features logged individually per phase
    city_point_buffer_degrees: float = 0.01
    truncate_before_load: bool = True

    @field_validator("data_raw_dir", "cache_dir", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Convert string to Path and ensure directory exists."""
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return path


class LoaderSettings(BaseSettings):
    """Which national OSM extracts the city and region loaders pull in."""

    model_config = SettingsConfigDict(
        env_prefix="LOADER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    use_osm_cities: bool = False
    city_countries: str = ""    # comma-separated ISO alpha-2, empty = every country in the table
    region_countries: str = ""

    @staticmethod
    def _split(value: str) -> list[str]:
        return [code.strip().upper() for code in value.split(",") if code.strip()]

    @property
    def city_countries_list(self) -> list[str]:
        """Parse city loader countries into a list."""
        return self._split(self.city_countries)

    @property
    def region_countries_list(self) -> list[str]:
        """Parse region loader countries into a list."""
        return self._split(self.region_countries)


class LockSettings(BaseSettings):
    """Mutual-exclusion lock held for the duration of an update run."""

    model_config = SettingsConfigDict(
        env_prefix="LOCK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    name: str = "georesolver_data_update"
    ttl_seconds: int = 6 * 60 * 60


class ReconciliationSettings(BaseSettings):
    """Spatial reconciliation settings."""

    model_config = SettingsConfigDict(
        env_prefix="RECONCILE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    statement_timeout_seconds: int = 300


class APISettings(BaseSettings):
    """API server settings."""

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


class Settings(BaseSettings):
    """Main settings class that combines all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    loader: LoaderSettings = Field(default_factory=LoaderSettings)
    lock: LockSettings = Field(default_factory=LockSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    api: APISettings = Field(default_factory=APISettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience function for quick access
settings = get_settings()


# =============================================================================
# Data Source Configuration
# =============================================================================

_NE_CULTURAL = (
    "https://www.naturalearthdata.com/http//www.naturalearthdata.com/download/10m/cultural/{name}.zip",
    "https://naciscdn.org/naturalearth/10m/cultural/{name}.zip",
    "https://d2ad6b4ur7yvpq.cloudfront.net/naturalearth-3.3.0/{name}.zip",
)


def _natural_earth(name: str) -> list[str]:
    return [template.format(name=name) for template in _NE_CULTURAL]


# Ordered mirror lists: the first mirror that answers with a non-empty body wins.
DATA_SOURCES = {
    "countries": {
        "name": "Country boundaries",
        "description": "Admin-0 country polygons with ISO 3166-1 codes",
        "mirrors": [
            *_natural_earth("ne_10m_admin_0_countries"),
            "https://raw.githubusercontent.com/datasets/geo-countries/main/data/countries.geojson",
            "https://raw.githubusercontent.com/holtzy/D3-graph-gallery/master/DATA/world.geojson",
        ],
        "mandatory": True,
        "license": "Public Domain / ODC-PDDL",
        "attribution": "Made with Natural Earth",
    },
    "regions": {
        "name": "First-level administrative regions",
        "description": "Admin-1 states and provinces",
        "mirrors": _natural_earth("ne_10m_admin_1_states_provinces"),
        "mandatory": False,
        "license": "Public Domain",
        "attribution": "Made with Natural Earth",
    },
    "cities": {
        "name": "Populated places",
        "description": "Significant cities and towns (points, buffered into polygons)",
        "mirrors": _natural_earth("ne_10m_populated_places"),
        "mandatory": False,
        "license": "Public Domain",
        "attribution": "Made with Natural Earth",
    },
    "timezones": {
        "name": "Timezone boundaries",
        "description": "IANA timezone polygons from timezone-boundary-builder",
        "mirrors": [
            "https://github.com/evansiroky/timezone-boundary-builder/releases/latest/download/timezones-with-oceans.geojson.zip",
            "https://github.com/evansiroky/timezone-boundary-builder/releases/latest/download/timezones.geojson.zip",
        ],
        "mandatory": False,
        "license": "ODbL",
        "attribution": "Contains data from OpenStreetMap contributors via timezone-boundary-builder",
    },
}

GEOFABRIK_URL_TEMPLATE = "https://download.geofabrik.de/{path}-latest-free.shp.zip"

# ogr2ogr filter applied to Geofabrik place polygons
OSM_PLACE_FILTER = "fclass IN ('city','town','national_capital') OR population >= 10000"
