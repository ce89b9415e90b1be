"""
Centralized configuration for the investigation graph engine.

All settings are loaded from environment variables with sensible defaults.
Pydantic Settings provides validation and type coercion.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

logger = structlog.get_logger()

# Load .env then .env.local (so .env.local overrides).
_repo_root = Path(__file__).resolve().parent.parent
load_dotenv(_repo_root / ".env")
_env_local = _repo_root / ".env.local"
if _env_local.exists():
    load_dotenv(_env_local, override=True)


class LookupConfig(BaseSettings):
    """External lookup API endpoints and client behaviour."""

    skiptrace_api_host: str = Field(
        default="skip-tracing-working-api.p.rapidapi.com",
        alias="SKIPTRACE_API_HOST",
    )
    property_api_host: str = Field(default="zillow56.p.rapidapi.com", alias="PROPERTY_API_HOST")
    rapidapi_key: str = Field(default="", alias="RAPIDAPI_KEY")
    request_timeout: float = Field(default=30.0, alias="LOOKUP_REQUEST_TIMEOUT")  # seconds
    max_retries: int = Field(default=3, alias="LOOKUP_MAX_RETRIES")


class SessionConfig(BaseSettings):
    """Where sessions are persisted and how new ones are named."""

    session_dir: str = Field(default="sessions", alias="SESSION_DIR")
    default_name: str = Field(default="Untitled Investigation", alias="SESSION_DEFAULT_NAME")


class ExtractionConfig(BaseSettings):
    """Entity extraction tuning."""

    default_source: str = Field(default="Unknown", alias="EXTRACTION_DEFAULT_SOURCE")
    # Guard against pathological payloads; 0 = unlimited
    max_items_per_group: int = Field(default=500, alias="EXTRACTION_MAX_ITEMS_PER_GROUP")


class ObservabilityConfig(BaseSettings):
    """Logging and Prometheus metrics."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    metrics_enabled: bool = Field(default=False, alias="PROMETHEUS_METRICS_ENABLED")
    metrics_port: int = Field(default=8000, alias="PROMETHEUS_METRICS_PORT")


class YAMLConfigLoader:
    """Loads YAML config files from a configurable directory."""

    def __init__(self, config_dir: str | Path = "config") -> None:
        self._dir = _repo_root / config_dir

    def load(self, filename: str) -> dict[str, Any]:
        """Load a YAML file; returns empty dict if the file is missing or unreadable."""
        import yaml

        path = self._dir / filename
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("config_yaml_unreadable", path=str(path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}


class Settings(BaseSettings):
    """Root settings container; all config is reachable from one object."""

    lookup: LookupConfig = Field(default_factory=LookupConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    # YAML-loaded config (populated in get_settings)
    field_aliases: dict[str, Any] = Field(default_factory=dict)
    host_policies: dict[str, Any] = Field(default_factory=dict)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance. Cached after first call."""
    settings = Settings()
    loader = YAMLConfigLoader()
    settings.field_aliases = loader.load("field_aliases.yaml")
    settings.host_policies = loader.load("host_policies.yaml")
    return settings
