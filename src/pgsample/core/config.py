# src/pgsample/core/config.py
"""
Configuration schema and loading for pgsample.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from pgsample.contracts.results import CapPolicy


class ServerSettings(BaseModel):
    """HTTP listener configuration."""

    model_config = {"frozen": True}

    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=2345, ge=1, le=65535, description="Port to listen on")
    hosted: bool = Field(
        default=False,
        description="Multi-tenant deployment: hides error details, rejects localhost targets",
    )
    cors_allow_origin: str = Field(default="*", description="Access-Control-Allow-Origin value")
    project_url: str = Field(
        default="https://github.com/Query-Doctor/local-sync",
        description="Where GET / redirects to",
    )


class SamplingSettings(BaseModel):
    """Defaults and safety bounds for the sampling engine.

    Example YAML:
        sampling:
          required_rows: 2
          max_rows: 8
          cap_policy: shared
          max_iterations: 100000
    """

    model_config = {"frozen": True}

    seed: float = Field(default=0.0, ge=0.0, le=1.0, description="Default seed for requests that omit one")
    required_rows: int = Field(default=2, gt=0, description="Default organic sample size per table")
    max_rows: int = Field(default=8, gt=0, description="Default hard cap per table")
    max_iterations: int = Field(
        default=100_000,
        gt=0,
        description="Worklist pops before a run is aborted as non-converging",
    )
    tablesample_threshold: int = Field(
        default=10_000,
        gt=0,
        description="Estimated row count from which TABLESAMPLE replaces ORDER BY random()",
    )
    cap_policy: CapPolicy = Field(default=CapPolicy.SHARED, description="How max_rows treats fetched rows")
    sample_discovered_tables: bool = Field(
        default=False,
        description="Also top up tables only reached through foreign keys (outside the synced schema)",
    )


class RateLimitSettings(BaseModel):
    """Per-client request limits for the HTTP surface.

    Example YAML:
        rate_limit:
          enabled: true
          requests_per_window: 100
          window_seconds: 900
    """

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Enable per-client rate limiting")
    requests_per_window: int = Field(default=100, gt=0, description="Requests allowed per client per window")
    window_seconds: int = Field(default=900, gt=0, description="Window length in seconds")
    idle_eviction_seconds: int = Field(
        default=3600,
        gt=0,
        description="Drop a client's limiter after this long without requests",
    )


class ConnectionSettings(BaseModel):
    """Pooled connections to target databases (one pool per URL)."""

    model_config = {"frozen": True}

    ttl_seconds: float = Field(default=600.0, gt=0, description="Close pools unused for this long")
    max_pools: int = Field(default=32, gt=0, description="Most target URLs kept open at once")
    pool_max_size: int = Field(default=5, gt=0, description="Connections per target pool")
    connect_timeout: float = Field(default=10.0, gt=0, description="Seconds to wait for a connection")


class SchemaDumpSettings(BaseModel):
    """pg_dump subprocess configuration."""

    model_config = {"frozen": True}

    binary: str | None = Field(
        default=None,
        description="pg_dump path; falls back to $PG_DUMP_BINARY, then pg_dump on PATH",
    )
    timeout_seconds: float = Field(default=120.0, gt=0, description="Kill pg_dump after this long")


class TelemetrySettings(BaseModel):
    """OpenTelemetry tracing configuration."""

    model_config = {"frozen": True}

    enabled: bool = Field(default=False, description="Emit spans")
    service_name: str = Field(default="pgsample", description="service.name resource attribute")
    exporter: Literal["otlp", "console"] = Field(default="otlp", description="Span exporter")
    otlp_endpoint: str | None = Field(default=None, description="OTLP gRPC endpoint, e.g. http://localhost:4317")

    @model_validator(mode="after")
    def validate_endpoint_for_otlp(self) -> "TelemetrySettings":
        """The OTLP exporter needs somewhere to send spans."""
        if self.enabled and self.exporter == "otlp" and not self.otlp_endpoint:
            raise ValueError("telemetry.otlp_endpoint is required when the otlp exporter is enabled")
        return self


class LoggingSettings(BaseModel):
    model_config = {"frozen": True}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    json_output: bool = Field(default=False, description="Emit JSON lines instead of console output")


class PgSampleSettings(BaseModel):
    """Top-level configuration. Every section has defaults."""

    model_config = {"frozen": True}

    server: ServerSettings = Field(default_factory=ServerSettings)
    sampling: SamplingSettings = Field(default_factory=SamplingSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    connections: ConnectionSettings = Field(default_factory=ConnectionSettings)
    schema_dump: SchemaDumpSettings = Field(default_factory=SchemaDumpSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def validate_sampling_defaults(self) -> "PgSampleSettings":
        """Default max_rows must leave room for the organic sample."""
        if self.sampling.max_rows < self.sampling.required_rows:
            raise ValueError(
                f"sampling.max_rows ({self.sampling.max_rows}) must be >= "
                f"sampling.required_rows ({self.sampling.required_rows})"
            )
        return self


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            default = match.group(2)
            if default is not None:
                return default
            # No env var and no default - keep original (validation will flag it)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lowercase_keys(value: Any) -> Any:
    """Dynaconf uppercases keys; Pydantic fields are lowercase."""
    if isinstance(value, dict):
        return {str(k).lower(): _lowercase_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lowercase_keys(item) for item in value]
    return value


def load_settings(config_path: Path | None = None) -> PgSampleSettings:
    """Load settings from an optional YAML file with environment overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (PGSAMPLE_*) - highest priority
    2. Config file (settings.yaml), when given
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: PGSAMPLE_SERVER__PORT for nested keys.

    Args:
        config_path: Path to YAML configuration file, or None for env-only

    Returns:
        Validated PgSampleSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config_path is given but doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="PGSAMPLE",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lowercase_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return PgSampleSettings(**raw_config)
