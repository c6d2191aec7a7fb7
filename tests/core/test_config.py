# tests/core/test_config.py
"""Tests for configuration schema and loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError


class TestServerSettings:
    def test_defaults(self) -> None:
        from pgsample.core.config import ServerSettings

        settings = ServerSettings()
        assert settings.port == 2345
        assert settings.hosted is False
        assert settings.cors_allow_origin == "*"

    def test_port_range(self) -> None:
        from pgsample.core.config import ServerSettings

        with pytest.raises(ValidationError):
            ServerSettings(port=0)
        with pytest.raises(ValidationError):
            ServerSettings(port=70000)

    def test_settings_are_frozen(self) -> None:
        from pgsample.core.config import ServerSettings

        settings = ServerSettings()
        with pytest.raises(ValidationError):
            settings.port = 9000  # type: ignore[misc]


class TestSamplingSettings:
    """Sampling defaults and bounds."""

    def test_defaults(self) -> None:
        from pgsample.contracts.results import CapPolicy
        from pgsample.core.config import SamplingSettings

        settings = SamplingSettings()
        assert settings.required_rows == 2
        assert settings.max_rows == 8
        assert settings.max_iterations == 100_000
        assert settings.tablesample_threshold == 10_000
        assert settings.cap_policy is CapPolicy.SHARED
        assert settings.sample_discovered_tables is False

    def test_cap_policy_from_string(self) -> None:
        from pgsample.contracts.results import CapPolicy
        from pgsample.core.config import SamplingSettings

        assert SamplingSettings(cap_policy="prefer_references").cap_policy is CapPolicy.PREFER_REFERENCES

    def test_unknown_cap_policy_rejected(self) -> None:
        from pgsample.core.config import SamplingSettings

        with pytest.raises(ValidationError):
            SamplingSettings(cap_policy="whatever")

    def test_seed_bounds(self) -> None:
        from pgsample.core.config import SamplingSettings

        with pytest.raises(ValidationError):
            SamplingSettings(seed=2.0)

    def test_max_rows_below_required_rejected(self) -> None:
        from pgsample.core.config import PgSampleSettings, SamplingSettings

        with pytest.raises(ValidationError, match="must be >="):
            PgSampleSettings(sampling=SamplingSettings(required_rows=5, max_rows=2))


class TestRateLimitSettings:
    def test_defaults_are_100_per_15_minutes(self) -> None:
        from pgsample.core.config import RateLimitSettings

        settings = RateLimitSettings()
        assert settings.enabled is True
        assert settings.requests_per_window == 100
        assert settings.window_seconds == 900

    def test_window_must_be_positive(self) -> None:
        from pgsample.core.config import RateLimitSettings

        with pytest.raises(ValidationError):
            RateLimitSettings(window_seconds=0)


class TestTelemetrySettings:
    def test_disabled_by_default(self) -> None:
        from pgsample.core.config import TelemetrySettings

        assert TelemetrySettings().enabled is False

    def test_otlp_requires_endpoint(self) -> None:
        from pgsample.core.config import TelemetrySettings

        with pytest.raises(ValidationError, match="otlp_endpoint is required"):
            TelemetrySettings(enabled=True, exporter="otlp")

    def test_console_needs_no_endpoint(self) -> None:
        from pgsample.core.config import TelemetrySettings

        assert TelemetrySettings(enabled=True, exporter="console").exporter == "console"


class TestLoadSettings:
    """Loading from YAML and environment."""

    def test_env_only(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from pgsample.core.config import load_settings

        monkeypatch.setenv("PGSAMPLE_SERVER__PORT", "9999")
        monkeypatch.setenv("PGSAMPLE_SERVER__HOSTED", "true")

        settings = load_settings()
        assert settings.server.port == 9999
        assert settings.server.hosted is True

    def test_load_from_yaml_file(self, tmp_path: Path) -> None:
        from pgsample.contracts.results import CapPolicy
        from pgsample.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text(
            """
server:
  port: 8080
sampling:
  required_rows: 3
  max_rows: 12
  cap_policy: prefer_references
rate_limit:
  enabled: false
"""
        )

        settings = load_settings(config_file)
        assert settings.server.port == 8080
        assert settings.sampling.required_rows == 3
        assert settings.sampling.max_rows == 12
        assert settings.sampling.cap_policy is CapPolicy.PREFER_REFERENCES
        assert settings.rate_limit.enabled is False
        # Untouched sections keep their defaults
        assert settings.connections.max_pools == 32

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from pgsample.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text("server:\n  port: 8080\n")
        monkeypatch.setenv("PGSAMPLE_SERVER__PORT", "8181")

        assert load_settings(config_file).server.port == 8181

    def test_env_var_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from pgsample.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text(
            'schema_dump:\n  binary: "${TEST_PG_DUMP_PATH}"\ntelemetry:\n  service_name: "${MISSING_NAME:-pgsample-dev}"\n'
        )
        monkeypatch.setenv("TEST_PG_DUMP_PATH", "/opt/pg/bin/pg_dump")
        monkeypatch.delenv("MISSING_NAME", raising=False)

        settings = load_settings(config_file)
        assert settings.schema_dump.binary == "/opt/pg/bin/pg_dump"
        assert settings.telemetry.service_name == "pgsample-dev"

    def test_load_validates_schema(self, tmp_path: Path) -> None:
        from pgsample.core.config import load_settings

        config_file = tmp_path / "settings.yaml"
        config_file.write_text("sampling:\n  max_rows: -1\n")

        with pytest.raises(ValidationError):
            load_settings(config_file)

    def test_load_missing_file_raises_file_not_found(self, tmp_path: Path) -> None:
        from pgsample.core.config import load_settings

        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_settings(tmp_path / "nonexistent.yaml")


class TestExpandEnvVars:
    def test_nested_and_list_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from pgsample.core.config import _expand_env_vars

        monkeypatch.setenv("REGION", "eu")
        expanded = _expand_env_vars({"a": {"b": "${REGION}"}, "c": ["${REGION}-1", 5]})

        assert expanded == {"a": {"b": "eu"}, "c": ["eu-1", 5]}

    def test_unset_without_default_kept(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from pgsample.core.config import _expand_env_vars

        monkeypatch.delenv("NOPE_NOT_SET", raising=False)

        assert _expand_env_vars({"x": "${NOPE_NOT_SET}"}) == {"x": "${NOPE_NOT_SET}"}
