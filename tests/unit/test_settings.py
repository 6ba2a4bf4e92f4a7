"""
Unit tests for settings loading and validation.
"""

import logging
from pathlib import Path

import pytest

from log_aggregator.config import (
    DeliverySettings,
    QueueSettings,
    Settings,
    Topology,
    clear_settings_cache,
    get_settings,
    load_config_file,
)
from log_aggregator.exceptions import ConfigurationError

CONFIG_YAML = """
storage:
  landing_root: /tmp/landing
  sink_root: /tmp/sink
resource_map:
  my-alb: alb
  my-distribution: cf
queue:
  backend: sqlite
  max_receives: 5
dispatcher:
  workers: 4
delivery:
  size_threshold_bytes: 1024
  time_threshold_seconds: 60
  circuit_failure_threshold: 3
"""


@pytest.fixture(autouse=True)
def _clear_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestSettingsFromDict:
    """Tests for building settings from a config mapping."""

    def test_defaults(self) -> None:
        """Test missing sections fall back to defaults."""
        settings = Settings.from_dict({"resource_map": {"a": "alb"}})

        assert settings.landing_root == "data/landing"
        assert settings.queue.visibility_timeout_seconds == 300.0
        assert settings.queue.max_receives == 3
        assert settings.dispatcher.max_line_failure_ratio == 0.5
        assert settings.delivery.partition_template == (
            "{resource_type}/{yyyy}/{mm}/{dd}/{batch_id}.gz"
        )

    def test_resource_map_forms(self) -> None:
        """Test both the mapping and list forms of resource_map."""
        as_mapping = Settings.from_dict({"resource_map": {"a": "alb", "b": "nlb"}})
        as_list = Settings.from_dict(
            {
                "resource_map": [
                    {"resource_name": "a", "format_kind": "alb"},
                    ["b", "nlb"],
                ]
            }
        )

        assert as_mapping.resource_pairs() == [("a", "alb"), ("b", "nlb")]
        assert as_list.resource_pairs() == [("a", "alb"), ("b", "nlb")]

    def test_topology_pairs_appended(self) -> None:
        """Test topology resources extend the explicit map."""
        settings = Settings.from_dict(
            {
                "resource_map": {"legacy": "clf"},
                "topology": {"service_name": "shop", "alb_name": "shop-alb"},
            }
        )

        assert settings.resource_pairs() == [("legacy", "clf"), ("shop-alb", "alb")]

    def test_topology_requires_service_name(self) -> None:
        """Test a topology block without service_name is rejected."""
        with pytest.raises(ConfigurationError):
            Topology.from_dict({"alb_name": "x"})


class TestSettingsValidation:
    """Tests for validation rules."""

    def test_valid(self) -> None:
        settings = Settings(
            resource_map=[("a", "alb")],
            queue=QueueSettings(visibility_timeout_seconds=600),
        )

        assert settings.validate() == []

    def test_missing_resources(self) -> None:
        """Test an empty resource map is reported."""
        errors = Settings().validate()

        assert any("resource_map" in e for e in errors)

    def test_invalid_values(self) -> None:
        """Test out-of-range values are reported per section."""
        settings = Settings(
            resource_map=[("a", "alb")],
            queue=QueueSettings(backend="redis", max_receives=0),
            delivery=DeliverySettings(
                partition_template="{resource_type}/static.gz",
                circuit_failure_threshold=0,
            ),
        )

        errors = settings.validate()

        assert any("queue.backend" in e for e in errors)
        assert any("delivery.circuit_failure_threshold" in e for e in errors)
        assert any("queue.max_receives" in e for e in errors)
        assert any("partition_template must contain {batch_id}" in e for e in errors)

    def test_visibility_below_flush_age_warns(self, caplog) -> None:
        """Test a visibility timeout not above the flush age logs a warning."""
        settings = Settings(
            resource_map=[("a", "alb")],
            queue=QueueSettings(visibility_timeout_seconds=60),
            delivery=DeliverySettings(time_threshold_seconds=300),
        )

        with caplog.at_level(logging.WARNING):
            errors = settings.validate()

        assert errors == []
        assert "duplicate processing is likely" in caplog.text


class TestSettingsFromEnv:
    """Tests for environment variable configuration."""

    def test_from_env(self, monkeypatch) -> None:
        """Test env vars populate every section."""
        monkeypatch.setenv("RESOURCE_MAP", '{"my-nlb": "nlb"}')
        monkeypatch.setenv("SINK_ROOT", "/var/sink")
        monkeypatch.setenv("QUEUE_MAX_RECEIVES", "7")
        monkeypatch.setenv("DELIVERY_TIME_THRESHOLD", "45")

        settings = Settings.from_env()

        assert settings.resource_pairs() == [("my-nlb", "nlb")]
        assert settings.sink_root == "/var/sink"
        assert settings.queue.max_receives == 7
        assert settings.delivery.time_threshold_seconds == 45.0

    def test_invalid_numbers_use_defaults(self, monkeypatch) -> None:
        """Test unparsable numbers fall back to defaults."""
        monkeypatch.setenv("DISPATCHER_WORKERS", "many")

        assert Settings.from_env().dispatcher.workers == 2

    def test_invalid_resource_map_ignored(self, monkeypatch, caplog) -> None:
        """Test malformed RESOURCE_MAP JSON is ignored with a warning."""
        monkeypatch.setenv("RESOURCE_MAP", "{broken")

        with caplog.at_level(logging.WARNING):
            settings = Settings.from_env()

        assert settings.resource_map == []
        assert "Ignoring invalid RESOURCE_MAP" in caplog.text


class TestConfigFile:
    """Tests for YAML config loading."""

    def test_load_config_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        config = load_config_file(path)

        assert config["queue"]["backend"] == "sqlite"

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        """Test a YAML list document is rejected."""
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config_file(path)

    def test_get_settings_from_file(self, tmp_path: Path) -> None:
        """Test get_settings reads the given file."""
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        settings = get_settings(str(path))

        assert settings.landing_root == "/tmp/landing"
        assert settings.queue.backend == "sqlite"
        assert settings.queue.max_receives == 5
        assert settings.dispatcher.workers == 4
        assert settings.delivery.size_threshold_bytes == 1024
        assert settings.delivery.circuit_failure_threshold == 3
        assert settings.delivery.circuit_recovery_seconds == 30.0
        assert settings.resource_pairs() == [("my-alb", "alb"), ("my-distribution", "cf")]

    def test_get_settings_cached(self, tmp_path: Path) -> None:
        """Test settings are cached until the cache is cleared."""
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML)

        assert get_settings(str(path)) is get_settings(str(path))

        first = get_settings(str(path))
        clear_settings_cache()
        assert get_settings(str(path)) is not first

    def test_missing_file_falls_back_to_env(self, tmp_path: Path, monkeypatch) -> None:
        """Test env vars are used when the config file is absent."""
        monkeypatch.setenv("LANDING_ROOT", "/env/landing")

        settings = get_settings(str(tmp_path / "absent.yaml"))

        assert settings.landing_root == "/env/landing"
