from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from api_monitor.config import EndpointConfig, MonitorConfig, load_config


EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "config" / "api-monitor.yaml"


def test_example_config_loads() -> None:
    config = load_config(str(EXAMPLE_CONFIG))
    assert config.endpoints, "example config has no endpoints"

    for ep in config.endpoints:
        assert ep.name
        assert ep.url.startswith(("http://", "https://"))
        if ep.auth_ref:
            assert config.auth_profile(ep.auth_ref) is not None, f"{ep.name} references unknown profile"
        if ep.binding is not None and ep.binding.queries:
            assert config.data_source(ep.binding.data_source) is not None

    assert config.data_source(config.results_data_source) is not None
    assert [ep.name for ep in config.enabled_endpoints()] == ["public-health", "latest-order"]


def test_defaults() -> None:
    config = MonitorConfig()
    assert config.default_timeout_seconds == 10
    assert config.default_environment == "Prod"
    assert config.retry.max_retries == 3
    assert config.retry.backoff_base_ms == 200
    ep = EndpointConfig(name="a", url="https://a")
    assert ep.method == "GET"
    assert ep.interval_seconds == 300
    assert ep.success.status_codes == (200,)
    assert ep.success.case_insensitive_compare is True
    assert ep.display_url == "https://a"
    assert config.environment_for(ep) == "Prod"


def test_duplicate_endpoint_names_rejected() -> None:
    with pytest.raises(ValidationError, match="Duplicate endpoint name"):
        MonitorConfig(endpoints=[{"name": "a", "url": "https://a"}, {"name": "a", "url": "https://b"}])


def test_empty_status_codes_rejected() -> None:
    with pytest.raises(ValidationError):
        EndpointConfig(name="a", url="https://a", success={"status_codes": []})


def test_unknown_keys_rejected() -> None:
    with pytest.raises(ValidationError):
        EndpointConfig(name="a", url="https://a", intervl_seconds=10)


def test_config_is_immutable() -> None:
    ep = EndpointConfig(name="a", url="https://a")
    with pytest.raises(ValidationError):
        ep.url = "https://b"


def test_profile_and_data_source_lookup_ignore_case() -> None:
    config = MonitorConfig(
        auth_profiles={"Orders-API": {"type": "OAuth2"}},
        data_sources={"Main": {"connection_string": "/tmp/x.db"}},
    )
    assert config.auth_profile("orders-api").type == "OAuth2"
    assert config.data_source("MAIN").connection_string == "/tmp/x.db"
    assert config.auth_profile("missing") is None
    assert config.auth_profile(None) is None


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = tmp_path / "monitor.yaml"
    cfg.write_text("default_environment: Prod\nendpoints: []\n", encoding="utf-8")
    monkeypatch.setenv("API_MONITOR_ENVIRONMENT", "Staging")
    monkeypatch.setenv("API_MONITOR_DEFAULT_TIMEOUT", "2.5")
    config = load_config(str(cfg))
    assert config.default_environment == "Staging"
    assert config.default_timeout_seconds == 2.5


def test_non_mapping_yaml_rejected(tmp_path: Path) -> None:
    cfg = tmp_path / "monitor.yaml"
    cfg.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_config(str(cfg))


def test_rule_collections_cannot_be_mutated_in_place() -> None:
    ep = EndpointConfig(
        name="a",
        url="https://a",
        success={"status_codes": [200, 204]},
        binding={"data_source": "main", "queries": [{"name": "n", "sql": "SELECT 1"}]},
    )
    assert ep.success.status_codes == (200, 204)
    assert isinstance(ep.binding.queries, tuple)
    with pytest.raises(AttributeError):
        ep.success.status_codes.append(500)
