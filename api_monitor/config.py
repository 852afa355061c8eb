"""Configuration for the API monitor.

The YAML file is loaded once at startup and validated into frozen pydantic
models. The resulting ``MonitorConfig`` is handed to each component's
constructor; nothing reads configuration from global state after load.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_CONFIG_PATH = "config/api-monitor.yaml"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AuthConfig(_Frozen):
    """Credential template. Used for endpoint overrides, shared profiles and the merged result."""
    type: Optional[str] = Field(default=None, description="None | ApiKey | OAuth2 | Bearer")
    header: Optional[str] = Field(default=None, description="Header name for ApiKey auth")
    value: Optional[str] = Field(default=None, description="ApiKey value or secret reference")
    token_url: Optional[str] = Field(default=None, description="OAuth2 token endpoint")
    client_id: Optional[str] = Field(default=None, description="Client id or secret reference")
    client_secret: Optional[str] = Field(default=None, description="Client secret or secret reference")
    scope: Optional[str] = Field(default=None, description="OAuth2 scope")
    resource: Optional[str] = Field(default=None, description="OAuth2 resource (used when no scope)")


class SuccessRule(_Frozen):
    status_codes: tuple[int, ...] = Field(default=(200,), description="Accepted status codes")
    json_pointer: Optional[str] = Field(default=None, description="RFC-6901 pointer, e.g. /status")
    expected_value: Optional[str] = Field(
        default=None,
        description="Expected value at the pointer. Non-string JSON is compared as compact JSON text, so booleans read true/false",
    )
    max_latency_ms: Optional[int] = Field(default=None, description="Latency budget in milliseconds")
    case_insensitive_compare: bool = Field(default=True, description="Compare expected value ignoring case")

    @field_validator("status_codes")
    @classmethod
    def _non_empty(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        if not value:
            raise ValueError("status_codes must be a non-empty list of ints")
        return value


class QuerySpec(_Frozen):
    name: str = Field(description="Token name the scalar result is bound to")
    sql: str = Field(description="Single-value query")


class DataBinding(_Frozen):
    data_source: Optional[str] = Field(default=None, description="Key into data_sources")
    queries: tuple[QuerySpec, ...] = Field(default=())
    url_template: Optional[str] = Field(default=None, description="URL with {token} placeholders")
    body_template: Optional[str] = Field(default=None, description="JSON body with {token} placeholders")
    header_templates: dict[str, str] = Field(default_factory=dict)


class DataSourceConfig(_Frozen):
    provider: str = Field(default="sqlite", description="Only 'sqlite' is supported")
    connection_string: str = Field(default="", description="Database path or secret reference")


class EndpointConfig(_Frozen):
    name: str
    url: str
    method: str = Field(default="GET")
    interval_seconds: int = Field(default=300, ge=1, description="Polling interval (floored at min_interval_seconds)")
    environment: Optional[str] = None
    auth: AuthConfig = Field(default_factory=AuthConfig)
    auth_ref: Optional[str] = Field(default=None, description="Name of a shared auth profile")
    success: SuccessRule = Field(default_factory=SuccessRule)
    binding: Optional[DataBinding] = None
    tags: dict[str, str] = Field(default_factory=dict)
    disabled: bool = False

    @field_validator("method")
    @classmethod
    def _upper(cls, value: str) -> str:
        return (value or "GET").strip().upper()

    @property
    def display_url(self) -> str:
        """URL as configured (template when bound), safe to persist and log."""
        if self.binding is not None and self.binding.url_template:
            return self.binding.url_template
        return self.url


class RetryConfig(_Frozen):
    max_retries: int = Field(default=3, ge=0)
    backoff_base_ms: int = Field(default=200, ge=0)


class VaultConfig(_Frozen):
    url: str = Field(description="Vault base URL, e.g. https://myvault.vault.azure.net")
    token_url: str
    client_id: str
    client_secret: str
    scope: str = "https://vault.azure.net/.default"
    api_version: str = "7.4"


class NotificationConfig(_Frozen):
    telegram_bot_token: str = "env:TELEGRAM_BOT_TOKEN"
    telegram_chat_id: str = "env:TELEGRAM_CHAT_ID"


class MonitorConfig(_Frozen):
    """Process-wide options for the monitor."""

    default_timeout_seconds: float = Field(default=10.0, gt=0, description="Per-attempt HTTP timeout")
    default_environment: str = Field(default="Prod")
    default_auth_ref: Optional[str] = Field(default=None, description="Profile used when an endpoint has no auth_ref")
    results_data_source: str = Field(default="main", description="Data source receiving check events")
    min_interval_seconds: float = Field(default=5.0, ge=0)
    jitter_ms_min: int = Field(default=250, ge=0)
    jitter_ms_max: int = Field(default=1000, ge=0)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    endpoints: list[EndpointConfig] = Field(default_factory=list)
    auth_profiles: dict[str, AuthConfig] = Field(default_factory=dict)
    data_sources: dict[str, DataSourceConfig] = Field(default_factory=dict)
    vault: Optional[VaultConfig] = None
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    @model_validator(mode="after")
    def _check(self) -> "MonitorConfig":
        seen: set[str] = set()
        for ep in self.endpoints:
            if ep.name in seen:
                raise ValueError(f"Duplicate endpoint name: {ep.name}")
            seen.add(ep.name)
        if self.jitter_ms_min > self.jitter_ms_max:
            raise ValueError("jitter_ms_min must be <= jitter_ms_max")
        return self

    def enabled_endpoints(self) -> list[EndpointConfig]:
        return [ep for ep in self.endpoints if not ep.disabled]

    def auth_profile(self, name: str | None) -> AuthConfig | None:
        return _lookup_ci(self.auth_profiles, name)

    def data_source(self, name: str | None) -> DataSourceConfig | None:
        return _lookup_ci(self.data_sources, name)

    def environment_for(self, endpoint: EndpointConfig) -> str:
        return endpoint.environment or self.default_environment


def _lookup_ci(items: dict[str, Any], name: str | None) -> Any:
    key = (name or "").strip()
    if not key:
        return None
    if key in items:
        return items[key]
    folded = key.casefold()
    for k, v in items.items():
        if k.casefold() == folded:
            return v
    return None


def load_config(config_path: Optional[str] = None) -> MonitorConfig:
    """Load configuration from a YAML file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("API_MONITOR_CONFIG", DEFAULT_CONFIG_PATH)

    config_data: dict[str, Any] = {}
    path = Path(config_path)
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError("Config YAML must be a mapping")

    env_overrides = {
        "default_environment": os.getenv("API_MONITOR_ENVIRONMENT"),
        "default_timeout_seconds": os.getenv("API_MONITOR_DEFAULT_TIMEOUT"),
        "results_data_source": os.getenv("API_MONITOR_RESULTS_DATA_SOURCE"),
    }
    for key, value in env_overrides.items():
        if value is not None and value.strip():
            if key == "default_timeout_seconds":
                config_data[key] = float(value)
            else:
                config_data[key] = value.strip()

    return MonitorConfig(**config_data)
