"""Auth profile merging and request decoration."""

from __future__ import annotations

from enum import Enum

import httpx

from api_monitor.config import AuthConfig
from api_monitor.tokens import TokenCache


DEFAULT_API_KEY_HEADER = "X-API-Key"

_AUTH_FIELDS = ("type", "header", "value", "token_url", "client_id", "client_secret", "scope", "resource")


class AuthType(str, Enum):
    NONE = "None"
    API_KEY = "ApiKey"
    OAUTH2 = "OAuth2"

    @classmethod
    def parse(cls, raw: str | None) -> "AuthType":
        tag = (raw or "").strip().lower()
        if tag in {"apikey", "api_key", "api-key"}:
            return cls.API_KEY
        if tag in {"oauth2", "oauth", "aad", "bearer"}:
            return cls.OAUTH2
        return cls.NONE


def _take(endpoint_value: str | None, profile_value: str | None) -> str | None:
    if endpoint_value is not None and endpoint_value.strip():
        return endpoint_value
    return profile_value


def merge_auth(endpoint_auth: AuthConfig | None, profile: AuthConfig | None) -> AuthConfig:
    """Field-by-field merge; a non-blank endpoint value wins over the profile value."""
    ep = endpoint_auth or AuthConfig()
    prof = profile or AuthConfig()
    merged = {name: _take(getattr(ep, name), getattr(prof, name)) for name in _AUTH_FIELDS}
    if not (merged["type"] or "").strip():
        merged["type"] = AuthType.NONE.value
    return AuthConfig(**merged)


class AuthApplier:
    """Applies a resolved ``AuthConfig`` to outgoing request headers."""

    def __init__(self, token_cache: TokenCache) -> None:
        self._tokens = token_cache

    async def apply(self, headers: httpx.Headers, cfg: AuthConfig) -> None:
        kind = AuthType.parse(cfg.type)
        if kind is AuthType.API_KEY:
            name = cfg.header if (cfg.header or "").strip() else DEFAULT_API_KEY_HEADER
            if (cfg.value or "").strip() and name not in headers:
                headers[name] = cfg.value
        elif kind is AuthType.OAUTH2:
            token = await self._tokens.get_token(cfg)
            if token:
                headers["Authorization"] = f"Bearer {token}"
