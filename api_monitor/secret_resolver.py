"""Secret indirection: ``env:NAME``, ``kv:name`` / ``kv:name#version`` or a literal value."""

from __future__ import annotations

import asyncio
import os
from typing import Optional, Protocol

import httpx
import structlog

from api_monitor.config import AuthConfig, VaultConfig
from api_monitor.errors import VaultError
from api_monitor.tokens import TokenCache


logger = structlog.get_logger(__name__)

ENV_PREFIX = "env:"
VAULT_PREFIX = "kv:"


class SecretBackend(Protocol):
    async def get_secret(self, name: str, version: Optional[str] = None) -> str: ...


class KeyVaultClient:
    """Reads secrets from an Azure Key Vault style REST API."""

    def __init__(self, config: VaultConfig, http_client: httpx.AsyncClient, token_cache: TokenCache) -> None:
        self._config = config
        self._http = http_client
        self._tokens = token_cache
        # Vault credentials themselves may only use env: or literal values.
        self._credentials = AuthConfig(
            type="OAuth2",
            token_url=config.token_url,
            client_id=_resolve_local(config.client_id),
            client_secret=_resolve_local(config.client_secret),
            scope=config.scope,
        )

    async def get_secret(self, name: str, version: Optional[str] = None) -> str:
        base = self._config.url.rstrip("/")
        url = f"{base}/secrets/{name}/{version}" if version else f"{base}/secrets/{name}"
        token = await self._tokens.get_token(self._credentials)
        resp = await self._http.get(
            url,
            params={"api-version": self._config.api_version},
            headers={"Authorization": f"Bearer {token}"},
        )
        if not resp.is_success:
            raise VaultError(name, resp.status_code, resp.text or "")
        data = resp.json()
        return str(data.get("value") or "")


def _resolve_local(value: str | None) -> str | None:
    if value and value[: len(ENV_PREFIX)].lower() == ENV_PREFIX:
        return os.getenv(value[len(ENV_PREFIX):])
    return value


class SecretResolver:
    """Resolves secret references, caching vault lookups for the process lifetime.

    Vault secrets are treated as immutable per name+version, so each
    reference is fetched at most once. ``env:`` references are read on every
    call. Without a vault backend ``kv:`` references resolve to ``None``.
    """

    def __init__(self, vault: SecretBackend | None = None) -> None:
        self._vault = vault
        self._cache: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def resolve(self, value: str | None) -> str | None:
        if value is None or not value.strip():
            return value

        prefix = value[:4].lower()
        if prefix == ENV_PREFIX:
            return os.getenv(value[len(ENV_PREFIX):])

        if value[:3].lower() == VAULT_PREFIX:
            if self._vault is None:
                return None
            ref = value[len(VAULT_PREFIX):]
            key = ref.casefold()
            if key in self._cache:
                return self._cache[key]
            lock = self._locks.setdefault(key, asyncio.Lock())
            async with lock:
                if key in self._cache:
                    return self._cache[key]
                name, _, version = ref.partition("#")
                secret = await self._vault.get_secret(name, version or None)
                self._cache[key] = secret
                logger.debug("Vault secret cached", name=name, has_version=bool(version))
                return secret

        return value

    async def resolve_auth(self, cfg: AuthConfig) -> AuthConfig:
        """Copy of ``cfg`` with the secret-bearing fields resolved."""
        return cfg.model_copy(
            update={
                "value": await self.resolve(cfg.value),
                "client_id": await self.resolve(cfg.client_id),
                "client_secret": await self.resolve(cfg.client_secret),
            }
        )
