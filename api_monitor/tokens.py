"""Client-credentials bearer token cache shared by all endpoint loops."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

import httpx
import structlog

from api_monitor.config import AuthConfig
from api_monitor.errors import TokenAcquisitionError


logger = structlog.get_logger(__name__)

REFRESH_MARGIN_SECONDS = 120.0
DEFAULT_EXPIRES_IN_SECONDS = 3600


@dataclass(frozen=True)
class TokenCacheEntry:
    token: str
    expires_at: float  # unix seconds


def token_cache_key(cfg: AuthConfig) -> str:
    return f"{cfg.token_url or ''}|{cfg.client_id or ''}|{cfg.scope or ''}|{cfg.resource or ''}"


def build_token_form(cfg: AuthConfig) -> dict[str, str]:
    form = {
        "grant_type": "client_credentials",
        "client_id": cfg.client_id or "",
        "client_secret": cfg.client_secret or "",
    }
    if (cfg.scope or "").strip():
        form["scope"] = cfg.scope
    elif (cfg.resource or "").strip():
        form["resource"] = cfg.resource
    return form


class TokenCache:
    """Caches bearer tokens per credential set.

    A cached token is reused while it has more than two minutes of validity
    left. Entries are replaced whole, never edited. A refresh holds a lock
    for its own key only, so concurrent loops sharing a profile issue one
    token request and loops using other credentials are not held up.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        timeout_seconds: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http_client
        self._timeout = timeout_seconds
        self._clock = clock
        self._entries: dict[str, TokenCacheEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _fresh(self, key: str) -> TokenCacheEntry | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock() + REFRESH_MARGIN_SECONDS:
            return entry
        return None

    async def get_token(self, cfg: AuthConfig) -> str:
        key = token_cache_key(cfg)
        entry = self._fresh(key)
        if entry is not None:
            return entry.token

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            entry = self._fresh(key)
            if entry is not None:
                return entry.token
            entry = await self._fetch(cfg)
            self._entries[key] = entry
            return entry.token

    async def _fetch(self, cfg: AuthConfig) -> TokenCacheEntry:
        token_url = (cfg.token_url or "").strip()
        if not token_url:
            raise TokenAcquisitionError("", 0, "no token_url configured")

        resp = await self._http.post(token_url, data=build_token_form(cfg), timeout=self._timeout)
        text = resp.text or ""
        if not resp.is_success:
            raise TokenAcquisitionError(token_url, resp.status_code, text)

        data = resp.json()
        token = data["access_token"]
        try:
            expires_in = int(data.get("expires_in", DEFAULT_EXPIRES_IN_SECONDS))
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN_SECONDS

        logger.debug("Token acquired", token_url=token_url, expires_in=expires_in)
        return TokenCacheEntry(token=str(token), expires_at=self._clock() + expires_in)
