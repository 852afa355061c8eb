"""Failure alert delivery (best effort)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from api_monitor.checker import CheckResult
from api_monitor.config import EndpointConfig


logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900
ALERT_DETAIL_MAX_LEN = 800


class Notifier(Protocol):
    async def notify_failure(self, endpoint: EndpointConfig, result: CheckResult, *, environment: str) -> bool: ...


def build_failure_message(endpoint: EndpointConfig, result: CheckResult, *, environment: str) -> str:
    lines = [
        "API check FAILED ❌",
        f"Endpoint: {endpoint.name}",
        f"Environment: {environment}",
        f"Request: {endpoint.method} {endpoint.display_url}",
        f"Reason: {result.reason.value}",
    ]
    if result.status_code is not None:
        lines.append(f"HTTP status: {result.status_code}")
    if result.elapsed_ms:
        lines.append(f"Latency: {int(result.elapsed_ms)}ms")
    if endpoint.tags:
        lines.append("Tags: " + ", ".join(f"{k}={v}" for k, v in sorted(endpoint.tags.items())))
    if result.details:
        detail = result.details
        if len(detail) > ALERT_DETAIL_MAX_LEN:
            detail = detail[:ALERT_DETAIL_MAX_LEN] + "..."
        lines.append(f"Details: {detail}")
    return "\n".join(lines).strip()


class LogNotifier:
    """Used when no alert channel is configured; the alert only goes to the log."""

    async def notify_failure(self, endpoint: EndpointConfig, result: CheckResult, *, environment: str) -> bool:
        logger.warning(
            "Failure alert",
            endpoint=endpoint.name,
            environment=environment,
            reason=result.reason.value,
            details=result.details,
        )
        return True


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        parts.append(s[:cut].rstrip())
        s = s[cut:].lstrip()
    return parts


class TelegramNotifier:
    def __init__(self, http_client: httpx.AsyncClient, config: TelegramConfig, *, api_base: str = "https://api.telegram.org") -> None:
        self._http = http_client
        self._config = config
        self._api_base = api_base.rstrip("/")

    async def _send(self, text: str) -> bool:
        url = f"{self._api_base}/bot{self._config.bot_token}/sendMessage"
        try:
            resp = await self._http.post(url, json={"chat_id": self._config.chat_id, "text": text}, timeout=15.0)
            data = resp.json()
            ok = bool(data.get("ok"))
            if not ok:
                logger.error("Telegram rejected message", description=data.get("description"))
            return ok
        except Exception as e:
            msg = f"{type(e).__name__}: {e}"
            if self._config.bot_token:
                msg = msg.replace(self._config.bot_token, "<redacted>")
            logger.error("Telegram send failed", error=msg)
            return False

    async def notify_failure(self, endpoint: EndpointConfig, result: CheckResult, *, environment: str) -> bool:
        ok_all = True
        for part in split_telegram_message(build_failure_message(endpoint, result, environment=environment)):
            ok_all = await self._send(part) and ok_all
        return ok_all
