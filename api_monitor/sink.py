"""Persists each check outcome as one immutable event."""

from __future__ import annotations

from typing import Protocol

from api_monitor.checker import CheckResult
from api_monitor.config import EndpointConfig, MonitorConfig
from api_monitor.store import SqliteStore, utc_now_iso


class ResultSink(Protocol):
    async def record(self, endpoint: EndpointConfig, result: CheckResult, http_status: int | None) -> None: ...


class StoreResultSink:
    def __init__(self, config: MonitorConfig, store: SqliteStore) -> None:
        self._config = config
        self._store = store

    async def record(self, endpoint: EndpointConfig, result: CheckResult, http_status: int | None) -> None:
        await self._store.append_check_event(
            endpoint_name=endpoint.name,
            environment=self._config.environment_for(endpoint),
            url=endpoint.display_url,
            method=endpoint.method,
            timestamp=utc_now_iso(),
            success=result.success,
            http_status=http_status,
            reason=result.reason.value,
            details=result.details,
            latency_ms=int(result.elapsed_ms),
            json_pointer=endpoint.success.json_pointer,
            expected_value=endpoint.success.expected_value,
        )
