"""SQLite-backed relational capabilities: scalar queries for data binding and the check event log."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import structlog

from api_monitor.config import MonitorConfig, QuerySpec
from api_monitor.errors import ConfigurationError
from api_monitor.secret_resolver import SecretResolver


logger = structlog.get_logger(__name__)

SUPPORTED_PROVIDERS = {"sqlite"}

SCHEMA = """
CREATE TABLE IF NOT EXISTS api_check_event (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  endpoint_name TEXT NOT NULL,
  environment TEXT NOT NULL,
  url TEXT NOT NULL,
  http_method TEXT NOT NULL,
  checked_at_utc TEXT NOT NULL,
  is_success INTEGER NOT NULL CHECK(is_success IN (0, 1)),
  http_status INTEGER,
  reason TEXT NOT NULL,
  details TEXT,
  latency_ms INTEGER NOT NULL,
  json_pointer TEXT,
  expected_value TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_check_event_once
  ON api_check_event(endpoint_name, environment, checked_at_utc);

CREATE VIEW IF NOT EXISTS api_endpoint_latest AS
  SELECT e.*
  FROM api_check_event e
  WHERE e.id = (
    SELECT e2.id FROM api_check_event e2
    WHERE e2.endpoint_name = e.endpoint_name AND e2.environment = e.environment
    ORDER BY e2.checked_at_utc DESC, e2.id DESC
    LIMIT 1
  );
"""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ConfigurationError("Missing connection_string for sqlite data source")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    return conn


class SqliteStore:
    """Executes scalar queries and appends check events against configured data sources.

    Every call opens its own short-lived connection inside a worker thread so
    that a slow database never stalls the event loop driving other endpoints.
    """

    def __init__(self, config: MonitorConfig, secrets: SecretResolver) -> None:
        self._config = config
        self._secrets = secrets
        self._paths: dict[str, str] = {}
        self._schema_ready: set[str] = set()

    async def _path_for(self, data_source_key: str) -> str:
        key = data_source_key.casefold()
        if key in self._paths:
            return self._paths[key]
        ds = self._config.data_source(data_source_key)
        if ds is None:
            raise ConfigurationError(f"DataSource '{data_source_key}' not found.")
        if ds.provider.strip().lower() not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(f"Provider '{ds.provider}' not supported.")
        path = await self._secrets.resolve(ds.connection_string)
        if not path:
            raise ConfigurationError(f"DataSource '{data_source_key}' connection string did not resolve.")
        self._paths[key] = path
        return path

    async def execute_scalar(self, data_source_key: str, sql: str) -> str:
        path = await self._path_for(data_source_key)
        return await asyncio.to_thread(_scalar, path, sql)

    async def run_queries(self, data_source_key: str, queries: Iterable[QuerySpec]) -> dict[str, str]:
        """Runs each query and returns ``{query.name: value}``; keys are casefolded."""
        path = await self._path_for(data_source_key)
        specs = list(queries)
        return await asyncio.to_thread(_scalars, path, specs)

    async def append_check_event(
        self,
        *,
        endpoint_name: str,
        environment: str,
        url: str,
        method: str,
        timestamp: str,
        success: bool,
        http_status: int | None,
        reason: str,
        details: str | None,
        latency_ms: int,
        json_pointer: str | None = None,
        expected_value: str | None = None,
    ) -> None:
        path = await self._path_for(self._config.results_data_source)
        row = (
            endpoint_name,
            environment,
            url,
            method,
            timestamp,
            1 if success else 0,
            http_status,
            reason,
            details or None,
            int(latency_ms),
            json_pointer,
            expected_value,
        )
        await asyncio.to_thread(self._insert_event, path, row)

    def _insert_event(self, path: str, row: tuple[Any, ...]) -> None:
        conn = _connect(path)
        try:
            if path not in self._schema_ready:
                conn.executescript(SCHEMA)
                self._schema_ready.add(path)
            conn.execute(
                """
                INSERT OR IGNORE INTO api_check_event
                  (endpoint_name, environment, url, http_method, checked_at_utc,
                   is_success, http_status, reason, details, latency_ms, json_pointer, expected_value)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                row,
            )
        finally:
            conn.close()

    async def latest_events(self) -> list[dict[str, Any]]:
        path = await self._path_for(self._config.results_data_source)

        def _read() -> list[dict[str, Any]]:
            conn = _connect(path)
            try:
                conn.executescript(SCHEMA)
                rows = conn.execute(
                    "SELECT * FROM api_endpoint_latest ORDER BY environment, endpoint_name"
                ).fetchall()
                return [dict(r) for r in rows]
            finally:
                conn.close()

        return await asyncio.to_thread(_read)


def _scalar_on(conn: sqlite3.Connection, sql: str) -> str:
    row = conn.execute(sql).fetchone()
    if row is None or row[0] is None:
        return ""
    return str(row[0])


def _scalar(path: str, sql: str) -> str:
    conn = _connect(path)
    try:
        return _scalar_on(conn, sql)
    finally:
        conn.close()


def _scalars(path: str, queries: list[QuerySpec]) -> dict[str, str]:
    out: dict[str, str] = {}
    conn = _connect(path)
    try:
        for q in queries:
            out[q.name.casefold()] = _scalar_on(conn, q.sql)
    finally:
        conn.close()
    return out
