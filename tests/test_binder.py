from __future__ import annotations

import sqlite3
from pathlib import Path

import httpx
import pytest

from api_monitor.binder import DataBinder, substitute
from api_monitor.config import EndpointConfig, MonitorConfig
from api_monitor.errors import ConfigurationError
from api_monitor.secret_resolver import SecretResolver
from api_monitor.store import SqliteStore


class _RecordingQueries:
    def __init__(self, values: dict[str, str]) -> None:
        self.values = values
        self.calls: list[str] = []

    async def run_queries(self, data_source_key, queries):
        self.calls.append(data_source_key)
        return {q.name: self.values[q.name] for q in queries if q.name in self.values}


def test_substitute_encodes_url_values() -> None:
    url = substitute("https://x/orders/{OrderNo}", {"orderno": "42 "}, encode=True)
    assert url == "https://x/orders/42%20"


def test_substitute_unresolved_token_becomes_empty() -> None:
    assert substitute("https://x/{Missing}/y", {}, encode=True) == "https://x//y"


def test_substitute_raw_and_encoded_differ_for_reserved_characters() -> None:
    tokens = {"q": "a/b&c"}
    assert substitute("{q}", tokens) == "a/b&c"
    assert substitute("{q}", tokens, encode=True) == "a%2Fb%26c"


def test_substitute_ignores_non_token_braces() -> None:
    assert substitute('{"id": "{Id}"}', {"id": "7"}) == '{"id": "7"}'


@pytest.mark.asyncio
async def test_no_binding_uses_url_as_is() -> None:
    queries = _RecordingQueries({})
    bound = await DataBinder(queries).bind(EndpointConfig(name="svc", url="https://x/health"))
    assert bound.url == "https://x/health"
    assert bound.body is None
    assert bound.apply_headers is None
    assert queries.calls == []


@pytest.mark.asyncio
async def test_binding_materializes_url_body_and_headers() -> None:
    queries = _RecordingQueries({"LatestOrderNo": "A/1 2"})
    ep = EndpointConfig(
        name="svc",
        url="https://x/orders",
        binding={
            "data_source": "main",
            "queries": [{"name": "LatestOrderNo", "sql": "SELECT 1"}],
            "url_template": "https://x/orders/{latestorderno}?q={Other}",
            "body_template": '{"order": "{LatestOrderNo}"}',
            "header_templates": {"X-Test-Id": "{LatestOrderNo}"},
        },
    )
    bound = await DataBinder(queries).bind(ep)
    assert bound.url == "https://x/orders/A%2F1%202?q="
    assert bound.body == b'{"order": "A/1 2"}'

    headers = httpx.Headers()
    assert bound.apply_headers is not None
    bound.apply_headers(headers)
    assert headers["X-Test-Id"] == "A/1 2"
    assert queries.calls == ["main"]


@pytest.mark.asyncio
async def test_binding_without_url_template_keeps_endpoint_url() -> None:
    ep = EndpointConfig(name="svc", url="https://x/static", binding={"body_template": "{}"})
    bound = await DataBinder(_RecordingQueries({})).bind(ep)
    assert bound.url == "https://x/static"
    assert bound.body == b"{}"


@pytest.mark.asyncio
async def test_binding_against_sqlite_data_source(tmp_path: Path) -> None:
    db = tmp_path / "orders.db"
    conn = sqlite3.connect(db)
    conn.execute("CREATE TABLE orders (order_no INTEGER)")
    conn.executemany("INSERT INTO orders VALUES (?)", [(40,), (42,)])
    conn.commit()
    conn.close()

    config = MonitorConfig(data_sources={"Main": {"provider": "sqlite", "connection_string": str(db)}})
    ep = EndpointConfig(
        name="svc",
        url="https://x/orders",
        binding={
            "data_source": "main",
            "queries": [
                {"name": "LatestOrderNo", "sql": "SELECT MAX(order_no) FROM orders"},
                {"name": "Nothing", "sql": "SELECT order_no FROM orders WHERE order_no < 0"},
            ],
            "url_template": "https://x/orders/{LatestOrderNo}/{Nothing}",
        },
    )
    bound = await DataBinder(SqliteStore(config, SecretResolver())).bind(ep)
    assert bound.url == "https://x/orders/42/"


@pytest.mark.asyncio
async def test_binding_with_unknown_data_source_is_a_configuration_error() -> None:
    ep = EndpointConfig(
        name="svc",
        url="https://x",
        binding={"data_source": "nope", "queries": [{"name": "A", "sql": "SELECT 1"}]},
    )
    with pytest.raises(ConfigurationError, match="'nope' not found"):
        await DataBinder(SqliteStore(MonitorConfig(), SecretResolver())).bind(ep)
