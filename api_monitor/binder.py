"""Materialises an endpoint's request from live query values."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Protocol
from urllib.parse import quote

import httpx

from api_monitor.config import EndpointConfig, QuerySpec


TOKEN_RE = re.compile(r"\{([A-Za-z0-9_]+)\}")

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

HeaderSetter = Callable[[httpx.Headers], None]


class QueryService(Protocol):
    async def run_queries(self, data_source_key: str, queries: Iterable[QuerySpec]) -> dict[str, str]: ...


@dataclass(frozen=True)
class BoundRequest:
    url: str
    body: bytes | None = None
    apply_headers: HeaderSetter | None = None


def substitute(template: str, tokens: Mapping[str, str], *, encode: bool = False) -> str:
    """Replaces ``{name}`` placeholders; unknown names become ``""``.

    ``tokens`` keys are matched case-insensitively (they are expected casefolded).
    """

    def _repl(m: re.Match[str]) -> str:
        value = tokens.get(m.group(1).casefold())
        if value is None:
            return ""
        return quote(value, safe="-_.~") if encode else value

    return TOKEN_RE.sub(_repl, template)


class DataBinder:
    def __init__(self, queries: QueryService) -> None:
        self._queries = queries

    async def bind(self, endpoint: EndpointConfig) -> BoundRequest:
        binding = endpoint.binding
        if binding is None:
            return BoundRequest(url=endpoint.url)

        tokens: dict[str, str] = {}
        if binding.queries and (binding.data_source or "").strip():
            raw = await self._queries.run_queries(binding.data_source, binding.queries)
            tokens = {str(k).casefold(): ("" if v is None else str(v)) for k, v in raw.items()}

        url = substitute(binding.url_template, tokens, encode=True) if (binding.url_template or "").strip() else endpoint.url

        body = None
        if (binding.body_template or "").strip():
            body = substitute(binding.body_template, tokens).encode("utf-8")

        apply_headers = None
        if binding.header_templates:
            resolved = {name: substitute(value, tokens) for name, value in binding.header_templates.items()}

            def apply_headers(headers: httpx.Headers) -> None:
                for name, value in resolved.items():
                    if name not in headers:
                        headers[name] = value

        return BoundRequest(url=url, body=body, apply_headers=apply_headers)
