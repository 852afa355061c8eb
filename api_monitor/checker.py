"""Single probe of one endpoint and success-rule evaluation."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog

from api_monitor.auth import AuthApplier, merge_auth
from api_monitor.binder import JSON_CONTENT_TYPE, DataBinder
from api_monitor.config import EndpointConfig, MonitorConfig, SuccessRule
from api_monitor.secret_resolver import SecretResolver


logger = structlog.get_logger(__name__)

BAD_STATUS_BODY_PREVIEW = 600
JSON_BODY_PREVIEW = 400
ACTUAL_VALUE_PREVIEW = 120

_MISSING = object()


class Reason(str, Enum):
    OK = "OK"
    BAD_STATUS = "BadStatus"
    SLOW = "Slow"
    JSON_MISMATCH = "JsonMismatch"
    EXCEPTION = "Exception"


@dataclass(frozen=True)
class CheckResult:
    name: str
    success: bool
    reason: Reason
    details: str
    elapsed_ms: float
    status_code: int | None = None

    @classmethod
    def ok(cls, name: str, elapsed_ms: float, status_code: int | None = None) -> "CheckResult":
        return cls(name, True, Reason.OK, "", elapsed_ms, status_code)

    @classmethod
    def fail(
        cls, name: str, reason: Reason, details: str, elapsed_ms: float, status_code: int | None = None
    ) -> "CheckResult":
        return cls(name, False, reason, details, elapsed_ms, status_code)

    @classmethod
    def from_exception(cls, name: str, exc: BaseException) -> "CheckResult":
        return cls(name, False, Reason.EXCEPTION, f"{type(exc).__name__}: {exc}", 0.0, None)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def resolve_json_pointer(doc: Any, pointer: str) -> tuple[bool, Any]:
    """
    Walks ``pointer`` through ``doc``:
      - "/a/b" descends object keys, "/items/0" indexes arrays
      - "~1" decodes to "/" and "~0" to "~"
    Returns (found, value).
    """
    if not pointer.startswith("/"):
        return False, None
    cur = doc
    for raw in pointer.split("/"):
        if not raw:
            continue
        token = raw.replace("~1", "/").replace("~0", "~")
        if isinstance(cur, dict):
            if token not in cur:
                return False, None
            cur = cur[token]
        elif isinstance(cur, list):
            if not (token.isascii() and token.isdigit()) or int(token) >= len(cur):
                return False, None
            cur = cur[int(token)]
        else:
            return False, None
    return True, cur


def stringify_json_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def values_match(actual: str, expected: str, *, case_insensitive: bool) -> bool:
    if case_insensitive:
        return actual.casefold() == expected.casefold()
    return actual == expected


def evaluate_response(
    name: str,
    rule: SuccessRule,
    *,
    status_code: int,
    headers: httpx.Headers,
    body: str,
    elapsed_ms: float,
) -> CheckResult:
    """Applies the status, latency and JSON checks in that order; the first failure wins."""
    if status_code not in rule.status_codes:
        detail = f"Got {status_code}"
        challenge = headers.get("www-authenticate")
        if challenge:
            detail += f" (WWW-Authenticate: {challenge})"
        if body and body.strip():
            detail += f" Body: {_truncate(body, BAD_STATUS_BODY_PREVIEW)}"
        return CheckResult.fail(name, Reason.BAD_STATUS, detail, elapsed_ms, status_code)

    if rule.max_latency_ms is not None and elapsed_ms > rule.max_latency_ms:
        return CheckResult.fail(
            name, Reason.SLOW, f"{int(elapsed_ms)}ms > {rule.max_latency_ms}ms", elapsed_ms, status_code
        )

    pointer = rule.json_pointer
    if pointer and pointer.strip():
        doc = json.loads(body)
        preview = _truncate(body, JSON_BODY_PREVIEW)
        found, value = resolve_json_pointer(doc, pointer)
        if not found:
            return CheckResult.fail(
                name,
                Reason.JSON_MISMATCH,
                f"Pointer '{pointer}' not found. Body preview: {preview}",
                elapsed_ms,
                status_code,
            )
        expected = rule.expected_value
        if expected:
            actual = stringify_json_value(value)
            if not values_match(actual, expected, case_insensitive=rule.case_insensitive_compare):
                return CheckResult.fail(
                    name,
                    Reason.JSON_MISMATCH,
                    f"Pointer '{pointer}' value: '{_truncate(actual, ACTUAL_VALUE_PREVIEW)}' | "
                    f"Expected: '{expected}'. Body preview: {preview}",
                    elapsed_ms,
                    status_code,
                )

    return CheckResult.ok(name, elapsed_ms, status_code)


def _read_text(response: httpx.Response) -> str:
    try:
        return response.text or ""
    except (UnicodeDecodeError, LookupError, httpx.ResponseNotRead):
        return ""


class HttpApiChecker:
    """Runs one attempt: bind, authenticate, send, evaluate.

    Errors raised while binding, authenticating, sending or parsing the JSON
    body propagate to the caller, which turns them into ``Exception`` results.
    """

    def __init__(
        self,
        config: MonitorConfig,
        http_client: httpx.AsyncClient,
        binder: DataBinder,
        secrets: SecretResolver,
        auth: AuthApplier,
    ) -> None:
        self._config = config
        self._http = http_client
        self._binder = binder
        self._secrets = secrets
        self._auth = auth

    async def check(self, endpoint: EndpointConfig) -> CheckResult:
        bound = await self._binder.bind(endpoint)

        headers = httpx.Headers()
        if bound.body is not None:
            headers["Content-Type"] = JSON_CONTENT_TYPE
        if bound.apply_headers is not None:
            bound.apply_headers(headers)

        auth_ref = endpoint.auth_ref or self._config.default_auth_ref
        merged = merge_auth(endpoint.auth, self._config.auth_profile(auth_ref))
        effective = await self._secrets.resolve_auth(merged)
        logger.debug(
            "Auth materialized",
            endpoint=endpoint.name,
            auth_ref=auth_ref,
            auth_type=effective.type,
            has_client_id=bool(effective.client_id),
            has_client_secret=bool(effective.client_secret),
        )
        await self._auth.apply(headers, effective)

        request = self._http.build_request(
            endpoint.method,
            bound.url,
            content=bound.body,
            headers=headers,
            timeout=self._config.default_timeout_seconds,
        )

        started = time.perf_counter()
        response = await self._http.send(request)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        return evaluate_response(
            endpoint.name,
            endpoint.success,
            status_code=response.status_code,
            headers=response.headers,
            body=_read_text(response),
            elapsed_ms=elapsed_ms,
        )
