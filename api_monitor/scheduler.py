"""One independent, drift-corrected polling loop per endpoint."""

from __future__ import annotations

import asyncio
import random
import time
from typing import Protocol

import structlog

from api_monitor.checker import CheckResult, Reason
from api_monitor.config import EndpointConfig, MonitorConfig
from api_monitor.notify import Notifier
from api_monitor.sink import ResultSink


logger = structlog.get_logger(__name__)


class Checker(Protocol):
    async def check(self, endpoint: EndpointConfig) -> CheckResult: ...


def compute_delay(
    interval_seconds: float,
    elapsed_seconds: float,
    jitter_seconds: float,
    *,
    min_interval_seconds: float = 5.0,
) -> float:
    """Seconds to wait before the next cycle; never negative."""
    period = max(float(min_interval_seconds), float(interval_seconds))
    return max(0.0, period - float(elapsed_seconds) + float(jitter_seconds))


def derive_http_status(result: CheckResult) -> int | None:
    """Status persisted with the event: the 2xx on success, the code on BadStatus, else null."""
    if result.success:
        return result.status_code or 200
    if result.reason is Reason.BAD_STATUS:
        return result.status_code
    return None


class MonitorWorker:
    """Owns the per-endpoint tasks.

    Cycles for one endpoint never overlap. ``stop()`` cancels every loop,
    interrupting whichever suspension point (delay or network send) it is in.
    """

    def __init__(
        self,
        config: MonitorConfig,
        checker: Checker,
        sink: ResultSink,
        notifier: Notifier,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._checker = checker
        self._sink = sink
        self._notifier = notifier
        self._rng = rng or random.Random()
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    def stop(self) -> None:
        self._stop.set()
        for task in self._tasks:
            task.cancel()

    def _jitter_seconds(self) -> float:
        return self._rng.uniform(self._config.jitter_ms_min, self._config.jitter_ms_max) / 1000.0

    async def run(self) -> None:
        endpoints = self._config.enabled_endpoints()
        for ep in self._config.endpoints:
            if ep.disabled:
                logger.info("Endpoint disabled, not scheduling", endpoint=ep.name)
        logger.info("API monitor starting", endpoints=len(endpoints))

        if not endpoints:
            logger.warning("No endpoints configured. Nothing to do.")
            await self._stop.wait()
            return

        self._tasks = [
            asyncio.create_task(self.run_endpoint_loop(ep), name=f"monitor:{ep.name}") for ep in endpoints
        ]
        try:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            for task in self._tasks:
                task.cancel()
            logger.info("API monitor stopped")

    async def run_once(self) -> list[CheckResult]:
        """Runs a single cycle for every enabled endpoint concurrently."""
        endpoints = self._config.enabled_endpoints()
        return list(await asyncio.gather(*(self.run_cycle(ep) for ep in endpoints)))

    async def run_endpoint_loop(self, endpoint: EndpointConfig) -> None:
        logger.info(
            "Starting monitor",
            endpoint=endpoint.name,
            interval_s=endpoint.interval_seconds,
            method=endpoint.method,
            url=endpoint.display_url,
        )
        while not self._stop.is_set():
            started = time.monotonic()
            await self.run_cycle(endpoint)

            delay = compute_delay(
                endpoint.interval_seconds,
                time.monotonic() - started,
                self._jitter_seconds(),
                min_interval_seconds=self._config.min_interval_seconds,
            )
            if delay <= 0:
                continue
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self, endpoint: EndpointConfig) -> CheckResult:
        try:
            result = await self._checker.check(endpoint)
        except Exception as exc:
            result = CheckResult.from_exception(endpoint.name, exc)

        environment = self._config.environment_for(endpoint)
        if not result.success:
            logger.warning(
                "API check failed",
                endpoint=endpoint.name,
                reason=result.reason.value,
                details=result.details,
            )
            try:
                await self._notifier.notify_failure(endpoint, result, environment=environment)
            except Exception:
                logger.exception("Notifier failed", endpoint=endpoint.name)
        else:
            logger.info("API OK", endpoint=endpoint.name, elapsed_ms=int(result.elapsed_ms))

        try:
            await self._sink.record(endpoint, result, derive_http_status(result))
        except Exception:
            logger.exception("Result sink failed", endpoint=endpoint.name)

        return result
