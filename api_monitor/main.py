from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys

import httpx
import structlog

from api_monitor.auth import AuthApplier
from api_monitor.binder import DataBinder
from api_monitor.checker import HttpApiChecker
from api_monitor.config import DEFAULT_CONFIG_PATH, MonitorConfig, load_config
from api_monitor.notify import LogNotifier, Notifier, TelegramConfig, TelegramNotifier
from api_monitor.scheduler import MonitorWorker
from api_monitor.secret_resolver import KeyVaultClient, SecretResolver
from api_monitor.sink import StoreResultSink
from api_monitor.store import SqliteStore
from api_monitor.tokens import TokenCache
from api_monitor.transport import RetryTransport


logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    level_no = getattr(logging, str(level).upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # Bearer tokens and the Telegram bot token travel in headers/URLs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_monitored_client(config: MonitorConfig) -> httpx.AsyncClient:
    transport = RetryTransport(
        httpx.AsyncHTTPTransport(),
        max_retries=config.retry.max_retries,
        backoff_base_ms=config.retry.backoff_base_ms,
    )
    return httpx.AsyncClient(transport=transport, timeout=config.default_timeout_seconds)


async def build_notifier(config: MonitorConfig, secrets: SecretResolver, http_client: httpx.AsyncClient) -> Notifier:
    bot_token = await secrets.resolve(config.notifications.telegram_bot_token)
    chat_id = await secrets.resolve(config.notifications.telegram_chat_id)
    if bot_token and chat_id:
        return TelegramNotifier(http_client, TelegramConfig(bot_token=bot_token, chat_id=chat_id))
    logger.warning("Telegram not configured; failure alerts go to the log only")
    return LogNotifier()


def build_secrets(config: MonitorConfig, aux_client: httpx.AsyncClient, token_cache: TokenCache) -> SecretResolver:
    vault = KeyVaultClient(config.vault, aux_client, token_cache) if config.vault else None
    return SecretResolver(vault)


async def run(config: MonitorConfig, *, once: bool) -> int:
    # Token, vault and Telegram calls go through aux_client, without retries.
    async with httpx.AsyncClient(timeout=config.default_timeout_seconds) as aux_client:
        async with build_monitored_client(config) as monitored_client:
            token_cache = TokenCache(aux_client, timeout_seconds=config.default_timeout_seconds)
            secrets = build_secrets(config, aux_client, token_cache)
            store = SqliteStore(config, secrets)
            checker = HttpApiChecker(config, monitored_client, DataBinder(store), secrets, AuthApplier(token_cache))
            notifier = await build_notifier(config, secrets, aux_client)
            worker = MonitorWorker(config, checker, StoreResultSink(config, store), notifier)

            if once:
                results = await worker.run_once()
                return 0 if all(r.success for r in results) else 1

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, worker.stop)
                except NotImplementedError:
                    pass
            await worker.run()
            return 0


async def print_status(config: MonitorConfig) -> int:
    async with httpx.AsyncClient(timeout=config.default_timeout_seconds) as aux_client:
        token_cache = TokenCache(aux_client, timeout_seconds=config.default_timeout_seconds)
        store = SqliteStore(config, build_secrets(config, aux_client, token_cache))
        rows = await store.latest_events()
    if not rows:
        print("No check events recorded.")
        return 0
    for row in rows:
        state = "OK  " if row["is_success"] else "FAIL"
        status = row["http_status"] if row["http_status"] is not None else "-"
        print(
            f"{state} {row['environment']:<8} {row['endpoint_name']:<30} {row['reason']:<12} "
            f"status={status} latency={row['latency_ms']}ms at={row['checked_at_utc']}"
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Scheduled HTTP API monitor")
    parser.add_argument("command", nargs="?", choices=["run", "status"], default="run")
    parser.add_argument(
        "--config",
        default=os.getenv("API_MONITOR_CONFIG", DEFAULT_CONFIG_PATH),
        help="Path to YAML config",
    )
    parser.add_argument("--once", action="store_true", help="Run one check cycle per endpoint and exit")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument("--log-format", choices=["console", "json"], default="console")
    args = parser.parse_args(argv)

    configure_logging(args.log_level, args.log_format)
    config = load_config(args.config)

    if args.command == "status":
        return asyncio.run(print_status(config))
    return asyncio.run(run(config, once=bool(args.once)))


if __name__ == "__main__":
    sys.exit(main())
