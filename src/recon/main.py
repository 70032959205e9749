"""Entry point for the ledger reconciliation engine.

Wires all components together, optionally embeds the FastAPI trigger API,
and runs the scheduler. When the API is enabled (default), the scheduler and
the API share a single asyncio event loop via uvicorn's programmatic API and
FastAPI's lifespan context manager.

Component wiring order (in _build_components):
1. LedgerDatabase, LedgerStore, FindingStore
2. ExchangeClient (GatewayTradeClient or BinanceClient by EXCHANGE_MODE)
3. TradeSyncWorker
4. ReconciliationScanner, FindingReview
5. OrderSnapshotCache, SettingsKeyValueStore, OrderAlertDispatcher
6. Scheduler with the periodic jobs
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from recon.alerts import (
    HubNotifier,
    LogNotifier,
    Notifier,
    OrderAlertDispatcher,
    OrderSnapshotCache,
    SettingsKeyValueStore,
)
from recon.config import AppSettings
from recon.data import FindingStore, LedgerDatabase, LedgerStore
from recon.exceptions import ReconciliationDisabled
from recon.exchange import BinanceClient, ExchangeClient, GatewayTradeClient
from recon.logging import get_logger, setup_logging
from recon.scan import FindingReview, ReconciliationScanner
from recon.scheduler import Scheduler
from recon.sync import TradeSyncWorker


def _build_exchange_client(settings: AppSettings) -> ExchangeClient:
    if settings.exchange.mode == "direct":
        return BinanceClient(settings.exchange)
    return GatewayTradeClient(settings.exchange)


async def _build_components(settings: AppSettings, notifier: Notifier) -> dict[str, Any]:
    """Build all engine components from settings.

    Note: Does NOT connect the database or the exchange client -- that
    happens in _start_components.

    Args:
        settings: Application-wide settings.
        notifier: Alert delivery channel.

    Returns:
        Dict mapping component names to instances.
    """
    logger = get_logger("recon.main")

    database = LedgerDatabase(settings.store.db_path)
    store = LedgerStore(database)
    findings = FindingStore(database)

    exchange_client = _build_exchange_client(settings)
    if settings.exchange.mode == "gateway" and not settings.exchange.gateway_token.get_secret_value():
        logger.warning(
            "no_gateway_token_configured",
            note="Trade sync requests to the gateway will likely be rejected.",
        )

    sync_worker = TradeSyncWorker(exchange_client, store, batch_size=settings.sync.batch_size)
    scanner = ReconciliationScanner(store, findings, settings.scan)
    review = FindingReview(findings)

    dispatcher = OrderAlertDispatcher(
        store=store,
        cache=OrderSnapshotCache(),
        kv=SettingsKeyValueStore(store),
        notifier=notifier,
        settings=settings.alerts,
    )

    scheduler = Scheduler()
    if settings.sync.enabled:
        scheduler.add_job("trade_sync", sync_worker.run_cycle, settings.sync.interval_seconds)
    if settings.alerts.enabled:
        scheduler.add_job(
            "order_alerts", dispatcher.poll_once, settings.alerts.poll_interval_seconds
        )
    if settings.scan.schedule_enabled:

        async def scheduled_scan() -> None:
            try:
                await scanner.scan(triggered_by="scheduler")
            except ReconciliationDisabled:
                logger.info("scheduled_scan_skipped", reason="reconciliation_disabled")

        scheduler.add_job(
            "reconciliation_scan",
            scheduled_scan,
            settings.scan.interval_seconds,
            run_immediately=False,
        )

    return {
        "database": database,
        "store": store,
        "findings": findings,
        "exchange_client": exchange_client,
        "sync_worker": sync_worker,
        "scanner": scanner,
        "review": review,
        "dispatcher": dispatcher,
        "scheduler": scheduler,
    }


async def _start_components(components: dict[str, Any]) -> None:
    await components["database"].connect()
    await components["exchange_client"].connect()
    await components["scheduler"].start()


async def _stop_components(components: dict[str, Any]) -> None:
    await components["scheduler"].stop()
    await components["exchange_client"].close()
    await components["database"].close()


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Register SIGINT/SIGTERM to request a graceful shutdown.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("recon.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage engine component lifecycle within the FastAPI application.

    On startup: stores components on app.state, connects the database and the
    exchange client, starts the scheduler.

    On shutdown: stops the scheduler, disconnects exchange and database.
    """
    logger = get_logger("recon.main")
    components = app.state.components

    for name in ("store", "findings", "sync_worker", "scanner", "review", "dispatcher", "scheduler"):
        setattr(app.state, name, components[name])

    await _start_components(components)
    logger.info("lifespan_started", jobs=sorted(components["scheduler"].jobs))

    yield

    await _stop_components(components)
    logger.info("ledger_recon_stopped")


async def run() -> None:
    """Run the reconciliation engine.

    When the API is enabled (API_ENABLED=true, the default) the scheduler runs
    inside the uvicorn server's lifespan. Otherwise the scheduler runs alone
    until SIGINT/SIGTERM.
    """
    settings = AppSettings()

    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("recon.main")

    if settings.api.enabled:
        from recon.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = await _build_components(settings, HubNotifier(app.state.hub))

        logger.info(
            "starting_with_api",
            host=settings.api.host,
            port=settings.api.port,
            exchange_mode=settings.exchange.mode,
        )

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
        return

    components = await _build_components(settings, LogNotifier())
    stop_event = asyncio.Event()
    _setup_signal_handlers(stop_event)

    logger.info("starting_without_api", exchange_mode=settings.exchange.mode)
    try:
        await _start_components(components)
        await stop_event.wait()
    finally:
        await _stop_components(components)
        logger.info("ledger_recon_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
