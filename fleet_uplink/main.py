"""Fleet Uplink - Main Application Entry Point.

Wires the components in dependency order:
1. Configuration loading
2. Observability (metrics)
3. Retry cache (loads what a previous run left undelivered)
4. Connection manager
5. Submission coordinator (send-or-cache, drain on authentication)
6. Periodic sync (snapshot sync, heartbeat, loot inbox)

The uplink never blocks the capture process: if the server is unreachable
everything it is handed goes to the retry cache and is replayed after the
next successful authentication.
"""

import asyncio
import json
import logging
import logging.config
import signal
from typing import Optional


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(log_level: str = "INFO", log_format: str = "text"):
    """Configure root logging.

    - ``json``  -- one JSON-ish object per line, for log shippers
    - ``text``  -- human-readable format (default)
    """
    if log_format == "json":
        formatter = {
            "class": "logging.Formatter",
            "format": json.dumps({
                "time": "%(asctime)s",
                "level": "%(levelname)s",
                "module": "%(name)s",
                "message": "%(message)s",
            }),
        }
    else:
        formatter = {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    })


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application orchestrator
# ---------------------------------------------------------------------------

class UplinkApplication:
    """Owns the lifecycle of the uplink.

    Usage::

        app = UplinkApplication()
        await app.initialize()
        await app.run()        # blocks until shutdown signal
        await app.shutdown()
    """

    def __init__(self, settings=None):
        self._settings = settings
        self._metrics = None
        self._cache = None
        self._manager = None
        self._coordinator = None
        self._sync = None
        self._shutdown_event = asyncio.Event()

    @property
    def coordinator(self):
        return self._coordinator

    @property
    def manager(self):
        return self._manager

    def request_shutdown(self):
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    async def initialize(self):
        from fleet_uplink import __version__
        from fleet_uplink.cache.retry_cache import RetryCache
        from fleet_uplink.config.settings import get_settings
        from fleet_uplink.connection.manager import ConnectionManager
        from fleet_uplink.coordinator import (
            JsonFileSnapshotSource,
            LootInbox,
            PeriodicSync,
            SubmissionCoordinator,
        )
        from fleet_uplink.observability.metrics import get_metrics

        # ---- 1. Configuration ---------------------------------------------
        if self._settings is None:
            self._settings = get_settings()
            setup_logging(self._settings.log_level, self._settings.log_format)
        settings = self._settings

        logger.info("Fleet Uplink %s starting", __version__)
        logger.info("Endpoint: %s", settings.endpoint if settings.server_url else "<unset>")
        logger.info("Client name: %s", settings.nickname)

        # ---- 2. Observability ---------------------------------------------
        self._metrics = get_metrics(settings.prometheus_port)
        self._metrics.set_build_info(__version__, settings.nickname, settings.endpoint)
        self._metrics.start_server()

        # ---- 3. Retry cache -----------------------------------------------
        self._cache = await asyncio.to_thread(
            RetryCache.from_settings, settings, metrics=self._metrics
        )
        if self._cache.has_pending:
            logger.info(
                "Loaded %d cached fleet snapshot(s) and %d loot record(s)",
                self._cache.pending_snapshot_count,
                self._cache.pending_loot_count,
            )

        # ---- 4. Connection manager ----------------------------------------
        self._manager = ConnectionManager.from_settings(settings, metrics=self._metrics)
        self._manager.on_error.add(self._log_connection_error)

        # ---- 5. Submission coordinator ------------------------------------
        snapshot_source = JsonFileSnapshotSource(settings.snapshot_file) if settings.snapshot_file else None
        self._coordinator = SubmissionCoordinator(
            self._manager,
            self._cache,
            snapshot_source=snapshot_source,
            snapshot_delay=settings.snapshot_flush_delay_seconds,
            loot_delay=settings.loot_flush_delay_seconds,
            metrics=self._metrics,
        )
        self._coordinator.bind()

        # ---- 6. Periodic sync ---------------------------------------------
        loot_inbox = LootInbox(settings.loot_inbox_dir) if settings.loot_inbox_dir else None
        self._sync = PeriodicSync(
            self._coordinator,
            self._manager,
            sync_interval=settings.sync_interval_seconds if snapshot_source else 0,
            heartbeat_interval=settings.heartbeat_interval_seconds,
            loot_inbox=loot_inbox,
            inbox_interval=settings.loot_inbox_poll_seconds,
        )

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def run(self):
        """Connect (when configured), start producers, block until shutdown."""
        settings = self._settings

        if not settings.enabled:
            logger.info("Auto-connect disabled; data will be cached until enabled")
        elif not settings.is_configured:
            logger.warning(
                "Server URL or API key missing - please configure "
                "FLEET_UPLINK_SERVER_URL and FLEET_UPLINK_API_KEY"
            )
        else:
            await self._manager.connect()

        await self._sync.start()

        # Wait for shutdown signal (set by signal handler or fatal error)
        await self._shutdown_event.wait()

    # ------------------------------------------------------------------
    # Graceful shutdown
    # ------------------------------------------------------------------

    async def shutdown(self):
        """Tear down in reverse order; the cache is saved last."""
        logger.info("Shutting down Fleet Uplink...")

        if self._sync:
            try:
                await self._sync.stop()
            except Exception as exc:
                logger.error("Error stopping periodic sync: %s", exc)

        if self._coordinator:
            self._coordinator.unbind()

        if self._manager:
            try:
                await self._manager.close()
            except Exception as exc:
                logger.error("Error closing connection: %s", exc)

        if self._cache:
            await asyncio.to_thread(self._cache.close)

        logger.info("Fleet Uplink shutdown complete")

    def _log_connection_error(self, message: str):
        logger.error("Connection error: %s", message)


# ---------------------------------------------------------------------------
# Async entry point
# ---------------------------------------------------------------------------

async def main(app: Optional[UplinkApplication] = None):
    """Main async entry point."""
    app = app or UplinkApplication()

    # Register OS signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        app.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.initialize()
        await app.run()
    except Exception as exc:
        logger.critical("Fatal error: %s", exc, exc_info=True)
    finally:
        await app.shutdown()


def cli():
    """Console-script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
