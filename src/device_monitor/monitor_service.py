"""
Device Monitor Service - Main orchestration loop.

Polls the network controller, records newly observed devices and
refreshes the live fields of known ones. Block/unblock batches share
the same gateway and rate limiter as the poll loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from ._types import DeviceRecord, ReconcileResult, normalize_mac
from .batch import BatchCommandExecutor
from .classifier import classify_client
from .config import MonitorConfig, load_config
from .controller import ControllerGateway
from .credentials import CredentialStore
from .device_db import DeviceDatabase
from .errors import ConfigurationError
from .notifier import LogNotifier, Notifier
from .rate_limiter import RateLimiter
from .reconciler import Reconciler

logger = logging.getLogger(__name__)


class MonitorService:
    """
    Main device monitor service.

    Owns the single RateLimiter of the process; every component that
    talks to the controller goes through the one gateway built here.
    """

    def __init__(
        self,
        config: MonitorConfig,
        notifier: Optional[Notifier] = None,
        gateway: Optional[ControllerGateway] = None,
    ):
        """
        Initialize monitor service.

        Args:
            config: Monitor configuration
            notifier: New-device notifier (default: LogNotifier)
            gateway: Controller gateway (default: built from config)
        """
        self.config = config
        self.rate_limiter = RateLimiter(
            min_interval=config.min_request_interval,
            max_backoff=config.max_backoff,
        )
        self.gateway = gateway or ControllerGateway(config, self.rate_limiter)
        self.db = DeviceDatabase(config.db_path)
        self.reconciler = Reconciler(
            self.gateway,
            self.db,
            classify=classify_client,
            notifier=notifier or LogNotifier(),
        )
        self.batch = BatchCommandExecutor(self.gateway, item_delay=config.batch_item_delay)

        self._running = False
        self._shutdown_event = asyncio.Event()
        self.last_result: Optional[ReconcileResult] = None

    async def start(self) -> None:
        """Start the monitor service."""
        logger.info("Starting Device Monitor Service")
        if not self.gateway.is_configured:
            logger.warning(
                f"Controller not configured (missing: {', '.join(self.config.missing_fields())}); "
                f"polls will fail until it is"
            )
        self._running = True
        await self._main_loop()

    async def stop(self) -> None:
        """Stop the monitor service."""
        if self._running:
            logger.info("Stopping Device Monitor Service")
        self._running = False
        self._shutdown_event.set()

    async def close(self) -> None:
        """Log out of the controller and release the transport."""
        await self.gateway.close()

    async def _main_loop(self) -> None:
        """Poll the controller every poll_interval seconds."""
        logger.info(f"Monitor loop started (interval {self.config.poll_interval}s)")

        while self._running:
            try:
                await self.run_once()
            except ConfigurationError as e:
                logger.error(f"Poll skipped: {e}")
            except Exception as e:
                logger.error(f"Error in main loop: {e}")

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=float(self.config.poll_interval),
                )
                # Shutdown requested
                break
            except asyncio.TimeoutError:
                # Normal timeout, continue loop
                pass

        logger.info("Monitor loop stopped")

    async def run_once(self) -> ReconcileResult:
        """
        Run one poll.

        Fetches the client list once, reconciles new devices and refreshes
        last_seen, ip, signal and counters of devices already known.
        """
        clients = await self.gateway.fetch_clients()
        result = await self.reconciler.reconcile(clients)

        new_macs = {device.mac for device in result.candidates}
        known = [client for client in clients if normalize_mac(client["mac"]) not in new_macs]
        refreshed = self.db.refresh_seen(self._seen_records(known))
        if refreshed:
            logger.debug(f"Refreshed {refreshed} known device(s)")

        self.last_result = result
        return result

    def _seen_records(self, clients: list[dict[str, Any]]) -> list[DeviceRecord]:
        return self.reconciler.build_records(clients)

    def status(self) -> dict[str, Any]:
        """Service status for health reporting."""
        last = self.last_result
        return {
            "running": self._running,
            "configured": self.gateway.is_configured,
            "logged_in": self.gateway.session.is_logged_in,
            "last_poll": last.started_at.isoformat() if last else None,
            "last_observed": last.observed if last else None,
            "last_inserted": last.inserted if last else None,
            "devices": self.db.stats().to_dict(),
        }


def main():
    """Entry point for device-monitor service."""
    import argparse

    parser = argparse.ArgumentParser(description="Network Controller Device Monitor")
    parser.add_argument("--config", type=str, help="Path to YAML config file")
    parser.add_argument("--log-level", type=str, default=None, help="Log level")
    parser.add_argument("--once", action="store_true", help="Run a single poll and exit")
    args = parser.parse_args()

    # Load configuration
    try:
        if args.config:
            config = MonitorConfig.from_yaml(Path(args.config))
        else:
            config_dir = Path(os.environ.get("CONFIG_DIR", "/config"))
            config = load_config(CredentialStore(config_dir))
        if args.log_level:
            config.log_level = args.log_level
    except (ConfigurationError, ValueError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        sys.exit(1)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Create service
    service = MonitorService(config)

    if args.once:
        try:
            result = loop.run_until_complete(service.run_once())
            logger.info(f"Poll complete: {result.observed} observed, {result.inserted} new")
        finally:
            loop.run_until_complete(service.close())
            loop.close()
        return

    # Handle signals
    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.ensure_future(service.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        loop.run_until_complete(service.stop())
        loop.run_until_complete(service.close())
        loop.close()


if __name__ == "__main__":
    main()
