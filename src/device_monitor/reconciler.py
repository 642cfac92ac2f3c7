"""
New-device reconciliation.

Compares the clients currently reported by the controller with the
devices already in the database. Clients with an unknown hardware
address are classified, persisted and handed to the notifier.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from ._types import DeviceAttributes, DeviceRecord, ReconcileResult, normalize_mac, now_utc
from .classifier import classify_client
from .controller import ControllerGateway
from .device_db import DeviceDatabase
from .notifier import Notifier

logger = logging.getLogger(__name__)

Classifier = Callable[[dict[str, Any]], DeviceAttributes]


class Reconciler:
    """
    Detects newly observed devices.

    A pass makes one controller call (fetch_clients); everything after
    is a set difference against persisted state, so running it
    repeatedly is cheap and safe.
    """

    def __init__(
        self,
        gateway: ControllerGateway,
        db: DeviceDatabase,
        classify: Classifier = classify_client,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.gateway = gateway
        self.db = db
        self.classify = classify
        self.notifier = notifier
        self._clock = clock

    @staticmethod
    def diff(clients: Iterable[dict[str, Any]], known_macs: set[str]) -> list[dict[str, Any]]:
        """
        Clients whose hardware address is not known.

        Order is preserved; a MAC reported twice is kept once.
        """
        new_clients: list[dict[str, Any]] = []
        seen: set[str] = set()
        for client in clients:
            mac = client.get("mac")
            if not mac:
                continue
            mac = normalize_mac(mac)
            if mac in known_macs or mac in seen:
                continue
            seen.add(mac)
            new_clients.append(client)
        return new_clients

    def build_records(self, clients: Iterable[dict[str, Any]]) -> list[DeviceRecord]:
        """Classify raw clients into new device records detected now."""
        detected_at = self._clock()
        return [
            DeviceRecord.from_client(client, self.classify(client), detected_at)
            for client in clients
        ]

    async def reconcile(self, clients: Optional[list[dict[str, Any]]] = None) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Args:
            clients: Already fetched clients (default: fetch from the gateway)

        Returns:
            ReconcileResult. inserted may be lower than the candidate
            count when a concurrent pass stored some devices first.
        """
        result = ReconcileResult(started_at=self._clock())

        if clients is None:
            clients = await self.gateway.fetch_clients()
        result.observed = len(clients)

        new_clients = self.diff(clients, self.db.known_macs())
        if not new_clients:
            logger.debug(f"Reconciled {result.observed} clients, no new devices")
            return result

        result.candidates = self.build_records(new_clients)
        inserted_macs = self.db.insert_new_macs(result.candidates)
        result.inserted = len(inserted_macs)

        if result.inserted < len(result.candidates):
            logger.info(
                f"{len(result.candidates) - result.inserted} candidate(s) were already "
                f"stored by a concurrent pass"
            )

        logger.info(
            f"Reconciled {result.observed} clients: {len(result.candidates)} new, "
            f"{result.inserted} inserted"
        )

        if inserted_macs and self.notifier is not None:
            await self._notify(inserted_macs)

        return result

    async def _notify(self, macs: list[str]) -> None:
        """Notify with the stored versions of the devices this pass inserted."""
        stored = []
        for mac in macs:
            device = self.db.get_device(mac)
            if device is not None and not device.acknowledged:
                stored.append(device)
        try:
            await self.notifier.notify_new_devices(stored)
        except Exception as e:
            logger.error(f"New-device notification failed: {e}")
