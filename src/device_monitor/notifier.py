"""
New-device notification.

The reconciler hands newly inserted devices to a Notifier. Delivery
channels (push, mail, UI) live outside this package and implement the
same interface.
"""

import logging
from abc import ABC, abstractmethod

from ._types import DeviceRecord

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Base class for new-device notification channels."""

    @abstractmethod
    async def notify_new_devices(self, devices: list[DeviceRecord]) -> None:
        """Deliver a batch of newly detected devices."""
        pass


class LogNotifier(Notifier):
    """Writes one log line per new device."""

    async def notify_new_devices(self, devices: list[DeviceRecord]) -> None:
        for device in devices:
            logger.info(
                f"New device detected: {device.mac} "
                f"({device.hostname or 'unknown'}, {device.vendor or 'unknown vendor'}) "
                f"ip={device.ip or 'N/A'}"
            )
