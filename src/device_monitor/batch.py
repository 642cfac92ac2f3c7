"""
Best-effort batch block/unblock.

Items are sent strictly one at a time, in order, with a fixed delay
between them. A failing item is recorded in the result and never stops
the batch.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from ._types import BatchResult, CommandAction, CommandOutcome
from .controller import ControllerGateway

logger = logging.getLogger(__name__)


class BatchCommandExecutor:
    """Sequences station commands across many devices."""

    def __init__(
        self,
        gateway: ControllerGateway,
        item_delay: float = 0.3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.item_delay = item_delay
        self._sleep = sleep

    async def block_many(self, macs: Iterable[str]) -> BatchResult:
        """Block each device in order."""
        return await self._run(CommandAction.BLOCK, macs)

    async def unblock_many(self, macs: Iterable[str]) -> BatchResult:
        """Unblock each device in order."""
        return await self._run(CommandAction.UNBLOCK, macs)

    async def _run(self, action: CommandAction, macs: Iterable[str]) -> BatchResult:
        command = self.gateway.block if action == CommandAction.BLOCK else self.gateway.unblock
        result = BatchResult(action=action)

        for index, mac in enumerate(macs):
            if index and self.item_delay > 0:
                await self._sleep(self.item_delay)

            try:
                await command(mac)
                result.outcomes.append(CommandOutcome(mac=mac, success=True))
            except Exception as e:
                logger.warning(f"{action.value} failed for {mac}: {e}")
                result.outcomes.append(CommandOutcome(mac=mac, success=False, error=str(e)))

        logger.info(
            f"Batch {action.value}: {result.success_count}/{len(result.outcomes)} succeeded"
        )
        return result
