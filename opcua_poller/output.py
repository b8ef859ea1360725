"""Shared lifecycle for the reconnecting MQTT and InfluxDB outputs."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Floats closer than this count as unchanged
FLOAT_TOLERANCE = 0.001


class ChangeFilter:
    """Remembers the last value written per key."""

    def __init__(self, tolerance: float = FLOAT_TOLERANCE):
        self.tolerance = tolerance
        self._last: dict[str, Any] = {}

    def changed(self, key: str, value: Any) -> bool:
        if key not in self._last:
            return True
        previous = self._last[key]
        if isinstance(value, float) and isinstance(previous, float):
            return abs(value - previous) > self.tolerance
        return value != previous

    def remember(self, key: str, value: Any) -> None:
        self._last[key] = value

    def clear(self) -> None:
        self._last.clear()

    def __len__(self) -> int:
        return len(self._last)


class ReconnectingOutput(ABC):
    """Base for outputs that connect at start and retry in the background.

    Subclasses implement :meth:`_open` (raise on failure) and :meth:`_close`
    (best effort).
    """

    name = "output"

    def __init__(self, enabled: bool, reconnect_delay: float):
        self.enabled = enabled
        self.reconnect_delay = reconnect_delay
        self._connected = False
        self._running = False
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._connected

    async def start(self) -> None:
        if not self.enabled:
            logger.info(f"{self.name} is disabled in config")
            return
        self._running = True
        await self._connect()

    async def stop(self) -> None:
        self._running = False
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        await self._disconnect()
        logger.info(f"{self.name} stopped")

    @abstractmethod
    async def _open(self) -> None:
        """Open the connection; raise on failure."""

    @abstractmethod
    async def _close(self) -> None:
        """Release the connection."""

    async def _connect(self) -> None:
        if not self._running:
            return
        try:
            await self._open()
        except Exception as e:
            logger.error(f"{self.name}: connect failed: {e}")
            self._connected = False
            self.mark_lost()
            return
        self._connected = True
        await self._on_connected()

    async def _on_connected(self) -> None:
        """Hook run after every successful connect."""

    async def _disconnect(self) -> None:
        try:
            await self._close()
        except Exception as e:
            logger.debug(f"{self.name}: error while closing: {e}")
        self._connected = False

    def mark_lost(self) -> None:
        """Flag the connection as lost and retry in the background."""
        self._connected = False
        if not self._running:
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while self._running and not self._connected:
            logger.info(f"{self.name}: reconnecting in {self.reconnect_delay}s")
            await asyncio.sleep(self.reconnect_delay)
            if not self._running:
                break
            await self._disconnect()
            await self._connect()
