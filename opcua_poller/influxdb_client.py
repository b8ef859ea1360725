"""InfluxDB v2 output: one point per polled metric."""

import asyncio
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.exceptions import InfluxDBError
from influxdb_client.client.write_api import SYNCHRONOUS

from .config import InfluxDBConfig
from .output import ChangeFilter, ReconnectingOutput

logger = logging.getLogger(__name__)


def field_value(value: Any) -> Any:
    """Return a value the line protocol can carry.

    bool, int, float, Decimal and str pass through; bytes become hex and
    anything else (datetime, lists, UUIDs, NodeIds) its string form.
    """
    if isinstance(value, (bool, int, float, Decimal, str)):
        return value
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def series_key(measurement: str, tags: Optional[dict[str, str]]) -> str:
    tag_part = ",".join(f"{k}={v}" for k, v in sorted((tags or {}).items()))
    return f"{measurement},{tag_part}" if tag_part else measurement


class InfluxClient(ReconnectingOutput):
    """Buffers points and writes them in batches.

    The buffer is flushed when it reaches ``batch_size`` or when
    ``flush_interval`` seconds have passed since the last flush. Points of a
    failed write are put back at the head of the buffer.
    """

    name = "InfluxDB"

    def __init__(self, config: InfluxDBConfig):
        super().__init__(config.enabled, config.reconnect_delay)
        self.config = config
        self._client: Optional[InfluxDBClient] = None
        self._write_api = None
        self._written = ChangeFilter()
        self._buffer: list[Point] = []
        self._buffer_lock = asyncio.Lock()
        self._last_flush = time.monotonic()

        self.writes_total = 0
        self.writes_failed = 0

    async def _open(self) -> None:
        client = InfluxDBClient(url=self.config.url, token=self.config.token, org=self.config.org)
        loop = asyncio.get_running_loop()
        try:
            health = await loop.run_in_executor(None, client.health)
        except Exception:
            client.close()
            raise
        if health.status != "pass":
            client.close()
            raise ConnectionError(f"health check failed: {health.message}")

        self._client = client
        self._write_api = client.write_api(write_options=SYNCHRONOUS)
        logger.info(f"Connected to InfluxDB at {self.config.url}")

    async def _close(self) -> None:
        write_api, self._write_api = self._write_api, None
        client, self._client = self._client, None
        if write_api is not None:
            write_api.close()
        if client is not None:
            client.close()

    async def stop(self) -> None:
        await self._flush()
        await super().stop()

    def build_point(
        self,
        measurement: str,
        fields: dict[str, Any],
        tags: Optional[dict[str, str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[Point]:
        """Build a point from the fields that should be written.

        None fields are dropped. In ``on_change`` mode so are fields equal to
        the last value written for the same series. Returns None when nothing
        is left.
        """
        series = series_key(measurement, tags)
        on_change = self.config.write_mode == "on_change"

        kept = {}
        for key, raw in fields.items():
            if raw is None:
                continue
            value = field_value(raw)
            cache_key = f"{series}:{key}"
            if on_change and not self._written.changed(cache_key, value):
                continue
            kept[key] = value
            self._written.remember(cache_key, value)

        if not kept:
            return None

        point = Point(measurement)
        for key, value in (tags or {}).items():
            point = point.tag(key, value)
        for key, value in kept.items():
            point = point.field(key, value)
        if timestamp is not None:
            point = point.time(timestamp)
        return point

    async def write(
        self,
        measurement: str,
        fields: dict[str, Any],
        tags: Optional[dict[str, str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> bool:
        """Queue one point for writing.

        Returns:
            False when disabled or disconnected; True otherwise, including
            when no field needed writing.
        """
        if not self.enabled:
            return False

        if not self.connected:
            logger.warning(f"Cannot write {measurement}: not connected")
            self.mark_lost()
            return False

        point = self.build_point(measurement, fields, tags, timestamp)
        if point is None:
            return True

        async with self._buffer_lock:
            self._buffer.append(point)
            pending = len(self._buffer)

        due = time.monotonic() - self._last_flush >= self.config.flush_interval
        if pending >= self.config.batch_size or due:
            await self._flush()
        return True

    async def force_flush(self) -> bool:
        return await self._flush()

    async def _flush(self) -> bool:
        async with self._buffer_lock:
            if not self._buffer:
                return True
            if not self.connected or self._write_api is None:
                logger.warning(f"Cannot flush {len(self._buffer)} point(s): not connected")
                return False
            batch, self._buffer = self._buffer, []

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, self._write_api.write, self.config.bucket, self.config.org, batch
            )
        except InfluxDBError as e:
            logger.error(f"InfluxDB write of {len(batch)} point(s) failed: {e}")
            self.writes_failed += len(batch)
            async with self._buffer_lock:
                self._buffer[:0] = batch
            self.mark_lost()
            return False
        except Exception as e:
            logger.error(f"Unexpected error writing to InfluxDB: {e}")
            self.writes_failed += len(batch)
            return False

        self._last_flush = time.monotonic()
        self.writes_total += len(batch)
        logger.debug(f"Flushed {len(batch)} point(s) to InfluxDB")
        return True

    def get_stats(self) -> dict:
        return {
            'enabled': self.enabled,
            'connected': self.connected,
            'url': self.config.url,
            'bucket': self.config.bucket,
            'writes_total': self.writes_total,
            'writes_failed': self.writes_failed,
            'buffered': len(self._buffer),
        }
