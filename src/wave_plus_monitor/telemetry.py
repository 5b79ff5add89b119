"""Time-series telemetry for successful reads."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from .codec import Reading
from .config import InfluxSettings, Settings

logger = logging.getLogger(__name__)

MEASUREMENT = "air-quality"


class TelemetrySink(ABC):
    """Receives one point per successful, valid read.

    Delivery is fire-and-forget from the session's point of view: write()
    reports success as a bool and never raises for delivery failures.
    """

    @abstractmethod
    async def write(self, reading: Reading) -> bool:
        pass

    async def close(self) -> None:
        pass


class InfluxTelemetrySink(TelemetrySink):
    """InfluxDB v2 sink using the synchronous write API off the event loop.

    Attributes:
        _client: InfluxDBClient owning the HTTP session.
        _write_api: Synchronous write API; each write blocks until delivered.
        _bucket: Destination bucket.
        _tags: Identity tags added to every point.
    """

    def __init__(
        self,
        influx: InfluxSettings,
        *,
        name: str,
        serial_number: str,
        client: Optional[Any] = None,
    ) -> None:
        self._client = client or InfluxDBClient(
            url=influx.url, token=influx.token, org=influx.org
        )
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)
        self._org = influx.org
        self._bucket = influx.bucket
        self._tags = {"name": name, "serialNumber": serial_number}

    def build_point(self, reading: Reading, when: Optional[datetime] = None) -> Point:
        point = Point(MEASUREMENT)
        for key, value in self._tags.items():
            point = point.tag(key, value)
        for key, value in reading.as_fields().items():
            point = point.field(key, float(value))
        return point.time(when or datetime.now(timezone.utc), WritePrecision.S)

    async def write(self, reading: Reading) -> bool:
        point = self.build_point(reading)
        logger.info("write point to InfluxDB")
        try:
            await asyncio.to_thread(
                self._write_api.write,
                bucket=self._bucket,
                org=self._org,
                record=point,
                write_precision=WritePrecision.S,
            )
        except Exception as e:
            logger.error(
                "InfluxDB write failed for %s: %s", self._tags["serialNumber"], e
            )
            return False
        logger.debug("point: %s", point.to_line_protocol())
        return True

    async def close(self) -> None:
        try:
            await asyncio.to_thread(self._client.close)
        except Exception as e:
            logger.warning("Error closing InfluxDB client: %s", e)


def create_telemetry_sink(settings: Settings) -> Optional[TelemetrySink]:
    """Return an InfluxDB sink when credentials are configured, else None."""
    if settings.influx is None:
        logger.info("InfluxDB not configured, telemetry disabled")
        return None
    logger.info("InfluxDB telemetry: %s bucket=%s", settings.influx.url, settings.influx.bucket)
    return InfluxTelemetrySink(
        settings.influx, name=settings.name, serial_number=settings.serial_number
    )
