"""Process wiring: build every component once and keep the session running."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import Settings
from .publisher import LoggingPublisher, Publisher
from .radio import BleakRadio, Radio
from .serializer import OperationSerializer
from .session import SessionDriver
from .telemetry import TelemetrySink, create_telemetry_sink

logger = logging.getLogger(__name__)


async def run_monitor(
    settings: Settings,
    publisher: Optional[Publisher] = None,
    *,
    radio: Optional[Radio] = None,
    telemetry: Optional[TelemetrySink] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Run the session driver until ``stop_event`` is set or the task is cancelled.

    The serializer is created here and owned by this call: it lives exactly
    as long as the session driver that uses it.

    Args:
        settings: Validated settings.
        publisher: Accessory-model sink. Defaults to LoggingPublisher.
        radio: Adapter. Defaults to BleakRadio.
        telemetry: Telemetry sink. Defaults to the InfluxDB sink when
            configured in ``settings``.
        stop_event: Event ending the run when set.
    """
    radio = radio or BleakRadio(phase_timeout=settings.phase_timeout)
    if telemetry is None:
        telemetry = create_telemetry_sink(settings)
    serializer = OperationSerializer()
    driver = SessionDriver(
        settings,
        radio,
        serializer,
        publisher or LoggingPublisher(),
        telemetry,
    )
    stop_event = stop_event or asyncio.Event()

    driver.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Stopping monitor for %s", settings.serial_number)
        await driver.stop()
        await serializer.close()
        if telemetry is not None:
            await telemetry.close()


def run(settings: Settings, publisher: Optional[Publisher] = None) -> int:
    """Run the monitor in the current thread.

    Returns:
        int: Exit code following Unix conventions:
            0: Normal completion
            1: Fatal error
            130: Keyboard interrupt (SIGINT/Ctrl+C)
    """
    try:
        asyncio.run(run_monitor(settings, publisher))
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1
