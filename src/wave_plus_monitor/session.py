"""Session state machine polling one Wave Plus.

Each cycle walks the phases below and ends by arming the next cycle:

1. **Radio power**: a powered-off adapter is re-checked after a short delay.
2. **Locate**: with no cached handle, one discovery window is run through the
   operation serializer. A found device re-enters the cycle immediately.
3. **Reconcile**: a handle left connected, connecting or in error by an
   earlier cycle is brought back to disconnected, or dropped if in error.
4. **Connect / read / disconnect**: one serialized exchange. Connect and read
   each race their own timeout; the losing side is cleaned up with an
   explicit cancel and disconnect so the handle always converges.
5. **Publish / telemetry**: outside the serializer, the decoded Reading is
   handed to the publisher (only changed facets) and to the telemetry sink.

Every failure maps to a CycleOutcome, and every outcome maps to the delay of
the next cycle. Nothing raised inside a cycle escapes run_cycle().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .air_quality import classify
from .codec import WAVE_PLUS_CHARACTERISTIC_UUID, Reading, decode_payload
from .config import Settings
from .exceptions import DecodeError, RadioError, RadioUnavailableError
from .locator import DeviceLocator
from .publisher import Facet, Publisher
from .radio import ConnectionState, Peripheral, Radio
from .serializer import OperationSerializer
from .telemetry import TelemetrySink

logger = logging.getLogger(__name__)


class SessionPhase(Enum):
    IDLE = "idle"
    AWAITING_RADIO_POWER = "awaiting-radio-power"
    LOCATING = "locating"
    CONNECTING = "connecting"
    READING = "reading"
    DISCONNECTING = "disconnecting"
    SETTLED = "settled"


class CycleOutcome(Enum):
    PUBLISHED = "published"
    RADIO_OFF = "radio-off"
    LOCATED = "located"
    NOT_FOUND = "not-found"
    STALE_ERROR = "stale-error"
    CONNECT_TIMEOUT = "connect-timeout"
    TRANSPORT_ERROR = "transport-error"
    READ_TIMEOUT = "read-timeout"
    DECODE_ERROR = "decode-error"
    INVALID_READING = "invalid-reading"
    FAILED = "failed"


@dataclass
class LastPublishedState:
    """Values most recently sent to the publisher; None until first sent."""

    air_quality: Optional[int] = None
    voc: Optional[float] = None
    co2: Optional[float] = None
    humidity: Optional[float] = None
    temperature: Optional[float] = None


class SessionDriver:
    """Poll the configured Wave Plus on a fixed interval.

    Attributes:
        _settings: Validated settings for this device.
        _radio: Adapter used for power checks and handle creation.
        _serializer: Process-wide radio operation queue.
        _locator: Discovery helper sharing the same radio.
        _publisher: Accessory-model sink for changed facets.
        _telemetry: Optional time-series sink.
        _peripheral: Cached device handle; None forces discovery.
        _timer: The single pending next-cycle timer.
        _cycle_task: Task running the current cycle, if any.
    """

    def __init__(
        self,
        settings: Settings,
        radio: Radio,
        serializer: OperationSerializer,
        publisher: Publisher,
        telemetry: Optional[TelemetrySink] = None,
        locator: Optional[DeviceLocator] = None,
    ) -> None:
        self._settings = settings
        self._radio = radio
        self._serializer = serializer
        self._publisher = publisher
        self._telemetry = telemetry
        self._locator = locator or DeviceLocator(
            radio, settings.serial, timeout=settings.scan_timeout
        )
        self._peripheral: Optional[Peripheral] = None
        self._last = LastPublishedState()
        self._phase = SessionPhase.IDLE
        self._timer: Optional[asyncio.TimerHandle] = None
        self._next_delay: Optional[float] = None
        self._cycle_task: Optional[asyncio.Task[CycleOutcome]] = None

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def peripheral(self) -> Optional[Peripheral]:
        return self._peripheral

    @property
    def last_published(self) -> LastPublishedState:
        return self._last

    @property
    def next_delay(self) -> Optional[float]:
        """Delay of the pending next-cycle timer, None when nothing is armed."""
        return self._next_delay if self._timer is not None else None

    # -- scheduling ---------------------------------------------------------

    def start(self) -> None:
        """Arm the first cycle after the configured startup delay."""
        logger.info(
            "Monitoring %s every %.0fs", self._settings.serial_number, self._settings.interval
        )
        self._arm(self._settings.startup_delay)

    async def stop(self) -> None:
        """Cancel the timer and any running cycle, then drop the connection.

        The serializer is closed before the final disconnect so no exchange
        is still touching the peripheral when it is torn down.
        """
        self._cancel_timer()
        task = self._cycle_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._cycle_task = None
        await self._serializer.close()

        peripheral = self._peripheral
        if peripheral is not None and peripheral.state is not ConnectionState.DISCONNECTED:
            peripheral.cancel_connect()
            await self._disconnect(peripheral)

    def _arm(self, delay: float) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._fire)
        self._next_delay = delay
        logger.debug("Next cycle for %s in %.1fs", self._settings.serial_number, delay)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        if self._cycle_task is not None and not self._cycle_task.done():
            logger.warning(
                "Previous cycle for %s still running, skipping", self._settings.serial_number
            )
            self._arm(self._settings.interval)
            return
        self._cycle_task = asyncio.ensure_future(self.run_cycle())

    def _delay_for(self, outcome: CycleOutcome) -> float:
        if outcome is CycleOutcome.RADIO_OFF:
            return self._settings.power_retry_delay
        if outcome is CycleOutcome.LOCATED:
            return 0.0
        if outcome in (
            CycleOutcome.CONNECT_TIMEOUT,
            CycleOutcome.TRANSPORT_ERROR,
            CycleOutcome.STALE_ERROR,
        ):
            return self._settings.retry_backoff
        return self._settings.interval

    # -- cycle ----------------------------------------------------------------

    async def run_cycle(self) -> CycleOutcome:
        """Run one cycle and arm the next one.

        Returns:
            The outcome of this cycle. The next cycle is always armed, with a
            delay that depends on the outcome.
        """
        self._cancel_timer()
        try:
            outcome = await self._cycle()
        except Exception:
            logger.exception(
                "Unexpected error for %s during %s phase",
                self._settings.serial_number,
                self._phase.value,
            )
            outcome = CycleOutcome.FAILED

        logger.debug("Cycle for %s ended: %s", self._settings.serial_number, outcome.value)
        self._phase = SessionPhase.IDLE
        self._arm(self._delay_for(outcome))
        return outcome

    async def _cycle(self) -> CycleOutcome:
        serial = self._settings.serial_number

        self._phase = SessionPhase.AWAITING_RADIO_POWER
        if not await self._radio.is_powered():
            logger.warning(
                "Bluetooth LE power is off. will retry in %.0f seconds...",
                self._settings.power_retry_delay,
            )
            return CycleOutcome.RADIO_OFF

        if self._peripheral is None:
            self._phase = SessionPhase.LOCATING
            try:
                peripheral = await self._serializer.run(self._locator.scan, label="scan")
            except RadioUnavailableError as e:
                logger.warning("Cannot scan for %s: %s", serial, e)
                return CycleOutcome.RADIO_OFF
            if peripheral is None:
                return CycleOutcome.NOT_FOUND
            self._peripheral = peripheral
            return CycleOutcome.LOCATED

        peripheral = self._peripheral
        outcome, reading = await self._serializer.run(
            lambda: self._exchange(peripheral), label="connect-read-disconnect"
        )
        if reading is None:
            return outcome

        self._phase = SessionPhase.SETTLED
        self._publish(reading)
        await self._record(reading)
        return outcome

    async def _exchange(
        self, peripheral: Peripheral
    ) -> tuple[CycleOutcome, Optional[Reading]]:
        serial = self._settings.serial_number
        timeout = self._settings.phase_timeout
        logger.info("connect to %s ...", serial)

        if not await self._reconcile(peripheral):
            return CycleOutcome.STALE_ERROR, None

        self._phase = SessionPhase.CONNECTING
        try:
            await asyncio.wait_for(peripheral.connect(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("connect to %s has timed out after %.0fs.", serial, timeout)
            await self._converge(peripheral)
            return CycleOutcome.CONNECT_TIMEOUT, None
        except RadioError as e:
            logger.error("connect to %s failed: %s", serial, e)
            await self._converge(peripheral)
            self._invalidate()
            return CycleOutcome.TRANSPORT_ERROR, None

        reading: Optional[Reading] = None
        outcome = CycleOutcome.PUBLISHED
        self._phase = SessionPhase.READING
        try:
            reading = await asyncio.wait_for(self._read(peripheral), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("read from %s has timed out after %.0fs.", serial, timeout)
            outcome = CycleOutcome.READ_TIMEOUT
        except DecodeError as e:
            logger.error("decode of %s payload failed: %s", serial, e)
            outcome = CycleOutcome.DECODE_ERROR
        except RadioError as e:
            logger.error("read from %s failed: %s", serial, e)
            outcome = CycleOutcome.TRANSPORT_ERROR

        self._phase = SessionPhase.DISCONNECTING
        await self._disconnect(peripheral)

        if outcome is CycleOutcome.TRANSPORT_ERROR:
            self._invalidate()
        if reading is None:
            return outcome, None

        if not reading.is_valid:
            logger.warning(
                "%s reported no data yet (co2=%.0f voc=%.0f), skipping",
                serial,
                reading.co2,
                reading.voc,
            )
            return CycleOutcome.INVALID_READING, None
        return CycleOutcome.PUBLISHED, reading

    async def _read(self, peripheral: Peripheral) -> Reading:
        rssi = await peripheral.update_rssi()
        raw = await peripheral.read_characteristic(WAVE_PLUS_CHARACTERISTIC_UUID)
        reading = decode_payload(raw).with_rssi(rssi)
        logger.info(
            "rssi %s data humidity=%.1f radonStAvg=%.0f radonLtAvg=%.0f temp=%.2f "
            "pressure=%.2f co2=%.0f voc=%.0f",
            rssi,
            reading.humidity,
            reading.radon_st_avg,
            reading.radon_lt_avg,
            reading.temperature,
            reading.pressure,
            reading.co2,
            reading.voc,
        )
        return reading

    async def _reconcile(self, peripheral: Peripheral) -> bool:
        """Bring a handle left over from an earlier cycle back to disconnected.

        Returns:
            False if the handle was in error and has been dropped.
        """
        state = peripheral.state
        if state is ConnectionState.DISCONNECTED:
            return True

        logger.warning('Peripheral %s state is "%s".', self._settings.serial_number, state.value)
        if state is ConnectionState.CONNECTING:
            peripheral.cancel_connect()
        elif state is ConnectionState.ERROR:
            await self._converge(peripheral)
            self._invalidate()
            return False
        else:
            await self._disconnect(peripheral)
        return True

    async def _converge(self, peripheral: Peripheral) -> None:
        """Cancel any in-flight connect and disconnect, logging failures.

        Covers the case where a connect completes after its timeout fired.
        """
        peripheral.cancel_connect()
        await self._disconnect(peripheral)

    async def _disconnect(self, peripheral: Peripheral) -> None:
        try:
            await asyncio.wait_for(peripheral.disconnect(), timeout=self._settings.phase_timeout)
        except asyncio.TimeoutError:
            logger.error("disconnect from %s has timed out.", self._settings.serial_number)
        except RadioError as e:
            logger.error("disconnect from %s failed: %s", self._settings.serial_number, e)

    def _invalidate(self) -> None:
        if self._peripheral is not None:
            logger.warning(
                "Dropping handle for %s, will rediscover", self._settings.serial_number
            )
        self._peripheral = None

    # -- outputs --------------------------------------------------------------

    def _publish(self, reading: Reading) -> None:
        facets = self._settings.enabled_facets
        last = self._last

        if Facet.AIR_QUALITY in facets:
            aq = int(classify(reading.humidity, reading.radon_st_avg, reading.co2, reading.voc))
            if aq != last.air_quality or reading.voc != last.voc:
                last.air_quality = aq
                last.voc = reading.voc
                self._emit(Facet.AIR_QUALITY, {"air_quality": aq, "voc": reading.voc})

        if Facet.CO2 in facets and reading.co2 != last.co2:
            last.co2 = reading.co2
            self._emit(Facet.CO2, {"co2": reading.co2})

        if Facet.HUMIDITY in facets and reading.humidity != last.humidity:
            last.humidity = reading.humidity
            self._emit(Facet.HUMIDITY, {"humidity": reading.humidity})

        if Facet.TEMPERATURE in facets and reading.temperature != last.temperature:
            last.temperature = reading.temperature
            self._emit(Facet.TEMPERATURE, {"temperature": reading.temperature})

    def _emit(self, facet: Facet, values: dict[str, float]) -> None:
        try:
            self._publisher.publish(facet, values)
        except Exception as e:
            logger.error(
                "publish of %s for %s failed: %s", facet.value, self._settings.serial_number, e
            )

    async def _record(self, reading: Reading) -> None:
        if self._telemetry is None:
            return
        try:
            await self._telemetry.write(reading)
        except Exception as e:
            logger.error(
                "telemetry for %s failed: %s", self._settings.serial_number, e
            )
