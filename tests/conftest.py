"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import struct
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping, Optional

import pytest

from wave_plus_monitor.codec import Reading, WAVE_PLUS_FAMILY_TAG
from wave_plus_monitor.config import Settings
from wave_plus_monitor.publisher import Facet, Publisher
from wave_plus_monitor.radio import Advertisement, ConnectionState, Peripheral, Radio
from wave_plus_monitor.telemetry import TelemetrySink

SERIAL = 2930012345


def make_payload(
    humidity: int = 91,
    radon_st: int = 40,
    radon_lt: int = 35,
    temperature: int = 2150,
    pressure: int = 50600,
    co2: int = 650,
    voc: int = 120,
) -> bytes:
    """Build a 24-byte current-values record from raw field values."""
    return struct.pack(
        "<BBBBHHHHHHHH",
        1,
        humidity,
        0,
        0,
        radon_st,
        radon_lt,
        temperature,
        pressure,
        co2,
        voc,
        0,
        0,
    )


def make_identity(serial: int = SERIAL, tag: int = WAVE_PLUS_FAMILY_TAG) -> bytes:
    """Build a manufacturer-data block, company tag included."""
    return struct.pack("<HLH", tag, serial, 0x0900)


class FakePeripheral(Peripheral):
    """Scriptable peripheral recording every operation."""

    def __init__(
        self,
        address: str = "AA:BB:CC:DD:EE:FF",
        payload: bytes = b"",
        rssi: Optional[int] = -60,
        connect_delay: float = 0.0,
        read_delay: float = 0.0,
        connect_error: Optional[Exception] = None,
        read_error: Optional[Exception] = None,
        disconnect_error: Optional[Exception] = None,
    ) -> None:
        self._address = address
        self.payload = payload or make_payload()
        self._rssi = rssi
        self.connect_delay = connect_delay
        self.read_delay = read_delay
        self.connect_error = connect_error
        self.read_error = read_error
        self.disconnect_error = disconnect_error
        self._state = ConnectionState.DISCONNECTED
        self.calls: list[str] = []
        # Operations started while a read was still in flight
        self.overlapping: list[str] = []
        self._reading = False

    @property
    def address(self) -> str:
        return self._address

    @property
    def state(self) -> ConnectionState:
        return self._state

    @state.setter
    def state(self, value: ConnectionState) -> None:
        self._state = value

    @property
    def rssi(self) -> Optional[int]:
        return self._rssi

    async def connect(self) -> None:
        self.calls.append("connect")
        self._state = ConnectionState.CONNECTING
        if self.connect_delay:
            # Left in CONNECTING when cancelled, like a stuck radio
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            self._state = ConnectionState.ERROR
            raise self.connect_error
        self._state = ConnectionState.CONNECTED

    def cancel_connect(self) -> None:
        self.calls.append("cancel_connect")
        if self._reading:
            self.overlapping.append("cancel_connect")
        if self._state is ConnectionState.CONNECTING:
            self._state = ConnectionState.DISCONNECTED

    async def disconnect(self) -> None:
        self.calls.append("disconnect")
        if self._reading:
            self.overlapping.append("disconnect")
        if self.disconnect_error is not None:
            raise self.disconnect_error
        self._state = ConnectionState.DISCONNECTED

    async def update_rssi(self) -> Optional[int]:
        return self._rssi

    async def read_characteristic(self, uuid: str) -> bytes:
        self.calls.append("read")
        self._reading = True
        try:
            if self.read_delay:
                await asyncio.sleep(self.read_delay)
        finally:
            self._reading = False
        if self.read_error is not None:
            raise self.read_error
        return self.payload


class FakeRadio(Radio):
    """Radio replaying a fixed list of advertisements, then staying silent."""

    def __init__(
        self,
        advertisements: Optional[list[Advertisement]] = None,
        peripheral: Optional[FakePeripheral] = None,
        powered: bool = True,
        discover_error: Optional[Exception] = None,
    ) -> None:
        self.advertisements = advertisements or []
        self.fake_peripheral = peripheral or FakePeripheral()
        self.powered = powered
        self.discover_error = discover_error
        self.scans_started = 0
        self.scans_stopped = 0

    async def is_powered(self) -> bool:
        return self.powered

    @asynccontextmanager
    async def discover(self) -> AsyncIterator[AsyncIterator[Advertisement]]:
        if self.discover_error is not None:
            raise self.discover_error
        self.scans_started += 1

        async def stream() -> AsyncIterator[Advertisement]:
            for adv in self.advertisements:
                await asyncio.sleep(0)
                yield adv
            await asyncio.Event().wait()

        try:
            yield stream()
        finally:
            self.scans_stopped += 1

    def peripheral(self, advertisement: Advertisement) -> Peripheral:
        return self.fake_peripheral


class RecordingPublisher(Publisher):
    def __init__(self) -> None:
        self.updates: list[tuple[Facet, dict[str, float]]] = []

    def publish(self, facet: Facet, values: Mapping[str, float]) -> None:
        self.updates.append((facet, dict(values)))

    def count(self, facet: Facet) -> int:
        return sum(1 for f, _ in self.updates if f is facet)


class RecordingTelemetry(TelemetrySink):
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.readings: list[Reading] = []
        self.error = error

    async def write(self, reading: Reading) -> bool:
        if self.error is not None:
            raise self.error
        self.readings.append(reading)
        return True


def wave_plus_advertisement(serial: int = SERIAL, rssi: int = -60) -> Advertisement:
    return Advertisement(
        address="AA:BB:CC:DD:EE:FF",
        name=None,
        rssi=rssi,
        manufacturer_blocks=(make_identity(serial),),
    )


@pytest.fixture
def settings() -> Settings:
    """Settings with short timeouts for tests."""
    return Settings(
        serial_number=str(SERIAL),
        frequency=300,
        scan_timeout=0.2,
        phase_timeout=0.1,
        retry_backoff=3.0,
        power_retry_delay=10.0,
        startup_delay=5.0,
    )


@pytest.fixture
def peripheral() -> FakePeripheral:
    return FakePeripheral()


@pytest.fixture
def radio(peripheral: FakePeripheral) -> FakeRadio:
    return FakeRadio(advertisements=[wave_plus_advertisement()], peripheral=peripheral)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()
