"""Bluetooth LE adapter interface and its bleak implementation.

The monitor never talks to bleak directly. It goes through two small
interfaces so the session state machine can be driven by fakes in tests and
so every radio interaction has one well-defined failure vocabulary:

- **Radio**: adapter power state, discovery sessions and handle creation.
- **Peripheral**: a handle on one discovered device with an explicit
  connection state and connect / cancel / disconnect / read operations.

Discovery is exposed as an async context manager yielding a bounded channel
of Advertisement events. Leaving the context always stops the scanner, which
makes cancelling a scan (for instance from a watchdog timeout) safe.

Requirements:
- bleak: Cross-platform BLE library for device communication
"""

from __future__ import annotations

import asyncio
import logging
import platform
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .exceptions import (
    CharacteristicNotFoundError,
    ConnectCancelledError,
    RadioUnavailableError,
    TransportError,
)

logger = logging.getLogger(__name__)

# Advertisements are dropped when the consumer falls this far behind
ADVERTISEMENT_BACKLOG = 256

# bleak's own connect timeout runs this much longer than the phase timeout,
# so the phase timeout always fires first
CLIENT_TIMEOUT_MARGIN = 10.0

POWER_CHECK_TIMEOUT = 10.0


class ConnectionState(str, Enum):
    """Connection state of a Peripheral."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class Advertisement:
    """One observed advertisement frame.

    Attributes:
        address: Platform address of the advertiser (MAC or CoreBluetooth UUID).
        name: Advertised local name, if any.
        rssi: Received signal strength in dBm.
        manufacturer_blocks: Raw manufacturer-data blocks, each starting with
            its little-endian 16-bit company/family tag.
        device: Opaque platform object needed to connect to the advertiser.
    """

    address: str
    name: Optional[str]
    rssi: Optional[int]
    manufacturer_blocks: tuple[bytes, ...] = ()
    device: Any = field(default=None, compare=False, repr=False)


class Peripheral(ABC):
    """Handle on one discovered device."""

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @property
    @abstractmethod
    def state(self) -> ConnectionState:
        pass

    @property
    @abstractmethod
    def rssi(self) -> Optional[int]:
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection.

        Raises:
            TransportError: The adapter reported a connection failure. The
                handle is left in ConnectionState.ERROR.
            ConnectCancelledError: cancel_connect() aborted the attempt.
            asyncio.TimeoutError: The adapter gave up waiting for the device.
                The handle is left disconnected.
        """
        pass

    @abstractmethod
    def cancel_connect(self) -> None:
        """Abort an in-flight connect. Best effort, never raises."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Tear the connection down. Raises TransportError on failure."""
        pass

    @abstractmethod
    async def update_rssi(self) -> Optional[int]:
        pass

    @abstractmethod
    async def read_characteristic(self, uuid: str) -> bytes:
        """Discover a characteristic by UUID and read its value.

        Raises:
            CharacteristicNotFoundError: The device does not expose ``uuid``.
            TransportError: Not connected, or the read failed.
        """
        pass


class Radio(ABC):
    """The Bluetooth LE adapter."""

    @abstractmethod
    async def is_powered(self) -> bool:
        pass

    @abstractmethod
    def discover(self) -> Any:
        """Return an async context manager yielding advertisements.

        Usage::

            async with radio.discover() as advertisements:
                async for adv in advertisements:
                    ...

        Raises:
            RadioUnavailableError: Discovery mode could not be started.
        """
        pass

    @abstractmethod
    def peripheral(self, advertisement: Advertisement) -> Peripheral:
        pass


def manufacturer_blocks(adv: AdvertisementData) -> tuple[bytes, ...]:
    """Rebuild raw manufacturer-data blocks from bleak's parsed mapping.

    bleak strips the 16-bit company identifier into the dict key. The block
    on the air is ``<company id, little-endian><payload>``, which is what the
    identity decoder expects.
    """
    blocks = []
    for company_id, payload in (adv.manufacturer_data or {}).items():
        blocks.append(company_id.to_bytes(2, "little") + bytes(payload))
    return tuple(blocks)


class _AdvertisementChannel:
    """Bounded queue bridging the scanner callback to an async iterator."""

    def __init__(self, maxsize: int = ADVERTISEMENT_BACKLOG) -> None:
        self._queue: asyncio.Queue[Advertisement] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def put(self, adv: Advertisement) -> None:
        try:
            self._queue.put_nowait(adv)
        except asyncio.QueueFull:
            self.dropped += 1

    def __aiter__(self) -> "_AdvertisementChannel":
        return self

    async def __anext__(self) -> Advertisement:
        return await self._queue.get()


class BleakPeripheral(Peripheral):
    """Peripheral backed by bleak's BleakClient.

    Attributes:
        _device: BLEDevice captured during discovery.
        _client: Client of the current or last connection attempt.
        _state: Connection state as seen by this handle.
        _connect_task: In-flight connect, cancelled by cancel_connect().
        _rssi: RSSI of the advertisement that resolved this handle.
    """

    def __init__(
        self, device: BLEDevice, rssi: Optional[int] = None, timeout: float = 50.0
    ) -> None:
        self._device = device
        self._client: Optional[BleakClient] = None
        self._state = ConnectionState.DISCONNECTED
        self._connect_task: Optional[asyncio.Task[Any]] = None
        self._cancel_requested = False
        self._rssi = rssi
        self._timeout = timeout

    @property
    def address(self) -> str:
        return self._device.address

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def rssi(self) -> Optional[int]:
        return self._rssi

    def _on_disconnect(self, _: BleakClient) -> None:
        logger.debug("Disconnected callback: %s", self.address)
        if self._state is not ConnectionState.ERROR:
            self._state = ConnectionState.DISCONNECTED

    async def connect(self) -> None:
        if self._state is ConnectionState.CONNECTED:
            return

        self._state = ConnectionState.CONNECTING
        self._cancel_requested = False
        self._client = BleakClient(
            self._device,
            disconnected_callback=self._on_disconnect,
            timeout=self._timeout,
        )
        self._connect_task = asyncio.ensure_future(self._client.connect())
        try:
            await self._connect_task
        except asyncio.CancelledError:
            self._state = ConnectionState.DISCONNECTED
            if self._cancel_requested:
                raise ConnectCancelledError(self.address) from None
            raise
        except asyncio.TimeoutError:
            # bleak's own connect timeout
            self._state = ConnectionState.DISCONNECTED
            raise
        except (BleakError, OSError) as e:
            self._state = ConnectionState.ERROR
            raise TransportError(self.address, str(e)) from e
        finally:
            self._connect_task = None

        self._state = ConnectionState.CONNECTED
        logger.debug("BLE connection established: %s", self.address)

    def cancel_connect(self) -> None:
        if self._connect_task is not None and not self._connect_task.done():
            logger.debug("Cancelling connect: %s", self.address)
            self._cancel_requested = True
            self._connect_task.cancel()
        if self._state is ConnectionState.CONNECTING:
            self._state = ConnectionState.DISCONNECTED

    async def disconnect(self) -> None:
        if self._client is None:
            self._state = ConnectionState.DISCONNECTED
            return

        self._state = ConnectionState.DISCONNECTING
        try:
            await self._client.disconnect()
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            self._state = ConnectionState.ERROR
            raise TransportError(self.address, str(e)) from e
        self._state = ConnectionState.DISCONNECTED

    async def update_rssi(self) -> Optional[int]:
        # bleak has no RSSI query on an open link; report the advertised value
        return self._rssi

    async def read_characteristic(self, uuid: str) -> bytes:
        client = self._client
        if client is None or not client.is_connected:
            raise TransportError(self.address, "not connected")

        char = client.services.get_characteristic(uuid)
        if char is None:
            raise CharacteristicNotFoundError(uuid, f"on {self.address}")

        try:
            data = await client.read_gatt_char(char)
        except asyncio.TimeoutError:
            raise
        except (BleakError, OSError) as e:
            raise TransportError(self.address, str(e)) from e
        logger.debug("Read %d bytes from %s", len(data), uuid)
        return bytes(data)


class BleakRadio(Radio):
    """Radio backed by bleak's BleakScanner."""

    def __init__(self, phase_timeout: float = 50.0) -> None:
        self._client_timeout = phase_timeout + CLIENT_TIMEOUT_MARGIN

    async def is_powered(self) -> bool:
        """Check whether the Bluetooth adapter is powered on.

        Uses ``bluetoothctl show`` on Linux and ``system_profiler`` on macOS.
        Other platforms, or a missing tool, are assumed powered; a powered-off
        adapter then surfaces as RadioUnavailableError from discover().
        """
        system = platform.system().lower()
        if system == "linux":
            cmd, marker = ["bluetoothctl", "show"], "Powered: yes"
        elif system == "darwin":
            cmd, marker = ["system_profiler", "SPBluetoothDataType"], "State: On"
        else:
            return True

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning("Could not check Bluetooth power state: %s", e)
            return True

        try:
            stdout, _ = await asyncio.wait_for(
                proc.communicate(), timeout=POWER_CHECK_TIMEOUT
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Could not check Bluetooth power state: %s timed out after %.0fs",
                cmd[0],
                POWER_CHECK_TIMEOUT,
            )
            return True
        finally:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        return marker in stdout.decode("utf-8", errors="replace")

    @asynccontextmanager
    async def discover(self) -> AsyncIterator[_AdvertisementChannel]:
        channel = _AdvertisementChannel()

        def on_detection(dev: BLEDevice, adv: AdvertisementData) -> None:
            channel.put(
                Advertisement(
                    address=dev.address,
                    name=adv.local_name or dev.name,
                    rssi=adv.rssi,
                    manufacturer_blocks=manufacturer_blocks(adv),
                    device=dev,
                )
            )

        scanner = BleakScanner(detection_callback=on_detection)
        try:
            await scanner.start()
        except (BleakError, OSError) as e:
            raise RadioUnavailableError(str(e)) from e
        logger.debug("Discovery started")

        try:
            yield channel
        finally:
            try:
                await scanner.stop()
            except (BleakError, OSError) as e:
                logger.warning("Failed to stop discovery: %s", e)
            if channel.dropped:
                logger.debug("Discovery dropped %d advertisements", channel.dropped)
            logger.debug("Discovery stopped")

    def peripheral(self, advertisement: Advertisement) -> Peripheral:
        return BleakPeripheral(
            advertisement.device, advertisement.rssi, timeout=self._client_timeout
        )
