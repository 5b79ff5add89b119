"""Discovery of the target Wave Plus among nearby advertisers."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from .codec import decode_identity
from .radio import Advertisement, Peripheral, Radio

logger = logging.getLogger(__name__)

SCAN_TIMEOUT = 50.0


class LocatorState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    FOUND = "found"
    TIMED_OUT = "timed-out"


class DeviceLocator:
    """Scan for the advertiser whose identity block carries our serial number.

    One scan runs at a time; calling scan() while another scan is in progress
    returns None immediately. A scan ends either when a matching
    advertisement arrives (FOUND) or when the watchdog expires (TIMED_OUT).
    Neither outcome is an error: the caller simply retries later.

    Attributes:
        _radio: Adapter used for discovery.
        _serial: Target serial number.
        _timeout: Watchdog in seconds for one scan.
        _state: Current LocatorState.
    """

    def __init__(self, radio: Radio, serial: int, timeout: float = SCAN_TIMEOUT) -> None:
        self._radio = radio
        self._serial = serial
        self._timeout = timeout
        self._state = LocatorState.IDLE

    @property
    def state(self) -> LocatorState:
        return self._state

    async def scan(self) -> Optional[Peripheral]:
        """Run one discovery window.

        Returns:
            Handle on the matching device, or None if the watchdog fired or a
            scan was already running.

        Raises:
            RadioUnavailableError: Discovery mode could not be started.
        """
        if self._state is LocatorState.SCANNING:
            logger.debug("Scan already in progress for %s", self._serial)
            return None

        self._state = LocatorState.SCANNING
        logger.info("Scanning for %s (timeout=%.0fs)...", self._serial, self._timeout)
        try:
            peripheral = await asyncio.wait_for(self._watch(), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._state = LocatorState.TIMED_OUT
            logger.warning("Scan for %s has timed out.", self._serial)
            return None
        except BaseException:
            self._state = LocatorState.IDLE
            raise

        if peripheral is None:
            self._state = LocatorState.TIMED_OUT
            logger.warning("Discovery for %s ended without a match.", self._serial)
            return None

        self._state = LocatorState.FOUND
        return peripheral

    async def _watch(self) -> Optional[Peripheral]:
        async with self._radio.discover() as advertisements:
            async for adv in advertisements:
                if self._matches(adv):
                    logger.info("found: %s (rssi=%s)", self._serial, adv.rssi)
                    return self._radio.peripheral(adv)
        return None

    def _matches(self, adv: Advertisement) -> bool:
        for block in adv.manufacturer_blocks:
            identity = decode_identity(block)
            if identity is not None and identity.matches(self._serial):
                return True
        return False
