"""Binary decoders for the Airthings Wave Plus.

This module turns the two binary blobs the sensor exposes into typed values:

- **Manufacturer data** from an advertisement carries the sensor-family tag
  and the serial number, used to pick the target device among nearby radios.
- **The current-values characteristic** carries a fixed 24-byte little-endian
  record with humidity, radon, temperature, pressure, CO2 and VOC.

Everything here is pure: no I/O, no state. Decoders never guess; a record
with the wrong size is rejected with DecodeError so the caller can abandon
the read cycle and try again on its own schedule.
"""

from __future__ import annotations

import dataclasses
import struct
from dataclasses import dataclass
from typing import Optional

from .exceptions import DecodeError

# Little-endian company/family tag used by the Wave Plus in manufacturer data
WAVE_PLUS_FAMILY_TAG = 0x0334

# Characteristic holding the current sensor values
WAVE_PLUS_CHARACTERISTIC_UUID = "b42e2a68-ade7-11e4-89d3-123b93f75cba"

IDENTITY_MIN_LENGTH = 7
PAYLOAD_LENGTH = 24

# Device-reported "no data" marker for the 16-bit fields
SENTINEL = 0xFFFF

_IDENTITY = struct.Struct("<HL")
_PAYLOAD = struct.Struct("<BBBBHHHHHHHH")


@dataclass(frozen=True)
class DeviceIdentity:
    """Identity block extracted from one advertisement.

    Attributes:
        tag: 16-bit sensor-family tag (bytes 0-1, little-endian).
        serial: 32-bit unsigned serial number (bytes 2-5, little-endian).
    """

    tag: int
    serial: int

    def matches(self, serial: int) -> bool:
        """Return True when this is a Wave Plus with the given serial."""
        return self.tag == WAVE_PLUS_FAMILY_TAG and self.serial == serial


@dataclass(frozen=True)
class Reading:
    """One decoded set of sensor values.

    The field order follows the characteristic layout. Values are already
    scaled to physical units; radon, CO2 and VOC are the raw integers
    converted to float.

    Attributes:
        humidity: Relative humidity in %rH (0.5 %rH resolution).
        radon_st_avg: Short-term radon average in Bq/m3.
        radon_lt_avg: Long-term radon average in Bq/m3.
        temperature: Temperature in degrees Celsius (0.01 resolution).
        pressure: Atmospheric pressure in hPa (0.02 resolution).
        co2: CO2 concentration in ppm.
        voc: Total VOC level in ppb.
        rssi: Signal strength in dBm at the time of the read, when known.

    Note:
        A reading whose CO2 or VOC equals SENTINEL is decoded normally but
        reports ``is_valid == False``. The sensor sends this right after power
        up, before its first measurement completes.
    """

    humidity: float
    radon_st_avg: float
    radon_lt_avg: float
    temperature: float
    pressure: float
    co2: float
    voc: float
    rssi: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        return self.co2 != SENTINEL and self.voc != SENTINEL

    def with_rssi(self, rssi: Optional[float]) -> "Reading":
        return dataclasses.replace(self, rssi=None if rssi is None else float(rssi))

    def as_fields(self) -> dict[str, float]:
        """Return the telemetry field mapping, omitting an unknown RSSI."""
        fields: dict[str, float] = {}
        if self.rssi is not None:
            fields["rssi"] = float(self.rssi)
        fields.update(
            {
                "humidity": self.humidity,
                "radonStAvg": self.radon_st_avg,
                "radonLtAvg": self.radon_lt_avg,
                "temp": self.temperature,
                "pressure": self.pressure,
                "co2": self.co2,
                "voc": self.voc,
            }
        )
        return fields


def decode_identity(data: bytes) -> Optional[DeviceIdentity]:
    """Decode the manufacturer-data identity block of an advertisement.

    Args:
        data: Raw manufacturer-data block, company tag included. Layout is
            ``<tag:u16><serial:u32><unused:u16>``.

    Returns:
        The decoded identity, or None when the block is shorter than 7 bytes.
        Short blocks are common from unrelated devices and are not an error.
    """
    if len(data) < IDENTITY_MIN_LENGTH:
        return None
    tag, serial = _IDENTITY.unpack_from(data)
    return DeviceIdentity(tag=tag, serial=serial)


def decode_payload(data: bytes) -> Reading:
    """Decode the 24-byte current-values characteristic.

    The record is four unsigned bytes followed by eight unsigned 16-bit
    little-endian words. Only the indices below are meaningful:

    ====== ============= ==========
    index  quantity      scaling
    ====== ============= ==========
    1      humidity      / 2
    4      radon (st)    raw
    5      radon (lt)    raw
    6      temperature   / 100
    7      pressure      / 50
    8      co2           raw
    9      voc           raw
    ====== ============= ==========

    Args:
        data: Bytes read from the characteristic.

    Returns:
        Reading without RSSI.

    Raises:
        DecodeError: If the buffer is not exactly 24 bytes long.
    """
    if len(data) != PAYLOAD_LENGTH:
        raise DecodeError(
            "Unexpected payload length",
            f"expected {PAYLOAD_LENGTH} bytes, got {len(data)}",
        )

    fields = _PAYLOAD.unpack(bytes(data))
    return Reading(
        humidity=fields[1] / 2.0,
        radon_st_avg=float(fields[4]),
        radon_lt_avg=float(fields[5]),
        temperature=fields[6] / 100.0,
        pressure=fields[7] / 50.0,
        co2=float(fields[8]),
        voc=float(fields[9]),
    )
