"""Settings record for one monitored Wave Plus."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigError
from .publisher import Facet

MIN_FREQUENCY = 60.0


@dataclass(frozen=True)
class InfluxSettings:
    """InfluxDB v2 endpoint and credentials."""

    url: str
    token: str
    org: str
    bucket: str


@dataclass(frozen=True)
class Settings:
    """Validated monitor settings.

    Attributes:
        serial_number: Serial printed on the device, as a numeric string.
        name: Display name, also used as the ``name`` telemetry tag.
        frequency: Requested polling period in seconds. The effective period
            is ``interval``, never below 60 seconds.
        enable_air_quality: Publish the air-quality facet.
        enable_co2: Publish the CO2 facet.
        enable_humidity: Publish the humidity facet.
        enable_temperature: Publish the temperature facet.
        influx: Telemetry endpoint; None disables telemetry.
        scan_timeout: Watchdog for one discovery window.
        phase_timeout: Ceiling for the connect phase and the read phase.
        retry_backoff: Delay before retrying after a connect timeout or a
            transport error.
        power_retry_delay: Delay before re-checking a powered-off adapter.
        startup_delay: Delay before the first cycle after start.
    """

    serial_number: str
    name: str = "Wave Plus"
    frequency: float = 300.0
    enable_air_quality: bool = True
    enable_co2: bool = True
    enable_humidity: bool = True
    enable_temperature: bool = True
    influx: Optional[InfluxSettings] = None
    scan_timeout: float = 50.0
    phase_timeout: float = 50.0
    retry_backoff: float = 3.0
    power_retry_delay: float = 10.0
    startup_delay: float = 10.0

    def __post_init__(self) -> None:
        if not str(self.serial_number).strip().isdigit():
            raise ConfigError("Invalid serial number", repr(self.serial_number))
        for key in ("scan_timeout", "phase_timeout", "retry_backoff"):
            if getattr(self, key) <= 0:
                raise ConfigError(f"{key} must be positive", str(getattr(self, key)))

    @property
    def serial(self) -> int:
        return int(str(self.serial_number).strip(), 10)

    @property
    def interval(self) -> float:
        return max(MIN_FREQUENCY, float(self.frequency))

    @property
    def enabled_facets(self) -> frozenset[Facet]:
        flags = {
            Facet.AIR_QUALITY: self.enable_air_quality,
            Facet.CO2: self.enable_co2,
            Facet.HUMIDITY: self.enable_humidity,
            Facet.TEMPERATURE: self.enable_temperature,
        }
        return frozenset(facet for facet, enabled in flags.items() if enabled)


def add_arguments(parser: argparse.ArgumentParser) -> None:
    """Register the settings options on an argument parser."""
    parser.add_argument(
        "--serial-number", required=True, help="Serial number of the Wave Plus"
    )
    parser.add_argument("--name", default="Wave Plus", help="Display name")
    parser.add_argument(
        "--frequency",
        type=float,
        default=300.0,
        help="Polling period in seconds (minimum 60)",
    )
    parser.add_argument("--disable-aq", action="store_true", help="Do not publish air quality")
    parser.add_argument("--disable-co2", action="store_true", help="Do not publish CO2")
    parser.add_argument(
        "--disable-humidity", action="store_true", help="Do not publish humidity"
    )
    parser.add_argument(
        "--disable-temp", action="store_true", help="Do not publish temperature"
    )
    parser.add_argument("--influx-url", default=os.environ.get("INFLUX_URL"))
    parser.add_argument("--influx-token", default=os.environ.get("INFLUX_TOKEN"))
    parser.add_argument("--influx-org", default=os.environ.get("INFLUX_ORG"))
    parser.add_argument("--influx-bucket", default=os.environ.get("INFLUX_BUCKET"))
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=50.0,
        help="Seconds to scan for the device before giving up",
    )
    parser.add_argument(
        "--phase-timeout",
        type=float,
        default=50.0,
        help="Seconds allowed for the connect phase and the read phase",
    )


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Build Settings from parsed command-line arguments.

    Telemetry is enabled only when URL, token, org and bucket are all given.

    Raises:
        ConfigError: If a value fails validation.
    """
    influx = None
    if args.influx_url and args.influx_token and args.influx_org and args.influx_bucket:
        influx = InfluxSettings(
            url=args.influx_url,
            token=args.influx_token,
            org=args.influx_org,
            bucket=args.influx_bucket,
        )

    return Settings(
        serial_number=args.serial_number,
        name=args.name,
        frequency=args.frequency,
        enable_air_quality=not args.disable_aq,
        enable_co2=not args.disable_co2,
        enable_humidity=not args.disable_humidity,
        enable_temperature=not args.disable_temp,
        influx=influx,
        scan_timeout=args.scan_timeout,
        phase_timeout=args.phase_timeout,
    )
