"""Accessory-model publishers receiving change-filtered facet updates."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

logger = logging.getLogger(__name__)

MANUFACTURER = "Airthings"
MODEL = "Wave Plus"


class Facet(str, Enum):
    """Independently publishable sensor facet."""

    AIR_QUALITY = "air_quality"
    CO2 = "co2"
    HUMIDITY = "humidity"
    TEMPERATURE = "temperature"


@dataclass(frozen=True)
class FacetRange:
    """Value bounds and resolution a facet is declared with."""

    min_value: float
    max_value: float
    min_step: float
    unit: str


FACET_RANGES: dict[Facet, FacetRange] = {
    Facet.AIR_QUALITY: FacetRange(0, 5, 1, ""),
    Facet.CO2: FacetRange(0, 100000, 1, "ppm"),
    Facet.HUMIDITY: FacetRange(0, 100, 0.5, "%"),
    Facet.TEMPERATURE: FacetRange(-200, 200, 0.01, "°C"),
}


class Publisher(ABC):
    """Sink for current sensor values.

    Update semantics are "set current value": the publisher keeps whatever it
    was last given and never acknowledges. The session driver only calls
    publish() when a value actually changed.
    """

    @abstractmethod
    def publish(self, facet: Facet, values: Mapping[str, float]) -> None:
        """Set the current value(s) of one facet.

        Args:
            facet: Facet being updated.
            values: Named values. The air-quality facet carries
                ``air_quality`` and ``voc``; the others carry a single value
                keyed by the facet name.
        """
        pass


class LoggingPublisher(Publisher):
    """Publisher that only logs updates."""

    def publish(self, facet: Facet, values: Mapping[str, float]) -> None:
        logger.info(
            "update %s: %s",
            facet.value,
            ", ".join(f"{k}={v:g}" for k, v in values.items()),
        )
