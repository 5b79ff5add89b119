"""Air-quality index derived from a Wave Plus reading.

The index is the worst of four independent sub-scores (humidity, radon,
CO2, VOC). The scale is the accessory-model ordinal, where larger means
worse air. Only GOOD, FAIR and POOR are ever produced.

The humidity band tests are kept exactly as the device integration has always
bucketed them: each band is an OR of two comparisons, so e.g. 24.9 %rH lands
in POOR through the ``< 25`` branch.
"""

from __future__ import annotations

from enum import IntEnum


class AirQuality(IntEnum):
    """Accessory-model air quality ordinal."""

    UNKNOWN = 0
    EXCELLENT = 1
    GOOD = 2
    FAIR = 3
    INFERIOR = 4
    POOR = 5


def humidity_score(humidity: float) -> AirQuality:
    if humidity >= 70 or humidity < 25:
        return AirQuality.POOR
    elif humidity >= 60 or humidity < 30:
        return AirQuality.FAIR
    return AirQuality.GOOD


def radon_score(radon_st_avg: float) -> AirQuality:
    if radon_st_avg >= 150:
        return AirQuality.POOR
    elif radon_st_avg >= 100:
        return AirQuality.FAIR
    return AirQuality.GOOD


def co2_score(co2: float) -> AirQuality:
    if co2 >= 1000:
        return AirQuality.POOR
    elif co2 >= 800:
        return AirQuality.FAIR
    return AirQuality.GOOD


def voc_score(voc: float) -> AirQuality:
    if voc >= 2000:
        return AirQuality.POOR
    elif voc >= 250:
        return AirQuality.FAIR
    return AirQuality.GOOD


def classify(humidity: float, radon_st_avg: float, co2: float, voc: float) -> AirQuality:
    """Return the overall air quality as the maximum of the four sub-scores.

    Args:
        humidity: Relative humidity in %rH.
        radon_st_avg: Short-term radon average in Bq/m3.
        co2: CO2 in ppm.
        voc: VOC in ppb.

    Returns:
        AirQuality between GOOD and POOR.
    """
    return max(
        humidity_score(humidity),
        radon_score(radon_st_avg),
        co2_score(co2),
        voc_score(voc),
    )
