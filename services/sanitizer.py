"""Per-channel validation of single telemetry readings.

Upstream values arrive as numbers, numeric strings or one of a handful of
sentinels the ground software writes when a sensor has no fix. Every function
here is total: anything that cannot be turned into a plausible reading comes
back as ``None`` (or ``""`` for :func:`round_value`) instead of raising.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Dict, Optional, Union

# None, False and numeric zero are sentinels too; see is_sentinel.
_STRING_SENTINELS = frozenset({"NaN", "99999.000000", ""})
_ALTITUDE_STRING_SENTINELS = _STRING_SENTINELS | {"0.000000"}

TEMPERATURE_LIMIT = 200.0
HUMIDITY_LIMIT = 100.0
CHART_SERIES_HUMIDITY_LIMIT = 120.0
PRESSURE_LIMIT = 2000.0
FUSE_ALTITUDE_CEILING = 40000.0


def is_sentinel(value: Any, altitude: bool = False) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        sentinels = _ALTITUDE_STRING_SENTINELS if altitude else _STRING_SENTINELS
        return value in sentinels
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    return False


def to_number(value: Any) -> Optional[float]:
    """Convert a number or numeric string to a finite float."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _bounded(value: Any, upper: Optional[float], digits: int = 1) -> Optional[float]:
    if is_sentinel(value):
        return None
    number = to_number(value)
    if number is None:
        return None
    if upper is not None and number > upper:
        return None
    return round(number, digits)


def sanitize_temperature(value: Any) -> Optional[float]:
    return _bounded(value, TEMPERATURE_LIMIT)


def sanitize_humidity(value: Any, limit: float = HUMIDITY_LIMIT) -> Optional[float]:
    return _bounded(value, limit)


def sanitize_pressure(value: Any) -> Optional[float]:
    return _bounded(value, PRESSURE_LIMIT)


def sanitize_altitude(value: Any, ceiling: Optional[float] = None) -> Optional[float]:
    """Altitude above sea level; ``ceiling`` is exclusive (fuse data uses 40000 m)."""
    if is_sentinel(value, altitude=True):
        return None
    number = to_number(value)
    if number is None or number < 0:
        return None
    if ceiling is not None and number >= ceiling:
        return None
    return round(number, 1)


def sanitize_coordinate(value: Any) -> Optional[float]:
    if not value:
        return None
    number = to_number(value)
    if number is None:
        return None
    return round(number, 8)


def round_value(value: Any, precision: int) -> Union[float, int, str]:
    """Round a generic reading such as voltage, frequency or rssi.

    ``0`` and ``"0"`` are genuine readings and are returned untouched. Any
    other falsy or non-numeric value yields ``""``.
    """
    if value == "0" or (isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0):
        return value
    if not value:
        return ""
    number = to_number(value)
    if number is None:
        return ""
    return round(number, precision)


def generic_reading(value: Any, precision: int) -> Optional[float]:
    """:func:`round_value` mapped onto the channel domain of ``float | None``."""
    rounded = round_value(value, precision)
    if rounded == "":
        return None
    return to_number(rounded)


SANITIZERS: Dict[str, Callable[[Any], Optional[float]]] = {
    "temperature": sanitize_temperature,
    "humidity": sanitize_humidity,
    "pressure": sanitize_pressure,
    "aboveSeaLevel": sanitize_altitude,
    "longitude": sanitize_coordinate,
    "latitude": sanitize_coordinate,
    "batteryVol": lambda value: generic_reading(value, 2),
    "freqz": lambda value: generic_reading(value, 2),
    "rssi": lambda value: generic_reading(value, 1),
    "raisingSpeed": lambda value: generic_reading(value, 1),
}


def sanitize(channel: str, value: Any) -> Optional[float]:
    try:
        sanitizer = SANITIZERS[channel]
    except KeyError as exc:
        raise ValueError(f"Unknown telemetry channel {channel!r}.") from exc
    return sanitizer(value)
