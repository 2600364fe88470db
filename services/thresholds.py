"""Static lookups keyed by the sonde manufacturer code (``TKY_FIRM``)."""

from __future__ import annotations

from typing import Any, Dict, Optional

from models.records import Threshold
from services.sanitizer import to_number

UNKNOWN_FACTORY = "--"

FACTORY_NAMES: Dict[int, str] = {
    7: "华云天仪",
    10: "华云升达",
    11: "华云天仪",
    20: "上海长望",
    30: "太原",
    40: "航天新气象",
    50: "南京大桥",
}

# Battery voltage envelopes per manufacturer, in volts. These are working
# placeholder values chosen for charting, not published manufacturer data;
# replace them once vendor specifications are available.
THRESHOLDS: Dict[int, Threshold] = {
    7: Threshold(max=4.2, normal=3.7, min=3.0),
    10: Threshold(max=6.0, normal=5.0, min=4.2),
    11: Threshold(max=4.2, normal=3.7, min=3.0),
    20: Threshold(max=9.0, normal=7.5, min=6.0),
    30: Threshold(max=6.0, normal=5.0, min=4.0),
    40: Threshold(max=4.5, normal=3.8, min=3.2),
    50: Threshold(max=6.0, normal=4.8, min=3.6),
}


def firm_code(value: Any) -> Optional[int]:
    number = to_number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def factory_name(value: Any) -> str:
    code = firm_code(value)
    if code is None:
        return UNKNOWN_FACTORY
    return FACTORY_NAMES.get(code, UNKNOWN_FACTORY)


def threshold_for(value: Any) -> Threshold:
    code = firm_code(value)
    if code is None:
        return Threshold()
    return THRESHOLDS.get(code, Threshold())
