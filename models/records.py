"""Domain models shared across services."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True, slots=True)
class Threshold:
    """Battery voltage bounds for one sonde manufacturer."""

    max: float = 0.0
    normal: float = 0.0
    min: float = 0.0


@dataclass(slots=True)
class SondeSummary:
    """Latest flight of a station as reported by the metadata query API."""

    tkyid: str = ""
    startTime: str = ""
    endTime: str = ""
    stationName: str = ""
    stationNum: str = ""
    factoryName: str = ""


@dataclass(frozen=True, slots=True)
class FlightWindow:
    """Launch/finish epochs of one flight plus the manufacturer code."""

    start: Optional[int] = None
    end: Optional[int] = None
    firm: Optional[str] = None


@dataclass(frozen=True, slots=True)
class FuseLookup:
    """Parameters needed to query the fuse-device time series."""

    sonde_code: str = ""
    start: Optional[int] = None
    end: Optional[int] = None


@dataclass(slots=True)
class FilledSeries:
    """Channels resampled to one row per elapsed second."""

    time_axis: List[str] = field(default_factory=list)
    channels: Dict[str, List[Any]] = field(default_factory=dict)
    first_epoch: Optional[int] = None
    last_epoch: Optional[int] = None

    def __len__(self) -> int:
        return len(self.time_axis)


@dataclass(frozen=True, slots=True)
class JsonBody:
    """Structured payload returned to machine consumers."""

    payload: Any


@dataclass(frozen=True, slots=True)
class ImageBody:
    """Rendered chart returned as base64 text."""

    image: bytes

    def encoded(self) -> str:
        return base64.b64encode(self.image).decode("ascii")
