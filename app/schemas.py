"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Channel = List[Optional[float]]
SegmentedChannel = List[Channel]


def _as_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class SondeRequest(BaseModel):
    """Station and instrument identifiers shared by every chart endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    station: str = ""
    tkyid: str = ""

    @field_validator("station", "tkyid", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        value = _as_text(value)
        return value.strip() if isinstance(value, str) else value


class ChartRequest(SondeRequest):
    """Body of ``/image``, ``/heightImage`` and ``/deviceInfoImage``."""

    type: str = Field("", description="'raw' selects unprocessed data, anything else quality-controlled.")
    from_: str = Field("", alias="from", description="'web' returns JSON instead of an image.")
    fuse: bool = Field(False, description="Overlay the fuse-device altitude on the height chart.")

    @field_validator("type", "from_", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("fuse", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> Any:
        if value is None or value == "":
            return False
        return value

    @property
    def raw(self) -> bool:
        return self.type == "raw"

    @property
    def wants_json(self) -> bool:
        return self.from_ == "web"


class ChartSeriesRequest(SondeRequest):
    """Body of ``/sondedataforecharts``."""

    resType: str = ""

    @field_validator("resType", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return _as_text(value)


class ProfileSeries(BaseModel):
    """Temperature, humidity, pressure and altitude on a one-second axis.

    Quality-controlled data is segmented: every channel is an
    ``[ascent, level, descent]`` triple sharing ``time``.
    """

    segmented: bool
    time: List[str] = Field(default_factory=list)
    temperature: Union[SegmentedChannel, Channel] = Field(default_factory=list)
    humidity: Union[SegmentedChannel, Channel] = Field(default_factory=list)
    pressure: Union[SegmentedChannel, Channel] = Field(default_factory=list)
    altitude: Union[SegmentedChannel, Channel] = Field(default_factory=list)


class HeightSeries(BaseModel):
    """Sonde altitude, optionally aligned with the fuse-device altitude."""

    segmented: bool
    time: List[str] = Field(default_factory=list)
    altitude: Union[SegmentedChannel, Channel] = Field(default_factory=list)
    fuse_altitude: Optional[Channel] = None


class ThresholdModel(BaseModel):
    max: float = 0.0
    normal: float = 0.0
    min: float = 0.0


class DeviceInfoSeries(BaseModel):
    """Device health channels plus constant voltage threshold lines."""

    time: List[str] = Field(default_factory=list)
    voltage: Channel = Field(default_factory=list)
    frequency: Channel = Field(default_factory=list)
    rssi: Channel = Field(default_factory=list)
    voltage_max: Channel = Field(default_factory=list)
    voltage_min: Channel = Field(default_factory=list)
    threshold: ThresholdModel = Field(default_factory=ThresholdModel)
