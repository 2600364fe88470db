"""Build renderer input from assembled series."""

from __future__ import annotations

from typing import Any, List, Sequence

from app.schemas import DeviceInfoSeries, HeightSeries, ProfileSeries
from services.renderer import ChartSpec, LineSpec
from services.series import SEGMENT_ORDER

_SEGMENT_STYLES = ("-", "--", ":")
_PROFILE_CHANNELS = (
    ("temperature", "temperature (°C)", "#FF0000"),
    ("humidity", "humidity (%)", "#00AA00"),
    ("pressure", "pressure (hPa)", "#0000FF"),
    ("altitude", "altitude (m)", "#000000"),
)


def _lines(name: str, values: Sequence[Any], segmented: bool, axis: int, color: str) -> List[LineSpec]:
    if not segmented:
        return [LineSpec(name=name, values=values, axis=axis, color=color)]
    return [
        LineSpec(name=f"{name} {segment}", values=channel, axis=axis, style=style, color=color)
        for segment, style, channel in zip(SEGMENT_ORDER, _SEGMENT_STYLES, values)
    ]


def profile_chart(series: ProfileSeries, width: int, height: int) -> ChartSpec:
    lines: List[LineSpec] = []
    for axis, (field, _title, color) in enumerate(_PROFILE_CHANNELS):
        lines.extend(_lines(field, getattr(series, field), series.segmented, axis, color))
    return ChartSpec(
        labels=series.time,
        lines=lines,
        axes=[title for _field, title, _color in _PROFILE_CHANNELS],
        width=width,
        height=height,
    )


def height_chart(series: HeightSeries, width: int, height: int) -> ChartSpec:
    lines = _lines("sonde", series.altitude, series.segmented, 0, "#000000")
    if series.fuse_altitude is not None:
        lines.append(LineSpec(name="fuse", values=series.fuse_altitude, color="#FF0000"))
    return ChartSpec(labels=series.time, lines=lines, axes=["altitude (m)"], width=width, height=height)


def device_chart(series: DeviceInfoSeries, width: int, height: int) -> ChartSpec:
    lines = [
        LineSpec(name="voltage", values=series.voltage, axis=0, color="#000000"),
        LineSpec(name="voltage max", values=series.voltage_max, axis=0, style="--", color="#FF0000"),
        LineSpec(name="voltage min", values=series.voltage_min, axis=0, style="--", color="#0000FF"),
        LineSpec(name="frequency", values=series.frequency, axis=1, color="#00AA00"),
        LineSpec(name="rssi", values=series.rssi, axis=2, color="#F56CB5"),
    ]
    return ChartSpec(
        labels=series.time,
        lines=lines,
        axes=["voltage (V)", "frequency (MHz)", "rssi (dBm)"],
        width=width,
        height=height,
    )
