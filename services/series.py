"""Resampling of irregular telemetry into dense, time-aligned channels."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple

from models.records import FilledSeries
from services.sanitizer import to_number

CLOCK_FORMAT = "%H:%M:%S"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

SEGMENT_FIELD = "segmemt"
SEGMENT_ORDER = ("UP", "HOR", "DOWN")
DECIMATION_STRIDE = 30


def _blank() -> Any:
    return None


@dataclass(frozen=True)
class ChannelSpec:
    """How one output channel is read from a raw sample.

    ``extract`` receives the whole sample and returns the sanitized value;
    ``blank`` builds the placeholder used for synthetic gap rows.
    """

    name: str
    extract: Callable[[Mapping[str, Any]], Any]
    blank: Callable[[], Any] = _blank

    @classmethod
    def field(
        cls,
        name: str,
        sanitizer: Callable[[Any], Any],
        source: Optional[str] = None,
    ) -> "ChannelSpec":
        key = source or name
        return cls(name=name, extract=lambda sample: sanitizer(sample.get(key)))


def segment_channel(name: str = SEGMENT_FIELD) -> ChannelSpec:
    return ChannelSpec(name=name, extract=lambda sample: sample.get(SEGMENT_FIELD))


def _marker(value: Any) -> Hashable:
    try:
        hash(value)
    except TypeError:
        return repr(value)
    return value


def dedupe(samples: Iterable[Any], key: str) -> List[Any]:
    """Drop samples whose ``key`` value was already seen, keeping the first."""
    seen: set = set()
    unique: List[Any] = []
    for sample in samples:
        value = sample.get(key) if isinstance(sample, Mapping) else None
        marker = _marker(value)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(sample)
    return unique


def filter_fields(sample: Mapping[str, Any], fields: Sequence[str]) -> Dict[str, Any]:
    return {name: sample[name] for name in fields if name in sample}


def parse_timestamp(value: Any, tz: tzinfo = timezone.utc) -> Optional[int]:
    """Parse an ISO-8601 string into epoch seconds; naive values use ``tz``."""
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if not candidate:
        return None
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return math.floor(parsed.timestamp())


def sample_epoch(sample: Mapping[str, Any], time_field: str, tz: tzinfo = timezone.utc) -> Optional[int]:
    raw = sample.get(time_field)
    if time_field == "seconds":
        number = to_number(raw)
        if not number:
            return None
        return int(number)
    return parse_timestamp(raw, tz)


def format_label(epoch: int, tz: tzinfo = timezone.utc, fmt: str = CLOCK_FORMAT) -> str:
    return datetime.fromtimestamp(epoch, tz).strftime(fmt)


def _append(series: FilledSeries, epoch: int, label: str, values: Mapping[str, Any]) -> None:
    series.time_axis.append(label)
    for name, value in values.items():
        series.channels[name].append(value)
    if series.first_epoch is None:
        series.first_epoch = epoch
    series.last_epoch = epoch


def fill(
    samples: Iterable[Any],
    channels: Sequence[ChannelSpec],
    time_field: str = "seconds",
    start_time: Optional[int] = None,
    tz: tzinfo = timezone.utc,
    label_format: str = CLOCK_FORMAT,
) -> FilledSeries:
    """Resample ``samples`` to one row per second, inserting blank rows for gaps.

    Samples must already be deduplicated and in time order. When
    ``start_time`` is given, earlier samples are discarded and the first
    retained sample's gap is measured from ``start_time``.
    """
    series = FilledSeries(channels={spec.name: [] for spec in channels})
    previous = start_time

    for sample in samples:
        if not isinstance(sample, Mapping):
            continue
        epoch = sample_epoch(sample, time_field, tz)
        if epoch is None:
            continue
        if start_time is not None and epoch < start_time:
            continue

        if previous is not None:
            gap = epoch - previous
            if gap == 0 and series.last_epoch is not None:
                continue
            for offset in range(1, gap):
                missing = previous + offset
                _append(
                    series,
                    missing,
                    format_label(missing, tz, label_format),
                    {spec.name: spec.blank() for spec in channels},
                )

        _append(
            series,
            epoch,
            format_label(epoch, tz, label_format),
            {spec.name: spec.extract(sample) for spec in channels},
        )
        previous = epoch

    return series


def align(
    base: FilledSeries,
    other: FilledSeries,
    tz: tzinfo = timezone.utc,
    label_format: str = CLOCK_FORMAT,
) -> FilledSeries:
    """Place two flat-channel series on one shared axis.

    Each series is shifted by the distance of its first row from the earliest
    first row and padded with ``None`` up to the union length. Channel names
    must not collide.
    """
    if base.first_epoch is None and other.first_epoch is None:
        return FilledSeries(
            channels={name: [] for name in (*base.channels, *other.channels)},
        )

    starts = [s.first_epoch for s in (base, other) if s.first_epoch is not None]
    start = min(starts)
    length = max(
        s.first_epoch - start + len(s) for s in (base, other) if s.first_epoch is not None
    )

    merged = FilledSeries(
        time_axis=[format_label(start + index, tz, label_format) for index in range(length)],
        first_epoch=start,
        last_epoch=start + length - 1,
    )
    for series in (base, other):
        lead = 0 if series.first_epoch is None else series.first_epoch - start
        for name, values in series.channels.items():
            trail = length - lead - len(values)
            merged.channels[name] = [None] * lead + list(values) + [None] * trail
    return merged


def propagate_segments(samples: Iterable[Any]) -> List[Mapping[str, Any]]:
    """Carry the last known flight-phase tag forward onto untagged samples.

    Samples before the first tagged one are dropped. Inputs are not mutated.
    """
    tagged: List[Mapping[str, Any]] = []
    last_tag: Optional[str] = None
    for sample in samples:
        if not isinstance(sample, Mapping):
            continue
        tag = sample.get(SEGMENT_FIELD)
        if tag:
            last_tag = tag
        elif last_tag:
            sample = {**sample, SEGMENT_FIELD: last_tag}
        else:
            continue
        tagged.append(sample)
    return tagged


def split_channel(values: Sequence[Any], tags: Sequence[Optional[str]]) -> List[List[Any]]:
    """Fan a channel into ``[ascent, level, descent]`` on the same axis."""
    split: List[List[Any]] = [[], [], []]
    for value, tag in zip(values, tags):
        for index, segment in enumerate(SEGMENT_ORDER):
            split[index].append(value if tag == segment else None)
    return split


def _valid_point(point: Any) -> bool:
    if not isinstance(point, (list, tuple)) or len(point) < 2:
        return False
    return bool(point[0]) and bool(point[1])


def decimate(points: Any, stride: int = DECIMATION_STRIDE) -> List[Any]:
    """Keep every ``stride``-th coordinate plus the final valid fix."""
    if not isinstance(points, (list, tuple)) or not points:
        return []
    trimmed = list(points)
    while trimmed and not _valid_point(trimmed[-1]):
        trimmed.pop()
    if not trimmed:
        return []
    last = trimmed.pop()
    kept = trimmed[::stride]
    kept.append(last)
    return kept


def coordinate_track(samples: Iterable[Any]) -> Tuple[List[List[float]], Optional[float]]:
    """Build the map track of a flight and the altitude of its last fix.

    Samples without longitude, latitude or a non-zero altitude are skipped.
    """
    points: List[List[float]] = []
    last_altitude: Optional[float] = None
    for sample in samples:
        if not isinstance(sample, Mapping):
            continue
        longitude = to_number(sample.get("longitude")) if sample.get("longitude") else None
        latitude = to_number(sample.get("latitude")) if sample.get("latitude") else None
        altitude = to_number(sample.get("aboveSeaLevel"))
        if longitude is None or latitude is None or not altitude:
            continue
        points.append([longitude, latitude])
        last_altitude = altitude
    return decimate(points), last_altitude
