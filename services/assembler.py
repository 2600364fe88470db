"""Per-endpoint orchestration from upstream fetches to chart-ready series."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict
from datetime import timezone, tzinfo
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from app.schemas import DeviceInfoSeries, HeightSeries, ProfileSeries, ThresholdModel
from models.records import FilledSeries, FlightWindow, FuseLookup, SondeSummary
from services.aggregator import Aggregator, deep_merge
from services.sanitizer import (
    CHART_SERIES_HUMIDITY_LIMIT,
    FUSE_ALTITUDE_CEILING,
    generic_reading,
    sanitize_altitude,
    sanitize_humidity,
    sanitize_pressure,
    sanitize_temperature,
)
from services.series import (
    DATETIME_FORMAT,
    SEGMENT_FIELD,
    ChannelSpec,
    align,
    coordinate_track,
    dedupe,
    fill,
    filter_fields,
    format_label,
    parse_timestamp,
    propagate_segments,
    segment_channel,
    split_channel,
)
from services.thresholds import threshold_for
from services.upstream import FetchResult, SondeApiClient, build_default_client

logger = logging.getLogger(__name__)

# Value substituted when an upstream call fails, per call site.
FETCH_DEFAULTS: Dict[str, Callable[[], Any]] = {
    "dataset": list,
    "device_dataset": list,
    "flight_window": FlightWindow,
    "fuse_id": str,
    "fuse_samples": list,
    "latest_flight": lambda: asdict(SondeSummary()),
    "track": lambda: {"lnglat": [], "lastTimeHeight": None},
}

CHART_SERIES_KINDS = ("sondeRaw", "sonde", "fuse")
CHART_SERIES_FIELDS = ("segmemt", "aboveSeaLevel", "temperature", "pressure", "humidity", "seconds")
PROFILE_CHANNELS = ("temperature", "humidity", "pressure", "altitude")

_ALTITUDE = ChannelSpec.field("altitude", sanitize_altitude, source="aboveSeaLevel")
_PROFILE_SPECS = (
    ChannelSpec.field("temperature", sanitize_temperature),
    ChannelSpec.field("humidity", sanitize_humidity),
    ChannelSpec.field("pressure", sanitize_pressure),
    _ALTITUDE,
)
_FUSE_ALTITUDE = ChannelSpec.field(
    "fuse_altitude",
    lambda value: sanitize_altitude(value, ceiling=FUSE_ALTITUDE_CEILING),
    source="aboveSeaLevel",
)
_DEVICE_SPECS = (
    ChannelSpec.field("voltage", lambda value: generic_reading(value, 2), source="batteryVol"),
    ChannelSpec.field("frequency", lambda value: generic_reading(value, 2), source="freqz"),
    ChannelSpec.field("rssi", lambda value: generic_reading(value, 1), source="rssi"),
)
_CHART_SERIES_SANITIZERS: Dict[str, Callable[[Any], Any]] = {
    "temperature": sanitize_temperature,
    "humidity": lambda value: sanitize_humidity(value, limit=CHART_SERIES_HUMIDITY_LIMIT),
    "pressure": sanitize_pressure,
    "aboveSeaLevel": sanitize_altitude,
}


def _or_default(result: FetchResult[Any], call_site: str) -> Any:
    return result.unwrap_or(FETCH_DEFAULTS[call_site]())


def _split(filled: FilledSeries, names: Iterable[str]) -> Dict[str, List[List[Any]]]:
    tags = filled.channels.get(SEGMENT_FIELD, [])
    return {name: split_channel(filled.channels[name], tags) for name in names}


def _track_payload(samples: List[Any]) -> Dict[str, Any]:
    lnglat, last_altitude = coordinate_track(samples)
    return {"lnglat": lnglat, "lastTimeHeight": last_altitude}


class SeriesAssembler:
    """Turns upstream telemetry into the structures each endpoint returns."""

    def __init__(
        self,
        client: SondeApiClient,
        tz: Optional[tzinfo] = None,
        aggregator: Optional[Aggregator] = None,
    ) -> None:
        self.client = client
        self.tz = tz or client.tz or timezone.utc
        self.aggregator = aggregator or Aggregator()

    def _log(self, message: str, started: float, **context: Any) -> None:
        context["elapsed_ms"] = int((time.perf_counter() - started) * 1000)
        logger.info(message, extra=context)

    async def profile(self, station: str, tkyid: str, raw: bool = False) -> ProfileSeries:
        """Temperature/humidity/pressure/altitude profile of one flight."""
        started = time.perf_counter()
        result = await self.client.fetch_dataset(station, tkyid, raw=raw)
        samples = dedupe(_or_default(result, "dataset"), "seconds")

        if raw:
            filled = fill(samples, _PROFILE_SPECS, tz=self.tz)
            series = ProfileSeries(
                segmented=False,
                time=filled.time_axis,
                **{name: filled.channels[name] for name in PROFILE_CHANNELS},
            )
        else:
            filled = fill(propagate_segments(samples), (*_PROFILE_SPECS, segment_channel()), tz=self.tz)
            series = ProfileSeries(segmented=True, time=filled.time_axis, **_split(filled, PROFILE_CHANNELS))

        self._log(
            "Assembled profile series",
            started,
            station=station,
            tkyid=tkyid,
            data_type="raw" if raw else "qc",
            row_count=len(series.time),
        )
        return series

    async def fuse_lookup(self, station: str, tkyid: str) -> tuple[FuseLookup, FlightWindow]:
        """Resolve the fuse device id and the flight time window concurrently."""
        fuse_id, window = await asyncio.gather(
            self.client.fetch_fuse_id(tkyid),
            self.client.fetch_flight_window(station, tkyid),
        )
        flight: FlightWindow = _or_default(window, "flight_window")
        lookup = FuseLookup(
            sonde_code=_or_default(fuse_id, "fuse_id"),
            start=flight.start,
            end=flight.end,
        )
        return lookup, flight

    async def height(
        self,
        station: str,
        tkyid: str,
        raw: bool = False,
        with_fuse: bool = False,
    ) -> HeightSeries:
        """Sonde altitude over time, optionally aligned with the fuse altitude."""
        started = time.perf_counter()
        if with_fuse:
            dataset, (lookup, _flight) = await asyncio.gather(
                self.client.fetch_dataset(station, tkyid, raw=raw),
                self.fuse_lookup(station, tkyid),
            )
        else:
            dataset = await self.client.fetch_dataset(station, tkyid, raw=raw)
            lookup = None

        samples = dedupe(_or_default(dataset, "dataset"), "seconds")
        if raw:
            filled = fill(samples, (_ALTITUDE,), tz=self.tz)
        else:
            filled = fill(propagate_segments(samples), (_ALTITUDE, segment_channel()), tz=self.tz)

        fuse_attached = False
        if lookup is not None:
            fuse_result = await self.client.fetch_fuse_samples(lookup.sonde_code, lookup.start, lookup.end)
            fuse_samples = dedupe(_or_default(fuse_result, "fuse_samples"), "timeStamp")
            start_time = filled.first_epoch if filled.first_epoch is not None else lookup.start
            fuse = fill(
                fuse_samples,
                (_FUSE_ALTITUDE,),
                time_field="timeStamp",
                start_time=start_time,
                tz=self.tz,
            )
            filled = align(filled, fuse, tz=self.tz)
            fuse_attached = True

        if raw:
            altitude: Any = filled.channels["altitude"]
        else:
            altitude = _split(filled, ("altitude",))["altitude"]

        series = HeightSeries(
            segmented=not raw,
            time=filled.time_axis,
            altitude=altitude,
            fuse_altitude=filled.channels["fuse_altitude"] if fuse_attached else None,
        )
        self._log(
            "Assembled height series",
            started,
            station=station,
            tkyid=tkyid,
            data_type="raw" if raw else "qc",
            row_count=len(series.time),
        )
        return series

    async def device_info(self, station: str, tkyid: str) -> DeviceInfoSeries:
        """Battery voltage, frequency and rssi with manufacturer voltage bounds."""
        started = time.perf_counter()
        dataset, window = await asyncio.gather(
            self.client.fetch_device_dataset(station, tkyid),
            self.client.fetch_flight_window(station, tkyid),
        )
        samples = dedupe(_or_default(dataset, "device_dataset"), "seconds")
        flight: FlightWindow = _or_default(window, "flight_window")
        threshold = threshold_for(flight.firm)

        filled = fill(samples, _DEVICE_SPECS, tz=self.tz)
        rows = len(filled)
        series = DeviceInfoSeries(
            time=filled.time_axis,
            voltage=filled.channels["voltage"],
            frequency=filled.channels["frequency"],
            rssi=filled.channels["rssi"],
            voltage_max=[threshold.max] * rows,
            voltage_min=[threshold.min] * rows,
            threshold=ThresholdModel(**asdict(threshold)),
        )
        self._log(
            "Assembled device info series",
            started,
            station=station,
            tkyid=tkyid,
            data_type="device",
            row_count=rows,
        )
        return series

    async def history_line(self, stations: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        """Latest flight of each station merged with its decimated map track."""
        started = time.perf_counter()
        requested = [{"station": station.strip()} for station in stations if station.strip()]

        summaries = await self.aggregator.aggregate(
            requested,
            fetch=lambda entity: self.client.fetch_latest_flight(entity["station"]),
            transform=asdict,
            default=FETCH_DEFAULTS["latest_flight"],
            require_complete=False,
        )
        flights = [
            {"station": station, "tkyid": summary["tkyid"]}
            for station, summary in summaries.items()
        ]
        tracks = await self.aggregator.aggregate(
            flights,
            fetch=lambda entity: self.client.fetch_dataset(entity["station"], entity["tkyid"], raw=True),
            transform=_track_payload,
            default=FETCH_DEFAULTS["track"],
        )
        # Stations without a known flight still carry an empty track.
        baseline = {station: FETCH_DEFAULTS["track"]() for station in summaries}
        merged = deep_merge(summaries, deep_merge(baseline, tracks))
        self._log("Assembled history lines", started, row_count=len(merged))
        return merged

    async def _sonde_samples(self, station: str, tkyid: str, raw: bool) -> List[Dict[str, Any]]:
        result = await self.client.fetch_dataset(station, tkyid, raw=raw)
        samples = []
        for sample in dedupe(_or_default(result, "dataset"), "seconds"):
            if not isinstance(sample, Mapping):
                continue
            kept = filter_fields(sample, CHART_SERIES_FIELDS)
            for name, sanitizer in _CHART_SERIES_SANITIZERS.items():
                if name in kept:
                    kept[name] = sanitizer(kept[name])
            samples.append(kept)
        return samples

    async def _fuse_samples(self, station: str, tkyid: str) -> List[Dict[str, Any]]:
        lookup, _flight = await self.fuse_lookup(station, tkyid)
        result = await self.client.fetch_fuse_samples(lookup.sonde_code, lookup.start, lookup.end)
        formatted = []
        for sample in _or_default(result, "fuse_samples"):
            if not isinstance(sample, Mapping):
                continue
            epoch = parse_timestamp(sample.get("timeStamp"), self.tz)
            if epoch is None:
                continue
            formatted.append({**sample, "timeStamp": format_label(epoch, self.tz, DATETIME_FORMAT)})
        return dedupe(formatted, "timeStamp")

    async def chart_series(self, station: str, tkyid: str, kinds: Sequence[str]) -> Dict[str, List[Any]]:
        """Deduplicated sample arrays for each requested series kind."""
        started = time.perf_counter()
        handlers = {
            "sondeRaw": lambda: self._sonde_samples(station, tkyid, raw=True),
            "sonde": lambda: self._sonde_samples(station, tkyid, raw=False),
            "fuse": lambda: self._fuse_samples(station, tkyid),
        }
        selected = []
        for kind in kinds:
            if kind not in handlers:
                logger.warning("Ignoring unknown series kind", extra={"station": station, "reason": kind})
                continue
            if kind not in selected:
                selected.append(kind)

        results = await asyncio.gather(*(handlers[kind]() for kind in selected))
        self._log("Assembled chart series", started, station=station, tkyid=tkyid, row_count=len(selected))
        return dict(zip(selected, results))


@lru_cache
def build_default_assembler() -> SeriesAssembler:
    """Factory that wires the assembler with the default upstream client."""
    client = build_default_client()
    return SeriesAssembler(client=client)
