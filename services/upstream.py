"""Async client for the upstream sonde data and metadata APIs."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import timezone, tzinfo
from functools import lru_cache
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from models.records import FlightWindow, SondeSummary
from services.series import parse_timestamp
from services.thresholds import factory_name
from settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

FLIGHT_TABLE = "TK_TKY_STAT_DATA"
FUSE_TABLE = "TK_SONDE_FUSE"


class FetchError(Exception):
    """An upstream call produced no usable data."""

    def __init__(self, resource: str, reason: str) -> None:
        super().__init__(f"{resource}: {reason}")
        self.resource = resource
        self.reason = reason


class UpstreamTransportError(FetchError):
    """Network failure, non-2xx status or an unreadable body."""


class UpstreamLogicalError(FetchError):
    """The upstream answered 200 but reported an error or an unexpected shape."""


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        if self.error is not None or self.value is None:
            return default
        return self.value


def resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return timezone.utc


def _filters(*pairs: tuple[str, str]) -> str:
    return json.dumps([{"FD": field, "OP": "=", "WD": value} for field, value in pairs])


def _sample_list(payload: Any) -> Optional[List[Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        data = payload.get("data")
        if isinstance(data, list):
            return data
        if isinstance(data, Mapping):
            return list(data.values())
    return None


class SondeApiClient:
    """Thin wrapper around ``httpx.AsyncClient`` returning :class:`FetchResult`."""

    DATASET_PATH = "/api/dataset/view.json"
    DEVICE_DATASET_PATH = "/api/report/tkdatasetview"
    SOUNDING_PATH = "/api/dataset/getSoundingMsg"
    QUERY_PATH = "/project/{table}.query.do"

    def __init__(
        self,
        http: httpx.AsyncClient,
        export_url: str,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._http = http
        self.export_url = export_url
        self.tz = tz

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request_json(
        self,
        resource: str,
        method: str,
        url: str,
        context: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> FetchResult[Any]:
        extra = dict(context or {}, resource=resource)
        started = time.perf_counter()
        try:
            response = await self._http.request(method, url, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            return self._failure(UpstreamTransportError(resource, str(exc) or type(exc).__name__), extra)
        except ValueError as exc:
            return self._failure(UpstreamTransportError(resource, f"invalid JSON body ({exc})"), extra)
        extra["elapsed_ms"] = int((time.perf_counter() - started) * 1000)
        logger.info("Fetched %s", resource, extra=extra)
        return FetchResult(value=payload)

    @staticmethod
    def _failure(error: FetchError, extra: Dict[str, Any]) -> FetchResult[Any]:
        logger.warning("Upstream call failed", extra=dict(extra, reason=error.reason))
        return FetchResult(error=error)

    def _logical(self, resource: str, reason: str, context: Dict[str, Any]) -> FetchResult[Any]:
        return self._failure(UpstreamLogicalError(resource, reason), dict(context, resource=resource))

    async def fetch_dataset(self, station: str, tkyid: str, raw: bool = False) -> FetchResult[List[Any]]:
        """Raw (``raw=True``) or quality-controlled samples of one flight."""
        params = {"station": station, "tkyid": tkyid}
        if raw:
            params["type"] = "raw"
        context = {"station": station, "tkyid": tkyid, "data_type": "raw" if raw else "qc"}
        result = await self._request_json(
            "dataset", "GET", self.DATASET_PATH, context=context, params=params
        )
        if not result.ok:
            return result
        samples = _sample_list(result.value)
        if samples is None:
            return self._logical("dataset", "unexpected payload shape", context)
        return FetchResult(value=samples)

    async def fetch_device_dataset(self, station: str, tkyid: str) -> FetchResult[List[Any]]:
        """Battery voltage, frequency and signal strength samples of one flight."""
        context = {"station": station, "tkyid": tkyid, "data_type": "device"}
        result = await self._request_json(
            "device_dataset",
            "GET",
            self.DEVICE_DATASET_PATH,
            context=context,
            params={"station": station, "tkyid": tkyid},
        )
        if not result.ok:
            return result
        payload = result.value
        if not isinstance(payload, Mapping) or payload.get("code") != 0:
            code = payload.get("code") if isinstance(payload, Mapping) else None
            return self._logical("device_dataset", f"code={code}", context)
        samples = _sample_list(payload)
        return FetchResult(value=samples or [])

    async def query(
        self,
        table: str,
        filters: str,
        page: Optional[Mapping[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> FetchResult[List[Any]]:
        """Run a filter query against the metadata API and return ``_DATA_``."""
        context = dict(context or {})
        form = {"_query_param": filters}
        if page is not None:
            form["data"] = json.dumps(page)
        result = await self._request_json(
            table, "POST", self.QUERY_PATH.format(table=table), context=context, data=form
        )
        if not result.ok:
            return result
        payload = result.value
        if not isinstance(payload, Mapping):
            return self._logical(table, "unexpected payload shape", context)
        message = str(payload.get("_MSG_") or "")
        if message.startswith("ERROR") or payload.get("_RTN_CODE_") == "ERROR":
            return self._logical(table, message or "_RTN_CODE_=ERROR", context)
        rows = payload.get("_DATA_")
        if not isinstance(rows, list):
            return self._logical(table, "missing _DATA_", context)
        return FetchResult(value=rows)

    async def fetch_latest_flight(self, station: str) -> FetchResult[SondeSummary]:
        context = {"station": station}
        result = await self.query(
            FLIGHT_TABLE,
            _filters(("STATION_NUMBER", station)),
            page={"_PAGE_": {"NOWPAGE": 1, "SHOWNUM": 1, "ORDER": "FINISHED_TIME desc"}},
            context=context,
        )
        if not result.ok:
            return FetchResult(error=result.error)
        summary = SondeSummary()
        if result.value:
            row = result.value[0]
            if not isinstance(row, Mapping):
                return self._logical(FLIGHT_TABLE, "unexpected row shape", context)
            summary = SondeSummary(
                tkyid=str(row.get("TKYID") or ""),
                startTime=str(row.get("FLY_START_TIME") or ""),
                endTime=str(row.get("EXPLOSION_TIME") or ""),
                stationName=str(row.get("STATION_NAME") or ""),
                stationNum=str(row.get("STATION_NUMBER") or ""),
                factoryName=factory_name(row.get("TKY_FIRM")),
            )
        return FetchResult(value=summary)

    async def fetch_flight_window(self, station: str, tkyid: str) -> FetchResult[FlightWindow]:
        context = {"station": station, "tkyid": tkyid}
        result = await self.query(
            FLIGHT_TABLE,
            _filters(("STATION_NUMBER", station), ("TKYID", tkyid)),
            context=context,
        )
        if not result.ok:
            return FetchResult(error=result.error)
        if not result.value:
            return FetchResult(value=FlightWindow())
        row = result.value[0]
        if not isinstance(row, Mapping):
            return self._logical(FLIGHT_TABLE, "unexpected row shape", context)
        firm = row.get("TKY_FIRM")
        return FetchResult(
            value=FlightWindow(
                start=parse_timestamp(row.get("FLY_START_TIME"), self.tz),
                end=parse_timestamp(row.get("FINISHED_TIME"), self.tz),
                firm=None if firm is None else str(firm),
            )
        )

    async def fetch_fuse_id(self, tkyid: str) -> FetchResult[str]:
        result = await self.query(
            FUSE_TABLE,
            _filters(("SONDECODE", tkyid)),
            context={"tkyid": tkyid},
        )
        if not result.ok:
            return FetchResult(error=result.error)
        rows = result.value or []
        fuse_id = rows[0].get("FUSECODE") if rows and isinstance(rows[0], Mapping) else None
        return FetchResult(value=str(fuse_id or ""))

    async def fetch_fuse_samples(
        self,
        sonde_code: str,
        start: Optional[int],
        end: Optional[int],
    ) -> FetchResult[List[Any]]:
        """Position/altitude stream of the fuse device between two epochs."""
        context = {"tkyid": sonde_code, "data_type": "fuse"}
        if not sonde_code:
            return self._logical("sounding_msg", "no fuse device registered", context)
        params = {
            "sondeCode": sonde_code,
            "startTime": "" if start is None else str(start),
            "endTime": "" if end is None else str(end),
            "step": "0",
        }
        result = await self._request_json(
            "sounding_msg", "GET", self.SOUNDING_PATH, context=context, params=params
        )
        if not result.ok:
            return result
        samples = _sample_list(result.value)
        if samples is None:
            return self._logical("sounding_msg", "unexpected payload shape", context)
        return FetchResult(value=samples)

    async def export(self, sonde_code: str) -> httpx.Response:
        """Proxy the instrument export endpoint; transport errors propagate."""
        params: Sequence[tuple[str, str]] = (
            ("key", "sondeCode"),
            ("value", sonde_code),
            ("type", "S"),
            ("query", ""),
            ("projection", ""),
        )
        response = await self._http.get(self.export_url, params=params)
        logger.info(
            "Proxied export",
            extra={"tkyid": sonde_code, "status_code": response.status_code, "resource": "export"},
        )
        return response


@lru_cache
def build_default_client() -> SondeApiClient:
    """Factory that wires the upstream client from settings."""
    settings = get_settings()
    http = httpx.AsyncClient(
        base_url=settings.api_base_url,
        timeout=settings.upstream_timeout,
    )
    return SondeApiClient(
        http=http,
        export_url=settings.export_url,
        tz=resolve_timezone(settings.timezone),
    )
