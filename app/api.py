"""HTTP route definitions for the service."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

import httpx
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ValidationError

from app.schemas import ChartRequest, ChartSeriesRequest
from models.records import ImageBody, JsonBody
from services.assembler import CHART_SERIES_KINDS, SeriesAssembler, build_default_assembler
from services.charts import device_chart, height_chart, profile_chart
from services.renderer import ChartSpec, render
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()

STATIONS_HINT = (
    "parameter 'stations' must be a string of station numbers joined by commas, "
    'e.g. "12345,34534,65778"'
)

M = TypeVar("M", bound=BaseModel)


def get_assembler() -> SeriesAssembler:
    return build_default_assembler()


async def _read_options(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {key: value for key, value in form.items()}
    body = await request.body()
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _bad_request(message: str) -> PlainTextResponse:
    logger.warning(message)
    return PlainTextResponse(message, status_code=status.HTTP_400_BAD_REQUEST)


def _server_error(exc: Exception, context: Optional[Dict[str, Any]] = None) -> PlainTextResponse:
    logger.exception("Request failed: %s", exc, extra=context or {})
    return PlainTextResponse(str(exc), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def _parse(request: Request, model: type[M]) -> Tuple[Optional[M], Optional[Response]]:
    options = await _read_options(request)
    try:
        parsed = model.model_validate(options)
    except ValidationError as exc:
        return None, _bad_request(str(exc))
    for field in ("station", "tkyid"):
        if not getattr(parsed, field):
            return None, _bad_request(f"parameter '{field}' is empty!")
    return parsed, None


async def _output(
    chart_request: ChartRequest,
    series: BaseModel,
    build_chart: Callable[[Any, int, int], ChartSpec],
    settings: Settings,
) -> JsonBody | ImageBody:
    if chart_request.wants_json:
        return JsonBody(payload=series.model_dump(mode="json"))
    spec = build_chart(series, settings.chart_width, settings.chart_height)
    return ImageBody(image=await run_in_threadpool(render, spec))


def _respond(body: JsonBody | ImageBody) -> Response:
    if isinstance(body, JsonBody):
        return JSONResponse(body.payload)
    return PlainTextResponse(body.encoded())


def _context(chart_request: ChartRequest) -> Dict[str, Any]:
    return {
        "station": chart_request.station,
        "tkyid": chart_request.tkyid,
        "data_type": "raw" if chart_request.raw else "qc",
    }


@router.post("/image", summary="Temperature/humidity/pressure/altitude profile chart.")
async def image(
    request: Request,
    assembler: SeriesAssembler = Depends(get_assembler),
    settings: Settings = Depends(get_settings),
) -> Response:
    chart_request, rejection = await _parse(request, ChartRequest)
    if rejection is not None:
        return rejection
    try:
        series = await assembler.profile(chart_request.station, chart_request.tkyid, raw=chart_request.raw)
        body = await _output(chart_request, series, profile_chart, settings)
    except Exception as exc:  # noqa: BLE001 - reported to the caller as 500
        return _server_error(exc, _context(chart_request))
    return _respond(body)


@router.post("/heightImage", summary="Altitude chart of the sonde and optionally its fuse device.")
async def height_image(
    request: Request,
    assembler: SeriesAssembler = Depends(get_assembler),
    settings: Settings = Depends(get_settings),
) -> Response:
    chart_request, rejection = await _parse(request, ChartRequest)
    if rejection is not None:
        return rejection
    try:
        series = await assembler.height(
            chart_request.station,
            chart_request.tkyid,
            raw=chart_request.raw,
            with_fuse=chart_request.fuse,
        )
        body = await _output(chart_request, series, height_chart, settings)
    except Exception as exc:  # noqa: BLE001 - reported to the caller as 500
        return _server_error(exc, _context(chart_request))
    return _respond(body)


@router.post("/deviceInfoImage", summary="Battery voltage, frequency and signal strength chart.")
async def device_info_image(
    request: Request,
    assembler: SeriesAssembler = Depends(get_assembler),
    settings: Settings = Depends(get_settings),
) -> Response:
    chart_request, rejection = await _parse(request, ChartRequest)
    if rejection is not None:
        return rejection
    try:
        series = await assembler.device_info(chart_request.station, chart_request.tkyid)
        body = await _output(chart_request, series, device_chart, settings)
    except Exception as exc:  # noqa: BLE001 - reported to the caller as 500
        return _server_error(exc, _context(chart_request))
    return _respond(body)


@router.post("/gethistoryline", summary="Latest flight summary and map track per station.")
@router.post("/api/node/dataset/gethistoryline", include_in_schema=False)
async def get_history_line(
    request: Request,
    assembler: SeriesAssembler = Depends(get_assembler),
) -> Response:
    options = await _read_options(request)
    stations = options.get("stations")
    if not stations or not isinstance(stations, str):
        return _bad_request(STATIONS_HINT)
    try:
        result = await assembler.history_line(stations.split(","))
    except Exception as exc:  # noqa: BLE001 - reported to the caller as 500
        return _server_error(exc)
    return JSONResponse(result)


@router.post("/sondedataforecharts", summary="Deduplicated sample arrays for client-side charts.")
async def sonde_data_for_charts(
    request: Request,
    assembler: SeriesAssembler = Depends(get_assembler),
) -> Response:
    series_request, rejection = await _parse(request, ChartSeriesRequest)
    if rejection is not None:
        return rejection
    if series_request.resType:
        kinds = [kind.strip() for kind in series_request.resType.split(",") if kind.strip()]
    else:
        kinds = list(CHART_SERIES_KINDS)
    try:
        result = await assembler.chart_series(series_request.station, series_request.tkyid, kinds)
    except Exception as exc:  # noqa: BLE001 - reported to the caller as 500
        return _server_error(exc, {"station": series_request.station, "tkyid": series_request.tkyid})
    return JSONResponse(result)


@router.get("/exportsondedata", summary="Proxy the instrument export endpoint.")
@router.get("/api/node/dataset/exportsondedata", include_in_schema=False)
async def export_sonde_data(
    sonde_code: Optional[str] = Query(None, alias="sondeCode"),
    assembler: SeriesAssembler = Depends(get_assembler),
) -> Response:
    if not sonde_code or not sonde_code.strip():
        return _bad_request("parameter 'sondeCode' is empty!")
    try:
        upstream = await assembler.client.export(sonde_code.strip())
    except httpx.HTTPError as exc:
        return _server_error(exc, {"tkyid": sonde_code, "resource": "export"})
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type"),
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
