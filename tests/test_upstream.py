from __future__ import annotations

import asyncio
import json
from datetime import timezone
from urllib.parse import parse_qs

import httpx

from models.records import FlightWindow
from services.upstream import (
    FetchResult,
    SondeApiClient,
    UpstreamLogicalError,
    UpstreamTransportError,
    resolve_timezone,
)


def test_fetch_dataset_accepts_list_and_wrapped_payloads(upstream, sonde_client: SondeApiClient) -> None:
    upstream.datasets[("54511", "T1", True)] = [{"seconds": 1}]
    upstream.datasets[("54511", "T1", False)] = {"data": {"a": {"seconds": 2}, "b": {"seconds": 3}}}

    raw = asyncio.run(sonde_client.fetch_dataset("54511", "T1", raw=True))
    qc = asyncio.run(sonde_client.fetch_dataset("54511", "T1"))

    assert raw.value == [{"seconds": 1}]
    assert qc.value == [{"seconds": 2}, {"seconds": 3}]
    raw_request, qc_request = upstream.requests_to("/api/dataset/view.json")
    assert raw_request.url.params["type"] == "raw"
    assert "type" not in qc_request.url.params


def test_fetch_dataset_reports_transport_and_shape_errors(upstream, sonde_client: SondeApiClient) -> None:
    upstream.datasets[("54511", "T2", False)] = {"message": "no data"}

    missing = asyncio.run(sonde_client.fetch_dataset("54511", "T1"))
    malformed = asyncio.run(sonde_client.fetch_dataset("54511", "T2"))

    assert isinstance(missing.error, UpstreamTransportError)
    assert missing.unwrap_or([]) == []
    assert isinstance(malformed.error, UpstreamLogicalError)


def test_invalid_json_body_is_a_transport_error() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    client = SondeApiClient(
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://upstream.test"),
        export_url="https://export.test/export",
    )

    result = asyncio.run(client.fetch_dataset("54511", "T1"))

    assert isinstance(result.error, UpstreamTransportError)
    assert "invalid JSON" in result.error.reason


def test_device_dataset_requires_zero_code(upstream, sonde_client: SondeApiClient) -> None:
    upstream.device[("54511", "T1")] = {"code": 0, "data": [{"seconds": 1, "batteryVol": "3.9"}]}
    upstream.device[("54511", "T2")] = {"code": 500, "data": []}

    ok = asyncio.run(sonde_client.fetch_device_dataset("54511", "T1"))
    failed = asyncio.run(sonde_client.fetch_device_dataset("54511", "T2"))

    assert ok.value == [{"seconds": 1, "batteryVol": "3.9"}]
    assert isinstance(failed.error, UpstreamLogicalError)
    assert failed.error.reason == "code=500"


def test_query_detects_embedded_error(upstream, sonde_client: SondeApiClient) -> None:
    upstream.latest["54511"] = "error"

    result = asyncio.run(sonde_client.fetch_latest_flight("54511"))

    assert isinstance(result.error, UpstreamLogicalError)
    assert result.error.resource == "TK_TKY_STAT_DATA"


def test_fetch_latest_flight_builds_summary(upstream, sonde_client: SondeApiClient) -> None:
    upstream.latest["54511"] = {
        "TKYID": "T1",
        "STATION_NUMBER": "54511",
        "STATION_NAME": "Beijing",
        "FLY_START_TIME": "2024-05-01 07:15:00",
        "EXPLOSION_TIME": "2024-05-01 08:45:10",
        "TKY_FIRM": 20,
    }

    result = asyncio.run(sonde_client.fetch_latest_flight("54511"))

    assert result.ok
    assert result.value.tkyid == "T1"
    assert result.value.endTime == "2024-05-01 08:45:10"
    assert result.value.factoryName == "上海长望"

    (request,) = upstream.requests
    assert request.method == "POST"
    form = parse_qs(request.content.decode())
    assert json.loads(form["_query_param"][0]) == [{"FD": "STATION_NUMBER", "OP": "=", "WD": "54511"}]
    assert json.loads(form["data"][0])["_PAGE_"]["ORDER"] == "FINISHED_TIME desc"


def test_fetch_latest_flight_without_rows_is_empty_summary(upstream, sonde_client: SondeApiClient) -> None:
    result = asyncio.run(sonde_client.fetch_latest_flight("00000"))

    assert result.ok
    assert result.value.tkyid == ""


def test_fetch_flight_window_parses_times_in_client_timezone(upstream, sonde_client: SondeApiClient) -> None:
    upstream.flights[("54511", "T1")] = {
        "FLY_START_TIME": "1970-01-01 00:16:30",
        "FINISHED_TIME": "1970-01-01 00:33:20",
        "TKY_FIRM": 7,
    }

    result = asyncio.run(sonde_client.fetch_flight_window("54511", "T1"))
    empty = asyncio.run(sonde_client.fetch_flight_window("54511", "T9"))

    assert result.value == FlightWindow(start=990, end=2000, firm="7")
    assert empty.value == FlightWindow()


def test_fuse_samples_need_a_registered_device(upstream, sonde_client: SondeApiClient) -> None:
    upstream.fuse_samples["F1"] = {"data": [{"timeStamp": "1970-01-01T00:00:01Z"}]}

    missing = asyncio.run(sonde_client.fetch_fuse_samples("", 1, 2))
    found = asyncio.run(sonde_client.fetch_fuse_samples("F1", 990, None))

    assert isinstance(missing.error, UpstreamLogicalError)
    assert found.value == [{"timeStamp": "1970-01-01T00:00:01Z"}]
    (request,) = upstream.requests_to("/api/dataset/getSoundingMsg")
    assert dict(request.url.params) == {"sondeCode": "F1", "startTime": "990", "endTime": "", "step": "0"}


def test_export_passes_response_through(upstream, sonde_client: SondeApiClient) -> None:
    upstream.export_response = httpx.Response(404, text="unknown sonde")

    response = asyncio.run(sonde_client.export("T1"))

    assert response.status_code == 404
    assert response.text == "unknown sonde"
    params = upstream.requests[-1].url.params
    assert params["key"] == "sondeCode"
    assert params["value"] == "T1"
    assert params["type"] == "S"


def test_fetch_result_unwrap_or() -> None:
    assert FetchResult(value=[1]).unwrap_or([]) == [1]
    assert FetchResult(value=None).unwrap_or([]) == []
    assert FetchResult(error=UpstreamTransportError("x", "y")).unwrap_or("default") == "default"


def test_resolve_timezone_falls_back_to_utc() -> None:
    assert resolve_timezone("Not/AZone") is timezone.utc
    assert resolve_timezone("Asia/Shanghai").key == "Asia/Shanghai"


def test_non_mapping_flight_rows_are_logical_errors(upstream, sonde_client: SondeApiClient) -> None:
    upstream.latest["54511"] = "bogus"
    upstream.flights[("54511", "T1")] = ["not", "a", "row"]

    latest = asyncio.run(sonde_client.fetch_latest_flight("54511"))
    window = asyncio.run(sonde_client.fetch_flight_window("54511", "T1"))

    assert isinstance(latest.error, UpstreamLogicalError)
    assert latest.error.reason == "unexpected row shape"
    assert isinstance(window.error, UpstreamLogicalError)
    assert window.unwrap_or(FlightWindow()) == FlightWindow()
