from __future__ import annotations

import base64
from typing import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from app.api import get_assembler
from app.main import create_app
from services.assembler import SeriesAssembler, build_default_assembler
from services.upstream import build_default_client

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
STATION = "54511"


@pytest.fixture
def api_client(assembler: SeriesAssembler) -> Iterator[TestClient]:
    app = create_app()
    app.dependency_overrides[get_assembler] = lambda: assembler
    with TestClient(app) as client:
        yield client


@pytest.fixture
def profile_data(upstream) -> None:
    upstream.datasets[(STATION, "T1", True)] = [
        {"seconds": 100, "temperature": 20, "aboveSeaLevel": "150.5"},
        {"seconds": 103, "temperature": 22, "aboveSeaLevel": "0.000000"},
    ]


def test_lifespan_closes_client_and_clears_caches() -> None:
    app = create_app()

    with TestClient(app):
        client_during = build_default_client()
        assembler_during = build_default_assembler()
        assert assembler_during.client is client_during

    client_after = build_default_client()
    try:
        assert client_after is not client_during
        assert client_during._http.is_closed
    finally:
        build_default_assembler.cache_clear()
        build_default_client.cache_clear()


def test_healthcheck(api_client: TestClient) -> None:
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.parametrize("path", ["/image", "/heightImage", "/deviceInfoImage", "/sondedataforecharts"])
def test_missing_identifiers_are_rejected(api_client: TestClient, upstream, path: str) -> None:
    no_station = api_client.post(path, json={"tkyid": "T1"})
    no_tkyid = api_client.post(path, data={"station": STATION})

    assert no_station.status_code == 400
    assert no_station.text == "parameter 'station' is empty!"
    assert no_tkyid.status_code == 400
    assert no_tkyid.text == "parameter 'tkyid' is empty!"
    assert upstream.requests == []


def test_image_returns_json_series_for_web_clients(api_client: TestClient, profile_data) -> None:
    response = api_client.post(
        "/image",
        json={"station": STATION, "tkyid": "T1", "type": "raw", "from": "web"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["segmented"] is False
    assert payload["time"] == ["00:01:40", "00:01:41", "00:01:42", "00:01:43"]
    assert payload["temperature"] == [20.0, None, None, 22.0]
    assert payload["altitude"] == [150.5, None, None, None]


def test_image_returns_base64_png_by_default(api_client: TestClient, profile_data) -> None:
    response = api_client.post("/image", data={"station": STATION, "tkyid": "T1", "type": "raw"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert base64.b64decode(response.text).startswith(PNG_MAGIC)


def test_numeric_station_is_accepted(api_client: TestClient, upstream) -> None:
    upstream.datasets[(STATION, "T1", False)] = []

    response = api_client.post("/image", json={"station": int(STATION), "tkyid": "T1", "from": "web"})

    assert response.status_code == 200
    assert response.json()["time"] == []


def test_height_image_with_fuse_flag(api_client: TestClient, upstream) -> None:
    upstream.datasets[(STATION, "T1", True)] = [{"seconds": 1000, "aboveSeaLevel": 100}]

    response = api_client.post(
        "/heightImage",
        json={"station": STATION, "tkyid": "T1", "type": "raw", "fuse": True, "from": "web"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["altitude"] == [100.0]
    assert payload["fuse_altitude"] == [None]


def test_device_info_image_renders(api_client: TestClient, upstream) -> None:
    upstream.device[(STATION, "T1")] = {"code": 0, "data": [{"seconds": 50, "batteryVol": "3.5"}]}

    response = api_client.post("/deviceInfoImage", json={"station": STATION, "tkyid": "T1"})

    assert response.status_code == 200
    assert base64.b64decode(response.text).startswith(PNG_MAGIC)


def test_unexpected_failure_is_reported_as_500(api_client: TestClient, assembler, monkeypatch) -> None:
    async def explode(*_args, **_kwargs):
        raise RuntimeError("renderer exploded")

    monkeypatch.setattr(assembler, "profile", explode)

    response = api_client.post("/image", json={"station": STATION, "tkyid": "T1"})

    assert response.status_code == 500
    assert response.text == "renderer exploded"


@pytest.mark.parametrize("path", ["/gethistoryline", "/api/node/dataset/gethistoryline"])
def test_history_line(api_client: TestClient, upstream, path: str) -> None:
    upstream.latest["A"] = {"TKYID": "T1", "STATION_NUMBER": "A", "STATION_NAME": "Alpha", "TKY_FIRM": 7}
    upstream.datasets[("A", "T1", True)] = [
        {"seconds": 1, "longitude": 116.1, "latitude": 39.9, "aboveSeaLevel": 120},
    ]

    response = api_client.post(path, json={"stations": "A,B"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["A"]["factoryName"] == "华云天仪"
    assert payload["A"]["lnglat"] == [[116.1, 39.9]]
    assert payload["A"]["lastTimeHeight"] == 120.0
    assert payload["B"]["tkyid"] == ""
    assert payload["B"]["lnglat"] == []


@pytest.mark.parametrize("body", [{}, {"stations": ""}, {"stations": ["A", "B"]}])
def test_history_line_requires_station_string(api_client: TestClient, body) -> None:
    response = api_client.post("/gethistoryline", json=body)

    assert response.status_code == 400
    assert response.text.startswith("parameter 'stations'")


def test_sonde_data_for_charts_defaults_to_all_kinds(api_client: TestClient, upstream) -> None:
    upstream.datasets[(STATION, "T1", True)] = [{"seconds": 1, "humidity": "115"}]
    upstream.datasets[(STATION, "T1", False)] = [{"seconds": 1, "humidity": "125"}]

    everything = api_client.post("/sondedataforecharts", json={"station": STATION, "tkyid": "T1"})
    raw_only = api_client.post(
        "/sondedataforecharts",
        json={"station": STATION, "tkyid": "T1", "resType": "sondeRaw"},
    )

    assert everything.status_code == 200
    assert everything.json() == {
        "sondeRaw": [{"seconds": 1, "humidity": 115.0}],
        "sonde": [{"seconds": 1, "humidity": None}],
        "fuse": [],
    }
    assert list(raw_only.json()) == ["sondeRaw"]


@pytest.mark.parametrize("path", ["/exportsondedata", "/api/node/dataset/exportsondedata"])
def test_export_passes_status_and_body_through(api_client: TestClient, upstream, path: str) -> None:
    upstream.export_response = httpx.Response(202, content=b"a,b\n1,2\n", headers={"content-type": "text/csv"})

    response = api_client.get(path, params={"sondeCode": "T1"})

    assert response.status_code == 202
    assert response.content == b"a,b\n1,2\n"
    assert response.headers["content-type"].startswith("text/csv")


def test_export_requires_sonde_code(api_client: TestClient) -> None:
    response = api_client.get("/exportsondedata")

    assert response.status_code == 400
    assert response.text == "parameter 'sondeCode' is empty!"


def test_export_transport_failure_is_500(api_client: TestClient, sonde_client, monkeypatch) -> None:
    async def unreachable(_sonde_code: str):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(sonde_client, "export", unreachable)

    response = api_client.get("/exportsondedata", params={"sondeCode": "T1"})

    assert response.status_code == 500
    assert "connection refused" in response.text
