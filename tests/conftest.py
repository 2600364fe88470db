from __future__ import annotations

import json
from datetime import timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs

import httpx
import pytest

from services.assembler import SeriesAssembler
from services.upstream import SondeApiClient

EXPORT_URL = "https://export.test/db/sounding/export"


class FakeUpstream:
    """In-memory stand-in for the sonde data and metadata APIs.

    Any lookup that is not registered answers with HTTP 500.
    """

    def __init__(self) -> None:
        self.datasets: Dict[Tuple[str, str, bool], Any] = {}
        self.device: Dict[Tuple[str, str], Any] = {}
        self.latest: Dict[str, Any] = {}
        self.flights: Dict[Tuple[str, str], Any] = {}
        self.fuse_ids: Dict[str, str] = {}
        self.fuse_samples: Dict[str, Any] = {}
        self.export_response = httpx.Response(200, text="", headers={"content-type": "text/plain"})
        self.requests: List[httpx.Request] = []

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params

        if path == "/api/dataset/view.json":
            key = (params["station"], params["tkyid"], params.get("type") == "raw")
            return self._json(self.datasets.get(key))
        if path == "/api/report/tkdatasetview":
            return self._json(self.device.get((params["station"], params["tkyid"])))
        if path == "/api/dataset/getSoundingMsg":
            return self._json(self.fuse_samples.get(params["sondeCode"]))
        if path.startswith("/project/"):
            return self._query(path, request)
        if path == "/db/sounding/export":
            return self.export_response
        return httpx.Response(404)

    @staticmethod
    def _json(payload: Optional[Any]) -> httpx.Response:
        if payload is None:
            return httpx.Response(500, text="upstream unavailable")
        return httpx.Response(200, json=payload)

    def _query(self, path: str, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        filters = {item["FD"]: item["WD"] for item in json.loads(form["_query_param"][0])}
        table = path.rsplit("/", 1)[-1].split(".", 1)[0]

        row: Any = None
        if table == "TK_TKY_STAT_DATA":
            if "TKYID" in filters:
                row = self.flights.get((filters["STATION_NUMBER"], filters["TKYID"]))
            else:
                row = self.latest.get(filters["STATION_NUMBER"])
        elif table == "TK_SONDE_FUSE":
            code = self.fuse_ids.get(filters["SONDECODE"])
            row = {"FUSECODE": code} if code else None

        if row == "error":
            return httpx.Response(200, json={"_RTN_CODE_": "ERROR", "_MSG_": "ERROR,query failed", "_DATA_": []})
        if row == "down":
            return httpx.Response(503)
        return httpx.Response(200, json={"_RTN_CODE_": "OK", "_MSG_": "OK,", "_DATA_": [row] if row else []})


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def sonde_client(upstream: FakeUpstream) -> SondeApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream), base_url="https://upstream.test")
    return SondeApiClient(http=http, export_url=EXPORT_URL, tz=timezone.utc)


@pytest.fixture()
def assembler(sonde_client: SondeApiClient) -> SeriesAssembler:
    return SeriesAssembler(client=sonde_client)
