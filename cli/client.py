from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Union

import httpx
import typer

from cli.config import CLIConfig

ChartPayload = Union[bytes, Dict[str, Any]]


class ApiClient:
    """Minimal HTTP client for the chart service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def chart(self, path: str, body: Dict[str, Any], as_json: bool = False) -> ChartPayload:
        """POST a chart request; returns decoded PNG bytes or the JSON series."""
        payload = dict(body)
        if as_json:
            payload["from"] = "web"
        response = self._send("POST", path, json=payload)
        if as_json:
            return response.json()
        try:
            return base64.b64decode(response.text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise typer.BadParameter("Service returned a body that is not base64 image data.") from exc

    def history(self, stations: List[str]) -> Dict[str, Any]:
        response = self._send("POST", "/gethistoryline", json={"stations": ",".join(stations)})
        return response.json()

    def export(self, sonde_code: str) -> bytes:
        response = self._send("GET", "/exportsondedata", params={"sondeCode": sonde_code})
        return response.content

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.HTTPError as exc:
            typer.secho(f"Request to {self._config.base_url}{path} failed: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        return response

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
