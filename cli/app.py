from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_history, render_series


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for fetching sonde charts and series from the chart service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Chart service base URL (defaults to API_BASE_URL env or http://localhost:3000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for the service to answer.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


def _fetch_chart(
    ctx: typer.Context,
    path: str,
    body: Dict[str, Any],
    output: Optional[Path],
    as_json: bool,
) -> None:
    state = _get_state(ctx)
    if as_json:
        render_series(state.client.chart(path, body, as_json=True))
        return
    if output is None:
        raise typer.BadParameter("Pass --output for the image or --json for the series.")
    image = state.client.chart(path, body)
    output.write_bytes(image)
    typer.secho(f"Chart written to {output} ({len(image)} bytes)", fg=typer.colors.GREEN)


_STATION = typer.Argument(..., help="Station number.")
_TKYID = typer.Argument(..., help="Sonde instrument ID.")
_OUTPUT = typer.Option(None, "--output", "-o", dir_okay=False, help="Where to write the PNG chart.")
_JSON = typer.Option(False, "--json", help="Print a summary of the JSON series instead of rendering.")


@app.command("image")
def image_command(
    ctx: typer.Context,
    station: str = _STATION,
    tkyid: str = _TKYID,
    raw: bool = typer.Option(False, "--raw", help="Use raw instead of quality-controlled data."),
    output: Optional[Path] = _OUTPUT,
    as_json: bool = _JSON,
) -> None:
    """Fetch the temperature/humidity/pressure/altitude profile chart."""
    body = {"station": station, "tkyid": tkyid, "type": "raw" if raw else ""}
    _fetch_chart(ctx, "/image", body, output, as_json)


@app.command("height")
def height_command(
    ctx: typer.Context,
    station: str = _STATION,
    tkyid: str = _TKYID,
    raw: bool = typer.Option(False, "--raw", help="Use raw instead of quality-controlled data."),
    fuse: bool = typer.Option(False, "--fuse", help="Overlay the fuse-device altitude."),
    output: Optional[Path] = _OUTPUT,
    as_json: bool = _JSON,
) -> None:
    """Fetch the altitude chart."""
    body = {"station": station, "tkyid": tkyid, "type": "raw" if raw else "", "fuse": fuse}
    _fetch_chart(ctx, "/heightImage", body, output, as_json)


@app.command("device-info")
def device_info_command(
    ctx: typer.Context,
    station: str = _STATION,
    tkyid: str = _TKYID,
    output: Optional[Path] = _OUTPUT,
    as_json: bool = _JSON,
) -> None:
    """Fetch the battery voltage, frequency and rssi chart."""
    _fetch_chart(ctx, "/deviceInfoImage", {"station": station, "tkyid": tkyid}, output, as_json)


@app.command("history")
def history_command(
    ctx: typer.Context,
    stations: str = typer.Argument(..., help="Station numbers joined by commas."),
) -> None:
    """Show the latest flight and map track size per station."""
    state = _get_state(ctx)
    render_history(state.client.history([s for s in stations.split(",") if s.strip()]))


@app.command("export")
def export_command(
    ctx: typer.Context,
    sonde_code: str = typer.Argument(..., help="Sonde instrument ID to export."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", dir_okay=False, help="File for the export."),
) -> None:
    """Download the instrument export; printed to stdout without --output."""
    state = _get_state(ctx)
    content = state.client.export(sonde_code)
    if output is None:
        typer.echo(content.decode("utf-8", errors="replace"))
        return
    output.write_bytes(content)
    typer.secho(f"Export written to {output}", fg=typer.colors.GREEN)
