from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _present(values: List[Any]) -> int:
    """Count readings in a flat or segmented channel."""
    if values and all(isinstance(item, list) for item in values):
        return sum(_present(item) for item in values)
    return sum(1 for item in values if item is not None)


def render_series(payload: Dict[str, Any]) -> None:
    echo_heading("Series")
    axis = payload.get("time") or []
    pairs = [("rows", len(axis))]
    if axis:
        pairs.append(("from", axis[0]))
        pairs.append(("to", axis[-1]))
    echo_key_values(pairs)

    typer.echo()
    echo_heading("Readings per channel")
    for name, values in payload.items():
        if name == "time" or not isinstance(values, list):
            continue
        typer.echo(f"  - {name}: {_present(values)}")

    threshold = payload.get("threshold")
    if isinstance(threshold, dict):
        typer.echo()
        echo_heading("Threshold")
        echo_key_values(threshold.items())


def render_history(payload: Dict[str, Any]) -> None:
    echo_heading("History lines")
    if not payload:
        typer.echo("No stations returned.")
        return
    for station, entry in payload.items():
        typer.echo()
        typer.secho(f"station {station}", fg=typer.colors.CYAN)
        echo_key_values(
            [
                ("tkyid", entry.get("tkyid") or "--"),
                ("name", entry.get("stationName") or "--"),
                ("factory", entry.get("factoryName") or "--"),
                ("start", entry.get("startTime") or "--"),
                ("end", entry.get("endTime") or "--"),
                ("track_points", len(entry.get("lnglat") or [])),
                ("last_altitude", entry.get("lastTimeHeight")),
            ]
        )
