from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_dashboard(payload: Dict[str, Any]) -> None:
    station = payload.get("station") or {}
    echo_heading("Station")
    echo_key_values(
        [
            ("name", station.get("name")),
            ("id", station.get("id")),
            ("cached", payload.get("cached")),
            ("last_updated", payload.get("last_updated")),
        ]
    )

    sensors = payload.get("sensors") or []
    typer.echo()
    echo_heading("Sensors")
    if not sensors:
        typer.echo(payload.get("message") or "No sensor data available.")
    for sensor in sensors:
        unit = sensor.get("unit") or ""
        line = f"  - {sensor.get('name')}: {sensor.get('current_value')}{unit}"
        mean_24hr = sensor.get("mean_24hr")
        if mean_24hr is not None:
            line += f" (24h mean {mean_24hr}{unit})"
        typer.echo(line)
        malfunction = sensor.get("malfunction") or {}
        if malfunction.get("malfunctioning"):
            typer.secho(f"      malfunction: {malfunction.get('reason')}", fg=typer.colors.YELLOW)

    analysis = payload.get("analysis")
    if analysis:
        typer.echo()
        echo_heading("Analysis")
        typer.echo(analysis)


def render_offsets(offsets: List[Dict[str, Any]]) -> None:
    echo_heading("Calibration Offsets")
    if not offsets:
        typer.echo("No offsets defined.")
        return
    for offset in offsets:
        until = offset.get("valid_until") or "ongoing"
        typer.echo(
            f"  - {offset.get('id')}: {offset.get('offset_value'):+} "
            f"from {offset.get('valid_from')} until {until} ({offset.get('reason')})"
        )
