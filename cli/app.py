from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import echo_heading, render_dashboard, render_offsets


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the river monitor service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
offsets_app = typer.Typer(help="Manage calibration offsets.")
readings_app = typer.Typer(help="Inspect or remove stored readings.")
app.add_typer(offsets_app, name="offsets")
app.add_typer(readings_app, name="readings")


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
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    password: Optional[str] = typer.Option(
        None,
        "--password",
        "-p",
        help="Calibration password (defaults to CALIBRATION_PASSWORD env).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, password=password, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("dashboard")
def dashboard_command(
    ctx: typer.Context,
    language: str = typer.Option("english", "--language", "-l", help="english, swahili or maa."),
    refresh: bool = typer.Option(False, "--refresh/--cached", help="Force an upstream fetch."),
) -> None:
    """Show current calibrated readings, malfunction flags and the AI summary."""
    state = _get_state(ctx)
    render_dashboard(state.client.get_dashboard(language=language, force_refresh=refresh))


@offsets_app.command("list")
def list_offsets_command(
    ctx: typer.Context,
    channel_id: str = typer.Argument(..., help="Channel identifier."),
) -> None:
    """List calibration offsets for a channel."""
    state = _get_state(ctx)
    render_offsets(state.client.list_offsets(channel_id))


@offsets_app.command("create")
def create_offset_command(
    ctx: typer.Context,
    channel_id: str = typer.Argument(..., help="Channel identifier."),
    offset_value: float = typer.Option(..., "--value", help="Amount added to raw readings."),
    valid_from: datetime = typer.Option(..., "--from", help="Start of validity (inclusive)."),
    valid_until: Optional[datetime] = typer.Option(
        None, "--until", help="End of validity (inclusive); omit for ongoing."
    ),
    reason: str = typer.Option(..., "--reason", help="Why the correction is needed."),
) -> None:
    """Create a calibration offset."""
    state = _get_state(ctx)
    payload = state.client.manage(
        "create",
        {
            "channel_id": channel_id,
            "offset_value": offset_value,
            "valid_from": valid_from.isoformat(),
            "valid_until": valid_until.isoformat() if valid_until else None,
            "reason": reason,
        },
    )
    offset = payload.get("offset") or {}
    typer.secho(f"Offset created. id={offset.get('id')}", fg=typer.colors.GREEN)


@offsets_app.command("update")
def update_offset_command(
    ctx: typer.Context,
    offset_id: str = typer.Argument(..., help="Offset identifier."),
    offset_value: Optional[float] = typer.Option(None, "--value"),
    valid_from: Optional[datetime] = typer.Option(None, "--from"),
    valid_until: Optional[datetime] = typer.Option(None, "--until"),
    reason: Optional[str] = typer.Option(None, "--reason"),
) -> None:
    """Change fields of an existing offset; omitted options are left unchanged."""
    state = _get_state(ctx)
    data = {"id": offset_id}
    if offset_value is not None:
        data["offset_value"] = offset_value
    if valid_from is not None:
        data["valid_from"] = valid_from.isoformat()
    if valid_until is not None:
        data["valid_until"] = valid_until.isoformat()
    if reason is not None:
        data["reason"] = reason
    state.client.manage("update", data)
    typer.secho(f"Offset {offset_id} updated.", fg=typer.colors.GREEN)


@offsets_app.command("deactivate")
def deactivate_offset_command(
    ctx: typer.Context,
    offset_id: str = typer.Argument(..., help="Offset identifier."),
) -> None:
    """End an offset now, keeping it for historical readings."""
    state = _get_state(ctx)
    state.client.manage("deactivate", {"id": offset_id})
    typer.secho(f"Offset {offset_id} deactivated.", fg=typer.colors.GREEN)


@offsets_app.command("delete")
def delete_offset_command(
    ctx: typer.Context,
    offset_id: str = typer.Argument(..., help="Offset identifier."),
) -> None:
    """Delete an offset; its readings revert to raw values."""
    state = _get_state(ctx)
    state.client.manage("delete", {"id": offset_id})
    typer.secho(f"Offset {offset_id} deleted.", fg=typer.colors.GREEN)


@readings_app.command("list")
def list_readings_command(
    ctx: typer.Context,
    channel_id: str = typer.Argument(..., help="Channel identifier."),
) -> None:
    """Show stored readings with raw and corrected values."""
    state = _get_state(ctx)
    readings = state.client.list_readings(channel_id)
    echo_heading(f"Readings for {channel_id}")
    if not readings:
        typer.echo("No readings stored.")
    for reading in readings:
        typer.echo(
            f"  - {reading.get('measured_at')}: raw={reading.get('raw_value')} "
            f"corrected={reading.get('corrected_value')}"
        )


@readings_app.command("delete")
def delete_reading_command(
    ctx: typer.Context,
    channel_id: str = typer.Argument(..., help="Channel identifier."),
    measured_at: datetime = typer.Argument(..., help="Timestamp of the reading."),
) -> None:
    """Permanently remove a single reading."""
    state = _get_state(ctx)
    state.client.manage(
        "delete_reading", {"channel_id": channel_id, "measured_at": measured_at.isoformat()}
    )
    typer.secho("Reading deleted.", fg=typer.colors.GREEN)
