from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig

AUTH_FAILURE_EXIT_CODE = 2


class ApiClient:
    """Minimal HTTP client for the river monitor service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def get_dashboard(self, language: str, force_refresh: bool) -> Dict[str, Any]:
        return self._get(
            "/dashboard",
            params={"language": language, "force_refresh": str(force_refresh).lower()},
        )

    def list_offsets(self, channel_id: str) -> List[Dict[str, Any]]:
        return self._get(f"/channels/{channel_id}/offsets")

    def list_readings(self, channel_id: str) -> List[Dict[str, Any]]:
        return self._get(f"/channels/{channel_id}/readings")

    def manage(self, action: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self._config.password:
            raise typer.BadParameter(
                "A calibration password is required (--password or CALIBRATION_PASSWORD)."
            )
        try:
            response = self._client.post(
                "/calibration",
                json={"action": action, "password": self._config.password, "data": data},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        kind: str | None = None
        try:
            body: Any = exc.response.json()
        except ValueError:
            body = exc.response.text.strip()
        detail = body.get("detail") if isinstance(body, dict) else body
        if isinstance(detail, dict):
            kind = detail.get("kind")
            detail = detail.get("message")

        if kind == "invalid_password":
            typer.secho(
                "Authentication failed: the calibration password was rejected.",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=AUTH_FAILURE_EXIT_CODE)

        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
