"""AI river-health summaries with a per-(station, language) cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

import httpx

from app.schemas import AnalysisCacheEntry, Language
from datastore.tables import AnalysisTable
from services.errors import AnalysisError
from services.freshness import FreshnessGate

logger = logging.getLogger(__name__)

LANGUAGE_INSTRUCTIONS = {
    Language.english: "Provide the analysis in English.",
    Language.swahili: (
        "Provide the entire analysis in Swahili (Kiswahili). Use clear, accessible "
        "language suitable for local communities."
    ),
    Language.maa: (
        "Provide the entire analysis in Maa language. Use clear, accessible language "
        "suitable for Maasai communities."
    ),
}

_REPORT_OUTLINE = """Provide analysis in the following format:

**River Health Summary**
[2-3 sentences for general public explaining overall river health status]

**Ecological Impact**
- Temperature effects on fish and invertebrates
- Dissolved oxygen levels and hypoxia risk
- pH suitability for aquatic life

**Flow Conditions**
- Recent flooding or drought indicators
- Water depth trends

**Water Chemistry**
- Conductivity/salinity impacts on aquatic life
- Other chemical indicators

**Anomalies**
- Any unusual readings or concerns
- Sensor performance notes

Keep explanations accessible but scientifically accurate. Focus on ecological implications."""


@dataclass(frozen=True)
class SensorDigest:
    """Per-sensor figures quoted in the prompt."""

    name: str
    unit: str
    current: float
    minimum: float
    maximum: float
    mean: float
    trend: float

    def describe(self) -> str:
        sign = "+" if self.trend > 0 else ""
        unit = self.unit
        return (
            f"{self.name}: Current={self.current:.2f}{unit}, Min={self.minimum:.2f}{unit}, "
            f"Max={self.maximum:.2f}{unit}, Avg={self.mean:.2f}{unit}, "
            f"Trend={sign}{self.trend:.2f}{unit}"
        )


def build_messages(
    station_name: str,
    location: str,
    sensors: Sequence[SensorDigest],
    language: Language,
    time_range: str = "7 days",
) -> List[dict]:
    instruction = LANGUAGE_INSTRUCTIONS[language]
    system_prompt = (
        f"You are a water quality expert analyzing data from {location}, a critical "
        "ecosystem supporting wildlife and local communities. Provide a comprehensive "
        f"yet accessible analysis. {instruction}"
    )
    sensor_lines = "\n".join(sensor.describe() for sensor in sensors)
    user_prompt = (
        f"Analyze this week's water quality data from {station_name} and provide insights:\n\n"
        f"SENSOR DATA ({time_range}):\n{sensor_lines}\n\n{_REPORT_OUTLINE} {instruction}"
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


class AnalysisClient:
    """Calls an OpenAI-compatible chat-completions gateway."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str],
        model: str,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._model = model
        self._client = http_client or httpx.Client(timeout=60.0)

    def close(self) -> None:
        self._client.close()

    def generate(self, messages: List[dict]) -> str:
        if not self._api_key:
            raise AnalysisError("AI gateway API key not configured")
        try:
            response = self._client.post(
                self._url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "model": self._model,
                    "messages": messages,
                    "temperature": 0.3,
                    "max_tokens": 1500,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise AnalysisError(f"AI API error: {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise AnalysisError(f"AI API request failed: {exc}") from exc

        choices = response.json().get("choices") or []
        content = ((choices[0] if choices else {}).get("message") or {}).get("content")
        if not content:
            raise AnalysisError("No analysis generated")
        return content


class AnalysisService:
    def __init__(self, table: AnalysisTable, client: AnalysisClient, gate: FreshnessGate) -> None:
        self.table = table
        self.client = client
        self.gate = gate

    def get_or_generate(
        self,
        station_id: str,
        station_name: str,
        location: str,
        language: Language,
        sensors: Sequence[SensorDigest],
        now: datetime,
    ) -> str:
        cached = self.table.latest(station_id, language)
        if cached is not None and self.gate.is_fresh(cached.created_at, now):
            logger.info(
                "Using cached AI analysis",
                extra={"station_id": station_id, "language": language.value, "source": "cache"},
            )
            return cached.analysis_text

        if not sensors:
            raise AnalysisError("No sensor data provided")

        logger.info(
            "Generating new AI analysis",
            extra={"station_id": station_id, "language": language.value, "source": "upstream"},
        )
        text = self.client.generate(build_messages(station_name, location, sensors, language))
        self.table.put(
            AnalysisCacheEntry(
                station_id=station_id,
                language=language,
                analysis_text=text,
                data_timestamp=now,
                created_at=now,
            )
        )
        return text
