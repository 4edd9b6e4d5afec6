"""
Forecast oracle client.

The oracle is an external LLM reached through an OpenAI-compatible
chat-completions endpoint, asked for JSON output. Everything it returns is
treated as untrusted input by the PredictionEngine; this module only moves
prompts and raw JSON objects.
"""

import json
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from stormwatch.exceptions import CircuitOpenError, PredictionUnavailable
from stormwatch.models import PredictionContext, TrackedEntity
from stormwatch.resilience import CircuitBreaker

logger = logging.getLogger(__name__)


FORECAST_SYSTEM_PROMPT = """You are an advanced meteorological AI specializing in hurricane forecasting.
Analyze current hurricane data and environmental conditions to generate detailed predictions.
Base your predictions on meteorological principles including:
- Sea surface temperatures and their impact on intensification
- Wind shear effects on storm organization
- Steering currents and atmospheric patterns
- Historical storm behavior in similar conditions
- Pressure gradients and their influence on storm movement

Provide scientific, data-driven forecasts with confidence levels.
Respond with JSON in the exact format specified."""

FORECAST_RESPONSE_FORMAT = """{
  "pathPrediction": {
    "coordinates": [[longitude, latitude], ...],
    "timePoints": ["2025-08-19T12:00:00Z", ...],
    "confidenceLevel": 0.85
  },
  "intensityForecast": {
    "windSpeeds": [130, 125, 120, ...],
    "pressures": [947, 950, 955, ...],
    "categories": ["Category 4", "Category 4", "Category 3", ...],
    "timePoints": ["2025-08-19T12:00:00Z", ...]
  },
  "landfall": {
    "probability": 0.75,
    "estimatedLocation": "North Carolina Coast",
    "estimatedTime": "2025-08-22T18:00:00Z"
  },
  "analysis": "Meteorological reasoning, environmental factors and uncertainty.",
  "confidence": 0.8
}"""

TREND_SYSTEM_PROMPT = (
    "Analyze hurricane intensification potential based on current conditions. "
    "Consider pressure, wind speed trends, and environmental factors."
)


def _hemisphere(value: float, positive: str, negative: str) -> str:
    return f"{abs(value)}°{positive if value >= 0 else negative}"


def build_forecast_prompt(context: PredictionContext) -> str:
    """User prompt for a 120-hour track and intensity forecast."""
    return f"""Analyze this hurricane and provide a detailed forecast:

CURRENT HURRICANE DATA:
- Name: {context.name}
- Position: {_hemisphere(context.latitude, 'N', 'S')}, {_hemisphere(context.longitude, 'E', 'W')}
- Maximum Sustained Winds: {context.wind_speed} mph
- Minimum Central Pressure: {context.pressure} mb
- Movement: {context.movement}
- Current Category: {context.category}
- Last Update: {context.observed_at.isoformat()}

ENVIRONMENTAL CONDITIONS:
- Sea Surface Temperature: {context.sea_surface_temperature}°C
- Atmospheric Pressure: {context.ambient_pressure} hPa
- Wind Shear: {context.wind_shear} knots
- Ocean Currents: {context.ocean_currents}

PREDICTION REQUIREMENTS:
Generate a 120-hour (5-day) forecast including:
1. Storm track with 12-hour interval coordinates (10 points)
2. Intensity changes (wind speed, pressure, category) at the same time points
3. Landfall probability (0-1); give estimatedLocation and estimatedTime only if probability > 0.3
4. Meteorological analysis explaining the forecast

All confidence and probability values are on a 0-1 scale.

Respond with JSON in this exact format:
{FORECAST_RESPONSE_FORMAT}"""


def build_trend_prompt(entity: TrackedEntity) -> str:
    return f"""Analyze intensification potential for {entity.name}:
Current winds: {entity.wind_speed} mph
Pressure: {entity.pressure} mb
Movement: {entity.movement}

Classify as: rapid, gradual, weakening, or steady
Provide reasoning and confidence (0-1).

Respond with JSON: {{"potential": "rapid", "reasoning": "explanation", "confidence": 0.8}}"""


class PredictionOracle(Protocol):
    """Anything that can answer a forecast or trend prompt with a JSON object."""

    model: str

    async def forecast(self, context: PredictionContext) -> Dict[str, Any]:
        ...

    async def intensification(self, entity: TrackedEntity) -> Dict[str, Any]:
        ...


class OpenAIChatOracle:
    """
    Oracle backed by an OpenAI-compatible ``/chat/completions`` endpoint.

    Every failure (timeout, non-2xx, non-JSON content, open circuit) is
    raised as PredictionUnavailable.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        timeout_seconds: float = 60.0,
        temperature: float = 0.3,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self._http = client
        self.breaker = breaker or CircuitBreaker(name="forecast_oracle", failure_threshold=3)

    async def forecast(self, context: PredictionContext) -> Dict[str, Any]:
        return await self._complete(
            FORECAST_SYSTEM_PROMPT, build_forecast_prompt(context), temperature=self.temperature
        )

    async def intensification(self, entity: TrackedEntity) -> Dict[str, Any]:
        return await self._complete(TREND_SYSTEM_PROMPT, build_trend_prompt(entity))

    async def _complete(
        self, system: str, user: str, temperature: Optional[float] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
        }
        if temperature is not None:
            body["temperature"] = temperature

        try:
            return await self.breaker.call_async(self._post)(body)
        except CircuitOpenError as e:
            raise PredictionUnavailable(str(e)) from e

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._http is not None:
                response = await self._http.post(
                    url, json=body, headers=headers, timeout=self.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise PredictionUnavailable(f"Oracle timed out after {self.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            raise PredictionUnavailable(f"Oracle returned HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise PredictionUnavailable(f"Oracle request failed: {e}") from e

        try:
            content = response.json()["choices"][0]["message"]["content"]
            parsed = json.loads(content or "{}")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise PredictionUnavailable(f"Oracle response was not usable JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise PredictionUnavailable("Oracle response was not a JSON object")
        return parsed
