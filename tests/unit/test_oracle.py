"""
Tests for the chat-completions oracle client.
"""

import asyncio
import json

import httpx
import pytest

from stormwatch.exceptions import PredictionUnavailable
from stormwatch.forecast.context import ForecastContextBuilder
from stormwatch.forecast.oracle import OpenAIChatOracle, build_forecast_prompt
from stormwatch.resilience import CircuitBreaker, CircuitState

from tests.doubles import forecast_response, make_entity


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def oracle_with(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("breaker", CircuitBreaker(name="test_oracle", failure_threshold=3))
    return OpenAIChatOracle(
        api_key="sk-test", base_url="https://oracle.test/v1", model="gpt-test",
        client=client, **kwargs,
    )


def context():
    return ForecastContextBuilder().build(make_entity())


def test_forecast_prompt_mentions_storm_and_conditions():
    prompt = build_forecast_prompt(context())
    assert "Hurricane Erin" in prompt
    assert "28.1°N, 72.5°W" in prompt
    assert "28.5°C" in prompt
    assert "pathPrediction" in prompt


def test_forecast_request_and_response():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion(json.dumps(forecast_response())))

    result = asyncio.run(oracle_with(handler, temperature=0.3).forecast(context()))

    assert result["confidence"] == 0.85
    assert seen["url"] == "https://oracle.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-test"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert seen["body"]["temperature"] == 0.3
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]


def test_intensification_has_no_temperature():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=completion('{"potential": "steady"}'))

    result = asyncio.run(oracle_with(handler).intensification(make_entity()))
    assert result == {"potential": "steady"}
    assert "temperature" not in bodies[0]


@pytest.mark.parametrize("response", [
    httpx.Response(500),
    httpx.Response(200, json=completion("not json")),
    httpx.Response(200, json=completion("[1, 2]")),
    httpx.Response(200, json={"choices": []}),
])
def test_unusable_responses(response):
    oracle = oracle_with(lambda request: response)
    with pytest.raises(PredictionUnavailable):
        asyncio.run(oracle.forecast(context()))


def test_circuit_opens_after_repeated_failures():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    breaker = CircuitBreaker(name="test_oracle_circuit", failure_threshold=2, recovery_timeout=60)
    oracle = oracle_with(handler, breaker=breaker)

    async def scenario():
        for _ in range(3):
            with pytest.raises(PredictionUnavailable):
                await oracle.forecast(context())

    asyncio.run(scenario())
    assert breaker.state == CircuitState.OPEN
    assert len(calls) == 2
