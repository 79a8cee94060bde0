"""
Test the Gemini client against a mocked transport
"""

import json

import httpx
import pytest

from services.api.assistance import (
    UNAVAILABLE_ASSISTANCE_MESSAGE,
    UNAVAILABLE_REPORT_MESSAGE,
    AssistanceService,
)
from services.api.clients.gemini import GeminiClient, GenerateContentResponse
from services.hal.drivers.base import InstrumentState, InstrumentStatus
from services.hal.exceptions import AssistanceUnavailableError


def answer(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def make_client(handler, max_retries=3) -> GeminiClient:
    return GeminiClient(
        api_key="test-key",
        model="gemini-test",
        base_url="https://gemini.test/v1beta",
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


def test_response_text():
    body = GenerateContentResponse(**answer("Hello"))
    assert body.text == "Hello"
    assert GenerateContentResponse().text == ""


@pytest.mark.asyncio
async def test_generate():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=answer("  Recalibrate the photometer.  "))

    async with make_client(handler) as client:
        text = await client.generate("Why is OD drifting?", temperature=0.3)

    assert text == "Recalibrate the photometer."

    request = seen[0]
    assert request.url.path == "/v1beta/models/gemini-test:generateContent"
    assert request.headers["x-goog-api-key"] == "test-key"

    payload = json.loads(request.content)
    assert payload["contents"][0]["parts"][0]["text"] == "Why is OD drifting?"
    assert payload["generationConfig"]["temperature"] == 0.3


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403, json={"error": {"message": "API key not valid"}})

    async with make_client(handler) as client:
        with pytest.raises(AssistanceUnavailableError):
            await client.generate("hello")

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_server_error_is_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json=answer("Recovered"))

    async with make_client(handler, max_retries=2) as client:
        assert await client.generate("hello") == "Recovered"

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_network_error_after_retries():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler, max_retries=1) as client:
        with pytest.raises(AssistanceUnavailableError):
            await client.generate("hello")


@pytest.mark.asyncio
async def test_empty_answer():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": []})

    async with make_client(handler) as client:
        with pytest.raises(AssistanceUnavailableError):
            await client.generate("hello")


@pytest.mark.asyncio
async def test_requires_open_client():
    client = make_client(lambda request: httpx.Response(200, json=answer("x")))

    with pytest.raises(RuntimeError):
        await client.generate("hello")


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [[], "oops", 42])
async def test_non_object_body(payload):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    async with make_client(handler) as client:
        with pytest.raises(AssistanceUnavailableError):
            await client.generate("hello")


@pytest.mark.asyncio
async def test_non_object_body_yields_unavailable_text():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    async with make_client(handler) as client:
        service = AssistanceService(client)
        state = InstrumentState(
            status=InstrumentStatus.RUNNING,
            reaction_temp=37.0,
            reagent_vol=80.0,
            sample_count=1240,
            throughput=800,
        )

        assert await service.generate_assistance("Why?", state) == UNAVAILABLE_ASSISTANCE_MESSAGE
        assert await service.generate_report(state, None, "Daily Status Report") == UNAVAILABLE_REPORT_MESSAGE
