"""
Gemini Client

Async HTTP client for the Generative Language REST API, used by the
assistance layer for troubleshooting answers and report narratives.

Features:
- Async HTTP client with httpx
- Automatic retries with exponential backoff
- Request/response validation with Pydantic
- Prometheus metrics for observability
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field
from prometheus_client import Counter, Histogram

from services.hal.exceptions import AssistanceUnavailableError

logger = logging.getLogger(__name__)

# Prometheus metrics
gemini_requests_total = Counter(
    "ivd_gemini_requests_total",
    "Total requests to the Gemini API",
    ["status"]  # success, error
)

gemini_request_duration_seconds = Histogram(
    "ivd_gemini_request_duration_seconds",
    "Gemini request duration in seconds"
)


# ============ Request/Response Models ============

class Part(BaseModel):
    text: str = ""


class Content(BaseModel):
    role: str = "user"
    parts: List[Part] = Field(default_factory=list)


class GenerationConfig(BaseModel):
    temperature: float = Field(0.2, ge=0, le=2)


class GenerateContentRequest(BaseModel):
    """Body of models/{model}:generateContent"""
    contents: List[Content]
    generationConfig: GenerationConfig = Field(default_factory=GenerationConfig)


class Candidate(BaseModel):
    content: Optional[Content] = None
    finishReason: Optional[str] = None


class GenerateContentResponse(BaseModel):
    candidates: List[Candidate] = Field(default_factory=list)

    @property
    def text(self) -> str:
        """Concatenated text of the first candidate"""
        if not self.candidates or self.candidates[0].content is None:
            return ""
        return "".join(part.text for part in self.candidates[0].content.parts)


# ============ Gemini Client ============

class GeminiClient:
    """
    Async HTTP client for Gemini text generation

    Example:
        async with GeminiClient(api_key="...") as client:
            text = await client.generate("Why is the reaction temperature drifting?")
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize Gemini client

        Args:
            api_key: Generative Language API key
            model: Model name
            base_url: API root
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts for failed requests
            transport: Optional httpx transport (tests)
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

        self.client: Optional[httpx.AsyncClient] = None

        logger.info(f"GeminiClient initialized: model={model}, timeout={timeout}s")

    async def __aenter__(self):
        """Context manager entry - create HTTP client"""
        self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close HTTP client"""
        await self.aclose()

    def open(self) -> None:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"x-goog-api-key": self.api_key},
                transport=self._transport
            )

    async def aclose(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _request(self, endpoint: str, payload: Dict[str, Any]) -> httpx.Response:
        """
        POST with retries and metrics

        Raises:
            httpx.HTTPError: If request fails after retries
        """
        if not self.client:
            raise RuntimeError("GeminiClient not initialized - use async context manager")

        with gemini_request_duration_seconds.time():
            for attempt in range(self.max_retries):
                try:
                    response = await self.client.post(endpoint, json=payload)
                    response.raise_for_status()

                    gemini_requests_total.labels(status="success").inc()

                    return response

                except httpx.HTTPStatusError as e:
                    # Don't retry client errors (4xx): bad key, quota, malformed prompt
                    if 400 <= e.response.status_code < 500:
                        gemini_requests_total.labels(status="error").inc()
                        logger.error(
                            f"Gemini request failed: {endpoint} -> {e.response.status_code}"
                        )
                        raise

                    if attempt < self.max_retries - 1:
                        wait_time = 2 ** attempt  # Exponential backoff: 1s, 2s, 4s
                        logger.warning(
                            f"Gemini request failed (attempt {attempt + 1}/{self.max_retries}): "
                            f"{e.response.status_code}. Retrying in {wait_time}s..."
                        )
                        await asyncio.sleep(wait_time)
                    else:
                        gemini_requests_total.labels(status="error").inc()
                        raise

                except httpx.RequestError as e:
                    if attempt < self.max_retries - 1:
                        wait_time = 2 ** attempt
                        logger.warning(
                            f"Gemini request error (attempt {attempt + 1}/{self.max_retries}): "
                            f"{e}. Retrying in {wait_time}s..."
                        )
                        await asyncio.sleep(wait_time)
                    else:
                        gemini_requests_total.labels(status="error").inc()
                        raise

    async def generate(self, prompt: str, temperature: float = 0.2) -> str:
        """
        Generate text for a single-turn prompt

        Raises:
            AssistanceUnavailableError: On transport/HTTP failure or an empty answer
        """
        request = GenerateContentRequest(
            contents=[Content(role="user", parts=[Part(text=prompt)])],
            generationConfig=GenerationConfig(temperature=temperature)
        )

        try:
            response = await self._request(
                f"/models/{self.model}:generateContent",
                request.model_dump()
            )
            body = GenerateContentResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise AssistanceUnavailableError(f"Gemini request failed: {e}") from e

        text = body.text.strip()
        if not text:
            raise AssistanceUnavailableError("Gemini returned no text")

        return text
