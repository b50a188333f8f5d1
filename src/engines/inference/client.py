"""
OpenRouter Chat Completions Client

Thin httpx wrapper that turns transport and HTTP failures into the service's
ExternalAPIError family. It knows nothing about meals or zones.
"""

from typing import Any, Dict, List, Optional

import httpx

from src.core.config import settings
from src.core.exceptions import (
    ExternalAPIError,
    InferenceAuthError,
    InferenceResponseError,
    InferenceTimeoutError,
    ServiceNotConfiguredError,
)
from src.core.logging import get_logger

logger = get_logger(__name__)


class OpenRouterClient:
    """Async client for an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key if api_key is not None else settings.OPENROUTER_API_KEY
        self.api_url = api_url or settings.OPENROUTER_API_URL
        self.timeout_seconds = timeout_seconds or settings.INFERENCE_TIMEOUT_SECONDS
        self._http = http_client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http

    async def aclose(self):
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def complete(
        self,
        service: str,
        model: str,
        messages: List[Dict[str, Any]],
        max_tokens: int = 1024,
        temperature: float = 0.1,
        response_format: Optional[Dict[str, Any]] = None
    ) -> str:
        """Send one chat completion and return the first choice's text."""
        if not self.configured:
            raise ServiceNotConfiguredError()

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if response_format is not None:
            payload["response_format"] = response_format

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": settings.APP_NAME,
        }

        try:
            response = await self._client().post(self.api_url, json=payload, headers=headers)
        except httpx.TimeoutException:
            raise InferenceTimeoutError(f"{service} request timed out", service=service)
        except httpx.HTTPError as e:
            raise ExternalAPIError(f"{service} request failed: {e}", service=service)

        if response.status_code in (401, 403):
            raise InferenceAuthError(f"{service} authentication failed", service=service)

        if response.status_code != 200:
            logger.warning(
                "inference_http_error",
                service=service,
                http_status=response.status_code,
                body=response.text[:200]
            )
            raise ExternalAPIError(
                f"{service} returned HTTP {response.status_code}",
                service=service,
                http_status=response.status_code
            )

        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            raise InferenceResponseError(f"{service} returned an unexpected payload", service=service)

        if not content or not isinstance(content, str):
            raise InferenceResponseError(f"No response from AI model for {service}", service=service)

        return content
