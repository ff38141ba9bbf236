"""Async Gemini REST client with one-shot and streaming completions."""

from __future__ import annotations

from collections.abc import AsyncIterator
import json
import logging
from typing import Any, Protocol

import httpx

from .exceptions import (
    ProviderAuthError,
    ProviderConnectionError,
    ProviderError,
    ProviderQuotaError,
    ProviderResponseError,
)
from .request_builder import ProviderRequest

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class ProviderClient(Protocol):
    """What the turn controller needs from a completion provider."""

    async def complete(self, request: ProviderRequest) -> str: ...

    def complete_streaming(self, request: ProviderRequest) -> AsyncIterator[str]: ...


def _render_part(part: dict[str, Any]) -> str:
    """Render one response part as display text."""
    text = part.get("text")
    if isinstance(text, str):
        return text

    call = part.get("functionCall")
    if isinstance(call, dict):
        args = call.get("args") or {}
        return (
            f"Function Call: {call.get('name', '')}\n"
            f"Arguments: {json.dumps(args, indent=2, ensure_ascii=False)}"
        )

    code = part.get("executableCode")
    if isinstance(code, dict):
        language = str(code.get("language") or "python").lower()
        return f"\n```{language}\n{code.get('code', '')}\n```\n"

    result = part.get("codeExecutionResult")
    if isinstance(result, dict):
        return f"\n```\n{result.get('output', '')}\n```\n"
    return ""


def extract_text(payload: Any, *, allow_empty: bool = False) -> str:
    """Pull the displayable text out of a ``generateContent`` response body."""
    if not isinstance(payload, dict):
        raise ProviderResponseError("Provider returned a non-object response.")

    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = payload.get("promptFeedback") or {}
        reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if reason:
            raise ProviderResponseError(f"Prompt was blocked by the provider: {reason}.")
        if allow_empty:
            return ""
        raise ProviderResponseError("Provider returned no candidates.")

    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        if allow_empty:
            return ""
        reason = candidates[0].get("finishReason") if isinstance(candidates[0], dict) else None
        raise ProviderResponseError(
            f"Provider returned an empty candidate (finish reason: {reason or 'unknown'})."
        )
    return "".join(_render_part(part) for part in parts if isinstance(part, dict))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.reason_phrase


def _status_error(response: httpx.Response) -> ProviderError:
    message = f"HTTP {response.status_code}: {_error_message(response)}"
    if response.status_code in (401, 403):
        return ProviderAuthError(message)
    if response.status_code == 429:
        return ProviderQuotaError(message)
    return ProviderResponseError(message)


class GeminiClient:
    """Thin async wrapper over the Gemini ``generateContent`` endpoints.

    The client performs no retries; a failure is mapped onto the
    ``ProviderError`` hierarchy and raised to the caller.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this wrapper created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _endpoint(self, request: ProviderRequest, method: str) -> str:
        return f"{self.base_url}/models/{request.model.value}:{method}"

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key, "content-type": "application/json"}

    def _map_exception(self, exc: Exception) -> ProviderError:
        if isinstance(exc, ProviderError):
            return exc
        if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
            return ProviderConnectionError(
                f"Unable to reach provider at {self.base_url}: {exc}"
            )
        if isinstance(exc, ValueError):
            return ProviderResponseError(f"Provider returned malformed JSON: {exc}")
        return ProviderError(f"Provider request failed: {exc}")

    def _log_request(self, request: ProviderRequest, streaming: bool) -> None:
        LOGGER.info(
            "provider.request",
            extra={
                "event": "provider.request",
                "model": request.model.value,
                "streaming": streaming,
                "contents": len(request.contents),
                "tools": request.tools.names,
                "system_instruction": request.system_instruction is not None,
            },
        )

    async def complete(self, request: ProviderRequest) -> str:
        """Send one request and return the full response text."""
        self._log_request(request, streaming=False)
        try:
            response = await self._client.post(
                self._endpoint(request, "generateContent"),
                headers=self._headers(),
                json=request.to_payload(),
            )
            if response.status_code >= 400:
                raise _status_error(response)
            return extract_text(response.json())
        except Exception as exc:
            mapped = self._map_exception(exc)
            LOGGER.warning(
                "provider.error",
                extra={
                    "event": "provider.error",
                    "model": request.model.value,
                    "error_type": mapped.__class__.__name__,
                },
            )
            raise mapped from exc

    async def complete_streaming(self, request: ProviderRequest) -> AsyncIterator[str]:
        """Yield response text chunks in arrival order (server-sent events)."""
        self._log_request(request, streaming=True)
        try:
            async with self._client.stream(
                "POST",
                self._endpoint(request, "streamGenerateContent"),
                params={"alt": "sse"},
                headers=self._headers(),
                json=request.to_payload(),
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise _status_error(response)
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:") :].strip()
                    if not data:
                        continue
                    chunk = extract_text(json.loads(data), allow_empty=True)
                    if chunk:
                        yield chunk
        except Exception as exc:
            mapped = self._map_exception(exc)
            LOGGER.warning(
                "provider.error",
                extra={
                    "event": "provider.error",
                    "model": request.model.value,
                    "streaming": True,
                    "error_type": mapped.__class__.__name__,
                },
            )
            raise mapped from exc

