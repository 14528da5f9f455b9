"""Provider transport client for OpenAI-compatible chat-completion endpoints.

Architectural role:
    Executes HTTP requests against the configured provider and normalizes the
    streaming and non-streaming response shapes into plain text.

Model invocation flow:
    `service.GenerationService.invoke/stream` -> `ChatCompletionsClient` ->
    provider endpoint -> parsed text or streamed deltas.

Retry behavior:
    No retry loop is implemented. Each request is attempted once with the stage's
    configured timeout; retry policy belongs to the caller.

Failure handling model:
    Transport errors, timeouts, non-2xx statuses and unparseable bodies raise
    `GenerationError`. The exception message names the provider and status code
    only; raw provider bodies are logged, never embedded in the message.
"""

import json
import logging
from typing import Any, AsyncIterator

import httpx

from assistant.llm.provider_config import PROVIDER, load_key, resolve_endpoint


logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """Generation API failure (network, provider status, timeout, bad payload)."""

    def __init__(self, provider: str, reason: str, status_code: int | None = None):
        self.provider = provider
        self.reason = reason
        self.status_code = status_code
        label = str(provider or "provider").upper()
        if status_code:
            message = f"{label} HTTP ERROR ({status_code}): {reason}"
        else:
            message = f"{label} REQUEST FAILED: {reason}"
        super().__init__(message)


def parse_stream_line(line: str) -> str | None:
    """Extract the text delta carried by one SSE line.

    Args:
        line: Raw line from the provider stream.

    Returns:
        Delta text, `""` for the `[DONE]` sentinel, or `None` when the line carries
        no text (keep-alives, role-only deltas, undecodable JSON).
    """
    if not line:
        return None

    if line.startswith("data:"):
        line = line[5:].strip()

    if line == "[DONE]":
        return ""

    try:
        data = json.loads(line)
    except ValueError:
        return None

    if not isinstance(data, dict):
        return None

    delta = None

    if data.get("choices"):
        choice = data["choices"][0]

        if isinstance(choice.get("delta"), dict) and "content" in choice["delta"]:
            delta = choice["delta"]["content"]

        elif isinstance(choice.get("message"), dict) and "content" in choice["message"]:
            delta = choice["message"]["content"]

        elif "text" in choice:
            delta = choice["text"]

    elif isinstance(data.get("message"), dict) and "content" in data["message"]:
        delta = data["message"]["content"]

    return delta if isinstance(delta, str) and delta else None


class ChatCompletionsClient:
    """Async client for one OpenAI-compatible provider.

    Args:
        provider: Key into `PROVIDERS`.
        url: Endpoint override; resolved from the provider when omitted.
        api_key: Key override; resolved through `load_key` when omitted.
        transport: Optional `httpx` transport (used by tests).
    """

    def __init__(
        self,
        provider: str = PROVIDER,
        url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.provider = provider
        self.url = url or resolve_endpoint(provider)
        if api_key is None:
            api_key = load_key(provider)
        self._api_key = api_key
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout_s,
            headers=self._headers(),
            transport=self._transport,
        )

    def _wrap(self, exc: Exception) -> GenerationError:
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code if exc.response is not None else None
            return GenerationError(self.provider, "provider rejected request", status)
        if isinstance(exc, httpx.TimeoutException):
            return GenerationError(self.provider, "request timed out")
        if isinstance(exc, httpx.RequestError):
            return GenerationError(self.provider, "transport error")
        return GenerationError(self.provider, "malformed response")

    async def complete(self, payload: dict[str, Any], timeout_s: float) -> str:
        """Send a non-streaming request and return the assistant text.

        Raises:
            GenerationError: On any transport, status or parsing failure.
        """
        body = {**payload, "stream": False}
        try:
            async with self._client(timeout_s) as client:
                response = await client.post(self.url, json=body)
                response.raise_for_status()
                data = response.json()
            return str(data["choices"][0]["message"]["content"] or "").strip()
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
            logger.warning("Completion request to %s failed: %r", self.provider, exc)
            raise self._wrap(exc) from exc

    async def stream(self, payload: dict[str, Any], timeout_s: float) -> AsyncIterator[str]:
        """Send a streaming request and yield text deltas as they arrive.

        Raises:
            GenerationError: On transport, status or timeout failure, including
                failures after some deltas were already yielded.
        """
        body = {**payload, "stream": True}
        try:
            async with self._client(timeout_s) as client:
                async with client.stream("POST", self.url, json=body) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        delta = parse_stream_line(line.strip())
                        if delta == "":
                            break
                        if delta:
                            yield delta
        except httpx.HTTPError as exc:
            logger.warning("Streaming request to %s failed: %r", self.provider, exc)
            raise self._wrap(exc) from exc
