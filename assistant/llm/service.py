"""Message-to-payload adapter for LLM invocation.

Architectural role:
    Provides the two generation call forms used by workflow stages and bridges
    `ChatMessage` lists plus an `LLMConfig` to the transport in
    `assistant.llm.client`.

Model call flow:
    messages + config -> payload construction -> `ChatCompletionsClient`.

Call forms:
    - `invoke`: atomic; returns one assistant `ChatMessage`.
    - `stream`: incremental; yields assistant `ChatMessage` chunks, one per delta.

Failure scenarios:
    Transport/provider failures surface as `GenerationError` from either form.
    Nothing is converted to in-band error text.
"""

from typing import AsyncIterator, Protocol, Sequence

from assistant.core.state import ChatMessage
from assistant.llm.client import ChatCompletionsClient
from assistant.llm.provider_config import LLMConfig


class GenerationBackend(Protocol):
    """Interface stages depend on; satisfied by `GenerationService` and test fakes."""

    async def invoke(self, messages: Sequence[ChatMessage], config: LLMConfig) -> ChatMessage:
        ...

    def stream(self, messages: Sequence[ChatMessage], config: LLMConfig) -> AsyncIterator[ChatMessage]:
        ...


def build_payload(messages: Sequence[ChatMessage], config: LLMConfig) -> dict:
    """Build an OpenAI-compatible request body.

    Optional sampling fields set to `None` in the config are omitted so the
    provider default applies.
    """
    payload = {
        "model": config.model_name,
        "messages": [{"role": m.role, "content": m.content} for m in messages],
        "temperature": config.temperature,
    }

    optional = {
        "max_tokens": config.max_tokens,
        "top_p": config.top_p,
        "frequency_penalty": config.frequency_penalty,
        "presence_penalty": config.presence_penalty,
    }
    payload.update({k: v for k, v in optional.items() if v is not None})

    return payload


class GenerationService:
    """Default generation backend over the configured provider."""

    def __init__(self, client: ChatCompletionsClient | None = None) -> None:
        self.client = client or ChatCompletionsClient()

    async def invoke(self, messages: Sequence[ChatMessage], config: LLMConfig) -> ChatMessage:
        text = await self.client.complete(build_payload(messages, config), config.timeout_seconds)
        return ChatMessage(role="assistant", content=text)

    async def stream(self, messages: Sequence[ChatMessage], config: LLMConfig) -> AsyncIterator[ChatMessage]:
        async for delta in self.client.stream(build_payload(messages, config), config.timeout_seconds):
            yield ChatMessage(role="assistant", content=delta)
