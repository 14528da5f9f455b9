"""Synthesis-only streaming adapter over the workflow's execution trace.

Architectural role:
    Converts `ExecutionEvent`s from `Workflow.astream_events` into the outward
    fragment protocol consumed by HTTP/CLI adapters:
    - `{"content": str}`: text to append.
    - `{"error": str}`:   terminal failure, user-safe text only.
    - `{"done": True}`:   terminal success.

Phase machine:
    OUTSIDE_SYNTHESIS --(synthesize entered)--> INSIDE_SYNTHESIS
    INSIDE_SYNTHESIS  --(synthesize exited)---> terminal
    Token events are forwarded only in INSIDE_SYNTHESIS, so chunks streamed by
    any other stage never reach the caller.

Fallback paths:
    - Synthesis exited without forwarding a token (the stage did not stream):
      forward the stage output's last message as one fragment.
    - Upstream ended without synthesis exit or error: forward text accumulated
      but not yet forwarded, then `done`.

Error handling:
    Any `STAGE_ERROR` produces one error fragment and ends the stream. Internal
    detail is never forwarded; rate-limit rejections forward their retry message.
"""

import logging
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Mapping

from assistant.core.events import EventKind, ExecutionEvent
from assistant.core.routing_types import SYNTHESIS_STAGE_NAME
from assistant.llm.rate_limit import RateLimitExceeded


logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An error occurred during generation"


def content_fragment(text: str) -> dict:
    return {"content": text}


def error_fragment(message: str) -> dict:
    return {"error": message}


def done_fragment() -> dict:
    return {"done": True}


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _fragment_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    text = _field(part, "text")
    return text if isinstance(text, str) else ""


def extract_chunk_text(chunk: Any) -> str:
    """Normalize an incremental chunk to its text; never raises.

    Accepted shapes:
        - `str`.
        - Mapping or object whose `content` is a `str`.
        - Mapping or object whose `content` is a list of fragments, each a `str`
          or carrying a string `text` field; fragments are joined.
        - Mapping or object with a string `text` field (and no usable `content`).
    Anything else yields `""`.
    """
    if chunk is None:
        return ""

    if isinstance(chunk, str):
        return chunk

    try:
        content = _field(chunk, "content")

        if isinstance(content, str):
            return content

        if isinstance(content, (list, tuple)):
            return "".join(_fragment_text(part) for part in content)

        text = _field(chunk, "text")
        if isinstance(text, str):
            return text
    except Exception:
        logger.debug("Ignoring unreadable chunk of type %s", type(chunk).__name__)

    return ""


def _final_message_text(output: Any) -> str:
    messages = _field(output, "messages") if output is not None else None
    if not messages:
        return ""
    return extract_chunk_text(messages[-1])


def error_message_for(error: Any) -> str:
    """User-facing text for a failed run."""
    if isinstance(error, RateLimitExceeded):
        return error.user_message
    return GENERIC_ERROR_MESSAGE


class Phase(str, Enum):
    OUTSIDE_SYNTHESIS = "outside_synthesis"
    INSIDE_SYNTHESIS = "inside_synthesis"


class SynthesisStreamAdapter:
    """Filter one run's trace down to the synthesis stage's output.

    One adapter instance handles one run.
    """

    def __init__(self, synthesis_stage: str = SYNTHESIS_STAGE_NAME) -> None:
        self.synthesis_stage = synthesis_stage
        self.phase = Phase.OUTSIDE_SYNTHESIS
        self.accumulated = ""
        self.forwarded = 0

    def _is_synthesis(self, event: ExecutionEvent) -> bool:
        return event.name == self.synthesis_stage

    async def adapt(self, events: AsyncIterable[ExecutionEvent]) -> AsyncIterator[dict]:
        """Yield outward fragments for the given event stream."""
        try:
            async for event in events:

                if event.kind is EventKind.STAGE_ERROR:
                    error = event.data.get("error")
                    logger.error("Run failed in stage %s: %r", event.name, error)
                    yield error_fragment(error_message_for(error))
                    return

                if event.kind is EventKind.STAGE_ENTERED and self._is_synthesis(event):
                    self.phase = Phase.INSIDE_SYNTHESIS
                    continue

                if self.phase is not Phase.INSIDE_SYNTHESIS:
                    continue

                if event.kind is EventKind.TOKEN:
                    text = extract_chunk_text(event.data.get("chunk"))
                    if text:
                        self.accumulated += text
                        self.forwarded = len(self.accumulated)
                        yield content_fragment(text)
                    continue

                if event.kind is EventKind.STAGE_EXITED and self._is_synthesis(event):
                    self.phase = Phase.OUTSIDE_SYNTHESIS
                    if not self.forwarded:
                        text = _final_message_text(event.data.get("output"))
                        if text:
                            self.accumulated = text
                            self.forwarded = len(text)
                            yield content_fragment(text)
                    yield done_fragment()
                    return

            # Upstream ended without a synthesis exit or an error.
            logger.warning("Event stream ended before synthesis completed")
            pending = self.accumulated[self.forwarded:]
            if pending:
                self.forwarded = len(self.accumulated)
                yield content_fragment(pending)
            yield done_fragment()

        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()


def stream_synthesis(events: AsyncIterable[ExecutionEvent]) -> AsyncIterator[dict]:
    return SynthesisStreamAdapter().adapt(events)
