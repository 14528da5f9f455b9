"""Workflow entry point shared by the HTTP and CLI adapters.

Request lifecycle:
1. Validate the caller's message list synchronously (`validate_messages`).
2. Convert it into a fresh `ConversationState`.
3. Run the workflow as an event stream and adapt it to outward fragments.

Input validation behavior:
- List required, non-empty, at most `MAX_MESSAGES` entries.
- Each entry needs non-empty `role` and `content`.
- Role must be `user`, `assistant` or `system`.
- Content must be a string of at most `MAX_CONTENT_LENGTH` characters.
- At least one user message must be present.
Validation failures raise `MessageValidationError` before any collaborator is
touched; they never appear as stream fragments.

Role mapping:
- `user` stays `user`; `assistant` and `system` inputs become `assistant`
  history turns. Stages only read the latest user message.
"""

from typing import Any, AsyncIterator, Sequence

from assistant.core.engine import Workflow
from assistant.core.state import ROLES, ChatMessage, ConversationState
from assistant.core.stream_adapter import stream_synthesis


MAX_MESSAGES = 100
MAX_CONTENT_LENGTH = 10000


class MessageValidationError(ValueError):
    """Caller input rejected before a workflow run starts."""


def validate_messages(messages: Any) -> list[ChatMessage]:
    """Check caller messages and convert them to `ChatMessage` history.

    Raises:
        MessageValidationError: On the first rule violated.
    """
    if not messages or not isinstance(messages, (list, tuple)):
        raise MessageValidationError("Messages array is required and cannot be empty")

    if len(messages) > MAX_MESSAGES:
        raise MessageValidationError(
            f"Too many messages. Maximum {MAX_MESSAGES} messages allowed."
        )

    history: list[ChatMessage] = []

    for message in messages:
        if not isinstance(message, dict) or not message.get("role") or not message.get("content"):
            raise MessageValidationError("Each message must have 'role' and 'content' fields")

        role = message["role"]
        content = message["content"]

        if role not in ROLES:
            raise MessageValidationError("Message role must be 'user', 'assistant', or 'system'")

        if not isinstance(content, str):
            raise MessageValidationError("Message content must be a string")

        if len(content) > MAX_CONTENT_LENGTH:
            raise MessageValidationError(
                f"Message content too long. Maximum {MAX_CONTENT_LENGTH} characters."
            )

        history.append(ChatMessage("user" if role == "user" else "assistant", content))

    if not any(m.role == "user" for m in history):
        raise MessageValidationError("No user message found")

    return history


def start_chat(messages: Sequence[dict], workflow: Workflow) -> AsyncIterator[dict]:
    """Validate input and return the fragment stream for one turn.

    The returned async iterator has not started the run yet; the workflow begins
    when the caller starts consuming fragments.
    """
    history = validate_messages(messages)
    state = ConversationState.from_history(history)
    return stream_synthesis(workflow.astream_events(state))
