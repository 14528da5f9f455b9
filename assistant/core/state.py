"""Conversation state threaded through one workflow run.

Architectural role:
    Defines the message type shared by every layer and the immutable
    `ConversationState` record that stages read and update.

Update model:
    Stages never mutate state. They return a partial update (`StateUpdate`) and
    `ConversationState.merge` produces the next state with per-field rules:
    - `messages`: concatenated to the end of the history.
    - `selected_topics`: replaced wholesale.
    - `topic_answers`: key-wise overlay; keys absent from the update are kept.

Lifecycle:
    A fresh state is built per request from caller history and discarded when the
    run finishes. Nothing here persists across requests.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping, TypedDict


ROLES = ("user", "assistant", "system")


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


class StateUpdate(TypedDict, total=False):
    messages: list[ChatMessage]
    selected_topics: list[str]
    topic_answers: dict[str, ChatMessage]


@dataclass(frozen=True)
class ConversationState:
    """Immutable snapshot of one run.

    Attributes:
        messages: Conversation history, oldest first.
        selected_topics: Topic ids chosen by classification for this turn.
        topic_answers: Per-topic answers completed so far in this turn.
    """

    messages: tuple[ChatMessage, ...] = ()
    selected_topics: tuple[str, ...] = ()
    topic_answers: Mapping[str, ChatMessage] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def from_history(cls, messages) -> "ConversationState":
        """Start a turn from caller history with empty routing fields."""
        return cls(messages=tuple(messages))

    def merge(self, update: StateUpdate) -> "ConversationState":
        """Return the state produced by applying a stage's partial update."""
        changes = {}

        if "messages" in update:
            changes["messages"] = self.messages + tuple(update["messages"])

        if "selected_topics" in update:
            changes["selected_topics"] = tuple(update["selected_topics"])

        if "topic_answers" in update:
            changes["topic_answers"] = MappingProxyType(
                {**self.topic_answers, **update["topic_answers"]}
            )

        return replace(self, **changes) if changes else self

    def latest_user_text(self) -> str:
        """Return the content of the most recent user message, or `""`."""
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""

    def pending_topics(self) -> list[str]:
        """Selected topics still missing an answer, in selection order."""
        return [t for t in self.selected_topics if t not in self.topic_answers]
