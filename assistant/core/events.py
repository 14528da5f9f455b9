"""Execution-trace events emitted while a workflow runs.

Every event names the stage it belongs to. Stage events bracket each stage
(`STAGE_ENTERED` ... `STAGE_EXITED` or `STAGE_ERROR`); `TOKEN` events carry
incremental generation chunks reported by a stage while it is running.

Payload keys by kind:
    - STAGE_ENTERED: `input` (state before the stage).
    - STAGE_EXITED:  `output` (the stage's partial update), `state` (merged state).
    - STAGE_ERROR:   `error` (the raised exception).
    - TOKEN:         `chunk` (raw chunk as produced by the generation backend).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from assistant.core.dependencies import AssistantDependencies


class EventKind(str, Enum):
    STAGE_ENTERED = "stage_entered"
    STAGE_EXITED = "stage_exited"
    STAGE_ERROR = "stage_error"
    TOKEN = "token"


@dataclass(frozen=True)
class ExecutionEvent:
    kind: EventKind
    name: str
    data: dict[str, Any] = field(default_factory=dict)


EventSink = Callable[[ExecutionEvent], None]


def _discard(event: ExecutionEvent) -> None:
    return None


@dataclass(frozen=True)
class StageContext:
    """Per-stage handle to shared dependencies and the run's event sink."""

    deps: "AssistantDependencies"
    stage_name: str
    emit: EventSink = _discard

    def emit_token(self, chunk: Any) -> None:
        self.emit(ExecutionEvent(EventKind.TOKEN, self.stage_name, {"chunk": chunk}))
