"""Core request orchestration: classification, topic answers, synthesis.

Architectural role:
    Provides the workflow state machine used by API/CLI layers to turn one
    conversation into a single synthesized answer.

Control-flow model:
    1. START -> CLASSIFY: pick the topics the latest question concerns.
    2. One TOPIC stage per selected topic, in selection order, each exactly once.
    3. SYNTHESIZE: merge, pass through, or fall back, producing one message.
    4. END.
    Transitions come from the pure `routing_types.next_node`; stages come from the
    explicit node -> stage table built in `Workflow.__init__`.

Execution trace:
    Every stage is bracketed by `STAGE_ENTERED` and `STAGE_EXITED` events; stages
    may emit `TOKEN` events in between. `astream_events` exposes the trace as an
    async iterator while the run executes in a background task.

Error handling strategy:
    A stage exception emits `STAGE_ERROR`, logs the full detail and propagates to
    the caller of `run` / `astream_events`. The partially advanced state is
    dropped; no partial result is returned.

Concurrency:
    Stages within a run execute sequentially. Independent runs share only the
    read-only dependency bundle and the lock-guarded rate limiter.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from assistant.core import routing_types
from assistant.core.dependencies import AssistantDependencies
from assistant.core.events import EventKind, EventSink, ExecutionEvent, StageContext
from assistant.core.nodes import SynthesisStage, TopicAnswerStage
from assistant.core.routing_types import NodeKind, WorkflowNode
from assistant.core.state import ConversationState, StateUpdate
from assistant.core.topics import KNOWN_TOPICS
from assistant.nlp.topic_classifier import classification_stage


logger = logging.getLogger(__name__)

Stage = Callable[[ConversationState, StageContext], Awaitable[StateUpdate]]

# CLASSIFY + every topic once + SYNTHESIZE.
MAX_STEPS = len(KNOWN_TOPICS) + 2


class WorkflowError(RuntimeError):
    """Raised when the workflow cannot make progress (step limit exceeded)."""


class Workflow:
    """Compiled orchestration workflow bound to one dependency bundle.

    Args:
        deps: Shared collaborators.
        stages: Optional node-name -> stage overrides (used by tests to inject
            failing or instrumented stages).
    """

    def __init__(self, deps: AssistantDependencies, stages: dict[str, Stage] | None = None) -> None:
        self.deps = deps
        self._stages: dict[WorkflowNode, Stage] = {
            routing_types.CLASSIFY: classification_stage,
            routing_types.SYNTHESIZE: SynthesisStage(),
        }
        for topic in KNOWN_TOPICS:
            self._stages[WorkflowNode.for_topic(topic.id)] = TopicAnswerStage(topic)

        for name, stage in (stages or {}).items():
            node = next((n for n in self._stages if n.name == name), None)
            if node is None:
                raise ValueError(f"Unknown stage: {name}")
            self._stages[node] = stage

    async def _execute(self, state: ConversationState, emit: EventSink) -> ConversationState:
        node = routing_types.next_node(routing_types.START, state)
        steps = 0

        while node.kind is not NodeKind.END:
            steps += 1
            if steps > MAX_STEPS:
                error = WorkflowError(f"Workflow exceeded {MAX_STEPS} steps at node={node.name}")
                emit(ExecutionEvent(EventKind.STAGE_ERROR, node.name, {"error": error}))
                raise error

            stage = self._stages[node]
            ctx = StageContext(deps=self.deps, stage_name=node.name, emit=emit)

            logger.debug("Entering stage %s", node.name)
            emit(ExecutionEvent(EventKind.STAGE_ENTERED, node.name, {"input": state}))

            try:
                update = await stage(state, ctx)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Stage %s failed", node.name)
                emit(ExecutionEvent(EventKind.STAGE_ERROR, node.name, {"error": exc}))
                raise

            state = state.merge(update)
            emit(ExecutionEvent(
                EventKind.STAGE_EXITED,
                node.name,
                {"output": update, "state": state},
            ))
            logger.debug("Exited stage %s", node.name)

            node = routing_types.next_node(node, state)

        return state

    async def run(self, state: ConversationState) -> ConversationState:
        """Execute the workflow to completion and return the final state."""
        return await self._execute(state, lambda event: None)

    async def astream_events(self, state: ConversationState) -> AsyncIterator[ExecutionEvent]:
        """Yield the execution trace of one run as it happens.

        The run executes in a background task. Closing this iterator early (for
        example when the client disconnects) cancels the run. If a stage fails,
        its `STAGE_ERROR` event is yielded first and the exception is raised
        afterwards.
        """
        queue: asyncio.Queue = asyncio.Queue()
        finished = object()

        async def drive() -> ConversationState:
            try:
                return await self._execute(state, queue.put_nowait)
            finally:
                queue.put_nowait(finished)

        task = asyncio.create_task(drive())

        try:
            while True:
                event = await queue.get()
                if event is finished:
                    break
                yield event
            await task
        finally:
            if not task.done():
                task.cancel()
            # Failures were already reported through STAGE_ERROR.
            await asyncio.gather(task, return_exceptions=True)


def create_workflow(deps: AssistantDependencies) -> Workflow:
    return Workflow(deps)
