"""Workflow states and the routing function of the orchestration engine.

Architectural role:
    Defines the tagged node type `WorkflowNode` and the pure transition function
    `next_node` consumed by `assistant.core.engine.Workflow`.

Transition table:
    - START      -> CLASSIFY
    - CLASSIFY   -> TOPIC(first selected topic) | SYNTHESIZE (nothing selected)
    - TOPIC(_)   -> TOPIC(first selected topic without answer) | SYNTHESIZE
    - SYNTHESIZE -> END
    - END        -> END

Determinism:
    `next_node` depends only on the current node plus `selected_topics` and
    `topic_answers` of the state. It never calls classification again, so every
    selected topic is visited once, in selection order, before synthesis.
"""

from dataclasses import dataclass
from enum import Enum

from assistant.core.state import ConversationState
from assistant.core.topics import TOPICS_BY_ID


class NodeKind(str, Enum):
    START = "start"
    CLASSIFY = "classify"
    TOPIC = "topic"
    SYNTHESIZE = "synthesize"
    END = "end"


@dataclass(frozen=True)
class WorkflowNode:
    """One state of the workflow; `topic` is set only for `NodeKind.TOPIC`."""

    kind: NodeKind
    topic: str | None = None

    def __post_init__(self):
        if (self.kind is NodeKind.TOPIC) != (self.topic is not None):
            raise ValueError(f"topic must be set exactly for TOPIC nodes: {self!r}")
        if self.topic is not None and self.topic not in TOPICS_BY_ID:
            raise ValueError(f"Unknown topic: {self.topic}")

    @property
    def name(self) -> str:
        """Stage name used in execution events (topic id for topic nodes)."""
        return self.topic if self.kind is NodeKind.TOPIC else self.kind.value

    @classmethod
    def for_topic(cls, topic_id: str) -> "WorkflowNode":
        return cls(NodeKind.TOPIC, topic_id)


START = WorkflowNode(NodeKind.START)
CLASSIFY = WorkflowNode(NodeKind.CLASSIFY)
SYNTHESIZE = WorkflowNode(NodeKind.SYNTHESIZE)
END = WorkflowNode(NodeKind.END)

SYNTHESIS_STAGE_NAME = SYNTHESIZE.name


def _first_pending_topic(state: ConversationState) -> WorkflowNode:
    pending = state.pending_topics()
    return WorkflowNode.for_topic(pending[0]) if pending else SYNTHESIZE


def next_node(node: WorkflowNode, state: ConversationState) -> WorkflowNode:
    """Return the node that follows `node` given the current state.

    Leaving CLASSIFY and leaving a TOPIC node share one rule: route to the first
    selected topic without an answer. With empty answers after classification
    that is simply the first selected topic.
    """
    if node.kind is NodeKind.START:
        return CLASSIFY

    if node.kind in (NodeKind.CLASSIFY, NodeKind.TOPIC):
        return _first_pending_topic(state)

    return END
