"""Core orchestration package.

Architectural role:
    Exposes the workflow layer that sits between API/CLI entrypoints and the
    lower-level subsystems (classification, retrieval, prompting and LLM access).

Composition:
    - `engine`: workflow state machine and execution trace.
    - `routing_types`: workflow nodes and the pure routing function.
    - `state`: conversation state and merge rules.
    - `nodes`: topic answer and synthesis stages.
    - `stream_adapter`: synthesis-only fragment stream over the trace.
    - `dependencies`: immutable collaborator bundle.
    - `topics`: known product catalog.

Determinism and side effects:
    Package import itself is deterministic and side-effect free. Runtime side
    effects (network calls) happen inside stages during a run.
"""
