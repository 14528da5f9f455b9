"""Shared, read-only dependencies for workflow runs.

Architectural role:
    Bundles the collaborators every stage needs (generation backend, rate
    limiter, per-topic retrievers) into one immutable object that is built once
    per process and handed to each run.

Initialization:
    `get_dependencies()` builds the default bundle on first use behind an
    `asyncio.Lock` created lazily for the running event loop; concurrent first requests wait for the same build instead of
    indexing product documentation twice. Tests and embedders construct
    `AssistantDependencies` directly and skip the global entirely.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from assistant.llm.rate_limit import RateLimiter
from assistant.llm.service import GenerationBackend, GenerationService


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssistantDependencies:
    """Immutable collaborator bundle.

    Attributes:
        generation: Backend exposing `invoke` and `stream`.
        rate_limiter: Process-wide gate shared by all runs.
        retrievers: Topic id -> retriever. Topics without an entry answer with an
            apology instead of calling retrieval.
    """

    generation: GenerationBackend
    rate_limiter: RateLimiter
    retrievers: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "retrievers", MappingProxyType(dict(self.retrievers)))


_DEPENDENCIES: AssistantDependencies | None = None
_INIT_LOCK: asyncio.Lock | None = None
_INIT_LOOP: asyncio.AbstractEventLoop | None = None


def _init_lock() -> asyncio.Lock:
    """Return the build lock for the running event loop, creating it on demand."""
    global _INIT_LOCK, _INIT_LOOP

    loop = asyncio.get_running_loop()
    if _INIT_LOCK is None or _INIT_LOOP is not loop:
        _INIT_LOCK = asyncio.Lock()
        _INIT_LOOP = loop
    return _INIT_LOCK


async def build_default_dependencies() -> AssistantDependencies:
    """Build the production bundle: provider client, limiter, FAISS retrievers."""
    from assistant.retrieval.product_index import build_product_retrievers

    retrievers = await build_product_retrievers()
    logger.info("Retrieval ready for topics=%s", sorted(retrievers))

    return AssistantDependencies(
        generation=GenerationService(),
        rate_limiter=RateLimiter(),
        retrievers=retrievers,
    )


async def get_dependencies() -> AssistantDependencies:
    """Return the process-wide bundle, building it exactly once."""
    global _DEPENDENCIES

    if _DEPENDENCIES is not None:
        return _DEPENDENCIES

    async with _init_lock():
        if _DEPENDENCIES is None:
            _DEPENDENCIES = await build_default_dependencies()

    return _DEPENDENCIES


def set_dependencies(deps: AssistantDependencies | None) -> None:
    """Override or clear the process-wide bundle."""
    global _DEPENDENCIES, _INIT_LOCK, _INIT_LOOP
    _DEPENDENCIES = deps
    _INIT_LOCK = None
    _INIT_LOOP = None
