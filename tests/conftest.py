"""Shared fakes for the workflow test suite."""

import asyncio
import json

import pytest

from assistant.core.dependencies import AssistantDependencies
from assistant.core.engine import Workflow
from assistant.core.state import ChatMessage
from assistant.llm.provider_config import RateLimitConfig
from assistant.llm.rate_limit import RateLimiter


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class ScriptedGeneration:
    """Generation backend returning canned replies and recording every call.

    `invoke` looks up the first rule whose marker appears in the system prompt;
    `stream` yields `stream_chunks` and raises `stream_error` afterwards if set.
    """

    def __init__(self, rules=None, default="", stream_chunks=(), stream_error=None, invoke_error=None):
        self.rules = list(rules or [])
        self.default = default
        self.stream_chunks = list(stream_chunks)
        self.stream_error = stream_error
        self.invoke_error = invoke_error
        self.invoke_calls = []
        self.stream_calls = []

    async def invoke(self, messages, config):
        self.invoke_calls.append(list(messages))
        system = messages[0].content if messages else ""
        if self.invoke_error is not None and self.invoke_error[0] in system:
            raise self.invoke_error[1]
        for marker, reply in self.rules:
            if marker in system:
                return ChatMessage("assistant", reply)
        return ChatMessage("assistant", self.default)

    async def stream(self, messages, config):
        self.stream_calls.append(list(messages))
        for chunk in self.stream_chunks:
            await asyncio.sleep(0)
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error

    def system_prompts(self):
        return [call[0].content for call in self.invoke_calls]


class StaticRetriever:
    """Returns fixed passages per topic and records queries."""

    def __init__(self, passages=None):
        self.passages = passages or {}
        self.queries = []

    async def retrieve(self, topic_id, query):
        self.queries.append((topic_id, query))
        return list(self.passages.get(topic_id, []))


CLASSIFIER_MARKER = "Route user questions"
SYNTHESIS_MARKER = "Synthesize answers"
FALLBACK_MARKER = "doesn't seem to relate"


def topic_marker(display_name: str) -> str:
    return f"Expert assistant for {display_name}."


def make_generation(selected, answers=None, **kwargs) -> ScriptedGeneration:
    """Backend whose classifier selects `selected` and whose topic agents reply from `answers`."""
    rules = [(CLASSIFIER_MARKER, json.dumps(list(selected)))]
    names = {"da-desk": "DA-Desk", "martrust": "MarTrust", "shipserv": "ShipServ"}
    for topic_id, reply in (answers or {}).items():
        rules.append((topic_marker(names[topic_id]), reply))
    return ScriptedGeneration(rules=rules, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rate_limiter(clock):
    # rng pinned above the sweep probability so sweeps only run when a test asks.
    return RateLimiter(RateLimitConfig(max_requests=60, window_ms=60_000), clock=clock, rng=lambda: 1.0)


@pytest.fixture
def retriever():
    return StaticRetriever({
        "da-desk": ["Port dues are benchmarked.", "Final DAs are audited."],
        "martrust": ["Crew wages are paid in 100+ currencies."],
        "shipserv": ["RFQs go to many suppliers."],
    })


@pytest.fixture
def make_deps(rate_limiter, retriever):
    def factory(generation, retrievers=None):
        if retrievers is None:
            retrievers = {t: retriever for t in ("da-desk", "martrust", "shipserv")}
        return AssistantDependencies(
            generation=generation,
            rate_limiter=rate_limiter,
            retrievers=retrievers,
        )
    return factory


@pytest.fixture
def make_workflow(make_deps):
    def factory(generation, retrievers=None, stages=None):
        return Workflow(make_deps(generation, retrievers), stages=stages)
    return factory


def collect(async_iterable):
    """Drain an async iterable into a list on a fresh event loop."""
    async def drain():
        return [item async for item in async_iterable]
    return asyncio.run(drain())
