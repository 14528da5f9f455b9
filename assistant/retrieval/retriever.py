"""Retrieval contract consumed by topic answer stages.

Architectural role:
    Declares the `Retriever` protocol and the context-assembly helper that turns
    ranked passages into the prompt context string.

Ranking model:
    This module does not rank anything. Passage order is whatever the retriever
    returns and is preserved in the assembled context.
"""

from typing import Protocol

from assistant.prompting.prompt_builder import join_passages


TOP_K = 3


class Retriever(Protocol):
    """Topic-scoped passage search.

    Implementations return at most `top_k` passages, best first. No results is
    an empty list, never an exception.
    """

    async def retrieve(self, topic_id: str, query: str) -> list[str]:
        ...


async def retrieve_context(retriever: Retriever, topic_id: str, query: str) -> str:
    """Retrieve passages for one topic and join them into a context string.

    Edge cases:
        - Empty result -> `""`.
    """
    passages = await retriever.retrieve(topic_id, query) or []
    return join_passages(p for p in passages if p)
