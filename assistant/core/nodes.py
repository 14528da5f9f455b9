"""Topic answer and synthesis stages of the orchestration workflow.

Stage contract:
    Every stage is an async callable `(state, ctx) -> StateUpdate`. Stages read the
    immutable `ConversationState`, call collaborators from `ctx.deps`, and return
    a partial update; the engine merges it.

Rate limiting:
    Every generation call goes through `ctx.deps.rate_limiter.with_rate_limit`
    with a stage-specific key: `topic-<id>` for topic stages and `synthesis` for
    all synthesis policies.

Failure handling:
    A topic without a configured retriever answers with a fixed apology.
    Everything else (rate-limit rejection, retrieval or generation failure)
    propagates to the engine and terminates the run.
"""

import logging

from assistant.core.events import StageContext
from assistant.core.state import ChatMessage, ConversationState, StateUpdate
from assistant.core.stream_adapter import extract_chunk_text
from assistant.core.topics import Topic
from assistant.llm.provider_config import (
    SYNTHESIS_LLM_CONFIG,
    TOPIC_AGENT_LLM_CONFIG,
    get_llm_config,
)
from assistant.prompting.prompt_builder import (
    build_fallback_messages,
    build_synthesis_messages,
    build_topic_messages,
    format_topic_answers,
)
from assistant.retrieval.retriever import retrieve_context


logger = logging.getLogger(__name__)

SYNTHESIS_RATE_LIMIT_KEY = "synthesis"


def topic_rate_limit_key(topic_id: str) -> str:
    return f"topic-{topic_id}"


def unavailable_answer(topic_id: str) -> ChatMessage:
    return ChatMessage(
        "assistant",
        f"I apologize, but I don't have access to {topic_id} documentation at the moment.",
    )


class TopicAnswerStage:
    """Answer the latest question from one topic's documentation only."""

    def __init__(self, topic: Topic) -> None:
        self.topic = topic

    def __repr__(self) -> str:
        return f"TopicAnswerStage({self.topic.id!r})"

    async def __call__(self, state: ConversationState, ctx: StageContext) -> StateUpdate:
        topic_id = self.topic.id
        question = state.latest_user_text()

        retriever = ctx.deps.retrievers.get(topic_id)
        if retriever is None:
            logger.warning("No retriever configured for topic=%s", topic_id)
            return {"topic_answers": {topic_id: unavailable_answer(topic_id)}}

        context = await retrieve_context(retriever, topic_id, question)
        messages = build_topic_messages(self.topic, question, context)
        config = get_llm_config(TOPIC_AGENT_LLM_CONFIG)

        answer = await ctx.deps.rate_limiter.with_rate_limit(
            lambda: ctx.deps.generation.invoke(messages, config),
            topic_rate_limit_key(topic_id),
        )

        return {"topic_answers": {topic_id: answer}}


class SynthesisStage:
    """Produce the turn's single assistant message.

    Policies, first match wins:
        1. No topic selected: answer the raw question with a fallback instruction.
        2. One topic with an answer: pass that answer through, no generation call.
        3. Otherwise: stream a synthesis of the labeled topic answers, reporting
           each chunk as a token event.
    """

    async def __call__(self, state: ConversationState, ctx: StageContext) -> StateUpdate:
        question = state.latest_user_text()
        selected = state.selected_topics
        generation = ctx.deps.generation
        rate_limiter = ctx.deps.rate_limiter
        config = get_llm_config(SYNTHESIS_LLM_CONFIG)

        if not selected:
            messages = build_fallback_messages(question)
            response = await rate_limiter.with_rate_limit(
                lambda: generation.invoke(messages, config),
                SYNTHESIS_RATE_LIMIT_KEY,
            )
            return {"messages": [response]}

        if len(selected) == 1 and selected[0] in state.topic_answers:
            return {"messages": [state.topic_answers[selected[0]]]}

        answers_text = format_topic_answers(selected, state.topic_answers)
        messages = build_synthesis_messages(question, answers_text)

        rate_limiter.check(SYNTHESIS_RATE_LIMIT_KEY)

        parts: list[str] = []
        async for chunk in generation.stream(messages, config):
            ctx.emit_token(chunk)
            parts.append(extract_chunk_text(chunk))

        return {"messages": [ChatMessage("assistant", "".join(parts))]}
