"""LLM-backed topic classifier for the first workflow stage.

Intent classification logic:
- Sends the latest user question to the generation backend with an instruction
  listing the known topics and few-shot examples.
- Reads the first bracketed array in the reply as JSON.
- Keeps known topic ids only, first occurrence wins.

Interaction with core:
- `classification_stage` is the CLASSIFY node of `assistant.core.engine.Workflow`
  and returns a full replacement for `selected_topics`.

Determinism:
- Parsing and filtering are deterministic; the reply itself is model-dependent.
  A deterministic backend yields the same selection for the same question.

Failure handling:
- Unparseable replies degrade to an empty selection (logged, never raised).
- Rate-limit rejections and generation failures propagate and fail the stage.
"""

import json
import logging
import re

from assistant.core.events import StageContext
from assistant.core.state import ConversationState, StateUpdate
from assistant.core.topics import normalize_topic_ids
from assistant.llm.provider_config import CLASSIFIER_LLM_CONFIG, get_llm_config
from assistant.prompting.prompt_builder import build_classification_messages


logger = logging.getLogger(__name__)

CLASSIFICATION_RATE_LIMIT_KEY = "classification"

ARRAY_PATTERN = re.compile(r"\[.*?\]", re.DOTALL)


def parse_topic_array(text: str) -> list[str]:
    """Extract topic ids from a classifier reply.

    Edge cases:
    - No bracketed substring -> `[]`.
    - Invalid JSON or a non-list value -> `[]`.
    - Unknown ids, non-strings and duplicates are dropped.
    """
    if not text:
        return []

    match = ARRAY_PATTERN.search(text)
    if not match:
        logger.warning("Classifier reply contained no JSON array: %r", text[:200])
        return []

    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        logger.warning("Classifier reply was not valid JSON: %r", match.group(0)[:200])
        return []

    if not isinstance(parsed, list):
        return []

    return normalize_topic_ids(parsed)


async def classify_topics(question: str, generation, rate_limiter) -> list[str]:
    """Ask the generation backend which topics `question` concerns."""
    config = get_llm_config(CLASSIFIER_LLM_CONFIG)
    messages = build_classification_messages(question)

    response = await rate_limiter.with_rate_limit(
        lambda: generation.invoke(messages, config),
        CLASSIFICATION_RATE_LIMIT_KEY,
    )

    selected = parse_topic_array(response.content)
    logger.info("Classified question into topics=%s", selected)
    return selected


async def classification_stage(state: ConversationState, ctx: StageContext) -> StateUpdate:
    selected = await classify_topics(
        state.latest_user_text(),
        ctx.deps.generation,
        ctx.deps.rate_limiter,
    )
    return {"selected_topics": selected}
