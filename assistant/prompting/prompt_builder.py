"""Prompt assembly helpers used by workflow stages.

This module is intentionally narrow: it only builds message lists from already
routed inputs. Routing, retrieval, rate limiting and model invocation happen
outside this module.

Design constraints:
    - Deterministic construction for identical inputs.
    - Fixed ordering of prompt components per stage.
    - No hidden side effects (no I/O, no global state mutation).

Prompt safety model:
    - Safety is instruction-led, not parser-enforced.
    - User text and retrieved context are interpolated as raw strings.
"""

from typing import Iterable

from assistant.core.state import ChatMessage
from assistant.core.topics import KNOWN_TOPICS, Topic, display_name


# Separator between retrieved passages and between labeled topic answers.
SECTION_SEPARATOR = "\n\n---\n\n"

MISSING_ANSWER_TEXT = "No answer available"


# =========================================================
# CLASSIFICATION PROMPT
# =========================================================
# Lists every known topic with its summary, then few-shot examples: one per
# topic plus one multi-topic example built from the first two topics.

def build_classification_system_prompt(topics: Iterable[Topic] = KNOWN_TOPICS) -> str:
    """Build the classifier instruction enumerating topics and examples."""
    topics = tuple(topics)

    catalog = ", ".join(f"{t.id} ({t.summary})" for t in topics)

    examples = [
        f'- "{example}" -> ["{t.id}"]'
        for t in topics
        for example in t.examples[:1]
    ]
    if len(topics) >= 2:
        first, second = topics[0], topics[1]
        examples.append(
            f'- "{first.summary} and {second.summary}" -> ["{first.id}", "{second.id}"]'
        )

    return (
        "Route user questions to Marcura products. "
        "Return ONLY a JSON array of product IDs.\n\n"
        f"Products: {catalog}.\n\n"
        "Examples:\n"
        + "\n".join(examples) +
        "\n\nReturn JSON array only."
    )


def build_classification_messages(question: str) -> list[ChatMessage]:
    return [
        ChatMessage("system", build_classification_system_prompt()),
        ChatMessage("user", f"Q: {question}\nJSON:"),
    ]


# =========================================================
# TOPIC ANSWER PROMPT
# =========================================================
# Scopes the model to one product; the retrieved context precedes the question.

def build_topic_messages(topic: Topic, question: str, context: str) -> list[ChatMessage]:
    """Build the per-topic answer prompt from retrieved context."""
    return [
        ChatMessage(
            "system",
            f"Expert assistant for {topic.display_name}. "
            "Answer using only the provided context. Be specific and helpful.",
        ),
        ChatMessage("user", f"Context:\n{context}\n\nQ: {question}"),
    ]


def join_passages(passages: Iterable[str]) -> str:
    return SECTION_SEPARATOR.join(passages)


# =========================================================
# SYNTHESIS PROMPTS
# =========================================================

def build_fallback_messages(question: str, topics: Iterable[Topic] = KNOWN_TOPICS) -> list[ChatMessage]:
    """Build the no-topic fallback prompt that suggests the known products."""
    suggestions = ", ".join(f"{t.display_name} ({t.summary})" for t in topics)
    return [
        ChatMessage(
            "system",
            "You are a helpful assistant for Marcura's product ecosystem. "
            "The user's question doesn't seem to relate to any specific Marcura "
            "products. Provide a helpful response and suggest they might want to "
            f"learn about {suggestions}.",
        ),
        ChatMessage("user", question),
    ]


def format_topic_answers(selected_topics: Iterable[str], topic_answers) -> str:
    """Label each selected topic's answer with its product name."""
    blocks = []
    for topic_id in selected_topics:
        answer = topic_answers.get(topic_id)
        text = answer.content if answer and answer.content else MISSING_ANSWER_TEXT
        blocks.append(f"{display_name(topic_id)}:\n{text}")
    return SECTION_SEPARATOR.join(blocks)


def build_synthesis_messages(question: str, answers_text: str) -> list[ChatMessage]:
    return [
        ChatMessage(
            "system",
            "Synthesize answers from multiple Marcura products into one cohesive "
            "response. Explain how the products work together. Be clear and concise.",
        ),
        ChatMessage("user", f"Q: {question}\n\nAnswers:\n{answers_text}\n\nSynthesize:"),
    ]
