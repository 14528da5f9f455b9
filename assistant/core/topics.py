"""Known product topics the assistant can answer about.

The catalog is fixed at import time. Order matters: it drives prompt listings
and the default iteration order of topic stages.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Topic:
    """One product domain.

    Attributes:
        id: Stable identifier used in routing, rate-limit keys and data files.
        display_name: Human-readable product name used in prompts and labels.
        summary: Short description fed to the classifier.
        examples: Few-shot question fragments routed to this topic alone.
    """

    id: str
    display_name: str
    summary: str
    examples: tuple[str, ...] = ()


KNOWN_TOPICS: tuple[Topic, ...] = (
    Topic(
        id="da-desk",
        display_name="DA-Desk",
        summary="port costs",
        examples=("port costs",),
    ),
    Topic(
        id="martrust",
        display_name="MarTrust",
        summary="payments",
        examples=("pay crew",),
    ),
    Topic(
        id="shipserv",
        display_name="ShipServ",
        summary="procurement",
        examples=("suppliers",),
    ),
)

TOPICS_BY_ID: dict[str, Topic] = {t.id: t for t in KNOWN_TOPICS}
TOPIC_IDS: tuple[str, ...] = tuple(TOPICS_BY_ID)


def display_name(topic_id: str) -> str:
    """Return the product name for `topic_id`, falling back to the id itself."""
    topic = TOPICS_BY_ID.get(topic_id)
    return topic.display_name if topic else topic_id


def normalize_topic_ids(candidates) -> list[str]:
    """Keep known topic ids only, first occurrence wins, order preserved."""
    selected: list[str] = []
    for candidate in candidates:
        if isinstance(candidate, str) and candidate in TOPICS_BY_ID and candidate not in selected:
            selected.append(candidate)
    return selected
