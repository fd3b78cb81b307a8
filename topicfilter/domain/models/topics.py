"""Topic catalogue and topic-set resolution.

Users pick from a fixed catalogue of study categories and may add free-text
custom topics; the special 'custom' id stands for those custom entries.
"""

import hashlib
from typing import Dict, Iterable, List, Optional, Union

from .common import TopicLabel

CUSTOM_TOPIC_ID = "custom"

TOPIC_CATALOGUE: Dict[str, str] = {
    "programming": "programming and software development",
    "mathematics": "mathematics",
    "physics": "physics",
    "chemistry": "chemistry",
    "biology": "biology",
    "history": "history",
    "literature": "literature",
    "language": "foreign language learning",
    "finance": "finance and economics",
    "design": "art and design",
    "music": "music theory and practice",
}


def split_custom_topics(custom: Union[str, Iterable[str], None]) -> List[str]:
    """Accepts a comma separated string or a list and returns clean entries."""
    if custom is None:
        return []
    if isinstance(custom, str):
        parts = custom.replace("，", ",").split(",")
    else:
        parts = [str(part) for part in custom]
    return [part.strip() for part in parts if part and part.strip()]


def resolve_topics(
    selected: Optional[Iterable[str]],
    custom: Union[str, Iterable[str], None] = None,
) -> List[TopicLabel]:
    """Turns selected catalogue ids plus custom topics into prompt labels.

    Unknown ids are kept verbatim so callers can pass plain topic names.
    'custom' is implied when custom topics are given. The result is
    deduplicated and keeps first-seen order.

    Args:
        selected: Catalogue ids (or plain labels). None selects the whole catalogue.
        custom: Free-text topics, as a list or a comma separated string.

    Returns:
        The ordered topic labels.
    """
    ids = list(TOPIC_CATALOGUE) if selected is None else [str(s).strip() for s in selected]
    custom_topics = split_custom_topics(custom)

    labels: List[TopicLabel] = []
    seen = set()

    def add(label: str) -> None:
        key = label.casefold()
        if label and key not in seen:
            seen.add(key)
            labels.append(TopicLabel(label))

    for topic_id in ids:
        if not topic_id:
            continue
        if topic_id.lower() == CUSTOM_TOPIC_ID:
            continue  # expanded below
        add(TOPIC_CATALOGUE.get(topic_id.lower(), topic_id))

    for topic in custom_topics:
        add(topic)

    return labels


def topic_fingerprint(topics: Iterable[str]) -> str:
    """Short stable digest of a topic set, independent of order and case."""
    canonical = "\n".join(sorted({str(t).strip().casefold() for t in topics if str(t).strip()}))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:12]
