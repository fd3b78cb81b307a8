"""
Batch classification prompt and answer protocol.

One prompt carries N numbered items and the topic set; the model must answer
with exactly N comma-separated literals, each one of 是/yes (relevant) or
否/no (not relevant). Answers that break this contract are rejected whole.
"""

import logging
import re
from typing import List, Optional, Sequence

from topicfilter.domain.errors import CountMismatchError, EmptyResponseError, InvalidTokenError
from topicfilter.domain.models.common import MessageRole
from topicfilter.domain.models.completion import (
    DEFAULT_MAX_TOKENS,
    ChatMessage,
    CompletionRequest,
    CompletionResponse,
)
from topicfilter.infrastructure.optimization.token_estimator import TokenEstimator

logger = logging.getLogger(__name__)

AFFIRMATIVE = frozenset({"是", "yes"})
NEGATIVE = frozenset({"否", "no"})
ANSWER_FORMS = ("是", "否", "yes", "no")

ANSWER_SEPARATOR = re.compile(r"[,，]")

# Budget per answer slot when no estimator is available (token + separator)
TOKENS_PER_ANSWER = 3
ANSWER_TOKEN_MARGIN = 10

SYSTEM_PROMPT = (
    "You classify short texts by subject. For each numbered text you decide whether it "
    "belongs to at least one of the given topics. Reply with exactly {count} answers in "
    "the order of the texts, separated by commas. Each answer must be one of: "
    "是, 否, yes, no. Use 是 or yes for relevant, 否 or no for not relevant. "
    "Do not add numbering, explanations or any other text."
)


def answer_token_budget(item_count: int, token_estimator: Optional[TokenEstimator] = None) -> int:
    """Returns a max_tokens value that fits the longest valid answer for `item_count` items."""
    if token_estimator is None:
        needed = item_count * TOKENS_PER_ANSWER
    else:
        needed = max(
            token_estimator.estimate_tokens(", ".join([form] * item_count))
            for form in ANSWER_FORMS
        )
    return max(DEFAULT_MAX_TOKENS, needed + ANSWER_TOKEN_MARGIN)


def build_prompt(
    topics: Sequence[str],
    items: Sequence[str],
    *,
    token_estimator: Optional[TokenEstimator] = None,
) -> CompletionRequest:
    """Builds the single completion request that classifies a batch.

    Args:
        topics: The topic labels relevance is checked against.
        items: The batch, already normalized and truncated.
        token_estimator: Sizes max_tokens precisely when given.

    Returns:
        A deterministic request (temperature 0).

    Raises:
        ValueError: If `topics` or `items` is empty.
    """
    if not items:
        raise ValueError("Cannot build a prompt for an empty batch.")
    if not topics:
        raise ValueError("Cannot build a prompt without topics.")

    count = len(items)
    numbered = "\n".join(f"{i}. {item}" for i, item in enumerate(items, 1))
    user_content = (
        f"Topics: {', '.join(topics)}\n"
        f"Texts ({count}):\n"
        f"{numbered}\n"
        f"Answer with exactly {count} comma-separated answers."
    )
    messages = (
        ChatMessage(role=MessageRole("system"), content=SYSTEM_PROMPT.format(count=count)),
        ChatMessage(role=MessageRole("user"), content=user_content),
    )
    return CompletionRequest(
        messages=messages,
        max_tokens=answer_token_budget(count, token_estimator),
        temperature=0.0,
        top_p=1.0,
        frequency_penalty=0.0,
        presence_penalty=0.0,
        stop=None,
    )


def parse_response(response: CompletionResponse, items: Sequence[str]) -> List[bool]:
    """Decodes the model's answer into one decision per item.

    Raises:
        EmptyResponseError: The answer is blank.
        CountMismatchError: The number of answers differs from the item count.
        InvalidTokenError: An answer is not one of the accepted literals.
    """
    content = (response.content or "").strip()
    if not content:
        raise EmptyResponseError()

    tokens = [token.strip().lower() for token in ANSWER_SEPARATOR.split(content)]
    if len(tokens) != len(items):
        logger.debug(f"Answer count mismatch: expected {len(items)}, got {len(tokens)}: {content!r}")
        raise CountMismatchError(expected=len(items), got=len(tokens))

    invalid = [t for t in tokens if t not in AFFIRMATIVE and t not in NEGATIVE]
    if invalid:
        raise InvalidTokenError(invalid)

    return [t in AFFIRMATIVE for t in tokens]
