"""Service for estimating token counts for text or message lists.

Uses `tiktoken` to size completion budgets before requests are sent, so a
batch answer is never cut short by `max_tokens`.
Bounded Context: Token Management
"""

import logging
from typing import Any, Optional

import tiktoken

from topicfilter.domain.models.common import TokenCount

logger = logging.getLogger(__name__)

DEFAULT_TOKENIZER_MODEL = "cl100k_base"  # Common for GPT-3.5/4 deployments
APPROX_CHARS_PER_TOKEN = 4  # Fallback approximation


class TokenEstimator:
    """Estimates token counts using tiktoken or approximation."""

    def __init__(self, tokenizer_model_name: Optional[str] = None):
        self.tokenizer_name = tokenizer_model_name or DEFAULT_TOKENIZER_MODEL
        self._tokenizer: Any = None
        self._load_failed = False

    @property
    def tokenizer(self) -> Any:
        """The tiktoken encoding, loaded on first use (it may need a download)."""
        if self._tokenizer is None and not self._load_failed:
            try:
                self._tokenizer = tiktoken.get_encoding(self.tokenizer_name)
                logger.info(f"TokenEstimator initialized with tiktoken model: {self.tokenizer_name}")
            except Exception as e:
                self._load_failed = True
                logger.error(f"Failed to load tiktoken model '{self.tokenizer_name}': {e}. Falling back to approximation.")
        return self._tokenizer

    def estimate_tokens(self, text: str) -> TokenCount:
        """Estimates the token count for a single string of text."""
        str_text = str(text)
        if not str_text:
            return TokenCount(0)
        tokenizer = self.tokenizer
        if tokenizer is not None:
            try:
                count = len(tokenizer.encode(str_text))
                logger.debug(f"Estimated tokens for text (len {len(str_text)}): {count} (using {self.tokenizer_name})")
                return TokenCount(count)
            except Exception as e:
                logger.warning(f"tiktoken encoding failed for text: '{str_text[:50]}...': {e}. Falling back to approx.")

        # Round up so short non-empty strings never count as zero
        approx_count = -(-len(str_text) // APPROX_CHARS_PER_TOKEN)
        logger.debug(f"Estimated tokens for text (len {len(str_text)}): {approx_count} (using approximation)")
        return TokenCount(approx_count)
