"""
Token estimation shared by every budget-aware component.

The canonical estimator is a character-ratio heuristic: it does not try
to match any vendor tokenizer, it only has to be cheap and consistent
across the context window and the budget manager. A tiktoken-backed
counter is available for diagnostics when the real BPE count matters.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_CHARS_PER_TOKEN = 3.5


@dataclass(frozen=True)
class CharRatioEstimator:
    """Estimate tokens as ceil(chars / chars_per_token)."""

    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN

    def __post_init__(self):
        if self.chars_per_token <= 0:
            raise ValueError(
                f"chars_per_token must be positive, got {self.chars_per_token}"
            )

    def estimate(self, text: Optional[str]) -> int:
        """Estimated token count; 0 for empty or missing text."""
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def max_chars(self, tokens: int) -> int:
        """Largest character count that stays within `tokens`."""
        if tokens <= 0:
            return 0
        return int(math.floor(tokens * self.chars_per_token))


class TiktokenEstimator:
    """
    Exact BPE token counts via tiktoken.

    The encoding is loaded lazily on first use.
    """

    def __init__(self, encoding_name: str = "cl100k_base"):
        self.encoding_name = encoding_name
        self._enc = None

    @property
    def encoding(self):
        """Lazy load the tiktoken encoding."""
        if self._enc is None:
            self._enc = tiktoken.get_encoding(self.encoding_name)
        return self._enc

    def estimate(self, text: Optional[str]) -> int:
        if not text:
            return 0
        return len(self.encoding.encode(text))

    def max_chars(self, tokens: int) -> int:
        # BPE tokens average about four characters of English/Spanish prose
        if tokens <= 0:
            return 0
        return tokens * 4


def get_estimator(name: str = "heuristic", chars_per_token: float = None):
    """
    Build a token estimator from configuration.

    Args:
        name: "heuristic" or "tiktoken"
        chars_per_token: Ratio for the heuristic estimator

    Returns:
        Estimator exposing estimate() and max_chars()
    """
    if name == "heuristic":
        return CharRatioEstimator(chars_per_token or DEFAULT_CHARS_PER_TOKEN)
    if name == "tiktoken":
        logger.info("Using tiktoken estimator (cl100k_base)")
        return TiktokenEstimator()
    raise ValueError(f"Unknown token estimator '{name}'")
