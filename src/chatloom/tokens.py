"""Token estimation and budget tracking — character-weighted, no tokenizer needed."""

from __future__ import annotations

import math

# Per-character weights: ASCII letters are cheap, other ASCII (digits, spaces,
# punctuation) costs a little more, anything outside ASCII (CJK, emoji) costs most.
_LETTER_WEIGHT = 0.25
_ASCII_WEIGHT = 0.5
_UNICODE_WEIGHT = 1.5


def estimate_tokens(text: str) -> int:
    """Estimate token count from text.

    Deterministic and monotonic non-decreasing as text grows: every character
    adds a positive weight and the sum is rounded up.
    """
    if not text:
        return 0
    total = 0.0
    for ch in text:
        code = ord(ch)
        if code < 128:
            total += _LETTER_WEIGHT if 65 <= code <= 122 else _ASCII_WEIGHT
        else:
            total += _UNICODE_WEIGHT
    return math.ceil(total)


class TokenBudget:
    """Tracks token consumption against a configured maximum."""

    def __init__(self, max_tokens: int) -> None:
        if max_tokens < 0:
            msg = "max_tokens must be non-negative"
            raise ValueError(msg)
        self._max = max_tokens
        self._consumed = 0

    def consume(self, tokens: int) -> None:
        self._consumed += tokens

    def would_reach(self, tokens: int) -> bool:
        """True if consuming *tokens* more would hit or pass the maximum."""
        return self._consumed + tokens >= self._max

    def remaining(self) -> int:
        return self._max - self._consumed

    @property
    def consumed(self) -> int:
        return self._consumed
