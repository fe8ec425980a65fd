"""
Token counting and usage tracking.

Exact counts come from provider responses; the rough estimate is only used
to price a query before it is sent.
"""

import math
from dataclasses import dataclass

# Typical English text averages about four characters per token
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation."""
    prompt_tokens: int
    completion_tokens: int
    
    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a piece of text (at least 1)."""
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))
