"""
Token counting and content hashing.

Exact counts come from the upstream usage block; when it is missing the
character heuristic below is used.
"""

import hashlib
import math
from dataclasses import dataclass

CHARS_PER_TOKEN = 4
HASH_LENGTH = 16


@dataclass(frozen=True)
class TokenUsage:
    """Prompt and completion token counts of one call."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(text: str) -> int:
    """Approximate token count, roughly four characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def content_hash(content: str) -> str:
    """Short SHA-256 digest used for prompt and output fingerprints."""
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return digest[:HASH_LENGTH]
