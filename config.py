"""
config.py — Invocation parameters, length tiers and validation.

QueryParams is fixed for one run. Anything invalid raises ConfigError
before a single file is touched.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


MODES = ("default", "custom-query", "whole-directory")

DEFAULT_LANGUAGE = "english"
DEFAULT_LENGTH_TIER = "medium"
DEFAULT_MAX_DEPTH = 3
DEFAULT_MAX_FILE_SIZE = 1024 * 1024  # 1 MiB

# Per-file excerpt included in a whole-directory request
BATCH_EXCERPT_CHARS = 2000
BATCH_QUERY_WORDS = 500

_TIER_WORDS: dict[str, int] = {
    "short": 50,
    "medium": 100,
    "long": 200,
    "super": 500,
}

# Smart tier: (max file size in bytes, base word target)
_SMART_STEPS: tuple[tuple[int, int], ...] = (
    (1024, 75),
    (10 * 1024, 150),
    (100 * 1024, 250),
    (500 * 1024, 350),
)
_SMART_MAX_WORDS = 500
_JAPANESE_MULTIPLIER = 1.5


class ConfigError(Exception):
    pass


def is_valid_length_tier(tier: str) -> bool:
    if tier in _TIER_WORDS or tier == "smart":
        return True
    return tier.isdigit() and int(tier) > 0


@dataclass(frozen=True)
class QueryParams:
    mode: str = "default"
    query_text: Optional[str] = None
    language: str = DEFAULT_LANGUAGE
    length_tier: str = DEFAULT_LENGTH_TIER
    force_update: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self):
        if self.mode not in MODES:
            raise ConfigError(f"Unknown mode {self.mode!r} (expected one of {', '.join(MODES)})")
        if self.mode == "custom-query" and not (self.query_text or "").strip():
            raise ConfigError("custom-query mode requires a non-empty query")
        if not self.language.strip():
            raise ConfigError("language must not be empty")
        if not is_valid_length_tier(self.length_tier):
            raise ConfigError(
                f"Invalid summary length {self.length_tier!r} "
                "(use short, medium, long, super, smart or a positive word count)"
            )
        if isinstance(self.max_depth, bool) or not isinstance(self.max_depth, int) or self.max_depth < 0:
            raise ConfigError(f"max_depth must be an integer >= 0, got {self.max_depth!r}")

    @property
    def query(self) -> str:
        """Query text as it participates in cache keys ("" for the default prompt)."""
        return (self.query_text or "").strip()

    @property
    def is_batch(self) -> bool:
        return self.mode == "whole-directory"


def resolve_word_target(
    length_tier: str,
    *,
    file_size: int = 0,
    multiplier: float = 1.0,
    language: str = DEFAULT_LANGUAGE,
) -> int:
    """Approximate summary length in words for one request."""
    if length_tier in _TIER_WORDS:
        return _TIER_WORDS[length_tier]
    if length_tier.isdigit():
        return int(length_tier)
    if length_tier != "smart":
        raise ConfigError(f"Invalid summary length {length_tier!r}")

    base = _SMART_MAX_WORDS
    for limit, words in _SMART_STEPS:
        if file_size <= limit:
            base = words
            break
    words = int(base * multiplier)
    if language.strip().lower() == "japanese":
        words = int(words * _JAPANESE_MULTIPLIER)
    return words
