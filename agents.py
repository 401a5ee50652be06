"""
agents.py — Async LLM summarizer behind an abstract capability.

Design:
- Per-file summaries use claude-haiku-4-5: cheap, fast, parallelized heavily
- Whole-directory requests use claude-sonnet-4-6: more synthesis ability

Rate limiting uses tiered semaphores:
- Haiku: higher concurrency
- Sonnet: lower concurrency

API failures surface as SummarizerError subclasses so callers can isolate
them per file. Caching is not done here; see policy.py.
"""

from __future__ import annotations
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Any
import anthropic

from prompts import (
    SYSTEM_PROMPT, file_summary_prompt, sql_summary_prompt, custom_query_prompt,
    directory_overview_prompt, directory_query_prompt,
)


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

HAIKU  = "claude-haiku-4-5-20251001"
SONNET = "claude-sonnet-4-6"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class SummarizerError(Exception):
    kind = "api"


class SummarizerNetworkError(SummarizerError):
    kind = "network"


class SummarizerAuthError(SummarizerError):
    kind = "auth"


class SummarizerRateLimitError(SummarizerError):
    kind = "rate_limit"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SummaryRequest:
    content: str
    query: str
    language: str
    length_tier: str
    word_target: int
    scope: str = "file"
    path: Optional[str] = None
    interpreter: Optional[str] = None

    @property
    def is_sql(self) -> bool:
        return self.interpreter == "sql" or (self.path or "").lower().endswith(".sql")


class Summarizer(ABC):
    """Prompt material in, text out. Raises SummarizerError on failure."""

    @abstractmethod
    async def summarize(self, request: SummaryRequest) -> str:
        ...


# ---------------------------------------------------------------------------
# Cost tracking
# ---------------------------------------------------------------------------

@dataclass
class CostTracker:
    input_tokens: int = 0
    output_tokens: int = 0
    api_calls: int = 0
    failed_calls: int = 0

    # Approximate pricing per million tokens (Feb 2026 estimates)
    HAIKU_IN   = 0.80
    HAIKU_OUT  = 4.00
    SONNET_IN  = 3.00
    SONNET_OUT = 15.00

    def __post_init__(self):
        self._usd = 0.0

    def add(self, model: str, input_tok: int, output_tok: int):
        self.input_tokens += input_tok
        self.output_tokens += output_tok
        self.api_calls += 1
        if model == HAIKU:
            self._usd += input_tok * self.HAIKU_IN / 1_000_000 + output_tok * self.HAIKU_OUT / 1_000_000
        else:
            self._usd += input_tok * self.SONNET_IN / 1_000_000 + output_tok * self.SONNET_OUT / 1_000_000

    def estimate_usd(self) -> float:
        return self._usd

    def as_dict(self) -> dict:
        return {
            "api_calls": self.api_calls,
            "failed_calls": self.failed_calls,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "estimated_cost_usd": round(self._usd, 4),
        }

    def report(self) -> str:
        return (
            f"API calls: {self.api_calls} | Failed: {self.failed_calls} | "
            f"Tokens in: {self.input_tokens:,} | Tokens out: {self.output_tokens:,} | "
            f"Est. cost: ~${self.estimate_usd():.3f}"
        )


# ---------------------------------------------------------------------------
# Anthropic implementation
# ---------------------------------------------------------------------------

class AnthropicSummarizer(Summarizer):
    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        client: Optional[Any] = None,
        max_concurrent: int = 8,
        haiku_concurrency: Optional[int] = None,
        sonnet_concurrency: Optional[int] = None,
        max_retries: int = 2,
        rate_limit_backoff: float = 30.0,
        verbose: bool = False,
    ):
        if haiku_concurrency is None:
            haiku_concurrency = max_concurrent
        if sonnet_concurrency is None:
            sonnet_concurrency = max(1, max_concurrent // 2)

        self.client = client or anthropic.AsyncAnthropic(api_key=api_key)
        self.haiku_semaphore = asyncio.Semaphore(haiku_concurrency)
        self.sonnet_semaphore = asyncio.Semaphore(sonnet_concurrency)
        self.tracker = CostTracker()
        self.max_retries = max(0, max_retries)
        self.rate_limit_backoff = max(0.0, rate_limit_backoff)
        self.verbose = verbose

    def _semaphore_for_model(self, model: str) -> asyncio.Semaphore:
        return self.haiku_semaphore if model == HAIKU else self.sonnet_semaphore

    @staticmethod
    def _max_tokens(word_target: int) -> int:
        # Roughly 1.3 tokens per English word, with headroom for other scripts.
        return max(128, int(word_target * 2) + 64)

    @staticmethod
    def build_prompt(request: SummaryRequest) -> str:
        if request.scope == "directory":
            if request.query:
                return directory_query_prompt(
                    query=request.query,
                    combined=request.content,
                    language=request.language,
                )
            return directory_overview_prompt(
                combined=request.content,
                word_target=request.word_target,
                language=request.language,
                root=request.path,
            )

        if request.query:
            return custom_query_prompt(
                query=request.query,
                content=request.content,
                language=request.language,
                path=request.path,
            )
        if request.is_sql:
            return sql_summary_prompt(
                content=request.content,
                word_target=request.word_target,
                language=request.language,
                path=request.path,
            )
        return file_summary_prompt(
            content=request.content,
            word_target=request.word_target,
            language=request.language,
            path=request.path,
        )

    async def summarize(self, request: SummaryRequest) -> str:
        model = SONNET if request.scope == "directory" else HAIKU
        return await self._call(
            self.build_prompt(request),
            model=model,
            max_tokens=self._max_tokens(request.word_target),
            layer=request.scope,
        )

    async def _call(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 512,
        layer: str = "unknown",
    ) -> str:
        attempt = 0
        while True:
            async with self._semaphore_for_model(model):
                try:
                    response = await self.client.messages.create(
                        model=model,
                        max_tokens=max_tokens,
                        system=SYSTEM_PROMPT,
                        messages=[{"role": "user", "content": prompt}],
                    )
                except anthropic.RateLimitError as e:
                    if attempt >= self.max_retries:
                        self.tracker.failed_calls += 1
                        raise SummarizerRateLimitError(f"rate limited on {model}: {e}") from e
                except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
                    self.tracker.failed_calls += 1
                    raise SummarizerAuthError(f"authentication failed: {e}") from e
                except anthropic.APIConnectionError as e:
                    self.tracker.failed_calls += 1
                    raise SummarizerNetworkError(f"could not reach the API: {e}") from e
                except anthropic.APIError as e:
                    self.tracker.failed_calls += 1
                    raise SummarizerError(f"API error on {model}: {e}") from e
                else:
                    self.tracker.add(
                        model,
                        response.usage.input_tokens,
                        response.usage.output_tokens,
                    )
                    return self._response_text(response, model)

            attempt += 1
            delay = self.rate_limit_backoff * attempt
            logger.warning("[%s] rate limited on %s; retry %d in %.0fs", layer, model, attempt, delay)
            if self.verbose:
                print(f"  [{layer}] rate limited on {model}; retrying in {delay:.0f}s", flush=True)
            await asyncio.sleep(delay)

    def _response_text(self, response: Any, model: str) -> str:
        chunks: list[str] = []
        for block in response.content:
            if getattr(block, "type", "text") != "text":
                continue
            txt = getattr(block, "text", "").strip()
            if txt:
                chunks.append(txt)
        if not chunks:
            self.tracker.failed_calls += 1
            raise SummarizerError(f"empty response from {model}")
        return "\n\n".join(chunks)
