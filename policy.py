"""
policy.py — Decides, per request, between the cache and the Summarizer.

Per-file state machine:

    UNCHECKED -> CACHE_HIT
              -> CACHE_MISS -> SUMMARIZING -> CACHED | FAILED

Forced refresh (`force_update`) makes every key read as a miss for the
lifetime of the store handle, until the key is rewritten in this run.
Concurrent misses on the same key share one in-flight Summarizer call.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from agents import Summarizer, SummarizerError, SummaryRequest
from cache import CacheKey, CacheRecord, CacheStore
from config import BATCH_QUERY_WORDS, QueryParams, resolve_word_target
from hasher import combine_fingerprints, fingerprint


class FileState(str, Enum):
    UNCHECKED = "unchecked"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    SUMMARIZING = "summarizing"
    CACHED = "cached"
    FAILED = "failed"
    SKIPPED = "skipped"
    TOO_LARGE = "too_large"
    BATCHED = "batched"


@dataclass
class Outcome:
    state: FileState
    key: Optional[CacheKey] = None
    summary: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


@dataclass
class PolicyStats:
    cache_hits: int = 0
    cache_misses: int = 0
    summarized: int = 0
    failed: int = 0
    deduplicated: int = 0
    store_failures: int = 0


class SummaryPolicy:
    def __init__(
        self,
        *,
        store: CacheStore,
        summarizer: Summarizer,
        params: QueryParams,
    ):
        self.store = store
        self.summarizer = summarizer
        self.params = params
        self.stats = PolicyStats()
        self._inflight: dict[str, asyncio.Task] = {}
        if params.force_update:
            store.invalidate(lambda key: True)

    # -----------------------------------------------------------------------
    # Keys
    # -----------------------------------------------------------------------

    def _length_label(self, word_target: Optional[int]) -> str:
        # smart targets depend on the file-type multipliers, so the resolved
        # word count is part of the key.
        if self.params.length_tier == "smart" and word_target is not None:
            return f"smart:{word_target}"
        return self.params.length_tier

    def file_key(self, path: str, file_fingerprint: str, word_target: Optional[int] = None) -> CacheKey:
        query = self.params.query if self.params.mode == "custom-query" else ""
        return CacheKey(
            scope="file",
            path=path,
            fingerprint=file_fingerprint,
            query=query,
            language=self.params.language,
            length_tier=self._length_label(word_target),
        )

    def directory_key(self, root: str, file_fingerprints: list[str]) -> CacheKey:
        return CacheKey(
            scope="directory",
            path=root,
            fingerprint=combine_fingerprints(file_fingerprints),
            query=self.params.query,
            language=self.params.language,
            length_tier=self.params.length_tier,
        )

    # -----------------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------------

    async def summarize_file(
        self,
        *,
        path: str,
        data: bytes,
        interpreter: Optional[str] = None,
        multiplier: float = 1.0,
    ) -> Outcome:
        word_target = resolve_word_target(
            self.params.length_tier,
            file_size=len(data),
            multiplier=multiplier,
            language=self.params.language,
        )
        key = self.file_key(path, fingerprint(data), word_target)
        request = SummaryRequest(
            content=data.decode("utf-8", errors="replace"),
            query=key.query,
            language=self.params.language,
            length_tier=self.params.length_tier,
            word_target=word_target,
            scope="file",
            path=path,
            interpreter=interpreter,
        )
        return await self.resolve(key, request)

    async def summarize_directory(
        self,
        *,
        root: str,
        file_fingerprints: list[str],
        combined: str,
        total_size: int = 0,
    ) -> Outcome:
        key = self.directory_key(root, file_fingerprints)
        if key.query:
            word_target = BATCH_QUERY_WORDS
        else:
            word_target = resolve_word_target(
                self.params.length_tier,
                file_size=total_size,
                language=self.params.language,
            )
        request = SummaryRequest(
            content=combined,
            query=key.query,
            language=self.params.language,
            length_tier=self.params.length_tier,
            word_target=word_target,
            scope="directory",
            path=root,
        )
        return await self.resolve(key, request)

    # -----------------------------------------------------------------------
    # Decision
    # -----------------------------------------------------------------------

    async def resolve(self, key: CacheKey, request: SummaryRequest) -> Outcome:
        record = self.store.lookup(key)
        if record is not None:
            self.stats.cache_hits += 1
            return Outcome(state=FileState.CACHE_HIT, key=key, summary=record.summary)

        self.stats.cache_misses += 1
        digest = key.digest()
        task = self._inflight.get(digest)
        if task is None:
            task = asyncio.ensure_future(self._summarize_and_store(key, request))
            self._inflight[digest] = task
            task.add_done_callback(lambda _t, d=digest: self._inflight.pop(d, None))
        else:
            self.stats.deduplicated += 1

        try:
            summary = await asyncio.shield(task)
        except SummarizerError as e:
            return Outcome(
                state=FileState.FAILED,
                key=key,
                error=str(e),
                error_kind=e.kind,
            )
        return Outcome(state=FileState.CACHED, key=key, summary=summary)

    async def _summarize_and_store(self, key: CacheKey, request: SummaryRequest) -> str:
        try:
            summary = await self.summarizer.summarize(request)
        except SummarizerError:
            self.stats.failed += 1
            raise
        self.stats.summarized += 1
        if not self.store.store(CacheRecord.new(key, summary)):
            self.stats.store_failures += 1
        return summary
