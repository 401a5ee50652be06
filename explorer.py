"""
explorer.py — Traversal and per-file orchestration.

Execution order:
  1. List the tree up to max_depth (directories and files, traversal order)
  2. Classify each file: too large, unreadable, binary, empty or text
  3. Per-file mode: run every text file through SummaryPolicy (parallel,
     bounded by max_concurrent)
  4. Whole-directory mode: combine text file excerpts into one request
     whose cache key covers the set of per-file fingerprints

File-level failures are recorded on the file's result and never stop the
run; only configuration problems raise.
"""

from __future__ import annotations
import asyncio
from collections import Counter
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional, Union

from config import BATCH_EXCERPT_CHARS, DEFAULT_MAX_FILE_SIZE, ConfigError, QueryParams
from filetypes import FileTypes
from hasher import fingerprint
from lister import FileLister, ListedEntry, LocalFileLister
from policy import FileState, Outcome, SummaryPolicy
from prompts import directory_block


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class FileResult:
    path: str
    relative_path: str
    depth: int
    size: int
    state: FileState
    summary: Optional[str] = None
    error: Optional[str] = None
    note: Optional[str] = None
    interpreter: Optional[str] = None


@dataclass
class DirectoryResult:
    path: str
    relative_path: str
    depth: int


@dataclass
class AggregateResult:
    state: FileState
    file_count: int
    query: str = ""
    summary: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ExploreResult:
    root: str
    entries: list[Union[DirectoryResult, FileResult]]
    aggregate: Optional[AggregateResult] = None
    excluded: list[str] = field(default_factory=list)
    stats: dict = field(default_factory=dict)

    @property
    def files(self) -> list[FileResult]:
        return [e for e in self.entries if isinstance(e, FileResult)]

    @property
    def directories(self) -> list[DirectoryResult]:
        return [e for e in self.entries if isinstance(e, DirectoryResult)]

    def to_dict(self) -> dict:
        return {
            "root": self.root,
            "directories": [asdict(d) for d in self.directories],
            "files": [{**asdict(f), "state": f.state.value} for f in self.files],
            "aggregate": (
                {**asdict(self.aggregate), "state": self.aggregate.state.value}
                if self.aggregate is not None else None
            ),
            "excluded": self.excluded,
            "stats": self.stats,
        }


@dataclass
class _BatchItem:
    relative_path: str
    fingerprint: str
    excerpt: str
    size: int


# ---------------------------------------------------------------------------
# Explorer
# ---------------------------------------------------------------------------

class Explorer:
    def __init__(
        self,
        *,
        params: QueryParams,
        policy: Optional[SummaryPolicy] = None,
        lister: Optional[FileLister] = None,
        filetypes: Optional[FileTypes] = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_concurrent: int = 8,
        verbose: bool = False,
    ):
        if max_file_size <= 0:
            raise ConfigError(f"max_file_size must be positive, got {max_file_size}")
        if max_concurrent <= 0:
            raise ConfigError(f"max_concurrent must be positive, got {max_concurrent}")
        self.params = params
        self.policy = policy
        self.lister = lister or LocalFileLister()
        self.filetypes = filetypes or FileTypes()
        self.max_file_size = max_file_size
        self.max_concurrent = max_concurrent
        self.verbose = verbose

    def _log(self, msg: str):
        if self.verbose:
            print(msg, flush=True)

    # -----------------------------------------------------------------------
    # Per-file
    # -----------------------------------------------------------------------

    def _result(self, entry: ListedEntry, state: FileState, **kwargs) -> FileResult:
        return FileResult(
            path=str(entry.path),
            relative_path=entry.relative,
            depth=entry.depth,
            size=entry.size,
            state=state,
            **kwargs,
        )

    async def _process_file(self, entry: ListedEntry) -> tuple[FileResult, Optional[_BatchItem]]:
        if self.policy is None:
            return self._result(entry, FileState.UNCHECKED), None

        if entry.size > self.max_file_size:
            return self._result(entry, FileState.TOO_LARGE, note="file too large for summarization"), None

        try:
            data = entry.read_bytes()
        except OSError as e:
            return self._result(entry, FileState.FAILED, error=f"unreadable: {e}"), None

        info = self.filetypes.inspect(entry.path, len(data), data[: self.filetypes.sample_size])
        if not info.is_text:
            return self._result(entry, FileState.SKIPPED, note="binary file"), None
        if not data.strip():
            return self._result(entry, FileState.SKIPPED, note="empty file", interpreter=info.interpreter), None

        if self.params.is_batch:
            item = _BatchItem(
                relative_path=entry.relative,
                fingerprint=fingerprint(data),
                excerpt=data.decode("utf-8", errors="replace")[:BATCH_EXCERPT_CHARS],
                size=len(data),
            )
            return self._result(entry, FileState.BATCHED, interpreter=info.interpreter), item

        outcome: Outcome = await self.policy.summarize_file(
            path=str(entry.path.resolve()),
            data=data,
            interpreter=info.interpreter,
            multiplier=self.filetypes.multiplier_for(info.interpreter),
        )
        if outcome.state == FileState.FAILED:
            self._log(f"  ⚠️ {entry.relative}: {outcome.error}")
        return self._result(
            entry,
            outcome.state,
            summary=outcome.summary,
            error=outcome.error,
            interpreter=info.interpreter,
        ), None

    async def _process_files(self, entries: list[ListedEntry]) -> list[tuple[FileResult, Optional[_BatchItem]]]:
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def bounded(entry: ListedEntry):
            async with semaphore:
                return await self._process_file(entry)

        return list(await asyncio.gather(*[bounded(e) for e in entries]))

    # -----------------------------------------------------------------------
    # Whole-directory
    # -----------------------------------------------------------------------

    async def _summarize_batch(self, root: Path, items: list[_BatchItem]) -> AggregateResult:
        query = self.params.query
        if not items:
            return AggregateResult(state=FileState.SKIPPED, file_count=0, query=query)

        self._log(f"\n[Phase 3] Whole-directory request over {len(items)} files...")
        outcome = await self.policy.summarize_directory(
            root=str(root.resolve()),
            file_fingerprints=[i.fingerprint for i in items],
            combined=directory_block([(i.relative_path, i.excerpt) for i in items]),
            total_size=sum(i.size for i in items),
        )
        return AggregateResult(
            state=outcome.state,
            file_count=len(items),
            query=query,
            summary=outcome.summary,
            error=outcome.error,
        )

    # -----------------------------------------------------------------------
    # Main entry point
    # -----------------------------------------------------------------------

    async def run(self, root: Path) -> ExploreResult:
        root = Path(root)
        if not root.exists():
            raise ConfigError(f"Path does not exist: {root}")

        self._log(f"\n[Phase 1] Listing {root} (max depth {self.params.max_depth})...")
        listed = list(self.lister.list(root, self.params.max_depth))
        excluded = list(getattr(self.lister, "excluded", []))
        file_entries = [e for e in listed if not e.is_dir]
        self._log(f"  Found {len(file_entries)} files, {len(listed) - len(file_entries)} directories")

        if self.policy is not None:
            self._log(f"\n[Phase 2] Checking {len(file_entries)} files against the cache...")
        start = asyncio.get_running_loop().time()
        processed = await self._process_files(file_entries)
        by_path = {r.path: r for r, _ in processed}
        batch_items = [item for _, item in processed if item is not None]

        entries: list[Union[DirectoryResult, FileResult]] = []
        for e in listed:
            if e.is_dir:
                entries.append(DirectoryResult(path=str(e.path), relative_path=e.relative, depth=e.depth))
            else:
                entries.append(by_path[str(e.path)])

        aggregate = None
        if self.policy is not None and self.params.is_batch:
            aggregate = await self._summarize_batch(root, batch_items)

        elapsed = asyncio.get_running_loop().time() - start
        self._log(f"  Done in {elapsed:.1f}s")

        result = ExploreResult(
            root=str(root),
            entries=entries,
            aggregate=aggregate,
            excluded=excluded,
        )
        result.stats = self._stats(result)
        return result

    def _stats(self, result: ExploreResult) -> dict:
        states = Counter(f.state.value for f in result.files)
        stats = {
            "total_files": len(result.files),
            "total_dirs": len(result.directories),
            "excluded": len(result.excluded),
            "states": dict(sorted(states.items())),
        }
        if self.policy is not None:
            stats.update(asdict(self.policy.stats))
            tracker = getattr(self.policy.summarizer, "tracker", None)
            if tracker is not None and hasattr(tracker, "as_dict"):
                stats.update(tracker.as_dict())
        return stats
