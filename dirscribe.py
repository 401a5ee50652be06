#!/usr/bin/env python3
"""
dirscribe.py — CLI entry point.

Usage:
    # List a directory tree (no API calls)
    dirscribe /path/to/dir

    # Summarize every text file
    dirscribe /path/to/dir --ai

    # Ask the same question about every file
    dirscribe /path/to/dir --ai-query "What does this file configure?"

    # One answer over the whole directory
    dirscribe /path/to/dir --ai-whole "Where is the database schema defined?"

    # One overview of the whole directory
    dirscribe /path/to/dir --ai-whole

    # Shorter summaries in Spanish, re-generating cached ones
    dirscribe /path/to/dir --ai --summary-length short --language spanish --update

Environment:
    ANTHROPIC_API_KEY    — required for --ai, --ai-query and --ai-whole
    DIRSCRIBE_CACHE_DIR  — optional cache root (default: ./.cache)

Summaries are cached under the cache root, one JSON file per cache key.
Deleting the cache root resets all cached state.
"""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import os
import sys
import tempfile
import time
from pathlib import Path
from typing import Optional

from agents import AnthropicSummarizer
from cache import CacheStore
from config import (
    DEFAULT_LANGUAGE, DEFAULT_LENGTH_TIER, DEFAULT_MAX_DEPTH, DEFAULT_MAX_FILE_SIZE,
    ConfigError, QueryParams,
)
from explorer import DirectoryResult, Explorer, ExploreResult, FileResult
from filetypes import FileTypes, FileTypesError
from lister import LocalFileLister, format_size, parse_ignore_patterns
from policy import FileState, SummaryPolicy


DEFAULT_CACHE_DIR = Path(".cache")

_STATE_LABELS = {
    FileState.CACHE_HIT: "cached",
    FileState.CACHED: "new",
}


def build_report(result: ExploreResult) -> str:
    lines = [f"Exploring: {result.root}", "=" * 80]

    for entry in result.entries:
        indent = "  " * entry.depth
        if isinstance(entry, DirectoryResult):
            name = Path(entry.path).name or entry.path
            lines.append(f"{indent}📁 {name}/")
            continue

        lines.append(f"{indent}📄 {Path(entry.path).name} ({format_size(entry.size)})")
        lines.extend(_file_detail_lines(entry, indent))

    agg = result.aggregate
    if agg is not None:
        lines += ["", "Directory Summary:" if not agg.query else f"Answer: {agg.query}", "=" * 80]
        if agg.summary is not None:
            lines.append(f"📝 {agg.summary}")
            lines.append(f"   ({agg.file_count} files, {'cached' if agg.state == FileState.CACHE_HIT else 'new'})")
        elif agg.error is not None:
            lines.append(f"⚠️ Error processing files: {agg.error}")
        else:
            lines.append("No text files to summarize.")

    lines += [
        "",
        "Summary:",
        f"Total directories: {result.stats.get('total_dirs', len(result.directories))}",
        f"Total files: {result.stats.get('total_files', len(result.files))}",
    ]
    if result.excluded:
        lines.append(f"Excluded paths: {len(result.excluded)}")
    return "\n".join(lines)


def _file_detail_lines(entry: FileResult, indent: str) -> list[str]:
    if entry.summary is not None:
        label = _STATE_LABELS.get(entry.state, entry.state.value)
        return [f"{indent}   📝 Summary ({label}): {entry.summary}"]
    if entry.state == FileState.FAILED:
        return [f"{indent}   ⚠️ Failed to generate summary: {entry.error}"]
    if entry.state == FileState.TOO_LARGE:
        return [f"{indent}   ⏭️ File too large for summarization"]
    if entry.state == FileState.SKIPPED and entry.note:
        return [f"{indent}   ⏭️ Skipped: {entry.note}"]
    return []


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dirscribe",
        description="Explore a directory tree and summarize files with an LLM, caching results by content hash.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("path", nargs="?", type=Path, default=Path("."),
                        help="Directory (or file) to explore (default: current directory)")
    parser.add_argument("--ai", action="store_true",
                        help="Summarize each text file")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--ai-query", default=None, metavar="QUERY",
                      help="Ask a custom question about each text file")
    mode.add_argument("--ai-whole", nargs="?", const="", default=None, metavar="QUERY",
                      help="Summarize all files in one request, optionally answering QUERY")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH,
                        help=f"Maximum directory depth to explore, 0 = root only (default: {DEFAULT_MAX_DEPTH})")
    parser.add_argument("--summary-length", default=DEFAULT_LENGTH_TIER,
                        help="short (~50 words), medium (~100), long (~200), super (~500), "
                             "smart (by file size and type) or a word count (default: medium)")
    parser.add_argument("--language", default=DEFAULT_LANGUAGE,
                        help=f"Language of the summaries (default: {DEFAULT_LANGUAGE})")
    parser.add_argument("--update", action="store_true",
                        help="Force update: ignore cached summaries and overwrite them")
    parser.add_argument("--cache-dir", type=Path, default=None,
                        help="Cache directory (default: DIRSCRIBE_CACHE_DIR or ./.cache)")
    parser.add_argument("--no-cache", action="store_true",
                        help="Use a throwaway cache for this run")
    parser.add_argument("--clear-cache", action="store_true",
                        help="Delete every cached summary before running")
    parser.add_argument("--ignore", default=None, metavar="GLOBS",
                        help="Comma-separated glob patterns of paths to skip")
    parser.add_argument("--no-gitignore", action="store_true",
                        help="Do not skip paths matched by the root .gitignore")
    parser.add_argument("--max-file-size", type=int, default=DEFAULT_MAX_FILE_SIZE,
                        help=f"Largest file (bytes) sent for summarization (default: {DEFAULT_MAX_FILE_SIZE})")
    parser.add_argument("--max-concurrent", type=int, default=8,
                        help="Max files processed / API calls in flight at once (default: 8)")
    parser.add_argument("--filetypes", type=Path, default=None,
                        help="TOML file overriding file type detection and length multipliers")
    parser.add_argument("--api-key", default=None,
                        help="Anthropic API key (default: ANTHROPIC_API_KEY env var)")
    parser.add_argument("--json-output", type=Path, default=None,
                        help="Also write the full result as JSON")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Print progress and debug logging")
    return parser


def params_from_args(args: argparse.Namespace) -> QueryParams:
    if args.ai_whole is not None:
        mode, query = "whole-directory", args.ai_whole or None
    elif args.ai_query is not None:
        mode, query = "custom-query", args.ai_query
    else:
        mode, query = "default", None
    return QueryParams(
        mode=mode,
        query_text=query,
        language=args.language,
        length_tier=args.summary_length,
        force_update=args.update,
        max_depth=args.max_depth,
    )


def resolve_cache_dir(args: argparse.Namespace) -> Path:
    if args.cache_dir is not None:
        return args.cache_dir
    env_dir = os.environ.get("DIRSCRIBE_CACHE_DIR")
    return Path(env_dir) if env_dir else DEFAULT_CACHE_DIR


async def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    use_ai = args.ai or args.ai_query is not None or args.ai_whole is not None
    tmp_cache: Optional[tempfile.TemporaryDirectory] = None

    try:
        params = params_from_args(args)
        filetypes = FileTypes.from_toml(args.filetypes) if args.filetypes else FileTypes()

        cache_dir = resolve_cache_dir(args)
        if args.no_cache:
            tmp_cache = tempfile.TemporaryDirectory(prefix="dirscribe-")
            cache_dir = Path(tmp_cache.name)

        policy: Optional[SummaryPolicy] = None
        store: Optional[CacheStore] = None
        if use_ai or args.clear_cache:
            store = CacheStore(cache_dir)
        if args.clear_cache:
            removed = store.purge()
            print(f"🧹 Removed {removed} cached summaries from {cache_dir}")
        if use_ai:
            api_key = args.api_key or os.environ.get("ANTHROPIC_API_KEY")
            if not api_key:
                raise ConfigError("ANTHROPIC_API_KEY environment variable not set.")
            summarizer = AnthropicSummarizer(
                api_key=api_key,
                max_concurrent=args.max_concurrent,
                verbose=args.verbose,
            )
            policy = SummaryPolicy(store=store, summarizer=summarizer, params=params)

        lister = LocalFileLister(
            ignore_patterns=parse_ignore_patterns(args.ignore),
            respect_gitignore=not args.no_gitignore,
            exclude_paths=[cache_dir] if store is not None else None,
        )
        explorer = Explorer(
            params=params,
            policy=policy,
            lister=lister,
            filetypes=filetypes,
            max_file_size=args.max_file_size,
            max_concurrent=args.max_concurrent,
            verbose=args.verbose,
        )

        start = time.time()
        result = await explorer.run(args.path)
    except (ConfigError, FileTypesError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if tmp_cache is not None:
            tmp_cache.cleanup()
        return 1

    elapsed = time.time() - start
    print()
    print(build_report(result))

    if args.json_output:
        args.json_output.write_text(json.dumps(result.to_dict(), indent=2))
        print(f"\n📊 JSON report written to: {args.json_output}")

    if policy is not None:
        s = policy.stats
        print(f"\n✅ Complete in {elapsed:.1f}s | Cache hits: {s.cache_hits} | "
              f"Summarized: {s.summarized} | Failed: {s.failed}")
        tracker = getattr(policy.summarizer, "tracker", None)
        if tracker is not None:
            print(f"💰 {tracker.report()}")

    if tmp_cache is not None:
        tmp_cache.cleanup()
    return 0


def run_cli() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    run_cli()
