import asyncio
import json
from pathlib import Path

import pytest

from cache import CacheKey, CacheRecord, CacheStore
from config import ConfigError
from dirscribe import build_parser, build_report, main, params_from_args, resolve_cache_dir
from explorer import AggregateResult, DirectoryResult, ExploreResult, FileResult
from policy import FileState


def _args(*argv: str):
    return build_parser().parse_args(list(argv))


def test_mode_selection():
    assert params_from_args(_args("repo")).mode == "default"

    custom = params_from_args(_args("repo", "--ai-query", "What is configured?"))
    assert (custom.mode, custom.query) == ("custom-query", "What is configured?")

    whole = params_from_args(_args("repo", "--ai-whole"))
    assert (whole.mode, whole.query) == ("whole-directory", "")

    asked = params_from_args(_args("repo", "--ai-whole", "Where is main?", "--update"))
    assert (asked.query, asked.force_update) == ("Where is main?", True)


def test_invalid_length_is_a_config_error():
    with pytest.raises(ConfigError):
        params_from_args(_args("repo", "--summary-length", "enormous"))


def test_cache_dir_resolution(monkeypatch, tmp_path: Path):
    monkeypatch.delenv("DIRSCRIBE_CACHE_DIR", raising=False)
    assert resolve_cache_dir(_args("repo")) == Path(".cache")

    monkeypatch.setenv("DIRSCRIBE_CACHE_DIR", str(tmp_path / "env"))
    assert resolve_cache_dir(_args("repo")) == tmp_path / "env"
    assert resolve_cache_dir(_args("repo", "--cache-dir", str(tmp_path / "flag"))) == tmp_path / "flag"


def test_report_lists_tree_and_summaries():
    result = ExploreResult(
        root="repo",
        entries=[
            DirectoryResult(path="repo", relative_path=".", depth=0),
            FileResult(path="repo/a.txt", relative_path="a.txt", depth=1, size=5,
                       state=FileState.CACHE_HIT, summary="Says hello."),
            FileResult(path="repo/b.py", relative_path="b.py", depth=1, size=2048,
                       state=FileState.FAILED, error="rate limited"),
            FileResult(path="repo/c.bin", relative_path="c.bin", depth=1, size=12,
                       state=FileState.SKIPPED, note="binary file"),
        ],
        aggregate=AggregateResult(state=FileState.CACHED, file_count=1, summary="A tiny repo."),
    )

    report = build_report(result)

    assert "📁 repo/" in report
    assert "  📄 a.txt (5 B)" in report
    assert "📝 Summary (cached): Says hello." in report
    assert "(2.00 KiB)" in report
    assert "⚠️ Failed to generate summary: rate limited" in report
    assert "⏭️ Skipped: binary file" in report
    assert "Directory Summary:" in report
    assert "📝 A tiny repo." in report
    assert "Total files: 3" in report


def test_listing_run_needs_no_api_key(monkeypatch, tmp_path: Path, capsys):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    (tmp_path / "a.txt").write_text("hello")
    out_json = tmp_path / "out.json"

    code = asyncio.run(main([str(tmp_path), "--json-output", str(out_json)]))

    assert code == 0
    assert "📄 a.txt" in capsys.readouterr().out
    data = json.loads(out_json.read_text())
    assert data["files"][0]["state"] == "unchecked"


def test_ai_run_without_api_key_fails(monkeypatch, tmp_path: Path, capsys):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    (tmp_path / "a.txt").write_text("hello")

    code = asyncio.run(main([str(tmp_path), "--ai", "--cache-dir", str(tmp_path / ".cache")]))

    assert code == 1
    assert "ANTHROPIC_API_KEY" in capsys.readouterr().err


def test_missing_path_fails(tmp_path: Path, capsys):
    code = asyncio.run(main([str(tmp_path / "nope")]))
    assert code == 1
    assert "does not exist" in capsys.readouterr().err


def test_clear_cache(tmp_path: Path, capsys):
    cache_dir = tmp_path / "cache"
    store = CacheStore(cache_dir)
    key = CacheKey("file", "/x", "f" * 64, "", "english", "medium")
    store.store(CacheRecord.new(key, "s"))
    (tmp_path / "repo").mkdir()

    code = asyncio.run(main([str(tmp_path / "repo"), "--clear-cache", "--cache-dir", str(cache_dir)]))

    assert code == 0
    assert "Removed 1 cached summaries" in capsys.readouterr().out
    assert CacheStore(cache_dir).lookup(key) is None


def test_per_file_query_and_whole_directory_are_exclusive(capsys):
    with pytest.raises(SystemExit) as exc:
        _args("repo", "--ai-query", "What?", "--ai-whole")
    assert exc.value.code == 2
    assert "not allowed with argument" in capsys.readouterr().err


def test_gitignore_opt_out(tmp_path: Path, capsys):
    (tmp_path / ".gitignore").write_text("*.log\n")
    (tmp_path / "app.log").write_text("x\n")

    asyncio.run(main([str(tmp_path)]))
    assert "app.log" not in capsys.readouterr().out

    asyncio.run(main([str(tmp_path), "--no-gitignore"]))
    assert "📄 app.log" in capsys.readouterr().out
