import asyncio
from pathlib import Path

import pytest

from agents import Summarizer, SummarizerError, SummarizerRateLimitError, SummaryRequest
from cache import CacheStore
from config import QueryParams
from hasher import fingerprint
from policy import FileState, SummaryPolicy


class _CountingSummarizer(Summarizer):
    def __init__(self, delay: float = 0.0, fail_with: SummarizerError | None = None):
        self.delay = delay
        self.fail_with = fail_with
        self.requests: list[SummaryRequest] = []

    async def summarize(self, request: SummaryRequest) -> str:
        self.requests.append(request)
        await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return f"summary#{len(self.requests)}:{request.content}"


def _policy(tmp_path: Path, summarizer: Summarizer, **params) -> SummaryPolicy:
    return SummaryPolicy(
        store=CacheStore(tmp_path / "cache"),
        summarizer=summarizer,
        params=QueryParams(**params),
    )


def _summarize(policy: SummaryPolicy, path: str, data: bytes):
    return asyncio.run(policy.summarize_file(path=path, data=data))


def test_second_identical_call_is_a_hit_with_no_summarizer_call(tmp_path: Path):
    summarizer = _CountingSummarizer()
    policy = _policy(tmp_path, summarizer, language="english", length_tier="medium")

    first = _summarize(policy, "a.txt", b"hello")
    second = _summarize(policy, "a.txt", b"hello")

    assert first.state == FileState.CACHED
    assert second.state == FileState.CACHE_HIT
    assert second.summary == first.summary
    assert second.key == first.key
    assert len(summarizer.requests) == 1


def test_hit_survives_a_new_store_handle(tmp_path: Path):
    _summarize(_policy(tmp_path, _CountingSummarizer()), "a.txt", b"hello")

    summarizer = _CountingSummarizer()
    outcome = _summarize(_policy(tmp_path, summarizer), "a.txt", b"hello")

    assert outcome.state == FileState.CACHE_HIT
    assert summarizer.requests == []


def test_changed_content_is_a_miss(tmp_path: Path):
    summarizer = _CountingSummarizer()
    policy = _policy(tmp_path, summarizer)

    first = _summarize(policy, "a.txt", b"hello")
    changed = _summarize(policy, "a.txt", b"hello world")

    assert changed.state == FileState.CACHED
    assert changed.key.fingerprint == fingerprint(b"hello world")
    assert changed.key.fingerprint != first.key.fingerprint
    assert len(summarizer.requests) == 2


def test_reverted_content_reuses_earlier_record(tmp_path: Path):
    summarizer = _CountingSummarizer()
    policy = _policy(tmp_path, summarizer)

    original = _summarize(policy, "a.txt", b"v1")
    _summarize(policy, "a.txt", b"v2")
    reverted = _summarize(policy, "a.txt", b"v1")

    assert reverted.state == FileState.CACHE_HIT
    assert reverted.summary == original.summary
    assert len(summarizer.requests) == 2


def test_force_update_recomputes_and_overwrites(tmp_path: Path):
    _summarize(_policy(tmp_path, _CountingSummarizer()), "a.txt", b"hello")

    summarizer = _CountingSummarizer()
    forced = _policy(tmp_path, summarizer, force_update=True)
    outcome = _summarize(forced, "a.txt", b"hello")

    assert outcome.state == FileState.CACHED
    assert len(summarizer.requests) == 1

    later = _CountingSummarizer()
    again = _summarize(_policy(tmp_path, later), "a.txt", b"hello")
    assert again.state == FileState.CACHE_HIT
    assert again.summary == outcome.summary
    assert later.requests == []


def test_query_text_is_part_of_the_key(tmp_path: Path):
    summarizer = _CountingSummarizer()
    store = CacheStore(tmp_path / "cache")
    default = SummaryPolicy(store=store, summarizer=summarizer, params=QueryParams())
    tables = SummaryPolicy(
        store=store,
        summarizer=summarizer,
        params=QueryParams(mode="custom-query", query_text="Which tables?"),
    )

    a = asyncio.run(default.summarize_file(path="a.sql", data=b"select 1"))
    b = asyncio.run(tables.summarize_file(path="a.sql", data=b"select 1"))
    b_again = asyncio.run(tables.summarize_file(path="a.sql", data=b"select 1"))
    a_again = asyncio.run(default.summarize_file(path="a.sql", data=b"select 1"))

    assert a.key != b.key
    assert (a.state, b.state) == (FileState.CACHED, FileState.CACHED)
    assert (a_again.state, b_again.state) == (FileState.CACHE_HIT, FileState.CACHE_HIT)
    assert len(summarizer.requests) == 2
    assert summarizer.requests[1].query == "Which tables?"


def test_language_and_length_are_part_of_the_key(tmp_path: Path):
    summarizer = _CountingSummarizer()
    _summarize(_policy(tmp_path, summarizer), "a.txt", b"hello")
    _summarize(_policy(tmp_path, summarizer, language="spanish"), "a.txt", b"hello")
    _summarize(_policy(tmp_path, summarizer, length_tier="short"), "a.txt", b"hello")

    assert len(summarizer.requests) == 3
    assert summarizer.requests[2].word_target == 50


def test_concurrent_requests_for_one_key_share_a_call(tmp_path: Path):
    summarizer = _CountingSummarizer(delay=0.05)
    policy = _policy(tmp_path, summarizer)

    async def go():
        return await asyncio.gather(*[
            policy.summarize_file(path="a.txt", data=b"hello") for _ in range(5)
        ])

    outcomes = asyncio.run(go())

    assert len(summarizer.requests) == 1
    assert {o.summary for o in outcomes} == {outcomes[0].summary}
    assert all(o.state == FileState.CACHED for o in outcomes)
    assert policy.stats.deduplicated == 4


def test_summarizer_failure_is_reported_not_raised(tmp_path: Path):
    summarizer = _CountingSummarizer(fail_with=SummarizerRateLimitError("slow down"))
    policy = _policy(tmp_path, summarizer)

    outcome = _summarize(policy, "a.txt", b"hello")

    assert outcome.state == FileState.FAILED
    assert outcome.error_kind == "rate_limit"
    assert "slow down" in outcome.error
    assert policy.store.lookup(outcome.key) is None
    assert policy.stats.failed == 1


def test_unexpected_errors_propagate(tmp_path: Path):
    class _Broken(Summarizer):
        async def summarize(self, request):
            raise RuntimeError("boom")

    policy = _policy(tmp_path, _Broken())
    with pytest.raises(RuntimeError, match="boom"):
        _summarize(policy, "a.txt", b"hello")


def test_directory_key_ignores_file_order(tmp_path: Path):
    policy = _policy(tmp_path, _CountingSummarizer(), mode="whole-directory")
    fps = [fingerprint(b"a"), fingerprint(b"b"), fingerprint(b"c")]

    assert policy.directory_key("/repo", fps) == policy.directory_key("/repo", list(reversed(fps)))
    assert policy.directory_key("/repo", fps) != policy.directory_key("/repo", fps[:2])


def test_batch_query_uses_fixed_answer_length(tmp_path: Path):
    summarizer = _CountingSummarizer()
    policy = _policy(tmp_path, summarizer, mode="whole-directory", query_text="Where is main?")

    outcome = asyncio.run(policy.summarize_directory(
        root="/repo",
        file_fingerprints=[fingerprint(b"x")],
        combined="File: x\nContent:\nx",
    ))

    assert outcome.state == FileState.CACHED
    assert summarizer.requests[0].scope == "directory"
    assert summarizer.requests[0].word_target == 500
    assert outcome.key.query == "Where is main?"


def test_smart_length_key_follows_the_type_multiplier(tmp_path: Path):
    summarizer = _CountingSummarizer()
    policy = _policy(tmp_path, summarizer, length_tier="smart")

    plain = asyncio.run(policy.summarize_file(path="a.py", data=b"x = 1", multiplier=1.0))
    again = asyncio.run(policy.summarize_file(path="a.py", data=b"x = 1", multiplier=1.0))
    retuned = asyncio.run(policy.summarize_file(path="a.py", data=b"x = 1", multiplier=2.0))

    assert plain.key.length_tier == "smart:75"
    assert again.state == FileState.CACHE_HIT
    assert retuned.state == FileState.CACHED
    assert retuned.key.length_tier == "smart:150"
    assert [r.word_target for r in summarizer.requests] == [75, 150]


def test_fixed_length_tier_is_keyed_by_name(tmp_path: Path):
    policy = _policy(tmp_path, _CountingSummarizer(), length_tier="long")
    outcome = _summarize(policy, "a.txt", b"hello")
    assert outcome.key.length_tier == "long"
