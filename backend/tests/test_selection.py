import random

import pytest

from trivia_quiz.errors import ProviderError, ProviderFailure
from trivia_quiz.utils.provider import RawQuestion
from trivia_quiz.utils.selection import (
    LEDGER_HIGH_WATER,
    LEDGER_KEEP,
    QuestionSelector,
    build_question,
    clamp_count,
    fetch_size_for,
    merge_seen,
    question_id,
    trim_ledger,
)


def _selector(provider, seed=7):
    return QuestionSelector(provider, rng=random.Random(seed))


def test_fresh_batch_with_empty_ledger_uses_single_fetch(fake_provider, raw_batch):
    provider = fake_provider(pool=raw_batch(10))
    selected = _selector(provider).select([], 10, "any")
    assert len(selected) == 10
    assert provider.calls == [(10, "any")]
    assert len({q.identifier for q in selected}) == 10


def test_overfetch_size_when_ledger_non_empty():
    assert fetch_size_for(0, 10) == 10
    assert fetch_size_for(3, 10) == 20
    assert fetch_size_for(25, 10) == 35
    assert fetch_size_for(80, 10) == 50


def test_seen_questions_are_filtered(fake_provider, raw_batch):
    pool = raw_batch(30)
    seen = [question_id(r.question) for r in pool[:15]]
    provider = fake_provider(pool=pool)
    selected = _selector(provider).select(seen, 10)
    assert provider.calls == [(25, None)]
    assert len(selected) == 10
    assert not {q.identifier for q in selected} & set(seen)


def test_fallback_to_seen_questions_when_novelty_is_exhausted(fake_provider, raw_batch):
    pool = raw_batch(20)
    seen = [question_id(r.question) for r in pool]
    provider = fake_provider(pool=pool)
    selected = _selector(provider).select(seen, 5)
    assert len(selected) == 5
    assert {q.identifier for q in selected} <= set(seen)


def test_partial_fresh_pool_returns_short_batch(fake_provider, raw_batch):
    pool = raw_batch(20)
    seen = [question_id(r.question) for r in pool[:17]]
    selected = _selector(fake_provider(pool=pool)).select(seen, 10)
    assert len(selected) == 3
    assert not {q.identifier for q in selected} & set(seen)


def test_scarce_provider_triggers_one_supplemental_fetch(fake_provider, raw_batch):
    first = raw_batch(4)
    extra = raw_batch(3, prefix="Extra") + first[:1]
    provider = fake_provider(responses=[first, extra])
    selected = _selector(provider).select([], 8, "9")
    assert provider.calls == [(8, "9"), (4, "9")]
    # the duplicate prompt from the supplemental batch is dropped
    assert len(selected) == 7
    # scarcity keeps provider order
    assert [q.prompt for q in selected] == [r.question for r in first + extra[:3]]


def test_supplemental_no_results_keeps_first_batch(fake_provider, raw_batch):
    provider = fake_provider(responses=[raw_batch(3), ProviderError(ProviderFailure.NO_RESULTS)])
    selected = _selector(provider).select([], 10)
    assert len(selected) == 3
    assert len(provider.calls) == 2


def test_supplemental_timeout_propagates(fake_provider, raw_batch):
    provider = fake_provider(responses=[raw_batch(3), ProviderError(ProviderFailure.TIMEOUT)])
    with pytest.raises(ProviderError) as exc:
        _selector(provider).select([], 10)
    assert exc.value.kind == ProviderFailure.TIMEOUT


def test_overfetch_no_results_retries_with_requested_count(fake_provider, raw_batch):
    pool = raw_batch(10)
    seen = ["not-a-real-id"]
    provider = fake_provider(responses=[ProviderError(ProviderFailure.NO_RESULTS), pool])
    selected = _selector(provider).select(seen, 10, "12")
    assert provider.calls == [(20, "12"), (10, "12")]
    assert len(selected) == 10


def test_plain_fetch_no_results_propagates(fake_provider):
    provider = fake_provider(responses=[ProviderError(ProviderFailure.NO_RESULTS)])
    with pytest.raises(ProviderError) as exc:
        _selector(provider).select([], 10)
    assert exc.value.kind == ProviderFailure.NO_RESULTS
    assert len(provider.calls) == 1


def test_timeout_propagates_without_retry(fake_provider):
    provider = fake_provider(responses=[ProviderError(ProviderFailure.TIMEOUT)])
    with pytest.raises(ProviderError):
        _selector(provider).select(["x"], 10)
    assert len(provider.calls) == 1


def test_duplicate_prompts_within_batch_are_collapsed(fake_provider, raw_batch):
    pool = raw_batch(5)
    pool.append(pool[0])
    selected = _selector(fake_provider(pool=pool)).select([], 6)
    ids = [q.identifier for q in selected]
    assert len(ids) == len(set(ids)) == 5


def test_build_question_places_correct_answer():
    raw = RawQuestion("Capital of France?", "Paris", ["Rome", "Berlin", "Madrid"], "Geography", "easy")
    for seed in range(20):
        q = build_question(raw, random.Random(seed))
        assert sorted(q.options) == ["A", "B", "C", "D"]
        assert q.options[q.correct] == "Paris"
        assert sorted(q.options.values()) == ["Berlin", "Madrid", "Paris", "Rome"]


def test_shuffle_uses_every_slot():
    raw = RawQuestion("Capital of France?", "Paris", ["Rome", "Berlin", "Madrid"], "Geography", "easy")
    rng = random.Random(3)
    labels = {build_question(raw, rng).correct for _ in range(200)}
    assert labels == {"A", "B", "C", "D"}


def test_redacted_view_hides_answer_and_identifier():
    raw = RawQuestion("Capital of France?", "Paris", ["Rome", "Berlin", "Madrid"], "Geography", "easy")
    view = build_question(raw, random.Random(1)).redacted()
    assert set(view) == {"question", "options"}


def test_question_id_is_stable_and_normalized():
    assert question_id("What is  the Capital of France?") == question_id("what is the capital of france")
    assert question_id("Capital of France?") != question_id("Capital of Spain?")
    # only the first 50 normalized characters count
    prefix = "a" * 50
    assert question_id(prefix + " one") == question_id(prefix + " two")


def test_ledger_trim_keeps_most_recent():
    ids = [f"q{i}" for i in range(LEDGER_HIGH_WATER + 1)]
    trimmed = trim_ledger(ids)
    assert len(trimmed) == LEDGER_KEEP
    assert trimmed[-1] == ids[-1]
    assert trim_ledger(ids[:LEDGER_HIGH_WATER]) == tuple(ids[:LEDGER_HIGH_WATER])


def test_merge_seen_skips_known_ids_and_bounds_size():
    seen = tuple(f"q{i}" for i in range(95))
    merged = merge_seen(seen, ["q1", "n1", "n2", "n3", "n4", "n5", "n6"])
    assert len(merged) == LEDGER_KEEP
    assert merged[-6:] == ("n1", "n2", "n3", "n4", "n5", "n6")
    assert merged.count("q1") == 0


def test_clamp_count():
    assert clamp_count(0) == 1
    assert clamp_count(-5) == 1
    assert clamp_count(15) == 10
    assert clamp_count("4") == 4
