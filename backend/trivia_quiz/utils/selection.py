"""Question selection engine.

Builds a de-duplicated quiz batch from a fallible, non-deterministic
provider while avoiding questions the user has recently seen.

Procedure for one selection:

1. Over-fetch when the seen ledger is non-empty so filtering still
   leaves enough fresh questions.
2. If the provider comes back short of both the fetch size and the
   requested count, make exactly one supplemental fetch for the
   shortfall.
3. Shuffle each question's options and derive its identifier.
4. Drop questions already in the ledger, then apply the selection
   precedence: provider scarcity, fresh questions, unfiltered fallback.

Question identifiers hash only the first 50 characters of the
normalized prompt. Two distinct questions sharing that prefix collide
and are treated as the same question.
"""

from __future__ import annotations

import hashlib
import logging
import random
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import ProviderError, ProviderFailure
from .provider import PROVIDER_MAX, RawQuestion

OPTION_LABELS = ("A", "B", "C", "D")
MIN_QUIZ_QUESTIONS = 1
MAX_QUIZ_QUESTIONS = 10
MIN_OVERFETCH = 10
IDENTIFIER_WIDTH = 50
LEDGER_HIGH_WATER = 100
LEDGER_KEEP = 50

_LOGGER = logging.getLogger("trivia_quiz.quiz")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class Question:
    """A quiz question with its options already shuffled into slots A-D."""
    identifier: str
    prompt: str
    options: Dict[str, str]
    correct: str
    category: str
    difficulty: str

    def redacted(self) -> dict:
        return {"question": self.prompt, "options": dict(self.options)}


def normalize_prompt(text: str) -> str:
    return _NON_ALNUM.sub(" ", text.lower()).strip()


def question_id(prompt: str) -> str:
    """Stable identifier for a prompt, lossy beyond `IDENTIFIER_WIDTH` characters."""
    key = normalize_prompt(prompt)[:IDENTIFIER_WIDTH]
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


def build_question(raw: RawQuestion, rng: random.Random) -> Question:
    """Place the four answers into shuffled slots and record the correct label."""
    answers = [raw.correct_answer] + list(raw.incorrect_answers)
    order = list(range(len(answers)))
    rng.shuffle(order)
    options = {}
    correct = None
    for label, idx in zip(OPTION_LABELS, order):
        options[label] = answers[idx]
        if idx == 0:
            correct = label
    return Question(
        identifier=question_id(raw.question),
        prompt=raw.question,
        options=options,
        correct=correct,
        category=raw.category,
        difficulty=raw.difficulty,
    )


def clamp_count(count) -> int:
    try:
        value = int(count)
    except (TypeError, ValueError):
        value = MAX_QUIZ_QUESTIONS
    return max(MIN_QUIZ_QUESTIONS, min(MAX_QUIZ_QUESTIONS, value))


def fetch_size_for(seen_count: int, requested_count: int) -> int:
    if seen_count <= 0:
        return requested_count
    return min(requested_count + max(seen_count, MIN_OVERFETCH), PROVIDER_MAX)


def trim_ledger(seen: Sequence[str]) -> Tuple[str, ...]:
    """Keep only the most recent entries once the ledger passes its high-water mark."""
    if len(seen) > LEDGER_HIGH_WATER:
        return tuple(seen[-LEDGER_KEEP:])
    return tuple(seen)


def merge_seen(seen: Sequence[str], new_ids: Iterable[str]) -> Tuple[str, ...]:
    """Append identifiers not already present, then trim to the recency window."""
    merged = list(seen)
    present = set(merged)
    for qid in new_ids:
        if qid not in present:
            merged.append(qid)
            present.add(qid)
    return trim_ledger(merged)


class QuestionSelector:
    """Select a fresh batch of questions from a provider."""

    def __init__(self, provider, rng: Optional[random.Random] = None):
        self.provider = provider
        self.rng = rng or random.SystemRandom()

    def select(self, seen_ids: Iterable[str], requested_count: int, category: Optional[str] = None) -> List[Question]:
        if requested_count < MIN_QUIZ_QUESTIONS or requested_count > MAX_QUIZ_QUESTIONS:
            raise ValueError(f"requested_count must be between {MIN_QUIZ_QUESTIONS} and {MAX_QUIZ_QUESTIONS}")
        seen = set(seen_ids)
        fetch_size = fetch_size_for(len(seen), requested_count)
        raw, fetch_size = self._fetch(fetch_size, requested_count, category)
        scarce = len(raw) < fetch_size

        questions = self._dedupe(build_question(r, self.rng) for r in raw)
        fresh = [q for q in questions if q.identifier not in seen]

        if scarce and fresh:
            path = "scarce"
            selected = fresh[:requested_count]
        elif fresh:
            path = "fresh"
            self.rng.shuffle(fresh)
            selected = fresh[:requested_count]
        else:
            path = "fallback"
            pool = list(questions)
            self.rng.shuffle(pool)
            selected = pool[:requested_count]

        if not selected:
            raise ProviderError(ProviderFailure.NO_RESULTS, "no questions available")
        _LOGGER.info(
            "selected %d/%d questions path=%s fetched=%d fetch_size=%d seen=%d",
            len(selected), requested_count, path, len(raw), fetch_size, len(seen),
        )
        if len(selected) < requested_count:
            _LOGGER.warning("short quiz: %d of %d requested questions", len(selected), requested_count)
        return selected

    def _fetch(self, fetch_size: int, requested_count: int, category: Optional[str]) -> Tuple[List[RawQuestion], int]:
        """Fetch the main batch plus at most one supplemental batch."""
        try:
            raw = list(self.provider.fetch_batch(fetch_size, category))
        except ProviderError as exc:
            if exc.kind != ProviderFailure.NO_RESULTS or fetch_size <= requested_count:
                raise
            # the over-fetch asked for more than the category holds; ask for the plain amount instead
            _LOGGER.info("over-fetch of %d found nothing, retrying with %d", fetch_size, requested_count)
            return list(self.provider.fetch_batch(requested_count, category)), requested_count

        if len(raw) < fetch_size and len(raw) < requested_count:
            shortfall = requested_count - len(raw)
            try:
                extra = self.provider.fetch_batch(shortfall, category)
            except ProviderError as exc:
                if exc.kind != ProviderFailure.NO_RESULTS:
                    raise
                extra = []
            prompts = {normalize_prompt(r.question) for r in raw}
            for r in extra:
                key = normalize_prompt(r.question)
                if key not in prompts:
                    raw.append(r)
                    prompts.add(key)
        return raw, fetch_size

    @staticmethod
    def _dedupe(questions: Iterable[Question]) -> List[Question]:
        out = []
        ids = set()
        for q in questions:
            if q.identifier in ids:
                continue
            ids.add(q.identifier)
            out.append(q)
        return out
