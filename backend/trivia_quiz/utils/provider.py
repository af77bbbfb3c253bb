"""Open Trivia DB client that normalizes quiz batches.

The adapter performs exactly one HTTP request per call, decodes the
HTML entities the provider embeds in its text fields and reports every
failure as a `ProviderError` with a distinguishing kind. The whole call,
body included, is bounded by `timeout_s` measured on `clock`. Retry policy
belongs to the selection engine.
"""

from __future__ import annotations

import html
import json
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

import httpx

from ..errors import ProviderError, ProviderFailure

PROVIDER_MAX = 50
ANY_CATEGORY = ("", "any")

_LOGGER = logging.getLogger("trivia_quiz.provider")

# Open Trivia DB `response_code` values
_RESPONSE_CODES = {
    1: ProviderFailure.NO_RESULTS,
    2: ProviderFailure.INVALID_PARAMETER,
    3: ProviderFailure.NETWORK,
    4: ProviderFailure.NETWORK,
    5: ProviderFailure.NETWORK,
}


@dataclass(frozen=True)
class RawQuestion:
    question: str
    correct_answer: str
    incorrect_answers: List[str]
    category: str
    difficulty: str


def _decode(value) -> str:
    return html.unescape(str(value or "")).strip()


def normalize_category(category: Optional[str]) -> Optional[str]:
    """Return the numeric category id as a string, or None for any category.

    Raises `ProviderError(INVALID_PARAMETER)` for anything that is not a
    positive integer.
    """
    if category is None:
        return None
    text = str(category).strip().lower()
    if text in ANY_CATEGORY:
        return None
    if not text.isdigit() or int(text) <= 0:
        raise ProviderError(ProviderFailure.INVALID_PARAMETER, f"invalid category: {category}")
    return str(int(text))


def parse_item(item: dict) -> Optional[RawQuestion]:
    """Decode a single provider item; return None when it is malformed."""
    if not isinstance(item, dict):
        return None
    incorrect = item.get("incorrect_answers")
    if not isinstance(incorrect, list) or len(incorrect) != 3:
        return None
    question = _decode(item.get("question"))
    correct = _decode(item.get("correct_answer"))
    wrong = [_decode(a) for a in incorrect]
    if not question or not correct or not all(wrong):
        return None
    return RawQuestion(
        question=question,
        correct_answer=correct,
        incorrect_answers=wrong,
        category=_decode(item.get("category")) or "General Knowledge",
        difficulty=_decode(item.get("difficulty")) or "medium",
    )


class OpenTriviaProvider:
    """Fetch multiple-choice question batches from Open Trivia DB."""

    def __init__(self, base_url: str, timeout_s: float = 10.0, client: Optional[httpx.Client] = None, clock=time.monotonic):
        self.base_url = base_url
        self.timeout_s = timeout_s
        self._client = client
        self._clock = clock

    def fetch_batch(self, count: int, category: Optional[str] = None) -> List[RawQuestion]:
        """Return up to `count` decoded questions for `category`.

        The result can be shorter than `count` when the provider hands
        back malformed items; callers treat that as short supply.
        """
        if not isinstance(count, int) or count < 1 or count > PROVIDER_MAX:
            raise ProviderError(ProviderFailure.INVALID_PARAMETER, f"count must be between 1 and {PROVIDER_MAX}")
        params = {"amount": count, "type": "multiple"}
        category_id = normalize_category(category)
        if category_id is not None:
            params["category"] = category_id

        payload = self._get(params)
        code = payload.get("response_code")
        if code != 0:
            kind = _RESPONSE_CODES.get(code, ProviderFailure.NETWORK)
            _LOGGER.warning("provider response_code=%s params=%s", code, params)
            raise ProviderError(kind, f"provider response_code {code}")

        items = payload.get("results") or []
        out = []
        for item in items:
            parsed = parse_item(item)
            if parsed is None:
                _LOGGER.debug("dropping malformed provider item: %r", item)
                continue
            out.append(parsed)
        if not out:
            raise ProviderError(ProviderFailure.NO_RESULTS, "provider returned no usable questions")
        return out

    def _get(self, params: dict) -> dict:
        deadline = self._clock() + self.timeout_s
        try:
            if self._client is not None:
                body = self._read(self._client, params, deadline)
            else:
                with httpx.Client(timeout=self.timeout_s) as client:
                    body = self._read(client, params, deadline)
            payload = json.loads(body)
        except httpx.TimeoutException as exc:
            raise ProviderError(ProviderFailure.TIMEOUT, f"provider timed out after {self.timeout_s:.0f}s") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(ProviderFailure.NETWORK, f"provider request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(ProviderFailure.NETWORK, "provider returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderError(ProviderFailure.NETWORK, "provider returned an unexpected payload")
        return payload

    def _read(self, client: httpx.Client, params: dict, deadline: float) -> bytes:
        """Stream the response body; ReadTimeout once `deadline` passes mid-body."""
        chunks = []
        with client.stream("GET", self.base_url, params=params, timeout=self.timeout_s) as response:
            response.raise_for_status()
            for chunk in response.iter_bytes():
                if self._clock() > deadline:
                    raise httpx.ReadTimeout("provider exceeded its total deadline", request=response.request)
                chunks.append(chunk)
        return b"".join(chunks)
