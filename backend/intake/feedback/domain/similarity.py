"""Approximate title matching for duplicate detection."""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Optional

from intake.feedback.domain.models import DuplicateMatch, FeedbackItem

DEFAULT_THRESHOLD = 0.86

STOP_WORDS: frozenset[str] = frozenset({"a", "an", "the", "to", "at", "in", "on", "of", "for", "and", "or", "with"})

_TOKEN_RE = re.compile(r"[^\W_]+")
_NO_COLLAPSE = frozenset("aeiouslz")


def _stem(word: str) -> str:
    if len(word) > 5 and word.endswith("ing"):
        word = word[:-3]
        if len(word) >= 3 and word[-1] == word[-2] and word[-1] not in _NO_COLLAPSE:
            word = word[:-1]
        return word
    if len(word) > 4 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 4 and word.endswith(("ches", "shes", "sses", "xes", "zes")):
        return word[:-2]
    if len(word) > 3 and word.endswith("s") and not word.endswith(("ss", "us", "is")):
        return word[:-1]
    return word


def normalize(text: str) -> str:
    """Lowercase, strip punctuation, drop stop words and fold simple suffixes."""

    tokens = _TOKEN_RE.findall((text or "").lower())
    kept = [_stem(token) for token in tokens if token not in STOP_WORDS]
    return " ".join(kept)


def bigrams(text: str) -> frozenset[str]:
    return frozenset(text[index : index + 2] for index in range(len(text) - 1))


def dice(a: str, b: str) -> float:
    """Sørensen-Dice coefficient over the character bigram sets of two titles."""

    left = normalize(a)
    right = normalize(b)
    if left == right:
        return 1.0
    left_grams = bigrams(left)
    right_grams = bigrams(right)
    if not left_grams or not right_grams:
        return 0.0
    overlap = len(left_grams & right_grams)
    return 2.0 * overlap / (len(left_grams) + len(right_grams))


class DuplicateDetector:
    """Ranks an already-bounded corpus against a candidate title. Read-only."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        self.threshold = threshold

    def find(
        self,
        title: str,
        corpus: Iterable[FeedbackItem],
        *,
        exclude_id: Optional[str] = None,
        vote_counts: Optional[Mapping[str, int]] = None,
    ) -> list[DuplicateMatch]:
        counts = vote_counts or {}
        matches: list[DuplicateMatch] = []
        for item in corpus:
            if item.is_merged or item.id == exclude_id:
                continue
            similarity = dice(title, item.title)
            if similarity < self.threshold:
                continue
            matches.append(DuplicateMatch(item=item, similarity=similarity, vote_count=counts.get(item.id, 0)))
        matches.sort(key=lambda match: (-match.similarity, -match.vote_count, match.item.created_at, match.item.id))
        return matches
