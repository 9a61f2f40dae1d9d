"""Heuristic content scoring and the threshold policy that consumes it."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from intake.feedback.domain.models import ModerationSignal, ModerationStatus

TOXIC_KEYWORDS: tuple[str, ...] = (
    "idiot",
    "stupid",
    "hate",
    "kill",
    "die",
    "worst",
    "terrible",
    "useless",
    "garbage",
    "trash",
    "crap",
    "suck",
    "awful",
    "pathetic",
    "incompetent",
    "moron",
    "imbecile",
    "fool",
    "dumb",
    "worthless",
)

_TOXIC_RE = re.compile(r"\b(" + "|".join(TOXIC_KEYWORDS) + r")\b")
_REPEATED_CHARS_RE = re.compile(r"(.)\1{5,}")
_REPEATED_WORDS_RE = re.compile(r"\b(\w+)\s+\1\s+\1\b", re.IGNORECASE)
_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)
_SHORT_URL_RE = re.compile(r"\b(bit\.ly|tinyurl|goo\.gl|ow\.ly|short\.to|t\.co)\b", re.IGNORECASE)
_SPECIAL_CHARS_RE = re.compile(r"[!@#$%^&()]{5,}")
_PROMO_RE = re.compile(r"\b(buy|sale|discount|offer|limited time|click here|visit now)\b", re.IGNORECASE)
_NO_VOWEL_WORD_RE = re.compile(r"\b[^aeiou\s]{8,}\b", re.IGNORECASE)
_CONSONANT_RUN_RE = re.compile(r"[bcdfghjklmnpqrstvwxyz]{5,}", re.IGNORECASE)
_GIBBERISH_LINE_RE = re.compile(r"[^aeiou\s]{15,}", re.IGNORECASE)
_EMOJI_RUN_RE = re.compile(r"[\U0001F300-\U0001FAFF\u2600-\u27BF]{5,}")

_MIN_MEANINGFUL_LENGTH = 15


@dataclass(frozen=True)
class ModerationScore:
    toxicity: float = 0.0
    spam: float = 0.0
    off_topic: float = 0.0


class ModerationScorer(Protocol):
    """Pure function of text returning scores in ``[0, 1]``."""

    def score(self, text: str) -> ModerationScore:
        ...


def _clamp(value: float) -> float:
    return round(min(max(value, 0.0), 1.0), 2)


class HeuristicScorer:
    """Keyword and pattern based scorer; no model, no I/O."""

    def score(self, text: str) -> ModerationScore:
        if not isinstance(text, str) or not text.strip():
            return ModerationScore()
        return ModerationScore(
            toxicity=self.toxicity(text),
            spam=self.spam(text),
            off_topic=self.off_topic(text),
        )

    def toxicity(self, text: str) -> float:
        lowered = text.lower()
        matches = _TOXIC_RE.findall(lowered)
        word_count = max(len(text.split()), 1)
        score = min(len(matches) / word_count * 2, 1.0)
        if len(set(matches)) >= 3:
            score += 0.2
        return _clamp(score)

    def spam(self, text: str) -> float:
        score = 0.0
        if _REPEATED_CHARS_RE.search(text) or _REPEATED_WORDS_RE.search(text):
            score += 0.25
        if self._excessive_caps(text):
            score += 0.25
        if len(_URL_RE.findall(text)) >= 3 or _SHORT_URL_RE.search(text):
            score += 0.3
        if self._gibberish(text):
            score += 0.3
        if _SPECIAL_CHARS_RE.search(text):
            score += 0.15
        if len(_PROMO_RE.findall(text)) >= 2:
            score += 0.2
        return _clamp(score)

    def off_topic(self, text: str) -> float:
        score = 0.0
        stripped = text.strip()
        if len(stripped) < _MIN_MEANINGFUL_LENGTH:
            score += 0.4
        if _GIBBERISH_LINE_RE.fullmatch(stripped):
            score += 0.5
        if _EMOJI_RUN_RE.search(text):
            score += 0.3
        if len([word for word in text.split() if len(word) >= 3]) < 3:
            score += 0.3
        return _clamp(score)

    @staticmethod
    def _excessive_caps(text: str) -> bool:
        if len(text) < 10:
            return False
        letters = [char for char in text if char.isascii() and char.isalpha()]
        if not letters:
            return False
        upper = sum(1 for char in letters if char.isupper())
        return upper / len(letters) > 0.5

    @staticmethod
    def _gibberish(text: str) -> bool:
        if len(text) < 20:
            return False
        if len(_NO_VOWEL_WORD_RE.findall(text)) >= 2:
            return True
        runs = len(_CONSONANT_RUN_RE.findall(text))
        return runs / max(len(text.split()), 1) > 0.3


@dataclass(frozen=True)
class ModerationDecision:
    status: ModerationStatus
    signals: frozenset[ModerationSignal]


@dataclass(frozen=True)
class ModerationThresholds:
    """Strict ``>`` thresholds; off-topic is advisory and never gates on its own."""

    toxicity: float = 0.7
    spam: float = 0.8
    off_topic: float = 0.7

    @staticmethod
    def from_mapping(config: Mapping[str, Any]) -> "ModerationThresholds":
        base = ModerationThresholds()
        return ModerationThresholds(
            toxicity=float(config.get("toxicity", base.toxicity)),
            spam=float(config.get("spam", base.spam)),
            off_topic=float(config.get("off_topic", base.off_topic)),
        )

    def decide(self, score: ModerationScore, *, has_pii: bool) -> ModerationDecision:
        signals: set[ModerationSignal] = set()
        if score.toxicity > self.toxicity:
            signals.add(ModerationSignal.TOXICITY)
        if score.spam > self.spam:
            signals.add(ModerationSignal.SPAM)
        if has_pii:
            signals.add(ModerationSignal.PII)
        status = ModerationStatus.AUTO_PENDING if signals else ModerationStatus.APPROVED
        if score.off_topic > self.off_topic:
            signals.add(ModerationSignal.OFF_TOPIC)
        return ModerationDecision(status=status, signals=frozenset(signals))
