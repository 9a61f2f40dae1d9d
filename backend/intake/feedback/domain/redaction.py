"""PII detection and masking for free-text feedback.

Matchers run in a fixed priority order (email, reservation, room, card, phone) so
that a substring consumed by a specific matcher is never re-read by a looser one.
Each match is replaced by ``***`` followed by a short trailing hint. No matcher may
start directly after a mask or inside a word, which keeps ``redact`` idempotent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

MASK = "***"


@dataclass(frozen=True)
class RedactionResult:
    text: str
    has_pii: bool
    kinds: tuple[str, ...] = ()


@dataclass(frozen=True)
class PiiMatcher:
    """A named pattern plus the function that turns a match into its mask."""

    name: str
    pattern: re.Pattern[str]
    mask: Callable[[re.Match[str]], Optional[str]]

    def apply(self, text: str) -> tuple[str, bool]:
        fired = False

        def _replace(match: re.Match[str]) -> str:
            nonlocal fired
            masked = self.mask(match)
            if masked is None:
                return match.group(0)
            fired = True
            return masked

        return self.pattern.sub(_replace, text), fired


_EMAIL_RE = re.compile(
    r"(?<![\w.+%*-])[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*\.(?P<tld>[A-Za-z]{2,})(?![A-Za-z])"
)
_RESERVATION_RE = re.compile(
    r"(?<![\w*])(?:r[ée]servation|resv|res|booking)"
    r"(?:\s+(?:id|no\.?|number))?"
    r"(?:\s*[#:]\s*|\s+)"
    r"(?P<id>(?=[A-Z0-9-]*\d)[A-Z0-9][A-Z0-9-]{4,})(?![\w-])",
    re.IGNORECASE,
)
_ROOM_RE = re.compile(
    r"(?<![\w*])(?:room|rm|chambre)\s*#?\s*(?P<number>\d{1,5})(?!\d)",
    re.IGNORECASE,
)
_CARD_RE = re.compile(r"(?<![\d*+])\d(?:[ -]?\d){12,18}(?![\d*])")
_PHONE_RE = re.compile(r"(?<![\d*+])\+?\(?\d[\d ().-]{5,20}\d(?![\d*])")
_LOCAL_PHONE_RE = re.compile(r"\d{3}[ .-]\d{4}")
_NON_DIGIT_RE = re.compile(r"\D")


def _mask_email(match: re.Match[str]) -> str:
    return f"{MASK}.{match.group('tld').lower()}"


def _mask_reservation(match: re.Match[str]) -> str:
    reservation_id = match.group("id").replace("-", "")
    return MASK + reservation_id[-3:]


def _mask_room(match: re.Match[str]) -> str:
    return MASK + match.group("number")[-2:]


def _mask_card(match: re.Match[str]) -> str:
    digits = _NON_DIGIT_RE.sub("", match.group(0))
    return MASK + digits[-4:]


def _mask_phone(match: re.Match[str]) -> Optional[str]:
    candidate = match.group(0)
    digits = _NON_DIGIT_RE.sub("", candidate)
    if not 7 <= len(digits) <= 15:
        return None
    formatted = candidate.startswith("+") or "(" in candidate
    if len(digits) < 10 and not formatted and not _LOCAL_PHONE_RE.fullmatch(candidate):
        return None
    return MASK + digits[-2:]


DEFAULT_MATCHERS: tuple[PiiMatcher, ...] = (
    PiiMatcher("email", _EMAIL_RE, _mask_email),
    PiiMatcher("reservation", _RESERVATION_RE, _mask_reservation),
    PiiMatcher("room", _ROOM_RE, _mask_room),
    PiiMatcher("card", _CARD_RE, _mask_card),
    PiiMatcher("phone", _PHONE_RE, _mask_phone),
)


class PiiRedactor:
    """Applies an ordered list of matchers to free text."""

    def __init__(self, matchers: Sequence[PiiMatcher] = DEFAULT_MATCHERS) -> None:
        self._matchers = tuple(matchers)

    def redact(self, text: object) -> RedactionResult:
        if not isinstance(text, str) or not text:
            return RedactionResult(text="", has_pii=False)
        kinds: list[str] = []
        for matcher in self._matchers:
            text, fired = matcher.apply(text)
            if fired:
                kinds.append(matcher.name)
        return RedactionResult(text=text, has_pii=bool(kinds), kinds=tuple(kinds))


_default_redactor = PiiRedactor()


def redact(text: object) -> RedactionResult:
    """Mask PII in ``text`` using the default matcher chain."""

    return _default_redactor.redact(text)


def contains_pii(text: object) -> bool:
    return _default_redactor.redact(text).has_pii
