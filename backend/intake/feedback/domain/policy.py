"""Loading of moderation thresholds and vote weighting from a YAML policy file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from intake.feedback.domain.scoring import ModerationThresholds
from intake.feedback.domain.voting import VotePolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedbackPolicy:
    thresholds: ModerationThresholds = field(default_factory=ModerationThresholds)
    votes: VotePolicy = field(default_factory=VotePolicy)

    @staticmethod
    def from_mapping(config: Mapping[str, Any], *, base: Optional["FeedbackPolicy"] = None) -> "FeedbackPolicy":
        base = base or FeedbackPolicy()
        moderation_cfg = config.get("moderation", {})
        votes_cfg = config.get("votes", {})
        thresholds = base.thresholds
        if isinstance(moderation_cfg, Mapping):
            thresholds = ModerationThresholds.from_mapping(moderation_cfg.get("thresholds", moderation_cfg))
        votes = base.votes
        if isinstance(votes_cfg, Mapping):
            votes = VotePolicy.from_mapping(votes_cfg, base=base.votes)
        return FeedbackPolicy(thresholds=thresholds, votes=votes)


def load_policy(path: str | Path | None, *, base: Optional[FeedbackPolicy] = None) -> FeedbackPolicy:
    """Load the policy file, falling back to ``base`` (or defaults) when it is missing or malformed."""

    fallback = base or FeedbackPolicy()
    if not path:
        return fallback
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        logger.warning("feedback policy file missing at %s; using defaults", path)
        return fallback
    except yaml.YAMLError as exc:
        logger.warning("feedback policy file unreadable: %s", exc)
        return fallback
    if not isinstance(data, Mapping):
        logger.warning("feedback policy file invalid; falling back to defaults")
        return fallback
    try:
        return FeedbackPolicy.from_mapping(data, base=fallback)
    except (TypeError, ValueError) as exc:
        logger.warning("feedback policy values rejected: %s", exc)
        return fallback
