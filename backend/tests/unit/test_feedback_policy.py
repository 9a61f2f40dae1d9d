"""Unit tests for policy file loading and settings overrides."""

from __future__ import annotations

from pathlib import Path

from intake.feedback.domain import container
from intake.feedback.domain.models import Role
from intake.feedback.domain.policy import FeedbackPolicy, load_policy
from intake.feedback.domain.scoring import ModerationThresholds
from intake.settings import Settings, settings


def test_bundled_policy_matches_defaults() -> None:
    policy = load_policy(container.DEFAULT_POLICY_PATH)

    assert policy.thresholds == ModerationThresholds()
    assert policy.votes.half_life_days == 180.0
    assert policy.votes.panel_boost == 0.5
    assert policy.votes.role_weights[Role.PO] == 2.5


def test_policy_file_overrides(tmp_path: Path) -> None:
    path = tmp_path / "policy.yml"
    path.write_text(
        "moderation:\n"
        "  thresholds:\n"
        "    toxicity: 0.6\n"
        "votes:\n"
        "  half_life_days: 30\n"
        "  village_multipliers:\n"
        "    tulum: 1.25\n",
        encoding="utf-8",
    )

    policy = load_policy(path)

    assert policy.thresholds.toxicity == 0.6
    assert policy.thresholds.spam == 0.8
    assert policy.votes.half_life_days == 30.0
    assert policy.votes.village_multipliers == {"tulum": 1.25}
    assert policy.votes.role_weights[Role.PM] == 2.0


def test_missing_or_broken_policy_falls_back(tmp_path: Path) -> None:
    broken = tmp_path / "broken.yml"
    broken.write_text("votes: [unclosed", encoding="utf-8")
    negative = tmp_path / "negative.yml"
    negative.write_text("votes:\n  half_life_days: -1\n", encoding="utf-8")

    assert load_policy(tmp_path / "absent.yml") == FeedbackPolicy()
    assert load_policy(broken) == FeedbackPolicy()
    assert load_policy(negative) == FeedbackPolicy()
    assert load_policy(None) == FeedbackPolicy()


def test_settings_village_multipliers_merge_over_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "policy.yml"
    path.write_text("votes:\n  village_multipliers:\n    tulum: 1.25\n    cancun: 1.1\n", encoding="utf-8")
    monkeypatch.setattr(settings, "feedback_policy_path", str(path))
    monkeypatch.setattr(settings, "village_priority_multipliers", {"cancun": 1.5})

    policy = container.load_default_policy()

    assert policy.votes.village_multipliers == {"tulum": 1.25, "cancun": 1.5}


def test_multiplier_setting_accepts_pairs_and_json() -> None:
    assert Settings(VILLAGE_PRIORITY_MULTIPLIERS="cancun=1.5, tulum=0.8").village_priority_multipliers == {
        "cancun": 1.5,
        "tulum": 0.8,
    }
    assert Settings(VILLAGE_PRIORITY_MULTIPLIERS='{"cancun": 2}').village_priority_multipliers == {"cancun": 2.0}
