"""Tests for backend models."""

import pytest
from pydantic import ValidationError

from coopgov.backend.models import (
    CoopConfigBase,
    MissionGoal,
    ProposalStatus,
    ScoreMix,
    SectorExclusion,
    VoteChoice,
    VoteTally,
)


def test_proposal_status_enum():
    """Test ProposalStatus enum values."""
    assert ProposalStatus.SUBMITTED == "submitted"
    assert ProposalStatus.VOTABLE == "votable"
    assert ProposalStatus.WITHDRAWN == "withdrawn"

    # Test string conversion
    assert str(ProposalStatus.APPROVED) == "approved"
    assert str(VoteChoice.ABSTAIN) == "ABSTAIN"


def test_mission_goal_weight_bounds():
    """Priority weights must stay within 0..1."""
    MissionGoal(key="income", label="Income", priority_weight=1.0)
    with pytest.raises(ValidationError):
        MissionGoal(key="income", label="Income", priority_weight=1.5)


def test_score_mix_rejects_all_zero():
    """A score mix with both weights at zero is invalid."""
    with pytest.raises(ValidationError):
        ScoreMix(mission_weight=0.0, structural_weight=0.0)


def test_policy_models_ignore_unknown_keys():
    """Unknown keys inside policy structures are dropped."""
    goal = MissionGoal.model_validate(
        {"key": "income", "label": "Income", "priority_weight": 0.5, "legacy": True}
    )
    assert "legacy" not in goal.model_dump()


def test_sector_exclusion_accepts_bare_string():
    """Exclusions may be given as plain strings."""
    exclusion = SectorExclusion.model_validate("fashion")
    assert exclusion.value == "fashion"
    assert exclusion.description is None


def test_coop_config_rejects_duplicate_goal_keys():
    """Mission goal keys are unique within a config."""
    goal = {"key": "income", "label": "Income", "priority_weight": 0.5}
    with pytest.raises(ValidationError):
        CoopConfigBase(mission_goals=[goal, dict(goal)])


def test_coop_config_partial_update_tracks_set_fields():
    """Only supplied fields are reported as set."""
    fields = CoopConfigBase(quorum_percent=20)
    assert fields.model_dump(exclude_unset=True) == {"quorum_percent": 20.0}


def test_vote_tally_total():
    """The total counts every choice."""
    tally = VoteTally(for_count=2, against_count=1, abstain_count=3)
    assert tally.total == 6
