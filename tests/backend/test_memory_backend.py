"""Tests for the in-memory backend's transactional guarantees."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from coopgov.backend.memory import MemoryBackend
from coopgov.backend.models import (
    AmendmentCreate,
    AmendmentKind,
    AmendmentReview,
    AmendmentStatus,
    CoopConfigAuditCreate,
    CoopConfigCreate,
    ProposalBase,
    ProposalStatus,
    ReactionType,
)
from coopgov.lib.errors import ConflictError
from coopgov.services.config_defaults import default_policy


def _config(version: int = 1, **overrides) -> CoopConfigCreate:
    return CoopConfigCreate(
        coop_id="soulaan", version=version, **{**default_policy(), **overrides}
    )


def _audit(version: int) -> CoopConfigAuditCreate:
    return CoopConfigAuditCreate(
        coop_id="soulaan", config_version=version, changed_by="0xadmin1", reason="test"
    )


def test_create_coop_config_rejects_second_active():
    backend = MemoryBackend()
    backend.create_coop_config(_config())

    with pytest.raises(ConflictError):
        backend.create_coop_config(_config(version=2))


def test_replace_active_keeps_single_active_version():
    backend = MemoryBackend()
    first = backend.create_coop_config(_config())

    second = backend.replace_active_coop_config(first.id, _config(2), _audit(2))

    versions = backend.list_coop_configs("soulaan")
    assert [c.version for c in versions] == [1, 2]
    assert [c.is_active for c in versions] == [False, True]
    assert backend.get_active_coop_config("soulaan").id == second.id
    audits, total = backend.list_coop_config_audits("soulaan", 10, 0)
    assert total == 1
    assert audits[0].coop_config_id == second.id


def test_replace_active_with_stale_id_writes_nothing():
    """A stale current id fails without deactivating anything."""
    backend = MemoryBackend()
    first = backend.create_coop_config(_config())
    backend.replace_active_coop_config(first.id, _config(2), _audit(2))

    with pytest.raises(ConflictError):
        backend.replace_active_coop_config(first.id, _config(3), _audit(3))

    assert backend.get_active_coop_config("soulaan").version == 2
    assert len(backend.list_coop_configs("soulaan")) == 2
    assert backend.list_coop_config_audits("soulaan", 10, 0)[1] == 1


def test_replace_active_requires_pending_amendment():
    """An amendment reviewed elsewhere blocks the whole write."""
    backend = MemoryBackend()
    first = backend.create_coop_config(_config())
    amendment, _ = backend.supersede_and_insert_amendment(
        AmendmentCreate(
            coop_id="soulaan",
            kind=AmendmentKind.CONFIG,
            section="voting_rules",
            proposed_changes={"quorum_percent": 20.0},
            reason="raise quorum",
            proposed_by="0xadmin1",
        ),
        reviewed_by="0xadmin1",
        reviewed_at=datetime.now(timezone.utc),
    )
    review = AmendmentReview(
        status=AmendmentStatus.REJECTED,
        reviewed_by="0xadmin2",
        reviewed_at=datetime.now(timezone.utc),
    )
    backend.review_amendment(amendment.id, AmendmentStatus.PENDING, review)

    with pytest.raises(ConflictError):
        backend.replace_active_coop_config(
            first.id,
            _config(2, quorum_percent=20.0),
            _audit(2),
            amendment_review=(amendment.id, review),
        )

    assert backend.get_active_coop_config("soulaan").id == first.id


def test_update_missing_proposal_returns_none():
    """Updating an unknown proposal is a no-op."""
    backend = MemoryBackend()
    assert (
        backend.update_proposal(uuid4(), ProposalBase(status=ProposalStatus.VOTABLE))
        is None
    )


def test_reactions_toggle_and_count():
    backend = MemoryBackend()
    proposal_id = uuid4()

    backend.upsert_reaction(proposal_id, "0xa", ReactionType.SUPPORT)
    backend.upsert_reaction(proposal_id, "0xb", ReactionType.CONCERN)
    backend.upsert_reaction(proposal_id, "0xb", ReactionType.SUPPORT)

    counts = backend.count_reactions(proposal_id)
    assert counts[ReactionType.SUPPORT] == 2
    assert counts[ReactionType.CONCERN] == 0
    assert backend.delete_reaction(proposal_id, "0xa") is True
    assert backend.delete_reaction(proposal_id, "0xa") is False


def test_sc_balance_is_case_insensitive():
    backend = MemoryBackend()
    backend.set_sc_balance("soulaan", "0xABC", 25.0)

    assert backend.get_sc_balance("soulaan", "0xabc") == 25.0
    assert backend.get_sc_balance("soulaan", "0xdef") == 0.0
