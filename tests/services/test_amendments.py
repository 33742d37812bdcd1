import pytest

from coopgov.backend.models import AmendmentKind, AmendmentStatus
from coopgov.lib.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from coopgov.services.amendments import AmendmentWorkflow, normalize_section_changes
from conftest import ADMIN, COOP_ID, PROPOSER, seed_config


@pytest.fixture
def workflow(backend, config_store, locks) -> AmendmentWorkflow:
    seed_config(backend)
    return AmendmentWorkflow(backend, config_store, locks=locks)


@pytest.mark.asyncio
async def test_propose_config_amendment_snapshots_current_values(workflow):
    amendment = await workflow.propose_config_amendment(
        COOP_ID, "voting_rules", {"quorum_percent": 25}, "More participation", ADMIN
    )

    assert amendment.status == AmendmentStatus.PENDING
    assert amendment.kind == AmendmentKind.CONFIG
    assert amendment.proposed_changes == {"quorum_percent": 25.0}
    assert amendment.current_snapshot == {"quorum_percent": 15.0}
    assert amendment.proposed_by == ADMIN.wallet_address


@pytest.mark.asyncio
async def test_new_amendment_supersedes_pending_one(workflow):
    first = await workflow.propose_config_amendment(
        COOP_ID, "voting_rules", {"quorum_percent": 25}, "First", ADMIN
    )
    second = await workflow.propose_config_amendment(
        COOP_ID, "voting_rules", {"quorum_percent": 20}, "Second", ADMIN
    )

    pending = workflow.get_pending(COOP_ID, section="voting_rules")
    assert [a.id for a in pending] == [second.id]
    assert workflow.get_amendment(first.id).status == AmendmentStatus.SUPERSEDED


@pytest.mark.asyncio
async def test_other_sections_stay_pending(workflow):
    await workflow.propose_config_amendment(
        COOP_ID, "voting_rules", {"quorum_percent": 25}, "Quorum", ADMIN
    )
    await workflow.propose_charter_amendment(COOP_ID, "New charter", "Refresh", ADMIN)

    assert len(workflow.get_pending(COOP_ID)) == 2
    assert len(workflow.get_pending(COOP_ID, kind=AmendmentKind.CHARTER)) == 1


@pytest.mark.asyncio
async def test_acknowledge_applies_changes_as_new_version(workflow, config_store):
    amendment = await workflow.propose_config_amendment(
        COOP_ID, "voting_rules", {"quorum_percent": 25}, "More participation", ADMIN
    )

    result = await workflow.acknowledge(amendment.id, COOP_ID, ADMIN)

    assert result.amendment.status == AmendmentStatus.ACKNOWLEDGED
    assert result.amendment.reviewed_by == ADMIN.wallet_address
    assert result.config.version == 2
    assert result.config.quorum_percent == 25
    assert config_store.require_active(COOP_ID).quorum_percent == 25

    stored = workflow.get_amendment(amendment.id)
    assert stored.status == AmendmentStatus.ACKNOWLEDGED
    audit = config_store.get_audit_trail(COOP_ID).entries[0]
    assert audit.amendment_id == amendment.id
    assert str(amendment.id) in audit.reason


@pytest.mark.asyncio
async def test_acknowledge_charter_amendment(workflow, config_store):
    amendment = await workflow.propose_charter_amendment(
        COOP_ID, "We fund community-owned energy.", "Focus", ADMIN
    )
    assert amendment.current_text

    result = await workflow.acknowledge(amendment.id, COOP_ID, ADMIN)

    assert result.config.charter_text == "We fund community-owned energy."
    assert config_store.require_active(COOP_ID).version == 2


@pytest.mark.asyncio
async def test_acknowledge_twice_conflicts(workflow):
    amendment = await workflow.propose_config_amendment(
        COOP_ID, "voting_rules", {"quorum_percent": 25}, "Quorum", ADMIN
    )
    await workflow.acknowledge(amendment.id, COOP_ID, ADMIN)

    with pytest.raises(ConflictError):
        await workflow.acknowledge(amendment.id, COOP_ID, ADMIN)


@pytest.mark.asyncio
async def test_acknowledge_requires_admin(workflow, config_store):
    amendment = await workflow.propose_config_amendment(
        COOP_ID, "voting_rules", {"quorum_percent": 25}, "Quorum", ADMIN
    )

    with pytest.raises(ForbiddenError):
        await workflow.acknowledge(amendment.id, COOP_ID, PROPOSER)
    assert config_store.require_active(COOP_ID).version == 1


@pytest.mark.asyncio
async def test_reject_leaves_config_untouched(workflow, config_store):
    amendment = await workflow.propose_config_amendment(
        COOP_ID, "voting_rules", {"quorum_percent": 25}, "Quorum", ADMIN
    )

    rejected = await workflow.reject(amendment.id, "Too high", ADMIN, coop_id=COOP_ID)

    assert rejected.status == AmendmentStatus.REJECTED
    assert rejected.review_reason == "Too high"
    assert config_store.require_active(COOP_ID).version == 1
    with pytest.raises(ConflictError):
        await workflow.reject(amendment.id, "Again", ADMIN)


@pytest.mark.asyncio
async def test_amendment_for_other_coop_not_found(workflow):
    amendment = await workflow.propose_config_amendment(
        COOP_ID, "voting_rules", {"quorum_percent": 25}, "Quorum", ADMIN
    )

    with pytest.raises(NotFoundError):
        await workflow.acknowledge(amendment.id, "other-coop", ADMIN)


@pytest.mark.asyncio
async def test_propose_requires_reason(workflow):
    with pytest.raises(InvalidInputError):
        await workflow.propose_config_amendment(
            COOP_ID, "voting_rules", {"quorum_percent": 25}, "  ", ADMIN
        )


def test_normalize_rejects_unknown_section():
    with pytest.raises(InvalidInputError):
        normalize_section_changes("treasury", {"quorum_percent": 10})


def test_normalize_rejects_fields_outside_section():
    with pytest.raises(InvalidInputError) as exc_info:
        normalize_section_changes("voting_rules", {"structural_gate": 0.5})
    assert exc_info.value.details["fields"] == ["structural_gate"]


def test_normalize_rejects_invalid_values():
    with pytest.raises(InvalidInputError):
        normalize_section_changes("voting_rules", {"quorum_percent": 150})


def test_normalize_rejects_empty_changes():
    with pytest.raises(InvalidInputError):
        normalize_section_changes("voting_rules", {})
