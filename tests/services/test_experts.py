import pytest

from coopgov.backend.models import Caller
from coopgov.lib.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from coopgov.services.ai.scoring import ScoringEngine
from coopgov.services.experts import ExpertService
from coopgov.services.identity import BackendTokenLedger
from coopgov.services.proposals import ProposalLifecycle
from conftest import ADMIN, COOP_ID, PROPOSAL_TEXT, PROPOSER, seed_config

EXPERT = Caller(wallet_address="0xFinanceExpert")


@pytest.fixture
def lifecycle(backend, config_store, evaluator, locks) -> ProposalLifecycle:
    seed_config(backend)
    return ProposalLifecycle(
        backend,
        config_store,
        ScoringEngine(evaluator, max_retries=0),
        BackendTokenLedger(backend),
        locks=locks,
    )


@pytest.fixture
def experts(backend, locks) -> ExpertService:
    service = ExpertService(backend, locks=locks)
    service.assign_expert(ADMIN, EXPERT.wallet_address, "finance")
    return service


def test_assign_expert_requires_admin(experts):
    with pytest.raises(ForbiddenError):
        experts.assign_expert(PROPOSER, "0xsomeone", "trade")


def test_assignments_are_lowercased_and_listed(experts):
    assignments = experts.my_assignments(EXPERT)

    assert [a.domain for a in assignments] == ["finance"]
    assert assignments[0].wallet_address == "0xfinanceexpert"
    assert assignments[0].assigned_by == ADMIN.wallet_address
    assert len(experts.list_assignments(domain="finance")) == 1


def test_revoke_expert(experts):
    revoked = experts.revoke_expert(ADMIN, EXPERT.wallet_address, "finance")

    assert revoked.is_active is False
    assert experts.my_assignments(EXPERT) == []
    assert len(experts.list_assignments(include_inactive=True)) == 1
    with pytest.raises(NotFoundError):
        experts.revoke_expert(ADMIN, EXPERT.wallet_address, "trade")


@pytest.mark.asyncio
async def test_expert_override_updates_adjusted_scores(lifecycle, experts):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)

    updated = await experts.upsert_expert_score(
        EXPERT, proposal.id, 1, "income_stability", 0.4, "Revenue projections are thin"
    )

    assert updated.ai_score == 0.8
    assert updated.expert_score == 0.4
    assert updated.final_score == 0.4
    assert updated.expert_wallet == "0xfinanceexpert"

    log = experts.get_adjustment_log(updated.id)
    assert len(log) == 1
    assert log[0].from_score == 0.8
    assert log[0].to_score == 0.4

    adjusted = lifecycle.get_by_id(proposal.id).adjusted_scores
    assert adjusted.revision_number == 1
    assert adjusted.adjusted_goal_ids == ["income_stability"]
    assert adjusted.mission_weighted_score == pytest.approx(0.66)
    assert adjusted.composite_score == pytest.approx(0.716)
    assert adjusted.passes_threshold is True

    # The stored evaluation is never rewritten
    revision = lifecycle.get_revision(proposal.id, 1)
    assert revision.evaluation.goal_scores[0].score == 0.8
    assert lifecycle.get_by_id(proposal.id).composite_score == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_override_outside_domain_forbidden(lifecycle, experts):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)

    with pytest.raises(ForbiddenError):
        await experts.upsert_expert_score(
            EXPERT, proposal.id, 1, "export_expansion", 0.4, "Not my area at all"
        )


@pytest.mark.asyncio
async def test_override_input_bounds(lifecycle, experts):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)

    with pytest.raises(InvalidInputError):
        await experts.upsert_expert_score(
            EXPERT, proposal.id, 1, "income_stability", 1.4, "Too generous"
        )
    with pytest.raises(InvalidInputError):
        await experts.upsert_expert_score(
            EXPERT, proposal.id, 1, "income_stability", 0.4, "no"
        )
    with pytest.raises(NotFoundError):
        await experts.upsert_expert_score(
            EXPERT, proposal.id, 1, "missing_goal", 0.4, "Unknown goal"
        )


@pytest.mark.asyncio
async def test_override_on_withdrawn_proposal_conflicts(lifecycle, experts):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)
    await lifecycle.withdraw(PROPOSER, proposal.id)

    with pytest.raises(ConflictError):
        await experts.upsert_expert_score(
            EXPERT, proposal.id, 1, "income_stability", 0.4, "Too late now"
        )


@pytest.mark.asyncio
async def test_override_on_older_revision_keeps_current_view(lifecycle, experts):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)
    await lifecycle.resubmit(PROPOSER, proposal.id, PROPOSAL_TEXT + " Revised.")

    await experts.upsert_expert_score(
        EXPERT, proposal.id, 1, "income_stability", 0.4, "Scoring the first draft"
    )

    assert lifecycle.get_by_id(proposal.id).adjusted_scores is None
    latest = experts.get_goal_scores(proposal.id)
    assert all(score.expert_score is None for score in latest)
    original = experts.get_goal_scores(proposal.id, revision_number=1)
    assert any(score.expert_score == 0.4 for score in original)


@pytest.mark.asyncio
async def test_resubmit_clears_adjusted_scores(lifecycle, experts):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)
    await experts.upsert_expert_score(
        EXPERT, proposal.id, 1, "income_stability", 0.4, "Revenue projections are thin"
    )

    revised = await lifecycle.resubmit(PROPOSER, proposal.id, PROPOSAL_TEXT + " Revised.")

    assert revised.adjusted_scores is None


@pytest.mark.asyncio
async def test_expert_queue(lifecycle, experts):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)
    withdrawn = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)
    await lifecycle.withdraw(PROPOSER, withdrawn.id)

    queue = experts.get_expert_queue(EXPERT, coop_id=COOP_ID)
    assert [item.proposal.id for item in queue] == [proposal.id]
    assert queue[0].pending_goal_ids == ["income_stability"]
    assert queue[0].revision_number == 1

    await experts.upsert_expert_score(
        EXPERT, proposal.id, 1, "income_stability", 0.9, "Strong member demand"
    )
    assert experts.get_expert_queue(EXPERT, coop_id=COOP_ID) == []
    assert experts.get_expert_queue(PROPOSER) == []


@pytest.mark.asyncio
async def test_goal_scores_for_revision_zero_not_found(lifecycle, experts):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)

    assert len(experts.get_goal_scores(proposal.id)) == 4
    with pytest.raises(NotFoundError):
        experts.get_goal_scores(proposal.id, revision_number=0)
