import asyncio
from uuid import uuid4

import pytest

from coopgov.backend.models import Caller, CommentAlignment, ReactionType
from coopgov.lib.errors import InvalidInputError, NotFoundError
from coopgov.services.ai.models import CommentAssessment
from coopgov.services.ai.scoring import ScoringEngine
from coopgov.services.community import CommunityService, alignment_for
from coopgov.services.identity import BackendTokenLedger
from coopgov.services.proposals import ProposalLifecycle
from conftest import COOP_ID, OTHER_MEMBER, PROPOSAL_TEXT, PROPOSER, seed_config


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
def community(backend, config_store, evaluator) -> CommunityService:
    return CommunityService(backend, config_store, evaluator, timeout_seconds=0.5)


@pytest.mark.parametrize(
    "score, expected",
    [
        (0.9, CommentAlignment.ALIGNED),
        (0.6, CommentAlignment.ALIGNED),
        (0.45, CommentAlignment.NEUTRAL),
        (0.3, CommentAlignment.NEUTRAL),
        (0.1, CommentAlignment.MISALIGNED),
    ],
)
def test_alignment_for(score, expected):
    assert alignment_for(score) == expected


@pytest.mark.asyncio
async def test_comment_gets_ai_evaluation(lifecycle, community):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)

    comment = await community.create_comment(
        OTHER_MEMBER, proposal.id, "  This keeps energy spending local.  "
    )

    assert comment.content == "This keeps energy spending local."
    assert comment.author_wallet == OTHER_MEMBER.wallet_address
    evaluation = comment.ai_evaluation
    assert evaluation.alignment == CommentAlignment.ALIGNED
    assert evaluation.score == 0.75
    # Keys that are not mission goals are dropped
    assert evaluation.goals_impacted == ["income_stability"]

    page = community.list_comments(proposal.id)
    assert page.total == 1
    assert page.items[0].ai_evaluation.id == evaluation.id


@pytest.mark.asyncio
async def test_alignment_derives_from_score_not_label(lifecycle, community, evaluator):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)
    evaluator.comment_assessment = CommentAssessment(
        alignment=CommentAlignment.ALIGNED, score=0.2, analysis="Off topic."
    )

    comment = await community.create_comment(OTHER_MEMBER, proposal.id, "Buy more hats")

    assert comment.ai_evaluation.alignment == CommentAlignment.MISALIGNED


@pytest.mark.asyncio
async def test_comment_survives_evaluation_failure(lifecycle, community, evaluator):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)
    evaluator.comment_error = RuntimeError("model unavailable")

    comment = await community.create_comment(OTHER_MEMBER, proposal.id, "Good plan")

    assert comment.ai_evaluation is None
    assert community.list_comments(proposal.id).total == 1


@pytest.mark.asyncio
async def test_comment_survives_evaluation_timeout(lifecycle, community, evaluator):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)

    async def slow_comment(text, proposal_summary, config):
        await asyncio.sleep(5)

    evaluator.assess_comment = slow_comment

    comment = await community.create_comment(OTHER_MEMBER, proposal.id, "Good plan")

    assert comment.ai_evaluation is None


@pytest.mark.asyncio
async def test_comment_validation(lifecycle, community):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)

    with pytest.raises(InvalidInputError):
        await community.create_comment(OTHER_MEMBER, proposal.id, "   ")
    with pytest.raises(InvalidInputError):
        await community.create_comment(OTHER_MEMBER, proposal.id, "x" * 2001)
    with pytest.raises(NotFoundError):
        await community.create_comment(OTHER_MEMBER, uuid4(), "Hello")


@pytest.mark.asyncio
async def test_list_comments_paging(lifecycle, community):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)
    for index in range(3):
        await community.create_comment(OTHER_MEMBER, proposal.id, f"Comment {index}")

    page = community.list_comments(proposal.id, limit=2)
    assert page.total == 3
    assert [c.content for c in page.items] == ["Comment 2", "Comment 1"]

    with pytest.raises(InvalidInputError):
        community.list_comments(proposal.id, limit=500)


@pytest.mark.asyncio
async def test_reaction_toggle(lifecycle, community):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)

    summary = community.upsert_reaction(OTHER_MEMBER, proposal.id, ReactionType.SUPPORT)
    assert summary.support == 1
    assert summary.my_reaction == ReactionType.SUPPORT

    summary = community.upsert_reaction(OTHER_MEMBER, proposal.id, ReactionType.CONCERN)
    assert summary.support == 0
    assert summary.concern == 1
    assert summary.my_reaction == ReactionType.CONCERN

    summary = community.upsert_reaction(OTHER_MEMBER, proposal.id, ReactionType.CONCERN)
    assert summary.concern == 0
    assert summary.my_reaction is None


@pytest.mark.asyncio
async def test_reactions_are_per_wallet(lifecycle, community):
    proposal = await lifecycle.submit(PROPOSER, COOP_ID, PROPOSAL_TEXT)
    community.upsert_reaction(OTHER_MEMBER, proposal.id, ReactionType.SUPPORT)
    # Same wallet in a different case is the same reactor
    community.upsert_reaction(
        Caller(wallet_address=OTHER_MEMBER.wallet_address.upper()),
        proposal.id,
        ReactionType.SUPPORT,
    )
    community.upsert_reaction(PROPOSER, proposal.id, ReactionType.SUPPORT)

    anonymous = community.get_reactions(proposal.id)
    assert anonymous.support == 1
    assert anonymous.my_reaction is None
