from unittest.mock import AsyncMock, patch

import pytest

from coopgov.backend.models import ProposalMetadata
from coopgov.services.ai.evaluator import (
    LLMProposalEvaluator,
    agent_goals,
    create_evaluation_messages,
)
from coopgov.services.ai.models import (
    CommentAssessment,
    DomainGoalAssessment,
    GoalAssessment,
    ProposalAssessment,
)
from conftest import PROPOSAL_TEXT, make_assessment, seed_config

FINANCE_DESK = {"key": "finance_desk", "label": "Finance Desk", "domain": "finance"}
TRADE_DESK = {
    "key": "trade_desk",
    "label": "Trade Desk",
    "goal_keys": ["export_expansion"],
    "enabled": False,
}


def _structured_responses(primary, agent_scores):
    """Answer invoke_structured per requested schema."""

    async def respond(messages, output_schema, **kwargs):
        if output_schema is ProposalAssessment:
            return primary
        if output_schema is DomainGoalAssessment:
            return DomainGoalAssessment(goal_scores=agent_scores)
        raise AssertionError(f"unexpected schema {output_schema}")

    return respond


def test_agent_goals_by_domain_and_key(backend):
    config = seed_config(backend, scorer_agents=[FINANCE_DESK, TRADE_DESK])
    finance, trade = config.scorer_agents

    assert [g.key for g in agent_goals(finance, config)] == ["income_stability"]
    assert [g.key for g in agent_goals(trade, config)] == ["export_expansion"]


def test_evaluation_messages_include_policy_and_metadata(backend):
    config = seed_config(backend)

    messages = create_evaluation_messages(
        PROPOSAL_TEXT, ProposalMetadata(title="Member Solar"), config
    )

    user_content = messages[1].content
    assert "income_stability" in user_content
    assert "restaurant" in user_content
    assert '"title": "Member Solar"' in user_content
    assert PROPOSAL_TEXT in user_content


@pytest.mark.asyncio
async def test_without_agents_returns_primary_assessment(backend):
    config = seed_config(backend)
    primary = make_assessment()

    with patch(
        "coopgov.services.ai.evaluator.invoke_structured", new_callable=AsyncMock
    ) as mock_invoke:
        mock_invoke.return_value = primary
        result = await LLMProposalEvaluator(model="gpt-test").assess_proposal(
            PROPOSAL_TEXT, ProposalMetadata(), config
        )

    assert result == primary
    mock_invoke.assert_awaited_once()
    assert mock_invoke.call_args.args[1] is ProposalAssessment
    assert mock_invoke.call_args.kwargs["model"] == "gpt-test"


@pytest.mark.asyncio
async def test_agent_scores_replace_owned_goals(backend):
    config = seed_config(
        backend, scorer_agents=[{**FINANCE_DESK, "model": "gpt-finance"}, TRADE_DESK]
    )
    agent_scores = [
        GoalAssessment(goal_id="income_stability", score=0.2, rationale="Thin margins"),
        # Not a finance goal, so the primary score stands
        GoalAssessment(goal_id="asset_creation", score=0.1, rationale="Out of scope"),
    ]

    with patch(
        "coopgov.services.ai.evaluator.invoke_structured",
        side_effect=_structured_responses(make_assessment(), agent_scores),
    ) as mock_invoke:
        result = await LLMProposalEvaluator().assess_proposal(
            PROPOSAL_TEXT, ProposalMetadata(), config
        )

    # The disabled trade desk is never called
    assert mock_invoke.call_count == 2
    assert mock_invoke.call_args_list[1].kwargs["model"] == "gpt-finance"
    scores = {s.goal_id: s for s in result.goal_scores}
    assert len(result.goal_scores) == 4
    assert scores["income_stability"].score == 0.2
    assert scores["income_stability"].rationale == "Finance Desk: Thin margins"
    assert scores["asset_creation"].score == 0.8
    assert scores["export_expansion"].score == 0.8


@pytest.mark.asyncio
async def test_agent_only_goals_are_appended(backend):
    config = seed_config(backend, scorer_agents=[FINANCE_DESK])
    primary = make_assessment()
    primary.goal_scores = [s for s in primary.goal_scores if s.goal_id != "income_stability"]
    agent_scores = [
        GoalAssessment(goal_id="income_stability", score=0.7, rationale="Steady demand")
    ]

    with patch(
        "coopgov.services.ai.evaluator.invoke_structured",
        side_effect=_structured_responses(primary, agent_scores),
    ):
        result = await LLMProposalEvaluator().assess_proposal(
            PROPOSAL_TEXT, ProposalMetadata(), config
        )

    assert [s.goal_id for s in result.goal_scores] == [
        "asset_creation",
        "leakage_reduction",
        "export_expansion",
        "income_stability",
    ]
    assert result.goal_scores[-1].score == 0.7


@pytest.mark.asyncio
async def test_assess_comment_uses_comment_model(backend):
    config = seed_config(backend)
    expected = CommentAssessment(score=0.5, analysis="Neutral.")

    with patch(
        "coopgov.services.ai.evaluator.invoke_structured", new_callable=AsyncMock
    ) as mock_invoke:
        mock_invoke.return_value = expected
        result = await LLMProposalEvaluator(comment_model="gpt-comments").assess_comment(
            "Good plan", "Solar on the warehouse", config
        )

    assert result == expected
    assert mock_invoke.call_args.args[1] is CommentAssessment
    assert mock_invoke.call_args.kwargs["model"] == "gpt-comments"
    assert "Good plan" in mock_invoke.call_args.args[0][1].content
