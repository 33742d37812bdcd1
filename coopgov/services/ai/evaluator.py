"""AI text-evaluation collaborator.

`AbstractProposalEvaluator` is the contract the scoring engine and the
comment service depend on. `LLMProposalEvaluator` fulfils it with
structured ChatOpenAI calls: one primary call per proposal plus one call per
enabled scorer agent, whose scores replace the primary call's for the goals
the agent owns.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from coopgov.backend.models import (
    CoopConfig,
    MissionGoal,
    ProposalMetadata,
    ScorerAgent,
)
from coopgov.config import config as app_config
from coopgov.lib.logger import configure_logger
from coopgov.services.ai.llm import invoke_structured
from coopgov.services.ai.models import (
    CommentAssessment,
    DomainGoalAssessment,
    GoalAssessment,
    ProposalAssessment,
)
from coopgov.services.ai.prompts import (
    COMMENT_SYSTEM_PROMPT,
    COMMENT_USER_PROMPT_TEMPLATE,
    EVALUATION_SYSTEM_PROMPT,
    EVALUATION_USER_PROMPT_TEMPLATE,
    SCORER_AGENT_SYSTEM_PROMPT,
    SCORER_AGENT_USER_PROMPT_TEMPLATE,
)

logger = configure_logger(__name__)


class AbstractProposalEvaluator(ABC):
    @abstractmethod
    async def assess_proposal(
        self, text: str, metadata: ProposalMetadata, config: CoopConfig
    ) -> ProposalAssessment:
        """Score a proposal against the coop's goals and structural dimensions."""
        pass

    @abstractmethod
    async def assess_comment(
        self, text: str, proposal_summary: str, config: CoopConfig
    ) -> CommentAssessment:
        """Judge how well a community comment aligns with the coop's goals."""
        pass


def format_mission_goals(goals: List[MissionGoal]) -> str:
    lines = []
    for goal in goals:
        line = f"- {goal.key} ({goal.label}, weight {goal.priority_weight:.2f}"
        if goal.domain:
            line += f", domain {goal.domain}"
        line += ")"
        if goal.description:
            line += f": {goal.description}"
        lines.append(line)
    return "\n".join(lines) or "- none"


def format_categories(config: CoopConfig) -> str:
    return (
        "\n".join(
            f"- {c.key}: {c.label}" for c in config.proposal_categories or [] if c.is_active
        )
        or "- none"
    )


def format_exclusions(config: CoopConfig) -> str:
    lines = []
    for exclusion in config.sector_exclusions or []:
        line = f"- {exclusion.value}"
        if exclusion.description:
            line += f" ({exclusion.description})"
        lines.append(line)
    return "\n".join(lines) or "- none"


def agent_goals(agent: ScorerAgent, config: CoopConfig) -> List[MissionGoal]:
    """Goals a scorer agent owns: listed by key, or sharing the agent's domain."""
    return [
        goal
        for goal in config.mission_goals or []
        if goal.key in agent.goal_keys or (agent.domain and goal.domain == agent.domain)
    ]


def create_evaluation_messages(
    text: str, metadata: ProposalMetadata, config: CoopConfig
) -> List[BaseMessage]:
    """Create the chat messages for the primary proposal evaluation call."""
    supplied = metadata.model_dump(exclude_none=True, mode="json")
    user_content = EVALUATION_USER_PROMPT_TEMPLATE.format(
        charter_text=config.charter_text or "",
        mission_goals=format_mission_goals(config.mission_goals or []),
        categories=format_categories(config),
        exclusions=format_exclusions(config),
        metadata=json.dumps(supplied, indent=2) if supplied else "none supplied",
        proposal_text=text,
    )
    return [
        SystemMessage(content=EVALUATION_SYSTEM_PROMPT),
        HumanMessage(content=user_content),
    ]


def create_scorer_agent_messages(
    agent: ScorerAgent, goals: List[MissionGoal], text: str
) -> List[BaseMessage]:
    system_content = SCORER_AGENT_SYSTEM_PROMPT.format(
        agent_label=agent.label,
        domain_clause=f" specialising in {agent.domain}" if agent.domain else "",
        instructions=agent.instructions or "",
    )
    user_content = SCORER_AGENT_USER_PROMPT_TEMPLATE.format(
        mission_goals=format_mission_goals(goals), proposal_text=text
    )
    return [SystemMessage(content=system_content), HumanMessage(content=user_content)]


class LLMProposalEvaluator(AbstractProposalEvaluator):
    """Evaluator backed by ChatOpenAI structured output."""

    def __init__(
        self,
        model: Optional[str] = None,
        comment_model: Optional[str] = None,
        temperature: Optional[float] = None,
    ):
        self.model = model
        self.comment_model = comment_model or app_config.chat_llm.comment_model
        self.temperature = temperature

    async def assess_proposal(
        self, text: str, metadata: ProposalMetadata, config: CoopConfig
    ) -> ProposalAssessment:
        messages = create_evaluation_messages(text, metadata, config)
        assessment = await invoke_structured(
            messages,
            ProposalAssessment,
            model=self.model,
            temperature=self.temperature,
        )

        agents = [
            (agent, agent_goals(agent, config))
            for agent in config.scorer_agents or []
            if agent.enabled
        ]
        agents = [(agent, goals) for agent, goals in agents if goals]
        if not agents:
            return assessment

        results = await asyncio.gather(
            *[self._run_scorer_agent(agent, goals, text) for agent, goals in agents]
        )
        overrides: Dict[str, GoalAssessment] = {}
        for (agent, goals), result in zip(agents, results):
            owned = {goal.key for goal in goals}
            for score in result.goal_scores:
                if score.goal_id in owned:
                    overrides[score.goal_id] = score.model_copy(
                        update={"rationale": f"{agent.label}: {score.rationale}"}
                    )

        logger.debug(
            "Scorer agents re-scored goals",
            extra={"agents": len(agents), "goals": ",".join(sorted(overrides))},
        )
        merged = [overrides.pop(s.goal_id, s) for s in assessment.goal_scores]
        # Goals the primary call skipped but an agent covered
        merged.extend(overrides.values())
        return assessment.model_copy(update={"goal_scores": merged})

    async def _run_scorer_agent(
        self, agent: ScorerAgent, goals: List[MissionGoal], text: str
    ) -> DomainGoalAssessment:
        return await invoke_structured(
            create_scorer_agent_messages(agent, goals, text),
            DomainGoalAssessment,
            model=agent.model or self.model,
            temperature=self.temperature,
        )

    async def assess_comment(
        self, text: str, proposal_summary: str, config: CoopConfig
    ) -> CommentAssessment:
        user_content = COMMENT_USER_PROMPT_TEMPLATE.format(
            mission_goals=format_mission_goals(config.mission_goals or []),
            proposal_summary=proposal_summary or "",
            comment_text=text,
        )
        return await invoke_structured(
            [SystemMessage(content=COMMENT_SYSTEM_PROMPT), HumanMessage(content=user_content)],
            CommentAssessment,
            model=self.comment_model,
            temperature=self.temperature,
        )
