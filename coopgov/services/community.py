"""Community comments and reactions on proposals."""

import asyncio
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from coopgov.backend.abstract import AbstractBackend
from coopgov.backend.models import (
    Caller,
    Comment,
    CommentAlignment,
    CommentCreate,
    CommentEvaluationCreate,
    Proposal,
    ReactionSummary,
    ReactionType,
)
from coopgov.config import config as app_config
from coopgov.lib.errors import InvalidInputError, NotFoundError
from coopgov.lib.logger import configure_logger
from coopgov.services.ai.evaluator import AbstractProposalEvaluator
from coopgov.services.config_store import ConfigStore

logger = configure_logger(__name__)

ALIGNED_THRESHOLD = 0.6
NEUTRAL_THRESHOLD = 0.3


class CommentPage(BaseModel):
    items: List[Comment] = Field(default_factory=list)
    total: int = 0
    limit: int
    offset: int


def alignment_for(score: float) -> CommentAlignment:
    if score >= ALIGNED_THRESHOLD:
        return CommentAlignment.ALIGNED
    if score >= NEUTRAL_THRESHOLD:
        return CommentAlignment.NEUTRAL
    return CommentAlignment.MISALIGNED


class CommunityService:
    def __init__(
        self,
        backend: AbstractBackend,
        config_store: ConfigStore,
        evaluator: AbstractProposalEvaluator,
        timeout_seconds: Optional[float] = None,
    ):
        self.backend = backend
        self.config_store = config_store
        self.evaluator = evaluator
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else app_config.scoring.comment_timeout_seconds
        )

    def _get_proposal(self, proposal_id: UUID) -> Proposal:
        proposal = self.backend.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", {"proposal_id": str(proposal_id)})
        return proposal

    async def create_comment(
        self, caller: Caller, proposal_id: UUID, content: str
    ) -> Comment:
        """Persist a comment, then attach an AI alignment evaluation when one can be made.

        Evaluation is best effort: a failure is logged and the comment is
        returned without an evaluation.
        """
        content = (content or "").strip()
        max_length = app_config.governance.comment_max_length
        if not content or len(content) > max_length:
            raise InvalidInputError(
                f"Comment must be 1..{max_length} characters", {"length": len(content)}
            )
        proposal = self._get_proposal(proposal_id)
        comment = self.backend.create_comment(
            CommentCreate(
                proposal_id=proposal_id,
                author_wallet=caller.wallet_address,
                content=content,
            )
        )
        logger.info(
            "Created comment",
            extra={"proposal_id": str(proposal_id), "comment_id": str(comment.id)},
        )

        try:
            config = self.config_store.require_active(proposal.coop_id)
            assessment = await asyncio.wait_for(
                self.evaluator.assess_comment(
                    content, proposal.summary or proposal.title or "", config
                ),
                timeout=self.timeout_seconds,
            )
            goal_keys = set(config.goal_keys())
            evaluation = self.backend.create_comment_evaluation(
                CommentEvaluationCreate(
                    comment_id=comment.id,
                    alignment=alignment_for(assessment.score),
                    score=assessment.score,
                    analysis=assessment.analysis,
                    goals_impacted=[
                        key for key in assessment.goals_impacted if key in goal_keys
                    ],
                )
            )
            comment = comment.model_copy(update={"ai_evaluation": evaluation})
        except Exception as e:
            logger.warning(
                f"Comment evaluation failed: {str(e)}",
                extra={
                    "comment_id": str(comment.id),
                    "error_type": type(e).__name__,
                },
            )
        return comment

    def list_comments(self, proposal_id: UUID, limit: int = 20, offset: int = 0) -> CommentPage:
        if limit < 1 or limit > 100 or offset < 0:
            raise InvalidInputError(
                "limit must be 1..100 and offset non-negative",
                {"limit": limit, "offset": offset},
            )
        self._get_proposal(proposal_id)
        items, total = self.backend.list_comments(proposal_id, limit, offset)
        return CommentPage(items=items, total=total, limit=limit, offset=offset)

    def upsert_reaction(
        self, caller: Caller, proposal_id: UUID, reaction: ReactionType
    ) -> ReactionSummary:
        """Set the caller's reaction; repeating the same reaction removes it."""
        reaction = ReactionType(reaction)
        self._get_proposal(proposal_id)
        wallet_address = caller.wallet_address.lower()
        existing = self.backend.get_reaction(proposal_id, wallet_address)
        if existing is not None and existing.reaction == reaction:
            self.backend.delete_reaction(proposal_id, wallet_address)
        else:
            self.backend.upsert_reaction(proposal_id, wallet_address, reaction)
        return self.get_reactions(proposal_id, caller)

    def get_reactions(
        self, proposal_id: UUID, caller: Optional[Caller] = None
    ) -> ReactionSummary:
        counts = self.backend.count_reactions(proposal_id)
        mine = None
        if caller is not None:
            existing = self.backend.get_reaction(proposal_id, caller.wallet_address.lower())
            mine = existing.reaction if existing else None
        return ReactionSummary(
            support=counts.get(ReactionType.SUPPORT, 0),
            concern=counts.get(ReactionType.CONCERN, 0),
            my_reaction=mine,
        )
