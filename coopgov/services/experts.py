"""Domain experts and their overrides of AI goal scores."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from coopgov.backend.abstract import AbstractBackend
from coopgov.backend.models import (
    AdjustedScores,
    Caller,
    ExpertAssignment,
    ExpertAssignmentCreate,
    ExpertAssignmentFilter,
    GoalScore,
    MissionGoal,
    Proposal,
    ProposalBase,
    ProposalFilter,
    ProposalRevision,
    ProposalStatus,
    ScoreAdjustment,
    ScoreAdjustmentCreate,
)
from coopgov.config import config as app_config
from coopgov.lib.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from coopgov.lib.locks import KeyedLock, keyed_lock
from coopgov.lib.logger import configure_logger
from coopgov.services.access import require_admin
from coopgov.services.ai.scoring import composite_score, weighted_mission_score

logger = configure_logger(__name__)

# Proposals in these statuses no longer accept expert overrides
CLOSED_STATUSES = frozenset(
    [ProposalStatus.WITHDRAWN, ProposalStatus.REJECTED, ProposalStatus.FAILED]
)

QUEUE_STATUSES = [ProposalStatus.SUBMITTED, ProposalStatus.VOTABLE]
QUEUE_PAGE_SIZE = 100


class ExpertQueueItem(BaseModel):
    proposal: Proposal
    revision_number: int
    pending_goal_ids: List[str] = Field(default_factory=list)


def adjusted_scores_for(
    revision: ProposalRevision, goal_scores: List[GoalScore]
) -> AdjustedScores:
    """Recompute a revision's mission and composite scores from final goal scores."""
    evaluation = revision.evaluation
    final = {score.goal_id: score.final_score for score in goal_scores}
    goals = [
        MissionGoal(key=g.goal_id, label=g.label, priority_weight=g.weight)
        for g in evaluation.goal_scores
    ]
    mission = weighted_mission_score(
        {g.goal_id: final.get(g.goal_id, g.score) for g in evaluation.goal_scores},
        goals,
    )
    composite = composite_score(
        mission, evaluation.structural_weighted_score, evaluation.score_mix
    )
    return AdjustedScores(
        revision_number=revision.revision_number,
        mission_weighted_score=round(mission, 4),
        composite_score=round(composite, 4),
        passes_threshold=composite >= evaluation.thresholds.screening_pass_threshold,
        adjusted_goal_ids=[s.goal_id for s in goal_scores if s.expert_score is not None],
        updated_at=datetime.now(timezone.utc),
    )


class ExpertService:
    def __init__(self, backend: AbstractBackend, locks: KeyedLock = keyed_lock):
        self.backend = backend
        self.locks = locks

    # ----------------------------------------------------------------
    # Assignments
    # ----------------------------------------------------------------
    def assign_expert(self, caller: Caller, wallet_address: str, domain: str) -> ExpertAssignment:
        require_admin(caller, "assign experts")
        domain = (domain or "").strip()
        if not wallet_address or not domain:
            raise InvalidInputError("Wallet address and domain are required")
        assignment = self.backend.upsert_expert_assignment(
            ExpertAssignmentCreate(
                wallet_address=wallet_address.lower(),
                domain=domain,
                assigned_by=caller.wallet_address,
            )
        )
        logger.info(
            "Assigned expert",
            extra={"wallet_address": assignment.wallet_address, "domain": domain},
        )
        return assignment

    def revoke_expert(self, caller: Caller, wallet_address: str, domain: str) -> ExpertAssignment:
        require_admin(caller, "revoke experts")
        assignment = self.backend.deactivate_expert_assignment(
            wallet_address.lower(), domain
        )
        if assignment is None:
            raise NotFoundError(
                "Expert assignment not found",
                {"wallet_address": wallet_address, "domain": domain},
            )
        logger.info(
            "Revoked expert",
            extra={"wallet_address": assignment.wallet_address, "domain": domain},
        )
        return assignment

    def list_assignments(
        self, domain: Optional[str] = None, include_inactive: bool = False
    ) -> List[ExpertAssignment]:
        return self.backend.list_expert_assignments(
            ExpertAssignmentFilter(
                domain=domain, is_active=None if include_inactive else True
            )
        )

    def my_assignments(self, caller: Caller) -> List[ExpertAssignment]:
        return self.backend.list_expert_assignments(
            ExpertAssignmentFilter(
                wallet_address=caller.wallet_address.lower(), is_active=True
            )
        )

    def _domains_for(self, caller: Caller) -> List[str]:
        return [a.domain for a in self.my_assignments(caller)]

    # ----------------------------------------------------------------
    # Goal scores
    # ----------------------------------------------------------------
    def _get_proposal(self, proposal_id: UUID) -> Proposal:
        proposal = self.backend.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", {"proposal_id": str(proposal_id)})
        return proposal

    def get_goal_scores(
        self, proposal_id: UUID, revision_number: Optional[int] = None
    ) -> List[GoalScore]:
        """Goal scores of a revision, the latest one by default."""
        proposal = self._get_proposal(proposal_id)
        if revision_number is None:
            revision_number = proposal.current_revision
        if self.backend.get_revision(proposal_id, revision_number) is None:
            raise NotFoundError(
                "Revision not found",
                {"proposal_id": str(proposal_id), "revision_number": revision_number},
            )
        return self.backend.list_goal_scores(proposal_id, revision_number)

    def get_adjustment_log(self, goal_score_id: UUID) -> List[ScoreAdjustment]:
        return self.backend.list_score_adjustments(goal_score_id)

    def _check_override(self, score: float, reason: str) -> str:
        if score is None or score < 0.0 or score > 1.0:
            raise InvalidInputError("Expert score must be between 0 and 1", {"score": score})
        reason = (reason or "").strip()
        min_length = app_config.governance.expert_reason_min_length
        max_length = app_config.governance.expert_reason_max_length
        if len(reason) < min_length or len(reason) > max_length:
            raise InvalidInputError(
                f"Reason must be {min_length}..{max_length} characters",
                {"length": len(reason)},
            )
        return reason

    async def upsert_expert_score(
        self,
        caller: Caller,
        proposal_id: UUID,
        revision_number: int,
        goal_id: str,
        score: float,
        reason: str,
    ) -> GoalScore:
        """Override the AI score of one goal with an expert's score.

        The revision itself is never modified; when the revision is the
        latest, the proposal's adjusted scores are refreshed.

        Raises:
            InvalidInputError: If the score or reason is out of bounds
            NotFoundError: If the proposal, revision or goal score does not exist
            ForbiddenError: If the caller is not an active expert for the goal's domain
            ConflictError: If the proposal is withdrawn, rejected or failed
        """
        reason = self._check_override(score, reason)
        async with self.locks.hold("proposal", proposal_id):
            proposal = self._get_proposal(proposal_id)
            if proposal.status in CLOSED_STATUSES:
                raise ConflictError(
                    f"Cannot adjust scores of a {proposal.status} proposal",
                    {"proposal_id": str(proposal_id), "status": str(proposal.status)},
                )
            goal_score = self.backend.get_goal_score(proposal_id, revision_number, goal_id)
            if goal_score is None:
                raise NotFoundError(
                    "Goal score not found",
                    {
                        "proposal_id": str(proposal_id),
                        "revision_number": revision_number,
                        "goal_id": goal_id,
                    },
                )
            if not goal_score.domain or goal_score.domain not in self._domains_for(caller):
                raise ForbiddenError(
                    f"Not an assigned expert for domain {goal_score.domain}",
                    {"wallet_address": caller.wallet_address, "goal_id": goal_id},
                )

            updated = self.backend.apply_expert_score(
                goal_score.id,
                score,
                caller.wallet_address.lower(),
                reason,
                ScoreAdjustmentCreate(
                    goal_score_id=goal_score.id,
                    from_score=goal_score.final_score,
                    to_score=score,
                    reason=reason,
                    expert_wallet=caller.wallet_address.lower(),
                ),
            )

            if revision_number == proposal.current_revision:
                revision = self.backend.get_revision(proposal_id, revision_number)
                adjusted = adjusted_scores_for(
                    revision, self.backend.list_goal_scores(proposal_id, revision_number)
                )
                self.backend.update_proposal(
                    proposal_id, ProposalBase(adjusted_scores=adjusted)
                )

        logger.info(
            "Applied expert score",
            extra={
                "proposal_id": str(proposal_id),
                "revision_number": revision_number,
                "goal_id": goal_id,
                "from_score": goal_score.final_score,
                "to_score": score,
            },
        )
        return updated

    def get_expert_queue(
        self, caller: Caller, coop_id: Optional[str] = None
    ) -> List[ExpertQueueItem]:
        """Open proposals whose latest revision has unreviewed goals in the caller's domains."""
        domains = set(self._domains_for(caller))
        if not domains:
            return []

        filters = ProposalFilter(coop_id=coop_id, statuses=QUEUE_STATUSES)
        queue: List[ExpertQueueItem] = []
        offset = 0
        while True:
            page, total = self.backend.list_proposals(filters, QUEUE_PAGE_SIZE, offset)
            for proposal in page:
                if not proposal.current_revision:
                    continue
                pending = [
                    s.goal_id
                    for s in self.backend.list_goal_scores(
                        proposal.id, proposal.current_revision
                    )
                    if s.domain in domains and s.expert_score is None
                ]
                if pending:
                    queue.append(
                        ExpertQueueItem(
                            proposal=proposal,
                            revision_number=proposal.current_revision,
                            pending_goal_ids=pending,
                        )
                    )
            offset += len(page)
            if not page or offset >= total:
                break
        return queue
