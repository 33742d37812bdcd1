from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from coopgov.backend.models import (
    Amendment,
    AmendmentCreate,
    AmendmentFilter,
    AmendmentReview,
    AmendmentStatus,
    Comment,
    CommentCreate,
    CommentEvaluation,
    CommentEvaluationCreate,
    CoopConfig,
    CoopConfigAudit,
    CoopConfigAuditCreate,
    CoopConfigCreate,
    CouncilVote,
    CouncilVoteCreate,
    ExpertAssignment,
    ExpertAssignmentCreate,
    ExpertAssignmentFilter,
    GoalScore,
    GoalScoreCreate,
    Proposal,
    ProposalBase,
    ProposalCreate,
    ProposalFilter,
    ProposalRevision,
    ProposalRevisionCreate,
    ProposalStatus,
    Reaction,
    ReactionType,
    ScoreAdjustment,
    ScoreAdjustmentCreate,
)


class AbstractBackend(ABC):
    # ----------- HELPERS -----------
    @abstractmethod
    def verify_session_token(self, token: str) -> Optional[str]:
        """Resolve a session token to the caller's wallet address, or None."""
        pass

    @abstractmethod
    def get_sc_balance(self, coop_id: str, wallet_address: str) -> float:
        """Read the caller's SC balance as published by the token ledger."""
        pass

    # ----------- COOP CONFIGS -----------
    @abstractmethod
    def create_coop_config(self, new_config: CoopConfigCreate) -> CoopConfig:
        """Insert the first active config for a coop.

        Raises:
            ConflictError: If the coop already has an active config
        """
        pass

    @abstractmethod
    def get_active_coop_config(self, coop_id: str) -> Optional[CoopConfig]:
        pass

    @abstractmethod
    def get_coop_config_version(
        self, coop_id: str, version: int
    ) -> Optional[CoopConfig]:
        pass

    @abstractmethod
    def list_coop_configs(self, coop_id: str) -> List[CoopConfig]:
        """List every version of a coop's config, oldest first."""
        pass

    @abstractmethod
    def replace_active_coop_config(
        self,
        current_id: UUID,
        new_config: CoopConfigCreate,
        audit: CoopConfigAuditCreate,
        amendment_review: Optional[Tuple[UUID, AmendmentReview]] = None,
    ) -> CoopConfig:
        """Atomically swap the active config for a new version.

        In one transaction: deactivate `current_id` (only if it is still
        active), insert `new_config`, insert the audit record linked to the new
        row and, when given, mark the amendment reviewed (only if it is still
        PENDING).

        Raises:
            ConflictError: If another writer got there first
        """
        pass

    @abstractmethod
    def list_coop_config_audits(
        self, coop_id: str, limit: int, offset: int
    ) -> Tuple[List[CoopConfigAudit], int]:
        """Page through audit records newest first. Returns (page, total)."""
        pass

    # ----------- AMENDMENTS -----------
    @abstractmethod
    def supersede_and_insert_amendment(
        self, new_amendment: AmendmentCreate, reviewed_by: str, reviewed_at: datetime
    ) -> Tuple[Amendment, List[Amendment]]:
        """Mark pending amendments for the same (coop, kind, section) SUPERSEDED and insert the new one.

        Returns:
            The inserted amendment and the amendments it superseded
        """
        pass

    @abstractmethod
    def get_amendment(self, amendment_id: UUID) -> Optional[Amendment]:
        pass

    @abstractmethod
    def list_amendments(self, filters: AmendmentFilter) -> List[Amendment]:
        """List amendments newest first."""
        pass

    @abstractmethod
    def review_amendment(
        self,
        amendment_id: UUID,
        expected_status: AmendmentStatus,
        review: AmendmentReview,
    ) -> Optional[Amendment]:
        """Apply a review if the amendment is still in `expected_status`; None otherwise."""
        pass

    # ----------- PROPOSALS -----------
    @abstractmethod
    def create_proposal_with_revision(
        self,
        new_proposal: ProposalCreate,
        revision: ProposalRevisionCreate,
        goal_scores: List[GoalScoreCreate],
    ) -> Proposal:
        """Insert a proposal, its first revision and the revision's goal scores in one transaction."""
        pass

    @abstractmethod
    def append_revision(
        self,
        proposal_id: UUID,
        expected_revision: int,
        allowed_statuses: List[ProposalStatus],
        update_data: ProposalBase,
        revision: ProposalRevisionCreate,
        goal_scores: List[GoalScoreCreate],
    ) -> Optional[Proposal]:
        """Append a revision and refresh the proposal's current view in one transaction.

        Nothing is written, and None is returned, when the proposal's current
        revision is no longer `expected_revision` or its status left
        `allowed_statuses`.
        """
        pass

    @abstractmethod
    def get_proposal(self, proposal_id: UUID) -> Optional[Proposal]:
        pass

    @abstractmethod
    def list_proposals(
        self, filters: Optional[ProposalFilter], limit: int, offset: int
    ) -> Tuple[List[Proposal], int]:
        """Page through proposals newest first. Returns (page, total)."""
        pass

    @abstractmethod
    def update_proposal(
        self,
        proposal_id: UUID,
        update_data: ProposalBase,
        expected_status: Optional[ProposalStatus] = None,
    ) -> Optional[Proposal]:
        """Update a proposal; with `expected_status` the write only happens if the status still matches."""
        pass

    @abstractmethod
    def list_revisions(self, proposal_id: UUID) -> List[ProposalRevision]:
        """List revisions, oldest first."""
        pass

    @abstractmethod
    def get_revision(
        self, proposal_id: UUID, revision_number: int
    ) -> Optional[ProposalRevision]:
        pass

    # ----------- GOAL SCORES -----------
    @abstractmethod
    def list_goal_scores(
        self, proposal_id: UUID, revision_number: int
    ) -> List[GoalScore]:
        pass

    @abstractmethod
    def get_goal_score(
        self, proposal_id: UUID, revision_number: int, goal_id: str
    ) -> Optional[GoalScore]:
        pass

    @abstractmethod
    def apply_expert_score(
        self,
        goal_score_id: UUID,
        expert_score: float,
        expert_wallet: str,
        expert_reason: str,
        adjustment: ScoreAdjustmentCreate,
    ) -> GoalScore:
        """Write an expert override and its adjustment log row in one transaction."""
        pass

    @abstractmethod
    def list_score_adjustments(self, goal_score_id: UUID) -> List[ScoreAdjustment]:
        """List adjustments newest first."""
        pass

    # ----------- EXPERT ASSIGNMENTS -----------
    @abstractmethod
    def upsert_expert_assignment(
        self, new_assignment: ExpertAssignmentCreate
    ) -> ExpertAssignment:
        """Create or reactivate the assignment for (wallet, domain)."""
        pass

    @abstractmethod
    def deactivate_expert_assignment(
        self, wallet_address: str, domain: str
    ) -> Optional[ExpertAssignment]:
        pass

    @abstractmethod
    def list_expert_assignments(
        self, filters: Optional[ExpertAssignmentFilter] = None
    ) -> List[ExpertAssignment]:
        pass

    # ----------- COUNCIL VOTES -----------
    @abstractmethod
    def upsert_council_vote(self, new_vote: CouncilVoteCreate) -> CouncilVote:
        """Insert or overwrite the vote for (proposal, voter)."""
        pass

    @abstractmethod
    def list_council_votes(self, proposal_id: UUID) -> List[CouncilVote]:
        pass

    # ----------- COMMENTS -----------
    @abstractmethod
    def create_comment(self, new_comment: CommentCreate) -> Comment:
        pass

    @abstractmethod
    def create_comment_evaluation(
        self, new_evaluation: CommentEvaluationCreate
    ) -> CommentEvaluation:
        pass

    @abstractmethod
    def list_comments(
        self, proposal_id: UUID, limit: int, offset: int
    ) -> Tuple[List[Comment], int]:
        """Page through comments newest first, evaluations attached. Returns (page, total)."""
        pass

    # ----------- REACTIONS -----------
    @abstractmethod
    def get_reaction(self, proposal_id: UUID, wallet_address: str) -> Optional[Reaction]:
        pass

    @abstractmethod
    def upsert_reaction(
        self, proposal_id: UUID, wallet_address: str, reaction: ReactionType
    ) -> Reaction:
        pass

    @abstractmethod
    def delete_reaction(self, proposal_id: UUID, wallet_address: str) -> bool:
        pass

    @abstractmethod
    def count_reactions(self, proposal_id: UUID) -> Dict[ReactionType, int]:
        pass
