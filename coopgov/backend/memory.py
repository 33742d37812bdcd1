"""
In-memory backend.

Keeps every entity in process memory, useful for:
- Unit testing
- Local development without a Supabase project

All compound writes run under one re-entrant lock, which gives them the
same all-or-nothing behaviour the Postgres transactions give SupabaseBackend.
"""

import threading
import uuid
from datetime import datetime, timezone
from itertools import count
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from coopgov.backend.abstract import AbstractBackend
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
from coopgov.lib.errors import ConflictError
from coopgov.lib.logger import configure_logger

logger = configure_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryBackend(AbstractBackend):
    """Thread-safe in-memory implementation of AbstractBackend. Data is lost on exit."""

    def __init__(self):
        self._lock = threading.RLock()
        # Insertion order breaks ties between equal timestamps
        self._sequence = count()
        self._order: Dict[UUID, int] = {}

        self._configs: Dict[UUID, CoopConfig] = {}
        self._audits: Dict[UUID, CoopConfigAudit] = {}
        self._amendments: Dict[UUID, Amendment] = {}
        self._proposals: Dict[UUID, Proposal] = {}
        self._revisions: Dict[UUID, ProposalRevision] = {}
        self._goal_scores: Dict[UUID, GoalScore] = {}
        self._adjustments: Dict[UUID, ScoreAdjustment] = {}
        self._assignments: Dict[UUID, ExpertAssignment] = {}
        self._votes: Dict[UUID, CouncilVote] = {}
        self._comments: Dict[UUID, Comment] = {}
        self._comment_evaluations: Dict[UUID, CommentEvaluation] = {}
        self._reactions: Dict[Tuple[UUID, str], Reaction] = {}

        self._sessions: Dict[str, str] = {}
        self._balances: Dict[Tuple[str, str], float] = {}

    def _new_id(self) -> UUID:
        entity_id = uuid.uuid4()
        self._order[entity_id] = next(self._sequence)
        return entity_id

    def _newest_first(self, items, stamp: str):
        return sorted(
            items,
            key=lambda item: (getattr(item, stamp), self._order.get(item.id, 0)),
            reverse=True,
        )

    @staticmethod
    def _copy(item):
        return item.model_copy(deep=True) if item is not None else None

    # ----------------------------------------------------------------
    # HELPERS
    # ----------------------------------------------------------------
    def register_session(self, token: str, wallet_address: str) -> None:
        """Register a session token for local development and tests."""
        with self._lock:
            self._sessions[token] = wallet_address

    def set_sc_balance(self, coop_id: str, wallet_address: str, balance: float) -> None:
        """Seed a ledger balance for local development and tests."""
        with self._lock:
            self._balances[(coop_id, wallet_address.lower())] = balance

    def verify_session_token(self, token: str) -> Optional[str]:
        with self._lock:
            return self._sessions.get(token)

    def get_sc_balance(self, coop_id: str, wallet_address: str) -> float:
        with self._lock:
            return self._balances.get((coop_id, wallet_address.lower()), 0.0)

    # ----------------------------------------------------------------
    # COOP CONFIGS
    # ----------------------------------------------------------------
    def _active_config(self, coop_id: str) -> Optional[CoopConfig]:
        for row in self._configs.values():
            if row.coop_id == coop_id and row.is_active:
                return row
        return None

    def _insert_config(self, new_config: CoopConfigCreate) -> CoopConfig:
        for row in self._configs.values():
            if row.coop_id == new_config.coop_id and row.version == new_config.version:
                raise ConflictError(
                    "Config version already exists",
                    {"coop_id": new_config.coop_id, "version": new_config.version},
                )
        now = _now()
        row = CoopConfig(
            id=self._new_id(),
            created_at=now,
            updated_at=now,
            **new_config.model_dump(),
        )
        self._configs[row.id] = row
        return row

    def create_coop_config(self, new_config: CoopConfigCreate) -> CoopConfig:
        with self._lock:
            if self._active_config(new_config.coop_id) is not None:
                raise ConflictError(
                    "Coop already has an active config",
                    {"coop_id": new_config.coop_id},
                )
            return self._copy(self._insert_config(new_config))

    def get_active_coop_config(self, coop_id: str) -> Optional[CoopConfig]:
        with self._lock:
            return self._copy(self._active_config(coop_id))

    def get_coop_config_version(
        self, coop_id: str, version: int
    ) -> Optional[CoopConfig]:
        with self._lock:
            for row in self._configs.values():
                if row.coop_id == coop_id and row.version == version:
                    return self._copy(row)
            return None

    def list_coop_configs(self, coop_id: str) -> List[CoopConfig]:
        with self._lock:
            rows = [row for row in self._configs.values() if row.coop_id == coop_id]
            return [self._copy(row) for row in sorted(rows, key=lambda r: r.version)]

    def replace_active_coop_config(
        self,
        current_id: UUID,
        new_config: CoopConfigCreate,
        audit: CoopConfigAuditCreate,
        amendment_review: Optional[Tuple[UUID, AmendmentReview]] = None,
    ) -> CoopConfig:
        with self._lock:
            current = self._configs.get(current_id)
            if current is None or not current.is_active:
                raise ConflictError(
                    "Active config changed concurrently",
                    {"coop_id": new_config.coop_id, "config_id": str(current_id)},
                )
            if amendment_review is not None:
                amendment = self._amendments.get(amendment_review[0])
                if amendment is None or amendment.status != AmendmentStatus.PENDING:
                    raise ConflictError(
                        "Amendment is no longer pending",
                        {"amendment_id": str(amendment_review[0])},
                    )

            # Validate the insert before mutating anything
            for row in self._configs.values():
                if (
                    row.coop_id == new_config.coop_id
                    and row.version == new_config.version
                ):
                    raise ConflictError(
                        "Config version already exists",
                        {"coop_id": new_config.coop_id, "version": new_config.version},
                    )

            self._configs[current_id] = current.model_copy(
                update={"is_active": False, "updated_at": _now()}
            )
            inserted = self._insert_config(new_config)
            audit_row = CoopConfigAudit(
                id=self._new_id(),
                coop_config_id=inserted.id,
                changed_at=inserted.created_at,
                **audit.model_dump(),
            )
            self._audits[audit_row.id] = audit_row
            if amendment_review is not None:
                amendment_id, review = amendment_review
                self._amendments[amendment_id] = self._amendments[
                    amendment_id
                ].model_copy(update=dict(review))
            return self._copy(inserted)

    def list_coop_config_audits(
        self, coop_id: str, limit: int, offset: int
    ) -> Tuple[List[CoopConfigAudit], int]:
        with self._lock:
            rows = [row for row in self._audits.values() if row.coop_id == coop_id]
            rows = self._newest_first(rows, "changed_at")
            page = rows[offset : offset + limit]
            return [self._copy(row) for row in page], len(rows)

    # ----------------------------------------------------------------
    # AMENDMENTS
    # ----------------------------------------------------------------
    def supersede_and_insert_amendment(
        self, new_amendment: AmendmentCreate, reviewed_by: str, reviewed_at: datetime
    ) -> Tuple[Amendment, List[Amendment]]:
        with self._lock:
            superseded = []
            for amendment_id, row in list(self._amendments.items()):
                if (
                    row.coop_id == new_amendment.coop_id
                    and row.kind == new_amendment.kind
                    and row.section == new_amendment.section
                    and row.status == AmendmentStatus.PENDING
                ):
                    updated = row.model_copy(
                        update={
                            "status": AmendmentStatus.SUPERSEDED,
                            "reviewed_by": reviewed_by,
                            "reviewed_at": reviewed_at,
                        }
                    )
                    self._amendments[amendment_id] = updated
                    superseded.append(self._copy(updated))
            row = Amendment(
                id=self._new_id(),
                status=AmendmentStatus.PENDING,
                proposed_at=_now(),
                **new_amendment.model_dump(),
            )
            self._amendments[row.id] = row
            return self._copy(row), superseded

    def get_amendment(self, amendment_id: UUID) -> Optional[Amendment]:
        with self._lock:
            return self._copy(self._amendments.get(amendment_id))

    def list_amendments(self, filters: AmendmentFilter) -> List[Amendment]:
        with self._lock:
            rows = list(self._amendments.values())
            if filters.coop_id is not None:
                rows = [r for r in rows if r.coop_id == filters.coop_id]
            if filters.kind is not None:
                rows = [r for r in rows if r.kind == filters.kind]
            if filters.section is not None:
                rows = [r for r in rows if r.section == filters.section]
            if filters.status is not None:
                rows = [r for r in rows if r.status == filters.status]
            return [self._copy(r) for r in self._newest_first(rows, "proposed_at")]

    def review_amendment(
        self,
        amendment_id: UUID,
        expected_status: AmendmentStatus,
        review: AmendmentReview,
    ) -> Optional[Amendment]:
        with self._lock:
            row = self._amendments.get(amendment_id)
            if row is None or row.status != expected_status:
                return None
            updated = row.model_copy(update=dict(review))
            self._amendments[amendment_id] = updated
            return self._copy(updated)

    # ----------------------------------------------------------------
    # PROPOSALS
    # ----------------------------------------------------------------
    def _insert_revision(
        self,
        proposal_id: UUID,
        revision: ProposalRevisionCreate,
        goal_scores: List[GoalScoreCreate],
    ) -> ProposalRevision:
        for row in self._revisions.values():
            if (
                row.proposal_id == proposal_id
                and row.revision_number == revision.revision_number
            ):
                raise ConflictError(
                    "Revision number already exists",
                    {
                        "proposal_id": str(proposal_id),
                        "revision_number": revision.revision_number,
                    },
                )
        now = _now()
        row = ProposalRevision(
            id=self._new_id(),
            proposal_id=proposal_id,
            submitted_at=now,
            **revision.model_dump(),
        )
        self._revisions[row.id] = row
        for score in goal_scores:
            goal_row = GoalScore(
                id=self._new_id(),
                proposal_id=proposal_id,
                revision_number=revision.revision_number,
                final_score=score.ai_score,
                updated_at=now,
                **score.model_dump(),
            )
            self._goal_scores[goal_row.id] = goal_row
        return row

    def create_proposal_with_revision(
        self,
        new_proposal: ProposalCreate,
        revision: ProposalRevisionCreate,
        goal_scores: List[GoalScoreCreate],
    ) -> Proposal:
        with self._lock:
            now = _now()
            row = Proposal(
                id=self._new_id(),
                created_at=now,
                updated_at=now,
                **new_proposal.model_dump(),
            )
            self._proposals[row.id] = row
            self._insert_revision(row.id, revision, goal_scores)
            return self._copy(row)

    def append_revision(
        self,
        proposal_id: UUID,
        expected_revision: int,
        allowed_statuses: List[ProposalStatus],
        update_data: ProposalBase,
        revision: ProposalRevisionCreate,
        goal_scores: List[GoalScoreCreate],
    ) -> Optional[Proposal]:
        with self._lock:
            row = self._proposals.get(proposal_id)
            if (
                row is None
                or row.current_revision != expected_revision
                or row.status not in allowed_statuses
            ):
                return None
            self._insert_revision(proposal_id, revision, goal_scores)
            updated = Proposal.model_validate(
                {
                    **row.model_dump(),
                    **update_data.model_dump(exclude_unset=True),
                    "updated_at": _now(),
                }
            )
            self._proposals[proposal_id] = updated
            return self._copy(updated)

    def get_proposal(self, proposal_id: UUID) -> Optional[Proposal]:
        with self._lock:
            return self._copy(self._proposals.get(proposal_id))

    def list_proposals(
        self, filters: Optional[ProposalFilter], limit: int, offset: int
    ) -> Tuple[List[Proposal], int]:
        with self._lock:
            rows = list(self._proposals.values())
            if filters:
                if filters.coop_id is not None:
                    rows = [r for r in rows if r.coop_id == filters.coop_id]
                if filters.status is not None:
                    rows = [r for r in rows if r.status == filters.status]
                if filters.statuses is not None:
                    rows = [r for r in rows if r.status in filters.statuses]
                if filters.proposer_wallet is not None:
                    rows = [
                        r for r in rows if r.proposer_wallet == filters.proposer_wallet
                    ]
                if filters.category is not None:
                    rows = [r for r in rows if r.category == filters.category]
            rows = self._newest_first(rows, "created_at")
            page = rows[offset : offset + limit]
            return [self._copy(r) for r in page], len(rows)

    def update_proposal(
        self,
        proposal_id: UUID,
        update_data: ProposalBase,
        expected_status: Optional[ProposalStatus] = None,
    ) -> Optional[Proposal]:
        with self._lock:
            row = self._proposals.get(proposal_id)
            if row is None:
                return None
            if expected_status is not None and row.status != expected_status:
                return None
            updated = Proposal.model_validate(
                {
                    **row.model_dump(),
                    **update_data.model_dump(exclude_unset=True),
                    "updated_at": _now(),
                }
            )
            self._proposals[proposal_id] = updated
            return self._copy(updated)

    def list_revisions(self, proposal_id: UUID) -> List[ProposalRevision]:
        with self._lock:
            rows = [r for r in self._revisions.values() if r.proposal_id == proposal_id]
            return [
                self._copy(r) for r in sorted(rows, key=lambda r: r.revision_number)
            ]

    def get_revision(
        self, proposal_id: UUID, revision_number: int
    ) -> Optional[ProposalRevision]:
        with self._lock:
            for row in self._revisions.values():
                if (
                    row.proposal_id == proposal_id
                    and row.revision_number == revision_number
                ):
                    return self._copy(row)
            return None

    # ----------------------------------------------------------------
    # GOAL SCORES
    # ----------------------------------------------------------------
    def list_goal_scores(
        self, proposal_id: UUID, revision_number: int
    ) -> List[GoalScore]:
        with self._lock:
            rows = [
                r
                for r in self._goal_scores.values()
                if r.proposal_id == proposal_id and r.revision_number == revision_number
            ]
            return [
                self._copy(r) for r in sorted(rows, key=lambda r: self._order[r.id])
            ]

    def get_goal_score(
        self, proposal_id: UUID, revision_number: int, goal_id: str
    ) -> Optional[GoalScore]:
        with self._lock:
            for row in self._goal_scores.values():
                if (
                    row.proposal_id == proposal_id
                    and row.revision_number == revision_number
                    and row.goal_id == goal_id
                ):
                    return self._copy(row)
            return None

    def apply_expert_score(
        self,
        goal_score_id: UUID,
        expert_score: float,
        expert_wallet: str,
        expert_reason: str,
        adjustment: ScoreAdjustmentCreate,
    ) -> GoalScore:
        with self._lock:
            row = self._goal_scores.get(goal_score_id)
            if row is None:
                raise ConflictError(
                    "Goal score disappeared", {"goal_score_id": str(goal_score_id)}
                )
            now = _now()
            updated = row.model_copy(
                update={
                    "expert_score": expert_score,
                    "final_score": expert_score,
                    "expert_wallet": expert_wallet,
                    "expert_reason": expert_reason,
                    "updated_at": now,
                }
            )
            self._goal_scores[goal_score_id] = updated
            log_row = ScoreAdjustment(
                id=self._new_id(), created_at=now, **adjustment.model_dump()
            )
            self._adjustments[log_row.id] = log_row
            return self._copy(updated)

    def list_score_adjustments(self, goal_score_id: UUID) -> List[ScoreAdjustment]:
        with self._lock:
            rows = [
                r for r in self._adjustments.values() if r.goal_score_id == goal_score_id
            ]
            return [self._copy(r) for r in self._newest_first(rows, "created_at")]

    # ----------------------------------------------------------------
    # EXPERT ASSIGNMENTS
    # ----------------------------------------------------------------
    def upsert_expert_assignment(
        self, new_assignment: ExpertAssignmentCreate
    ) -> ExpertAssignment:
        with self._lock:
            for assignment_id, row in self._assignments.items():
                if (
                    row.wallet_address == new_assignment.wallet_address
                    and row.domain == new_assignment.domain
                ):
                    updated = row.model_copy(
                        update={
                            "is_active": True,
                            "assigned_by": new_assignment.assigned_by,
                            "assigned_at": _now(),
                        }
                    )
                    self._assignments[assignment_id] = updated
                    return self._copy(updated)
            row = ExpertAssignment(
                id=self._new_id(),
                is_active=True,
                assigned_at=_now(),
                **new_assignment.model_dump(),
            )
            self._assignments[row.id] = row
            return self._copy(row)

    def deactivate_expert_assignment(
        self, wallet_address: str, domain: str
    ) -> Optional[ExpertAssignment]:
        with self._lock:
            for assignment_id, row in self._assignments.items():
                if row.wallet_address == wallet_address and row.domain == domain:
                    updated = row.model_copy(update={"is_active": False})
                    self._assignments[assignment_id] = updated
                    return self._copy(updated)
            return None

    def list_expert_assignments(
        self, filters: Optional[ExpertAssignmentFilter] = None
    ) -> List[ExpertAssignment]:
        with self._lock:
            rows = list(self._assignments.values())
            if filters:
                if filters.wallet_address is not None:
                    rows = [r for r in rows if r.wallet_address == filters.wallet_address]
                if filters.domain is not None:
                    rows = [r for r in rows if r.domain == filters.domain]
                if filters.is_active is not None:
                    rows = [r for r in rows if r.is_active == filters.is_active]
            return [self._copy(r) for r in rows]

    # ----------------------------------------------------------------
    # COUNCIL VOTES
    # ----------------------------------------------------------------
    def upsert_council_vote(self, new_vote: CouncilVoteCreate) -> CouncilVote:
        with self._lock:
            now = _now()
            for vote_id, row in self._votes.items():
                if (
                    row.proposal_id == new_vote.proposal_id
                    and row.voter_wallet == new_vote.voter_wallet
                ):
                    updated = row.model_copy(
                        update={"choice": new_vote.choice, "updated_at": now}
                    )
                    self._votes[vote_id] = updated
                    return self._copy(updated)
            row = CouncilVote(
                id=self._new_id(),
                created_at=now,
                updated_at=now,
                **new_vote.model_dump(),
            )
            self._votes[row.id] = row
            return self._copy(row)

    def list_council_votes(self, proposal_id: UUID) -> List[CouncilVote]:
        with self._lock:
            return [
                self._copy(r)
                for r in self._votes.values()
                if r.proposal_id == proposal_id
            ]

    # ----------------------------------------------------------------
    # COMMENTS
    # ----------------------------------------------------------------
    def create_comment(self, new_comment: CommentCreate) -> Comment:
        with self._lock:
            row = Comment(
                id=self._new_id(), created_at=_now(), **new_comment.model_dump()
            )
            self._comments[row.id] = row
            return self._copy(row)

    def create_comment_evaluation(
        self, new_evaluation: CommentEvaluationCreate
    ) -> CommentEvaluation:
        with self._lock:
            row = CommentEvaluation(
                id=self._new_id(), created_at=_now(), **new_evaluation.model_dump()
            )
            self._comment_evaluations[row.id] = row
            comment = self._comments.get(new_evaluation.comment_id)
            if comment is not None:
                self._comments[comment.id] = comment.model_copy(
                    update={"ai_evaluation": row}
                )
            return self._copy(row)

    def list_comments(
        self, proposal_id: UUID, limit: int, offset: int
    ) -> Tuple[List[Comment], int]:
        with self._lock:
            rows = [r for r in self._comments.values() if r.proposal_id == proposal_id]
            rows = self._newest_first(rows, "created_at")
            page = rows[offset : offset + limit]
            return [self._copy(r) for r in page], len(rows)

    # ----------------------------------------------------------------
    # REACTIONS
    # ----------------------------------------------------------------
    def get_reaction(self, proposal_id: UUID, wallet_address: str) -> Optional[Reaction]:
        with self._lock:
            return self._copy(self._reactions.get((proposal_id, wallet_address)))

    def upsert_reaction(
        self, proposal_id: UUID, wallet_address: str, reaction: ReactionType
    ) -> Reaction:
        with self._lock:
            row = Reaction(
                proposal_id=proposal_id,
                wallet_address=wallet_address,
                reaction=reaction,
                created_at=_now(),
            )
            self._reactions[(proposal_id, wallet_address)] = row
            return self._copy(row)

    def delete_reaction(self, proposal_id: UUID, wallet_address: str) -> bool:
        with self._lock:
            return self._reactions.pop((proposal_id, wallet_address), None) is not None

    def count_reactions(self, proposal_id: UUID) -> Dict[ReactionType, int]:
        with self._lock:
            counts = {reaction_type: 0 for reaction_type in ReactionType}
            for (reacted_on, _), row in self._reactions.items():
                if reacted_on == proposal_id:
                    counts[row.reaction] += 1
            return counts
