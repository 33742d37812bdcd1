import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import Engine, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from supabase import Client

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

COOP_CONFIGS = "coop_configs"
COOP_CONFIG_AUDITS = "coop_config_audits"
AMENDMENTS = "coop_config_amendments"
PROPOSALS = "proposals"
REVISIONS = "proposal_revisions"
GOAL_SCORES = "proposal_goal_scores"
SCORE_ADJUSTMENTS = "score_adjustments"
EXPERT_ASSIGNMENTS = "expert_assignments"
COUNCIL_VOTES = "council_votes"
COMMENTS = "proposal_comments"
COMMENT_EVALUATIONS = "comment_evaluations"
REACTIONS = "proposal_reactions"
SC_BALANCES = "sc_balances"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _bind(payload: Dict[str, Any]) -> Tuple[Dict[str, str], Dict[str, Any]]:
    """Build SQL placeholders and parameters; dicts and lists are bound as jsonb."""
    placeholders = {}
    params = {}
    for column, value in payload.items():
        if isinstance(value, (dict, list)):
            placeholders[column] = f"CAST(:{column} AS jsonb)"
            params[column] = json.dumps(value)
        else:
            placeholders[column] = f":{column}"
            params[column] = value
    return placeholders, params


def _insert(session: Session, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    placeholders, params = _bind(payload)
    statement = text(
        f"INSERT INTO {table} ({', '.join(placeholders)}) "
        f"VALUES ({', '.join(placeholders.values())}) RETURNING *"
    )
    return dict(session.execute(statement, params).mappings().one())


def _update(
    session: Session,
    table: str,
    payload: Dict[str, Any],
    where: str,
    where_params: Dict[str, Any],
) -> List[Dict[str, Any]]:
    placeholders, params = _bind(payload)
    assignments = ", ".join(f"{column} = {value}" for column, value in placeholders.items())
    statement = text(f"UPDATE {table} SET {assignments} WHERE {where} RETURNING *")
    rows = session.execute(statement, {**params, **where_params}).mappings().all()
    return [dict(row) for row in rows]


class SupabaseBackend(AbstractBackend):
    """Supabase/Postgres backend.

    Single-row reads and writes go through the Supabase client. Writes that
    must succeed or fail together run as SQL in one SQLAlchemy transaction.
    """

    def __init__(self, client: Client, sqlalchemy_engine: Engine, **kwargs):
        self.client = client
        self.sqlalchemy_engine = sqlalchemy_engine
        self.Session = sessionmaker(bind=self.sqlalchemy_engine)

        try:
            with self.sqlalchemy_engine.connect():
                logger.info("SQLAlchemy connection successful!")
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")

    def _transaction(self, operation: str, work):
        """Run `work(session)` in one transaction; unique violations become ConflictError."""
        try:
            with self.Session() as session, session.begin():
                return work(session)
        except IntegrityError as e:
            logger.warning(
                f"Integrity error during {operation}: {str(e.orig)}",
                extra={"operation": operation},
            )
            raise ConflictError(
                f"Conflicting write during {operation}", {"operation": operation}
            ) from e

    def _first(self, query) -> Optional[Dict[str, Any]]:
        response = query.limit(1).execute()
        data = response.data or []
        return data[0] if data else None

    # ----------------------------------------------------------------
    # HELPER FUNCTIONS
    # ----------------------------------------------------------------
    def verify_session_token(self, token: str) -> Optional[str]:
        try:
            user = self.client.auth.get_user(token)
        except Exception as e:
            logger.debug(f"Session token rejected: {str(e)}")
            return None
        if not user or not user.user:
            return None
        metadata = user.user.user_metadata or {}
        return metadata.get("wallet_address")

    def get_sc_balance(self, coop_id: str, wallet_address: str) -> float:
        row = self._first(
            self.client.table(SC_BALANCES)
            .select("balance")
            .eq("coop_id", coop_id)
            .eq("wallet_address", wallet_address.lower())
        )
        return float(row["balance"]) if row else 0.0

    # ----------------------------------------------------------------
    # COOP CONFIGS
    # ----------------------------------------------------------------
    def create_coop_config(self, new_config: CoopConfigCreate) -> CoopConfig:
        payload = new_config.model_dump(mode="json")
        row = self._transaction(
            "create_coop_config", lambda session: _insert(session, COOP_CONFIGS, payload)
        )
        return CoopConfig(**row)

    def get_active_coop_config(self, coop_id: str) -> Optional[CoopConfig]:
        row = self._first(
            self.client.table(COOP_CONFIGS)
            .select("*")
            .eq("coop_id", coop_id)
            .eq("is_active", True)
        )
        return CoopConfig(**row) if row else None

    def get_coop_config_version(
        self, coop_id: str, version: int
    ) -> Optional[CoopConfig]:
        row = self._first(
            self.client.table(COOP_CONFIGS)
            .select("*")
            .eq("coop_id", coop_id)
            .eq("version", version)
        )
        return CoopConfig(**row) if row else None

    def list_coop_configs(self, coop_id: str) -> List[CoopConfig]:
        response = (
            self.client.table(COOP_CONFIGS)
            .select("*")
            .eq("coop_id", coop_id)
            .order("version")
            .execute()
        )
        return [CoopConfig(**row) for row in response.data or []]

    def replace_active_coop_config(
        self,
        current_id: UUID,
        new_config: CoopConfigCreate,
        audit: CoopConfigAuditCreate,
        amendment_review: Optional[Tuple[UUID, AmendmentReview]] = None,
    ) -> CoopConfig:
        config_payload = new_config.model_dump(mode="json")
        audit_payload = audit.model_dump(mode="json")

        def work(session: Session) -> Dict[str, Any]:
            deactivated = _update(
                session,
                COOP_CONFIGS,
                {"is_active": False, "updated_at": _now()},
                "id = :current_id AND is_active",
                {"current_id": str(current_id)},
            )
            if not deactivated:
                raise ConflictError(
                    "Active config changed concurrently",
                    {"coop_id": new_config.coop_id, "config_id": str(current_id)},
                )
            if amendment_review is not None:
                amendment_id, review = amendment_review
                reviewed = _update(
                    session,
                    AMENDMENTS,
                    review.model_dump(mode="json"),
                    "id = :amendment_id AND status = :pending",
                    {
                        "amendment_id": str(amendment_id),
                        "pending": AmendmentStatus.PENDING.value,
                    },
                )
                if not reviewed:
                    raise ConflictError(
                        "Amendment is no longer pending",
                        {"amendment_id": str(amendment_id)},
                    )
            inserted = _insert(session, COOP_CONFIGS, config_payload)
            _insert(
                session,
                COOP_CONFIG_AUDITS,
                {**audit_payload, "coop_config_id": str(inserted["id"])},
            )
            return inserted

        row = self._transaction("replace_active_coop_config", work)
        return CoopConfig(**row)

    def list_coop_config_audits(
        self, coop_id: str, limit: int, offset: int
    ) -> Tuple[List[CoopConfigAudit], int]:
        response = (
            self.client.table(COOP_CONFIG_AUDITS)
            .select("*", count="exact")
            .eq("coop_id", coop_id)
            .order("changed_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        rows = response.data or []
        return [CoopConfigAudit(**row) for row in rows], response.count or 0

    # ----------------------------------------------------------------
    # AMENDMENTS
    # ----------------------------------------------------------------
    def supersede_and_insert_amendment(
        self, new_amendment: AmendmentCreate, reviewed_by: str, reviewed_at: datetime
    ) -> Tuple[Amendment, List[Amendment]]:
        payload = new_amendment.model_dump(mode="json")

        def work(session: Session):
            superseded = _update(
                session,
                AMENDMENTS,
                {
                    "status": AmendmentStatus.SUPERSEDED.value,
                    "reviewed_by": reviewed_by,
                    "reviewed_at": reviewed_at.isoformat(),
                },
                "coop_id = :coop_id AND kind = :kind AND section = :section "
                "AND status = :pending",
                {
                    "coop_id": new_amendment.coop_id,
                    "kind": new_amendment.kind.value,
                    "section": new_amendment.section,
                    "pending": AmendmentStatus.PENDING.value,
                },
            )
            inserted = _insert(
                session,
                AMENDMENTS,
                {**payload, "status": AmendmentStatus.PENDING.value},
            )
            return inserted, superseded

        inserted, superseded = self._transaction("supersede_and_insert_amendment", work)
        return Amendment(**inserted), [Amendment(**row) for row in superseded]

    def get_amendment(self, amendment_id: UUID) -> Optional[Amendment]:
        row = self._first(
            self.client.table(AMENDMENTS).select("*").eq("id", str(amendment_id))
        )
        return Amendment(**row) if row else None

    def list_amendments(self, filters: AmendmentFilter) -> List[Amendment]:
        query = self.client.table(AMENDMENTS).select("*")
        if filters.coop_id is not None:
            query = query.eq("coop_id", filters.coop_id)
        if filters.kind is not None:
            query = query.eq("kind", filters.kind.value)
        if filters.section is not None:
            query = query.eq("section", filters.section)
        if filters.status is not None:
            query = query.eq("status", filters.status.value)
        response = query.order("proposed_at", desc=True).execute()
        return [Amendment(**row) for row in response.data or []]

    def review_amendment(
        self,
        amendment_id: UUID,
        expected_status: AmendmentStatus,
        review: AmendmentReview,
    ) -> Optional[Amendment]:
        response = (
            self.client.table(AMENDMENTS)
            .update(review.model_dump(mode="json"))
            .eq("id", str(amendment_id))
            .eq("status", expected_status.value)
            .execute()
        )
        updated = response.data or []
        return Amendment(**updated[0]) if updated else None

    # ----------------------------------------------------------------
    # PROPOSALS
    # ----------------------------------------------------------------
    @staticmethod
    def _insert_revision(
        session: Session,
        proposal_id: str,
        revision: ProposalRevisionCreate,
        goal_scores: List[GoalScoreCreate],
    ) -> None:
        _insert(
            session,
            REVISIONS,
            {**revision.model_dump(mode="json"), "proposal_id": proposal_id},
        )
        for score in goal_scores:
            _insert(
                session,
                GOAL_SCORES,
                {
                    **score.model_dump(mode="json"),
                    "proposal_id": proposal_id,
                    "revision_number": revision.revision_number,
                    "final_score": score.ai_score,
                },
            )

    def create_proposal_with_revision(
        self,
        new_proposal: ProposalCreate,
        revision: ProposalRevisionCreate,
        goal_scores: List[GoalScoreCreate],
    ) -> Proposal:
        payload = new_proposal.model_dump(mode="json")

        def work(session: Session) -> Dict[str, Any]:
            row = _insert(session, PROPOSALS, payload)
            self._insert_revision(session, str(row["id"]), revision, goal_scores)
            return row

        return Proposal(**self._transaction("create_proposal_with_revision", work))

    def append_revision(
        self,
        proposal_id: UUID,
        expected_revision: int,
        allowed_statuses: List[ProposalStatus],
        update_data: ProposalBase,
        revision: ProposalRevisionCreate,
        goal_scores: List[GoalScoreCreate],
    ) -> Optional[Proposal]:
        payload = update_data.model_dump(exclude_unset=True, mode="json")

        def work(session: Session) -> Optional[Dict[str, Any]]:
            updated = _update(
                session,
                PROPOSALS,
                {**payload, "updated_at": _now()},
                "id = :proposal_id AND current_revision = :expected_revision "
                "AND status = ANY(:allowed_statuses)",
                {
                    "proposal_id": str(proposal_id),
                    "expected_revision": expected_revision,
                    "allowed_statuses": [status.value for status in allowed_statuses],
                },
            )
            if not updated:
                return None
            self._insert_revision(session, str(proposal_id), revision, goal_scores)
            return updated[0]

        row = self._transaction("append_revision", work)
        return Proposal(**row) if row else None

    def get_proposal(self, proposal_id: UUID) -> Optional[Proposal]:
        row = self._first(
            self.client.table(PROPOSALS).select("*").eq("id", str(proposal_id))
        )
        return Proposal(**row) if row else None

    def list_proposals(
        self, filters: Optional[ProposalFilter], limit: int, offset: int
    ) -> Tuple[List[Proposal], int]:
        query = self.client.table(PROPOSALS).select("*", count="exact")
        if filters:
            if filters.coop_id is not None:
                query = query.eq("coop_id", filters.coop_id)
            if filters.status is not None:
                query = query.eq("status", filters.status.value)
            if filters.statuses is not None:
                query = query.in_("status", [s.value for s in filters.statuses])
            if filters.proposer_wallet is not None:
                query = query.eq("proposer_wallet", filters.proposer_wallet)
            if filters.category is not None:
                query = query.eq("category", filters.category)
        response = (
            query.order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        rows = response.data or []
        return [Proposal(**row) for row in rows], response.count or 0

    def update_proposal(
        self,
        proposal_id: UUID,
        update_data: ProposalBase,
        expected_status: Optional[ProposalStatus] = None,
    ) -> Optional[Proposal]:
        payload = update_data.model_dump(exclude_unset=True, mode="json")
        if not payload:
            return self.get_proposal(proposal_id)
        query = (
            self.client.table(PROPOSALS)
            .update({**payload, "updated_at": _now()})
            .eq("id", str(proposal_id))
        )
        if expected_status is not None:
            query = query.eq("status", expected_status.value)
        updated = query.execute().data or []
        return Proposal(**updated[0]) if updated else None

    def list_revisions(self, proposal_id: UUID) -> List[ProposalRevision]:
        response = (
            self.client.table(REVISIONS)
            .select("*")
            .eq("proposal_id", str(proposal_id))
            .order("revision_number")
            .execute()
        )
        return [ProposalRevision(**row) for row in response.data or []]

    def get_revision(
        self, proposal_id: UUID, revision_number: int
    ) -> Optional[ProposalRevision]:
        row = self._first(
            self.client.table(REVISIONS)
            .select("*")
            .eq("proposal_id", str(proposal_id))
            .eq("revision_number", revision_number)
        )
        return ProposalRevision(**row) if row else None

    # ----------------------------------------------------------------
    # GOAL SCORES
    # ----------------------------------------------------------------
    def list_goal_scores(
        self, proposal_id: UUID, revision_number: int
    ) -> List[GoalScore]:
        response = (
            self.client.table(GOAL_SCORES)
            .select("*")
            .eq("proposal_id", str(proposal_id))
            .eq("revision_number", revision_number)
            .order("goal_id")
            .execute()
        )
        return [GoalScore(**row) for row in response.data or []]

    def get_goal_score(
        self, proposal_id: UUID, revision_number: int, goal_id: str
    ) -> Optional[GoalScore]:
        row = self._first(
            self.client.table(GOAL_SCORES)
            .select("*")
            .eq("proposal_id", str(proposal_id))
            .eq("revision_number", revision_number)
            .eq("goal_id", goal_id)
        )
        return GoalScore(**row) if row else None

    def apply_expert_score(
        self,
        goal_score_id: UUID,
        expert_score: float,
        expert_wallet: str,
        expert_reason: str,
        adjustment: ScoreAdjustmentCreate,
    ) -> GoalScore:
        adjustment_payload = adjustment.model_dump(mode="json")

        def work(session: Session) -> Dict[str, Any]:
            updated = _update(
                session,
                GOAL_SCORES,
                {
                    "expert_score": expert_score,
                    "final_score": expert_score,
                    "expert_wallet": expert_wallet,
                    "expert_reason": expert_reason,
                    "updated_at": _now(),
                },
                "id = :goal_score_id",
                {"goal_score_id": str(goal_score_id)},
            )
            if not updated:
                raise ConflictError(
                    "Goal score disappeared", {"goal_score_id": str(goal_score_id)}
                )
            _insert(session, SCORE_ADJUSTMENTS, adjustment_payload)
            return updated[0]

        return GoalScore(**self._transaction("apply_expert_score", work))

    def list_score_adjustments(self, goal_score_id: UUID) -> List[ScoreAdjustment]:
        response = (
            self.client.table(SCORE_ADJUSTMENTS)
            .select("*")
            .eq("goal_score_id", str(goal_score_id))
            .order("created_at", desc=True)
            .execute()
        )
        return [ScoreAdjustment(**row) for row in response.data or []]

    # ----------------------------------------------------------------
    # EXPERT ASSIGNMENTS
    # ----------------------------------------------------------------
    def upsert_expert_assignment(
        self, new_assignment: ExpertAssignmentCreate
    ) -> ExpertAssignment:
        payload = {
            **new_assignment.model_dump(mode="json"),
            "is_active": True,
            "assigned_at": _now(),
        }
        response = (
            self.client.table(EXPERT_ASSIGNMENTS)
            .upsert(payload, on_conflict="wallet_address,domain")
            .execute()
        )
        data = response.data or []
        if not data:
            raise ValueError("No data returned from expert_assignments upsert.")
        return ExpertAssignment(**data[0])

    def deactivate_expert_assignment(
        self, wallet_address: str, domain: str
    ) -> Optional[ExpertAssignment]:
        response = (
            self.client.table(EXPERT_ASSIGNMENTS)
            .update({"is_active": False})
            .eq("wallet_address", wallet_address)
            .eq("domain", domain)
            .execute()
        )
        updated = response.data or []
        return ExpertAssignment(**updated[0]) if updated else None

    def list_expert_assignments(
        self, filters: Optional[ExpertAssignmentFilter] = None
    ) -> List[ExpertAssignment]:
        query = self.client.table(EXPERT_ASSIGNMENTS).select("*")
        if filters:
            if filters.wallet_address is not None:
                query = query.eq("wallet_address", filters.wallet_address)
            if filters.domain is not None:
                query = query.eq("domain", filters.domain)
            if filters.is_active is not None:
                query = query.eq("is_active", filters.is_active)
        response = query.execute()
        return [ExpertAssignment(**row) for row in response.data or []]

    # ----------------------------------------------------------------
    # COUNCIL VOTES
    # ----------------------------------------------------------------
    def upsert_council_vote(self, new_vote: CouncilVoteCreate) -> CouncilVote:
        payload = {**new_vote.model_dump(mode="json"), "updated_at": _now()}
        response = (
            self.client.table(COUNCIL_VOTES)
            .upsert(payload, on_conflict="proposal_id,voter_wallet")
            .execute()
        )
        data = response.data or []
        if not data:
            raise ValueError("No data returned from council_votes upsert.")
        return CouncilVote(**data[0])

    def list_council_votes(self, proposal_id: UUID) -> List[CouncilVote]:
        response = (
            self.client.table(COUNCIL_VOTES)
            .select("*")
            .eq("proposal_id", str(proposal_id))
            .execute()
        )
        return [CouncilVote(**row) for row in response.data or []]

    # ----------------------------------------------------------------
    # COMMENTS
    # ----------------------------------------------------------------
    def create_comment(self, new_comment: CommentCreate) -> Comment:
        payload = new_comment.model_dump(mode="json")
        response = self.client.table(COMMENTS).insert(payload).execute()
        data = response.data or []
        if not data:
            raise ValueError("No data returned from proposal_comments insert.")
        return Comment(**data[0])

    def create_comment_evaluation(
        self, new_evaluation: CommentEvaluationCreate
    ) -> CommentEvaluation:
        payload = new_evaluation.model_dump(mode="json")
        response = self.client.table(COMMENT_EVALUATIONS).insert(payload).execute()
        data = response.data or []
        if not data:
            raise ValueError("No data returned from comment_evaluations insert.")
        return CommentEvaluation(**data[0])

    def list_comments(
        self, proposal_id: UUID, limit: int, offset: int
    ) -> Tuple[List[Comment], int]:
        response = (
            self.client.table(COMMENTS)
            .select("*", count="exact")
            .eq("proposal_id", str(proposal_id))
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        rows = response.data or []
        evaluations = {}
        if rows:
            evaluation_rows = (
                self.client.table(COMMENT_EVALUATIONS)
                .select("*")
                .in_("comment_id", [row["id"] for row in rows])
                .execute()
            ).data or []
            evaluations = {str(row["comment_id"]): row for row in evaluation_rows}
        comments = [
            Comment(**row, ai_evaluation=evaluations.get(str(row["id"])))
            for row in rows
        ]
        return comments, response.count or 0

    # ----------------------------------------------------------------
    # REACTIONS
    # ----------------------------------------------------------------
    def get_reaction(self, proposal_id: UUID, wallet_address: str) -> Optional[Reaction]:
        row = self._first(
            self.client.table(REACTIONS)
            .select("*")
            .eq("proposal_id", str(proposal_id))
            .eq("wallet_address", wallet_address)
        )
        return Reaction(**row) if row else None

    def upsert_reaction(
        self, proposal_id: UUID, wallet_address: str, reaction: ReactionType
    ) -> Reaction:
        payload = {
            "proposal_id": str(proposal_id),
            "wallet_address": wallet_address,
            "reaction": reaction.value,
            "created_at": _now(),
        }
        response = (
            self.client.table(REACTIONS)
            .upsert(payload, on_conflict="proposal_id,wallet_address")
            .execute()
        )
        data = response.data or []
        if not data:
            raise ValueError("No data returned from proposal_reactions upsert.")
        return Reaction(**data[0])

    def delete_reaction(self, proposal_id: UUID, wallet_address: str) -> bool:
        response = (
            self.client.table(REACTIONS)
            .delete()
            .eq("proposal_id", str(proposal_id))
            .eq("wallet_address", wallet_address)
            .execute()
        )
        deleted = response.data or []
        return len(deleted) > 0

    def count_reactions(self, proposal_id: UUID) -> Dict[ReactionType, int]:
        response = (
            self.client.table(REACTIONS)
            .select("reaction")
            .eq("proposal_id", str(proposal_id))
            .execute()
        )
        counts = {reaction_type: 0 for reaction_type in ReactionType}
        for row in response.data or []:
            counts[ReactionType(row["reaction"])] += 1
        return counts
