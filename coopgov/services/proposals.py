"""Proposal lifecycle: submission, revisions and status transitions.

Every (re)submission runs the scoring engine against the coop's current
active config and appends an immutable revision; the proposal row mirrors
the latest revision. Status only changes through admin transitions,
proposer withdrawal, or a deciding council vote.
"""

from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from coopgov.backend.abstract import AbstractBackend
from coopgov.backend.models import (
    Alternative,
    Caller,
    CoopConfig,
    Decision,
    Evaluation,
    GoalScoreCreate,
    Proposal,
    ProposalBase,
    ProposalCreate,
    ProposalFilter,
    ProposalMetadata,
    ProposalRevision,
    ProposalRevisionCreate,
    ProposalStatus,
    RevisionSource,
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
from coopgov.services.access import require_admin, same_wallet
from coopgov.services.ai.scoring import ScoringEngine, council_gate
from coopgov.services.config_store import ConfigStore
from coopgov.services.identity import AbstractTokenLedger

logger = configure_logger(__name__)

# Admin-gated transitions keyed by current status
ADMIN_TRANSITIONS: Dict[ProposalStatus, FrozenSet[ProposalStatus]] = {
    ProposalStatus.SUBMITTED: frozenset(
        [
            ProposalStatus.VOTABLE,
            ProposalStatus.REJECTED,
            ProposalStatus.WITHDRAWN,
            ProposalStatus.FAILED,
        ]
    ),
    ProposalStatus.VOTABLE: frozenset(
        [
            ProposalStatus.APPROVED,
            ProposalStatus.REJECTED,
            ProposalStatus.WITHDRAWN,
            ProposalStatus.FAILED,
        ]
    ),
    ProposalStatus.APPROVED: frozenset(
        [ProposalStatus.FUNDED, ProposalStatus.WITHDRAWN, ProposalStatus.FAILED]
    ),
    ProposalStatus.REJECTED: frozenset([ProposalStatus.FAILED]),
    ProposalStatus.FUNDED: frozenset([ProposalStatus.FAILED]),
    ProposalStatus.FAILED: frozenset(),
    ProposalStatus.WITHDRAWN: frozenset(),
}

# Metadata fields an alternative may change with a `field.subfield` key
NESTED_METADATA_FIELDS = frozenset(["budget", "region"])

# Statuses from which a proposal that needs no council vote may be approved directly
AUTO_APPROVAL_SOURCES = frozenset([ProposalStatus.SUBMITTED, ProposalStatus.VOTABLE])

# Statuses in which the proposer may still edit or withdraw
OPEN_STATUSES = [ProposalStatus.SUBMITTED, ProposalStatus.VOTABLE]


class ProposalPage(BaseModel):
    items: List[Proposal] = Field(default_factory=list)
    total: int = 0
    limit: int
    offset: int


def _now() -> datetime:
    return datetime.now(timezone.utc)


def check_admin_transition(proposal: Proposal, new_status: ProposalStatus) -> None:
    """Raise ConflictError unless an admin may move `proposal` to `new_status`."""
    current = proposal.status
    if new_status == ProposalStatus.APPROVED:
        if proposal.council_required:
            raise ConflictError(
                "Proposal requires a council vote to be approved",
                {"proposal_id": str(proposal.id), "status": str(current)},
            )
        if proposal.decision != Decision.ADVANCE:
            raise ConflictError(
                f"Cannot approve a proposal whose screening decision is {proposal.decision}",
                {"proposal_id": str(proposal.id), "decision": str(proposal.decision)},
            )
        if current in AUTO_APPROVAL_SOURCES:
            return

    allowed = ADMIN_TRANSITIONS.get(current, frozenset())
    if new_status not in allowed:
        raise ConflictError(
            f"Cannot move proposal from {current} to {new_status}",
            {
                "proposal_id": str(proposal.id),
                "from": str(current),
                "to": str(new_status),
                "allowed": sorted(str(s) for s in allowed),
            },
        )


def apply_alternative_changes(
    proposal: Proposal, alternative: Alternative
) -> Tuple[str, ProposalMetadata]:
    """Rewrite the proposal text and metadata per an alternative's field changes.

    Changes are keyed by field name, or `field.subfield` for budget and
    region. Unknown fields, and subfields of plain fields, are ignored.
    """
    data = ProposalMetadata(
        title=proposal.title,
        summary=proposal.summary,
        category=proposal.category,
        budget=proposal.budget,
        region=proposal.region,
    ).model_dump(mode="json")

    applied = []
    for path, value in alternative.changes.items():
        head, _, tail = path.partition(".")
        if head not in data or (tail and head not in NESTED_METADATA_FIELDS):
            logger.debug("Ignoring unknown alternative field", extra={"field": path})
            continue
        if tail:
            data[head] = {**(data[head] or {}), tail: value}
        else:
            data[head] = value
        applied.append(f"- {path}: {value}")

    try:
        metadata = ProposalMetadata.model_validate(data)
    except ValidationError as e:
        raise InvalidInputError(
            "Alternative changes produce invalid proposal fields",
            {"proposal_id": str(proposal.id), "errors": e.errors(include_url=False)},
        ) from e

    text = (
        f"{proposal.raw_text}\n\n---\n"
        f'Revised per alternative "{alternative.label}": {alternative.rationale}'
    )
    if applied:
        text += "\nChanges:\n" + "\n".join(applied)
    return text, metadata


class ProposalLifecycle:
    """Owns the proposal state machine and revision history."""

    def __init__(
        self,
        backend: AbstractBackend,
        config_store: ConfigStore,
        scoring_engine: ScoringEngine,
        ledger: AbstractTokenLedger,
        locks: KeyedLock = keyed_lock,
    ):
        self.backend = backend
        self.config_store = config_store
        self.scoring_engine = scoring_engine
        self.ledger = ledger
        self.locks = locks

    # ----------------------------------------------------------------
    # Queries
    # ----------------------------------------------------------------
    def get_by_id(self, proposal_id: UUID) -> Proposal:
        proposal = self.backend.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", {"proposal_id": str(proposal_id)})
        return proposal

    def list(
        self,
        coop_id: Optional[str] = None,
        status: Optional[ProposalStatus] = None,
        proposer_wallet: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> ProposalPage:
        if limit < 1 or limit > 100 or offset < 0:
            raise InvalidInputError(
                "limit must be 1..100 and offset non-negative",
                {"limit": limit, "offset": offset},
            )
        filters = ProposalFilter(
            coop_id=coop_id,
            status=status,
            proposer_wallet=proposer_wallet,
            category=category,
        )
        items, total = self.backend.list_proposals(filters, limit, offset)
        return ProposalPage(items=items, total=total, limit=limit, offset=offset)

    def get_revisions(self, proposal_id: UUID) -> List[ProposalRevision]:
        self.get_by_id(proposal_id)
        return self.backend.list_revisions(proposal_id)

    def get_revision(self, proposal_id: UUID, revision_number: int) -> ProposalRevision:
        revision = self.backend.get_revision(proposal_id, revision_number)
        if revision is None:
            raise NotFoundError(
                "Revision not found",
                {"proposal_id": str(proposal_id), "revision_number": revision_number},
            )
        return revision

    # ----------------------------------------------------------------
    # Submission and revisions
    # ----------------------------------------------------------------
    def _check_text(self, text: str) -> str:
        text = (text or "").strip()
        min_length = app_config.governance.proposal_text_min_length
        max_length = app_config.governance.proposal_text_max_length
        if len(text) < min_length or len(text) > max_length:
            raise InvalidInputError(
                f"Proposal text must be {min_length}..{max_length} characters",
                {"length": len(text)},
            )
        return text

    def _check_balance(self, caller: Caller, config: CoopConfig) -> None:
        minimum = config.min_sc_balance_to_submit or 0.0
        if minimum <= 0:
            return
        balance = self.ledger.get_sc_balance(config.coop_id, caller.wallet_address)
        if balance < minimum:
            raise ForbiddenError(
                f"Submitting requires at least {minimum:g} SC",
                {"wallet_address": caller.wallet_address, "balance": balance},
            )

    def _build_revision(
        self,
        text: str,
        metadata: ProposalMetadata,
        evaluation: Evaluation,
        config: CoopConfig,
        revision_number: int,
        status: ProposalStatus,
        caller: Caller,
        source: RevisionSource,
        alternative_index: Optional[int] = None,
    ) -> Tuple[ProposalBase, ProposalRevisionCreate, List[GoalScoreCreate]]:
        council_required, tier = council_gate(
            evaluation.decision, evaluation.budget, config
        )
        current_view = ProposalBase(
            title=evaluation.title,
            summary=evaluation.summary,
            raw_text=text,
            category=evaluation.category,
            budget=evaluation.budget,
            region=evaluation.region,
            decision=evaluation.decision,
            decision_reasons=evaluation.decision_reasons,
            missing_data=evaluation.missing_data,
            alternatives=evaluation.alternatives,
            best_alternative=evaluation.best_alternative,
            audit_checks=evaluation.audit_checks,
            composite_score=evaluation.composite_score,
            council_required=council_required,
            council_vote_threshold_usd=config.council_vote_threshold_usd,
            approval_tier=tier,
            current_revision=revision_number,
            config_version=config.version,
            engine_version=evaluation.engine_version,
            adjusted_scores=None,
        )
        revision = ProposalRevisionCreate(
            revision_number=revision_number,
            raw_text=text,
            evaluation=evaluation,
            decision=evaluation.decision,
            decision_reasons=evaluation.decision_reasons,
            audit_checks=evaluation.audit_checks,
            status=status,
            engine_version=evaluation.engine_version,
            config_version=config.version,
            source=source,
            alternative_index=alternative_index,
            submitted_by=caller.wallet_address,
            submitted_metadata=metadata,
        )
        goal_scores = [
            GoalScoreCreate(goal_id=g.goal_id, domain=g.domain, ai_score=g.score)
            for g in evaluation.goal_scores
        ]
        return current_view, revision, goal_scores

    async def submit(
        self,
        caller: Caller,
        coop_id: str,
        text: str,
        metadata: Optional[ProposalMetadata] = None,
    ) -> Proposal:
        """Evaluate and store a new proposal with its first revision.

        Raises:
            NotFoundError: If the coop has no active config
            ForbiddenError: If the caller's SC balance is below the submission minimum
            InvalidInputError: If the text length is out of bounds
            UpstreamFailureError: If scoring fails; nothing is written
        """
        text = self._check_text(text)
        metadata = metadata or ProposalMetadata()
        config = self.config_store.require_active(coop_id)
        self._check_balance(caller, config)

        evaluation = await self.scoring_engine.evaluate(text, metadata, config)
        current_view, revision, goal_scores = self._build_revision(
            text,
            metadata,
            evaluation,
            config,
            revision_number=1,
            status=ProposalStatus.SUBMITTED,
            caller=caller,
            source=RevisionSource.SUBMIT,
        )
        new_proposal = ProposalCreate(
            coop_id=coop_id,
            proposer_wallet=caller.wallet_address,
            status=ProposalStatus.SUBMITTED,
            **current_view.model_dump(exclude={"status"}),
        )
        proposal = self.backend.create_proposal_with_revision(
            new_proposal, revision, goal_scores
        )

        logger.info(
            "Submitted proposal",
            extra={
                "coop_id": coop_id,
                "proposal_id": str(proposal.id),
                "decision": str(proposal.decision),
                "council_required": proposal.council_required,
            },
        )
        return proposal

    def _require_open_for_proposer(self, proposal: Proposal, caller: Caller, action: str) -> None:
        if not same_wallet(proposal.proposer_wallet, caller.wallet_address):
            raise ForbiddenError(
                f"Only the proposer can {action} this proposal",
                {"proposal_id": str(proposal.id), "wallet_address": caller.wallet_address},
            )
        if proposal.status not in OPEN_STATUSES:
            raise ConflictError(
                f"Cannot {action} a proposal that is {proposal.status}",
                {"proposal_id": str(proposal.id), "status": str(proposal.status)},
            )

    def _declared_metadata(
        self, proposal: Proposal, overrides: Optional[ProposalMetadata]
    ) -> ProposalMetadata:
        current = (
            self.backend.get_revision(proposal.id, proposal.current_revision)
            if proposal.current_revision
            else None
        )
        declared = current.submitted_metadata.model_dump(exclude_none=True) if current else {}
        if overrides is not None:
            declared.update(overrides.model_dump(exclude_unset=True))
        return ProposalMetadata.model_validate(declared)

    async def _revise(
        self,
        caller: Caller,
        proposal: Proposal,
        text: str,
        metadata: ProposalMetadata,
        source: RevisionSource,
        alternative_index: Optional[int] = None,
    ) -> Proposal:
        """Evaluate new text and append a revision. Callers hold the proposal lock."""
        config = self.config_store.require_active(proposal.coop_id)
        evaluation = await self.scoring_engine.evaluate(text, metadata, config)

        expected_revision = proposal.current_revision or 0
        current_view, revision, goal_scores = self._build_revision(
            text,
            metadata,
            evaluation,
            config,
            revision_number=expected_revision + 1,
            status=proposal.status,
            caller=caller,
            source=source,
            alternative_index=alternative_index,
        )
        updated = self.backend.append_revision(
            proposal.id,
            expected_revision,
            OPEN_STATUSES,
            current_view,
            revision,
            goal_scores,
        )
        if updated is None:
            raise ConflictError(
                "Proposal changed while it was being re-evaluated",
                {"proposal_id": str(proposal.id), "revision_number": expected_revision},
            )

        logger.info(
            "Appended proposal revision",
            extra={
                "proposal_id": str(proposal.id),
                "revision_number": revision.revision_number,
                "source": str(source),
                "decision": str(updated.decision),
            },
        )
        return updated

    async def resubmit(
        self,
        caller: Caller,
        proposal_id: UUID,
        text: str,
        metadata: Optional[ProposalMetadata] = None,
    ) -> Proposal:
        """Re-evaluate revised text as a new revision. Status is left unchanged.

        Metadata the proposer declared on the current revision carries over;
        fields set in `metadata` replace it.
        """
        text = self._check_text(text)
        async with self.locks.hold("proposal", proposal_id):
            proposal = self.get_by_id(proposal_id)
            self._require_open_for_proposer(proposal, caller, "resubmit")
            return await self._revise(
                caller,
                proposal,
                text,
                self._declared_metadata(proposal, metadata),
                RevisionSource.RESUBMIT,
            )

    async def apply_alternative(
        self, caller: Caller, proposal_id: UUID, alternative_index: int
    ) -> Proposal:
        """Rewrite the proposal per one of its alternatives and re-evaluate it officially."""
        async with self.locks.hold("proposal", proposal_id):
            proposal = self.get_by_id(proposal_id)
            self._require_open_for_proposer(proposal, caller, "apply an alternative to")
            alternatives = proposal.alternatives or []
            if alternative_index < 0 or alternative_index >= len(alternatives):
                raise InvalidInputError(
                    "Alternative index out of range",
                    {
                        "proposal_id": str(proposal_id),
                        "alternative_index": alternative_index,
                        "available": len(alternatives),
                    },
                )
            text, metadata = apply_alternative_changes(
                proposal, alternatives[alternative_index]
            )
            text = self._check_text(text)
            return await self._revise(
                caller,
                proposal,
                text,
                metadata,
                RevisionSource.ALTERNATIVE,
                alternative_index=alternative_index,
            )

    # ----------------------------------------------------------------
    # Status transitions
    # ----------------------------------------------------------------
    async def withdraw(self, caller: Caller, proposal_id: UUID) -> Proposal:
        """Withdraw an open proposal. Only the proposer may do this."""
        async with self.locks.hold("proposal", proposal_id):
            proposal = self.get_by_id(proposal_id)
            self._require_open_for_proposer(proposal, caller, "withdraw")
            now = _now()
            updated = self.backend.update_proposal(
                proposal_id,
                ProposalBase(
                    status=ProposalStatus.WITHDRAWN,
                    withdrawn_at=now,
                    withdrawn_by=caller.wallet_address,
                ),
                expected_status=proposal.status,
            )
            if updated is None:
                raise ConflictError(
                    "Proposal status changed concurrently",
                    {"proposal_id": str(proposal_id)},
                )

        logger.info(
            "Withdrew proposal",
            extra={"proposal_id": str(proposal_id), "from_status": str(proposal.status)},
        )
        return updated

    async def update_status(
        self, caller: Caller, proposal_id: UUID, new_status: ProposalStatus
    ) -> Proposal:
        """Admin status transition.

        Raises:
            ForbiddenError: If the caller is not an admin
            NotFoundError: If the proposal does not exist
            ConflictError: If the transition is not allowed, including direct
                approval of a council-gated or non-advancing proposal
        """
        require_admin(caller, "change proposal status")
        async with self.locks.hold("proposal", proposal_id):
            proposal = self.get_by_id(proposal_id)
            check_admin_transition(proposal, new_status)

            changes = {"status": new_status}
            if new_status == ProposalStatus.VOTABLE:
                changes["votable_at"] = _now()
            elif new_status == ProposalStatus.WITHDRAWN:
                changes["withdrawn_at"] = _now()
                changes["withdrawn_by"] = caller.wallet_address
            updated = self.backend.update_proposal(
                proposal_id, ProposalBase(**changes), expected_status=proposal.status
            )
            if updated is None:
                raise ConflictError(
                    "Proposal status changed concurrently",
                    {"proposal_id": str(proposal_id)},
                )

        logger.info(
            "Updated proposal status",
            extra={
                "proposal_id": str(proposal_id),
                "from_status": str(proposal.status),
                "status": str(new_status),
                "actor": caller.wallet_address,
            },
        )
        return updated
