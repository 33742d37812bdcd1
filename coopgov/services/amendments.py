"""Two-phase amendments to a coop's charter text or config sections.

An amendment is a proposed change that stays PENDING until an admin
acknowledges it (which produces a new config version through the
ConfigStore) or rejects it. Proposing a new amendment for a section that
already has one pending supersedes the older one.

    PENDING -> ACKNOWLEDGED | REJECTED | SUPERSEDED
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ValidationError

from coopgov.backend.abstract import AbstractBackend
from coopgov.backend.models import (
    Amendment,
    AmendmentCreate,
    AmendmentFilter,
    AmendmentKind,
    AmendmentReview,
    AmendmentStatus,
    Caller,
    CoopConfig,
    CoopConfigBase,
)
from coopgov.lib.errors import ConflictError, InvalidInputError, NotFoundError
from coopgov.lib.locks import KeyedLock, keyed_lock
from coopgov.lib.logger import configure_logger
from coopgov.services.access import require_admin
from coopgov.services.config_store import ConfigStore

logger = configure_logger(__name__)

CHARTER_SECTION = "charter"

# Config sections and the policy fields each one may change
CONFIG_SECTIONS: Dict[str, Tuple[str, ...]] = {
    "mission_goals": ("mission_goals",),
    "structural_weights": ("structural_weights",),
    "score_mix": ("score_mix",),
    "screening_threshold": (
        "screening_pass_threshold",
        "strong_goal_threshold",
        "mission_min_threshold",
        "structural_gate",
    ),
    "voting_rules": (
        "quorum_percent",
        "approval_threshold_percent",
        "voting_window_days",
        "sc_voting_cap_percent",
    ),
    "proposal_categories": ("proposal_categories",),
    "sector_exclusions": ("sector_exclusions",),
    "submission_requirements": ("min_sc_balance_to_submit",),
    "approval_tiers": ("ai_auto_approve_threshold_usd", "council_vote_threshold_usd"),
    "scorer_agents": ("scorer_agents",),
}


class AcknowledgeResult(BaseModel):
    amendment: Amendment
    config: CoopConfig


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_section_changes(section: str, proposed_changes: Dict[str, Any]) -> Dict[str, Any]:
    """Validate proposed changes for a config section and return them as JSON values.

    Raises:
        InvalidInputError: On an unknown section, fields outside the section,
            or values the policy model rejects
    """
    allowed = CONFIG_SECTIONS.get(section)
    if allowed is None:
        raise InvalidInputError(
            f"Unknown config section: {section}",
            {"section": section, "allowed": sorted(CONFIG_SECTIONS)},
        )
    if not proposed_changes:
        raise InvalidInputError("Amendment proposes no changes", {"section": section})
    unexpected = sorted(set(proposed_changes) - set(allowed))
    if unexpected:
        raise InvalidInputError(
            f"Fields not part of section {section}: {', '.join(unexpected)}",
            {"section": section, "fields": unexpected},
        )
    try:
        validated = CoopConfigBase.model_validate(proposed_changes)
    except ValidationError as e:
        raise InvalidInputError(
            "Proposed changes are not valid policy values",
            {"section": section, "errors": e.errors(include_url=False)},
        ) from e
    return validated.model_dump(exclude_unset=True, mode="json")


class AmendmentWorkflow:
    """Propose, list, acknowledge and reject amendments."""

    def __init__(
        self,
        backend: AbstractBackend,
        config_store: ConfigStore,
        locks: KeyedLock = keyed_lock,
    ):
        self.backend = backend
        self.config_store = config_store
        self.locks = locks

    async def propose_config_amendment(
        self,
        coop_id: str,
        section: str,
        proposed_changes: Dict[str, Any],
        reason: str,
        actor: Caller,
        current_snapshot: Optional[Dict[str, Any]] = None,
    ) -> Amendment:
        """Propose a change to one config section, superseding any pending one.

        The snapshot of the current values is taken from the active config
        unless the caller supplies the values they were looking at.
        """
        changes = normalize_section_changes(section, proposed_changes)
        self._check_reason(reason)

        async with self.locks.hold("coop", coop_id):
            active = self.config_store.require_active(coop_id)
            snapshot = current_snapshot
            if snapshot is None:
                snapshot = active.model_dump(mode="json", include=set(changes))
            new_amendment = AmendmentCreate(
                coop_id=coop_id,
                kind=AmendmentKind.CONFIG,
                section=section,
                proposed_changes=changes,
                current_snapshot=snapshot,
                reason=reason,
                proposed_by=actor.wallet_address,
            )
            return self._insert(new_amendment, actor)

    async def propose_charter_amendment(
        self, coop_id: str, proposed_text: str, reason: str, actor: Caller
    ) -> Amendment:
        """Propose a replacement charter text, superseding any pending one."""
        if not proposed_text or not proposed_text.strip():
            raise InvalidInputError("Charter text cannot be empty", {"coop_id": coop_id})
        self._check_reason(reason)

        async with self.locks.hold("coop", coop_id):
            active = self.config_store.require_active(coop_id)
            new_amendment = AmendmentCreate(
                coop_id=coop_id,
                kind=AmendmentKind.CHARTER,
                section=CHARTER_SECTION,
                proposed_text=proposed_text,
                current_text=active.charter_text or "",
                reason=reason,
                proposed_by=actor.wallet_address,
            )
            return self._insert(new_amendment, actor)

    def _insert(self, new_amendment: AmendmentCreate, actor: Caller) -> Amendment:
        inserted, superseded = self.backend.supersede_and_insert_amendment(
            new_amendment, reviewed_by=actor.wallet_address, reviewed_at=_now()
        )
        logger.info(
            "Proposed amendment",
            extra={
                "coop_id": new_amendment.coop_id,
                "amendment_id": str(inserted.id),
                "section": new_amendment.section,
                "superseded": len(superseded),
            },
        )
        return inserted

    @staticmethod
    def _check_reason(reason: str) -> None:
        if not reason or not reason.strip():
            raise InvalidInputError("A reason is required", {})

    def get_pending(
        self,
        coop_id: str,
        section: Optional[str] = None,
        kind: Optional[AmendmentKind] = None,
    ) -> List[Amendment]:
        return self.backend.list_amendments(
            AmendmentFilter(
                coop_id=coop_id,
                kind=kind,
                section=section,
                status=AmendmentStatus.PENDING,
            )
        )

    def get_all(
        self, coop_id: str, kind: Optional[AmendmentKind] = None
    ) -> List[Amendment]:
        return self.backend.list_amendments(AmendmentFilter(coop_id=coop_id, kind=kind))

    def get_amendment(self, amendment_id: UUID, coop_id: Optional[str] = None) -> Amendment:
        amendment = self.backend.get_amendment(amendment_id)
        if amendment is None or (coop_id is not None and amendment.coop_id != coop_id):
            raise NotFoundError(
                "Amendment not found",
                {"amendment_id": str(amendment_id), "coop_id": coop_id},
            )
        return amendment

    async def acknowledge(
        self, amendment_id: UUID, coop_id: str, actor: Caller
    ) -> AcknowledgeResult:
        """Apply a pending amendment over the current active config.

        Raises:
            ForbiddenError: If the actor is not an admin
            NotFoundError: If the amendment or the active config is missing
            ConflictError: If the amendment is no longer PENDING
        """
        require_admin(actor, "acknowledge amendments")

        async with self.locks.hold("coop", coop_id):
            amendment = self.get_amendment(amendment_id, coop_id)
            self._require_pending(amendment)
            active = self.config_store.require_active(coop_id)

            if amendment.kind == AmendmentKind.CHARTER:
                changes = {"charter_text": amendment.proposed_text}
            else:
                changes = normalize_section_changes(
                    amendment.section, amendment.proposed_changes
                )

            reviewed_at = _now()
            review = AmendmentReview(
                status=AmendmentStatus.ACKNOWLEDGED,
                reviewed_by=actor.wallet_address,
                reviewed_at=reviewed_at,
            )
            reason = (
                f"Acknowledged {amendment.kind} amendment {amendment.id} "
                f"({amendment.section}): {amendment.reason}"
            )
            config = self.config_store.apply_changes(
                active,
                changes,
                reason,
                actor.wallet_address,
                amendment_review=(amendment.id, review),
            )

        acknowledged = amendment.model_copy(update=dict(review))
        logger.info(
            "Acknowledged amendment",
            extra={
                "coop_id": coop_id,
                "amendment_id": str(amendment.id),
                "version": config.version,
            },
        )
        return AcknowledgeResult(amendment=acknowledged, config=config)

    async def reject(
        self,
        amendment_id: UUID,
        reason: Optional[str],
        actor: Caller,
        coop_id: Optional[str] = None,
    ) -> Amendment:
        """Reject a pending amendment. The config is never touched."""
        require_admin(actor, "reject amendments")
        amendment = self.get_amendment(amendment_id, coop_id)

        async with self.locks.hold("coop", amendment.coop_id):
            self._require_pending(amendment)
            review = AmendmentReview(
                status=AmendmentStatus.REJECTED,
                reviewed_by=actor.wallet_address,
                reviewed_at=_now(),
                review_reason=reason,
            )
            rejected = self.backend.review_amendment(
                amendment.id, AmendmentStatus.PENDING, review
            )
            if rejected is None:
                raise ConflictError(
                    "Amendment is no longer pending",
                    {"amendment_id": str(amendment_id)},
                )

        logger.info(
            "Rejected amendment",
            extra={"coop_id": amendment.coop_id, "amendment_id": str(amendment.id)},
        )
        return rejected

    @staticmethod
    def _require_pending(amendment: Amendment) -> None:
        if amendment.status != AmendmentStatus.PENDING:
            raise ConflictError(
                f"Amendment is {amendment.status}, not PENDING",
                {"amendment_id": str(amendment.id), "status": str(amendment.status)},
            )
