"""Versioned coop policy configuration with an audit trail.

Every change produces a new immutable version. The previous version is
deactivated and the new one inserted in one backend transaction, while the
per-coop lock keeps writers in this process from racing for the same
version number.
"""

from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, Field

from coopgov.backend.abstract import AbstractBackend
from coopgov.backend.models import (
    AmendmentReview,
    Caller,
    ConfigDiffEntry,
    CoopConfig,
    CoopConfigAudit,
    CoopConfigAuditCreate,
    CoopConfigBase,
    CoopConfigCreate,
    POLICY_FIELDS,
)
from coopgov.lib.errors import InvalidInputError, NotFoundError
from coopgov.lib.locks import KeyedLock, keyed_lock
from coopgov.lib.logger import configure_logger
from coopgov.services.access import require_admin
from coopgov.services.config_defaults import default_policy

logger = configure_logger(__name__)


class AuditTrailPage(BaseModel):
    """One page of a coop's config audit trail, newest first."""

    entries: List[CoopConfigAudit] = Field(default_factory=list)
    total: int = 0
    limit: int
    offset: int


def compute_diff(current: CoopConfig, changes: Dict[str, Any]) -> List[ConfigDiffEntry]:
    """Diff the supplied fields against the current version.

    Only keys present in `changes` are compared, so fields the caller did not
    touch never appear in the diff even if they differ from the defaults.

    Args:
        current: The active config version
        changes: JSON-mode values keyed by policy field name

    Returns:
        One entry per field whose value actually changes
    """
    before_values = current.model_dump(mode="json", include=set(changes))
    diff = []
    for field_name, after in changes.items():
        before = before_values.get(field_name)
        if before != after:
            diff.append(ConfigDiffEntry(field=field_name, before=before, after=after))
    return diff


class ConfigStore:
    """Holds one active, versioned policy document per coop."""

    def __init__(self, backend: AbstractBackend, locks: KeyedLock = keyed_lock):
        self.backend = backend
        self.locks = locks

    def get_active(self, coop_id: str) -> Optional[CoopConfig]:
        return self.backend.get_active_coop_config(coop_id)

    def require_active(self, coop_id: str) -> CoopConfig:
        config = self.backend.get_active_coop_config(coop_id)
        if config is None:
            raise NotFoundError(
                "No active config for coop", {"coop_id": coop_id}
            )
        return config

    async def create(
        self, coop_id: str, fields: CoopConfigBase, actor: Caller
    ) -> CoopConfig:
        """Create version 1 of a coop's config, seeding defaults for omitted fields.

        Raises:
            ForbiddenError: If the actor is not an admin
            ConflictError: If the coop already has an active config
        """
        require_admin(actor, "create a coop config")
        supplied = fields.model_dump(exclude_unset=True, mode="json")
        async with self.locks.hold("coop", coop_id):
            new_config = CoopConfigCreate(
                coop_id=coop_id,
                version=1,
                is_active=True,
                created_by=actor.wallet_address,
                **{**default_policy(), **supplied},
            )
            created = self.backend.create_coop_config(new_config)

        logger.info(
            "Created coop config",
            extra={
                "coop_id": coop_id,
                "version": created.version,
                "seeded_fields": len(POLICY_FIELDS) - len(supplied),
            },
        )
        return created

    async def update(
        self, coop_id: str, fields: CoopConfigBase, reason: str, actor: Caller
    ) -> CoopConfig:
        """Create the next config version with the supplied fields merged over the current one.

        Args:
            coop_id: The coop to update
            fields: Partial policy; only explicitly set fields are applied
            reason: Why the change is made, stored in the audit record
            actor: The admin making the change

        Returns:
            The new active version

        Raises:
            ForbiddenError: If the actor is not an admin
            InvalidInputError: If no fields were supplied
            NotFoundError: If the coop has no active config
        """
        require_admin(actor, "update a coop config")
        changes = fields.model_dump(exclude_unset=True, mode="json")
        if not changes:
            raise InvalidInputError("No config fields supplied", {"coop_id": coop_id})

        async with self.locks.hold("coop", coop_id):
            current = self.require_active(coop_id)
            return self.apply_changes(
                current, changes, reason, actor.wallet_address
            )

    def apply_changes(
        self,
        current: CoopConfig,
        changes: Dict[str, Any],
        reason: str,
        changed_by: str,
        amendment_review: Optional[Tuple[UUID, AmendmentReview]] = None,
    ) -> CoopConfig:
        """Write version+1 from `current` and `changes`. Callers hold the coop lock."""
        diff = compute_diff(current, changes)
        merged = {**current.policy_snapshot(), **changes}
        new_config = CoopConfigCreate(
            coop_id=current.coop_id,
            version=current.version + 1,
            is_active=True,
            created_by=changed_by,
            **merged,
        )
        audit = CoopConfigAuditCreate(
            coop_id=current.coop_id,
            config_version=new_config.version,
            changed_by=changed_by,
            reason=reason,
            diff=diff,
            amendment_id=amendment_review[0] if amendment_review else None,
        )
        updated = self.backend.replace_active_coop_config(
            current.id, new_config, audit, amendment_review
        )

        logger.info(
            "Activated new coop config version",
            extra={
                "coop_id": current.coop_id,
                "version": updated.version,
                "changed_fields": ",".join(entry.field for entry in diff) or "-",
            },
        )
        return updated

    def list_versions(self, coop_id: str) -> List[CoopConfig]:
        return self.backend.list_coop_configs(coop_id)

    def get_version(self, coop_id: str, version: int) -> CoopConfig:
        config = self.backend.get_coop_config_version(coop_id, version)
        if config is None:
            raise NotFoundError(
                "Config version not found", {"coop_id": coop_id, "version": version}
            )
        return config

    def get_audit_trail(
        self, coop_id: str, limit: int = 20, offset: int = 0
    ) -> AuditTrailPage:
        if limit < 1 or limit > 100 or offset < 0:
            raise InvalidInputError(
                "limit must be 1..100 and offset non-negative",
                {"limit": limit, "offset": offset},
            )
        entries, total = self.backend.list_coop_config_audits(coop_id, limit, offset)
        return AuditTrailPage(entries=entries, total=total, limit=limit, offset=offset)
