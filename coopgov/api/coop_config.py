from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from coopgov.api.dependencies import (
    get_amendment_workflow,
    get_config_store,
    to_http_exception,
    verify_caller,
)
from coopgov.backend.models import (
    Amendment,
    AmendmentKind,
    Caller,
    CoopConfig,
    CoopConfigBase,
)
from coopgov.config import config
from coopgov.lib.errors import GovernanceError, NotFoundError
from coopgov.lib.logger import configure_logger
from coopgov.services.amendments import AcknowledgeResult, AmendmentWorkflow
from coopgov.services.config_store import AuditTrailPage, ConfigStore

# Configure logger
logger = configure_logger(__name__)

# Create the router
router = APIRouter(prefix="/coops/{coop_id}", tags=["coop-config"])


class UpdateConfigRequest(BaseModel):
    """Model for a direct admin config update."""

    fields: CoopConfigBase = Field(..., description="Policy fields to change")
    reason: str = Field(..., min_length=1, description="Why the change is made")


class ConfigAmendmentRequest(BaseModel):
    """Model for proposing a change to one config section."""

    section: str = Field(..., description="Config section, e.g. 'voting_rules'")
    proposed_changes: Dict[str, Any] = Field(
        ..., description="New values keyed by field name"
    )
    reason: str = Field(..., min_length=1, description="Why the change is proposed")
    current_snapshot: Optional[Dict[str, Any]] = Field(
        None, description="Values the proposer was looking at"
    )


class CharterAmendmentRequest(BaseModel):
    """Model for proposing a replacement charter text."""

    proposed_text: str = Field(..., min_length=1, description="Full new charter text")
    reason: str = Field(..., min_length=1, description="Why the change is proposed")


class RejectAmendmentRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Why the amendment is rejected")


@router.get("/config", response_model=CoopConfig)
async def get_active_config(
    coop_id: str, store: ConfigStore = Depends(get_config_store)
) -> CoopConfig:
    """Get the active config version of a coop."""
    try:
        return store.require_active(coop_id)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get active config", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get config: {str(e)}")


@router.post("/config", response_model=CoopConfig, status_code=201)
async def create_config(
    coop_id: str,
    fields: CoopConfigBase,
    caller: Caller = Depends(verify_caller),
    store: ConfigStore = Depends(get_config_store),
) -> CoopConfig:
    """Create version 1 of a coop's config. Omitted fields get the default policy."""
    try:
        return await store.create(coop_id, fields, caller)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to create config", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to create config: {str(e)}")


@router.patch("/config", response_model=CoopConfig)
async def update_config(
    coop_id: str,
    payload: UpdateConfigRequest,
    caller: Caller = Depends(verify_caller),
    store: ConfigStore = Depends(get_config_store),
) -> CoopConfig:
    """Create the next config version with the given fields changed."""
    try:
        return await store.update(coop_id, payload.fields, payload.reason, caller)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to update config", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to update config: {str(e)}")


@router.get("/config/versions", response_model=List[CoopConfig])
async def list_config_versions(
    coop_id: str, store: ConfigStore = Depends(get_config_store)
) -> List[CoopConfig]:
    try:
        versions = store.list_versions(coop_id)
        if not versions:
            raise NotFoundError("No config for coop", {"coop_id": coop_id})
        return versions
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to list config versions", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to list versions: {str(e)}")


@router.get("/config/versions/{version}", response_model=CoopConfig)
async def get_config_version(
    coop_id: str, version: int, store: ConfigStore = Depends(get_config_store)
) -> CoopConfig:
    try:
        return store.get_version(coop_id, version)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get config version", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get version: {str(e)}")


@router.get("/config/audit", response_model=AuditTrailPage)
async def get_audit_trail(
    coop_id: str,
    limit: int = Query(
        config.governance.default_page_size, description="Page size, 1..100"
    ),
    offset: int = Query(0, description="Entries to skip"),
    store: ConfigStore = Depends(get_config_store),
) -> AuditTrailPage:
    """Get the config change history of a coop, newest first."""
    try:
        return store.get_audit_trail(coop_id, limit=limit, offset=offset)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get audit trail", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get audit trail: {str(e)}")


# ----------------------------------------------------------------
# Amendments
# ----------------------------------------------------------------
@router.post("/amendments", response_model=Amendment, status_code=201)
async def propose_config_amendment(
    coop_id: str,
    payload: ConfigAmendmentRequest,
    caller: Caller = Depends(verify_caller),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
) -> Amendment:
    """Propose a change to one config section. Any member may propose."""
    try:
        return await workflow.propose_config_amendment(
            coop_id,
            payload.section,
            payload.proposed_changes,
            payload.reason,
            caller,
            current_snapshot=payload.current_snapshot,
        )
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to propose config amendment", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to propose amendment: {str(e)}")


@router.post("/amendments/charter", response_model=Amendment, status_code=201)
async def propose_charter_amendment(
    coop_id: str,
    payload: CharterAmendmentRequest,
    caller: Caller = Depends(verify_caller),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
) -> Amendment:
    try:
        return await workflow.propose_charter_amendment(
            coop_id, payload.proposed_text, payload.reason, caller
        )
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to propose charter amendment", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to propose amendment: {str(e)}")


@router.get("/amendments", response_model=List[Amendment])
async def list_amendments(
    coop_id: str,
    pending_only: bool = Query(True, description="Only PENDING amendments"),
    kind: Optional[AmendmentKind] = Query(None, description="charter or config"),
    section: Optional[str] = Query(None, description="Config section"),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
) -> List[Amendment]:
    """List amendments, newest first."""
    try:
        if pending_only:
            return workflow.get_pending(coop_id, section=section, kind=kind)
        return workflow.get_all(coop_id, kind=kind)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to list amendments", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to list amendments: {str(e)}")


@router.get("/amendments/{amendment_id}", response_model=Amendment)
async def get_amendment(
    coop_id: str,
    amendment_id: UUID,
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
) -> Amendment:
    try:
        return workflow.get_amendment(amendment_id, coop_id)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get amendment", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get amendment: {str(e)}")


@router.post("/amendments/{amendment_id}/acknowledge", response_model=AcknowledgeResult)
async def acknowledge_amendment(
    coop_id: str,
    amendment_id: UUID,
    caller: Caller = Depends(verify_caller),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
) -> AcknowledgeResult:
    """Apply a pending amendment as a new config version."""
    try:
        return await workflow.acknowledge(amendment_id, coop_id, caller)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to acknowledge amendment", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to acknowledge amendment: {str(e)}")


@router.post("/amendments/{amendment_id}/reject", response_model=Amendment)
async def reject_amendment(
    coop_id: str,
    amendment_id: UUID,
    payload: RejectAmendmentRequest,
    caller: Caller = Depends(verify_caller),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
) -> Amendment:
    try:
        return await workflow.reject(amendment_id, payload.reason, caller, coop_id=coop_id)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to reject amendment", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to reject amendment: {str(e)}")
