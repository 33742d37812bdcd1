from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from coopgov.api.dependencies import get_experts, to_http_exception, verify_caller
from coopgov.backend.models import Caller, ExpertAssignment, GoalScore, ScoreAdjustment
from coopgov.lib.errors import GovernanceError
from coopgov.lib.logger import configure_logger
from coopgov.services.experts import ExpertQueueItem, ExpertService

# Configure logger
logger = configure_logger(__name__)

# Create the router
router = APIRouter(tags=["experts"])


class AssignmentRequest(BaseModel):
    wallet_address: str = Field(..., description="Expert wallet address")
    domain: str = Field(..., description="Domain the expert may score")


class ExpertScoreRequest(BaseModel):
    score: float = Field(..., description="Expert score from 0.0 to 1.0")
    reason: str = Field(..., description="Why the AI score is overridden")


@router.post("/experts/assignments", response_model=ExpertAssignment, status_code=201)
async def assign_expert(
    payload: AssignmentRequest,
    caller: Caller = Depends(verify_caller),
    experts: ExpertService = Depends(get_experts),
) -> ExpertAssignment:
    try:
        return experts.assign_expert(caller, payload.wallet_address, payload.domain)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to assign expert", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to assign expert: {str(e)}")


@router.delete("/experts/assignments", response_model=ExpertAssignment)
async def revoke_expert(
    wallet_address: str = Query(..., description="Expert wallet address"),
    domain: str = Query(..., description="Domain to revoke"),
    caller: Caller = Depends(verify_caller),
    experts: ExpertService = Depends(get_experts),
) -> ExpertAssignment:
    try:
        return experts.revoke_expert(caller, wallet_address, domain)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to revoke expert", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to revoke expert: {str(e)}")


@router.get("/experts/assignments", response_model=List[ExpertAssignment])
async def list_assignments(
    domain: Optional[str] = Query(None, description="Filter by domain"),
    include_inactive: bool = Query(False, description="Include revoked assignments"),
    experts: ExpertService = Depends(get_experts),
) -> List[ExpertAssignment]:
    try:
        return experts.list_assignments(domain=domain, include_inactive=include_inactive)
    except Exception as e:
        logger.error("Failed to list expert assignments", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to list assignments: {str(e)}")


@router.get("/experts/me", response_model=List[ExpertAssignment])
async def my_assignments(
    caller: Caller = Depends(verify_caller),
    experts: ExpertService = Depends(get_experts),
) -> List[ExpertAssignment]:
    try:
        return experts.my_assignments(caller)
    except Exception as e:
        logger.error("Failed to list own assignments", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to list assignments: {str(e)}")


@router.get("/experts/queue", response_model=List[ExpertQueueItem])
async def get_expert_queue(
    coop_id: Optional[str] = Query(None, description="Filter by coop"),
    caller: Caller = Depends(verify_caller),
    experts: ExpertService = Depends(get_experts),
) -> List[ExpertQueueItem]:
    """Open proposals with goals in the caller's domains that lack an expert score."""
    try:
        return experts.get_expert_queue(caller, coop_id=coop_id)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get expert queue", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get expert queue: {str(e)}")


@router.get("/proposals/{proposal_id}/goal-scores", response_model=List[GoalScore])
async def get_goal_scores(
    proposal_id: UUID,
    revision_number: Optional[int] = Query(None, description="Defaults to the latest revision"),
    experts: ExpertService = Depends(get_experts),
) -> List[GoalScore]:
    try:
        return experts.get_goal_scores(proposal_id, revision_number)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get goal scores", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get goal scores: {str(e)}")


@router.put(
    "/proposals/{proposal_id}/revisions/{revision_number}/goal-scores/{goal_id}",
    response_model=GoalScore,
)
async def upsert_expert_score(
    proposal_id: UUID,
    revision_number: int,
    goal_id: str,
    payload: ExpertScoreRequest,
    caller: Caller = Depends(verify_caller),
    experts: ExpertService = Depends(get_experts),
) -> GoalScore:
    """Override the AI score of a goal. Only experts assigned to the goal's domain may do this."""
    try:
        return await experts.upsert_expert_score(
            caller, proposal_id, revision_number, goal_id, payload.score, payload.reason
        )
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to save expert score", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to save expert score: {str(e)}")


@router.get("/goal-scores/{goal_score_id}/adjustments", response_model=List[ScoreAdjustment])
async def get_adjustment_log(
    goal_score_id: UUID,
    experts: ExpertService = Depends(get_experts),
) -> List[ScoreAdjustment]:
    try:
        return experts.get_adjustment_log(goal_score_id)
    except Exception as e:
        logger.error("Failed to get adjustment log", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get adjustment log: {str(e)}")
