from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from coopgov.api.dependencies import (
    get_council,
    get_proposal_lifecycle,
    to_http_exception,
    verify_caller,
)
from coopgov.backend.models import (
    Caller,
    CouncilVoteResult,
    Proposal,
    ProposalMetadata,
    ProposalRevision,
    ProposalStatus,
    VoteChoice,
    VoteTally,
)
from coopgov.config import config
from coopgov.lib.errors import GovernanceError
from coopgov.lib.logger import configure_logger
from coopgov.services.council import CouncilVoting
from coopgov.services.proposals import ProposalLifecycle, ProposalPage

# Configure logger
logger = configure_logger(__name__)

# Create the router
router = APIRouter(prefix="/proposals", tags=["proposals"])


class SubmitProposalRequest(BaseModel):
    """Model for a new proposal submission."""

    coop_id: Optional[str] = Field(
        None, description="Coop to submit to; defaults to the configured coop"
    )
    text: str = Field(..., description="Free-text proposal")
    metadata: Optional[ProposalMetadata] = Field(
        None, description="Title, category, budget or region supplied by the proposer"
    )


class ResubmitProposalRequest(BaseModel):
    text: str = Field(..., description="Revised proposal text")
    metadata: Optional[ProposalMetadata] = Field(
        None, description="Revised proposer-supplied metadata"
    )


class StatusUpdateRequest(BaseModel):
    status: ProposalStatus = Field(..., description="Target status")


class CouncilVoteRequest(BaseModel):
    choice: VoteChoice = Field(..., description="FOR, AGAINST or ABSTAIN")


@router.post("", response_model=Proposal, status_code=201)
async def submit_proposal(
    payload: SubmitProposalRequest,
    caller: Caller = Depends(verify_caller),
    lifecycle: ProposalLifecycle = Depends(get_proposal_lifecycle),
) -> Proposal:
    """Submit a proposal for evaluation.

    The proposal is scored against the coop's active config and stored
    with its first revision. Nothing is stored when scoring fails.
    """
    try:
        return await lifecycle.submit(
            caller,
            payload.coop_id or config.governance.default_coop_id,
            payload.text,
            payload.metadata,
        )
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to submit proposal", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to submit proposal: {str(e)}")


@router.get("", response_model=ProposalPage)
async def list_proposals(
    coop_id: Optional[str] = Query(None, description="Filter by coop"),
    status: Optional[ProposalStatus] = Query(None, description="Filter by status"),
    proposer_wallet: Optional[str] = Query(None, description="Filter by proposer"),
    category: Optional[str] = Query(None, description="Filter by category"),
    limit: int = Query(
        config.governance.default_page_size, description="Page size, 1..100"
    ),
    offset: int = Query(0, description="Proposals to skip"),
    lifecycle: ProposalLifecycle = Depends(get_proposal_lifecycle),
) -> ProposalPage:
    try:
        return lifecycle.list(
            coop_id=coop_id,
            status=status,
            proposer_wallet=proposer_wallet,
            category=category,
            limit=limit,
            offset=offset,
        )
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to list proposals", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to list proposals: {str(e)}")


@router.get("/{proposal_id}", response_model=Proposal)
async def get_proposal(
    proposal_id: UUID,
    lifecycle: ProposalLifecycle = Depends(get_proposal_lifecycle),
) -> Proposal:
    try:
        return lifecycle.get_by_id(proposal_id)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get proposal", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get proposal: {str(e)}")


@router.get("/{proposal_id}/revisions", response_model=List[ProposalRevision])
async def get_revisions(
    proposal_id: UUID,
    lifecycle: ProposalLifecycle = Depends(get_proposal_lifecycle),
) -> List[ProposalRevision]:
    """Get every revision of a proposal, oldest first."""
    try:
        return lifecycle.get_revisions(proposal_id)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get revisions", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get revisions: {str(e)}")


@router.get("/{proposal_id}/revisions/{revision_number}", response_model=ProposalRevision)
async def get_revision(
    proposal_id: UUID,
    revision_number: int,
    lifecycle: ProposalLifecycle = Depends(get_proposal_lifecycle),
) -> ProposalRevision:
    try:
        return lifecycle.get_revision(proposal_id, revision_number)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get revision", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get revision: {str(e)}")


@router.post("/{proposal_id}/resubmit", response_model=Proposal)
async def resubmit_proposal(
    proposal_id: UUID,
    payload: ResubmitProposalRequest,
    caller: Caller = Depends(verify_caller),
    lifecycle: ProposalLifecycle = Depends(get_proposal_lifecycle),
) -> Proposal:
    """Re-evaluate revised text as a new revision. Only the proposer may resubmit."""
    try:
        return await lifecycle.resubmit(caller, proposal_id, payload.text, payload.metadata)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to resubmit proposal", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to resubmit proposal: {str(e)}")


@router.post("/{proposal_id}/alternatives/{alternative_index}/apply", response_model=Proposal)
async def apply_alternative(
    proposal_id: UUID,
    alternative_index: int,
    caller: Caller = Depends(verify_caller),
    lifecycle: ProposalLifecycle = Depends(get_proposal_lifecycle),
) -> Proposal:
    try:
        return await lifecycle.apply_alternative(caller, proposal_id, alternative_index)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to apply alternative", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to apply alternative: {str(e)}")


@router.post("/{proposal_id}/withdraw", response_model=Proposal)
async def withdraw_proposal(
    proposal_id: UUID,
    caller: Caller = Depends(verify_caller),
    lifecycle: ProposalLifecycle = Depends(get_proposal_lifecycle),
) -> Proposal:
    try:
        return await lifecycle.withdraw(caller, proposal_id)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to withdraw proposal", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to withdraw proposal: {str(e)}")


@router.post("/{proposal_id}/status", response_model=Proposal)
async def update_proposal_status(
    proposal_id: UUID,
    payload: StatusUpdateRequest,
    caller: Caller = Depends(verify_caller),
    lifecycle: ProposalLifecycle = Depends(get_proposal_lifecycle),
) -> Proposal:
    """Admin status transition."""
    try:
        return await lifecycle.update_status(caller, proposal_id, payload.status)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to update proposal status", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to update status: {str(e)}")


@router.post("/{proposal_id}/votes", response_model=CouncilVoteResult)
async def cast_council_vote(
    proposal_id: UUID,
    payload: CouncilVoteRequest,
    caller: Caller = Depends(verify_caller),
    council: CouncilVoting = Depends(get_council),
) -> CouncilVoteResult:
    """Cast or change a council vote. The deciding vote changes the proposal status."""
    try:
        return await council.vote(caller, proposal_id, payload.choice)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to record council vote", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to record vote: {str(e)}")


@router.get("/{proposal_id}/votes", response_model=VoteTally)
async def get_vote_tally(
    proposal_id: UUID,
    council: CouncilVoting = Depends(get_council),
) -> VoteTally:
    try:
        return council.get_tally(proposal_id)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to get vote tally", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get tally: {str(e)}")
