from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from coopgov.api.dependencies import (
    get_community,
    optional_caller,
    to_http_exception,
    verify_caller,
)
from coopgov.backend.models import Caller, Comment, ReactionSummary, ReactionType
from coopgov.config import config
from coopgov.lib.errors import GovernanceError
from coopgov.lib.logger import configure_logger
from coopgov.services.community import CommentPage, CommunityService

# Configure logger
logger = configure_logger(__name__)

# Create the router
router = APIRouter(prefix="/proposals/{proposal_id}", tags=["community"])


class CommentRequest(BaseModel):
    content: str = Field(..., description="Comment text")


class ReactionRequest(BaseModel):
    reaction: ReactionType = Field(
        ..., description="SUPPORT or CONCERN; repeating your current reaction removes it"
    )


@router.post("/comments", response_model=Comment, status_code=201)
async def create_comment(
    proposal_id: UUID,
    payload: CommentRequest,
    caller: Caller = Depends(verify_caller),
    community: CommunityService = Depends(get_community),
) -> Comment:
    """Post a comment. The AI alignment evaluation is attached when available."""
    try:
        return await community.create_comment(caller, proposal_id, payload.content)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to create comment", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to create comment: {str(e)}")


@router.get("/comments", response_model=CommentPage)
async def list_comments(
    proposal_id: UUID,
    limit: int = Query(
        config.governance.default_page_size, description="Page size, 1..100"
    ),
    offset: int = Query(0, description="Comments to skip"),
    community: CommunityService = Depends(get_community),
) -> CommentPage:
    try:
        return community.list_comments(proposal_id, limit=limit, offset=offset)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to list comments", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to list comments: {str(e)}")


@router.post("/reactions", response_model=ReactionSummary)
async def upsert_reaction(
    proposal_id: UUID,
    payload: ReactionRequest,
    caller: Caller = Depends(verify_caller),
    community: CommunityService = Depends(get_community),
) -> ReactionSummary:
    try:
        return community.upsert_reaction(caller, proposal_id, payload.reaction)
    except GovernanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error("Failed to save reaction", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to save reaction: {str(e)}")


@router.get("/reactions", response_model=ReactionSummary)
async def get_reactions(
    proposal_id: UUID,
    caller: Optional[Caller] = Depends(optional_caller),
    community: CommunityService = Depends(get_community),
) -> ReactionSummary:
    try:
        return community.get_reactions(proposal_id, caller)
    except Exception as e:
        logger.error("Failed to get reactions", exc_info=e)
        raise HTTPException(status_code=500, detail=f"Failed to get reactions: {str(e)}")
