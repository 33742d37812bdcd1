from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException

from coopgov.backend.factory import backend
from coopgov.backend.models import Caller
from coopgov.lib.errors import GovernanceError
from coopgov.lib.logger import configure_logger
from coopgov.services.ai.evaluator import LLMProposalEvaluator
from coopgov.services.ai.scoring import ScoringEngine
from coopgov.services.amendments import AmendmentWorkflow
from coopgov.services.community import CommunityService
from coopgov.services.config_store import ConfigStore
from coopgov.services.council import CouncilVoting
from coopgov.services.experts import ExpertService
from coopgov.services.identity import BackendTokenLedger, IdentityProvider
from coopgov.services.proposals import ProposalLifecycle

# Configure logger
logger = configure_logger(__name__)


def to_http_exception(error: GovernanceError) -> HTTPException:
    """Map a governance error to the HTTP error the API answers with."""
    return HTTPException(
        status_code=error.status_code,
        detail={"message": error.message, "details": error.details},
    )


@lru_cache(maxsize=None)
def get_identity() -> IdentityProvider:
    return IdentityProvider(backend)


@lru_cache(maxsize=None)
def get_evaluator() -> LLMProposalEvaluator:
    return LLMProposalEvaluator()


@lru_cache(maxsize=None)
def get_config_store() -> ConfigStore:
    return ConfigStore(backend)


@lru_cache(maxsize=None)
def get_amendment_workflow() -> AmendmentWorkflow:
    return AmendmentWorkflow(backend, get_config_store())


@lru_cache(maxsize=None)
def get_proposal_lifecycle() -> ProposalLifecycle:
    return ProposalLifecycle(
        backend,
        get_config_store(),
        ScoringEngine(get_evaluator()),
        BackendTokenLedger(backend),
    )


@lru_cache(maxsize=None)
def get_council() -> CouncilVoting:
    return CouncilVoting(backend, get_config_store(), get_identity())


@lru_cache(maxsize=None)
def get_experts() -> ExpertService:
    return ExpertService(backend)


@lru_cache(maxsize=None)
def get_community() -> CommunityService:
    return CommunityService(backend, get_config_store(), get_evaluator())


async def verify_caller(
    authorization: Optional[str] = Header(None),
    identity: IdentityProvider = Depends(get_identity),
) -> Caller:
    """
    Resolve the caller from a Bearer session token.

    Args:
        authorization: The Authorization header value

    Returns:
        Caller: The authenticated wallet and its admin flag

    Raises:
        HTTPException: If authentication fails
    """
    if not authorization:
        logger.error("Authorization header is missing")
        raise HTTPException(status_code=401, detail="Missing authorization header")

    if not authorization.startswith("Bearer "):
        logger.error("Invalid authorization header format")
        raise HTTPException(
            status_code=401, detail="Invalid authorization format. Use 'Bearer <token>'"
        )

    try:
        token = authorization.split(" ")[1]
        caller = identity.resolve(token)
    except Exception as e:
        logger.error(f"Caller verification failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=401, detail="Authorization failed")

    if caller is None:
        logger.error("Invalid bearer token")
        raise HTTPException(status_code=401, detail="Invalid bearer token")
    return caller


async def optional_caller(
    authorization: Optional[str] = Header(None),
    identity: IdentityProvider = Depends(get_identity),
) -> Optional[Caller]:
    """Resolve the caller when a valid Bearer token is present, else None."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return identity.resolve(authorization.split(" ")[1])
