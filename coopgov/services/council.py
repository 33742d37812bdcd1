"""Council voting on proposals that need a council decision.

A vote is an explicit side-effecting call: the tally is recomputed from the
stored votes while the proposal lock is held, and the deciding vote moves
the proposal out of `votable` in the same call.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
from uuid import UUID

from coopgov.backend.abstract import AbstractBackend
from coopgov.backend.models import (
    Caller,
    CoopConfig,
    CouncilVote,
    CouncilVoteCreate,
    CouncilVoteResult,
    Proposal,
    ProposalBase,
    ProposalStatus,
    VoteChoice,
    VoteTally,
)
from coopgov.config import config as app_config
from coopgov.lib.errors import ConflictError, ForbiddenError, NotFoundError
from coopgov.lib.locks import KeyedLock, keyed_lock
from coopgov.lib.logger import configure_logger
from coopgov.services.config_store import ConfigStore
from coopgov.services.identity import IdentityProvider

logger = configure_logger(__name__)


def required_votes(quorum_percent: float, pool: int, min_votes: int) -> int:
    return max(min_votes, math.ceil((quorum_percent or 0.0) * pool / 100))


def tally_votes(
    votes: Iterable[CouncilVote], pool: int, quorum_percent: float, min_votes: int
) -> VoteTally:
    tally = VoteTally(
        eligible_pool=pool,
        required_votes=required_votes(quorum_percent, pool, min_votes),
    )
    for vote in votes:
        if vote.choice == VoteChoice.FOR:
            tally.for_count += 1
        elif vote.choice == VoteChoice.AGAINST:
            tally.against_count += 1
        else:
            tally.abstain_count += 1
    tally.quorum_met = tally.total >= tally.required_votes
    return tally


def outcome(tally: VoteTally, approval_threshold_percent: float) -> Optional[ProposalStatus]:
    """Status the tally decides, or None while the vote is still open.

    Approval needs quorum, more FOR than AGAINST votes, and a FOR share of the
    decisive votes at or above the approval threshold. More AGAINST than FOR
    after quorum rejects. A tie stays open.
    """
    if not tally.quorum_met:
        return None
    decisive = tally.for_count + tally.against_count
    if tally.for_count > tally.against_count:
        share = 100.0 * tally.for_count / decisive
        if share >= (approval_threshold_percent or 0.0):
            return ProposalStatus.APPROVED
        return None
    if tally.against_count > tally.for_count:
        return ProposalStatus.REJECTED
    return None


class CouncilVoting:
    def __init__(
        self,
        backend: AbstractBackend,
        config_store: ConfigStore,
        identity: IdentityProvider,
        locks: KeyedLock = keyed_lock,
        min_votes: Optional[int] = None,
    ):
        self.backend = backend
        self.config_store = config_store
        self.identity = identity
        self.locks = locks
        self.min_votes = (
            min_votes if min_votes is not None else app_config.governance.min_council_votes
        )

    def _get_proposal(self, proposal_id: UUID) -> Proposal:
        proposal = self.backend.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", {"proposal_id": str(proposal_id)})
        return proposal

    def _tally(self, proposal: Proposal, config: CoopConfig) -> VoteTally:
        pool = len(self.identity.council_members(proposal.coop_id))
        return tally_votes(
            self.backend.list_council_votes(proposal.id),
            pool,
            config.quorum_percent,
            self.min_votes,
        )

    def get_tally(self, proposal_id: UUID) -> VoteTally:
        proposal = self._get_proposal(proposal_id)
        config = self.config_store.require_active(proposal.coop_id)
        return self._tally(proposal, config)

    def _check_votable(self, proposal: Proposal, config: CoopConfig) -> None:
        if not proposal.council_required:
            raise ConflictError(
                "Proposal does not require a council vote",
                {"proposal_id": str(proposal.id)},
            )
        if proposal.status != ProposalStatus.VOTABLE:
            raise ConflictError(
                f"Council votes are only accepted while votable, not {proposal.status}",
                {"proposal_id": str(proposal.id), "status": str(proposal.status)},
            )
        if proposal.votable_at is not None and config.voting_window_days:
            closes_at = proposal.votable_at + timedelta(days=config.voting_window_days)
            if datetime.now(timezone.utc) > closes_at:
                raise ConflictError(
                    "The voting window has closed",
                    {"proposal_id": str(proposal.id), "closed_at": closes_at.isoformat()},
                )

    async def vote(
        self, caller: Caller, proposal_id: UUID, choice: VoteChoice
    ) -> CouncilVoteResult:
        """Record or replace the caller's vote and apply the outcome if decided.

        Raises:
            ForbiddenError: If the caller is not on the council
            NotFoundError: If the proposal does not exist
            ConflictError: If the proposal is not open for council votes
        """
        choice = VoteChoice(choice)
        async with self.locks.hold("proposal", proposal_id):
            proposal = self._get_proposal(proposal_id)
            members = self.identity.council_members(proposal.coop_id)
            if caller.wallet_address.lower() not in members:
                raise ForbiddenError(
                    "Only council members can vote",
                    {"wallet_address": caller.wallet_address},
                )
            config = self.config_store.require_active(proposal.coop_id)
            self._check_votable(proposal, config)

            vote = self.backend.upsert_council_vote(
                CouncilVoteCreate(
                    proposal_id=proposal_id,
                    voter_wallet=caller.wallet_address.lower(),
                    choice=choice,
                )
            )
            tally = self._tally(proposal, config)
            new_status = outcome(tally, config.approval_threshold_percent)

            status = proposal.status
            if new_status is not None:
                updated = self.backend.update_proposal(
                    proposal_id,
                    ProposalBase(status=new_status),
                    expected_status=ProposalStatus.VOTABLE,
                )
                if updated is None:
                    raise ConflictError(
                        "Proposal status changed concurrently",
                        {"proposal_id": str(proposal_id)},
                    )
                status = updated.status

        logger.info(
            "Recorded council vote",
            extra={
                "proposal_id": str(proposal_id),
                "choice": str(choice),
                "for": tally.for_count,
                "against": tally.against_count,
                "abstain": tally.abstain_count,
                "quorum_met": tally.quorum_met,
                "status": str(status),
            },
        )
        return CouncilVoteResult(
            vote=vote,
            tally=tally,
            status=status,
            status_changed=new_status is not None,
        )
