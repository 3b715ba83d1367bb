"""
hackx.services.vote_service — Vote Tally
=========================================

Records exactly one weighted vote per (proposal, user) and keeps the
proposal's ``for_votes`` / ``against_votes`` accumulators equal to the sum of
the recorded votes.

One atomic unit per cast:

  1. Load the proposal; it must exist, be ``ACTIVE`` and still be inside
     its voting window.
  2. Compute voting power from the caller's current stake and reputation.
  3. Insert the vote inside a SAVEPOINT.  The ``(proposal_id, user_id)``
     unique constraint is the real exactly-once guard: a concurrent
     duplicate that slipped past the pre-check fails here as
     :class:`AlreadyVoted`.
  4. ``UPDATE dao_proposals SET for_votes = for_votes + :power
     WHERE id = :id AND status = 'ACTIVE'`` — zero rows means resolution
     won the race, and the whole unit (vote row included) rolls back.

Tally reads come straight from the accumulators, never from summing votes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hackx.clock import as_utc, resolve_now
from hackx.database.engine import get_session, run_in_transaction
from hackx.database.models import DAOProposal, DAOVote, ProposalStatus, VoteChoice
from hackx.engine.errors import AlreadyVoted, InvalidVote, NotFound, ProposalNotActive
from hackx.engine.resolution import is_open
from hackx.engine.voting_power import voting_power
from hackx.services.staking_service import get_or_create_user, get_staked_amount

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VoteReceipt:
    proposal_id: int
    choice: str
    voting_power: int


@dataclass(frozen=True, slots=True)
class Tally:
    proposal_id: int
    status: str
    for_votes: int
    against_votes: int

    @property
    def total_votes(self) -> int:
        return self.for_votes + self.against_votes


def parse_choice(choice: str) -> VoteChoice:
    try:
        return VoteChoice(str(choice).lower())
    except ValueError:
        raise InvalidVote(
            f"Vote must be one of {[c.value for c in VoteChoice]}, got {choice!r}"
        ) from None


def _existing_vote(session: Session, proposal_id: int, user_id: int) -> DAOVote | None:
    return session.scalar(
        select(DAOVote).where(DAOVote.proposal_id == proposal_id, DAOVote.user_id == user_id)
    )


def cast_vote(
    engine,
    proposal_id: int,
    user_id: int,
    choice: str,
    *,
    reputation_score: int = 0,
    username: str | None = None,
    now: datetime | None = None,
) -> VoteReceipt:
    """Cast *user_id*'s single vote on *proposal_id*.

    Raises
    ------
    NotFound, ProposalNotActive, AlreadyVoted, InvalidVote
    """
    vote_choice = parse_choice(choice)
    ts = resolve_now(now)

    def _cast(session: Session) -> VoteReceipt:
        proposal = session.get(DAOProposal, proposal_id)
        if proposal is None:
            raise NotFound("Proposal not found")
        if not is_open(proposal.status):
            raise ProposalNotActive("Voting on this proposal has ended")
        if ts > as_utc(proposal.voting_deadline):
            raise ProposalNotActive("The voting deadline for this proposal has passed")
        if _existing_vote(session, proposal_id, user_id) is not None:
            raise AlreadyVoted("You have already voted on this proposal")

        power = voting_power(get_staked_amount(session, user_id), reputation_score)
        get_or_create_user(session, user_id, username)

        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(DAOVote(
                    proposal_id=proposal_id,
                    user_id=user_id,
                    vote=vote_choice.value,
                    voting_power=power,
                    created_at=ts,
                ))
                session.flush()
        except IntegrityError:
            raise AlreadyVoted("You have already voted on this proposal") from None

        column = (
            DAOProposal.for_votes if vote_choice is VoteChoice.FOR else DAOProposal.against_votes
        )
        result = session.execute(
            update(DAOProposal)
            .where(
                DAOProposal.id == proposal_id,
                DAOProposal.status == ProposalStatus.ACTIVE.value,
            )
            .values({column: column + power})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ProposalNotActive("Voting on this proposal has ended")
        return VoteReceipt(proposal_id=proposal_id, choice=vote_choice.value, voting_power=power)

    receipt = run_in_transaction(engine, _cast)
    logger.info(
        "User %s voted %s on proposal %s with power %d",
        user_id, receipt.choice, proposal_id, receipt.voting_power,
    )
    return receipt


def get_tally(engine, proposal_id: int) -> Tally:
    """Current totals, served from the proposal's accumulators."""
    with get_session(engine) as session:
        row = session.execute(
            select(
                DAOProposal.status, DAOProposal.for_votes, DAOProposal.against_votes
            ).where(DAOProposal.id == proposal_id)
        ).one_or_none()
    if row is None:
        raise NotFound("Proposal not found")
    return Tally(
        proposal_id=proposal_id,
        status=row.status,
        for_votes=row.for_votes,
        against_votes=row.against_votes,
    )


def get_user_vote(engine, proposal_id: int, user_id: int) -> dict | None:
    with get_session(engine) as session:
        vote = _existing_vote(session, proposal_id, user_id)
        if vote is None:
            return None
        return {
            "proposal_id": vote.proposal_id,
            "vote": vote.vote,
            "voting_power": vote.voting_power,
            "created_at": as_utc(vote.created_at).isoformat() if vote.created_at else None,
        }


def get_voting_power(engine, user_id: int, reputation_score: int = 0) -> dict:
    """What the caller's vote would weigh right now."""
    with get_session(engine) as session:
        staked = get_staked_amount(session, user_id)
    return {
        "voting_power": voting_power(staked, reputation_score),
        "staked_amount": staked,
        "reputation_score": reputation_score,
    }
