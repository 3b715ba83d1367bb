"""
hackx.services.proposal_service — Proposal Store & Lifecycle
=============================================================

Creates proposals for sufficiently staked users, lists and reads them, and
resolves them out of ``ACTIVE`` once the pluggable resolution policy says
the vote is over.

Resolution locks the proposal row, evaluates the policy on that locked
snapshot and flips the status with ``UPDATE … WHERE status = 'ACTIVE'``.
Vote casts increment the tally with the same status guard, so once a
resolution has begun no further vote can land on the proposal.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from hackx.clock import as_utc, resolve_now
from hackx.database.engine import get_session, run_in_transaction
from hackx.database.models import (
    AdminActionType,
    DAOProposal,
    ProposalStatus,
    ProposalType,
    User,
)
from hackx.engine.errors import (
    InsufficientStake,
    InvalidAmount,
    InvalidProposal,
    NotFound,
    ProposalNotActive,
)
from hackx.engine.execution import validate_type_fields
from hackx.engine.resolution import (
    ResolutionPolicy,
    TallySnapshot,
    can_transition,
    is_open,
    majority_with_quorum,
)
from hackx.services import settings_service
from hackx.services.audit_service import log_admin_action, row_to_dict
from hackx.services.staking_service import get_or_create_user, get_staked_amount, parse_amount

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_TITLE_LENGTH = 200


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ProposalCreated:
    id: int
    title: str
    status: str
    created_at: datetime
    voting_deadline: datetime
    ipfs_hash: str | None = None


@dataclass(frozen=True, slots=True)
class ProposalPage:
    proposals: list[dict]
    page: int
    limit: int
    total: int
    total_pages: int


@dataclass(frozen=True, slots=True)
class ResolutionOutcome:
    proposal_id: int
    status: str
    for_votes: int
    against_votes: int
    changed: bool


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def proposal_to_dict(p: DAOProposal, creator: User | None = None) -> dict:
    return {
        "id": p.id,
        "title": p.title,
        "description": p.description,
        "proposal_type": p.proposal_type,
        "target_amount": p.target_amount,
        "creator_id": p.creator_id,
        "creator": (
            {"id": creator.id, "username": creator.username} if creator is not None else None
        ),
        "for_votes": p.for_votes,
        "against_votes": p.against_votes,
        "voting_deadline": as_utc(p.voting_deadline).isoformat(),
        "execution_time": as_utc(p.execution_time).isoformat(),
        "status": p.status,
        "resolved_at": as_utc(p.resolved_at).isoformat() if p.resolved_at else None,
        "executed_at": as_utc(p.executed_at).isoformat() if p.executed_at else None,
        "execution_result": p.execution_result,
        "ipfs_hash": p.ipfs_hash,
        "created_at": as_utc(p.created_at).isoformat() if p.created_at else None,
    }


def default_policy(session: Session) -> ResolutionPolicy:
    """Majority-with-quorum, quorum read from ``dao.quorum_voting_power``."""
    return majority_with_quorum(settings_service.get_int(session, "dao.quorum_voting_power"))


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------
def create_proposal(
    engine,
    creator_id: int,
    *,
    title: str,
    description: str,
    proposal_type: str,
    execution_time: datetime,
    target_amount=None,
    username: str | None = None,
    ipfs_hash: str | None = None,
    now: datetime | None = None,
) -> ProposalCreated:
    """Open a new proposal for voting.

    The creator must have at least ``dao.min_proposal_stake`` tokens staked.
    Voting closes ``dao.voting_period_days`` after creation, and the
    requested ``execution_time`` may not fall before that deadline.
    """
    ts = resolve_now(now)
    title = (title or "").strip()
    description = (description or "").strip()
    if not title or not description:
        raise InvalidProposal("Title and description are required")
    if len(title) > MAX_TITLE_LENGTH:
        raise InvalidProposal(f"Title is limited to {MAX_TITLE_LENGTH} characters")

    target: Decimal | None = None
    if target_amount is not None:
        try:
            target = parse_amount(target_amount)
        except InvalidAmount as exc:
            raise InvalidProposal(f"Invalid target_amount: {exc.message}") from None
    spec = validate_type_fields(proposal_type, target)
    requested_execution = as_utc(execution_time)

    def _create(session: Session) -> ProposalCreated:
        min_stake = settings_service.get_decimal(session, "dao.min_proposal_stake")
        staked = get_staked_amount(session, creator_id)
        if staked < min_stake:
            raise InsufficientStake(
                f"At least {min_stake} staked tokens are required to create a proposal"
            )

        period_days = settings_service.get_int(session, "dao.voting_period_days")
        voting_deadline = ts + timedelta(days=period_days)
        if requested_execution < voting_deadline:
            raise InvalidProposal(
                "execution_time must not be earlier than the voting deadline "
                f"({voting_deadline.isoformat()})"
            )

        get_or_create_user(session, creator_id, username)
        proposal = DAOProposal(
            title=title,
            description=description,
            proposal_type=spec.proposal_type.value,
            target_amount=target,
            creator_id=creator_id,
            for_votes=0,
            against_votes=0,
            voting_deadline=voting_deadline,
            execution_time=requested_execution,
            status=ProposalStatus.ACTIVE.value,
            ipfs_hash=ipfs_hash,
            created_at=ts,
        )
        session.add(proposal)
        session.flush()
        return ProposalCreated(
            id=proposal.id,
            title=proposal.title,
            status=proposal.status,
            created_at=ts,
            voting_deadline=voting_deadline,
            ipfs_hash=proposal.ipfs_hash,
        )

    created = run_in_transaction(engine, _create)
    logger.info(
        "Proposal %s (%s) created by user %s, voting closes %s",
        created.id, spec.proposal_type.value, creator_id, created.voting_deadline.isoformat(),
    )
    return created


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_proposals(
    engine,
    *,
    status: str | None = None,
    proposal_type: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> ProposalPage:
    """Page through proposals, newest first, optionally filtered."""
    page = max(1, int(page))
    limit = min(max(1, int(limit)), MAX_PAGE_SIZE)
    if status is not None and status not in {s.value for s in ProposalStatus}:
        raise InvalidProposal(f"Unknown status filter {status!r}")
    if proposal_type is not None and proposal_type not in {t.value for t in ProposalType}:
        raise InvalidProposal(f"Unknown type filter {proposal_type!r}")

    with get_session(engine) as session:
        filters = []
        if status is not None:
            filters.append(DAOProposal.status == status)
        if proposal_type is not None:
            filters.append(DAOProposal.proposal_type == proposal_type)

        total = session.scalar(
            select(func.count()).select_from(DAOProposal).where(*filters)
        ) or 0
        rows = session.execute(
            select(DAOProposal, User)
            .join(User, User.id == DAOProposal.creator_id)
            .where(*filters)
            .order_by(DAOProposal.created_at.desc(), DAOProposal.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        proposals = [proposal_to_dict(p, u) for p, u in rows]

    return ProposalPage(
        proposals=proposals,
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
    )


def get_proposal(engine, proposal_id: int) -> dict:
    with get_session(engine) as session:
        proposal = session.get(DAOProposal, proposal_id)
        if proposal is None:
            raise NotFound("Proposal not found")
        return proposal_to_dict(proposal, session.get(User, proposal.creator_id))


# ---------------------------------------------------------------------------
# Resolution (ACTIVE → PASSED | REJECTED)
# ---------------------------------------------------------------------------
def _resolve_locked(
    session: Session,
    proposal: DAOProposal,
    policy: ResolutionPolicy,
    now: datetime,
    actor_id: int | None,
) -> ResolutionOutcome:
    snapshot = TallySnapshot(
        proposal_id=proposal.id,
        proposal_type=proposal.proposal_type,
        for_votes=proposal.for_votes,
        against_votes=proposal.against_votes,
        voting_deadline=as_utc(proposal.voting_deadline),
    )
    outcome = policy(snapshot, now)
    if outcome is None:
        return ResolutionOutcome(
            proposal_id=proposal.id,
            status=proposal.status,
            for_votes=proposal.for_votes,
            against_votes=proposal.against_votes,
            changed=False,
        )
    if not can_transition(proposal.status, outcome.value):
        raise ValueError(f"Resolution policy returned an illegal outcome: {outcome!r}")

    before = row_to_dict(proposal)
    result = session.execute(
        update(DAOProposal)
        .where(DAOProposal.id == proposal.id, DAOProposal.status == ProposalStatus.ACTIVE.value)
        .values(status=outcome.value, resolved_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ProposalNotActive("Proposal is no longer open for voting")
    session.refresh(proposal)
    log_admin_action(
        session,
        actor_id=actor_id,
        action_type=AdminActionType.RESOLVE.value,
        target_table="dao_proposals",
        target_id=str(proposal.id),
        before=before,
        after=row_to_dict(proposal),
    )
    return ResolutionOutcome(
        proposal_id=proposal.id,
        status=outcome.value,
        for_votes=snapshot.for_votes,
        against_votes=snapshot.against_votes,
        changed=True,
    )


def _lock_proposal(session: Session, proposal_id: int) -> DAOProposal | None:
    return session.scalar(
        select(DAOProposal)
        .where(DAOProposal.id == proposal_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def resolve_proposal(
    engine,
    proposal_id: int,
    *,
    actor_id: int | None = None,
    policy: ResolutionPolicy | None = None,
    now: datetime | None = None,
) -> ResolutionOutcome:
    """Close voting on one proposal if the policy has an outcome.

    Returns the unchanged ``ACTIVE`` outcome (``changed=False``) while the
    policy still considers the vote open.
    """
    ts = resolve_now(now)

    def _resolve(session: Session) -> ResolutionOutcome:
        proposal = _lock_proposal(session, proposal_id)
        if proposal is None:
            raise NotFound("Proposal not found")
        if not is_open(proposal.status):
            raise ProposalNotActive(f"Proposal is already {proposal.status}")
        return _resolve_locked(session, proposal, policy or default_policy(session), ts, actor_id)

    outcome = run_in_transaction(engine, _resolve)
    if outcome.changed:
        logger.info(
            "Proposal %s resolved → %s (for=%d against=%d)",
            outcome.proposal_id, outcome.status, outcome.for_votes, outcome.against_votes,
        )
    return outcome


def resolve_due_proposals(
    engine,
    *,
    policy: ResolutionPolicy | None = None,
    now: datetime | None = None,
) -> list[ResolutionOutcome]:
    """Resolve every ACTIVE proposal whose voting deadline has passed.

    Each proposal is its own atomic unit.  A proposal that fails is logged and
    left ACTIVE for the next sweep; the proposals behind it still resolve.
    """
    ts = resolve_now(now)
    with get_session(engine) as session:
        due_ids = session.scalars(
            select(DAOProposal.id)
            .where(
                DAOProposal.status == ProposalStatus.ACTIVE.value,
                DAOProposal.voting_deadline <= ts,
            )
            .order_by(DAOProposal.voting_deadline.asc())
        ).all()

    outcomes: list[ResolutionOutcome] = []
    for proposal_id in due_ids:
        try:
            outcome = resolve_proposal(engine, proposal_id, policy=policy, now=ts)
        except ProposalNotActive:
            # Resolved concurrently by an admin or another sweeper.
            logger.debug("Proposal %s already resolved, skipping", proposal_id)
            continue
        except Exception:
            logger.exception("Failed to resolve proposal %s", proposal_id)
            continue
        outcomes.append(outcome)
    if outcomes:
        logger.info("Resolution sweep closed %d proposal(s)", sum(o.changed for o in outcomes))
    return outcomes
