"""
hackx.api.routes.dao — Proposals, voting, resolution & execution
==================================================================

Creation and voting are open to any authenticated user (the services
enforce the stake threshold and one-vote rule).  Resolving needs
``dao:resolve``; executing needs ``dao:execute`` plus whatever the
proposal's type requires, which the execution gate checks itself.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from hackx.api.deps import get_current_user, get_engine, require_capability
from hackx.database.engine import run_db
from hackx.engine.identity import CAP_EXECUTE, CAP_RESOLVE, Principal
from hackx.services import execution_service, proposal_service, vote_service

router = APIRouter(prefix="/dao", tags=["dao"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ProposalCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    proposal_type: str = Field(alias="proposalType")
    # Validated by parse_amount; a malformed target raises InvalidProposal.
    target_amount: Any = Field(default=None, alias="targetAmount")
    execution_time: datetime = Field(alias="executionTime")
    ipfs_hash: str | None = Field(default=None, alias="ipfsHash")


class VoteBody(BaseModel):
    vote: str  # "for" | "against"


def _decimal(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(value.normalize(), "f") if value else "0"


def _proposal_json(p: dict) -> dict:
    return {
        "id": p["id"],
        "title": p["title"],
        "description": p["description"],
        "proposalType": p["proposal_type"],
        "targetAmount": _decimal(p["target_amount"]),
        "creatorId": p["creator_id"],
        "creator": p["creator"],
        "forVotes": p["for_votes"],
        "againstVotes": p["against_votes"],
        "votingDeadline": p["voting_deadline"],
        "executionTime": p["execution_time"],
        "status": p["status"],
        "resolvedAt": p["resolved_at"],
        "executedAt": p["executed_at"],
        "executionResult": p["execution_result"],
        "ipfsHash": p["ipfs_hash"],
        "createdAt": p["created_at"],
    }


# ---------------------------------------------------------------------------
# Voting power
# ---------------------------------------------------------------------------
@router.get("/voting-power")
async def voting_power(
    user: Principal = Depends(get_current_user),
    engine=Depends(get_engine),
):
    power = await run_db(
        vote_service.get_voting_power, engine, user.user_id, user.reputation_score
    )
    return {
        "success": True,
        "data": {
            "votingPower": power["voting_power"],
            "stakedAmount": _decimal(power["staked_amount"]),
            "reputationScore": power["reputation_score"],
        },
    }


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------
@router.get("/proposals")
async def list_proposals(
    status: str | None = None,
    type: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=proposal_service.MAX_PAGE_SIZE),
    engine=Depends(get_engine),
):
    """Newest-first page of proposals, optionally filtered by status and type."""
    result = await run_db(
        proposal_service.list_proposals,
        engine,
        status=status,
        proposal_type=type,
        page=page,
        limit=limit,
    )
    return {
        "success": True,
        "data": {
            "proposals": [_proposal_json(p) for p in result.proposals],
            "pagination": {
                "page": result.page,
                "limit": result.limit,
                "total": result.total,
                "totalPages": result.total_pages,
            },
        },
    }


@router.post("/proposals")
async def create_proposal(
    body: ProposalCreate,
    user: Principal = Depends(get_current_user),
    engine=Depends(get_engine),
):
    created = await run_db(
        proposal_service.create_proposal,
        engine,
        user.user_id,
        title=body.title,
        description=body.description,
        proposal_type=body.proposal_type,
        execution_time=body.execution_time,
        target_amount=body.target_amount,
        username=user.username,
        ipfs_hash=body.ipfs_hash,
    )
    return {
        "success": True,
        "message": "Proposal created",
        "data": {
            "id": created.id,
            "title": created.title,
            "status": created.status,
            "ipfsHash": created.ipfs_hash,
            "createdAt": created.created_at.isoformat(),
            "votingDeadline": created.voting_deadline.isoformat(),
        },
    }


@router.get("/proposals/{proposal_id}")
async def get_proposal(proposal_id: int, engine=Depends(get_engine)):
    proposal = await run_db(proposal_service.get_proposal, engine, proposal_id)
    return {"success": True, "data": _proposal_json(proposal)}


@router.post("/proposals/{proposal_id}/vote")
async def vote(
    proposal_id: int,
    body: VoteBody,
    user: Principal = Depends(get_current_user),
    engine=Depends(get_engine),
):
    receipt = await run_db(
        vote_service.cast_vote,
        engine,
        proposal_id,
        user.user_id,
        body.vote,
        reputation_score=user.reputation_score,
        username=user.username,
    )
    return {
        "success": True,
        "message": "Vote recorded",
        "data": {
            "proposalId": receipt.proposal_id,
            "vote": receipt.choice,
            "votingPower": receipt.voting_power,
        },
    }


# ---------------------------------------------------------------------------
# Admin: resolution & execution
# ---------------------------------------------------------------------------
@router.post("/proposals/{proposal_id}/resolve")
async def resolve(
    proposal_id: int,
    admin: Principal = Depends(require_capability(CAP_RESOLVE)),
    engine=Depends(get_engine),
):
    """Close voting now if the deadline has passed."""
    outcome = await run_db(
        proposal_service.resolve_proposal, engine, proposal_id, actor_id=admin.user_id
    )
    return {
        "success": True,
        "data": {
            "proposalId": outcome.proposal_id,
            "status": outcome.status,
            "forVotes": outcome.for_votes,
            "againstVotes": outcome.against_votes,
            "changed": outcome.changed,
        },
    }


@router.post("/proposals/{proposal_id}/execute")
async def execute(
    proposal_id: int,
    admin: Principal = Depends(require_capability(CAP_EXECUTE)),
    engine=Depends(get_engine),
):
    receipt = await run_db(
        execution_service.execute_proposal,
        engine,
        proposal_id,
        admin.user_id,
        admin.capabilities,
    )
    return {
        "success": True,
        "message": "Proposal executed",
        "data": {
            "proposalId": receipt.proposal_id,
            "status": receipt.status,
            "executedAt": receipt.executed_at.isoformat(),
            "effect": receipt.effect,
        },
    }
