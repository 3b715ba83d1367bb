"""
hackx.api.routes.staking — Stake, unstake, claim & position reads
===================================================================

Token amounts are rendered as decimal strings so no precision is lost on
the way to the client.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from hackx.api.deps import get_current_user, get_engine
from hackx.database.engine import run_db
from hackx.engine.identity import Principal
from hackx.services import staking_service

router = APIRouter(prefix="/staking", tags=["staking"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AmountBody(BaseModel):
    # Validated by parse_amount; malformed or missing values raise InvalidAmount.
    amount: Any = None


def _amount(value: Decimal) -> str:
    return format(value.normalize(), "f") if value else "0"


def _receipt(receipt: staking_service.StakeReceipt) -> dict:
    return {
        "transactionId": receipt.transaction_id,
        "amount": _amount(receipt.amount),
        "newStakedAmount": _amount(receipt.new_staked_amount),
    }


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
@router.post("/stake")
async def stake(
    body: AmountBody,
    user: Principal = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Lock tokens for the caller."""
    receipt = await run_db(
        staking_service.stake, engine, user.user_id, body.amount, username=user.username
    )
    return {"success": True, "message": "Stake successful", "data": _receipt(receipt)}


@router.post("/unstake")
async def unstake(
    body: AmountBody,
    user: Principal = Depends(get_current_user),
    engine=Depends(get_engine),
):
    receipt = await run_db(staking_service.unstake, engine, user.user_id, body.amount)
    return {"success": True, "message": "Unstake successful", "data": _receipt(receipt)}


@router.post("/claim")
async def claim(
    user: Principal = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """Pay out every accrued reward."""
    receipt = await run_db(staking_service.claim_rewards, engine, user.user_id)
    return {
        "success": True,
        "message": "Rewards claimed",
        "data": {
            "transactionId": receipt.transaction_id,
            "claimedAmount": _amount(receipt.claimed_amount),
            "newRewards": _amount(receipt.new_rewards),
        },
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("/info")
async def info(
    user: Principal = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """The caller's position plus platform totals."""
    data = await run_db(staking_service.get_info, engine, user.user_id)
    return {
        "success": True,
        "data": {
            "stakedAmount": _amount(data.staked_amount),
            "rewards": _amount(data.rewards),
            "apy": _amount(data.apy),
            "lastRewardTime": data.last_reward_time.isoformat(),
            "totalStakers": data.total_stakers,
            "totalStakedAmount": _amount(data.total_staked_amount),
            "totalRewards": _amount(data.total_rewards),
        },
    }


@router.get("/transactions")
async def transactions(
    limit: int = Query(50, ge=1, le=200),
    user: Principal = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rows = await run_db(staking_service.list_transactions, engine, user.user_id, limit=limit)
    return {
        "success": True,
        "data": {
            "transactions": [
                {
                    "id": tx["id"],
                    "type": tx["type"],
                    "amount": _amount(tx["amount"]),
                    "status": tx["status"],
                    "txHash": tx["tx_hash"],
                    "createdAt": tx["created_at"],
                }
                for tx in rows
            ]
        },
    }
