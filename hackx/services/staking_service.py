"""
hackx.services.staking_service — Staking Ledger
================================================

Owns every user's staked balance and accrued rewards.

Every mutation is one atomic unit (:func:`~hackx.database.engine.run_in_transaction`):

  1. Lock the account row (``SELECT … FOR UPDATE``)
  2. Apply pending reward accrual up to *now*
  3. Validate and apply the balance change
  4. Append the ``staking_transactions`` journal row
  5. Commit — or roll back everything on any error

So a balance change is never recorded without its journal entry, or vice
versa, and concurrent operations on one account serialize on the row lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hackx.clock import as_utc, resolve_now
from hackx.database.engine import get_session, run_in_transaction
from hackx.database.models import (
    StakingAccount,
    StakingTransaction,
    StakingTransactionType,
    User,
)
from hackx.engine.errors import InsufficientStake, InvalidAmount, NoRewards, NotFound
from hackx.engine.rewards import REWARD_QUANTUM, get_reward_policy
from hackx.services import settings_service

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StakeReceipt:
    """Outcome of a stake or unstake."""

    transaction_id: int
    amount: Decimal
    new_staked_amount: Decimal


@dataclass(frozen=True, slots=True)
class ClaimReceipt:
    transaction_id: int
    claimed_amount: Decimal
    new_rewards: Decimal = Decimal(0)


@dataclass(frozen=True, slots=True)
class StakingInfo:
    """A user's position plus platform-wide aggregates."""

    staked_amount: Decimal
    rewards: Decimal
    apy: Decimal
    last_reward_time: datetime
    total_stakers: int
    total_staked_amount: Decimal
    total_rewards: Decimal


# ---------------------------------------------------------------------------
# Shared helpers (also used by the proposal and vote services)
# ---------------------------------------------------------------------------
def get_or_create_user(session: Session, user_id: int, username: str | None = None) -> User:
    """Fetch or insert a User row.

    A concurrent first request for the same user loses the insert race on
    the primary key; the SAVEPOINT keeps the outer transaction alive and the
    winner's row is read back instead.
    """
    user = session.get(User, user_id)
    if user is None:
        try:
            with session.begin_nested():   # SAVEPOINT
                user = User(id=user_id, username=username or "Unknown")
                session.add(user)
                session.flush()
        except IntegrityError:
            user = session.get(User, user_id)
            if user is None:
                raise
    elif username and user.username != username:
        user.username = username
    return user


def get_staked_amount(session: Session, user_id: int) -> Decimal:
    """Current staked balance, zero if the user never staked."""
    amount = session.scalar(
        select(StakingAccount.staked_amount).where(StakingAccount.user_id == user_id)
    )
    return amount if amount is not None else Decimal(0)


def parse_amount(amount) -> Decimal:
    """Coerce *amount* to a positive Decimal with at most 8 fractional digits."""
    if isinstance(amount, bool):
        raise InvalidAmount("Amount must be a number")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Amount {amount!r} is not a number") from None
    if not value.is_finite():
        raise InvalidAmount("Amount must be finite")
    if value <= 0:
        raise InvalidAmount("Amount must be greater than zero")
    try:
        exact = value == value.quantize(REWARD_QUANTUM)
    except InvalidOperation:
        raise InvalidAmount("Amount is too large") from None
    if not exact:
        raise InvalidAmount("Amount supports at most 8 decimal places")
    return value


def _lock_account(session: Session, user_id: int) -> StakingAccount | None:
    return session.scalar(
        select(StakingAccount)
        .where(StakingAccount.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def _create_account(session: Session, user_id: int, now: datetime) -> StakingAccount:
    apy = settings_service.get_decimal(session, "staking.default_apy")
    try:
        with session.begin_nested():   # SAVEPOINT
            account = StakingAccount(
                user_id=user_id,
                staked_amount=Decimal(0),
                rewards=Decimal(0),
                apy=apy,
                last_reward_time=now,
            )
            session.add(account)
            session.flush()
            logger.info("Staking account created for user %s (apy=%s%%)", user_id, apy)
            return account
    except IntegrityError:
        # Another request created it first; continue on the winner's row.
        account = _lock_account(session, user_id)
        if account is None:
            raise
        _accrue(account, now)
        return account


def _accrue(account: StakingAccount, now: datetime) -> Decimal:
    """Credit rewards earned since the last checkpoint; returns the amount."""
    last = as_utc(account.last_reward_time)
    if now <= last:
        return Decimal(0)
    accrued = get_reward_policy()(account.staked_amount, account.apy, last, now)
    if accrued > 0:
        account.rewards += accrued
    account.last_reward_time = now
    return accrued


def _append_transaction(
    session: Session,
    account: StakingAccount,
    tx_type: StakingTransactionType,
    amount: Decimal,
    now: datetime,
) -> StakingTransaction:
    tx = StakingTransaction(
        staking_id=account.id,
        user_id=account.user_id,
        type=tx_type.value,
        amount=amount,
        status="completed",
        created_at=now,
    )
    session.add(tx)
    session.flush()
    return tx


# ---------------------------------------------------------------------------
# Ledger operations
# ---------------------------------------------------------------------------
def stake(
    engine,
    user_id: int,
    amount,
    *,
    username: str | None = None,
    now: datetime | None = None,
) -> StakeReceipt:
    """Lock *amount* tokens for *user_id*, creating the account on first use."""
    value = parse_amount(amount)
    ts = resolve_now(now)

    def _stake(session: Session) -> StakeReceipt:
        get_or_create_user(session, user_id, username)
        account = _lock_account(session, user_id)
        if account is None:
            account = _create_account(session, user_id, ts)
        else:
            _accrue(account, ts)
        account.staked_amount += value
        tx = _append_transaction(session, account, StakingTransactionType.STAKE, value, ts)
        return StakeReceipt(
            transaction_id=tx.id,
            amount=value,
            new_staked_amount=account.staked_amount,
        )

    receipt = run_in_transaction(engine, _stake)
    logger.info(
        "User %s staked %s (balance %s, tx %s)",
        user_id, value, receipt.new_staked_amount, receipt.transaction_id,
    )
    return receipt


def unstake(engine, user_id: int, amount, *, now: datetime | None = None) -> StakeReceipt:
    """Release *amount* staked tokens.  The balance can never go negative."""
    value = parse_amount(amount)
    ts = resolve_now(now)

    def _unstake(session: Session) -> StakeReceipt:
        account = _lock_account(session, user_id)
        if account is None:
            raise NotFound("You have no staking record")
        _accrue(account, ts)
        if value > account.staked_amount:
            raise InsufficientStake(
                f"Cannot unstake {value}: staked balance is {account.staked_amount}"
            )
        account.staked_amount -= value
        tx = _append_transaction(session, account, StakingTransactionType.UNSTAKE, value, ts)
        return StakeReceipt(
            transaction_id=tx.id,
            amount=value,
            new_staked_amount=account.staked_amount,
        )

    receipt = run_in_transaction(engine, _unstake)
    logger.info(
        "User %s unstaked %s (balance %s, tx %s)",
        user_id, value, receipt.new_staked_amount, receipt.transaction_id,
    )
    return receipt


def claim_rewards(engine, user_id: int, *, now: datetime | None = None) -> ClaimReceipt:
    """Pay out all accrued rewards and reset the accrual checkpoint."""
    ts = resolve_now(now)

    def _claim(session: Session) -> ClaimReceipt:
        account = _lock_account(session, user_id)
        if account is None:
            raise NotFound("You have no staking record")
        _accrue(account, ts)
        claimed = account.rewards
        if claimed <= 0:
            raise NoRewards("No rewards available to claim")
        account.rewards = Decimal(0)
        account.last_reward_time = ts
        tx = _append_transaction(
            session, account, StakingTransactionType.CLAIM_REWARDS, claimed, ts
        )
        return ClaimReceipt(transaction_id=tx.id, claimed_amount=claimed)

    receipt = run_in_transaction(engine, _claim)
    logger.info(
        "User %s claimed %s rewards (tx %s)",
        user_id, receipt.claimed_amount, receipt.transaction_id,
    )
    return receipt


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_info(engine, user_id: int, *, now: datetime | None = None) -> StakingInfo:
    """The user's stake, projected rewards and APY, plus platform totals.

    Rewards include accrual pending since the last checkpoint (computed, not
    written).  Totals are a fold over every account's stored values.
    """
    ts = resolve_now(now)
    with get_session(engine) as session:
        account = session.scalar(
            select(StakingAccount).where(StakingAccount.user_id == user_id)
        )
        total_stakers, total_staked, total_rewards = session.execute(
            select(
                func.count(StakingAccount.id),
                func.coalesce(func.sum(StakingAccount.staked_amount), 0),
                func.coalesce(func.sum(StakingAccount.rewards), 0),
            )
        ).one()

        if account is None:
            staked = Decimal(0)
            rewards = Decimal(0)
            apy = settings_service.get_decimal(session, "staking.default_apy")
            last_reward_time = ts
        else:
            staked = account.staked_amount
            apy = account.apy
            last_reward_time = as_utc(account.last_reward_time)
            pending = Decimal(0)
            if ts > last_reward_time:
                pending = get_reward_policy()(staked, apy, last_reward_time, ts)
            rewards = account.rewards + pending

    return StakingInfo(
        staked_amount=staked,
        rewards=rewards,
        apy=apy,
        last_reward_time=last_reward_time,
        total_stakers=int(total_stakers),
        total_staked_amount=Decimal(str(total_staked)),
        total_rewards=Decimal(str(total_rewards)),
    )


def list_transactions(engine, user_id: int, *, limit: int = 50) -> list[dict]:
    """Newest-first ledger journal for one user."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(StakingTransaction)
            .where(StakingTransaction.user_id == user_id)
            .order_by(StakingTransaction.created_at.desc(), StakingTransaction.id.desc())
            .limit(limit)
        ).all()
        return [
            {
                "id": tx.id,
                "type": tx.type,
                "amount": tx.amount,
                "status": tx.status,
                "tx_hash": tx.tx_hash,
                "created_at": as_utc(tx.created_at).isoformat() if tx.created_at else None,
            }
            for tx in rows
        ]
