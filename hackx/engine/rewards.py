"""
hackx.engine.rewards — Staking Reward Accrual
==============================================

Rewards grow as a function of stake, APY and time elapsed since the
account's ``last_reward_time`` checkpoint.  Accrual is applied lazily by the
staking ledger at the start of every mutation (under the account's row
lock) and projected read-only by ``get_info``.

The accrual formula is a pluggable :data:`RewardPolicy`.  The default is
continuous simple interest::

    accrued = staked * apy / 100 * elapsed_seconds / SECONDS_PER_YEAR

quantized *down* to :data:`REWARD_QUANTUM`, so sub-quantum dust never shows
up as a claimable balance.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import ROUND_DOWN, Decimal

from hackx.clock import as_utc

SECONDS_PER_YEAR = Decimal(365 * 24 * 60 * 60)
REWARD_QUANTUM = Decimal("0.00000001")

RewardPolicy = Callable[[Decimal, Decimal, datetime, datetime], Decimal]
"""``(staked_amount, apy_percent, last_reward_time, now) → accrued amount``."""


def simple_interest(
    staked_amount: Decimal,
    apy: Decimal,
    last_reward_time: datetime,
    now: datetime,
) -> Decimal:
    """Continuous simple interest on the current stake since the checkpoint."""
    if staked_amount <= 0 or apy <= 0:
        return Decimal(0)
    elapsed = (as_utc(now) - as_utc(last_reward_time)).total_seconds()
    if elapsed <= 0:
        return Decimal(0)
    accrued = staked_amount * apy / Decimal(100) * Decimal(str(elapsed)) / SECONDS_PER_YEAR
    return accrued.quantize(REWARD_QUANTUM, rounding=ROUND_DOWN)


def no_accrual(
    staked_amount: Decimal,
    apy: Decimal,
    last_reward_time: datetime,
    now: datetime,
) -> Decimal:
    """Policy for deployments where rewards are credited from the chain only."""
    return Decimal(0)


_policy: RewardPolicy = simple_interest


def get_reward_policy() -> RewardPolicy:
    return _policy


def set_reward_policy(policy: RewardPolicy) -> None:
    """Install a different accrual policy process-wide."""
    global _policy
    _policy = policy
