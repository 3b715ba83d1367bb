"""
tests/test_staking_service.py — Staking Ledger Integration Tests
=================================================================

Service-level tests for stake / unstake / claim_rewards / get_info against
an in-memory SQLite database via the shared conftest fixtures.  Every call
passes an explicit ``now`` so accrual is deterministic.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import T0
from hackx.database.models import StakingAccount, StakingTransaction, User
from hackx.engine.errors import InsufficientStake, InvalidAmount, NoRewards, NotFound
from hackx.engine.rewards import get_reward_policy, no_accrual, set_reward_policy
from hackx.services import settings_service, staking_service

ONE_YEAR = timedelta(days=365)


@pytest.fixture
def engine(db_engine):
    """Re-use the shared conftest db_engine (SQLite, StaticPool)."""
    return db_engine


@pytest.fixture
def restore_reward_policy():
    original = get_reward_policy()
    yield
    set_reward_policy(original)


def _account(engine, user_id: int) -> StakingAccount | None:
    with Session(engine) as session:
        return session.scalar(select(StakingAccount).where(StakingAccount.user_id == user_id))


def _transactions(engine, user_id: int) -> list[StakingTransaction]:
    with Session(engine) as session:
        return list(session.scalars(
            select(StakingTransaction)
            .where(StakingTransaction.user_id == user_id)
            .order_by(StakingTransaction.id)
        ).all())


# ===========================================================================
# parse_amount
# ===========================================================================
class TestParseAmount:
    @pytest.mark.parametrize("raw", ["100", 100, Decimal("0.00000001"), "1500.5"])
    def test_accepts_positive_amounts(self, raw):
        assert staking_service.parse_amount(raw) == Decimal(str(raw))

    @pytest.mark.parametrize(
        "raw",
        [0, -1, "-0.5", "abc", None, True, "NaN", "Infinity", "0.000000001", "1e40"],
    )
    def test_rejects_invalid_amounts(self, raw):
        with pytest.raises(InvalidAmount):
            staking_service.parse_amount(raw)


# ===========================================================================
# stake
# ===========================================================================
class TestStake:
    def test_first_stake_creates_account_and_user(self, engine):
        receipt = staking_service.stake(engine, 1, "1500", username="alice", now=T0)

        assert receipt.amount == Decimal("1500")
        assert receipt.new_staked_amount == Decimal("1500")

        account = _account(engine, 1)
        assert account.staked_amount == Decimal("1500")
        assert account.rewards == Decimal(0)
        assert account.apy == Decimal("12.5")

        with Session(engine) as session:
            assert session.get(User, 1).username == "alice"

        txs = _transactions(engine, 1)
        assert [(t.type, t.amount) for t in txs] == [("stake", Decimal("1500"))]
        assert txs[0].id == receipt.transaction_id

    def test_new_account_uses_configured_apy(self, engine):
        settings_service.set_setting(engine, "staking.default_apy", 8)
        staking_service.stake(engine, 1, "100", now=T0)
        assert _account(engine, 1).apy == Decimal("8")

    def test_stake_accrues_before_changing_balance(self, engine):
        staking_service.stake(engine, 1, "1000", now=T0)
        staking_service.stake(engine, 1, "1000", now=T0 + ONE_YEAR)

        account = _account(engine, 1)
        assert account.staked_amount == Decimal("2000")
        # Year one accrued on the original 1000 only.
        assert account.rewards == Decimal("125")

    @pytest.mark.parametrize("bad", ["0", "-10", "abc"])
    def test_invalid_amount_changes_nothing(self, engine, bad):
        with pytest.raises(InvalidAmount):
            staking_service.stake(engine, 1, bad, now=T0)
        assert _account(engine, 1) is None
        assert _transactions(engine, 1) == []


# ===========================================================================
# unstake
# ===========================================================================
class TestUnstake:
    def test_unstake_reduces_balance(self, engine):
        staking_service.stake(engine, 1, "1000", now=T0)
        receipt = staking_service.unstake(engine, 1, "400", now=T0)

        assert receipt.new_staked_amount == Decimal("600")
        assert _account(engine, 1).staked_amount == Decimal("600")
        assert [t.type for t in _transactions(engine, 1)] == ["stake", "unstake"]

    def test_over_unstake_rejected_and_balance_kept(self, engine):
        staking_service.stake(engine, 1, "500", now=T0)

        with pytest.raises(InsufficientStake):
            staking_service.unstake(engine, 1, "600", now=T0)

        assert _account(engine, 1).staked_amount == Decimal("500")
        assert len(_transactions(engine, 1)) == 1

    def test_unstake_to_zero_keeps_account(self, engine):
        staking_service.stake(engine, 1, "500", now=T0)
        staking_service.unstake(engine, 1, "500", now=T0)
        account = _account(engine, 1)
        assert account is not None
        assert account.staked_amount == Decimal(0)

    def test_unstake_without_account(self, engine):
        with pytest.raises(NotFound, match="no staking record"):
            staking_service.unstake(engine, 77, "1", now=T0)

    def test_conservation_across_operations(self, engine):
        staking_service.stake(engine, 1, "1000", now=T0)
        staking_service.unstake(engine, 1, "400", now=T0 + timedelta(days=1))
        staking_service.stake(engine, 1, "100.5", now=T0 + timedelta(days=2))
        with pytest.raises(InsufficientStake):
            staking_service.unstake(engine, 1, "10000", now=T0 + timedelta(days=3))

        txs = _transactions(engine, 1)
        staked = sum(t.amount for t in txs if t.type == "stake")
        unstaked = sum(t.amount for t in txs if t.type == "unstake")
        assert _account(engine, 1).staked_amount == staked - unstaked == Decimal("700.5")


# ===========================================================================
# claim_rewards
# ===========================================================================
class TestClaimRewards:
    def test_immediate_claim_has_nothing(self, engine):
        staking_service.stake(engine, 1, "2000", now=T0)
        with pytest.raises(NoRewards, match="No rewards available"):
            staking_service.claim_rewards(engine, 1, now=T0)
        assert len(_transactions(engine, 1)) == 1

    def test_claim_after_a_year(self, engine):
        staking_service.stake(engine, 1, "1000", now=T0)
        receipt = staking_service.claim_rewards(engine, 1, now=T0 + ONE_YEAR)

        assert receipt.claimed_amount == Decimal("125")
        assert receipt.new_rewards == Decimal(0)

        account = _account(engine, 1)
        assert account.rewards == Decimal(0)
        assert account.staked_amount == Decimal("1000")

        txs = _transactions(engine, 1)
        assert [(t.type, t.amount) for t in txs][-1] == ("claim_rewards", Decimal("125"))

    def test_second_claim_at_same_instant_is_empty(self, engine):
        staking_service.stake(engine, 1, "1000", now=T0)
        staking_service.claim_rewards(engine, 1, now=T0 + ONE_YEAR)
        with pytest.raises(NoRewards):
            staking_service.claim_rewards(engine, 1, now=T0 + ONE_YEAR)

    def test_claim_without_account(self, engine):
        with pytest.raises(NotFound):
            staking_service.claim_rewards(engine, 5, now=T0)

    def test_pluggable_policy(self, engine, restore_reward_policy):
        set_reward_policy(no_accrual)
        staking_service.stake(engine, 1, "1000", now=T0)
        with pytest.raises(NoRewards):
            staking_service.claim_rewards(engine, 1, now=T0 + ONE_YEAR)


# ===========================================================================
# Reads
# ===========================================================================
class TestReads:
    def test_info_for_unknown_user(self, engine):
        info = staking_service.get_info(engine, 123, now=T0)
        assert info.staked_amount == Decimal(0)
        assert info.rewards == Decimal(0)
        assert info.apy == Decimal("12.5")
        assert info.total_stakers == 0
        assert info.total_staked_amount == Decimal(0)

    def test_info_projects_pending_rewards_and_aggregates(self, engine):
        staking_service.stake(engine, 1, "1000", now=T0)
        staking_service.stake(engine, 2, "2000", now=T0)

        info = staking_service.get_info(engine, 1, now=T0 + ONE_YEAR)
        assert info.staked_amount == Decimal("1000")
        assert info.rewards == Decimal("125")
        assert info.total_stakers == 2
        assert info.total_staked_amount == Decimal("3000")
        # Totals are folded over stored values; nothing has been written yet.
        assert info.total_rewards == Decimal(0)

        # Reading never checkpoints.
        assert _account(engine, 1).rewards == Decimal(0)

    def test_list_transactions_newest_first(self, engine):
        staking_service.stake(engine, 1, "10", now=T0)
        staking_service.stake(engine, 1, "20", now=T0 + timedelta(minutes=1))
        staking_service.unstake(engine, 1, "5", now=T0 + timedelta(minutes=2))

        rows = staking_service.list_transactions(engine, 1)
        assert [r["type"] for r in rows] == ["unstake", "stake", "stake"]
        assert rows[0]["amount"] == Decimal("5")

    def test_transaction_count_matches_mutations(self, engine):
        staking_service.stake(engine, 1, "10", now=T0)
        staking_service.stake(engine, 2, "10", now=T0)
        with Session(engine) as session:
            assert session.scalar(select(func.count()).select_from(StakingTransaction)) == 2
