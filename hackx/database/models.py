"""
hackx.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- users                — Platform members known to the ledger (id from identity)
- staking_accounts     — One staked balance + accrued rewards per user
- staking_transactions — Append-only ledger journal (stake / unstake / claim)
- dao_proposals        — Governance proposals and their running vote totals
- dao_votes            — One weighted vote per (proposal, user)
- settings             — Governance tuning key/value store
- admin_log            — Append-only audit trail for privileged transitions
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Token amounts: 28 integer digits, 8 fractional.
AMOUNT = Numeric(36, 8)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all HackX ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class StakingTransactionType(enum.StrEnum):
    """Kinds of ledger mutation recorded in staking_transactions."""
    STAKE = "stake"
    UNSTAKE = "unstake"
    CLAIM_REWARDS = "claim_rewards"


class ProposalType(enum.StrEnum):
    TREASURY = "TREASURY"
    GOVERNANCE = "GOVERNANCE"
    PROTOCOL = "PROTOCOL"
    EMERGENCY = "EMERGENCY"


class ProposalStatus(enum.StrEnum):
    """Lifecycle states — see :mod:`hackx.engine.resolution`."""
    ACTIVE = "ACTIVE"
    PASSED = "PASSED"
    REJECTED = "REJECTED"
    EXECUTED = "EXECUTED"


class VoteChoice(enum.StrEnum):
    FOR = "for"
    AGAINST = "against"


class AdminActionType(enum.StrEnum):
    """Categories of privileged transitions recorded in admin_log."""
    RESOLVE = "RESOLVE"
    EXECUTE = "EXECUTE"


# ---------------------------------------------------------------------------
# Users — one row per platform member the ledger has seen
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    # Last value reported by the identity provider; voting power always
    # uses the value on the authenticated request.
    reputation_score: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    staking_account: Mapped[StakingAccount | None] = relationship(
        back_populates="user", uselist=False
    )
    proposals: Mapped[list[DAOProposal]] = relationship(back_populates="creator")

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.username!r}>"


# ---------------------------------------------------------------------------
# StakingAccount — one staked balance per user, never deleted
# ---------------------------------------------------------------------------
class StakingAccount(Base):
    """A user's staked balance and accrued-but-unclaimed rewards.

    Mutated only by :mod:`hackx.services.staking_service`, always under a
    row lock and always together with a :class:`StakingTransaction`.
    Unstaking to zero keeps the row so the history stays attached.
    """
    __tablename__ = "staking_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False, unique=True
    )
    staked_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    rewards: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    apy: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)  # percent
    last_reward_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped[User] = relationship(back_populates="staking_account")
    transactions: Mapped[list[StakingTransaction]] = relationship(back_populates="account")

    __table_args__ = (
        CheckConstraint("staked_amount >= 0", name="ck_staking_accounts_staked_nonneg"),
        CheckConstraint("rewards >= 0", name="ck_staking_accounts_rewards_nonneg"),
    )

    def __repr__(self) -> str:
        return f"<StakingAccount user={self.user_id} staked={self.staked_amount}>"


# ---------------------------------------------------------------------------
# StakingTransaction — append-only ledger journal
# ---------------------------------------------------------------------------
class StakingTransaction(Base):
    __tablename__ = "staking_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    staking_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("staking_accounts.id"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    tx_hash: Mapped[str | None] = mapped_column(String(100), nullable=True)  # on-chain mirror
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    account: Mapped[StakingAccount] = relationship(back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_staking_transactions_amount_pos"),
        Index("ix_staking_transactions_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<StakingTransaction id={self.id} type={self.type} amount={self.amount}>"


# ---------------------------------------------------------------------------
# DAOProposal — governance item with running vote accumulators
# ---------------------------------------------------------------------------
class DAOProposal(Base):
    """A governance proposal.

    ``for_votes`` / ``against_votes`` are the authoritative tally; they are
    only ever incremented in the same transaction that inserts the
    corresponding :class:`DAOVote`.  Proposals are never physically deleted.
    """
    __tablename__ = "dao_proposals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    proposal_type: Mapped[str] = mapped_column(String(20), nullable=False)
    target_amount: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    creator_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    for_votes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    against_votes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    voting_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    execution_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProposalStatus.ACTIVE.value
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    execution_result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    ipfs_hash: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    creator: Mapped[User] = relationship(back_populates="proposals")
    votes: Mapped[list[DAOVote]] = relationship(back_populates="proposal")

    __table_args__ = (
        CheckConstraint("for_votes >= 0", name="ck_dao_proposals_for_nonneg"),
        CheckConstraint("against_votes >= 0", name="ck_dao_proposals_against_nonneg"),
        Index("ix_dao_proposals_status_created", "status", "created_at"),
        Index("ix_dao_proposals_type", "proposal_type"),
    )

    def __repr__(self) -> str:
        return f"<DAOProposal id={self.id} type={self.proposal_type} status={self.status}>"


# ---------------------------------------------------------------------------
# DAOVote — exactly one per (proposal, user); immutable
# ---------------------------------------------------------------------------
class DAOVote(Base):
    __tablename__ = "dao_votes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    proposal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("dao_proposals.id"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    vote: Mapped[str] = mapped_column(String(10), nullable=False)
    voting_power: Mapped[int] = mapped_column(BigInteger, nullable=False)  # snapshot at cast
    ipfs_hash: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    proposal: Mapped[DAOProposal] = relationship(back_populates="votes")

    __table_args__ = (
        UniqueConstraint("proposal_id", "user_id", name="uq_dao_votes_proposal_user"),
        CheckConstraint("voting_power > 0", name="ck_dao_votes_power_pos"),
    )

    def __repr__(self) -> str:
        return (
            f"<DAOVote proposal={self.proposal_id} user={self.user_id} "
            f"vote={self.vote} power={self.voting_power}>"
        )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)  # None = worker
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# Setting — governance tuning key/value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Governance tuning knobs (default APY, proposal threshold, voting window,
    quorum) live here so operators can adjust them without redeploying.
    Values are stored as JSON strings; typed accessors live in
    :mod:`hackx.services.settings_service`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"
