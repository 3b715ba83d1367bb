"""
hackx.engine.errors — Business-Rule Error Taxonomy
===================================================

Every rejected ledger or governance operation raises one of these.  Each
kind carries a stable ``kind`` string (rendered to API clients) and the
HTTP status the API layer maps it to, so callers can tell "this action is
invalid" from "not permitted" from "try again later".

Business-rule errors are raised inside an atomic unit, which rolls the
unit back; they are never retried.  Only :class:`StorageUnavailable`
means "try again".
"""

from __future__ import annotations

__all__ = [
    "AlreadyVoted",
    "ExecutionTooEarly",
    "GovernanceError",
    "InsufficientStake",
    "InvalidAmount",
    "InvalidProposal",
    "InvalidVote",
    "NoRewards",
    "NotFound",
    "ProposalNotActive",
    "ProposalNotPassed",
    "StorageUnavailable",
    "Unauthorized",
]


class GovernanceError(Exception):
    """Base class for every typed failure raised by the core."""

    kind: str = "GovernanceError"
    http_status: int = 400
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.kind
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class NotFound(GovernanceError):
    """Staking account or proposal does not exist."""
    kind = "NotFound"
    http_status = 404


class InvalidAmount(GovernanceError):
    """Non-positive or malformed token amount."""
    kind = "InvalidAmount"


class InvalidProposal(GovernanceError):
    """Proposal fields fail validation (blank text, bad timing, type rules)."""
    kind = "InvalidProposal"


class InvalidVote(GovernanceError):
    kind = "InvalidVote"


class InsufficientStake(GovernanceError):
    """Unstake exceeds the balance, or proposal eligibility not met."""
    kind = "InsufficientStake"


class NoRewards(GovernanceError):
    kind = "NoRewards"


class ProposalNotActive(GovernanceError):
    kind = "ProposalNotActive"


class ProposalNotPassed(GovernanceError):
    kind = "ProposalNotPassed"


class AlreadyVoted(GovernanceError):
    kind = "AlreadyVoted"
    http_status = 409


class ExecutionTooEarly(GovernanceError):
    kind = "ExecutionTooEarly"


class Unauthorized(GovernanceError):
    """Caller lacks the capability the operation requires."""
    kind = "Unauthorized"
    http_status = 403


class StorageUnavailable(GovernanceError):
    """Transient storage failures persisted past the retry budget."""
    kind = "StorageUnavailable"
    http_status = 503
    retryable = True
