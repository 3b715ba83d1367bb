"""
hackx.engine.resolution — Proposal State Machine & Tally Resolution
====================================================================

Pure logic, no DB I/O.

State machine::

    ACTIVE ──► PASSED ──► EXECUTED
       │
       └─────► REJECTED

The rule that moves a proposal out of ``ACTIVE`` is a pluggable
:data:`ResolutionPolicy`.  It sees a :class:`TallySnapshot` taken under the
proposal's row lock and returns the outcome, or ``None`` while the vote is
still open.  The default, :func:`majority_with_quorum`, closes at the voting
deadline and passes a proposal on a simple majority of cast voting power,
provided total participation reaches the quorum.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from hackx.clock import as_utc
from hackx.database.models import ProposalStatus

ALLOWED_TRANSITIONS: dict[ProposalStatus, frozenset[ProposalStatus]] = {
    ProposalStatus.ACTIVE: frozenset({ProposalStatus.PASSED, ProposalStatus.REJECTED}),
    ProposalStatus.PASSED: frozenset({ProposalStatus.EXECUTED}),
    ProposalStatus.REJECTED: frozenset(),
    ProposalStatus.EXECUTED: frozenset(),
}

RESOLUTION_OUTCOMES = frozenset({ProposalStatus.PASSED, ProposalStatus.REJECTED})


def can_transition(current: str, target: str) -> bool:
    """True if ``current → target`` is a legal lifecycle step."""
    try:
        return ProposalStatus(target) in ALLOWED_TRANSITIONS[ProposalStatus(current)]
    except ValueError:
        return False


def is_open(status: str) -> bool:
    """True while a resolution outcome is still reachable, i.e. votes count."""
    return any(can_transition(status, outcome) for outcome in RESOLUTION_OUTCOMES)


@dataclass(frozen=True, slots=True)
class TallySnapshot:
    """Everything a resolution policy may look at."""

    proposal_id: int
    proposal_type: str
    for_votes: int
    against_votes: int
    voting_deadline: datetime

    @property
    def total_votes(self) -> int:
        return self.for_votes + self.against_votes


ResolutionPolicy = Callable[[TallySnapshot, datetime], ProposalStatus | None]


def majority_with_quorum(quorum: int = 1) -> ResolutionPolicy:
    """Build the default policy.

    Before ``voting_deadline`` → ``None`` (still open).
    After it → ``PASSED`` if ``for > against`` and ``for + against >= quorum``,
    otherwise ``REJECTED``.  Ties reject.
    """

    def policy(tally: TallySnapshot, now: datetime) -> ProposalStatus | None:
        if as_utc(now) < as_utc(tally.voting_deadline):
            return None
        if tally.total_votes >= quorum and tally.for_votes > tally.against_votes:
            return ProposalStatus.PASSED
        return ProposalStatus.REJECTED

    return policy
