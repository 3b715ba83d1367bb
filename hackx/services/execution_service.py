"""
hackx.services.execution_service — Execution Gate
==================================================

Decides whether a proposal may move ``PASSED → EXECUTED`` and performs the
move exactly once.

Checks, in order: the proposal exists, the caller holds every capability
its type requires, the status is ``PASSED``, and ``now >= execution_time``.
The flip itself is ``UPDATE … WHERE status = 'PASSED'``, so of two
concurrent executions only one updates a row; the other gets
:class:`ProposalNotPassed`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from hackx.clock import as_utc, resolve_now
from hackx.database.engine import run_in_transaction
from hackx.database.models import AdminActionType, DAOProposal, ProposalStatus, ProposalType
from hackx.engine.errors import ExecutionTooEarly, NotFound, ProposalNotPassed, Unauthorized
from hackx.engine.execution import ExecutionContext, get_type_spec
from hackx.engine.resolution import can_transition
from hackx.services.audit_service import log_admin_action, row_to_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutionReceipt:
    proposal_id: int
    status: str
    executed_at: datetime
    effect: dict


def execute_proposal(
    engine,
    proposal_id: int,
    caller_id: int,
    capabilities: Iterable[str],
    *,
    now: datetime | None = None,
) -> ExecutionReceipt:
    """Execute a passed proposal whose execution time has arrived.

    Raises
    ------
    NotFound, Unauthorized, ProposalNotPassed, ExecutionTooEarly
    """
    ts = resolve_now(now)
    held = frozenset(capabilities)

    def _execute(session: Session) -> ExecutionReceipt:
        proposal = session.get(DAOProposal, proposal_id)
        if proposal is None:
            raise NotFound("Proposal not found")

        spec = get_type_spec(proposal.proposal_type)
        missing = spec.required_capabilities - held
        if missing:
            raise Unauthorized(
                f"Executing {spec.proposal_type.value} proposals requires: "
                + ", ".join(sorted(missing))
            )
        if not can_transition(proposal.status, ProposalStatus.EXECUTED.value):
            raise ProposalNotPassed(
                f"Proposal is {proposal.status}; only PASSED proposals can be executed"
            )
        if ts < as_utc(proposal.execution_time):
            raise ExecutionTooEarly(
                f"Proposal cannot be executed before {as_utc(proposal.execution_time).isoformat()}"
            )

        before = row_to_dict(proposal)
        effect = spec.handler(ExecutionContext(
            proposal_id=proposal.id,
            proposal_type=ProposalType(proposal.proposal_type),
            title=proposal.title,
            target_amount=proposal.target_amount,
            executed_at=ts,
            executor_id=caller_id,
        ))
        result = session.execute(
            update(DAOProposal)
            .where(
                DAOProposal.id == proposal_id,
                DAOProposal.status == ProposalStatus.PASSED.value,
            )
            .values(
                status=ProposalStatus.EXECUTED.value,
                executed_at=ts,
                execution_result=effect,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ProposalNotPassed("Proposal was executed by a concurrent request")

        session.refresh(proposal)
        log_admin_action(
            session,
            actor_id=caller_id,
            action_type=AdminActionType.EXECUTE.value,
            target_table="dao_proposals",
            target_id=str(proposal_id),
            before=before,
            after=row_to_dict(proposal),
        )
        return ExecutionReceipt(
            proposal_id=proposal_id,
            status=ProposalStatus.EXECUTED.value,
            executed_at=ts,
            effect=effect,
        )

    try:
        receipt = run_in_transaction(engine, _execute)
    except Unauthorized:
        logger.warning("User %s denied execution of proposal %s", caller_id, proposal_id)
        raise
    logger.info(
        "Proposal %s executed by user %s (%s)",
        proposal_id, caller_id, receipt.effect.get("effect"),
    )
    return receipt
