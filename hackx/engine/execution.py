"""
hackx.engine.execution — Proposal-Type Dispatch Table
======================================================

Each :class:`~hackx.database.models.ProposalType` is a tagged variant
described by one :class:`ProposalTypeSpec`: the capabilities an executor
must hold, the field rules checked at creation, and the handler that
produces the execution effect record.

Handlers are pure — they run inside the execution transaction and must not
call out to external systems.  The effect record they return is stored on
the proposal (``execution_result``) and in the audit log; reconciling it
against the chain happens asynchronously, outside this package.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from hackx.database.models import ProposalType
from hackx.engine.errors import InvalidProposal
from hackx.engine.identity import CAP_EXECUTE, CAP_PROTOCOL_UPGRADE, CAP_TREASURY_SPEND


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    proposal_id: int
    proposal_type: ProposalType
    title: str
    target_amount: Decimal | None
    executed_at: datetime
    executor_id: int


ExecutionHandler = Callable[[ExecutionContext], dict]


@dataclass(frozen=True, slots=True)
class ProposalTypeSpec:
    proposal_type: ProposalType
    required_capabilities: frozenset[str]
    requires_target_amount: bool
    handler: ExecutionHandler


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------
def _base_effect(ctx: ExecutionContext, effect: str) -> dict:
    return {
        "effect": effect,
        "proposal_id": ctx.proposal_id,
        "executor_id": ctx.executor_id,
        "executed_at": ctx.executed_at.isoformat(),
    }


def _treasury_transfer(ctx: ExecutionContext) -> dict:
    record = _base_effect(ctx, "treasury_transfer")
    record["amount"] = str(ctx.target_amount)
    return record


def _governance_change(ctx: ExecutionContext) -> dict:
    return _base_effect(ctx, "governance_change")


def _protocol_upgrade(ctx: ExecutionContext) -> dict:
    return _base_effect(ctx, "protocol_upgrade")


def _emergency_action(ctx: ExecutionContext) -> dict:
    record = _base_effect(ctx, "emergency_action")
    if ctx.target_amount is not None:
        record["amount"] = str(ctx.target_amount)
    return record


PROPOSAL_TYPES: dict[ProposalType, ProposalTypeSpec] = {
    ProposalType.TREASURY: ProposalTypeSpec(
        proposal_type=ProposalType.TREASURY,
        required_capabilities=frozenset({CAP_EXECUTE, CAP_TREASURY_SPEND}),
        requires_target_amount=True,
        handler=_treasury_transfer,
    ),
    ProposalType.GOVERNANCE: ProposalTypeSpec(
        proposal_type=ProposalType.GOVERNANCE,
        required_capabilities=frozenset({CAP_EXECUTE}),
        requires_target_amount=False,
        handler=_governance_change,
    ),
    ProposalType.PROTOCOL: ProposalTypeSpec(
        proposal_type=ProposalType.PROTOCOL,
        required_capabilities=frozenset({CAP_EXECUTE, CAP_PROTOCOL_UPGRADE}),
        requires_target_amount=False,
        handler=_protocol_upgrade,
    ),
    ProposalType.EMERGENCY: ProposalTypeSpec(
        proposal_type=ProposalType.EMERGENCY,
        required_capabilities=frozenset({CAP_EXECUTE}),
        requires_target_amount=False,
        handler=_emergency_action,
    ),
}


def get_type_spec(proposal_type: str) -> ProposalTypeSpec:
    """Look up the spec for *proposal_type*; unknown types are invalid."""
    try:
        return PROPOSAL_TYPES[ProposalType(proposal_type)]
    except ValueError:
        raise InvalidProposal(
            f"Unknown proposal type {proposal_type!r}; "
            f"expected one of {[t.value for t in ProposalType]}"
        ) from None


def validate_type_fields(proposal_type: str, target_amount: Decimal | None) -> ProposalTypeSpec:
    """Check type-specific field rules at creation time."""
    spec = get_type_spec(proposal_type)
    if target_amount is not None and target_amount <= 0:
        raise InvalidProposal("target_amount must be positive when given")
    if spec.requires_target_amount and target_amount is None:
        raise InvalidProposal(f"{spec.proposal_type.value} proposals require a target_amount")
    return spec
