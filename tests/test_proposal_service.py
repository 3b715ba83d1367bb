"""
tests/test_proposal_service.py — Proposal Store & Resolution Tests
===================================================================

Creation rules (stake threshold, execution-time floor, type fields),
listing/pagination, and resolution of proposals out of ``ACTIVE`` —
both on demand and through the deadline sweep.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import T0
from hackx.clock import as_utc
from hackx.database.models import ProposalStatus
from hackx.engine.errors import (
    InsufficientStake,
    InvalidProposal,
    NotFound,
    ProposalNotActive,
    StorageUnavailable,
)
from hackx.engine.resolution import TallySnapshot
from hackx.services import audit_service, proposal_service, settings_service, staking_service
from hackx.services import vote_service

CREATOR = 10
WEEK = timedelta(days=7)


@pytest.fixture
def engine(db_engine):
    """Re-use the shared conftest db_engine (SQLite, StaticPool)."""
    return db_engine


@pytest.fixture
def staked_creator(engine):
    staking_service.stake(engine, CREATOR, "1000", username="creator", now=T0)
    return CREATOR


def _create(
    engine, *, now=T0, proposal_type="GOVERNANCE", target_amount=None, title="Raise quorum"
):
    return proposal_service.create_proposal(
        engine,
        CREATOR,
        title=title,
        description="Details of the change",
        proposal_type=proposal_type,
        execution_time=now + timedelta(days=10),
        target_amount=target_amount,
        now=now,
    )


# ===========================================================================
# create_proposal
# ===========================================================================
class TestCreateProposal:
    def test_below_threshold_rejected(self, engine):
        staking_service.stake(engine, CREATOR, "999", now=T0)
        with pytest.raises(InsufficientStake):
            _create(engine)
        assert proposal_service.list_proposals(engine).total == 0

    def test_at_threshold_accepted(self, engine):
        staking_service.stake(engine, CREATOR, "999", now=T0)
        staking_service.stake(engine, CREATOR, "1", now=T0)

        created = _create(engine)

        assert created.status == "ACTIVE"
        assert created.voting_deadline == T0 + WEEK
        stored = proposal_service.get_proposal(engine, created.id)
        assert stored["for_votes"] == 0
        assert stored["against_votes"] == 0
        assert stored["creator"]["id"] == CREATOR

    def test_no_stake_at_all_rejected(self, engine):
        with pytest.raises(InsufficientStake):
            _create(engine)

    def test_threshold_read_from_settings(self, engine, staked_creator):
        settings_service.set_setting(engine, "dao.min_proposal_stake", 5000)
        with pytest.raises(InsufficientStake):
            _create(engine)

    def test_voting_period_read_from_settings(self, engine, staked_creator):
        settings_service.set_setting(engine, "dao.voting_period_days", 3)
        created = _create(engine)
        assert created.voting_deadline == T0 + timedelta(days=3)

    def test_execution_before_deadline_rejected(self, engine, staked_creator):
        with pytest.raises(InvalidProposal, match="voting deadline"):
            proposal_service.create_proposal(
                engine,
                CREATOR,
                title="Too soon",
                description="d",
                proposal_type="GOVERNANCE",
                execution_time=T0 + timedelta(days=6),
                now=T0,
            )

    def test_execution_at_deadline_accepted(self, engine, staked_creator):
        created = proposal_service.create_proposal(
            engine,
            CREATOR,
            title="Right on time",
            description="d",
            proposal_type="GOVERNANCE",
            execution_time=T0 + WEEK,
            now=T0,
        )
        assert created.id > 0

    def test_treasury_requires_target(self, engine, staked_creator):
        with pytest.raises(InvalidProposal, match="target_amount"):
            _create(engine, proposal_type="TREASURY")

    def test_treasury_with_target(self, engine, staked_creator):
        created = _create(engine, proposal_type="TREASURY", target_amount="2500.5")
        stored = proposal_service.get_proposal(engine, created.id)
        assert stored["target_amount"] == Decimal("2500.5")
        assert stored["proposal_type"] == "TREASURY"

    @pytest.mark.parametrize(
        ("title", "description"),
        [("", "desc"), ("title", "   "), ("x" * 201, "desc")],
    )
    def test_invalid_text_fields(self, engine, staked_creator, title, description):
        with pytest.raises(InvalidProposal):
            proposal_service.create_proposal(
                engine,
                CREATOR,
                title=title,
                description=description,
                proposal_type="GOVERNANCE",
                execution_time=T0 + timedelta(days=10),
                now=T0,
            )

    def test_unknown_type(self, engine, staked_creator):
        with pytest.raises(InvalidProposal):
            _create(engine, proposal_type="LOTTERY")

    def test_bad_target_amount(self, engine, staked_creator):
        with pytest.raises(InvalidProposal, match="target_amount"):
            _create(engine, proposal_type="TREASURY", target_amount="-5")


# ===========================================================================
# Reads
# ===========================================================================
class TestListProposals:
    def test_newest_first_with_pagination(self, engine, staked_creator):
        ids = [
            _create(engine, now=T0 + timedelta(minutes=i), title=f"P{i}").id
            for i in range(3)
        ]

        first = proposal_service.list_proposals(engine, page=1, limit=2)
        assert [p["id"] for p in first.proposals] == [ids[2], ids[1]]
        assert first.total == 3
        assert first.total_pages == 2

        second = proposal_service.list_proposals(engine, page=2, limit=2)
        assert [p["id"] for p in second.proposals] == [ids[0]]

    def test_filters(self, engine, staked_creator):
        _create(engine, title="Gov")
        treasury = _create(engine, proposal_type="TREASURY", target_amount="10", title="Spend")

        page = proposal_service.list_proposals(engine, proposal_type="TREASURY")
        assert [p["id"] for p in page.proposals] == [treasury.id]

        assert proposal_service.list_proposals(engine, status="ACTIVE").total == 2
        assert proposal_service.list_proposals(engine, status="PASSED").total == 0

    def test_unknown_filter_rejected(self, engine):
        with pytest.raises(InvalidProposal):
            proposal_service.list_proposals(engine, status="OPEN")

    def test_limit_capped(self, engine):
        page = proposal_service.list_proposals(engine, limit=10_000)
        assert page.limit == proposal_service.MAX_PAGE_SIZE
        assert page.total_pages == 0

    def test_get_missing(self, engine):
        with pytest.raises(NotFound):
            proposal_service.get_proposal(engine, 999)


# ===========================================================================
# Resolution
# ===========================================================================
class TestResolveProposal:
    def test_open_before_deadline(self, engine, staked_creator):
        created = _create(engine)
        outcome = proposal_service.resolve_proposal(
            engine, created.id, now=T0 + timedelta(days=1)
        )
        assert outcome.changed is False
        assert outcome.status == "ACTIVE"
        assert proposal_service.get_proposal(engine, created.id)["status"] == "ACTIVE"

    def test_majority_passes(self, engine, staked_creator):
        created = _create(engine)
        vote_service.cast_vote(engine, created.id, 1, "for", now=T0 + timedelta(hours=1))

        outcome = proposal_service.resolve_proposal(
            engine, created.id, actor_id=99, now=T0 + WEEK
        )

        assert outcome.changed is True
        assert outcome.status == "PASSED"
        assert outcome.for_votes == 1
        stored = proposal_service.get_proposal(engine, created.id)
        assert stored["status"] == "PASSED"
        assert stored["resolved_at"] == (T0 + WEEK).isoformat()

    def test_tie_rejects(self, engine, staked_creator):
        created = _create(engine)
        vote_service.cast_vote(engine, created.id, 1, "for", now=T0)
        vote_service.cast_vote(engine, created.id, 2, "against", now=T0)

        outcome = proposal_service.resolve_proposal(engine, created.id, now=T0 + WEEK)
        assert outcome.status == "REJECTED"

    def test_no_votes_rejects(self, engine, staked_creator):
        created = _create(engine)
        outcome = proposal_service.resolve_proposal(engine, created.id, now=T0 + WEEK)
        assert outcome.status == "REJECTED"

    def test_quorum_from_settings(self, engine, staked_creator):
        settings_service.set_setting(engine, "dao.quorum_voting_power", 5)
        created = _create(engine)
        vote_service.cast_vote(engine, created.id, 1, "for", now=T0)

        outcome = proposal_service.resolve_proposal(engine, created.id, now=T0 + WEEK)
        assert outcome.status == "REJECTED"

    def test_custom_policy(self, engine, staked_creator):
        created = _create(engine)
        seen: list[TallySnapshot] = []

        def always_pass(tally, now):
            seen.append(tally)
            return ProposalStatus.PASSED

        outcome = proposal_service.resolve_proposal(
            engine, created.id, policy=always_pass, now=T0
        )
        assert outcome.status == "PASSED"
        assert seen[0].proposal_id == created.id
        assert as_utc(seen[0].voting_deadline) == T0 + WEEK

    def test_resolving_twice_fails(self, engine, staked_creator):
        created = _create(engine)
        proposal_service.resolve_proposal(engine, created.id, now=T0 + WEEK)
        with pytest.raises(ProposalNotActive):
            proposal_service.resolve_proposal(engine, created.id, now=T0 + WEEK)

    def test_missing_proposal(self, engine):
        with pytest.raises(NotFound):
            proposal_service.resolve_proposal(engine, 404, now=T0)

    def test_resolution_is_audited(self, engine, staked_creator):
        created = _create(engine)
        proposal_service.resolve_proposal(engine, created.id, actor_id=99, now=T0 + WEEK)

        entries = audit_service.get_audit_log(engine, target_table="dao_proposals")
        assert len(entries) == 1
        entry = entries[0]
        assert entry["action_type"] == "RESOLVE"
        assert entry["actor_id"] == 99
        assert entry["target_id"] == str(created.id)
        assert entry["before"]["status"] == "ACTIVE"
        assert entry["after"]["status"] == "REJECTED"


class TestResolveDueProposals:
    def test_sweep_only_touches_expired(self, engine, staked_creator):
        early = _create(engine, now=T0, title="Early")
        late = _create(engine, now=T0 + timedelta(days=3), title="Late")

        outcomes = proposal_service.resolve_due_proposals(
            engine, now=T0 + WEEK + timedelta(seconds=1)
        )

        assert [o.proposal_id for o in outcomes] == [early.id]
        assert proposal_service.get_proposal(engine, early.id)["status"] == "REJECTED"
        assert proposal_service.get_proposal(engine, late.id)["status"] == "ACTIVE"

    def test_sweep_is_idempotent(self, engine, staked_creator):
        _create(engine)
        later = T0 + WEEK + timedelta(days=1)
        assert len(proposal_service.resolve_due_proposals(engine, now=later)) == 1
        assert proposal_service.resolve_due_proposals(engine, now=later) == []

    def test_sweep_audits_without_actor(self, engine, staked_creator):
        _create(engine)
        proposal_service.resolve_due_proposals(engine, now=T0 + WEEK)
        entry = audit_service.get_audit_log(engine)[0]
        assert entry["actor_id"] is None
        assert entry["action_type"] == "RESOLVE"

    def test_failing_proposal_does_not_stall_sweep(self, engine, staked_creator, monkeypatch):
        first = _create(engine, now=T0, title="First")
        second = _create(engine, now=T0 + timedelta(hours=1), title="Second")
        real_resolve = proposal_service.resolve_proposal

        def flaky_resolve(engine, proposal_id, **kwargs):
            if proposal_id == first.id:
                raise StorageUnavailable("database unavailable")
            return real_resolve(engine, proposal_id, **kwargs)

        monkeypatch.setattr(proposal_service, "resolve_proposal", flaky_resolve)
        outcomes = proposal_service.resolve_due_proposals(
            engine, now=T0 + WEEK + timedelta(days=1)
        )

        assert [o.proposal_id for o in outcomes] == [second.id]
        assert proposal_service.get_proposal(engine, first.id)["status"] == "ACTIVE"
        assert proposal_service.get_proposal(engine, second.id)["status"] == "REJECTED"

    def test_policy_error_is_isolated(self, engine, staked_creator):
        first = _create(engine, now=T0, title="First")
        second = _create(engine, now=T0 + timedelta(hours=1), title="Second")

        def picky_policy(tally, now):
            if tally.proposal_id == first.id:
                raise RuntimeError("policy bug")
            return ProposalStatus.PASSED

        outcomes = proposal_service.resolve_due_proposals(
            engine, policy=picky_policy, now=T0 + WEEK + timedelta(days=1)
        )

        assert [(o.proposal_id, o.status) for o in outcomes] == [(second.id, "PASSED")]
        assert proposal_service.get_proposal(engine, first.id)["status"] == "ACTIVE"


class TestTransitionGuards:
    def test_policy_cannot_skip_to_executed(self, engine, staked_creator):
        created = _create(engine)
        with pytest.raises(ValueError, match="illegal outcome"):
            proposal_service.resolve_proposal(
                engine, created.id, policy=lambda tally, at: ProposalStatus.EXECUTED, now=T0
            )
        assert proposal_service.get_proposal(engine, created.id)["status"] == "ACTIVE"
