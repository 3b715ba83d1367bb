"""
HackX Governance — Staking Ledger & DAO Governance for the HackX Platform
==========================================================================
Tracks token stakes, derives voting power from stake and reputation,
runs governance proposals through a vote-then-execute lifecycle, and
gates execution on outcome and wall-clock time.  Mirrors the companion
staking/DAO smart contract on the backend side.

Package layout::

    hackx/
    ├── config.py          # YAML → typed Python config
    ├── clock.py           # UTC clock helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, atomic units + retry, async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default governance settings
    ├── engine/
    │   ├── errors.py      # Business-rule error taxonomy
    │   ├── identity.py    # Principal + capability names
    │   ├── voting_power.py # Stake + reputation → vote weight
    │   ├── rewards.py     # Reward accrual policy
    │   ├── resolution.py  # Proposal state machine + tally resolution policy
    │   └── execution.py   # Per-proposal-type dispatch table
    ├── services/
    │   ├── staking_service.py   # StakingLedger
    │   ├── proposal_service.py  # ProposalStore
    │   ├── vote_service.py      # VoteTally
    │   ├── execution_service.py # ExecutionGate
    │   ├── settings_service.py  # Typed reads of the settings table
    │   └── audit_service.py     # admin_log writer
    ├── api/
    │   ├── main.py        # FastAPI app
    │   ├── deps.py        # JWT → Principal, engine/config dependencies
    │   └── routes/        # /staking and /dao endpoints
    └── worker/
        └── __main__.py    # Periodic resolution sweeper
"""

__version__ = "0.1.0"
