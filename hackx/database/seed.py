"""
hackx.database.seed — Default Settings Seeder
==============================================

Baseline governance settings seeded on first startup so staking and
proposals work out of the box.

Idempotent — only inserts keys that don't already exist.  Values edited
later by operators are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from hackx.database.models import Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "staking.default_apy": (
        12.5, "staking", "APY (percent) assigned to newly created staking accounts",
    ),
    "dao.min_proposal_stake": (
        1000, "dao", "Minimum staked tokens required to create a proposal",
    ),
    "dao.voting_period_days": (
        7, "dao", "Days a proposal stays open for voting after creation",
    ),
    "dao.quorum_voting_power": (
        1, "dao", "Minimum total voting power cast for an outcome to count",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist.

    Runs on every startup but only writes rows for keys that are missing,
    so it is safe to call repeatedly.
    """
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            existing = session.get(Setting, key)
            if existing is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)
