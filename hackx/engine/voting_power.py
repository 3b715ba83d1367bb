"""
hackx.engine.voting_power — Stake + Reputation → Vote Weight
=============================================================

Pure function, no I/O.  Recomputed at every vote cast (never cached) since a
user's stake can change between proposal creation and voting; the result is
snapshotted onto the vote row.
"""

from __future__ import annotations

import math
from decimal import Decimal

TOKENS_PER_VOTE = 1000
REPUTATION_PER_VOTE = 10
MIN_VOTING_POWER = 1


def voting_power(staked_amount: Decimal | int | float, reputation_score: int | float) -> int:
    """Return ``floor(stake / 1000) + floor(reputation / 10)``, at least 1.

    >>> voting_power(1500, 0)
    1
    >>> voting_power(0, 25)
    2
    """
    stake = Decimal(str(staked_amount)) if not isinstance(staked_amount, Decimal) else staked_amount
    from_stake = math.floor(stake / TOKENS_PER_VOTE)
    from_reputation = math.floor(reputation_score / REPUTATION_PER_VOTE)
    return max(MIN_VOTING_POWER, from_stake + from_reputation)
