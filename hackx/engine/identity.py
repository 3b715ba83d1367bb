"""
hackx.engine.identity — Trusted Caller Identity
================================================

The identity/authorization collaborator hands the core a :class:`Principal`:
who the caller is, their current reputation score, and which capabilities
they hold.  The core trusts it as given and never parses credentials itself
(token handling lives in :mod:`hackx.api.deps`).
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Capability names checked by the execution gate.
CAP_EXECUTE = "dao:execute"
CAP_RESOLVE = "dao:resolve"
CAP_TREASURY_SPEND = "treasury:spend"
CAP_PROTOCOL_UPGRADE = "protocol:upgrade"

ADMIN_CAPABILITIES: frozenset[str] = frozenset({
    CAP_EXECUTE,
    CAP_RESOLVE,
    CAP_TREASURY_SPEND,
    CAP_PROTOCOL_UPGRADE,
})


@dataclass(frozen=True, slots=True)
class Principal:
    user_id: int
    username: str = "Unknown"
    reputation_score: int = 0
    capabilities: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return ADMIN_CAPABILITIES <= self.capabilities

    def has(self, *capabilities: str) -> bool:
        return set(capabilities) <= self.capabilities
