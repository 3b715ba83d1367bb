"""
hackx.services.settings_service — Typed Settings Reads
=======================================================

Governance services read their tuning knobs through these helpers, inside
their own session, so a value changed by an operator takes effect on the
next operation.  Missing keys fall back to the seeded defaults.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from hackx.database.engine import get_session
from hackx.database.models import Setting
from hackx.database.seed import DEFAULT_SETTINGS

logger = logging.getLogger(__name__)


def _default(key: str, default: Any) -> Any:
    if default is not None:
        return default
    entry = DEFAULT_SETTINGS.get(key)
    return entry[0] if entry else None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_setting_value(session: Session, key: str, default: Any = None) -> Any:
    """Read a single setting's parsed value from an existing session.

    Parameters
    ----------
    session : Session
        An open SQLAlchemy session.
    key : str
        The setting key to look up.
    default
        Returned when the key does not exist or the stored JSON is invalid.
        When omitted, the seeded default for *key* is used.
    """
    row = session.get(Setting, key)
    if row is None:
        return _default(key, default)
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Setting %s holds invalid JSON — using default", key)
        return _default(key, default)


def get_int(session: Session, key: str, default: int | None = None) -> int:
    value = get_setting_value(session, key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(_default(key, default) or 0)


def get_decimal(session: Session, key: str, default: Decimal | None = None) -> Decimal:
    """Settings hold JSON numbers; convert through ``str`` to avoid float noise."""
    value = get_setting_value(session, key, default)
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(str(_default(key, default) or 0))


def get_all_settings(engine) -> list[dict]:
    """Every setting row as a plain dict, ordered by category then key."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(Setting).order_by(Setting.category, Setting.key)
        ).all()
        return [
            {
                "key": r.key,
                "value": json.loads(r.value_json),
                "category": r.category,
                "description": r.description,
            }
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def set_setting(engine, key: str, value: Any, *, category: str | None = None) -> None:
    """Upsert a setting value."""
    with get_session(engine) as session:
        row = session.get(Setting, key)
        if row is None:
            entry = DEFAULT_SETTINGS.get(key)
            session.add(Setting(
                key=key,
                value_json=json.dumps(value),
                category=category or (entry[1] if entry else "general"),
                description=entry[2] if entry else None,
            ))
        else:
            row.value_json = json.dumps(value)
            if category is not None:
                row.category = category
    logger.info("Setting %s updated → %r", key, value)
