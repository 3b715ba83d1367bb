"""
hackx.services.audit_service — Privileged Transition Audit Trail
=================================================================

Resolution and execution of proposals are irreversible.  Each one writes an
``admin_log`` row with before/after snapshots **inside the same transaction**
as the status change, so the trail can never disagree with the data.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from hackx.database.engine import get_session
from hackx.database.models import AdminLog


def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        elif isinstance(val, Decimal):
            val = str(val)
        result[col.name] = val
    return result


def log_admin_action(
    session: Session,
    *,
    actor_id: int | None,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def get_audit_log(engine, *, target_table: str | None = None, limit: int = 50) -> list[dict]:
    """Newest-first audit entries, optionally for one table."""
    with get_session(engine) as session:
        stmt = select(AdminLog).order_by(AdminLog.id.desc()).limit(limit)
        if target_table is not None:
            stmt = stmt.where(AdminLog.target_table == target_table)
        return [
            {
                "id": row.id,
                "actor_id": row.actor_id,
                "action_type": row.action_type,
                "target_table": row.target_table,
                "target_id": row.target_id,
                "before": row.before_snapshot,
                "after": row.after_snapshot,
                "reason": row.reason,
                "timestamp": row.timestamp.isoformat() if row.timestamp else None,
            }
            for row in session.scalars(stmt).all()
        ]
