"""
hackx.worker.__main__ — Entry point for ``python -m hackx.worker``
===================================================================

Resolution sweeper.  Proposals whose voting deadline has passed are moved
out of ``ACTIVE`` here, so resolution does not depend on an admin calling
the resolve endpoint.

Wiring:
1. Load .env (DATABASE_URL).
2. Load config.yaml (retry tuning, sweep interval).
3. Create the SQLAlchemy engine and ensure tables and default settings exist.
4. Sweep every ``resolution_interval_seconds`` until interrupted.

Run with::

    uv run python -m hackx.worker
"""

from __future__ import annotations

import logging
import time

from dotenv import load_dotenv

from hackx.config import load_config
from hackx.database.engine import configure_retries, create_db_engine, init_db
from hackx.services.proposal_service import resolve_due_proposals

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("hackx")


def run_once(engine) -> int:
    """One sweep; returns how many proposals changed status."""
    outcomes = resolve_due_proposals(engine)
    return sum(o.changed for o in outcomes)


def main() -> None:
    """Bootstrap and run the resolution sweeper."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config()
    configure_retries(attempts=cfg.db_retry_attempts, base_delay=cfg.db_retry_base_delay)
    logger.info("Config loaded — Platform: %s", cfg.platform_name)

    # 3. Database.
    engine = create_db_engine(statement_timeout_ms=cfg.db_statement_timeout_ms)
    init_db(engine)

    # 4. Sweep loop (blocks until Ctrl+C or SIGTERM).
    logger.info(
        "Starting resolution sweeper (every %ds)…", cfg.resolution_interval_seconds
    )
    try:
        while True:
            try:
                run_once(engine)
            except Exception:
                logger.exception("Resolution sweep failed — retrying next interval")
            time.sleep(cfg.resolution_interval_seconds)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
