"""
standing.__main__ — Entry point for ``python -m standing``
==========================================================

Wiring:
1. Load .env (DATABASE_URL).
2. Load config.yaml (sweep cadences and tuning).
3. Create the SQLAlchemy engine, ensure tables exist, seed default badges.
4. Build the Standing engine (bus, services, activity hooks).
5. Run the scheduler until Ctrl+C or SIGTERM.

Run with::

    uv run python -m standing
"""

from __future__ import annotations

import asyncio
import logging
import sys

from dotenv import load_dotenv

from standing.config import load_config
from standing.core import Standing
from standing.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("standing")


def main() -> None:
    """Bootstrap and run the gamification scheduler."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    try:
        cfg = load_config()
    except (FileNotFoundError, ValueError) as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    logger.info("Config loaded — Community: %s", cfg.community_name)

    # 3. Database.
    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    init_db(engine)

    # 4. Engine + hooks.
    app = Standing(cfg, engine)

    # 5. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Standing scheduler…")
    try:
        asyncio.run(app.run_forever())
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
