"""
runewatch.__main__ — Entry point for ``python -m runewatch``
=============================================================

Wiring:
1. Load .env (DATABASE_URL).
2. Load config.yaml (clan name, throttle and job tuning).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Serve the FastAPI app with uvicorn (blocking).

Run with::

    python -m runewatch
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from dotenv import load_dotenv

from runewatch.config import load_config
from runewatch.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("runewatch")


def main() -> None:
    """Bootstrap and serve the RuneWatch API."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    try:
        cfg = load_config()
    except (FileNotFoundError, KeyError, ValueError) as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)
    logger.info("Config loaded — Clan: %s", cfg.clan_name)

    # 3. Database.
    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    init_db(engine)

    # 4. API (blocks until Ctrl+C or SIGTERM).
    uvicorn.run("runewatch.api.main:app", host="0.0.0.0", port=cfg.api_port, log_level="info")


if __name__ == "__main__":
    main()
