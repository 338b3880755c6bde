"""
RuneWatch — Clan XP Tracking, Activity Feed & Bingo Automation
===============================================================
Keeps a RuneScape clan roster in step with the HiScores / RuneMetrics
providers, records XP snapshots and skill gains, classifies the activity
feed, and marks bingo squares as members earn them.

Package layout::

    runewatch/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Domain exception taxonomy
    ├── constants.py       # Skill table, combat cap, provider constants
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── profile.py     # Defensive provider payload parsing
    │   ├── classifier.py  # Activity categories + drop extraction
    │   └── gains.py       # XP delta / anomaly / combat level math
    ├── services/
    │   ├── throttle.py        # Adaptive provider-wide throttle
    │   ├── runemetrics.py     # HTTP client for the stats provider
    │   ├── snapshot_store.py  # Transactional upserts
    │   ├── sync_service.py    # Per-member sync pipeline
    │   ├── sync_jobs.py       # Pollable batch sync jobs
    │   ├── bingo_service.py   # Activity → bingo completion matching
    │   ├── leaderboard_service.py  # Gain leaderboards + resets
    │   ├── clan_service.py    # Roster reconciliation
    │   └── scheduler.py       # Background periodic loops
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency wiring
        └── routes/        # Sync, leaderboard, bingo endpoints
"""

__version__ = "0.1.0"
