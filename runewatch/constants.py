"""
runewatch.constants — Shared Constants
========================================

Single source of truth for the skill table and provider quirks.
Import from here instead of duplicating in parsers and services.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Skills: index order matches RuneMetrics ``skillvalues[].id`` and the
# HiScores ``index_lite.ws`` rows (offset by one for the Overall row).
# ---------------------------------------------------------------------------
SKILLS: tuple[str, ...] = (
    "Attack", "Defence", "Strength", "Constitution", "Ranged", "Prayer",
    "Magic", "Cooking", "Woodcutting", "Fletching", "Fishing", "Firemaking",
    "Crafting", "Smithing", "Mining", "Herblore", "Agility", "Thieving",
    "Slayer", "Farming", "Runecrafting", "Hunter", "Construction",
    "Summoning", "Dungeoneering", "Divination", "Invention", "Archaeology",
    "Necromancy",
)

SKILL_IDS: dict[str, int] = {name: idx for idx, name in enumerate(SKILLS)}

MAX_COMBAT_LEVEL = 152

DEFAULT_CLAN_RANK = "Recruit"

# Activity dates look like "15-Oct-2026 12:34".
RUNEMETRICS_DATE_FORMAT = "%d-%b-%Y %H:%M"

# RuneMetrics error codes returned with HTTP 200.
PROFILE_NOT_FOUND_CODES = frozenset({"NO_PROFILE", "NOT_A_MEMBER"})
PROFILE_PRIVATE_CODE = "PROFILE_PRIVATE"

# ---------------------------------------------------------------------------
# Clan ranks, highest first
# ---------------------------------------------------------------------------
CLAN_RANKS: tuple[str, ...] = (
    "Owner", "Deputy Owner", "Overseer", "Coordinator", "Organiser", "Admin",
    "General", "Captain", "Lieutenant", "Sergeant", "Corporal", "Recruit",
    "Guest",
)


def normalize_rank_name(raw: str | None) -> str:
    """Map a provider rank string onto :data:`CLAN_RANKS` (default Recruit)."""
    if not raw or not raw.strip():
        return DEFAULT_CLAN_RANK
    cleaned = raw.strip().lower()
    for rank in CLAN_RANKS:
        if rank.lower() == cleaned:
            return rank
    return DEFAULT_CLAN_RANK
