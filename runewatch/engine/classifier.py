"""
runewatch.engine.classifier — Activity Categories & Drop Extraction
=====================================================================

``classify`` maps free-text RuneMetrics activity entries onto an
:class:`ActivityCategory`.  Priority order (not position in the text)
decides between overlapping keyword sets:

    1. drop keyword and no pet keyword  → Drops
    2. pet keyword                      → Pets
    3. skill level-up phrase            → Skills
    4. achievement phrase               → Achievement
    5. anything else                    → All

All keyword checks are case-insensitive substring containment.

``extract_drop`` pulls the item name out of a drop-shaped sentence using
an ordered list of :class:`DropPattern` entries.  New provider phrasings
are supported by appending to :data:`DROP_PATTERNS`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from runewatch.database.models import ActivityCategory

__all__ = [
    "DROP_KEYWORDS",
    "PET_KEYWORDS",
    "SKILL_PHRASES",
    "ACHIEVEMENT_PHRASES",
    "DropPattern",
    "DROP_PATTERNS",
    "classify",
    "extract_drop",
]

# ---------------------------------------------------------------------------
# Keyword sets
# ---------------------------------------------------------------------------
DROP_KEYWORDS: tuple[str, ...] = (
    "i found",
    "i received a",
    "received a drop",
    "as a drop",
    "i looted",
    "looted a",
)

# Matched against " <text> " so word-edge forms like " pet " also hit at
# the start or end of the sentence without catching "carpet" or "trumpet".
PET_KEYWORDS: tuple[str, ...] = (
    " pet ",
    " pet.",
    " pet!",
    " pet,",
    " pet:",
    " pets ",
    "grew to a",
    "is now a",
    "has grown",
)

SKILL_PHRASES: tuple[str, ...] = (
    "xp in ",
    "levelled up",
    "leveled up",
    "experience points in",
    "reached level",
    "level up",
)

ACHIEVEMENT_PHRASES: tuple[str, ...] = (
    "i killed",
    "defeated",
    "quest complete",
    "completed the",
    "completed a",
    "unlocked",
    "quest points",
    "milestone",
    "treasure trail",
    "clan citadel",
    "achievement",
)


def _contains_any(haystack: str, needles: tuple[str, ...]) -> bool:
    return any(needle in haystack for needle in needles)


def classify(text: str | None) -> ActivityCategory:
    """Return the category for one activity *text*."""
    if not text:
        return ActivityCategory.ALL

    lowered = f" {text.lower()} "
    has_drop = _contains_any(lowered, DROP_KEYWORDS)
    has_pet = _contains_any(lowered, PET_KEYWORDS)

    if has_drop and not has_pet:
        return ActivityCategory.DROPS
    if has_pet:
        return ActivityCategory.PETS
    if _contains_any(lowered, SKILL_PHRASES):
        return ActivityCategory.SKILLS
    if _contains_any(lowered, ACHIEVEMENT_PHRASES):
        return ActivityCategory.ACHIEVEMENT
    return ActivityCategory.ALL


# ---------------------------------------------------------------------------
# Drop extraction
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DropPattern:
    """One provider phrasing: a compiled regex and the group holding the item."""

    name: str
    pattern: re.Pattern[str]
    group: int | str = "item"


def _p(name: str, regex: str) -> DropPattern:
    return DropPattern(name=name, pattern=re.compile(regex, re.IGNORECASE))


# Order matters: first match wins.
DROP_PATTERNS: list[DropPattern] = [
    _p("received_drop_colon", r"\bI received a drop:\s*(?P<item>.+?)[.!]?$"),
    _p("received_as_drop", r"\bI received (?P<item>.+?) as a drop\b"),
    _p("pet_received", r"\bI (?:have )?(?:received|got|found) (?:a |my )?(?:new )?pet:?\s*(?P<item>.+?)[.!]?$"),
    _p("found", r"\bI found (?P<item>.+?)[.!]?$"),
    _p("looted", r"\bI looted (?P<item>.+?)[.!]?$"),
    _p("pet_grew", r"\bgrew to (?P<item>.+?)[.!]?$"),
]

_LEADING_ARTICLE = re.compile(r"^(?:an?|the|some|my)\s+", re.IGNORECASE)


def extract_drop(text: str | None) -> str | None:
    """Return the item named in a drop-shaped *text*, or ``None``.

    >>> extract_drop("I received a Baby yoshi as a drop")
    'Baby yoshi'
    >>> extract_drop("I found a Zamorak hilt")
    'Zamorak hilt'
    """
    if not text:
        return None
    stripped = text.strip()
    for entry in DROP_PATTERNS:
        match = entry.pattern.search(stripped)
        if match is None:
            continue
        item = _LEADING_ARTICLE.sub("", match.group(entry.group).strip()).strip(" .!")
        if item:
            return item
    return None
