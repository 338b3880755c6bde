"""
runewatch.services.clan_service — Roster reconciliation
========================================================

Compares the official clan roster CSV with the ``members`` table:

* a new name creates a member and a ``joined`` event;
* an inactive member back on the roster is reactivated (``joined``);
* an active member missing from the roster is soft-deleted (``left``);
* rank, clan XP and kills are refreshed for everyone on the roster.

Members are never hard-deleted here; see
:meth:`SnapshotStore.purge_inactive_members`.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy import select

from runewatch.database.engine import run_db
from runewatch.database.models import ClanEventType, Member, utcnow
from runewatch.engine.profile import RosterEntry
from runewatch.services.runemetrics import RuneMetricsClient
from runewatch.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RosterSummary:
    total: int = 0
    joined: list[str] = field(default_factory=list)
    rejoined: list[str] = field(default_factory=list)
    left: list[str] = field(default_factory=list)
    updated: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def reconcile_roster(
    store: SnapshotStore,
    roster: list[RosterEntry],
    now: datetime | None = None,
) -> RosterSummary:
    now = now or utcnow()
    summary = RosterSummary(total=len(roster))
    on_roster: set[str] = set()

    with store.session() as session:
        members = {m.name: m for m in session.scalars(select(Member))}

        for entry in roster:
            key = entry.name.lower()
            if key in on_roster:
                continue
            on_roster.add(key)

            member = members.get(key)
            if member is None:
                member = Member(
                    name=key,
                    display_name=entry.name,
                    clan_rank=entry.rank,
                    clan_xp=entry.clan_xp,
                    kills=entry.kills,
                    is_active=True,
                    joined_at=now,
                )
                session.add(member)
                members[key] = member
                store.add_clan_event(session, key, ClanEventType.JOINED, now)
                summary.joined.append(entry.name)
                continue

            if not member.is_active:
                member.is_active = True
                store.add_clan_event(session, key, ClanEventType.JOINED, now)
                summary.rejoined.append(member.display_name or entry.name)

            if (member.clan_rank, member.clan_xp, member.kills) != (
                entry.rank, entry.clan_xp, entry.kills
            ):
                member.clan_rank = entry.rank
                member.clan_xp = entry.clan_xp
                member.kills = entry.kills
                summary.updated += 1
            if not member.display_name:
                member.display_name = entry.name

        for key, member in members.items():
            if member.is_active and key not in on_roster:
                member.is_active = False
                store.add_clan_event(session, key, ClanEventType.LEFT, now)
                summary.left.append(member.display_name or key)

    logger.info(
        "Roster reconciled: %d on roster, %d joined, %d rejoined, %d left",
        summary.total, len(summary.joined), len(summary.rejoined), len(summary.left),
    )
    return summary


async def sync_roster(client: RuneMetricsClient, store: SnapshotStore) -> RosterSummary:
    """Fetch the clan roster and reconcile it.

    An empty or unreadable roster raises before anything is written, so a
    provider hiccup can never deactivate the whole clan.
    """
    roster = await client.fetch_clan_roster()
    return await run_db(reconcile_roster, store, roster)
