"""
tests/test_clan_service.py — Roster Reconciliation Tests
=========================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import run_async

from runewatch.database.models import ClanEvent
from runewatch.engine.profile import RosterEntry
from runewatch.errors import ParseError
from runewatch.services.clan_service import reconcile_roster, sync_roster

T0 = datetime(2026, 10, 15, 12, 0, tzinfo=UTC)


def _events(store) -> list[tuple[str, str]]:
    with store.session() as session:
        return [
            (e.member_name, e.event_type)
            for e in session.scalars(select(ClanEvent).order_by(ClanEvent.id))
        ]


class TestReconcile:
    def test_new_members_join(self, store):
        summary = reconcile_roster(store, [
            RosterEntry("Zezima", "Owner", 1_000, 5),
            RosterEntry("Bob Smith", "Captain"),
        ], T0)

        assert summary.joined == ["Zezima", "Bob Smith"]
        assert summary.total == 2
        member = store.get_member_by_name("bob smith")
        assert member.display_name == "Bob Smith"
        assert member.clan_rank == "Captain"
        assert store.get_member_by_name("zezima").clan_xp == 1_000
        assert _events(store) == [("zezima", "joined"), ("bob smith", "joined")]

    def test_missing_members_leave_and_rejoin(self, store):
        reconcile_roster(store, [RosterEntry("Zezima", "Owner"), RosterEntry("Bob", "Recruit")], T0)

        left = reconcile_roster(store, [RosterEntry("Zezima", "Owner")], T0 + timedelta(days=1))
        assert left.left == ["Bob"]
        assert store.get_member_by_name("bob").is_active is False
        assert store.active_member_ids() == [store.get_member_by_name("zezima").id]

        back = reconcile_roster(
            store, [RosterEntry("Zezima", "Owner"), RosterEntry("Bob", "Recruit")],
            T0 + timedelta(days=2),
        )
        assert back.rejoined == ["Bob"]
        assert back.joined == []
        assert store.get_member_by_name("bob").is_active is True
        assert [e for e in _events(store) if e[0] == "bob"] == [
            ("bob", "joined"), ("bob", "left"), ("bob", "joined"),
        ]

    def test_rank_changes_counted(self, store):
        reconcile_roster(store, [RosterEntry("Zezima", "Recruit")], T0)
        summary = reconcile_roster(store, [RosterEntry("Zezima", "General", 10, 1)], T0)
        assert summary.updated == 1
        assert store.get_member_by_name("zezima").clan_rank == "General"
        assert reconcile_roster(store, [RosterEntry("Zezima", "General", 10, 1)], T0).updated == 0

    def test_case_insensitive_names(self, store):
        store.upsert_member("zezima")
        summary = reconcile_roster(store, [RosterEntry("ZEZIMA", "Owner")], T0)
        assert summary.joined == []
        assert len(store.active_member_ids()) == 1

    def test_to_dict(self, store):
        summary = reconcile_roster(store, [RosterEntry("Zezima", "Owner")], T0)
        assert summary.to_dict() == {
            "total": 1, "joined": ["Zezima"], "rejoined": [], "left": [], "updated": 0,
        }


class TestSyncRoster:
    def test_fetch_and_reconcile(self, store, provider):
        provider.roster = [RosterEntry("Zezima", "Owner")]
        summary = run_async(sync_roster(provider, store))
        assert summary.joined == ["Zezima"]

    def test_unreadable_roster_writes_nothing(self, store, provider):
        store.upsert_member("Zezima")

        async def broken(clan=None):
            raise ParseError("Empty roster")

        provider.fetch_clan_roster = broken
        with pytest.raises(ParseError):
            run_async(sync_roster(provider, store))
        assert store.get_member_by_name("zezima").is_active is True
