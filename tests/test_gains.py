"""
tests/test_gains.py — XP Delta & Combat Level Tests
====================================================
"""

from __future__ import annotations

import logging

from runewatch.engine.gains import (
    compute_combat_level,
    resolve_combat_level,
    skill_gains,
    total_delta,
)
from runewatch.engine.profile import RawSkill


class TestTotalDelta:
    def test_first_sync_is_baseline(self):
        delta = total_delta(0, 5_000_000, first_sync=True)
        assert delta.xp_gained == 0
        assert delta.new_total == 5_000_000
        assert delta.baseline
        assert delta.changed

    def test_gain(self):
        delta = total_delta(100, 150, first_sync=False)
        assert delta.xp_gained == 50
        assert delta.new_total == 150
        assert not delta.baseline
        assert not delta.anomaly

    def test_no_change(self):
        delta = total_delta(150, 150, first_sync=False)
        assert delta.xp_gained == 0
        assert not delta.changed

    def test_decrease_is_anomaly(self, caplog):
        with caplog.at_level(logging.WARNING, logger="runewatch.engine.gains"):
            delta = total_delta(150, 120, first_sync=False, member_name="zezima")
        assert delta.anomaly
        assert delta.xp_gained == 0
        assert delta.new_total == 150
        assert "XP anomaly for zezima" in caplog.text


class TestSkillGains:
    def _skills(self, *xps: int) -> list[RawSkill]:
        return [RawSkill(skill_id=i, name=f"S{i}", level=50, xp=xp) for i, xp in enumerate(xps)]

    def test_deltas_clamped(self):
        gains = skill_gains({0: 100, 1: 500}, self._skills(150, 400), first_sync=False)
        assert [g.delta for g in gains] == [50, 0]
        assert gains[1].xp == 400

    def test_unseen_skill_contributes_nothing(self):
        gains = skill_gains({}, self._skills(1_000), first_sync=False)
        assert gains[0].delta == 0

    def test_baseline_has_no_deltas(self):
        gains = skill_gains({0: 1}, self._skills(1_000), first_sync=True)
        assert gains[0].delta == 0


class TestCombatLevel:
    def test_fresh_account(self):
        assert compute_combat_level({}) == 3

    def test_capped(self):
        maxed = {
            "Attack": 99, "Strength": 99, "Defence": 99, "Constitution": 99,
            "Ranged": 99, "Magic": 99, "Prayer": 99, "Summoning": 99,
        }
        assert compute_combat_level(maxed) == 152

    def test_pure_mage(self):
        # 1.3 * 2 * 80 = 208; + 1 + 10 + 1 + 1 = 221 → 55
        assert compute_combat_level({"Magic": 80}) == 55

    def test_resolve_prefers_feed(self):
        assert resolve_combat_level(126, []) == 126
        assert resolve_combat_level(200, []) == 152

    def test_resolve_falls_back_to_skills(self):
        skills = [RawSkill(skill_id=6, name="Magic", level=80, xp=0)]
        assert resolve_combat_level(None, skills) == 55
