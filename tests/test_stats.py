from __future__ import annotations

import unittest

from feralsim.conditions import Condition
from feralsim.models import BaseStats, StackMode, StatEffect, ValueType, effects_from_shorthand
from feralsim.stats import AGILITY_PER_CRIT, Contribution, StatResolver


class _View:
    def __init__(self, stealthed: bool = False, flags: tuple[str, ...] = ()) -> None:
        self._stealthed = stealthed
        self._flags = set(flags)

    def energy(self) -> float:
        return 100.0

    def mana(self) -> float:
        return 0.0

    def combo_points(self) -> int:
        return 0

    def buff_active(self, buff_id: str) -> bool:
        return False

    def buff_remaining(self, buff_id: str) -> float:
        return 0.0

    def buff_stacks(self, buff_id: str) -> int:
        return 0

    def cooldown_ready(self, ability_id: str) -> bool:
        return True

    def execute_phase(self) -> bool:
        return False

    def stealthed(self) -> bool:
        return self._stealthed

    def time_remaining(self) -> float:
        return 60.0

    def flag(self, name: str) -> bool:
        return name in self._flags


class StatResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.base = BaseStats(strength=70, agility=55, attack_power=100, crit=0.9, weapon_min=72, weapon_max=97)

    def test_attack_power_and_crit_derive_from_attributes(self) -> None:
        snapshot = StatResolver(self.base).resolve()
        self.assertAlmostEqual(snapshot.attack_power, 100 + 70 * 2 + 55)
        self.assertAlmostEqual(snapshot.crit, 0.9 + 55 / AGILITY_PER_CRIT)
        self.assertAlmostEqual(snapshot.weapon_average, (72 + 97) / 2)

    def test_percent_strength_applies_before_attack_power(self) -> None:
        gear = Contribution("gear", effects_from_shorthand({"strength": 30}))
        talent = Contribution(
            "Heart of the Wild",
            (StatEffect("strength", ValueType.PERCENT, 0.2),),
            category="talents",
        )
        snapshot = StatResolver(self.base, [gear, talent]).resolve()
        strength = (70 + 30) * 1.2
        self.assertAlmostEqual(snapshot.strength, strength)
        self.assertAlmostEqual(snapshot.attack_power, 100 + strength * 2 + 55)

    def test_multiplicative_percent_stacks_compound(self) -> None:
        kings = Contribution("kings", (StatEffect("agility", ValueType.PERCENT, 0.1, StackMode.MULT),))
        other = Contribution("other", (StatEffect("agility", ValueType.PERCENT, 0.1, StackMode.MULT),))
        snapshot = StatResolver(self.base, [kings, other]).resolve()
        self.assertAlmostEqual(snapshot.agility, 55 * 1.1 * 1.1)

    def test_conditional_contribution_requires_matching_view(self) -> None:
        opener = Contribution(
            "stealth opener",
            effects_from_shorthand({"crit": 10}),
            condition=Condition(kind="stealthed"),
        )
        resolver = StatResolver(self.base, [opener])
        self.assertTrue(resolver.conditional)

        without_view = resolver.resolve()
        stealthed = resolver.resolve(_View(stealthed=True))
        visible = resolver.resolve(_View(stealthed=False))
        self.assertAlmostEqual(stealthed.crit - without_view.crit, 10.0)
        self.assertAlmostEqual(visible.crit, without_view.crit)

    def test_active_buff_effects_are_folded_in(self) -> None:
        resolver = StatResolver(self.base)
        haste = (("mcp_haste", (StatEffect("attack_speed", ValueType.MULTIPLIER, 1.5),)),)
        snapshot = resolver.resolve(active_effects=haste)
        self.assertAlmostEqual(snapshot.attack_speed, 1.5)
        self.assertAlmostEqual(snapshot.swing_interval, 1.0 / 1.5)

    def test_breakdown_reports_sources(self) -> None:
        gear = Contribution("Hand of Justice", effects_from_shorthand({"attack_power": 20}))
        breakdown = StatResolver(self.base, [gear]).breakdown()
        attack_power = breakdown["attack_power"]
        self.assertEqual([item.source for item in attack_power.flat], ["Hand of Justice"])
        self.assertIn("+flat +20.00", attack_power.compact_summary())

    def test_with_contributions_returns_new_resolver(self) -> None:
        resolver = StatResolver(self.base)
        extended = resolver.with_contributions([Contribution("gear", effects_from_shorthand({"hit": 3}))])
        self.assertEqual(resolver.resolve().hit, 0.0)
        self.assertEqual(extended.resolve().hit, 3.0)


if __name__ == "__main__":
    unittest.main()
