from __future__ import annotations

import math
import unittest

from feralsim.buffs import BuffDefinition, BuffTracker, StackingRule
from feralsim.models import ModelError
from feralsim.resources import EnergyModel, FinisherPool, InsufficientResource, ResourcePool


class ResourcePoolTests(unittest.TestCase):
    def test_generate_is_capped_and_reports_gain(self) -> None:
        pool = ResourcePool("energy", 100.0, current=90.0)
        self.assertEqual(pool.generate(20.0), 10.0)
        self.assertEqual(pool.current, 100.0)
        self.assertEqual(pool.generate(-5.0), 0.0)

    def test_spend_beyond_current_raises(self) -> None:
        pool = ResourcePool("energy", 100.0, current=30.0)
        with self.assertRaises(InsufficientResource) as ctx:
            pool.spend(35.0, at=4.0)
        self.assertEqual(ctx.exception.at, 4.0)
        self.assertEqual(pool.current, 30.0)
        pool.spend(30.0)
        self.assertEqual(pool.current, 0.0)

    def test_continuous_regeneration_and_time_to_reach(self) -> None:
        pool = ResourcePool("energy", 100.0, current=0.0, regen_per_second=10.0)
        self.assertAlmostEqual(pool.time_to_reach(35.0), 3.5)
        self.assertAlmostEqual(pool.regenerate(2.0), 20.0)
        self.assertAlmostEqual(pool.time_to_reach(35.0, haste_factor=1.5), 1.0)
        self.assertTrue(math.isinf(pool.time_to_reach(150.0)))

    def test_set_clamps(self) -> None:
        pool = ResourcePool("energy", 100.0, current=10.0)
        pool.set(140.0)
        self.assertEqual(pool.current, 100.0)
        pool.set(-3.0)
        self.assertEqual(pool.current, 0.0)

    def test_finisher_pool_caps_at_maximum(self) -> None:
        combo = FinisherPool(5)
        self.assertEqual(combo.add(3), 3)
        self.assertEqual(combo.add(4), 2)
        self.assertEqual(combo.current, 5)
        self.assertEqual(combo.reset(), 5)
        self.assertEqual(combo.current, 0)

    def test_energy_model_validation(self) -> None:
        model = EnergyModel.from_dict({"mode": "continuous", "tick_amount": 20, "tick_interval": 2})
        self.assertEqual(model.rate, 10.0)
        self.assertEqual(model.build_pool().regen_per_second, 10.0)
        self.assertEqual(EnergyModel().build_pool().regen_per_second, 0.0)
        with self.assertRaises(ModelError):
            EnergyModel.from_dict({"mode": "burst"})
        with self.assertRaises(ModelError):
            EnergyModel.from_dict({"tick_interval": 0})


class BuffTrackerTests(unittest.TestCase):
    def _buff(self, buff_id: str, **overrides) -> BuffDefinition:
        payload = {"id": buff_id, "duration": 10.0}
        payload.update(overrides)
        return BuffDefinition.from_dict(payload)

    def test_refresh_never_creates_a_second_instance(self) -> None:
        tracker = BuffTracker()
        buff = self._buff("faerie_fire", max_stacks=3)
        first = tracker.apply(buff, 0.0)
        second = tracker.apply(buff, 4.0)
        third = tracker.apply(buff, 6.0)
        fourth = tracker.apply(buff, 8.0)
        self.assertIs(first, second)
        self.assertIs(third, fourth)
        self.assertEqual(len(tracker.instances("faerie_fire")), 1)
        self.assertEqual(tracker.stacks("faerie_fire"), 3)
        self.assertEqual(tracker.remaining("faerie_fire", 8.0), 10.0)

    def test_independent_stacks_drop_the_oldest(self) -> None:
        tracker = BuffTracker()
        buff = self._buff("sunder", stacking="stack_independent", max_stacks=2)
        tracker.apply(buff, 0.0)
        tracker.apply(buff, 1.0)
        tracker.apply(buff, 2.0)
        applied = sorted(item.applied_at for item in tracker.instances("sunder"))
        self.assertEqual(applied, [1.0, 2.0])
        self.assertEqual(tracker.stacks("sunder"), 2)

    def test_none_rule_ignores_reapplication(self) -> None:
        tracker = BuffTracker()
        buff = self._buff("mcp_haste", stacking="none")
        self.assertIsNotNone(tracker.apply(buff, 0.0))
        self.assertIsNone(tracker.apply(buff, 5.0))
        self.assertEqual(tracker.instances("mcp_haste")[0].expires_at, 10.0)

    def test_tick_expires_in_declaration_order(self) -> None:
        tracker = BuffTracker()
        late = self._buff("late", duration=5.0)
        early = self._buff("early", duration=5.0)
        tracker.apply(late, 0.0)
        tracker.apply(early, 0.0)
        self.assertEqual(tracker.tick(4.9), [])
        expired = tracker.tick(5.0)
        self.assertEqual([item.buff_id for item in expired], ["late", "early"])
        self.assertFalse(tracker.is_active("late"))
        self.assertIsNone(tracker.next_expiry())

    def test_independent_sources_multiply_same_source_adds(self) -> None:
        tracker = BuffTracker()
        tracker.apply(self._buff("power_a", damage_bonus=0.1, category="a"), 0.0)
        tracker.apply(self._buff("power_b", damage_bonus=0.1, category="b"), 0.0)
        self.assertAlmostEqual(tracker.damage_multiplier(), 1.21)

        same = BuffTracker()
        stacked = self._buff("enrage", damage_bonus=0.1, stacking="stack_independent", max_stacks=2)
        same.apply(stacked, 0.0)
        same.apply(stacked, 1.0)
        self.assertAlmostEqual(same.damage_multiplier(), 1.2)

    def test_school_filter(self) -> None:
        tracker = BuffTracker()
        tracker.apply(self._buff("open_bleeds", damage_bonus=0.3, schools=["bleed"]), 0.0)
        self.assertAlmostEqual(tracker.damage_multiplier("bleed"), 1.3)
        self.assertAlmostEqual(tracker.damage_multiplier("physical"), 1.0)

    def test_clearcasting_is_consumed(self) -> None:
        tracker = BuffTracker()
        tracker.apply(self._buff("clearcasting", cost_multiplier=0.0, consumed_on_use=True), 0.0)
        self.assertEqual(tracker.cost_multiplier(), 0.0)
        self.assertEqual(tracker.cost_consumers(), ("clearcasting",))
        self.assertTrue(tracker.consume("clearcasting"))
        self.assertFalse(tracker.consume("clearcasting"))
        self.assertEqual(tracker.cost_multiplier(), 1.0)

    def test_stat_effects_scale_with_stacks(self) -> None:
        tracker = BuffTracker()
        buff = self._buff("zeal", stats={"attack_power": 10}, max_stacks=5)
        tracker.apply(buff, 0.0)
        tracker.apply(buff, 1.0)
        ((source, effects),) = tracker.stat_effects()
        self.assertEqual(source, "zeal")
        self.assertEqual(effects[0].value, 20.0)

    def test_invalid_definitions(self) -> None:
        with self.assertRaises(ModelError):
            BuffDefinition.from_dict({"id": "x", "duration": 0})
        with self.assertRaises(ModelError):
            BuffDefinition.from_dict({"id": "x", "duration": 5, "stacking": "pile"})
        with self.assertRaises(ModelError):
            BuffDefinition.from_dict({"id": "x", "tick_interval": 2})
        self.assertTrue(math.isinf(BuffDefinition.from_dict({"id": "aura"}).duration))
        self.assertIs(BuffDefinition.from_dict({"id": "aura"}).stacking, StackingRule.REFRESH)


if __name__ == "__main__":
    unittest.main()
