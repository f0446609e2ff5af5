from __future__ import annotations

import unittest

from feralsim.abilities import AbilityCatalog
from feralsim.catalog import CatalogRepository
from feralsim.combat import Outcome
from feralsim.conditions import Condition
from feralsim.config import build_setup, default_profile
from feralsim.engine import EncounterSettings, EngineState, SimulationEngine
from feralsim.models import BaseStats, TargetDefinition, effects_from_shorthand
from feralsim.policy import DecisionPolicy, Rule
from feralsim.resources import EnergyModel
from feralsim.rng import ScriptedRNG, SeededRNG
from feralsim.stats import Contribution, StatResolver

STRIKE_CATALOG = {
    "abilities": [
        {
            "id": "strike",
            "name": "Strike",
            "effects": [{"kind": "damage", "base": 100, "ap_coefficient": 1.0}],
        },
        {
            "id": "jab",
            "name": "Jab",
            "energy_cost": 40,
            "combo_points": 1,
            "effects": [{"kind": "damage", "base": 10}],
        },
        {
            "id": "finish",
            "name": "Finish",
            "energy_cost": 10,
            "finisher": True,
            "effects": [{"kind": "damage", "per_combo_point": 50}],
        },
    ]
}

TRAINING_TARGET = TargetDefinition(name="Dummy", level=60, armor=0.0)

FEATURE_CATALOG = {
    "abilities": [
        {"id": "strike", "name": "Strike", "effects": [{"kind": "damage", "base": 100, "ap_coefficient": 1.0}]},
        {"id": "execute_strike", "name": "Execute Strike", "effects": [{"kind": "damage", "base": 300}]},
        {"id": "wrath", "name": "Wrath", "cast_time": 1.5, "effects": [{"kind": "damage", "base": 100}]},
        {"id": "jab", "name": "Jab", "energy_cost": 40, "combo_points": 1, "effects": [{"kind": "damage", "base": 10}]},
        {
            "id": "maul",
            "name": "Maul",
            "combo_points": 1,
            "bonus_combo_on_crit": 1,
            "effects": [{"kind": "damage", "base": 100}],
        },
        {
            "id": "bite",
            "name": "Bite",
            "energy_cost": 35,
            "finisher": True,
            "consumes_extra_energy": True,
            "effects": [{"kind": "damage", "per_combo_point": 100, "per_extra_energy": 2.5}],
        },
        {
            "id": "double_dot",
            "name": "Double Dot",
            "effects": [
                {"kind": "apply_buff", "buff": "long_dot", "base": 400},
                {"kind": "apply_buff", "buff": "short_dot", "base": 300},
            ],
        },
    ],
    "buffs": [
        {"id": "clearcasting", "duration": 10.0, "cost_multiplier": 0.0, "consumed_on_use": True},
        {"id": "long_dot", "duration": 12.0, "tick_interval": 3.0},
        {"id": "short_dot", "duration": 6.0, "tick_interval": 2.0},
    ],
}


def _engine(
    policy: DecisionPolicy,
    *,
    catalog: AbilityCatalog | None = None,
    rng=None,
    resolver: StatResolver | None = None,
    opening_buffs=(),
    **settings,
) -> SimulationEngine:
    options = {"duration": 10.0, "auto_attack": False}
    options.update(settings)
    return SimulationEngine(
        catalog or AbilityCatalog.from_dict(STRIKE_CATALOG),
        policy,
        resolver or StatResolver(BaseStats()),
        TRAINING_TARGET,
        EncounterSettings(**options),
        rng or ScriptedRNG.constant(0.99),
        opening_buffs=opening_buffs,
    )


class EngineBasicsTests(unittest.TestCase):
    def test_fixed_hit_deals_base_damage(self) -> None:
        result = _engine(DecisionPolicy([Rule("strike")])).run()
        self.assertEqual(len(result.records), 10)
        for record in result.records:
            self.assertIs(record.outcome, Outcome.HIT)
            self.assertAlmostEqual(record.amount, 100.0)
        self.assertAlmostEqual(result.total_damage, 1000.0)
        self.assertAlmostEqual(result.dps, 100.0)
        self.assertEqual(result.abilities["strike"].casts, 10)

    def test_empty_policy_still_swings_by_default(self) -> None:
        result = _engine(DecisionPolicy(), duration=3.0, auto_attack=True).run()
        self.assertEqual([record.ability_id for record in result.records], ["auto_attack"] * 3)
        self.assertEqual(result.energy_spent, 0.0)

    def test_empty_policy_spends_nothing(self) -> None:
        result = _engine(DecisionPolicy()).run()
        self.assertEqual(result.records, tuple())
        self.assertEqual(result.energy_spent, 0.0)
        self.assertEqual(result.mana_spent, 0.0)
        self.assertEqual(result.total_damage, 0.0)

    def test_time_ends_at_duration_and_no_record_at_end(self) -> None:
        result = _engine(DecisionPolicy([Rule("strike")]), duration=7.5).run()
        self.assertEqual(result.final_time, 7.5)
        self.assertTrue(all(record.at < 7.5 for record in result.records))

    def test_step_drives_to_completion(self) -> None:
        engine = _engine(DecisionPolicy([Rule("strike")]), duration=3.0)
        steps = 0
        while engine.step():
            steps += 1
        self.assertEqual(engine.state, EngineState.COMPLETE)
        self.assertFalse(engine.step())
        self.assertGreater(steps, 0)
        self.assertEqual(engine.result().final_time, 3.0)

    def test_avoided_attacks_deal_nothing(self) -> None:
        result = _engine(DecisionPolicy([Rule("strike")]), rng=ScriptedRNG.constant(0.01), duration=3.0).run()
        self.assertTrue(all(record.outcome is Outcome.MISS for record in result.records))
        self.assertEqual(result.total_damage, 0.0)
        self.assertEqual(result.abilities["strike"].misses, 3)


class ResourceFlowTests(unittest.TestCase):
    def test_energy_stays_in_bounds_and_waits_for_ticks(self) -> None:
        result = _engine(DecisionPolicy([Rule("jab")]), duration=20.0).run()
        self.assertTrue(result.records)
        for record in result.records:
            self.assertGreaterEqual(record.energy, 0.0)
            self.assertLessEqual(record.energy, 100.0)
        # 100 starting energy plus nine 20-energy ticks pays for seven jabs.
        self.assertEqual(result.abilities["jab"].casts, 7)

    def test_finisher_spends_all_combo_points(self) -> None:
        policy = DecisionPolicy(
            [
                Rule("finish", Condition(kind="combo_points_at_least", value=2)),
                Rule("jab"),
            ]
        )
        result = _engine(policy, duration=6.0).run()
        finishes = [record for record in result.records if record.ability_id == "finish"]
        self.assertTrue(finishes)
        self.assertAlmostEqual(finishes[0].amount, 100.0)
        self.assertEqual(finishes[0].combo_points, 0)
        self.assertTrue(all(record.combo_points <= 5 for record in result.records))

    def test_continuous_regeneration(self) -> None:
        energy = EnergyModel(mode="continuous")
        result = _engine(DecisionPolicy([Rule("jab")]), duration=20.0, energy=energy).run()
        self.assertEqual(result.abilities["jab"].casts, 7)
        self.assertEqual(result.energy_wasted, 0.0)


class BundledCatalogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.catalog = CatalogRepository().load_abilities()

    def test_rake_ticks_until_expiry(self) -> None:
        policy = DecisionPolicy([Rule("rake", Condition(kind="buff_inactive", ref="rake"))])
        result = _engine(policy, catalog=self.catalog, duration=9.5).run()
        tally = result.abilities["rake"]
        self.assertEqual(tally.ticks, 3)
        self.assertEqual(tally.hits, 2)
        ticks = [record for record in result.records if record.outcome is Outcome.TICK]
        self.assertEqual([record.at for record in ticks], [3.0, 6.0, 9.0])
        for record in ticks:
            self.assertAlmostEqual(record.amount, 57.0 / 3)

    def test_bleeds_blocked_on_immune_target(self) -> None:
        engine = SimulationEngine(
            self.catalog,
            DecisionPolicy([Rule("rake")]),
            StatResolver(BaseStats()),
            TargetDefinition(level=60, armor=0.0, can_bleed=False),
            EncounterSettings(duration=5.0, auto_attack=False),
            ScriptedRNG.constant(0.99),
        )
        self.assertEqual(engine.run().records, tuple())

    def test_powershift_costs_mana_and_sets_energy(self) -> None:
        policy = DecisionPolicy(
            [
                Rule("powershift", Condition(kind="energy_at_most", value=30)),
                Rule("shred"),
            ]
        )
        result = _engine(policy, catalog=self.catalog, duration=4.0, mana=1000.0).run()
        shifts = [record for record in result.records if record.ability_id == "powershift"]
        self.assertTrue(shifts)
        self.assertEqual(shifts[0].energy, 40.0)
        self.assertAlmostEqual(result.mana_spent, 400.0 * len(shifts))

    def test_auto_attacks_follow_swing_timer(self) -> None:
        result = _engine(DecisionPolicy(), catalog=self.catalog, duration=5.0, auto_attack=True).run()
        swings = [record.at for record in result.records if record.ability_id == "auto_attack"]
        self.assertEqual(swings, [0.0, 1.0, 2.0, 3.0, 4.0])


class ThresholdWakeupTests(unittest.TestCase):
    def test_energy_threshold_fires_when_regeneration_reaches_it(self) -> None:
        energy = EnergyModel(mode="continuous", tick_amount=10.0, tick_interval=1.0)
        policy = DecisionPolicy([Rule("jab", Condition(kind="energy_at_least", value=80))])
        result = _engine(policy, duration=30.0, energy=energy).run()
        jabs = [record.at for record in result.records if record.ability_id == "jab"]
        # 100 -> 60 at the opener, back to 80 two seconds later, then every 40 energy.
        self.assertEqual(jabs, [0.0, 2.0, 6.0, 10.0, 14.0, 18.0, 22.0, 26.0])

    def test_threshold_in_tick_mode_waits_for_ticks(self) -> None:
        policy = DecisionPolicy([Rule("jab", Condition(kind="energy_at_least", value=80))])
        result = _engine(policy, duration=10.0).run()
        jabs = [record.at for record in result.records if record.ability_id == "jab"]
        self.assertEqual(jabs, [0.0, 2.0, 6.0])


class EngineFeatureTests(unittest.TestCase):
    def setUp(self) -> None:
        self.catalog = AbilityCatalog.from_dict(FEATURE_CATALOG)

    def test_execute_phase_flips_at_threshold(self) -> None:
        policy = DecisionPolicy([Rule("execute_strike", Condition(kind="execute_phase")), Rule("strike")])
        engine = _engine(policy, catalog=self.catalog, duration=10.0, execute_threshold=0.2)
        result = engine.run()
        used = [(record.at, record.ability_id) for record in result.records]
        self.assertEqual(used[:8], [(float(second), "strike") for second in range(8)])
        self.assertEqual(used[8:], [(8.0, "execute_strike"), (9.0, "execute_strike")])
        self.assertTrue(engine.character.execute)

    def test_cast_time_resolves_on_completion(self) -> None:
        result = _engine(DecisionPolicy([Rule("wrath")]), catalog=self.catalog, duration=5.0).run()
        self.assertEqual([record.at for record in result.records], [1.5, 3.0, 4.5])
        # The last cast would land after the encounter ends.
        self.assertEqual(result.abilities["wrath"].casts, 4)
        self.assertEqual(result.abilities["wrath"].hits, 3)

    def test_stealth_bonus_applies_to_opener_only(self) -> None:
        resolver = StatResolver(
            BaseStats(),
            [Contribution("ambush gear", effects_from_shorthand({"attack_power": 100}), condition=Condition(kind="stealthed"))],
        )
        engine = _engine(
            DecisionPolicy([Rule("strike")]),
            catalog=self.catalog,
            resolver=resolver,
            duration=3.0,
            start_stealthed=True,
        )
        result = engine.run()
        self.assertEqual([record.amount for record in result.records], [200.0, 100.0, 100.0])
        self.assertFalse(engine.character.is_stealthed)
        self.assertEqual(engine.character.stats.attack_power, 0.0)

    def test_clearcasting_makes_next_ability_free(self) -> None:
        engine = _engine(
            DecisionPolicy([Rule("jab")]),
            catalog=self.catalog,
            duration=2.0,
            opening_buffs=("clearcasting",),
        )
        result = engine.run()
        self.assertEqual([record.energy for record in result.records], [100.0, 60.0])
        self.assertEqual(result.energy_spent, 40.0)
        self.assertFalse(engine.character.buffs.is_active("clearcasting"))

    def test_primal_fury_awards_extra_combo_point_on_crit(self) -> None:
        # 50% crit after 5% miss and 5% dodge: a 0.2 draw crits, 0.9 hits.
        engine = _engine(
            DecisionPolicy([Rule("maul")]),
            catalog=self.catalog,
            resolver=StatResolver(BaseStats(crit=50.0)),
            rng=ScriptedRNG([0.2, 0.9]),
            duration=2.0,
        )
        result = engine.run()
        self.assertEqual([record.outcome for record in result.records], [Outcome.CRIT, Outcome.HIT])
        self.assertEqual([record.combo_points for record in result.records], [2, 3])
        self.assertEqual([record.amount for record in result.records], [200.0, 100.0])

    def test_bite_converts_extra_energy_into_damage(self) -> None:
        policy = DecisionPolicy([Rule("bite", Condition(kind="combo_points_at_least", value=1)), Rule("jab")])
        result = _engine(policy, catalog=self.catalog, duration=2.0).run()
        bite = [record for record in result.records if record.ability_id == "bite"]
        self.assertEqual(len(bite), 1)
        # 60 energy at the bite: 35 for the cost, the remaining 25 at 2.5 damage each.
        self.assertAlmostEqual(bite[0].amount, 100.0 + 25.0 * 2.5)
        self.assertEqual(bite[0].energy, 0.0)
        self.assertEqual(bite[0].combo_points, 0)
        self.assertAlmostEqual(result.energy_spent, 100.0)

    def test_overlapping_periodic_effects_keep_every_tick(self) -> None:
        policy = DecisionPolicy([Rule("double_dot", Condition(kind="buff_inactive", ref="long_dot"))])
        result = _engine(policy, catalog=self.catalog, duration=12.5).run()
        ticks = {
            buff_id: [(record.at, record.amount) for record in result.records if record.ability_id == buff_id]
            for buff_id in ("long_dot", "short_dot")
        }
        # Both expire-time ticks at t=6 land even though they share the timestamp.
        self.assertEqual(ticks["short_dot"], [(2.0, 100.0), (4.0, 100.0), (6.0, 100.0)])
        self.assertEqual(ticks["long_dot"], [(3.0, 100.0), (6.0, 100.0), (9.0, 100.0), (12.0, 100.0)])
        self.assertEqual(result.abilities["double_dot"].casts, 2)


class DeterminismTests(unittest.TestCase):
    def test_same_seed_replays_identically(self) -> None:
        setup = build_setup(default_profile())
        first = setup(0, 42, record_timeline=True).run()
        second = setup(0, 42, record_timeline=True).run()
        self.assertTrue(first.records)
        self.assertEqual(first.records, second.records)
        self.assertEqual(first.total_damage, second.total_damage)

    def test_different_seeds_diverge(self) -> None:
        setup = build_setup(default_profile())
        self.assertNotEqual(setup(0, 1, True).run().records, setup(0, 2, True).run().records)

    def test_seeded_rng_default(self) -> None:
        engine = _engine(DecisionPolicy([Rule("strike")]), rng=SeededRNG(3))
        self.assertEqual(engine.run().final_time, 10.0)


if __name__ == "__main__":
    unittest.main()
