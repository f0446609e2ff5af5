from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .abilities import AbilityCatalog, AbilityDefinition, AbilityEffect, EffectKind, ProcDefinition
from .buffs import BuffDefinition, BuffInstance, BuffTracker
from .combat import Outcome, armor_factor, attack_table, effect_damage, outcome_multiplier, white_damage
from .events import EPS, EventKind, EventQueue, InternalConsistencyError, ScheduledEvent
from .models import ModelError, TargetDefinition, _to_float
from .policy import DecisionPolicy, Wait
from .resources import EnergyModel, FinisherPool, InsufficientResource, ResourcePool
from .rng import RNGSource, SeededRNG
from .stats import StatResolver, StatSnapshot

logger = logging.getLogger(__name__)

AUTO_ATTACK_ID = "auto_attack"
# Upper bound on abilities fired at one instant; off-GCD abilities could otherwise spin.
MAX_ACTIONS_PER_INSTANT = 32

__all__ = [
    "AUTO_ATTACK_ID",
    "AbilityTally",
    "CharacterState",
    "DamageRecord",
    "EncounterSettings",
    "EngineState",
    "InsufficientResource",
    "InternalConsistencyError",
    "SimulationEngine",
    "TrialResult",
]


class EngineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"


@dataclass(slots=True, frozen=True)
class EncounterSettings:
    """Fight-wide knobs for one trial.

    Auto attacks run on their own swing timer outside the rotation rules. An
    empty rule list therefore still records swings unless ``auto_attack`` is off.
    """

    duration: float = 60.0
    gcd: float = 1.0
    execute_threshold: float = 0.2
    behind: bool = True
    auto_attack: bool = True
    start_stealthed: bool = False
    crit_multiplier: float = 2.0
    combo_point_cap: int = 5
    mana: float = 4000.0
    energy: EnergyModel = field(default_factory=EnergyModel)
    flags: Tuple[str, ...] = tuple()
    record_timeline: bool = True

    @property
    def execute_starts_at(self) -> Optional[float]:
        if self.execute_threshold <= 0.0:
            return None
        return self.duration * (1.0 - min(1.0, self.execute_threshold))

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], energy: EnergyModel | None = None) -> "EncounterSettings":
        duration = _to_float(payload, "duration", 60.0)
        if duration <= 0.0:
            raise ModelError("Field 'duration' must be > 0.")
        gcd = _to_float(payload, "gcd", 1.0)
        if gcd < 0.0:
            raise ModelError("Field 'gcd' must be >= 0.")
        threshold = _to_float(payload, "execute_threshold", 0.2)
        if not 0.0 <= threshold <= 1.0:
            raise ModelError("Field 'execute_threshold' must be within [0, 1].")
        crit_multiplier = _to_float(payload, "crit_multiplier", 2.0)
        if crit_multiplier < 1.0:
            raise ModelError("Field 'crit_multiplier' must be >= 1.")
        mana = _to_float(payload, "mana", 4000.0)
        if mana < 0.0:
            raise ModelError("Field 'mana' must be >= 0.")
        return cls(
            duration=duration,
            gcd=gcd,
            execute_threshold=threshold,
            behind=bool(payload.get("behind", True)),
            auto_attack=bool(payload.get("auto_attack", True)),
            start_stealthed=bool(payload.get("start_stealthed", False)),
            crit_multiplier=crit_multiplier,
            combo_point_cap=int(payload.get("combo_point_cap", 5)),
            mana=mana,
            energy=energy or EnergyModel(),
            flags=tuple(str(item) for item in payload.get("flags", [])),
        )


@dataclass(slots=True, frozen=True)
class DamageRecord:
    at: float
    ability_id: str
    amount: float
    outcome: Outcome
    energy: float
    combo_points: int
    mana: float
    energy_delta: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "at": self.at,
            "ability": self.ability_id,
            "amount": self.amount,
            "outcome": self.outcome.value,
            "energy": self.energy,
            "combo_points": self.combo_points,
            "mana": self.mana,
            "energy_delta": self.energy_delta,
        }


@dataclass(slots=True)
class AbilityTally:
    damage: float = 0.0
    casts: int = 0
    hits: int = 0
    crits: int = 0
    glances: int = 0
    misses: int = 0
    dodges: int = 0
    parries: int = 0
    ticks: int = 0

    def count(self, outcome: Outcome) -> None:
        if outcome is Outcome.HIT:
            self.hits += 1
        elif outcome is Outcome.CRIT:
            self.crits += 1
        elif outcome is Outcome.GLANCE:
            self.glances += 1
        elif outcome is Outcome.MISS:
            self.misses += 1
        elif outcome is Outcome.DODGE:
            self.dodges += 1
        elif outcome is Outcome.PARRY:
            self.parries += 1
        elif outcome is Outcome.TICK:
            self.ticks += 1

    def as_dict(self) -> Dict[str, float]:
        return {
            "damage": self.damage,
            "casts": self.casts,
            "hits": self.hits,
            "crits": self.crits,
            "glances": self.glances,
            "misses": self.misses,
            "dodges": self.dodges,
            "parries": self.parries,
            "ticks": self.ticks,
        }


@dataclass(slots=True, frozen=True)
class TrialResult:
    seed: Optional[int]
    duration: float
    total_damage: float
    records: Tuple[DamageRecord, ...]
    abilities: Dict[str, AbilityTally]
    procs: Dict[str, int]
    energy_spent: float
    energy_wasted: float
    mana_spent: float
    final_time: float
    events_processed: int

    @property
    def dps(self) -> float:
        return self.total_damage / self.duration if self.duration > 0.0 else 0.0


class CharacterState:
    """Mutable per-trial state. Also the view conditions and the policy read from."""

    def __init__(
        self,
        catalog: AbilityCatalog,
        target: TargetDefinition,
        settings: EncounterSettings,
    ):
        self.catalog = catalog
        self.target = target
        self.settings = settings
        self.now = 0.0
        self.stats: StatSnapshot | None = None
        self.energy_pool = settings.energy.build_pool()
        self.combo = FinisherPool(settings.combo_point_cap)
        self.mana_pool = ResourcePool("mana", settings.mana)
        self.buffs = BuffTracker()
        self.cooldowns: Dict[str, float] = {}
        self.charges: Dict[str, int] = {
            ability.id: ability.charges for ability in catalog.abilities() if ability.charges is not None
        }
        self.gcd_ready_at = 0.0
        self.casting_until = 0.0
        self.next_swing = 0.0
        self.execute = False
        self.is_stealthed = settings.start_stealthed
        self.flags: Set[str] = set(settings.flags) | {"form:cat"}
        if settings.behind:
            self.flags.add("behind")
        if target.can_bleed:
            self.flags.add("target_can_bleed")

    # StateView

    def energy(self) -> float:
        return self.energy_pool.current

    def mana(self) -> float:
        return self.mana_pool.current

    def combo_points(self) -> int:
        return self.combo.current

    def buff_active(self, buff_id: str) -> bool:
        return self.buffs.is_active(buff_id)

    def buff_remaining(self, buff_id: str) -> float:
        return self.buffs.remaining(buff_id, self.now)

    def buff_stacks(self, buff_id: str) -> int:
        return self.buffs.stacks(buff_id)

    def cooldown_ready(self, ability_id: str) -> bool:
        return self.cooldowns.get(ability_id, 0.0) <= self.now + EPS

    def execute_phase(self) -> bool:
        return self.execute

    def stealthed(self) -> bool:
        return self.is_stealthed

    def time_remaining(self) -> float:
        return max(0.0, self.settings.duration - self.now)

    def flag(self, name: str) -> bool:
        return name in self.flags

    # DecisionContext

    def haste_factor(self) -> float:
        if self.settings.energy.haste_scaled and self.stats is not None:
            return self.stats.haste_factor
        return 1.0

    def energy_cost(self, ability: AbilityDefinition) -> float:
        if ability.energy_cost <= 0.0:
            return 0.0
        return ability.energy_cost * self.buffs.cost_multiplier()

    def _permanently_blocked(self, ability: AbilityDefinition) -> bool:
        if ability.charges is not None and self.charges.get(ability.id, 0) <= 0:
            return True
        if ability.requires_bleed and not self.target.can_bleed:
            return True
        if ability.finisher and self.combo.current <= 0:
            return True
        return not self.mana_pool.can_afford(ability.mana_cost)

    def _blocked_until(self, ability: AbilityDefinition) -> float:
        blocked = max(self.now, self.cooldowns.get(ability.id, 0.0), self.casting_until)
        if ability.triggers_gcd:
            blocked = max(blocked, self.gcd_ready_at)
        return blocked

    def usable(self, ability_id: str) -> bool:
        if ability_id not in self.catalog:
            return False
        ability = self.catalog.ability(ability_id)
        if self._permanently_blocked(ability):
            return False
        if self._blocked_until(ability) > self.now + EPS:
            return False
        return self.energy_pool.can_afford(self.energy_cost(ability))

    def available_at(self, ability_id: str) -> Optional[float]:
        if ability_id not in self.catalog:
            return None
        ability = self.catalog.ability(ability_id)
        if self._permanently_blocked(ability):
            return None
        blocked = self._blocked_until(ability)
        cost = self.energy_cost(ability)
        if not self.energy_pool.can_afford(cost):
            wait = self.energy_pool.time_to_reach(cost, self.haste_factor())
            if not math.isinf(wait):
                blocked = max(blocked, self.now + wait)
        return blocked if blocked > self.now + EPS else None

    def energy_ready_at(self, amount: float) -> Optional[float]:
        """When passive regeneration alone brings energy to ``amount``; ``None`` if it never does."""
        wait = self.energy_pool.time_to_reach(amount, self.haste_factor())
        if math.isinf(wait):
            return None
        return self.now + wait


class SimulationEngine:
    """Runs one encounter as a discrete-event loop.

    ``run()`` drives the loop to completion. ``step()`` processes exactly one
    event and returns whether the engine is still running.
    """

    def __init__(
        self,
        catalog: AbilityCatalog,
        policy: DecisionPolicy,
        resolver: StatResolver,
        target: TargetDefinition,
        settings: EncounterSettings | None = None,
        rng: RNGSource | None = None,
        *,
        procs: Iterable[str] = (),
        opening_buffs: Iterable[str] = (),
        seed: Optional[int] = None,
    ):
        self.catalog = catalog
        self.policy = policy
        self.resolver = resolver
        self.target = target
        self.settings = settings or EncounterSettings()
        self.seed = seed
        self.rng: RNGSource = rng if rng is not None else SeededRNG(seed)
        self.procs: Tuple[ProcDefinition, ...] = tuple(catalog.proc(proc_id) for proc_id in procs)
        self.opening_buffs: Tuple[BuffDefinition, ...] = tuple(catalog.buff(buff_id) for buff_id in opening_buffs)

        self.state = EngineState.IDLE
        self.character = CharacterState(catalog, target, self.settings)
        self.queue = EventQueue()
        self.records: List[DamageRecord] = []
        self.tallies: Dict[str, AbilityTally] = {}
        self.proc_counts: Dict[str, int] = {}
        self.total_damage = 0.0
        self.energy_spent = 0.0
        self.energy_wasted = 0.0
        self.mana_spent = 0.0
        self.events_processed = 0
        self._wakeups: Set[float] = set()
        self._ticking: Set[int] = set()
        self._debug = logger.isEnabledFor(logging.DEBUG)

    @property
    def now(self) -> float:
        return self.character.now

    # lifecycle

    def _start(self) -> None:
        settings = self.settings
        self.queue.push(settings.duration, EventKind.ENCOUNTER_END)
        if settings.energy.mode == "tick":
            self._schedule(self._tick_interval(), EventKind.RESOURCE_TICK)
        if settings.auto_attack:
            self._schedule(0.0, EventKind.SWING)
        execute_at = settings.execute_starts_at
        if execute_at is not None:
            self._schedule(execute_at, EventKind.ABILITY_READY, {"phase": "execute"})

        self._refresh_stats()
        for buff in self.opening_buffs:
            self._apply_buff(buff, source=buff.id)
        self.state = EngineState.RUNNING
        self._try_act()

    def run(self) -> TrialResult:
        while self.step():
            pass
        return self.result()

    def step(self) -> bool:
        if self.state is EngineState.IDLE:
            self._start()
            return self.state is EngineState.RUNNING
        if self.state is EngineState.COMPLETE:
            return False

        event = self.queue.pop()
        try:
            self._process(event)
        except InternalConsistencyError as exc:
            if exc.at is None:
                exc.at = self.now
            if exc.event is None:
                exc.event = event
            self.state = EngineState.COMPLETE
            logger.debug("Trial aborted at %.3f on %s: %s", self.now, event.kind.value, exc)
            raise
        return self.state is EngineState.RUNNING

    def result(self) -> TrialResult:
        return TrialResult(
            seed=self.seed,
            duration=self.settings.duration,
            total_damage=self.total_damage,
            records=tuple(self.records),
            abilities={key: AbilityTally(**value.as_dict()) for key, value in self.tallies.items()},
            procs=dict(self.proc_counts),
            energy_spent=self.energy_spent,
            energy_wasted=self.energy_wasted,
            mana_spent=self.mana_spent,
            final_time=self.now,
            events_processed=self.events_processed,
        )

    # event loop

    def _schedule(self, at: float, kind: EventKind, payload: Optional[Dict[str, Any]] = None) -> Optional[ScheduledEvent]:
        if at >= self.settings.duration - EPS:
            return None
        return self.queue.push(at, kind, payload)

    def _tick_interval(self) -> float:
        return self.settings.energy.tick_interval / self.character.haste_factor()

    def _advance(self, at: float) -> None:
        character = self.character
        elapsed = at - character.now
        if elapsed < -EPS:
            raise InternalConsistencyError(f"Clock moved backwards from {character.now:.6f} to {at:.6f}.", at=character.now)
        if elapsed > 0.0 and character.energy_pool.regen_per_second > 0.0:
            haste = character.haste_factor()
            offered = character.energy_pool.regen_per_second * haste * elapsed
            self.energy_wasted += offered - character.energy_pool.regenerate(elapsed, haste)
        character.now = max(character.now, at)

    def _expire_buffs(self) -> None:
        expired = self.character.buffs.tick(self.now)
        if not expired:
            return
        if self._debug:
            logger.debug("t=%.3f expired %s", self.now, ", ".join(item.buff_id for item in expired))
        if self.resolver.conditional or any(self.catalog.buff(item.buff_id).stat_effects for item in expired):
            self._refresh_stats()

    def _process(self, event: ScheduledEvent) -> None:
        self.events_processed += 1
        self._advance(event.at)
        if self._debug:
            logger.debug("t=%.3f %s %s", event.at, event.kind.value, event.payload)

        if event.kind is EventKind.ENCOUNTER_END:
            self.character.now = self.settings.duration
            self.state = EngineState.COMPLETE
            self.queue.clear()
            return

        if event.kind is EventKind.PERIODIC_TICK:
            self._periodic_tick(event)
            # Every tick due at this instant lands before anything expires.
            if self._tick_pending(event.at):
                return
        self._expire_buffs()

        if event.kind is EventKind.RESOURCE_TICK:
            self._resource_tick()
        elif event.kind is EventKind.SWING:
            self._swing()
        elif event.kind is EventKind.CAST_COMPLETE:
            self.character.casting_until = 0.0
            ability = self.catalog.ability(event.payload["ability"])
            self._resolve(ability, float(event.payload.get("energy_before", self.character.energy_pool.current)))
        elif event.kind is EventKind.ABILITY_READY:
            if event.payload.get("phase") == "execute":
                self.character.execute = True
                self._refresh_stats()
            self._wakeups.discard(event.at)

        self._try_act()
        self._check_invariants()

    def _tick_pending(self, at: float) -> bool:
        upcoming = self.queue.peek()
        return upcoming is not None and upcoming.kind is EventKind.PERIODIC_TICK and upcoming.at <= at + EPS

    def _check_invariants(self) -> None:
        character = self.character
        if not -EPS <= character.energy_pool.current <= character.energy_pool.maximum + EPS:
            raise InternalConsistencyError(f"Energy {character.energy_pool.current:.3f} outside [0, {character.energy_pool.maximum}].", at=self.now)
        if not 0 <= character.combo.current <= character.combo.maximum:
            raise InternalConsistencyError(f"Combo points {character.combo.current} outside [0, {character.combo.maximum}].", at=self.now)

    def _refresh_stats(self) -> None:
        character = self.character
        previous = character.stats
        character.stats = self.resolver.resolve(character, character.buffs.stat_effects())
        if self._debug and previous != character.stats:
            logger.debug("t=%.3f stats AP=%.1f crit=%.2f", self.now, character.stats.attack_power, character.stats.crit)

    # handlers

    def _resource_tick(self) -> None:
        amount = self.settings.energy.tick_amount
        gained = self.character.energy_pool.generate(amount)
        self.energy_wasted += amount - gained
        self._schedule(self.now + self._tick_interval(), EventKind.RESOURCE_TICK)

    def _swing(self) -> None:
        character = self.character
        stats = character.stats
        table = attack_table(stats, self.target, white=True, behind=self.settings.behind)
        outcome = table.roll(self.rng)
        amount = 0.0
        if outcome.landed:
            amount = (
                white_damage(stats, self.rng)
                * outcome_multiplier(outcome, stats, self.target, self.settings.crit_multiplier)
                * character.buffs.damage_multiplier("physical")
                * armor_factor(stats, self.target, "physical")
            )
        self._record(AUTO_ATTACK_ID, amount, outcome, cast=True)
        if outcome.landed:
            self._roll_procs(auto_attack=True, crit=outcome is Outcome.CRIT)
        self._break_stealth()

        character.next_swing = self.now + character.stats.swing_interval
        self._schedule(character.next_swing, EventKind.SWING)

    def _periodic_tick(self, event: ScheduledEvent) -> None:
        buff_id = str(event.payload["buff"])
        uid = int(event.payload["uid"])
        instance = self.character.buffs.find(buff_id, uid)
        if instance is None:
            self._ticking.discard(uid)
            return
        definition = self.catalog.buff(buff_id)
        amount = instance.magnitude * self.character.buffs.damage_multiplier(definition.tick_school)
        amount *= armor_factor(self.character.stats, self.target, definition.tick_school)
        instance.ticks_done += 1
        self._record(buff_id, amount, Outcome.TICK)

        next_at = self.now + definition.tick_interval
        if next_at <= instance.expires_at + 1e-6:
            self._schedule(min(next_at, instance.expires_at), EventKind.PERIODIC_TICK, {"buff": buff_id, "uid": uid})
        else:
            self._ticking.discard(uid)

    # decisions

    def _try_act(self) -> None:
        character = self.character
        actions = 0
        while self.state is EngineState.RUNNING and character.casting_until <= self.now + EPS:
            decision = self.policy.decide(character)
            if isinstance(decision, Wait):
                if decision.until is not None:
                    self._schedule_wakeup(decision.until)
                return
            self._use(self.catalog.ability(decision.ability_id))
            actions += 1
            if actions > MAX_ACTIONS_PER_INSTANT:
                raise InternalConsistencyError(
                    f"Policy fired more than {MAX_ACTIONS_PER_INSTANT} abilities at one instant.",
                    at=self.now,
                )

    def _schedule_wakeup(self, until: float) -> None:
        if until <= self.now + EPS or until in self._wakeups:
            return
        if self._schedule(until, EventKind.ABILITY_READY) is not None:
            self._wakeups.add(until)

    def _use(self, ability: AbilityDefinition) -> None:
        character = self.character
        energy_before = character.energy_pool.current
        cost = character.energy_cost(ability)
        character.energy_pool.spend(cost, at=self.now)
        character.mana_pool.spend(ability.mana_cost, at=self.now)
        self.energy_spent += cost
        self.mana_spent += ability.mana_cost

        if ability.energy_cost > 0.0:
            consumed = [buff_id for buff_id in character.buffs.cost_consumers() if character.buffs.consume(buff_id)]
            if consumed and (self.resolver.conditional or any(character.buffs.has_stat_effects(item) for item in consumed)):
                self._refresh_stats()

        if ability.charges is not None:
            character.charges[ability.id] = character.charges.get(ability.id, 0) - 1
        if ability.cooldown > 0.0:
            character.cooldowns[ability.id] = self.now + ability.cooldown
            self._schedule_wakeup(self.now + ability.cooldown)
        if ability.triggers_gcd and self.settings.gcd > 0.0:
            character.gcd_ready_at = self.now + self.settings.gcd
            self._schedule(character.gcd_ready_at, EventKind.GCD_END)
        self._tally(ability.id).casts += 1

        if ability.cast_time > 0.0:
            character.casting_until = self.now + ability.cast_time
            self._schedule(character.casting_until, EventKind.CAST_COMPLETE, {"ability": ability.id, "energy_before": energy_before})
            return
        self._resolve(ability, energy_before)

    def _resolve(self, ability: AbilityDefinition, energy_before: float) -> None:
        character = self.character
        stats = character.stats
        if not ability.is_attack:
            self._apply_effects(ability.effects, ability.id, Outcome.CAST)
            character.combo.add(ability.combo_points)
            self._record(ability.id, 0.0, Outcome.CAST, energy_before=energy_before)
            return

        table = attack_table(
            stats,
            self.target,
            white=False,
            behind=self.settings.behind,
            can_crit=ability.can_crit,
            can_be_avoided=ability.can_be_avoided,
        )
        outcome = table.roll(self.rng)
        if outcome.avoided:
            spent = energy_before - character.energy_pool.current
            character.energy_pool.generate(max(0.0, spent) * ability.refund_on_avoid)
            self._record(ability.id, 0.0, outcome, energy_before=energy_before)
            self._break_stealth()
            return

        combo_points = character.combo.current
        extra_energy = 0.0
        if ability.consumes_extra_energy:
            extra_energy = character.energy_pool.current
            character.energy_pool.set(0.0)
            self.energy_spent += extra_energy

        recorded = False
        for effect in ability.effects:
            if effect.kind is EffectKind.DAMAGE:
                raw = effect_damage(
                    effect,
                    stats,
                    combo_points=combo_points,
                    extra_energy=extra_energy,
                    active_bonus_buffs=sum(1 for buff_id in effect.bonus_buffs if character.buffs.is_active(buff_id)),
                )
                amount = (
                    raw
                    * outcome_multiplier(outcome, stats, self.target, self.settings.crit_multiplier)
                    * character.buffs.damage_multiplier(effect.school)
                    * armor_factor(stats, self.target, effect.school)
                )
                if ability.finisher:
                    character.combo.reset()
                elif not recorded:
                    self._award_combo(ability, outcome)
                self._record(ability.id, amount, outcome, energy_before=energy_before)
                recorded = True
            else:
                self._apply_effect(effect, ability.id, outcome, combo_points=combo_points)

        if not recorded:
            if ability.finisher:
                character.combo.reset()
            else:
                self._award_combo(ability, outcome)
            self._record(ability.id, 0.0, outcome, energy_before=energy_before)
        self._roll_procs(auto_attack=False, crit=outcome is Outcome.CRIT)
        self._break_stealth()

    def _break_stealth(self) -> None:
        """Attacks leave stealth once resolved, so openers still see stealth-only bonuses."""
        if self.character.is_stealthed:
            self.character.is_stealthed = False
            self._refresh_stats()

    def _award_combo(self, ability: AbilityDefinition, outcome: Outcome) -> None:
        bonus = ability.bonus_combo_on_crit if outcome is Outcome.CRIT else 0
        self.character.combo.add(ability.combo_points + bonus)

    def _apply_effects(self, effects: Sequence[AbilityEffect], source: str, outcome: Outcome) -> None:
        combo_points = self.character.combo.current
        for effect in effects:
            self._apply_effect(effect, source, outcome, combo_points=combo_points)

    def _apply_effect(self, effect: AbilityEffect, source: str, outcome: Outcome, *, combo_points: int = 0) -> None:
        character = self.character
        if effect.kind is EffectKind.APPLY_BUFF:
            definition = self.catalog.buff(effect.buff)
            magnitude = 0.0
            if effect.has_damage_terms and definition.periodic:
                total = effect_damage(effect, character.stats, combo_points=combo_points)
                magnitude = total / definition.tick_count
            self._apply_buff(definition, source=source, magnitude=magnitude)
        elif effect.kind is EffectKind.GENERATE_ENERGY:
            gained = character.energy_pool.generate(effect.amount)
            self.energy_wasted += effect.amount - gained
        elif effect.kind is EffectKind.SET_ENERGY:
            character.energy_pool.set(effect.amount)
        elif effect.kind is EffectKind.GENERATE_COMBO:
            character.combo.add(int(effect.amount))
        elif effect.kind is EffectKind.DISPEL:
            removed = character.buffs.dispel(effect.buff)
            if removed and (self.resolver.conditional or self.catalog.buff(effect.buff).stat_effects):
                self._refresh_stats()

    def _apply_buff(self, definition: BuffDefinition, *, source: str, magnitude: float = 0.0) -> Optional[BuffInstance]:
        character = self.character
        instance = character.buffs.apply(definition, self.now, magnitude)
        if instance is None:
            return None
        if not math.isinf(instance.expires_at):
            self._schedule(instance.expires_at, EventKind.BUFF_EXPIRE, {"buff": definition.id})
        if definition.periodic and instance.uid not in self._ticking:
            self._ticking.add(instance.uid)
            self._schedule(self.now + definition.tick_interval, EventKind.PERIODIC_TICK, {"buff": definition.id, "uid": instance.uid})
        if definition.stat_effects or self.resolver.conditional:
            self._refresh_stats()
        if self._debug:
            logger.debug("t=%.3f %s applied %s (stacks=%d)", self.now, source, definition.id, character.buffs.stacks(definition.id))
        return instance

    def _roll_procs(self, *, auto_attack: bool, crit: bool) -> None:
        for proc in self.procs:
            if not proc.fires_on(auto_attack, crit):
                continue
            if self.rng.chance(proc.chance):
                self.proc_counts[proc.id] = self.proc_counts.get(proc.id, 0) + 1
                self._apply_effects(proc.effects, proc.id, Outcome.CAST)

    # bookkeeping

    def _tally(self, ability_id: str) -> AbilityTally:
        tally = self.tallies.get(ability_id)
        if tally is None:
            tally = self.tallies[ability_id] = AbilityTally()
        return tally

    def _record(
        self,
        ability_id: str,
        amount: float,
        outcome: Outcome,
        *,
        energy_before: float | None = None,
        cast: bool = False,
    ) -> None:
        character = self.character
        tally = self._tally(ability_id)
        tally.damage += amount
        tally.count(outcome)
        if cast:
            tally.casts += 1
        self.total_damage += amount
        if not self.settings.record_timeline:
            return
        delta = 0.0 if energy_before is None else character.energy_pool.current - energy_before
        self.records.append(
            DamageRecord(
                at=self.now,
                ability_id=ability_id,
                amount=amount,
                outcome=outcome,
                energy=character.energy_pool.current,
                combo_points=character.combo.current,
                mana=character.mana_pool.current,
                energy_delta=delta,
            )
        )
