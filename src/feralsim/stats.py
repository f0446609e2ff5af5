from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, MutableMapping, Optional, Sequence, Tuple

from .conditions import Condition, StateView, evaluate
from .models import BaseStats, ModelError, StackMode, StatEffect, ValueType

# Agility per 1% crit and attack power per point of strength/agility (level 60 druid).
AGILITY_PER_CRIT = 20.0
AP_PER_STRENGTH = 2.0
AP_PER_AGILITY = 1.0


@dataclass(slots=True, frozen=True)
class Contribution:
    source: str
    effects: Tuple[StatEffect, ...]
    condition: Optional[Condition] = None
    category: str = "item"


@dataclass(slots=True)
class StatContribution:
    source: str
    effect: StatEffect


@dataclass(slots=True)
class StatBreakdown:
    base: float
    base_override: StatContribution | None
    flat: List[StatContribution]
    percent_add: List[StatContribution]
    percent_mult: List[StatContribution]
    multipliers: List[StatContribution]
    final_value: float

    def compact_summary(self) -> str:
        add_pct = sum(entry.effect.value for entry in self.percent_add)
        mult_pct_factor = math.prod(1.0 + entry.effect.value for entry in self.percent_mult) if self.percent_mult else 1.0
        multipliers_factor = math.prod(entry.effect.value for entry in self.multipliers) if self.multipliers else 1.0
        base = self.base_override.effect.value if self.base_override else self.base
        flat_total = sum(entry.effect.value for entry in self.flat)
        parts = [f"base {base:.2f}"]
        if flat_total:
            parts.append(f"+flat {flat_total:+.2f}")
        if add_pct:
            parts.append(f"+add% {add_pct * 100:+.1f}%")
        if self.percent_mult:
            parts.append(f"*mult% {mult_pct_factor:.3f}")
        if self.multipliers:
            parts.append(f"*mult {multipliers_factor:.3f}")
        return "; ".join(parts)


@dataclass(slots=True, frozen=True)
class StatSnapshot:
    strength: float
    agility: float
    attack_power: float
    crit: float
    hit: float
    haste: float
    attack_speed: float
    weapon_min: float
    weapon_max: float
    weapon_speed: float
    weapon_skill: float
    armor_penetration: float
    level: int = 60

    @property
    def weapon_average(self) -> float:
        return (self.weapon_min + self.weapon_max) / 2.0

    @property
    def haste_factor(self) -> float:
        return max(0.01, 1.0 + self.haste / 100.0)

    @property
    def swing_interval(self) -> float:
        return self.weapon_speed / (self.haste_factor * max(0.01, self.attack_speed))

    def as_dict(self) -> Dict[str, float]:
        return {
            "strength": self.strength,
            "agility": self.agility,
            "attack_power": self.attack_power,
            "crit": self.crit,
            "hit": self.hit,
            "haste": self.haste,
            "attack_speed": self.attack_speed,
            "weapon_min": self.weapon_min,
            "weapon_max": self.weapon_max,
            "weapon_speed": self.weapon_speed,
            "weapon_skill": self.weapon_skill,
            "armor_penetration": self.armor_penetration,
        }


def _stat_accumulator() -> Dict[str, List[StatContribution]]:
    return {
        "base_override": [],
        "flat": [],
        "percent_add": [],
        "percent_mult": [],
        "multipliers": [],
    }


def _apply_effect(
    accumulator: MutableMapping[str, List[StatContribution]],
    effect: StatEffect,
    source: str,
) -> None:
    contribution = StatContribution(source=source, effect=effect)

    if effect.stack_mode is StackMode.OVERRIDE:
        accumulator["base_override"].append(contribution)
        return

    if effect.value_type is ValueType.FLAT:
        accumulator["flat"].append(contribution)
        return

    if effect.value_type is ValueType.PERCENT:
        if effect.stack_mode is StackMode.ADD:
            accumulator["percent_add"].append(contribution)
        else:
            accumulator["percent_mult"].append(contribution)
        return

    if effect.value_type is ValueType.MULTIPLIER:
        accumulator["multipliers"].append(contribution)
        return

    raise ModelError(f"Unsupported effect type '{effect.value_type.value}' from {source}.")


def _finalize_breakdown(
    base_value: float,
    accumulator: MutableMapping[str, List[StatContribution]],
) -> StatBreakdown:
    base_override = accumulator["base_override"][-1] if accumulator["base_override"] else None
    base = base_override.effect.value if base_override else base_value

    value = base + sum(entry.effect.value for entry in accumulator["flat"])
    value *= 1.0 + sum(entry.effect.value for entry in accumulator["percent_add"])

    if accumulator["percent_mult"]:
        value *= math.prod(1.0 + entry.effect.value for entry in accumulator["percent_mult"])

    if accumulator["multipliers"]:
        value *= math.prod(entry.effect.value for entry in accumulator["multipliers"])

    return StatBreakdown(
        base=base_value,
        base_override=base_override,
        flat=list(accumulator["flat"]),
        percent_add=list(accumulator["percent_add"]),
        percent_mult=list(accumulator["percent_mult"]),
        multipliers=list(accumulator["multipliers"]),
        final_value=value,
    )


class StatResolver:
    """Folds base stats, gear and active effects into a :class:`StatSnapshot`.

    Contributions whose condition does not hold for the given view are skipped.
    Strength and agility are finalized first so attack power and crit can derive
    from them before their own modifiers apply.
    """

    def __init__(self, base: BaseStats, contributions: Sequence[Contribution] = ()):
        self.base = base
        self.contributions = tuple(contributions)

    def with_contributions(self, extra: Iterable[Contribution]) -> "StatResolver":
        return StatResolver(self.base, self.contributions + tuple(extra))

    @property
    def conditional(self) -> bool:
        return any(item.condition is not None for item in self.contributions)

    def breakdown(
        self,
        view: StateView | None = None,
        active_effects: Iterable[Tuple[str, Sequence[StatEffect]]] = (),
    ) -> Dict[str, StatBreakdown]:
        accumulators: Dict[str, Dict[str, List[StatContribution]]] = {}

        def apply_effects(effects: Sequence[StatEffect], source: str) -> None:
            for effect in effects:
                _apply_effect(accumulators.setdefault(effect.stat, _stat_accumulator()), effect, source)

        for contribution in self.contributions:
            if contribution.condition is not None:
                if view is None or not evaluate(contribution.condition, view):
                    continue
            apply_effects(contribution.effects, contribution.source)

        for source, effects in active_effects:
            apply_effects(effects, source)

        def finalize(stat: str, base_value: float) -> StatBreakdown:
            return _finalize_breakdown(base_value, accumulators.get(stat, _stat_accumulator()))

        base = self.base
        result: Dict[str, StatBreakdown] = {
            "strength": finalize("strength", base.strength),
            "agility": finalize("agility", base.agility),
        }
        strength = result["strength"].final_value
        agility = result["agility"].final_value

        derived_ap = base.attack_power + strength * AP_PER_STRENGTH + agility * AP_PER_AGILITY
        result["attack_power"] = finalize("attack_power", derived_ap)
        result["crit"] = finalize("crit", base.crit + agility / AGILITY_PER_CRIT)
        result["hit"] = finalize("hit", base.hit)
        result["haste"] = finalize("haste", base.haste)
        result["attack_speed"] = finalize("attack_speed", 1.0)
        result["weapon_min"] = finalize("weapon_min", base.weapon_min)
        result["weapon_max"] = finalize("weapon_max", base.weapon_max)
        result["weapon_skill"] = finalize("weapon_skill", base.weapon_skill)
        result["armor_penetration"] = finalize("armor_penetration", base.armor_penetration)
        return result

    def resolve(
        self,
        view: StateView | None = None,
        active_effects: Iterable[Tuple[str, Sequence[StatEffect]]] = (),
    ) -> StatSnapshot:
        values = {stat: item.final_value for stat, item in self.breakdown(view, active_effects).items()}
        weapon_min = max(0.0, values["weapon_min"])
        return StatSnapshot(
            strength=max(0.0, values["strength"]),
            agility=max(0.0, values["agility"]),
            attack_power=max(0.0, values["attack_power"]),
            crit=max(0.0, values["crit"]),
            hit=max(0.0, values["hit"]),
            haste=values["haste"],
            attack_speed=max(0.01, values["attack_speed"]),
            weapon_min=weapon_min,
            weapon_max=max(weapon_min, values["weapon_max"]),
            weapon_speed=self.base.weapon_speed,
            weapon_skill=values["weapon_skill"],
            armor_penetration=max(0.0, values["armor_penetration"]),
            level=self.base.level,
        )
