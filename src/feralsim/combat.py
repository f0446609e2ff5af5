"""Attack table and damage formulas for a level-60 melee attacker.

All chances are in percent points. The attack table is a single roll over
miss, dodge, parry, glance and crit in that order; whatever remains is a hit.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .abilities import AbilityEffect
from .models import TargetDefinition
from .rng import RNGSource
from .stats import StatSnapshot

MAX_ARMOR_REDUCTION = 0.75
AP_PER_DPS = 14.0


class Outcome(str, Enum):
    HIT = "hit"
    CRIT = "crit"
    GLANCE = "glance"
    MISS = "miss"
    DODGE = "dodge"
    PARRY = "parry"
    TICK = "tick"
    CAST = "cast"

    @property
    def avoided(self) -> bool:
        return self in {Outcome.MISS, Outcome.DODGE, Outcome.PARRY}

    @property
    def landed(self) -> bool:
        return self in {Outcome.HIT, Outcome.CRIT, Outcome.GLANCE}


@dataclass(slots=True, frozen=True)
class AttackTable:
    miss: float = 0.0
    dodge: float = 0.0
    parry: float = 0.0
    glance: float = 0.0
    crit: float = 0.0

    @property
    def hit(self) -> float:
        return max(0.0, 100.0 - self.miss - self.dodge - self.parry - self.glance - self.crit)

    def outcome(self, roll: float) -> Outcome:
        """``roll`` is in [0, 100)."""
        threshold = 0.0
        for outcome, chance in (
            (Outcome.MISS, self.miss),
            (Outcome.DODGE, self.dodge),
            (Outcome.PARRY, self.parry),
            (Outcome.GLANCE, self.glance),
            (Outcome.CRIT, self.crit),
        ):
            threshold += chance
            if roll < threshold:
                return outcome
        return Outcome.HIT

    def roll(self, rng: RNGSource) -> Outcome:
        return self.outcome(rng.uniform() * 100.0)


def defense_skill(target: TargetDefinition) -> float:
    return target.level * 5.0


def skill_difference(stats: StatSnapshot, target: TargetDefinition) -> float:
    return max(0.0, defense_skill(target) - stats.weapon_skill)


def miss_chance(stats: StatSnapshot, target: TargetDefinition) -> float:
    diff = skill_difference(stats, target)
    base = 5.0 + diff * (0.2 if diff > 10.0 else 0.1)
    return max(0.0, base - stats.hit)


def dodge_chance(stats: StatSnapshot, target: TargetDefinition) -> float:
    return max(0.0, 5.0 + skill_difference(stats, target) * 0.1)


def parry_chance(stats: StatSnapshot, target: TargetDefinition) -> float:
    return max(0.0, 5.0 + skill_difference(stats, target) * 0.6)


def glance_chance(stats: StatSnapshot, target: TargetDefinition) -> float:
    capped_skill = min(stats.weapon_skill, stats.level * 5.0)
    return max(0.0, min(100.0, 10.0 + (defense_skill(target) - capped_skill) * 2.0))


def glance_penalty(stats: StatSnapshot, target: TargetDefinition) -> float:
    """Damage factor applied to glancing blows."""
    if target.level <= stats.level:
        return 1.0
    diff = skill_difference(stats, target)
    if diff <= 5.0:
        return 0.95
    if diff <= 10.0:
        return 0.85
    return 0.65


def crit_chance(stats: StatSnapshot, target: TargetDefinition) -> float:
    # 0.2% per point of skill difference, i.e. 1% per target level above the attacker.
    suppression = skill_difference(stats, target) * 0.2 if target.level > stats.level else 0.0
    return max(0.0, stats.crit - suppression)


def attack_table(
    stats: StatSnapshot,
    target: TargetDefinition,
    *,
    white: bool,
    behind: bool,
    can_crit: bool = True,
    can_be_avoided: bool = True,
) -> AttackTable:
    if not can_be_avoided:
        return AttackTable(crit=crit_chance(stats, target) if can_crit else 0.0)
    return AttackTable(
        miss=miss_chance(stats, target),
        dodge=dodge_chance(stats, target),
        parry=0.0 if behind else parry_chance(stats, target),
        glance=glance_chance(stats, target) if white else 0.0,
        crit=crit_chance(stats, target) if can_crit else 0.0,
    )


def armor_reduction(armor: float, attacker_level: int = 60, armor_penetration: float = 0.0) -> float:
    effective = max(0.0, armor - armor_penetration)
    if effective <= 0.0:
        return 0.0
    constant = 400.0 + 85.0 * (attacker_level + 4.5 * (attacker_level - 59))
    return min(MAX_ARMOR_REDUCTION, effective / (effective + constant))


def armor_factor(stats: StatSnapshot, target: TargetDefinition, school: str) -> float:
    if school == "bleed":
        return 1.0
    return 1.0 - armor_reduction(target.armor, stats.level, stats.armor_penetration)


def white_damage(stats: StatSnapshot, rng: RNGSource) -> float:
    weapon = rng.between(stats.weapon_min, stats.weapon_max)
    return weapon + stats.attack_power / AP_PER_DPS * stats.weapon_speed


def effect_damage(
    effect: AbilityEffect,
    stats: StatSnapshot,
    *,
    combo_points: int = 0,
    extra_energy: float = 0.0,
    active_bonus_buffs: int = 0,
) -> float:
    """Raw damage of one effect before crit, buff and armor multipliers."""
    amount = (
        effect.base
        + effect.ap_coefficient * stats.attack_power
        + effect.weapon_coefficient * stats.weapon_average
        + effect.per_combo_point * combo_points
        + effect.ap_per_combo_point * combo_points * stats.attack_power
        + effect.per_extra_energy * extra_energy
    )
    if effect.bonus_per_active_buff and active_bonus_buffs:
        amount *= 1.0 + effect.bonus_per_active_buff * active_bonus_buffs
    return max(0.0, amount)


def outcome_multiplier(outcome: Outcome, stats: StatSnapshot, target: TargetDefinition, crit_multiplier: float) -> float:
    if outcome is Outcome.CRIT:
        return crit_multiplier
    if outcome is Outcome.GLANCE:
        return glance_penalty(stats, target)
    if outcome.avoided:
        return 0.0
    return 1.0
