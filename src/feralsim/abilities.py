from __future__ import annotations

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .buffs import BuffDefinition
from .models import AbilityAdjustment, ConfigurationError, FieldIssue, ModelError, _require, _to_float


class EffectKind(str, Enum):
    DAMAGE = "damage"
    APPLY_BUFF = "apply_buff"
    GENERATE_ENERGY = "generate_energy"
    SET_ENERGY = "set_energy"
    GENERATE_COMBO = "generate_combo"
    DISPEL = "dispel"


class ProcTrigger(str, Enum):
    AUTO_ATTACK_HIT = "auto_attack_hit"
    ABILITY_HIT = "ability_hit"
    ANY_HIT = "any_hit"
    CRIT = "crit"


@dataclass(slots=True, frozen=True)
class AbilityEffect:
    kind: EffectKind
    base: float = 0.0
    ap_coefficient: float = 0.0
    weapon_coefficient: float = 0.0
    per_combo_point: float = 0.0
    ap_per_combo_point: float = 0.0
    per_extra_energy: float = 0.0
    school: str = "physical"
    bonus_per_active_buff: float = 0.0
    bonus_buffs: Tuple[str, ...] = tuple()
    buff: str = ""
    amount: float = 0.0

    @property
    def has_damage_terms(self) -> bool:
        return any(
            (
                self.base,
                self.ap_coefficient,
                self.weapon_coefficient,
                self.per_combo_point,
                self.ap_per_combo_point,
                self.per_extra_energy,
            )
        )

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AbilityEffect":
        try:
            kind = EffectKind(str(_require(payload, "kind")).lower())
        except ValueError as exc:
            raise ModelError(f"Unsupported effect kind '{payload.get('kind')}'.") from exc

        buff = str(payload.get("buff", ""))
        if kind in {EffectKind.APPLY_BUFF, EffectKind.DISPEL} and not buff:
            raise ModelError(f"Effect '{kind.value}' requires 'buff'.")
        school = str(payload.get("school", "bleed" if kind is EffectKind.APPLY_BUFF else "physical")).lower()
        if school not in {"physical", "bleed"}:
            raise ModelError(f"Unsupported damage school '{school}'.")

        return cls(
            kind=kind,
            base=_to_float(payload, "base"),
            ap_coefficient=_to_float(payload, "ap_coefficient"),
            weapon_coefficient=_to_float(payload, "weapon_coefficient"),
            per_combo_point=_to_float(payload, "per_combo_point"),
            ap_per_combo_point=_to_float(payload, "ap_per_combo_point"),
            per_extra_energy=_to_float(payload, "per_extra_energy"),
            school=school,
            bonus_per_active_buff=_to_float(payload, "bonus_per_active_buff"),
            bonus_buffs=tuple(str(item) for item in payload.get("bonus_buffs", [])),
            buff=buff,
            amount=_to_float(payload, "amount"),
        )


def _has_attack_effect(effects: Sequence[AbilityEffect]) -> bool:
    """Direct damage or an applied damage-over-time effect goes through the attack table."""
    return any(
        effect.kind is EffectKind.DAMAGE or (effect.kind is EffectKind.APPLY_BUFF and effect.has_damage_terms)
        for effect in effects
    )


@dataclass(slots=True, frozen=True)
class AbilityDefinition:
    id: str
    name: str
    energy_cost: float = 0.0
    mana_cost: float = 0.0
    cooldown: float = 0.0
    cast_time: float = 0.0
    triggers_gcd: bool = True
    effects: Tuple[AbilityEffect, ...] = tuple()
    finisher: bool = False
    combo_points: int = 0
    bonus_combo_on_crit: int = 0
    refund_on_avoid: float = 0.0
    can_be_avoided: bool = True
    can_crit: bool = True
    consumes_extra_energy: bool = False
    requires_bleed: bool = False
    charges: Optional[int] = None

    @property
    def is_attack(self) -> bool:
        return _has_attack_effect(self.effects)

    @property
    def direct_damage(self) -> bool:
        return any(effect.kind is EffectKind.DAMAGE for effect in self.effects)

    @property
    def applied_buffs(self) -> Tuple[str, ...]:
        return tuple(effect.buff for effect in self.effects if effect.kind is EffectKind.APPLY_BUFF)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AbilityDefinition":
        ability_id = str(_require(payload, "id"))
        effects = tuple(AbilityEffect.from_dict(item) for item in payload.get("effects", []))
        raw_charges = payload.get("charges")
        is_attack = _has_attack_effect(effects)
        return cls(
            id=ability_id,
            name=str(payload.get("name", ability_id)),
            energy_cost=_to_float(payload, "energy_cost"),
            mana_cost=_to_float(payload, "mana_cost"),
            cooldown=_to_float(payload, "cooldown"),
            cast_time=_to_float(payload, "cast_time"),
            triggers_gcd=bool(payload.get("triggers_gcd", True)),
            effects=effects,
            finisher=bool(payload.get("finisher", False)),
            combo_points=int(payload.get("combo_points", 0)),
            bonus_combo_on_crit=int(payload.get("bonus_combo_on_crit", 0)),
            refund_on_avoid=_to_float(payload, "refund_on_avoid"),
            can_be_avoided=bool(payload.get("can_be_avoided", is_attack)),
            can_crit=bool(payload.get("can_crit", is_attack)),
            consumes_extra_energy=bool(payload.get("consumes_extra_energy", False)),
            requires_bleed=bool(payload.get("requires_bleed", False)),
            charges=None if raw_charges is None else int(raw_charges),
        )


@dataclass(slots=True, frozen=True)
class ProcDefinition:
    id: str
    name: str
    trigger: ProcTrigger
    chance: float
    effects: Tuple[AbilityEffect, ...] = tuple()

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProcDefinition":
        proc_id = str(_require(payload, "id"))
        try:
            trigger = ProcTrigger(str(payload.get("trigger", ProcTrigger.AUTO_ATTACK_HIT.value)).lower())
        except ValueError as exc:
            raise ModelError(f"Proc '{proc_id}' has unsupported trigger '{payload.get('trigger')}'.") from exc
        chance = _to_float(payload, "chance")
        if not 0.0 <= chance <= 100.0:
            raise ModelError(f"Proc '{proc_id}' chance must be within [0, 100].")
        return cls(
            id=proc_id,
            name=str(payload.get("name", proc_id)),
            trigger=trigger,
            chance=chance,
            effects=tuple(AbilityEffect.from_dict(item) for item in payload.get("effects", [])),
        )

    def fires_on(self, auto_attack: bool, crit: bool) -> bool:
        if self.trigger is ProcTrigger.ANY_HIT:
            return True
        if self.trigger is ProcTrigger.CRIT:
            return crit
        if self.trigger is ProcTrigger.AUTO_ATTACK_HIT:
            return auto_attack
        return not auto_attack


_ADJUSTABLE_ABILITY_FIELDS = {
    item.name for item in fields(AbilityDefinition) if item.name not in {"id", "name", "effects"}
}
_ADJUSTABLE_EFFECT_FIELDS = {
    "base",
    "ap_coefficient",
    "weapon_coefficient",
    "per_combo_point",
    "ap_per_combo_point",
    "per_extra_energy",
    "bonus_per_active_buff",
    "amount",
}


def _adjusted(current: Any, adjustment: AbilityAdjustment) -> Any:
    if adjustment.mode == "set":
        value = adjustment.value
    elif adjustment.mode == "mul":
        value = (current or 0) * adjustment.value
    else:
        value = (current or 0) + adjustment.value
    if isinstance(current, bool):
        return bool(value)
    if isinstance(current, int) or current is None:
        return int(round(value))
    return float(value)


def _effect_accepts(effect: AbilityEffect, attr: str) -> bool:
    if attr == "amount":
        return effect.kind in {EffectKind.GENERATE_ENERGY, EffectKind.SET_ENERGY, EffectKind.GENERATE_COMBO}
    return effect.kind in {EffectKind.DAMAGE, EffectKind.APPLY_BUFF} and effect.has_damage_terms


def _adjust_ability(ability: AbilityDefinition, adjustment: AbilityAdjustment) -> AbilityDefinition:
    if adjustment.field.startswith("effects."):
        attr = adjustment.field.split(".", 1)[1]
        if attr not in _ADJUSTABLE_EFFECT_FIELDS:
            raise ModelError(f"Effect field '{attr}' cannot be adjusted.")
        effects = tuple(
            replace(effect, **{attr: _adjusted(getattr(effect, attr), adjustment)})
            if _effect_accepts(effect, attr)
            else effect
            for effect in ability.effects
        )
        return replace(ability, effects=effects)

    if adjustment.field not in _ADJUSTABLE_ABILITY_FIELDS:
        raise ModelError(f"Ability field '{adjustment.field}' cannot be adjusted.")
    return replace(ability, **{adjustment.field: _adjusted(getattr(ability, adjustment.field), adjustment)})


class AbilityCatalog:
    """Read-only ability, buff and proc definitions, validated on construction."""

    def __init__(
        self,
        abilities: Iterable[AbilityDefinition],
        buffs: Iterable[BuffDefinition] = (),
        procs: Iterable[ProcDefinition] = (),
    ):
        issues: List[FieldIssue] = []
        self._abilities: Dict[str, AbilityDefinition] = {}
        self._buffs: Dict[str, BuffDefinition] = {}
        self._procs: Dict[str, ProcDefinition] = {}

        for label, target, items in (("buffs", self._buffs, buffs), ("abilities", self._abilities, abilities), ("procs", self._procs, procs)):
            for item in items:
                if item.id in target:
                    issues.append(FieldIssue(f"{label}.{item.id}", "duplicate id"))
                target[item.id] = item

        for ability in self._abilities.values():
            issues.extend(self._validate_ability(ability))
        for proc in self._procs.values():
            issues.extend(self._validate_effects(f"procs.{proc.id}", proc.effects))
        if issues:
            raise ConfigurationError(issues)

    def _validate_effects(self, prefix: str, effects: Sequence[AbilityEffect]) -> List[FieldIssue]:
        issues: List[FieldIssue] = []
        for index, effect in enumerate(effects):
            refs = ((effect.buff,) if effect.buff else tuple()) + effect.bonus_buffs
            for ref in refs:
                if ref not in self._buffs:
                    issues.append(FieldIssue(f"{prefix}.effects[{index}]", f"unknown buff '{ref}'"))
        return issues

    def _validate_ability(self, ability: AbilityDefinition) -> List[FieldIssue]:
        prefix = f"abilities.{ability.id}"
        issues: List[FieldIssue] = []
        for name in ("energy_cost", "mana_cost", "cooldown", "cast_time", "refund_on_avoid"):
            if getattr(ability, name) < 0.0:
                issues.append(FieldIssue(f"{prefix}.{name}", "must be >= 0"))
        if ability.refund_on_avoid > 1.0:
            issues.append(FieldIssue(f"{prefix}.refund_on_avoid", "must be a fraction within [0, 1]"))
        if ability.combo_points < 0 or ability.bonus_combo_on_crit < 0:
            issues.append(FieldIssue(f"{prefix}.combo_points", "must be >= 0"))
        if ability.charges is not None and ability.charges < 0:
            issues.append(FieldIssue(f"{prefix}.charges", "must be >= 0"))
        issues.extend(self._validate_effects(prefix, ability.effects))
        return issues

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AbilityCatalog":
        issues: List[FieldIssue] = []

        def parse(section: str, factory: Any) -> List[Any]:
            parsed: List[Any] = []
            for index, item in enumerate(payload.get(section, [])):
                try:
                    parsed.append(factory(item))
                except (ModelError, TypeError, ValueError) as exc:
                    issues.append(FieldIssue(f"{section}[{index}]", str(exc)))
            return parsed

        buffs = parse("buffs", BuffDefinition.from_dict)
        abilities = parse("abilities", AbilityDefinition.from_dict)
        procs = parse("procs", ProcDefinition.from_dict)
        if issues:
            raise ConfigurationError(issues)
        return cls(abilities, buffs, procs)

    def __contains__(self, ability_id: str) -> bool:
        return ability_id in self._abilities

    def __len__(self) -> int:
        return len(self._abilities)

    @property
    def ability_ids(self) -> Tuple[str, ...]:
        return tuple(self._abilities)

    @property
    def buff_ids(self) -> Tuple[str, ...]:
        return tuple(self._buffs)

    @property
    def proc_ids(self) -> Tuple[str, ...]:
        return tuple(self._procs)

    def ability(self, ability_id: str) -> AbilityDefinition:
        try:
            return self._abilities[ability_id]
        except KeyError as exc:
            raise KeyError(f"Unknown ability '{ability_id}'.") from exc

    def buff(self, buff_id: str) -> BuffDefinition:
        try:
            return self._buffs[buff_id]
        except KeyError as exc:
            raise KeyError(f"Unknown buff '{buff_id}'.") from exc

    def proc(self, proc_id: str) -> ProcDefinition:
        try:
            return self._procs[proc_id]
        except KeyError as exc:
            raise KeyError(f"Unknown proc '{proc_id}'.") from exc

    def abilities(self) -> Tuple[AbilityDefinition, ...]:
        return tuple(self._abilities.values())

    def buffs(self) -> Tuple[BuffDefinition, ...]:
        return tuple(self._buffs.values())

    def procs(self) -> Tuple[ProcDefinition, ...]:
        return tuple(self._procs.values())

    def with_adjustments(self, adjustments: Iterable[AbilityAdjustment]) -> "AbilityCatalog":
        abilities = dict(self._abilities)
        issues: List[FieldIssue] = []
        for adjustment in adjustments:
            current = abilities.get(adjustment.ability_id)
            if current is None:
                issues.append(FieldIssue(f"adjustments.{adjustment.ability_id}", "unknown ability"))
                continue
            try:
                abilities[adjustment.ability_id] = _adjust_ability(current, adjustment)
            except ModelError as exc:
                issues.append(FieldIssue(f"adjustments.{adjustment.ability_id}.{adjustment.field}", str(exc)))
        if issues:
            raise ConfigurationError(issues)
        return AbilityCatalog(abilities.values(), self._buffs.values(), self._procs.values())

    def with_buffs(self, buffs: Iterable[BuffDefinition]) -> "AbilityCatalog":
        merged = dict(self._buffs)
        merged.update({buff.id: buff for buff in buffs})
        return AbilityCatalog(self._abilities.values(), merged.values(), self._procs.values())

    def with_procs(self, procs: Iterable[ProcDefinition]) -> "AbilityCatalog":
        merged = dict(self._procs)
        merged.update({proc.id: proc for proc in procs})
        return AbilityCatalog(self._abilities.values(), self._buffs.values(), merged.values())
