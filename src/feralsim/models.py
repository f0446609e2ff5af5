from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from .conditions import Condition


class ModelError(ValueError):
    """Raised for malformed definition payloads."""


@dataclass(slots=True, frozen=True)
class FieldIssue:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ConfigurationError(ModelError):
    """Raised when a profile or catalog is invalid. Carries every offending field."""

    def __init__(self, issues: Sequence[FieldIssue] | str):
        if isinstance(issues, str):
            issues = (FieldIssue(field="<root>", message=issues),)
        self.issues: Tuple[FieldIssue, ...] = tuple(issues)
        super().__init__("; ".join(str(issue) for issue in self.issues) or "invalid configuration")


class StackMode(str, Enum):
    ADD = "add"
    MULT = "mult"
    OVERRIDE = "override"


class ValueType(str, Enum):
    FLAT = "flat"
    PERCENT = "percent"
    MULTIPLIER = "multiplier"


# Stats a contribution may target. Percent stats (crit, hit, haste) are in percent points.
STAT_NAMES: Tuple[str, ...] = (
    "strength",
    "agility",
    "attack_power",
    "crit",
    "hit",
    "haste",
    "attack_speed",
    "weapon_min",
    "weapon_max",
    "weapon_skill",
    "armor_penetration",
)


def _require(payload: Dict[str, Any], key: str) -> Any:
    if key not in payload:
        raise ModelError(f"Missing required field: {key}")
    return payload[key]


def _stable_float(value: float, digits: int = 10) -> float:
    rounded = round(float(value), digits)
    # Normalize signed zero to keep deterministic JSON across runtimes.
    return 0.0 if rounded == 0.0 else rounded


def _stabilize_numeric_payload(payload: Any, digits: int = 10) -> Any:
    if isinstance(payload, float):
        return _stable_float(payload, digits=digits)
    if isinstance(payload, (list, tuple)):
        return [_stabilize_numeric_payload(item, digits=digits) for item in payload]
    if isinstance(payload, dict):
        return {key: _stabilize_numeric_payload(value, digits=digits) for key, value in payload.items()}
    return payload


def _normalize_stat(value: str) -> str:
    stat = str(value).strip().lower()
    if stat not in STAT_NAMES:
        raise ModelError(f"Unsupported stat '{value}'. Use one of: {', '.join(STAT_NAMES)}.")
    return stat


def _normalize_stack_mode(value: str) -> StackMode:
    try:
        return StackMode(value)
    except ValueError as exc:
        raise ModelError(f"Unsupported stack mode '{value}'. Use add, mult or override.") from exc


def _normalize_value_type(value: str) -> ValueType:
    try:
        return ValueType(value)
    except ValueError as exc:
        raise ModelError(f"Unsupported value type '{value}'. Use flat, percent, multiplier.") from exc


def _to_float(payload: Dict[str, Any], key: str, default: float = 0.0) -> float:
    try:
        return float(payload.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ModelError(f"Field '{key}' must be a number.") from exc


@dataclass(slots=True, frozen=True)
class StatEffect:
    stat: str
    value_type: ValueType
    value: float
    stack_mode: StackMode = StackMode.ADD
    note: str = ""

    @classmethod
    def flat(cls, stat: str, value: float, note: str = "") -> "StatEffect":
        return cls(stat=_normalize_stat(stat), value_type=ValueType.FLAT, value=float(value), note=note)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StatEffect":
        try:
            stat = _normalize_stat(_require(payload, "stat"))
            value_type = _normalize_value_type(str(payload.get("value_type", "flat")).lower())
            value = float(_require(payload, "value"))
        except (TypeError, ValueError) as exc:
            raise ModelError(f"Invalid effect definition: {exc}") from exc

        stack_mode = _normalize_stack_mode(str(payload.get("stack", StackMode.ADD.value)).lower())
        if value_type is ValueType.MULTIPLIER and stack_mode is not StackMode.MULT:
            stack_mode = StackMode.MULT
        return cls(
            stat=stat,
            value_type=value_type,
            value=value,
            stack_mode=stack_mode,
            note=str(payload.get("note", "")),
        )

    def scaled(self, factor: float) -> "StatEffect":
        if self.value_type is ValueType.MULTIPLIER:
            return StatEffect(self.stat, self.value_type, self.value ** factor, self.stack_mode, self.note)
        return StatEffect(self.stat, self.value_type, self.value * factor, self.stack_mode, self.note)


def effects_from_shorthand(payload: Dict[str, Any]) -> Tuple[StatEffect, ...]:
    """Turns ``{"agility": 25, "crit": 2}`` into flat stat effects."""
    effects: List[StatEffect] = []
    for stat, value in payload.items():
        try:
            effects.append(StatEffect.flat(stat, float(value)))
        except (TypeError, ValueError) as exc:
            raise ModelError(f"Invalid stat '{stat}': {exc}") from exc
    return tuple(effects)


@dataclass(slots=True, frozen=True)
class BaseStats:
    """Character stats before gear. ``attack_power`` and ``crit`` exclude attribute-derived parts."""

    strength: float = 0.0
    agility: float = 0.0
    attack_power: float = 0.0
    crit: float = 0.0
    hit: float = 0.0
    haste: float = 0.0
    weapon_min: float = 0.0
    weapon_max: float = 0.0
    weapon_speed: float = 1.0
    weapon_skill: float = 300.0
    armor_penetration: float = 0.0
    level: int = 60

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "BaseStats":
        speed = _to_float(payload, "weapon_speed", 1.0)
        if speed <= 0.0:
            raise ModelError("Field 'weapon_speed' must be > 0.")
        weapon_min = _to_float(payload, "weapon_min", 0.0)
        weapon_max = _to_float(payload, "weapon_max", weapon_min)
        if weapon_max < weapon_min:
            raise ModelError("Field 'weapon_max' must be >= 'weapon_min'.")
        return cls(
            strength=_to_float(payload, "strength"),
            agility=_to_float(payload, "agility"),
            attack_power=_to_float(payload, "attack_power"),
            crit=_to_float(payload, "crit"),
            hit=_to_float(payload, "hit"),
            haste=_to_float(payload, "haste"),
            weapon_min=weapon_min,
            weapon_max=weapon_max,
            weapon_speed=speed,
            weapon_skill=_to_float(payload, "weapon_skill", 300.0),
            armor_penetration=_to_float(payload, "armor_penetration"),
            level=int(payload.get("level", 60)),
        )


@dataclass(slots=True, frozen=True)
class TargetDefinition:
    name: str = "Target"
    level: int = 63
    armor: float = 3731.0
    can_bleed: bool = True

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "TargetDefinition":
        armor = _to_float(payload, "armor", 3731.0)
        if armor < 0.0:
            raise ModelError("Field 'armor' must be >= 0.")
        return cls(
            name=str(payload.get("name", "Target")),
            level=int(payload.get("level", 63)),
            armor=armor,
            can_bleed=bool(payload.get("can_bleed", True)),
        )


@dataclass(slots=True, frozen=True)
class BossPreset:
    group: str
    name: str
    armor: float

    @property
    def key(self) -> str:
        return f"{self.group}/{self.name}"

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "BossPreset":
        return cls(
            group=str(_require(payload, "group")),
            name=str(_require(payload, "name")),
            armor=float(_require(payload, "armor")),
        )


@dataclass(slots=True, frozen=True)
class AbilityAdjustment:
    """Changes one numeric field of an ability. ``field`` may be ``effects.<attr>``."""

    ability_id: str
    field: str
    value: float
    mode: str = "add"

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AbilityAdjustment":
        mode = str(payload.get("mode", "add")).lower()
        if mode not in {"add", "set", "mul"}:
            raise ModelError(f"Unsupported adjustment mode '{mode}'. Use add, set or mul.")
        return cls(
            ability_id=str(_require(payload, "ability")),
            field=str(_require(payload, "field")),
            value=float(_require(payload, "value")),
            mode=mode,
        )


@dataclass(slots=True, frozen=True)
class Modifier:
    """A talent, consumable, raid buff or special item selectable by a profile."""

    id: str
    name: str
    category: str
    effects: Sequence[StatEffect] = field(default_factory=tuple)
    adjustments: Sequence[AbilityAdjustment] = field(default_factory=tuple)
    procs: Tuple[str, ...] = tuple()
    condition: Optional[Condition] = None
    max_rank: int = 1
    notes: str = ""

    @classmethod
    def from_dict(cls, category: str, payload: Dict[str, Any]) -> "Modifier":
        from .conditions import Condition

        try:
            modifier_id = str(payload["id"])
        except KeyError as exc:
            raise ModelError(f"Missing id in modifier for category '{category}': {exc}") from exc

        effects = tuple(StatEffect.from_dict(item) for item in payload.get("effects", []))
        if "stats" in payload:
            effects = effects + effects_from_shorthand(dict(payload["stats"]))
        adjustments = tuple(AbilityAdjustment.from_dict(item) for item in payload.get("adjustments", []))
        max_rank = int(payload.get("max_rank", 1))
        if max_rank < 1:
            raise ModelError(f"Modifier '{modifier_id}' in category '{category}' must have max_rank >= 1.")

        raw_condition = payload.get("condition")
        return cls(
            id=modifier_id,
            name=str(payload.get("name", modifier_id)),
            category=category,
            effects=effects,
            adjustments=adjustments,
            procs=tuple(str(item) for item in payload.get("procs", [])),
            condition=Condition.from_dict(raw_condition) if raw_condition is not None else None,
            max_rank=max_rank,
            notes=str(payload.get("notes", "")),
        )


def ensure_unique_ids(items: Iterable[str], label: str) -> None:
    seen: set[str] = set()
    for item in items:
        if item in seen:
            raise ModelError(f"Duplicate {label} id: {item}")
        seen.add(item)
