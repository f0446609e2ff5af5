"""Timed modifiers: buffs, debuffs, procs and damage-over-time effects.

Damage bonuses multiply across categories and add within one category, so two
independent +10% sources give 1.21 while two +10% instances of one source give 1.2.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import ModelError, StatEffect, _require, _to_float, effects_from_shorthand


class StackingRule(str, Enum):
    REFRESH = "refresh"
    STACK_INDEPENDENT = "stack_independent"
    NONE = "none"


@dataclass(slots=True, frozen=True)
class BuffDefinition:
    id: str
    name: str
    duration: float
    stacking: StackingRule = StackingRule.REFRESH
    max_stacks: int = 1
    category: str = ""
    damage_bonus: float = 0.0
    schools: Tuple[str, ...] = tuple()
    stat_effects: Tuple[StatEffect, ...] = tuple()
    cost_multiplier: float = 1.0
    consumed_on_use: bool = False
    tick_interval: float = 0.0
    tick_school: str = "bleed"

    @property
    def periodic(self) -> bool:
        return self.tick_interval > 0.0

    @property
    def tick_count(self) -> int:
        if not self.periodic or math.isinf(self.duration):
            return 0
        return max(1, int(round(self.duration / self.tick_interval)))

    @property
    def source(self) -> str:
        return self.category or self.id

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "BuffDefinition":
        buff_id = str(_require(payload, "id"))
        raw_duration = payload.get("duration")
        duration = math.inf if raw_duration is None else _to_float(payload, "duration")
        if duration <= 0.0:
            raise ModelError(f"Buff '{buff_id}' duration must be > 0.")

        try:
            stacking = StackingRule(str(payload.get("stacking", StackingRule.REFRESH.value)).lower())
        except ValueError as exc:
            raise ModelError(f"Buff '{buff_id}' has unsupported stacking rule '{payload.get('stacking')}'.") from exc

        max_stacks = int(payload.get("max_stacks", 1))
        if max_stacks < 1:
            raise ModelError(f"Buff '{buff_id}' max_stacks must be >= 1.")
        cost_multiplier = _to_float(payload, "cost_multiplier", 1.0)
        if cost_multiplier < 0.0:
            raise ModelError(f"Buff '{buff_id}' cost_multiplier must be >= 0.")
        tick_interval = _to_float(payload, "tick_interval", 0.0)
        if tick_interval < 0.0:
            raise ModelError(f"Buff '{buff_id}' tick_interval must be >= 0.")
        if tick_interval > 0.0 and math.isinf(duration):
            raise ModelError(f"Periodic buff '{buff_id}' needs a finite duration.")

        effects = tuple(StatEffect.from_dict(item) for item in payload.get("effects", []))
        if "stats" in payload:
            effects = effects + effects_from_shorthand(dict(payload["stats"]))

        return cls(
            id=buff_id,
            name=str(payload.get("name", buff_id)),
            duration=duration,
            stacking=stacking,
            max_stacks=max_stacks,
            category=str(payload.get("category", "")),
            damage_bonus=_to_float(payload, "damage_bonus", 0.0),
            schools=tuple(str(item) for item in payload.get("schools", [])),
            stat_effects=effects,
            cost_multiplier=cost_multiplier,
            consumed_on_use=bool(payload.get("consumed_on_use", False)),
            tick_interval=tick_interval,
            tick_school=str(payload.get("tick_school", "bleed")),
        )


@dataclass(slots=True)
class BuffInstance:
    buff_id: str
    uid: int
    applied_at: float
    expires_at: float
    stacks: int = 1
    magnitude: float = 0.0
    order: int = 0
    ticks_done: int = field(default=0)

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


class BuffTracker:
    def __init__(self) -> None:
        self._instances: Dict[str, List[BuffInstance]] = {}
        self._definitions: Dict[str, BuffDefinition] = {}
        self._order = 0
        self._uid = 0

    def __contains__(self, buff_id: str) -> bool:
        return self.is_active(buff_id)

    def _new_instance(self, definition: BuffDefinition, now: float, magnitude: float) -> BuffInstance:
        self._uid += 1
        self._order += 1
        return BuffInstance(
            buff_id=definition.id,
            uid=self._uid,
            applied_at=now,
            expires_at=now + definition.duration,
            magnitude=magnitude,
            order=self._order,
        )

    def apply(self, definition: BuffDefinition, now: float, magnitude: float = 0.0) -> Optional[BuffInstance]:
        """Applies ``definition`` and returns the touched instance, or ``None`` if nothing changed."""
        self._definitions[definition.id] = definition
        current = self._instances.get(definition.id)

        if not current:
            instance = self._new_instance(definition, now, magnitude)
            self._instances[definition.id] = [instance]
            return instance

        if definition.stacking is StackingRule.NONE:
            return None

        if definition.stacking is StackingRule.REFRESH:
            instance = current[0]
            instance.expires_at = now + definition.duration
            instance.stacks = min(definition.max_stacks, instance.stacks + 1)
            instance.magnitude = magnitude
            return instance

        instance = self._new_instance(definition, now, magnitude)
        if len(current) >= definition.max_stacks:
            oldest = min(current, key=lambda item: (item.applied_at, item.order))
            current.remove(oldest)
        current.append(instance)
        return instance

    def tick(self, now: float) -> List[BuffInstance]:
        """Removes every instance with expiry <= ``now``; returns them in declaration order."""
        expired: List[BuffInstance] = []
        for buff_id in list(self._instances):
            keep: List[BuffInstance] = []
            for instance in self._instances[buff_id]:
                (expired if instance.expires_at <= now else keep).append(instance)
            if keep:
                self._instances[buff_id] = keep
            else:
                del self._instances[buff_id]
        expired.sort(key=lambda item: item.order)
        return expired

    def is_active(self, buff_id: str) -> bool:
        return bool(self._instances.get(buff_id))

    def instances(self, buff_id: str) -> Tuple[BuffInstance, ...]:
        return tuple(self._instances.get(buff_id, ()))

    def find(self, buff_id: str, uid: int) -> Optional[BuffInstance]:
        for instance in self._instances.get(buff_id, ()):
            if instance.uid == uid:
                return instance
        return None

    def active_ids(self) -> Tuple[str, ...]:
        return tuple(self._instances)

    def definition(self, buff_id: str) -> Optional[BuffDefinition]:
        return self._definitions.get(buff_id)

    def remaining(self, buff_id: str, now: float) -> float:
        instances = self._instances.get(buff_id)
        if not instances:
            return 0.0
        return max(instance.remaining(now) for instance in instances)

    def stacks(self, buff_id: str) -> int:
        instances = self._instances.get(buff_id)
        if not instances:
            return 0
        definition = self._definitions[buff_id]
        if definition.stacking is StackingRule.STACK_INDEPENDENT:
            return len(instances)
        return instances[0].stacks

    def dispel(self, buff_id: str) -> List[BuffInstance]:
        return self._instances.pop(buff_id, [])

    def consume(self, buff_id: str) -> bool:
        """Removes one stack (or the oldest instance). Returns whether anything was consumed."""
        instances = self._instances.get(buff_id)
        if not instances:
            return False
        definition = self._definitions[buff_id]
        if definition.stacking is not StackingRule.STACK_INDEPENDENT and instances[0].stacks > 1:
            instances[0].stacks -= 1
            return True
        instances.pop(0)
        if not instances:
            del self._instances[buff_id]
        return True

    def next_expiry(self) -> Optional[float]:
        expiries = [instance.expires_at for items in self._instances.values() for instance in items]
        finite = [value for value in expiries if not math.isinf(value)]
        return min(finite) if finite else None

    def _active_definitions(self) -> Iterable[Tuple[BuffDefinition, int]]:
        for buff_id in self._instances:
            yield self._definitions[buff_id], self.stacks(buff_id)

    def damage_multiplier(self, school: str = "physical") -> float:
        per_category: Dict[str, float] = {}
        for definition, stacks in self._active_definitions():
            if not definition.damage_bonus:
                continue
            if definition.schools and school not in definition.schools:
                continue
            per_category[definition.source] = per_category.get(definition.source, 0.0) + definition.damage_bonus * stacks
        return math.prod(1.0 + bonus for bonus in per_category.values())

    def cost_multiplier(self) -> float:
        return math.prod(definition.cost_multiplier for definition, _ in self._active_definitions())

    def cost_consumers(self) -> Tuple[str, ...]:
        return tuple(
            definition.id
            for definition, _ in self._active_definitions()
            if definition.consumed_on_use and definition.cost_multiplier != 1.0
        )

    def stat_effects(self) -> List[Tuple[str, Sequence[StatEffect]]]:
        result: List[Tuple[str, Sequence[StatEffect]]] = []
        for definition, stacks in self._active_definitions():
            if definition.stat_effects:
                result.append((definition.id, tuple(effect.scaled(stacks) for effect in definition.stat_effects)))
        return result

    def has_stat_effects(self, buff_id: str) -> bool:
        definition = self._definitions.get(buff_id)
        return bool(definition and definition.stat_effects)
