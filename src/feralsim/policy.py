from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from .conditions import ALWAYS, Condition, StateView, evaluate
from .models import ConfigurationError, FieldIssue, ModelError, _require


class DecisionContext(StateView, Protocol):
    def usable(self, ability_id: str) -> bool: ...

    def available_at(self, ability_id: str) -> Optional[float]: ...

    def energy_ready_at(self, amount: float) -> Optional[float]: ...


# Marks a condition that already holds when combining readiness times.
_HOLDS = -math.inf


def condition_ready_at(condition: Condition, context: DecisionContext) -> Optional[float]:
    """Earliest time ``condition`` can hold through regeneration alone.

    Returns ``None`` when nothing passive will make it true, such as a missing
    buff or a combo point threshold. Those change only on other events.
    """
    if evaluate(condition, context):
        return _HOLDS
    if condition.kind == "energy_at_least":
        return context.energy_ready_at(condition.value)
    if condition.kind in {"all_of", "any_of"}:
        times = [condition_ready_at(child, context) for child in condition.children]
        if condition.kind == "all_of":
            return None if any(item is None for item in times) else max(times)
        known = [item for item in times if item is not None]
        return min(known) if known else None
    return None


@dataclass(slots=True, frozen=True)
class Rule:
    ability_id: str
    condition: Condition = ALWAYS
    label: str = ""

    @classmethod
    def from_dict(cls, payload: Any) -> "Rule":
        if isinstance(payload, str):
            return cls(ability_id=payload)
        if not isinstance(payload, dict):
            raise ModelError(f"Rule must be a string or mapping, got {type(payload).__name__}.")
        ability_id = str(_require(payload, "ability"))
        raw = payload.get("when", payload.get("condition"))
        return cls(
            ability_id=ability_id,
            condition=Condition.from_dict(raw) if raw is not None else ALWAYS,
            label=str(payload.get("label", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ability": self.ability_id}
        if self.condition != ALWAYS:
            payload["when"] = self.condition.to_dict()
        if self.label:
            payload["label"] = self.label
        return payload


@dataclass(slots=True, frozen=True)
class UseAbility:
    ability_id: str
    rule_index: int


@dataclass(slots=True, frozen=True)
class Wait:
    """No rule fired. ``until`` is the next time a blocked rule may become usable."""

    until: Optional[float] = None


Decision = Union[UseAbility, Wait]


class DecisionPolicy:
    """First rule whose condition holds and whose ability is usable wins."""

    def __init__(self, rules: Sequence[Rule] = ()):
        self.rules: Tuple[Rule, ...] = tuple(rules)

    def __len__(self) -> int:
        return len(self.rules)

    @classmethod
    def from_list(cls, payload: Iterable[Any]) -> "DecisionPolicy":
        rules: List[Rule] = []
        issues: List[FieldIssue] = []
        for index, item in enumerate(payload):
            try:
                rules.append(Rule.from_dict(item))
            except (ModelError, TypeError, ValueError) as exc:
                issues.append(FieldIssue(f"rotation[{index}]", str(exc)))
        if issues:
            raise ConfigurationError(issues)
        return cls(rules)

    def validate(self, known_abilities: Iterable[str]) -> List[FieldIssue]:
        known = set(known_abilities)
        return [
            FieldIssue(f"rotation[{index}].ability", f"unknown ability '{rule.ability_id}'")
            for index, rule in enumerate(self.rules)
            if rule.ability_id not in known
        ]

    def decide(self, context: DecisionContext) -> Decision:
        wake_times: List[float] = []
        for index, rule in enumerate(self.rules):
            holds_at = condition_ready_at(rule.condition, context)
            if holds_at is None:
                continue
            if context.usable(rule.ability_id):
                if holds_at == _HOLDS:
                    return UseAbility(ability_id=rule.ability_id, rule_index=index)
                wake_times.append(holds_at)
                continue
            ready_at = context.available_at(rule.ability_id)
            if ready_at is not None:
                wake_times.append(max(holds_at, ready_at))
        return Wait(until=min(wake_times) if wake_times else None)

    def to_list(self) -> List[Dict[str, Any]]:
        return [rule.to_dict() for rule in self.rules]
