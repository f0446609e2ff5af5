"""Tagged predicates shared by conditional stat contributions and policy rules.

A condition is plain data (``kind`` plus a reference, a threshold and child
conditions) and is evaluated against a :class:`StateView`. Nothing here looks
at engine internals, which keeps stat resolution a pure function of the view.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Protocol, Tuple

from .models import ModelError

# Regenerated energy lands on a threshold only up to float rounding.
RESOURCE_TOLERANCE = 1e-6


class StateView(Protocol):
    def energy(self) -> float: ...

    def mana(self) -> float: ...

    def combo_points(self) -> int: ...

    def buff_active(self, buff_id: str) -> bool: ...

    def buff_remaining(self, buff_id: str) -> float: ...

    def buff_stacks(self, buff_id: str) -> int: ...

    def cooldown_ready(self, ability_id: str) -> bool: ...

    def execute_phase(self) -> bool: ...

    def stealthed(self) -> bool: ...

    def time_remaining(self) -> float: ...

    def flag(self, name: str) -> bool: ...


@dataclass(slots=True, frozen=True)
class Condition:
    kind: str = "always"
    ref: str = ""
    value: float = 0.0
    children: Tuple["Condition", ...] = tuple()

    @classmethod
    def from_dict(cls, payload: Any) -> "Condition":
        if payload is None:
            return ALWAYS
        if isinstance(payload, str):
            payload = {"kind": payload}
        if not isinstance(payload, dict):
            raise ModelError(f"Condition must be a string or mapping, got {type(payload).__name__}.")

        kind = str(payload.get("kind", "always")).strip().lower()
        if kind not in _EVALUATORS:
            raise ModelError(f"Unsupported condition kind '{kind}'.")

        children = tuple(cls.from_dict(item) for item in payload.get("conditions", []))
        if "condition" in payload:
            children = children + (cls.from_dict(payload["condition"]),)
        if kind in _COMBINATORS and not children:
            raise ModelError(f"Condition '{kind}' requires nested 'conditions'.")
        if kind in _NEEDS_REF and not str(payload.get("ref", "")).strip():
            raise ModelError(f"Condition '{kind}' requires 'ref'.")

        try:
            value = float(payload.get("value", 0.0))
        except (TypeError, ValueError) as exc:
            raise ModelError(f"Condition '{kind}' has non-numeric value.") from exc
        return cls(kind=kind, ref=str(payload.get("ref", "")).strip(), value=value, children=children)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind}
        if self.ref:
            payload["ref"] = self.ref
        if self.value:
            payload["value"] = self.value
        if self.children:
            payload["conditions"] = [child.to_dict() for child in self.children]
        return payload

    def references(self, kind_prefix: str) -> Tuple[str, ...]:
        refs: Tuple[str, ...] = (self.ref,) if self.ref and self.kind.startswith(kind_prefix) else tuple()
        for child in self.children:
            refs += child.references(kind_prefix)
        return refs


ALWAYS = Condition()


_EVALUATORS: Dict[str, Callable[[Condition, StateView], bool]] = {
    "always": lambda c, v: True,
    "never": lambda c, v: False,
    "energy_at_least": lambda c, v: v.energy() + RESOURCE_TOLERANCE >= c.value,
    "energy_below": lambda c, v: v.energy() < c.value,
    "energy_at_most": lambda c, v: v.energy() <= c.value,
    "mana_at_least": lambda c, v: v.mana() >= c.value,
    "combo_points_at_least": lambda c, v: v.combo_points() >= c.value,
    "combo_points_below": lambda c, v: v.combo_points() < c.value,
    "buff_active": lambda c, v: v.buff_active(c.ref),
    "buff_inactive": lambda c, v: not v.buff_active(c.ref),
    "buff_remaining_below": lambda c, v: v.buff_remaining(c.ref) < c.value,
    "buff_stacks_at_least": lambda c, v: v.buff_stacks(c.ref) >= c.value,
    "cooldown_ready": lambda c, v: v.cooldown_ready(c.ref),
    "execute_phase": lambda c, v: v.execute_phase(),
    "stealthed": lambda c, v: v.stealthed(),
    "time_remaining_below": lambda c, v: v.time_remaining() < c.value,
    "time_remaining_at_least": lambda c, v: v.time_remaining() >= c.value,
    "flag": lambda c, v: v.flag(c.ref),
    "form": lambda c, v: v.flag(f"form:{c.ref}"),
    "all_of": lambda c, v: all(evaluate(child, v) for child in c.children),
    "any_of": lambda c, v: any(evaluate(child, v) for child in c.children),
    "not": lambda c, v: not any(evaluate(child, v) for child in c.children),
}

_COMBINATORS = {"all_of", "any_of", "not"}
_NEEDS_REF = {
    "buff_active",
    "buff_inactive",
    "buff_remaining_below",
    "buff_stacks_at_least",
    "cooldown_ready",
    "flag",
    "form",
}


def evaluate(condition: Condition | None, view: StateView) -> bool:
    if condition is None:
        return True
    return _EVALUATORS[condition.kind](condition, view)
