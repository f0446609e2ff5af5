from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict

from .events import InternalConsistencyError
from .models import ModelError, _to_float


class InsufficientResource(InternalConsistencyError):
    """Raised when a pool is asked to spend more than it holds."""


class ResourcePool:
    """A bounded amount in [0, maximum] with optional continuous regeneration."""

    __slots__ = ("name", "maximum", "current", "regen_per_second")

    def __init__(self, name: str, maximum: float, current: float | None = None, regen_per_second: float = 0.0):
        if maximum < 0.0:
            raise ModelError(f"Resource '{name}' maximum must be >= 0.")
        self.name = name
        self.maximum = float(maximum)
        self.current = self.maximum if current is None else min(self.maximum, max(0.0, float(current)))
        self.regen_per_second = float(regen_per_second)

    def __repr__(self) -> str:
        return f"ResourcePool({self.name!r}, {self.current:.2f}/{self.maximum:.2f})"

    def regenerate(self, elapsed: float, haste_factor: float = 1.0) -> float:
        if elapsed <= 0.0 or self.regen_per_second <= 0.0:
            return 0.0
        return self.generate(self.regen_per_second * haste_factor * elapsed)

    def can_afford(self, amount: float) -> bool:
        return amount <= self.current + 1e-9

    def spend(self, amount: float, at: float | None = None) -> float:
        if amount < 0.0:
            raise InsufficientResource(f"Cannot spend negative {self.name} ({amount}).", at=at)
        if not self.can_afford(amount):
            raise InsufficientResource(
                f"Spending {amount:.2f} {self.name} with only {self.current:.2f} available.",
                at=at,
            )
        self.current = max(0.0, self.current - amount)
        return amount

    def generate(self, amount: float) -> float:
        """Adds up to ``amount`` and returns what was actually gained."""
        if amount <= 0.0:
            return 0.0
        before = self.current
        self.current = min(self.maximum, self.current + amount)
        return self.current - before

    def set(self, value: float) -> float:
        before = self.current
        self.current = min(self.maximum, max(0.0, float(value)))
        return self.current - before

    def time_to_reach(self, amount: float, haste_factor: float = 1.0) -> float:
        if self.current >= amount:
            return 0.0
        if amount > self.maximum or self.regen_per_second <= 0.0:
            return math.inf
        return (amount - self.current) / (self.regen_per_second * haste_factor)


class FinisherPool:
    """Combo points: integer counter capped at ``maximum``."""

    __slots__ = ("maximum", "current")

    def __init__(self, maximum: int = 5):
        self.maximum = int(maximum)
        self.current = 0

    def add(self, amount: int) -> int:
        before = self.current
        self.current = min(self.maximum, self.current + max(0, int(amount)))
        return self.current - before

    def reset(self) -> int:
        spent = self.current
        self.current = 0
        return spent


@dataclass(slots=True, frozen=True)
class EnergyModel:
    mode: str = "tick"
    tick_amount: float = 20.0
    tick_interval: float = 2.0
    maximum: float = 100.0
    initial: float = 100.0
    haste_scaled: bool = False

    @property
    def rate(self) -> float:
        return self.tick_amount / self.tick_interval

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EnergyModel":
        mode = str(payload.get("mode", "tick")).lower()
        if mode not in {"tick", "continuous"}:
            raise ModelError(f"Unsupported energy mode '{mode}'. Use tick or continuous.")
        interval = _to_float(payload, "tick_interval", 2.0)
        if interval <= 0.0:
            raise ModelError("Field 'tick_interval' must be > 0.")
        maximum = _to_float(payload, "maximum", 100.0)
        if maximum <= 0.0:
            raise ModelError("Field 'maximum' must be > 0.")
        amount = _to_float(payload, "tick_amount", 20.0)
        if amount < 0.0:
            raise ModelError("Field 'tick_amount' must be >= 0.")
        return cls(
            mode=mode,
            tick_amount=amount,
            tick_interval=interval,
            maximum=maximum,
            initial=min(maximum, max(0.0, _to_float(payload, "initial", maximum))),
            haste_scaled=bool(payload.get("haste_scaled", False)),
        )

    def build_pool(self) -> ResourcePool:
        regen = self.rate if self.mode == "continuous" else 0.0
        return ResourcePool("energy", self.maximum, self.initial, regen_per_second=regen)
