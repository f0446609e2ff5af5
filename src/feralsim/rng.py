from __future__ import annotations

import random
from typing import Iterable, List, Optional, Protocol, Sequence

# Multiplier used to derive independent per-trial seeds from one master seed.
TRIAL_SEED_STRIDE = 1009


class RNGSource(Protocol):
    def uniform(self) -> float: ...

    def chance(self, percent: float) -> bool: ...

    def between(self, low: float, high: float) -> float: ...


class SeededRNG:
    """Uniform draws in [0, 1) backed by :class:`random.Random`.

    ``seed=None`` gives an unseeded (system entropy) stream.
    """

    __slots__ = ("seed", "_random", "draws")

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._random = random.Random(seed)
        self.draws = 0

    def uniform(self) -> float:
        self.draws += 1
        return self._random.random()

    def chance(self, percent: float) -> bool:
        if percent <= 0.0:
            return False
        return self.uniform() * 100.0 < percent

    def between(self, low: float, high: float) -> float:
        if high <= low:
            return low
        return low + (high - low) * self.uniform()


class ScriptedRNG:
    """Replays a fixed list of draws, cycling when ``repeat`` is set."""

    __slots__ = ("values", "repeat", "_index")

    def __init__(self, values: Sequence[float], repeat: bool = True):
        if not values:
            raise ValueError("ScriptedRNG requires at least one value.")
        for value in values:
            if not 0.0 <= float(value) < 1.0:
                raise ValueError(f"Scripted draw {value!r} is outside [0, 1).")
        self.values: List[float] = [float(value) for value in values]
        self.repeat = repeat
        self._index = 0

    @classmethod
    def constant(cls, value: float) -> "ScriptedRNG":
        return cls([value])

    @property
    def draws(self) -> int:
        return self._index

    def uniform(self) -> float:
        if self._index >= len(self.values):
            if not self.repeat:
                raise IndexError("ScriptedRNG exhausted.")
            position = self._index % len(self.values)
        else:
            position = self._index
        self._index += 1
        return self.values[position]

    def chance(self, percent: float) -> bool:
        if percent <= 0.0:
            return False
        return self.uniform() * 100.0 < percent

    def between(self, low: float, high: float) -> float:
        if high <= low:
            return low
        return low + (high - low) * self.uniform()


def trial_seed(master_seed: Optional[int], trial_index: int) -> Optional[int]:
    if master_seed is None:
        return None
    return int(master_seed) + int(trial_index) * TRIAL_SEED_STRIDE


def trial_seeds(master_seed: Optional[int], count: int) -> Iterable[Optional[int]]:
    return (trial_seed(master_seed, index) for index in range(count))
