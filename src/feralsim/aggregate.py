"""Runs many independent trials and reduces them into DPS statistics.

Each trial gets its own engine, RNG stream, event queue and buff tracker; only the
immutable setup is shared. Trials may run inline or on a ``concurrent.futures``
pool, and cancellation is checked between batches so partial results stay valid.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from .engine import DamageRecord, SimulationEngine, TrialResult
from .events import InternalConsistencyError
from .models import _stabilize_numeric_payload
from .rng import trial_seed

logger = logging.getLogger(__name__)

DEFAULT_TRIALS = 1000


class TrialFactory(Protocol):
    def __call__(self, trial_index: int, seed: Optional[int], record_timeline: bool = False) -> SimulationEngine: ...


class CancelToken:
    """Cooperative cancellation shared between a caller and a running aggregation."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(slots=True, frozen=True)
class TrialFailure:
    index: int
    seed: Optional[int]
    message: str
    at: Optional[float] = None
    event: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "seed": self.seed, "message": self.message, "at": self.at, "event": self.event}


TrialOutcome = Tuple[int, Union[TrialResult, TrialFailure]]


def run_trial(factory: TrialFactory, index: int, seed: Optional[int], record_timeline: bool) -> TrialOutcome:
    """Runs one trial. Module level so process pools can pickle it."""
    try:
        engine = factory(index, seed, record_timeline)
        return index, engine.run()
    except InternalConsistencyError as exc:
        return index, TrialFailure(
            index=index,
            seed=seed,
            message=str(exc),
            at=exc.at,
            event=exc.event.kind.value if exc.event is not None else None,
        )


@dataclass(slots=True, frozen=True)
class AggregateSummary:
    trials_requested: int
    trials_completed: int
    duration: float
    seed: Optional[int]
    mean_dps: float
    std_dps: float
    std_error: float
    min_dps: float
    max_dps: float
    mean_damage: float
    abilities: Dict[str, Dict[str, float]]
    procs: Dict[str, float]
    energy_wasted: float
    timeline: Tuple[DamageRecord, ...] = tuple()
    failures: Tuple[TrialFailure, ...] = tuple()
    cancelled: bool = False
    trial_dps: Tuple[float, ...] = field(default_factory=tuple)

    @property
    def confidence_95(self) -> Tuple[float, float]:
        spread = 1.96 * self.std_error
        return (self.mean_dps - spread, self.mean_dps + spread)

    def ability_share(self) -> Dict[str, float]:
        total = sum(item["damage"] for item in self.abilities.values())
        if total <= 0.0:
            return {key: 0.0 for key in self.abilities}
        return {key: item["damage"] / total for key, item in self.abilities.items()}

    def to_dict(self, include_timeline: bool = True, include_trials: bool = False) -> Dict[str, Any]:
        low, high = self.confidence_95
        payload: Dict[str, Any] = {
            "trials_requested": self.trials_requested,
            "trials_completed": self.trials_completed,
            "duration": self.duration,
            "seed": self.seed,
            "dps": {
                "mean": self.mean_dps,
                "std": self.std_dps,
                "std_error": self.std_error,
                "min": self.min_dps,
                "max": self.max_dps,
                "ci95": [low, high],
            },
            "mean_damage": self.mean_damage,
            "abilities": self.abilities,
            "share": self.ability_share(),
            "procs": self.procs,
            "energy_wasted": self.energy_wasted,
            "failures": [item.to_dict() for item in self.failures],
            "cancelled": self.cancelled,
        }
        if include_timeline:
            payload["timeline"] = [record.to_dict() for record in self.timeline]
        if include_trials:
            payload["trial_dps"] = list(self.trial_dps)
        return _stabilize_numeric_payload(payload)


def summarize_trials(
    results: Sequence[TrialResult],
    *,
    trials_requested: int,
    duration: float,
    seed: Optional[int] = None,
    failures: Sequence[TrialFailure] = (),
    cancelled: bool = False,
) -> AggregateSummary:
    count = len(results)
    dps_values = tuple(result.dps for result in results)
    if count == 0:
        return AggregateSummary(
            trials_requested=trials_requested,
            trials_completed=0,
            duration=duration,
            seed=seed,
            mean_dps=0.0,
            std_dps=0.0,
            std_error=0.0,
            min_dps=0.0,
            max_dps=0.0,
            mean_damage=0.0,
            abilities={},
            procs={},
            energy_wasted=0.0,
            failures=tuple(failures),
            cancelled=cancelled,
        )

    mean = sum(dps_values) / count
    variance = sum((value - mean) ** 2 for value in dps_values) / (count - 1) if count > 1 else 0.0
    std = math.sqrt(variance)

    abilities: Dict[str, Dict[str, float]] = {}
    procs: Dict[str, float] = {}
    for result in results:
        for ability_id, tally in result.abilities.items():
            bucket = abilities.setdefault(ability_id, {key: 0.0 for key in tally.as_dict()})
            for key, value in tally.as_dict().items():
                bucket[key] += value / count
        for proc_id, hits in result.procs.items():
            procs[proc_id] = procs.get(proc_id, 0.0) + hits / count
    for bucket in abilities.values():
        landed = bucket["hits"] + bucket["crits"] + bucket["glances"]
        attempts = landed + bucket["misses"] + bucket["dodges"] + bucket["parries"]
        bucket["crit_rate"] = bucket["crits"] / landed if landed else 0.0
        bucket["avoid_rate"] = (attempts - landed) / attempts if attempts else 0.0
        bucket["dps"] = bucket["damage"] / duration if duration > 0.0 else 0.0

    timeline: Tuple[DamageRecord, ...] = tuple()
    for result in results:
        if result.records:
            timeline = result.records
            break

    return AggregateSummary(
        trials_requested=trials_requested,
        trials_completed=count,
        duration=duration,
        seed=seed,
        mean_dps=mean,
        std_dps=std,
        std_error=std / math.sqrt(count),
        min_dps=min(dps_values),
        max_dps=max(dps_values),
        mean_damage=sum(result.total_damage for result in results) / count,
        abilities=dict(sorted(abilities.items(), key=lambda item: item[1]["damage"], reverse=True)),
        procs=procs,
        energy_wasted=sum(result.energy_wasted for result in results) / count,
        timeline=timeline,
        failures=tuple(failures),
        cancelled=cancelled,
        trial_dps=dps_values,
    )


class TrialAggregator:
    """Runs ``trials`` engines built by ``factory`` and summarizes them.

    Trial ``i`` uses seed ``master + i * 1009`` (or no seed when ``seed`` is None),
    so results do not depend on worker count or scheduling order.
    """

    def __init__(
        self,
        factory: TrialFactory,
        trials: int = DEFAULT_TRIALS,
        seed: Optional[int] = None,
        *,
        workers: int = 1,
        use_processes: bool = False,
        keep_timelines: int = 1,
        batch_size: int = 0,
        cancel_token: CancelToken | None = None,
        progress: Callable[[int, int], None] | None = None,
    ):
        if trials < 1:
            raise ValueError("trials must be >= 1")
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.factory = factory
        self.trials = int(trials)
        self.seed = seed
        self.workers = int(workers)
        self.use_processes = use_processes
        self.keep_timelines = max(0, int(keep_timelines))
        self.batch_size = int(batch_size) if batch_size > 0 else max(1, self.workers * 4)
        self.cancel_token = cancel_token or CancelToken()
        self.progress = progress

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def _executor(self) -> Executor:
        if self.use_processes:
            return ProcessPoolExecutor(max_workers=self.workers)
        return ThreadPoolExecutor(max_workers=self.workers)

    def _jobs(self) -> List[Tuple[int, Optional[int], bool]]:
        return [(index, trial_seed(self.seed, index), index < self.keep_timelines) for index in range(self.trials)]

    def run(self) -> AggregateSummary:
        logger.info("Running %d trials (seed=%s, workers=%d)", self.trials, self.seed, self.workers)
        jobs = self._jobs()
        outcomes: List[TrialOutcome] = []
        cancelled = False

        if self.workers == 1:
            for index, seed, record in jobs:
                if self.cancel_token.cancelled:
                    cancelled = True
                    break
                outcomes.append(run_trial(self.factory, index, seed, record))
                self._report(len(outcomes))
        else:
            with self._executor() as pool:
                for start in range(0, len(jobs), self.batch_size):
                    if self.cancel_token.cancelled:
                        cancelled = True
                        break
                    batch = jobs[start : start + self.batch_size]
                    futures = [pool.submit(run_trial, self.factory, index, seed, record) for index, seed, record in batch]
                    outcomes.extend(future.result() for future in futures)
                    self._report(len(outcomes))

        outcomes.sort(key=lambda item: item[0])
        results = [item for _, item in outcomes if isinstance(item, TrialResult)]
        failures = [item for _, item in outcomes if isinstance(item, TrialFailure)]
        for failure in failures:
            logger.warning("Trial %d failed at t=%s on %s: %s", failure.index, failure.at, failure.event, failure.message)
        if cancelled:
            logger.warning("Aggregation cancelled after %d of %d trials", len(outcomes), self.trials)

        duration = results[0].duration if results else 0.0
        summary = summarize_trials(
            results,
            trials_requested=self.trials,
            duration=duration,
            seed=self.seed,
            failures=failures,
            cancelled=cancelled,
        )
        logger.info(
            "Finished %d/%d trials: mean DPS %.2f (std error %.3f)",
            summary.trials_completed,
            self.trials,
            summary.mean_dps,
            summary.std_error,
        )
        return summary

    def _report(self, done: int) -> None:
        if self.progress is not None:
            self.progress(done, self.trials)
