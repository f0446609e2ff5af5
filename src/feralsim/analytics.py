from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .aggregate import AggregateSummary, CancelToken, TrialAggregator
from .catalog import CatalogRepository
from .config import SimulationProfile, build_setup
from .models import _stabilize_numeric_payload

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
# Stat weights need a fixed stream so every variant sees the same rolls.
DEFAULT_WEIGHT_SEED = 1


def simulate(
    profile: SimulationProfile,
    repo: CatalogRepository | None = None,
    *,
    trials: Optional[int] = None,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
    keep_timelines: int = 1,
    cancel_token: CancelToken | None = None,
    progress: ProgressCallback | None = None,
) -> AggregateSummary:
    options = profile.simulation
    aggregator = TrialAggregator(
        build_setup(profile, repo),
        trials=trials if trials is not None else options.trials,
        seed=seed if seed is not None else options.seed,
        workers=workers if workers is not None else options.workers,
        use_processes=options.use_processes,
        keep_timelines=keep_timelines,
        cancel_token=cancel_token,
        progress=progress,
    )
    return aggregator.run()


@dataclass(slots=True, frozen=True)
class ProfileComparison:
    name: str
    summary: AggregateSummary
    delta_dps: float
    delta_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return _stabilize_numeric_payload(
            {
                "name": self.name,
                "mean_dps": self.summary.mean_dps,
                "std_error": self.summary.std_error,
                "delta_dps": self.delta_dps,
                "delta_percent": self.delta_percent,
                "summary": self.summary.to_dict(include_timeline=False),
            }
        )


def compare_profiles(
    profiles: Sequence[SimulationProfile],
    repo: CatalogRepository | None = None,
    *,
    trials: Optional[int] = None,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
    progress: ProgressCallback | None = None,
) -> List[ProfileComparison]:
    """Runs every profile on the same seed and ranks them by mean DPS.

    Deltas are relative to the first profile, which acts as the baseline.
    """
    if not profiles:
        raise ValueError("compare_profiles needs at least one profile")
    repo = repo or CatalogRepository()
    shared_seed = seed if seed is not None else (profiles[0].simulation.seed or DEFAULT_WEIGHT_SEED)

    summaries: List[Tuple[SimulationProfile, AggregateSummary]] = []
    for index, profile in enumerate(profiles):
        summary = simulate(profile, repo, trials=trials, seed=shared_seed, workers=workers, keep_timelines=0)
        summaries.append((profile, summary))
        if progress is not None:
            progress(index + 1, len(profiles))

    baseline = summaries[0][1].mean_dps
    results = [
        ProfileComparison(
            name=profile.name,
            summary=summary,
            delta_dps=summary.mean_dps - baseline,
            delta_percent=(summary.mean_dps - baseline) / baseline * 100.0 if baseline > 0.0 else 0.0,
        )
        for profile, summary in summaries
    ]
    results.sort(key=lambda entry: entry.summary.mean_dps, reverse=True)
    return results


@dataclass(slots=True, frozen=True)
class StatWeight:
    stat: str
    delta: float
    mean_dps: float
    dps_gain: float
    per_point: float
    weight: float


@dataclass(slots=True, frozen=True)
class StatWeightsResult:
    baseline: AggregateSummary
    reference_stat: str
    weights: Tuple[StatWeight, ...]

    def item_weights(self) -> Dict[str, float]:
        return {entry.stat: entry.weight for entry in self.weights}

    def to_dict(self) -> Dict[str, Any]:
        return _stabilize_numeric_payload(
            {
                "baseline_dps": self.baseline.mean_dps,
                "baseline_std_error": self.baseline.std_error,
                "reference_stat": self.reference_stat,
                "weights": [
                    {
                        "stat": entry.stat,
                        "delta": entry.delta,
                        "mean_dps": entry.mean_dps,
                        "dps_gain": entry.dps_gain,
                        "per_point": entry.per_point,
                        "weight": entry.weight,
                    }
                    for entry in self.weights
                ],
            }
        )


def stat_weights(
    profile: SimulationProfile,
    repo: CatalogRepository | None = None,
    deltas: Mapping[str, float] | None = None,
    *,
    reference_stat: str = "attack_power",
    trials: Optional[int] = None,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
    progress: ProgressCallback | None = None,
) -> StatWeightsResult:
    """Adds each stat delta on top of the profile and measures the DPS gain.

    All variants share one seed, so the gain reflects the stat and not RNG noise.
    Weights are DPS per point normalized so ``reference_stat`` is 1.0.
    """
    repo = repo or CatalogRepository()
    deltas = dict(deltas if deltas is not None else repo.load_weights().stat_deltas)
    for stat, delta in deltas.items():
        if delta == 0.0:
            raise ValueError(f"Stat delta for '{stat}' must be non-zero")
    shared_seed = seed if seed is not None else (profile.simulation.seed or DEFAULT_WEIGHT_SEED)

    baseline = simulate(profile, repo, trials=trials, seed=shared_seed, workers=workers, keep_timelines=0)
    logger.info("Stat weights baseline for '%s': %.2f DPS", profile.name, baseline.mean_dps)

    raw: List[Tuple[str, float, float, float]] = []
    for index, (stat, delta) in enumerate(deltas.items()):
        variant = profile.with_extra_stats({stat: delta}, source=f"+{delta:g} {stat}")
        summary = simulate(variant, repo, trials=trials, seed=shared_seed, workers=workers, keep_timelines=0)
        gain = summary.mean_dps - baseline.mean_dps
        raw.append((stat, delta, summary.mean_dps, gain))
        logger.debug("+%g %s -> %.2f DPS (%+.3f)", delta, stat, summary.mean_dps, gain)
        if progress is not None:
            progress(index + 1, len(deltas))

    per_point = {stat: gain / delta for stat, delta, _, gain in raw}
    reference = per_point.get(reference_stat, 0.0)
    if reference <= 0.0:
        logger.warning("Reference stat '%s' gained no DPS; weights are left unnormalized", reference_stat)
        reference = 1.0

    weights = tuple(
        StatWeight(
            stat=stat,
            delta=delta,
            mean_dps=dps,
            dps_gain=gain,
            per_point=per_point[stat],
            weight=per_point[stat] / reference,
        )
        for stat, delta, dps, gain in raw
    )
    return StatWeightsResult(baseline=baseline, reference_stat=reference_stat, weights=weights)


def item_score(
    stats: Mapping[str, float],
    item_weights: Mapping[str, float],
    specials: Iterable[str] = (),
    special_bonus: Mapping[str, float] | None = None,
) -> float:
    """Attack-power equivalent of an item: weighted stat sum plus flat bonuses for specials."""
    score = sum(float(value) * item_weights.get(stat, 0.0) for stat, value in stats.items())
    bonus = special_bonus or {}
    score += sum(bonus.get(item, 0.0) for item in specials)
    return score
