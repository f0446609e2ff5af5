from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, TextIO

from .aggregate import AggregateSummary
from .combat import Outcome
from .engine import DamageRecord
from .models import ValueType
from .stats import StatBreakdown

TIMELINE_COLUMNS = ("Time", "Event", "Ability", "Result", "Damage", "Energy", "CP", "Mana", "Info")


def format_contributions(contributions: Iterable) -> str:
    pieces: List[str] = []
    for item in contributions:
        effect = item.effect
        source = item.source
        if effect.value_type is ValueType.FLAT:
            pieces.append(f"{source}: {effect.value:+.2f}")
        elif effect.value_type is ValueType.PERCENT:
            pieces.append(f"{source}: {effect.value * 100:+.1f}%")
        elif effect.value_type is ValueType.MULTIPLIER:
            pieces.append(f"{source}: x{effect.value:.3f}")
    return "; ".join(pieces) if pieces else "none"


def format_summary(summary: AggregateSummary, name: str = "") -> str:
    low, high = summary.confidence_95
    lines: List[str] = []
    if name:
        lines.append(f"Profile: {name}")
    lines.append(f"Trials: {summary.trials_completed}/{summary.trials_requested}  Duration: {summary.duration:.1f}s  Seed: {summary.seed}")
    lines.append(f"DPS: {summary.mean_dps:.2f} +/- {summary.std_error:.2f} (95% CI {low:.2f} - {high:.2f})")
    lines.append(f"Std dev: {summary.std_dps:.2f}  Min: {summary.min_dps:.2f}  Max: {summary.max_dps:.2f}")
    lines.append(f"Energy wasted per trial: {summary.energy_wasted:.1f}")
    if summary.procs:
        lines.append("Procs per trial: " + ", ".join(f"{key} {value:.2f}" for key, value in summary.procs.items()))
    if summary.failures:
        lines.append(f"Failed trials: {len(summary.failures)}")
    if summary.cancelled:
        lines.append("Run was cancelled; statistics cover completed trials only.")
    return "\n".join(lines)


def format_ability_table(summary: AggregateSummary) -> str:
    if not summary.abilities:
        return "No damage recorded."
    share = summary.ability_share()
    header = f"{'Ability':<24}{'DPS':>10}{'Share':>9}{'Casts':>9}{'Crit %':>9}{'Avoid %':>9}"
    lines = [header, "-" * len(header)]
    for ability_id, bucket in summary.abilities.items():
        lines.append(
            f"{ability_id:<24}{bucket['dps']:>10.2f}{share[ability_id] * 100:>8.1f}%"
            f"{bucket['casts']:>9.1f}{bucket['crit_rate'] * 100:>8.1f}%{bucket['avoid_rate'] * 100:>8.1f}%"
        )
    return "\n".join(lines)


def format_stat_breakdown(breakdown: Dict[str, StatBreakdown]) -> str:
    lines: List[str] = []
    for stat, entry in breakdown.items():
        lines.append(f"{stat:<18}{entry.final_value:>10.2f}  ({entry.compact_summary()})")
        if entry.flat:
            lines.append(f"    flat  : {format_contributions(entry.flat)}")
        if entry.percent_add:
            lines.append(f"    add % : {format_contributions(entry.percent_add)}")
        if entry.percent_mult:
            lines.append(f"    mult %: {format_contributions(entry.percent_mult)}")
        if entry.multipliers:
            lines.append(f"    multi : {format_contributions(entry.multipliers)}")
    return "\n".join(lines)


def stat_breakdown_to_dict(breakdown: Dict[str, StatBreakdown]) -> Dict:
    return {
        stat: {
            "base": entry.base,
            "final": entry.final_value,
            "flat": [{"source": item.source, "value": item.effect.value} for item in entry.flat],
            "percent_add": [{"source": item.source, "value": item.effect.value} for item in entry.percent_add],
            "percent_mult": [{"source": item.source, "value": item.effect.value} for item in entry.percent_mult],
            "multipliers": [{"source": item.source, "value": item.effect.value} for item in entry.multipliers],
        }
        for stat, entry in breakdown.items()
    }


def _event_label(record: DamageRecord) -> str:
    if record.outcome is Outcome.TICK:
        return "Tick"
    if record.outcome is Outcome.CAST:
        return "Cast"
    return "Attack"


def timeline_rows(records: Sequence[DamageRecord]) -> List[List[str]]:
    rows: List[List[str]] = []
    for record in records:
        info = f"energy {record.energy_delta:+.0f}" if record.energy_delta else ""
        rows.append(
            [
                f"{record.at:.3f}",
                _event_label(record),
                record.ability_id,
                record.outcome.value,
                f"{record.amount:.1f}",
                f"{record.energy:.1f}",
                str(record.combo_points),
                f"{record.mana:.0f}",
                info,
            ]
        )
    return rows


def write_timeline_csv(records: Sequence[DamageRecord], target: Path | str | TextIO) -> None:
    if isinstance(target, (str, Path)):
        with Path(target).open("w", encoding="utf-8", newline="") as handle:
            write_timeline_csv(records, handle)
        return
    writer = csv.writer(target)
    writer.writerow(TIMELINE_COLUMNS)
    writer.writerows(timeline_rows(records))


def timeline_csv(records: Sequence[DamageRecord]) -> str:
    buffer = io.StringIO()
    write_timeline_csv(records, buffer)
    return buffer.getvalue()


def format_comparison(results: Sequence) -> str:
    if not results:
        return "No profiles compared."
    header = f"{'Rank':<6}{'Profile':<28}{'DPS':>10}{'Error':>9}{'Delta':>10}{'Delta %':>9}"
    lines = [header, "-" * len(header)]
    for index, entry in enumerate(results, start=1):
        lines.append(
            f"{index:<6}{entry.name:<28}{entry.summary.mean_dps:>10.2f}{entry.summary.std_error:>9.2f}"
            f"{entry.delta_dps:>+10.2f}{entry.delta_percent:>+8.2f}%"
        )
    return "\n".join(lines)


def format_weights(result) -> str:
    header = f"{'Stat':<18}{'Delta':>8}{'DPS':>10}{'Gain':>9}{'Per pt':>9}{'Weight':>9}"
    lines = [
        f"Baseline: {result.baseline.mean_dps:.2f} DPS (+/- {result.baseline.std_error:.2f}), weights relative to {result.reference_stat}",
        header,
        "-" * len(header),
    ]
    for entry in result.weights:
        lines.append(
            f"{entry.stat:<18}{entry.delta:>8g}{entry.mean_dps:>10.2f}{entry.dps_gain:>+9.2f}"
            f"{entry.per_point:>9.3f}{entry.weight:>9.2f}"
        )
    return "\n".join(lines)
