from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Sequence

from .analytics import compare_profiles, simulate, stat_weights
from .catalog import CatalogError, CatalogRepository
from .config import ConfigurationError, SimulationProfile, build_setup, default_profile, load_profile
from .formatting import (
    format_ability_table,
    format_comparison,
    format_stat_breakdown,
    format_summary,
    format_weights,
    stat_breakdown_to_dict,
    write_timeline_csv,
)
from .logging_setup import setup_logging


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return number


def _stat_delta(value: str) -> tuple[str, float]:
    stat, sep, amount = value.partition("=")
    if not sep or not stat.strip():
        raise argparse.ArgumentTypeError("expected STAT=DELTA, e.g. agility=20")
    try:
        return stat.strip(), float(amount)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid delta '{amount}'") from exc


def _add_simulation_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--trials", type=_positive_int, default=None, help="Number of simulated encounters.")
    parser.add_argument("--seed", type=int, default=None, help="Master seed for reproducible runs.")
    parser.add_argument("--workers", type=_positive_int, default=None, help="Parallel worker threads.")
    parser.add_argument("--duration", type=float, default=None, help="Encounter length in seconds.")
    parser.add_argument("--format", choices=("table", "json"), default="table", help="Output format.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feralsim",
        description="Feral cat druid DPS simulator for Turtle WoW 1.18.",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default WARNING, or FERALSIM_LOG_LEVEL).")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")
    parser.add_argument("--data-dir", default=None, help="Directory with bundled catalog JSON files.")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Simulate one profile.")
    run.add_argument("--profile", default=None, help="JSON/YAML profile. Uses the built-in default when omitted.")
    _add_simulation_options(run)
    run.add_argument("--csv", default=None, help="Write the representative trial timeline to this CSV file.")
    run.add_argument("--breakdown", action="store_true", help="Show resolved stats with their sources.")

    compare = commands.add_parser("compare", help="Rank several profiles on common random numbers.")
    compare.add_argument("profiles", nargs="+", help="Profile files; the first is the baseline.")
    _add_simulation_options(compare)

    weights = commands.add_parser("weights", help="Estimate stat weights relative to attack power.")
    weights.add_argument("--profile", default=None, help="JSON/YAML profile. Uses the built-in default when omitted.")
    weights.add_argument("--stat", action="append", type=_stat_delta, default=None, metavar="STAT=DELTA", help="Stat delta to test (repeatable).")
    _add_simulation_options(weights)

    bosses = commands.add_parser("bosses", help="List boss armor presets.")
    bosses.add_argument("--format", choices=("table", "json"), default="table")

    serve = commands.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--open-browser", action="store_true", help="Open the API docs once the server starts.")
    return parser


def _apply_overrides(profile: SimulationProfile, args: argparse.Namespace) -> SimulationProfile:
    if args.duration is not None:
        if args.duration <= 0.0:
            raise ConfigurationError("--duration must be > 0")
        profile = replace(profile, encounter=replace(profile.encounter, duration=float(args.duration)))
    return profile


def _load(path: str | None, repo: CatalogRepository) -> SimulationProfile:
    return load_profile(Path(path), repo) if path else default_profile(repo)


def _print_json(payload: Any) -> None:
    json.dump(payload, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")


def _run(args: argparse.Namespace, repo: CatalogRepository) -> int:
    profile = _apply_overrides(_load(args.profile, repo), args)
    summary = simulate(profile, repo, trials=args.trials, seed=args.seed, workers=args.workers)
    breakdown = build_setup(profile, repo).resolver.breakdown() if args.breakdown else None

    if args.csv:
        write_timeline_csv(summary.timeline, Path(args.csv))

    if args.format == "json":
        payload: Dict[str, Any] = {"profile": profile.name, "summary": summary.to_dict(include_timeline=False)}
        if breakdown is not None:
            payload["stats"] = stat_breakdown_to_dict(breakdown)
        _print_json(payload)
        return 0

    print(format_summary(summary, profile.name))
    print()
    print(format_ability_table(summary))
    if breakdown is not None:
        print()
        print(format_stat_breakdown(breakdown))
    if args.csv:
        print(f"\nTimeline written to {args.csv}")
    return 0


def _compare(args: argparse.Namespace, repo: CatalogRepository) -> int:
    profiles = [_apply_overrides(load_profile(Path(path), repo), args) for path in args.profiles]
    results = compare_profiles(profiles, repo, trials=args.trials, seed=args.seed, workers=args.workers)
    if args.format == "json":
        _print_json([entry.to_dict() for entry in results])
    else:
        print(format_comparison(results))
    return 0


def _weights(args: argparse.Namespace, repo: CatalogRepository) -> int:
    profile = _apply_overrides(_load(args.profile, repo), args)
    deltas = dict(args.stat) if args.stat else None
    result = stat_weights(profile, repo, deltas, trials=args.trials, seed=args.seed, workers=args.workers)
    if args.format == "json":
        _print_json(result.to_dict())
    else:
        print(format_weights(result))
    return 0


def _bosses(args: argparse.Namespace, repo: CatalogRepository) -> int:
    grouped = repo.bosses_by_group()
    if args.format == "json":
        _print_json(grouped)
        return 0
    for group, bosses in grouped.items():
        print(group)
        for boss in bosses:
            print(f"  {boss['name']:<40}{boss['armor']:>8.0f}")
    return 0


def _serve(args: argparse.Namespace) -> int:
    from .launcher import serve

    serve(host=args.host, port=args.port, open_browser=args.open_browser)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    runtime = setup_logging(args.log_level, log_file=args.log_file)
    try:
        if args.command == "serve":
            return _serve(args)
        repo = CatalogRepository(Path(args.data_dir) if args.data_dir else None)
        handlers = {"run": _run, "compare": _compare, "weights": _weights, "bosses": _bosses}
        try:
            return handlers[args.command](args, repo)
        except ConfigurationError as exc:
            parser.error(str(exc))
        except (CatalogError, ValueError, OSError) as exc:
            parser.error(f"{args.command} failed: {exc}")
        return 2
    finally:
        runtime.stop()


if __name__ == "__main__":
    raise SystemExit(main())
