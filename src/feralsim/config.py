from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .abilities import AbilityCatalog
from .catalog import MODIFIER_CATEGORIES, CatalogError, CatalogRepository
from .conditions import Condition
from .engine import EncounterSettings, SimulationEngine
from .models import (
    AbilityAdjustment,
    BaseStats,
    ConfigurationError,
    FieldIssue,
    ModelError,
    Modifier,
    StatEffect,
    TargetDefinition,
    effects_from_shorthand,
)
from .policy import DecisionPolicy, Rule
from .resources import EnergyModel
from .rng import SeededRNG
from .stats import Contribution, StatResolver

logger = logging.getLogger(__name__)

__all__ = [
    "ConfigurationError",
    "FieldIssue",
    "RotationOptions",
    "SimulationOptions",
    "SimulationProfile",
    "SimulationSetup",
    "build_default_rotation",
    "build_setup",
    "default_profile",
    "load_profile",
    "profile_from_dict",
]

DEFAULT_PROFILE: Dict[str, Any] = {
    "name": "Default Tauren",
    "race": "tauren",
    "stats": {"strength": 150, "agility": 250, "attack_power": 450, "crit": 6, "hit": 6},
    "talents": {
        "heart_of_the_wild": 5,
        "predatory_strikes": 3,
        "sharpened_claws": 3,
        "omen_of_clarity": 1,
        "primal_fury": 1,
        "open_wounds": 1,
    },
    "raid_buffs": ["mark_of_the_wild", "leader_of_the_pack"],
    "target": {"boss": "Naxxramas/Most Bosses"},
}


def _read_raw(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Profile file not found: {path}")

    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")

    if suffix == ".json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {path}: {exc}") from exc

    if suffix in {".yaml", ".yml"}:
        import yaml

        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    raise ConfigurationError(f"Unsupported profile format '{suffix}'. Use .json or .yaml/.yml.")


@dataclass(slots=True, frozen=True)
class RotationOptions:
    use_rip: bool = True
    rip_combo_points: int = 5
    use_bite: bool = True
    bite_combo_points: int = 5
    bite_min_energy: float = 35.0
    use_rake: bool = True
    use_shred: bool = True
    use_claw: bool = True
    use_powershift: bool = False
    powershift_energy: float = 10.0
    powershift_min_mana: float = 500.0
    use_tigers_fury: bool = False
    use_mcp: bool = True

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RotationOptions":
        defaults = cls()
        values: Dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            if name not in payload:
                continue
            current = getattr(defaults, name)
            raw = payload[name]
            try:
                if isinstance(current, bool):
                    values[name] = bool(raw)
                elif isinstance(current, int):
                    values[name] = int(raw)
                else:
                    values[name] = float(raw)
            except (TypeError, ValueError) as exc:
                raise ModelError(f"Rotation option '{name}' has invalid value {raw!r}.") from exc
        options = cls(**values)
        for name in ("rip_combo_points", "bite_combo_points"):
            if not 1 <= getattr(options, name) <= 5:
                raise ModelError(f"Rotation option '{name}' must be within [1, 5].")
        return options


@dataclass(slots=True, frozen=True)
class SimulationOptions:
    trials: int = 1000
    seed: Optional[int] = None
    workers: int = 1
    use_processes: bool = False

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SimulationOptions":
        try:
            trials = int(payload.get("trials", 1000))
            workers = int(payload.get("workers", 1))
            raw_seed = payload.get("seed")
            seed = None if raw_seed is None else int(raw_seed)
        except (TypeError, ValueError) as exc:
            raise ModelError(f"Invalid simulation options: {exc}") from exc
        if trials < 1:
            raise ModelError("Field 'trials' must be >= 1.")
        if workers < 1:
            raise ModelError("Field 'workers' must be >= 1.")
        return cls(trials=trials, seed=seed, workers=workers, use_processes=bool(payload.get("use_processes", False)))


@dataclass(slots=True, frozen=True)
class SimulationProfile:
    name: str
    base: BaseStats
    race: str = ""
    items: Tuple[Contribution, ...] = tuple()
    selections: Dict[str, Dict[str, int]] = field(default_factory=dict)
    target: TargetDefinition = field(default_factory=TargetDefinition)
    encounter: EncounterSettings = field(default_factory=EncounterSettings)
    rotation: RotationOptions = field(default_factory=RotationOptions)
    rules: Optional[Tuple[Rule, ...]] = None
    procs: Tuple[str, ...] = tuple()
    simulation: SimulationOptions = field(default_factory=SimulationOptions)

    def with_extra_stats(self, stats: Mapping[str, float], source: str = "adjustment") -> "SimulationProfile":
        effects = effects_from_shorthand(dict(stats))
        return replace(self, items=self.items + (Contribution(source=source, effects=effects),))

    def with_selection(self, category: str, modifier_id: str, rank: int = 1) -> "SimulationProfile":
        selections = {key: dict(value) for key, value in self.selections.items()}
        selections.setdefault(category, {})[modifier_id] = rank
        return replace(self, selections=selections)

    def with_simulation(self, **changes: Any) -> "SimulationProfile":
        return replace(self, simulation=replace(self.simulation, **changes))


def _parse_selection(raw: Any) -> Dict[str, int]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(key): int(value) for key, value in raw.items() if int(value) > 0}
    if isinstance(raw, (list, tuple)):
        return {str(item): 1 for item in raw}
    raise ModelError("Selections must be a list of ids or a mapping of id to rank.")


def _parse_items(payload: Dict[str, Any], issues: List[FieldIssue]) -> Tuple[Contribution, ...]:
    items: List[Contribution] = []
    if payload.get("stats"):
        try:
            items.append(Contribution(source="gear", effects=effects_from_shorthand(dict(payload["stats"]))))
        except (ModelError, TypeError, ValueError) as exc:
            issues.append(FieldIssue("stats", str(exc)))

    for index, raw in enumerate(payload.get("items", [])):
        try:
            if not isinstance(raw, dict):
                raise ModelError("item must be a mapping")
            effects = tuple(StatEffect.from_dict(item) for item in raw.get("effects", []))
            if "stats" in raw:
                effects = effects + effects_from_shorthand(dict(raw["stats"]))
            condition = Condition.from_dict(raw["condition"]) if raw.get("condition") is not None else None
            items.append(
                Contribution(
                    source=str(raw.get("name", f"item_{index}")),
                    effects=effects,
                    condition=condition,
                )
            )
        except (ModelError, TypeError, ValueError) as exc:
            issues.append(FieldIssue(f"items[{index}]", str(exc)))
    return tuple(items)


def _parse_target(raw: Dict[str, Any], repo: CatalogRepository, issues: List[FieldIssue]) -> TargetDefinition:
    payload = dict(raw)
    boss_key = payload.pop("boss", None)
    if boss_key:
        try:
            boss = repo.find_boss(str(boss_key))
            payload.setdefault("armor", boss.armor)
            payload.setdefault("name", boss.name)
        except CatalogError as exc:
            issues.append(FieldIssue("target.boss", str(exc)))
    try:
        return TargetDefinition.from_dict(payload)
    except (ModelError, TypeError, ValueError) as exc:
        issues.append(FieldIssue("target", str(exc)))
        return TargetDefinition()


def profile_from_dict(payload: Any, repo: CatalogRepository | None = None) -> SimulationProfile:
    """Validates a raw profile mapping. Every problem is reported at once."""
    if not isinstance(payload, dict):
        raise ConfigurationError("Profile root must be an object (JSON/YAML mapping).")
    repo = repo or CatalogRepository()
    issues: List[FieldIssue] = []

    race_id = str(payload.get("race", "")).strip()
    base = BaseStats()
    if race_id:
        races = repo.load_races()
        if race_id not in races:
            issues.append(FieldIssue("race", f"unknown race '{race_id}'. Use one of: {', '.join(races)}"))
        else:
            base = races[race_id].base
    if payload.get("base_stats"):
        try:
            merged = {name: getattr(base, name) for name in base.__dataclass_fields__}
            merged.update(dict(payload["base_stats"]))
            base = BaseStats.from_dict(merged)
        except (ModelError, TypeError, ValueError) as exc:
            issues.append(FieldIssue("base_stats", str(exc)))

    items = _parse_items(payload, issues)

    modifiers = repo.load_modifiers()
    selections: Dict[str, Dict[str, int]] = {}
    for category in MODIFIER_CATEGORIES:
        try:
            chosen = _parse_selection(payload.get(category))
        except (ModelError, TypeError, ValueError) as exc:
            issues.append(FieldIssue(category, str(exc)))
            continue
        for modifier_id, rank in chosen.items():
            known = modifiers.get(category, {}).get(modifier_id)
            if known is None:
                issues.append(FieldIssue(f"{category}.{modifier_id}", "unknown modifier"))
            elif not 1 <= rank <= known.max_rank:
                issues.append(FieldIssue(f"{category}.{modifier_id}", f"rank must be within [1, {known.max_rank}]"))
        selections[category] = chosen

    target = _parse_target(dict(payload.get("target", {})), repo, issues)

    energy = EnergyModel()
    try:
        energy = EnergyModel.from_dict(dict(payload.get("energy", {})))
    except (ModelError, TypeError, ValueError) as exc:
        issues.append(FieldIssue("energy", str(exc)))

    raw_rotation = payload.get("rotation", {})
    raw_rules = payload.get("rules")
    if isinstance(raw_rotation, list):
        raw_rules, raw_rotation = raw_rotation, {}
    rotation = RotationOptions()
    try:
        rotation = RotationOptions.from_dict(dict(raw_rotation))
    except (ModelError, TypeError, ValueError) as exc:
        issues.append(FieldIssue("rotation", str(exc)))

    encounter = EncounterSettings(energy=energy)
    try:
        encounter = EncounterSettings.from_dict(dict(payload.get("encounter", {})), energy=energy)
    except (ModelError, TypeError, ValueError) as exc:
        issues.append(FieldIssue("encounter", str(exc)))

    rules: Optional[Tuple[Rule, ...]] = None
    if raw_rules is not None:
        try:
            rules = DecisionPolicy.from_list(raw_rules).rules
        except ConfigurationError as exc:
            issues.extend(exc.issues)
        else:
            known_abilities = repo.load_abilities().ability_ids
            issues.extend(DecisionPolicy(rules).validate(known_abilities))

    procs = tuple(str(item) for item in payload.get("procs", []))
    known_procs = repo.load_abilities().proc_ids
    for proc_id in procs:
        if proc_id not in known_procs:
            issues.append(FieldIssue(f"procs.{proc_id}", "unknown proc"))

    simulation = SimulationOptions()
    try:
        simulation = SimulationOptions.from_dict(dict(payload.get("simulation", {})))
    except (ModelError, TypeError, ValueError) as exc:
        issues.append(FieldIssue("simulation", str(exc)))

    if issues:
        raise ConfigurationError(issues)

    return SimulationProfile(
        name=str(payload.get("name", race_id or "profile")),
        base=base,
        race=race_id,
        items=items,
        selections=selections,
        target=target,
        encounter=encounter,
        rotation=rotation,
        rules=rules,
        procs=procs,
        simulation=simulation,
    )


def load_profile(path: Path | str, repo: CatalogRepository | None = None) -> SimulationProfile:
    path = Path(path)
    profile = profile_from_dict(_read_raw(path), repo)
    logger.info("Loaded profile '%s' from %s", profile.name, path)
    return profile


def default_profile(repo: CatalogRepository | None = None) -> SimulationProfile:
    return profile_from_dict(DEFAULT_PROFILE, repo)


def _rank_effects(modifier: Modifier, rank: int) -> Tuple[StatEffect, ...]:
    return tuple(effect.scaled(rank) for effect in modifier.effects)


def _rank_adjustment(adjustment: AbilityAdjustment, rank: int) -> AbilityAdjustment:
    if rank == 1 or adjustment.mode == "set":
        return adjustment
    if adjustment.mode == "mul":
        return replace(adjustment, value=adjustment.value**rank)
    return replace(adjustment, value=adjustment.value * rank)


def _condition(rule_kind: str, ref: str = "", value: float = 0.0) -> Condition:
    return Condition(kind=rule_kind, ref=ref, value=value)


def _all_of(*children: Condition) -> Condition:
    return Condition(kind="all_of", children=tuple(children))


def _any_of(*children: Condition) -> Condition:
    return Condition(kind="any_of", children=tuple(children))


def _not(child: Condition) -> Condition:
    return Condition(kind="not", children=(child,))


def build_default_rotation(options: RotationOptions) -> DecisionPolicy:
    """Finisher at full combo points, keep bleeds up, otherwise Shred from behind or Claw."""
    rules: List[Rule] = []
    if options.use_mcp:
        rules.append(Rule("manual_crowd_pummeler", _condition("buff_inactive", "mcp_haste"), "mcp"))
    if options.use_tigers_fury:
        rules.append(Rule("tigers_fury", _condition("buff_inactive", "tigers_fury"), "tigers fury"))
    if options.use_powershift:
        rules.append(
            Rule(
                "powershift",
                _all_of(
                    _condition("combo_points_below", value=5),
                    _condition("energy_at_most", value=options.powershift_energy),
                    _condition("mana_at_least", value=options.powershift_min_mana),
                ),
                "powershift",
            )
        )
    if options.use_rip:
        rules.append(
            Rule(
                "rip",
                _all_of(
                    _condition("combo_points_at_least", value=options.rip_combo_points),
                    _condition("buff_inactive", "rip"),
                ),
                "rip",
            )
        )
    if options.use_bite:
        bite = [
            _condition("combo_points_at_least", value=options.bite_combo_points),
            _condition("energy_at_least", value=options.bite_min_energy),
        ]
        if options.use_rip:
            bite.append(_any_of(_condition("buff_active", "rip"), _not(_condition("flag", "target_can_bleed"))))
        rules.append(Rule("ferocious_bite", _all_of(*bite), "bite"))
    if options.use_rake:
        rules.append(Rule("rake", _condition("buff_inactive", "rake"), "rake"))
    if options.use_shred:
        rules.append(Rule("shred", _condition("flag", "behind"), "shred"))
    if options.use_claw:
        claw_condition = _not(_condition("flag", "behind")) if options.use_shred else Condition()
        rules.append(Rule("claw", claw_condition, "claw"))
    return DecisionPolicy(rules)


@dataclass(slots=True, frozen=True)
class SimulationSetup:
    """Everything one trial needs. Immutable and picklable, shared across workers."""

    name: str
    catalog: AbilityCatalog
    policy: DecisionPolicy
    resolver: StatResolver
    target: TargetDefinition
    settings: EncounterSettings
    procs: Tuple[str, ...] = tuple()
    opening_buffs: Tuple[str, ...] = tuple()

    def __call__(self, trial_index: int, seed: Optional[int], record_timeline: bool = False) -> SimulationEngine:
        settings = self.settings
        if settings.record_timeline != record_timeline:
            settings = replace(settings, record_timeline=record_timeline)
        return SimulationEngine(
            self.catalog,
            self.policy,
            self.resolver,
            self.target,
            settings,
            SeededRNG(seed),
            procs=self.procs,
            opening_buffs=self.opening_buffs,
            seed=seed,
        )

    def snapshot(self):
        return self.resolver.resolve()


def build_setup(profile: SimulationProfile, repo: CatalogRepository | None = None) -> SimulationSetup:
    repo = repo or CatalogRepository()
    catalog = repo.load_abilities()
    modifiers = repo.load_modifiers()

    contributions: List[Contribution] = list(profile.items)
    adjustments: List[AbilityAdjustment] = []
    procs: List[str] = []
    for category, chosen in profile.selections.items():
        for modifier_id, rank in chosen.items():
            modifier = modifiers[category][modifier_id]
            if modifier.effects:
                contributions.append(
                    Contribution(
                        source=modifier.name,
                        effects=_rank_effects(modifier, rank),
                        condition=modifier.condition,
                        category=category,
                    )
                )
            adjustments.extend(_rank_adjustment(item, rank) for item in modifier.adjustments)
            procs.extend(item for item in modifier.procs if item not in procs)
    procs.extend(item for item in profile.procs if item not in procs)

    if adjustments:
        catalog = catalog.with_adjustments(adjustments)

    flags = set(profile.encounter.flags)
    if profile.target.can_bleed:
        flags.add("target_can_bleed")
    settings = replace(profile.encounter, flags=tuple(sorted(flags)))

    if profile.rules is not None:
        policy = DecisionPolicy(profile.rules)
    else:
        policy = build_default_rotation(profile.rotation)
    issues = policy.validate(catalog.ability_ids)
    if issues:
        raise ConfigurationError(issues)

    setup = SimulationSetup(
        name=profile.name,
        catalog=catalog,
        policy=policy,
        resolver=StatResolver(profile.base, contributions),
        target=profile.target,
        settings=settings,
        procs=tuple(procs),
    )
    logger.debug(
        "Built setup '%s': %d contributions, %d adjustments, procs=%s",
        profile.name,
        len(contributions),
        len(adjustments),
        ", ".join(procs) or "none",
    )
    return setup

