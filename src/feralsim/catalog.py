from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .abilities import AbilityCatalog
from .models import BaseStats, BossPreset, ConfigurationError, ModelError, Modifier, _require, ensure_unique_ids

DATA_DIR_ENV = "FERALSIM_DATA_DIR"
MODIFIER_CATEGORIES: Tuple[str, ...] = ("talents", "raid_buffs", "consumables", "debuffs", "specials")


class CatalogError(RuntimeError):
    """Raised when bundled data cannot be loaded."""


@dataclass(slots=True, frozen=True)
class RaceDefinition:
    id: str
    name: str
    base: BaseStats

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RaceDefinition":
        race_id = str(_require(payload, "id"))
        return cls(id=race_id, name=str(payload.get("name", race_id)), base=BaseStats.from_dict(dict(payload.get("base", {}))))


@dataclass(slots=True, frozen=True)
class StatWeights:
    item_weights: Dict[str, float]
    special_bonus: Dict[str, float]
    stat_deltas: Dict[str, float]


def default_data_dir() -> Path:
    override = os.environ.get(DATA_DIR_ENV, "").strip()
    if override:
        return Path(override)
    return Path(__file__).resolve().parent / "data"


class CatalogRepository:
    """Loads the bundled ability, modifier, race and boss data."""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
        self._cache: Dict[str, Any] = {}

    def _read_json(self, name: str) -> Dict[str, Any]:
        path = self.data_dir / name
        if not path.exists():
            raise CatalogError(f"Required file not found: {path}")
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise CatalogError(f"Invalid JSON in {path}: {exc}") from exc

    def _cached(self, key: str, loader: Any) -> Any:
        if key not in self._cache:
            self._cache[key] = loader()
        return self._cache[key]

    def load_abilities(self) -> AbilityCatalog:
        def load() -> AbilityCatalog:
            try:
                return AbilityCatalog.from_dict(self._read_json("abilities.json"))
            except ConfigurationError as exc:
                raise CatalogError(f"abilities.json is invalid: {exc}") from exc

        return self._cached("abilities", load)

    def load_modifiers(self) -> Dict[str, Dict[str, Modifier]]:
        def load() -> Dict[str, Dict[str, Modifier]]:
            payload = self._read_json("modifiers.json")
            result: Dict[str, Dict[str, Modifier]] = {}
            for category in MODIFIER_CATEGORIES:
                entries = payload.get(category, [])
                try:
                    modifiers = [Modifier.from_dict(category, raw) for raw in entries]
                    ensure_unique_ids((item.id for item in modifiers), category)
                except ModelError as exc:
                    raise CatalogError(f"modifiers.json category '{category}' is invalid: {exc}") from exc
                result[category] = {item.id: item for item in modifiers}
            return result

        return self._cached("modifiers", load)

    def load_races(self) -> Dict[str, RaceDefinition]:
        def load() -> Dict[str, RaceDefinition]:
            try:
                races = [RaceDefinition.from_dict(item) for item in self._read_json("races.json").get("races", [])]
            except ModelError as exc:
                raise CatalogError(f"races.json is invalid: {exc}") from exc
            return {race.id: race for race in races}

        return self._cached("races", load)

    def load_bosses(self) -> List[BossPreset]:
        def load() -> List[BossPreset]:
            try:
                return [BossPreset.from_dict(item) for item in self._read_json("bosses.json").get("bosses", [])]
            except (ModelError, TypeError, ValueError) as exc:
                raise CatalogError(f"bosses.json is invalid: {exc}") from exc

        return self._cached("bosses", load)

    def find_boss(self, key: str) -> BossPreset:
        wanted = key.strip().lower()
        for boss in self.load_bosses():
            if boss.key.lower() == wanted:
                return boss
        raise CatalogError(f"Boss preset not found: {key}")

    def load_weights(self) -> StatWeights:
        def load() -> StatWeights:
            payload = self._read_json("weights.json")
            return StatWeights(
                item_weights={str(k): float(v) for k, v in payload.get("item_weights", {}).items()},
                special_bonus={str(k): float(v) for k, v in payload.get("special_bonus", {}).items()},
                stat_deltas={str(k): float(v) for k, v in payload.get("stat_deltas", {}).items()},
            )

        return self._cached("weights", load)

    def summary(self) -> Dict[str, Any]:
        abilities = self.load_abilities()
        modifiers = self.load_modifiers()
        return {
            "abilities": [{"id": item.id, "name": item.name, "energy_cost": item.energy_cost} for item in abilities.abilities()],
            "buffs": [{"id": item.id, "name": item.name, "duration": item.duration} for item in abilities.buffs()],
            "procs": [{"id": item.id, "name": item.name, "chance": item.chance} for item in abilities.procs()],
            "races": [{"id": race.id, "name": race.name} for race in self.load_races().values()],
            "modifiers": {
                category: [
                    {"id": item.id, "name": item.name, "max_rank": item.max_rank}
                    for item in entries.values()
                ]
                for category, entries in modifiers.items()
            },
        }

    def bosses_by_group(self) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for boss in self.load_bosses():
            grouped.setdefault(boss.group, []).append({"key": boss.key, "name": boss.name, "armor": boss.armor})
        return grouped
