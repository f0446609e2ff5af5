"""Feral cat druid DPS simulator for Turtle WoW 1.18."""

__version__ = "0.4.0"

from .abilities import AbilityCatalog, AbilityDefinition, AbilityEffect, EffectKind, ProcDefinition
from .aggregate import AggregateSummary, CancelToken, TrialAggregator, summarize_trials
from .analytics import compare_profiles, item_score, simulate, stat_weights
from .buffs import BuffDefinition, BuffTracker, StackingRule
from .catalog import CatalogError, CatalogRepository
from .conditions import Condition, evaluate
from .config import (
    ConfigurationError,
    SimulationProfile,
    SimulationSetup,
    build_default_rotation,
    build_setup,
    default_profile,
    load_profile,
    profile_from_dict,
)
from .engine import DamageRecord, EncounterSettings, SimulationEngine, TrialResult
from .events import EventKind, EventQueue, InternalConsistencyError
from .models import BaseStats, FieldIssue, ModelError, StackMode, StatEffect, TargetDefinition, ValueType
from .policy import DecisionPolicy, Rule, UseAbility, Wait
from .resources import EnergyModel, FinisherPool, InsufficientResource, ResourcePool
from .rng import ScriptedRNG, SeededRNG
from .stats import Contribution, StatResolver, StatSnapshot

__all__ = [
    "AbilityCatalog",
    "AbilityDefinition",
    "AbilityEffect",
    "AggregateSummary",
    "BaseStats",
    "BuffDefinition",
    "BuffTracker",
    "CancelToken",
    "CatalogError",
    "CatalogRepository",
    "Condition",
    "ConfigurationError",
    "Contribution",
    "DamageRecord",
    "DecisionPolicy",
    "EffectKind",
    "EncounterSettings",
    "EnergyModel",
    "EventKind",
    "EventQueue",
    "FieldIssue",
    "FinisherPool",
    "InsufficientResource",
    "InternalConsistencyError",
    "ModelError",
    "ProcDefinition",
    "ResourcePool",
    "Rule",
    "ScriptedRNG",
    "SeededRNG",
    "SimulationEngine",
    "SimulationProfile",
    "SimulationSetup",
    "StackMode",
    "StackingRule",
    "StatEffect",
    "StatResolver",
    "StatSnapshot",
    "TargetDefinition",
    "TrialAggregator",
    "TrialResult",
    "UseAbility",
    "ValueType",
    "Wait",
    "build_default_rotation",
    "build_setup",
    "compare_profiles",
    "default_profile",
    "evaluate",
    "item_score",
    "load_profile",
    "profile_from_dict",
    "simulate",
    "stat_weights",
    "summarize_trials",
]
