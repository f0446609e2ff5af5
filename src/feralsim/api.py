from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import __version__
from .aggregate import AggregateSummary, CancelToken
from .analytics import compare_profiles, simulate, stat_weights
from .catalog import CatalogError, CatalogRepository
from .config import ConfigurationError, SimulationProfile, build_setup, default_profile, profile_from_dict
from .formatting import stat_breakdown_to_dict

logger = logging.getLogger(__name__)

MAX_TRIALS = 100_000
MAX_RUNS = 64

app = FastAPI(
    title="feralsim API",
    description="Feral cat druid DPS simulation for Turtle WoW 1.18.",
    version=__version__,
)

catalog_repo = CatalogRepository()


class SimulateRequest(BaseModel):
    profile: Dict[str, Any] = Field(default_factory=dict, description="Profile payload. Empty uses the default profile.")
    trials: Optional[int] = Field(None, ge=1, le=MAX_TRIALS)
    seed: Optional[int] = None
    workers: Optional[int] = Field(None, ge=1, le=32)
    include_timeline: bool = False
    include_stats: bool = False


class CompareRequest(BaseModel):
    profiles: List[Dict[str, Any]] = Field(..., min_length=1, description="First profile is the baseline.")
    trials: Optional[int] = Field(None, ge=1, le=MAX_TRIALS)
    seed: Optional[int] = None
    workers: Optional[int] = Field(None, ge=1, le=32)


class WeightsRequest(BaseModel):
    profile: Dict[str, Any] = Field(default_factory=dict)
    stats: Optional[Dict[str, float]] = Field(None, description="Stat deltas to test, e.g. {'agility': 20}.")
    reference_stat: str = "attack_power"
    trials: Optional[int] = Field(None, ge=1, le=MAX_TRIALS)
    seed: Optional[int] = None
    workers: Optional[int] = Field(None, ge=1, le=32)


def _config_error(exc: ConfigurationError) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={
            "message": "Invalid profile.",
            "issues": [{"field": issue.field, "message": issue.message} for issue in exc.issues],
        },
    )


def _profile(payload: Dict[str, Any]) -> SimulationProfile:
    try:
        if not payload:
            return default_profile(catalog_repo)
        return profile_from_dict(payload, catalog_repo)
    except ConfigurationError as exc:
        raise _config_error(exc) from exc
    except CatalogError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _summary_payload(summary: AggregateSummary, profile: SimulationProfile, include_timeline: bool) -> Dict[str, Any]:
    return {"profile": profile.name, "summary": summary.to_dict(include_timeline=include_timeline)}


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}


@app.get("/api/v1/catalog")
def catalog():
    try:
        return catalog_repo.summary()
    except CatalogError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.get("/api/v1/bosses")
def bosses():
    try:
        return catalog_repo.bosses_by_group()
    except CatalogError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.post("/api/v1/simulate")
def simulate_profile(payload: SimulateRequest):
    profile = _profile(payload.profile)
    try:
        summary = simulate(profile, catalog_repo, trials=payload.trials, seed=payload.seed, workers=payload.workers)
    except ConfigurationError as exc:
        raise _config_error(exc) from exc
    result = _summary_payload(summary, profile, payload.include_timeline)
    if payload.include_stats:
        result["stats"] = stat_breakdown_to_dict(build_setup(profile, catalog_repo).resolver.breakdown())
    return result


@app.post("/api/v1/compare")
def compare(payload: CompareRequest):
    profiles = [_profile(item) for item in payload.profiles]
    try:
        results = compare_profiles(profiles, catalog_repo, trials=payload.trials, seed=payload.seed, workers=payload.workers)
    except ConfigurationError as exc:
        raise _config_error(exc) from exc
    return {"results": [entry.to_dict() for entry in results]}


@app.post("/api/v1/weights")
def weights(payload: WeightsRequest):
    profile = _profile(payload.profile)
    try:
        result = stat_weights(
            profile,
            catalog_repo,
            payload.stats,
            reference_stat=payload.reference_stat,
            trials=payload.trials,
            seed=payload.seed,
            workers=payload.workers,
        )
    except ConfigurationError as exc:
        raise _config_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return result.to_dict()


# ---------------------------------------------------------------------------
# Background runs
# ---------------------------------------------------------------------------
@dataclass
class BackgroundRun:
    id: str
    profile: SimulationProfile
    token: CancelToken = field(default_factory=CancelToken)
    status: str = "pending"
    done: int = 0
    total: int = 0
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    summary: Optional[AggregateSummary] = None
    error: str = ""

    def to_dict(self, include_timeline: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "profile": self.profile.name,
            "status": self.status,
            "progress": {"done": self.done, "total": self.total},
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
        }
        if self.summary is not None:
            payload["summary"] = self.summary.to_dict(include_timeline=include_timeline)
        return payload


class RunRegistry:
    """Tracks simulations running on background threads.

    At most ``max_runs`` entries are kept. Starting a run past that evicts the
    oldest finished runs; runs still in flight are never evicted.
    """

    def __init__(self, repo: CatalogRepository, max_runs: int = MAX_RUNS):
        self.repo = repo
        self.max_runs = max(1, int(max_runs))
        self._runs: Dict[str, BackgroundRun] = {}
        self._lock = threading.Lock()

    def start(self, profile: SimulationProfile, trials: Optional[int], seed: Optional[int], workers: Optional[int]) -> BackgroundRun:
        run = BackgroundRun(id=uuid.uuid4().hex[:12], profile=profile, total=trials or profile.simulation.trials)
        with self._lock:
            self._prune()
            self._runs[run.id] = run
        thread = threading.Thread(target=self._execute, args=(run, trials, seed, workers), name=f"feralsim-run-{run.id}", daemon=True)
        thread.start()
        logger.info("Started background run %s for '%s'", run.id, profile.name)
        return run

    def _prune(self) -> None:
        finished = sorted(
            (run for run in self._runs.values() if run.finished_at is not None),
            key=lambda run: run.finished_at,
        )
        overflow = len(self._runs) + 1 - self.max_runs
        for run in finished[: max(0, overflow)]:
            del self._runs[run.id]
            logger.debug("Evicted finished run %s", run.id)

    def _progress(self, run: BackgroundRun):
        def report(done: int, total: int) -> None:
            with self._lock:
                run.done = done
                run.total = total

        return report

    def _finish(self, run: BackgroundRun, status: str, error: str = "", summary: Optional[AggregateSummary] = None) -> None:
        with self._lock:
            run.summary = summary
            run.status = status
            run.error = error
            run.finished_at = time.time()

    def _execute(self, run: BackgroundRun, trials: Optional[int], seed: Optional[int], workers: Optional[int]) -> None:
        with self._lock:
            run.status = "running"
        try:
            summary = simulate(
                run.profile,
                self.repo,
                trials=trials,
                seed=seed,
                workers=workers,
                cancel_token=run.token,
                progress=self._progress(run),
            )
        except (ConfigurationError, CatalogError, ValueError) as exc:
            logger.warning("Background run %s failed: %s", run.id, exc)
            self._finish(run, "failed", str(exc))
            return
        except Exception as exc:
            logger.exception("Background run %s crashed", run.id)
            self._finish(run, "failed", f"{type(exc).__name__}: {exc}")
            return
        self._finish(run, "cancelled" if summary.cancelled else "completed", summary=summary)

    def get(self, run_id: str) -> BackgroundRun:
        with self._lock:
            run = self._runs.get(run_id)
        if run is None:
            raise KeyError(run_id)
        return run

    def cancel(self, run_id: str) -> BackgroundRun:
        run = self.get(run_id)
        run.token.cancel()
        logger.info("Cancellation requested for run %s", run_id)
        return run

    def list(self) -> List[BackgroundRun]:
        with self._lock:
            return list(self._runs.values())


runs = RunRegistry(catalog_repo)


@app.post("/api/v1/runs", status_code=202)
def start_run(payload: SimulateRequest):
    profile = _profile(payload.profile)
    try:
        build_setup(profile, catalog_repo)
    except ConfigurationError as exc:
        raise _config_error(exc) from exc
    run = runs.start(profile, payload.trials, payload.seed, payload.workers)
    return {"id": run.id, "status": run.status}


@app.get("/api/v1/runs")
def list_runs():
    return {"runs": [run.to_dict() for run in runs.list()]}


@app.get("/api/v1/runs/{run_id}")
def run_status(run_id: str, include_timeline: bool = False):
    try:
        return runs.get(run_id).to_dict(include_timeline=include_timeline)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}") from exc


@app.post("/api/v1/runs/{run_id}/cancel")
def cancel_run(run_id: str):
    try:
        run = runs.cancel(run_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}") from exc
    return {"id": run.id, "status": run.status, "cancel_requested": True}
