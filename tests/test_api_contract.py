from __future__ import annotations

import threading
import time
import unittest
from unittest import mock


def _client():
    from fastapi.testclient import TestClient

    from feralsim.api import app

    return TestClient(app)


class ApiContractTests(unittest.TestCase):
    def test_v1_routes_exist(self) -> None:
        try:
            from feralsim.api import app
        except Exception as exc:  # pragma: no cover
            self.skipTest(f"FastAPI stack is not importable in this environment: {exc}")
            return

        paths = {route.path for route in app.routes}
        expected = {
            "/health",
            "/api/v1/catalog",
            "/api/v1/bosses",
            "/api/v1/simulate",
            "/api/v1/compare",
            "/api/v1/weights",
            "/api/v1/runs",
            "/api/v1/runs/{run_id}",
            "/api/v1/runs/{run_id}/cancel",
        }
        self.assertTrue(expected.issubset(paths))

    def test_health_contract_shape(self) -> None:
        try:
            from feralsim import __version__
            from feralsim import api as api_module
        except Exception as exc:  # pragma: no cover
            self.skipTest(f"FastAPI stack is not importable in this environment: {exc}")
            return

        self.assertEqual(api_module.health(), {"status": "ok", "version": __version__})
        catalog = api_module.catalog()
        self.assertEqual(set(catalog), {"abilities", "buffs", "procs", "races", "modifiers"})


class ApiClientTests(unittest.TestCase):
    def setUp(self) -> None:
        try:
            self.client = _client()
        except Exception as exc:  # pragma: no cover
            self.skipTest(f"FastAPI test client is not available in this environment: {exc}")

    def test_simulate_default_profile(self) -> None:
        response = self.client.post(
            "/api/v1/simulate",
            json={"trials": 3, "seed": 1, "include_timeline": True, "include_stats": True},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["profile"], "Default Tauren")
        self.assertEqual(payload["summary"]["trials_completed"], 3)
        self.assertTrue(payload["summary"]["timeline"])
        self.assertIn("attack_power", payload["stats"])

    def test_invalid_profile_lists_every_field(self) -> None:
        response = self.client.post(
            "/api/v1/simulate",
            json={"profile": {"race": "gnome", "procs": ["crusader"]}, "trials": 1},
        )
        self.assertEqual(response.status_code, 400)
        detail = response.json()["detail"]
        fields = {issue["field"] for issue in detail["issues"]}
        self.assertEqual(fields, {"race", "procs.crusader"})

    def test_request_validation(self) -> None:
        self.assertEqual(self.client.post("/api/v1/simulate", json={"trials": 0}).status_code, 422)
        self.assertEqual(self.client.post("/api/v1/compare", json={"profiles": []}).status_code, 422)

    def test_compare_and_weights(self) -> None:
        base = {"name": "Base", "race": "tauren", "stats": {"attack_power": 400}, "encounter": {"duration": 20}}
        strong = dict(base, name="Strong", stats={"attack_power": 800})
        response = self.client.post("/api/v1/compare", json={"profiles": [base, strong], "trials": 3, "seed": 2})
        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual([item["name"] for item in results], ["Strong", "Base"])

        response = self.client.post(
            "/api/v1/weights",
            json={"profile": base, "stats": {"attack_power": 100, "strength": 50}, "trials": 3, "seed": 2},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["reference_stat"], "attack_power")

        response = self.client.post("/api/v1/weights", json={"profile": base, "stats": {"crit": 0}, "trials": 1})
        self.assertEqual(response.status_code, 400)

    def test_background_run_lifecycle(self) -> None:
        response = self.client.post("/api/v1/runs", json={"trials": 4, "seed": 3})
        self.assertEqual(response.status_code, 202)
        run_id = response.json()["id"]

        deadline = time.monotonic() + 60.0
        status = {}
        while time.monotonic() < deadline:
            status = self.client.get(f"/api/v1/runs/{run_id}").json()
            if status["status"] in {"completed", "cancelled", "failed"}:
                break
            time.sleep(0.05)
        self.assertEqual(status["status"], "completed")
        self.assertEqual(status["progress"], {"done": 4, "total": 4})
        self.assertEqual(status["summary"]["trials_completed"], 4)

        listed = {item["id"] for item in self.client.get("/api/v1/runs").json()["runs"]}
        self.assertIn(run_id, listed)

        cancel = self.client.post(f"/api/v1/runs/{run_id}/cancel")
        self.assertEqual(cancel.status_code, 200)
        self.assertTrue(cancel.json()["cancel_requested"])

    def test_unknown_run_is_404(self) -> None:
        self.assertEqual(self.client.get("/api/v1/runs/missing").status_code, 404)
        self.assertEqual(self.client.post("/api/v1/runs/missing/cancel").status_code, 404)


class RunRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        try:
            from feralsim import api as api_module
            from feralsim.config import default_profile
        except Exception as exc:  # pragma: no cover
            self.skipTest(f"FastAPI stack is not importable in this environment: {exc}")
            return
        self.api = api_module
        self.profile = default_profile()

    def _wait_finished(self, run, timeout: float = 10.0) -> None:
        deadline = time.monotonic() + timeout
        while run.finished_at is None and time.monotonic() < deadline:
            time.sleep(0.01)
        self.assertIsNotNone(run.finished_at, f"run {run.id} still {run.status}")

    def test_unexpected_error_marks_run_failed(self) -> None:
        registry = self.api.RunRegistry(self.api.catalog_repo)
        with mock.patch.object(self.api, "simulate", side_effect=RuntimeError("boom")):
            with self.assertLogs("feralsim.api", level="ERROR") as logs:
                run = registry.start(self.profile, 2, 1, 1)
                self._wait_finished(run)
        self.assertEqual(run.status, "failed")
        self.assertEqual(run.error, "RuntimeError: boom")
        self.assertIsNone(run.summary)
        self.assertTrue(any("crashed" in line for line in logs.output))
        self.assertEqual(registry.get(run.id).to_dict()["status"], "failed")

    def test_finished_runs_are_evicted_past_the_cap(self) -> None:
        registry = self.api.RunRegistry(self.api.catalog_repo, max_runs=2)
        with mock.patch.object(self.api, "simulate", return_value=mock.Mock(cancelled=False)):
            first = registry.start(self.profile, 1, 1, 1)
            self._wait_finished(first)
            second = registry.start(self.profile, 1, 1, 1)
            self._wait_finished(second)
            third = registry.start(self.profile, 1, 1, 1)
            self._wait_finished(third)

        self.assertEqual({run.id for run in registry.list()}, {second.id, third.id})
        with self.assertRaises(KeyError):
            registry.get(first.id)

    def test_runs_in_flight_are_never_evicted(self) -> None:
        registry = self.api.RunRegistry(self.api.catalog_repo, max_runs=1)
        release = threading.Event()

        def blocked(*args, **kwargs):
            release.wait(10.0)
            return mock.Mock(cancelled=False)

        with mock.patch.object(self.api, "simulate", side_effect=blocked):
            first = registry.start(self.profile, 1, 1, 1)
            second = registry.start(self.profile, 1, 1, 1)
            self.assertEqual({run.id for run in registry.list()}, {first.id, second.id})
            release.set()
            self._wait_finished(first)
            self._wait_finished(second)
        self.assertEqual(first.status, "completed")


if __name__ == "__main__":
    unittest.main()
