import os
import sys
import asyncio
import datetime
import unittest
import pytest
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from rest_api import IronLogAPI
from tools import DateTools


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_ironlog.db"
        self.yaml_path = "test_settings.yaml"
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)
        self.api = IronLogAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "exercises": 7})

    def test_exercise_crud(self) -> None:
        response = self.client.post("/exercises", json={"name": "Dips", "targetMuscle": "Chest"})
        self.assertEqual(response.status_code, 200)
        ex_id = response.json()["id"]

        response = self.client.patch(f"/exercises/{ex_id}", json={"category": "isometric"})
        self.assertEqual(response.status_code, 200)
        record = self.client.get(f"/exercises/{ex_id}").json()
        self.assertEqual(record["target_muscle"], "Chest")
        self.assertEqual(record["category"], "isometric")

        self.assertEqual(self.client.post("/exercises", json={"name": ""}).status_code, 400)
        self.assertEqual(self.client.patch("/exercises/999", json={"name": "x"}).status_code, 404)
        self.assertEqual(self.client.delete(f"/exercises/{ex_id}").status_code, 200)
        self.assertEqual(self.client.get(f"/exercises/{ex_id}").status_code, 404)

    def test_schedule_and_day_status(self) -> None:
        response = self.client.post(
            "/routines",
            json={"name": "Push", "elements": [{"exercise_id": 1, "target_sets": 1}]},
        )
        rid = response.json()["id"]
        today = datetime.date.today()
        day_index = DateTools.weekday_index(today)
        response = self.client.put(f"/schedule/{day_index}", json={"routine_id": rid})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["routine_id"], rid)
        self.assertEqual(self.client.put("/schedule/9", json={"routine_id": rid}).status_code, 400)

        routine = self.client.get("/active_routine").json()["routine"]
        self.assertEqual(routine["name"], "Push")

        status = self.client.get(f"/days/{today.isoformat()}/status").json()
        self.assertFalse(status["complete"])
        self.client.post("/sets", json={"exercise_id": 1, "weight": 60, "reps": 10})
        status = self.client.get(f"/days/{today.isoformat()}/status").json()
        self.assertTrue(status["complete"])

        week = self.client.get("/schedule/week").json()
        self.assertEqual(week[day_index]["routine"]["id"], rid)

    def test_sets_backlog_and_immutability(self) -> None:
        yesterday = datetime.date.today() - datetime.timedelta(days=1)
        response = self.client.post(
            "/sets",
            json={"exercise_id": 1, "weight": 100, "reps": 5, "date": yesterday.isoformat()},
        )
        self.assertEqual(response.status_code, 200)
        set_id = response.json()["id"]
        start, end = DateTools.day_bounds(yesterday)
        rows = self.client.get("/sets/range", params={"start": start, "end": end}).json()
        self.assertEqual([r["id"] for r in rows], [set_id])
        response = self.client.patch(f"/sets/{set_id}", json={"weight": 1})
        self.assertEqual(response.status_code, 409)
        response = self.client.post("/sets", json={"exercise_id": 1, "reps": -1})
        self.assertEqual(response.status_code, 400)

    def test_sets_are_logged_through_one_route(self) -> None:
        posts = [
            route
            for route in self.api.app.routes
            if getattr(route, "path", None) == "/sets" and "POST" in getattr(route, "methods", ())
        ]
        self.assertEqual(len(posts), 1)
        yesterday = datetime.date.today() - datetime.timedelta(days=1)
        response = self.client.post(
            "/sets",
            json={"exercise_id": 1, "weight": 50, "reps": 5, "date": yesterday.isoformat()},
        )
        record = self.client.get(f"/sets/{response.json()['id']}").json()
        start, end = DateTools.day_bounds(yesterday)
        self.assertTrue(start <= record["timestamp"] <= end)

    def test_factory_reset(self) -> None:
        self.client.post("/exercises", json={"name": "Dips"})
        self.client.post("/sets", json={"exercise_id": 8, "weight": 10, "reps": 10})
        self.client.put("/daily_logs/2024-03-05", json={"calories": 900})
        response = self.client.post("/reset")
        self.assertEqual(response.json(), {"status": "reset"})
        self.assertEqual([e["id"] for e in self.client.get("/exercises").json()], list(range(1, 8)))
        self.assertEqual(self.client.get("/sets").json(), [])
        self.assertEqual(self.client.get("/daily_logs").json(), [])
        self.assertEqual(len(self.client.get("/schedule").json()), 7)

    def test_profile_and_daily_logs(self) -> None:
        self.assertEqual(self.client.get("/profile").status_code, 404)
        response = self.client.post(
            "/profile/onboard",
            json={
                "name": "Sam",
                "gender": "male",
                "birth_year": 1990,
                "height": 180,
                "weight": 85,
                "goal_weight": 80,
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["goal"], "loss")
        response = self.client.post("/profile/weight", json={"weight": 84.2}, params={"date": "2024-03-05"})
        self.assertEqual(response.json()["current_weight"], 84.2)
        log = self.client.get("/daily_logs/2024-03-05").json()
        self.assertEqual(log["logged_weight"], 84.2)
        response = self.client.put("/daily_logs/2024-03-05", json={"calories": 1900, "protein": 170})
        self.assertEqual(response.json()["logged_weight"], 84.2)
        self.assertEqual(self.client.get("/daily_logs/2024-03-06").status_code, 404)
        self.assertEqual(self.client.get("/daily_logs/notadate").status_code, 400)

    def test_stats_endpoints(self) -> None:
        self.client.post("/sets", json={"exercise_id": 1, "weight": 100, "reps": 5})
        overview = self.client.get("/stats/overview").json()
        self.assertEqual(overview["current"]["days_worked_out"], 1)
        self.assertEqual(self.client.get("/stats/overview", params={"view": "week"}).status_code, 400)
        self.assertEqual(self.client.get("/stats/personal_record/1").json(), {"weight": 100})
        self.assertEqual(self.client.get("/stats/plateau/1").json(), {"plateau": None})
        self.assertEqual(len(self.client.get("/stats/history").json()), 1)
        trend = self.client.get("/stats/trend/1", params={"view": "year"}).json()
        self.assertEqual(len(trend), 12)

    def test_backup_round_trip(self) -> None:
        self.client.post("/exercises", json={"name": "Dips"})
        backup = self.client.get("/backup").json()
        self.assertEqual(backup["version"], 1)
        self.client.delete("/exercises/8")
        response = self.client.post("/backup", json=backup)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/exercises/8").json()["name"], "Dips")
        response = self.client.post("/backup", content=b"{broken")
        self.assertEqual(response.status_code, 400)

    def test_updates_socket(self) -> None:
        with TestClient(self.api.app) as client:
            with client.websocket_connect("/ws/updates") as ws:
                client.post("/exercises", json={"name": "Dips"})
                event = ws.receive_json()
        self.assertEqual(event, {"event": "changed", "collections": ["exercises"]})


@pytest.mark.asyncio
async def test_broadcast_tasks_are_kept_until_done(tmp_path):
    api = IronLogAPI(
        db_path=str(tmp_path / "ironlog.db"), yaml_path=str(tmp_path / "settings.yaml")
    )
    sent = []

    class Watcher:
        async def send_json(self, event):
            await asyncio.sleep(0)
            sent.append(event)

    api.watchers.append(Watcher())
    await api.store.exercises.add({"name": "Dips"})
    assert len(api._tasks) == 1
    await asyncio.gather(*api._tasks)
    await asyncio.sleep(0)
    assert not api._tasks
    assert sent == [{"event": "changed", "collections": ["exercises"]}]


if __name__ == "__main__":
    unittest.main()
