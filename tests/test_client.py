import os
import sys
import unittest
from unittest import mock
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from client import IronLogClient
from rest_api import IronLogAPI


class ClientTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_client.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.api = IronLogAPI(db_path=self.db_path, yaml_path="missing_settings.yaml")
        # route the client's HTTP calls through the in-process app
        patcher = mock.patch("client.requests", TestClient(self.api.app))
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = IronLogClient(base_url="http://testserver")

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def test_workflow(self) -> None:
        self.assertEqual(self.client.health()["status"], "ok")
        ex_id = self.client.add_exercise("Dips", "Chest")
        rid = self.client.add_routine("Dip Day", [{"exercise_id": ex_id, "target_sets": 2}])
        self.assertEqual(self.client.assign_day(3, rid)["routine_id"], rid)
        set_id = self.client.log_set(ex_id, 10, 12)
        self.assertIsInstance(set_id, int)
        self.assertIn("Dips", [e["name"] for e in self.client.list_exercises()])
        self.assertEqual(self.client.overview()["current"]["days_worked_out"], 1)

        backup = self.client.export_backup()
        self.assertEqual(len(backup["sets"]), 1)

        self.client.reset()
        self.assertEqual(len(self.client.list_exercises()), 7)
        self.assertEqual(self.client.export_backup()["sets"], [])


if __name__ == "__main__":
    unittest.main()
