import os
import sys
import json
import unittest
from unittest.mock import patch
sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from cli import (
    export_sessions,
    import_exercises,
    backup_db,
    restore_db,
    benchmark,
)
from db import UserRepository, WorkoutSessionRepository
from seed_sample_data import seed

class CLIToolsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_cli.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def tearDown(self) -> None:
        for path in [self.db_path, "backup.db", "exports", "extra_exercises.json"]:
            if os.path.exists(path):
                if os.path.isdir(path):
                    for f in os.listdir(path):
                        os.remove(os.path.join(path, f))
                    os.rmdir(path)
                else:
                    os.remove(path)

    def test_seed_creates_demo_history(self) -> None:
        seed(self.db_path)
        users = UserRepository(self.db_path)
        self.assertEqual(users.count(), 3)
        demo = users.fetch_by_email("demo@gymtracker.app")
        self.assertEqual(WorkoutSessionRepository(self.db_path).count_for_user(demo["id"]), 6)
        seed(self.db_path)
        self.assertEqual(users.count(), 3)

    def test_export_backup_restore(self) -> None:
        seed(self.db_path)
        demo = UserRepository(self.db_path).fetch_by_email("demo@gymtracker.app")
        os.makedirs("exports", exist_ok=True)
        count = export_sessions(self.db_path, demo["id"], "csv", "exports")
        self.assertEqual(count, 6)
        self.assertEqual(len(os.listdir("exports")), 6)
        count = export_sessions(self.db_path, demo["id"], "json", "exports")
        self.assertEqual(len([f for f in os.listdir("exports") if f.endswith(".json")]), 6)
        backup_db(self.db_path, "backup.db")
        self.assertTrue(os.path.exists("backup.db"))
        os.remove(self.db_path)
        restore_db("backup.db", self.db_path)
        self.assertEqual(UserRepository(self.db_path).count(), 3)

    def test_import_exercises(self) -> None:
        with open("extra_exercises.json", "w", encoding="utf-8") as f:
            json.dump(
                [
                    {
                        "id": "Battle_Ropes",
                        "name": "Battle Ropes",
                        "category": "strongman",
                        "primaryMuscles": ["shoulders"],
                    }
                ],
                f,
            )
        self.assertEqual(import_exercises(self.db_path, "extra_exercises.json"), 1)

    @patch("cli.requests.get")
    def test_benchmark(self, mock_get) -> None:
        avg = benchmark("http://testserver", runs=3)
        self.assertEqual(mock_get.call_count, 3)
        mock_get.assert_called_with("http://testserver/health", timeout=5)
        self.assertGreaterEqual(avg, 0)

if __name__ == "__main__":
    unittest.main()
