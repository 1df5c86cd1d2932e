import os
import sys
import csv
import io
import json
import sqlite3
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    Database,
    UserRepository,
    WorkoutSessionRepository,
    WorkoutSetRepository,
)
from errors import NotFoundError, StoreError, ValidationError

BENCH = "Barbell_Bench_Press_-_Medium_Grip"


class TestSchemaMigration:
    def test_rebuilds_table_with_new_columns(self, tmp_path):
        db_file = tmp_path / "test.db"
        conn = sqlite3.connect(str(db_file))
        conn.execute(
            "CREATE TABLE users (id TEXT PRIMARY KEY, email TEXT NOT NULL UNIQUE, name TEXT)"
        )
        conn.execute("INSERT INTO users (id, email, name) VALUES ('u1', 'old@example.com', 'Old')")
        conn.commit()
        conn.close()

        Database(str(db_file))

        conn = sqlite3.connect(str(db_file))
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='users_old'"
        )
        assert cur.fetchone() is None
        cols = [row[1] for row in conn.execute("PRAGMA table_info(users)").fetchall()]
        assert "weight_unit" in cols
        row = conn.execute(
            "SELECT email, name, theme, weight_unit FROM users WHERE id = 'u1'"
        ).fetchone()
        assert row == ("old@example.com", "Old", "dark", "kg")
        fk_targets = {
            r[2] for r in conn.execute("PRAGMA foreign_key_list(workout_sessions)").fetchall()
        }
        assert fk_targets == {"users"}
        conn.close()

    def test_indexes_and_catalog(self, tmp_path):
        db = Database(str(tmp_path / "fresh.db"))
        conn = sqlite3.connect(db.db_path)
        indexes = {
            r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='index'").fetchall()
        }
        assert "idx_sessions_user_date" in indexes
        categories = conn.execute("SELECT COUNT(*) FROM exercise_categories").fetchone()[0]
        exercises = conn.execute("SELECT COUNT(*) FROM exercises").fetchone()[0]
        conn.close()
        assert categories == 7
        assert exercises > 20
        assert db.check_integrity()

    def test_catalog_is_not_reimported(self, tmp_path):
        db_file = str(tmp_path / "fresh.db")
        Database(db_file)
        conn = sqlite3.connect(db_file)
        conn.execute("UPDATE exercises SET name = 'Renamed' WHERE id = ?", (BENCH,))
        conn.commit()
        conn.close()
        Database(db_file)
        conn = sqlite3.connect(db_file)
        name = conn.execute("SELECT name FROM exercises WHERE id = ?", (BENCH,)).fetchone()[0]
        conn.close()
        assert name == "Renamed"


def test_map_category():
    assert Database.map_category("Olympic Weightlifting") == "olympic-weightlifting"
    assert Database.map_category("cardio") == "cardio"
    assert Database.map_category("unknown") == "strength"
    assert Database.map_category(None) == "strength"


def test_import_exercises_upserts(tmp_path):
    db = Database(str(tmp_path / "import.db"))
    record = {
        "id": "Kettlebell_Swing",
        "name": "Kettlebell Swing",
        "force": "pull",
        "level": "beginner",
        "mechanic": "compound",
        "equipment": "kettlebells",
        "primaryMuscles": ["hamstrings"],
        "secondaryMuscles": ["glutes"],
        "instructions": ["Swing."],
        "category": "plyometrics",
        "images": [],
    }
    assert db.import_exercises([record]) == 1
    assert db.import_exercises([dict(record, name="KB Swing")]) == 1
    conn = sqlite3.connect(db.db_path)
    row = conn.execute(
        "SELECT name, category_id, primary_muscles FROM exercises WHERE id = 'Kettlebell_Swing'"
    ).fetchone()
    conn.close()
    assert row[0] == "KB Swing"
    assert row[1] == "plyometrics"
    assert json.loads(row[2]) == ["hamstrings"]


class TestUserRepository:
    def test_create_and_preferences(self, tmp_path):
        repo = UserRepository(str(tmp_path / "users.db"))
        uid = repo.create("jane@example.com", username="jane_fitness", theme="light")
        user = repo.fetch_detail(uid)
        assert user["theme"] == "light"
        assert user["weight_unit"] == "kg"
        assert user["email_verified"] is False

        updated = repo.update_preferences(uid, weight_unit="lbs")
        assert updated["weight_unit"] == "lbs"
        assert updated["theme"] == "light"

        with pytest.raises(ValidationError):
            repo.update_preferences(uid, theme="purple")
        with pytest.raises(ValidationError):
            repo.create("x@example.com", weight_unit="stone")
        with pytest.raises(NotFoundError):
            repo.fetch_detail("missing")
        with pytest.raises(StoreError):
            repo.create("jane@example.com")
        assert repo.count() == 1

    def test_upsert_oauth_links_accounts(self, tmp_path):
        repo = UserRepository(str(tmp_path / "users.db"))
        existing = repo.create("sam@example.com", username="sam")
        uid = repo.upsert_oauth(
            "google", "sub-1", "sam@example.com", name="Sam", email_verified=True,
            access_token="a1",
        )
        assert uid == existing
        again = repo.upsert_oauth("google", "sub-1", "sam@example.com", access_token="a2")
        assert again == existing
        assert repo.fetch_accounts(existing) == [("google", "sub-1")]
        user = repo.fetch_detail(existing)
        assert user["name"] == "Sam"
        assert user["email_verified"] is True

        fresh = repo.upsert_oauth("google", "sub-2", "new@example.com", name="New")
        assert fresh != existing
        assert repo.fetch_by_email("new@example.com")["id"] == fresh

    def test_stats_and_delete(self, tmp_path):
        db_file = str(tmp_path / "users.db")
        repo = UserRepository(db_file)
        uid = repo.create("lifter@example.com")
        sid = WorkoutSessionRepository(db_file).create(uid, "2024-01-02")
        sets = WorkoutSetRepository(db_file)
        sets.add(sid, BENCH, 1, 5, 100.0)
        sets.add(sid, BENCH, 2, 5, None)
        stats = repo.stats(uid)
        assert stats["total_workouts"] == 1
        assert stats["total_sets"] == 2
        assert stats["unique_exercises"] == 1
        assert stats["total_volume"] == 500.0
        assert stats["last_workout_date"] == "2024-01-02"
        repo.delete(uid)
        with pytest.raises(NotFoundError):
            repo.delete(uid)
        assert WorkoutSessionRepository(db_file).count_for_user(uid) == 0


def test_session_export(tmp_path):
    db_file = str(tmp_path / "export.db")
    uid = UserRepository(db_file).create("e@example.com")
    sid = WorkoutSessionRepository(db_file).create(uid, "2024-01-02")
    sets = WorkoutSetRepository(db_file)
    sets.add(sid, BENCH, 1, 5, 100.0, rest_time=90, notes="easy")
    sets.add(sid, "Pullups", 2, 8)

    reader = csv.reader(io.StringIO(sets.export_session_csv(sid)))
    rows = list(reader)
    assert rows[0][0] == "Exercise ID"
    assert rows[1][:4] == [BENCH, "Barbell Bench Press - Medium Grip", "1", "5"]
    assert rows[1][6] == "500.0"
    assert rows[2][4] == ""

    data = json.loads(sets.export_session_json(sid))
    assert [d["set_number"] for d in data] == [1, 2]
    assert data[1]["volume"] == 0.0
    with pytest.raises(ValidationError):
        sets.add(sid, BENCH, 3, 5, -1.0)
