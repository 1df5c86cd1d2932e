import datetime
import logging

from config import configure_logging
from db import UserRepository, WorkoutSessionRepository, WorkoutSetRepository

logger = logging.getLogger(__name__)

MOCK_USERS = [
    {"username": "test_user", "email": "test@gymtracker.app", "theme": "dark"},
    {"username": "demo_user", "email": "demo@gymtracker.app", "theme": "dark"},
    {"username": "jane_fitness", "email": "jane@example.com", "theme": "light"},
]

# (days ago, exercise id, [(reps, weight), ...])
DEMO_WORKOUTS = [
    (9, "Barbell_Bench_Press_-_Medium_Grip", [(8, 60.0), (8, 60.0), (6, 65.0)]),
    (7, "Barbell_Full_Squat", [(5, 80.0), (5, 85.0), (5, 85.0)]),
    (5, "Barbell_Bench_Press_-_Medium_Grip", [(8, 62.5), (7, 65.0), (6, 67.5)]),
    (3, "Barbell_Deadlift", [(5, 100.0), (5, 110.0), (3, 120.0)]),
    (2, "Pullups", [(10, None), (8, None), (6, None)]),
    (1, "Barbell_Bench_Press_-_Medium_Grip", [(8, 65.0), (8, 67.5), (6, 70.0)]),
]


def seed(db_path: str = "fitness.db") -> None:
    users = UserRepository(db_path)
    if users.count():
        print("Database already contains users")
        return
    ids = {}
    for user in MOCK_USERS:
        ids[user["username"]] = users.create(
            user["email"], username=user["username"], theme=user["theme"]
        )
    logger.info("Seeded %d mock users", len(ids))

    sessions = WorkoutSessionRepository(db_path)
    sets = WorkoutSetRepository(db_path)
    today = datetime.date.today()
    for days_ago, exercise_id, performed in DEMO_WORKOUTS:
        date = today - datetime.timedelta(days=days_ago)
        start = datetime.datetime.combine(
            date, datetime.time(18, 0), tzinfo=datetime.timezone.utc
        )
        end = start + datetime.timedelta(minutes=15 * len(performed))
        sid = sessions.create(
            ids["demo_user"],
            date.isoformat(),
            name="Demo session",
            start_time=start.isoformat(),
            end_time=end.isoformat(),
        )
        for number, (reps, weight) in enumerate(performed, start=1):
            sets.add(sid, exercise_id, number, reps, weight, rest_time=90)
    print("Seed data inserted")
    for username, uid in ids.items():
        print(f"  {username}: {uid}")


if __name__ == "__main__":
    configure_logging()
    seed()
