import argparse
import json
import os
import shutil
import time

import requests

from config import configure_logging
from db import Database, WorkoutSessionRepository, WorkoutSetRepository
from seed_sample_data import seed


def export_sessions(db_path: str, user_id: str, fmt: str, output_dir: str = ".") -> int:
    """Write one file per session of ``user_id`` and return how many were written."""
    sessions = WorkoutSessionRepository(db_path)
    sets = WorkoutSetRepository(db_path)
    count = 0
    for sid, date, *_ in sessions.fetch_for_user(user_id):
        if fmt == "csv":
            data = sets.export_session_csv(sid)
        else:
            data = sets.export_session_json(sid)
        out_path = os.path.join(output_dir, f"session_{sid}_{date}.{fmt}")
        with open(out_path, "w", encoding="utf-8") as f:
            f.write(data)
        count += 1
    return count


def import_exercises(db_path: str, json_path: str) -> int:
    with open(json_path, encoding="utf-8") as f:
        records = json.load(f)
    return Database(db_path).import_exercises(records)


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def benchmark(url: str, runs: int = 10) -> float:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(f"{url}/health", timeout=5)
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average /health response time over {runs} runs: {avg:.4f}s")
    return avg


def main() -> None:
    parser = argparse.ArgumentParser(description="Utility commands")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sd = sub.add_parser("seed")
    sd.add_argument("--db", default="fitness.db")

    imp = sub.add_parser("import-exercises")
    imp.add_argument("--file", required=True)
    imp.add_argument("--db", default="fitness.db")

    exp = sub.add_parser("export")
    exp.add_argument("--user", required=True)
    exp.add_argument("--db", default="fitness.db")
    exp.add_argument("--fmt", choices=["csv", "json"], default="csv")
    exp.add_argument("--out", default=".")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="fitness.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="fitness.db")

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--runs", type=int, default=10)

    args = parser.parse_args()
    configure_logging(args.log_level)

    if args.cmd == "seed":
        seed(args.db)
    elif args.cmd == "import-exercises":
        print(f"Imported {import_exercises(args.db, args.file)} exercises")
    elif args.cmd == "export":
        count = export_sessions(args.db, args.user, args.fmt, args.out)
        print(f"Exported {count} sessions")
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "benchmark":
        benchmark(args.url, args.runs)


if __name__ == "__main__":
    main()
