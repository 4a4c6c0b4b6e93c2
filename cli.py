import argparse
import asyncio
import datetime
import time
from typing import Callable, Optional

import requests

from backup_service import BackupService
from config import configure_logging, load_settings
from db import Store
from planner_service import PlannerService


def export_backup(db_path: str, output_dir: str = ".", app_name: str = "ironlog") -> str:
    backups = BackupService(Store(db_path), app_name)
    path = asyncio.run(backups.write(output_dir))
    print(f"Backup written to {path}")
    return path


def _ask(created: datetime.datetime) -> bool:
    answer = input(f"Found backup from {created:%Y-%m-%d}. Overwrite current data? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def import_backup(
    backup_path: str,
    db_path: str,
    confirm: Optional[Callable[[datetime.datetime], bool]] = _ask,
) -> bool:
    with open(backup_path, "r", encoding="utf-8") as f:
        text = f.read()
    restored = asyncio.run(BackupService(Store(db_path)).restore(text, confirm))
    print("Backup restored" if restored else "Import cancelled")
    return restored


def _ask_reset() -> bool:
    answer = input("Erase all workouts, routines, logs and the profile? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def reset_data(db_path: str, confirm: Optional[Callable[[], bool]] = _ask_reset) -> bool:
    """Wipe the database back to its first-run contents after confirmation."""
    if confirm is not None and not confirm():
        print("Reset cancelled")
        return False
    asyncio.run(Store(db_path).reset())
    print("All data erased")
    return True


async def _demo(store: Store) -> bool:
    if await store.sets.count():
        return False
    planner = PlannerService(store)
    ids = {}
    for name in ("Bench Press", "Overhead Press", "Squat", "Deadlift"):
        exercise = await store.exercises.find_by_name(name)
        if exercise is None:
            ids[name] = await store.exercises.add({"name": name})
        else:
            ids[name] = exercise["id"]
    push = await store.routines.add(
        {
            "name": "Push Day",
            "elements": [
                {"exercise_id": ids["Bench Press"], "target_sets": 3, "target_reps": 8, "target_weight": 80},
                {"exercise_id": ids["Overhead Press"], "target_sets": 3, "target_reps": 8, "target_weight": 45},
            ],
        }
    )
    legs = await store.routines.add(
        {
            "name": "Leg Day",
            "elements": [
                {"exercise_id": ids["Squat"], "target_sets": 4, "target_reps": 6, "target_weight": 100},
                {"exercise_id": ids["Deadlift"], "target_sets": 2, "target_reps": 5, "target_weight": 120},
            ],
        }
    )
    await planner.assign(1, push)
    await planner.assign(4, legs)
    yesterday = datetime.date.today() - datetime.timedelta(days=1)
    await planner.log_set(ids["Bench Press"], 80, 8, date=yesterday)
    await planner.log_set(ids["Bench Press"], 82.5, 6, date=yesterday)
    await planner.log_set(ids["Squat"], 100, 6)
    return True


def demo_data(db_path: str) -> None:
    """Populate the database with demo routines and sets if it has no sets."""
    if asyncio.run(_demo(Store(db_path))):
        print("Demo data inserted")
    else:
        print("Database already contains sets")


def serve(db_path: str, yaml_path: str, host: str, port: int) -> None:
    import uvicorn

    from rest_api import create_app

    uvicorn.run(create_app(db_path, yaml_path), host=host, port=port)


def benchmark(url: str, runs: int = 10) -> None:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(f"{url}/health", timeout=5)
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average /health response time over {runs} runs: {avg:.4f}s")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="IronLog utility commands")
    parser.add_argument("--yaml", default="settings.yaml")
    parser.add_argument("--db", default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    exp = sub.add_parser("export")
    exp.add_argument("--out", default=None)

    imp = sub.add_parser("import")
    imp.add_argument("--in", dest="src", required=True)
    imp.add_argument("--yes", action="store_true")

    sub.add_parser("demo")

    rst = sub.add_parser("reset")
    rst.add_argument("--yes", action="store_true")

    srv = sub.add_parser("serve")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--runs", type=int, default=10)

    args = parser.parse_args(argv)
    settings = load_settings(args.yaml)
    configure_logging(settings.log_level)
    db_path = args.db or settings.db_path

    if args.cmd == "export":
        export_backup(db_path, args.out or settings.backup_dir, settings.app_name)
    elif args.cmd == "import":
        import_backup(args.src, db_path, None if args.yes else _ask)
    elif args.cmd == "reset":
        reset_data(db_path, None if args.yes else _ask_reset)
    elif args.cmd == "demo":
        demo_data(db_path)
    elif args.cmd == "serve":
        serve(db_path, args.yaml, args.host, args.port)
    elif args.cmd == "benchmark":
        benchmark(args.url, args.runs)


if __name__ == "__main__":
    main()
