#!/usr/bin/env python3
"""
Standalone engine worker — runs the claim loop and scheduled passes
without the HTTP API.

Usage:
    python scripts/run_worker.py                 # run forever
    python scripts/run_worker.py --once          # one enqueue + tick, then exit
    python scripts/run_worker.py --fill-buffer   # one buffer fill pass, then exit
"""
import argparse
import logging
import sys
from pathlib import Path

# Ensure project root is on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(ROOT / ".env")

from apscheduler.schedulers.blocking import BlockingScheduler  # noqa: E402

from app.core.config import get_settings  # noqa: E402
from app.db_connection import init_db  # noqa: E402
from app.services.engine import Engine, start_engine_scheduler  # noqa: E402
from app.services.logging.service import DEPLOYMENT_ID, get_logging_service  # noqa: E402


def main():
    parser = argparse.ArgumentParser(description="Run the bot cadence engine worker")
    parser.add_argument("--once", action="store_true", help="Enqueue due agents, process one batch, exit")
    parser.add_argument("--fill-buffer", action="store_true", help="Run one buffer fill pass, exit")
    parser.add_argument("--max-jobs", type=int, default=None, help="Jobs per tick (default WORKER_MAX_JOBS_PER_TICK)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = get_settings()
    logging_service = get_logging_service()
    logging_service.install()

    print(f"[worker] Deployment: {DEPLOYMENT_ID}", flush=True)
    init_db()
    engine = Engine(settings=settings, events=logging_service)

    try:
        if args.once:
            result = engine.run_cycle(args.max_jobs)
            print(f"[worker] {result}", flush=True)
            return 0
        if args.fill_buffer:
            result = engine.fill_buffer()
            print(f"[worker] {result.to_dict()}", flush=True)
            return 0 if not result.failed else 1

        released = engine.release_stale_jobs()
        if released:
            print(f"[worker] Released {released} stale job(s)", flush=True)

        scheduler = BlockingScheduler(timezone="UTC")
        start_engine_scheduler(scheduler, engine)
        print("[worker] Running. Ctrl+C to stop.", flush=True)
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            print("[worker] Stopping...", flush=True)
        return 0
    finally:
        logging_service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
