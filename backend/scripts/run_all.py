#!/usr/bin/env python3
"""Launch the FastAPI server and the analysis workers in one command.

Usage:
    # From the backend/ directory with the venv activated:
    python scripts/run_all.py [--workers N]

    # Or from the repo root:
    python backend/scripts/run_all.py

The server process runs with its in-process worker disabled; analysis is
handled by N dedicated worker processes sharing the Redis outbox. The
per-user Redis lock keeps one analysis per user in flight across them.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import multiprocessing
import os
import signal
import sys
import time
from pathlib import Path

# Ensure backend/ is on sys.path so `from dropsense.…` imports work
_backend_dir = Path(__file__).resolve().parent.parent
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-7s  %(name)-22s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run_all")


# ── Process targets ──────────────────────────────────────────────────────

def _run_server():
    """Run the FastAPI server via uvicorn."""
    os.environ["ANALYSIS_WORKER_ENABLED"] = "false"
    import uvicorn
    from dropsense.config.settings import SERVER_HOST, SERVER_PORT

    uvicorn.run(
        "dropsense.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        log_level="info",
        reload=False,
    )


def _run_worker(index: int):
    """Run one outbox consumer until terminated."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-7s  %(name)-22s  %(message)s",
        datefmt="%H:%M:%S",
    )
    from dropsense.agents.analysis_worker import AnalysisWorker

    logger.info("Analysis worker %d starting", index)
    # Only the first worker runs the periodic scheduler
    worker = AnalysisWorker() if index == 0 else AnalysisWorker(schedule_interval=sys.maxsize)
    try:
        asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        pass


# ── Main ─────────────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Run DropSense server and analysis workers")
    parser.add_argument("--workers", type=int, default=1, help="number of analysis worker processes")
    args = parser.parse_args()

    from dropsense.config.settings import SERVER_PORT

    logger.info("=" * 60)
    logger.info("  DROPSENSE — Behavioral Personalization Engine")
    logger.info("=" * 60)
    logger.info("")
    logger.info("  FastAPI server    →  http://localhost:%d", SERVER_PORT)
    logger.info("  Analysis workers  →  %d", args.workers)
    logger.info("")
    logger.info("  Press Ctrl+C to stop all processes")
    logger.info("=" * 60)

    processes: list[multiprocessing.Process] = []

    p = multiprocessing.Process(target=_run_server, name="fastapi-server", daemon=True)
    p.start()
    processes.append(p)
    logger.info("FastAPI server started (pid %d)", p.pid)

    for i in range(args.workers):
        p = multiprocessing.Process(target=_run_worker, args=(i,), name=f"worker-{i}", daemon=True)
        p.start()
        processes.append(p)
        logger.info("Analysis worker %d started (pid %d)", i, p.pid)

    def _shutdown(signum, frame):
        logger.info("")
        logger.info("Shutting down all processes...")
        for proc in processes:
            if proc.is_alive():
                proc.terminate()
        for proc in processes:
            proc.join(timeout=5)
            if proc.is_alive():
                proc.kill()
        logger.info("All processes stopped.")
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    while True:
        for proc in processes:
            if not proc.is_alive():
                logger.warning("Process %s (pid %d) exited with code %s", proc.name, proc.pid, proc.exitcode)
        time.sleep(5)


if __name__ == "__main__":
    multiprocessing.set_start_method("spawn", force=True)
    main()
