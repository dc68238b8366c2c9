#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import os

from rq import SimpleWorker, Worker
from rq.worker_pool import WorkerPool

from core.logging import setup_logging
from db.session import engine
from pipeline.queue import LANES, JobQueues, lane_concurrency


def main() -> None:
    parser = ArgumentParser(description="Start a generation worker pool for one lane")
    parser.add_argument("--lane", choices=sorted(LANES), default="standard")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Worker processes (default: RQ_<LANE>_CONCURRENCY, 2 standard / 3 elevated)",
    )
    parser.add_argument("--burst", action="store_true", help="Process queued jobs and exit")
    parser.add_argument("--simple", action="store_true", help="Single in-process worker (no fork)")
    args = parser.parse_args()

    setup_logging(f"scriptfactory-worker-{args.lane}")

    if hasattr(os, "register_at_fork"):
        os.register_at_fork(after_in_child=lambda: engine.dispose())

    queues = JobQueues.from_env()
    queue = queues.queue(args.lane)
    concurrency = args.concurrency or lane_concurrency(args.lane)
    print(f"[worker] lane={args.lane} queue={queue.name} concurrency={concurrency}")

    if args.simple or concurrency <= 1:
        worker_cls = SimpleWorker if args.simple else Worker
        worker = worker_cls([queue], connection=queues.connection)
        # the scheduler moves retried jobs back once their backoff interval passes
        worker.work(with_scheduler=True, burst=args.burst)
        return

    pool = WorkerPool([queue], connection=queues.connection, num_workers=concurrency)
    pool.start(burst=args.burst)


if __name__ == "__main__":
    main()
