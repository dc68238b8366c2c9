#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from datetime import datetime, timedelta, timezone

from rq.registry import FailedJobRegistry
from sqlalchemy import delete, select

from db.models import Job
from db.session import SessionLocal
from pipeline.queue import LANES, JobQueues


def _purge_registry(queues: JobQueues, lane: str, limit: int) -> int:
    queue = queues.queue(lane)
    registry = FailedJobRegistry(queue=queue)
    removed = 0
    for job_id in registry.get_job_ids()[: max(0, limit)]:
        job = queue.fetch_job(job_id)
        if job is not None:
            job.delete(remove_from_queue=True)
        else:
            registry.remove(job_id, delete_job=True)
        removed += 1
    return removed


def main() -> None:
    parser = ArgumentParser(description="Purge failed job rows older than N minutes")
    parser.add_argument("--older-min", type=int, default=60)
    parser.add_argument("--rq", action="store_true", help="Also clear the RQ failed registries")
    parser.add_argument("--limit", type=int, default=200, help="Max RQ jobs to delete per lane")
    args = parser.parse_args()

    cutoff = datetime.now(timezone.utc) - timedelta(minutes=args.older_min)
    session = SessionLocal()
    try:
        stmt = select(Job.id).where(Job.status == "failed", Job.updated_at < cutoff)
        ids = [row[0] for row in session.execute(stmt).all()]
        if ids:
            session.execute(delete(Job).where(Job.id.in_(ids)))
            session.commit()
        print(f"[purge] removed {len(ids)} job(s)")
    finally:
        session.close()

    if args.rq:
        queues = JobQueues.from_env()
        for lane in LANES:
            removed = _purge_registry(queues, lane, args.limit)
            print(f"[rq-cleanup] lane={lane} removed {removed} failed job(s)")


if __name__ == "__main__":
    main()
