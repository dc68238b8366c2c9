#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from core.errors import InvariantViolationError
from credits.ledger import CreditLedger
from db.session import SessionLocal
from pipeline.batches import requeue_batch
from pipeline.queue import JobQueues


def main() -> None:
    parser = ArgumentParser(description="Re-enqueue an existing batch (resumes missing scripts only)")
    parser.add_argument("batch_id", type=UUID)
    parser.add_argument("--lane", choices=["standard", "elevated"], default=None)
    args = parser.parse_args()

    try:
        job = requeue_batch(
            SessionLocal,
            CreditLedger(SessionLocal),
            JobQueues.from_env(),
            args.batch_id,
            lane=args.lane,
        )
    except InvariantViolationError as exc:
        raise SystemExit(f"[enqueue] {exc}")
    if job is None:
        print(f"[enqueue] batch {args.batch_id} already completed, nothing to do")
        return
    print("[enqueue] batch_id:", args.batch_id)
    print("[enqueue] job_id:", job.id)
    print("[enqueue] rq_id:", (job.payload or {}).get("rq_id"))


if __name__ == "__main__":
    main()
