from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Callable
from uuid import UUID

from redis import Redis
from rq import Queue, Retry
from sqlalchemy.orm import Session

from core.config import env_int, redis_url
from db.models import Job
from db.session import SessionLocal
from pipeline.jobs import dispatch_job, rq_on_failure, rq_on_success


logger = logging.getLogger(__name__)

LANES = {
    "standard": "generation-standard",
    "elevated": "generation-elevated",
}
DEFAULT_CONCURRENCY = {"standard": 2, "elevated": 3}

MAX_RETRIES = 2
RETRY_INTERVALS = [5, 10]
RESULT_TTL_S = 24 * 3600
FAILURE_TTL_S = 7 * 24 * 3600


def _timeout_seconds() -> int:
    return env_int("RQ_JOB_TIMEOUT", 900)


def lane_concurrency(lane: str) -> int:
    return env_int(f"RQ_{lane.upper()}_CONCURRENCY", DEFAULT_CONCURRENCY[lane])


def get_redis() -> Redis:
    return Redis.from_url(redis_url())


class JobQueues:
    """The two generation lanes plus the ``job`` table rows that mirror them."""

    def __init__(
        self,
        connection: Redis | None,
        session_factory: Callable[[], Session],
        queues: dict[str, Queue] | None = None,
    ) -> None:
        self.connection = connection
        self._session_factory = session_factory
        self._queues = queues or {
            lane: Queue(name, connection=connection) for lane, name in LANES.items()
        }

    @classmethod
    def from_env(cls, session_factory: Callable[[], Session] | None = None) -> "JobQueues":
        return cls(get_redis(), session_factory or SessionLocal)

    def queue(self, lane: str) -> Queue:
        if lane not in self._queues:
            raise ValueError(f"Unknown lane: {lane}")
        return self._queues[lane]

    def enqueue_generate_batch(self, batch_id: UUID, *, lane: str = "standard") -> Job:
        return self._enqueue(
            "generate-batch",
            {"type": "generate-batch", "batchId": str(batch_id)},
            lane,
        )

    def enqueue_regenerate(
        self,
        script_id: UUID,
        source_script_id: UUID,
        instruction: str,
        *,
        lane: str = "standard",
    ) -> Job:
        return self._enqueue(
            "regenerate-script",
            {
                "type": "regenerate-script",
                "scriptId": str(script_id),
                "sourceScriptId": str(source_script_id),
                "instruction": instruction,
            },
            lane,
        )

    def _enqueue(self, job_type: str, payload: dict, lane: str) -> Job:
        queue = self.queue(lane)
        session = self._session_factory()
        try:
            db_job = Job(
                job_type=job_type,
                status="queued",
                lane=lane,
                attempt=0,
                max_attempts=MAX_RETRIES + 1,
                payload=dict(payload),
                queued_at=datetime.now(UTC),
            )
            session.add(db_job)
            session.commit()
            session.refresh(db_job)

            try:
                rq_job = queue.enqueue(
                    dispatch_job,
                    str(db_job.id),
                    payload,
                    job_timeout=_timeout_seconds(),
                    retry=Retry(max=MAX_RETRIES, interval=RETRY_INTERVALS),
                    result_ttl=RESULT_TTL_S,
                    failure_ttl=FAILURE_TTL_S,
                    on_failure=rq_on_failure,
                    on_success=rq_on_success,
                )
            except Exception as exc:
                db_job.status = "failed"
                db_job.error_payload = {"message": f"enqueue_failed: {exc}"}
                session.commit()
                raise

            db_job.payload = {**payload, "rq_id": rq_job.id}
            session.commit()
            logger.info("Enqueued %s job %s on %s (rq %s)", job_type, db_job.id, queue.name, rq_job.id)
            return db_job
        finally:
            session.close()
