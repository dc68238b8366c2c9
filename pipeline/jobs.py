from __future__ import annotations

from datetime import UTC, datetime
import logging
from uuid import UUID

from rq.job import Job as RQJob

from core.errors import RETRYABLE_KINDS, InvariantViolationError, error_kind_of
from credits.ledger import CreditLedger
from db.models import Job
from db.session import SessionLocal
from generation.generator import BatchGenerator
from generation.regenerate import ScriptRegenerator
from llm import LLMMediator
from pipeline.batches import settle_failed_batch, settle_failed_regeneration


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _build_llm() -> LLMMediator:
    return LLMMediator()


def _build_ledger() -> CreditLedger:
    return CreditLedger(SessionLocal)


def _update_job(
    session,
    job_id: str,
    status: str,
    result: dict | None = None,
    error: str | None = None,
    attempt: int | None = None,
) -> None:
    job = session.get(Job, UUID(str(job_id)))
    if job is None:
        raise RuntimeError(f"Job not found: {job_id}")
    now = _utcnow()
    job.status = status
    if attempt is not None:
        job.attempt = attempt
    if result is not None:
        job.result = result
    if error is not None:
        job.error_payload = {"message": error, "attempt": job.attempt}
    if status == "running":
        job.started_at = now
    if status in ("succeeded", "failed"):
        job.finished_at = now
    job.updated_at = now
    session.add(job)


def _job_id_of(job: RQJob) -> str | None:
    return str(job.args[0]) if job.args else None


def _payload_of(job: RQJob) -> dict:
    if job.args and len(job.args) > 1 and isinstance(job.args[1], dict):
        return job.args[1]
    return {}


def _settle_failure(payload: dict, error: str) -> dict:
    """Final failure bookkeeping: mark the unit failed and give the credits back."""
    ledger = _build_ledger()
    job_type = payload.get("type")
    if job_type == "generate-batch" and payload.get("batchId"):
        return settle_failed_batch(SessionLocal, ledger, UUID(payload["batchId"]), error)
    if job_type == "regenerate-script" and payload.get("scriptId"):
        return settle_failed_regeneration(SessionLocal, ledger, UUID(payload["scriptId"]), error)
    return {}


def generate_batch_job(payload: dict) -> dict:
    batch_id = payload.get("batchId")
    if not batch_id:
        raise InvariantViolationError("generate-batch payload requires batchId")
    generator = BatchGenerator(SessionLocal, _build_llm())
    return generator.run_batch(UUID(batch_id)).as_dict()


def regenerate_script_job(payload: dict) -> dict:
    script_id = payload.get("scriptId")
    source_id = payload.get("sourceScriptId")
    instruction = payload.get("instruction") or ""
    if not script_id or not source_id:
        raise InvariantViolationError("regenerate-script payload requires scriptId and sourceScriptId")
    regenerator = ScriptRegenerator(SessionLocal, _build_llm())
    script = regenerator.regenerate(UUID(source_id), instruction, target_script_id=UUID(script_id))
    return {"script_id": str(script.id), "score": script.score}


JOB_HANDLERS = {
    "generate-batch": generate_batch_job,
    "regenerate-script": regenerate_script_job,
}


def dispatch_job(job_id: str, payload: dict) -> dict:
    """Worker entry point for every queued job.

    Retryable failures are re-raised so RQ applies its retry policy; anything
    else settles the unit right away and ends the job with a failed result.
    """
    job_type = payload.get("type")
    session = SessionLocal()
    try:
        job = session.get(Job, UUID(str(job_id)))
        attempt = (job.attempt or 0) + 1 if job is not None else 1
        if job is not None:
            _update_job(session, job_id, "running", attempt=attempt)
            session.commit()
    finally:
        session.close()

    logger.info("Running %s job %s (attempt %s)", job_type, job_id, attempt)
    try:
        handler = JOB_HANDLERS.get(job_type)
        if handler is None:
            raise InvariantViolationError(f"Unknown job type: {job_type}")
        result = handler(payload)
    except Exception as exc:
        kind = error_kind_of(exc)
        if kind in RETRYABLE_KINDS:
            logger.warning("%s job %s failed (%s), handing to retry policy: %s", job_type, job_id, kind.value, exc)
            raise
        logger.error("%s job %s failed permanently (%s): %s", job_type, job_id, kind.value, exc)
        refunded = _settle_failure(payload, str(exc))
        return {"status": "failed", "error_kind": kind.value, "error": str(exc), "refunded": refunded}
    return {**result, "status": "succeeded"}


def rq_on_failure(job: RQJob, connection, exc_type, exc_value, traceback) -> None:  # type: ignore[no-untyped-def]
    job_id = _job_id_of(job)
    if job_id is None:
        return
    # callbacks run before RQ requeues, so retries_left still counts this attempt
    will_retry = bool(job.retries_left and job.retries_left > 0)
    session = SessionLocal()
    try:
        _update_job(session, job_id, "retrying" if will_retry else "failed", error=str(exc_value))
        session.commit()
    finally:
        session.close()

    if will_retry:
        logger.info("Job %s will retry (%s retries left)", job_id, job.retries_left)
        return
    logger.error("Job %s failed after final attempt: %s", job_id, exc_value)
    _settle_failure(_payload_of(job), str(exc_value))


def rq_on_success(job: RQJob, connection, result, *args, **kwargs) -> None:  # type: ignore[no-untyped-def]
    job_id = _job_id_of(job)
    if job_id is None:
        return
    result = result if isinstance(result, dict) else {"value": result}
    failed = result.get("status") == "failed"
    session = SessionLocal()
    try:
        _update_job(
            session,
            job_id,
            "failed" if failed else "succeeded",
            result=result,
            error=result.get("error") if failed else None,
        )
        session.commit()
    finally:
        session.close()
