"""
Batch kickoff, regeneration requests and the read views over them.

Credits are debited before anything is enqueued and returned when the work
cannot be queued or fails for good. The debit uses the batch id (or the new
script id, for regenerations) as its correlation id, which is what the
refund looks up.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Callable, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from core.config import env_int
from core.errors import InvariantViolationError, NotFoundError
from credits.ledger import CreditLedger
from db.models import Batch, Project, Script, UserAccount
from generation.platforms import PLATFORM_PROFILES


logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50


def _utcnow() -> datetime:
    return datetime.now(UTC)


def per_script_cost(quality: str) -> int:
    if quality == "premium":
        return env_int("CREDITS_COST_PREMIUM", 5)
    return env_int("CREDITS_COST_STANDARD", 1)


def lane_for_plan(plan: str | None) -> str:
    return "elevated" if plan == "pro" else "standard"


class BatchRequest(BaseModel):
    count: int = Field(ge=1, le=MAX_BATCH_SIZE)
    platform: str = "universal"
    angles: list[str] = Field(min_length=1)
    durations: list[int] = Field(min_length=1)
    persona_ids: list[UUID] | None = None
    quality: Literal["standard", "premium"] = "standard"

    @field_validator("platform")
    @classmethod
    def _known_platform(cls, value: str) -> str:
        if value not in PLATFORM_PROFILES:
            raise ValueError(f"unknown platform: {value}")
        return value

    @field_validator("durations")
    @classmethod
    def _positive_durations(cls, value: list[int]) -> list[int]:
        if any(d <= 0 or d > 180 for d in value):
            raise ValueError("durations must be between 1 and 180 seconds")
        return value


def script_to_dict(script: Script) -> dict:
    return {
        "id": str(script.id),
        "batch_id": str(script.batch_id),
        "status": script.status,
        "angle": script.angle,
        "duration": script.duration,
        "hook": script.hook,
        "storyboard": script.storyboard,
        "cta_variants": script.cta_variants or [],
        "filming_checklist": script.filming_checklist or [],
        "warnings": script.warnings or [],
        "score": script.score,
        "parent_script_id": str(script.parent_script_id) if script.parent_script_id else None,
        "instruction": script.instruction,
        "error_message": script.error_message,
        "created_at": script.created_at,
    }


def _owned_batch(session: Session, user_id: UUID, batch_id: UUID) -> Batch:
    batch = session.get(Batch, batch_id)
    if batch is None or batch.user_id != user_id:
        raise NotFoundError(f"Batch not found: {batch_id}")
    return batch


def create_batch(
    session_factory: Callable[[], Session],
    ledger: CreditLedger,
    queues,
    *,
    user_id: UUID,
    project_id: UUID,
    request: BatchRequest,
) -> Batch:
    with session_factory() as session:
        project = session.get(Project, project_id, options=[selectinload(Project.personas)])
        if project is None or project.user_id != user_id:
            raise NotFoundError(f"Project not found: {project_id}")
        user = session.get(UserAccount, user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        if request.persona_ids:
            known = {p.id for p in project.personas}
            unknown = [str(pid) for pid in request.persona_ids if pid not in known]
            if unknown:
                raise InvariantViolationError(f"Personas not in project: {', '.join(unknown)}")
        lane = lane_for_plan(user.plan)

    cost = per_script_cost(request.quality) * request.count
    batch_id = uuid4()
    ledger.consume(
        user_id,
        cost,
        correlation_id=str(batch_id),
        description=f"Batch generation ({request.count} {request.quality} scripts)",
    )

    try:
        now = _utcnow()
        with session_factory() as session:
            batch = Batch(
                id=batch_id,
                project_id=project_id,
                user_id=user_id,
                requested_count=request.count,
                platform=request.platform,
                angles=list(request.angles),
                durations=list(request.durations),
                persona_ids=[str(pid) for pid in request.persona_ids] if request.persona_ids else None,
                quality=request.quality,
                status="pending",
                credits_charged=cost,
                created_at=now,
                updated_at=now,
            )
            session.add(batch)
            session.commit()
        queues.enqueue_generate_batch(batch_id, lane=lane)
    except Exception as exc:
        logger.error("Could not queue batch %s: %s", batch_id, exc)
        settle_failed_batch(session_factory, ledger, batch_id, f"enqueue_failed: {exc}")
        raise

    logger.info("Batch %s queued on %s lane for %s credits", batch_id, lane, cost)
    return batch


def requeue_batch(
    session_factory: Callable[[], Session],
    ledger: CreditLedger,
    queues,
    batch_id: UUID,
    *,
    lane: str | None = None,
):
    """Queue an unfinished batch again; it resumes with the scripts it is missing.

    Returns the new job, or ``None`` when the batch already completed. A batch
    whose charge was refunded is refused: it has to be started as a new batch.
    """
    with session_factory() as session:
        batch = session.get(Batch, batch_id)
        if batch is None:
            raise NotFoundError(f"Batch not found: {batch_id}")
        if batch.status == "completed":
            return None
        user = session.get(UserAccount, batch.user_id) if batch.user_id else None
        lane = lane or lane_for_plan(user.plan if user else None)

    if ledger.was_refunded(str(batch_id)):
        raise InvariantViolationError(f"Batch {batch_id} was refunded; start a new batch instead")
    logger.info("Re-queueing batch %s on %s lane", batch_id, lane)
    return queues.enqueue_generate_batch(batch_id, lane=lane)


def request_regeneration(
    session_factory: Callable[[], Session],
    ledger: CreditLedger,
    queues,
    *,
    user_id: UUID,
    script_id: UUID,
    instruction: str,
) -> Script:
    """Charge for and queue a variant; returns the pending variant row."""
    if not instruction or not instruction.strip():
        raise InvariantViolationError("Regeneration instruction is empty")

    with session_factory() as session:
        source = session.get(Script, script_id, options=[selectinload(Script.batch)])
        if source is None or source.batch.user_id != user_id:
            raise NotFoundError(f"Script not found: {script_id}")
        if not source.storyboard:
            raise InvariantViolationError(f"Script {script_id} has no storyboard to regenerate from")
        user = session.get(UserAccount, user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        root_id = source.parent_script_id or source.id
        batch_id = source.batch_id
        quality = source.batch.quality
        angle, duration = source.angle, source.duration
        lane = lane_for_plan(user.plan)

    variant_id = uuid4()
    ledger.consume(
        user_id,
        per_script_cost(quality),
        correlation_id=str(variant_id),
        description="Script regeneration",
    )

    try:
        now = _utcnow()
        with session_factory() as session:
            variant = Script(
                id=variant_id,
                batch_id=batch_id,
                status="pending",
                angle=angle,
                duration=duration,
                parent_script_id=root_id,
                instruction=instruction,
                created_at=now,
                updated_at=now,
            )
            session.add(variant)
            session.commit()
        queues.enqueue_regenerate(variant_id, script_id, instruction, lane=lane)
    except Exception as exc:
        logger.error("Could not queue regeneration %s: %s", variant_id, exc)
        settle_failed_regeneration(session_factory, ledger, variant_id, f"enqueue_failed: {exc}")
        raise

    return variant


def settle_failed_batch(
    session_factory: Callable[[], Session],
    ledger: CreditLedger,
    batch_id: UUID,
    error: str,
) -> dict[str, int]:
    """Mark an unfinished batch failed and refund its charge.

    A batch that completed keeps its charge, and a second call refunds nothing.
    """
    with session_factory() as session:
        batch = session.get(Batch, batch_id)
        if batch is not None:
            if batch.status == "completed":
                return {}
            if batch.status != "failed":
                batch.status = "failed"
                batch.error_message = error
                batch.updated_at = _utcnow()
                session.commit()
    return ledger.refund(str(batch_id), description="Refund for failed batch")


def settle_failed_regeneration(
    session_factory: Callable[[], Session],
    ledger: CreditLedger,
    script_id: UUID,
    error: str,
) -> dict[str, int]:
    with session_factory() as session:
        script = session.get(Script, script_id)
        if script is not None:
            if script.status == "completed":
                return {}
            if script.status != "failed":
                script.status = "failed"
                script.error_message = error
                script.updated_at = _utcnow()
                session.commit()
    return ledger.refund(str(script_id), description="Refund for failed regeneration")


def batch_progress(session_factory: Callable[[], Session], user_id: UUID, batch_id: UUID) -> dict:
    with session_factory() as session:
        batch = _owned_batch(session, user_id, batch_id)
        counts = dict(
            session.execute(
                select(Script.status, func.count())
                .where(Script.batch_id == batch_id, Script.parent_script_id.is_(None))
                .group_by(Script.status)
            ).all()
        )
        variants = session.execute(
            select(func.count())
            .select_from(Script)
            .where(Script.batch_id == batch_id, Script.parent_script_id.is_not(None))
        ).scalar_one()

    completed = int(counts.get("completed", 0))
    failed = int(counts.get("failed", 0))
    scripts_count = sum(int(v) for v in counts.values())
    progress = 100 if batch.status == "completed" else min(
        100, round(100 * (completed + failed) / batch.requested_count)
    )
    return {
        "id": str(batch.id),
        "project_id": str(batch.project_id),
        "status": batch.status,
        "platform": batch.platform,
        "quality": batch.quality,
        "requested_count": batch.requested_count,
        "scripts_count": scripts_count,
        "completed_count": completed,
        "failed_count": failed,
        "variants_count": int(variants),
        "progress": progress,
        "credits_charged": batch.credits_charged,
        "error_message": batch.error_message,
        "created_at": batch.created_at,
        "updated_at": batch.updated_at,
    }


def list_scripts(
    session_factory: Callable[[], Session],
    user_id: UUID,
    batch_id: UUID,
    include_variants: bool = True,
) -> list[dict]:
    """Scripts of a batch, best score first; unscored (failed) ones last."""
    with session_factory() as session:
        _owned_batch(session, user_id, batch_id)
        stmt = select(Script).where(Script.batch_id == batch_id)
        if not include_variants:
            stmt = stmt.where(Script.parent_script_id.is_(None))
        stmt = stmt.order_by(Script.score.is_(None), Script.score.desc(), Script.created_at)
        return [script_to_dict(script) for script in session.scalars(stmt).all()]
