from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
from typing import Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from core.config import env, env_int
from core.errors import BatchFailureError, ErrorKind, NotFoundError, error_kind_of
from db.models import Batch, Persona, Project, Script
from .parser import parse_plans, parse_script_output
from .platforms import validate_beat_count
from .prompting import (
    EXPAND_SYSTEM_PROMPT,
    PLAN_SYSTEM_PROMPT,
    build_expansion_prompt,
    build_plan_prompt,
    select_personas,
)
from .repair import complete_json
from .schema import ScriptOutput, ScriptPlan
from .scoring import score_script


logger = logging.getLogger(__name__)


def model_for_quality(quality: str) -> str | None:
    """Model override for a quality tier; ``None`` keeps the task route default."""
    if quality == "premium":
        return env("LLM_MODEL_PREMIUM", "anthropic/claude-sonnet-4.5") or None
    return env("LLM_MODEL_STANDARD", "anthropic/claude-haiku-4.5") or None


def _utcnow() -> datetime:
    return datetime.now(UTC)


def merge_warnings(*groups) -> list[str]:
    merged: list[str] = []
    for group in groups:
        for warning in group or []:
            if warning and warning not in merged:
                merged.append(warning)
    return merged


@dataclass(frozen=True)
class BatchContext:
    batch_id: UUID
    project: Project
    personas: list[Persona]
    platform: str
    angles: list[str]
    durations: list[int]
    quality: str
    forbidden_claims: list[str]


@dataclass
class ScriptOutcome:
    plan: ScriptPlan
    output: ScriptOutput | None = None
    score: int | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.output is not None and self.error is None


@dataclass(frozen=True)
class BatchRunResult:
    batch_id: UUID
    status: str
    created: int = 0
    failed: int = 0
    skipped: bool = False

    def as_dict(self) -> dict:
        return {
            "batch_id": str(self.batch_id),
            "status": self.status,
            "created": self.created,
            "failed": self.failed,
            "skipped": self.skipped,
        }


class BatchGenerator:
    """Two-pass batch pipeline: plan generation, then per-plan expansion.

    Safe to run again for the same batch: a completed batch is left alone and
    an interrupted one only generates the scripts it is still missing.
    """

    def __init__(self, session_factory: Callable[[], Session], llm) -> None:
        self._session_factory = session_factory
        self._llm = llm

    def run_batch(self, batch_id: UUID) -> BatchRunResult:
        try:
            loaded = self._start_batch(batch_id)
            if isinstance(loaded, BatchRunResult):
                return loaded
            ctx, remaining = loaded

            if remaining <= 0:
                self._set_status(batch_id, "completed")
                return BatchRunResult(batch_id=batch_id, status="completed")

            logger.info("Starting plan generation for batch %s (%s remaining)", batch_id, remaining)
            plans = self._generate_plans(ctx, remaining)
            if len(plans) > remaining:
                plans = plans[:remaining]

            logger.info("Starting script expansion for batch %s: %s plans", batch_id, len(plans))
            created = failed = 0
            for plan in plans:
                outcome = self._expand_plan(ctx, plan)
                self._persist_outcome(batch_id, outcome)
                if outcome.ok:
                    created += 1
                else:
                    failed += 1

            for index in range(len(plans), remaining):
                logger.warning("Batch %s: plan %s missing from model output", batch_id, index + 1)
                self._persist_outcome(
                    batch_id,
                    ScriptOutcome(
                        plan=self._placeholder_plan(ctx, index),
                        error="plan_missing: model returned fewer plans than requested",
                        error_kind=ErrorKind.MALFORMED_OUTPUT,
                    ),
                )
                failed += 1

            self._set_status(batch_id, "completed")
            logger.info("Batch %s completed: %s created, %s failed", batch_id, created, failed)
            return BatchRunResult(batch_id=batch_id, status="completed", created=created, failed=failed)
        except NotFoundError:
            raise
        except Exception as exc:
            logger.error("Batch %s failed: %s", batch_id, exc)
            try:
                self._set_status(batch_id, "failed", error=str(exc))
            except Exception:
                # the retry re-enters processing either way
                logger.exception("Could not record failure on batch %s", batch_id)
            raise BatchFailureError(f"batch_failed:{batch_id}: {exc}") from exc

    def _start_batch(self, batch_id: UUID) -> BatchRunResult | tuple[BatchContext, int]:
        """Load the batch and flip it to ``processing``; a completed batch short-circuits."""
        with self._session_factory() as session:
            batch = session.get(
                Batch,
                batch_id,
                options=[selectinload(Batch.project).selectinload(Project.personas)],
            )
            if batch is None:
                raise NotFoundError(f"Batch not found: {batch_id}")
            if batch.status == "completed":
                logger.info("Batch %s already completed, skipping", batch_id)
                return BatchRunResult(batch_id=batch_id, status="completed", skipped=True)

            existing = session.execute(
                select(func.count())
                .select_from(Script)
                .where(Script.batch_id == batch_id, Script.parent_script_id.is_(None))
            ).scalar_one()
            ctx = BatchContext(
                batch_id=batch.id,
                project=batch.project,
                personas=select_personas(batch.project.personas, batch.persona_ids),
                platform=batch.platform,
                angles=list(batch.angles or []),
                durations=[int(d) for d in batch.durations or []],
                quality=batch.quality,
                forbidden_claims=list(batch.project.forbidden_claims or []),
            )
            batch.status = "processing"
            batch.error_message = None
            batch.updated_at = _utcnow()
            session.commit()
            return ctx, batch.requested_count - int(existing)

    def _generate_plans(self, ctx: BatchContext, count: int) -> list[ScriptPlan]:
        prompt = build_plan_prompt(
            project=ctx.project,
            personas=ctx.personas,
            platform=ctx.platform,
            angles=ctx.angles,
            durations=ctx.durations,
            count=count,
        )
        return complete_json(
            self._llm,
            task_type="plan_generate",
            system_prompt=PLAN_SYSTEM_PROMPT,
            user_prompt=prompt,
            parse=parse_plans,
            model=model_for_quality(ctx.quality),
            temperature=0.7,
            max_tokens=env_int("GENERATION_PLAN_MAX_TOKENS", 4096),
        )

    def _expand_plan(self, ctx: BatchContext, plan: ScriptPlan) -> ScriptOutcome:
        try:
            output = complete_json(
                self._llm,
                task_type="script_expand",
                system_prompt=EXPAND_SYSTEM_PROMPT,
                user_prompt=build_expansion_prompt(
                    project=ctx.project,
                    personas=ctx.personas,
                    plan=plan,
                    platform=ctx.platform,
                ),
                parse=parse_script_output,
                model=model_for_quality(ctx.quality),
                temperature=0.7,
                max_tokens=env_int("GENERATION_SCRIPT_MAX_TOKENS", 4096),
            )
            result = score_script(output, ctx.forbidden_claims)
            beat_warning = validate_beat_count(output.storyboard, output.duration)
            return ScriptOutcome(
                plan=plan,
                output=output,
                score=result.score,
                warnings=merge_warnings(output.warnings, [beat_warning], result.warnings),
            )
        except Exception as exc:
            logger.error("Failed to generate script for plan %s/%ss: %s", plan.angle, plan.duration, exc)
            return ScriptOutcome(plan=plan, error=str(exc) or type(exc).__name__, error_kind=error_kind_of(exc))

    def _persist_outcome(self, batch_id: UUID, outcome: ScriptOutcome) -> None:
        now = _utcnow()
        if outcome.ok:
            output = outcome.output
            script = Script(
                batch_id=batch_id,
                status="completed",
                angle=output.angle,
                duration=output.duration,
                hook=output.hook,
                storyboard=output.storyboard_payload(),
                cta_variants=list(output.cta_variants),
                filming_checklist=list(output.filming_checklist),
                warnings=outcome.warnings,
                score=outcome.score,
                created_at=now,
                updated_at=now,
            )
        else:
            script = Script(
                batch_id=batch_id,
                status="failed",
                angle=outcome.plan.angle,
                duration=outcome.plan.duration,
                error_message=outcome.error,
                created_at=now,
                updated_at=now,
            )
        with self._session_factory() as session:
            session.add(script)
            session.commit()

    def _set_status(self, batch_id: UUID, status: str, error: str | None = None) -> None:
        with self._session_factory() as session:
            batch = session.get(Batch, batch_id)
            if batch is None:
                raise NotFoundError(f"Batch not found: {batch_id}")
            batch.status = status
            batch.error_message = error
            batch.updated_at = _utcnow()
            session.commit()

    def _placeholder_plan(self, ctx: BatchContext, index: int) -> ScriptPlan:
        angle = ctx.angles[index % len(ctx.angles)] if ctx.angles else "unknown"
        duration = ctx.durations[index % len(ctx.durations)] if ctx.durations else 30
        return ScriptPlan(angle=angle, duration=duration, hook_idea="")
