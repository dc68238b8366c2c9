from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from core.errors import InvariantViolationError, NotFoundError, error_kind_of, RETRYABLE_KINDS
from db.models import Batch, Script
from .generator import merge_warnings, model_for_quality
from .parser import parse_script_output
from .platforms import validate_beat_count
from .prompting import REGENERATE_SYSTEM_PROMPT, build_regenerate_prompt
from .repair import complete_json
from .scoring import score_script


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ScriptRegenerator:
    """Produce a revised variant of an existing script from a free-form instruction.

    Variants always point at the root of their lineage, so lineage stays one
    level deep no matter which variant the instruction was applied to.
    """

    def __init__(self, session_factory: Callable[[], Session], llm) -> None:
        self._session_factory = session_factory
        self._llm = llm

    def regenerate(
        self,
        script_id: UUID,
        instruction: str,
        target_script_id: UUID | None = None,
    ) -> Script:
        if not instruction or not instruction.strip():
            raise InvariantViolationError("Regeneration instruction is empty")

        with self._session_factory() as session:
            source = session.get(
                Script,
                script_id,
                options=[selectinload(Script.batch).selectinload(Batch.project)],
            )
            if source is None:
                raise NotFoundError(f"Script not found: {script_id}")
            if not source.storyboard:
                raise InvariantViolationError(f"Script {script_id} has no storyboard to regenerate from")

            root_id = source.parent_script_id or source.id
            batch = source.batch
            project = batch.project
            quality = batch.quality
            forbidden_claims = list(project.forbidden_claims or [])

            if target_script_id is not None:
                target = session.get(Script, target_script_id)
                if target is None:
                    raise NotFoundError(f"Script not found: {target_script_id}")
                if target.status == "completed":
                    logger.info("Script %s already regenerated, skipping", target_script_id)
                    return target
                if target.status == "failed":
                    raise InvariantViolationError(f"Script {target_script_id} already failed")
                target.status = "generating"
                target.updated_at = _utcnow()
            prompt = build_regenerate_prompt(script=source, instruction=instruction, project=project)
            session.commit()

        logger.info("Regenerating script %s (root %s)", script_id, root_id)
        try:
            output = complete_json(
                self._llm,
                task_type="script_regenerate",
                system_prompt=REGENERATE_SYSTEM_PROMPT,
                user_prompt=prompt,
                parse=parse_script_output,
                model=model_for_quality(quality),
                temperature=0.7,
                max_tokens=4096,
            )
        except Exception as exc:
            # retryable errors leave the target generating for the next attempt
            if target_script_id is not None and error_kind_of(exc) not in RETRYABLE_KINDS:
                self.mark_failed(target_script_id, str(exc))
            raise

        result = score_script(output, forbidden_claims)
        warnings = merge_warnings(
            output.warnings,
            [validate_beat_count(output.storyboard, output.duration)],
            result.warnings,
        )
        now = _utcnow()
        with self._session_factory() as session:
            if target_script_id is not None:
                script = session.get(Script, target_script_id)
                if script is None:
                    raise NotFoundError(f"Script not found: {target_script_id}")
            else:
                script = Script(batch_id=batch.id, created_at=now)
                session.add(script)
            script.status = "completed"
            script.angle = output.angle
            script.duration = output.duration
            script.hook = output.hook
            script.storyboard = output.storyboard_payload()
            script.cta_variants = list(output.cta_variants)
            script.filming_checklist = list(output.filming_checklist)
            script.warnings = warnings
            script.score = result.score
            script.parent_script_id = root_id
            script.instruction = instruction
            script.error_message = None
            script.updated_at = now
            session.commit()
            logger.info("Script %s regenerated as %s (score %s)", script_id, script.id, result.score)
            return script

    def mark_failed(self, script_id: UUID, error: str) -> bool:
        """Move a pending or generating variant to failed; returns whether it changed."""
        with self._session_factory() as session:
            script = session.get(Script, script_id)
            if script is None or script.status in ("completed", "failed"):
                return False
            script.status = "failed"
            script.error_message = error
            script.updated_at = _utcnow()
            session.commit()
            return True
