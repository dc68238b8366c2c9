from __future__ import annotations

import pytest
from sqlalchemy import select

from core.errors import BatchFailureError, ErrorKind, NotFoundError
from db.models import Batch, Script
from fakes import FakeLLM, plans_payload, script_payload
from generation.generator import BatchGenerator
from llm.mediator import LLMError


def _scripts(session_factory, batch_id) -> list[Script]:
    with session_factory() as session:
        return list(
            session.scalars(
                select(Script).where(Script.batch_id == batch_id).order_by(Script.created_at)
            ).all()
        )


def _batch(session_factory, batch_id) -> Batch:
    with session_factory() as session:
        return session.get(Batch, batch_id)


def test_run_batch_creates_scored_scripts(session_factory, make_batch) -> None:
    batch_id = make_batch(requested_count=3)
    llm = FakeLLM(
        {
            "plan_generate": [plans_payload(3)],
            "script_expand": [script_payload(), script_payload(angle="social_proof"), script_payload()],
        }
    )

    result = BatchGenerator(session_factory, llm).run_batch(batch_id)

    assert result.status == "completed"
    assert (result.created, result.failed) == (3, 0)
    scripts = _scripts(session_factory, batch_id)
    assert len(scripts) == 3
    assert all(s.status == "completed" and 0 <= s.score <= 100 for s in scripts)
    assert scripts[0].storyboard[0]["onScreen"] == "Finally, no more smudges"
    assert _batch(session_factory, batch_id).status == "completed"
    assert llm.tasks() == ["plan_generate", "script_expand", "script_expand", "script_expand"]
    plan_prompt = llm.calls[0]["messages"][1]["content"]
    assert "Generate exactly 3 unique script PLANS" in plan_prompt
    assert "TikTok" in plan_prompt


def test_completed_batch_is_not_reprocessed(session_factory, make_batch) -> None:
    batch_id = make_batch(requested_count=1)
    llm = FakeLLM({"plan_generate": [plans_payload(1)], "script_expand": [script_payload()]})
    generator = BatchGenerator(session_factory, llm)
    generator.run_batch(batch_id)
    calls_before = len(llm.calls)

    again = generator.run_batch(batch_id)

    assert again.skipped is True
    assert len(llm.calls) == calls_before
    assert len(_scripts(session_factory, batch_id)) == 1


def test_resume_generates_only_missing_scripts(session_factory, make_batch, make_script) -> None:
    batch_id = make_batch(requested_count=5, status="processing")
    first = make_script(batch_id)
    make_script(batch_id)
    # variants never count toward the requested total
    make_script(batch_id, parent_script_id=first, instruction="punchier")
    llm = FakeLLM(
        {
            "plan_generate": [plans_payload(3)],
            "script_expand": [script_payload() for _ in range(3)],
        }
    )

    result = BatchGenerator(session_factory, llm).run_batch(batch_id)

    assert result.created == 3
    roots = [s for s in _scripts(session_factory, batch_id) if s.parent_script_id is None]
    assert len(roots) == 5
    assert "Generate exactly 3 unique script PLANS" in llm.calls[0]["messages"][1]["content"]


def test_single_plan_failure_does_not_abort_batch(session_factory, make_batch) -> None:
    batch_id = make_batch(requested_count=3)
    llm = FakeLLM(
        {
            "plan_generate": [plans_payload(3)],
            "script_expand": [script_payload(), "{broken", script_payload()],
            "json_repair": ["still {broken"],
        }
    )

    result = BatchGenerator(session_factory, llm).run_batch(batch_id)

    assert result.status == "completed"
    assert (result.created, result.failed) == (2, 1)
    failed = [s for s in _scripts(session_factory, batch_id) if s.status == "failed"]
    assert len(failed) == 1
    assert failed[0].angle == "social_proof"
    assert failed[0].storyboard is None and failed[0].score is None
    assert failed[0].error_message.startswith("repair_failed")


def test_transient_expansion_error_is_recorded_as_failed_script(session_factory, make_batch) -> None:
    batch_id = make_batch(requested_count=2)
    llm = FakeLLM(
        {
            "plan_generate": [plans_payload(2)],
            "script_expand": [
                LLMError(code="http_503", message="overloaded", provider="openrouter", task_type="script_expand", retryable=True),
                script_payload(),
            ],
        }
    )

    result = BatchGenerator(session_factory, llm).run_batch(batch_id)

    assert (result.created, result.failed) == (1, 1)


def test_plan_failure_marks_batch_failed_and_raises(session_factory, make_batch) -> None:
    batch_id = make_batch(requested_count=2)
    llm = FakeLLM({"plan_generate": ["no json here"], "json_repair": ["nor here"]})

    with pytest.raises(BatchFailureError) as exc:
        BatchGenerator(session_factory, llm).run_batch(batch_id)

    assert exc.value.kind == ErrorKind.BATCH_FAILURE
    assert exc.value.retryable
    batch = _batch(session_factory, batch_id)
    assert batch.status == "failed"
    assert "repair_failed" in batch.error_message
    assert _scripts(session_factory, batch_id) == []


def test_failed_batch_resumes_on_retry(session_factory, make_batch) -> None:
    batch_id = make_batch(requested_count=1)
    llm = FakeLLM(
        {
            "plan_generate": [
                LLMError(code="network_error", message="reset", provider="openrouter", task_type="plan_generate", retryable=True),
                plans_payload(1),
            ],
            "script_expand": [script_payload()],
        }
    )
    generator = BatchGenerator(session_factory, llm)

    with pytest.raises(BatchFailureError):
        generator.run_batch(batch_id)
    result = generator.run_batch(batch_id)

    assert result.status == "completed"
    assert _batch(session_factory, batch_id).error_message is None


def test_extra_plans_are_truncated_and_missing_plans_recorded(session_factory, make_batch) -> None:
    extra_id = make_batch(requested_count=2)
    llm = FakeLLM({"plan_generate": [plans_payload(4)], "script_expand": [script_payload(), script_payload()]})
    assert BatchGenerator(session_factory, llm).run_batch(extra_id).created == 2
    assert len(_scripts(session_factory, extra_id)) == 2

    short_id = make_batch(requested_count=3, angles=["testimonial"], durations=[15])
    llm = FakeLLM({"plan_generate": [plans_payload(1)], "script_expand": [script_payload()]})
    result = BatchGenerator(session_factory, llm).run_batch(short_id)

    assert (result.created, result.failed) == (1, 2)
    missing = [s for s in _scripts(session_factory, short_id) if s.status == "failed"]
    assert {(s.angle, s.duration) for s in missing} == {("testimonial", 15)}
    assert all(s.error_message.startswith("plan_missing") for s in missing)


def test_quality_tier_selects_model(session_factory, make_batch, monkeypatch) -> None:
    monkeypatch.setenv("LLM_MODEL_PREMIUM", "vendor/premium-model")
    batch_id = make_batch(requested_count=1, quality="premium")
    llm = FakeLLM({"plan_generate": [plans_payload(1)], "script_expand": [script_payload()]})

    BatchGenerator(session_factory, llm).run_batch(batch_id)

    assert {call["model"] for call in llm.calls} == {"vendor/premium-model"}


def test_beat_warning_is_merged(session_factory, make_batch) -> None:
    batch_id = make_batch(requested_count=1)
    llm = FakeLLM(
        {
            "plan_generate": [plans_payload(1)],
            "script_expand": [script_payload(beats=4, warnings=["Avoid before/after claims"])],
        }
    )

    BatchGenerator(session_factory, llm).run_batch(batch_id)

    (script,) = _scripts(session_factory, batch_id)
    assert script.warnings[0] == "Avoid before/after claims"
    assert any("only 4 beats for 30s" in w for w in script.warnings)


def test_unknown_batch_is_not_found(session_factory) -> None:
    from uuid import uuid4

    with pytest.raises(NotFoundError):
        BatchGenerator(session_factory, FakeLLM()).run_batch(uuid4())
