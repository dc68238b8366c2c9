from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from billing.events import BillingEvent, handle_billing_event
from core.errors import InsufficientCreditsError, InvariantViolationError, NotFoundError
from db.models import Batch, CreditTransaction, Script, UserAccount
from fakes import FakeQueues
from pipeline.batches import (
    BatchRequest,
    batch_progress,
    create_batch,
    list_scripts,
    per_script_cost,
    request_regeneration,
    requeue_batch,
    settle_failed_batch,
)

APRIL = datetime(2026, 4, 1, tzinfo=UTC)


def _request(**overrides) -> BatchRequest:
    values = {"count": 4, "platform": "tiktok", "angles": ["pain_agitation"], "durations": [30]}
    values.update(overrides)
    return BatchRequest(**values)


def _entries(session_factory, user_id) -> list[CreditTransaction]:
    with session_factory() as session:
        return list(
            session.scalars(
                select(CreditTransaction)
                .where(CreditTransaction.user_id == user_id)
                .order_by(CreditTransaction.id)
            ).all()
        )


def test_cost_follows_quality(monkeypatch) -> None:
    assert per_script_cost("standard") == 1
    assert per_script_cost("premium") == 5
    monkeypatch.setenv("CREDITS_COST_PREMIUM", "8")
    assert per_script_cost("premium") == 8


def test_request_validation() -> None:
    with pytest.raises(ValidationError):
        _request(count=0)
    with pytest.raises(ValidationError):
        _request(count=51)
    with pytest.raises(ValidationError):
        _request(platform="myspace")
    with pytest.raises(ValidationError):
        _request(durations=[0])
    with pytest.raises(ValidationError):
        _request(angles=[])


def test_create_batch_debits_before_queueing(session_factory, seeded, ledger) -> None:
    ledger.grant(seeded.user_id, "free", 3, APRIL, "renewal")
    ledger.grant(seeded.user_id, "pack", 10, None, "purchase")
    queues = FakeQueues()

    batch = create_batch(
        session_factory,
        ledger,
        queues,
        user_id=seeded.user_id,
        project_id=seeded.project_id,
        request=_request(count=2, quality="premium"),
    )

    assert batch.credits_charged == 10
    assert batch.status == "pending"
    assert queues.enqueued == [("generate-batch", batch.id, "standard")]
    balances = {view.credit_type: view.balance for view in ledger.get_balances(seeded.user_id)}
    assert balances == {"free": 0, "pack": 3}
    debits = [e for e in _entries(session_factory, seeded.user_id) if e.kind == "generation"]
    assert {e.correlation_id for e in debits} == {str(batch.id)}


def test_pro_users_use_elevated_lane(session_factory, seeded, ledger) -> None:
    with session_factory() as session:
        session.get(UserAccount, seeded.user_id).plan = "pro"
        session.commit()
    ledger.grant(seeded.user_id, "subscription", 50, APRIL, "renewal")
    queues = FakeQueues()

    create_batch(
        session_factory, ledger, queues, user_id=seeded.user_id, project_id=seeded.project_id, request=_request()
    )

    assert queues.enqueued[0][2] == "elevated"


def test_insufficient_credits_creates_nothing(session_factory, seeded, ledger) -> None:
    ledger.grant(seeded.user_id, "free", 3, APRIL, "renewal")
    queues = FakeQueues()

    with pytest.raises(InsufficientCreditsError) as excinfo:
        create_batch(
            session_factory, ledger, queues, user_id=seeded.user_id, project_id=seeded.project_id, request=_request()
        )

    assert str(excinfo.value) == "Insufficient credits. Need 4, have 3"
    assert queues.enqueued == []
    with session_factory() as session:
        assert session.scalars(select(Batch)).all() == []
    assert ledger.total_available(seeded.user_id) == 3


def test_enqueue_failure_refunds_the_charge(session_factory, seeded, ledger) -> None:
    ledger.grant(seeded.user_id, "free", 10, APRIL, "renewal")
    queues = FakeQueues(fail=ConnectionError("redis unavailable"))

    with pytest.raises(ConnectionError):
        create_batch(
            session_factory, ledger, queues, user_id=seeded.user_id, project_id=seeded.project_id, request=_request()
        )

    assert ledger.total_available(seeded.user_id) == 10
    with session_factory() as session:
        (batch,) = session.scalars(select(Batch)).all()
    assert batch.status == "failed"
    assert batch.error_message.startswith("enqueue_failed")
    kinds = [e.kind for e in _entries(session_factory, seeded.user_id)]
    assert kinds == ["renewal", "generation", "refund"]


def test_foreign_project_and_personas_are_rejected(session_factory, seeded, ledger) -> None:
    ledger.grant(seeded.user_id, "free", 10, APRIL, "renewal")
    with session_factory() as session:
        stranger = UserAccount(email="other@example.com", plan="free")
        session.add(stranger)
        session.commit()
        stranger_id = stranger.id

    with pytest.raises(NotFoundError):
        create_batch(
            session_factory, ledger, FakeQueues(), user_id=stranger_id, project_id=seeded.project_id, request=_request()
        )
    with pytest.raises(InvariantViolationError):
        create_batch(
            session_factory,
            ledger,
            FakeQueues(),
            user_id=seeded.user_id,
            project_id=seeded.project_id,
            request=_request(persona_ids=[stranger_id]),
        )
    assert ledger.total_available(seeded.user_id) == 10


def test_regeneration_charges_one_script_and_links_to_root(session_factory, seeded, ledger, make_batch, make_script) -> None:
    ledger.grant(seeded.user_id, "free", 5, APRIL, "renewal")
    batch_id = make_batch(quality="premium")
    root_id = make_script(batch_id)
    first_variant = make_script(batch_id, parent_script_id=root_id, instruction="warmer tone")
    queues = FakeQueues()

    variant = request_regeneration(
        session_factory, ledger, queues, user_id=seeded.user_id, script_id=first_variant, instruction="shorter hook"
    )

    assert variant.status == "pending"
    assert variant.parent_script_id == root_id
    assert ledger.total_available(seeded.user_id) == 0
    assert queues.enqueued == [("regenerate-script", variant.id, first_variant, "shorter hook", "standard")]


def test_regeneration_requires_a_storyboard(session_factory, seeded, ledger, make_batch, make_script) -> None:
    ledger.grant(seeded.user_id, "free", 5, APRIL, "renewal")
    failed_id = make_script(make_batch(), status="failed", storyboard=None, score=None)

    with pytest.raises(InvariantViolationError):
        request_regeneration(
            session_factory, ledger, FakeQueues(), user_id=seeded.user_id, script_id=failed_id, instruction="again"
        )
    with pytest.raises(InvariantViolationError):
        request_regeneration(
            session_factory, ledger, FakeQueues(), user_id=seeded.user_id, script_id=failed_id, instruction="  "
        )
    assert ledger.total_available(seeded.user_id) == 5


def test_progress_counts_roots_and_variants(session_factory, seeded, make_batch, make_script) -> None:
    batch_id = make_batch(requested_count=4, status="processing")
    root = make_script(batch_id)
    make_script(batch_id, status="failed", storyboard=None, score=None)
    make_script(batch_id, parent_script_id=root)

    progress = batch_progress(session_factory, seeded.user_id, batch_id)

    assert progress["completed_count"] == 1
    assert progress["failed_count"] == 1
    assert progress["scripts_count"] == 2
    assert progress["variants_count"] == 1
    assert progress["progress"] == 50


def test_scripts_listed_best_first_with_failures_last(session_factory, seeded, make_batch, make_script) -> None:
    batch_id = make_batch()
    now = datetime.now(UTC)
    low = make_script(batch_id, score=40, created_at=now)
    failed = make_script(batch_id, status="failed", storyboard=None, score=None, created_at=now - timedelta(minutes=5))
    high = make_script(batch_id, score=90, created_at=now + timedelta(seconds=1))
    variant = make_script(batch_id, score=65, parent_script_id=high)

    ordered = [row["id"] for row in list_scripts(session_factory, seeded.user_id, batch_id)]
    roots = [row["id"] for row in list_scripts(session_factory, seeded.user_id, batch_id, include_variants=False)]

    assert ordered == [str(high), str(variant), str(low), str(failed)]
    assert roots == [str(high), str(low), str(failed)]


def test_billing_subscription_cycle(session_factory, seeded, ledger, clock) -> None:
    period_end = datetime(2026, 4, 15, tzinfo=UTC)
    started = BillingEvent(event_type="subscription_started", user_id=seeded.user_id, period_end=period_end)

    assert handle_billing_event(ledger, session_factory, started)["granted"] == 200
    ledger.consume(seeded.user_id, 30)

    renewed = BillingEvent(
        event_type="subscription_renewed", user_id=seeded.user_id, period_end=period_end + timedelta(days=30)
    )
    result = handle_billing_event(ledger, session_factory, renewed)
    assert result["balance"] == 200

    expired = BillingEvent(event_type="subscription_expired", user_id=seeded.user_id)
    assert handle_billing_event(ledger, session_factory, expired)["removed"] == 200
    assert ledger.total_available(seeded.user_id) == 0
    with session_factory() as session:
        user = session.get(UserAccount, seeded.user_id)
        assert (user.plan, user.subscription_status, user.subscription_ends_at) == ("free", "expired", None)


def test_cancelled_subscription_keeps_credits_until_expiry(session_factory, seeded, ledger, clock) -> None:
    period_end = clock.now + timedelta(days=20)
    handle_billing_event(
        ledger,
        session_factory,
        BillingEvent(event_type="subscription_started", user_id=seeded.user_id, period_end=period_end),
    )

    result = handle_billing_event(
        ledger,
        session_factory,
        BillingEvent(event_type="subscription_cancelled", user_id=seeded.user_id, period_end=period_end),
    )

    assert result["action"] == "mark_cancelled"
    assert ledger.total_available(seeded.user_id) == 200
    with session_factory() as session:
        user = session.get(UserAccount, seeded.user_id)
        assert (user.plan, user.subscription_status) == ("pro", "cancelled")

    clock.advance(days=21)
    assert ledger.total_available(seeded.user_id) == 0

    handle_billing_event(
        ledger,
        session_factory,
        BillingEvent(event_type="subscription_expired", user_id=seeded.user_id),
    )
    with session_factory() as session:
        assert session.get(UserAccount, seeded.user_id).plan == "free"


def test_billing_pack_orders_credit_once(session_factory, seeded, ledger) -> None:
    paid = BillingEvent(event_type="order_paid", user_id=seeded.user_id, order_id="ord_1", pack_id="pack_growth")

    first = handle_billing_event(ledger, session_factory, paid)
    second = handle_billing_event(ledger, session_factory, paid)

    assert first["balance"] == 150
    assert second["balance"] is None
    assert ledger.total_available(seeded.user_id) == 150

    with pytest.raises(InvariantViolationError):
        handle_billing_event(
            ledger,
            session_factory,
            BillingEvent(event_type="order_paid", user_id=seeded.user_id, order_id="ord_2", pack_id="pack_mega"),
        )
    refunded = BillingEvent(event_type="order_refunded", user_id=seeded.user_id, order_id="ord_1")
    assert handle_billing_event(ledger, session_factory, refunded) == {"action": "none"}
    assert ledger.total_available(seeded.user_id) == 150


def test_requeue_resumes_charged_batches_only(session_factory, seeded, ledger, make_batch) -> None:
    ledger.grant(seeded.user_id, "free", 10, APRIL, "renewal")
    stalled = make_batch(status="processing", credits_charged=3)
    ledger.consume(seeded.user_id, 3, correlation_id=str(stalled))
    refunded = make_batch(status="processing", credits_charged=3)
    ledger.consume(seeded.user_id, 3, correlation_id=str(refunded))
    settle_failed_batch(session_factory, ledger, refunded, "gave up")
    done = make_batch(status="completed")
    queues = FakeQueues()

    requeue_batch(session_factory, ledger, queues, stalled)
    assert requeue_batch(session_factory, ledger, queues, done) is None
    with pytest.raises(InvariantViolationError):
        requeue_batch(session_factory, ledger, queues, refunded)

    assert queues.enqueued == [("generate-batch", stalled, "standard")]
    assert ledger.total_available(seeded.user_id) == 7
