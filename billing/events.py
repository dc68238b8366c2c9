"""
Normalized billing events applied to the credit ledger.

Webhook parsing and signature checks belong to the billing provider
integration; this module only receives events that already name the user.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Callable, Literal
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.orm import Session

from core.errors import InvariantViolationError, NotFoundError
from credits.ledger import CreditLedger, subscription_monthly_allotment
from db.models import UserAccount


logger = logging.getLogger(__name__)

EventType = Literal[
    "subscription_started",
    "subscription_renewed",
    "subscription_cancelled",
    "subscription_expired",
    "order_paid",
    "order_refunded",
]

CREDIT_PACKS: dict[str, tuple[str, int]] = {
    "pack_starter": ("Starter Pack", 50),
    "pack_growth": ("Growth Pack", 150),
    "pack_agency": ("Agency Pack", 500),
}


class BillingEvent(BaseModel):
    event_type: EventType
    user_id: UUID
    period_end: datetime | None = None
    order_id: str | None = None
    pack_id: str | None = None


def _set_subscription(
    session_factory: Callable[[], Session],
    user_id: UUID,
    *,
    plan: str,
    status: str,
    ends_at: datetime | None,
) -> None:
    with session_factory() as session:
        user = session.get(UserAccount, user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        user.plan = plan
        user.subscription_status = status
        user.subscription_ends_at = ends_at
        session.commit()


def handle_billing_event(
    ledger: CreditLedger,
    session_factory: Callable[[], Session],
    event: BillingEvent,
) -> dict:
    logger.info("Billing event %s for user %s", event.event_type, event.user_id)

    if event.event_type in ("subscription_started", "subscription_renewed"):
        if event.period_end is None:
            raise InvariantViolationError(f"{event.event_type} requires period_end")
        _set_subscription(session_factory, event.user_id, plan="pro", status="active", ends_at=event.period_end)
        amount = subscription_monthly_allotment()
        balance = ledger.grant_subscription(
            event.user_id,
            amount,
            event.period_end,
            correlation_id=event.order_id,
        )
        return {"action": "grant_subscription", "granted": amount, "balance": balance}

    if event.event_type == "subscription_cancelled":
        # paid credits and the pro lane stay until the period actually ends
        _set_subscription(session_factory, event.user_id, plan="pro", status="cancelled", ends_at=event.period_end)
        return {"action": "mark_cancelled", "ends_at": event.period_end}

    if event.event_type == "subscription_expired":
        _set_subscription(session_factory, event.user_id, plan="free", status="expired", ends_at=None)
        removed = ledger.cancel_subscription(event.user_id, correlation_id=event.order_id)
        return {"action": "cancel_subscription", "removed": removed}

    if event.event_type == "order_paid":
        pack = CREDIT_PACKS.get(event.pack_id or "")
        if pack is None:
            raise InvariantViolationError(f"Unknown credit pack: {event.pack_id}")
        if not event.order_id:
            raise InvariantViolationError("order_paid requires order_id")
        name, credits = pack
        balance = ledger.grant_pack(event.user_id, credits, event.order_id, name)
        return {"action": "grant_pack", "granted": credits, "balance": balance}

    # refunded orders are reconciled by hand; credits may already be spent
    logger.warning("Order %s refunded for user %s; credits not revoked", event.order_id, event.user_id)
    return {"action": "none"}
