from __future__ import annotations

from dataclasses import dataclass
import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from db.models import CreditBalance, DeletedUser, UserAccount
from .ledger import (
    CreditLedger,
    as_utc,
    free_grant_description,
    free_monthly_allotment,
    next_month_start,
)


logger = logging.getLogger(__name__)


@dataclass
class RenewalSummary:
    renewed: int = 0
    initialized: int = 0
    withheld: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {
            "renewed": self.renewed,
            "initialized": self.initialized,
            "withheld": self.withheld,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def due_users(session: Session, now: datetime) -> list[tuple[UUID, bool, bool]]:
    """(user id, has a free bucket, email was deleted before) for users due a grant."""
    free_row = (
        select(CreditBalance.user_id, CreditBalance.expires_at)
        .where(CreditBalance.credit_type == "free")
        .subquery()
    )
    stmt = (
        select(UserAccount.id, free_row.c.user_id.is_not(None), DeletedUser.id.is_not(None))
        .outerjoin(free_row, free_row.c.user_id == UserAccount.id)
        .outerjoin(DeletedUser, func.lower(DeletedUser.email) == func.lower(UserAccount.email))
        .where(or_(free_row.c.user_id.is_(None), free_row.c.expires_at <= now))
        .order_by(UserAccount.created_at)
    )
    return [(row[0], bool(row[1]), bool(row[2])) for row in session.execute(stmt).all()]


def renew_free_credits(
    ledger: CreditLedger,
    session_factory: Callable[[], Session],
    now: datetime | None = None,
) -> RenewalSummary:
    """Re-grant monthly free credits to every user whose free bucket expired.

    Users without a free bucket are initialized. Running it again right away
    changes nothing, because each grant moves ``expires_at`` into the future.
    """
    now = as_utc(now) if now is not None else ledger.now()
    expires_at = next_month_start(now)
    with session_factory() as session:
        due = due_users(session, now)

    summary = RenewalSummary()
    logger.info("Free credit renewal: %s users due", len(due))
    for user_id, has_row, previously_deleted in due:
        try:
            balance = ledger.renew_free(
                user_id,
                0 if previously_deleted else free_monthly_allotment(),
                expires_at,
                description=free_grant_description(previously_deleted),
                now=now,
            )
        except Exception:
            logger.exception("Free credit renewal failed for user %s", user_id)
            summary.failed += 1
            continue
        if balance is None:
            summary.skipped += 1
        elif previously_deleted:
            summary.withheld += 1
        elif has_row:
            summary.renewed += 1
        else:
            summary.initialized += 1
    logger.info("Free credit renewal finished: %s", summary.as_dict())
    return summary
