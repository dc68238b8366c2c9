"""
Credit ledger: per-user balances in three buckets plus an append-only history.

Buckets are consumed in a fixed order (free, then subscription, then pack).
Every balance change writes a ``CreditTransaction`` in the same database
transaction, so the latest ``balance_after`` for a (user, type) pair always
equals the stored balance.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
import logging
from typing import Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.config import env_int
from core.errors import InsufficientCreditsError, InvariantViolationError, NotFoundError
from db.models import (
    CREDIT_TYPES,
    TRANSACTION_KINDS,
    CreditBalance,
    CreditTransaction,
    DeletedUser,
    UserAccount,
)


logger = logging.getLogger(__name__)

CONSUMPTION_ORDER = ("free", "subscription", "pack")


def free_monthly_allotment() -> int:
    return env_int("CREDITS_FREE_MONTHLY", 20)


def subscription_monthly_allotment() -> int:
    return env_int("CREDITS_SUBSCRIPTION_MONTHLY", 200)


def free_grant_description(previously_deleted: bool) -> str:
    if previously_deleted:
        return "Free credits withheld for previously deleted account"
    return "Monthly free credits"


def next_month_start(now: datetime) -> datetime:
    """Midnight UTC on the first day of the month after ``now``."""
    now = as_utc(now)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=UTC)
    return datetime(now.year, now.month + 1, 1, tzinfo=UTC)


def email_was_deleted(session: Session, email: str) -> bool:
    return (
        session.scalars(
            select(DeletedUser.id).where(func.lower(DeletedUser.email) == email.lower())
        ).first()
        is not None
    )


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_expired(row: CreditBalance, now: datetime) -> bool:
    expires_at = as_utc(row.expires_at)
    return expires_at is not None and expires_at <= now


def effective_balance(row: CreditBalance, now: datetime) -> int:
    if is_expired(row, now):
        return 0
    return max(0, row.balance)


@dataclass(frozen=True)
class BalanceView:
    credit_type: str
    balance: int
    expires_at: datetime | None
    effective_balance: int
    is_expired: bool

    def as_dict(self) -> dict:
        return {
            "type": self.credit_type,
            "balance": self.balance,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "effective_balance": self.effective_balance,
            "is_expired": self.is_expired,
        }


class CreditLedger:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return as_utc(self._clock())

    # reads

    def get_balances(self, user_id: UUID) -> list[BalanceView]:
        now = self.now()
        with self._session_factory() as session:
            rows = session.scalars(
                select(CreditBalance).where(CreditBalance.user_id == user_id)
            ).all()
        order = {credit_type: index for index, credit_type in enumerate(CONSUMPTION_ORDER)}
        return [
            BalanceView(
                credit_type=row.credit_type,
                balance=row.balance,
                expires_at=as_utc(row.expires_at),
                effective_balance=effective_balance(row, now),
                is_expired=is_expired(row, now),
            )
            for row in sorted(rows, key=lambda r: order.get(r.credit_type, len(order)))
        ]

    def total_available(self, user_id: UUID) -> int:
        return sum(view.effective_balance for view in self.get_balances(user_id))

    def has_enough(self, user_id: UUID, amount: int) -> bool:
        return self.total_available(user_id) >= amount

    def transaction_history(self, user_id: UUID, limit: int = 50) -> list[CreditTransaction]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(CreditTransaction)
                    .where(CreditTransaction.user_id == user_id)
                    .order_by(CreditTransaction.id.desc())
                    .limit(limit)
                ).all()
            )

    # mutations

    def consume(
        self,
        user_id: UUID,
        amount: int,
        correlation_id: str | None = None,
        description: str | None = None,
    ) -> dict[str, int]:
        """Debit ``amount`` across buckets in priority order.

        Returns how much was drawn from each bucket. Raises
        ``InsufficientCreditsError`` without touching anything when the
        effective total is short.
        """
        if amount <= 0:
            raise InvariantViolationError(f"Credit amount must be positive, got {amount}")
        now = self.now()
        breakdown = {credit_type: 0 for credit_type in CONSUMPTION_ORDER}
        with self._session_factory() as session, session.begin():
            rows = self._lock_user_rows(session, user_id)
            available = sum(effective_balance(row, now) for row in rows.values())
            if available < amount:
                raise InsufficientCreditsError(amount, available)

            remaining = amount
            for credit_type in CONSUMPTION_ORDER:
                if remaining <= 0:
                    break
                row = rows.get(credit_type)
                if row is None:
                    continue
                draw = min(effective_balance(row, now), remaining)
                if draw <= 0:
                    continue
                self._apply(
                    session,
                    row,
                    -draw,
                    kind="generation",
                    description=description or f"Used {draw} {credit_type} credits",
                    correlation_id=correlation_id,
                    now=now,
                )
                breakdown[credit_type] = draw
                remaining -= draw
        logger.info("Consumed %s credits for user %s (%s)", amount, user_id, correlation_id)
        return breakdown

    def grant(
        self,
        user_id: UUID,
        credit_type: str,
        amount: int,
        expires_at: datetime | None,
        kind: str,
        description: str | None = None,
        correlation_id: str | None = None,
    ) -> int:
        """Add ``amount`` to a bucket, creating it if needed; returns the new balance."""
        now = self.now()
        with self._session_factory() as session, session.begin():
            row = self._grant(
                session,
                user_id,
                credit_type,
                amount,
                expires_at,
                kind,
                description=description,
                correlation_id=correlation_id,
                now=now,
            )
            return row.balance

    def grant_subscription(
        self,
        user_id: UUID,
        amount: int,
        expires_at: datetime,
        correlation_id: str | None = None,
    ) -> int:
        """Replace leftover subscription credits with a fresh monthly allotment."""
        now = self.now()
        with self._session_factory() as session, session.begin():
            row = self._lock_row(session, user_id, "subscription")
            if row is not None and row.balance > 0:
                self._apply(
                    session,
                    row,
                    -row.balance,
                    kind="expire",
                    description="Subscription credits expired at billing period end",
                    correlation_id=correlation_id,
                    now=now,
                )
            row = self._grant(
                session,
                user_id,
                "subscription",
                amount,
                expires_at,
                "renewal",
                description="Monthly subscription credits",
                correlation_id=correlation_id,
                now=now,
            )
            return row.balance

    def grant_pack(self, user_id: UUID, amount: int, order_id: str, pack_name: str) -> int | None:
        """Credit a purchased pack once per order; pack credits never expire."""
        now = self.now()
        with self._session_factory() as session, session.begin():
            already = session.scalars(
                select(CreditTransaction.id).where(
                    CreditTransaction.correlation_id == str(order_id),
                    CreditTransaction.kind == "purchase",
                )
            ).first()
            if already is not None:
                logger.info("Order %s already credited", order_id)
                return None
            row = self._grant(
                session,
                user_id,
                "pack",
                amount,
                None,
                "purchase",
                description=f"Purchased {pack_name}",
                correlation_id=order_id,
                now=now,
            )
            return row.balance

    def renew_free(
        self,
        user_id: UUID,
        amount: int,
        expires_at: datetime,
        description: str = "Monthly free credits",
        now: datetime | None = None,
    ) -> int | None:
        """Grant the free allotment if the bucket is missing or expired.

        Returns the new balance, or ``None`` when the bucket is still current.
        The check and the grant share one locked transaction, so two sweeps
        racing on the same user grant once.
        """
        now = as_utc(now) if now is not None else self.now()
        with self._session_factory() as session, session.begin():
            row = self._lock_row(session, user_id, "free")
            if row is not None and not is_expired(row, now):
                return None
            row = self._grant(
                session,
                user_id,
                "free",
                amount,
                expires_at,
                "renewal",
                description=description,
                now=now,
            )
            return row.balance

    def initialize_user(self, user_id: UUID, now: datetime | None = None) -> int | None:
        """Give a new account its first free allotment.

        An email that belonged to a deleted account gets a zero balance, so
        re-registering does not mint fresh free credits.
        """
        now = as_utc(now) if now is not None else self.now()
        with self._session_factory() as session:
            user = session.get(UserAccount, user_id)
            if user is None:
                raise NotFoundError(f"User not found: {user_id}")
            previously_deleted = email_was_deleted(session, user.email)
        return self.renew_free(
            user_id,
            0 if previously_deleted else free_monthly_allotment(),
            next_month_start(now),
            description=free_grant_description(previously_deleted),
            now=now,
        )

    def cancel_subscription(self, user_id: UUID, correlation_id: str | None = None) -> int:
        """Zero the subscription bucket and expire it now; returns credits removed."""
        now = self.now()
        with self._session_factory() as session, session.begin():
            row = self._lock_row(session, user_id, "subscription")
            if row is None:
                return 0
            removed = max(0, row.balance)
            if removed:
                self._apply(
                    session,
                    row,
                    -removed,
                    kind="expire",
                    description="Subscription cancelled",
                    correlation_id=correlation_id,
                    now=now,
                )
            row.expires_at = now
            return removed

    def was_refunded(self, correlation_id: str) -> bool:
        with self._session_factory() as session:
            entry = session.scalars(
                select(CreditTransaction.id).where(
                    CreditTransaction.correlation_id == correlation_id,
                    CreditTransaction.kind == "refund",
                )
            ).first()
            return entry is not None

    def refund(self, correlation_id: str, description: str | None = None) -> dict[str, int]:
        """Return every ``generation`` debit tagged ``correlation_id`` to its bucket.

        Running it twice refunds once.
        """
        now = self.now()
        refunded = {credit_type: 0 for credit_type in CONSUMPTION_ORDER}
        with self._session_factory() as session, session.begin():
            entries = session.scalars(
                select(CreditTransaction)
                .where(CreditTransaction.correlation_id == correlation_id)
                .order_by(CreditTransaction.id)
            ).all()
            if any(entry.kind == "refund" for entry in entries):
                logger.info("Credits for %s already refunded", correlation_id)
                return refunded

            debits: dict[tuple[UUID, str], int] = defaultdict(int)
            for entry in entries:
                if entry.kind == "generation" and entry.amount < 0:
                    debits[(entry.user_id, entry.credit_type)] += -entry.amount

            for (user_id, credit_type), amount in debits.items():
                self._grant(
                    session,
                    user_id,
                    credit_type,
                    amount,
                    None,
                    "refund",
                    description=description or f"Refund for {correlation_id}",
                    correlation_id=correlation_id,
                    now=now,
                )
                refunded[credit_type] += amount
        if any(refunded.values()):
            logger.info("Refunded %s for %s", refunded, correlation_id)
        return refunded

    # internals

    def _lock_user_rows(self, session: Session, user_id: UUID) -> dict[str, CreditBalance]:
        rows = session.scalars(
            select(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .order_by(CreditBalance.credit_type)
            .with_for_update()
        ).all()
        return {row.credit_type: row for row in rows}

    def _lock_row(self, session: Session, user_id: UUID, credit_type: str) -> CreditBalance | None:
        return session.scalars(
            select(CreditBalance)
            .where(CreditBalance.user_id == user_id, CreditBalance.credit_type == credit_type)
            .with_for_update()
        ).one_or_none()

    def _grant(
        self,
        session: Session,
        user_id: UUID,
        credit_type: str,
        amount: int,
        expires_at: datetime | None,
        kind: str,
        *,
        description: str | None = None,
        correlation_id: str | None = None,
        now: datetime,
    ) -> CreditBalance:
        if credit_type not in CREDIT_TYPES:
            raise InvariantViolationError(f"Unknown credit type: {credit_type}")
        if kind not in TRANSACTION_KINDS:
            raise InvariantViolationError(f"Unknown transaction kind: {kind}")
        if amount < 0:
            raise InvariantViolationError(f"Grant amount must not be negative, got {amount}")

        row = self._lock_row(session, user_id, credit_type)
        if row is None:
            row = CreditBalance(
                user_id=user_id,
                credit_type=credit_type,
                balance=0,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
        else:
            if is_expired(row, now) and row.balance > 0:
                self._apply(
                    session,
                    row,
                    -row.balance,
                    kind="expire",
                    description=f"Expired {credit_type} credits",
                    correlation_id=correlation_id,
                    now=now,
                )
            if expires_at is not None:
                row.expires_at = expires_at
        self._apply(
            session,
            row,
            amount,
            kind=kind,
            description=description,
            correlation_id=correlation_id,
            now=now,
        )
        return row

    def _apply(
        self,
        session: Session,
        row: CreditBalance,
        delta: int,
        *,
        kind: str,
        description: str | None,
        correlation_id: str | None,
        now: datetime,
    ) -> None:
        row.balance = row.balance + delta
        row.updated_at = now
        session.add(
            CreditTransaction(
                user_id=row.user_id,
                credit_type=row.credit_type,
                amount=delta,
                balance_after=row.balance,
                kind=kind,
                description=description,
                correlation_id=str(correlation_id) if correlation_id is not None else None,
                created_at=now,
            )
        )
