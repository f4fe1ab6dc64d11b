import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import RecurringInterval, Transaction

logger = logging.getLogger(__name__)

MAX_OCCURRENCES_PER_RUN = 365


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(
    base: datetime, months: int, desired_day: Optional[int] = None
) -> datetime:
    """
    Calendar month arithmetic. A day that does not exist in the target month
    snaps to that month's last day (Jan 31 + 1 month -> Feb 28/29).

    ``desired_day`` keeps a series on its anchor day after it has been snapped,
    so Feb 28 + 1 month with an anchor of 31 lands on Mar 31.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(desired_day or base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def calculate_next_recurring_date(
    from_date: datetime,
    interval: Optional[RecurringInterval],
    anchor_day: Optional[int] = None,
) -> Optional[datetime]:
    if interval == RecurringInterval.daily:
        return from_date + timedelta(days=1)
    if interval == RecurringInterval.weekly:
        return from_date + timedelta(weeks=1)
    if interval == RecurringInterval.monthly:
        return add_months(from_date, 1, desired_day=anchor_day)
    if interval == RecurringInterval.yearly:
        return add_months(from_date, 12, desired_day=anchor_day)
    return None


class RecurringEngine:
    """Posts the due occurrences of recurring transactions through the ledger."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id

    def due_sources(self, now: datetime) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.deleted_at.is_(None),
                Transaction.is_recurring.is_(True),
                Transaction.recurring_interval.isnot(None),
                Transaction.next_recurring_date.isnot(None),
                Transaction.next_recurring_date <= now,
            )
            .order_by(Transaction.next_recurring_date, Transaction.id)
        )
        if self.user_id is not None:
            stmt = stmt.where(Transaction.user_id == self.user_id)
        return list(self.session.scalars(stmt).all())

    def catch_up(self, source: Transaction, now: datetime) -> int:
        source_id = source.id
        anchor_day = source.date.day
        posted_count = 0
        iterations = 0
        while (
            source.next_recurring_date is not None
            and source.next_recurring_date <= now
            and iterations < MAX_OCCURRENCES_PER_RUN
        ):
            occurrence_at = source.next_recurring_date
            try:
                posted = self._post_occurrence(source, occurrence_at)
            except Exception:
                # next_recurring_date stays on the failed occurrence for the next run
                self.session.rollback()
                logger.exception(
                    f"recurring_post_failed: source_id={source_id} "
                    f"occurrence={occurrence_at.isoformat()}"
                )
                return posted_count
            if posted:
                posted_count += 1
            source.next_recurring_date = calculate_next_recurring_date(
                occurrence_at, source.recurring_interval, anchor_day=anchor_day
            )
            iterations += 1
        self.session.commit()
        return posted_count

    def post_due(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        total = 0
        for source in self.due_sources(now):
            posted = self.catch_up(source, now)
            if posted:
                logger.info(
                    f"recurring_posted: source_id={source.id} occurrences={posted}"
                )
            total += posted
        return total

    def _post_occurrence(self, source: Transaction, occurrence_at: datetime) -> bool:
        from schemas import TransactionIn
        from services import TransactionService

        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == source.user_id,
                Transaction.origin_transaction_id == source.id,
                Transaction.occurrence_date == occurrence_at.date(),
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return False

        data = TransactionIn(
            type=source.type.value,
            amount=Decimal(source.amount_cents) / Decimal(100),
            description=source.description,
            category=source.category,
            account_id=source.account_id,
            date=occurrence_at,
            subcategory=source.subcategory,
            merchant=source.merchant,
            tags=[tag.name for tag in source.tags],
            tax_deductible=source.tax_deductible,
            investment_type=(
                source.investment_type.value if source.investment_type else None
            ),
        )
        TransactionService(self.session, source.user_id).create(
            data,
            origin_transaction_id=source.id,
            occurrence_date=occurrence_at.date(),
        )
        return True
