import logging
from datetime import date, datetime

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Account, RecurringInterval, Transaction
from recurrence import RecurringEngine, add_months, calculate_next_recurring_date
from schemas import AccountIn, TransactionIn, TransactionUpdate
from services import AccountService, TransactionService


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def test_add_months_snaps_to_end_of_month():
    assert add_months(datetime(2023, 1, 31, 8, 30), 1) == datetime(2023, 2, 28, 8, 30)
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert add_months(datetime(2024, 2, 29), 12) == datetime(2025, 2, 28)
    assert add_months(datetime(2024, 11, 30), 3) == datetime(2025, 2, 28)
    assert add_months(datetime(2024, 12, 15), 1) == datetime(2025, 1, 15)


def test_calculate_next_recurring_date_per_interval():
    start = datetime(2024, 3, 31, 12, 0)
    assert calculate_next_recurring_date(start, RecurringInterval.daily) == datetime(
        2024, 4, 1, 12, 0
    )
    assert calculate_next_recurring_date(start, RecurringInterval.weekly) == datetime(
        2024, 4, 7, 12, 0
    )
    assert calculate_next_recurring_date(start, RecurringInterval.monthly) == datetime(
        2024, 4, 30, 12, 0
    )
    assert calculate_next_recurring_date(start, RecurringInterval.yearly) == datetime(
        2025, 3, 31, 12, 0
    )
    assert calculate_next_recurring_date(start, None) is None


def test_monthly_series_returns_to_its_anchor_day():
    first = calculate_next_recurring_date(
        datetime(2025, 1, 31), RecurringInterval.monthly, anchor_day=31
    )
    assert first == datetime(2025, 2, 28)
    second = calculate_next_recurring_date(
        first, RecurringInterval.monthly, anchor_day=31
    )
    assert second == datetime(2025, 3, 31)
    third = calculate_next_recurring_date(
        second, RecurringInterval.monthly, anchor_day=31
    )
    assert third == datetime(2025, 4, 30)
    assert add_months(datetime(2025, 2, 28), 12, desired_day=29) == datetime(
        2026, 2, 28
    )
    assert add_months(datetime(2027, 2, 28), 12, desired_day=29) == datetime(
        2028, 2, 29
    )


def _recurring_source(session: Session) -> tuple[Account, Transaction]:
    account = AccountService(session).create(AccountIn(name="Main"))
    source = TransactionService(session).create(
        TransactionIn(
            type="EXPENSE",
            amount="15.99",
            description="Streaming",
            category="Subscriptions",
            account_id=account.id,
            date=datetime(2025, 1, 31, 9, 0),
            is_recurring=True,
            recurring_interval=RecurringInterval.monthly,
            tags=["media"],
        )
    )
    return account, source


def test_create_schedules_next_occurrence():
    with Session(_engine()) as session:
        _, source = _recurring_source(session)
        assert source.is_recurring
        assert source.next_recurring_date == datetime(2025, 2, 28, 9, 0)


def test_catch_up_posts_each_due_occurrence_through_the_ledger():
    with Session(_engine()) as session:
        account, source = _recurring_source(session)

        posted = RecurringEngine(session).post_due(now=datetime(2025, 4, 30, 10, 0))
        assert posted == 3

        occurrences = session.scalars(
            select(Transaction)
            .where(Transaction.origin_transaction_id == source.id)
            .order_by(Transaction.date)
        ).all()
        assert [o.occurrence_date for o in occurrences] == [
            date(2025, 2, 28),
            date(2025, 3, 31),
            date(2025, 4, 30),
        ]
        assert all(not o.is_recurring for o in occurrences)
        assert all(o.category == "subscriptions" for o in occurrences)
        assert [t.name for t in occurrences[0].tags] == ["media"]

        session.expire_all()
        assert session.get(Account, account.id).balance_cents == -1_599 * 4
        assert session.get(Transaction, source.id).next_recurring_date == datetime(
            2025, 5, 31, 9, 0
        )


def test_catch_up_is_idempotent():
    with Session(_engine()) as session:
        account, source = _recurring_source(session)
        engine = RecurringEngine(session)
        now = datetime(2025, 3, 31, 10, 0)
        assert engine.post_due(now=now) == 2
        assert engine.post_due(now=now) == 0

        # rewinding the schedule must not duplicate occurrences
        source = session.get(Transaction, source.id)
        source.next_recurring_date = datetime(2025, 2, 28, 9, 0)
        session.commit()
        assert engine.post_due(now=now) == 0

        occurrence_ids = session.scalars(
            select(Transaction.id).where(
                Transaction.origin_transaction_id == source.id
            )
        ).all()
        assert len(occurrence_ids) == 2
        assert source.next_recurring_date == datetime(2025, 4, 30, 9, 0)
        session.expire_all()
        assert session.get(Account, account.id).balance_cents == -1_599 * 3


def test_stopped_or_deleted_sources_are_not_posted():
    with Session(_engine()) as session:
        _, source = _recurring_source(session)
        ledger = TransactionService(session)
        ledger.update(source.id, TransactionUpdate(is_recurring=False))
        assert RecurringEngine(session).post_due(now=datetime(2025, 6, 1)) == 0

        ledger.update(source.id, TransactionUpdate(is_recurring=True))
        ledger.delete(source.id)
        assert RecurringEngine(session).post_due(now=datetime(2025, 6, 1)) == 0


def test_engine_can_be_scoped_to_one_user():
    with Session(_engine()) as session:
        _recurring_source(session)
        assert RecurringEngine(session, user_id=2).post_due(
            now=datetime(2025, 3, 1)
        ) == 0
        assert RecurringEngine(session, user_id=1).post_due(
            now=datetime(2025, 3, 1)
        ) == 1


def test_failing_source_does_not_block_other_sources(monkeypatch, caplog):
    with Session(_engine()) as session:
        account, broken = _recurring_source(session)
        healthy = TransactionService(session).create(
            TransactionIn(
                type="INCOME",
                amount="100",
                description="Allowance",
                category="Gifts",
                account_id=account.id,
                date=datetime(2025, 1, 31, 9, 0),
                is_recurring=True,
                recurring_interval=RecurringInterval.monthly,
            )
        )
        broken_id, healthy_id = broken.id, healthy.id

        original = RecurringEngine._post_occurrence

        def flaky(self, source, occurrence_at):
            if source.id == broken_id:
                raise RuntimeError("account locked")
            return original(self, source, occurrence_at)

        monkeypatch.setattr(RecurringEngine, "_post_occurrence", flaky)

        with caplog.at_level(logging.ERROR, logger="recurrence"):
            posted = RecurringEngine(session).post_due(now=datetime(2025, 3, 31, 10, 0))
        assert posted == 2
        assert f"recurring_post_failed: source_id={broken_id}" in caplog.text

        session.expire_all()
        assert session.get(Transaction, broken_id).next_recurring_date == datetime(
            2025, 2, 28, 9, 0
        )
        assert session.get(Transaction, healthy_id).next_recurring_date == datetime(
            2025, 4, 30, 9, 0
        )
        assert session.get(Account, account.id).balance_cents == (
            -1_599 + 10_000 * 3
        )
