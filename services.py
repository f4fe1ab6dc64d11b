from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from config import get_settings
from errors import Forbidden, InvalidInput, NotFound
from insights import FinancialSummary, InsightGenerator
from models import (
    Account,
    Budget,
    BudgetPeriod,
    BudgetStatus,
    Tag,
    Transaction,
    TransactionType,
    signed_amount_cents,
    transaction_tags,
)
from periods import Period, month_window, resolve_insight_period, year_window
from recurrence import calculate_next_recurring_date
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    BudgetUpdate,
    TransactionIn,
    TransactionUpdate,
)
from validation import (
    as_naive_utc,
    normalize_category,
    normalize_investment_type,
    normalize_text,
    normalize_type,
    parse_amount_cents,
    parse_non_negative_cents,
    require_fields,
    to_cents,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def get_current_user_id() -> int:
    return 1


def adjust_account_balance(
    session: Session, account_id: int, delta_cents: int, *, reason: str
) -> bool:
    """
    Apply a signed delta to an account balance as a single SQL increment.
    Returns False, without raising, when the account no longer exists.
    """
    account = session.get(Account, account_id)
    if account is None:
        logger.warning(
            f"ledger_balance_skip: account_id={account_id} delta={delta_cents} "
            f"reason={reason} account_missing=true"
        )
        return False
    if delta_cents == 0:
        return True
    table = Account.__table__
    session.execute(
        update(table)
        .where(table.c.id == account_id)
        .values(balance_cents=table.c.balance_cents + delta_cents)
    )
    session.expire(account, ["balance_cents"])
    logger.info(
        f"ledger_balance_adjust: account_id={account_id} delta={delta_cents} "
        f"reason={reason}"
    )
    return True


def ledger_balance_cents(session: Session, account: Account) -> int:
    signed = case(
        (Transaction.type == TransactionType.income, Transaction.amount_cents),
        else_=-Transaction.amount_cents,
    )
    total = session.execute(
        select(func.coalesce(func.sum(signed), 0)).where(
            Transaction.account_id == account.id,
            Transaction.deleted_at.is_(None),
        )
    ).scalar_one()
    return account.opening_balance_cents + int(total or 0)


@dataclass(frozen=True)
class BalanceReconciliation:
    account_id: int
    stored_cents: int
    computed_cents: int
    corrected: bool

    @property
    def drift_cents(self) -> int:
        return self.stored_cents - self.computed_cents


def reconcile_account(
    session: Session, account: Account, *, apply: bool = False
) -> BalanceReconciliation:
    stored = account.balance_cents
    computed = ledger_balance_cents(session, account)
    corrected = False
    if stored != computed:
        logger.warning(
            f"ledger_balance_drift: account_id={account.id} stored={stored} "
            f"computed={computed} apply={apply}"
        )
        if apply:
            account.balance_cents = computed
            corrected = True
    return BalanceReconciliation(
        account_id=account.id,
        stored_cents=stored,
        computed_cents=computed,
        corrected=corrected,
    )


def audit_all_balances(
    session: Session, *, apply: bool = False
) -> list[BalanceReconciliation]:
    accounts = session.scalars(select(Account).order_by(Account.id)).all()
    results = [reconcile_account(session, account, apply=apply) for account in accounts]
    session.commit()
    return results


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    account_id: Optional[int] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    search: Optional[str] = None
    tag: Optional[str] = None


@dataclass
class TransactionPage:
    items: list[Transaction]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(
                Account.is_default.desc(), Account.created_at.desc(), Account.id.desc()
            )
        )
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFound("Account not found")
        return account

    def recent_transactions(self, account_id: int, limit: int = 50) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.tags))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
                Transaction.deleted_at.is_(None),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: AccountIn) -> Account:
        name = data.name.strip()
        if not name:
            raise InvalidInput("Account name is required")
        opening = to_cents(data.balance)
        account = Account(
            user_id=self.user_id,
            name=name,
            type=data.type,
            opening_balance_cents=opening,
            balance_cents=opening,
            currency=data.currency.strip() or "RUPEES",
            is_default=False,
            color=data.color or "#3B82F6",
            description=data.description.strip(),
        )
        self.session.add(account)
        self.session.flush()
        if data.is_default:
            self._make_default(account.id)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        if data.name is not None:
            name = data.name.strip()
            if not name:
                raise InvalidInput("Account name is required")
            account.name = name
        if data.type is not None:
            account.type = data.type
        if data.currency is not None:
            account.currency = data.currency.strip() or account.currency
        if data.color is not None:
            account.color = data.color
        if data.description is not None:
            account.description = data.description.strip()
        self.session.flush()
        if data.is_default is True:
            self._make_default(account.id)
        elif data.is_default is False:
            account.is_default = False
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        live = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.account_id == account.id,
                Transaction.deleted_at.is_(None),
            )
        ).scalar_one()
        if live:
            raise InvalidInput("Cannot delete account with existing transactions")
        # soft-deleted rows still hold the foreign key
        purged_ids = select(Transaction.id).where(
            Transaction.account_id == account.id,
            Transaction.deleted_at.isnot(None),
        )
        self.session.execute(
            delete(transaction_tags).where(
                transaction_tags.c.transaction_id.in_(purged_ids)
            )
        )
        self.session.execute(
            delete(Transaction)
            .where(Transaction.id.in_(purged_ids))
            .execution_options(synchronize_session="fetch")
        )
        self.session.expire(account, ["transactions"])
        self.session.delete(account)
        self.session.commit()

    def set_default(self, account_id: int) -> Account:
        account = self.get(account_id)
        self._make_default(account.id)
        self.session.commit()
        self.session.refresh(account)
        return account

    def _make_default(self, account_id: int) -> None:
        # one statement clears every sibling and flags the target
        self.session.execute(
            update(Account)
            .where(Account.user_id == self.user_id)
            .values(is_default=case((Account.id == account_id, True), else_=False))
            .execution_options(synchronize_session="fetch")
        )

    def stats(self, account_id: int, now: Optional[datetime] = None) -> dict[str, object]:
        account = self.get(account_id)
        now = now or datetime.utcnow()
        window = month_window(now.year, now.month)

        def month_total(txn_type: TransactionType) -> int:
            return int(
                self.session.execute(
                    select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                        Transaction.user_id == self.user_id,
                        Transaction.account_id == account.id,
                        Transaction.deleted_at.is_(None),
                        Transaction.type == txn_type,
                        Transaction.date.between(window.start, window.end),
                    )
                ).scalar_one()
                or 0
            )

        income = month_total(TransactionType.income)
        expenses = month_total(TransactionType.expense)
        count = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account.id,
                Transaction.deleted_at.is_(None),
            )
        ).scalar_one()
        return {
            "current_balance_cents": account.balance_cents,
            "monthly_income_cents": income,
            "monthly_expenses_cents": expenses,
            "net_flow_cents": income - expenses,
            "transaction_count": int(count or 0),
        }

    def reconcile(self, account_id: int, *, apply: bool = False) -> BalanceReconciliation:
        account = self.get(account_id)
        result = reconcile_account(self.session, account, apply=apply)
        self.session.commit()
        return result

    def total_balance_cents(self) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
                    Account.user_id == self.user_id
                )
            ).scalar_one()
            or 0
        )


class TagService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Tag]:
        stmt = select(Tag).where(Tag.user_id == self.user_id).order_by(Tag.name)
        return list(self.session.scalars(stmt).all())

    def get_or_create(self, name: str) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise InvalidInput("Tag name cannot be empty")

        stmt = select(Tag).where(
            Tag.user_id == self.user_id, func.lower(Tag.name) == clean_name.lower()
        )
        existing = self.session.scalar(stmt)
        if existing:
            return existing

        tag = Tag(user_id=self.user_id, name=clean_name)
        self.session.add(tag)
        self.session.flush()
        return tag

    def resolve(self, names: list[str]) -> list[Tag]:
        tags: list[Tag] = []
        tag_ids: set[int] = set()
        for name in names:
            if not name or not name.strip():
                continue
            tag = self.get_or_create(name)
            if tag.id not in tag_ids:
                tags.append(tag)
                tag_ids.add(tag.id)
        return tags


class TransactionService:
    """
    The ledger. Creates, deletes and restores adjust the linked account balance
    exactly once, inside the same unit of work as the row change.
    """

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        update_adjusts_balance: Optional[bool] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        if update_adjusts_balance is None:
            update_adjusts_balance = get_settings().update_adjusts_balance
        self.update_adjusts_balance = update_adjusts_balance

    def _owned_account(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFound("Account not found")
        return account

    def create(
        self,
        data: TransactionIn,
        *,
        origin_transaction_id: Optional[int] = None,
        occurrence_date: Optional[date] = None,
    ) -> Transaction:
        require_fields(
            {
                "type": data.type,
                "amount": data.amount,
                "description": data.description,
                "category": data.category,
                "account": data.account_id,
            }
        )
        txn_type = normalize_type(data.type)
        amount_cents = parse_amount_cents(data.amount)
        account = self._owned_account(data.account_id)
        investment_type = normalize_investment_type(txn_type, data.investment_type)

        txn_date = as_naive_utc(data.date) if data.date else datetime.utcnow()
        is_recurring = bool(data.is_recurring) and origin_transaction_id is None
        interval = data.recurring_interval if is_recurring else None
        next_date = (
            calculate_next_recurring_date(txn_date, interval) if interval else None
        )

        txn = Transaction(
            user_id=self.user_id,
            account_id=account.id,
            type=txn_type,
            amount_cents=amount_cents,
            description=data.description.strip(),
            date=txn_date,
            category=normalize_category(data.category),
            subcategory=normalize_text(data.subcategory),
            merchant=normalize_text(data.merchant),
            status=data.status,
            is_recurring=is_recurring,
            recurring_interval=interval,
            next_recurring_date=next_date,
            tax_deductible=bool(data.tax_deductible),
            investment_type=investment_type,
            origin_transaction_id=origin_transaction_id,
            occurrence_date=occurrence_date,
        )
        if data.tags:
            txn.tags = TagService(self.session, self.user_id).resolve(data.tags)

        self.session.add(txn)
        self.session.flush()
        adjust_account_balance(
            self.session,
            txn.account_id,
            signed_amount_cents(txn.type, txn.amount_cents),
            reason=f"create:{txn.id}",
        )
        self.session.commit()
        return self.get(txn.id)

    def get(self, transaction_id: int, *, include_deleted: bool = False) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account), selectinload(Transaction.tags))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not include_deleted:
            stmt = stmt.where(Transaction.deleted_at.is_(None))
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        old_contribution = signed_amount_cents(txn.type, txn.amount_cents)

        # validate the whole patch before touching the row
        if data.account_id is not None and data.account_id != txn.account_id:
            raise InvalidInput("Transaction account cannot be changed")
        txn_type = normalize_type(data.type) if data.type is not None else txn.type
        amount_cents = (
            parse_amount_cents(data.amount)
            if data.amount is not None
            else txn.amount_cents
        )
        description = txn.description
        if data.description is not None:
            description = data.description.strip()
            if not description:
                raise InvalidInput("Description cannot be empty")
        category = txn.category
        if data.category is not None:
            category = normalize_category(data.category)
            if not category:
                raise InvalidInput("Category cannot be empty")
        investment_type = txn.investment_type
        if data.investment_type is not None:
            investment_type = normalize_investment_type(txn_type, data.investment_type)
        if txn_type != TransactionType.investment:
            investment_type = None
        txn_date = as_naive_utc(data.date) if data.date is not None else txn.date
        is_recurring = (
            data.is_recurring if data.is_recurring is not None else txn.is_recurring
        )
        interval = data.recurring_interval or txn.recurring_interval
        if not is_recurring:
            interval = None

        txn.type = txn_type
        txn.amount_cents = amount_cents
        txn.description = description
        txn.category = category
        txn.investment_type = investment_type
        txn.date = txn_date
        if data.subcategory is not None:
            txn.subcategory = normalize_text(data.subcategory)
        if data.merchant is not None:
            txn.merchant = normalize_text(data.merchant)
        if data.status is not None:
            txn.status = data.status
        if data.tax_deductible is not None:
            txn.tax_deductible = data.tax_deductible
        txn.is_recurring = is_recurring
        txn.recurring_interval = interval
        if (
            data.is_recurring is not None
            or data.recurring_interval is not None
            or data.date is not None
        ):
            txn.next_recurring_date = (
                calculate_next_recurring_date(txn_date, interval)
                if is_recurring and interval
                else None
            )

        if data.tags is not None:
            txn.tags = TagService(self.session, self.user_id).resolve(data.tags)

        self.session.flush()
        delta = signed_amount_cents(txn.type, txn.amount_cents) - old_contribution
        if delta and self.update_adjusts_balance:
            adjust_account_balance(
                self.session, txn.account_id, delta, reason=f"update:{txn.id}"
            )
        elif delta:
            logger.info(
                f"ledger_update_unbalanced: transaction_id={txn.id} delta={delta}"
            )
        self.session.commit()
        return self.get(txn.id)

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        txn.deleted_at = datetime.utcnow()
        self.session.flush()
        adjust_account_balance(
            self.session,
            txn.account_id,
            -signed_amount_cents(txn.type, txn.amount_cents),
            reason=f"delete:{txn.id}",
        )
        self.session.commit()

    def bulk_delete(self, transaction_ids: list[int]) -> int:
        ids = list(dict.fromkeys(transaction_ids))
        if not ids:
            raise InvalidInput("Please provide transaction IDs to delete")

        owned = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
                Transaction.id.in_(ids),
            )
        ).scalar_one()
        if owned != len(ids):
            raise Forbidden("Some transactions do not belong to you")

        # sequential so each reversal lands in its own commit, in order
        for transaction_id in ids:
            self.delete(transaction_id)
        logger.info(f"ledger_bulk_delete: user_id={self.user_id} count={len(ids)}")
        return len(ids)

    def restore(self, transaction_id: int) -> Transaction:
        txn = self.get(transaction_id, include_deleted=True)
        if txn.deleted_at is None:
            return txn
        txn.deleted_at = None
        self.session.flush()
        adjust_account_balance(
            self.session,
            txn.account_id,
            signed_amount_cents(txn.type, txn.amount_cents),
            reason=f"restore:{txn.id}",
        )
        self.session.commit()
        return self.get(txn.id)

    def deleted(self, limit: int = 200) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account), selectinload(Transaction.tags))
            .where(
                Transaction.user_id == self.user_id, Transaction.deleted_at.isnot(None)
            )
            .order_by(Transaction.deleted_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def _filtered(self, stmt, filters: TransactionFilters):
        stmt = stmt.where(
            Transaction.user_id == self.user_id, Transaction.deleted_at.is_(None)
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(
                func.lower(Transaction.category) == normalize_category(filters.category)
            )
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.start:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Transaction.date <= filters.end)
        if filters.search:
            needle = filters.search.strip().lower()
            stmt = stmt.where(
                func.lower(Transaction.description).contains(needle, autoescape=True)
                | func.lower(Transaction.merchant).contains(needle, autoescape=True)
            )
        if filters.tag:
            stmt = stmt.where(
                Transaction.tags.any(
                    func.lower(Tag.name) == filters.tag.strip().lower()
                )
            )
        return stmt

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        page: int = 1,
        limit: int = 10,
    ) -> TransactionPage:
        filters = filters or TransactionFilters()
        if page < 1:
            raise InvalidInput("Page must be 1 or greater")
        if limit < 1:
            raise InvalidInput("Limit must be 1 or greater")
        limit = min(limit, MAX_PAGE_SIZE)

        total = self.session.execute(
            self._filtered(select(func.count(Transaction.id)), filters)
        ).scalar_one()
        stmt = (
            self._filtered(select(Transaction), filters)
            .options(joinedload(Transaction.account), selectinload(Transaction.tags))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = list(self.session.scalars(stmt).all())
        return TransactionPage(items=items, total=int(total or 0), page=page, limit=limit)

    def stats(self, filters: Optional[TransactionFilters] = None) -> dict[str, int]:
        filters = filters or TransactionFilters()
        stmt = self._filtered(
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("txn_count"),
            ),
            filters,
        ).group_by(Transaction.type)
        by_type = {
            row.type: (int(row.total or 0), int(row.txn_count or 0))
            for row in self.session.execute(stmt)
        }

        def totals(txn_type: TransactionType) -> tuple[int, int]:
            return by_type.get(txn_type, (0, 0))

        income, income_count = totals(TransactionType.income)
        expense, expense_count = totals(TransactionType.expense)
        investment, investment_count = totals(TransactionType.investment)
        tax, tax_count = totals(TransactionType.tax)
        return {
            "income_cents": income,
            "expense_cents": expense,
            "investment_cents": investment,
            "tax_cents": tax,
            "net_cents": income - expense - investment - tax,
            "transaction_count": income_count
            + expense_count
            + investment_count
            + tax_count,
            "income_count": income_count,
            "expense_count": expense_count,
            "investment_count": investment_count,
            "tax_count": tax_count,
        }

    def category_breakdown(
        self,
        transaction_type: TransactionType = TransactionType.expense,
        filters: Optional[TransactionFilters] = None,
    ) -> list[dict[str, object]]:
        filters = filters or TransactionFilters()
        category = func.lower(Transaction.category).label("category")
        total = func.coalesce(func.sum(Transaction.amount_cents), 0)
        stmt = (
            self._filtered(
                select(category, total.label("total"), func.count(Transaction.id)),
                filters,
            )
            .where(Transaction.type == transaction_type)
            .group_by(category)
            .order_by(total.desc(), category)
        )
        return [
            {"category": row[0], "total_cents": int(row[1] or 0), "count": int(row[2])}
            for row in self.session.execute(stmt)
        ]


def budget_status(percentage_used: float, alert_threshold: int) -> BudgetStatus:
    if percentage_used >= 100:
        return BudgetStatus.exceeded
    if percentage_used >= alert_threshold:
        return BudgetStatus.warning
    return BudgetStatus.healthy


@dataclass(frozen=True)
class BudgetProgress:
    budget: Budget
    spent_cents: int

    @property
    def remaining_cents(self) -> int:
        return max(0, self.budget.amount_cents - self.spent_cents)

    @property
    def percentage_used(self) -> float:
        if self.budget.amount_cents <= 0:
            return 0.0
        return self.spent_cents / self.budget.amount_cents * 100

    @property
    def status(self) -> BudgetStatus:
        return budget_status(self.percentage_used, self.budget.alert_threshold)


class BudgetService:
    """Budget thresholds plus spending re-derived from the ledger on every read."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    @staticmethod
    def window(budget: Budget) -> Period:
        if budget.period == BudgetPeriod.monthly:
            return month_window(budget.year, budget.month)
        return year_window(budget.year)

    def spent_cents(
        self, category: str, window: Period, *, account_id: Optional[int] = None
    ) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.deleted_at.is_(None),
            Transaction.type == TransactionType.expense,
            Transaction.date.between(window.start, window.end),
        )
        if category:
            stmt = stmt.where(Transaction.category == category)
        if account_id:
            stmt = stmt.where(Transaction.account_id == account_id)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def progress(self, budget: Budget) -> BudgetProgress:
        spent = self.spent_cents(budget.category, self.window(budget))
        return BudgetProgress(budget=budget, spent_cents=spent)

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        return budget

    def upsert(
        self, data: BudgetIn, now: Optional[datetime] = None
    ) -> tuple[Budget, bool]:
        now = now or datetime.utcnow()
        category = normalize_category(data.category)
        if not category:
            raise InvalidInput("Category is required")
        amount_cents = parse_non_negative_cents(data.amount, "Budget amount")
        year = data.year or now.year
        month = None
        if data.period == BudgetPeriod.monthly:
            month = data.month or now.month

        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.category == category,
            Budget.year == year,
            Budget.period == data.period,
            Budget.month.is_(None) if month is None else Budget.month == month,
        )
        existing = self.session.scalar(stmt)
        if existing:
            existing.amount_cents = amount_cents
            existing.alerts_enabled = data.alerts_enabled
            existing.alert_threshold = data.alert_threshold
            self.session.commit()
            self.session.refresh(existing)
            return existing, False

        budget = Budget(
            user_id=self.user_id,
            amount_cents=amount_cents,
            period=data.period,
            category=category,
            year=year,
            month=month,
            alerts_enabled=data.alerts_enabled,
            alert_threshold=data.alert_threshold,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget, True

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        if data.amount is not None:
            budget.amount_cents = parse_non_negative_cents(data.amount, "Budget amount")
        if data.alerts_enabled is not None:
            budget.alerts_enabled = data.alerts_enabled
        if data.alert_threshold is not None:
            budget.alert_threshold = data.alert_threshold
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def list_for_year(self, year: int) -> list[BudgetProgress]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.year == year)
            .order_by(Budget.category, Budget.period, Budget.month)
        )
        return [self.progress(budget) for budget in self.session.scalars(stmt)]

    def _current_month_budgets(
        self, now: datetime, *, alerts_only: bool = False
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.period == BudgetPeriod.monthly,
                Budget.year == now.year,
                Budget.month == now.month,
            )
            .order_by(Budget.category)
        )
        if alerts_only:
            stmt = stmt.where(Budget.alerts_enabled.is_(True))
        return list(self.session.scalars(stmt).all())

    def current(
        self, now: Optional[datetime] = None, account_id: Optional[int] = None
    ) -> dict[str, object]:
        now = now or datetime.utcnow()
        window = month_window(now.year, now.month)
        return {
            "budgets": [self.progress(b) for b in self._current_month_budgets(now)],
            "current_expenses_cents": self.spent_cents(
                "", window, account_id=account_id
            ),
        }

    def stats(self, now: Optional[datetime] = None) -> dict[str, object]:
        now = now or datetime.utcnow()
        rows = [self.progress(b) for b in self._current_month_budgets(now)]
        total_budget = sum(row.budget.amount_cents for row in rows)
        total_spending = sum(row.spent_cents for row in rows)
        overall_percentage = total_spending / total_budget * 100 if total_budget else 0.0
        return {
            "overall": {
                "total_budget_cents": total_budget,
                "total_spending_cents": total_spending,
                "percentage_used": round(overall_percentage, 1),
                "remaining_cents": max(0, total_budget - total_spending),
            },
            "by_category": rows,
        }

    def alerts(
        self, now: Optional[datetime] = None, repeat_hours: Optional[int] = None
    ) -> list[dict[str, object]]:
        now = now or datetime.utcnow()
        if repeat_hours is None:
            repeat_hours = get_settings().alert_repeat_hours
        repeat_after = timedelta(hours=repeat_hours)

        alerts: list[dict[str, object]] = []
        for budget in self._current_month_budgets(now, alerts_only=True):
            row = self.progress(budget)
            percentage = row.percentage_used
            if percentage < budget.alert_threshold:
                continue
            exceeded = percentage >= 100
            notify = (
                budget.last_alert_sent is None
                or now - budget.last_alert_sent >= repeat_after
            )
            if notify:
                budget.last_alert_sent = now
            alerts.append(
                {
                    "budget_id": budget.id,
                    "category": budget.category,
                    "budget_amount_cents": budget.amount_cents,
                    "current_spending_cents": row.spent_cents,
                    "percentage_used": round(percentage, 1),
                    "alert_type": (
                        BudgetStatus.exceeded if exceeded else BudgetStatus.warning
                    ).value,
                    "message": (
                        f"Budget exceeded for {budget.category}"
                        if exceeded
                        else f"Budget alert: {percentage:.1f}% used for {budget.category}"
                    ),
                    "notify": notify,
                }
            )
        self.session.commit()
        return alerts


class InsightService:
    def __init__(
        self,
        session: Session,
        generator: InsightGenerator,
        user_id: Optional[int] = None,
    ) -> None:
        self.session = session
        self.generator = generator
        self.user_id = user_id or get_current_user_id()

    def summary(
        self, period: Period, account_id: Optional[int] = None
    ) -> FinancialSummary:
        if account_id is not None:
            AccountService(self.session, self.user_id).get(account_id)
        stmt = select(
            Transaction.type,
            func.lower(Transaction.category),
            func.coalesce(func.sum(Transaction.amount_cents), 0),
            func.count(Transaction.id),
        ).where(
            Transaction.user_id == self.user_id,
            Transaction.deleted_at.is_(None),
            Transaction.date.between(period.start, period.end),
        )
        if account_id is not None:
            stmt = stmt.where(Transaction.account_id == account_id)
        stmt = stmt.group_by(Transaction.type, func.lower(Transaction.category))

        summary = FinancialSummary(period=period.slug)
        for txn_type, category, total, count in self.session.execute(stmt):
            total = int(total or 0)
            summary.transaction_count += int(count)
            if txn_type == TransactionType.income:
                summary.total_income += total
            elif txn_type == TransactionType.expense:
                summary.total_expenses += total
                summary.by_category[category] = (
                    summary.by_category.get(category, 0) + total
                )
            elif txn_type == TransactionType.investment:
                summary.total_investment += total
        return summary

    def generate_insights(
        self,
        period: str = "month",
        account_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, object]:
        window = resolve_insight_period(period, now=now)
        summary = self.summary(window, account_id)
        return {
            "insights": self.generator.financial_insights(summary),
            "summary": {
                "total_income_cents": summary.total_income,
                "total_expenses_cents": summary.total_expenses,
                "total_investment_cents": summary.total_investment,
                "net_income_cents": summary.net_income,
                "transaction_count": summary.transaction_count,
            },
            "period": {"start": window.start, "end": window.end},
        }

    def investment_suggestions(
        self, risk_tolerance: str = "MODERATE", amount: Decimal = Decimal("1000")
    ) -> dict[str, object]:
        total_balance = AccountService(self.session, self.user_id).total_balance_cents()
        base = select(Transaction).where(
            Transaction.user_id == self.user_id,
            Transaction.deleted_at.is_(None),
            Transaction.type == TransactionType.investment,
        )
        history = self.session.execute(
            select(func.count()).select_from(base.subquery())
        ).scalar_one()
        recent = self.session.scalars(
            base.order_by(Transaction.date.desc(), Transaction.id.desc()).limit(3)
        ).all()
        snapshot = {
            "total_balance": total_balance / 100,
            "investment_history": int(history or 0),
            "recent_investments": [
                {
                    "type": txn.investment_type.value if txn.investment_type else None,
                    "amount": txn.amount_cents / 100,
                }
                for txn in recent
            ],
        }
        return {
            "suggestions": self.generator.investment_suggestions(
                snapshot, risk_tolerance, amount
            ),
            "risk_profile": risk_tolerance,
            "investment_amount": amount,
            "user_snapshot": snapshot,
            "disclaimer": "These are general suggestions. Please consult with a "
            "financial advisor for personalized advice.",
        }

    def tax_tips(self, now: Optional[datetime] = None) -> dict[str, object]:
        now = now or datetime.utcnow()
        window = year_window(now.year)
        deductible_rows = self.session.execute(
            select(
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount_cents), 0),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
                Transaction.tax_deductible.is_(True),
                Transaction.date.between(window.start, window.end),
            )
            .group_by(Transaction.category)
            .order_by(Transaction.category)
        ).all()
        deductible_by_category = {row[0]: int(row[1] or 0) for row in deductible_rows}
        total_deductible = sum(deductible_by_category.values())
        total_investments = int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                    Transaction.user_id == self.user_id,
                    Transaction.deleted_at.is_(None),
                    Transaction.type == TransactionType.investment,
                    Transaction.date.between(window.start, window.end),
                )
            ).scalar_one()
            or 0
        )
        return {
            "tips": self.generator.tax_tips(
                now.year, total_deductible, total_investments
            ),
            "tax_year": now.year,
            "total_deductible_cents": total_deductible,
            "deductible_by_category_cents": deductible_by_category,
            "total_investments_cents": total_investments,
            "note": "Consult with a tax professional for personalized advice.",
        }
