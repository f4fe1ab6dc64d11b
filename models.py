from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class AccountType(str, Enum):
    current = "CURRENT"
    savings = "SAVINGS"
    investment = "INVESTMENT"
    credit_card = "CREDIT_CARD"


class TransactionType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"
    investment = "INVESTMENT"
    tax = "TAX"


class TransactionStatus(str, Enum):
    pending = "PENDING"
    completed = "COMPLETED"
    failed = "FAILED"


class RecurringInterval(str, Enum):
    daily = "DAILY"
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    yearly = "YEARLY"


class InvestmentType(str, Enum):
    stocks = "STOCKS"
    crypto = "CRYPTO"
    real_estate = "REAL_ESTATE"
    bonds = "BONDS"
    mutual_funds = "MUTUAL_FUNDS"
    other = "OTHER"


class BudgetPeriod(str, Enum):
    monthly = "MONTHLY"
    yearly = "YEARLY"


class BudgetStatus(str, Enum):
    healthy = "HEALTHY"
    warning = "WARNING"
    exceeded = "EXCEEDED"


ACCOUNT_TYPE_ENUM = _value_enum(AccountType, "accounttype")
TRANSACTION_TYPE_ENUM = _value_enum(TransactionType, "transactiontype")
TRANSACTION_STATUS_ENUM = _value_enum(TransactionStatus, "transactionstatus")
RECURRING_INTERVAL_ENUM = _value_enum(RecurringInterval, "recurringinterval")
INVESTMENT_TYPE_ENUM = _value_enum(InvestmentType, "investmenttype")
BUDGET_PERIOD_ENUM = _value_enum(BudgetPeriod, "budgetperiod")


def signed_amount_cents(txn_type: TransactionType, amount_cents: int) -> int:
    """Balance contribution of a transaction: income credits, everything else debits."""
    if txn_type == TransactionType.income:
        return amount_cents
    return -amount_cents


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[AccountType] = mapped_column(
        ACCOUNT_TYPE_ENUM, nullable=False, default=AccountType.current
    )
    opening_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(20), nullable=False, default="RUPEES")
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    color: Mapped[str] = mapped_column(String(9), nullable=False, default="#3B82F6")
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user_default", "user_id", "is_default"),)


class Tag(Base, TimestampMixin):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_tag_user_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", secondary="transaction_tags", back_populates="tags"
    )


transaction_tags = Table(
    "transaction_tags",
    Base.metadata,
    Column("transaction_id", Integer, ForeignKey("transactions.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    subcategory: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    merchant: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    status: Mapped[TransactionStatus] = mapped_column(
        TRANSACTION_STATUS_ENUM, nullable=False, default=TransactionStatus.completed
    )
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurring_interval: Mapped[Optional[RecurringInterval]] = mapped_column(
        RECURRING_INTERVAL_ENUM
    )
    next_recurring_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    tax_deductible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    investment_type: Mapped[Optional[InvestmentType]] = mapped_column(
        INVESTMENT_TYPE_ENUM
    )
    origin_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")
    tags: Mapped[list["Tag"]] = relationship(
        "Tag", secondary="transaction_tags", back_populates="transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "origin_transaction_id",
            "occurrence_date",
            name="uq_txn_origin_occurrence",
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category", "user_id", "category"),
        Index("ix_transactions_user_type", "user_id", "type"),
        Index("ix_transactions_user_recurring", "user_id", "is_recurring"),
        Index("ix_transactions_account", "account_id"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(
        BUDGET_PERIOD_ENUM, nullable=False, default=BudgetPeriod.monthly
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[Optional[int]] = mapped_column(Integer)
    alerts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    alert_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=80)
    last_alert_sent: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
        CheckConstraint(
            "alert_threshold >= 0 AND alert_threshold <= 100",
            name="ck_budget_alert_threshold_range",
        ),
        CheckConstraint(
            "month IS NULL OR (month >= 1 AND month <= 12)",
            name="ck_budget_month_range",
        ),
        UniqueConstraint(
            "user_id",
            "category",
            "year",
            "month",
            "period",
            name="uq_budget_user_category_period",
        ),
        Index("ix_budgets_user_year_month", "user_id", "year", "month"),
    )
