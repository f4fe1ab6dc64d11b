from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from models import (
    AccountType,
    BudgetPeriod,
    BudgetStatus,
    RecurringInterval,
    TransactionStatus,
)

AmountField = Optional[Union[Decimal, str]]


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    type: AccountType = AccountType.current
    balance: Decimal = Decimal("0")
    currency: str = Field(default="RUPEES", max_length=20)
    is_default: bool = False
    color: str = Field(default="#3B82F6", max_length=9)
    description: str = Field(default="", max_length=200)


class AccountUpdate(BaseModel):
    # balance only moves through the ledger
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    type: Optional[AccountType] = None
    currency: Optional[str] = Field(default=None, max_length=20)
    is_default: Optional[bool] = None
    color: Optional[str] = Field(default=None, max_length=9)
    description: Optional[str] = Field(default=None, max_length=200)


class TransactionIn(BaseModel):
    type: Optional[str] = None
    amount: AmountField = None
    description: Optional[str] = Field(default=None, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    account_id: Optional[int] = None
    date: Optional[datetime] = None
    subcategory: str = Field(default="", max_length=100)
    merchant: str = Field(default="", max_length=200)
    status: TransactionStatus = TransactionStatus.completed
    is_recurring: bool = False
    recurring_interval: Optional[RecurringInterval] = None
    tags: list[str] = Field(default_factory=list)
    tax_deductible: bool = False
    investment_type: Optional[str] = None


class TransactionUpdate(BaseModel):
    type: Optional[str] = None
    amount: AmountField = None
    description: Optional[str] = Field(default=None, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    account_id: Optional[int] = None
    date: Optional[datetime] = None
    subcategory: Optional[str] = Field(default=None, max_length=100)
    merchant: Optional[str] = Field(default=None, max_length=200)
    status: Optional[TransactionStatus] = None
    is_recurring: Optional[bool] = None
    recurring_interval: Optional[RecurringInterval] = None
    tags: Optional[list[str]] = None
    tax_deductible: Optional[bool] = None
    investment_type: Optional[str] = None


class BulkDeleteIn(BaseModel):
    transaction_ids: list[int] = Field(default_factory=list)


class BudgetIn(BaseModel):
    amount: Union[Decimal, str]
    category: str = Field(..., min_length=1, max_length=100)
    period: BudgetPeriod = BudgetPeriod.monthly
    year: Optional[int] = Field(default=None, ge=1970, le=3000)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    alerts_enabled: bool = True
    alert_threshold: int = Field(default=80, ge=0, le=100)


class BudgetUpdate(BaseModel):
    amount: AmountField = None
    alerts_enabled: Optional[bool] = None
    alert_threshold: Optional[int] = Field(default=None, ge=0, le=100)


class InsightRequest(BaseModel):
    period: Literal["month", "quarter", "year"] = "month"
    account_id: Optional[int] = None


class InvestmentRequest(BaseModel):
    risk_tolerance: Literal["CONSERVATIVE", "MODERATE", "AGGRESSIVE"] = "MODERATE"
    investment_amount: Decimal = Field(default=Decimal("1000"), gt=0)


class AccountRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType


class AccountOut(BaseModel):
    id: int
    name: str
    type: AccountType
    balance: float
    balance_cents: int
    opening_balance: float
    opening_balance_cents: int
    currency: str
    is_default: bool
    color: str
    description: str
    created_at: datetime
    updated_at: datetime


class TransactionOut(BaseModel):
    id: int
    type: str
    amount: float
    amount_cents: int
    description: str
    date: datetime
    category: str
    subcategory: str
    merchant: str
    status: str
    is_recurring: bool
    recurring_interval: Optional[str]
    next_recurring_date: Optional[datetime]
    tags: list[str]
    tax_deductible: bool
    investment_type: Optional[str]
    origin_transaction_id: Optional[int]
    account: Optional[AccountRef]
    created_at: datetime
    updated_at: datetime


class BudgetOut(BaseModel):
    id: int
    category: str
    period: BudgetPeriod
    year: int
    month: Optional[int]
    amount: float
    amount_cents: int
    alerts_enabled: bool
    alert_threshold: int
    last_alert_sent: Optional[datetime]
    current_spending: Optional[float] = None
    current_spending_cents: Optional[int] = None
    remaining_amount: Optional[float] = None
    percentage_used: Optional[float] = None
    status: Optional[BudgetStatus] = None
