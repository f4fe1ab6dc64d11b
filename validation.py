from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional, TypeVar, Union

from errors import InvalidInput
from models import InvestmentType, TransactionType

E = TypeVar("E", bound=Enum)

AmountInput = Union[Decimal, int, float, str, None]


def is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def require_fields(values: dict[str, object]) -> None:
    missing = [name for name, value in values.items() if is_blank(value)]
    if missing:
        raise InvalidInput(f"Missing required fields: {', '.join(missing)}")


def normalize_category(value: str) -> str:
    return value.strip().lower()


def normalize_text(value: Optional[str]) -> str:
    return (value or "").strip()


def parse_enum(enum_cls: type[E], value: Union[str, E], label: str) -> E:
    if isinstance(value, enum_cls):
        return value
    clean = str(value).strip().upper()
    try:
        return enum_cls(clean)
    except ValueError as exc:
        raise InvalidInput(f"Invalid {label}") from exc


def normalize_type(value: Union[str, TransactionType]) -> TransactionType:
    return parse_enum(TransactionType, value, "transaction type")


def normalize_investment_type(
    txn_type: TransactionType, value: Optional[Union[str, InvestmentType]]
) -> Optional[InvestmentType]:
    if txn_type != TransactionType.investment or is_blank(value):
        return None
    return parse_enum(InvestmentType, value, "investment type")


def to_cents(value: AmountInput) -> int:
    if isinstance(value, str):
        clean = value.strip().replace(" ", "").replace(",", ".")
    else:
        clean = str(value)
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise InvalidInput("Amount must be a number") from exc
    if not amount.is_finite():
        raise InvalidInput("Amount must be a number")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_amount_cents(value: AmountInput) -> int:
    """Parse a strictly positive money amount into minor units."""
    if is_blank(value):
        raise InvalidInput("Amount must be a positive number")
    try:
        cents = to_cents(value)
    except InvalidInput as exc:
        raise InvalidInput("Amount must be a positive number") from exc
    if cents <= 0:
        raise InvalidInput("Amount must be a positive number")
    return cents


def parse_non_negative_cents(value: AmountInput, label: str = "Amount") -> int:
    if is_blank(value):
        raise InvalidInput(f"{label} is required")
    cents = to_cents(value)
    if cents < 0:
        raise InvalidInput(f"{label} must be zero or positive")
    return cents


def cents_to_amount(cents: int) -> float:
    return cents / 100


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_date_bound(value: Optional[str], *, end: bool = False) -> Optional[datetime]:
    """
    Parse an ISO-8601 filter bound. Date-only end bounds cover the whole day so
    that ranges stay inclusive.
    """
    if is_blank(value):
        return None
    clean = value.strip()
    try:
        if len(clean) == 10:
            day = date.fromisoformat(clean)
            return datetime.combine(day, time.max if end else time.min)
        return as_naive_utc(datetime.fromisoformat(clean.replace("Z", "+00:00")))
    except ValueError as exc:
        raise InvalidInput(f"Invalid date: {clean}") from exc
