import time
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import InvalidInput, NotFound
from insights import (
    FinancialSummary,
    InsightClient,
    InsightGenerator,
    NullInsightClient,
    fallback_insights,
    parse_list_items,
    tip_category,
)
from periods import resolve_insight_period
from schemas import AccountIn, TransactionIn
from services import AccountService, InsightService, TransactionService


class FakeClient(InsightClient):
    def __init__(self, reply: str = "", delay: float = 0.0, error: Exception = None):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.prompts: list[str] = []

    def available(self) -> bool:
        return True

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


def _summary(**values) -> FinancialSummary:
    return FinancialSummary(period="month", **values)


def test_parse_list_items_strips_markers() -> None:
    text = "Here you go:\n1. Save more\n2) **Cut dining**\n- Invest surplus\n\n"
    assert parse_list_items(text) == ["Save more", "Cut dining", "Invest surplus"]


def test_tip_category_classification() -> None:
    assert tip_category("Deduct home office expenses") == "DEDUCTIONS"
    assert tip_category("Max out your IRA") == "RETIREMENT"
    assert tip_category("Hold stocks longer") == "INVESTMENTS"
    assert tip_category("Keep every receipt on record") == "DOCUMENTATION"
    assert tip_category("File early") == "GENERAL"


def test_fallback_insights_follow_net_income() -> None:
    overspent = fallback_insights(_summary(total_income=100, total_expenses=200))
    assert "exceed your income" in overspent[0]
    assert "Start tracking" in overspent[1]
    assert len(overspent) == 3

    thin = fallback_insights(
        _summary(total_income=1000, total_expenses=900, transaction_count=12)
    )
    assert "less than 20%" in thin[0]
    assert "12 transactions" in thin[1]

    healthy = fallback_insights(
        _summary(total_income=1000, total_expenses=100, transaction_count=3)
    )
    assert "Great job" in healthy[0]


def test_ai_insights_are_capped_at_three() -> None:
    client = FakeClient("1. One\n2. Two\n3. Three\n4. Four")
    generator = InsightGenerator(client, timeout_secs=1)
    assert generator.financial_insights(_summary()) == ["One", "Two", "Three"]
    assert "Analyze this financial data" in client.prompts[0]


@pytest.mark.parametrize(
    "client",
    [
        NullInsightClient(),
        FakeClient(error=RuntimeError("quota exceeded")),
        FakeClient("no list here at all"),
        FakeClient("1. only one", delay=0.5),
    ],
    ids=["unavailable", "failing", "unusable", "slow"],
)
def test_insights_fall_back_without_raising(client) -> None:
    generator = InsightGenerator(client, timeout_secs=0.05)
    summary = _summary(total_income=500, total_expenses=900, transaction_count=2)
    try:
        assert generator.financial_insights(summary) == fallback_insights(summary)
        tips = generator.tax_tips(2025, 10_000, 0)
        assert tips[0]["category"] == "DEDUCTIONS"
        assert "100.00" in tips[0]["tip"]
    finally:
        generator.shutdown()


def test_investment_split_and_ai_wording() -> None:
    generator = InsightGenerator(NullInsightClient())
    suggestions = generator.investment_suggestions({}, "MODERATE", Decimal("1000"))
    assert [(s["type"], s["amount"]) for s in suggestions] == [
        ("STOCKS", 600.0),
        ("BONDS", 300.0),
        ("CRYPTO", 100.0),
    ]

    worded = InsightGenerator(FakeClient("1. Buy an index fund\n2. Ladder bonds"))
    suggestions = worded.investment_suggestions({}, "MODERATE", Decimal("1000"))
    assert suggestions[0]["suggestion"] == "Buy an index fund"
    assert suggestions[1]["suggestion"] == "Ladder bonds"
    assert suggestions[2]["type"] == "CRYPTO"
    worded.shutdown()


def test_ai_tax_tips_get_priority_by_position() -> None:
    generator = InsightGenerator(
        FakeClient("1. Deduct expenses\n2. Use your 401k\n3. Keep records")
    )
    tips = generator.tax_tips(2025, 0, 0)
    assert [t["priority"] for t in tips] == ["HIGH", "HIGH", "MEDIUM"]
    assert [t["category"] for t in tips] == [
        "DEDUCTIONS",
        "RETIREMENT",
        "DOCUMENTATION",
    ]
    generator.shutdown()


def test_connection_check_reports_state() -> None:
    assert InsightGenerator(NullInsightClient()).test_connection()["success"] is False
    generator = InsightGenerator(FakeClient("FinWise AI is working!"))
    result = generator.test_connection()
    assert result["success"] is True
    assert result["response"] == "FinWise AI is working!"
    generator.shutdown()


def test_insight_period_windows() -> None:
    now = datetime(2025, 8, 14, 10, 0)
    assert resolve_insight_period("month", now=now).start == datetime(2025, 8, 1)
    assert resolve_insight_period("quarter", now=now).start == datetime(2025, 7, 1)
    assert resolve_insight_period("YEAR", now=now).start == datetime(2025, 1, 1)
    assert resolve_insight_period(None, now=now).end == now
    with pytest.raises(InvalidInput):
        resolve_insight_period("week", now=now)


def test_insight_service_summarizes_the_ledger() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session).create(AccountIn(name="Main"))
        ledger = TransactionService(session)
        for txn_type, amount, category, day in [
            ("INCOME", "2000", "salary", 1),
            ("EXPENSE", "300", "Food", 3),
            ("EXPENSE", "200", "food", 4),
            ("INVESTMENT", "500", "stocks", 5),
            ("EXPENSE", "999", "food", 1),
        ]:
            month = 7 if day != 1 or txn_type == "INCOME" else 6
            ledger.create(
                TransactionIn(
                    type=txn_type,
                    amount=amount,
                    description="x",
                    category=category,
                    account_id=account.id,
                    date=datetime(2025, month, day, 9, 0),
                    tax_deductible=category == "stocks",
                )
            )

        service = InsightService(session, InsightGenerator(NullInsightClient()))
        result = service.generate_insights("month", now=datetime(2025, 7, 20))
        assert result["summary"] == {
            "total_income_cents": 200_000,
            "total_expenses_cents": 50_000,
            "total_investment_cents": 50_000,
            "net_income_cents": 150_000,
            "transaction_count": 4,
        }
        assert len(result["insights"]) == 3

        quarter = service.summary(resolve_insight_period("quarter", now=datetime(2025, 7, 20)))
        assert quarter.by_category == {"food": 50_000}

        tax = service.tax_tips(now=datetime(2025, 7, 20))
        assert tax["total_deductible_cents"] == 50_000
        assert tax["total_investments_cents"] == 50_000

        invest = service.investment_suggestions("AGGRESSIVE", Decimal("200"))
        assert invest["user_snapshot"]["investment_history"] == 1
        assert invest["user_snapshot"]["total_balance"] == 2000 - 300 - 200 - 500 - 999

        with pytest.raises(NotFound):
            service.generate_insights("month", account_id=999)
