from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import google.generativeai as genai

from config import Settings

logger = logging.getLogger(__name__)

_LIST_ITEM = re.compile(r"^\s*(?:\d+[.)]|[•\-*])\s*")


class InsightClient:
    """Text generation backend used by the insight generator."""

    def available(self) -> bool:
        raise NotImplementedError

    def generate(self, prompt: str) -> str:
        raise NotImplementedError


class NullInsightClient(InsightClient):
    def available(self) -> bool:
        return False

    def generate(self, prompt: str) -> str:
        raise RuntimeError("AI client is not configured")


class GeminiInsightClient(InsightClient):
    def __init__(self, api_key: str, model_name: str, timeout_secs: float) -> None:
        self.model_name = model_name
        self.timeout_secs = timeout_secs
        genai.configure(api_key=api_key)
        self._model = genai.GenerativeModel(model_name)

    def available(self) -> bool:
        return self._model is not None

    def generate(self, prompt: str) -> str:
        response = self._model.generate_content(
            prompt, request_options={"timeout": self.timeout_secs}
        )
        return (response.text or "").strip()


def build_insight_client(settings: Settings) -> InsightClient:
    if not settings.gemini_api_key:
        logger.info("insight_client: gemini api key not configured, using fallbacks")
        return NullInsightClient()
    return GeminiInsightClient(
        api_key=settings.gemini_api_key,
        model_name=settings.gemini_model,
        timeout_secs=settings.ai_timeout_secs,
    )


@dataclass
class FinancialSummary:
    period: str
    total_income: int = 0
    total_expenses: int = 0
    total_investment: int = 0
    transaction_count: int = 0
    by_category: dict[str, int] = field(default_factory=dict)

    @property
    def net_income(self) -> int:
        return self.total_income - self.total_expenses


def parse_list_items(text: str) -> list[str]:
    items: list[str] = []
    for line in text.splitlines():
        if not _LIST_ITEM.match(line):
            continue
        content = _LIST_ITEM.sub("", line, count=1).strip().strip("*").strip()
        if content:
            items.append(content)
    return items


def tip_category(tip: str) -> str:
    lower = tip.lower()
    if "deduct" in lower or "expense" in lower:
        return "DEDUCTIONS"
    if "retirement" in lower or "401k" in lower or "ira" in lower:
        return "RETIREMENT"
    if "invest" in lower or "stock" in lower or "bond" in lower:
        return "INVESTMENTS"
    if "document" in lower or "record" in lower:
        return "DOCUMENTATION"
    return "GENERAL"


def _money(cents: int) -> str:
    return f"{cents / 100:.2f}"


def fallback_insights(summary: FinancialSummary) -> list[str]:
    insights: list[str] = []
    income = summary.total_income
    net = summary.net_income
    count = summary.transaction_count

    if net < 0:
        insights.append(
            "Your expenses exceed your income. Focus on reducing discretionary "
            "spending and creating a strict budget."
        )
    elif net < income * 0.2:
        insights.append(
            "You're saving less than 20% of your income. Consider increasing your "
            "savings rate for better financial security."
        )
    else:
        insights.append(
            "Great job maintaining healthy savings! Consider investing your "
            "surplus for long-term growth."
        )

    if count == 0:
        insights.append(
            "Start tracking your expenses to understand your spending patterns "
            "and identify savings opportunities."
        )
    elif count < 10:
        insights.append(
            "You have few transactions this period. Consider if you're tracking "
            "all your expenses for accurate financial planning."
        )
    else:
        insights.append(
            f"You've made {count} transactions. Review them to identify recurring "
            "expenses that could be optimized."
        )

    insights.append(
        "Set specific financial goals and track your progress monthly. Consider "
        "automating savings and investments."
    )
    return insights


def investment_allocations(amount: Decimal) -> list[dict[str, object]]:
    return [
        {
            "type": "STOCKS",
            "suggestion": "Consider diversified index funds for long-term growth "
            "with moderate risk",
            "risk": "MEDIUM",
            "potential_return": "7-10% annually",
            "amount": float(amount * Decimal("0.6")),
        },
        {
            "type": "BONDS",
            "suggestion": "Government or corporate bonds for stable, lower-risk "
            "returns",
            "risk": "LOW",
            "potential_return": "3-5% annually",
            "amount": float(amount * Decimal("0.3")),
        },
        {
            "type": "CRYPTO",
            "suggestion": "Small allocation to established cryptocurrencies for "
            "diversification",
            "risk": "HIGH",
            "potential_return": "Highly variable",
            "amount": float(amount * Decimal("0.1")),
        },
    ]


def fallback_tax_tips(total_deductible: int) -> list[dict[str, str]]:
    return [
        {
            "category": "DEDUCTIONS",
            "tip": f"You have {_money(total_deductible)} in tax-deductible expenses. "
            "Consider itemizing if this exceeds the standard deduction.",
            "priority": "HIGH",
        },
        {
            "category": "RETIREMENT",
            "tip": "Maximize contributions to tax-advantaged retirement accounts to "
            "reduce taxable income.",
            "priority": "HIGH",
        },
        {
            "category": "INVESTMENTS",
            "tip": "Consider tax-efficient investment strategies like holding "
            "investments long-term for lower capital gains rates.",
            "priority": "MEDIUM",
        },
        {
            "category": "DOCUMENTATION",
            "tip": "Keep detailed records of all deductible expenses and charitable "
            "donations for tax filing.",
            "priority": "MEDIUM",
        },
    ]


class InsightGenerator:
    """
    Wraps an InsightClient with a bounded timeout. Every public method returns
    deterministic fallback content when the client is unavailable, slow, failing
    or answers with something unusable; none of them raise.
    """

    def __init__(self, client: InsightClient, timeout_secs: float = 10.0) -> None:
        self.client = client
        self.timeout_secs = timeout_secs
        self._executor: Optional[ThreadPoolExecutor] = None

    def _ask(self, prompt: str, purpose: str) -> Optional[str]:
        try:
            if not self.client.available():
                return None
        except Exception as exc:
            logger.warning(f"insight_unavailable: purpose={purpose} error={exc}")
            return None

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=2, thread_name_prefix="insight"
            )
        future = self._executor.submit(self.client.generate, prompt)
        try:
            return future.result(timeout=self.timeout_secs)
        except FutureTimeout:
            future.cancel()
            logger.warning(
                f"insight_timeout: purpose={purpose} timeout_secs={self.timeout_secs}"
            )
        except Exception as exc:
            logger.warning(f"insight_failed: purpose={purpose} error={exc}")
        return None

    def financial_insights(self, summary: FinancialSummary) -> list[str]:
        prompt = (
            "Analyze this financial data and provide 3 concise, actionable insights:\n"
            f"- Period: {summary.period}\n"
            f"- Total Income: {_money(summary.total_income)}\n"
            f"- Total Expenses: {_money(summary.total_expenses)}\n"
            f"- Total Investment: {_money(summary.total_investment)}\n"
            f"- Net Income: {_money(summary.net_income)}\n"
            f"- Transaction Count: {summary.transaction_count}\n"
            "- Category Breakdown: "
            f"{json.dumps({k: v / 100 for k, v in summary.by_category.items()})}\n\n"
            "Provide 3 practical insights that are specific to this situation, "
            "actionable, focused on improvement opportunities and realistic.\n"
            "Return the insights as a numbered list."
        )
        text = self._ask(prompt, "financial_insights")
        if text:
            insights = parse_list_items(text)
            if len(insights) >= 2:
                return insights[:3]
        logger.info("insight_fallback: purpose=financial_insights")
        return fallback_insights(summary)

    def investment_suggestions(
        self, snapshot: dict[str, object], risk_profile: str, amount: Decimal
    ) -> list[dict[str, object]]:
        suggestions = investment_allocations(amount)
        prompt = (
            "Provide investment suggestions based on:\n"
            f"- Risk Profile: {risk_profile}\n"
            f"- Investment Amount: {amount}\n"
            f"- User Financial Data: {json.dumps(snapshot, default=str)}\n\n"
            "Give exactly 3 suggestions, in this order: an equity/index fund idea, "
            "a bond idea, and a small high-risk diversifier. "
            "Format as a numbered list with one sentence each."
        )
        text = self._ask(prompt, "investment_suggestions")
        if text:
            for suggestion, line in zip(suggestions, parse_list_items(text)):
                suggestion["suggestion"] = line
        return suggestions

    def tax_tips(
        self, year: int, total_deductible: int, total_investments: int
    ) -> list[dict[str, str]]:
        prompt = (
            "Provide tax-saving tips based on:\n"
            f"- Tax Year: {year}\n"
            f"- Tax-Deductible Expenses: {_money(total_deductible)}\n"
            f"- Total Investments: {_money(total_investments)}\n\n"
            "Provide 4-5 practical tax tips focusing on maximizing deductions, "
            "investment-related tax benefits, retirement contributions and "
            "record-keeping.\nFormat as a numbered list."
        )
        text = self._ask(prompt, "tax_tips")
        if text:
            tips = [
                {
                    "category": tip_category(content),
                    "tip": content,
                    "priority": "HIGH" if index < 2 else "MEDIUM",
                }
                for index, content in enumerate(parse_list_items(text)[:5])
            ]
            if tips:
                return tips
        return fallback_tax_tips(total_deductible)

    def test_connection(self) -> dict[str, object]:
        if not self.client.available():
            return {"success": False, "message": "AI client not configured"}
        reply = self._ask("Say 'FinWise AI is working!' in a short response.", "test")
        if reply is None:
            return {"success": False, "message": "AI connection failed"}
        return {
            "success": True,
            "message": "AI connection successful",
            "model": getattr(self.client, "model_name", None),
            "response": reply,
        }

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
