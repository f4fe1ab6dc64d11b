import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from database import SessionLocal
from errors import FinWiseError
from insights import InsightGenerator, build_insight_client
from models import Account, Budget, Transaction, TransactionType
from recurrence import RecurringEngine
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    AccountRef,
    AccountUpdate,
    BudgetIn,
    BudgetOut,
    BudgetUpdate,
    BulkDeleteIn,
    InsightRequest,
    InvestmentRequest,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
)
from services import (
    AccountService,
    BudgetProgress,
    BudgetService,
    InsightService,
    TransactionFilters,
    TransactionService,
    get_current_user_id,
)
from validation import cents_to_amount, parse_date_bound, parse_enum

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="FinWise")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_current_user_id()


insight_generator = InsightGenerator(
    build_insight_client(settings), timeout_secs=settings.ai_timeout_secs
)


def get_insight_generator() -> InsightGenerator:
    return insight_generator


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if settings.scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()
    insight_generator.shutdown()


def envelope(
    data: object = None, message: Optional[str] = None, **extra: object
) -> dict[str, object]:
    body: dict[str, object] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


@app.exception_handler(FinWiseError)
async def finwise_error_handler(request: Request, exc: FinWiseError):
    return JSONResponse(
        status_code=exc.status_code, content={"success": False, "message": str(exc)}
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "; ".join(parts) or "Invalid request"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    content: dict[str, object] = {"success": False, "message": "Internal server error"}
    if settings.debug:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def serialize_account(account: Account) -> dict[str, object]:
    return AccountOut(
        id=account.id,
        name=account.name,
        type=account.type,
        balance=cents_to_amount(account.balance_cents),
        balance_cents=account.balance_cents,
        opening_balance=cents_to_amount(account.opening_balance_cents),
        opening_balance_cents=account.opening_balance_cents,
        currency=account.currency,
        is_default=account.is_default,
        color=account.color,
        description=account.description,
        created_at=account.created_at,
        updated_at=account.updated_at,
    ).model_dump(mode="json")


def serialize_transaction(txn: Transaction) -> dict[str, object]:
    return TransactionOut(
        id=txn.id,
        type=txn.type.value,
        amount=cents_to_amount(txn.amount_cents),
        amount_cents=txn.amount_cents,
        description=txn.description,
        date=txn.date,
        category=txn.category,
        subcategory=txn.subcategory,
        merchant=txn.merchant,
        status=txn.status.value,
        is_recurring=txn.is_recurring,
        recurring_interval=(
            txn.recurring_interval.value if txn.recurring_interval else None
        ),
        next_recurring_date=txn.next_recurring_date,
        tags=[tag.name for tag in txn.tags],
        tax_deductible=txn.tax_deductible,
        investment_type=txn.investment_type.value if txn.investment_type else None,
        origin_transaction_id=txn.origin_transaction_id,
        account=AccountRef.model_validate(txn.account) if txn.account else None,
        created_at=txn.created_at,
        updated_at=txn.updated_at,
    ).model_dump(mode="json")


def serialize_budget(
    budget: Budget, progress: Optional[BudgetProgress] = None
) -> dict[str, object]:
    derived: dict[str, object] = {}
    if progress is not None:
        derived = {
            "current_spending": cents_to_amount(progress.spent_cents),
            "current_spending_cents": progress.spent_cents,
            "remaining_amount": cents_to_amount(progress.remaining_cents),
            "percentage_used": round(progress.percentage_used, 1),
            "status": progress.status,
        }
    return BudgetOut(
        id=budget.id,
        category=budget.category,
        period=budget.period,
        year=budget.year,
        month=budget.month,
        amount=cents_to_amount(budget.amount_cents),
        amount_cents=budget.amount_cents,
        alerts_enabled=budget.alerts_enabled,
        alert_threshold=budget.alert_threshold,
        last_alert_sent=budget.last_alert_sent,
        **derived,
    ).model_dump(mode="json")


def serialize_progress(progress: BudgetProgress) -> dict[str, object]:
    return serialize_budget(progress.budget, progress)


def filters_from_query(
    type: Optional[str] = None,
    category: Optional[str] = None,
    account_id: Optional[int] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    search: Optional[str] = None,
    tag: Optional[str] = None,
) -> TransactionFilters:
    txn_type = parse_enum(TransactionType, type, "transaction type") if type else None
    return TransactionFilters(
        type=txn_type,
        category=category or None,
        account_id=account_id,
        start=parse_date_bound(start_date),
        end=parse_date_bound(end_date, end=True),
        search=search or None,
        tag=tag or None,
    )


@app.get("/health")
def health():
    return {
        "success": True,
        "message": "FinWise API is running",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/api/accounts")
def list_accounts(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    accounts = AccountService(db, user_id).list_all()
    return envelope([serialize_account(a) for a in accounts], count=len(accounts))


@app.post("/api/accounts", status_code=201)
def create_account(
    payload: AccountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    account = AccountService(db, user_id).create(payload)
    logger.info(f"account_created: user_id={user_id} account_id={account.id}")
    return envelope(serialize_account(account), "Account created successfully")


@app.get("/api/accounts/{account_id}")
def get_account(
    account_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    service = AccountService(db, user_id)
    account = service.get(account_id)
    data = serialize_account(account)
    data["transactions"] = [
        serialize_transaction(txn) for txn in service.recent_transactions(account.id)
    ]
    return envelope(data)


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    account = AccountService(db, user_id).update(account_id, payload)
    return envelope(serialize_account(account), "Account updated successfully")


@app.delete("/api/accounts/{account_id}")
def delete_account(
    account_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    AccountService(db, user_id).delete(account_id)
    return envelope(message="Account deleted successfully")


@app.put("/api/accounts/{account_id}/default")
def set_default_account(
    account_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    account = AccountService(db, user_id).set_default(account_id)
    return envelope(serialize_account(account), "Default account updated successfully")


@app.get("/api/accounts/{account_id}/stats")
def account_stats(
    account_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    stats = AccountService(db, user_id).stats(account_id)
    return envelope(
        {
            **stats,
            "current_balance": cents_to_amount(stats["current_balance_cents"]),
            "monthly_income": cents_to_amount(stats["monthly_income_cents"]),
            "monthly_expenses": cents_to_amount(stats["monthly_expenses_cents"]),
            "net_flow": cents_to_amount(stats["net_flow_cents"]),
        }
    )


@app.post("/api/accounts/{account_id}/reconcile")
def reconcile_account(
    account_id: int,
    apply: bool = False,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    result = AccountService(db, user_id).reconcile(account_id, apply=apply)
    return envelope(
        {
            "account_id": result.account_id,
            "stored_balance_cents": result.stored_cents,
            "computed_balance_cents": result.computed_cents,
            "drift_cents": result.drift_cents,
            "corrected": result.corrected,
        }
    )


@app.get("/api/transactions")
def list_transactions(
    page: int = 1,
    limit: int = 10,
    filters: TransactionFilters = Depends(filters_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    result = TransactionService(db, user_id).list(filters, page=page, limit=limit)
    return envelope(
        [serialize_transaction(txn) for txn in result.items],
        count=len(result.items),
        total=result.total,
        pagination={
            "page": result.page,
            "limit": result.limit,
            "pages": result.pages,
        },
    )


@app.post("/api/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    txn = TransactionService(db, user_id).create(payload)
    return envelope(serialize_transaction(txn), "Transaction created successfully")


@app.get("/api/transactions/stats")
def transaction_stats(
    filters: TransactionFilters = Depends(filters_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    stats = TransactionService(db, user_id).stats(filters)
    return envelope(
        {
            **stats,
            "income": cents_to_amount(stats["income_cents"]),
            "expense": cents_to_amount(stats["expense_cents"]),
            "investment": cents_to_amount(stats["investment_cents"]),
            "tax": cents_to_amount(stats["tax_cents"]),
            "net": cents_to_amount(stats["net_cents"]),
        }
    )


@app.get("/api/transactions/categories")
def transaction_categories(
    breakdown_type: str = "EXPENSE",
    filters: TransactionFilters = Depends(filters_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    txn_type = parse_enum(TransactionType, breakdown_type, "transaction type")
    rows = TransactionService(db, user_id).category_breakdown(txn_type, filters)
    data = [{**row, "total": cents_to_amount(row["total_cents"])} for row in rows]
    return envelope(data, count=len(data))


@app.post("/api/transactions/bulk-delete")
def bulk_delete_transactions(
    payload: BulkDeleteIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    deleted = TransactionService(db, user_id).bulk_delete(payload.transaction_ids)
    return envelope(
        {"deleted_count": deleted},
        f"{deleted} transactions deleted successfully",
    )


@app.post("/api/transactions/recurring/run")
def run_recurring(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    posted = RecurringEngine(db, user_id).post_due()
    return envelope({"posted": posted})


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    txn = TransactionService(db, user_id).get(transaction_id)
    return envelope(serialize_transaction(txn))


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    txn = TransactionService(db, user_id).update(transaction_id, payload)
    return envelope(serialize_transaction(txn), "Transaction updated successfully")


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    TransactionService(db, user_id).delete(transaction_id)
    return envelope(message="Transaction deleted successfully")


@app.post("/api/transactions/{transaction_id}/restore")
def restore_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    txn = TransactionService(db, user_id).restore(transaction_id)
    return envelope(serialize_transaction(txn), "Transaction restored successfully")


@app.get("/api/budgets")
def list_budgets(
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    rows = BudgetService(db, user_id).list_for_year(year or datetime.utcnow().year)
    return envelope([serialize_progress(row) for row in rows], count=len(rows))


@app.post("/api/budgets")
def upsert_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    budget, created = BudgetService(db, user_id).upsert(payload)
    message = "Budget created successfully" if created else "Budget updated successfully"
    return JSONResponse(
        status_code=201 if created else 200,
        content=envelope(serialize_budget(budget), message),
    )


@app.get("/api/budgets/current")
def current_budget(
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    if account_id is not None:
        AccountService(db, user_id).get(account_id)
    current = BudgetService(db, user_id).current(account_id=account_id)
    return envelope(
        {
            "budgets": [serialize_progress(row) for row in current["budgets"]],
            "current_expenses": cents_to_amount(current["current_expenses_cents"]),
            "current_expenses_cents": current["current_expenses_cents"],
        }
    )


@app.get("/api/budgets/alerts")
def budget_alerts(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    alerts = BudgetService(db, user_id).alerts()
    data = [
        {
            **alert,
            "budget_amount": cents_to_amount(alert["budget_amount_cents"]),
            "current_spending": cents_to_amount(alert["current_spending_cents"]),
        }
        for alert in alerts
    ]
    return envelope(data, count=len(data))


@app.get("/api/budgets/stats")
def budget_stats(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    stats = BudgetService(db, user_id).stats()
    overall = stats["overall"]
    return envelope(
        {
            "overall": {
                **overall,
                "total_budget": cents_to_amount(overall["total_budget_cents"]),
                "total_spending": cents_to_amount(overall["total_spending_cents"]),
                "remaining": cents_to_amount(overall["remaining_cents"]),
            },
            "by_category": [serialize_progress(row) for row in stats["by_category"]],
        }
    )


@app.put("/api/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    payload: BudgetUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    budget = BudgetService(db, user_id).update(budget_id, payload)
    return envelope(serialize_budget(budget), "Budget updated successfully")


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    BudgetService(db, user_id).delete(budget_id)
    return envelope(message="Budget deleted successfully")


@app.post("/api/ai/insights")
def ai_insights(
    payload: InsightRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    generator: InsightGenerator = Depends(get_insight_generator),
):
    result = InsightService(db, generator, user_id).generate_insights(
        payload.period, payload.account_id
    )
    summary = result["summary"]
    summary.update(
        {
            "total_income": cents_to_amount(summary["total_income_cents"]),
            "total_expenses": cents_to_amount(summary["total_expenses_cents"]),
            "total_investment": cents_to_amount(summary["total_investment_cents"]),
            "net_income": cents_to_amount(summary["net_income_cents"]),
        }
    )
    period = result["period"]
    result["period"] = {
        "start": period["start"].isoformat(),
        "end": period["end"].isoformat(),
    }
    return envelope(result)


@app.post("/api/ai/investment-suggestions")
def ai_investment_suggestions(
    payload: InvestmentRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    generator: InsightGenerator = Depends(get_insight_generator),
):
    result = InsightService(db, generator, user_id).investment_suggestions(
        payload.risk_tolerance, payload.investment_amount
    )
    result["investment_amount"] = float(result["investment_amount"])
    return envelope(result)


@app.get("/api/ai/tax-tips")
def ai_tax_tips(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    generator: InsightGenerator = Depends(get_insight_generator),
):
    result = InsightService(db, generator, user_id).tax_tips()
    result["total_deductible"] = cents_to_amount(result["total_deductible_cents"])
    result["total_investments"] = cents_to_amount(result["total_investments_cents"])
    return envelope(result)


@app.get("/api/ai/test")
def ai_test(generator: InsightGenerator = Depends(get_insight_generator)):
    result = generator.test_connection()
    if not result["success"]:
        return JSONResponse(
            status_code=503,
            content={"success": False, "message": result["message"], "data": result},
        )
    return envelope(result, str(result["message"]))
