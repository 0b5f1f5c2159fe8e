import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, dispose_engine
from exceptions import (
    CategoryKindMismatch,
    DuplicateName,
    EntityInUse,
    InvalidTransferTarget,
    LedgerError,
    MissingReference,
    NotFound,
    ReferenceNotFound,
    StoreFailure,
    UnexpectedReference,
)
from models import (
    Account,
    Category,
    CategoryKind,
    CreditCard,
    Transaction,
    TransactionKind,
)
from periods import Period, resolve_period
from schemas import (
    AccountIn,
    AccountUpdate,
    CategoryIn,
    CategoryUpdate,
    CreditCardIn,
    CreditCardUpdate,
    TransactionIn,
    TransactionPatch,
)
from services import (
    AccountService,
    CategoryService,
    CreditCardService,
    SummaryService,
    TransactionFilters,
    TransactionService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")

ERROR_STATUS: dict[type[LedgerError], int] = {
    NotFound: 404,
    ReferenceNotFound: 400,
    CategoryKindMismatch: 400,
    InvalidTransferTarget: 400,
    UnexpectedReference: 400,
    MissingReference: 400,
    EntityInUse: 409,
    DuplicateName: 409,
}


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = ERROR_STATUS.get(type(exc), 400)
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@app.exception_handler(StoreFailure)
async def store_failure_handler(request: Request, exc: StoreFailure) -> JSONResponse:
    logger.error(f"store_failure: path={request.url.path} detail={exc}")
    return JSONResponse(
        status_code=503,
        content={
            "error": "StoreFailure",
            "detail": "Storage unavailable, nothing was changed",
        },
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(x_user_id: int = Header(..., ge=1)) -> int:
    return x_user_id


@app.on_event("shutdown")
def shutdown_event():
    dispose_engine()


def money(value: Decimal) -> str:
    return f"{value:.2f}"


def period_from_request(request: Request) -> Optional[Period]:
    try:
        return resolve_period(
            request.query_params.get("period"),
            request.query_params.get("start"),
            request.query_params.get("end"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def page_from_request(request: Request) -> tuple[int, int]:
    try:
        limit = int(request.query_params.get("limit", settings.page_size))
        offset = int(request.query_params.get("offset", "0"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid pagination") from exc
    return min(max(limit, 1), settings.max_page_size), max(offset, 0)


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    filters = TransactionFilters(period=period_from_request(request))
    try:
        if params.get("kind"):
            filters.kind = TransactionKind(params["kind"])
        if params.get("account_id"):
            filters.account_id = int(params["account_id"])
        if params.get("credit_card_id"):
            filters.credit_card_id = int(params["credit_card_id"])
        if params.get("category_id"):
            filters.category_id = int(params["category_id"])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    settled = params.get("settled")
    if settled is not None:
        if settled.lower() not in ("true", "false"):
            raise HTTPException(status_code=400, detail="settled must be true or false")
        filters.settled = settled.lower() == "true"
    return filters


def account_to_dict(account: Account) -> dict:
    return {
        "id": account.id,
        "name": account.name,
        "current_value": money(account.current_value),
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat(),
    }


def credit_card_to_dict(card: CreditCard) -> dict:
    return {
        "id": card.id,
        "name": card.name,
        "current_value": money(card.current_value),
        "limit_value": money(card.limit_value),
        "due_date": card.due_date.isoformat(),
        "closing_date": card.closing_date.isoformat(),
        "paid": card.paid,
    }


def category_to_dict(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "kind": category.kind.value,
        "display_at_home": category.display_at_home,
    }


def transaction_to_dict(txn: Transaction) -> dict:
    source = txn.account or txn.credit_card
    target = txn.transfer_account or txn.transfer_credit_card
    return {
        "id": txn.id,
        "kind": txn.kind.value,
        "amount": money(txn.amount),
        "occurred_at": txn.occurred_at.isoformat(),
        "settled": txn.settled,
        "note": txn.note,
        "account_id": txn.account_id,
        "credit_card_id": txn.credit_card_id,
        "category_id": txn.category_id,
        "transfer_account_id": txn.transfer_account_id,
        "transfer_credit_card_id": txn.transfer_credit_card_id,
        "account_name": source.name if source else None,
        "category_name": txn.category.name if txn.category else None,
        "transfer_account_name": target.name if target else None,
    }


def summary_to_dict(summary: dict) -> dict:
    return {
        key: money(value) if isinstance(value, Decimal) else value
        for key, value in summary.items()
    }


# Transactions


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    filters = filters_from_request(request)
    limit, offset = page_from_request(request)
    items = TransactionService(db, user_id).list(filters, limit=limit, offset=offset)
    return {
        "items": [transaction_to_dict(txn) for txn in items],
        "limit": limit,
        "offset": offset,
    }


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    txn = TransactionService(db, user_id).create(data)
    return transaction_to_dict(txn)


@app.get("/api/transactions/summary")
def transaction_summary(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = period_from_request(request)
    return summary_to_dict(SummaryService(db, user_id).transaction_summary(period))


@app.get("/api/transactions/summary/monthly")
def monthly_summary(
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    today = date.today()
    try:
        summary = SummaryService(db, user_id).monthly_summary(
            year or today.year, month or today.month
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return summary_to_dict(summary)


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return transaction_to_dict(TransactionService(db, user_id).get(transaction_id))


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    patch: TransactionPatch,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    txn = TransactionService(db, user_id).update(transaction_id, patch)
    return transaction_to_dict(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    if not TransactionService(db, user_id).delete(transaction_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return Response(status_code=204)


# Accounts


@app.get("/api/accounts")
def list_accounts(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    limit, offset = page_from_request(request)
    accounts = AccountService(db, user_id).list(limit=limit, offset=offset)
    return [account_to_dict(a) for a in accounts]


@app.post("/api/accounts", status_code=201)
def create_account(
    data: AccountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return account_to_dict(AccountService(db, user_id).create(data))


@app.get("/api/accounts/total-balance")
def total_balance(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return {"total_balance": money(SummaryService(db, user_id).total_balance())}


@app.get("/api/accounts/{account_id}")
def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return account_to_dict(AccountService(db, user_id).get(account_id))


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    data: AccountUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return account_to_dict(AccountService(db, user_id).update(account_id, data))


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    if not AccountService(db, user_id).delete(account_id):
        raise HTTPException(status_code=404, detail="Account not found")
    return Response(status_code=204)


# Credit cards


@app.get("/api/credit-cards")
def list_credit_cards(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    limit, offset = page_from_request(request)
    cards = CreditCardService(db, user_id).list(limit=limit, offset=offset)
    return [credit_card_to_dict(c) for c in cards]


@app.post("/api/credit-cards", status_code=201)
def create_credit_card(
    data: CreditCardIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return credit_card_to_dict(CreditCardService(db, user_id).create(data))


@app.get("/api/credit-cards/total-debt")
def total_debt(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return {"total_debt": money(SummaryService(db, user_id).total_debt())}


@app.get("/api/credit-cards/total-available")
def total_available(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    available = SummaryService(db, user_id).total_available_credit()
    return {"total_available": money(available)}


@app.get("/api/credit-cards/due-soon")
def credit_cards_due_soon(
    days: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    days_ahead = settings.due_soon_days if days is None else max(days, 0)
    cards = CreditCardService(db, user_id).due_soon(days_ahead)
    return [credit_card_to_dict(c) for c in cards]


@app.get("/api/credit-cards/overdue")
def credit_cards_overdue(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return [credit_card_to_dict(c) for c in CreditCardService(db, user_id).overdue()]


@app.get("/api/credit-cards/utilization-summary")
def utilization_summary(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return summary_to_dict(SummaryService(db, user_id).utilization())


@app.get("/api/credit-cards/{card_id}")
def get_credit_card(
    card_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return credit_card_to_dict(CreditCardService(db, user_id).get(card_id))


@app.put("/api/credit-cards/{card_id}")
def update_credit_card(
    card_id: int,
    data: CreditCardUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return credit_card_to_dict(CreditCardService(db, user_id).update(card_id, data))


@app.delete("/api/credit-cards/{card_id}", status_code=204)
def delete_credit_card(
    card_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    if not CreditCardService(db, user_id).delete(card_id):
        raise HTTPException(status_code=404, detail="Credit card not found")
    return Response(status_code=204)


# Categories


def _category_kind(request: Request) -> Optional[CategoryKind]:
    value = request.query_params.get("kind")
    if not value:
        return None
    try:
        return CategoryKind(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/categories")
def list_categories(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    categories = CategoryService(db, user_id).list(_category_kind(request))
    return [category_to_dict(c) for c in categories]


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return category_to_dict(CategoryService(db, user_id).create(data))


@app.get("/api/categories/summary")
def category_overview(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return CategoryService(db, user_id).overview()


@app.get("/api/categories/with-counts")
def categories_with_counts(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    rows = CategoryService(db, user_id).with_counts(_category_kind(request))
    return [
        {**category_to_dict(category), "transaction_count": count}
        for category, count in rows
    ]


@app.get("/api/categories/search")
def search_categories(
    request: Request,
    q: str = "",
    limit: int = 20,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    try:
        categories = CategoryService(db, user_id).search(
            q, _category_kind(request), limit=limit
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [category_to_dict(c) for c in categories]


@app.get("/api/categories/{category_id}")
def get_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return category_to_dict(CategoryService(db, user_id).get(category_id))


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return category_to_dict(CategoryService(db, user_id).update(category_id, data))


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    if not CategoryService(db, user_id).delete(category_id):
        raise HTTPException(status_code=404, detail="Category not found")
    return Response(status_code=204)
