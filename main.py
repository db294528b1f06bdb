import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from database import SessionLocal
from errors import DoesNotExist
from models import CategoryType, TransactionType
from periods import resolve_period
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdate,
    BudgetIn,
    BudgetOut,
    CategoryIn,
    CategoryOut,
    CompleteImportIn,
    ConfirmIn,
    PaymentRequestOut,
    RecurringTransactionIn,
    RecurringTransactionOut,
    SplitwiseTransactionOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    RecurringTransactionService,
    ReportService,
    SplitwiseService,
    TransactionFilters,
    TransactionService,
)
from splitwise import SplitwiseClient, SplitwiseUnavailable


app = FastAPI(title="Personal Finance")

# No Splitwise client ships with the application; deployments assign one here.
app.state.splitwise = None


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_splitwise(request: Request) -> Optional[SplitwiseClient]:
    return request.app.state.splitwise


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.splitwise = app.state.splitwise
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(DoesNotExist)
def does_not_exist_handler(_request: Request, exc: DoesNotExist):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValueError)
def validation_error_handler(_request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(SplitwiseUnavailable)
def splitwise_unavailable_handler(_request: Request, exc: SplitwiseUnavailable):
    logging.warning(f"splitwise_unavailable: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def period_from_request(request: Request):
    return resolve_period(
        request.query_params.get("period"),
        request.query_params.get("start"),
        request.query_params.get("end"),
        today=local_today(),
    )


def transaction_out(txn) -> dict:
    return TransactionOut.model_validate(txn).model_dump()


def series_out(series: list[tuple[date, int]]) -> list[dict]:
    return [{"date": day, "balance_cents": balance} for day, balance in series]


# Accounts


@app.get("/accounts", response_model=list[AccountOut])
def list_accounts(include_obsolete: bool = False, db: Session = Depends(get_db)):
    return AccountService(db).list_all(include_obsolete=include_obsolete)


@app.get("/accounts/{account_id}", response_model=AccountOut)
def get_account(account_id: int, db: Session = Depends(get_db)):
    return AccountService(db).get(account_id)


@app.post("/accounts", response_model=AccountOut, status_code=201)
def create_account(data: AccountIn, db: Session = Depends(get_db)):
    return AccountService(db).create(data)


@app.put("/accounts/{account_id}", response_model=AccountOut)
def update_account(account_id: int, data: AccountUpdate, db: Session = Depends(get_db)):
    return AccountService(db).update(account_id, data)


@app.put("/accounts/{account_id}/obsolete", response_model=AccountOut)
def set_account_obsolete(
    account_id: int, obsolete: bool = True, db: Session = Depends(get_db)
):
    return AccountService(db).set_obsolete(account_id, obsolete)


# Categories


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(
    include_obsolete: bool = False,
    type: Optional[CategoryType] = None,
    group: bool = False,
    db: Session = Depends(get_db),
):
    return CategoryService(db).list_all(
        include_obsolete=include_obsolete, type=type, group=group
    )


@app.get("/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)):
    return CategoryService(db).get(category_id)


@app.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    return CategoryService(db).create(data)


@app.put("/categories/{category_id}", response_model=CategoryOut)
def update_category(category_id: int, data: CategoryIn, db: Session = Depends(get_db)):
    return CategoryService(db).update(category_id, data)


@app.put("/categories/{category_id}/obsolete", response_model=CategoryOut)
def set_category_obsolete(
    category_id: int, obsolete: bool = True, db: Session = Depends(get_db)
):
    return CategoryService(db).set_obsolete(category_id, obsolete)


# Transactions


@app.get("/transactions")
def list_transactions(
    type: Optional[TransactionType] = None,
    account_id: Optional[int] = None,
    category_id: Optional[int] = None,
    q: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    filters = TransactionFilters(
        type=type,
        account_id=account_id,
        category_id=category_id,
        query=q,
        start=start,
        end=end,
    )
    items = TransactionService(db, splitwise).list(
        filters, limit=limit + 1, offset=(page - 1) * limit
    )
    has_more = len(items) > limit
    return {
        "items": [transaction_out(txn) for txn in items[:limit]],
        "page": page,
        "has_more": has_more,
    }


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    return TransactionService(db).get(transaction_id)


@app.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    return TransactionService(db, splitwise).create(data)


@app.put("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    return TransactionService(db, splitwise).update(transaction_id, data)


@app.put("/transactions/{transaction_id}/category", response_model=TransactionOut)
def update_transaction_category(
    transaction_id: int, category_id: int, db: Session = Depends(get_db)
):
    return TransactionService(db).update_category(transaction_id, category_id)


@app.post("/transactions/{transaction_id}/confirm", response_model=TransactionOut)
def confirm_transaction(
    transaction_id: int,
    data: ConfirmIn,
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    return TransactionService(db, splitwise).confirm(
        transaction_id, data.date, data.amount_cents
    )


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    TransactionService(db, splitwise).delete(transaction_id)


@app.post(
    "/transactions/{transaction_id}/payment-requests/{request_id}/fulfill",
    response_model=PaymentRequestOut,
)
def fulfill_payment_request(
    transaction_id: int, request_id: int, db: Session = Depends(get_db)
):
    return TransactionService(db).fulfill_payment_request(transaction_id, request_id)


@app.post(
    "/transactions/{transaction_id}/payment-requests/{request_id}/revert",
    response_model=PaymentRequestOut,
)
def revert_payment_request(
    transaction_id: int, request_id: int, db: Session = Depends(get_db)
):
    return TransactionService(db).revert_payment_request(transaction_id, request_id)


@app.post("/process")
def process_transactions(
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    return TransactionService(db, splitwise).process_all()


# Recurring transactions


@app.get("/recurring", response_model=list[RecurringTransactionOut])
def list_recurring(
    type: Optional[TransactionType] = None,
    account_id: Optional[int] = None,
    category_id: Optional[int] = None,
    include_finished: bool = True,
    db: Session = Depends(get_db),
):
    return RecurringTransactionService(db).list(
        type=type,
        account_id=account_id,
        category_id=category_id,
        include_finished=include_finished,
    )


@app.get("/recurring/{recurring_id}", response_model=RecurringTransactionOut)
def get_recurring(recurring_id: int, db: Session = Depends(get_db)):
    return RecurringTransactionService(db).get(recurring_id)


@app.get("/recurring/{recurring_id}/instances")
def recurring_instances(recurring_id: int, db: Session = Depends(get_db)):
    recurring = RecurringTransactionService(db).get(recurring_id)
    return [transaction_out(txn) for txn in recurring.instances]


@app.post("/recurring", response_model=RecurringTransactionOut, status_code=201)
def create_recurring(
    data: RecurringTransactionIn,
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    return RecurringTransactionService(db, splitwise).create(data)


@app.put("/recurring/{recurring_id}", response_model=RecurringTransactionOut)
def update_recurring(
    recurring_id: int,
    data: RecurringTransactionIn,
    update_instances: bool = False,
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    return RecurringTransactionService(db, splitwise).update(
        recurring_id, data, update_instances=update_instances
    )


@app.delete("/recurring/{recurring_id}", status_code=204)
def delete_recurring(
    recurring_id: int,
    delete_instances: bool = False,
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    RecurringTransactionService(db, splitwise).delete(
        recurring_id, delete_instances=delete_instances
    )


# Budgets


@app.get("/budgets", response_model=list[BudgetOut])
def list_budgets(
    category_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
):
    service = BudgetService(db)
    if category_id is None and start is None and end is None:
        return service.list_all()
    return service.list_by_filter(category_id=category_id, start=start, end=end)


@app.get("/budgets/{budget_id}", response_model=BudgetOut)
def get_budget(budget_id: int, db: Session = Depends(get_db)):
    return BudgetService(db).get(budget_id)


@app.post("/budgets", response_model=BudgetOut, status_code=201)
def create_budget(data: BudgetIn, db: Session = Depends(get_db)):
    return BudgetService(db).create(data)


@app.put("/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(budget_id: int, data: BudgetIn, db: Session = Depends(get_db)):
    return BudgetService(db).update(budget_id, data)


@app.delete("/budgets/{budget_id}", status_code=204)
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    BudgetService(db).delete(budget_id)


# Splitwise


@app.get("/splitwise/transactions", response_model=list[SplitwiseTransactionOut])
def list_splitwise_transactions(
    only_importable: bool = False, db: Session = Depends(get_db)
):
    return SplitwiseService(db).list(only_importable=only_importable)


@app.get("/splitwise/users")
def list_splitwise_users(
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    return [
        {"id": user.id, "name": user.name}
        for user in SplitwiseService(db, splitwise).users()
    ]


@app.get("/splitwise/transactions/{splitwise_id}/suggested-category")
def suggested_category(splitwise_id: int, db: Session = Depends(get_db)):
    category = SplitwiseService(db).suggest_category(splitwise_id)
    if category is None:
        return {"category": None}
    return {"category": CategoryOut.model_validate(category).model_dump()}


@app.post(
    "/splitwise/transactions/{splitwise_id}/import", response_model=TransactionOut
)
def complete_splitwise_import(
    splitwise_id: int,
    data: CompleteImportIn,
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    return SplitwiseService(db, splitwise).complete_transaction_import(
        splitwise_id, data.category_id, data.account_id
    )


@app.post("/splitwise/import")
def import_from_splitwise(
    db: Session = Depends(get_db),
    splitwise: Optional[SplitwiseClient] = Depends(get_splitwise),
):
    result = SplitwiseService(db, splitwise).import_from_splitwise()
    return {"result": result.value}


@app.get("/splitwise/importer")
def splitwise_importer_information(db: Session = Depends(get_db)):
    return SplitwiseService(db).importer_information()


# Reports


@app.get("/reports/current")
def current_date_report(db: Session = Depends(get_db)):
    report = ReportService(db).current_date()
    return {
        "accounts": [AccountOut.model_validate(a).model_dump() for a in report["accounts"]],
        "net_worth_cents": report["net_worth_cents"],
        "latest_transactions": [
            transaction_out(txn) for txn in report["latest_transactions"]
        ],
        "upcoming_transactions": [
            transaction_out(txn) for txn in report["upcoming_transactions"]
        ],
        "unconfirmed_transactions": [
            transaction_out(txn) for txn in report["unconfirmed_transactions"]
        ],
        "budgets": [BudgetOut.model_validate(b).model_dump() for b in report["budgets"]],
        "historical_balance": series_out(report["historical_balance"]),
    }


@app.get("/reports/period")
def period_report(request: Request, db: Session = Depends(get_db)):
    report = ReportService(db).period_report(period_from_request(request))
    report["net_worth"] = series_out(report["net_worth"])
    return report


@app.get("/reports/accounts/{account_id}")
def account_report(account_id: int, request: Request, db: Session = Depends(get_db)):
    report = ReportService(db).account_report(account_id, period_from_request(request))
    return {
        "account": AccountOut.model_validate(report["account"]).model_dump(),
        "daily_balances": series_out(report["daily_balances"]),
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
