"""FastAPI frontend for the KidLedger company simulator.

Children sign in by posting their identity to ``/session``; every other
endpoint reads it back from the signed session cookie and passes it to the
:class:`~kidledger.service.KidLedger` service explicitly.  Deploy with
``uvicorn kidledger.webapp:app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type, Union

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from starlette.middleware.sessions import SessionMiddleware

from ..api import ApiExporter
from ..exceptions import (
    AccountNotFoundError,
    DuplicateAccountError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidInputError,
    KidLedgerError,
    ListingNotFoundError,
    OutOfStockError,
    PersistenceFailureError,
    ProgressUnavailableError,
)
from ..exchange import ExchangeOutcome
from ..models import ChildSession
from ..service import KidLedger
from .config import (
    LAUNCH_COST,
    REWARD_ATTEMPTS,
    SESSION_CHILD_KEY,
    SESSION_NAME_KEY,
    SESSION_SECRET,
    STARTING_CAPITAL,
)
from .persistence import SqlAchievementTracker, SqlStore, create_db_and_tables

AmountField = Union[str, int, float]

ERROR_STATUS: Tuple[Tuple[Type[KidLedgerError], int], ...] = (
    (InvalidAmountError, 400),
    (InvalidInputError, 400),
    (AccountNotFoundError, 404),
    (ListingNotFoundError, 404),
    (DuplicateAccountError, 409),
    (OutOfStockError, 409),
    (InsufficientFundsError, 402),
    (PersistenceFailureError, 503),
    (ProgressUnavailableError, 501),
)

OUTCOME_STATUS: Dict[ExchangeOutcome, int] = {
    ExchangeOutcome.SUCCESS: 200,
    ExchangeOutcome.INVALID: 400,
    ExchangeOutcome.INSUFFICIENT_FUNDS: 402,
    ExchangeOutcome.OUT_OF_STOCK: 409,
    ExchangeOutcome.FAILURE: 503,
}


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class SessionStart(BaseModel):
    child_id: str
    child_name: str = ""


class CompanyCreate(BaseModel):
    company_name: str
    product_name: Optional[str] = None
    specialty: Optional[str] = None


class CompanyUpdate(BaseModel):
    company_name: Optional[str] = None
    product_name: Optional[str] = None
    specialty: Optional[str] = None


class TransactionCreate(BaseModel):
    transaction_type: str
    amount: AmountField
    description: Optional[str] = None


class ListingCreate(BaseModel):
    item_name: str
    price: AmountField
    quantity: Union[int, str] = 1
    description: Optional[str] = None
    image_url: Optional[str] = None


class ListingUpdate(BaseModel):
    item_name: Optional[str] = None
    price: Optional[AmountField] = None
    quantity: Optional[Union[int, str]] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


class RepriceRequest(BaseModel):
    prices: Dict[str, AmountField]


class LaunchRequest(BaseModel):
    price: AmountField
    quantity: Union[int, str] = 1
    description: Optional[str] = None


class PurchaseRequest(BaseModel):
    listing_id: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def error_status(exc: KidLedgerError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 400


def current_child(request: Request) -> ChildSession:
    child_id = request.session.get(SESSION_CHILD_KEY)
    if not child_id:
        raise HTTPException(status_code=401, detail="Please sign in first.")
    return ChildSession(child_id=child_id, child_name=request.session.get(SESSION_NAME_KEY) or "")


def optional_child(request: Request) -> Optional[ChildSession]:
    child_id = request.session.get(SESSION_CHILD_KEY)
    if not child_id:
        return None
    return ChildSession(child_id=child_id, child_name=request.session.get(SESSION_NAME_KEY) or "")


def default_ledger() -> KidLedger:
    store = SqlStore()
    return KidLedger(
        store,
        reward_hook=SqlAchievementTracker(store.engine),
        starting_capital=STARTING_CAPITAL,
        launch_cost=LAUNCH_COST,
        reward_attempts=REWARD_ATTEMPTS,
    )


# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
def create_app(ledger: KidLedger | None = None) -> FastAPI:
    service = ledger or default_ledger()
    exporter = ApiExporter()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if isinstance(service.store, SqlStore):
            create_db_and_tables(service.store.engine)
        yield

    app = FastAPI(title="Kid Ledger", lifespan=lifespan)
    app.add_middleware(
        SessionMiddleware,
        secret_key=SESSION_SECRET,
        same_site="lax",
        max_age=None,
    )
    app.state.ledger = service

    @app.exception_handler(KidLedgerError)
    async def kidledger_error(_: Request, exc: KidLedgerError) -> JSONResponse:
        payload: Dict[str, Any] = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, InsufficientFundsError):
            payload["shortfall"] = f"{exc.shortfall:.2f}"
        return JSONResponse(payload, status_code=error_status(exc))

    @app.exception_handler(PermissionError)
    async def permission_error(_: Request, exc: PermissionError) -> JSONResponse:
        return JSONResponse({"detail": str(exc), "error": "PermissionError"}, status_code=403)

    # -- session --------------------------------------------------------
    @app.post("/session")
    def start_session(body: SessionStart, request: Request) -> Dict[str, str]:
        child_id = body.child_id.strip()
        if not child_id:
            raise InvalidInputError("child_id is required.")
        request.session[SESSION_CHILD_KEY] = child_id
        request.session[SESSION_NAME_KEY] = body.child_name.strip()
        return {"child_id": child_id, "child_name": body.child_name.strip()}

    @app.delete("/session")
    def end_session(request: Request) -> Dict[str, bool]:
        request.session.clear()
        return {"signed_out": True}

    # -- companies ------------------------------------------------------
    @app.post("/companies", status_code=201)
    def create_company(body: CompanyCreate, child: ChildSession = Depends(current_child)) -> Dict[str, Any]:
        account = service.create_company(
            child,
            body.company_name,
            product_name=body.product_name,
            specialty=body.specialty,
        )
        return exporter.account_snapshot(account)

    @app.get("/companies/me")
    def my_company(child: ChildSession = Depends(current_child)) -> Dict[str, Any]:
        return exporter.account_snapshot(service.company_for(child.child_id))

    @app.patch("/companies/me")
    def update_company(body: CompanyUpdate, child: ChildSession = Depends(current_child)) -> Dict[str, Any]:
        account = service.update_company(
            child,
            company_name=body.company_name,
            product_name=body.product_name,
            specialty=body.specialty,
        )
        return exporter.account_snapshot(account)

    # -- ledger ---------------------------------------------------------
    @app.post("/transactions", status_code=201)
    def add_transaction(body: TransactionCreate, child: ChildSession = Depends(current_child)) -> Dict[str, Any]:
        account, transaction = service.record_transaction(
            child,
            body.transaction_type,
            body.amount,
            body.description,
        )
        return {
            "company": exporter.account_snapshot(account),
            "transaction": exporter.transaction(transaction),
        }

    @app.get("/transactions")
    def list_transactions(limit: int = 10, child: ChildSession = Depends(current_child)) -> List[Dict[str, Any]]:
        if limit < 0:
            raise InvalidInputError("limit must not be negative.")
        return [exporter.transaction(entry) for entry in service.history(child.child_id, limit)]

    @app.get("/statement", response_class=PlainTextResponse)
    def statement(child: ChildSession = Depends(current_child)) -> str:
        return service.statement(child.child_id)

    @app.get("/progress")
    def progress(child: ChildSession = Depends(current_child)) -> Dict[str, Any]:
        return service.progress(child.child_id)

    @app.get("/leaderboard", dependencies=[Depends(current_child)])
    def leaderboard(kind: str = "revenue", limit: int = 10) -> List[Dict[str, Any]]:
        return [exporter.leaderboard_entry(entry) for entry in service.leaderboard(kind, limit)]

    # -- marketplace ----------------------------------------------------
    @app.get("/marketplace")
    def marketplace(child: Optional[ChildSession] = Depends(optional_child)) -> List[Dict[str, Any]]:
        return [exporter.listing(listing) for listing in service.marketplace(child)]

    @app.get("/listings/mine")
    def my_listings(child: ChildSession = Depends(current_child)) -> List[Dict[str, Any]]:
        return [exporter.listing(listing) for listing in service.my_items(child)]

    @app.post("/listings", status_code=201)
    def create_listing(body: ListingCreate, child: ChildSession = Depends(current_child)) -> Dict[str, Any]:
        listing = service.list_item(
            child,
            body.item_name,
            price=body.price,
            quantity=body.quantity,
            description=body.description,
            image_url=body.image_url,
        )
        return exporter.listing(listing)

    @app.post("/listings/reprice")
    def reprice_listings(body: RepriceRequest, child: ChildSession = Depends(current_child)) -> List[Dict[str, Any]]:
        return [exporter.listing(listing) for listing in service.reprice_items(child, body.prices)]

    @app.patch("/listings/{listing_id}")
    def update_listing(
        listing_id: str,
        body: ListingUpdate,
        child: ChildSession = Depends(current_child),
    ) -> Dict[str, Any]:
        changes = body.model_dump(exclude_unset=True)
        if "item_name" in changes:
            changes["name"] = changes.pop("item_name")
        return exporter.listing(service.edit_item(child, listing_id, **changes))

    @app.delete("/listings/{listing_id}")
    def delete_listing(listing_id: str, child: ChildSession = Depends(current_child)) -> Dict[str, Any]:
        return exporter.listing(service.remove_item(child, listing_id))

    @app.post("/launch", status_code=201)
    def launch_product(body: LaunchRequest, child: ChildSession = Depends(current_child)) -> Dict[str, Any]:
        listing, marketing = service.launch_product(
            child,
            price=body.price,
            quantity=body.quantity,
            description=body.description,
        )
        return {
            "item": exporter.listing(listing),
            "marketing": exporter.transaction(marketing) if marketing else None,
        }

    @app.post("/purchase")
    def purchase(body: PurchaseRequest, child: ChildSession = Depends(current_child)) -> JSONResponse:
        result = service.purchase(child, body.listing_id)
        return JSONResponse(exporter.exchange(result), status_code=OUTCOME_STATUS[result.outcome])

    return app


app = create_app()

__all__ = ["OUTCOME_STATUS", "app", "create_app", "current_child", "error_status"]
