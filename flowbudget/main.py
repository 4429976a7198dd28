import logging
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from flowbudget import config
from flowbudget.db import init_db
from flowbudget.errors import (
    AccountOwnershipError,
    InvalidInput,
    InvalidRecord,
    InvalidSettlement,
    LedgerUnavailable,
    NotFound,
    OverdrawNotAllowed,
    PartialSettlementInconsistency,
)
from flowbudget.routes.household import router as household_router
from flowbudget.routes.settlement import router as settlement_router
from flowbudget.routes.transaction import router as transaction_router

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="FlowBudget")

# include routers
app.include_router(household_router)
app.include_router(transaction_router)
app.include_router(settlement_router)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(LedgerUnavailable)
def ledger_unavailable(request: Request, exc: LedgerUnavailable):
    return JSONResponse(status_code=503, content={"detail": "Ledger temporarily unavailable, please try again"})


@app.exception_handler(InvalidRecord)
@app.exception_handler(InvalidSettlement)
@app.exception_handler(InvalidInput)
def bad_request(request: Request, exc: Exception):
    return _error(400, exc)


@app.exception_handler(NotFound)
def not_found(request: Request, exc: Exception):
    return _error(404, exc)


@app.exception_handler(AccountOwnershipError)
def forbidden(request: Request, exc: AccountOwnershipError):
    return _error(403, exc)


@app.exception_handler(OverdrawNotAllowed)
def conflict(request: Request, exc: OverdrawNotAllowed):
    return _error(409, exc)


@app.exception_handler(PartialSettlementInconsistency)
def partial_settlement(request: Request, exc: PartialSettlementInconsistency):
    return JSONResponse(status_code=500, content={"detail": str(exc), "settlement_id": exc.settlement_id})


@app.on_event("startup")
def on_startup():
    init_db()
