"""FastAPI application exposing the fund_ledger backend."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, Optional
from urllib.parse import quote

from fastapi import Body, Depends, FastAPI, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import load_config
from .database import SQLiteRepository
from .errors import (
    BundleFormatError,
    LedgerValidationError,
    SyncError,
    SyncNotConfiguredError,
    TransactionNotFoundError,
)
from .importers import export_filename
from .models import LedgerBundle
from .schemas import CloudSyncConfigRequest, DriveSyncRequest, FeeUpdate, PriceUpdate, TransactionCreate
from .services import LedgerService

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    config = load_config()
    repository = SQLiteRepository(config.database_file)
    repository.initialise_schema()
    ledger_service = LedgerService(config, repository)
    ledger_service.rehydrate()

    app.state.config = config
    app.state.repository = repository
    app.state.ledger = ledger_service

    yield

    repository.close()


app = FastAPI(lifespan=lifespan, title="fund_ledger backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping ---------------------------------------------------------------

def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(LedgerValidationError)
async def _validation_error(_: Request, exc: LedgerValidationError) -> JSONResponse:
    return _error(422, exc)


@app.exception_handler(BundleFormatError)
async def _format_error(_: Request, exc: BundleFormatError) -> JSONResponse:
    return _error(400, exc)


@app.exception_handler(TransactionNotFoundError)
async def _not_found(_: Request, exc: TransactionNotFoundError) -> JSONResponse:
    return _error(404, exc)


@app.exception_handler(SyncError)
async def _sync_error(_: Request, exc: SyncError) -> JSONResponse:
    if isinstance(exc, SyncNotConfiguredError):
        return _error(409, exc)
    logger.warning("Sync failed: %s", exc)
    return _error(502, exc)


# Dependency injection ------------------------------------------------------

def get_ledger_service() -> LedgerService:
    service: LedgerService = app.state.ledger
    return service


LedgerDep = Annotated[LedgerService, Depends(get_ledger_service)]


def _snapshot(bundle: LedgerBundle) -> dict[str, object]:
    return bundle.to_dict()


def _attachment(content: bytes | str, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.get("/transactions")
def list_transactions(
    ledger: LedgerDep,
    fund_code: Annotated[Optional[str], Query(max_length=32)] = None,
) -> dict[str, object]:
    transactions = [tx.to_dict() for tx in ledger.list_transactions(fund_code)]
    return {"transactions": transactions, "count": len(transactions)}


@app.post("/transactions", status_code=201)
def add_transaction(body: TransactionCreate, ledger: LedgerDep) -> dict[str, object]:
    transaction = ledger.add_transaction(body.to_input())
    return transaction.to_dict()


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: str, ledger: LedgerDep) -> Response:
    ledger.delete_transaction(transaction_id)
    return Response(status_code=204)


@app.patch("/transactions/{transaction_id}/fee")
def update_fee(transaction_id: str, body: FeeUpdate, ledger: LedgerDep) -> dict[str, object]:
    return ledger.update_fee(transaction_id, body.fee).to_dict()


@app.get("/holdings")
def list_holdings(ledger: LedgerDep) -> dict[str, object]:
    holdings = [holding.to_dict() for holding in ledger.holdings()]
    return {"holdings": holdings, "count": len(holdings)}


@app.get("/summary")
def account_summary(ledger: LedgerDep) -> dict[str, float]:
    return ledger.summary().to_dict()


@app.put("/prices/{fund_code}")
def set_fund_price(fund_code: str, body: PriceUpdate, ledger: LedgerDep) -> dict[str, object]:
    ledger.set_price_override(fund_code, body.price)
    return {"fundCode": fund_code, "price": body.price}


# Import / export -------------------------------------------------------------


@app.get("/export")
def export_json(ledger: LedgerDep) -> Response:
    return _attachment(ledger.export_json(), export_filename("json"), "application/json")


@app.get("/export/workbook")
def export_workbook(ledger: LedgerDep) -> Response:
    return _attachment(ledger.export_workbook(), export_filename("xlsx"), XLSX_MEDIA_TYPE)


@app.post("/import")
def import_json(payload: Annotated[Any, Body()], ledger: LedgerDep) -> dict[str, object]:
    """Replace the ledger with an exported JSON bundle."""

    return _snapshot(ledger.import_payload(payload))


@app.post("/import/workbook")
async def import_workbook(request: Request, ledger: LedgerDep) -> dict[str, object]:
    """Replace the ledger with the transactions of an uploaded ``.xlsx`` body."""

    content = await request.body()
    if not content:
        raise BundleFormatError("Request body is empty")
    bundle = await run_in_threadpool(ledger.import_workbook, content)
    return _snapshot(bundle)


@app.delete("/data", status_code=204)
def clear_data(ledger: LedgerDep) -> Response:
    ledger.clear()
    return Response(status_code=204)


# Cloud sync -------------------------------------------------------------------


@app.get("/sync/cloud/config")
def cloud_sync_status(ledger: LedgerDep) -> dict[str, object]:
    return ledger.cloud_sync_status()


@app.put("/sync/cloud/config")
def configure_cloud_sync(body: CloudSyncConfigRequest, ledger: LedgerDep) -> dict[str, object]:
    ledger.configure_cloud_sync(body.api_key)
    return ledger.cloud_sync_status()


@app.delete("/sync/cloud/config", status_code=204)
def clear_cloud_sync(ledger: LedgerDep) -> Response:
    ledger.clear_cloud_sync()
    return Response(status_code=204)


@app.get("/sync/cloud/info")
def cloud_info(ledger: LedgerDep) -> dict[str, object]:
    info = ledger.cloud_info()
    if info is None:
        return {"exists": False}
    return {
        "exists": True,
        "documentId": info.document_id,
        "lastUpdated": info.last_updated,
        "size": info.size,
    }


@app.post("/sync/cloud/upload")
def upload_to_cloud(ledger: LedgerDep) -> dict[str, object]:
    document_id = ledger.upload_to_cloud()
    return {"documentId": document_id}


@app.post("/sync/cloud/download")
def download_from_cloud(ledger: LedgerDep) -> dict[str, object]:
    bundle = ledger.download_from_cloud()
    if bundle is None:
        return {"found": False}
    return {"found": True, **_snapshot(bundle)}


@app.post("/sync/drive/upload")
def upload_to_drive(ledger: LedgerDep, body: Optional[DriveSyncRequest] = None) -> dict[str, object]:
    file_id = ledger.upload_to_drive(body.access_token if body else None)
    return {"fileId": file_id}


@app.post("/sync/drive/download")
def download_from_drive(ledger: LedgerDep, body: Optional[DriveSyncRequest] = None) -> dict[str, object]:
    bundle = ledger.download_from_drive(body.access_token if body else None)
    if bundle is None:
        return {"found": False}
    return {"found": True, **_snapshot(bundle)}
