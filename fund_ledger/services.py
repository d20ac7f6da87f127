"""High-level application services orchestrating the fund_ledger backend."""
from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from typing import Optional

import requests

from .cloud_sync import API_KEY_SETTING, DOCUMENT_ID_SETTING, CloudSync, DocumentInfo
from .config import AppConfig
from .database import SQLiteRepository
from .drive_sync import DriveSyncClient
from .errors import BundleFormatError, LedgerValidationError, TransactionNotFoundError
from .importers import (
    WorkbookExporter,
    WorkbookImporter,
    dump_bundle_json,
    load_bundle_json,
    parse_bundle,
)
from .ledger import LedgerStore
from .models import AccountSummary, Holding, LedgerBundle, Transaction, TransactionInput

logger = logging.getLogger(__name__)


class LedgerService:
    """Coordinates the ledger, its persistence and the transfer adapters.

    All ledger mutations go through one lock so that concurrent requests never
    interleave, and each successful mutation is written to the repository
    before the lock is released.
    """

    def __init__(
        self,
        config: AppConfig,
        repository: SQLiteRepository,
        store: Optional[LedgerStore] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config
        self._repository = repository
        self._store = store or LedgerStore()
        self._session = session
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    def rehydrate(self) -> None:
        """Load the persisted ledger into the store, once, at startup."""

        payload = self._repository.load_state()
        if payload is None:
            logger.info("No persisted ledger found; starting empty")
            return
        with self._lock:
            try:
                bundle = parse_bundle(payload)
                self._store.import_data(bundle)
            except BundleFormatError as exc:
                logger.warning("Persisted ledger is unreadable (%s); starting empty", exc)
                return
        logger.info("Rehydrated %d transactions from local storage", len(bundle.transactions))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_transactions(self, fund_code: Optional[str] = None) -> list[Transaction]:
        """Return transactions newest first, optionally for a single fund."""

        with self._lock:
            if fund_code:
                transactions = list(self._store.transactions_for_fund(fund_code))
            else:
                transactions = list(self._store.transactions)
        return sorted(transactions, key=lambda tx: (_sort_key(tx.date), tx.id), reverse=True)

    def holdings(self) -> tuple[Holding, ...]:
        with self._lock:
            return self._store.holdings

    def summary(self) -> AccountSummary:
        with self._lock:
            return self._store.summary

    def export_bundle(self) -> LedgerBundle:
        with self._lock:
            return self._store.export_data()

    def export_json(self) -> str:
        return dump_bundle_json(self.export_bundle())

    def export_workbook(self) -> bytes:
        return WorkbookExporter().export(self.export_bundle())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_transaction(self, payload: TransactionInput) -> Transaction:
        if not payload.fund_code.strip():
            raise LedgerValidationError("Fund code is required")
        if not payload.fund_name.strip():
            raise LedgerValidationError("Fund name is required")
        if payload.quantity <= 0:
            raise LedgerValidationError("Quantity must be greater than zero")
        if payload.price < 0:
            raise LedgerValidationError("Price must not be negative")
        if payload.fee < 0:
            raise LedgerValidationError("Fee must not be negative")

        with self._lock:
            transaction = self._store.add_transaction(payload)
            self._persist()
        return transaction

    def delete_transaction(self, transaction_id: str) -> None:
        with self._lock:
            removed = self._store.delete_transaction(transaction_id)
            self._persist()
        if not removed:
            raise TransactionNotFoundError(transaction_id)

    def update_fee(self, transaction_id: str, fee: float) -> Transaction:
        with self._lock:
            updated = self._store.update_fee(transaction_id, fee)
            if updated is None:
                raise TransactionNotFoundError(transaction_id)
            self._persist()
        return updated

    def set_price_override(self, fund_code: str, price: float) -> None:
        if not fund_code.strip():
            raise LedgerValidationError("Fund code is required")
        if price <= 0:
            raise LedgerValidationError("Price must be greater than zero")
        with self._lock:
            self._store.set_price_override(fund_code, price)
            self._persist()

    def import_bundle(self, bundle: LedgerBundle) -> LedgerBundle:
        """Replace the ledger with ``bundle`` and return the recomputed snapshot."""

        with self._lock:
            self._store.import_data(bundle)
            self._persist()
            return self._store.export_data()

    def import_payload(self, payload: object) -> LedgerBundle:
        return self.import_bundle(parse_bundle(payload))

    def import_json(self, text: str | bytes) -> LedgerBundle:
        return self.import_bundle(load_bundle_json(text))

    def import_workbook(self, content: bytes) -> LedgerBundle:
        return self.import_bundle(WorkbookImporter(content).load())

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._persist()
        logger.info("Cleared all ledger data")

    # ------------------------------------------------------------------
    # Document store sync
    # ------------------------------------------------------------------
    def configure_cloud_sync(self, api_key: str) -> None:
        api_key = api_key.strip()
        if not api_key:
            raise LedgerValidationError("API key is required")
        self._repository.set_setting(API_KEY_SETTING, api_key)
        self._repository.delete_setting(DOCUMENT_ID_SETTING)
        logger.info("Cloud sync configured")

    def clear_cloud_sync(self) -> None:
        self._repository.delete_setting(API_KEY_SETTING)
        self._repository.delete_setting(DOCUMENT_ID_SETTING)
        logger.info("Cloud sync configuration removed")

    def cloud_sync_status(self) -> dict[str, object]:
        has_key = bool(self._repository.get_setting(API_KEY_SETTING) or self._config.jsonbin_api_key)
        return {
            "has_api_key": has_key,
            "has_document_id": bool(self._repository.get_setting(DOCUMENT_ID_SETTING)),
            "is_configured": has_key,
        }

    def cloud_info(self) -> Optional[DocumentInfo]:
        return self._cloud().info()

    def upload_to_cloud(self) -> str:
        bundle = self._bundle_for_upload()
        document_id = self._cloud().upload(bundle)
        logger.info("Uploaded %d transactions to the document store", len(bundle.transactions))
        return document_id

    def download_from_cloud(self) -> Optional[LedgerBundle]:
        """Replace the local ledger with the remote copy.

        Returns ``None`` (and leaves local state alone) when no remote copy
        exists.  Remote failures propagate as
        :class:`~fund_ledger.errors.SyncError` before anything is changed.
        """

        payload = self._cloud().download()
        if payload is None:
            return None
        return self.import_payload(payload)

    # ------------------------------------------------------------------
    # Google Drive sync
    # ------------------------------------------------------------------
    def upload_to_drive(self, access_token: Optional[str] = None) -> str:
        bundle = self._bundle_for_upload()
        return self._drive(access_token).upload(bundle)

    def download_from_drive(self, access_token: Optional[str] = None) -> Optional[LedgerBundle]:
        payload = self._drive(access_token).download()
        if payload is None:
            return None
        return self.import_payload(payload)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _persist(self) -> None:
        self._repository.save_state(self._store.export_data().to_dict())

    def _bundle_for_upload(self) -> LedgerBundle:
        bundle = self.export_bundle()
        if not bundle.transactions:
            raise LedgerValidationError("There is no data to upload yet")
        return bundle

    def _cloud(self) -> CloudSync:
        return CloudSync.from_config(self._config, self._repository, session=self._session)

    def _drive(self, access_token: Optional[str]) -> DriveSyncClient:
        return DriveSyncClient.from_config(self._config, access_token, session=self._session)


def _sort_key(value: object) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value or "")
