"""Cloud backup against a JSONBin-style document store.

The store keeps arbitrary JSON documents ("bins") addressed by a
server-assigned id.  It has no notion of "the one document of this user", so
the client names its document after a hash of the master key and resolves the
id in this order:

1. the id remembered locally from an earlier upload, if it still exists;
2. a server-side search for a document carrying the derived name;
3. (uploads only) a new document.

The master key only ever leaves the process as the ``X-Master-Key`` header.
"""
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import requests

from .config import AppConfig
from .errors import SyncError, SyncNotConfiguredError
from .models import LedgerBundle

logger = logging.getLogger(__name__)

DOCUMENT_PREFIX = "jijin-records-"

API_KEY_SETTING = "cloud_sync.api_key"
DOCUMENT_ID_SETTING = "cloud_sync.document_id"


def derive_document_name(api_key: str) -> str:
    """Return the deterministic document name for ``api_key``.

    SHA-256 of the key, truncated to the 24 hex characters the store uses for
    its own identifiers.
    """

    digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    return f"{DOCUMENT_PREFIX}{digest[:24]}"


class SettingsStore(Protocol):
    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]: ...

    def set_setting(self, key: str, value: str) -> None: ...

    def delete_setting(self, key: str) -> None: ...


@dataclass(frozen=True, slots=True)
class DocumentInfo:
    document_id: str
    last_updated: Optional[str]
    size: int


class DocumentStoreClient:
    """Thin wrapper around the document store REST API.

    Each public method performs exactly one request and raises
    :class:`~fund_ledger.errors.SyncError` on transport errors or unexpected
    responses.
    """

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key:
            raise SyncNotConfiguredError("Cloud sync API key is not configured")
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def document_name(self) -> str:
        return derive_document_name(self._api_key)

    # ------------------------------------------------------------------
    # Single requests
    # ------------------------------------------------------------------
    def exists(self, document_id: str) -> bool:
        response = self._request("HEAD", f"/b/{document_id}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response, "check document")
        return True

    def create(self, payload: dict[str, object], name: str) -> str:
        """Create a document and return the id assigned by the server."""

        response = self._request(
            "POST",
            "/b",
            json=payload,
            headers={"X-Bin-Name": name, "X-Bin-Private": "true"},
        )
        self._raise_for_status(response, "create document")
        body = self._json(response)
        document_id = (body.get("metadata") or {}).get("id")
        if not document_id:
            raise SyncError("Document store did not return a document id")
        return str(document_id)

    def replace(self, document_id: str, payload: dict[str, object]) -> None:
        response = self._request("PUT", f"/b/{document_id}", json=payload)
        self._raise_for_status(response, "update document")

    def read_latest(self, document_id: str) -> Optional[dict[str, object]]:
        response = self._request("GET", f"/b/{document_id}/latest")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "download document")
        record = self._json(response).get("record")
        if record is None:
            return None
        if not isinstance(record, dict):
            raise SyncError("Remote document is not a JSON object")
        return record

    def info(self, document_id: str) -> Optional[DocumentInfo]:
        response = self._request("GET", f"/b/{document_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "read document info")
        body = self._json(response)
        return DocumentInfo(
            document_id=document_id,
            last_updated=(body.get("metadata") or {}).get("createdAt"),
            size=len(json.dumps(body.get("record"), ensure_ascii=False)),
        )

    def search(self, name: str) -> Optional[str]:
        """Return the id of the newest document called ``name``, if any."""

        response = self._request("GET", "/c/uncategorized/bins")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "search documents")
        try:
            entries = response.json()
        except ValueError as exc:
            raise SyncError("Document store returned invalid JSON") from exc
        if not isinstance(entries, list):
            return None
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            meta = entry.get("snippetMeta") or {}
            if meta.get("name") == name and entry.get("record"):
                return str(entry["record"])
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = {"X-Master-Key": self._api_key}
        headers.update(kwargs.pop("headers", {}))
        try:
            return self._session.request(
                method,
                f"{self._endpoint}{path}",
                headers=headers,
                timeout=self._timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise SyncError(f"Document store request failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: requests.Response, action: str) -> None:
        if response.status_code in (401, 403):
            raise SyncError(f"Could not {action}: the API key was rejected")
        if not 200 <= response.status_code < 300:
            raise SyncError(f"Could not {action}: HTTP {response.status_code}")

    @staticmethod
    def _json(response: requests.Response) -> dict[str, object]:
        try:
            body = response.json()
        except ValueError as exc:
            raise SyncError("Document store returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise SyncError("Document store returned an unexpected payload")
        return body


class CloudSync:
    """Upload and download ledger bundles through :class:`DocumentStoreClient`.

    The resolved document id is remembered in ``settings`` so later syncs
    from this installation skip the search.
    """

    def __init__(self, client: DocumentStoreClient, settings: SettingsStore) -> None:
        self._client = client
        self._settings = settings

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        settings: SettingsStore,
        session: Optional[requests.Session] = None,
    ) -> "CloudSync":
        api_key = settings.get_setting(API_KEY_SETTING) or config.jsonbin_api_key
        if not api_key:
            raise SyncNotConfiguredError("Cloud sync API key is not configured")
        client = DocumentStoreClient(api_key, config.jsonbin_endpoint, config.sync_timeout, session=session)
        return cls(client, settings)

    def upload(self, bundle: LedgerBundle) -> str:
        """Write ``bundle`` to the remote document, creating it when needed.

        Returns the document id that was written.
        """

        payload = bundle.to_dict()
        document_id = self.resolve_document_id()
        if document_id is None:
            document_id = self._client.create(payload, self._client.document_name)
            logger.info("Created remote document %s", document_id)
        else:
            self._client.replace(document_id, payload)
            logger.info("Updated remote document %s", document_id)
        self._settings.set_setting(DOCUMENT_ID_SETTING, document_id)
        return document_id

    def download(self) -> Optional[dict[str, object]]:
        """Return the latest remote payload, or ``None`` when there is none."""

        document_id = self.resolve_document_id()
        if document_id is None:
            return None
        return self._client.read_latest(document_id)

    def info(self) -> Optional[DocumentInfo]:
        document_id = self.resolve_document_id()
        if document_id is None:
            return None
        return self._client.info(document_id)

    def resolve_document_id(self) -> Optional[str]:
        stored = self._settings.get_setting(DOCUMENT_ID_SETTING)
        if stored:
            if self._client.exists(stored):
                return stored
            logger.warning("Remembered remote document %s no longer exists", stored)
            self._settings.delete_setting(DOCUMENT_ID_SETTING)

        found = self._client.search(self._client.document_name)
        if found:
            self._settings.set_setting(DOCUMENT_ID_SETTING, found)
        return found


__all__ = [
    "DOCUMENT_PREFIX",
    "API_KEY_SETTING",
    "DOCUMENT_ID_SETTING",
    "derive_document_name",
    "DocumentInfo",
    "DocumentStoreClient",
    "CloudSync",
]
