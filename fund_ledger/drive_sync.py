"""Cloud backup to Google Drive.

The OAuth consent flow happens in the browser; this module only needs the
resulting access token and talks to the Drive v3 REST API with ``requests``.
"""
from __future__ import annotations

import json
import logging
import uuid
from typing import Optional

import requests

from .config import AppConfig
from .errors import SyncError, SyncNotConfiguredError
from .models import LedgerBundle

logger = logging.getLogger(__name__)

DRIVE_FILE_NAME = "jijin-records-data.json"


class DriveSyncClient:
    """Store the ledger bundle as a single JSON file in the user's Drive."""

    def __init__(
        self,
        access_token: str,
        endpoint: str = "https://www.googleapis.com/drive/v3",
        upload_endpoint: str = "https://www.googleapis.com/upload/drive/v3",
        timeout: float = 30,
        session: Optional[requests.Session] = None,
        file_name: str = DRIVE_FILE_NAME,
    ) -> None:
        if not access_token:
            raise SyncNotConfiguredError("Google Drive access token is not configured")
        self._access_token = access_token
        self._endpoint = endpoint.rstrip("/")
        self._upload_endpoint = upload_endpoint.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self.file_name = file_name

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        access_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> "DriveSyncClient":
        return cls(
            access_token or config.drive_access_token or "",
            endpoint=config.drive_endpoint,
            upload_endpoint=config.drive_upload_endpoint,
            timeout=config.sync_timeout,
            session=session,
        )

    def find_file(self) -> Optional[str]:
        """Return the id of the backup file, or ``None`` if it does not exist."""

        response = self._request(
            "GET",
            f"{self._endpoint}/files",
            params={
                "q": f"name='{self.file_name}' and trashed=false",
                "fields": "files(id, name, modifiedTime)",
            },
        )
        self._raise_for_status(response, "search Drive")
        files = self._json(response).get("files") or []
        if not files:
            return None
        return str(files[0]["id"])

    def upload(self, bundle: LedgerBundle) -> str:
        """Create or overwrite the backup file and return its id."""

        content = json.dumps(bundle.to_dict(), ensure_ascii=False, indent=2)
        file_id = self.find_file()
        if file_id:
            response = self._request(
                "PATCH",
                f"{self._upload_endpoint}/files/{file_id}",
                params={"uploadType": "media"},
                data=content.encode("utf-8"),
                headers={"Content-Type": "application/json"},
            )
            self._raise_for_status(response, "update the Drive file")
            logger.info("Updated Drive file %s", file_id)
            return file_id

        boundary = uuid.uuid4().hex
        metadata = json.dumps({"name": self.file_name, "mimeType": "application/json"})
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{metadata}\r\n"
            f"--{boundary}\r\n"
            "Content-Type: application/json\r\n\r\n"
            f"{content}\r\n"
            f"--{boundary}--"
        )
        response = self._request(
            "POST",
            f"{self._upload_endpoint}/files",
            params={"uploadType": "multipart"},
            data=body.encode("utf-8"),
            headers={"Content-Type": f'multipart/related; boundary="{boundary}"'},
        )
        self._raise_for_status(response, "create the Drive file")
        file_id = str(self._json(response).get("id") or "")
        logger.info("Created Drive file %s", file_id)
        return file_id

    def download(self) -> Optional[dict[str, object]]:
        file_id = self.find_file()
        if file_id is None:
            return None
        response = self._request("GET", f"{self._endpoint}/files/{file_id}", params={"alt": "media"})
        self._raise_for_status(response, "download the Drive file")
        return self._json(response)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = {"Authorization": f"Bearer {self._access_token}"}
        headers.update(kwargs.pop("headers", {}))
        try:
            return self._session.request(method, url, headers=headers, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise SyncError(f"Google Drive request failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(response: requests.Response, action: str) -> None:
        if response.status_code in (401, 403):
            raise SyncError(f"Could not {action}: Google Drive rejected the access token")
        if not 200 <= response.status_code < 300:
            raise SyncError(f"Could not {action}: HTTP {response.status_code}")

    @staticmethod
    def _json(response: requests.Response) -> dict[str, object]:
        try:
            body = response.json()
        except ValueError as exc:
            raise SyncError("Google Drive returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise SyncError("Google Drive returned an unexpected payload")
        return body


__all__ = ["DRIVE_FILE_NAME", "DriveSyncClient"]
