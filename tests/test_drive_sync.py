"""Google Drive sync tests."""
from __future__ import annotations

import json

import pytest

from conftest import StubResponse, StubSession, make_tx
from fund_ledger.drive_sync import DRIVE_FILE_NAME, DriveSyncClient
from fund_ledger.errors import SyncError, SyncNotConfiguredError
from fund_ledger.models import LedgerBundle, TradeSide

API = "https://drive.example.test/drive/v3"
UPLOAD = "https://drive.example.test/upload/drive/v3"


def _client(session: StubSession) -> DriveSyncClient:
    return DriveSyncClient("token-123", endpoint=API, upload_endpoint=UPLOAD, timeout=5, session=session)


def _bundle() -> LedgerBundle:
    return LedgerBundle(transactions=(make_tx("t1", "A", TradeSide.BUY, quantity=10, price=1.0),))


def test_upload_updates_existing_file():
    session = StubSession([StubResponse(200, {"files": [{"id": "file-1"}]}), StubResponse(200, {"id": "file-1"})])

    assert _client(session).upload(_bundle()) == "file-1"

    search, patch = session.calls
    assert search["params"]["q"] == f"name='{DRIVE_FILE_NAME}' and trashed=false"
    assert search["headers"]["Authorization"] == "Bearer token-123"
    assert patch["method"] == "PATCH"
    assert patch["url"] == f"{UPLOAD}/files/file-1"
    assert patch["params"] == {"uploadType": "media"}
    assert json.loads(patch["data"].decode("utf-8"))["transactions"][0]["id"] == "t1"


def test_upload_creates_file_with_multipart_body():
    session = StubSession([StubResponse(200, {"files": []}), StubResponse(200, {"id": "new-file"})])

    assert _client(session).upload(_bundle()) == "new-file"

    create = session.calls[1]
    assert create["method"] == "POST"
    assert create["params"] == {"uploadType": "multipart"}
    assert create["headers"]["Content-Type"].startswith("multipart/related; boundary=")
    body = create["data"].decode("utf-8")
    assert f'"name": "{DRIVE_FILE_NAME}"' in body
    assert '"fundCode": "A"' in body


def test_download_returns_none_when_file_is_absent():
    session = StubSession([StubResponse(200, {"files": []})])

    assert _client(session).download() is None


def test_download_reads_media():
    payload = {"transactions": [], "fundPrices": {}}
    session = StubSession([StubResponse(200, {"files": [{"id": "file-1"}]}), StubResponse(200, payload)])

    assert _client(session).download() == payload
    assert session.calls[1]["params"] == {"alt": "media"}


def test_expired_token_raises_sync_error():
    session = StubSession([StubResponse(401, {"error": {}})])

    with pytest.raises(SyncError, match="access token"):
        _client(session).download()


def test_missing_token_is_not_configured(config):
    with pytest.raises(SyncNotConfiguredError):
        DriveSyncClient.from_config(config)
