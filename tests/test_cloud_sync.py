"""Document store sync tests."""
from __future__ import annotations

import re

import pytest
import requests

from conftest import MemorySettings, StubResponse, StubSession, make_tx
from fund_ledger.cloud_sync import (
    API_KEY_SETTING,
    DOCUMENT_ID_SETTING,
    CloudSync,
    DocumentStoreClient,
    derive_document_name,
)
from fund_ledger.errors import SyncError, SyncNotConfiguredError
from fund_ledger.models import LedgerBundle, TradeSide

ENDPOINT = "https://docs.example.test/v3"


def _bundle() -> LedgerBundle:
    return LedgerBundle(transactions=(make_tx("t1", "A", TradeSide.BUY, quantity=10, price=1.0),))


def _sync(session: StubSession, settings: MemorySettings, api_key: str = "master-key") -> CloudSync:
    client = DocumentStoreClient(api_key, ENDPOINT, timeout=5, session=session)
    return CloudSync(client, settings)


def test_document_name_is_derived_from_key_hash():
    name = derive_document_name("master-key")

    assert name == derive_document_name("master-key")
    assert name != derive_document_name("other-key")
    assert re.fullmatch(r"jijin-records-[0-9a-f]{24}", name)


def test_first_upload_searches_then_creates_and_remembers_id():
    session = StubSession(
        [
            StubResponse(200, []),
            StubResponse(200, {"metadata": {"id": "doc-1"}}),
        ]
    )
    settings = MemorySettings()

    document_id = _sync(session, settings).upload(_bundle())

    assert document_id == "doc-1"
    assert settings.values[DOCUMENT_ID_SETTING] == "doc-1"
    search, create = session.calls
    assert search["method"] == "GET"
    assert search["url"] == f"{ENDPOINT}/c/uncategorized/bins"
    assert create["method"] == "POST"
    assert create["url"] == f"{ENDPOINT}/b"
    assert create["headers"]["X-Master-Key"] == "master-key"
    assert create["headers"]["X-Bin-Name"] == derive_document_name("master-key")
    assert create["json"]["transactions"][0]["id"] == "t1"
    assert create["timeout"] == 5


def test_upload_replaces_remembered_document():
    session = StubSession([StubResponse(200), StubResponse(200, {"record": {}})])
    settings = MemorySettings({DOCUMENT_ID_SETTING: "doc-7"})

    assert _sync(session, settings).upload(_bundle()) == "doc-7"

    head, put = session.calls
    assert (head["method"], head["url"]) == ("HEAD", f"{ENDPOINT}/b/doc-7")
    assert (put["method"], put["url"]) == ("PUT", f"{ENDPOINT}/b/doc-7")


def test_missing_remembered_document_falls_back_to_search():
    name = derive_document_name("master-key")
    session = StubSession(
        [
            StubResponse(404),
            StubResponse(200, [{"record": "doc-other", "snippetMeta": {"name": "unrelated"}}, {"record": "doc-9", "snippetMeta": {"name": name}}]),
            StubResponse(200, {"record": {}}),
        ]
    )
    settings = MemorySettings({DOCUMENT_ID_SETTING: "gone"})

    assert _sync(session, settings).upload(_bundle()) == "doc-9"

    assert [call["method"] for call in session.calls] == ["HEAD", "GET", "PUT"]
    assert session.calls[2]["url"] == f"{ENDPOINT}/b/doc-9"
    assert settings.values[DOCUMENT_ID_SETTING] == "doc-9"


def test_download_reads_latest_record():
    record = {"transactions": [], "fundPrices": {}}
    session = StubSession([StubResponse(200), StubResponse(200, {"record": record, "metadata": {}})])
    settings = MemorySettings({DOCUMENT_ID_SETTING: "doc-1"})

    assert _sync(session, settings).download() == record
    assert session.calls[1]["url"] == f"{ENDPOINT}/b/doc-1/latest"


def test_download_without_remote_document_never_creates_one():
    session = StubSession([StubResponse(200, [])])

    assert _sync(session, MemorySettings()).download() is None
    assert [call["method"] for call in session.calls] == ["GET"]


def test_rejected_key_raises_sync_error():
    session = StubSession([StubResponse(200, []), StubResponse(401, {"message": "Invalid key"})])

    with pytest.raises(SyncError, match="rejected"):
        _sync(session, MemorySettings()).upload(_bundle())


def test_transport_failure_raises_sync_error():
    session = StubSession([requests.ConnectionError("offline")])

    with pytest.raises(SyncError, match="offline"):
        _sync(session, MemorySettings()).download()


def test_create_without_id_is_an_error():
    session = StubSession([StubResponse(200, []), StubResponse(200, {"metadata": {}})])

    with pytest.raises(SyncError):
        _sync(session, MemorySettings()).upload(_bundle())


def test_info_reports_size_and_timestamp():
    session = StubSession(
        [
            StubResponse(200),
            StubResponse(200, {"record": {"a": 1}, "metadata": {"createdAt": "2024-05-01T10:00:00Z"}}),
        ]
    )

    info = _sync(session, MemorySettings({DOCUMENT_ID_SETTING: "doc-1"})).info()

    assert info.document_id == "doc-1"
    assert info.last_updated == "2024-05-01T10:00:00Z"
    assert info.size == len('{"a": 1}')


def test_from_config_prefers_saved_key(config):
    settings = MemorySettings({API_KEY_SETTING: "saved"})

    sync = CloudSync.from_config(config, settings, session=StubSession())

    assert sync._client.document_name == derive_document_name("saved")


def test_from_config_without_key_is_not_configured(config):
    with pytest.raises(SyncNotConfiguredError):
        CloudSync.from_config(config, MemorySettings())
