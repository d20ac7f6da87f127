"""Application configuration utilities for the fund_ledger backend.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load any variables defined in a local .env file. The call is idempotent and
# inexpensive, so importing it at module import time keeps the API ergonomic.
load_dotenv()


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project. Used to derive default
            paths so the app works out of the box after cloning the repo.
        database_file: Absolute path to the SQLite database holding the
            persisted ledger blob and the local sync settings.
        log_level: Name of the root logging level applied at startup.
        jsonbin_endpoint: Base URL of the JSON document store used for cloud
            backups.
        jsonbin_api_key: Optional master key for the document store. A key
            saved through the API takes precedence.
        drive_endpoint: Base URL of the Google Drive metadata API.
        drive_upload_endpoint: Base URL of the Google Drive upload API.
        drive_access_token: Optional OAuth access token for Google Drive.
        sync_timeout: Timeout in seconds passed to every remote request.
    """

    project_root: Path
    database_file: Path
    log_level: str
    jsonbin_endpoint: str
    jsonbin_api_key: Optional[str]
    drive_endpoint: str
    drive_upload_endpoint: str
    drive_access_token: Optional[str]
    sync_timeout: float


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings.

    Environment variables override the default values, allowing users to
    customise the runtime without touching the source code.
    """

    project_root = Path(__file__).resolve().parent.parent
    database_file = Path(
        getenv_with_default(
            "FUND_LEDGER_DB_FILE",
            project_root / "fund_ledger.db",
        )
    )

    # Ensure the directories exist so later code can safely create files.
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        database_file=database_file,
        log_level=getenv_with_default("FUND_LEDGER_LOG_LEVEL", "INFO").upper(),
        jsonbin_endpoint=getenv_with_default("JSONBIN_ENDPOINT", "https://api.jsonbin.io/v3").rstrip("/"),
        jsonbin_api_key=getenv_with_default("JSONBIN_API_KEY"),
        drive_endpoint=getenv_with_default(
            "GOOGLE_DRIVE_ENDPOINT",
            "https://www.googleapis.com/drive/v3",
        ).rstrip("/"),
        drive_upload_endpoint=getenv_with_default(
            "GOOGLE_DRIVE_UPLOAD_ENDPOINT",
            "https://www.googleapis.com/upload/drive/v3",
        ).rstrip("/"),
        drive_access_token=getenv_with_default("GOOGLE_DRIVE_ACCESS_TOKEN"),
        sync_timeout=float(getenv_with_default("SYNC_TIMEOUT", "30")),
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return the value of an environment variable or a sensible default.

    ``None`` values are propagated so callers can make explicit decisions about
    optional configuration values. Paths are converted to strings, keeping the
    return type uniform and easy to serialise.
    """

    from os import getenv

    value = getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)
