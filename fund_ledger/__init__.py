"""Personal fund investment ledger backend."""
from __future__ import annotations

from .api import app

__all__ = ["app"]
