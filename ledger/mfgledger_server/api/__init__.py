"""
MfgLedger HTTP API - FastAPI surface over the ledger service.

Exposes every ledger operation, the per-organization read path and the
financial reports as JSON endpoints under /api/v1.
"""

from .app import create_app, error_status
from .routes import router
from .settings import ApiSettings

__all__ = ["create_app", "error_status", "router", "ApiSettings"]
