"""
Health check endpoints.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (local storage and remote ledger reachability)
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response

from stores.kv_store import KeyValueStore, PersistenceError
from stores.remote_ledger import PostgresRemoteLedger, RemoteLedger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_kv_store = None
_remote_ledger = None


def set_health_dependencies(
    kv_store: KeyValueStore = None,
    remote_ledger: RemoteLedger = None,
):
    """Set dependencies for health checks."""
    global _kv_store, _remote_ledger
    _kv_store = kv_store
    _remote_ledger = remote_ledger


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app record games?

    Local storage is required. The remote ledger is optional: when it is
    down, games are queued, so it only degrades the reported status.
    """
    checks = {}
    status_code = 200

    if _kv_store is not None:
        try:
            await _kv_store.get("health:check")
            checks["storage"] = {"status": "ok"}
        except PersistenceError as e:
            logger.warning(f"Storage health check failed: {e}")
            checks["storage"] = {"status": "error", "message": str(e)}
            status_code = 503
    else:
        checks["storage"] = {"status": "not_configured"}
        status_code = 503

    if isinstance(_remote_ledger, PostgresRemoteLedger):
        try:
            async with _remote_ledger.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            checks["remote"] = {"status": "ok"}
        except Exception as e:
            logger.warning(f"Remote ledger health check failed: {e}")
            checks["remote"] = {"status": "error", "message": str(e)}
    else:
        checks["remote"] = {"status": "not_configured"}

    degraded = status_code != 200 or checks["remote"]["status"] != "ok"
    return Response(
        content=json.dumps({
            "status": "degraded" if degraded else "ok",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=status_code,
        media_type="application/json",
    )
