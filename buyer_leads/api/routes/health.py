from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from buyer_leads.adapters.db.session import ping

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns a simple status response to verify the API is operational.
    Used by load balancers and monitoring systems to determine service health.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/db")
def database_health_check() -> JSONResponse:
    """Check that the record store answers a trivial query.

    Returns ``{"ok": true}``, or 503 with ``{"ok": false}`` when unreachable.
    """
    try:
        ping()
    except SQLAlchemyError as exc:
        logger.error("health.db_unreachable", extra={"error_type": type(exc).__name__})
        return JSONResponse(status_code=503, content={"ok": False})
    return JSONResponse(status_code=200, content={"ok": True})
