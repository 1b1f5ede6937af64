"""Application factory for FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) to improve testability and separation of concerns compared to a
monolithic main.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from buyer_leads.adapters.db.session import dispose_engine, init_db
from buyer_leads.api.routes import buyers_router, health_router, tags_router, transfer_router
from buyer_leads.core.config import settings
from buyer_leads.core.exception_handlers import setup_exception_handlers
from buyer_leads.core.logging import configure_logging
from buyer_leads.core.middleware import request_id_middleware
from buyer_leads.core.openapi import apply_openapi_customizations

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.db.create_tables:
        init_db()
        logger.info("db.tables_ready")
    yield
    dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Buyer Leads API",
        description=(
            "Capture, search and update real-estate buyer leads. Edits use "
            "optimistic concurrency (send back the updatedAt you last saw) and "
            "every effective change is recorded in the buyer's history. Supports "
            "CSV export, all-or-nothing imports and tag autocomplete. Requires a "
            "bearer token; create and update are rate limited per user."
        ),
        version="0.1.0",
        lifespan=lifespan,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(buyers_router)
    app.include_router(tags_router)
    app.include_router(transfer_router)
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
