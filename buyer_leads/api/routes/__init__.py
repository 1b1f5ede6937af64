from __future__ import annotations

from buyer_leads.api.routes.buyers import router as buyers_router
from buyer_leads.api.routes.health import router as health_router
from buyer_leads.api.routes.tags import router as tags_router
from buyer_leads.api.routes.transfer import router as transfer_router

__all__ = ["buyers_router", "health_router", "tags_router", "transfer_router"]
