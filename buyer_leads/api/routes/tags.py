from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from buyer_leads.adapters.db.session import get_session
from buyer_leads.core.auth import CurrentUserDep
from buyer_leads.schemas.buyer import TagsResponse
from buyer_leads.services.buyer_store import suggest_tags

router = APIRouter(tags=["Tags"])


@router.get("/tags", response_model=TagsResponse)
def list_tags(
    user: CurrentUserDep,
    session: Annotated[Session, Depends(get_session)],
    q: Annotated[str, Query(max_length=100, description="Case-insensitive substring.")] = "",
    limit: Annotated[int | None, Query(description="Max suggestions (clamped to 1-50).")] = None,
) -> TagsResponse:
    """Autocomplete tags from the caller's own buyers."""
    return TagsResponse(tags=suggest_tags(session, user, q, limit))
