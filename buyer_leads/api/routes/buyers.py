"""Buyer CRUD endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from buyer_leads.adapters.db.session import get_session
from buyer_leads.core.auth import CurrentUserDep
from buyer_leads.core.errors import ConflictAppError, NotFoundAppError
from buyer_leads.core.rate_limit import enforce_create_rate_limit, enforce_update_rate_limit
from buyer_leads.schemas.buyer import (
    BuyerCreate,
    BuyerDetailResponse,
    BuyerHistoryRead,
    BuyerListResponse,
    BuyerRead,
    BuyerSearchParams,
    BuyerUpdate,
    DeleteResponse,
)
from buyer_leads.services import buyer_store
from buyer_leads.services.buyer_update import update_buyer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/buyers", tags=["Buyers"])

SessionDep = Annotated[Session, Depends(get_session)]


@router.get("", response_model=BuyerListResponse)
def list_buyers(
    user: CurrentUserDep,
    session: SessionDep,
    params: Annotated[BuyerSearchParams, Query()],
) -> BuyerListResponse:
    """Search buyers with filters, sorting and pagination.

    Non-admin callers only ever see their own buyers.
    """
    rows, total = buyer_store.list_buyers(session, user, params)
    return BuyerListResponse(rows=[BuyerRead.model_validate(r) for r in rows], total=total)


@router.post(
    "",
    response_model=BuyerRead,
    status_code=201,
    dependencies=[Depends(enforce_create_rate_limit)],
)
def create_buyer(payload: BuyerCreate, user: CurrentUserDep, session: SessionDep) -> BuyerRead:
    """Create a buyer owned by the caller."""
    buyer = buyer_store.create_buyer(session, user, payload)
    return BuyerRead.model_validate(buyer)


@router.get("/{buyer_id}", response_model=BuyerDetailResponse)
def get_buyer(buyer_id: str, user: CurrentUserDep, session: SessionDep) -> BuyerDetailResponse:
    """Fetch a buyer together with its most recent change history."""
    buyer = buyer_store.get_buyer(session, user, buyer_id)
    history = buyer_store.list_history(session, buyer.id)
    return BuyerDetailResponse(
        buyer=BuyerRead.model_validate(buyer),
        history=[BuyerHistoryRead.model_validate(h) for h in history],
    )


@router.put(
    "/{buyer_id}",
    response_model=BuyerRead,
    dependencies=[Depends(enforce_update_rate_limit)],
)
def put_buyer(
    buyer_id: str,
    payload: BuyerUpdate,
    user: CurrentUserDep,
    session: SessionDep,
) -> BuyerRead:
    """Apply a partial update.

    Send the ``updatedAt`` value you last saw; if someone saved in between the
    request fails with 409 and nothing is written.
    """
    try:
        result = update_buyer(
            session,
            user,
            buyer_id,
            payload.changes(),
            expected_updated_at=payload.expected_updated_at,
        )
    except NotFoundAppError as exc:
        # Clients cannot tell a deleted record from a concurrent edit; both are conflicts
        raise ConflictAppError(
            code="update_conflict",
            message="Conflict or not found",
            details={"buyer_id": buyer_id},
        ) from exc
    return result.after


@router.delete("/{buyer_id}", response_model=DeleteResponse)
def delete_buyer(buyer_id: str, user: CurrentUserDep, session: SessionDep) -> DeleteResponse:
    buyer_store.delete_buyer(session, user, buyer_id)
    return DeleteResponse(ok=True)
