"""Buyer persistence: create, fetch, search, delete, tags and history reads.

Every query is scoped to the caller's own rows unless the caller is an admin.
Tag suggestions are the exception: they always come from the caller's own
records so one user's vocabulary never leaks to another.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Sequence

from sqlalchemy import Select, asc, desc, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from buyer_leads.adapters.db.models import Buyer, BuyerHistory
from buyer_leads.core.auth import CurrentUser
from buyer_leads.core.config import settings
from buyer_leads.core.errors import NotFoundAppError, StoreAppError
from buyer_leads.schemas.buyer import BuyerCreate, BuyerSearchParams

logger = logging.getLogger(__name__)

TAG_LIMIT_DEFAULT = 10
TAG_LIMIT_MAX = 50

_SORT_COLUMNS = {
    "updated_at": Buyer.updated_at,
    "created_at": Buyer.created_at,
    "full_name": Buyer.full_name,
}


@contextmanager
def store_errors(session: Session, action: str) -> Iterator[None]:
    """Roll back and re-raise store failures as StoreAppError."""
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(
            "store.failure",
            extra={"action": action, "error_type": type(exc).__name__, "error_msg": str(exc)},
        )
        raise StoreAppError(
            code="store_error",
            message="The record store could not complete the request.",
        ) from exc


def scoped(stmt: Select, user: CurrentUser) -> Select:
    """Restrict a buyer query to the caller's rows unless they are an admin."""
    if user.is_admin:
        return stmt
    return stmt.where(Buyer.owner_id == user.id)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _filtered(params: BuyerSearchParams, user: CurrentUser) -> Select:
    stmt = scoped(select(Buyer), user)

    if params.city:
        stmt = stmt.where(Buyer.city == params.city)
    if params.property_type:
        stmt = stmt.where(Buyer.property_type == params.property_type)
    if params.status:
        stmt = stmt.where(Buyer.status == params.status)
    if params.timeline:
        stmt = stmt.where(Buyer.timeline == params.timeline)
    if params.updated_from:
        stmt = stmt.where(Buyer.updated_at >= params.updated_from)
    if params.updated_to:
        stmt = stmt.where(Buyer.updated_at <= params.updated_to)
    if params.search:
        pattern = f"%{_escape_like(params.search)}%"
        stmt = stmt.where(
            or_(
                Buyer.full_name.ilike(pattern, escape="\\"),
                func.coalesce(Buyer.email, "").ilike(pattern, escape="\\"),
                Buyer.phone.ilike(pattern, escape="\\"),
                func.coalesce(Buyer.notes, "").ilike(pattern, escape="\\"),
            )
        )
    return stmt


def create_buyer(session: Session, user: CurrentUser, payload: BuyerCreate) -> Buyer:
    """Insert a new buyer owned by ``user``."""
    buyer = Buyer(**payload.model_dump(), owner_id=user.id)
    with store_errors(session, "create_buyer"):
        session.add(buyer)
        session.commit()

    logger.info("buyer.created", extra={"buyer_id": buyer.id, "status": buyer.status})
    return buyer


def get_buyer(session: Session, user: CurrentUser, buyer_id: str) -> Buyer:
    """Fetch one buyer within the caller's scope.

    Raises:
        NotFoundAppError: If no such buyer exists or it belongs to someone else.
    """
    with store_errors(session, "get_buyer"):
        buyer = session.scalars(scoped(select(Buyer).where(Buyer.id == buyer_id), user)).one_or_none()
    if buyer is None:
        raise NotFoundAppError(
            code="buyer_not_found",
            message="Not found",
            details={"buyer_id": buyer_id},
        )
    return buyer


def list_buyers(
    session: Session,
    user: CurrentUser,
    params: BuyerSearchParams,
    *,
    limit: int | None = None,
) -> tuple[list[Buyer], int]:
    """Return one page of matching buyers and the total match count.

    Args:
        session: Active session.
        user: Caller; non-admins only see their own rows.
        params: Filters, sort and pagination.
        limit: Hard page size overriding ``params.limit`` (used by export).

    Returns:
        Tuple of (rows on the requested page, total matching rows).
    """
    page_size = limit or params.limit or settings.app.page_size
    offset = (params.page - 1) * page_size

    base = _filtered(params, user)
    column = _SORT_COLUMNS[params.sort]
    direction = asc if params.order == "asc" else desc
    # id as tie-breaker keeps pages stable when sort values collide
    page_stmt = base.order_by(direction(column), direction(Buyer.id)).limit(page_size).offset(offset)
    count_stmt = select(func.count()).select_from(base.order_by(None).subquery())

    with store_errors(session, "list_buyers"):
        rows = list(session.scalars(page_stmt).all())
        total = int(session.execute(count_stmt).scalar_one())

    logger.debug(
        "buyer.listed",
        extra={"page": params.page, "page_size": page_size, "returned": len(rows), "total": total},
    )
    return rows, total


def delete_buyer(session: Session, user: CurrentUser, buyer_id: str) -> None:
    """Delete a buyer and, by cascade, its history."""
    buyer = get_buyer(session, user, buyer_id)
    with store_errors(session, "delete_buyer"):
        session.delete(buyer)
        session.commit()
    logger.info("buyer.deleted", extra={"buyer_id": buyer_id})


def list_history(session: Session, buyer_id: str, limit: int | None = None) -> list[BuyerHistory]:
    """Most recent history entries for a buyer, newest first."""
    stmt = (
        select(BuyerHistory)
        .where(BuyerHistory.buyer_id == buyer_id)
        .order_by(desc(BuyerHistory.changed_at), desc(BuyerHistory.id))
        .limit(limit or settings.app.history_preview_limit)
    )
    with store_errors(session, "list_history"):
        return list(session.scalars(stmt).all())


def clamp_tag_limit(limit: int | None) -> int:
    if limit is None:
        return TAG_LIMIT_DEFAULT
    return min(max(limit, 1), TAG_LIMIT_MAX)


def suggest_tags(session: Session, user: CurrentUser, query: str = "", limit: int | None = None) -> list[str]:
    """Distinct tags from the caller's own buyers matching ``query``.

    Matching is a case-insensitive substring test; results are sorted and
    capped at ``limit`` (clamped to 1-50, default 10).
    """
    needle = query.strip().lower()
    stmt = select(Buyer.tags).where(Buyer.owner_id == user.id)
    with store_errors(session, "suggest_tags"):
        tag_lists = session.scalars(stmt).all()

    found: set[str] = set()
    for tags in tag_lists:
        for tag in tags or ():
            if tag and (not needle or needle in tag.lower()):
                found.add(tag)
    return sorted(found)[: clamp_tag_limit(limit)]


def insert_many(session: Session, user: CurrentUser, payloads: Sequence[BuyerCreate]) -> int:
    """Insert all rows in a single transaction; nothing is kept if any insert fails."""
    if not payloads:
        return 0

    with store_errors(session, "insert_many"):
        session.add_all(Buyer(**p.model_dump(), owner_id=user.id) for p in payloads)
        session.commit()

    logger.info("buyer.imported", extra={"inserted": len(payloads)})
    return len(payloads)
