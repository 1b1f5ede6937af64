"""Partial buyer updates with optimistic concurrency and change history.

The procedure reads the current row, checks the caller's last-seen
``updated_at`` against it, then writes with a single conditional UPDATE whose
WHERE clause pins the exact ``updated_at`` that was read. A concurrent writer
that slipped in between the read and the write makes the UPDATE match zero
rows, which surfaces as a conflict instead of a lost update.

Only fields whose value actually changed end up in the history diff; an update
that changes nothing writes no history at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from buyer_leads.adapters.db.base import utcnow
from buyer_leads.adapters.db.models import Buyer, BuyerHistory
from buyer_leads.core.auth import CurrentUser
from buyer_leads.core.config import settings
from buyer_leads.core.constants import BHK_REQUIRED_FOR
from buyer_leads.core.errors import ConflictAppError, NotFoundAppError, ValidationAppError
from buyer_leads.schemas.buyer import BUDGET_ORDER_MESSAGE, BHK_REQUIRED_MESSAGE, BuyerRead
from buyer_leads.services.buyer_store import scoped, store_errors

logger = logging.getLogger(__name__)


def _same(old: Any, new: Any) -> bool:
    return old == new


def _same_tags(old: Any, new: Any) -> bool:
    return list(old or []) == list(new or [])


# Every field a caller may change, with the equality rule used for the diff.
# owner_id, id and the timestamps are deliberately absent.
UPDATABLE_FIELDS: dict[str, Callable[[Any, Any], bool]] = {
    "full_name": _same,
    "email": _same,
    "phone": _same,
    "city": _same,
    "property_type": _same,
    "bhk": _same,
    "purpose": _same,
    "budget_min": _same,
    "budget_max": _same,
    "timeline": _same,
    "source": _same,
    "status": _same,
    "notes": _same,
    "tags": _same_tags,
}


@dataclass(frozen=True)
class UpdateResult:
    """Snapshots taken around a successful update."""

    before: BuyerRead
    after: BuyerRead
    diff: dict[str, dict[str, Any]]


def compute_diff(before: BuyerRead, changes: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Field-level ``{"old", "new"}`` map for submitted keys whose value changed.

    Keys outside ``UPDATABLE_FIELDS`` are ignored.
    """
    diff: dict[str, dict[str, Any]] = {}
    for field, is_same in UPDATABLE_FIELDS.items():
        if field not in changes:
            continue
        old = getattr(before, field)
        new = changes[field]
        if not is_same(old, new):
            diff[field] = {"old": old, "new": new}
    return diff


def is_stale(expected: datetime, current: datetime, tolerance_seconds: float) -> bool:
    """True when the caller's timestamp is further than the tolerance from the stored one."""
    return abs((expected - current).total_seconds()) > tolerance_seconds


def _check_merged_record(before: BuyerRead, changes: Mapping[str, Any]) -> None:
    """Re-apply cross-field rules to the record as it will look after the update."""
    merged = before.model_dump()
    merged.update(changes)

    issues = []
    if merged["property_type"] in BHK_REQUIRED_FOR and not merged["bhk"]:
        issues.append({"path": ["bhk"], "message": BHK_REQUIRED_MESSAGE, "type": "value_error"})
    if (
        merged["budget_min"] is not None
        and merged["budget_max"] is not None
        and merged["budget_max"] < merged["budget_min"]
    ):
        issues.append({"path": ["budget_max"], "message": BUDGET_ORDER_MESSAGE, "type": "value_error"})

    if issues:
        raise ValidationAppError(
            code="validation_failed",
            message="Validation failed",
            details={"issues": issues},
        )


def _next_updated_at(previous: datetime) -> datetime:
    # Strictly increasing per row even if the wall clock stalls or steps back
    return max(utcnow(), previous + timedelta(microseconds=1))


def update_buyer(
    session: Session,
    user: CurrentUser,
    buyer_id: str,
    changes: Mapping[str, Any],
    expected_updated_at: datetime | None = None,
    *,
    tolerance_seconds: float | None = None,
) -> UpdateResult:
    """Apply a partial update and record what changed.

    Args:
        session: Active session; the whole procedure runs in one transaction.
        user: Caller; must own the buyer unless an admin.
        buyer_id: Buyer to update.
        changes: Field name -> new value, only for fields the caller sent.
        expected_updated_at: ``updated_at`` the caller last observed, if any.
        tolerance_seconds: Allowed clock/serialization skew; defaults to
            ``settings.app.conflict_tolerance_seconds``.

    Returns:
        UpdateResult with before/after snapshots and the recorded diff.

    Raises:
        NotFoundAppError: The buyer does not exist within the caller's scope.
        ConflictAppError: The caller's version is stale, or the row changed or
            vanished between the read and the write.
        ValidationAppError: The merged record breaks a cross-field rule.
    """
    tolerance = (
        settings.app.conflict_tolerance_seconds if tolerance_seconds is None else tolerance_seconds
    )
    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}

    with store_errors(session, "update_buyer.read"):
        row = session.scalars(scoped(select(Buyer).where(Buyer.id == buyer_id), user)).one_or_none()
    if row is None:
        raise NotFoundAppError(
            code="buyer_not_found",
            message="Not found",
            details={"buyer_id": buyer_id},
        )
    before = BuyerRead.model_validate(row)

    if expected_updated_at is not None and is_stale(expected_updated_at, before.updated_at, tolerance):
        session.rollback()
        logger.info(
            "buyer.update_conflict",
            extra={"buyer_id": buyer_id, "reason": "stale_version"},
        )
        raise ConflictAppError(
            code="stale_version",
            message="This buyer was changed by someone else. Reload and try again.",
            details={
                "buyer_id": buyer_id,
                "expected_updated_at": expected_updated_at.isoformat(),
                "current_updated_at": before.updated_at.isoformat(),
            },
        )

    try:
        _check_merged_record(before, changes)
    except ValidationAppError:
        session.rollback()
        raise

    stmt = (
        update(Buyer)
        .where(
            Buyer.id == buyer_id,
            Buyer.owner_id == before.owner_id,
            Buyer.updated_at == before.updated_at,
        )
        .values(**changes, updated_at=_next_updated_at(before.updated_at))
        .execution_options(synchronize_session=False)
    )

    with store_errors(session, "update_buyer.write"):
        result = session.execute(stmt)
        if result.rowcount == 0:
            session.rollback()
            logger.info(
                "buyer.update_conflict",
                extra={"buyer_id": buyer_id, "reason": "row_changed"},
            )
            raise ConflictAppError(
                code="update_conflict",
                message="Conflict or not found",
                details={"buyer_id": buyer_id},
            )

        diff = compute_diff(before, changes)
        if diff:
            session.add(BuyerHistory(buyer_id=buyer_id, changed_by=user.id, diff=diff))
        session.commit()
        session.refresh(row)

    after = BuyerRead.model_validate(row)
    logger.info(
        "buyer.updated",
        extra={
            "buyer_id": buyer_id,
            "changed_fields": sorted(diff),
            "history_written": bool(diff),
        },
    )
    return UpdateResult(before=before, after=after, diff=diff)
