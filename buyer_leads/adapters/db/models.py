"""ORM models for buyer leads and their change history."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from buyer_leads.adapters.db.base import Base, UTCDateTime, utcnow
from buyer_leads.core.constants import (
    BHKS,
    CITIES,
    DEFAULT_STATUS,
    EMAIL_MAX,
    FULL_NAME_MAX,
    FULL_NAME_MIN,
    NOTES_MAX,
    PROPERTY_TYPES,
    PURPOSES,
    SOURCES,
    STATUSES,
    TIMELINES,
    in_clause,
)


def _new_id() -> str:
    return str(uuid.uuid4())


class Buyer(Base):
    """A prospective property buyer or renter owned by one user.

    Invariants mirrored as CHECK constraints so rows written outside the API
    (imports, manual fixes) are held to the same rules as the schemas.
    """

    __tablename__ = "buyers"
    __table_args__ = (
        CheckConstraint(f"length(full_name) >= {FULL_NAME_MIN}", name="buyers_full_name_length"),
        CheckConstraint(in_clause("city", CITIES), name="buyers_city_check"),
        CheckConstraint(in_clause("property_type", PROPERTY_TYPES), name="buyers_property_type_check"),
        CheckConstraint(f"bhk IS NULL OR {in_clause('bhk', BHKS)}", name="buyers_bhk_check"),
        CheckConstraint(in_clause("purpose", PURPOSES), name="buyers_purpose_check"),
        CheckConstraint("budget_min IS NULL OR budget_min >= 0", name="buyers_budget_min_check"),
        CheckConstraint(
            "budget_max IS NULL OR budget_min IS NULL OR budget_max >= budget_min",
            name="buyers_budget_max_check",
        ),
        CheckConstraint(in_clause("timeline", TIMELINES), name="buyers_timeline_check"),
        CheckConstraint(in_clause("source", SOURCES), name="buyers_source_check"),
        CheckConstraint(in_clause("status", STATUSES), name="buyers_status_check"),
        CheckConstraint(
            f"notes IS NULL OR length(notes) <= {NOTES_MAX}", name="buyers_notes_length"
        ),
        Index("buyers_email_idx", "email"),
        Index("buyers_phone_idx", "phone"),
        Index("buyers_owner_id_idx", "owner_id"),
        Index("buyers_updated_at_idx", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    full_name: Mapped[str] = mapped_column(String(FULL_NAME_MAX), nullable=False)
    email: Mapped[str | None] = mapped_column(String(EMAIL_MAX))
    phone: Mapped[str] = mapped_column(String(15), nullable=False)
    city: Mapped[str] = mapped_column(String(20), nullable=False)
    property_type: Mapped[str] = mapped_column(String(20), nullable=False)
    bhk: Mapped[str | None] = mapped_column(String(10))
    purpose: Mapped[str] = mapped_column(String(10), nullable=False)
    budget_min: Mapped[int | None] = mapped_column(Integer)
    budget_max: Mapped[int | None] = mapped_column(Integer)
    timeline: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DEFAULT_STATUS)
    notes: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    history: Mapped[list["BuyerHistory"]] = relationship(
        back_populates="buyer",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"Buyer(id={self.id!r}, full_name={self.full_name!r}, status={self.status!r})"


class BuyerHistory(Base):
    """Immutable audit entry describing one update to a buyer."""

    __tablename__ = "buyer_history"
    __table_args__ = (
        Index("buyer_history_buyer_id_idx", "buyer_id"),
        Index("buyer_history_changed_by_idx", "changed_by"),
        Index("buyer_history_changed_at_idx", "changed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    buyer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("buyers.id", ondelete="CASCADE"), nullable=False
    )
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    # field name -> {"old": ..., "new": ...}
    diff: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    buyer: Mapped[Buyer] = relationship(back_populates="history")
