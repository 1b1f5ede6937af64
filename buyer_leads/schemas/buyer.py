"""Pydantic schemas for buyer payloads and responses.

Request bodies use snake_case field names. Validation errors carry the field
name in their location so clients can highlight the offending input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    NonNegativeInt,
    StringConstraints,
    ValidationInfo,
    field_validator,
)

from buyer_leads.core.constants import (
    BHK_REQUIRED_FOR,
    DEFAULT_STATUS,
    EMAIL_MAX,
    FULL_NAME_MAX,
    FULL_NAME_MIN,
    NOTES_MAX,
    PHONE_PATTERN,
    TAGS_MAX,
    Bhk,
    City,
    PropertyType,
    Purpose,
    Source,
    Status,
    Timeline,
)

FullName = Annotated[str, StringConstraints(min_length=FULL_NAME_MIN, max_length=FULL_NAME_MAX)]
Phone = Annotated[str, StringConstraints(pattern=PHONE_PATTERN)]
Notes = Annotated[str, StringConstraints(max_length=NOTES_MAX)]

BHK_REQUIRED_MESSAGE = "bhk is required when property_type is Apartment or Villa"
BUDGET_ORDER_MESSAGE = "budget_max must be greater than or equal to budget_min"


def normalize_tags(tags: list[str]) -> list[str]:
    """Trim tags, drop empties and duplicates while keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        cleaned = tag.strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            result.append(cleaned)
    return result


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _BuyerFieldRules(BaseModel):
    """Normalizers shared by the create and update payloads."""

    @field_validator("email", "notes", mode="before", check_fields=False)
    @classmethod
    def _empty_string_is_absent(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("email", check_fields=False)
    @classmethod
    def _email_length(cls, value: str | None) -> str | None:
        if value is not None and len(value) > EMAIL_MAX:
            raise ValueError(f"email must be at most {EMAIL_MAX} characters")
        return value

    @field_validator("tags", mode="after", check_fields=False)
    @classmethod
    def _clean_tags(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else normalize_tags(value)


class BuyerCreate(_BuyerFieldRules):
    """Payload for creating a buyer (server assigns id, owner and timestamps)."""

    model_config = ConfigDict(extra="ignore")

    full_name: FullName = Field(..., description="Lead's full name (2-80 chars).")
    email: EmailStr | None = Field(default=None, description="Optional contact email.")
    phone: Phone = Field(..., description="10-15 digit phone number, digits only.")
    city: City = Field(..., description="City of interest.")
    property_type: PropertyType = Field(..., description="Kind of property wanted.")
    bhk: Bhk | None = Field(
        default=None,
        validate_default=True,
        description="Bedroom count; required for Apartment and Villa.",
    )
    purpose: Purpose = Field(..., description="Buy or Rent.")
    budget_min: NonNegativeInt | None = Field(default=None, description="Lower budget bound.")
    budget_max: NonNegativeInt | None = Field(default=None, description="Upper budget bound.")
    timeline: Timeline = Field(..., description="Purchase horizon.")
    source: Source = Field(..., description="Where the lead came from.")
    status: Status = Field(default=DEFAULT_STATUS, description="Pipeline status.")
    notes: Notes | None = Field(default=None, description="Free-form notes (max 1000 chars).")
    tags: list[str] = Field(
        default_factory=list,
        max_length=TAGS_MAX,
        description="Ordered list of labels (max 50).",
    )

    @field_validator("bhk")
    @classmethod
    def _bhk_required_for_residential(cls, value: str | None, info: ValidationInfo) -> str | None:
        if value is None and info.data.get("property_type") in BHK_REQUIRED_FOR:
            raise ValueError(BHK_REQUIRED_MESSAGE)
        return value

    @field_validator("budget_max")
    @classmethod
    def _budget_max_not_below_min(cls, value: int | None, info: ValidationInfo) -> int | None:
        budget_min = info.data.get("budget_min")
        if value is not None and budget_min is not None and value < budget_min:
            raise ValueError(BUDGET_ORDER_MESSAGE)
        return value


class BuyerUpdate(_BuyerFieldRules):
    """Partial update payload.

    Only keys present in the request body are applied. ``updatedAt`` (or
    ``updated_at``) carries the version the caller last saw and drives the
    optimistic concurrency check.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    full_name: FullName | None = None
    email: EmailStr | None = None
    phone: Phone | None = None
    city: City | None = None
    property_type: PropertyType | None = None
    bhk: Bhk | None = None
    purpose: Purpose | None = None
    budget_min: NonNegativeInt | None = None
    budget_max: NonNegativeInt | None = None
    timeline: Timeline | None = None
    source: Source | None = None
    status: Status | None = None
    notes: Notes | None = None
    tags: list[str] | None = Field(default=None, max_length=TAGS_MAX)

    expected_updated_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("updatedAt", "updated_at", "expected_updated_at"),
        description="Last updated_at value the caller observed.",
    )

    @field_validator(
        "full_name",
        "phone",
        "city",
        "property_type",
        "purpose",
        "timeline",
        "source",
        "status",
        "tags",
    )
    @classmethod
    def _required_fields_not_null(cls, value: Any) -> Any:
        # Runs only for keys present in the body; these columns cannot be cleared
        if value is None:
            raise ValueError("field cannot be null")
        return value

    @field_validator("bhk")
    @classmethod
    def _bhk_not_cleared_for_residential(cls, value: str | None, info: ValidationInfo) -> str | None:
        if value is None and info.data.get("property_type") in BHK_REQUIRED_FOR:
            raise ValueError(BHK_REQUIRED_MESSAGE)
        return value

    @field_validator("budget_max")
    @classmethod
    def _budget_max_not_below_min(cls, value: int | None, info: ValidationInfo) -> int | None:
        budget_min = info.data.get("budget_min")
        if value is not None and budget_min is not None and value < budget_min:
            raise ValueError(BUDGET_ORDER_MESSAGE)
        return value

    @field_validator("expected_updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def changes(self) -> dict[str, Any]:
        """Return only the buyer fields the caller actually sent."""
        return self.model_dump(exclude_unset=True, exclude={"expected_updated_at"})


SortField = Literal["updated_at", "created_at", "full_name"]


class BuyerSearchParams(BaseModel):
    """Query parameters for listing and exporting buyers."""

    model_config = ConfigDict(extra="ignore")

    page: int = Field(1, ge=1, description="1-based page number.")
    limit: int | None = Field(None, ge=1, le=100, description="Page size override.")
    search: str | None = Field(
        None,
        max_length=100,
        description="Substring matched against name, email, phone and notes.",
    )
    city: City | None = None
    property_type: PropertyType | None = None
    status: Status | None = None
    timeline: Timeline | None = None
    updated_from: datetime | None = Field(None, description="Inclusive lower bound on updated_at.")
    updated_to: datetime | None = Field(None, description="Inclusive upper bound on updated_at.")
    sort: SortField = "updated_at"
    order: Literal["asc", "desc"] = "desc"

    @field_validator("search", mode="before")
    @classmethod
    def _blank_search(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        return value.strip() if isinstance(value, str) else value

    @field_validator("updated_to", mode="before")
    @classmethod
    def _date_only_covers_whole_day(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value) == 10:
            return f"{value}T23:59:59.999999"
        return value

    @field_validator("updated_from", "updated_to")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class BuyerRead(BaseModel):
    """Buyer as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    full_name: str
    email: str | None = None
    phone: str
    city: City
    property_type: PropertyType
    bhk: Bhk | None = None
    purpose: Purpose
    budget_min: int | None = None
    budget_max: int | None = None
    timeline: Timeline
    source: Source
    status: Status
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class BuyerHistoryRead(BaseModel):
    """One audit entry: which fields changed, from what, to what."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    buyer_id: str
    changed_by: str
    changed_at: datetime
    diff: dict[str, dict[str, Any]]


class BuyerListResponse(BaseModel):
    rows: list[BuyerRead]
    total: int = Field(..., description="Total matching rows across all pages.")


class BuyerDetailResponse(BaseModel):
    buyer: BuyerRead
    history: list[BuyerHistoryRead]


class DeleteResponse(BaseModel):
    ok: bool = True


class TagsResponse(BaseModel):
    tags: list[str]


class ImportRequest(BaseModel):
    """JSON import body; each row is validated individually like a create payload."""

    rows: list[dict[str, Any]] = Field(default_factory=list)


class ImportResponse(BaseModel):
    inserted: int
