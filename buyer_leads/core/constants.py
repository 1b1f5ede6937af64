"""Fixed vocabularies for buyer records.

Shared by the pydantic schemas (as ``Literal`` types) and the ORM models
(as CHECK constraint clauses) so both layers accept exactly the same values.
"""

from __future__ import annotations

from typing import Literal, get_args

City = Literal["Chandigarh", "Mohali", "Zirakpur", "Panchkula", "Other"]
PropertyType = Literal["Apartment", "Villa", "Plot", "Office", "Retail"]
Bhk = Literal["1", "2", "3", "4", "Studio"]
Purpose = Literal["Buy", "Rent"]
Timeline = Literal["0-3m", "3-6m", ">6m", "Exploring"]
Source = Literal["Website", "Referral", "Walk-in", "Call", "Other"]
Status = Literal[
    "New",
    "Qualified",
    "Contacted",
    "Visited",
    "Negotiation",
    "Converted",
    "Dropped",
]

CITIES: tuple[str, ...] = get_args(City)
PROPERTY_TYPES: tuple[str, ...] = get_args(PropertyType)
BHKS: tuple[str, ...] = get_args(Bhk)
PURPOSES: tuple[str, ...] = get_args(Purpose)
TIMELINES: tuple[str, ...] = get_args(Timeline)
SOURCES: tuple[str, ...] = get_args(Source)
STATUSES: tuple[str, ...] = get_args(Status)

DEFAULT_STATUS: Status = "New"

# Property types for which the bedroom count is mandatory
BHK_REQUIRED_FOR: frozenset[str] = frozenset({"Apartment", "Villa"})

PHONE_PATTERN = r"^[0-9]{10,15}$"
FULL_NAME_MIN = 2
FULL_NAME_MAX = 80
EMAIL_MAX = 255
NOTES_MAX = 1000
TAGS_MAX = 50


def in_clause(column: str, values: tuple[str, ...]) -> str:
    """Render ``column IN ('a','b',...)`` for a CHECK constraint."""
    quoted = ",".join("'" + v.replace("'", "''") + "'" for v in values)
    return f"{column} IN ({quoted})"
