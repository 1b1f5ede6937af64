"""CSV export rendering and import parsing/validation for buyers."""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from typing import Any, Iterable, Sequence

from pydantic import ValidationError

from buyer_leads.adapters.db.models import Buyer
from buyer_leads.core.config import settings
from buyer_leads.core.errors import ErrorIssue, ValidationAppError, to_issues
from buyer_leads.schemas.buyer import BuyerCreate

logger = logging.getLogger(__name__)

TAG_SEPARATOR = ";"

EXPORT_COLUMNS: tuple[str, ...] = (
    "id",
    "full_name",
    "email",
    "phone",
    "city",
    "property_type",
    "bhk",
    "purpose",
    "budget_min",
    "budget_max",
    "timeline",
    "source",
    "status",
    "notes",
    "tags",
    "owner_id",
    "created_at",
    "updated_at",
)

# Columns a CSV upload may set; everything else (id, owner, timestamps) is server-owned
IMPORT_COLUMNS: frozenset[str] = frozenset(BuyerCreate.model_fields)
_INT_COLUMNS = {"budget_min", "budget_max"}


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return TAG_SEPARATOR.join(str(v) for v in value)
    return str(value)


def render_csv(buyers: Iterable[Buyer]) -> str:
    """Render buyers as CSV text with a snake_case header row.

    Fields containing commas, quotes or line breaks are wrapped in double quotes
    with embedded quotes doubled. The header is written even when there are no rows.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(EXPORT_COLUMNS)
    count = 0
    for buyer in buyers:
        writer.writerow([_cell(getattr(buyer, column)) for column in EXPORT_COLUMNS])
        count += 1
    logger.info("csv.exported", extra={"rows": count})
    return buffer.getvalue()


def _coerce(column: str, raw: str) -> Any:
    value = raw.strip()
    if column == "tags":
        return [t for t in (part.strip() for part in value.split(TAG_SEPARATOR)) if t]
    if column in _INT_COLUMNS and value.lstrip("-").isdigit():
        return int(value)
    # Anything else is passed through so the schema reports it field by field
    return value


def parse_csv(text: str) -> list[dict[str, Any]]:
    """Parse CSV text (export layout) into import row dicts.

    Unknown and server-owned columns are dropped, empty cells are treated as
    absent, budgets become ints and tags are split on ``;``. Blank lines are skipped.
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    rows: list[dict[str, Any]] = []
    for record in reader:
        row = {
            column.strip(): _coerce(column.strip(), raw)
            for column, raw in record.items()
            if column and column.strip() in IMPORT_COLUMNS and raw is not None and raw.strip()
        }
        if row:
            rows.append(row)
    return rows


def validate_import_rows(
    rows: Sequence[Any],
    *,
    max_rows: int | None = None,
) -> list[BuyerCreate]:
    """Validate every row like a create payload.

    The row cap is checked first so oversized imports never reach validation
    or the store.

    Raises:
        ValidationAppError: ``too_many_rows`` when over the cap, otherwise
            ``validation_failed`` with issues whose path starts with the row index.
    """
    cap = max_rows or settings.app.import_max_rows
    if len(rows) > cap:
        raise ValidationAppError(
            code="too_many_rows",
            message=f"Max {cap} rows allowed per import",
            details={"max_rows": cap, "actual_rows": len(rows)},
        )

    valid: list[BuyerCreate] = []
    issues: list[ErrorIssue] = []
    for index, row in enumerate(rows):
        try:
            valid.append(BuyerCreate.model_validate(row))
        except ValidationError as exc:
            for issue in to_issues(exc.errors()):
                issues.append({**issue, "path": [index, *issue["path"]]})

    if issues:
        logger.info(
            "csv.import_rejected",
            extra={"rows": len(rows), "invalid_rows": len({i["path"][0] for i in issues})},
        )
        raise ValidationAppError(
            code="validation_failed",
            message="Validation failed",
            details={"issues": issues},
        )
    return valid
