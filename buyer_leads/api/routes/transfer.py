"""CSV export and bulk import endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from sqlalchemy.orm import Session

from buyer_leads.adapters.db.session import get_session
from buyer_leads.core.auth import CurrentUser, CurrentUserDep
from buyer_leads.core.config import settings
from buyer_leads.core.file_validation import decode_csv_upload, read_upload_file_limited
from buyer_leads.schemas.buyer import BuyerSearchParams, ImportRequest, ImportResponse
from buyer_leads.services.buyer_store import insert_many, list_buyers
from buyer_leads.services.csv_transfer import parse_csv, render_csv, validate_import_rows

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Import/Export"])

SessionDep = Annotated[Session, Depends(get_session)]

EXPORT_FILENAME = "buyers.csv"


@router.get(
    "/export",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}, "description": "CSV attachment"}},
)
def export_buyers(
    user: CurrentUserDep,
    session: SessionDep,
    params: Annotated[BuyerSearchParams, Query()],
) -> Response:
    """Download the filtered, sorted buyer list as CSV.

    Takes the same filters as ``GET /buyers``; pagination is ignored and the
    file holds at most ``APP_EXPORT_MAX_ROWS`` rows.
    """
    rows, total = list_buyers(
        session,
        user,
        params.model_copy(update={"page": 1}),
        limit=settings.app.export_max_rows,
    )
    if total > len(rows):
        logger.info("csv.export_truncated", extra={"total": total, "exported": len(rows)})

    return Response(
        content=render_csv(rows),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


def _import_rows(session: Session, user: CurrentUser, rows: list) -> ImportResponse:
    payloads = validate_import_rows(rows)
    return ImportResponse(inserted=insert_many(session, user, payloads))


def _import_csv_text(session: Session, user: CurrentUser, text: str) -> ImportResponse:
    rows = parse_csv(text)
    logger.info("csv.upload_parsed", extra={"rows": len(rows), "chars": len(text)})
    return _import_rows(session, user, rows)


@router.post("/import", response_model=ImportResponse)
def import_buyers(body: ImportRequest, user: CurrentUserDep, session: SessionDep) -> ImportResponse:
    """Insert every row or none of them.

    Each row is validated like a create payload. Issue paths start with the
    row index so the client can point at the failing line.
    """
    return _import_rows(session, user, body.rows)


@router.post("/import/csv", response_model=ImportResponse)
async def import_buyers_csv(
    user: CurrentUserDep,
    session: SessionDep,
    file: UploadFile = File(..., description="CSV file using the export column layout"),
) -> ImportResponse:
    """Upload a CSV file and import it with the same rules as ``POST /import``."""
    data = await read_upload_file_limited(file)
    text = decode_csv_upload(file, data)
    # Parsing, validation and the insert block on the session; keep them off the loop
    return await run_in_threadpool(_import_csv_text, session, user, text)
