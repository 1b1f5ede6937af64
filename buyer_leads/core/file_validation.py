"""Upload validation for CSV imports."""
from __future__ import annotations

import logging

from fastapi import HTTPException, UploadFile

from buyer_leads.core.config import settings
from buyer_leads.core.errors import ValidationAppError

logger = logging.getLogger(__name__)

ALLOWED_CSV_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "application/vnd.ms-excel",
    "text/plain",
    "application/octet-stream",
}


async def read_upload_file_limited(file: UploadFile) -> bytes:
    """Read an uploaded file in chunks enforcing the max size limit.

    Uses file.size if available (multipart headers), falls back to chunked
    reading with enforcement.

    Args:
        file: FastAPI upload file instance.

    Returns:
        File content as bytes if within the allowed size limit.

    Raises:
        HTTPException: 413 if the file exceeds the configured size limit.
    """
    max_bytes = settings.app.max_upload_size_mb * 1024 * 1024

    # Check size from multipart headers if available
    file_size = getattr(file, "size", None)

    if file_size is not None and file_size > max_bytes:
        logger.warning(
            "file_validation.rejected_by_header",
            extra={"file_size": file_size, "max_bytes": max_bytes},
        )
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {settings.app.max_upload_size_mb}MB",
        )

    size = 0
    chunks: list[bytes] = []

    while True:
        chunk = await file.read(8192)
        if not chunk:
            break

        size += len(chunk)
        if size > max_bytes:
            logger.warning(
                "file_validation.rejected_by_chunked_read",
                extra={"size": size, "max_bytes": max_bytes},
            )
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum size: {settings.app.max_upload_size_mb}MB",
            )
        chunks.append(chunk)

    return b"".join(chunks)


def decode_csv_upload(file: UploadFile, data: bytes) -> str:
    """Check the upload looks like CSV and decode it as UTF-8.

    Raises:
        ValidationAppError: Wrong extension/content type, or undecodable bytes.
    """
    name = (file.filename or "").lower()
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    if not name.endswith(".csv") and content_type not in ALLOWED_CSV_CONTENT_TYPES:
        raise ValidationAppError(
            code="invalid_file_type",
            message="Upload a .csv file",
            details={"hint": "Use the same columns as the export"},
        )
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationAppError(
            code="invalid_encoding",
            message="CSV file must be UTF-8 encoded",
        ) from exc
