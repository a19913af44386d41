"""
CSV import API routes for bulk importing users.

The uploaded file is parsed into rows and handed to the user import pipeline, which
processes each row in its own SAVEPOINT and reports per-row errors.
"""
from fastapi import APIRouter, Depends, UploadFile, HTTPException, File
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.admin_users.privileges import GrantorContext
from app.features.admin_users.schemas import UserImportResult
from app.features.admin_users.service import import_users
from app.features.csv_import.schemas import CSVColumnMapping
from app.features.csv_import.utils import decode_csv, parse_user_rows
from app.features.users.dependencies import require_admin_grantor
from app.utils import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("/csv", response_model=UserImportResult)
async def import_users_csv(
    file: UploadFile = File(..., description="CSV file containing users"),
    db: AsyncSession = Depends(get_db),
    grantor: GrantorContext = Depends(require_admin_grantor)
):
    """
    Import users from CSV file.

    The CSV file should contain columns matching the CSVColumnMapping schema.
    At minimum each row needs ``email`` and ``name``. The organization is given by
    ``organizationId``, or ``organizationName`` + ``organizationSlug``, or an
    unambiguous ``organizationName``.

    Returns per-row results; failing rows do not affect the others.
    """
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="File must be a CSV (.csv)")

    content = await file.read()
    try:
        text_content = decode_csv(content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    rows = parse_user_rows(text_content)
    if not rows:
        raise HTTPException(status_code=400, detail="CSV file contains no rows")

    logger.info(f"CSV import of {len(rows)} users from {file.filename}")
    return await import_users(db, rows, grantor)


@router.get("/column-mapping", response_model=CSVColumnMapping)
async def get_column_mapping():
    """
    Get the expected CSV column mapping.

    Use this endpoint to see what columns are expected in the CSV file
    and their corresponding field names in the system.
    """
    return CSVColumnMapping()
