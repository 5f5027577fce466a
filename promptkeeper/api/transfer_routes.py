import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session as DbSession

from promptkeeper import schemas
from promptkeeper.database import get_db
from promptkeeper.errors import InvalidInputError
from promptkeeper.services import ImportService, export_projects
from promptkeeper.services.import_service import detect_format

from .dependencies import get_import_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/export", tags=["Import / Export"], summary="Export projects", description="Serializes the selected projects as a JSON, CSV or YAML file download.")
def export_route(export_request: schemas.ExportRequest, db: DbSession = Depends(get_db)):
    payload = export_projects(db, export_request.project_ids, export_request.format)
    return Response(
        content=payload.content,
        media_type=payload.media_type,
        headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
    )


@router.post("/import", response_model=schemas.ImportReport, tags=["Import / Export"], summary="Import projects", description="Merges a previously exported JSON or CSV file into the store. The format is taken from the form field, or guessed from the file name.")
def import_route(
    file: UploadFile = File(...),
    format: Optional[str] = Form(None),
    db: DbSession = Depends(get_db),
    import_service: ImportService = Depends(get_import_service),
):
    fmt = (format or "").strip().lower() or detect_format(file.filename)
    payload = file.file.read()
    if not payload:
        raise InvalidInputError("Uploaded file is empty")
    logger.info(f"Importing {file.filename!r} ({len(payload)} bytes)")
    return import_service.import_payload(db, payload, fmt)
