# backend/docmanager/api/documents.py
from datetime import date
from typing import BinaryIO, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from .deps import get_current_user, get_pipeline
from ..database import get_db
from ..exceptions import ValidationError
from ..models.user import User
from ..schemas.document import (
    BatchProcessResponse,
    DocumentFields,
    DocumentResponse,
    OcrStatistics,
    OcrTextResponse,
)
from ..services.documents import DocumentPipeline
from ..utils.logging import api_logger

router = APIRouter(prefix="/api/documents", tags=["documents"])

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def iter_file(stream: BinaryIO):
    with stream:
        for chunk in iter(lambda: stream.read(DOWNLOAD_CHUNK_SIZE), b""):
            yield chunk


def document_fields(
        title: str = Form(...),
        number: str = Form(...),
        date: date = Form(...),
        description: Optional[str] = Form(None)
) -> DocumentFields:
    try:
        return DocumentFields(title=title, number=number, date=date, description=description)
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


@router.get("/ocr/stats", response_model=OcrStatistics)
async def get_ocr_statistics(
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    return await pipeline.get_statistics(db, user)


@router.post("/ocr/batch-process", response_model=BatchProcessResponse)
async def batch_process_ocr(
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    api_logger.info("Batch OCR requested", extra={"user_id": user.id})
    scheduled = await pipeline.batch_reprocess(db, user)
    return BatchProcessResponse(message="Batch OCR processing initiated", scheduled_count=scheduled)


@router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def create_document(
        fields: DocumentFields = Depends(document_fields),
        file: Optional[UploadFile] = File(None),
        process_ocr: bool = Form(True),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    api_logger.info("Creating new document", extra={
        "user_id": user.id,
        "number": fields.number,
        "file_name": file.filename if file else None
    })
    return await pipeline.create_document(db, fields, file, user, process_ocr)


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
        document_id: int,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    return await pipeline.get_document(db, document_id, user)


@router.put("/{document_id}", response_model=DocumentResponse)
async def update_document(
        document_id: int,
        fields: DocumentFields = Depends(document_fields),
        file: Optional[UploadFile] = File(None),
        process_ocr: bool = Form(True),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    api_logger.info("Updating document", extra={
        "document_id": document_id,
        "file_name": file.filename if file else None
    })
    return await pipeline.update_document(db, document_id, fields, file, user, process_ocr)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
        document_id: int,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    await pipeline.delete_document(db, document_id, user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{document_id}/upload", response_model=DocumentResponse)
async def upload_file(
        document_id: int,
        file: UploadFile = File(...),
        process_ocr: bool = Form(True),
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    api_logger.info("Uploading file", extra={
        "document_id": document_id,
        "file_name": file.filename,
        "content_type": file.content_type
    })
    return await pipeline.upload_file(db, document_id, file, user, process_ocr)


@router.get("/{document_id}/download")
async def download_file(
        document_id: int,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    attachment, stream = await pipeline.open_attachment(db, document_id, user)
    return StreamingResponse(
        iter_file(stream),
        media_type=attachment.content_type or "application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(attachment.original_filename)}"
        }
    )


@router.delete("/{document_id}/file", response_model=DocumentResponse)
async def delete_file(
        document_id: int,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    return await pipeline.delete_attachment(db, document_id, user)


@router.post("/{document_id}/ocr/process", response_model=DocumentResponse)
async def process_ocr_now(
        document_id: int,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    api_logger.info("On-demand OCR requested", extra={"document_id": document_id})
    return await pipeline.process_ocr_now(db, document_id, user)


@router.get("/{document_id}/ocr/text", response_model=OcrTextResponse)
async def get_ocr_text(
        document_id: int,
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
        pipeline: DocumentPipeline = Depends(get_pipeline)
):
    return await pipeline.get_ocr_text(db, document_id, user)
