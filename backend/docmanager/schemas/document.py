# backend/docmanager/schemas/document.py
from datetime import date as DateType, datetime
from typing import Optional

from pydantic import Field, field_validator

from .base import BaseSchema, TimestampMixin


class DocumentFields(BaseSchema):
    """Metadata submitted with create and update requests"""
    title: str = Field(max_length=255)
    number: str = Field(max_length=100)
    date: DateType
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("title", "number")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class DocumentResponse(BaseSchema, TimestampMixin):
    id: int
    title: str
    number: str
    date: DateType
    description: Optional[str] = None

    has_file: bool = False
    original_filename: Optional[str] = None
    content_type: Optional[str] = None
    file_size: Optional[int] = None
    uploaded_at: Optional[datetime] = None

    ocr_text: Optional[str] = None
    ocr_processed: bool = False
    ocr_processed_at: Optional[datetime] = None
    ocr_supported: bool = False


class OcrTextResponse(BaseSchema):
    document_id: int
    ocr_text: Optional[str] = None
    ocr_processed: bool
    has_ocr_text: bool = False


class OcrStatistics(BaseSchema):
    total_documents: int
    ocr_processed_count: int
    ocr_pending_count: int
    ocr_processed_percentage: float


class BatchProcessResponse(BaseSchema):
    message: str
    scheduled_count: int
