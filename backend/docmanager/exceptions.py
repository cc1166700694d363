# backend/docmanager/exceptions.py
from fastapi import status


class DocManagerError(Exception):
    """Base error for the document pipeline; carries the HTTP status it maps to"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(DocManagerError):
    """Malformed input, rejected before any side effect"""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DocManagerError):
    """Absent, or owned by somebody else. The two are never distinguished."""
    status_code = status.HTTP_404_NOT_FOUND


class StorageError(DocManagerError):
    """Byte persistence or deletion failure"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ConflictError(DocManagerError):
    """The document changed underneath an operation that depended on it"""
    status_code = status.HTTP_409_CONFLICT


class UnsupportedMediaError(DocManagerError):
    """OCR requested for a content type that cannot be OCR'd"""
    status_code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE


class ExtractionError(DocManagerError):
    """Rendering or OCR failure"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "DocManagerError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "ConflictError",
    "UnsupportedMediaError",
    "ExtractionError",
]
