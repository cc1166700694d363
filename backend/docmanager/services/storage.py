# backend/docmanager/services/storage.py
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional, Protocol
from uuid import uuid4

from ..config import settings
from ..exceptions import NotFoundError, StorageError, ValidationError
from ..utils.files import (
    clean_filename,
    copy_stream_to_file,
    get_file_extension,
    get_relative_path,
    sanitize_token,
)
from ..utils.logging import service_logger


class StoredFileHandle(Protocol):
    """Anything that knows where its bytes live (FileAttachment, StoredFile)"""
    file_path: str
    original_filename: str


@dataclass
class StoredFile:
    original_filename: str
    stored_filename: str
    content_type: Optional[str]
    file_size: int
    file_path: str


class LocalStorageBackend:
    """Stores uploaded bytes on the local filesystem, one directory per owner"""

    def __init__(self, storage_root: Path | None = None, uploads_root: Path | None = None):
        self._storage_root = Path(storage_root) if storage_root else None
        self._uploads_root = Path(uploads_root) if uploads_root else None

    @property
    def storage_root(self) -> Path:
        return self._storage_root or settings.STORAGE_PATH

    @property
    def uploads_root(self) -> Path:
        if self._uploads_root:
            return self._uploads_root
        if self._storage_root:
            return self._storage_root / "uploads"
        return settings.UPLOADS_PATH

    @staticmethod
    def generate_filename(document_number: str | None, document_id: int | None, extension: str) -> str:
        """<number>_<id or "new">_<timestamp>_<random suffix><extension>"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        suffix = uuid4().hex[:8]
        return (
            f"{sanitize_token(document_number, placeholder='document')}_"
            f"{sanitize_token(document_id)}_{timestamp}_{suffix}{extension}"
        )

    def store(
            self,
            source: BinaryIO,
            original_filename: str | None,
            content_type: str | None,
            owner_id: int,
            document_number: str | None,
            document_id: int | None = None
    ) -> StoredFile:
        try:
            original_filename = clean_filename(original_filename)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        stored_filename = self.generate_filename(
            document_number, document_id, get_file_extension(original_filename)
        )
        target = self.uploads_root / str(owner_id) / stored_filename

        with service_logger.timed("File stored successfully", extra={
            "owner_id": owner_id,
            "stored_filename": stored_filename
        }) as timing:
            try:
                size = copy_stream_to_file(source, target)
            except OSError as e:
                service_logger.error("Failed to store uploaded file", extra={
                    "original_filename": original_filename,
                    "target": str(target),
                    "error": str(e)
                })
                target.unlink(missing_ok=True)
                raise StorageError(f"Could not store file {original_filename}") from e
            timing["file_size"] = size

        return StoredFile(
            original_filename=original_filename,
            stored_filename=stored_filename,
            content_type=content_type,
            file_size=size,
            file_path=get_relative_path(target, self.storage_root),
        )

    def absolute_path(self, handle: StoredFileHandle) -> Path:
        path = Path(handle.file_path)
        return path if path.is_absolute() else self.storage_root / path

    def delete(self, handle: StoredFileHandle) -> None:
        """Delete stored bytes. Already missing files are not an error."""
        path = self.absolute_path(handle)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            service_logger.error("Error deleting stored file", extra={
                "file_path": str(path),
                "error": str(e)
            })
            raise StorageError(f"Could not delete file {handle.original_filename}") from e
        service_logger.info(f"Deleted stored file: {path}")

    def resolve_path(self, handle: StoredFileHandle) -> Path:
        path = self.absolute_path(handle)
        if not path.is_file():
            raise NotFoundError(f"File not found: {handle.original_filename}")
        return path

    def load(self, handle: StoredFileHandle) -> BinaryIO:
        """Open the stored bytes for reading; the caller closes the stream"""
        path = self.resolve_path(handle)
        try:
            return path.open("rb")
        except OSError as e:
            raise StorageError(f"Could not read file {handle.original_filename}") from e
