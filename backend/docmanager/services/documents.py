# backend/docmanager/services/documents.py
import asyncio
import time
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Optional, Protocol, Tuple, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from .extractor import ContentExtractor
from .ocr import OcrEngineConfig, PyMuPdfRenderer, TesseractEngine
from .ocr_workers import OcrJob, OcrJobStatus, OcrWorkerPool
from .storage import LocalStorageBackend, StoredFile, StoredFileHandle
from ..config import settings
from ..database import SessionLocal
from ..exceptions import (
    ConflictError,
    ExtractionError,
    NotFoundError,
    StorageError,
    UnsupportedMediaError,
    ValidationError,
)
from ..models import Document, FileAttachment, User
from ..repositories import DocumentRepository
from ..schemas.document import (
    DocumentFields,
    DocumentResponse,
    OcrStatistics,
    OcrTextResponse,
)
from ..utils.logging import service_logger


class Upload(Protocol):
    """The parts of an uploaded file the pipeline needs (fastapi.UploadFile fits)"""
    filename: Optional[str]
    content_type: Optional[str]
    file: BinaryIO


def has_content(upload: Optional[Upload]) -> bool:
    if upload is None or not upload.filename:
        return False
    return getattr(upload, "size", None) != 0


class DocumentPipeline:
    """Coordinates attachment storage, OCR state transitions and OCR dispatch"""

    def __init__(
            self,
            storage: LocalStorageBackend,
            extractor: ContentExtractor,
            session_factory: Callable[[], Session],
            worker_pool: Optional[OcrWorkerPool] = None
    ):
        self.storage = storage
        self.extractor = extractor
        self.session_factory = session_factory
        self.worker_pool = worker_pool or OcrWorkerPool(
            self.run_ocr_job,
            workers=settings.OCR_WORKERS,
            queue_size=settings.OCR_QUEUE_SIZE,
            job_timeout=settings.OCR_JOB_TIMEOUT_SECONDS
        )

    def to_response(self, document: Document) -> DocumentResponse:
        attachment = document.attachment
        has_file = attachment is not None
        return DocumentResponse(
            id=document.id,
            title=document.title,
            number=document.number,
            date=document.date,
            description=document.description,
            created_at=document.created_at,
            updated_at=document.updated_at,
            has_file=has_file,
            original_filename=attachment.original_filename if has_file else None,
            content_type=attachment.content_type if has_file else None,
            file_size=attachment.file_size if has_file else None,
            uploaded_at=attachment.uploaded_at if has_file else None,
            ocr_text=document.ocr_text,
            ocr_processed=bool(document.ocr_processed),
            ocr_processed_at=document.ocr_processed_at,
            ocr_supported=has_file and self.extractor.is_supported(attachment.content_type),
        )

    # Helpers

    @staticmethod
    def _validate_fields(fields: Union[DocumentFields, dict]) -> DocumentFields:
        if isinstance(fields, DocumentFields):
            return fields
        try:
            return DocumentFields.model_validate(fields)
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e

    def _get_owned_document(self, db: Session, document_id: int, owner: User) -> Document:
        document = DocumentRepository(db).find_owned(document_id, owner.id)
        if document is None:
            service_logger.warning("Document not found", extra={
                "document_id": document_id,
                "owner_id": owner.id
            })
            raise NotFoundError("Document not found")
        return document

    def _store_upload(self, upload: Upload, owner: User, document: Document) -> FileAttachment:
        stored = self.storage.store(
            upload.file,
            upload.filename,
            upload.content_type,
            owner.id,
            document.number,
            document.id
        )
        return FileAttachment(
            original_filename=stored.original_filename,
            stored_filename=stored.stored_filename,
            content_type=stored.content_type,
            file_size=stored.file_size,
            file_path=stored.file_path,
            uploaded_at=datetime.now(timezone.utc)
        )

    def _release_bytes(self, attachment: StoredFileHandle, document_id: Optional[int]) -> None:
        """Best-effort removal of stored bytes; failures are logged only"""
        try:
            self.storage.delete(attachment)
        except StorageError as e:
            service_logger.error(f"Error deleting file for document {document_id}: {e.detail}", extra={
                "document_id": document_id,
                "file_path": attachment.file_path
            })

    @staticmethod
    def _swap_attachment(db: Session, document: Document, new_attachment: FileAttachment) -> Optional[StoredFile]:
        """Attach the new file and reset OCR state.

        Returns a handle to the previous bytes; they are released by the
        caller once the change is committed.
        """
        previous = document.attachment
        released = None
        if previous is not None:
            released = StoredFile(
                original_filename=previous.original_filename,
                stored_filename=previous.stored_filename,
                content_type=previous.content_type,
                file_size=previous.file_size,
                file_path=previous.file_path
            )
            document.attachment = None
            # The orphaned row must be gone before the replacement is inserted
            db.flush()

        document.attachment = new_attachment
        document.reset_ocr_status()
        return released

    # Pipeline operations

    async def create_document(
            self,
            db: Session,
            fields: Union[DocumentFields, dict],
            upload: Optional[Upload],
            owner: User,
            auto_process_ocr: bool = True
    ) -> DocumentResponse:
        fields = self._validate_fields(fields)
        start_time = time.perf_counter()
        service_logger.info("Creating document", extra={
            "owner_id": owner.id,
            "number": fields.number,
            "has_file": has_content(upload)
        })

        document = Document(owner_id=owner.id, **fields.model_dump())
        if has_content(upload):
            # Bytes must be durable before the record is
            document.attachment = self._store_upload(upload, owner, document)

        try:
            document = DocumentRepository(db).save(document)
        except Exception as e:
            db.rollback()
            service_logger.error("Error creating document", extra={
                "owner_id": owner.id,
                "error": str(e)
            })
            if document.attachment is not None:
                self._release_bytes(document.attachment, None)
            raise

        if auto_process_ocr and document.has_attachment:
            self.schedule_ocr_async(document)

        service_logger.info("Successfully created document", extra={
            "document_id": document.id,
            "owner_id": owner.id,
            "execution_time_ms": round((time.perf_counter() - start_time) * 1000, 2)
        })
        return self.to_response(document)

    async def update_document(
            self,
            db: Session,
            document_id: int,
            fields: Union[DocumentFields, dict],
            upload: Optional[Upload],
            owner: User,
            auto_process_ocr: bool = True
    ) -> DocumentResponse:
        fields = self._validate_fields(fields)
        document = self._get_owned_document(db, document_id, owner)
        service_logger.info("Updating document", extra={
            "document_id": document_id,
            "replaces_file": has_content(upload)
        })

        new_attachment = None
        previous = None
        try:
            for field, value in fields.model_dump().items():
                setattr(document, field, value)

            if has_content(upload):
                new_attachment = self._store_upload(upload, owner, document)
                previous = self._swap_attachment(db, document, new_attachment)

            document = DocumentRepository(db).save(document)
        except Exception as e:
            db.rollback()
            service_logger.error("Error updating document", extra={
                "document_id": document_id,
                "error": str(e)
            })
            if new_attachment is not None:
                self._release_bytes(new_attachment, document_id)
            raise

        if previous is not None:
            self._release_bytes(previous, document_id)

        if (
                auto_process_ocr
                and document.has_attachment
                and self.extractor.is_supported(document.attachment.content_type)
                and not document.ocr_processed
        ):
            self.schedule_ocr_async(document)

        return self.to_response(document)

    async def upload_file(
            self,
            db: Session,
            document_id: int,
            upload: Upload,
            owner: User,
            auto_process_ocr: bool = True
    ) -> DocumentResponse:
        if not has_content(upload):
            raise ValidationError("No file provided")
        document = self._get_owned_document(db, document_id, owner)
        service_logger.info("Uploading file for document", extra={
            "document_id": document_id,
            "original_filename": upload.filename,
            "content_type": upload.content_type
        })

        new_attachment = None
        try:
            new_attachment = self._store_upload(upload, owner, document)
            previous = self._swap_attachment(db, document, new_attachment)
            document = DocumentRepository(db).save(document)
        except Exception as e:
            db.rollback()
            service_logger.error("Error uploading file", extra={
                "document_id": document_id,
                "error": str(e)
            })
            if new_attachment is not None:
                self._release_bytes(new_attachment, document_id)
            raise

        if previous is not None:
            self._release_bytes(previous, document_id)

        if auto_process_ocr:
            self.schedule_ocr_async(document)

        return self.to_response(document)

    async def delete_document(self, db: Session, document_id: int, owner: User) -> None:
        document = self._get_owned_document(db, document_id, owner)
        service_logger.info("Deleting document", extra={"document_id": document_id})

        if document.attachment is not None:
            self._release_bytes(document.attachment, document_id)

        try:
            DocumentRepository(db).delete(document)
        except Exception:
            db.rollback()
            raise
        service_logger.info(f"Successfully deleted document {document_id}")

    async def delete_attachment(self, db: Session, document_id: int, owner: User) -> DocumentResponse:
        document = self._get_owned_document(db, document_id, owner)

        if document.attachment is not None:
            self._release_bytes(document.attachment, document_id)
            document.attachment = None
            document.reset_ocr_status()
            service_logger.info("Removed attachment from document", extra={
                "document_id": document_id
            })

        try:
            document = DocumentRepository(db).save(document)
        except Exception:
            db.rollback()
            raise
        return self.to_response(document)

    async def process_ocr_now(self, db: Session, document_id: int, owner: User) -> DocumentResponse:
        """Run OCR inline for one document and return the updated projection.

        The result is written only if the extracted file is still the
        document's attachment when extraction finishes; otherwise
        ConflictError is raised and the document is left as it is.
        """
        document = self._get_owned_document(db, document_id, owner)
        attachment = document.attachment

        if attachment is None:
            raise UnsupportedMediaError("No file attached to document")
        if not self.extractor.is_supported(attachment.content_type):
            raise UnsupportedMediaError(
                f"OCR not supported for this file type: {attachment.content_type}"
            )

        path = self.storage.resolve_path(attachment)
        content_type = attachment.content_type
        stored_filename = attachment.stored_filename
        # No transaction stays open while OCR runs
        db.rollback()

        with service_logger.timed("OCR processed on demand", extra={"document_id": document_id}) as timing:
            try:
                text = await asyncio.to_thread(self.extractor.extract, path, content_type)
            except ExtractionError as e:
                service_logger.error(f"Error processing OCR for document {document_id}", extra={
                    "document_id": document_id,
                    "error": e.detail
                }, exc_info=True)
                raise

            if text is None:
                raise ExtractionError("Failed to process OCR: no text could be extracted")

            repository = DocumentRepository(db)
            try:
                applied = repository.apply_ocr_result(document_id, stored_filename, text)
            except Exception:
                db.rollback()
                raise
            if not applied:
                service_logger.warning("Discarding OCR result, attachment changed while processing", extra={
                    "document_id": document_id
                })
                raise ConflictError("Attachment changed while OCR was running; result discarded")
            timing["text_length"] = len(text)

        db.refresh(document)
        return self.to_response(document)

    def schedule_ocr_async(self, document: Document) -> bool:
        """Queue background OCR for the document's current attachment"""
        attachment = document.attachment
        if attachment is None or not self.extractor.is_supported(attachment.content_type):
            service_logger.debug("Document not eligible for OCR", extra={
                "document_id": document.id,
                "content_type": attachment.content_type if attachment else None
            })
            return False
        return self.worker_pool.submit(OcrJob(document.id, attachment.stored_filename))

    def run_ocr_job(self, job: OcrJob) -> OcrJobStatus:
        """Worker-thread side of scheduled OCR; uses its own session"""
        db = self.session_factory()
        try:
            repository = DocumentRepository(db)
            document = repository.find_by_id(job.document_id)
            if document is None:
                service_logger.info("Document deleted before OCR ran", extra={
                    "document_id": job.document_id
                })
                return OcrJobStatus.SKIPPED

            attachment = document.attachment
            if attachment is None or attachment.stored_filename != job.stored_filename:
                service_logger.info("Attachment changed before OCR ran", extra={
                    "document_id": job.document_id
                })
                return OcrJobStatus.SKIPPED
            if document.ocr_processed:
                return OcrJobStatus.SKIPPED
            if not self.extractor.is_supported(attachment.content_type):
                return OcrJobStatus.SKIPPED

            path = self.storage.resolve_path(attachment)
            content_type = attachment.content_type
            # No transaction stays open while OCR runs
            db.rollback()

            text = self.extractor.extract(path, content_type)
            if text is None:
                service_logger.warning("No text extracted, document left unprocessed", extra={
                    "document_id": job.document_id
                })
                return OcrJobStatus.SKIPPED

            if not repository.apply_ocr_result(job.document_id, job.stored_filename, text):
                service_logger.info("Discarding OCR result, attachment changed while processing", extra={
                    "document_id": job.document_id
                })
                return OcrJobStatus.SKIPPED

            service_logger.info(
                f"OCR processed asynchronously for document {job.document_id}: {len(text)} characters extracted"
            )
            return OcrJobStatus.PROCESSED
        finally:
            db.close()

    async def batch_reprocess(self, db: Session, owner: User) -> int:
        """Queue OCR for every attached, unprocessed document of the owner"""
        pending = DocumentRepository(db).find_unprocessed_with_attachment(owner.id)

        scheduled = 0
        for document in pending:
            try:
                if self.schedule_ocr_async(document):
                    scheduled += 1
            except Exception as e:
                service_logger.error(f"Error scheduling OCR for document {document.id}: {e}", exc_info=True)

        service_logger.info(f"Batch OCR processing initiated for {scheduled} documents", extra={
            "owner_id": owner.id,
            "pending_documents": len(pending)
        })
        return scheduled

    async def get_statistics(self, db: Session, owner: User) -> OcrStatistics:
        repository = DocumentRepository(db)
        total = repository.count_by_owner(owner.id)
        processed = repository.count_processed(owner.id)
        pending = repository.count_pending_with_attachment(owner.id)

        return OcrStatistics(
            total_documents=total,
            ocr_processed_count=processed,
            ocr_pending_count=pending,
            ocr_processed_percentage=(processed / total * 100) if total > 0 else 0.0
        )

    async def get_document(self, db: Session, document_id: int, owner: User) -> DocumentResponse:
        return self.to_response(self._get_owned_document(db, document_id, owner))

    async def get_ocr_text(self, db: Session, document_id: int, owner: User) -> OcrTextResponse:
        document = self._get_owned_document(db, document_id, owner)
        return OcrTextResponse(
            document_id=document.id,
            ocr_text=document.ocr_text,
            ocr_processed=bool(document.ocr_processed),
            has_ocr_text=bool(document.ocr_text and document.ocr_text.strip())
        )

    async def open_attachment(self, db: Session, document_id: int, owner: User) -> Tuple[FileAttachment, BinaryIO]:
        document = self._get_owned_document(db, document_id, owner)
        if document.attachment is None:
            raise NotFoundError("No file attached to document")
        return document.attachment, self.storage.load(document.attachment)

    def shutdown(self) -> None:
        self.worker_pool.shutdown()


storage_backend = LocalStorageBackend()
content_extractor = ContentExtractor(
    TesseractEngine(OcrEngineConfig.from_settings(settings)),
    PyMuPdfRenderer(),
    dpi=settings.OCR_PDF_DPI
)
document_pipeline = DocumentPipeline(storage_backend, content_extractor, SessionLocal)
