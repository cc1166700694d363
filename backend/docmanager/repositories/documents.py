# backend/docmanager/repositories/documents.py
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session, joinedload

from ..models.document import Document
from ..models.file_attachment import FileAttachment


class DocumentRepository:
    """Persistence for documents and their attachments over one session"""

    def __init__(self, db: Session):
        self.db = db

    def save(self, document: Document) -> Document:
        self.db.add(document)
        self.db.commit()
        self.db.refresh(document)
        return document

    def delete(self, document: Document) -> None:
        self.db.delete(document)
        self.db.commit()

    def find_by_id(self, document_id: int) -> Optional[Document]:
        return self.db.query(Document) \
            .options(joinedload(Document.attachment)) \
            .filter(Document.id == document_id) \
            .first()

    def find_owned(self, document_id: int, owner_id: int) -> Optional[Document]:
        return self.db.query(Document) \
            .options(joinedload(Document.attachment)) \
            .filter(Document.id == document_id, Document.owner_id == owner_id) \
            .first()

    def find_unprocessed_with_attachment(self, owner_id: int) -> List[Document]:
        return self.db.query(Document) \
            .options(joinedload(Document.attachment)) \
            .filter(
                Document.owner_id == owner_id,
                Document.ocr_processed.is_(False),
                Document.attachment.has()
            ) \
            .order_by(Document.id) \
            .all()

    def count_by_owner(self, owner_id: int) -> int:
        return self.db.query(func.count(Document.id)) \
            .filter(Document.owner_id == owner_id) \
            .scalar()

    def count_processed(self, owner_id: int) -> int:
        return self.db.query(func.count(Document.id)) \
            .filter(Document.owner_id == owner_id, Document.ocr_processed.is_(True)) \
            .scalar()

    def count_pending_with_attachment(self, owner_id: int) -> int:
        return self.db.query(func.count(Document.id)) \
            .filter(
                Document.owner_id == owner_id,
                Document.ocr_processed.is_(False),
                Document.attachment.has()
            ) \
            .scalar()

    def apply_ocr_result(self, document_id: int, stored_filename: str, text: str) -> bool:
        """Write the OCR columns only, and only while the extracted file is still attached.

        Returns False when the document is gone or its attachment changed.
        """
        result = self.db.execute(
            update(Document)
            .where(
                Document.id == document_id,
                Document.attachment.has(FileAttachment.stored_filename == stored_filename)
            )
            .values(
                ocr_text=text,
                ocr_processed=True,
                ocr_processed_at=datetime.now(timezone.utc)
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0
