# backend/docmanager/models/document.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    number = Column(String(100), nullable=False)
    date = Column(Date, nullable=False)
    description = Column(String(1000), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    # OCR state; the three columns only ever change together
    ocr_text = Column(Text, nullable=True)
    ocr_processed = Column(Boolean, nullable=False, default=False)
    ocr_processed_at = Column(DateTime(timezone=True), nullable=True)

    owner = relationship("User", back_populates="documents")
    attachment = relationship(
        "FileAttachment",
        back_populates="document",
        uselist=False,
        cascade="all, delete-orphan"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.ocr_processed is None:
            self.reset_ocr_status()

    @property
    def has_attachment(self) -> bool:
        return self.attachment is not None

    def mark_ocr_processed(self, text: str) -> None:
        """Store extracted text; flag and timestamp are set in the same step"""
        if text is None:
            raise ValueError("OCR text must not be None when marking a document processed")
        self.ocr_text = text
        self.ocr_processed = True
        self.ocr_processed_at = datetime.now(timezone.utc)

    def reset_ocr_status(self) -> None:
        self.ocr_text = None
        self.ocr_processed = False
        self.ocr_processed_at = None
