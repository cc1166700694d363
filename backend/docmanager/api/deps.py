# backend/docmanager/api/deps.py
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.user import User
from ..services.documents import DocumentPipeline, document_pipeline
from ..utils.logging import api_logger


def get_current_user(
        x_user_id: Optional[int] = Header(default=None),
        db: Session = Depends(get_db)
) -> User:
    """Resolve the caller from the X-User-Id header set by the auth gateway"""
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity")

    user = db.query(User).filter(User.id == x_user_id).first()
    if not user:
        api_logger.warning("Unknown user identity", extra={"user_id": x_user_id})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return user


def get_pipeline() -> DocumentPipeline:
    return document_pipeline
