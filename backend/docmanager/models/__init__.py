from ..database import Base
from .user import User
from .document import Document
from .file_attachment import FileAttachment

__all__ = [
    "Base",
    "User",
    "Document",
    "FileAttachment"
]
