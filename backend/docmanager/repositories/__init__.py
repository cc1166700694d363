from .documents import DocumentRepository

__all__ = ["DocumentRepository"]
