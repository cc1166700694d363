from .documents import document_pipeline, DocumentPipeline
from .extractor import ContentExtractor, ContentKind
from .storage import LocalStorageBackend

__all__ = ["document_pipeline", "DocumentPipeline", "ContentExtractor", "ContentKind", "LocalStorageBackend"]
