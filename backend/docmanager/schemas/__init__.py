from .document import (
    DocumentFields,
    DocumentResponse,
    OcrTextResponse,
    OcrStatistics,
    BatchProcessResponse
)

__all__ = [
    "DocumentFields", "DocumentResponse", "OcrTextResponse",
    "OcrStatistics", "BatchProcessResponse"
]
