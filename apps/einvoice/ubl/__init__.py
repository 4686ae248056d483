"""
UBL 2.1 document model and its XML wire format.
"""

from .document import DocumentType, DocumentValidationError, InvoiceDocument
from .serializer import deserialize, serialize, validate_document

__all__ = [
    "DocumentType",
    "DocumentValidationError",
    "InvoiceDocument",
    "deserialize",
    "serialize",
    "validate_document",
]
