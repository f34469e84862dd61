from .diff_analysis import AccessPermissions, DocumentRevisionsValidator
from .document import DocumentSecurityStore, EmbeddedSignature, SignedDocument
from .validator import SignatureValidator

__all__ = [
    'AccessPermissions',
    'DocumentRevisionsValidator',
    'DocumentSecurityStore',
    'EmbeddedSignature',
    'SignedDocument',
    'SignatureValidator',
]
