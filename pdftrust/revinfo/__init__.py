from .validate_crl import CRLValidator
from .validate_ocsp import OCSPValidator
from .validator import RevocationDataValidator

__all__ = ['CRLValidator', 'OCSPValidator', 'RevocationDataValidator']
