from datetime import datetime

__all__ = [
    'PdfTrustError',
    'CertificateValidityError',
    'CertificateExpiredError',
    'CertificateNotYetValidError',
    'RevocationFetchError',
    'CRLFetchError',
    'OCSPFetchError',
    'PdfReadError',
    'SignatureContainerError',
    'ValidationPerformedError',
]


class PdfTrustError(Exception):
    def __init__(self, msg: str, *args):
        self.msg = msg
        super().__init__(msg, *args)


class CertificateValidityError(PdfTrustError):
    def __init__(self, msg: str, moment: datetime):
        self.moment = moment
        super().__init__(msg)


class CertificateExpiredError(CertificateValidityError):
    pass


class CertificateNotYetValidError(CertificateValidityError):
    pass


class RevocationFetchError(PdfTrustError):
    pass


class CRLFetchError(RevocationFetchError):
    pass


class OCSPFetchError(RevocationFetchError):
    pass


class PdfReadError(PdfTrustError):
    pass


class SignatureContainerError(PdfTrustError):
    pass


class ValidationPerformedError(PdfTrustError):
    pass
