"""
Client interfaces through which revocation data is obtained.
"""

import abc
from typing import Iterable, Optional

from asn1crypto import x509

from ..version import __version__

__all__ = ['CrlClient', 'OcspClient', 'DEFAULT_USER_AGENT']

DEFAULT_USER_AGENT = 'pdftrust %s' % __version__


class CrlClient(abc.ABC):
    """
    Source of DER-encoded CRLs.
    """

    @abc.abstractmethod
    def get_encoded(
        self, certificate: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> Iterable[bytes]:
        """
        Retrieve CRLs that might apply to a certificate.

        :param certificate:
            The certificate whose revocation status is of interest.
        :param issuer:
            The issuer of that certificate, if known.
        :return:
            An iterable of DER-encoded CRLs, possibly empty.
        """
        raise NotImplementedError


class OcspClient(abc.ABC):
    """
    Source of DER-encoded OCSP responses.
    """

    @abc.abstractmethod
    def get_encoded(
        self, certificate: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> Optional[bytes]:
        """
        Retrieve an OCSP response for a certificate.

        :param certificate:
            The certificate whose revocation status is of interest.
        :param issuer:
            The issuer of that certificate, if known.
        :return:
            A DER-encoded ``OCSPResponse``, or ``None``.
        """
        raise NotImplementedError
