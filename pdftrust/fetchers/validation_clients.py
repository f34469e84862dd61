"""
Clients holding revocation data that was supplied up front, e.g. taken from
a document security store or from a signature's revocation info archival
attribute.

Unlike other clients, these keep the parsed data together with the moment
at which the data is known to have existed and the time-based context in
which that moment should be interpreted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Iterable, List, Optional, TypeVar

from asn1crypto import crl, ocsp, x509

from ..context import TimeBasedContext
from .api import CrlClient, OcspClient

__all__ = [
    'RevocationDataWithContext',
    'ValidationCrlClient',
    'ValidationOcspClient',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RevocationDataWithContext(Generic[T]):
    data: T
    """
    The parsed revocation data.
    """

    trusted_generation_date: datetime
    """
    Moment at which the data is known to have existed.
    """

    time_based_context: TimeBasedContext
    """
    Time-based context in which the data should be validated.
    """


class ValidationCrlClient(CrlClient):
    def __init__(self):
        self._crls: List[RevocationDataWithContext[crl.CertificateList]] = []

    def add_crl(
        self,
        certificate_list: crl.CertificateList,
        trusted_generation_date: datetime,
        time_based_context: TimeBasedContext,
    ):
        """
        Register a CRL. If the same CRL is registered more than once, the
        earliest generation date wins.
        """
        encoded = certificate_list.dump()
        for ix, existing in enumerate(self._crls):
            if existing.data.dump() == encoded:
                if trusted_generation_date < existing.trusted_generation_date:
                    self._crls[ix] = RevocationDataWithContext(
                        existing.data,
                        trusted_generation_date,
                        time_based_context,
                    )
                return
        self._crls.append(
            RevocationDataWithContext(
                certificate_list, trusted_generation_date, time_based_context
            )
        )

    def get_crls(
        self,
    ) -> List[RevocationDataWithContext[crl.CertificateList]]:
        return list(self._crls)

    def get_encoded(
        self, certificate: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> Iterable[bytes]:
        return [
            entry.data.dump()
            for entry in self._crls
            if entry.data.issuer.hashable == certificate.issuer.hashable
        ]


class ValidationOcspClient(OcspClient):
    def __init__(self):
        self._responses: List[
            RevocationDataWithContext[ocsp.BasicOCSPResponse]
        ] = []

    def add_response(
        self,
        basic_response: ocsp.BasicOCSPResponse,
        trusted_generation_date: datetime,
        time_based_context: TimeBasedContext,
    ):
        """
        Register a basic OCSP response. If the same response is registered
        more than once, the earliest generation date wins.
        """
        encoded = basic_response.dump()
        for ix, existing in enumerate(self._responses):
            if existing.data.dump() == encoded:
                if trusted_generation_date < existing.trusted_generation_date:
                    self._responses[ix] = RevocationDataWithContext(
                        existing.data,
                        trusted_generation_date,
                        time_based_context,
                    )
                return
        self._responses.append(
            RevocationDataWithContext(
                basic_response, trusted_generation_date, time_based_context
            )
        )

    def get_responses(
        self,
    ) -> List[RevocationDataWithContext[ocsp.BasicOCSPResponse]]:
        return list(self._responses)

    def get_encoded(
        self, certificate: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> Optional[bytes]:
        for entry in self._responses:
            responses = entry.data['tbs_response_data']['responses']
            for single_response in responses:
                cert_id = single_response['cert_id']
                if cert_id['serial_number'].native == certificate.serial_number:
                    return ocsp.OCSPResponse(
                        {
                            'response_status': 'successful',
                            'response_bytes': {
                                'response_type': 'basic_ocsp_response',
                                'response': entry.data,
                            },
                        }
                    ).dump()
        return None
