"""
Revocation clients that go online using the ``requests`` library.

Only HTTP(S) locations are contacted. Transport problems are logged as
warnings and otherwise ignored: the validators treat "no data" the same
way regardless of why it is missing.
"""

import logging
import os
from typing import Dict, Iterable, List, Optional, Sequence

import requests
from asn1crypto import algos, core, ocsp, x509

from .. import errors
from ..util import load_der_or_pem
from .api import DEFAULT_USER_AGENT, CrlClient, OcspClient

__all__ = ['HttpClient', 'RequestsCrlClient', 'RequestsOcspClient']

logger = logging.getLogger(__name__)

CRL_CONTENT_TYPE = 'application/pkix-crl'
OCSP_REQUEST_CONTENT_TYPE = 'application/ocsp-request'
OCSP_RESPONSE_CONTENT_TYPE = 'application/ocsp-response'

SUPPORTED_CERTID_HASHES = ('sha1', 'sha256')


def _is_http(url: Optional[str]) -> bool:
    return bool(url) and url.lower().startswith(('http://', 'https://'))


class HttpClient:
    """
    Shared plumbing for the online clients.

    :param user_agent:
        Value of the ``User-Agent`` header.
    :param per_request_timeout:
        Timeout for a single request, in seconds.
    """

    def __init__(self, user_agent=None, per_request_timeout=10):
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.per_request_timeout = per_request_timeout

    def _request(self, method, url, *, accept, **kwargs) -> bytes:
        headers = {'Accept': accept, 'User-Agent': self.user_agent}
        headers.update(kwargs.pop('headers', {}))
        response = requests.request(
            method,
            url,
            headers=headers,
            timeout=self.per_request_timeout,
            **kwargs,
        )
        # anything but a plain 200 is useless to us
        if response.status_code != 200:
            raise requests.HTTPError(
                f"{method} {url} returned status {response.status_code}",
                response=response,
            )
        return response.content


class RequestsCrlClient(CrlClient, HttpClient):
    """
    Downloads CRLs from the HTTP distribution points of a certificate.
    Downloads are cached per URL for the lifetime of the client.
    """

    def __init__(self, user_agent=None, per_request_timeout=10):
        super().__init__(user_agent, per_request_timeout)
        self._downloaded: Dict[str, List[bytes]] = {}

    @staticmethod
    def distribution_point_urls(cert: x509.Certificate) -> List[str]:
        return [
            dp.url for dp in cert.crl_distribution_points if _is_http(dp.url)
        ]

    def download(self, url: str) -> List[bytes]:
        """
        Fetch the CRL(s) published at a URL. PEM payloads are unarmored.

        :raises errors.CRLFetchError:
            if the download fails.
        """
        if url in self._downloaded:
            return self._downloaded[url]
        logger.info("Downloading CRL from %s", url)
        try:
            content = self._request('GET', url, accept=CRL_CONTENT_TYPE)
        except requests.RequestException as e:
            raise errors.CRLFetchError(f"Could not download CRL from {url}") from e
        crls = self._downloaded[url] = load_der_or_pem(content)
        return crls

    def get_encoded(
        self, certificate: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> Iterable[bytes]:
        crls = []
        for url in self.distribution_point_urls(certificate):
            try:
                crls.extend(self.download(url))
            except errors.CRLFetchError as e:
                logger.warning(e.msg, exc_info=e)
        return crls


class RequestsOcspClient(OcspClient, HttpClient):
    """
    Queries the OCSP responders named in the authority information access
    extension of a certificate, in order, until one of them answers.

    :param certid_hash_algo:
        Digest used to build the ``CertID`` of the request, either
        ``sha1`` or ``sha256``.
    :param request_nonces:
        Whether to include a random nonce in each request. Responses that
        echo a different nonce are rejected.
    """

    def __init__(
        self,
        user_agent=None,
        per_request_timeout=10,
        certid_hash_algo='sha1',
        request_nonces=True,
    ):
        super().__init__(user_agent, per_request_timeout)
        if certid_hash_algo not in SUPPORTED_CERTID_HASHES:
            raise ValueError(
                f"Unsupported CertID hash {certid_hash_algo!r}, expected one "
                f"of {', '.join(SUPPORTED_CERTID_HASHES)}"
            )
        self.certid_hash_algo = certid_hash_algo
        self.request_nonces = request_nonces

    @staticmethod
    def responder_urls(cert: x509.Certificate) -> List[str]:
        return [url for url in cert.ocsp_urls if _is_http(url)]

    def build_request(
        self, cert: x509.Certificate, issuer: x509.Certificate
    ) -> ocsp.OCSPRequest:
        algo = self.certid_hash_algo
        cert_id = ocsp.CertId(
            {
                'hash_algorithm': algos.DigestAlgorithm({'algorithm': algo}),
                'issuer_name_hash': getattr(issuer.subject, algo),
                'issuer_key_hash': getattr(issuer.public_key, algo),
                'serial_number': cert.serial_number,
            }
        )
        tbs = ocsp.TBSRequest(
            {'request_list': [ocsp.Request({'req_cert': cert_id})]}
        )
        if self.request_nonces:
            tbs['request_extensions'] = [
                ocsp.TBSRequestExtension(
                    {
                        'extn_id': 'nonce',
                        'critical': False,
                        'extn_value': core.OctetString(os.urandom(16)),
                    }
                )
            ]
        return ocsp.OCSPRequest({'tbs_request': tbs})

    @staticmethod
    def check_response(
        content: bytes, request: ocsp.OCSPRequest, url: str
    ) -> ocsp.OCSPResponse:
        """
        Parse a responder's answer and match it against the request.

        :raises errors.OCSPFetchError:
            if the response is malformed, reports an error status, or
            carries a nonce other than the one we sent.
        """
        try:
            response = ocsp.OCSPResponse.load(content)
            status = response['response_status'].native
        except ValueError as e:
            raise errors.OCSPFetchError(
                f"Malformed OCSP response from {url}"
            ) from e
        if status != 'successful':
            raise errors.OCSPFetchError(
                f"OCSP responder at {url} answered with status '{status}'"
            )
        sent_nonce = request.nonce_value
        received_nonce = response.nonce_value
        # responders are allowed to ignore the nonce
        if (
            sent_nonce is not None
            and received_nonce is not None
            and sent_nonce.native != received_nonce.native
        ):
            raise errors.OCSPFetchError(
                f"OCSP response from {url} does not match the request nonce"
            )
        return response

    def query(self, url: str, request: ocsp.OCSPRequest) -> ocsp.OCSPResponse:
        logger.info("Querying OCSP responder at %s", url)
        try:
            content = self._request(
                'POST',
                url,
                accept=OCSP_RESPONSE_CONTENT_TYPE,
                headers={'Content-Type': OCSP_REQUEST_CONTENT_TYPE},
                data=request.dump(),
            )
        except requests.RequestException as e:
            raise errors.OCSPFetchError(
                f"Could not reach OCSP responder at {url}"
            ) from e
        return self.check_response(content, request, url)

    def get_encoded(
        self, certificate: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> Optional[bytes]:
        urls: Sequence[str] = self.responder_urls(certificate)
        if issuer is None or not urls:
            return None
        request = self.build_request(certificate, issuer)
        for url in urls:
            try:
                return self.query(url, request).dump()
            except errors.OCSPFetchError as e:
                logger.warning(e.msg, exc_info=e)
        logger.info(
            "No OCSP responder answered for %s",
            certificate.subject.human_friendly,
        )
        return None
