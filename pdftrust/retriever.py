import logging
from typing import Iterable, List, Optional

from asn1crypto import crl, ocsp, x509

from .registry import CertificateStore, TrustedCertificatesStore
from .util import (
    cert_fingerprint,
    signature_verifies,
    verify_certificate_signature,
    verify_crl_signature,
)

__all__ = ['IssuingCertificateRetriever']

logger = logging.getLogger(__name__)

MAX_CHAIN_LENGTH = 100


class IssuingCertificateRetriever:
    """
    Resolves issuer certificates from a pool of known certificates and from
    the trusted certificates store.

    Known certificates are not trusted; they only serve to complete chains.
    """

    def __init__(self, trusted_store: Optional[TrustedCertificatesStore] = None):
        self._trusted_store = trusted_store or TrustedCertificatesStore()
        self._known = CertificateStore()

    def get_trusted_certificates_store(self) -> TrustedCertificatesStore:
        return self._trusted_store

    def set_trusted_certificates(self, certs: Iterable[x509.Certificate]):
        """
        Replace the generally trusted certificates.
        Other trust classifications are kept.
        """
        old_store = self._trusted_store
        new_store = TrustedCertificatesStore()
        new_store.add_generally_trusted_certificates(certs)
        new_store.add_ca_trusted_certificates(old_store.ca_trusted)
        new_store.add_ocsp_trusted_certificates(old_store.ocsp_trusted)
        new_store.add_crl_trusted_certificates(old_store.crl_trusted)
        new_store.add_timestamp_trusted_certificates(
            old_store.timestamp_trusted
        )
        self._trusted_store = new_store

    def add_trusted_certificates(self, certs: Iterable[x509.Certificate]):
        self._trusted_store.add_generally_trusted_certificates(certs)

    def add_known_certificates(self, certs: Iterable[x509.Certificate]):
        added = self._known.register_multiple(certs)
        if added:
            logger.debug(
                "Known certificate pool now holds %d certificates",
                len(self._known),
            )

    def is_certificate_trusted(self, cert: x509.Certificate) -> bool:
        return self._trusted_store.is_certificate_generally_trusted(cert)

    def _candidates_by_name(self, name: x509.Name) -> List[x509.Certificate]:
        result = self._known.retrieve_by_name(name)
        seen = {cert_fingerprint(c) for c in result}
        for cert in self._trusted_store.get_known_certificates_by_name(name):
            if cert_fingerprint(cert) not in seen:
                result.append(cert)
        return result

    def retrieve_issuer_certificate(
        self, cert: x509.Certificate
    ) -> Optional[x509.Certificate]:
        """
        Find the issuer of a certificate.

        :param cert:
            The certificate whose issuer to look up.
        :return:
            A candidate whose key verifies the certificate's signature if
            there is one, else the first candidate with a matching subject,
            else ``None``.
        """
        candidates = self._candidates_by_name(cert.issuer)
        for candidate in candidates:
            if signature_verifies(
                verify_certificate_signature, cert, candidate
            ):
                return candidate
        return candidates[0] if candidates else None

    def retrieve_crl_issuer_certificate(
        self, certificate_list: crl.CertificateList
    ) -> Optional[x509.Certificate]:
        candidates = self._candidates_by_name(certificate_list.issuer)
        for candidate in candidates:
            if signature_verifies(
                verify_crl_signature, certificate_list, candidate
            ):
                return candidate
        return candidates[0] if candidates else None

    def retrieve_ocsp_responder_candidates(
        self, basic_response: ocsp.BasicOCSPResponse
    ) -> List[x509.Certificate]:
        """
        List the certificates embedded in an OCSP response together with the
        certificates trusted for OCSP response generation.
        """
        result = list(basic_response['certs'] or ())
        seen = {cert_fingerprint(c) for c in result}
        trusted = self._trusted_store
        for cert in list(trusted.ocsp_trusted) + list(
            trusted.generally_trusted
        ):
            if cert_fingerprint(cert) not in seen:
                seen.add(cert_fingerprint(cert))
                result.append(cert)
        return result

    def retrieve_missing_certificates(
        self, chain: Iterable[x509.Certificate]
    ) -> List[x509.Certificate]:
        """
        Order a list of certificates from leaf to root, and extend it with
        issuers from the known pool and the trust store.

        :param chain:
            Unordered certificates; the first one that is not the issuer of
            any other is taken as the leaf.
        :return:
            The ordered chain.
        """
        chain = list(chain)
        if not chain:
            return []
        local_pool = CertificateStore.from_certs(chain)
        issuer_names = {c.issuer.hashable for c in chain if not _self_issued(c)}
        leaf = next(
            (c for c in chain if c.subject.hashable not in issuer_names),
            chain[0],
        )
        result = [leaf]
        seen = {cert_fingerprint(leaf)}
        current = leaf
        while not _self_issued(current) and len(result) < MAX_CHAIN_LENGTH:
            issuer = next(
                (
                    c
                    for c in local_pool.retrieve_by_name(current.issuer)
                    if cert_fingerprint(c) not in seen
                ),
                None,
            ) or self.retrieve_issuer_certificate(current)
            if issuer is None or cert_fingerprint(issuer) in seen:
                break
            seen.add(cert_fingerprint(issuer))
            result.append(issuer)
            current = issuer
        return result

    def retrieve_root(self, cert: x509.Certificate) -> x509.Certificate:
        """
        Follow issuers as far as possible and return the last certificate.
        """
        return self.retrieve_missing_certificates([cert])[-1]

    def share_common_root(
        self, cert1: x509.Certificate, cert2: x509.Certificate
    ) -> bool:
        root1 = self.retrieve_root(cert1)
        root2 = self.retrieve_root(cert2)
        return cert_fingerprint(root1) == cert_fingerprint(root2)


def _self_issued(cert: x509.Certificate) -> bool:
    return cert.subject.hashable == cert.issuer.hashable
