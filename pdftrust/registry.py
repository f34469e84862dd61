from collections import defaultdict
from typing import Dict, Iterable, Iterator, List

from asn1crypto import x509

from .util import cert_fingerprint

__all__ = ['CertificateStore', 'TrustedCertificatesStore']


class CertificateStore:
    """
    Simple trustless certificate store, indexed by subject name.
    Certificates are deduplicated by their SHA-256 fingerprint.
    """

    @classmethod
    def from_certs(cls, certs: Iterable[x509.Certificate]):
        result = cls()
        result.register_multiple(certs)
        return result

    def __init__(self):
        self.certs: Dict[bytes, x509.Certificate] = {}
        self._subject_map = defaultdict(list)

    def register(self, cert: x509.Certificate) -> bool:
        """
        Register a single certificate.

        :param cert:
            Certificate to add.
        :return:
            ``True`` if the certificate was added, ``False`` if it already
            existed in this store.
        """
        fingerprint = cert_fingerprint(cert)
        if fingerprint in self.certs:
            return False
        self.certs[fingerprint] = cert
        self._subject_map[cert.subject.hashable].append(cert)
        return True

    def register_multiple(self, certs: Iterable[x509.Certificate]) -> bool:
        added = False
        for cert in certs:
            added |= self.register(cert)
        return added

    def retrieve_by_name(self, name: x509.Name) -> List[x509.Certificate]:
        return list(self._subject_map.get(name.hashable, ()))

    def __contains__(self, cert: x509.Certificate):
        return cert_fingerprint(cert) in self.certs

    def __iter__(self) -> Iterator[x509.Certificate]:
        return iter(self.certs.values())

    def __len__(self):
        return len(self.certs)


class TrustedCertificatesStore:
    """
    Trusted certificates, split into five independent classifications.

    A certificate may be trusted generally, or only as a CA, only for OCSP
    response generation, only for CRL generation or only for timestamping.
    """

    def __init__(self):
        self.generally_trusted = CertificateStore()
        self.ca_trusted = CertificateStore()
        self.ocsp_trusted = CertificateStore()
        self.crl_trusted = CertificateStore()
        self.timestamp_trusted = CertificateStore()

    def _all_stores(self):
        return (
            self.generally_trusted,
            self.ca_trusted,
            self.ocsp_trusted,
            self.crl_trusted,
            self.timestamp_trusted,
        )

    def add_generally_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ):
        self.generally_trusted.register_multiple(certs)

    def add_ca_trusted_certificates(self, certs: Iterable[x509.Certificate]):
        self.ca_trusted.register_multiple(certs)

    def add_ocsp_trusted_certificates(self, certs: Iterable[x509.Certificate]):
        self.ocsp_trusted.register_multiple(certs)

    def add_crl_trusted_certificates(self, certs: Iterable[x509.Certificate]):
        self.crl_trusted.register_multiple(certs)

    def add_timestamp_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ):
        self.timestamp_trusted.register_multiple(certs)

    def is_certificate_generally_trusted(self, cert: x509.Certificate) -> bool:
        return cert in self.generally_trusted

    def is_certificate_trusted_for_ca(self, cert: x509.Certificate) -> bool:
        return cert in self.ca_trusted

    def is_certificate_trusted_for_ocsp(self, cert: x509.Certificate) -> bool:
        return cert in self.ocsp_trusted

    def is_certificate_trusted_for_crl(self, cert: x509.Certificate) -> bool:
        return cert in self.crl_trusted

    def is_certificate_trusted_for_timestamp(
        self, cert: x509.Certificate
    ) -> bool:
        return cert in self.timestamp_trusted

    def get_known_certificates_by_name(
        self, name: x509.Name
    ) -> List[x509.Certificate]:
        """
        Look up trusted certificates of any classification by subject.
        """
        result = []
        seen = set()
        for store in self._all_stores():
            for cert in store.retrieve_by_name(name):
                fingerprint = cert_fingerprint(cert)
                if fingerprint not in seen:
                    seen.add(fingerprint)
                    result.append(cert)
        return result

    def __contains__(self, cert: x509.Certificate):
        return any(cert in store for store in self._all_stores())
