"""
Wiring of the validator chain.

:class:`ValidatorChainBuilder` owns the policy, the certificate retriever,
the revocation clients and one instance of each validator. Validators are
created lazily through replaceable factories, and resolve their
collaborators through the builder when they need them. Replacing a factory
is the intended way to substitute a validator, e.g. with a test double.
"""

import logging
from typing import TYPE_CHECKING, Callable, Iterable, Optional, TypeVar

from asn1crypto import x509

from .chain import CertificateChainValidator
from .fetchers.api import CrlClient, OcspClient
from .properties import SignatureValidationProperties
from .retriever import IssuingCertificateRetriever
from .revinfo.validate_crl import CRLValidator
from .revinfo.validate_ocsp import OCSPValidator
from .revinfo.validator import RevocationDataValidator

if TYPE_CHECKING:
    from .sign.diff_analysis import DocumentRevisionsValidator
    from .sign.document import SignedDocument
    from .sign.validator import SignatureValidator

__all__ = ['ValidatorChainBuilder']

logger = logging.getLogger(__name__)

T = TypeVar('T')
Factory = Callable[['ValidatorChainBuilder'], T]


def _default_document_revisions_validator(builder):
    from .sign.diff_analysis import DocumentRevisionsValidator

    return DocumentRevisionsValidator(builder)


def _default_signature_validator(builder, document):
    from .sign.validator import SignatureValidator

    return SignatureValidator(builder, document)


def _default_online_crl_client(builder) -> Optional[CrlClient]:
    from .fetchers.requests_clients import RequestsCrlClient

    return RequestsCrlClient()


def _default_online_ocsp_client(builder) -> Optional[OcspClient]:
    from .fetchers.requests_clients import RequestsOcspClient

    return RequestsOcspClient()


class ValidatorChainBuilder:
    def __init__(self):
        self._properties: Optional[SignatureValidationProperties] = None
        self._retriever: Optional[IssuingCertificateRetriever] = None
        self._instances = {}
        self._known_certificates = []
        self._trusted_certificates = []
        self._factories = {
            'properties': lambda b: SignatureValidationProperties(),
            'certificate_retriever': lambda b: IssuingCertificateRetriever(),
            'crl_validator': CRLValidator,
            'ocsp_validator': OCSPValidator,
            'revocation_data_validator': RevocationDataValidator,
            'certificate_chain_validator': CertificateChainValidator,
            'document_revisions_validator': (
                _default_document_revisions_validator
            ),
            'online_crl_client': _default_online_crl_client,
            'online_ocsp_client': _default_online_ocsp_client,
        }
        self._signature_validator_factory = _default_signature_validator

    def _get(self, name: str):
        try:
            return self._instances[name]
        except KeyError:
            pass
        instance = self._factories[name](self)
        self._instances[name] = instance
        if name == 'certificate_retriever':
            if self._trusted_certificates:
                instance.add_trusted_certificates(self._trusted_certificates)
            if self._known_certificates:
                instance.add_known_certificates(self._known_certificates)
        return instance

    def _set_factory(self, name: str, factory) -> 'ValidatorChainBuilder':
        self._factories[name] = factory
        self._instances.pop(name, None)
        return self

    # configuration

    def with_signature_validation_properties(
        self, properties: SignatureValidationProperties
    ) -> 'ValidatorChainBuilder':
        return self._set_factory('properties', lambda b: properties)

    def with_issuing_certificate_retriever_factory(
        self, factory: Factory[IssuingCertificateRetriever]
    ) -> 'ValidatorChainBuilder':
        return self._set_factory('certificate_retriever', factory)

    def with_crl_validator_factory(
        self, factory: Factory[CRLValidator]
    ) -> 'ValidatorChainBuilder':
        return self._set_factory('crl_validator', factory)

    def with_ocsp_validator_factory(
        self, factory: Factory[OCSPValidator]
    ) -> 'ValidatorChainBuilder':
        return self._set_factory('ocsp_validator', factory)

    def with_revocation_data_validator_factory(
        self, factory: Factory[RevocationDataValidator]
    ) -> 'ValidatorChainBuilder':
        return self._set_factory('revocation_data_validator', factory)

    def with_certificate_chain_validator_factory(
        self, factory: Factory[CertificateChainValidator]
    ) -> 'ValidatorChainBuilder':
        return self._set_factory('certificate_chain_validator', factory)

    def with_document_revisions_validator_factory(
        self, factory: 'Factory[DocumentRevisionsValidator]'
    ) -> 'ValidatorChainBuilder':
        return self._set_factory('document_revisions_validator', factory)

    def with_signature_validator_factory(
        self,
        factory: Callable[
            ['ValidatorChainBuilder', 'SignedDocument'], 'SignatureValidator'
        ],
    ) -> 'ValidatorChainBuilder':
        self._signature_validator_factory = factory
        return self

    def with_online_crl_client(
        self, client: Optional[CrlClient]
    ) -> 'ValidatorChainBuilder':
        """
        Set the client used when the policy allows fetching CRLs online.
        ``None`` disables online CRL fetching altogether.
        """
        return self._set_factory('online_crl_client', lambda b: client)

    def with_online_ocsp_client(
        self, client: Optional[OcspClient]
    ) -> 'ValidatorChainBuilder':
        """
        Set the client used when the policy allows fetching OCSP responses
        online. ``None`` disables online OCSP fetching altogether.
        """
        return self._set_factory('online_ocsp_client', lambda b: client)

    def with_known_certificates(
        self, certs: Iterable[x509.Certificate]
    ) -> 'ValidatorChainBuilder':
        certs = list(certs)
        self._known_certificates.extend(certs)
        if 'certificate_retriever' in self._instances:
            self.certificate_retriever.add_known_certificates(certs)
        return self

    def with_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ) -> 'ValidatorChainBuilder':
        certs = list(certs)
        self._trusted_certificates.extend(certs)
        if 'certificate_retriever' in self._instances:
            self.certificate_retriever.add_trusted_certificates(certs)
        return self

    # accessors

    @property
    def properties(self) -> SignatureValidationProperties:
        return self._get('properties')

    @property
    def certificate_retriever(self) -> IssuingCertificateRetriever:
        return self._get('certificate_retriever')

    @property
    def crl_validator(self) -> CRLValidator:
        return self._get('crl_validator')

    @property
    def ocsp_validator(self) -> OCSPValidator:
        return self._get('ocsp_validator')

    @property
    def revocation_data_validator(self) -> RevocationDataValidator:
        return self._get('revocation_data_validator')

    @property
    def certificate_chain_validator(self) -> CertificateChainValidator:
        return self._get('certificate_chain_validator')

    @property
    def document_revisions_validator(self) -> 'DocumentRevisionsValidator':
        return self._get('document_revisions_validator')

    @property
    def online_crl_client(self) -> Optional[CrlClient]:
        return self._get('online_crl_client')

    @property
    def online_ocsp_client(self) -> Optional[OcspClient]:
        return self._get('online_ocsp_client')

    def build_certificate_chain_validator(self) -> CertificateChainValidator:
        return self.certificate_chain_validator

    def build_revocation_data_validator(self) -> RevocationDataValidator:
        return self.revocation_data_validator

    def build_document_revisions_validator(
        self,
    ) -> 'DocumentRevisionsValidator':
        return self.document_revisions_validator

    def build_signature_validator(
        self, document: 'SignedDocument'
    ) -> 'SignatureValidator':
        """
        Create a new signature validator for a document. A signature
        validator can only be used once.
        """
        return self._signature_validator_factory(self, document)
