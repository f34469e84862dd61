"""
Validation of the signatures in a document.

Signatures are validated from the most recent one to the oldest. A
successfully validated timestamp, whether a document timestamp or a
signature timestamp, provides proof of existence (PoE) of everything it
covers at its generation time; older signatures are then validated at that
moment instead of the current time.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, List, Optional

from asn1crypto import x509

from ..context import (
    CertificateSource,
    TimeBasedContext,
    ValidationContext,
    ValidatorContext,
)
from ..errors import ValidationPerformedError
from ..fetchers.validation_clients import (
    ValidationCrlClient,
    ValidationOcspClient,
)
from ..report import (
    CertificateReportItem,
    ReportItem,
    ReportItemStatus,
    ValidationReport,
    ValidationResult,
)
from ..util import load_basic_ocsp_response, load_crl, now
from .cms import SignatureContainer
from .document import EmbeddedSignature, SignedDocument

if TYPE_CHECKING:
    from ..builder import ValidatorChainBuilder

__all__ = ['SignatureValidator']

logger = logging.getLogger(__name__)


def _load_certificate(data: bytes) -> x509.Certificate:
    cert = x509.Certificate.load(data)
    # force parsing
    cert.native
    return cert


class SignatureValidator:
    """
    Validates the signatures in a document, and the modifications made to
    the document after it was signed.

    Instances are single-use: create a new one through
    :meth:`.ValidatorChainBuilder.build_signature_validator` for every
    validation.

    :param builder:
        The builder providing the policy and the other validators.
    :param document:
        The document to validate.
    """

    SIGNATURE_VERIFICATION = "Signature verification check."
    TIMESTAMP_VERIFICATION = "Timestamp verification check."

    VALIDATING_SIGNATURE_NAME = "Validating signature {0}"
    CANNOT_PARSE_CERT_FROM_DSS = (
        "Certificate {0} stored in DSS dictionary cannot be parsed."
    )
    CANNOT_PARSE_OCSP_FROM_DSS = (
        "OCSP response {0} stored in DSS dictionary cannot be parsed."
    )
    CANNOT_PARSE_CRL_FROM_DSS = (
        "CRL {0} stored in DSS dictionary cannot be parsed."
    )
    CANNOT_VERIFY_SIGNATURE = (
        "Signature {0} cannot be mathematically verified."
    )
    DOCUMENT_IS_NOT_COVERED = "Signature {0} doesn't cover entire document."
    CANNOT_VERIFY_TIMESTAMP = (
        "Signature timestamp attribute cannot be verified."
    )
    TIMESTAMP_VERIFICATION_FAILED = (
        "Unexpected exception occurred during mathematical verification of "
        "time stamp signature."
    )
    REVISIONS_RETRIEVAL_FAILED = (
        "Unexpected exception occurred during document revisions retrieval."
    )
    TIMESTAMP_EXTRACTION_FAILED = (
        "Unexpected exception occurred retrieving proof of existence from "
        "timestamp signature."
    )
    CHAIN_VALIDATION_FAILED = (
        "Unexpected exception occurred during certificate chain validation."
    )
    REVISIONS_VALIDATION_FAILED = (
        "Unexpected exception occurred during revisions validation."
    )
    ADD_KNOWN_CERTIFICATES_FAILED = (
        "Unexpected exception occurred adding known certificates to "
        "certificate retriever."
    )
    SIGNATURE_NOT_FOUND = "Document doesn't contain signature field {0}."
    VALIDATION_PERFORMED = (
        "Validation has already been performed. You should create new "
        "SignatureValidator instance for each validation call."
    )

    def __init__(
        self, builder: 'ValidatorChainBuilder', document: SignedDocument
    ):
        self._builder = builder
        self.document = document
        self._context = ValidationContext(
            ValidatorContext.SIGNATURE_VALIDATOR,
            CertificateSource.SIGNER_CERT,
            TimeBasedContext.PRESENT,
        )
        self._last_known_poe: datetime = now()
        self._validation_performed = False
        self._crl_client, self._ocsp_client = self._find_validation_clients()

    @property
    def last_known_poe(self) -> datetime:
        """
        The moment up to which the validated signatures are known to have
        existed.
        """
        return self._last_known_poe

    @property
    def context(self) -> ValidationContext:
        return self._context

    def _find_validation_clients(self):
        revocation_validator = self._builder.revocation_data_validator
        crl_client = next(
            (
                client
                for client in revocation_validator.crl_clients
                if isinstance(client, ValidationCrlClient)
            ),
            None,
        )
        if crl_client is None:
            crl_client = ValidationCrlClient()
            revocation_validator.add_crl_client(crl_client)
        ocsp_client = next(
            (
                client
                for client in revocation_validator.ocsp_clients
                if isinstance(client, ValidationOcspClient)
            ),
            None,
        )
        if ocsp_client is None:
            ocsp_client = ValidationOcspClient()
            revocation_validator.add_ocsp_client(ocsp_client)
        return crl_client, ocsp_client

    def _report(self, report, message, status, cause=None, check_name=None):
        report.add_report_item(
            ReportItem(
                check_name=check_name or self.SIGNATURE_VERIFICATION,
                message=message,
                status=status,
                exception_cause=cause,
            )
        )

    def _stop_validation(self, report: ValidationReport) -> bool:
        return (
            not self._builder.properties.get_continue_after_failure(
                self._context
            )
            and report.validation_result == ValidationResult.INVALID
        )

    def _mark_performed(self):
        if self._validation_performed:
            raise ValidationPerformedError(self.VALIDATION_PERFORMED)
        self._validation_performed = True

    def validate_signatures(self) -> ValidationReport:
        """
        Validate all signatures in the document, together with the
        modifications made after the first signature.

        :return:
            A :class:`.ValidationReport`.
        :raises ValidationPerformedError:
            if this validator was used before.
        """
        self._mark_performed()
        report = self._validate_document_revisions()
        if self._stop_validation(report):
            return report
        return report.merge(self._validate())

    def validate_signature(self, signature_name: str) -> ValidationReport:
        """
        Validate a single signature in the document. Signatures applied
        later are still processed, since the timestamps among them can
        move the moment at which the signature is validated.

        :param signature_name:
            The fully qualified name of the signature field.
        :return:
            A :class:`.ValidationReport`.
        :raises ValidationPerformedError:
            if this validator was used before.
        """
        self._mark_performed()
        report = self._validate_document_revisions()
        if self._stop_validation(report):
            return report
        return report.merge(self._validate(signature_name))

    def _validate_document_revisions(self) -> ValidationReport:
        report = ValidationReport()
        try:
            revisions_validator = self._builder.document_revisions_validator
            report.merge(
                revisions_validator.validate_all_document_revisions(
                    self._context, self.document
                )
            )
        except Exception as e:
            logger.warning("Document revisions validation failed", exc_info=e)
            self._report(
                report,
                self.REVISIONS_VALIDATION_FAILED,
                ReportItemStatus.INDETERMINATE,
                cause=e,
            )
        return report

    def _validate(self, signature_name: Optional[str] = None):
        report = ValidationReport()
        names = list(reversed(self.document.get_signature_names()))
        for name in names:
            sub_report = ValidationReport()
            try:
                revision = self.document.extract_revision(name)
                sub_report.merge(self.validate_latest_signature(revision))
            except Exception as e:
                logger.warning(
                    "Failed to validate signature %s", name, exc_info=e
                )
                self._report(
                    sub_report,
                    self.REVISIONS_RETRIEVAL_FAILED,
                    ReportItemStatus.INDETERMINATE,
                    cause=e,
                )
            if signature_name is None:
                report.merge(sub_report)
                if self._stop_validation(sub_report):
                    return report
            elif name == signature_name:
                return sub_report
        if signature_name is not None:
            self._report(
                report,
                self.SIGNATURE_NOT_FOUND.format(signature_name),
                ReportItemStatus.INDETERMINATE,
            )
        return report

    def validate_latest_signature(
        self, document: SignedDocument
    ) -> ValidationReport:
        """
        Validate the signature covering the given document revision, i.e.
        the signature that was applied last.

        :param document:
            A document as it stood when the signature was applied, see
            :meth:`.SignedDocument.extract_revision`.
        :return:
            A new :class:`.ValidationReport`.
        """
        report = ValidationReport()
        container = self._verify_signature(report, document)
        if container is None:
            return report
        self._update_validation_clients(container, report, document)
        # unsigned revocation data is only taken into account once
        self._retrieve_unsigned_revocation_info(container)
        if self._stop_validation(report):
            return report

        self._add_known_certificates(
            report, self._certificates_from_dss(report, document)
        )

        if container.is_timestamp_token:
            self._validate_timestamp_chain(report, container)
            if self._update_last_known_poe(report, container):
                self._update_validation_clients(container, report, document)
            return report

        poe_updated = False
        previous_poe = self._last_known_poe
        previous_context = self._context
        timestamp = container.signature_timestamp
        if timestamp is not None:
            ts_report = self._validate_embedded_timestamp(container, timestamp)
            poe_updated = self._update_last_known_poe(ts_report, timestamp)
            if poe_updated:
                self._retrieve_signed_revocation_info(timestamp)
                self._update_validation_clients(container, ts_report, document)
            report.merge(ts_report)
            if self._stop_validation(ts_report):
                return report

        self._add_known_certificates(report, container.certificates)
        signature_report = ValidationReport()
        signer_cert = None
        try:
            signer_cert = container.signer_cert
            self._builder.certificate_chain_validator.validate(
                signature_report,
                self._context,
                signer_cert,
                self._last_known_poe,
            )
        except Exception as e:
            logger.warning("Signer chain validation failed", exc_info=e)
            report.add_report_item(
                CertificateReportItem(
                    check_name=self.SIGNATURE_VERIFICATION,
                    message=self.CHAIN_VALIDATION_FAILED,
                    status=ReportItemStatus.INDETERMINATE,
                    exception_cause=e,
                    certificate=signer_cert,
                )
            )
        if (
            poe_updated
            and signature_report.validation_result != ValidationResult.VALID
        ):
            # the PoE provided by the signature timestamp can only be relied
            # on if the signature itself is valid
            logger.debug(
                "Restoring PoE %s, signer chain is not valid",
                previous_poe.isoformat(),
            )
            self._last_known_poe = previous_poe
            self._context = previous_context
            self._retrieve_signed_revocation_info(timestamp)
            self._update_validation_clients(container, report, document)
        return report.merge(signature_report)

    def _verify_signature(
        self, report: ValidationReport, document: SignedDocument
    ) -> Optional[SignatureContainer]:
        signature: EmbeddedSignature = document.embedded_signatures[-1]
        name = signature.fq_name
        logger.debug("Validating signature %s", name)
        self._report(
            report,
            self.VALIDATING_SIGNATURE_NAME.format(name),
            ReportItemStatus.INFO,
        )
        if not signature.covers_whole_document():
            self._report(
                report,
                self.DOCUMENT_IS_NOT_COVERED.format(name),
                ReportItemStatus.INVALID,
            )
        try:
            container = signature.container
        except Exception as e:
            logger.warning("Could not parse signature %s", name, exc_info=e)
            self._report(
                report,
                self.CANNOT_VERIFY_SIGNATURE.format(name),
                ReportItemStatus.INVALID,
                cause=e,
            )
            return None
        try:
            if not container.verify_integrity(signature.covered_data()):
                self._report(
                    report,
                    self.CANNOT_VERIFY_SIGNATURE.format(name),
                    ReportItemStatus.INVALID,
                )
        except Exception as e:
            logger.warning("Could not verify signature %s", name, exc_info=e)
            self._report(
                report,
                self.CANNOT_VERIFY_SIGNATURE.format(name),
                ReportItemStatus.INVALID,
                cause=e,
            )
        return container

    def _validate_embedded_timestamp(
        self, container: SignatureContainer, timestamp: SignatureContainer
    ) -> ValidationReport:
        ts_report = ValidationReport()

        def _verify(check):
            try:
                if not check():
                    self._report(
                        ts_report,
                        self.CANNOT_VERIFY_TIMESTAMP,
                        ReportItemStatus.INVALID,
                        check_name=self.TIMESTAMP_VERIFICATION,
                    )
            except Exception as e:
                logger.warning("Could not verify timestamp", exc_info=e)
                self._report(
                    ts_report,
                    self.TIMESTAMP_VERIFICATION_FAILED,
                    ReportItemStatus.INVALID,
                    cause=e,
                    check_name=self.TIMESTAMP_VERIFICATION,
                )

        _verify(container.verify_timestamp_imprint)
        if self._stop_validation(ts_report):
            return ts_report
        self._retrieve_signed_revocation_info(timestamp)
        _verify(timestamp.verify_integrity)
        if self._stop_validation(ts_report):
            return ts_report
        self._validate_timestamp_chain(ts_report, timestamp)
        return ts_report

    def _validate_timestamp_chain(
        self, report: ValidationReport, timestamp: SignatureContainer
    ):
        self._add_known_certificates(report, timestamp.certificates)
        try:
            self._builder.certificate_chain_validator.validate(
                report,
                self._context.set_certificate_source(
                    CertificateSource.TIMESTAMP
                ),
                timestamp.signer_cert,
                self._last_known_poe,
            )
        except Exception as e:
            logger.warning("Timestamp chain validation failed", exc_info=e)
            self._report(
                report,
                self.CHAIN_VALIDATION_FAILED,
                ReportItemStatus.INDETERMINATE,
                cause=e,
            )

    def _update_last_known_poe(
        self, report: ValidationReport, timestamp: SignatureContainer
    ) -> bool:
        if report.validation_result != ValidationResult.VALID:
            return False
        try:
            gen_time = timestamp.gen_time
        except Exception as e:
            logger.warning("Could not read timestamp time", exc_info=e)
            self._report(
                report,
                self.TIMESTAMP_EXTRACTION_FAILED,
                ReportItemStatus.INDETERMINATE,
                cause=e,
                check_name=self.TIMESTAMP_VERIFICATION,
            )
            return False
        logger.debug("Moving PoE to %s", gen_time.isoformat())
        self._last_known_poe = gen_time
        if self._context.time_based_context == TimeBasedContext.PRESENT:
            self._context = self._context.set_time_based_context(
                TimeBasedContext.HISTORICAL
            )
        return True

    def _add_known_certificates(
        self, report: ValidationReport, certs: Iterable[x509.Certificate]
    ):
        try:
            self._builder.certificate_retriever.add_known_certificates(certs)
        except Exception as e:
            logger.warning("Could not register certificates", exc_info=e)
            self._report(
                report,
                self.ADD_KNOWN_CERTIFICATES_FAILED,
                ReportItemStatus.INFO,
                cause=e,
            )

    # Revocation data

    def _update_validation_clients(
        self,
        container: SignatureContainer,
        report: ValidationReport,
        document: SignedDocument,
    ):
        self._retrieve_dss_revocation_info(report, document)
        self._retrieve_signed_revocation_info(container)

    def _retrieve_signed_revocation_info(self, container: SignatureContainer):
        ocsps, crls = container.signed_revocation_info
        time_based_context = self._context.time_based_context
        for certificate_list in crls:
            self._crl_client.add_crl(
                certificate_list, self._last_known_poe, time_based_context
            )
        for basic_response in ocsps:
            self._ocsp_client.add_response(
                basic_response, self._last_known_poe, time_based_context
            )

    def _retrieve_unsigned_revocation_info(
        self, container: SignatureContainer
    ):
        time_based_context = self._context.time_based_context
        for certificate_list in container.signed_data_crls:
            self._crl_client.add_crl(
                certificate_list, self._last_known_poe, time_based_context
            )
        for basic_response in container.signed_data_ocsps:
            self._ocsp_client.add_response(
                basic_response, self._last_known_poe, time_based_context
            )

    def _retrieve_dss_revocation_info(
        self, report: ValidationReport, document: SignedDocument
    ):
        dss = document.dss
        if dss is None:
            return
        time_based_context = self._context.time_based_context
        for ix, stream in enumerate(dss.ocsps):
            try:
                basic_response = load_basic_ocsp_response(stream.data)
            except (ValueError, TypeError, KeyError) as e:
                logger.debug("Could not parse DSS OCSP response %d", ix)
                self._report(
                    report,
                    self.CANNOT_PARSE_OCSP_FROM_DSS.format(ix),
                    ReportItemStatus.INFO,
                    cause=e,
                )
                continue
            self._ocsp_client.add_response(
                basic_response, self._last_known_poe, time_based_context
            )
        for ix, stream in enumerate(dss.crls):
            try:
                certificate_list = load_crl(stream.data)
            except (ValueError, TypeError, KeyError) as e:
                logger.debug("Could not parse DSS CRL %d", ix)
                self._report(
                    report,
                    self.CANNOT_PARSE_CRL_FROM_DSS.format(ix),
                    ReportItemStatus.INFO,
                    cause=e,
                )
                continue
            self._crl_client.add_crl(
                certificate_list, self._last_known_poe, time_based_context
            )

    def _certificates_from_dss(
        self, report: ValidationReport, document: SignedDocument
    ) -> List[x509.Certificate]:
        dss = document.dss
        if dss is None:
            return []
        result = []
        for ix, stream in enumerate(dss.certs):
            try:
                result.append(_load_certificate(stream.data))
            except (ValueError, TypeError, KeyError) as e:
                logger.debug("Could not parse DSS certificate %d", ix)
                self._report(
                    report,
                    self.CANNOT_PARSE_CERT_FROM_DSS.format(ix),
                    ReportItemStatus.INFO,
                    cause=e,
                )
        return result
