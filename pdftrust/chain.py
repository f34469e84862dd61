"""
Certificate chain validation.

The chain is walked iteratively, from the certificate under validation up
to a trusted certificate. Every certificate on the way is checked for the
extensions required by the policy, for its validity period and for its
revocation status.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, List, Set, Tuple

from asn1crypto import x509

from .context import CertificateSource, ValidationContext, ValidatorContext
from .errors import CertificateExpiredError, CertificateValidityError
from .report import (
    CertificateReportItem,
    ReportItemStatus,
    ValidationReport,
    ValidationResult,
)
from .util import (
    cert_fingerprint,
    check_validity,
    ensure_aware,
    is_self_signed,
    signature_verifies,
    verify_certificate_signature,
)

if TYPE_CHECKING:
    from .builder import ValidatorChainBuilder

__all__ = ['CertificateChainValidator']

logger = logging.getLogger(__name__)


class CertificateChainValidator:
    """
    Validates certificate chains according to the policy held by the
    builder.
    """

    CERTIFICATE_CHECK = "Certificate check."
    VALIDITY_CHECK = "Certificate validity period check."
    EXTENSIONS_CHECK = "Required certificate extensions check."
    REVOCATION_CHECK = "Certificate revocation check."

    CERTIFICATE_TRUSTED = (
        "Certificate {0} is trusted, revocation data checks are not "
        "required."
    )
    CERTIFICATE_TRUSTED_FOR_DIFFERENT_CONTEXT = (
        "Certificate {0} is trusted for {1}, but it is not used in this "
        "context. Validation will continue as usual."
    )
    EXTENSION_MISSING = "Required extension {0} is missing or incorrect."
    ISSUER_MISSING = (
        "Certificate {0} isn't trusted and issuer certificate isn't provided."
    )
    EXPIRED_CERTIFICATE = "Certificate {0} is expired."
    NOT_YET_VALID_CERTIFICATE = "Certificate {0} is not yet valid."
    ISSUER_CANNOT_BE_VERIFIED = (
        "Issuer certificate {0} for subject certificate {1} cannot be "
        "mathematically verified."
    )
    REVOCATION_VALIDATION_FAILED = (
        "Unexpected exception occurred during revocation data validation."
    )
    CHAIN_LOOP_DETECTED = (
        "Certificate {0} appears more than once in its own chain."
    )

    def __init__(self, builder: 'ValidatorChainBuilder'):
        self._builder = builder

    def validate_certificate(
        self,
        context: ValidationContext,
        certificate: x509.Certificate,
        validation_date: datetime,
    ) -> ValidationReport:
        """
        Validate a certificate chain and return a fresh report.

        :param context:
            The context in which the certificate is validated; its
            certificate source is the role of ``certificate``.
        :param certificate:
            The certificate to validate.
        :param validation_date:
            The moment against which the chain is validated.
        :return:
            A new :class:`.ValidationReport`.
        """
        return self.validate(
            ValidationReport(), context, certificate, validation_date
        )

    def validate(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
        validation_date: datetime,
    ) -> ValidationReport:
        """
        Validate a certificate chain, adding findings to an existing report.

        :param report:
            Report to which findings are added.
        :param context:
            The context in which the certificate is validated.
        :param certificate:
            The certificate to validate.
        :param validation_date:
            The moment against which the chain is validated.
        :return:
            The report.
        """
        local_context = context.set_validator_context(
            ValidatorContext.CERTIFICATE_CHAIN_VALIDATOR
        )
        validation_date = ensure_aware(validation_date)
        entry_source = local_context.certificate_source
        logger.debug(
            "Validating chain of %s in context %s at %s",
            certificate.subject.human_friendly,
            local_context,
            validation_date.isoformat(),
        )

        worklist: List[Tuple[x509.Certificate, ValidationContext]] = [
            (certificate, local_context)
        ]
        seen: Set[bytes] = set()
        while worklist:
            current, current_context = worklist.pop()
            fingerprint = cert_fingerprint(current)
            if fingerprint in seen:
                self._report(
                    report,
                    current,
                    self.CERTIFICATE_CHECK,
                    self.CHAIN_LOOP_DETECTED.format(
                        current.subject.human_friendly
                    ),
                    ReportItemStatus.INDETERMINATE,
                )
                break
            seen.add(fingerprint)

            self._validate_required_extensions(
                report, current_context, current
            )
            if self._stop_validation(report, current_context):
                return report
            if self._check_if_trusted(
                report, current_context, entry_source, current
            ):
                continue
            self._validate_validity_period(report, current, validation_date)
            if self._stop_validation(report, current_context):
                return report
            self._validate_revocation_data(
                report, current_context, current, validation_date
            )
            if self._stop_validation(report, current_context):
                return report
            issuer = self._retrieve_verified_issuer(report, current)
            if issuer is not None:
                worklist.append(
                    (
                        issuer,
                        current_context.set_certificate_source(
                            CertificateSource.CERT_ISSUER
                        ),
                    )
                )
        return report

    def _report(
        self,
        report: ValidationReport,
        certificate: x509.Certificate,
        check_name: str,
        message: str,
        status: ReportItemStatus,
        cause=None,
    ):
        report.add_report_item(
            CertificateReportItem(
                check_name=check_name,
                message=message,
                status=status,
                exception_cause=cause,
                certificate=certificate,
            )
        )

    def _stop_validation(
        self, report: ValidationReport, context: ValidationContext
    ) -> bool:
        return (
            not self._builder.properties.get_continue_after_failure(context)
            and report.validation_result != ValidationResult.VALID
        )

    def _validate_required_extensions(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
    ):
        required = self._builder.properties.get_required_extensions(context)
        for extension in required:
            if not extension.exists_in_certificate(certificate):
                self._report(
                    report,
                    certificate,
                    self.EXTENSIONS_CHECK,
                    self.EXTENSION_MISSING.format(extension.extension_oid),
                    ReportItemStatus.INVALID,
                )

    def _check_if_trusted(
        self,
        report: ValidationReport,
        context: ValidationContext,
        entry_source: CertificateSource,
        certificate: x509.Certificate,
    ) -> bool:
        retriever = self._builder.certificate_retriever
        store = retriever.get_trusted_certificates_store()
        subject = certificate.subject.human_friendly
        if store.is_certificate_generally_trusted(certificate):
            self._report(
                report,
                certificate,
                self.CERTIFICATE_CHECK,
                self.CERTIFICATE_TRUSTED.format(subject),
                ReportItemStatus.INFO,
            )
            return True

        classifications = (
            (
                store.is_certificate_trusted_for_ca,
                CertificateSource.CERT_ISSUER
                in (context.certificate_source, entry_source),
                "certificate generation",
            ),
            (
                store.is_certificate_trusted_for_ocsp,
                entry_source == CertificateSource.OCSP_ISSUER,
                "OCSP response generation",
            ),
            (
                store.is_certificate_trusted_for_crl,
                entry_source == CertificateSource.CRL_ISSUER,
                "CRL generation",
            ),
            (
                store.is_certificate_trusted_for_timestamp,
                entry_source == CertificateSource.TIMESTAMP,
                "timestamp generation",
            ),
        )
        for is_trusted_for, context_matches, purpose in classifications:
            if not is_trusted_for(certificate):
                continue
            if context_matches:
                self._report(
                    report,
                    certificate,
                    self.CERTIFICATE_CHECK,
                    self.CERTIFICATE_TRUSTED.format(subject),
                    ReportItemStatus.INFO,
                )
                return True
            self._report(
                report,
                certificate,
                self.CERTIFICATE_CHECK,
                self.CERTIFICATE_TRUSTED_FOR_DIFFERENT_CONTEXT.format(
                    subject, purpose
                ),
                ReportItemStatus.INFO,
            )
        return False

    def _validate_validity_period(
        self,
        report: ValidationReport,
        certificate: x509.Certificate,
        validation_date: datetime,
    ):
        try:
            check_validity(certificate, validation_date)
        except CertificateValidityError as e:
            if isinstance(e, CertificateExpiredError):
                template = self.EXPIRED_CERTIFICATE
            else:
                template = self.NOT_YET_VALID_CERTIFICATE
            self._report(
                report,
                certificate,
                self.VALIDITY_CHECK,
                template.format(certificate.subject.human_friendly),
                ReportItemStatus.INVALID,
                cause=e,
            )

    def _validate_revocation_data(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
        validation_date: datetime,
    ):
        try:
            self._builder.revocation_data_validator.validate(
                report, context, certificate, validation_date
            )
        except Exception as e:
            logger.warning(
                "Revocation data validation of %s failed",
                certificate.subject.human_friendly,
                exc_info=e,
            )
            self._report(
                report,
                certificate,
                self.REVOCATION_CHECK,
                self.REVOCATION_VALIDATION_FAILED,
                ReportItemStatus.INDETERMINATE,
                cause=e,
            )

    def _retrieve_verified_issuer(
        self, report: ValidationReport, certificate: x509.Certificate
    ):
        subject = certificate.subject.human_friendly
        issuer = None
        if not is_self_signed(certificate):
            retriever = self._builder.certificate_retriever
            issuer = retriever.retrieve_issuer_certificate(certificate)
        if issuer is None:
            self._report(
                report,
                certificate,
                self.CERTIFICATE_CHECK,
                self.ISSUER_MISSING.format(subject),
                ReportItemStatus.INDETERMINATE,
            )
            return None
        if not signature_verifies(
            verify_certificate_signature, certificate, issuer
        ):
            self._report(
                report,
                certificate,
                self.CERTIFICATE_CHECK,
                self.ISSUER_CANNOT_BE_VERIFIED.format(
                    issuer.subject.human_friendly, subject
                ),
                ReportItemStatus.INVALID,
            )
            return None
        return issuer
