import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from asn1crypto import ocsp, x509

from ..context import CertificateSource, ValidationContext, ValidatorContext
from ..report import (
    CertificateReportItem,
    ReportItemStatus,
    ValidationReport,
)
from ..util import (
    cert_fingerprint,
    ensure_aware,
    is_self_signed,
    signature_verifies,
    verify_certificate_signature,
    verify_ocsp_signature,
)

if TYPE_CHECKING:
    from ..builder import ValidatorChainBuilder

__all__ = ['OCSPValidator']

logger = logging.getLogger(__name__)


class OCSPValidator:
    """
    Validates a single OCSP response as evidence for the revocation status
    of a certificate.
    """

    OCSP_CHECK = "OCSP response check."
    CERT_IS_REVOKED = "Certificate status is revoked."
    CERT_STATUS_IS_UNKNOWN = "Certificate status is unknown."
    INVALID_OCSP = "OCSP response is invalid."
    ISSUERS_DO_NOT_MATCH = "OCSP: Issuers don't match."
    FRESHNESS_CHECK = (
        "OCSP response is not fresh enough: this update: {0}, validation "
        "date: {1}, freshness: {2}."
    )
    OCSP_COULD_NOT_BE_VERIFIED = (
        "OCSP response could not be verified: it does not contain responder "
        "in the certificate chain and response is not signed by issuer "
        "certificate or any from the trusted store."
    )
    OCSP_IS_NO_LONGER_VALID = "OCSP is no longer valid: {0} after {1}"
    SELF_SIGNED_CERTIFICATE = (
        "Certificate is self-signed. OCSP check will be skipped."
    )
    SERIAL_NUMBERS_DO_NOT_MATCH = (
        "Request and response serial numbers do not match."
    )
    VALID_CERTIFICATE_IS_REVOKED = (
        "The certificate is valid on {0}, but it was revoked on {1}."
    )

    def __init__(self, builder: 'ValidatorChainBuilder'):
        self._builder = builder

    def _report(
        self,
        report: ValidationReport,
        certificate: x509.Certificate,
        message: str,
        status: ReportItemStatus,
    ):
        report.add_report_item(
            CertificateReportItem(
                check_name=self.OCSP_CHECK,
                message=message,
                status=status,
                certificate=certificate,
            )
        )

    def validate(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
        single_response: ocsp.SingleResponse,
        basic_response: ocsp.BasicOCSPResponse,
        validation_date: datetime,
        response_generation_date: Optional[datetime] = None,
    ) -> ValidationReport:
        """
        Validate a single OCSP response entry against a certificate.

        :param report:
            Report to which findings are added.
        :param context:
            The context in which the response is validated.
        :param certificate:
            The certificate whose revocation status is checked.
        :param single_response:
            The entry of the response concerning the certificate.
        :param basic_response:
            The basic OCSP response containing ``single_response``.
        :param validation_date:
            The date against which the revocation status is checked.
        :param response_generation_date:
            The moment at which the response is known to have existed;
            the responder is validated at that moment. Defaults to
            ``validation_date``.
        :return:
            The report.
        """
        local_context = context.set_validator_context(
            ValidatorContext.OCSP_VALIDATOR
        )
        validation_date = ensure_aware(validation_date)
        if response_generation_date is None:
            response_generation_date = validation_date

        if is_self_signed(certificate):
            self._report(
                report,
                certificate,
                self.SELF_SIGNED_CERTIFICATE,
                ReportItemStatus.INFO,
            )
            return report

        cert_id: ocsp.CertId = single_response['cert_id']
        if cert_id['serial_number'].native != certificate.serial_number:
            self._report(
                report,
                certificate,
                self.SERIAL_NUMBERS_DO_NOT_MATCH,
                ReportItemStatus.INDETERMINATE,
            )
            return report

        retriever = self._builder.certificate_retriever
        issuer = retriever.retrieve_issuer_certificate(certificate)
        if issuer is None or not _cert_id_matches_issuer(cert_id, issuer):
            self._report(
                report,
                certificate,
                self.ISSUERS_DO_NOT_MATCH,
                ReportItemStatus.INDETERMINATE,
            )
            return report

        this_update: datetime = single_response['this_update'].native
        next_update: Optional[datetime] = single_response['next_update'].native
        freshness = self._builder.properties.get_freshness(local_context)
        if this_update < validation_date - freshness:
            self._report(
                report,
                certificate,
                self.FRESHNESS_CHECK.format(
                    this_update, validation_date, freshness
                ),
                ReportItemStatus.INDETERMINATE,
            )
            return report
        if next_update is not None and validation_date > next_update:
            self._report(
                report,
                certificate,
                self.OCSP_IS_NO_LONGER_VALID.format(
                    validation_date, next_update
                ),
                ReportItemStatus.INDETERMINATE,
            )
            return report

        cert_status = single_response['cert_status']
        if cert_status.name == 'revoked':
            revocation_date: datetime = cert_status.chosen[
                'revocation_time'
            ].native
            if revocation_date <= validation_date:
                self._report(
                    report,
                    certificate,
                    self.CERT_IS_REVOKED,
                    ReportItemStatus.INVALID,
                )
                return report
            self._report(
                report,
                certificate,
                self.VALID_CERTIFICATE_IS_REVOKED.format(
                    validation_date, revocation_date
                ),
                ReportItemStatus.INFO,
            )
        elif cert_status.name == 'unknown':
            self._report(
                report,
                certificate,
                self.CERT_STATUS_IS_UNKNOWN,
                ReportItemStatus.INDETERMINATE,
            )
            return report

        self._verify_responder(
            report,
            local_context,
            certificate,
            issuer,
            basic_response,
            response_generation_date,
        )
        return report

    def _verify_responder(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
        issuer: x509.Certificate,
        basic_response: ocsp.BasicOCSPResponse,
        response_generation_date: datetime,
    ):
        if signature_verifies(verify_ocsp_signature, basic_response, issuer):
            logger.debug(
                "OCSP response for %s signed by the issuing CA",
                certificate.subject.human_friendly,
            )
            return

        retriever = self._builder.certificate_retriever
        trusted_store = retriever.get_trusted_certificates_store()
        responder = None
        for candidate in basic_response['certs'] or ():
            if not signature_verifies(
                verify_ocsp_signature, basic_response, candidate
            ):
                continue
            issued_by_issuer = (
                candidate.issuer.hashable == issuer.subject.hashable
                and signature_verifies(
                    verify_certificate_signature, candidate, issuer
                )
            )
            if not issued_by_issuer and candidate not in trusted_store:
                self._report(
                    report,
                    certificate,
                    self.INVALID_OCSP,
                    ReportItemStatus.INVALID,
                )
                return
            responder = candidate
            break

        if responder is None:
            responder = next(
                (
                    candidate
                    for candidate in retriever.retrieve_ocsp_responder_candidates(
                        basic_response
                    )
                    if candidate in trusted_store
                    and signature_verifies(
                        verify_ocsp_signature, basic_response, candidate
                    )
                ),
                None,
            )

        if responder is None or cert_fingerprint(
            responder
        ) == cert_fingerprint(certificate):
            self._report(
                report,
                certificate,
                self.OCSP_COULD_NOT_BE_VERIFIED,
                ReportItemStatus.INDETERMINATE,
            )
            return

        logger.debug(
            "Validating OCSP responder %s", responder.subject.human_friendly
        )
        self._builder.certificate_chain_validator.validate(
            report,
            context.set_certificate_source(CertificateSource.OCSP_ISSUER),
            responder,
            response_generation_date,
        )


def _cert_id_matches_issuer(
    cert_id: ocsp.CertId, issuer: x509.Certificate
) -> bool:
    hash_algo = cert_id['hash_algorithm']['algorithm'].native
    try:
        name_hash = getattr(issuer.subject, hash_algo)
        key_hash = getattr(issuer.public_key, hash_algo)
    except AttributeError:
        logger.debug("Unsupported CertID hash algorithm %s", hash_algo)
        return False
    return (
        cert_id['issuer_name_hash'].native == name_hash
        and cert_id['issuer_key_hash'].native == key_hash
    )
